''' _block.py - module that deals with the fixed size blocks of relation files

Copyright (c) 2022 Netherlands Forensic Institute - MIT License
'''

from collections import namedtuple as _nt
from functools import partial as _partial
import os.path as _path

from . import _exceptions

# A block describes one page of a relation file.
_block = _nt('block', 'pagenumber offset size data')


def _blockdata(stream, offset, size):
    ''' Returns the bytes of a block, read from the stream '''

    stream.seek(offset)
    return stream.read(size)


def block(stream, pagenumber, blocksize):
    ''' Returns a block object for the given page number (starting at 0).

    A block contains the following fields:

        - pagenumber: the number of the page within the relation
        - offset: the offset of the block within the stream
        - size: the size of the block
        - data: a function that returns the bytes of the block when called.
          The last block of a truncated file may return less than size bytes.
    '''

    if pagenumber < 0:
        raise _exceptions.InvalidArgumentException('pagenumbers start at 0')

    offset = pagenumber * blocksize
    return _block(pagenumber, offset, blocksize, _partial(_blockdata, stream, offset, blocksize))


def blocks(stream, blocksize):
    ''' Generates the blocks of a stream, including a short trailing block '''

    stream.seek(0, 2)
    length = stream.tell()

    pagenumber = 0
    while pagenumber * blocksize < length:
        yield block(stream, pagenumber, blocksize)
        pagenumber += 1


class Relation():
    ''' the byte stream of a single relation, closed on leaving a with block

    The source can be a filename or an already opened binary file-like object.
    In the latter case the object is closed as well when the relation is
    closed.
    '''

    def __init__(s, source, blocksize, name=None):
        ''' open the given source as relation '''

        if isinstance(source, str):
            filename = _path.abspath(_path.expanduser(source))
            try:
                s.stream = open(filename, 'rb')
            except OSError as e:
                raise _exceptions.RelationOpenException('could not open %s (%s)' % (filename, e))
            s.name = name or filename
        else:
            s.stream = source
            s.name = name
        s.blocksize = blocksize


    def __enter__(s):
        return s


    def __exit__(s, *args):
        s.close()


    def close(s):
        ''' close the underlying stream '''

        s.stream.close()


    def blocks(s):
        ''' generates all blocks of the relation '''

        return blocks(s.stream, s.blocksize)


    def page(s, pagenumber):
        ''' returns the bytes of the given page '''

        return block(s.stream, pagenumber, s.blocksize).data()
