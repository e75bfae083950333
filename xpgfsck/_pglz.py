''' _pglz.py - decompression of compressed variable length values

Copyright (c) 2022 Netherlands Forensic Institute - MIT License

Compressed values use a byte oriented LZ scheme. The compressed data starts
with the raw (uncompressed) length as 32 bit integer, followed by groups of
one control byte and up to eight items. Each bit of the control byte,
starting at the least significant bit, describes one item:

    - bit clear: the item is a single literal byte
    - bit set: the item is a 2 or 3 byte back reference tag. The offset is
      made of the upper nibble of the first byte and the full second byte,
      the length is the lower nibble plus 3. A length of 18 means a third
      byte follows that is added to the length.

A back reference may overlap with the bytes it produces, in which case the
copied window repeats itself. The raw length is not used to validate the
output, since a damaged value should still give as much data as possible.
'''

from collections import namedtuple as _nt

# outcome of a decompression run
_decompressed = _nt('decompressed', 'data rawsize complete')


def rawsize(data):
    ''' Returns the raw length stored in the 4 byte prefix, or None '''

    if len(data) < 4:
        return None
    return int.from_bytes(data[0:4], 'little')


def decompress(data):
    ''' Decompresses the given data, including the 4 byte raw length prefix.

    Returns a decompressed object with the following fields:

        - data: the produced bytes
        - rawsize: the raw length from the prefix (None if absent)
        - complete: False if a back reference pointed before the start of
          the output, in which case decompression stopped early

    Decompression runs until the input is exhausted. A tag that is cut off
    by the end of the input ends decompression as well.
    '''

    out = bytearray()
    size = rawsize(data)
    pos = 4
    end = len(data)

    while pos < end:
        ctrl = data[pos]
        pos += 1

        for bit in range(8):
            if pos >= end:
                break

            if ctrl & (1 << bit) == 0:
                out.append(data[pos])
                pos += 1
                continue

            if pos + 1 >= end:
                # tag truncated
                return _decompressed(bytes(out), size, False)

            tag0 = data[pos]
            tag1 = data[pos + 1]
            pos += 2
            offset = (tag0 >> 4) * 256 + tag1
            length = (tag0 & 0x0f) + 3
            if length == 18:
                if pos >= end:
                    return _decompressed(bytes(out), size, False)
                length += data[pos]
                pos += 1

            if offset == 0 or offset > len(out):
                return _decompressed(bytes(out), size, False)

            # byte by byte, the source may overlap with what is written
            start = len(out) - offset
            for i in range(length):
                out.append(out[start + i])

    return _decompressed(bytes(out), size, True)
