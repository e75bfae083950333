''' _layouts.py - version dependent byte layouts of on-disk structures

Copyright (c) 2022 Netherlands Forensic Institute - MIT License

The layout of the page header, the tuple header and the attribute catalog
record changed several times between PostgreSQL releases. This module holds
one description per format revision. A format revision is the release
number times ten, so 6.5 becomes 65, 7.3 becomes 73 and 8.3 becomes 83.
Releases from 10 onwards have a single component version (16 becomes 160).

A layout is an ordered tuple of (name, primitive type) fields. All integers
are stored in the byte order of the machine that wrote the files, which is
assumed to be little endian. The following primitive types are defined:

    - int8, uint8, int16, uint16, int32, uint32: (un)signed integers
    - float32: single precision float
    - bytes:N: fixed length byte array of N bytes
    - nulterm:N: N byte array, cut at the first NUL and stripped of trailing
      spaces
'''

from collections import namedtuple as _nt
from functools import lru_cache as _lru_cache

from . import _exceptions


##############
# primitives #
##############

# name of the field and its primitive type
_field = _nt('field', 'name ptype')

# bitstring read token and size in bytes of the primitive types
_primitive = _nt('primitive', 'token size')

_fixedprimitives = {'int8': _primitive('int:8', 1),
                    'uint8': _primitive('uint:8', 1),
                    'int16': _primitive('intle:16', 2),
                    'uint16': _primitive('uintle:16', 2),
                    'int32': _primitive('intle:32', 4),
                    'uint32': _primitive('uintle:32', 4),
                    'float32': _primitive('floatle:32', 4)}


def primitive(ptype):
    ''' Returns the primitive object (bitstring token and size) for the given type '''

    if ptype in _fixedprimitives:
        return _fixedprimitives[ptype]

    kind, _, count = ptype.partition(':')
    if kind not in ['bytes', 'nulterm'] or not count.isdigit():
        raise _exceptions.InvalidArgumentException('unknown primitive type %s' % (ptype,))
    return _primitive('bytes:%s' % (count,), int(count))


def layout(description):
    ''' Creates a layout from a whitespace separated 'name:type' string.

    For example 'lower:uint16 upper:uint16 name:nulterm:64'. Every type is
    checked, so a broken description fails when the module is loaded.
    '''

    fields = []
    for item in description.split():
        name, ptype = item.split(':', 1)
        primitive(ptype)
        fields.append(_field(name, ptype))
    return tuple(fields)


def layoutsize(lyt):
    ''' Returns the number of bytes covered by the given layout '''

    return sum(primitive(f.ptype).size for f in lyt)


################
# page headers #
################

# 7.1 and earlier: no WAL fields, the page size is stored in pd_opaque
_pageheader_70 = layout('lower:uint16 upper:uint16 special:uint16 opaque:uint16')

# 7.2 and later added the WAL location (LSN) and startup id
_pageheader_72 = layout('lsn_hi:uint32 lsn_lo:uint32 sui:uint32 lower:uint16 '
                        'upper:uint16 special:uint16 version:uint8 pagesize:uint8')

# 8.3 added the oldest prunable xid
_pageheader_83 = layout('lsn_hi:uint32 lsn_lo:uint32 sui:uint32 lower:uint16 '
                        'upper:uint16 special:uint16 version:uint8 pagesize:uint8 '
                        'prunexid:uint32')


#################
# tuple headers #
#################

# before 7.3 the oid was part of the fixed header
_tupleheader_70 = layout('oid:uint32 cmin:uint32 cmax:uint32 xmin:uint32 xmax:uint32 '
                         'tid1:uint16 tid2:uint16 tid3:uint16 natts:uint16 '
                         'infomask:uint16 size:uint8')

# 7.3 overlayed cmin, cmax and xvac, the oid moved to the end of the header
_tupleheader_73 = layout('xmin:uint32 xmax:uint32 xvac:uint32 tid1:uint16 tid2:uint16 '
                         'tid3:uint16 natts:uint16 infomask:uint16 size:uint8')

# 8.0 grew by 4 bytes
_tupleheader_80 = layout('xmin:uint32 cmin:uint32 xmax:uint32 cmax:uint32 tid1:uint16 '
                         'tid2:uint16 tid3:uint16 natts:uint16 infomask:uint16 size:uint8')

# index tuples: heap tid and size/flags word
_indextuple = layout('tid1:uint16 tid2:uint16 tid3:uint16 info:uint16')

# the 12 bytes after the 4 byte prefix of an external (TOAST) pointer
_toastpointer = layout('rawsize:int32 extsize:int32 valueid:uint32')


#######################################
# attribute catalog (pg_attribute) #
#######################################

_attribute_65 = layout('attrelid:uint32 attname:nulterm:32 atttypid:uint32 '
                       'attdisbursion:float32 attlen:int16 attnum:int16 '
                       'attnelems:int32 attcacheoff:int32 atttypmod:int32 '
                       'attbyval:uint8 attisset:uint8 attalign:nulterm:1 '
                       'attnotnull:uint8 atthasdef:uint8')

_attribute_70 = layout('attrelid:uint32 attname:nulterm:32 atttypid:uint32 '
                       'attstattarget:int32 attlen:int16 attnum:int16 '
                       'attndim:int32 attcacheoff:int32 atttypmod:int32 '
                       'attbyval:uint8 attstorage:nulterm:1 attisset:uint8 '
                       'attalign:nulterm:1 attnotnull:uint8 atthasdef:uint8')

# 7.3 increased the length of the name type
_attribute_73 = layout('attrelid:uint32 attname:nulterm:64 atttypid:uint32 '
                       'attstattarget:int32 attlen:int16 attnum:int16 '
                       'attndim:int32 attcacheoff:int32 atttypmod:int32 '
                       'attbyval:uint8 attstorage:nulterm:1 attisset:uint8 '
                       'attalign:nulterm:1 attnotnull:uint8 atthasdef:uint8')

_attribute_80 = layout('attrelid:uint32 attname:nulterm:64 atttypid:uint32 '
                       'attstattarget:int32 attlen:int16 attnum:int16 '
                       'attndim:int32 attcacheoff:int32 atttypmod:int32 '
                       'attbyval:uint8 attstorage:uint8 attalign:uint8')

_attribute_83 = layout('attrelid:uint32 attname:nulterm:64 atttypid:uint32 '
                       'attstattarget:int32 attlen:int16 attnum:int16 '
                       'attndim:int32 attcacheoff:int32 atttypmod:int32 '
                       'attbyval:uint8 attstorage:uint8 attalign:uint8 '
                       'attnotnull:int8 atthasdef:int8 attisdropped:int8 '
                       'attislocal:int8 attinhcount:uint32')


############
# registry #
############

# the full set of layouts and flag masks for a single format revision
_layoutset = _nt('layoutset', 'revision pageheader tupleheader indextuple attribute '
                              'toastpointer hasnull_mask hasoid_mask natts_mask')

# oldest revision we know how to read
MIN_REVISION = 65


@_lru_cache(maxsize=None)
def layouts(revision):
    ''' Returns the layoutset for the given format revision.

    A layoutset contains the following fields:

        - revision: the format revision
        - pageheader: layout of the page header
        - tupleheader: layout of the heap tuple header
        - indextuple: layout of the index tuple header
        - attribute: layout of a pg_attribute record (tuple data part)
        - toastpointer: layout of an external pointer after its prefix
        - hasnull_mask: infomask bit that flags a null bitmap
        - hasoid_mask: infomask bit that flags an oid before the data
        - natts_mask: mask applied to the natts field

    Revisions are checked from old to new, which means
    that 8.3 has its own entries and anything newer falls back to the 8.0
    layouts.
    '''

    if not isinstance(revision, int):
        raise _exceptions.InvalidArgumentException('format revision should be integer')
    if revision < MIN_REVISION:
        raise _exceptions.UserFeedbackException('format revision %d is not supported' % (revision,))

    # page header: 7.2 added WAL fields, 8.3 added prunexid
    if revision < 71:
        pageheader = _pageheader_70
    elif revision == 83:
        pageheader = _pageheader_83
    else:
        pageheader = _pageheader_72

    # tuple header: 7.3 changed it completely, 8.0 grew it by 4 bytes
    if revision < 73:
        tupleheader = _tupleheader_70
    elif revision < 80 or revision == 83:
        tupleheader = _tupleheader_73
    else:
        tupleheader = _tupleheader_80

    if revision < 70:
        attribute = _attribute_65
    elif revision < 73:
        attribute = _attribute_70
    elif revision < 80:
        attribute = _attribute_73
    elif revision == 83:
        attribute = _attribute_83
    else:
        attribute = _attribute_80

    # 8.3 moved HEAP_HASOID and started storing flags in the top bits of natts
    if revision >= 83:
        hasoid_mask = 0x0008
        natts_mask = 0x07ff
    else:
        hasoid_mask = 0x0010
        natts_mask = 0xffff

    return _layoutset(revision, pageheader, tupleheader, _indextuple, attribute,
                      _toastpointer, 0x0001, hasoid_mask, natts_mask)


def revision_from_version(version):
    ''' Converts the contents of a PG_VERSION file into a format revision.

    '6.5' becomes 65, '7.3' becomes 73 and '16' becomes 160.
    '''

    version = version.strip()
    major, _, minor = version.partition('.')
    if not major.isdigit() or (minor and not minor.isdigit()):
        raise _exceptions.UserFeedbackException('unreadable version marker %r' % (version,))

    if int(major) >= 10:
        return int(major) * 10
    return int(major) * 10 + int(minor or 0)
