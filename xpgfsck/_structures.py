''' _structures - basic structures in the PostgreSQL heap file format

Copyright (c) 2022 Netherlands Forensic Institute - MIT License

The structures are described by the layouts in _layouts, which differ per
format revision. This module does not know about revisions; it receives the
layout to apply as argument. Nothing in here raises on inconsistent data
that can be worked around: problems are reported through the diagnostic
context that is passed in, and the caller decides what to skip.
'''

from collections import namedtuple as _nt
from collections import OrderedDict as _OD
from enum import Enum as _Enum
from bitstring import ConstBitStream as _CB

from ._layouts import primitive as _primitive
from ._diagnostics import DiagnosticKind as _Kind


#####################
# structure decoder #
#####################

_decoded_record = _nt('decoded_record', 'fields size rest error')


def decode(lyt, data):
    ''' Unpacks the given bytes according to the given layout.

    A decoded_record contains the following fields:

        - fields: ordered dictionary of field name to value. Fields that could
          not be read because data ran out are present with value None.
        - size: the number of bytes consumed by the layout
        - rest: the remaining bytes after the last field
        - error: None, or a message when the number of unpacked values
          (including the rest) does not match the layout

    This never raises on short input. The rest is always captured as an extra
    trailing value, which is why a complete decode yields len(layout)+1
    values.
    '''

    btstr = _CB(bytes=data)

    values = []
    for field in lyt:
        prim = _primitive(field.ptype)
        if btstr.len - btstr.pos < prim.size * 8:
            break
        value = btstr.read(prim.token)
        if field.ptype.startswith('nulterm:'):
            # cut at the first NUL and strip the space padding
            value = value.split(b'\x00', 1)[0].rstrip(b' ')
        values.append(value)

    size = btstr.bytepos
    rest = data[size:]
    produced = values + [rest]

    error = None
    if len(produced) != len(lyt) + 1:
        error = 'wrong number of fields in structure (%d != %d)' % (len(produced) - 1, len(lyt))

    fields = _OD((f.name, None) for f in lyt)
    for field, value in zip(lyt, values):
        fields[field.name] = value

    return _decoded_record(fields, size, rest, error)


##############
# page items #
##############

# one entry in the slot directory (line pointer). Slots are numbered from 1
_itemid = _nt('itemid', 'slot offset flags length used')


def itemid(word, slot):
    ''' Interprets a 32 bit slot directory word.

    Bits 0-14 hold the offset of the tuple in the page, bits 15-16 the status
    flags and bits 17-31 the length of the tuple. The slot is in use when the
    lowest status bit is set.
    '''

    offset = word & 0x7fff
    flags = (word >> 15) & 0x3
    length = word >> 17
    return _itemid(slot, offset, flags, length, flags & 0x1 == 1)


def itemids(data, headersize, lower):
    ''' Parses the slot directory running from the end of the header up to lower '''

    count = (lower - headersize) // 4
    if count <= 0:
        return []

    btstr = _CB(bytes=data)
    btstr.bytepos = headersize
    words = btstr.readlist(['uintle:32'] * count)
    return [itemid(w, i + 1) for i, w in enumerate(words)]


########
# page #
########

_scannedpage = _nt('scanned_page', 'header slots valid')


def _check_pageheader(hdr, blocksize, diag):
    ''' Validates the page header invariants, returns True when they hold '''

    lower = hdr.fields['lower']
    upper = hdr.fields['upper']
    special = hdr.fields['special']

    if lower % 4 != 0:
        diag.report(_Kind.InvariantViolation, 'lower (%d) is not a multiple of 4' % (lower,))
        return False
    if lower > upper:
        diag.report(_Kind.InvariantViolation, 'lower (%d) > upper (%d)' % (lower, upper))
        return False

    if 'pagesize' in hdr.fields:
        if hdr.fields['pagesize'] * 256 != blocksize:
            diag.report(_Kind.InvariantViolation, 'pagesize (%d) * 256 != blocksize (%d)'
                        % (hdr.fields['pagesize'], blocksize))
            return False
    elif hdr.fields.get('opaque') != blocksize:
        # before 7.1 pd_opaque stored the full page size
        diag.report(_Kind.InvariantViolation, 'opaque (%s) != blocksize (%d)'
                    % (hdr.fields.get('opaque'), blocksize))
        return False

    if special > blocksize:
        diag.report(_Kind.InvariantViolation, 'special (%d) beyond end of page' % (special,))
        return False

    return True


def scan_page(data, lyt, blocksize, diag):
    ''' Parses a single page and returns the used slots of its directory.

    A scanned_page has the following fields:

        - header: the decoded_record of the page header
        - slots: the used itemid objects whose location passed the checks,
          in directory order
        - valid: False when the page was rejected as a whole

    A page that fails its header checks contributes no slots. A used slot
    that points outside [upper, special) is reported and left out.
    '''

    hdr = decode(lyt, data)
    if hdr.error is not None:
        diag.report(_Kind.StructuralMismatch, 'page header: %s' % (hdr.error,))
        return _scannedpage(hdr, [], False)

    if len(data) != blocksize:
        diag.report(_Kind.BoundsViolation, 'page has %d bytes, expected %d' % (len(data), blocksize))
        return _scannedpage(hdr, [], False)

    if not _check_pageheader(hdr, blocksize, diag):
        return _scannedpage(hdr, [], False)

    upper = hdr.fields['upper']
    special = hdr.fields['special']

    slots = []
    for item in itemids(data, hdr.size, hdr.fields['lower']):
        if not item.used:
            continue
        if item.offset < upper or item.offset >= special:
            diag.report(_Kind.InvariantViolation, 'slot %d offset %d outside [%d, %d)'
                        % (item.slot, item.offset, upper, special))
            continue
        if item.offset + item.length > special:
            diag.report(_Kind.BoundsViolation, 'slot %d (offset %d, length %d) runs past special (%d)'
                        % (item.slot, item.offset, item.length, special))
            continue
        slots.append(item)

    return _scannedpage(hdr, slots, True)


###############
# null bitmap #
###############


def nullbitmap(bitmap, natts):
    ''' Returns a list of natts booleans, True meaning 'column has a value'.

    Bits are numbered from the least significant bit of the first byte. A set
    bit marks a non-null column. Columns beyond the end of the bitmap are
    considered not null.
    '''

    present = []
    for col in range(natts):
        byte = col >> 3
        if byte >= len(bitmap):
            present.append(True)
        else:
            present.append((bitmap[byte] >> (col & 7)) & 1 == 1)
    return present


###########
# varlena #
###########

class VarlenaKind(_Enum):
    ''' the physical encodings of a variable length value '''

    Inline1B = 1
    Inline4B = 2
    Compressed = 3
    External = 4


_varlena = _nt('varlena', 'kind payload wirelength external')

_external_pointer = _nt('external_pointer', 'rawsize extsize valueid')

# prefix plus the external pointer layout
EXTERNAL_POINTER_SIZE = 16


def external_pointer(data, lyt):
    ''' Decodes the external pointer following the 4 byte prefix in data.

    An external_pointer has the following fields:

        - rawsize: the original size of the value, including its header
        - extsize: the size as stored in the chunk relation
        - valueid: the chunk owner id under which the chunks are stored

    The chunk relation itself is not part of the pointer, it is the TOAST
    relation of the owning table.
    '''

    rec = decode(lyt, data[4:EXTERNAL_POINTER_SIZE])
    if rec.error is not None:
        raise ValueError('external pointer: %s' % (rec.error,))
    return _external_pointer(rec.fields['rawsize'], rec.fields['extsize'], rec.fields['valueid'])


def varlena(data, lyt):
    ''' Classifies the variable length value at the start of data.

    A varlena object has the following fields:

        - kind: one of VarlenaKind
        - payload: the bytes following the header, still compressed for
          VarlenaKind.Compressed and empty for VarlenaKind.External
        - wirelength: number of bytes the value occupies in the tuple
        - external: external_pointer object or None

    The header length is part of the stored length, so the payload of a value
    with stored length N is N minus the header size. The lyt argument is the
    toastpointer layout of the active revision. Raises ValueError when the
    header is inconsistent with the available bytes.
    '''

    if len(data) == 0:
        raise ValueError('no bytes left for varlena header')

    b0 = data[0]

    if b0 == 0x01:
        if len(data) < EXTERNAL_POINTER_SIZE:
            raise ValueError('external pointer needs %d bytes, %d available'
                             % (EXTERNAL_POINTER_SIZE, len(data)))
        ptr = external_pointer(data, lyt)
        return _varlena(VarlenaKind.External, b'', EXTERNAL_POINTER_SIZE, ptr)

    if b0 & 0x01 == 0x01:
        length = (b0 >> 1) & 0x7f
        if length > len(data):
            raise ValueError('1-byte varlena of length %d exceeds %d available bytes'
                             % (length, len(data)))
        return _varlena(VarlenaKind.Inline1B, data[1:length], length, None)

    if len(data) < 4:
        raise ValueError('4-byte varlena header needs 4 bytes, %d available' % (len(data),))

    word = _CB(bytes=data[0:4]).read('uintle:32')
    length = (word >> 2) & 0x3fffffff
    if length < 4:
        raise ValueError('4-byte varlena with impossible length %d' % (length,))
    if length > len(data):
        raise ValueError('4-byte varlena of length %d exceeds %d available bytes'
                         % (length, len(data)))

    if b0 & 0x03 == 0x02:
        kind = VarlenaKind.Compressed
    else:
        kind = VarlenaKind.Inline4B
    return _varlena(kind, data[4:length], length, None)
