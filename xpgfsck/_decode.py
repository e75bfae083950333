''' _decode.py - module containing functionality to decode heap tuples

Copyright (c) 2022 Netherlands Forensic Institute - MIT License

A heap tuple consists of a header (see _layouts for its revision dependent
layout), an optional null bitmap, an optional oid and the column data. The
column data is interpreted using the column schema of the relation. Each
column is aligned on its alignment boundary before it is read, except when
the byte at the current position looks like the start of a 1-byte varlena
header: such values are stored without padding in front of them. The value
that directly follows a 1-byte varlena is not padded either.
'''

from collections import namedtuple as _nt
from collections import OrderedDict as _OD
from bitstring import ConstBitStream as _CB

from . import _exceptions
from . import _structures
from . import _pglz
from ._diagnostics import DiagnosticKind as _Kind

#################
# column schema #
#################

# a single column; length -1 means variable length, alignment is in bytes
_column = _nt('column', 'attnum name typeid length align')

# alignment codes as stored in the attribute catalog
ALIGNMENT = {'c': 1, 's': 2, 'i': 4, 'd': 8}


def column(attnum, name, typeid, length, align):
    ''' Returns a column object, align can be given as number or catalog code '''

    if isinstance(align, bytes):
        align = align.decode('ascii')
    if isinstance(align, str):
        if align not in ALIGNMENT:
            raise _exceptions.InvalidArgumentException('unknown alignment code %r' % (align,))
        align = ALIGNMENT[align]
    return _column(attnum, name, typeid, length, align)


def column_schema(relation, columns):
    ''' Orders the given columns by number and checks for gaps.

    Returns a tuple of columns where the column with number N is at index
    N-1. Raises SchemaGapException if any of the numbers 1..max is missing.
    '''

    bynum = {}
    for col in columns:
        if col.attnum in bynum:
            raise _exceptions.AssumptionBrokenException('column %d of %s defined twice'
                                                        % (col.attnum, relation))
        bynum[col.attnum] = col

    if len(bynum) == 0:
        return ()

    for attnum in range(1, max(bynum) + 1):
        if attnum not in bynum:
            raise _exceptions.SchemaGapException(relation, attnum)

    return tuple(bynum[n] for n in range(1, max(bynum) + 1))


def _align(cursor, alignment):
    ''' rounds the cursor up to the next multiple of alignment '''

    return (cursor + alignment - 1) // alignment * alignment


#################
# tuple decoder #
#################

# the result of decoding a tuple
_decoded_tuple = _nt('decoded_tuple', 'page tuple oid xmin xmax values complete error')

# a tuple that could not be decoded at all
_decode_error = _nt('decode_error', 'page tuple message')


def empty_tuple(err):
    ''' records a decode_error as a tuple without values '''

    return _decoded_tuple(err.page, err.tuple, None, None, None, _OD(), False, err.message)


class TupleDecoder():
    ''' decoder for the tuples of a single relation '''

    def __init__(s, session, schema, toast=None, renderers=None):
        ''' initialize the tuple decoder

        The schema argument is a column schema as returned by column_schema.
        The toast argument is the ToastIndex for the external values of this
        relation, if it has one. The renderers argument can map column names
        to renderers, these take precedence over the renderer of the type.
        '''

        s.session = session
        s.schema = schema
        s.toast = toast
        s.overrides = renderers or {}


    def decode(s, data, page=None, slot=None):
        ''' Decodes a single tuple, returns a decoded_tuple or a decode_error.

        A decoded_tuple has the following fields:

            - page, tuple: location of the tuple (page and slot as passed in)
            - oid: the oid of the tuple or None
            - xmin, xmax: transaction ids from the header
            - values: ordered dictionary of column name to value, None for
              NULL. Columns that could not be reached are absent.
            - complete: False when decoding of the columns was aborted
            - error: None

        Any unexpected failure inside the tuple is caught here, reported and
        turned into a decode_error, so a page scan can just continue.
        '''

        diag = s.session.diag
        depth = len(diag.stack)
        try:
            return s._decode(data, page, slot)
        except Exception as e:
            diag.truncate(depth)
            msg = '%s: %s' % (type(e).__name__, e)
            diag.report(_Kind.DecodeException, msg)
            return _decode_error(page, slot, msg)


    def _decode(s, data, page, slot):
        ''' the actual decoding, see decode() '''

        diag = s.session.diag
        lyts = s.session.layouts

        hdr = _structures.decode(lyts.tupleheader, data)
        if hdr.error is not None:
            diag.report(_Kind.StructuralMismatch, 'tuple header: %s' % (hdr.error,))
            return _decode_error(page, slot, hdr.error)

        size = hdr.fields['size']
        natts = hdr.fields['natts'] & lyts.natts_mask
        infomask = hdr.fields['infomask']

        if size > len(data):
            msg = 'header size %d exceeds tuple length %d' % (size, len(data))
            diag.report(_Kind.BoundsViolation, msg)
            return _decode_error(page, slot, msg)

        if natts > len(s.schema):
            msg = 'tuple has %d attributes, schema only %d' % (natts, len(s.schema))
            diag.report(_Kind.StructuralMismatch, msg)
            return _decode_error(page, slot, msg)

        # the oid is either part of the fixed header or stored just before
        # the column data
        oid = hdr.fields.get('oid')
        bitmap_end = size
        if 'oid' not in hdr.fields and infomask & lyts.hasoid_mask:
            if size - 4 < hdr.size:
                msg = 'no room for oid in header of size %d' % (size,)
                diag.report(_Kind.BoundsViolation, msg)
                return _decode_error(page, slot, msg)
            oid = _CB(bytes=data[size - 4:size]).read('uintle:32')
            bitmap_end = size - 4

        if infomask & lyts.hasnull_mask:
            present = _structures.nullbitmap(data[hdr.size:bitmap_end], natts)
        else:
            present = [True] * natts

        values = _OD()
        complete = True
        cursor = size
        # the previous value had a 1-byte varlena header
        after_short = False

        for idx, col in enumerate(s.schema):
            # columns added after this tuple was written
            if idx >= natts or not present[idx]:
                values[col.name] = None
                continue

            if not after_short and (cursor >= len(data) or data[cursor] & 0x01 == 0):
                cursor = _align(cursor, col.align)

            if cursor > len(data):
                diag.report(_Kind.BoundsViolation, 'column %s starts at %d, beyond tuple length %d'
                            % (col.name, cursor, len(data)))
                complete = False
                break

            try:
                value, wirelength = s._column_value(col, data, cursor)
            except ValueError as e:
                diag.report(_Kind.BoundsViolation, 'column %s: %s' % (col.name, e))
                complete = False
                break

            values[col.name] = value
            after_short = col.length == -1 and data[cursor] & 0x01 == 0x01 and data[cursor] != 0x01
            cursor += wirelength

        if complete and not len(data) - 4 <= cursor <= len(data):
            diag.report(_Kind.StructuralMismatch, 'decoded %d bytes, tuple length is %d'
                        % (cursor, len(data)))

        return _decoded_tuple(page, slot, oid, hdr.fields['xmin'], hdr.fields['xmax'],
                              values, complete, None)


    def _column_value(s, col, data, cursor):
        ''' Returns (value, wirelength) for the column starting at cursor.

        Raises ValueError when the value does not fit in the tuple. '''

        if col.length > 0:
            end = cursor + col.length
            if end > len(data):
                raise ValueError('fixed length value of %d bytes at %d exceeds tuple length %d'
                                 % (col.length, cursor, len(data)))
            return s._render(col, data[cursor:end]), col.length

        if col.length == -2:
            # NUL terminated C string
            end = data.find(b'\x00', cursor)
            if end < 0:
                raise ValueError('unterminated cstring at %d' % (cursor,))
            return s._render(col, data[cursor:end]), end - cursor + 1

        if col.length != -1:
            raise ValueError('unsupported attribute length %d' % (col.length,))

        vl = _structures.varlena(data[cursor:], s.session.layouts.toastpointer)

        if vl.kind == _structures.VarlenaKind.External:
            payload = s._external(col, vl.external)
            if isinstance(payload, str):
                # placeholder for a value that could not be resolved
                return payload, vl.wirelength
        elif vl.kind == _structures.VarlenaKind.Compressed:
            payload = s._decompress(col, vl.payload)
        else:
            payload = vl.payload

        return s._render(col, payload), vl.wirelength


    def _decompress(s, col, payload):
        ''' decompress an inline compressed value, reporting damage '''

        res = _pglz.decompress(payload)
        if not res.complete:
            s.session.diag.report(_Kind.StructuralMismatch, 'column %s: compressed data is damaged'
                                  % (col.name,))
        elif res.rawsize is not None and res.rawsize != len(res.data):
            s.session.diag.report(_Kind.StructuralMismatch, 'column %s: decompressed %d bytes, '
                                  'expected %d' % (col.name, len(res.data), res.rawsize))
        return res.data


    def _external(s, col, pointer):
        ''' Resolves an external pointer to its bytes, or a placeholder string '''

        session = s.session
        placeholder = '<external value %d>' % (pointer.valueid,)

        if s.toast is None:
            session.diag.report(_Kind.UnknownType, 'column %s: external value %d but no chunk '
                                'relation available' % (col.name, pointer.valueid))
            return placeholder

        if session.external_depth >= session.MAX_EXTERNAL_DEPTH:
            session.diag.report(_Kind.StructuralMismatch, 'column %s: nested external value %d'
                                % (col.name, pointer.valueid))
            return placeholder

        session.external_depth += 1
        try:
            data = s.toast.resolve(pointer.valueid)
        finally:
            session.external_depth -= 1

        if isinstance(data, str):
            return data

        # stored compressed when the stored size is smaller than the value
        if pointer.extsize < pointer.rawsize - 4:
            return s._decompress(col, data)
        return data


    def _render(s, col, data):
        ''' apply the renderer of the column, keeping the bytes on failure '''

        if col.name in s.overrides:
            renderer = s.overrides[col.name]
        else:
            renderer = s.session.renderer(col)

        try:
            return renderer.render(data)
        except (ValueError, IndexError, ArithmeticError) as e:
            s.session.diag.report(_Kind.StructuralMismatch, 'column %s: could not render value '
                                  '(%s), keeping raw bytes' % (col.name, e))
            return bytes(data)


################
# page scanner #
################


def decode_page(session, decoder, data, pagenumber):
    ''' Decodes all used slots of a single page.

    Returns a list of decoded_tuple objects. Tuples that failed to decode
    are included without values and with their error message set. '''

    diag = session.diag
    tuples = []

    with diag.scope('page %d' % (pagenumber,)):
        page = _structures.scan_page(data, session.layouts.pageheader, session.blocksize, diag)
        for item in page.slots:
            with diag.scope('tuple %d' % (item.slot,)):
                tupledata = data[item.offset:item.offset + item.length]
                res = decoder.decode(tupledata, pagenumber, item.slot)
                if isinstance(res, _decode_error):
                    res = empty_tuple(res)
                tuples.append(res)

    return tuples


def read_tuple(session, decoder, relation, pagenumber, slot):
    ''' Decodes the tuple at the given page and slot of a relation.

    Returns a decoded_tuple, a decode_error or None if the slot is not in
    use (or the page is rejected). '''

    diag = session.diag
    data = relation.page(pagenumber)

    with diag.scope('page %d' % (pagenumber,)):
        page = _structures.scan_page(data, session.layouts.pageheader, session.blocksize, diag)
        for item in page.slots:
            if item.slot == slot:
                with diag.scope('tuple %d' % (slot,)):
                    return decoder.decode(data[item.offset:item.offset + item.length],
                                          pagenumber, slot)
    return None


def scan_relation(session, name, relation, columns, toast=None, renderers=None):
    ''' Decodes all tuples of a relation.

    The columns argument is the (unordered) list of column objects of the
    relation. A gap in the column numbers is reported and aborts the scan
    before any tuple is decoded. Returns a list of decoded_tuple objects. '''

    diag = session.diag

    with diag.scope('table %s' % (name,)):
        try:
            schema = column_schema(name, columns)
        except _exceptions.SchemaGapException as e:
            diag.report(_Kind.SchemaGap, str(e))
            return []

        session.schemas[name] = schema
        decoder = TupleDecoder(session, schema, toast, renderers)

        tuples = []
        for blck in relation.blocks():
            tuples.extend(decode_page(session, decoder, blck.data(), blck.pagenumber))
        return tuples
