''' test_decode.py - tuple decoder and relation scan

Copyright (c) 2022 Netherlands Forensic Institute - MIT License
'''

import struct

import pytest

from xpgfsck import _decode
from xpgfsck import _exceptions
from xpgfsck._block import Relation
from xpgfsck._diagnostics import DiagnosticKind
from xpgfsck._render import ValueRenderer
from xpgfsck._session import DecodingSession

import pgbuild


def _int4(attnum, name):
    return _decode.column(attnum, name, 23, 4, 'i')


def _text(attnum, name):
    return _decode.column(attnum, name, 25, -1, 'i')


def _decoder(session, columns, **kwargs):
    return _decode.TupleDecoder(session, _decode.column_schema('t', columns), **kwargs)


#################
# column schema #
#################

def test_column_alignment_codes():
    assert _decode.column(1, 'a', 23, 4, 'i').align == 4
    assert _decode.column(1, 'a', 20, 8, b'd').align == 8
    assert _decode.column(1, 'a', 21, 2, 2).align == 2
    with pytest.raises(_exceptions.InvalidArgumentException):
        _decode.column(1, 'a', 23, 4, 'x')


def test_column_schema_orders_columns():
    schema = _decode.column_schema('t', [_int4(2, 'b'), _int4(1, 'a')])
    assert [c.name for c in schema] == ['a', 'b']


def test_column_schema_gap():
    with pytest.raises(_exceptions.SchemaGapException) as e:
        _decode.column_schema('t', [_int4(1, 'a'), _int4(3, 'c')])
    assert e.value.missing == 2


def test_column_schema_duplicate():
    with pytest.raises(_exceptions.AssumptionBrokenException):
        _decode.column_schema('t', [_int4(1, 'a'), _int4(1, 'b')])


#################
# tuple decoder #
#################

def test_oid_column_default(typed_session):
    col = _decode.column(1, 'oid', 26, 4, 'i')
    tup = _decoder(typed_session, [col]).decode(pgbuild.heaptuple(1, b'\x01\x00\x00\x00'))
    assert tup.error is None
    assert tup.values['oid'] == 1
    assert typed_session.diag.count() == 0


def test_header_fields(session):
    data = pgbuild.heaptuple(1, pgbuild.int4(7), xmin=1234, xmax=99, oid=5555)
    tup = _decoder(session, [_int4(1, 'a')]).decode(data, 3, 4)
    assert (tup.page, tup.tuple) == (3, 4)
    assert (tup.xmin, tup.xmax, tup.oid) == (1234, 99, 5555)
    assert tup.values['a'] == 7
    assert tup.complete is True


def test_null_bitmap(session):
    columns = [_int4(n, 'c%d' % (n,)) for n in range(1, 9)]
    present = [bool(0b10110001 & (1 << i)) for i in range(8)]
    data = pgbuild.heaptuple(8, b''.join(pgbuild.int4(v) for v in (10, 50, 60, 80)),
                             present=present)

    tup = _decoder(session, columns).decode(data)

    assert list(tup.values.values()) == [10, None, None, None, 50, 60, None, 80]
    assert session.diag.count() == 0


def test_columns_beyond_natts_are_null(session):
    data = pgbuild.heaptuple(1, pgbuild.int4(3))
    tup = _decoder(session, [_int4(1, 'a'), _int4(2, 'b')]).decode(data)
    assert tup.values == {'a': 3, 'b': None}
    assert tup.complete is True


def test_natts_exceeds_schema(session):
    data = pgbuild.heaptuple(2, pgbuild.int4(1) + pgbuild.int4(2))
    res = _decoder(session, [_int4(1, 'a')]).decode(data, 0, 1)
    assert isinstance(res, _decode._decode_error)
    assert session.diag.count(DiagnosticKind.StructuralMismatch) == 1


def test_size_exceeds_tuple(session):
    data = pgbuild.heaptuple(1, pgbuild.int4(1))[:30]
    res = _decoder(session, [_int4(1, 'a')]).decode(data)
    assert isinstance(res, _decode._decode_error)
    assert session.diag.count(DiagnosticKind.BoundsViolation) == 1


def test_no_alignment_after_short_varlena(session):
    # 'ab' in a 1-byte header takes 3 bytes, the int4 follows without padding
    data = pgbuild.heaptuple(2, pgbuild.varlena_1b(b'ab') + pgbuild.int4(5))
    tup = _decoder(session, [_text(1, 'a'), _int4(2, 'b')]).decode(data)
    assert tup.values['a'] == 'ab'
    assert tup.values['b'] == 5
    assert session.diag.count() == 0


def test_no_alignment_after_short_varlena_even_value(session):
    # the low byte of 4 is even, so only the preceding header tells there is no padding
    data = pgbuild.heaptuple(2, pgbuild.varlena_1b(b'ab') + pgbuild.int4(4))
    tup = _decoder(session, [_text(1, 'a'), _int4(2, 'b')]).decode(data)
    assert tup.values == {'a': 'ab', 'b': 4}
    assert tup.complete is True
    assert session.diag.count() == 0


def test_no_alignment_after_short_varlena_and_null(session):
    present = [True, False, True]
    data = pgbuild.heaptuple(3, pgbuild.varlena_1b(b'ab') + pgbuild.int4(8), present=present)
    tup = _decoder(session, [_text(1, 'a'), _int4(2, 'b'), _int4(3, 'c')]).decode(data)
    assert tup.values == {'a': 'ab', 'b': None, 'c': 8}
    assert session.diag.count() == 0


def test_alignment_padding(session):
    # a 4-byte header value of 7 bytes is followed by one byte of padding
    data = pgbuild.heaptuple(2, pgbuild.varlena_4b(b'abc') + b'\x00' + pgbuild.int4(4))
    tup = _decoder(session, [_text(1, 'a'), _int4(2, 'b')]).decode(data)
    assert tup.values == {'a': 'abc', 'b': 4}
    assert session.diag.count() == 0


def test_varlena_4b_and_text(typed_session):
    data = pgbuild.heaptuple(2, pgbuild.varlena_4b('héllo'.encode('utf-8')) + b'\x00\x00'
                             + pgbuild.int4(6))
    tup = _decoder(typed_session, [_text(1, 'a'), _int4(2, 'b')]).decode(data)
    assert tup.values == {'a': 'héllo', 'b': 6}


def test_compressed_inline(typed_session):
    stream = struct.pack('<I', 6) + bytes([0b00000010]) + b'A' + bytes([0x02, 0x01])
    data = pgbuild.heaptuple(1, pgbuild.varlena_4b(stream, compressed=True))
    tup = _decoder(typed_session, [_text(1, 'a')]).decode(data)
    assert tup.values['a'] == 'AAAAAA'
    assert typed_session.diag.count() == 0


def test_damaged_compressed_inline(typed_session):
    stream = struct.pack('<I', 6) + bytes([0b00000010]) + b'A' + bytes([0x02, 0x09])
    data = pgbuild.heaptuple(1, pgbuild.varlena_4b(stream, compressed=True))
    tup = _decoder(typed_session, [_text(1, 'a')]).decode(data)
    assert tup.values['a'] == 'A'
    assert typed_session.diag.count(DiagnosticKind.StructuralMismatch) == 1


def test_value_past_end(session):
    data = pgbuild.heaptuple(2, pgbuild.int4(1) + b'\x02\x00')
    tup = _decoder(session, [_int4(1, 'a'), _int4(2, 'b')]).decode(data)
    assert tup.values == {'a': 1}
    assert tup.complete is False
    assert session.diag.count(DiagnosticKind.BoundsViolation) == 1


def test_trailing_bytes(session):
    data = pgbuild.heaptuple(1, pgbuild.int4(1) + bytes(8))
    tup = _decoder(session, [_int4(1, 'a')]).decode(data)
    assert tup.values == {'a': 1}
    assert session.diag.count(DiagnosticKind.StructuralMismatch) == 1


def test_cstring(session):
    col = _decode.column(1, 's', 2275, -2, 'c')
    data = pgbuild.heaptuple(2, b'abc\x00' + pgbuild.int4(2))
    tup = _decoder(session, [col, _int4(2, 'n')]).decode(data)
    assert tup.values == {'s': 'abc', 'n': 2}


def test_unknown_type(typed_session):
    col = _decode.column(1, 'x', 9999, 8, 'd')
    data = pgbuild.heaptuple(1, b'abcdefgh')
    tup = _decoder(typed_session, [col]).decode(data)
    assert tup.values['x'] == 'abcdefgh'
    assert typed_session.diag.count(DiagnosticKind.UnknownType) == 1


class _Broken(ValueRenderer):
    ''' fails deep down, leaving a scope behind '''

    def __init__(s, diag):
        s.diag = diag

    def render(s, data):
        s.diag.push('deep')
        raise TypeError('renderer bug')


class _Upper(ValueRenderer):

    def render(s, data):
        return bytes(data).decode('ascii').upper()


def test_column_renderer_override(typed_session):
    data = pgbuild.heaptuple(1, pgbuild.varlena_1b(b'abc'))
    tup = _decoder(typed_session, [_text(1, 'a')], renderers={'a': _Upper()}).decode(data)
    assert tup.values['a'] == 'ABC'


def test_unexpected_failure_is_contained(session):
    diag = session.diag
    data = pgbuild.heaptuple(1, pgbuild.int4(1))
    decoder = _decoder(session, [_int4(1, 'a')], renderers={'a': _Broken(diag)})

    with diag.scope('tuple 1'):
        res = decoder.decode(data, 0, 1)
        assert diag.stack == ['tuple 1']

    assert isinstance(res, _decode._decode_error)
    assert 'renderer bug' in res.message
    assert diag.diagnostics[-1].kind == DiagnosticKind.DecodeException
    assert diag.diagnostics[-1].context == 'tuple 1'


class _Lost(ValueRenderer):
    ''' fails with an error no decoder step expects '''

    def render(s, data):
        raise RuntimeError('lost state')


def test_any_failure_is_contained(session):
    data = pgbuild.heaptuple(1, pgbuild.int4(1))
    res = _decoder(session, [_int4(1, 'a')], renderers={'a': _Lost()}).decode(data, 0, 1)

    assert isinstance(res, _decode._decode_error)
    assert res.message == 'RuntimeError: lost state'
    assert session.diag.count(DiagnosticKind.DecodeException) == 1


def test_damaged_date_keeps_other_columns():
    session = DecodingSession(pgbuild.REVISION, pgbuild.BLOCKSIZE, types={23: 'int4', 1082: 'date'})
    columns = [_int4(1, 'id'), _decode.column(2, 'born', 1082, 4, 'i')]
    days = struct.pack('<i', 2**31 - 2)
    data = pgbuild.heaptuple(2, pgbuild.int4(7) + days)

    tup = _decoder(session, columns).decode(data)

    assert tup.error is None
    assert tup.values == {'id': 7, 'born': days}
    assert tup.complete is True
    assert session.diag.count(DiagnosticKind.StructuralMismatch) == 1


def test_external_without_index(typed_session):
    data = pgbuild.heaptuple(1, pgbuild.external(42, 104, 100))
    tup = _decoder(typed_session, [_text(1, 'a')]).decode(data)
    assert tup.values['a'] == '<external value 42>'
    assert typed_session.diag.count(DiagnosticKind.UnknownType) == 1


##################
# relation scans #
##################

def test_decode_page_keeps_failed_tuples(session):
    good = pgbuild.heaptuple(1, pgbuild.int4(1))
    bad = pgbuild.heaptuple(3, pgbuild.int4(1) * 3)
    decoder = _decoder(session, [_int4(1, 'a')])

    with session.diag.scope('table t'):
        tuples = _decode.decode_page(session, decoder, pgbuild.page([good, bad]), 0)

    assert [t.tuple for t in tuples] == [1, 2]
    assert tuples[0].values == {'a': 1}
    assert tuples[1].error is not None
    assert tuples[1].values == {}
    assert session.diag.diagnostics[0].context == 'table t : page 0 : tuple 2'


def test_scan_relation(session):
    first = pgbuild.page([pgbuild.heaptuple(1, pgbuild.int4(n)) for n in (1, 2)])
    second = pgbuild.page([pgbuild.heaptuple(1, pgbuild.int4(3))])
    with Relation(pgbuild.relation_stream(first, second), pgbuild.BLOCKSIZE, 't') as rel:
        tuples = _decode.scan_relation(session, 't', rel, [_int4(1, 'a')])

    assert [(t.page, t.tuple, t.values['a']) for t in tuples] == [(0, 1, 1), (0, 2, 2), (1, 1, 3)]
    assert [c.name for c in session.schemas['t']] == ['a']
    assert session.diag.stack == []


def test_scan_relation_skips_bad_page(session):
    bad = bytearray(pgbuild.page([pgbuild.heaptuple(1, pgbuild.int4(1))]))
    struct.pack_into('<H', bad, 12, 22)
    good = pgbuild.page([pgbuild.heaptuple(1, pgbuild.int4(2))])
    with Relation(pgbuild.relation_stream(bytes(bad), good), pgbuild.BLOCKSIZE, 't') as rel:
        tuples = _decode.scan_relation(session, 't', rel, [_int4(1, 'a')])

    assert [t.values['a'] for t in tuples] == [2]
    assert session.diag.diagnostics[0].context == 'table t : page 0'


def test_schema_gap_aborts_scan(session):
    columns = [_int4(n, 'c%d' % (n,)) for n in (1, 2, 4, 5)]
    data = pgbuild.heaptuple(5, pgbuild.int4(1) * 5)
    with Relation(pgbuild.relation_stream(pgbuild.page([data])), pgbuild.BLOCKSIZE, 't') as rel:
        tuples = _decode.scan_relation(session, 't', rel, columns)

    assert tuples == []
    assert session.diag.count() == 1
    assert session.diag.count(DiagnosticKind.SchemaGap) == 1
    assert 't' not in session.schemas
