''' test_database.py - catalogs and table scans of a synthetic data directory

Copyright (c) 2022 Netherlands Forensic Institute - MIT License
'''

import pytest

from xpgfsck import _database
from xpgfsck import _exceptions
from xpgfsck import _sql
from xpgfsck._session import DecodingSession
from xpgfsck._diagnostics import DiagnosticKind

from pgbuild import DBOID, TABLE, TOAST


def test_catalogs(datadir):
    db = _database.Database(str(datadir), 'mydb')

    assert db.revision == 80
    assert db.dboid == DBOID
    assert db.types[25] == 'text'
    assert db.tablenames == ['customers', 'pg_type']

    tbl = db.tables['customers']
    assert tbl.relkind == 'r'
    assert tbl.relid == ('customers', TABLE)
    assert tbl.toast == ('pg_toast_%d' % (TABLE,), TOAST)
    assert [(c.attnum, c.name) for c in tbl.columns] == [(1, 'id'), (2, 'note')]


def test_scan_table(datadir):
    db = _database.Database(str(datadir), 'mydb')
    scan = db.scan_table('customers')

    assert [dict(t.values) for t in scan.rows] == [{'id': 1, 'note': 'a long note'},
                                                  {'id': 2, 'note': 'short'}]
    assert [(t.page, t.tuple) for t in scan.rows] == [(0, 1), (0, 2)]
    assert scan.diagnostics == []
    assert db.session.diag.stack == []


def test_scan_table_with_schema(datadir):
    db = _database.Database(str(datadir), 'mydb')
    tabledef = _sql.parse_create_table('create table customers (id int4, note text)', db.revision)
    scan = db.scan_table('customers', tabledef.columns)
    assert [t.values['note'] for t in scan.rows] == ['a long note', 'short']


def test_scan_table_without_toast_file(datadir):
    (datadir / 'base' / str(DBOID) / str(TOAST)).unlink()
    db = _database.Database(str(datadir), 'mydb')
    scan = db.scan_table('customers')
    assert [t.values['note'] for t in scan.rows] == ['<external value 7>', 'short']
    assert len(scan.diagnostics) == 1
    assert scan.diagnostics[0].kind == DiagnosticKind.UnknownType


def test_scan_table_without_file(datadir):
    (datadir / 'base' / str(DBOID) / str(TABLE)).unlink()
    db = _database.Database(str(datadir), 'mydb')
    scan = db.scan_table('customers')
    assert scan.rows == []
    assert len(scan.diagnostics) == 1
    assert scan.diagnostics[0].kind == DiagnosticKind.RelationOpen
    assert scan.diagnostics[0].context == 'table customers'
    assert db.session.diag.stack == []


def test_unknown_table(datadir):
    db = _database.Database(str(datadir), 'mydb')
    with pytest.raises(_exceptions.UserFeedbackException):
        db.scan_table('orders')


def test_unknown_database(datadir):
    with pytest.raises(_exceptions.UserFeedbackException):
        _database.Database(str(datadir), 'otherdb')


def test_not_a_data_directory(tmp_path):
    with pytest.raises(_exceptions.UserFeedbackException):
        _database.Database(str(tmp_path), 'mydb')


def test_relation_path_before_71(tmp_path):
    db = _database.Database.__new__(_database.Database)
    db.datapath = str(tmp_path)
    db.revision = 65
    db.dbname = 'mydb'
    db.dboid = DBOID

    (tmp_path / 'base' / 'mydb').mkdir(parents=True)
    (tmp_path / 'base' / 'mydb' / 'customers').write_bytes(b'')
    (tmp_path / 'pg_database').write_bytes(b'')

    relid = _database._relid('customers', TABLE)
    assert db.relation_path(relid) == str(tmp_path / 'base' / 'mydb' / 'customers')
    assert db.relation_path(_database._relid('pg_database', 1262)) == str(tmp_path / 'pg_database')
    with pytest.raises(_exceptions.RelationOpenException):
        db.relation_path(_database._relid('orders', 1))


def test_scan_file(datadir):
    tabledef = _sql.parse_create_table('create table customers (id int4, note text)')
    session = DecodingSession(80, types=tabledef.types)
    scan = _database.scan_file(session, str(datadir / 'base' / str(DBOID) / str(TABLE)),
                               tabledef.name, tabledef.columns)
    assert scan.table is None
    assert [t.values['id'] for t in scan.rows] == [1, 2]
    assert scan.rows[0].values['note'] == '<external value 7>'
