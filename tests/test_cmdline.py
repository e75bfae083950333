''' test_cmdline.py - the xpgfsck command

Copyright (c) 2022 Netherlands Forensic Institute - MIT License
'''

import sys

import pytest

from xpgfsck import _cmdline

from pgbuild import DBOID, TABLE


def _run(monkeypatch, *args):
    monkeypatch.setattr(sys, 'argv', ['xpgfsck'] + list(args))
    with pytest.raises(SystemExit) as e:
        _cmdline.main()
    return e.value.code


def test_info(monkeypatch, capsys, datadir):
    assert _run(monkeypatch, 'info', str(datadir), 'mydb', '--tables') in (None, 0)
    out = capsys.readouterr().out
    assert 'format revision: 80' in out
    assert 'customers' in out


def test_dump(monkeypatch, capsys, datadir):
    _run(monkeypatch, '-q', 'dump', str(datadir), 'mydb', 'customers')
    lines = capsys.readouterr().out.splitlines()
    assert lines[0] == 'page\ttuple\toid\txmin\txmax\tid\tnote'
    assert lines[1].endswith('\t1\ta long note')
    assert len(lines) == 3


def test_check(monkeypatch, capsys, datadir):
    _run(monkeypatch, '-q', 'check', str(datadir), 'mydb', '--table', 'customers')
    out = capsys.readouterr().out
    assert 'customers: 2 tuples, 0 diagnostics' in out


def test_raw(monkeypatch, capsys, datadir):
    relfile = 'base/%d/%d' % (DBOID, TABLE)
    _run(monkeypatch, '-q', 'raw', str(datadir), relfile, '--schema',
         'create table customers (id int4, note text)')
    lines = capsys.readouterr().out.splitlines()
    assert lines[2].endswith('\t2\tshort')


def test_export_tsv(monkeypatch, datadir, tmp_path):
    prefix = str(tmp_path / 'customers')
    _run(monkeypatch, '-q', 'export', str(datadir), 'mydb', 'customers', prefix, '--tsv')
    assert (tmp_path / 'customers_rows.tsv').exists()


def test_user_error(monkeypatch, capsys, datadir):
    assert _run(monkeypatch, '-q', 'dump', str(datadir), 'mydb', 'orders') == 1
    assert 'no such table: orders' in capsys.readouterr().out


def test_check_missing_table_file(monkeypatch, capsys, datadir):
    (datadir / 'base' / str(DBOID) / str(TABLE)).unlink()
    _run(monkeypatch, '-q', 'check', str(datadir), 'mydb', '--table', 'customers')
    out = capsys.readouterr().out
    assert 'customers: 0 tuples, 1 diagnostics (RelationOpen 1)' in out


def test_dump_with_schema(monkeypatch, capsys, datadir):
    _run(monkeypatch, '-q', 'dump', str(datadir), 'mydb', 'customers', '--schema',
         'CREATE TABLE customers (id int4, note text)')
    lines = capsys.readouterr().out.splitlines()
    assert lines[0] == 'page\ttuple\toid\txmin\txmax\tid\tnote'
    assert lines[2].endswith('\t2\tshort')
