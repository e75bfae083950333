#!/usr/bin/env python3

''' _cmdline.py - minimal commandline interface for xpgfsck

Copyright (c) 2022 Netherlands Forensic Institute - MIT License
'''

import sys as _sys
import logging as _logging
import argparse as _argparse
from collections import Counter as _Counter
from os import path as _path

from ._database import Database
from ._database import read_revision as _read_revision
from ._database import scan_file as _scan_file
from ._session import DecodingSession
from . import _export
from . import _sql
from . import _exceptions


def _parser():
    ''' argument parser '''

    parser = _argparse.ArgumentParser(
        prog='xpgfsck',
        formatter_class = _argparse.RawDescriptionHelpFormatter,
        description = 'PostgreSQL heap file checker and decoder of last resort. ',
        epilog = 'Example usage: \n' +\
                 ' xpgfsck info /var/lib/postgresql/data mydb --tables\n' +\
                 ' xpgfsck check /var/lib/postgresql/data mydb --table customers\n' +\
                 ' xpgfsck export /var/lib/postgresql/data mydb customers output.xlsx\n' +\
                 ' xpgfsck raw /var/lib/postgresql/data 16384 --schema "create table t (a int4, b text)"\n' +\
                 '\n'
        )

    parser.add_argument('--version', help='print version and exit', action='store_true',
                        default=False)
    parser.add_argument('--blocksize', metavar='BLOCKSIZE', type=int, default=8192,
                        help='size of a page in bytes (default 8192)')
    parser.add_argument('--encoding', metavar='ENCODING', default='utf-8',
                        help='encoding of text values (default utf-8)')
    parser.add_argument('-v', '--verbose', action='count', default=0,
                        help='show progress (-v) and debug output (-vv)')
    parser.add_argument('-q', '--quiet', action='store_true', default=False,
                        help='do not show the diagnostics while decoding')

    subparsers = parser.add_subparsers(help='sub-command help', dest='command')

    info = subparsers.add_parser('info', help='show information about database')
    info.add_argument('datadir', metavar='DATADIR', help='data directory (containing PG_VERSION)')
    info.add_argument('dbname', metavar='DBNAME', help='name of the database')
    info.add_argument('--tables', action="store_true", help='print list of tables to stdout')
    info.add_argument('--table_info', action="store_true", help='print columns of all tables to stdout')

    check = subparsers.add_parser('check', help='decode tables and report inconsistencies')
    check.add_argument('datadir', metavar='DATADIR', help='data directory (containing PG_VERSION)')
    check.add_argument('dbname', metavar='DBNAME', help='name of the database')
    check.add_argument('--table', metavar='TABLE', help='limit to single table')

    dump = subparsers.add_parser('dump', help='dump table as tsv to stdout')
    dump.add_argument('datadir', metavar='DATADIR', help='data directory (containing PG_VERSION)')
    dump.add_argument('dbname', metavar='DBNAME', help='name of the database')
    dump.add_argument('table', metavar='TABLE', help='name of table to dump')
    dump.add_argument('--schema', metavar='SQL', help='CREATE TABLE statement to use instead of the catalog')

    export = subparsers.add_parser('export', help='export table and diagnostics to file')
    export.add_argument('datadir', metavar='DATADIR', help='data directory (containing PG_VERSION)')
    export.add_argument('dbname', metavar='DBNAME', help='name of the database')
    export.add_argument('table', metavar='TABLE', help='name of table to export')
    export.add_argument('outfile', metavar='OUTFILE', help='output filename (xlsx) or nameprefix (tsv)')
    export.add_argument('--tsv', action="store_true", help='export to tsv instead of xlsx')
    export.add_argument('--schema', metavar='SQL', help='CREATE TABLE statement to use instead of the catalog')

    raw = subparsers.add_parser('raw', help='dump a single relation file as tsv, without catalogs')
    raw.add_argument('datadir', metavar='DATADIR', help='data directory (containing PG_VERSION)')
    raw.add_argument('relfile', metavar='RELFILE', help='relation file, relative to DATADIR or absolute')
    raw.add_argument('--schema', metavar='SQL', required=True, help='CREATE TABLE statement of the relation')

    return parser


def _logging_config(args):
    ''' configure the logging of diagnostics and progress '''

    if args.quiet is True:
        level = 'error'
    elif args.verbose >= 2:
        level = 'debug'
    elif args.verbose == 1:
        level = 'info'
    else:
        level = 'warning'
    _logging.basicConfig(format='%(levelname)s: %(message)s', stream=_sys.stderr,
                         level=getattr(_logging, level.upper()))


def main():
    ''' entry point '''

    parser = _parser()
    args = parser.parse_args()

    if args.version is True:
        version()

    commands = {'info': dbinfo, 'check': check, 'dump': dump, 'export': export, 'raw': raw}
    if args.command not in commands:
        parser.print_help()
        _sys.exit()

    _logging_config(args)

    try:
        commands[args.command](args)
    except (_exceptions.UserFeedbackException, _exceptions.RelationOpenException) as e:
        print(e)
        _sys.exit(1)
    _sys.exit()


def _database(args):
    return Database(args.datadir, args.dbname, args.blocksize, args.encoding)


def _columns(args, db):
    ''' the columns from --schema, or None to use the catalog '''

    if args.schema is None:
        return None
    tabledef = _sql.parse_create_table(args.schema, db.revision)
    for typeid, typname in tabledef.types.items():
        db.session.types.setdefault(typeid, typname)
    return tabledef.columns


def dbinfo(args):
    ''' print revision and tables '''

    db = _database(args)

    print('format revision: %d' % (db.revision,))
    print('database oid   : %s' % (db.dboid,))
    print('tables         : %d' % (len(db.tables),))

    if args.tables is True:
        for tbln in db.tablenames:
            print(tbln)

    if args.table_info is True:
        for tbln in db.tablenames:
            tbl = db.tables[tbln]
            print(tbln)
            print("="*len(tbln))
            print("file   : %s" % (tbl.relid,))
            print("toast  : %s" % (tbl.toast,))
            for col in tbl.columns:
                print("  %3d %-32s %-16s len %3d align %d" % (col.attnum, col.name,
                      db.types.get(col.typeid, col.typeid), col.length, col.align))


def check(args):
    ''' decode one or all tables and print a summary of the diagnostics '''

    db = _database(args)

    if args.table is not None:
        tablenames = [args.table]
    else:
        tablenames = db.tablenames

    total = 0
    for tbln in tablenames:
        scan = db.scan_table(tbln)
        kinds = _Counter(d.kind.name for d in scan.diagnostics)
        summary = ', '.join('%s %d' % (k, kinds[k]) for k in sorted(kinds))
        print('%s: %d tuples, %d diagnostics%s' % (tbln, len(scan.rows), len(scan.diagnostics),
                                                  ' (%s)' % (summary,) if summary else ''))
        total += len(scan.diagnostics)

    print('total diagnostics: %d' % (total,))


def dump(args):
    ''' dump a single table as tsv to stdout '''

    db = _database(args)
    columns = _columns(args, db)
    scan = db.scan_table(args.table, columns)
    names = [c.name for c in (columns or scan.table.columns)]
    _export.dump_tsv(scan, names, _sys.stdout)


def export(args):
    ''' export a single table to xlsx or tsv '''

    db = _database(args)
    columns = _columns(args, db)
    scan = db.scan_table(args.table, columns)
    names = [c.name for c in (columns or scan.table.columns)]

    if args.tsv is True:
        _export.export_tsv(scan, names, args.outfile)
    else:
        _export.export_xlsx(scan, names, args.outfile)


def raw(args):
    ''' decode a relation file with a given table definition '''

    revision = _read_revision(args.datadir)
    tabledef = _sql.parse_create_table(args.schema, revision)
    session = DecodingSession(revision, args.blocksize, args.encoding, types=tabledef.types)

    relfile = args.relfile
    if not _path.isabs(relfile):
        relfile = _path.join(args.datadir, relfile)

    scan = _scan_file(session, relfile, tabledef.name, tabledef.columns)
    _export.dump_tsv(scan, [c.name for c in tabledef.columns], _sys.stdout)


def version():
    ''' print the version of xpgfsck '''

    _modulepath = _path.abspath(__file__)
    _moduledir = _path.split(_modulepath)[0]
    _versionfile = _path.join(_moduledir, 'VERSION')
    with open(_versionfile, 'rt') as f:
        version = f.readline()
        print(version)
    _sys.exit()


if __name__ == "__main__":
    main()
