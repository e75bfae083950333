''' _database.py - the relation files of a single database in a data directory

Copyright (c) 2022 Netherlands Forensic Institute - MIT License

The column layout of every relation is stored in the catalogs of the database
itself. The pg_attribute catalog is read first, directly with the attribute
layout of the format revision, since its own column layout is needed to
decode anything else. With those columns the other catalogs (pg_database,
pg_type and pg_class) are decoded as ordinary tables.

NOTE: from 9.0 onwards the catalog files are found through the relation
mapper, which is not implemented. Catalog files that are named after their
oid are still found.
'''

import logging as _logging
from collections import namedtuple as _nt
from contextlib import ExitStack as _ExitStack
import os.path as _path

from . import _exceptions
from . import _layouts
from . import _structures
from . import _decode
from . import _toast
from ._session import DecodingSession
from ._block import Relation as _Relation
from ._diagnostics import DiagnosticKind as _Kind

_log = _logging.getLogger(__name__)

# fixed oids of the catalogs
PG_TYPE = 1247
PG_ATTRIBUTE = 1249
PG_CLASS = 1259
PG_DATABASE = 1262

# database that is always present and used to find the others
TEMPLATE_DATABASE = ('template1', 1)


class _relid(_nt('relid', 'name oid')):
    ''' identifies a relation file by name (before 7.1) or by oid '''

    __slots__ = ()

    def __str__(s):
        return '%s(%s)' % (s.name, s.oid)


# a relation described by pg_class
_table = _nt('table', 'name oid relkind relid toast columns')

# the result of scanning a table
_scan = _nt('scan', 'table rows diagnostics')


def _oid(value):
    ''' oids are unsigned, the default renderer reads them signed '''

    if value is None:
        return None
    return value & 0xffffffff


def _text(value, textencoding):
    if isinstance(value, bytes):
        return value.split(b'\x00', 1)[0].decode(textencoding, errors='replace')
    return value


def _char(value):
    ''' the "char" type, rendered as str or as small integer '''

    if isinstance(value, int):
        return chr(value & 0xff)
    return value


def _rowoid(tup):
    ''' the oid of a catalog row, from the header or from an oid column '''

    if tup.oid is not None:
        return tup.oid
    return _oid(tup.values.get('oid'))


def _current(rows, key):
    ''' Returns a dict of key to the most recent version of each row.

    Catalog files still hold the old versions of updated rows. A row without
    xmax wins over a deleted or updated one, otherwise the highest xmin wins.
    '''

    best = {}
    for row in rows:
        k = key(row)
        if k is None:
            continue
        known = best.get(k)
        if known is None or (row.xmax == 0, row.xmin) > (known.xmax == 0, known.xmin):
            best[k] = row
    return best


#####################
# attribute catalog #
#####################

# one pg_attribute row, with the fields needed to pick the current version
_attribute = _nt('attribute', 'attrelid xmin xmax column')


def _attribute_column(fields, textencoding):
    ''' converts the fields of an attribute record into a column object '''

    align = fields['attalign']
    if isinstance(align, int):
        align = chr(align)
    name = _text(fields['attname'], textencoding)
    return _decode.column(fields['attnum'], name, fields['atttypid'], fields['attlen'], align)


def read_attributes(session, relation):
    ''' Reads a pg_attribute relation with the attribute layout of the session.

    Returns a dict of relation oid to the list of its user columns. Only the
    current version of each (relation, column number) is kept. Dropped
    columns are kept as well, since their bytes are still present in old
    tuples.
    '''

    lyts = session.layouts
    diag = session.diag
    rows = []

    with diag.scope('catalog %s' % (relation.name,)):
        for blck in relation.blocks():
            data = blck.data()
            with diag.scope('page %d' % (blck.pagenumber,)):
                page = _structures.scan_page(data, lyts.pageheader, session.blocksize, diag)
                for item in page.slots:
                    with diag.scope('tuple %d' % (item.slot,)):
                        tupledata = data[item.offset:item.offset + item.length]
                        row = _attribute_row(session, tupledata)
                        if row is not None:
                            rows.append(row)

    current = _current(rows, lambda r: (r.attrelid, r.column.attnum))

    attributes = {}
    for (attrelid, attnum) in sorted(current):
        attributes.setdefault(attrelid, []).append(current[(attrelid, attnum)].column)
    return attributes


def _attribute_row(session, tupledata):
    ''' decodes a single pg_attribute tuple, None for skipped rows '''

    lyts = session.layouts
    diag = session.diag

    hdr = _structures.decode(lyts.tupleheader, tupledata)
    if hdr.error is not None:
        diag.report(_Kind.StructuralMismatch, 'tuple header: %s' % (hdr.error,))
        return None

    rec = _structures.decode(lyts.attribute, tupledata[hdr.fields['size']:])
    if rec.error is not None:
        diag.report(_Kind.StructuralMismatch, 'attribute record: %s' % (rec.error,))
        return None

    # system columns have negative numbers
    if rec.fields['attnum'] <= 0:
        return None

    try:
        column = _attribute_column(rec.fields, session.textencoding)
    except _exceptions.InvalidArgumentException as e:
        diag.report(_Kind.InvariantViolation, 'attribute record: %s' % (e,))
        return None

    return _attribute(rec.fields['attrelid'], hdr.fields['xmin'], hdr.fields['xmax'], column)


############
# database #
############


def read_revision(datapath):
    ''' Returns the format revision of the data directory '''

    filename = _path.join(datapath, 'PG_VERSION')
    try:
        with open(filename, 'rt') as f:
            version = f.readline()
    except OSError as e:
        raise _exceptions.UserFeedbackException('no PostgreSQL data directory at %s (%s)'
                                                % (datapath, e))
    return _layouts.revision_from_version(version)


class Database():
    ''' class representing one database of a PostgreSQL data directory '''

    def __init__(s, datapath, dbname, blocksize=8192, textencoding='utf-8'):
        ''' open the database with the given name in the given data directory

        All catalogs are read when the object is created, the tables are
        only decoded on request (see scan_table).
        '''

        s.datapath = _path.abspath(_path.expanduser(datapath))
        s.revision = read_revision(s.datapath)
        s.session = DecodingSession(s.revision, blocksize, textencoding, opener=s.relation_path)

        _log.info('data directory %s has format revision %d', s.datapath, s.revision)

        # the database list is shared, its columns are found via template1
        s.dbname, s.dboid = TEMPLATE_DATABASE
        attributes = s._attributes()
        databases = s._catalog(_relid('pg_database', PG_DATABASE), attributes)
        bydatname = _current(databases, lambda t: _text(t.values.get('datname'), textencoding))
        if dbname not in bydatname:
            raise _exceptions.UserFeedbackException('database %s not found in %s'
                                                    % (dbname, s.datapath))
        s.dbname = dbname
        s.dboid = _rowoid(bydatname[dbname])
        _log.info('database %s has oid %s', s.dbname, s.dboid)

        s.attributes = s._attributes()

        # type registry, type oid -> name
        types = _current(s._catalog(_relid('pg_type', PG_TYPE), s.attributes), _rowoid)
        s.types = {oid: _text(t.values.get('typname'), textencoding) for oid, t in types.items()}

        s.classes = {}
        for oid, row in _current(s._catalog(_relid('pg_class', PG_CLASS), s.attributes),
                                 _rowoid).items():
            s.classes[oid] = row

        s.tables = {}
        for oid, row in s.classes.items():
            tbl = s._classtable(oid, row)
            if tbl.relkind == 'r':
                s.tables[tbl.name] = tbl

        # catalogs are decoded with the bare default renderers, user tables
        # get the renderers of their types
        s.session.types.update(s.types)


    def _attributes(s):
        with s.session.open_relation(_relid('pg_attribute', PG_ATTRIBUTE)) as rel:
            return read_attributes(s.session, rel)


    def _catalog(s, relid, attributes):
        ''' Returns the decoded rows of a catalog '''

        if relid.oid not in attributes:
            raise _exceptions.UserFeedbackException('no column information for catalog %s'
                                                     % (relid,))
        with s.session.open_relation(relid) as rel:
            rows = _decode.scan_relation(s.session, relid.name, rel, attributes[relid.oid])
        return [r for r in rows if r.error is None]


    def _classrelid(s, oid):
        ''' Returns the relid of the relation with the given pg_class oid '''

        row = s.classes[oid]
        relfilenode = _oid(row.values.get('relfilenode')) or oid
        return _relid(_text(row.values.get('relname'), s.session.textencoding), relfilenode)


    def _classtable(s, oid, row):
        ''' Returns a table object for a pg_class row '''

        toast = None
        toastrelid = _oid(row.values.get('reltoastrelid'))
        if toastrelid:
            if toastrelid in s.classes:
                toast = s._classrelid(toastrelid)
            else:
                _log.warning('chunk relation %d of %s not in pg_class',
                             toastrelid, _text(row.values.get('relname'), s.session.textencoding))

        relid = s._classrelid(oid)
        return _table(relid.name, oid, _char(row.values.get('relkind')), relid, toast,
                      s.attributes.get(oid, []))


    def relation_path(s, relid):
        ''' Returns the filename of the relation with the given relid.

        Raises RelationOpenException when the file does not exist. '''

        if s.revision < 71:
            choices = [_path.join(s.datapath, relid.name),
                       _path.join(s.datapath, 'base', s.dbname, relid.name)]
        else:
            choices = [_path.join(s.datapath, 'global', str(relid.oid)),
                       _path.join(s.datapath, 'base', str(s.dboid), str(relid.oid))]

        for filename in choices:
            if _path.exists(filename):
                return filename
        raise _exceptions.RelationOpenException('could not find relation %s' % (relid,))


    @property
    def tablenames(s):
        return sorted(s.tables)


    def scan_table(s, name, columns=None, renderers=None):
        ''' Decodes all tuples of the table with the given name.

        The columns argument overrides the columns from the catalog (see
        _sql.parse_create_table), renderers can map column names to
        renderers. Returns a scan object with the table, the list of
        decoded_tuple objects and the diagnostics reported during the scan.
        A table file that can not be opened gives an empty list of rows.
        '''

        if name not in s.tables:
            raise _exceptions.UserFeedbackException('no such table: %s' % (name,))
        table = s.tables[name]
        if columns is None:
            columns = table.columns

        diag = s.session.diag
        start = len(diag.diagnostics)
        rows = []

        with _ExitStack() as stack:
            try:
                rel = stack.enter_context(s.session.open_relation(table.relid))
            except _exceptions.RelationOpenException as e:
                with diag.scope('table %s' % (name,)):
                    diag.report(_Kind.RelationOpen, str(e))
                return _scan(table, rows, diag.diagnostics[start:])

            toast = None
            if table.toast is not None:
                try:
                    toastrel = stack.enter_context(s.session.open_relation(table.toast))
                except _exceptions.RelationOpenException as e:
                    _log.warning('table %s: external values not available (%s)', name, e)
                else:
                    toast = _toast.ToastIndex(s.session, toastrel).build()

            rows = _decode.scan_relation(s.session, name, rel, columns, toast, renderers)

        return _scan(table, rows, diag.diagnostics[start:])


def scan_file(session, source, name, columns, renderers=None):
    ''' Decodes all tuples of a single relation file without catalogs.

    The source is a filename or a binary file-like object. Returns a scan
    object like Database.scan_table, with table set to None. '''

    diag = session.diag
    start = len(diag.diagnostics)
    with _Relation(source, session.blocksize, name=name) as rel:
        rows = _decode.scan_relation(session, name, rel, columns, renderers=renderers)
    return _scan(None, rows, diag.diagnostics[start:])
