''' _sql.py - parse a user supplied table definition

Copyright (c) 2022 Netherlands Forensic Institute - MIT License

When the catalog rows of a table are lost, its tuples can still be decoded if
the column layout is known. This module parses a minimal CREATE TABLE
statement of the form::

    CREATE TABLE name (column type [, column type ...])

into a list of column objects. Only builtin types with a known storage
layout can be used. Constraints, defaults and array types are not supported.

The modgrammar module is used to define the grammar.
'''

from modgrammar import Grammar as _Grammar
from modgrammar import WORD as _W
from modgrammar import LITERAL as _L
from modgrammar import OPTIONAL as _OPTIONAL
from modgrammar import LIST_OF as _LIST_OF
from modgrammar import WHITESPACE as _WS
from modgrammar import ParseError as _ParseError
from collections import namedtuple as _nt
import re as _re

from . import _decode
from . import _exceptions


###########
# Grammar #
###########

# set default behavior for whitespace handling to explicit
grammar_whitespace_mode = 'explicit'


class _DoubleQuoted(_Grammar):
    ''' Grammar for double quoted identifiers. '''
    grammar = (_L('"'), _W('^"'), _L('"'))


class _Name(_Grammar):
    ''' Grammar for table and column names. '''
    grammar = (_DoubleQuoted | _W('A-Za-z_', 'A-Za-z0-9_$'))


class _TypeModifier(_Grammar):
    ''' Grammar for a type modifier such as (20) or (10, 2). '''
    grammar = (_L('('), _OPTIONAL(_WS),
               _LIST_OF(_W('0-9'), sep=(_OPTIONAL(_WS), _L(','), _OPTIONAL(_WS))),
               _OPTIONAL(_WS), _L(')'))


class _TypeName(_Grammar):
    ''' Grammar for (multi word) type names like 'double precision'. '''
    grammar = (_LIST_OF(_W('A-Za-z_', 'A-Za-z0-9_'), sep=_WS),
               _OPTIONAL(_OPTIONAL(_WS), _TypeModifier))


class _ColumnDef(_Grammar):
    ''' Grammar for a single column definition. '''
    grammar = (_Name, _WS, _TypeName)


class _CreateTable(_Grammar):
    ''' Grammar for the CREATE TABLE statement. '''
    grammar = (_OPTIONAL(_WS),
               _L('CREATE'), _WS, _L('TABLE'), _WS,
               _Name,
               _OPTIONAL(_WS), _L('('), _OPTIONAL(_WS),
               _LIST_OF(_ColumnDef, sep=(_OPTIONAL(_WS), _L(','), _OPTIONAL(_WS))),
               _OPTIONAL(_WS), _L(')'),
               _OPTIONAL(_WS), _OPTIONAL(_L(';')), _OPTIONAL(_WS))


#########
# Types #
#########

# builtin type: oid, canonical name, storage length and alignment code
_builtin = _nt('builtin', 'typeid typname length align')

_BUILTINS = {
    'bool': _builtin(16, 'bool', 1, 'c'),
    'boolean': _builtin(16, 'bool', 1, 'c'),
    'bytea': _builtin(17, 'bytea', -1, 'i'),
    'name': _builtin(19, 'name', 64, 'c'),
    'int8': _builtin(20, 'int8', 8, 'd'),
    'bigint': _builtin(20, 'int8', 8, 'd'),
    'int2': _builtin(21, 'int2', 2, 's'),
    'smallint': _builtin(21, 'int2', 2, 's'),
    'int4': _builtin(23, 'int4', 4, 'i'),
    'int': _builtin(23, 'int4', 4, 'i'),
    'integer': _builtin(23, 'int4', 4, 'i'),
    'text': _builtin(25, 'text', -1, 'i'),
    'oid': _builtin(26, 'oid', 4, 'i'),
    'float4': _builtin(700, 'float4', 4, 'i'),
    'real': _builtin(700, 'float4', 4, 'i'),
    'float8': _builtin(701, 'float8', 8, 'd'),
    'double precision': _builtin(701, 'float8', 8, 'd'),
    'bpchar': _builtin(1042, 'bpchar', -1, 'i'),
    'char': _builtin(1042, 'bpchar', -1, 'i'),
    'character': _builtin(1042, 'bpchar', -1, 'i'),
    'varchar': _builtin(1043, 'varchar', -1, 'i'),
    'character varying': _builtin(1043, 'varchar', -1, 'i'),
    'date': _builtin(1082, 'date', 4, 'i'),
    'time': _builtin(1083, 'time', 8, 'd'),
    'time without time zone': _builtin(1083, 'time', 8, 'd'),
    'timestamp': _builtin(1114, 'timestamp', 8, 'd'),
    'timestamp without time zone': _builtin(1114, 'timestamp', 8, 'd'),
    'timestamptz': _builtin(1184, 'timestamptz', 8, 'd'),
    'timestamp with time zone': _builtin(1184, 'timestamptz', 8, 'd'),
}


def builtin_type(typename, revision=None):
    ''' Returns the builtin object for the given type name.

    The name type was 32 bytes wide before 7.3. Raises
    UserFeedbackException for unknown type names. '''

    typename = ' '.join(typename.lower().split())
    if typename not in _BUILTINS:
        raise _exceptions.UserFeedbackException('unsupported type in table definition: %s'
                                                % (typename,))
    typ = _BUILTINS[typename]
    if typ.typname == 'name' and revision is not None and revision < 73:
        typ = typ._replace(length=32)
    return typ


###########
# Parsing #
###########

# the result of parsing a table definition
_tabledef = _nt('tabledef', 'name columns types')


def _unquote(name):
    ''' strips the double quotes from a quoted identifier '''

    if name.startswith('"') and name.endswith('"'):
        return name[1:-1]
    return name


def parse_create_table(sql, revision=None):
    ''' Returns a tabledef object for the given CREATE TABLE statement.

    A tabledef object contains the following fields:

        - name: the table name
        - columns: list of column objects numbered from 1
        - types: type registry entries (type oid to name) for the used types
    '''

    # the grammar uses upper case keywords
    sql = _re.sub(r'^\s*create\s+table\s', 'CREATE TABLE ', sql, flags=_re.IGNORECASE)

    try:
        res = _CreateTable.parser().parse_string(sql)
    except _ParseError as e:
        raise _exceptions.UserFeedbackException('can not parse table definition: %s' % (e,))

    if res is None:
        raise _exceptions.UserFeedbackException('incomplete table definition')

    tblname = _unquote(res.find(_Name).string)

    columns = []
    types = {}
    for attnum, coldef in enumerate(res.find_all(_ColumnDef), start=1):
        colname = _unquote(coldef[0].string)
        typename = coldef[2][0].string
        typ = builtin_type(typename, revision)
        columns.append(_decode.column(attnum, colname, typ.typeid, typ.length, typ.align))
        types[typ.typeid] = typ.typname

    return _tabledef(tblname, columns, types)
