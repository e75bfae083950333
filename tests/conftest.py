''' conftest.py - shared fixtures

Copyright (c) 2022 Netherlands Forensic Institute - MIT License
'''

import pytest

from xpgfsck._session import DecodingSession

import pgbuild


@pytest.fixture
def session():
    ''' a session for revision 80 without type registry '''

    return DecodingSession(pgbuild.REVISION, pgbuild.BLOCKSIZE)


@pytest.fixture
def typed_session():
    ''' a session for revision 80 that knows the common builtin types '''

    types = {16: 'bool', 17: 'bytea', 19: 'name', 20: 'int8', 21: 'int2', 23: 'int4',
             25: 'text', 26: 'oid', 1043: 'varchar'}
    return DecodingSession(pgbuild.REVISION, pgbuild.BLOCKSIZE, types=types)


@pytest.fixture
def datadir(tmp_path):
    ''' a data directory of revision 80 with database mydb and table customers '''

    return pgbuild.datadir(tmp_path / 'data')
