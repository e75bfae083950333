''' __init__.py - initialize package

Copyright (c) 2022 Netherlands Forensic Institute - MIT License
'''

def _modcheck():
    ''' check if we have at least version 3.1.3 of bitstring module, xlsxwriter and modgrammar '''

    try:
        import bitstring as _bitstring
    except ImportError:
        raise ImportError('this package requires the bitstring module')

    major, minor, patch = _bitstring.__version__.split('.')[:3]
    err = 'bitstring version >= 3.1.2 required'
    if int(major) < 3:
        raise ImportError(err)
    elif int(major) == 3 and int(minor) < 1:
        raise ImportError(err)
    elif int(major) == 3 and int(minor) == 1 and int(patch) < 2:
        raise ImportError(err)

    try:
        import xlsxwriter
    except ImportError:
        raise ImportError('this packages requires xlsxwriter')

    try:
        import modgrammar
    except ImportError:
        raise ImportError('this packages requires modgrammar')


_modcheck()

#######
# API #
#######

from ._database import Database
from ._database import scan_file
from ._session import DecodingSession
from ._decode import column
from ._decode import scan_relation
from ._diagnostics import DiagnosticKind
from ._sql import parse_create_table
from ._render import ValueRenderer
