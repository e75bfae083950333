''' _diagnostics.py - nested location context for decode diagnostics

Copyright (c) 2022 Netherlands Forensic Institute - MIT License

Every inconsistency found while decoding is reported with the location at
which it was found, for example 'table foo : page 12 : tuple 3'. The scanner
and the decoder push a label on entering a table, page or tuple and pop it
again when leaving. '''

import logging as _logging
from collections import namedtuple as _nt
from contextlib import contextmanager as _contextmanager
from enum import Enum as _Enum

_log = _logging.getLogger(__name__)


class DiagnosticKind(_Enum):
    ''' the kinds of inconsistencies that can be reported '''

    StructuralMismatch = 1
    BoundsViolation = 2
    InvariantViolation = 3
    SchemaGap = 4
    UnknownType = 5
    DecodeException = 6
    RelationOpen = 7


# a single reported inconsistency
_diagnostic = _nt('diagnostic', 'kind context message')


class DiagnosticContext():
    ''' stack of location labels plus the list of reported diagnostics '''

    def __init__(s, separator=' : '):
        ''' initialize an empty context '''

        s.separator = separator
        s.stack = []
        s.diagnostics = []


    def push(s, label):
        ''' enter a new scope, returns the depth before entering it

        The returned depth can be passed to truncate() to get back to the
        state before this push, regardless of what happened in between. '''

        depth = len(s.stack)
        s.stack.append(label)
        _log.debug('enter %s', s.location())
        return depth


    def pop(s):
        ''' leave the innermost scope '''

        if len(s.stack) == 0:
            raise IndexError('pop from empty diagnostic context')
        s.stack.pop()


    def truncate(s, depth):
        ''' drop scopes until the stack is back at the given depth '''

        del s.stack[depth:]


    @_contextmanager
    def scope(s, label):
        ''' context manager that pushes label and restores the depth on exit '''

        depth = s.push(label)
        try:
            yield s
        finally:
            s.truncate(depth)


    def location(s):
        ''' returns the current location as a single string '''

        return s.separator.join(s.stack)


    def report(s, kind, message):
        ''' record a diagnostic at the current location and log it '''

        diag = _diagnostic(kind, s.location(), message)
        s.diagnostics.append(diag)
        if diag.context:
            _log.warning('%s%s%s', diag.context, s.separator, message)
        else:
            _log.warning('%s', message)
        return diag


    def count(s, kind=None):
        ''' number of diagnostics reported, optionally limited to one kind '''

        if kind is None:
            return len(s.diagnostics)
        return len([d for d in s.diagnostics if d.kind == kind])
