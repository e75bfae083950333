''' test_diagnostics.py - location context of diagnostics

Copyright (c) 2022 Netherlands Forensic Institute - MIT License
'''

import logging

import pytest

from xpgfsck._diagnostics import DiagnosticContext
from xpgfsck._diagnostics import DiagnosticKind


def test_nested_scopes():
    diag = DiagnosticContext()
    with diag.scope('table foo'):
        with diag.scope('page 12'):
            with diag.scope('tuple 3'):
                assert diag.location() == 'table foo : page 12 : tuple 3'
        assert diag.location() == 'table foo'
    assert diag.stack == []


def test_scope_restored_on_exception():
    diag = DiagnosticContext()
    with pytest.raises(ValueError):
        with diag.scope('table foo'):
            diag.push('page 1')
            diag.push('tuple 1')
            raise ValueError()
    assert diag.stack == []


def test_push_truncate():
    diag = DiagnosticContext()
    diag.push('table foo')
    depth = diag.push('page 1')
    diag.push('tuple 1')
    diag.truncate(depth)
    assert diag.stack == ['table foo']
    diag.pop()
    with pytest.raises(IndexError):
        diag.pop()


def test_report(caplog):
    diag = DiagnosticContext()
    with caplog.at_level(logging.WARNING, logger='xpgfsck._diagnostics'):
        with diag.scope('table foo'):
            res = diag.report(DiagnosticKind.BoundsViolation, 'too long')
        diag.report(DiagnosticKind.UnknownType, 'no context')

    assert res.context == 'table foo'
    assert diag.count() == 2
    assert diag.count(DiagnosticKind.BoundsViolation) == 1
    assert diag.count(DiagnosticKind.SchemaGap) == 0
    assert 'table foo : too long' in caplog.text
    assert 'no context' in caplog.text
