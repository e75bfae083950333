''' _session.py - state shared by all components during a single run

Copyright (c) 2022 Netherlands Forensic Institute - MIT License
'''

from . import _exceptions
from . import _layouts
from . import _render
from ._block import Relation as _Relation
from ._diagnostics import DiagnosticContext as _DiagnosticContext
from ._diagnostics import DiagnosticKind as _Kind


class DecodingSession():
    ''' everything a decode run needs to know, passed into every component

    A session holds exactly one format revision. The following attributes
    are available:

        - revision: the format revision (see _layouts)
        - layouts: the layoutset of that revision
        - blocksize: the size of a page in bytes
        - textencoding: encoding used for text values
        - types: the type registry, mapping type oid to type name
        - renderers: mapping of type name to ValueRenderer
        - schemas: per relation cache of column schemas
        - diag: the DiagnosticContext
        - opener: function that returns the source (filename or binary
          file-like object) of a relation given its identifier, or None
    '''

    # chunk relations never refer to external values themselves
    MAX_EXTERNAL_DEPTH = 1

    def __init__(s, revision, blocksize=8192, textencoding='utf-8', types=None,
                 renderers=None, opener=None):
        ''' initialize a session for the given format revision '''

        s.revision = revision
        s.layouts = _layouts.layouts(revision)
        s.blocksize = blocksize
        s.textencoding = textencoding
        s.types = dict(types or {})
        if renderers is None:
            renderers = _render.default_renderers(textencoding)
        s.renderers = dict(renderers)
        s.schemas = {}
        s.diag = _DiagnosticContext()
        s.opener = opener
        s.external_depth = 0


    def open_relation(s, relation):
        ''' returns a Relation object for the given relation identifier

        Raises RelationOpenException when the relation can not be found or
        opened. '''

        if s.opener is None:
            raise _exceptions.RelationOpenException('no way to open relation %s' % (relation,))
        return _Relation(s.opener(relation), s.blocksize, name=str(relation))


    def renderer(s, column):
        ''' Returns the renderer to use for the given column.

        Unknown type ids and types without a renderer are reported and get
        the DefaultRenderer. Integer sized columns without a renderer get the
        DefaultRenderer silently, since that is their normal interpretation.
        '''

        typename = s.types.get(column.typeid)
        if typename is None:
            if s.types:
                s.diag.report(_Kind.UnknownType, 'column %s: type id %d not in type registry'
                              % (column.name, column.typeid))
            return _render.DefaultRenderer(column.length, s.textencoding)

        if typename in s.renderers:
            return s.renderers[typename]

        if column.length not in (1, 2, 4):
            s.diag.report(_Kind.UnknownType, 'column %s: no renderer for type %s'
                          % (column.name, typename))
        return _render.DefaultRenderer(column.length, s.textencoding)
