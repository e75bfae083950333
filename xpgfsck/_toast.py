''' _toast.py - reassembly of values stored out of line in a chunk relation

Copyright (c) 2022 Netherlands Forensic Institute - MIT License

Large values are cut into chunks and stored in a separate relation (the TOAST
relation) with three columns: the owner id (chunk_id), the sequence number of
the chunk (chunk_seq) and the chunk bytes (chunk_data). The owning tuple only
holds an external pointer with the owner id.

Updates and deletes leave older generations of the chunks behind. For each
owner id the index only keeps the chunks of the generation with the highest
xmax, so chunks of different generations are never mixed.
'''

from . import _decode
from . import _render
from ._diagnostics import DiagnosticKind as _Kind

# column schema of every chunk relation
CHUNK_COLUMNS = (_decode.column(1, 'chunk_id', 26, 4, 'i'),
                 _decode.column(2, 'chunk_seq', 23, 4, 'i'),
                 _decode.column(3, 'chunk_data', 17, -1, 'i'))

# chunk bytes are needed as-is, whatever the type registry says
_CHUNK_RENDERERS = {'chunk_id': _render.IntRenderer(32, signed=False),
                    'chunk_seq': _render.IntRenderer(32),
                    'chunk_data': _render.ByteaRenderer()}


class ToastIndex():
    ''' index of owner id to chunk locations for a single chunk relation

    The index keeps the relation open until it is closed, which happens
    automatically when it is used as context manager.
    '''

    def __init__(s, session, relation, name=None):
        ''' create an empty index for the given Relation object '''

        s.session = session
        s.relation = relation
        s.name = name or relation.name
        s.decoder = _decode.TupleDecoder(session, _decode.column_schema(s.name, CHUNK_COLUMNS),
                                         renderers=_CHUNK_RENDERERS)
        # owner id -> {chunk_seq: (pagenumber, slot)}
        s.chunks = {}
        # owner id -> highest xmax seen
        s.xmax = {}


    def __enter__(s):
        return s


    def __exit__(s, *args):
        s.close()


    def close(s):
        s.relation.close()


    def add(s, owner, seq, xmax, pagenumber, slot):
        ''' record the location of one chunk

        A chunk with a higher xmax than seen before for this owner replaces
        all chunks known for that owner. A chunk with a lower xmax is
        ignored. '''

        known = s.xmax.get(owner)
        if known is None or xmax > known:
            s.chunks[owner] = {}
            s.xmax[owner] = xmax
        elif xmax < known:
            return
        s.chunks[owner][seq] = (pagenumber, slot)


    def build(s):
        ''' scan the chunk relation once and index all chunks '''

        diag = s.session.diag
        with diag.scope('toast %s' % (s.name,)):
            for blck in s.relation.blocks():
                for tup in _decode.decode_page(s.session, s.decoder, blck.data(), blck.pagenumber):
                    if tup.error is not None:
                        continue
                    owner = tup.values.get('chunk_id')
                    seq = tup.values.get('chunk_seq')
                    if owner is None or seq is None:
                        continue
                    s.add(owner, seq, tup.xmax, tup.page, tup.tuple)
        return s


    def resolve(s, owner):
        ''' Returns the bytes of the value with the given owner id.

        When the owner id is not in the index a placeholder string is
        returned. Missing or unreadable chunks are reported and left out. '''

        diag = s.session.diag

        if owner not in s.chunks:
            diag.report(_Kind.UnknownType, 'external value %d not found in %s' % (owner, s.name))
            return '<missing external value %d>' % (owner,)

        data = bytearray()
        with diag.scope('toast %s' % (s.name,)):
            expected = 0
            for seq in sorted(s.chunks[owner]):
                if seq != expected:
                    diag.report(_Kind.StructuralMismatch, 'external value %d: chunk %d missing'
                                % (owner, expected))
                expected = seq + 1

                pagenumber, slot = s.chunks[owner][seq]
                tup = _decode.read_tuple(s.session, s.decoder, s.relation, pagenumber, slot)
                if tup is None or isinstance(tup, _decode._decode_error) or not tup.complete:
                    diag.report(_Kind.StructuralMismatch, 'external value %d: chunk %d at page %d '
                                'slot %d unreadable' % (owner, seq, pagenumber, slot))
                    continue

                chunk = tup.values.get('chunk_data')
                if isinstance(chunk, bytes):
                    data += chunk

        return bytes(data)
