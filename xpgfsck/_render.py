''' _render.py - turn raw column bytes into python values

Copyright (c) 2022 Netherlands Forensic Institute - MIT License

A renderer is selected by type name. The decoder does not know any type by
itself: when no renderer is registered for a type name the DefaultRenderer is
used, which interprets 1, 2 and 4 byte values as signed integers and anything
else as (NUL padded) text.
'''

from datetime import date as _date
from datetime import datetime as _datetime
from datetime import timedelta as _timedelta
from datetime import timezone as _timezone
from bitstring import ConstBitStream as _CB

# day zero of the date and timestamp types
_EPOCH = _datetime(2000, 1, 1)
_EPOCH_DATE = _date(2000, 1, 1)

# special values of the date and timestamp types
_DATE_INFINITY = {-2**31: '-infinity', 2**31 - 1: 'infinity'}
_TIMESTAMP_INFINITY = {-2**63: '-infinity', 2**63 - 1: 'infinity'}


class ValueRenderer():
    ''' base class for renderers: converts the bytes of a value '''

    def render(s, data):
        raise NotImplementedError()


class DefaultRenderer(ValueRenderer):
    ''' fallback for types without a renderer

    Values of 1, 2 and 4 bytes are read as signed little endian integers.
    Other values are treated as text, cut at the first NUL byte. If the text
    can not be decoded the bytes are returned as they are.
    '''

    _integer = {1: 'int:8', 2: 'intle:16', 4: 'intle:32'}

    def __init__(s, length, textencoding='utf-8'):
        s.length = length
        s.textencoding = textencoding

    def render(s, data):
        if s.length in s._integer:
            return _CB(bytes=data).read(s._integer[s.length])
        text = data.split(b'\x00', 1)[0]
        try:
            return text.decode(s.textencoding)
        except UnicodeDecodeError:
            return bytes(data)


class TextRenderer(ValueRenderer):
    ''' text, varchar and bpchar: decoded with the database encoding '''

    def __init__(s, textencoding='utf-8'):
        s.textencoding = textencoding

    def render(s, data):
        return bytes(data).decode(s.textencoding)


class NameRenderer(TextRenderer):
    ''' fixed size name type, NUL padded '''

    def render(s, data):
        return bytes(data).split(b'\x00', 1)[0].decode(s.textencoding)


class CharRenderer(ValueRenderer):
    ''' the single byte "char" type '''

    def render(s, data):
        if data[0] == 0:
            return ''
        return chr(data[0])


class BoolRenderer(ValueRenderer):

    def render(s, data):
        return data[0] != 0


class ByteaRenderer(ValueRenderer):

    def render(s, data):
        return bytes(data)


class IntRenderer(ValueRenderer):
    ''' little endian integer of any width '''

    def __init__(s, bits, signed=True):
        if signed:
            s.token = 'intle:%d' % (bits,)
        else:
            s.token = 'uintle:%d' % (bits,)

    def render(s, data):
        return _CB(bytes=data).read(s.token)


class FloatRenderer(ValueRenderer):

    def __init__(s, bits):
        s.token = 'floatle:%d' % (bits,)

    def render(s, data):
        return _CB(bytes=data).read(s.token)


class DateRenderer(ValueRenderer):
    ''' days since 2000-01-01 '''

    def render(s, data):
        days = _CB(bytes=data).read('intle:32')
        if days in _DATE_INFINITY:
            return _DATE_INFINITY[days]
        return _EPOCH_DATE + _timedelta(days=days)


class TimeRenderer(ValueRenderer):
    ''' microseconds since midnight (integer datetimes) '''

    def render(s, data):
        usecs = _CB(bytes=data).read('intle:64')
        return (_EPOCH + _timedelta(microseconds=usecs)).time()


class TimestampRenderer(ValueRenderer):
    ''' microseconds since 2000-01-01 (integer datetimes) '''

    def __init__(s, tz=None):
        s.tz = tz

    def render(s, data):
        usecs = _CB(bytes=data).read('intle:64')
        if usecs in _TIMESTAMP_INFINITY:
            return _TIMESTAMP_INFINITY[usecs]
        value = _EPOCH + _timedelta(microseconds=usecs)
        if s.tz is not None:
            value = value.replace(tzinfo=s.tz)
        return value


def default_renderers(textencoding='utf-8'):
    ''' returns the default mapping of type names to renderers

    int2, int4 and oid get the default integer interpretation.
    '''

    text = TextRenderer(textencoding)

    return {'bool': BoolRenderer(),
            'char': CharRenderer(),
            'name': NameRenderer(textencoding),
            'text': text,
            'varchar': text,
            'bpchar': text,
            'bytea': ByteaRenderer(),
            'int8': IntRenderer(64),
            'float4': FloatRenderer(32),
            'float8': FloatRenderer(64),
            'date': DateRenderer(),
            'time': TimeRenderer(),
            'timestamp': TimestampRenderer(),
            'timestamptz': TimestampRenderer(_timezone.utc)}
