''' _export.py - write decoded tuples to xlsx or tsv files

Copyright (c) 2022 Netherlands Forensic Institute - MIT License

Every exported row starts with the location and header fields of the tuple
(page, tuple, oid, xmin, xmax) followed by the column values. Byte values are
written as hexadecimal strings and NULL values as empty cells.
'''

import csv as _csv
from binascii import hexlify as _hexlify
import os.path as _path

import xlsxwriter as _xlsxwriter

from . import _exceptions

# the fields in front of the column values
TUPLE_FIELDS = ['page', 'tuple', 'oid', 'xmin', 'xmax']

# the fields of a diagnostics sheet or file
DIAGNOSTIC_FIELDS = ['kind', 'context', 'message']


def _cell(value):
    ''' converts a decoded value into something a spreadsheet can hold '''

    if value is None:
        return ''
    if isinstance(value, (bytes, bytearray)):
        return _hexlify(value).decode('ascii')
    return value


def header(columns):
    ''' returns the header row for the given column names '''

    return TUPLE_FIELDS + list(columns)


def tuple_row(tup, columns):
    ''' Returns the export row for a decoded_tuple.

    Columns missing from the tuple (for example because decoding was aborted)
    are written as empty cells. '''

    row = [tup.page, tup.tuple, tup.oid, tup.xmin, tup.xmax]
    row += [tup.values.get(c) for c in columns]
    return [_cell(v) for v in row]


def diagnostic_row(diag):
    return [diag.kind.name, diag.context, diag.message]


def _checkoutfile(filename):
    filename = _path.abspath(_path.expanduser(filename))
    if _path.exists(filename):
        raise _exceptions.UserFeedbackException('refusing to overwrite output file %s'
                                                % (filename,))
    return filename


class XLSXWriter():
    ''' context manager for writing one or more sheets to an xlsx file '''

    def __init__(s, filename):
        s.filename = _checkoutfile(filename)
        s.workbook = None
        s.sheets = {}
        s.rownumbers = {}


    def __enter__(s):
        s.workbook = _xlsxwriter.Workbook(s.filename, {'remove_timezone': True,
                                                       'nan_inf_to_errors': True,
                                                       'default_date_format': 'yyyy-mm-dd hh:mm:ss'})
        return s


    def __exit__(s, *args):
        s.workbook.close()


    def add_sheet(s, name):
        ''' add a worksheet with the given name '''

        if name in s.sheets:
            raise _exceptions.InvalidArgumentException('sheet %s already exists' % (name,))
        s.sheets[name] = s.workbook.add_worksheet(name)
        s.rownumbers[name] = 0


    def write_header(s, sheet, fields):
        ''' write a header row to the given sheet '''

        s.write_row(sheet, fields)
        s.sheets[sheet].freeze_panes(1, 0)


    def write_row(s, sheet, row):
        ''' write a row of cells to the given sheet '''

        s.sheets[sheet].write_row(s.rownumbers[sheet], 0, [_cell(v) for v in row])
        s.rownumbers[sheet] += 1


class TSVWriter():
    ''' context manager for writing rows to a tab separated file

    The target can be a filename or an already opened text file-like object,
    which is not closed on exit. '''

    def __init__(s, target):
        if isinstance(target, str):
            s.filename = _checkoutfile(target)
            s.stream = None
        else:
            s.filename = None
            s.stream = target
        s.writer = None


    def __enter__(s):
        if s.filename is not None:
            s.stream = open(s.filename, 'w', newline='', encoding='utf-8')
        s.writer = _csv.writer(s.stream, delimiter='\t', lineterminator='\n')
        return s


    def __exit__(s, *args):
        if s.filename is not None:
            s.stream.close()


    def write_header(s, fields):
        s.writer.writerow(fields)


    def write_row(s, row):
        s.writer.writerow([_cell(v) for v in row])


def export_xlsx(scan, columns, outfile):
    ''' writes the rows and the diagnostics of a table scan to an xlsx file '''

    with XLSXWriter(outfile) as x:
        x.add_sheet('rows')
        x.write_header('rows', header(columns))
        for tup in scan.rows:
            x.write_row('rows', tuple_row(tup, columns))

        x.add_sheet('diagnostics')
        x.write_header('diagnostics', DIAGNOSTIC_FIELDS)
        for diag in scan.diagnostics:
            x.write_row('diagnostics', diagnostic_row(diag))


def export_tsv(scan, columns, outfile):
    ''' writes a table scan to outfile_rows.tsv and outfile_diagnostics.tsv '''

    with TSVWriter(outfile + '_rows.tsv') as f:
        f.write_header(header(columns))
        for tup in scan.rows:
            f.write_row(tuple_row(tup, columns))

    with TSVWriter(outfile + '_diagnostics.tsv') as f:
        f.write_header(DIAGNOSTIC_FIELDS)
        for diag in scan.diagnostics:
            f.write_row(diagnostic_row(diag))


def dump_tsv(scan, columns, stream):
    ''' writes the rows of a table scan as tsv to an opened stream '''

    with TSVWriter(stream) as f:
        f.write_header(header(columns))
        for tup in scan.rows:
            f.write_row(tuple_row(tup, columns))
