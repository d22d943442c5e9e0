import logging

import pytest

from rawpdf import generic
from rawpdf.config import ReaderSettings
from rawpdf.misc import InvalidDocument, ParseError
from rawpdf.parser import read_value
from rawpdf.source import BytesSource, SourceCursor
from rawpdf.xref import (
    CompressedLocation,
    DirectLocation,
    ObjectLocationTable,
    TrailerDictionary,
    XRefBuilder,
    XRefEntry,
    build_object_table,
    find_startxref,
    parse_objstm_header,
    parse_xref_stream,
    reconstruct_xref_table,
)
from rawpdf_tests.samples import PDF_HEADER, PdfBuilder, simple_document

STRICT = ReaderSettings(strict=True)


def pdf_value(data: bytes):
    return read_value(SourceCursor(BytesSource(data)))


def fmt_dummy_xrefs(xrefs, sep=b'\r\n', trailer=b'/Size 10'):
    dummy_hdr = b'%PDF-1.7\n%owqi'

    def _gen():
        xrefs_iter = iter(xrefs)
        yield dummy_hdr
        offset = len(dummy_hdr) + 1
        section_bytes = b'xref\n' + sep.join(next(xrefs_iter)) + sep + \
            b'trailer<<' + trailer + b'>>'
        startxref = offset
        offset += len(section_bytes) + 1
        yield section_bytes
        for section in xrefs_iter:
            section_bytes = b'xref\n' + sep.join(section) + sep + \
                b'trailer<<' + trailer + b' /Prev %d>>' % startxref
            startxref = offset
            offset += len(section_bytes) + 1
            yield section_bytes
        yield b'startxref\n%d' % startxref
        yield b'%%EOF'
    return b'\n'.join(_gen())


def read_dummy_xrefs(xrefs, settings=ReaderSettings(), **kwargs):
    source = BytesSource(fmt_dummy_xrefs(xrefs, **kwargs))
    return XRefBuilder(source, settings).read_xrefs()


def test_single_section():
    table = read_dummy_xrefs([
        [b'0 3',
         b'0000000000 65535 f',
         b'0000000100 00000 n',
         b'0000000200 00003 n'],
    ])
    assert len(table) == 2
    assert table[1] == XRefEntry(1, 0, DirectLocation(100))
    assert table[2] == XRefEntry(2, 3, DirectLocation(200))
    assert 0 not in table
    assert table.trailer['/Size'] == 10
    assert not table.reconstructed


@pytest.mark.parametrize('sep', [b'\r\n', b'\n', b' \n', b'\r', b' '])
def test_entry_separators(sep):
    table = read_dummy_xrefs([
        [b'0 3',
         b'0000000000 65535 f',
         b'0000000100 00000 n',
         b'0000000200 00000 n'],
    ], sep=sep)
    assert table[2].location == DirectLocation(200)


def test_multiple_subsections():
    table = read_dummy_xrefs([
        [b'0 1',
         b'0000000000 65535 f',
         b'5 2',
         b'0000000100 00000 n',
         b'0000000200 00000 n',
         b'9 1',
         b'0000000300 00000 n'],
    ])
    assert sorted(table) == [5, 6, 9]
    assert table[9].location == DirectLocation(300)


def test_object_free():
    table = read_dummy_xrefs([
        [b'0 3',
         b'0000000000 65535 f',
         b'0000000100 00000 n',
         b'0000000200 00000 n'],
        [b'0 2',
         b'0000000000 65535 f',
         b'0000000000 00001 f'],
    ])
    assert table.trailer.revision_count == 2
    assert not table[1].in_use
    assert table[1].location is None
    assert table[2].location == DirectLocation(200)
    assert [e.idnum for e in table.in_use()] == [2]


def test_object_reused_after_free():
    table = read_dummy_xrefs([
        [b'0 3',
         b'0000000000 65535 f',
         b'0000000100 00000 n',
         b'0000000200 00000 n'],
        [b'0 2',
         b'0000000000 65535 f',
         b'0000000000 00001 f'],
        [b'0 2',
         b'0000000000 65535 f',
         b'0000000300 00001 n'],
    ])
    assert table.trailer.revision_count == 3
    assert table[1] == XRefEntry(1, 1, DirectLocation(300))


def test_newest_section_wins():
    table = read_dummy_xrefs([
        [b'0 2',
         b'0000000000 65535 f',
         b'0000000100 00000 n'],
        [b'1 1',
         b'0000000500 00000 n'],
    ])
    assert table[1].location == DirectLocation(500)


def test_illegal_generation_skipped():
    xrefs = [
        [b'0 3',
         b'0000000000 65535 f',
         b'0000000100 70000 n',
         b'0000000200 00000 n'],
    ]
    table = read_dummy_xrefs(xrefs)
    assert 1 not in table
    assert table[2].location == DirectLocation(200)

    with pytest.raises(ParseError, match='Illegal generation'):
        read_dummy_xrefs(xrefs, settings=STRICT)


def test_bad_entry_marker():
    xrefs = [
        [b'0 2',
         b'0000000000 65535 f',
         b'0000000100 00000 x'],
    ]
    with pytest.raises(ParseError, match="expected 'n' or 'f'"):
        read_dummy_xrefs(xrefs)


def test_size_mismatch_strict():
    xrefs = [
        [b'0 3',
         b'0000000000 65535 f',
         b'0000000100 00000 n',
         b'0000000200 00000 n'],
    ]
    read_dummy_xrefs(xrefs, trailer=b'/Size 2')
    with pytest.raises(ParseError, match='size mismatch'):
        read_dummy_xrefs(xrefs, settings=STRICT, trailer=b'/Size 2')


def _self_referencing_section():
    header = b'%PDF-1.7\n'
    offset = len(header)
    section = (
        b'xref\n0 2\n0000000000 65535 f \n0000000100 00000 n \n'
        b'trailer<</Size 2 /Prev %d>>\n' % offset
    )
    return header + section + b'startxref\n%d\n%%%%EOF\n' % offset


def test_prev_cycle(caplog):
    source = BytesSource(_self_referencing_section())
    with caplog.at_level(logging.WARNING):
        table = XRefBuilder(source).read_xrefs()
    assert table[1].location == DirectLocation(100)
    assert table.trailer.revision_count == 1
    assert 'Cycle' in caplog.text


def test_prev_cycle_strict():
    source = BytesSource(_self_referencing_section())
    with pytest.raises(ParseError, match='Cycle'):
        XRefBuilder(source, STRICT).read_xrefs()


def test_broken_prev_keeps_newer_sections(caplog):
    data = fmt_dummy_xrefs([
        [b'0 2',
         b'0000000000 65535 f',
         b'0000000100 00000 n'],
    ], trailer=b'/Size 2 /Prev 99999')
    with caplog.at_level(logging.WARNING):
        table = XRefBuilder(BytesSource(data)).read_xrefs()
    assert table[1].location == DirectLocation(100)
    assert 'ignoring it' in caplog.text

    with pytest.raises(ParseError):
        XRefBuilder(BytesSource(data), STRICT).read_xrefs()


def test_find_startxref():
    data = b'%PDF-1.7\nstartxref\n10\n%%EOF\nstartxref\n20\n%%EOF\n'
    assert find_startxref(BytesSource(data)) == 20


@pytest.mark.parametrize('data', [
    b'%PDF-1.7\n%%EOF', b'%PDF-1.7\nstartxref\n%%EOF', b'startxref -5',
])
def test_find_startxref_failures(data):
    with pytest.raises(ParseError):
        find_startxref(BytesSource(data))


def test_find_startxref_window():
    data = b'startxref\n10\n%%EOF' + b' ' * 2000
    with pytest.raises(ParseError):
        find_startxref(BytesSource(data))
    assert find_startxref(BytesSource(data), window=4096) == 10


def _table_document():
    builder = PdfBuilder()
    builder.add_object(1, b'<</Type /Catalog /Pages 2 0 R>>')
    builder.add_object(2, b'<</Type /Pages /Kids [] /Count 0>>')
    builder.add_object(3, b'(three)')
    return builder


@pytest.mark.parametrize('delta', [0, -1, 1, 2, 3])
def test_startxref_off_by_some_table(delta):
    builder = _table_document()
    xref_offset = builder.write_xref_table(b'/Root 1 0 R')
    data = builder.finish(startxref=xref_offset + delta)
    table = XRefBuilder(BytesSource(data)).read_xrefs()
    assert table[3].location == DirectLocation(builder.offsets[3][1])
    assert table.trailer['/Root'] == generic.Reference(1, 0)


@pytest.mark.parametrize('delta', [0, -1, 1, 2])
def test_startxref_off_by_some_stream(delta):
    builder = _table_document()
    xref_offset = builder.write_xref_stream(8, trailer=b'/Root 1 0 R')
    data = builder.finish(startxref=xref_offset + delta)
    table = XRefBuilder(BytesSource(data)).read_xrefs()
    assert table[3].location == DirectLocation(builder.offsets[3][1])
    assert table.trailer['/Root'] == generic.Reference(1, 0)


@pytest.mark.parametrize('delta', [1, 2])
def test_startxref_off_strict(delta):
    builder = _table_document()
    xref_offset = builder.write_xref_table(b'/Root 1 0 R')
    data = builder.finish(startxref=xref_offset + delta)
    with pytest.raises(InvalidDocument):
        build_object_table(BytesSource(data), STRICT)


def test_startxref_hopeless():
    builder = _table_document()
    builder.write_xref_table(b'/Root 1 0 R')
    data = builder.finish(startxref=40)
    with pytest.raises(ParseError, match='Could not find xref'):
        XRefBuilder(BytesSource(data)).read_xrefs()


@pytest.mark.parametrize('compress', [True, False])
def test_xref_stream(compress):
    builder = _table_document()
    builder.write_xref_stream(8, trailer=b'/Root 1 0 R', compress=compress)
    table = XRefBuilder(BytesSource(builder.finish())).read_xrefs()
    assert sorted(table) == [1, 2, 3, 8]
    assert table[8].location == DirectLocation(builder.offsets[8][1])
    trailer = table.trailer.flatten()
    assert trailer['/Root'] == generic.Reference(1, 0)
    assert trailer['/Size'] == 9
    for key in ('/W', '/Index', '/Type', '/Length', '/Filter'):
        assert key not in trailer
        assert key not in table.trailer


def test_xref_stream_with_object_stream():
    builder = PdfBuilder()
    builder.add_object_stream(5, [
        (1, b'<</Type /Catalog /Pages 2 0 R>>'),
        (2, b'<</Type /Pages /Kids [] /Count 0>>'),
    ])
    builder.write_xref_stream(6, trailer=b'/Root 1 0 R')
    table = XRefBuilder(BytesSource(builder.finish())).read_xrefs()
    assert table[1] == XRefEntry(1, 0, CompressedLocation(5, 0))
    assert table[2] == XRefEntry(2, 0, CompressedLocation(5, 1))
    assert table[5].location == DirectLocation(builder.offsets[5][1])


def test_table_updated_by_xref_stream():
    builder = _table_document()
    builder.write_xref_table(b'/Root 1 0 R')
    new_offset = builder.add_object(3, b'(new three)')
    builder.write_xref_stream(7, trailer=b'/Root 1 0 R', idnums=[3])
    table = XRefBuilder(BytesSource(builder.finish())).read_xrefs()
    assert table.trailer.revision_count == 2
    assert table[3].location == DirectLocation(new_offset)
    assert table[2].location == DirectLocation(builder.offsets[2][1])


def _hybrid_document(free=()):
    builder = _table_document()
    builder.add_object_stream(5, [(4, b'(four)')])
    xrefstm = builder.write_xref_stream(6, idnums=[4, 5], include_prev=False)
    builder.write_xref_table(
        b'/Root 1 0 R /XRefStm %d' % xrefstm, idnums=[1, 2, 3],
        free=free, include_prev=False
    )
    return builder


def test_hybrid_file():
    builder = _hybrid_document()
    table = XRefBuilder(BytesSource(builder.finish())).read_xrefs()
    assert table[4].location == CompressedLocation(5, 0)
    assert table[5].location == DirectLocation(builder.offsets[5][1])
    assert table[1].location == DirectLocation(builder.offsets[1][1])
    # the hybrid stream's dictionary is not a trailer revision
    assert table.trailer.revision_count == 1
    assert '/XRefStm' not in table.trailer


def test_hybrid_file_table_takes_precedence():
    builder = _hybrid_document(free=[4])
    table = XRefBuilder(BytesSource(builder.finish())).read_xrefs()
    assert not table[4].in_use


def test_hybrid_file_broken_stream(caplog):
    builder = _table_document()
    builder.write_xref_table(b'/Root 1 0 R /XRefStm 20')
    data = builder.finish()
    with caplog.at_level(logging.WARNING):
        table = XRefBuilder(BytesSource(data)).read_xrefs()
    assert table[3].in_use
    assert 'hybrid' in caplog.text
    with pytest.raises(ParseError):
        XRefBuilder(BytesSource(data), STRICT).read_xrefs()


def test_xref_stream_object_must_have_xref_type():
    builder = _table_document()
    offset = builder.add_stream(8, b'\x01\x00\x00\x00\x10\x00\x00',
                                extra=b' /W [1 4 2] /Size 9 /Index [3 1]')
    data = builder.finish(startxref=offset)
    with pytest.raises(ParseError, match='not an xref stream'):
        XRefBuilder(BytesSource(data), STRICT).read_xrefs()


def test_parse_xref_stream_entry_types():
    stream = pdf_value(b'<</W [1 2 1] /Size 4>>')
    data = bytes([
        0, 0, 0, 255,
        1, 0, 16, 0,
        2, 0, 5, 1,
        3, 0, 0, 0,
    ])
    entries = list(parse_xref_stream(stream, data))
    assert entries == [
        XRefEntry(0, 255, None),
        XRefEntry(1, 0, DirectLocation(16)),
        XRefEntry(2, 0, CompressedLocation(5, 1)),
    ]


def test_parse_xref_stream_default_type():
    stream = pdf_value(b'<</W [0 2 1] /Size 5 /Index [4 1]>>')
    entries = list(parse_xref_stream(stream, b'\x00\x20\x00'))
    assert entries == [XRefEntry(4, 0, DirectLocation(32))]


def test_parse_xref_stream_wide_fields():
    stream = pdf_value(b'<</W [1 10 2] /Size 2 /Index [1 1]>>')
    data = b'\x01' + (1 << 40).to_bytes(10, 'big') + b'\x00\x02'
    entries = list(parse_xref_stream(stream, data))
    assert entries == [XRefEntry(1, 2, DirectLocation(1 << 40))]


def test_parse_xref_stream_truncated(caplog):
    stream = pdf_value(b'<</W [1 2 1] /Size 3>>')
    data = bytes([1, 0, 16, 0, 1, 0, 32, 0, 1, 0])
    with caplog.at_level(logging.WARNING):
        entries = list(parse_xref_stream(stream, data))
    assert len(entries) == 2
    assert 'ended prematurely' in caplog.text
    with pytest.raises(ParseError, match='ended prematurely'):
        list(parse_xref_stream(stream, data, strict=True))


def test_parse_xref_stream_trailing_data():
    stream = pdf_value(b'<</W [1 2 1] /Size 1>>')
    data = bytes([1, 0, 16, 0, 0, 0])
    assert len(list(parse_xref_stream(stream, data))) == 1
    with pytest.raises(ParseError, match='Trailing data'):
        list(parse_xref_stream(stream, data, strict=True))


@pytest.mark.parametrize('dict_bytes', [
    b'<</Size 3>>',
    b'<</W [1 2] /Size 3>>',
    b'<</W [1 -2 1] /Size 3>>',
    b'<</W [1 2 1]>>',
    b'<</W [1 2 1] /Size 3 /Index [0]>>',
    b'<</W [1 2 1] /Size 3 /Index 5>>',
])
def test_parse_xref_stream_invalid(dict_bytes):
    stream = pdf_value(dict_bytes)
    with pytest.raises(ParseError):
        list(parse_xref_stream(stream, bytes(12)))


def test_trailer_dictionary_fallback():
    trailer = TrailerDictionary()
    trailer.add_trailer_revision(pdf_value(b'<</Size 5 /Root 1 0 R /W [1]>>'))
    trailer.add_trailer_revision(pdf_value(b'<</Size 3 /Info 4 0 R>>'))
    assert trailer['/Size'] == 5
    assert trailer['Info'] == generic.Reference(4, 0)
    assert trailer.get('/Encrypt') is None
    assert '/W' not in trailer
    with pytest.raises(KeyError):
        trailer['/W']
    assert trailer.keys() == {'/Size', '/Root', '/Info'}
    assert trailer.flatten() == {
        '/Size': 5, '/Root': generic.Reference(1, 0),
        '/Info': generic.Reference(4, 0),
    }

    trailer.add_override(pdf_value(b'<</Root 7 0 R>>'))
    assert trailer['/Root'] == generic.Reference(7, 0)
    assert trailer.revision_count == 3


def test_location_table_first_wins():
    table = ObjectLocationTable()
    assert table.add(XRefEntry(1, 0, DirectLocation(10)))
    assert not table.add(XRefEntry(1, 0, DirectLocation(20)))
    assert table[1].location == DirectLocation(10)
    assert table.get(2) is None
    with pytest.raises(KeyError):
        table[2]


def test_parse_objstm_header():
    stream = pdf_value(b'<</N 2 /First 9>>')
    assert parse_objstm_header(stream, b'3 0 4 12\n(a) (b)') == [
        (3, 0), (4, 12)
    ]
    with pytest.raises(ParseError):
        parse_objstm_header(stream, b'3 0 4')
    with pytest.raises(ParseError):
        parse_objstm_header(pdf_value(b'<</First 9>>'), b'3 0')


def test_reconstruct_broken_startxref(caplog):
    data = simple_document(b'BT ET')
    data = data[:data.rindex(b'startxref')] + b'startxref\n99999\n%%EOF\n'
    with caplog.at_level(logging.WARNING):
        table = build_object_table(BytesSource(data))
    assert table.reconstructed
    assert sorted(table) == [1, 2, 3, 4]
    assert table.trailer['/Root'] == generic.Reference(1, 0)
    assert 'reconstructing' in caplog.text

    with pytest.raises(InvalidDocument):
        build_object_table(BytesSource(data), STRICT)


def test_reconstruct_later_definition_wins():
    builder = _table_document()
    builder.add_object(3, b'(new three)')
    table = reconstruct_xref_table(BytesSource(builder.getvalue()))
    assert table[3].location == DirectLocation(builder.offsets[3][1])


def test_reconstruct_without_trailer(caplog):
    builder = _table_document()
    with caplog.at_level(logging.WARNING):
        table = reconstruct_xref_table(BytesSource(builder.getvalue()))
    assert table.trailer['/Root'] == generic.Reference(1, 0)
    assert 'as the document catalog' in caplog.text


def test_reconstruct_object_streams():
    builder = PdfBuilder()
    builder.add_object(1, b'<</Type /Catalog /Pages 2 0 R>>')
    builder.add_object(2, b'<</Type /Pages /Kids [] /Count 0>>')
    builder.add_object_stream(5, [(3, b'(three)'), (4, b'(four)')])
    # a top-level definition takes precedence
    builder.add_object(4, b'(top-level four)')
    table = reconstruct_xref_table(BytesSource(builder.getvalue()))
    assert table[3].location == CompressedLocation(5, 0)
    assert table[4].location == DirectLocation(builder.offsets[4][1])


def test_reconstruct_object_stream_indirect_length():
    builder = PdfBuilder()
    builder.add_object(1, b'<</Type /Catalog /Pages 2 0 R>>')
    payload = b'3 0\n(three)\n'
    builder.add_stream(
        5, payload, length=b'6 0 R', extra=b' /Type /ObjStm /N 1 /First 4'
    )
    builder.add_object(6, b'%d' % len(payload))
    table = reconstruct_xref_table(BytesSource(builder.getvalue()))
    assert table[3].location == CompressedLocation(5, 0)


def test_reconstruct_without_catalog():
    data = PDF_HEADER + b'1 0 obj\n(x)\nendobj\n'
    with pytest.raises(InvalidDocument, match='catalog'):
        reconstruct_xref_table(BytesSource(data))


def test_reconstruct_dangling_root():
    builder = _table_document()
    builder.write_xref_table(b'/Root 12 0 R')
    table = reconstruct_xref_table(BytesSource(builder.finish()))
    assert table.trailer.revision_count == 2
    assert table.trailer['/Root'] == generic.Reference(1, 0)


def test_missing_root_triggers_reconstruction():
    builder = _table_document()
    builder.write_xref_table()
    table = build_object_table(BytesSource(builder.finish()))
    assert table.reconstructed
    assert table.trailer['/Root'] == generic.Reference(1, 0)
    with pytest.raises(InvalidDocument, match='catalog'):
        build_object_table(BytesSource(builder.finish()), STRICT)
