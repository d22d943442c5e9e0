import struct
import zlib
from typing import Dict, Iterable, List, Optional, Tuple

from rawpdf.source import BytesSource

PDF_HEADER = b'%PDF-1.7\n%\xe2\xe3\xcf\xd3\n'


class CountingSource(BytesSource):
    """Byte source that keeps track of the number of read calls."""

    def __init__(self, data):
        super().__init__(data)
        self.reads = 0

    def read(self, offset: int, count: int) -> bytes:
        self.reads += 1
        return super().read(offset, count)


class PdfBuilder:
    """
    Assemble PDF files in memory, keeping track of the byte offsets
    of all objects written so far.
    """

    def __init__(self, header: bytes = PDF_HEADER):
        self.parts: List[bytes] = [header]
        self.offsets: Dict[int, Tuple[int, int]] = {}
        self.compressed: Dict[int, Tuple[int, int]] = {}
        self.last_xref: Optional[int] = None

    @property
    def position(self) -> int:
        return sum(len(p) for p in self.parts)

    def write(self, data: bytes) -> int:
        pos = self.position
        self.parts.append(data)
        return pos

    def add_object(self, idnum: int, body: bytes, generation: int = 0) -> int:
        offset = self.write(
            b'%d %d obj\n' % (idnum, generation) + body + b'\nendobj\n'
        )
        self.offsets[idnum] = (generation, offset)
        return offset

    def add_stream(self, idnum: int, data: bytes, extra: bytes = b'',
                   length: Optional[bytes] = None, generation: int = 0) \
            -> int:
        if length is None:
            length = b'%d' % len(data)
        body = (
            b'<</Length ' + length + extra + b'>>\nstream\n'
            + data + b'\nendstream'
        )
        return self.add_object(idnum, body, generation=generation)

    def add_flate_stream(self, idnum: int, data: bytes, extra: bytes = b''):
        return self.add_stream(
            idnum, zlib.compress(data), extra=b'/Filter /FlateDecode' + extra
        )

    def add_object_stream(self, idnum: int,
                          objects: Iterable[Tuple[int, bytes]],
                          compress: bool = True) -> int:
        header = []
        bodies = b''
        for index, (obj_idnum, body) in enumerate(objects):
            header.append(b'%d %d' % (obj_idnum, len(bodies)))
            bodies += body + b'\n'
            self.compressed[obj_idnum] = (idnum, index)
        header_bytes = b' '.join(header) + b'\n'
        payload = header_bytes + bodies
        extra = b'/Type /ObjStm /N %d /First %d' % (
            len(header), len(header_bytes)
        )
        if compress:
            return self.add_flate_stream(idnum, payload, extra=b' ' + extra)
        return self.add_stream(idnum, payload, extra=b' ' + extra)

    def _entries(self, idnums: Optional[Iterable[int]]):
        if idnums is None:
            idnums = sorted(set(self.offsets) | set(self.compressed))
        return sorted(idnums)

    def write_xref_table(self, trailer: bytes = b'',
                         idnums: Optional[Iterable[int]] = None,
                         free: Iterable[int] = (),
                         include_prev: bool = True) -> int:
        """
        Write an xref table with one subsection per object, followed by
        a trailer. Returns the offset of the table.
        """
        lines = [b'xref', b'0 1', b'0000000000 65535 f ']
        for idnum in self._entries(idnums):
            generation, offset = self.offsets[idnum]
            lines.append(b'%d 1' % idnum)
            lines.append(b'%010d %05d n ' % (offset, generation))
        for idnum in free:
            lines.append(b'%d 1' % idnum)
            lines.append(b'0000000000 00001 f ')
        size = max(list(self.offsets) + list(free) + [0]) + 1
        trailer_dict = b'/Size %d ' % size + trailer
        if include_prev and self.last_xref is not None:
            trailer_dict += b' /Prev %d' % self.last_xref
        lines.append(b'trailer')
        lines.append(b'<<' + trailer_dict + b'>>')
        offset = self.write(b'\n'.join(lines) + b'\n')
        self.last_xref = offset
        return offset

    def write_xref_stream(self, idnum: int, trailer: bytes = b'',
                          idnums: Optional[Iterable[int]] = None,
                          include_prev: bool = True,
                          compress: bool = True) -> int:
        """
        Write an xref stream covering the requested objects (and itself).
        Returns the offset of the stream object.
        """
        offset = self.position
        self.offsets[idnum] = (0, offset)
        ids = self._entries(idnums)
        if idnum not in ids:
            ids = sorted(ids + [idnum])
        records = b''
        index = []
        for entry_id in ids:
            index.append(b'%d 1' % entry_id)
            if entry_id in self.compressed:
                container, ix = self.compressed[entry_id]
                records += struct.pack('>BIH', 2, container, ix)
            else:
                generation, obj_offset = self.offsets[entry_id]
                records += struct.pack('>BIH', 1, obj_offset, generation)
        size = max(list(self.offsets) + list(self.compressed)) + 1
        extra = (
            b' /Type /XRef /W [1 4 2] /Size %d /Index [' % size
            + b' '.join(index) + b'] ' + trailer
        )
        if include_prev and self.last_xref is not None:
            extra += b' /Prev %d' % self.last_xref
        if compress:
            self.add_flate_stream(idnum, records, extra=extra)
        else:
            self.add_stream(idnum, records, extra=extra)
        self.last_xref = offset
        return offset

    def finish(self, startxref: Optional[int] = None) -> bytes:
        if startxref is None:
            startxref = self.last_xref
        self.write(b'startxref\n%d\n%%%%EOF\n' % startxref)
        return self.getvalue()

    def getvalue(self) -> bytes:
        return b''.join(self.parts)


def simple_document(*contents: bytes, page_extra: bytes = b'') -> bytes:
    """
    A single-page document with the given content streams.
    """
    builder = PdfBuilder()
    builder.add_object(1, b'<</Type /Catalog /Pages 2 0 R>>')
    builder.add_object(2, b'<</Type /Pages /Kids [3 0 R] /Count 1>>')
    content_refs = b' '.join(b'%d 0 R' % (4 + ix) for ix in range(len(contents)))
    if len(contents) == 1:
        contents_entry = b' /Contents 4 0 R'
    elif contents:
        contents_entry = b' /Contents [' + content_refs + b']'
    else:
        contents_entry = b''
    builder.add_object(
        3, b'<</Type /Page /Parent 2 0 R /MediaBox [0 0 612 792]'
           + contents_entry + page_extra + b'>>'
    )
    for ix, data in enumerate(contents):
        builder.add_stream(4 + ix, data)
    builder.write_xref_table(b'/Root 1 0 R')
    return builder.finish()


def page_tree_document(shape) -> bytes:
    """
    Build a document whose page tree follows the given nested list
    structure: a list is a /Pages node, anything else is a page.
    The content of each page is ``(<page number>) Tj``.
    """
    builder = PdfBuilder()
    builder.add_object(1, b'<</Type /Catalog /Pages 2 0 R>>')
    counter = {'next_id': 3, 'page': 0}

    def alloc():
        idnum = counter['next_id']
        counter['next_id'] += 1
        return idnum

    def build(node_id, parent_id, children):
        kid_ids = []
        leaf_count = 0
        for child in children:
            child_id = alloc()
            kid_ids.append(child_id)
            if isinstance(child, list):
                leaf_count += build(child_id, node_id, child)
            else:
                page_no = counter['page']
                counter['page'] += 1
                content_id = alloc()
                builder.add_stream(content_id, b'(%d) Tj' % page_no)
                builder.add_object(
                    child_id,
                    b'<</Type /Page /Parent %d 0 R /Contents %d 0 R>>'
                    % (node_id, content_id)
                )
                leaf_count += 1
        parent = b' /Parent %d 0 R' % parent_id if parent_id else b''
        kids = b' '.join(b'%d 0 R' % k for k in kid_ids)
        builder.add_object(
            node_id,
            b'<</Type /Pages' + parent + b' /Kids [' + kids
            + b'] /Count %d>>' % leaf_count
        )
        return leaf_count

    build(2, None, shape)
    builder.write_xref_table(b'/Root 1 0 R')
    return builder.finish()
