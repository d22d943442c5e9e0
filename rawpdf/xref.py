"""
Internal utilities to handle the processing of cross-reference data and
document trailer data.

The main entry point is :func:`build_object_table`, which walks the chain of
cross-reference sections starting from the last ``startxref`` in the file,
and falls back to :func:`reconstruct_xref_table` if that chain is broken.
"""

import logging
import re
import struct
from dataclasses import dataclass
from itertools import chain
from typing import Dict, Iterator, List, Optional, Tuple, Union

from . import generic
from .config import DEFAULT_READER_SETTINGS, ReaderSettings
from .filters import decode_stream
from .lexer import Lexer, TokenType
from .misc import (
    InvalidDocument,
    ParseError,
    PdfReadError,
    pair_iter,
)
from .parser import ContentMode, ObjectParser
from .source import ByteSource, BytesSource, SourceCursor

__all__ = [
    'DirectLocation', 'CompressedLocation', 'ObjectLocation', 'XRefEntry',
    'ObjectLocationTable', 'TrailerDictionary', 'XRefBuilder',
    'find_startxref', 'parse_xref_table', 'parse_xref_stream',
    'build_object_table', 'reconstruct_xref_table', 'parse_objstm_header',
]

logger = logging.getLogger(__name__)

STARTXREF = b'startxref'


@dataclass(frozen=True)
class DirectLocation:
    """
    Location of an object stored at the top level of the file.
    """

    offset: int
    """
    Byte offset of the object's ``N G obj`` header.
    """


@dataclass(frozen=True)
class CompressedLocation:
    """
    Identifies an object that's part of an object stream.
    """

    container_idnum: int
    """
    The ID number of the object stream (its generation number is presumed
    zero).
    """

    index: int
    """
    The index of the object in the stream.
    """


ObjectLocation = Union[DirectLocation, CompressedLocation]


@dataclass(frozen=True)
class XRefEntry:
    """
    Value type representing a single cross-reference entry.
    """

    idnum: int
    """
    The ID of the object being referenced.
    """

    generation: int
    """
    The generation number of the object being referenced.
    """

    location: Optional[ObjectLocation]
    """
    Location the cross-reference points to, or ``None`` for a free entry.
    """

    @property
    def in_use(self) -> bool:
        return self.location is not None


class TrailerDictionary:
    """
    The standard mandates that each trailer shall contain
    at least all keys used in the preceding trailer, even if unmodified.
    Of course, we cannot trust documents to actually follow this rule, so
    this class implements fallbacks.

    Values are returned as-is, i.e. indirect references are not resolved.
    """

    # These keys shouldn't really be considered part of the trailer dictionary,
    # and in particular are not subject to inheritance rules.
    non_trailer_keys = {
        '/Length', '/Filter', '/DecodeParms', '/W', '/Type', '/Index',
        '/XRefStm'
    }

    def __init__(self):
        # trailer revisions, numbered backwards (i.e. in processing order)
        # The element at index 0 is the most recent one.
        self._trailer_revisions: List[generic.DictionaryObject] = []

    def add_trailer_revision(self, trailer_dict: generic.DictionaryObject):
        self._trailer_revisions.append(trailer_dict)

    def add_override(self, trailer_dict: generic.DictionaryObject):
        """
        Add a revision that takes precedence over all others.
        """
        self._trailer_revisions.insert(0, trailer_dict)

    @property
    def revision_count(self) -> int:
        return len(self._trailer_revisions)

    def __getitem__(self, key):
        key = generic.pdf_name(key)
        if key in self.non_trailer_keys:
            raise KeyError(key)
        for revision in self._trailer_revisions:
            try:
                return revision[key]
            except KeyError:
                continue
        raise KeyError(key)

    def get(self, key, default=None):
        try:
            return self[key]
        except KeyError:
            return default

    def __contains__(self, key):
        try:
            self[key]
            return True
        except KeyError:
            return False

    def flatten(self) -> generic.DictionaryObject:
        trailer = generic.DictionaryObject({
            k: v for revision in reversed(self._trailer_revisions)
            for k, v in revision.items()
        })
        # ensure that the trailer isn't polluted using stream
        # compression / XRef parameters
        for key in self.non_trailer_keys:
            trailer.pop(key, None)
        return trailer

    def keys(self):
        return frozenset(chain(*self._trailer_revisions)) \
            - self.non_trailer_keys

    def __iter__(self):
        return iter(self.keys())

    def items(self):
        return self.flatten().items()


class ObjectLocationTable:
    """
    Mapping from object numbers to cross-reference entries.

    Entries are added from the most recent cross-reference section to the
    oldest one, so the first entry registered for an object number wins.
    Free entries shadow older in-use entries in the same way.
    """

    def __init__(self, trailer: Optional[TrailerDictionary] = None):
        self._entries: Dict[int, XRefEntry] = {}
        self.trailer = trailer if trailer is not None else TrailerDictionary()
        self.reconstructed = False
        """
        ``True`` if the table was obtained by scanning the file for objects.
        """

    def add(self, entry: XRefEntry) -> bool:
        """
        Register an entry, unless an entry for the same object number is
        already present.

        :return:
            ``True`` if the entry was registered.
        """
        if entry.idnum in self._entries:
            return False
        self._entries[entry.idnum] = entry
        return True

    def __getitem__(self, idnum: int) -> XRefEntry:
        return self._entries[idnum]

    def get(self, idnum: int) -> Optional[XRefEntry]:
        return self._entries.get(idnum)

    def __contains__(self, idnum):
        return idnum in self._entries

    def __len__(self):
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries)

    def in_use(self) -> Iterator[XRefEntry]:
        """
        Iterate over all entries that point to an object.
        """
        return (entry for entry in self._entries.values() if entry.in_use)


def find_startxref(source: ByteSource, window: int = 1024) -> int:
    """
    Find the offset declared by the last ``startxref`` keyword in the
    trailing ``window`` bytes of the source.

    :raises ParseError:
        If there is no (well-formed) ``startxref`` keyword in the window.
    """
    length = source.length()
    start = max(0, length - window)
    tail = bytes(source.read(start, length - start))
    loc = tail.rfind(STARTXREF)
    if loc == -1:
        raise ParseError("startxref not found")
    cursor = SourceCursor(source, start + loc + len(STARTXREF))
    tok = Lexer(cursor).next_token()
    if tok is None or tok.token_type != TokenType.INTEGER or tok.value < 0:
        raise ParseError("startxref not followed by an offset")
    return tok.value


def convert_to_int(d, size):
    if size <= 8:
        padding = bytes(8 - size)
        return struct.unpack(">q", padding + d)[0]
    else:
        return sum(digit * 256 ** (size - ix - 1) for ix, digit in enumerate(d))


def _expect_int(parser: ObjectParser, what: str) -> int:
    tok = parser.next_token()
    if tok is None or tok.token_type != TokenType.INTEGER or tok.value < 0:
        pos = parser.cursor.tell() if tok is None else tok.position
        raise ParseError(f"Expected {what} in xref table at byte {pos}")
    return tok.value


def parse_xref_table(parser: ObjectParser, strict: bool = False) \
        -> Iterator[XRefEntry]:
    """
    Parse a single cross-reference table and yield its entries one by one.
    On exit, the parser is positioned right after the ``trailer`` keyword.

    This is internal API.

    :param parser:
        An object parser positioned right after the ``xref`` keyword.
    :param strict:
        Boolean indicating whether we're running in strict mode.
    :return:
        A generator object yielding :class:`.XRefEntry` objects.
    """

    while True:
        tok = parser.peek_token()
        if tok is None:
            raise ParseError("Unexpected end of input in xref table")
        if tok.is_keyword('trailer'):
            parser.next_token()
            return
        num = _expect_int(parser, 'subsection start')
        size = _expect_int(parser, 'subsection size')
        for _ in range(size):
            # Entries are meant to be exactly 20 bytes long, but EOL markers
            # are regularly botched. Tokenising sidesteps that issue.
            offset = _expect_int(parser, 'offset')
            generation = _expect_int(parser, 'generation')
            marker = parser.next_token()
            if marker is not None and marker.is_keyword('n'):
                location = DirectLocation(offset)
            elif marker is not None and marker.is_keyword('f'):
                location = None
            else:
                raise ParseError(
                    f"Invalid xref entry for object {num}: "
                    f"expected 'n' or 'f'"
                )
            if generation > 0xFFFF:
                if strict:
                    raise ParseError(
                        f"Illegal generation {generation} for "
                        f"object ID {num}."
                    )
            else:
                yield XRefEntry(num, generation, location)
            num += 1


def parse_xref_stream(xref_stream: generic.StreamObject, data: bytes,
                      strict: bool = False) -> Iterator[XRefEntry]:
    """
    Parse a single cross-reference stream and yield its entries one by one.

    This is internal API.

    :param xref_stream:
        A :class:`~generic.StreamObject`.
    :param data:
        The decoded payload of the stream.
    :param strict:
        Boolean indicating whether we're running in strict mode.
    :return:
        A generator object yielding :class:`.XRefEntry` objects.
    """

    entry_sizes = xref_stream.get('/W')
    if not isinstance(entry_sizes, generic.ArrayObject) \
            or len(entry_sizes) != 3 \
            or not all(isinstance(w, int) and w >= 0 for w in entry_sizes):
        raise ParseError("Invalid /W array in xref stream")
    size = xref_stream.get('/Size')
    if not isinstance(size, int) or size < 0:
        raise ParseError("Invalid /Size in xref stream")
    # Index pairs specify the subsections in the dictionary. If
    # none create one subsection that spans everything.
    idx_pairs = xref_stream.get('/Index', [0, size])
    if not isinstance(idx_pairs, list) or \
            not all(isinstance(x, int) and x >= 0 for x in idx_pairs):
        raise ParseError("Invalid /Index array in xref stream")

    stream_data = memoryview(data)
    pos = 0
    entry_width = sum(entry_sizes)

    def get_entry(ix, record):
        # Reads the correct number of bytes for each entry. See the
        # discussion of the W parameter in ISO 32000-1 table 17.
        width = entry_sizes[ix]
        if width > 0:
            start = sum(entry_sizes[:ix])
            return convert_to_int(bytes(record[start:start + width]), width)
        # ISO 32000-1 Table 17: A value of zero for an element in the
        # W array indicates...the default value shall be used
        if ix == 0:
            return 1  # First value defaults to 1
        else:
            return 0

    try:
        subsections = list(pair_iter(idx_pairs))
    except ValueError as e:
        raise ParseError(f"Invalid /Index array in xref stream: {e}") from e

    for start, count in subsections:
        for num in range(start, start + count):
            record = stream_data[pos:pos + entry_width]
            if len(record) < entry_width:
                msg = (
                    "XRef stream ended prematurely; incomplete entry: "
                    f"expected to read {entry_width} bytes, but only got "
                    f"{len(record)}."
                )
                if strict:
                    raise ParseError(msg)
                logger.warning(msg)
                return
            pos += entry_width
            # The first entry is the type
            xref_type = get_entry(0, record)
            # The rest of the elements depend on the xref_type
            if xref_type == 1:
                # objects that are in use but are not compressed
                generation = get_entry(2, record)
                if generation > 0xFFFF:
                    if strict:
                        raise ParseError(
                            f"Illegal generation {generation} for "
                            f"object ID {num}."
                        )
                    continue
                yield XRefEntry(
                    num, generation, DirectLocation(get_entry(1, record))
                )
            elif xref_type == 2:
                # compressed objects
                yield XRefEntry(
                    num, 0, CompressedLocation(
                        get_entry(1, record), get_entry(2, record)
                    )
                )
            elif xref_type == 0:
                # freed object
                # we ignore the linked list aspect anyway
                yield XRefEntry(num, min(get_entry(2, record), 0xFFFF), None)
            # unknown types are ignored

    if pos < len(stream_data) and strict:
        raise ParseError("Trailing data in cross-reference stream")


def _direct_only(value):
    # xref streams are read before any object can be resolved
    if isinstance(value, generic.Reference):
        logger.debug(f"Ignoring indirect value {value} in xref stream")
        return None
    return value


_OBJ_HEADER_PATTERN = re.compile(
    rb'(?<![0-9])(\d{1,10})[\x00\t\n\f\r ]+(\d{1,5})[\x00\t\n\f\r ]+obj'
    rb'(?![^\x00\t\n\f\r ()<>\[\]{}/%])'
)


def _attempt_startxref_correction(source: ByteSource, startxref: int,
                                  search_radius: int = 16) -> int:
    # couldn't process data at location pointed to by startxref.
    # Let's see if we can find the xref section nearby, as we've observed this
    # error with an off-by-one before.
    lo = max(0, startxref - search_radius)
    hi = min(source.length(), startxref + search_radius + len(b'xref'))
    if hi <= lo:
        raise ParseError("Could not find xref section at specified location")
    window = bytes(source.read(lo, hi - lo))
    candidates = []
    xref_loc = window.find(b'xref')
    while xref_loc != -1:
        candidates.append(lo + xref_loc)
        xref_loc = window.find(b'xref', xref_loc + 1)
    # No explicit xref table, try finding a cross-reference stream.
    # The window might cut an object number in half, so back up to the
    # first digit.
    for match in re.finditer(rb'\d+[\x00\t\n\f\r ]+\d+[\x00\t\n\f\r ]+obj',
                             window):
        header_start = lo + match.start()
        while header_start > 0 and \
                bytes(source.read(header_start - 1, 1)).isdigit():
            header_start -= 1
        candidates.append(header_start)
    if not candidates:
        # no xref section found at specified location
        raise ParseError("Could not find xref section at specified location")
    # prefer the candidate closest to the declared offset
    return min(candidates, key=lambda c: abs(c - startxref))


class XRefBuilder:
    """
    Reads all cross-reference sections by following the chain of ``/Prev``
    pointers, starting from the most recent section.

    :param source:
        The byte source to read from.
    :param settings:
        Reader settings.
    """

    def __init__(self, source: ByteSource,
                 settings: ReaderSettings = DEFAULT_READER_SETTINGS):
        self.source = source
        self.settings = settings
        self.strict = settings.strict
        self.table = ObjectLocationTable()
        self.has_xref_stream = False
        self._visited = set()

    def _parser_at(self, offset: int) -> ObjectParser:
        cursor = SourceCursor(
            self.source, offset, chunk_size=self.settings.chunk_size
        )
        return ObjectParser(
            cursor, ContentMode.OBJECTS, strict=self.strict,
            endstream_tolerance=self.settings.endstream_tolerance,
        )

    def _read_xref_stream_object(self, offset: int) -> generic.StreamObject:
        parser = self._parser_at(offset)
        idnum, generation, xrefstream = parser.parse_indirect_object()
        if not isinstance(xrefstream, generic.StreamObject) \
                or xrefstream.get('/Type') != '/XRef':
            raise ParseError(
                f"Object {idnum} {generation} at byte {offset} is not an "
                f"xref stream"
            )
        return xrefstream

    def _stream_entries(self, xrefstream: generic.StreamObject):
        data = decode_stream(
            xrefstream, _direct_only, strict=self.strict,
            endstream_tolerance=self.settings.endstream_tolerance,
        )
        return parse_xref_stream(xrefstream, data, strict=self.strict)

    def _register(self, entries: Iterator[XRefEntry]) -> int:
        highest = -1
        for entry in entries:
            highest = max(highest, entry.idnum)
            if entry.idnum == 0:
                continue  # don't bother
            self.table.add(entry)
        return highest

    def _read_xref_stream(self, offset: int):
        xrefstream = self._read_xref_stream_object(offset)
        self._register(self._stream_entries(xrefstream))
        self.has_xref_stream = True
        logger.debug(f"Read xref stream at byte {offset}")
        self.table.trailer.add_trailer_revision(xrefstream.dictionary)
        return xrefstream.get('/Prev')

    def _read_xref_table(self, parser: ObjectParser, offset: int):
        highest = self._register(
            parse_xref_table(parser, strict=self.strict)
        )
        new_trailer = parser.parse_value()
        if not isinstance(new_trailer, generic.DictionaryObject):
            raise ParseError(f"Invalid trailer after xref table at {offset}")
        declared_size = new_trailer.get('/Size')

        if self.strict and isinstance(declared_size, int) \
                and highest >= declared_size:
            raise ParseError(
                f"Xref table size mismatch: table allocated object with id "
                f"{highest}, but according to the trailer {declared_size - 1} "
                f"is the maximal allowed object id."
            )

        hybrid_xref_stm_loc = new_trailer.get('/XRefStm')
        if isinstance(hybrid_xref_stm_loc, int):
            # entries in the table take precedence, since they were
            # registered first
            try:
                xrefstream = self._read_xref_stream_object(
                    hybrid_xref_stm_loc
                )
                self._register(self._stream_entries(xrefstream))
                logger.debug(
                    f"Read hybrid xref stream at byte {hybrid_xref_stm_loc}"
                )
            except PdfReadError as e:
                if self.strict:
                    raise
                logger.warning(
                    f"Failed to read hybrid xref stream at byte "
                    f"{hybrid_xref_stm_loc}: {e}"
                )
        logger.debug(f"Read xref table at byte {offset}")
        self.table.trailer.add_trailer_revision(new_trailer)
        return new_trailer.get('/Prev')

    def _read_section(self, startxref: int):
        parser = self._parser_at(startxref)
        parser.lexer.skip_whitespace()
        if parser.cursor.tell() != startxref:
            # This is common in linearised files, so we're not marking
            # this as an error, even in strict mode.
            logger.debug(
                "Encountered unexpected whitespace when looking "
                "for xref section"
            )
        tok = parser.peek_token()
        if tok is not None and tok.is_keyword('xref'):
            parser.next_token()
            return self._read_xref_table(parser, startxref)
        elif tok is not None and tok.token_type == TokenType.INTEGER:
            # PDF 1.5+ Cross-Reference Stream
            return self._read_xref_stream(tok.position)
        raise ParseError(f"No xref section at byte {startxref}")

    def _read_section_with_correction(self, startxref: int):
        try:
            return self._read_section(startxref)
        except PdfReadError as e:
            if self.strict:
                raise
            logger.debug(
                f"Failed to read xref section at byte {startxref}, "
                f"attempting to correct...", exc_info=e
            )
            corrected = _attempt_startxref_correction(self.source, startxref)
            if corrected == startxref:
                # the section is where it should be, but it's broken
                raise
        logger.warning(
            f"Xref section declared at byte {startxref} found at byte "
            f"{corrected} instead."
        )
        return self._read_section(corrected)

    def read_xrefs(self) -> ObjectLocationTable:
        """
        Read all cross-reference sections and their trailers.

        :raises PdfReadError:
            If the most recent section cannot be read.
        """
        startxref = find_startxref(
            self.source, self.settings.startxref_window
        )
        first = True
        while startxref is not None:
            if not isinstance(startxref, int) or startxref < 0:
                msg = f"Invalid /Prev value {startxref!r}"
                if self.strict or first:
                    raise ParseError(msg)
                logger.warning(msg)
                break
            if startxref in self._visited:
                msg = f"Cycle in /Prev chain at byte {startxref}"
                if self.strict:
                    raise ParseError(msg)
                logger.warning(msg)
                break
            self._visited.add(startxref)
            try:
                startxref = self._read_section_with_correction(startxref)
            except PdfReadError as e:
                if self.strict or first:
                    raise
                # the sections read so far are still usable
                logger.warning(
                    f"Failed to read earlier xref section at byte "
                    f"{startxref}, ignoring it and all older sections: {e}"
                )
                break
            first = False
        return self.table


def _parse_at(source: ByteSource, offset: int, settings: ReaderSettings):
    cursor = SourceCursor(source, offset, chunk_size=settings.chunk_size)
    parser = ObjectParser(
        cursor, ContentMode.OBJECTS,
        endstream_tolerance=settings.endstream_tolerance,
    )
    return parser


def parse_objstm_header(container: generic.StreamObject, data: bytes) \
        -> List[Tuple[int, int]]:
    """
    Read the header of an object stream.

    :param container:
        The object stream.
    :param data:
        The decoded payload of the object stream.
    :return:
        A list of ``(idnum, offset)`` pairs, where offsets are relative to
        the object stream's ``/First`` entry.
    """
    n = container.get('/N')
    if not isinstance(n, int) or n < 0:
        raise ParseError("Invalid /N in object stream")
    lexer = Lexer(SourceCursor(BytesSource(data)))
    result = []
    for _ in range(n):
        idnum_tok = lexer.next_token()
        offset_tok = lexer.next_token()
        if idnum_tok is None or offset_tok is None \
                or idnum_tok.token_type != TokenType.INTEGER \
                or offset_tok.token_type != TokenType.INTEGER:
            raise ParseError("Invalid object stream header")
        result.append((idnum_tok.value, offset_tok.value))
    return result


def reconstruct_xref_table(source: ByteSource,
                           settings: ReaderSettings = DEFAULT_READER_SETTINGS)\
        -> ObjectLocationTable:
    """
    Reconstruct an object location table by scanning the entire source
    for ``N G obj`` headers. This is the standard recovery procedure for
    files with a broken cross-reference chain.

    Later occurrences of an object number win over earlier ones.
    Trailer dictionaries (classic trailers and xref stream dictionaries)
    are collected, most recent first. If none of them declares a ``/Root``,
    the last object with ``/Type /Catalog`` is used.

    :raises InvalidDocument:
        If no document catalog could be found.
    """
    data = bytes(source.read(0, source.length()))
    found: Dict[int, XRefEntry] = {}
    for match in _OBJ_HEADER_PATTERN.finditer(data):
        idnum = int(match.group(1))
        generation = int(match.group(2))
        if idnum == 0 or idnum > 0xFFFFFFFF or generation > 0xFFFF:
            continue
        found[idnum] = XRefEntry(
            idnum, generation, DirectLocation(match.start())
        )
    logger.info(f"Xref reconstruction found {len(found)} object(s)")

    def scan_resolve(value):
        # resolve e.g. indirect /Length values using the objects found so far
        if not isinstance(value, generic.Reference):
            return value
        entry = found.get(value.idnum)
        if entry is None:
            return None
        try:
            _, _, result = _parse_at(
                source, entry.location.offset, settings
            ).parse_indirect_object()
        except PdfReadError:
            return None
        return None if isinstance(result, generic.StreamObject) else result

    table = ObjectLocationTable()
    table.reconstructed = True
    trailers: List[generic.DictionaryObject] = []
    catalog: Optional[XRefEntry] = None
    compressed: List[XRefEntry] = []

    # visit trailers and objects in file order
    candidates = [
        (m.end(), None) for m in re.finditer(rb'trailer', data)
    ]
    candidates.extend(
        (entry.location.offset, entry) for entry in found.values()
    )
    candidates.sort(key=lambda x: x[0])
    for pos, entry in candidates:
        parser = _parse_at(source, pos, settings)
        if entry is None:
            try:
                value = parser.parse_value()
            except PdfReadError as e:
                logger.debug(f"Could not parse trailer at byte {pos}: {e}")
                continue
            if isinstance(value, generic.DictionaryObject):
                trailers.append(value)
            continue
        try:
            _, _, value = parser.parse_indirect_object()
        except PdfReadError as e:
            logger.debug(
                f"Could not parse object {entry.idnum} at byte {pos}: {e}"
            )
            continue
        if isinstance(value, generic.StreamObject):
            obj_type = value.get('/Type')
            if obj_type == '/XRef':
                trailers.append(value.dictionary)
            elif obj_type == '/ObjStm':
                try:
                    payload = decode_stream(
                        value, scan_resolve,
                        endstream_tolerance=settings.endstream_tolerance
                    )
                    compressed.extend(
                        XRefEntry(member, 0, CompressedLocation(
                            entry.idnum, index
                        ))
                        for index, (member, _) in enumerate(
                            parse_objstm_header(value, payload)
                        )
                    )
                except PdfReadError as e:
                    logger.warning(
                        f"Could not read object stream {entry.idnum}: {e}"
                    )
        elif isinstance(value, generic.DictionaryObject) \
                and value.get('/Type') == '/Catalog':
            catalog = entry

    for entry in found.values():
        table.add(entry)
    for entry in compressed:
        # objects found at the top level take precedence
        table.add(entry)

    # the last trailer in the file is the most recent one
    for trailer in reversed(trailers):
        table.trailer.add_trailer_revision(trailer)

    root = table.trailer.get('/Root')
    if not (isinstance(root, generic.Reference) and root.idnum in table):
        if catalog is None:
            raise InvalidDocument(
                "Could not find the document catalog while reconstructing "
                "the cross-reference table"
            )
        logger.warning(
            f"Using object {catalog.idnum} {catalog.generation} "
            f"as the document catalog"
        )
        table.trailer.add_override(generic.DictionaryObject({
            '/Root': generic.Reference(catalog.idnum, catalog.generation),
        }))
    return table


def build_object_table(source: ByteSource,
                       settings: ReaderSettings = DEFAULT_READER_SETTINGS) \
        -> ObjectLocationTable:
    """
    Build the object location table for a document.

    The chain of cross-reference sections is read first. If that fails,
    or if the result does not point to a document catalog, the table is
    reconstructed by scanning the file (except in strict mode).

    :param source:
        The byte source to read from.
    :param settings:
        Reader settings.
    :raises InvalidDocument:
        If no usable table could be built.
    """
    try:
        table = XRefBuilder(source, settings).read_xrefs()
        if isinstance(table.trailer.get('/Root'), generic.Reference):
            return table
        err = "Trailer does not reference a document catalog"
    except PdfReadError as e:
        err = f"Failed to read cross-reference data: {e}"
    if settings.strict:
        raise InvalidDocument(err)
    logger.warning(f"{err}; reconstructing cross-reference table.")
    return reconstruct_xref_table(source, settings)
