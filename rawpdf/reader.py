"""
Utility to read PDF files.

The :class:`.PdfDocument` class resolves indirect objects on demand, caches
the results, and provides access to the page tree. Objects are only parsed
when they are first requested, and every object is parsed at most once.
"""

import logging
import re
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple, Union

from . import generic
from .config import DEFAULT_READER_SETTINGS, ReaderSettings
from .content import PageContents
from .filters import decode_stream
from .misc import (
    EncryptedDocumentError,
    InvalidDocument,
    PageIndexOutOfRange,
    PdfReadError,
    ResolutionError,
)
from .parser import ContentMode, ObjectParser
from .source import ByteSource, BytesSource, SourceCursor
from .xref import (
    CompressedLocation,
    DirectLocation,
    ObjectLocationTable,
    build_object_table,
    parse_objstm_header,
    reconstruct_xref_table,
)

logger = logging.getLogger(__name__)


__all__ = [
    'PdfDocument',
    'PageHandle',
    'parse_catalog_version',
]

header_regex = re.compile(b'%PDF-(\\d)\\.(\\d)')
catalog_version_regex = re.compile(r'/(\d)\.(\d)')

HEADER_SEARCH_WINDOW = 1024

INHERITABLE_PAGE_ATTRIBUTES = ('/Resources', '/MediaBox', '/CropBox', '/Rotate')


def parse_catalog_version(version_str) -> Optional[Tuple[int, int]]:
    m = catalog_version_regex.match(str(version_str))
    if m is not None:
        major = int(m.group(1))
        minor = int(m.group(2))
        return major, minor
    return None


def _read_header_version(source: ByteSource) -> Tuple[int, int]:
    window = bytes(source.read(0, min(HEADER_SEARCH_WINDOW, source.length())))
    m = header_regex.search(window)
    if m is None:
        raise InvalidDocument('Illegal PDF header')
    if m.start() > 0:
        logger.debug(f"PDF header found at byte {m.start()}")
    return int(m.group(1)), int(m.group(2))


class PdfDocument:
    """
    Class implementing functionality to read a PDF file and cache
    the objects it contains.

    Constructing a document reads the header and the cross-reference data;
    everything else is read lazily.

    :param source:
        The :class:`~.source.ByteSource` to read from.
    :param settings:
        Reader settings, see :class:`~.config.ReaderSettings`.
    :raises InvalidDocument:
        If the source is not a PDF file, or if no usable cross-reference
        data and document catalog could be found (even after attempting
        to reconstruct them).
    :raises EncryptedDocumentError:
        If the document is encrypted.
    """

    def __init__(self, source: ByteSource,
                 settings: Optional[ReaderSettings] = None):
        self.source = source
        self.settings = settings = settings or DEFAULT_READER_SETTINGS
        self.strict = settings.strict
        self._lock = threading.RLock()
        self._reset_caches()
        self._header_version = _read_header_version(source)
        self._input_version = None

        try:
            self.xrefs: ObjectLocationTable = build_object_table(
                source, settings
            )
        except PdfReadError as e:
            if isinstance(e, InvalidDocument):
                raise
            raise InvalidDocument(f"Could not read xref data: {e}") from e

        if '/Encrypt' in self.xrefs.trailer:
            raise EncryptedDocumentError()

        try:
            self._root = self._load_root()
        except PdfReadError as e:
            if self.strict or self.xrefs.reconstructed:
                raise InvalidDocument(
                    f"Could not load document catalog: {e}"
                ) from e
            logger.warning(
                f"Could not load document catalog ({e}); "
                f"reconstructing cross-reference table."
            )
            self._reset_caches()
            self.xrefs = reconstruct_xref_table(source, settings)
            if '/Encrypt' in self.xrefs.trailer:
                raise EncryptedDocumentError()
            try:
                self._root = self._load_root()
            except PdfReadError as e2:
                raise InvalidDocument(
                    f"Could not load document catalog: {e2}"
                ) from e2

    @classmethod
    def from_bytes(cls, data: Union[bytes, bytearray],
                   settings: Optional[ReaderSettings] = None) \
            -> 'PdfDocument':
        """
        Convenience constructor to read a document from a bytes object.
        """
        return cls(BytesSource(data), settings=settings)

    def _reset_caches(self):
        self._resolved: Dict[int, generic.PdfValue] = {}
        self._failures: Dict[int, PdfReadError] = {}
        self._in_progress: Set[int] = set()
        self._objstm_headers: Dict[int, Dict[int, Tuple[int, int]]] = {}
        self._leaf_counts: Dict[int, int] = {}

    def _load_root(self) -> generic.DictionaryObject:
        root_ref = self.xrefs.trailer.get('/Root')
        if not isinstance(root_ref, generic.Reference):
            raise ResolutionError("Trailer has no /Root reference")
        root = self.get_object(root_ref)
        if not isinstance(root, generic.DictionaryObject):
            raise ResolutionError("Document catalog is not a dictionary")
        return root

    @property
    def trailer(self) -> generic.DictionaryObject:
        """
        The document's trailer, merged across all revisions.
        """
        return self.xrefs.trailer.flatten()

    @property
    def root(self) -> generic.DictionaryObject:
        """
        The document catalog.
        """
        return self._root

    @property
    def input_version(self) -> Tuple[int, int]:
        input_version = self._input_version
        if input_version is not None:
            return input_version
        header_version = self._header_version

        try:
            version = self.deref(self.root['/Version'])
            input_version = parse_catalog_version(version) or header_version
        except (KeyError, PdfReadError):
            input_version = header_version

        self._input_version = input_version
        return input_version

    # Object resolution

    def resolve(self, idnum: int) -> generic.PdfValue:
        """
        Resolve an indirect object by number.

        The result is cached, and so are failures: an object that could not
        be read once will not be read again.

        :param idnum:
            The object number.
        :return:
            The object's value.
        :raises ResolutionError:
            If the object is not in use, if a cycle is detected, or if the
            resolution chain is too deep.
        :raises PdfReadError:
            If the object could not be parsed.
        """
        with self._lock:
            try:
                return self._resolved[idnum]
            except KeyError:
                pass
            try:
                raise self._failures[idnum]
            except KeyError:
                pass

            if idnum in self._in_progress:
                raise ResolutionError(
                    f"Cycle detected while resolving object {idnum}"
                )
            if len(self._in_progress) >= self.settings.max_depth:
                raise ResolutionError(
                    f"Resolution chain too deep while resolving object "
                    f"{idnum}"
                )
            self._in_progress.add(idnum)
            try:
                value = self._read_object(idnum)
            except PdfReadError as e:
                self._failures[idnum] = e
                raise
            finally:
                self._in_progress.discard(idnum)
            self._resolved[idnum] = value
            return value

    def get_object(self, ref: generic.Reference) -> generic.PdfValue:
        """
        Read an object from the input.

        If the generation number does not match the one in the
        cross-reference table, the table's version is used.

        :param ref:
            :class:`~.generic.Reference` to the object.
        :return:
            The object's value.
        """
        entry = self.xrefs.get(ref.idnum)
        if entry is not None and entry.generation != ref.generation:
            logger.warning(
                f"Reference {ref.idnum} {ref.generation} R does not match "
                f"generation {entry.generation} in cross-reference table; "
                f"using the latter."
            )
        return self.resolve(ref.idnum)

    def deref(self, value: generic.PdfValue) -> generic.PdfValue:
        """
        Dereference a value if it is a reference, and return it unchanged
        otherwise.
        """
        if isinstance(value, generic.Reference):
            return self.get_object(value)
        return value

    def __call__(self, value):
        return self.deref(value)

    def _parser_for(self, source: ByteSource, offset: int) -> ObjectParser:
        cursor = SourceCursor(
            source, offset, chunk_size=self.settings.chunk_size
        )
        return ObjectParser(
            cursor, ContentMode.OBJECTS, strict=self.strict,
            endstream_tolerance=self.settings.endstream_tolerance
        )

    def _read_object(self, idnum: int) -> generic.PdfValue:
        entry = self.xrefs.get(idnum)
        if entry is None:
            raise ResolutionError(
                f"Object {idnum} not found in cross-reference table"
            )
        location = entry.location
        if location is None:
            raise ResolutionError(f"Object {idnum} is free")
        elif isinstance(location, CompressedLocation):
            return self._get_object_from_stream(
                idnum, location.container_idnum, location.index
            )
        assert isinstance(location, DirectLocation)
        if not (0 <= location.offset < self.source.length()):
            raise ResolutionError(
                f"Object {idnum} is located at byte {location.offset}, which "
                f"is outside the file."
            )
        parser = self._parser_for(self.source, location.offset)
        read_idnum, generation, value = parser.parse_indirect_object()
        if read_idnum != idnum:
            raise ResolutionError(
                f"Expected object ID {idnum} at byte {location.offset}, but "
                f"found {read_idnum} {generation} obj."
            )
        if generation != entry.generation:
            logger.debug(
                f"Generation mismatch for object {idnum}: "
                f"{generation} in file, {entry.generation} in xref table"
            )
        return value

    def _objstm_header(self, stmnum: int, stream: generic.StreamObject,
                       data: bytes) -> Dict[int, Tuple[int, int]]:
        header = self._objstm_headers.get(stmnum)
        if header is None:
            header = {
                objnum: (ix, offset) for ix, (objnum, offset)
                in reversed(list(enumerate(parse_objstm_header(stream, data))))
            }
            self._objstm_headers[stmnum] = header
        return header

    def _get_object_from_stream(self, idnum, stmnum, idx):
        # indirect reference to object in object stream
        # read the entire object stream into memory
        stream = self.resolve(stmnum)
        # This is an xref to a stream, so its type better be a stream
        if not isinstance(stream, generic.StreamObject) \
                or stream.get('/Type') != '/ObjStm':
            raise ResolutionError(
                f"Object {idnum} should be in object stream {stmnum}, "
                f"but that object is not an object stream."
            )
        data = self.decode_stream(stream)
        header = self._objstm_header(stmnum, stream, data)
        try:
            actual_idx, offset = header[idnum]
        except KeyError:
            raise ResolutionError(
                f"Object stream {stmnum} does not contain object {idnum}"
            )
        if actual_idx != idx:
            msg = (
                f"Object {idnum} is at index {actual_idx} in object stream "
                f"{stmnum}, not at index {idx}."
            )
            if self.strict:
                raise ResolutionError(msg)
            logger.warning(msg)
        first_object = stream.get('/First')
        if not isinstance(first_object, int) or first_object < 0:
            raise ResolutionError(f"Invalid /First in object stream {stmnum}")
        parser = self._parser_for(BytesSource(data), first_object + offset)
        obj = parser.parse_value()
        if obj is None:
            raise ResolutionError(
                f"Object {idnum} in object stream {stmnum} is truncated"
            )
        if isinstance(obj, (generic.StreamObject, generic.Reference)):
            raise ResolutionError(
                f"Object {idnum} in object stream {stmnum} is a "
                f"{type(obj).__name__}, which is not allowed there."
            )
        return obj

    def decode_stream(self, stream: generic.StreamObject) -> bytes:
        """
        Return the decoded payload of a stream, resolving indirect
        ``/Length`` and filter parameters as necessary.

        :raises UnsupportedFilter:
            If the stream uses a filter that is not supported.
        :raises PdfStreamError:
            If the stream could not be decoded.
        """
        with self._lock:
            return decode_stream(
                stream, self.deref, strict=self.strict,
                endstream_tolerance=self.settings.endstream_tolerance
            )

    # Page tree

    def _pages_root(self) -> generic.DictionaryObject:
        try:
            pages = self.deref(self.root['/Pages'])
        except KeyError:
            raise ResolutionError("Document catalog has no /Pages entry")
        if not isinstance(pages, generic.DictionaryObject):
            raise ResolutionError("Page tree root is not a dictionary")
        return pages

    @staticmethod
    def _is_page_tree_node(node: generic.DictionaryObject) -> bool:
        node_type = node.get('/Type')
        if node_type == '/Pages':
            return True
        elif node_type == '/Page':
            return False
        # be lenient if /Type is missing
        return '/Kids' in node

    def _kids(self, node: generic.DictionaryObject):
        kids = self.deref(node.get('/Kids'))
        if not isinstance(kids, generic.ArrayObject):
            raise ResolutionError("Page tree node has no /Kids array")
        for kid_ref in kids:
            kid = self.deref(kid_ref)
            if not isinstance(kid, generic.DictionaryObject):
                logger.warning(
                    f"Ignoring page tree entry {kid_ref!r}, which is not a "
                    f"dictionary"
                )
                continue
            idnum = kid_ref.idnum \
                if isinstance(kid_ref, generic.Reference) else None
            yield kid_ref, idnum, kid

    def _enter(self, idnum: Optional[int], ancestors: List[int]):
        if idnum is not None and idnum in ancestors:
            raise ResolutionError(
                f"Circular reference in page tree at object {idnum}"
            )
        if len(ancestors) >= self.settings.max_depth:
            raise ResolutionError("Page tree is too deep")

    def _leaf_count(self, node: generic.DictionaryObject,
                    idnum: Optional[int], ancestors: List[int]) -> int:
        if idnum is not None:
            try:
                return self._leaf_counts[idnum]
            except KeyError:
                pass
        self._enter(idnum, ancestors)
        path = ancestors + [idnum] if idnum is not None else ancestors + [-1]
        count = 0
        for _, kid_idnum, kid in self._kids(node):
            if self._is_page_tree_node(kid):
                count += self._leaf_count(kid, kid_idnum, path)
            else:
                self._enter(kid_idnum, path)
                count += 1
        if idnum is not None:
            self._leaf_counts[idnum] = count
        return count

    def page_count(self) -> int:
        """
        Count the pages in the document.

        ``/Count`` entries are not trusted; the pages are counted by walking
        the page tree. Counts for intermediate nodes are memoised.

        :raises ResolutionError:
            If the page tree is malformed (e.g. cyclic).
        """
        with self._lock:
            pages = self._pages_root()
            root_ref = self.root.get('/Pages')
            idnum = root_ref.idnum \
                if isinstance(root_ref, generic.Reference) else None
            return self._leaf_count(pages, idnum, [])

    def _find_page(self, node: generic.DictionaryObject, idnum: Optional[int],
                   ancestors: List[int], remaining: int):
        # Look for the page at offset 'remaining' in this subtree.
        # Returns a (ref, dictionary) pair if it is found, or the number of
        # pages in the subtree otherwise.
        self._enter(idnum, ancestors)
        path = ancestors + [idnum if idnum is not None else -1]
        count = 0
        for kid_ref, kid_idnum, kid in self._kids(node):
            if self._is_page_tree_node(kid):
                known = self._leaf_counts.get(kid_idnum) \
                    if kid_idnum is not None else None
                if known is not None and count + known <= remaining:
                    # skip subtrees that were counted before
                    count += known
                    continue
                found = self._find_page(
                    kid, kid_idnum, path, remaining - count
                )
                if isinstance(found, tuple):
                    return found
                count += found
            else:
                self._enter(kid_idnum, path)
                if count == remaining:
                    return kid_ref, kid
                count += 1
        if idnum is not None:
            self._leaf_counts[idnum] = count
        return count

    def page(self, index: int) -> 'PageHandle':
        """
        Retrieve a page by index.

        The page tree is only walked as far as necessary to reach the
        requested page.

        :param index:
            The (zero-indexed) number of the page to retrieve.
        :return:
            A :class:`.PageHandle`.
        :raises PageIndexOutOfRange:
            If there is no page with the given index.
        """
        with self._lock:
            if index < 0:
                raise PageIndexOutOfRange(index, self.page_count())
            root_ref = self.root.get('/Pages')
            idnum = root_ref.idnum \
                if isinstance(root_ref, generic.Reference) else None
            known = self._leaf_counts.get(idnum) if idnum is not None else None
            if known is not None and index >= known:
                raise PageIndexOutOfRange(index, known)
            found = self._find_page(self._pages_root(), idnum, [], index)
            if not isinstance(found, tuple):
                # the whole tree was walked, so this is the page count
                raise PageIndexOutOfRange(index, found)
            kid_ref, kid = found
            ref = kid_ref if isinstance(kid_ref, generic.Reference) else None
            return PageHandle(
                document=self, index=index, ref=ref, dictionary=kid,
            )

    def page_contents(self, index: int) -> PageContents:
        """
        Open the content stream(s) of a page for tokenisation.

        :param index:
            The (zero-indexed) number of the page.
        :return:
            A :class:`~.content.PageContents` object.
        :raises PageIndexOutOfRange:
            If there is no page with the given index.
        """
        page = self.page(index)
        return PageContents.for_page(self, page)


@dataclass(frozen=True)
class PageHandle:
    """
    A leaf of the page tree.
    """

    document: PdfDocument = field(repr=False, compare=False)
    """
    The document containing the page.
    """

    index: int
    """
    The (zero-indexed) position of the page in the document.
    """

    ref: Optional[generic.Reference]
    """
    Reference to the page object (``None`` for a direct page dictionary).
    """

    dictionary: generic.DictionaryObject = field(compare=False)
    """
    The page dictionary.
    """

    def get_inherited(self, key: str, default=None):
        """
        Look up an attribute on the page, or on its ancestors in the page
        tree if the page does not define it. The result is dereferenced.

        :raises ResolutionError:
            If the ``/Parent`` chain is cyclic or too deep.
        """
        doc = self.document
        node = self.dictionary
        seen: Set[int] = set()
        if self.ref is not None:
            seen.add(self.ref.idnum)
        depth = 0
        while True:
            try:
                return doc.deref(node[key])
            except KeyError:
                pass
            parent_ref = node.get('/Parent')
            if parent_ref is None:
                return default
            if isinstance(parent_ref, generic.Reference):
                if parent_ref.idnum in seen:
                    raise ResolutionError(
                        f"Circular /Parent reference at object "
                        f"{parent_ref.idnum}"
                    )
                seen.add(parent_ref.idnum)
            depth += 1
            if depth > doc.settings.max_depth:
                raise ResolutionError("Page tree is too deep")
            node = doc.deref(parent_ref)
            if not isinstance(node, generic.DictionaryObject):
                return default

    @property
    def resources(self) -> Optional[generic.DictionaryObject]:
        return self.get_inherited('/Resources')

    @property
    def media_box(self) -> Optional[generic.ArrayObject]:
        return self.get_inherited('/MediaBox')

    @property
    def crop_box(self) -> Optional[generic.ArrayObject]:
        # the crop box defaults to the media box
        crop_box = self.get_inherited('/CropBox')
        return crop_box if crop_box is not None else self.media_box

    @property
    def rotate(self) -> int:
        rotate = self.get_inherited('/Rotate', 0)
        return int(rotate) if isinstance(rotate, int) else 0

    @property
    def contents(self) -> List[generic.StreamObject]:
        """
        The page's content streams, in order.

        :raises ResolutionError:
            If one of the entries is not a stream.
        """
        contents = self.document.deref(self.dictionary.get('/Contents'))
        if contents is None or isinstance(contents, generic.NullObject):
            return []
        if isinstance(contents, generic.StreamObject):
            return [contents]
        if not isinstance(contents, generic.ArrayObject):
            raise ResolutionError(
                f"/Contents of page {self.index} is neither a stream "
                f"nor an array"
            )
        result = []
        for item in contents:
            stream = self.document.deref(item)
            if isinstance(stream, generic.NullObject):
                continue
            if not isinstance(stream, generic.StreamObject):
                raise ResolutionError(
                    f"/Contents of page {self.index} contains a non-stream "
                    f"entry {item!r}"
                )
            result.append(stream)
        return result
