"""
Random-access byte sources and a buffered cursor on top of them.

A byte source only needs to support two operations (see :class:`.ByteSource`);
everything else in this library reads through a :class:`.SourceCursor`.
"""

import logging
from typing import Union

from .misc import DEFAULT_CHUNK_SIZE, OutOfRange

__all__ = [
    'BytesLike', 'ByteSource', 'BytesSource', 'MemoryViewSource',
    'SourceCursor',
]

logger = logging.getLogger(__name__)

BytesLike = Union[bytes, memoryview]
"""
Return type of :meth:`.ByteSource.read`. Callers that need an actual
:class:`bytes` object wrap the result in ``bytes()``.
"""


class ByteSource:
    """
    Read-only, random-access view on the bytes of a document.

    Implementations must allow concurrent positioned reads, i.e. they may
    not rely on a shared mutable file pointer.
    """

    def length(self) -> int:
        """
        :return:
            The total number of bytes available.
        """
        raise NotImplementedError

    def read(self, offset: int, count: int) -> BytesLike:
        """
        Read exactly ``count`` bytes starting at ``offset``.

        :param offset:
            Absolute offset of the first byte to read.
        :param count:
            Number of bytes to read.
        :return:
            A bytes-like object of length ``count``, which may be a
            :class:`memoryview` into the underlying buffer.
        :raises OutOfRange:
            If the requested range does not lie within the source.
        """
        raise NotImplementedError

    def _check_range(self, offset: int, count: int):
        if offset < 0 or count < 0 or offset + count > self.length():
            raise OutOfRange(
                f"Cannot read {count} byte(s) at offset {offset}; "
                f"source has length {self.length()}."
            )


class BytesSource(ByteSource):
    """
    Byte source that owns an immutable copy of its data.

    :param data:
        The document's bytes.
    """

    def __init__(self, data: Union[bytes, bytearray, memoryview]):
        self._data = bytes(data)

    def length(self) -> int:
        return len(self._data)

    def read(self, offset: int, count: int) -> bytes:
        self._check_range(offset, count)
        return self._data[offset:offset + count]


class MemoryViewSource(ByteSource):
    """
    Byte source that borrows a buffer without copying it.
    Any object supporting the buffer protocol works, including
    :class:`mmap.mmap` instances.

    The caller must keep the underlying buffer alive and unmodified for
    as long as the source is in use.

    :param buffer:
        The buffer to wrap.
    """

    def __init__(self, buffer):
        self._view = memoryview(buffer).cast('B')

    def length(self) -> int:
        return len(self._view)

    def read(self, offset: int, count: int) -> memoryview:
        self._check_range(offset, count)
        # zero-copy slice of the borrowed buffer
        return self._view[offset:offset + count]


class SourceCursor:
    """
    Forward-oriented cursor over a :class:`.ByteSource` that reads ahead in
    chunks. Seeking is supported; seeking within the current chunk is free.

    This is internal API.

    :param source:
        The byte source to read from.
    :param offset:
        Initial position.
    :param chunk_size:
        Size of the read-ahead window.
    """

    def __init__(self, source: ByteSource, offset: int = 0,
                 chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.source = source
        self.chunk_size = max(chunk_size, 16)
        self._length = source.length()
        self._pos = offset
        self._buf = b''
        self._buf_start = 0

    @property
    def length(self) -> int:
        return self._length

    def tell(self) -> int:
        return self._pos

    def seek(self, pos: int):
        self._pos = pos

    def at_end(self) -> bool:
        return self._pos >= self._length

    def _fill(self, pos: int) -> bool:
        count = min(self.chunk_size, self._length - pos)
        if pos < 0 or count <= 0:
            return False
        self._buf = self.source.read(pos, count)
        self._buf_start = pos
        return True

    def _byte_at(self, pos: int) -> int:
        rel = pos - self._buf_start
        if not (0 <= rel < len(self._buf)):
            if not self._fill(pos):
                return -1
            rel = 0
        return self._buf[rel]

    def peek(self, ahead: int = 0) -> int:
        """
        Return the byte at the current position (plus ``ahead``) without
        consuming it, or ``-1`` past the end of the source.
        """
        return self._byte_at(self._pos + ahead)

    def read_byte(self) -> int:
        """
        Consume and return one byte, or return ``-1`` at the end of the source.
        """
        b = self._byte_at(self._pos)
        if b != -1:
            self._pos += 1
        return b

    def read(self, count: int) -> bytes:
        """
        Consume up to ``count`` bytes. Fewer bytes are returned at the end of
        the source.
        """
        count = max(0, min(count, self._length - self._pos))
        if not count:
            return b''
        rel = self._pos - self._buf_start
        if 0 <= rel and rel + count <= len(self._buf):
            result = self._buf[rel:rel + count]
        else:
            result = self.source.read(self._pos, count)
        self._pos += count
        return bytes(result)

    def find(self, marker: bytes, start: int = None, end: int = None) -> int:
        """
        Find the first occurrence of ``marker`` at or after ``start``
        (default: the current position) and before ``end``, without moving the
        cursor.

        :return:
            The absolute offset of the match, or ``-1``.
        """
        pos = self._pos if start is None else start
        end = self._length if end is None else min(end, self._length)
        overlap = len(marker) - 1
        while pos < end:
            count = min(self.chunk_size, end - pos)
            chunk = self.source.read(pos, count)
            ix = bytes(chunk).find(marker)
            if ix != -1:
                return pos + ix
            if pos + count >= end:
                break
            pos += max(count - overlap, 1)
        return -1
