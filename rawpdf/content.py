"""
Tokenizer for page content streams.

Content streams are read as a flat sequence of operands and operators;
this module does not attempt to interpret them.
"""

import logging
from collections import deque
from typing import Iterable, Optional

from . import generic
from .misc import (
    DEFAULT_CHUNK_SIZE,
    LexError,
    ParseError,
    is_delimiter,
    is_whitespace,
)
from .parser import ContentMode, ObjectParser
from .source import BytesSource, SourceCursor

__all__ = ['PageContents', 'CONTENT_STREAM_SEPARATOR']

logger = logging.getLogger(__name__)

CONTENT_STREAM_SEPARATOR = b'\n'
"""
Byte inserted between consecutive content streams of a page, so that tokens
at the end of one stream are never glued to tokens at the start of the next.
"""


class PageContents:
    """
    Forward-only cursor over the content of a page.

    Operands are returned as the corresponding PDF values, and operators as
    :class:`~.generic.OperatorObject` instances. Once the end of the content
    has been reached, :meth:`next_object` keeps returning ``None``.

    Instances can also be used as iterators.
    They are not safe for concurrent use.

    :param data:
        The decoded content.
    :param strict:
        If ``True``, malformed tokens raise an error instead of being skipped.
        Tokenisation can still be resumed after such an error.
    :param chunk_size:
        Read size of the underlying cursor.
    """

    def __init__(self, data: bytes, strict: bool = False,
                 chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.data = data
        self.strict = strict
        self._cursor = SourceCursor(
            BytesSource(data), chunk_size=chunk_size
        )
        self._parser = ObjectParser(
            self._cursor, ContentMode.CONTENT, strict=strict
        )
        self._queued = deque()
        self._done = False

    @classmethod
    def from_streams(cls, chunks: Iterable[bytes], **kwargs) \
            -> 'PageContents':
        """
        Concatenate several decoded content streams.
        """
        return cls(CONTENT_STREAM_SEPARATOR.join(chunks), **kwargs)

    @classmethod
    def for_page(cls, document, page) -> 'PageContents':
        """
        Decode the content streams of a page and prepare them for
        tokenisation.

        :param document:
            The :class:`~.reader.PdfDocument` containing the page.
        :param page:
            A :class:`~.reader.PageHandle`.
        """
        chunks = [document.decode_stream(s) for s in page.contents]
        return cls.from_streams(
            chunks, strict=document.strict,
            chunk_size=document.settings.chunk_size
        )

    def next_object(self) -> Optional[generic.PdfValue]:
        """
        Read the next operand or operator.

        :return:
            The next value, or ``None`` if there are no more values.
        :raises LexError:
            In strict mode, if a malformed token is encountered.
        :raises ParseError:
            In strict mode, if a malformed value is encountered.
        """
        if self._queued:
            return self._queued.popleft()
        if self._done:
            return None
        while True:
            start = self._cursor.tell()
            try:
                value = self._parser.parse_value()
            except (LexError, ParseError) as e:
                self._parser.resync()
                if self.strict:
                    raise
                logger.warning(
                    f"Skipping malformed content between bytes {start} and "
                    f"{self._cursor.tell()}: {e}"
                )
                continue
            if value is None:
                self._done = True
                return None
            if isinstance(value, generic.OperatorObject) and value == 'ID':
                self._read_inline_image_data()
            return value

    def _find_inline_image_end(self, data_start: int) -> int:
        cursor = self._cursor
        pos = data_start
        while True:
            ei_pos = cursor.find(b'EI', start=pos)
            if ei_pos == -1:
                return -1
            after = ei_pos + 2
            if ei_pos >= data_start \
                    and is_whitespace(self.data[ei_pos - 1]) \
                    and (after >= len(self.data)
                         or is_whitespace(self.data[after])
                         or is_delimiter(self.data[after])):
                return ei_pos
            pos = ei_pos + 1

    def _read_inline_image_data(self):
        # binary image data follows the ID operator and a single whitespace
        # byte, and runs up to the EI operator
        cursor = self._cursor
        data_start = cursor.tell()
        if is_whitespace(cursor.peek()):
            data_start += 1
        ei_pos = self._find_inline_image_end(data_start)
        if ei_pos == -1:
            msg = f"Inline image at byte {data_start} has no EI operator"
            if self.strict:
                self._done = True
                raise ParseError(msg)
            logger.warning(msg)
            image_data = self.data[data_start:]
            self._parser.reset(len(self.data))
            self._queued.append(generic.ByteStringObject(image_data))
            return
        # the whitespace before EI is not part of the data
        image_data = self.data[data_start:max(data_start, ei_pos - 1)]
        self._parser.reset(ei_pos + 2)
        self._queued.append(generic.ByteStringObject(image_data))
        self._queued.append(generic.OperatorObject('EI'))

    def __iter__(self):
        return self

    def __next__(self) -> generic.PdfValue:
        value = self.next_object()
        if value is None:
            raise StopIteration
        return value
