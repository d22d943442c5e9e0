"""
Utility functions for the reader, including the exception hierarchy.
Adapted from the PyPDF2-derived helpers in pyHanko.

Generally, all of these constitute internal API, except for the exception
classes.
"""

from typing import Iterable, Iterator, Optional, Tuple, TypeVar

__all__ = [
    'PdfError', 'PdfReadError', 'LexError', 'ParseError', 'ResolutionError',
    'PdfStreamError', 'UnsupportedFilter', 'InvalidDocument',
    'EncryptedDocumentError', 'OutOfRange', 'PageIndexOutOfRange',
    'PDF_WHITESPACE', 'PDF_DELIMITERS', 'is_whitespace', 'is_delimiter',
    'is_regular_character', 'pair_iter',
    'DEFAULT_CHUNK_SIZE',
]

DEFAULT_CHUNK_SIZE = 4096
"""
Default chunk size for reads from a byte source.
"""

PDF_WHITESPACE = b' \n\r\t\f\x00'
PDF_DELIMITERS = b'()<>[]{}/%'

_WHITESPACE_SET = frozenset(PDF_WHITESPACE)
_DELIMITER_SET = frozenset(PDF_DELIMITERS)


def is_whitespace(byte_value: int) -> bool:
    return byte_value in _WHITESPACE_SET


def is_delimiter(byte_value: int) -> bool:
    return byte_value in _DELIMITER_SET


def is_regular_character(byte_value: int) -> bool:
    return (
        byte_value not in _WHITESPACE_SET
        and byte_value not in _DELIMITER_SET
    )


T = TypeVar('T')


def pair_iter(lst: Iterable[T]) -> Iterator[Tuple[T, T]]:
    i = iter(lst)
    while True:
        try:
            x1 = next(i)
        except StopIteration:
            return
        try:
            x2 = next(i)
        except StopIteration:
            raise ValueError('List has odd number of elements')
        yield x1, x2


class PdfError(Exception):

    def __init__(self, msg: str, *args):
        self.msg = msg
        super().__init__(msg, *args)


class PdfReadError(PdfError):
    pass


class LexError(PdfReadError):
    """
    Raised when the lexer encounters a malformed token.

    :param msg:
        Error message.
    :param position:
        Offset of the offending byte, if known.
    """

    def __init__(self, msg: str, position: Optional[int] = None):
        self.position = position
        if position is not None:
            msg = f"{msg} (at byte {position})"
        super().__init__(msg)


class ParseError(PdfReadError):
    pass


class ResolutionError(PdfReadError):
    pass


class PdfStreamError(PdfReadError):
    pass


class UnsupportedFilter(PdfStreamError):
    pass


class InvalidDocument(PdfReadError):
    pass


class EncryptedDocumentError(InvalidDocument):
    def __init__(self, msg: Optional[str] = None):
        super().__init__(msg or "Encrypted documents are not supported")


class OutOfRange(PdfError, IndexError):
    pass


class PageIndexOutOfRange(PdfError, IndexError):
    def __init__(self, page_ix: int, page_count: int):
        self.page_ix = page_ix
        self.page_count = page_count
        super().__init__(
            f"Page index {page_ix} out of range; "
            f"document has {page_count} page(s)."
        )
