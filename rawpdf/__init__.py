"""
Low-level PDF reader: resolves the indirect object graph of a document,
walks its page tree and tokenizes page content streams.
"""

from .config import ReaderSettings
from .content import PageContents
from .misc import (
    EncryptedDocumentError,
    InvalidDocument,
    LexError,
    OutOfRange,
    PageIndexOutOfRange,
    ParseError,
    PdfError,
    PdfReadError,
    PdfStreamError,
    ResolutionError,
    UnsupportedFilter,
)
from .reader import PageHandle, PdfDocument
from .source import ByteSource, BytesSource, MemoryViewSource

__version__ = '0.1.0'

__all__ = [
    'PdfDocument', 'PageHandle', 'PageContents', 'ReaderSettings',
    'ByteSource', 'BytesSource', 'MemoryViewSource',
    'PdfError', 'PdfReadError', 'LexError', 'ParseError', 'ResolutionError',
    'PdfStreamError', 'UnsupportedFilter', 'InvalidDocument',
    'EncryptedDocumentError', 'OutOfRange', 'PageIndexOutOfRange',
]
