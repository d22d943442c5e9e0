"""
Implementation of the PDF value types.
The value classes were adapted from pyHanko's object model (itself derived
from PyPDF2), with the object-writing and encryption machinery removed.

The variants form a closed union (see :data:`PdfValue`): they deliberately
do not share a common base class, and consumers dispatch on the concrete
type.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Union

__all__ = [
    'NullObject',
    'BooleanObject',
    'NumberObject',
    'FloatObject',
    'ByteStringObject',
    'NameObject',
    'ArrayObject',
    'DictionaryObject',
    'Reference',
    'StreamObject',
    'OperatorObject',
    'PdfValue',
    'pdf_name',
]

logger = logging.getLogger(__name__)

INT64_MIN = -(1 << 63)
INT64_MAX = (1 << 63) - 1


class NullObject:
    """
    PDF `null` object.

    All instances are treated as equal and falsy.
    """

    def __eq__(self, other):
        return self is other or isinstance(other, NullObject)

    def __hash__(self):
        return hash(None)

    def __bool__(self):
        return False

    def __repr__(self):
        return 'NullObject()'


class BooleanObject:
    """PDF boolean value."""

    def __init__(self, value):
        self.value = bool(value)

    def __bool__(self):
        return self.value

    def __eq__(self, other):
        return isinstance(other, (BooleanObject, bool)) and bool(self) == bool(
            other
        )

    def __hash__(self):
        return hash(self.value)

    def __repr__(self):
        return f'BooleanObject({self.value})'


class NumberObject(int):
    """
    PDF number object. This is the PDF type for integer values.

    Values that do not fit in a signed 64-bit integer are replaced by zero.
    """

    # noinspection PyArgumentList
    def __new__(cls, value):
        val = int(value)
        if not (INT64_MIN <= val <= INT64_MAX):
            logger.warning(f"Integer {val} out of range, replacing with 0")
            val = 0
        return int.__new__(cls, val)

    def __repr__(self):
        return f'NumberObject({int(self)})'


class FloatObject(float):
    """
    PDF real number.
    """

    def __repr__(self):
        return f'FloatObject({float(self)!r})'


class ByteStringObject(bytes):
    """
    PDF string, either from a literal or from a hexadecimal string.
    The escapes have already been resolved.
    """

    def __repr__(self):
        return f'ByteStringObject({bytes(self)!r})'


class NameObject(str):
    """
    PDF name object. These are valid Python strings (including the leading
    slash), but names and strings are treated differently in the PDF
    specification, so proper care is required.
    """

    def __repr__(self):
        return f'NameObject({str(self)!r})'


def pdf_name(name: str) -> NameObject:
    """
    Convenience function to create a name, adding the leading slash
    if required.
    """
    if not name.startswith('/'):
        name = '/' + name
    return NameObject(name)


class OperatorObject(str):
    """
    A bare keyword in a content stream, e.g. ``cm`` or ``Tj``.
    Operators carry no operands; those are the values read before them.
    """

    def __repr__(self):
        return f'OperatorObject({str(self)!r})'


class ArrayObject(list):
    """
    PDF array object. This class extends from Python's list class,
    and supports its interface.

    .. note::
        Indirect references are not resolved on access;
        use :meth:`.PdfDocument.deref` for that.
    """

    def __repr__(self):
        return f'ArrayObject({list.__repr__(self)})'


class DictionaryObject(dict):
    """
    A PDF dictionary object.

    Keys in a PDF dictionary are PDF names, and values are PDF values.
    Plain strings are accepted for lookups, with or without the leading
    slash.
    """

    def __init__(self, dict_data=None):
        if dict_data is not None:
            super().__init__(
                {_normalise_key(k): v for k, v in dict_data.items()}
            )
        else:
            super().__init__()

    def __getitem__(self, key):
        return dict.__getitem__(self, _normalise_key(key))

    def __contains__(self, key):
        return dict.__contains__(self, _normalise_key(key))

    def __setitem__(self, key, value):
        dict.__setitem__(self, _normalise_key(key), value)

    def get(self, key, default=None):
        return dict.get(self, _normalise_key(key), default)

    def __repr__(self):
        return f'DictionaryObject({dict.__repr__(self)})'


def _normalise_key(key):
    if isinstance(key, NameObject):
        return key
    if isinstance(key, str):
        return pdf_name(key)
    raise ValueError("key must be a PDF name")


@dataclass(frozen=True)
class Reference:
    """
    A reference to an indirect object with a certain ID and generation
    number.

    .. warning::
       Contrary to what one might expect, the generation number does *not*
       indicate the document revision in which the object was modified.
       If the generation number does not match the one in the
       cross-reference table, the reader falls back to the table's version.
    """

    idnum: int
    """
    The object's ID.
    """

    generation: int = 0
    """
    The object's generation number (usually `0`)
    """

    def __post_init__(self):
        if not (0 <= self.idnum <= 0xFFFFFFFF):
            raise ValueError(f"Object number {self.idnum} out of range")
        if not (0 <= self.generation <= 0xFFFF):
            raise ValueError(f"Generation {self.generation} out of range")


class StreamObject:
    """
    PDF stream object: a dictionary with a range of bytes attached to it.

    Only the location of the *encoded* payload is recorded when parsing;
    decoding happens on demand through :meth:`.PdfDocument.decode_stream`
    (see :mod:`.filters`).

    :param dictionary:
        The stream dictionary.
    :param source:
        The :class:`~.source.ByteSource` containing the payload.
    :param data_start:
        Offset of the first byte of the payload.
    :param data_end:
        Offset just after the last byte of the payload, if it could be
        established while parsing. This is either the end position implied
        by a direct ``/Length`` that was confirmed by an ``endstream``
        marker, or the position found by scanning for ``endstream``.
    :param length_verified:
        ``True`` if ``data_end`` was derived from a confirmed ``/Length``.
    """

    def __init__(self, dictionary: DictionaryObject, source, data_start: int,
                 data_end: Optional[int] = None,
                 length_verified: bool = False):
        self.dictionary = dictionary
        self.source = source
        self.data_start = data_start
        self.data_end = data_end
        self.length_verified = length_verified
        self._decoded: Optional[bytes] = None

    def __getitem__(self, key):
        return self.dictionary[key]

    def __contains__(self, key):
        return key in self.dictionary

    def get(self, key, default=None):
        return self.dictionary.get(key, default)

    def __eq__(self, other):
        return (
            isinstance(other, StreamObject)
            and self.dictionary == other.dictionary
            and self.source is other.source
            and self.data_start == other.data_start
        )

    def __hash__(self):
        return hash((id(self.source), self.data_start))

    def __repr__(self):
        return (
            f'StreamObject({self.dictionary!r}, data_start={self.data_start}, '
            f'data_end={self.data_end})'
        )


PdfValue = Union[
    NullObject, BooleanObject, NumberObject, FloatObject, ByteStringObject,
    NameObject, ArrayObject, DictionaryObject, Reference, StreamObject,
    OperatorObject,
]
"""
Union of all PDF value variants.
"""
