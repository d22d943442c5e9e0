"""
Tokenizer for PDF syntax.

The lexer turns the bytes under a :class:`~.source.SourceCursor` into
:class:`.Token` objects. It does not interpret keywords: ``true``, ``obj``,
``R`` and content stream operators all come out as
:attr:`.TokenType.KEYWORD` tokens, and it is up to the
:mod:`value parser <.parser>` to classify them.
"""

import binascii
import enum
import logging
from dataclasses import dataclass
from io import BytesIO
from typing import Optional, Union

from .misc import LexError, is_delimiter, is_regular_character, is_whitespace
from .source import SourceCursor

__all__ = ['TokenType', 'Token', 'Lexer', 'decode_name']

logger = logging.getLogger(__name__)

_CR = 0x0D
_LF = 0x0A
_BACKSLASH = 0x5C
_HASH = 0x23
_DIGITS = frozenset(b'0123456789')
_OCTAL_DIGITS = frozenset(b'01234567')
_HEX_DIGITS = frozenset(b'0123456789abcdefABCDEF')
_NUMBER_START = frozenset(b'+-.0123456789')

_NAMED_ESCAPES = {
    ord('n'): b'\n',
    ord('r'): b'\r',
    ord('t'): b'\t',
    ord('b'): b'\b',
    ord('f'): b'\f',
    ord('('): b'(',
    ord(')'): b')',
    _BACKSLASH: b'\\',
}


@enum.unique
class TokenType(enum.Enum):
    INTEGER = enum.auto()
    REAL = enum.auto()
    STRING = enum.auto()
    NAME = enum.auto()
    KEYWORD = enum.auto()
    ARRAY_START = enum.auto()
    ARRAY_END = enum.auto()
    DICT_START = enum.auto()
    DICT_END = enum.auto()
    PROC_START = enum.auto()
    PROC_END = enum.auto()


@dataclass(frozen=True)
class Token:
    token_type: TokenType
    """
    The kind of token.
    """

    value: Union[int, float, bytes, str, None]
    """
    The token's value: an ``int`` or ``float`` for numbers, de-escaped
    ``bytes`` for strings, de-escaped ``str`` (including the slash)
    for names, and the raw ``str`` for keywords.
    Delimiter tokens have no value.
    """

    position: int
    """
    Offset of the first byte of the token.
    """

    def is_keyword(self, keyword: str) -> bool:
        return self.token_type == TokenType.KEYWORD and self.value == keyword


def _as_hex_digit(ascii_char: int, position: int) -> int:
    if 0x30 <= ascii_char <= 0x39:
        return ascii_char - 0x30
    elif 0x41 <= ascii_char <= 0x46:
        return ascii_char - 0x37
    elif 0x61 <= ascii_char <= 0x66:
        return ascii_char - 0x57
    else:
        raise LexError(
            "Numeric escape in PDF name must use hexadecimal digits", position
        )


def decode_name(name_bytes: bytes, position: int = None) -> str:
    """
    Decode the bytes that make up a name object (minus the initial /),
    expanding all ``#xx`` escapes along the way.

    :return:
        The name as a string, including the leading slash.
    """
    result = BytesIO()
    result.write(b'/')
    name_iter = iter(name_bytes)
    for cur_byte in name_iter:
        if cur_byte == _HASH:
            try:
                digit1 = next(name_iter)
                digit2 = next(name_iter)
            except StopIteration:
                raise LexError(
                    f"Unterminated escape in PDF name /{name_bytes!r}",
                    position,
                )
            cur_byte = (
                _as_hex_digit(digit1, position) * 16
                + _as_hex_digit(digit2, position)
            )
        result.write(bytes((cur_byte,)))
    raw = result.getvalue()
    # names are byte sequences without a prescribed encoding;
    # latin1 never fails, so it's the fallback
    try:
        return raw.decode('utf8')
    except UnicodeDecodeError:
        return raw.decode('latin1')


class Lexer:
    """
    PDF tokenizer operating on a :class:`~.source.SourceCursor`.

    The lexer never consumes more than the token it returns: after
    :meth:`next_token`, the cursor sits on the first byte following the
    token.

    :param cursor:
        The cursor to read from.
    """

    def __init__(self, cursor: SourceCursor):
        self.cursor = cursor

    def skip_whitespace(self):
        """
        Skip over whitespace and comments.
        """
        cursor = self.cursor
        while True:
            b = cursor.peek()
            if b == -1:
                return
            if is_whitespace(b):
                cursor.read_byte()
            elif b == 0x25:  # '%'
                while b not in (-1, _CR, _LF):
                    b = cursor.read_byte()
            else:
                return

    def skip_to_whitespace(self):
        """
        Resynchronisation helper: skip ahead to the next whitespace byte
        (or the end of the input).
        """
        cursor = self.cursor
        b = cursor.peek()
        while b != -1 and not is_whitespace(b):
            cursor.read_byte()
            b = cursor.peek()

    def next_token(self) -> Optional[Token]:
        """
        Read the next token.

        :return:
            A :class:`.Token`, or ``None`` at the end of the input.
        :raises LexError:
            If the input does not contain a well-formed token.
        """
        self.skip_whitespace()
        cursor = self.cursor
        pos = cursor.tell()
        b = cursor.peek()
        if b == -1:
            return None
        if b in _NUMBER_START:
            return self._read_number(pos)
        if b == 0x2F:  # '/'
            return self._read_name(pos)
        if b == 0x28:  # '('
            return Token(TokenType.STRING, self._read_literal_string(), pos)
        if b == 0x3C:  # '<'
            if cursor.peek(1) == 0x3C:
                cursor.read(2)
                return Token(TokenType.DICT_START, None, pos)
            return Token(TokenType.STRING, self._read_hex_string(), pos)
        if b == 0x3E:  # '>'
            if cursor.peek(1) == 0x3E:
                cursor.read(2)
                return Token(TokenType.DICT_END, None, pos)
            cursor.read_byte()
            raise LexError("Unexpected '>'", pos)
        if b == 0x5B:  # '['
            cursor.read_byte()
            return Token(TokenType.ARRAY_START, None, pos)
        if b == 0x5D:  # ']'
            cursor.read_byte()
            return Token(TokenType.ARRAY_END, None, pos)
        if b == 0x7B:  # '{'
            cursor.read_byte()
            return Token(TokenType.PROC_START, None, pos)
        if b == 0x7D:  # '}'
            cursor.read_byte()
            return Token(TokenType.PROC_END, None, pos)
        if is_regular_character(b):
            return self._read_keyword(pos)
        # only ')' remains
        cursor.read_byte()
        raise LexError(f"Unexpected byte 0x{b:02x}", pos)

    def _read_regular_run(self) -> bytes:
        cursor = self.cursor
        out = bytearray()
        b = cursor.peek()
        while b != -1 and is_regular_character(b):
            out.append(b)
            cursor.read_byte()
            b = cursor.peek()
        return bytes(out)

    def _read_keyword(self, pos: int) -> Token:
        word = self._read_regular_run()
        return Token(TokenType.KEYWORD, word.decode('latin1'), pos)

    def _read_number(self, pos: int) -> Token:
        cursor = self.cursor
        out = bytearray()
        b = cursor.peek()
        if b in (0x2B, 0x2D):  # sign
            out.append(b)
            cursor.read_byte()
            b = cursor.peek()
        seen_dot = False
        while b != -1:
            if b in _DIGITS:
                out.append(b)
            elif b == 0x2E and not seen_dot:
                seen_dot = True
                out.append(b)
            else:
                break
            cursor.read_byte()
            b = cursor.peek()

        # the number ends at the first byte that cannot continue it,
        # e.g. "792re" lexes as 792 followed by re
        digits = bytes(out).lstrip(b'+-')
        if not digits.strip(b'.'):
            raise LexError(f"Malformed number {bytes(out)!r}", pos)
        text = bytes(out).decode('ascii')
        if seen_dot:
            return Token(TokenType.REAL, float(text), pos)
        return Token(TokenType.INTEGER, int(text), pos)

    def _read_name(self, pos: int) -> Token:
        self.cursor.read_byte()  # '/'
        name_bytes = self._read_regular_run()
        return Token(TokenType.NAME, decode_name(name_bytes, pos), pos)

    def _read_literal_string(self) -> bytes:
        cursor = self.cursor
        start = cursor.tell()
        cursor.read_byte()  # '('
        parens = 1
        txt = bytearray()
        while True:
            b = cursor.read_byte()
            if b == -1:
                raise LexError("Unterminated literal string", start)
            if b == 0x28:
                parens += 1
            elif b == 0x29:
                parens -= 1
                if parens == 0:
                    break
            elif b == _BACKSLASH:
                txt += self._read_escape(start)
                continue
            elif b == _CR:
                # an unescaped EOL is always read as a single LF
                if cursor.peek() == _LF:
                    cursor.read_byte()
                b = _LF
            txt.append(b)
        return bytes(txt)

    def _read_escape(self, string_start: int) -> bytes:
        cursor = self.cursor
        b = cursor.read_byte()
        if b == -1:
            raise LexError("Unterminated escape in literal string",
                           string_start)
        try:
            return _NAMED_ESCAPES[b]
        except KeyError:
            pass
        if b in _OCTAL_DIGITS:
            # "The number ddd may consist of one, two, or three
            # octal digits; high-order overflow shall be ignored."
            # (ISO 32000-1, 7.3.4.2)
            digits = [b]
            while len(digits) < 3 and cursor.peek() in _OCTAL_DIGITS:
                digits.append(cursor.read_byte())
            return bytes((int(bytes(digits), base=8) & 0xFF,))
        if b == _CR:
            # line continuation, consume LF of a CRLF pair
            if cursor.peek() == _LF:
                cursor.read_byte()
            return b''
        if b == _LF:
            return b''
        # the backslash is ignored for any other character
        return bytes((b,))

    def _read_hex_string(self) -> bytes:
        cursor = self.cursor
        start = cursor.tell()
        cursor.read_byte()  # '<'
        digits = bytearray()
        while True:
            b = cursor.read_byte()
            if b == -1:
                raise LexError("Unterminated hex string", start)
            if b == 0x3E:
                break
            if is_whitespace(b):
                continue
            if b not in _HEX_DIGITS:
                raise LexError(
                    f"Unexpected byte 0x{b:02x} in hex string", start
                )
            digits.append(b)
        if len(digits) % 2:
            digits.append(0x30)
        return binascii.unhexlify(bytes(digits))
