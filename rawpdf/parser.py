"""
Parser for PDF values, built on top of the :mod:`.lexer`.

The same parser is used for indirect objects in the document body, for
the contents of object streams and for page content streams
(see :class:`.ContentMode`).
"""

import enum
import logging
from typing import List, Optional, Tuple

from . import generic
from .lexer import Lexer, Token, TokenType
from .misc import LexError, ParseError
from .source import SourceCursor

__all__ = [
    'ContentMode', 'ObjectParser', 'MAX_NESTING', 'find_endstream',
    'read_value',
]

logger = logging.getLogger(__name__)

ENDSTREAM = b'endstream'

_CR = 0x0D
_LF = 0x0A


class ContentMode(enum.Enum):
    """
    Determines how bare keywords are treated by :class:`.ObjectParser`.
    """

    OBJECTS = enum.auto()
    """
    Document body syntax: unknown keywords are errors.
    """

    CONTENT = enum.auto()
    """
    Content stream syntax: unknown keywords are operators.
    """


def find_endstream(cursor: SourceCursor, data_start: int) -> Optional[int]:
    """
    Scan forward from ``data_start`` for the ``endstream`` keyword.

    :return:
        The offset of the end of the stream payload (i.e. with the EOL marker
        preceding ``endstream`` stripped), or ``None`` if there is no
        ``endstream`` keyword anywhere after ``data_start``.
    """
    marker_pos = cursor.find(ENDSTREAM, start=data_start)
    if marker_pos == -1:
        return None
    end = marker_pos
    # the EOL before endstream is not part of the data
    if end > data_start:
        tail = cursor.source.read(
            max(data_start, end - 2), min(2, end - data_start)
        )
        tail = bytes(tail)
        if tail.endswith(b'\r\n'):
            end -= 2
        elif tail[-1:] in (b'\n', b'\r'):
            end -= 1
    return end


def _endstream_follows(cursor: SourceCursor, pos: int, tolerance: int) -> bool:
    """
    Check whether the ``endstream`` keyword follows ``pos``, allowing for at
    most ``tolerance`` bytes of whitespace in between.
    """
    if pos < 0 or pos > cursor.length:
        return False
    window = bytes(cursor.source.read(
        pos, min(tolerance + len(ENDSTREAM), cursor.length - pos)
    ))
    stripped = window.lstrip(b' \n\r\t\f\x00')
    return stripped.startswith(ENDSTREAM)


MAX_NESTING = 512
"""
Maximal number of arrays and dictionaries that may be open at the same time
while parsing a single value.
"""


class _OpenContainer:
    """
    An array or dictionary whose closing delimiter has not been read yet.
    """

    def __init__(self, start: Token, is_dict: bool):
        self.start = start
        self.is_dict = is_dict
        self.items = {} if is_dict else []
        # dictionary key waiting for its value
        self.key: Optional[generic.NameObject] = None

    def expects_key(self) -> bool:
        return self.is_dict and self.key is None


class ObjectParser:
    """
    Parser turning lexer tokens into PDF values.

    :param cursor:
        The cursor to read from.
    :param mode:
        Determines how bare keywords are treated.
    :param strict:
        In strict mode, some recoverable irregularities become errors.
    :param endstream_tolerance:
        Number of whitespace bytes tolerated between the end of a stream
        payload (as indicated by ``/Length``) and ``endstream``.
    """

    def __init__(self, cursor: SourceCursor,
                 mode: ContentMode = ContentMode.OBJECTS,
                 strict: bool = False, endstream_tolerance: int = 8):
        self.cursor = cursor
        self.lexer = Lexer(cursor)
        self.mode = mode
        self.strict = strict
        self.endstream_tolerance = endstream_tolerance
        # pushed-back tokens, the next token to read is the last one
        self._pending: List[Token] = []

    def next_token(self) -> Optional[Token]:
        if self._pending:
            return self._pending.pop()
        return self.lexer.next_token()

    def peek_token(self) -> Optional[Token]:
        tok = self.next_token()
        if tok is not None:
            self._pending.append(tok)
        return tok

    def push_back(self, tok: Token):
        self._pending.append(tok)

    def reset(self, pos: int):
        """
        Discard any lookahead and move to a new position.
        """
        self._pending.clear()
        self.cursor.seek(pos)

    def resync(self):
        """
        Discard lookahead and skip to the next whitespace boundary.
        Used to recover from malformed content.
        """
        if self._pending:
            # resume right after the earliest token we looked ahead at
            pos = min(tok.position for tok in self._pending)
            self._pending.clear()
            self.cursor.seek(pos + 1)
        self.lexer.skip_to_whitespace()

    def parse_value(self) -> Optional[generic.PdfValue]:
        """
        Parse a single value.

        :return:
            The value read, or ``None`` at the end of the input.
        :raises LexError:
            If a token is malformed.
        :raises ParseError:
            If the tokens do not form a valid value.
        """
        tok = self.next_token()
        if tok is None:
            return None
        return self._parse_from(tok)

    def _require_token(self, context: str) -> Token:
        tok = self.next_token()
        if tok is None:
            raise ParseError(f"Unexpected end of input while reading {context}")
        return tok

    def _parse_from(self, tok: Token) -> generic.PdfValue:
        # Containers are tracked on an explicit stack, so that deeply nested
        # input cannot exhaust the interpreter's recursion limit.
        stack: List[_OpenContainer] = []
        while True:
            tt = tok.token_type
            value = None
            if stack and stack[-1].expects_key():
                if tt == TokenType.DICT_END:
                    value = self._close_dictionary(stack.pop())
                elif tt == TokenType.NAME:
                    stack[-1].key = generic.NameObject(tok.value)
                else:
                    raise ParseError(
                        f"Dictionary key must be a name, found "
                        f"{tt.name} at byte {tok.position}"
                    )
            elif tt in (TokenType.ARRAY_START, TokenType.DICT_START):
                if len(stack) >= MAX_NESTING:
                    raise ParseError(
                        f"Nesting too deep at byte {tok.position}"
                    )
                stack.append(_OpenContainer(
                    tok, tt == TokenType.DICT_START
                ))
            elif tt == TokenType.ARRAY_END and stack \
                    and not stack[-1].is_dict:
                value = generic.ArrayObject(stack.pop().items)
            elif tt == TokenType.DICT_END and stack and stack[-1].is_dict:
                # the only way to get here is a key without a value
                raise ParseError(
                    f"Missing value for key {stack[-1].key} in dictionary "
                    f"at byte {stack[-1].start.position}"
                )
            else:
                value = self._parse_simple(tok)

            if value is not None:
                if not stack:
                    return value
                self._add_to(stack[-1], value)

            tok = self.next_token()
            if tok is None:
                start = stack[-1].start
                kind = 'dictionary' if stack[-1].is_dict else 'array'
                raise ParseError(
                    f"Unterminated {kind} starting at byte {start.position}"
                )

    def _parse_simple(self, tok: Token) -> generic.PdfValue:
        tt = tok.token_type
        if tt == TokenType.INTEGER:
            return self._parse_number_or_reference(tok)
        elif tt == TokenType.REAL:
            return generic.FloatObject(tok.value)
        elif tt == TokenType.STRING:
            return generic.ByteStringObject(tok.value)
        elif tt == TokenType.NAME:
            return generic.NameObject(tok.value)
        elif tt == TokenType.KEYWORD:
            return self._parse_keyword(tok)
        raise ParseError(f"Unexpected token {tt.name} at byte {tok.position}")

    def _add_to(self, container: _OpenContainer, value):
        if not container.is_dict:
            container.items.append(value)
            return
        key = container.key
        container.key = None
        if key not in container.items:
            container.items[key] = value
            return
        err = (
            f"Multiple definitions in dictionary at byte "
            f"{container.start.position} for key {key}"
        )
        if self.strict:
            raise ParseError(err)
        logger.warning(err)

    def _parse_keyword(self, tok: Token) -> generic.PdfValue:
        word = tok.value
        if word == 'true':
            return generic.BooleanObject(True)
        elif word == 'false':
            return generic.BooleanObject(False)
        elif word == 'null':
            return generic.NullObject()
        elif self.mode == ContentMode.CONTENT:
            return generic.OperatorObject(word)
        raise ParseError(
            f"Unexpected keyword '{word}' at byte {tok.position}"
        )

    def _parse_number_or_reference(self, tok: Token) -> generic.PdfValue:
        # N G R: look ahead at most two tokens
        if self.mode == ContentMode.OBJECTS and tok.value >= 0:
            second = self.next_token()
            if second is not None and second.token_type == TokenType.INTEGER \
                    and second.value >= 0:
                third = self.next_token()
                if third is not None and third.is_keyword('R'):
                    try:
                        return generic.Reference(tok.value, second.value)
                    except ValueError as e:
                        raise ParseError(str(e)) from e
                if third is not None:
                    self.push_back(third)
            if second is not None:
                self.push_back(second)
        return generic.NumberObject(tok.value)

    def _close_dictionary(self, container: _OpenContainer):
        dictionary = generic.DictionaryObject(container.items)
        if self.mode == ContentMode.OBJECTS:
            nxt = self.peek_token()
            if nxt is not None and nxt.is_keyword('stream'):
                self.next_token()
                return self._read_stream(dictionary)
        return dictionary

    def _skip_stream_eol(self):
        cursor = self.cursor
        # odd PDF file output has spaces after 'stream' keyword
        # but before EOL.
        while cursor.peek() in (0x20, 0x09, 0x0C, 0x00):
            cursor.read_byte()
        b = cursor.peek()
        if b == _CR:
            cursor.read_byte()
            if cursor.peek() == _LF:
                cursor.read_byte()
        elif b == _LF:
            cursor.read_byte()
        else:
            logger.warning(
                f"Missing EOL after stream keyword at byte {cursor.tell()}"
            )

    def _read_stream(self, dictionary) -> generic.StreamObject:
        # no lookahead is pending here, so the cursor is right after the
        # 'stream' keyword
        self._skip_stream_eol()
        cursor = self.cursor
        data_start = cursor.tell()
        length = dictionary.get('/Length')
        data_end = None
        verified = False
        if isinstance(length, generic.NumberObject) and length >= 0:
            declared_end = data_start + length
            if declared_end <= cursor.length and _endstream_follows(
                cursor, declared_end, self.endstream_tolerance
            ):
                data_end = declared_end
                verified = True
            else:
                logger.warning(
                    f"Stream at byte {data_start} has incorrect /Length "
                    f"{length}; scanning for endstream."
                )
        if data_end is None:
            data_end = find_endstream(cursor, data_start)
            if data_end is None and not isinstance(length, generic.Reference):
                raise ParseError(
                    f"Unable to find 'endstream' marker after stream at "
                    f"byte {data_start}."
                )

        stream = generic.StreamObject(
            dictionary, cursor.source, data_start, data_end,
            length_verified=verified,
        )
        # position the cursor after 'endstream', if we know where it is
        if data_end is not None:
            marker = cursor.find(ENDSTREAM, start=data_end)
            if marker != -1:
                cursor.seek(marker + len(ENDSTREAM))
        return stream

    def parse_object_header(self) -> Tuple[int, int]:
        """
        Read an ``N G obj`` header.

        :return:
            The object number and generation.
        """
        first = self._require_token('object header')
        second = self._require_token('object header')
        third = self._require_token('object header')
        if first.token_type != TokenType.INTEGER \
                or second.token_type != TokenType.INTEGER \
                or not third.is_keyword('obj'):
            raise ParseError(
                f"Expected object header at byte {first.position}"
            )
        return first.value, second.value

    def parse_indirect_object(self) -> Tuple[int, int, generic.PdfValue]:
        """
        Parse an ``N G obj <value> endobj`` construct at the current position,
        and strip the wrapper.

        :return:
            A triple containing the object number, the generation and the
            value.
        """
        idnum, generation = self.parse_object_header()
        tok = self._require_token('object body')
        if tok.is_keyword('endobj'):
            # an empty object is equivalent to null
            logger.warning(f"Object {idnum} {generation} is empty")
            return idnum, generation, generic.NullObject()
        value = self._parse_from(tok)
        try:
            end = self.next_token()
        except LexError:
            end = None
        if end is None or not end.is_keyword('endobj'):
            err = f"Missing endobj for object {idnum} {generation}"
            if self.strict:
                raise ParseError(err)
            logger.debug(err)
        return idnum, generation, value


def read_value(cursor: SourceCursor, **kwargs) -> generic.PdfValue:
    """
    Convenience wrapper to parse one value at the cursor's position.
    Leaves the cursor right after the value.
    """
    parser = ObjectParser(cursor, **kwargs)
    result = parser.parse_value()
    if result is None:
        raise ParseError("Unexpected end of input")
    # restore the position of any token we looked ahead at
    if parser._pending:
        cursor.seek(min(tok.position for tok in parser._pending))
    return result

