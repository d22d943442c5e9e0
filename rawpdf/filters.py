"""
Implementation of stream decoding.

The filter code was adapted from pyHanko (which took it from PyPDF2).
Only the Flate family is supported; any other filter raises
:class:`~.misc.UnsupportedFilter`, so that callers can distinguish
missing filter support from successfully decoded data.
"""
import logging
import zlib
from io import BytesIO
from typing import Callable, Iterator, Optional, Tuple

from . import generic
from .misc import PdfReadError, PdfStreamError, UnsupportedFilter
from .parser import _endstream_follows, find_endstream
from .source import SourceCursor

__all__ = [
    'Decoder',
    'FlateDecode',
    'get_generic_decoder',
    'stream_filters',
    'resolve_stream_range',
    'decode_stream',
]

logger = logging.getLogger(__name__)

compress = zlib.compress


class Decoder:
    """
    General filter/decoder interface.
    """

    def decode(self, data: bytes, decode_params: dict) -> bytes:
        """
        Decode a stream.

        :param data:
            Data to decode.
        :param decode_params:
            Decoder parameters, sourced from the ``/DecodeParms`` entry
            associated with this filter.
        :return:
            Decoded data.
        """
        raise NotImplementedError

    def encode(self, data: bytes, decode_params: dict) -> bytes:
        """
        Encode a stream.

        :param data:
            Data to encode.
        :param decode_params:
            Encoder parameters, sourced from the ``/DecodeParms`` entry
            associated with this filter.
        :return:
            Encoded data.
        """
        raise NotImplementedError


def _paeth(a: int, b: int, c: int) -> int:
    p = a + b - c
    pa = abs(p - a)
    pb = abs(p - b)
    pc = abs(p - c)
    if pa <= pb and pa <= pc:
        return a
    elif pb <= pc:
        return b
    return c


def _png_decode(data: memoryview, columns: int, bpp: int) -> bytes:
    output = BytesIO()
    # PNG prediction can vary from row to row
    rowlength = columns + 1
    if len(data) % rowlength:
        logger.warning(
            f"PNG predictor data length {len(data)} is not a multiple of the "
            f"row length {rowlength}; ignoring the incomplete last row."
        )

    prev_result = bytes(rowlength - 1)
    for row in range(len(data) // rowlength):
        rowdata = data[(row * rowlength):((row + 1) * rowlength)]
        filter_byte = rowdata[0]
        raw = rowdata[1:]
        result_row = bytearray(rowlength - 1)
        if filter_byte == 0:
            result_row[:] = raw
        elif filter_byte == 1:
            for i, x in enumerate(raw):
                left = result_row[i - bpp] if i >= bpp else 0
                result_row[i] = (x + left) % 256
        elif filter_byte == 2:
            for i, (x, y) in enumerate(zip(raw, prev_result)):
                result_row[i] = (x + y) % 256
        elif filter_byte == 3:
            for i, (x, up) in enumerate(zip(raw, prev_result)):
                left = result_row[i - bpp] if i >= bpp else 0
                result_row[i] = (x + (left + up) // 2) % 256
        elif filter_byte == 4:
            for i, (x, up) in enumerate(zip(raw, prev_result)):
                if i >= bpp:
                    left = result_row[i - bpp]
                    up_left = prev_result[i - bpp]
                else:
                    left = up_left = 0
                result_row[i] = (x + _paeth(left, up, up_left)) % 256
        else:
            raise PdfStreamError(f"Unsupported PNG filter {filter_byte!r}")
        prev_result = result_row
        output.write(result_row)
    return output.getvalue()


def _png_encode(data: bytes, columns: int, bpp: int, filter_byte: int):
    output = BytesIO()
    prev_row = bytes(columns)
    for start in range(0, len(data), columns):
        row = data[start:start + columns]
        row = row + bytes(columns - len(row))
        encoded = bytearray(columns)
        for i, x in enumerate(row):
            left = row[i - bpp] if i >= bpp else 0
            up = prev_row[i]
            up_left = prev_row[i - bpp] if i >= bpp else 0
            if filter_byte == 0:
                predicted = 0
            elif filter_byte == 1:
                predicted = left
            elif filter_byte == 2:
                predicted = up
            elif filter_byte == 3:
                predicted = (left + up) // 2
            else:
                predicted = _paeth(left, up, up_left)
            encoded[i] = (x - predicted) % 256
        output.write(bytes((filter_byte,)))
        output.write(encoded)
        prev_row = row
    return output.getvalue()


def _inflate(data: bytes) -> bytes:
    try:
        return zlib.decompress(data)
    except zlib.error as e:
        # salvage what we can from truncated or slightly corrupted data
        decompressor = zlib.decompressobj()
        try:
            result = decompressor.decompress(data)
        except zlib.error:
            result = b''
        if not result:
            raise PdfStreamError(f"Failed to inflate stream: {e}") from e
        logger.warning(
            f"Flate stream is corrupted ({e}); "
            f"using the {len(result)} byte(s) that could be recovered."
        )
        return result


class FlateDecode(Decoder):
    """
    Implementation of the ``/FlateDecode`` filter, including PNG predictors.

    .. note::
        TIFF predictors (``/Predictor 2``) are not supported.
    """

    @staticmethod
    def _predictor_params(decode_params) -> Tuple[int, int, int]:
        predictor = 1
        columns = 1
        bpp = 1
        if decode_params:
            predictor = decode_params.get('/Predictor', 1)
            columns = decode_params.get('/Columns', 1)
            colors = decode_params.get('/Colors', 1)
            bits = decode_params.get('/BitsPerComponent', 8)
            if not all(
                isinstance(x, int) for x in (predictor, columns, colors, bits)
            ):
                raise PdfStreamError("Invalid Flate decoding parameters")
            bytes_per_pixel = (colors * bits + 7) // 8
            columns = (columns * colors * bits + 7) // 8
            bpp = max(bytes_per_pixel, 1)
        return predictor, columns, bpp

    def decode(self, data: bytes, decode_params):
        inflated = _inflate(data)
        predictor, columns, bpp = self._predictor_params(decode_params)

        # predictor 1 == no predictor
        if predictor == 1:
            return inflated
        # PNG prediction:
        if 10 <= predictor <= 15:
            # there's lots of slicing ahead, so let's reduce copying overhead
            return _png_decode(memoryview(inflated), columns, bpp)
        raise UnsupportedFilter(
            f"Unsupported FlateDecode predictor {predictor!r}"
        )

    def encode(self, data: bytes, decode_params=None):
        predictor, columns, bpp = self._predictor_params(decode_params)
        if predictor == 1:
            return compress(data)
        if 10 <= predictor <= 15:
            # 15 means "optimum"; any per-row choice is valid, use Up
            filter_byte = 2 if predictor == 15 else predictor - 10
            return compress(_png_encode(data, columns, bpp, filter_byte))
        raise UnsupportedFilter(
            f"Unsupported FlateDecode predictor {predictor!r}"
        )


DECODERS = {
    '/FlateDecode': FlateDecode,
    '/Fl': FlateDecode,
}


def get_generic_decoder(name: str) -> Decoder:
    """
    Instantiate a specific stream filter decoder type by (PDF) name.

    The following names are recognised:

    * ``/FlateDecode`` or ``/Fl`` for the decoder implementing Flate
      compression.

    :param name:
        Name of the decoder to instantiate.
    :raises UnsupportedFilter:
        If the filter is not supported.
    """

    try:
        cls = DECODERS[name]
    except KeyError:
        raise UnsupportedFilter(f"Stream filter '{name}' is not supported.")
    return cls()


Resolver = Callable[[generic.PdfValue], generic.PdfValue]


def _no_resolve(value):
    if isinstance(value, generic.Reference):
        raise PdfStreamError(
            "Indirect references cannot be resolved in this context"
        )
    return value


def stream_filters(stream: generic.StreamObject,
                   resolve: Resolver = _no_resolve) \
        -> Iterator[Tuple[str, Optional[generic.DictionaryObject]]]:
    """
    Enumerate the filters declared on a stream, paired with their
    decoding parameters.

    :param stream:
        The stream to inspect.
    :param resolve:
        Function used to dereference indirect references.
    :return:
        An iterator of ``(filter_name, params)`` pairs in decoding order.
    """
    filter_arr = resolve(stream.get('/Filter'))
    if filter_arr is None or isinstance(filter_arr, generic.NullObject):
        return
    if isinstance(filter_arr, generic.NameObject):
        # we have a single filter instance
        filter_arr = (filter_arr,)
    elif not isinstance(filter_arr, generic.ArrayObject):
        raise PdfStreamError(
            '/Filter should be a name object or an array of names.'
        )

    decode_params = resolve(stream.get('/DecodeParms'))
    if isinstance(decode_params, generic.DictionaryObject):
        # one instance
        decode_params = [decode_params]
    elif isinstance(decode_params, generic.ArrayObject):
        decode_params = list(decode_params)
    else:
        decode_params = []
    lendiff = len(filter_arr) - len(decode_params)
    # this should be zero, but let's be lenient
    if lendiff > 0:
        decode_params += [None] * lendiff

    for filter_name, params in zip(filter_arr, decode_params):
        filter_name = resolve(filter_name)
        params = resolve(params)
        if not isinstance(filter_name, generic.NameObject):
            raise PdfStreamError(
                f"Filter names must be name objects, not {filter_name!r}"
            )
        if not isinstance(params, generic.DictionaryObject):
            params = None
        yield filter_name, params


def resolve_stream_range(stream: generic.StreamObject,
                         resolve: Resolver = _no_resolve,
                         strict: bool = False,
                         endstream_tolerance: int = 8) -> Tuple[int, int]:
    """
    Determine the byte range of a stream's encoded payload.

    The ``/Length`` entry is authoritative if ``endstream`` follows the
    range it describes. Otherwise, the boundary found by scanning for
    ``endstream`` is used.

    :return:
        A ``(start, end)`` pair of offsets into the stream's source.
    """
    if stream.length_verified:
        return stream.data_start, stream.data_end
    start = stream.data_start
    cursor = SourceCursor(stream.source)
    try:
        length = resolve(stream.get('/Length'))
    except PdfReadError as e:
        logger.warning(f"Could not resolve /Length of stream: {e}")
        length = None
    if isinstance(length, int) and not isinstance(
        length, generic.BooleanObject
    ) and length >= 0:
        end = start + length
        if end <= cursor.length and _endstream_follows(
            cursor, end, endstream_tolerance
        ):
            return start, end
    scanned = stream.data_end
    if scanned is None:
        scanned = find_endstream(cursor, start)
    if scanned is None:
        raise PdfStreamError(
            f"Unable to find 'endstream' marker after stream at byte {start}."
        )
    msg = (
        f"Stream at byte {start} declares /Length {length!r}, but the "
        f"payload ends at byte {scanned} (length {scanned - start})."
    )
    if strict:
        raise PdfStreamError(msg)
    logger.warning(msg + " Using the scanned boundary.")
    return start, scanned


def decode_stream(stream: generic.StreamObject,
                  resolve: Resolver = _no_resolve, strict: bool = False,
                  endstream_tolerance: int = 8) -> bytes:
    """
    Return the decoded payload of a stream. The result is memoised on the
    stream object.

    :param stream:
        The stream to decode.
    :param resolve:
        Function used to dereference indirect references (e.g. an indirect
        ``/Length``).
    :param strict:
        Whether to refuse ``/Length`` corrections.
    :param endstream_tolerance:
        Amount of whitespace tolerated before ``endstream``.
    :raises UnsupportedFilter:
        If one of the filters is not supported.
    :raises PdfStreamError:
        If the stream could not be decoded.
    """
    if stream._decoded is not None:
        return stream._decoded
    # fail early if any filter in the chain is unsupported
    decoders = [
        (get_generic_decoder(filter_name), params)
        for filter_name, params in stream_filters(stream, resolve)
    ]
    start, end = resolve_stream_range(
        stream, resolve, strict=strict,
        endstream_tolerance=endstream_tolerance,
    )
    data = bytes(stream.source.read(start, end - start))
    for decoder, params in decoders:
        data = decoder.decode(data, params)
    stream._decoded = data
    return data
