#!/usr/bin/env python3
# Licensed under the Apache-2.0 license
"""CBOR decoder producing ``cbor_items`` trees.

Pure Python, no external CBOR library: the raw bytes are walked head by head
(initial byte = 3 bit major type + 5 bit additional information, followed by
an optional 1/2/4/8 byte big-endian argument) exactly as RFC 8949 lays them
out. Unlike ``cbor2.loads`` the result keeps what a JSON conversion needs to
see: whether strings were chunked (indefinite length), the encoded width of
floats, map pairs in wire order with duplicate and non-string keys intact.

Containers are tracked on an explicit stack, so nesting depth is limited by
``max_depth`` only and never by the interpreter recursion limit.
"""
from __future__ import annotations

import enum
import logging
import struct
from typing import List, Optional, Tuple

from cbor_items import (
    SIMPLE_FALSE, SIMPLE_NULL, SIMPLE_TRUE,
    Array, Bool, ByteString, CBORItem, Float, Map, NegativeInt, Null,
    Simple, Tag, TextString, UnsignedInt,
)

logger = logging.getLogger(__name__)

# CBOR major types
UNSIGNED_INT = 0
NEGATIVE_INT = 1
BYTE_STRING = 2
TEXT_STRING = 3
ARRAY = 4
MAP = 5
TAG = 6
SIMPLE_OR_FLOAT = 7

INDEFINITE = 31
BREAK_CODE = 0xFF

DEFAULT_MAX_DEPTH = 512

_ARGUMENT_FORMATS = {24: '>B', 25: '>H', 26: '>I', 27: '>Q'}
_FLOAT_FORMATS = {25: '>e', 26: '>f', 27: '>d'}


# ----------------------------- ERRORS ------------------------------ #

class DecodeErrorCode(enum.Enum):
    NO_DATA = "no data"
    NOT_ENOUGH_DATA = "not enough data"
    MALFORMED = "malformed"
    DEPTH_EXCEEDED = "nesting depth exceeded"


class CBORDecodeError(ValueError):
    """Decoding failed.

    ``position`` is where the problem was detected and ``read`` the number of
    bytes consumed before it, both counted from the start offset.
    """

    def __init__(self, code: DecodeErrorCode, position: int, read: int, message: str = ""):
        self.code = code
        self.position = position
        self.read = read
        detail = f": {message}" if message else ""
        super().__init__(f"CBOR {code.value} at byte {position} (read {read} bytes){detail}")


# ------------------------- CBOR PRIMITIVES ------------------------- #

class _Frame:
    """An array, map or tag still waiting for its children."""

    def __init__(self, major: int, argument: Optional[int], tag: int = 0):
        self.major = major
        self.tag = tag
        self.definite = argument is not None
        if major == MAP and argument is not None:
            self.remaining = argument * 2
        else:
            self.remaining = argument
        self.children: List[CBORItem] = []

    def add(self, item: CBORItem) -> None:
        self.children.append(item)
        if self.remaining is not None:
            self.remaining -= 1

    @property
    def complete(self) -> bool:
        return self.remaining == 0

    def build(self) -> CBORItem:
        if self.major == ARRAY:
            return Array(tuple(self.children), self.definite)
        if self.major == MAP:
            it = iter(self.children)
            return Map(tuple(zip(it, it)), self.definite)
        return Tag(self.tag, self.children[0])


class _Reader:
    def __init__(self, data: bytes, start: int):
        self.data = data
        self.start = start
        self.offset = start

    def fail(self, code: DecodeErrorCode, position: int, read_end: int, message: str = ""):
        raise CBORDecodeError(code, position - self.start, read_end - self.start, message)

    def take(self, size: int, head_start: int) -> bytes:
        end = self.offset + size
        if end > len(self.data):
            self.fail(DecodeErrorCode.NOT_ENOUGH_DATA, len(self.data), head_start,
                      f"need {size} bytes, {len(self.data) - self.offset} left")
        chunk = bytes(self.data[self.offset:end])
        self.offset = end
        return chunk

    def at_break(self) -> bool:
        if self.offset >= len(self.data):
            self.fail(DecodeErrorCode.NOT_ENOUGH_DATA, self.offset, self.offset,
                      "missing break code")
        return self.data[self.offset] == BREAK_CODE

    def parse_cbor_header(self) -> Tuple[int, int, Optional[int]]:
        """Consume one head, returning (major, additional info, argument).

        For additional info 31 the argument is None; the caller decides whether
        indefinite length is allowed for the major type.
        """
        head_start = self.offset
        if self.offset >= len(self.data):
            self.fail(DecodeErrorCode.NOT_ENOUGH_DATA, self.offset, head_start, "missing item")
        initial = self.data[self.offset]
        self.offset += 1
        major = (initial >> 5) & 0x7
        ai = initial & 0x1F
        if ai < 24:
            return major, ai, ai
        if ai in _ARGUMENT_FORMATS:
            fmt = _ARGUMENT_FORMATS[ai]
            raw = self.take(struct.calcsize(fmt), head_start)
            return major, ai, struct.unpack(fmt, raw)[0]
        if ai == INDEFINITE:
            return major, ai, None
        self.fail(DecodeErrorCode.MALFORMED, head_start, head_start,
                  f"reserved additional information {ai}")

    def read_chunks(self, major: int, head_start: int) -> bytes:
        """Concatenate the definite chunks of an indefinite string."""
        chunks = []
        while not self.at_break():
            chunk_start = self.offset
            c_major, c_ai, length = self.parse_cbor_header()
            if c_major != major or c_ai == INDEFINITE:
                self.fail(DecodeErrorCode.MALFORMED, chunk_start, chunk_start,
                          "indefinite string chunk must be a definite string of the same type")
            chunks.append(self.take(length, chunk_start))
        self.offset += 1  # break
        logger.debug("Chunked string at byte %d: %d chunks", head_start - self.start, len(chunks))
        return b''.join(chunks)


def _simple_or_float(reader: _Reader, ai: int, value: Optional[int], head_start: int) -> CBORItem:
    if ai in _FLOAT_FORMATS:
        raw = reader.data[reader.offset - struct.calcsize(_FLOAT_FORMATS[ai]):reader.offset]
        return Float(struct.unpack(_FLOAT_FORMATS[ai], raw)[0], len(raw))
    if ai == INDEFINITE:
        reader.fail(DecodeErrorCode.MALFORMED, head_start, head_start, "unexpected break code")
    if ai == 24 and value < 32:
        reader.fail(DecodeErrorCode.MALFORMED, head_start, head_start,
                    f"two-byte encoding of simple value {value}")
    if value == SIMPLE_FALSE:
        return Bool(False)
    if value == SIMPLE_TRUE:
        return Bool(True)
    if value == SIMPLE_NULL:
        return Null()
    return Simple(value)


# ---------------------------- DECODER ------------------------------ #

def decode(data: bytes, start_offset: int = 0, max_depth: int = DEFAULT_MAX_DEPTH) -> Tuple[CBORItem, int]:
    """Decode the first CBOR data item found at ``start_offset``.

    Returns the item and the number of bytes it occupied. Bytes after the item
    are left alone.

    Raises:
        CBORDecodeError: on truncated or malformed input, or nesting deeper
            than ``max_depth``
    """
    if start_offset >= len(data):
        raise CBORDecodeError(DecodeErrorCode.NO_DATA, 0, 0, "empty input")
    reader = _Reader(data, start_offset)
    stack: List[_Frame] = []

    while True:
        head_start = reader.offset
        top = stack[-1] if stack else None
        item: Optional[CBORItem] = None

        if top is not None and not top.definite and reader.at_break():
            if top.major == MAP and len(top.children) % 2:
                reader.fail(DecodeErrorCode.MALFORMED, head_start, head_start,
                            "break inside a map pair")
            reader.offset += 1
            item = stack.pop().build()
        else:
            major, ai, value = reader.parse_cbor_header()
            if major in (UNSIGNED_INT, NEGATIVE_INT, TAG) and ai == INDEFINITE:
                reader.fail(DecodeErrorCode.MALFORMED, head_start, head_start,
                            f"indefinite length not allowed for major type {major}")

            if major == UNSIGNED_INT:
                item = UnsignedInt(value)
            elif major == NEGATIVE_INT:
                item = NegativeInt(value)
            elif major in (BYTE_STRING, TEXT_STRING):
                if ai == INDEFINITE:
                    payload, definite = reader.read_chunks(major, head_start), False
                else:
                    payload, definite = reader.take(value, head_start), True
                item = (ByteString if major == BYTE_STRING else TextString)(payload, definite)
            elif major in (ARRAY, MAP, TAG):
                if len(stack) >= max_depth:
                    reader.fail(DecodeErrorCode.DEPTH_EXCEEDED, head_start, head_start,
                                f"more than {max_depth} nested containers")
                if major == TAG:
                    frame = _Frame(TAG, 1, tag=value)
                else:
                    frame = _Frame(major, value)
                if frame.complete:
                    item = frame.build()
                else:
                    stack.append(frame)
                    continue
            else:
                item = _simple_or_float(reader, ai, value, head_start)

        # hand the finished item to its parents, closing every parent it completes
        while stack:
            parent = stack[-1]
            parent.add(item)
            if not parent.complete:
                break
            item = stack.pop().build()
        if not stack:
            read = reader.offset - start_offset
            if reader.offset < len(data):
                logger.debug("Ignoring %d trailing bytes after the first item",
                             len(data) - reader.offset)
            return item, read
