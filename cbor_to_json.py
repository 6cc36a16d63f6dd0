#!/usr/bin/env python3
# Licensed under the Apache-2.0 license
"""CBOR item tree to JSON value tree.

CBOR can say more than JSON, so a few constructs are mapped lossily:

  * byte strings become ``"b"`` + uppercase hex (``b'\\xde\\xad'`` -> ``"bDEAD"``)
  * chunked (indefinite length) strings and simple values other than
    true/false/null become fixed "Unsupported CBOR item" strings
  * map keys that are neither definite text strings nor unsigned integers
    become ``"Surrogate key <index>"``
  * tags are not interpreted; the content is wrapped as ``{"tag_<n>": content}``

Conversion never fails: every item tree yields a complete JSON tree.

JSON values are plain Python values (``int``/``float``, ``str``, ``bool``,
``None``, ``list``) plus ``JSONObject`` for objects, which keeps key order and
repeated keys.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Iterator, List, Tuple, Union

from cbor_items import (
    Array, Bool, ByteString, CBORItem, Float, Map, NegativeInt, Null,
    Simple, Tag, TextString, UnsignedInt,
)

logger = logging.getLogger(__name__)

# Longest map key taken from a text string, in UTF-8 bytes. The cut backs off
# to a character boundary, so unlike a plain byte cut (as a fixed 128-byte C
# buffer does) a truncated key may come out a few bytes shorter.
MAX_KEY_LENGTH = 127

CHUNKED_BYTESTRING = "Unsupported CBOR item: Chunked Bytestring"
CHUNKED_STRING = "Unsupported CBOR item: Chunked string"
CONTROL_VALUE = "Unsupported CBOR item: Control value"

SURROGATE_KEY = "Surrogate key %d"
TAG_KEY = "tag_%d"


class JSONObject:
    """JSON object as an ordered list of (key, value) pairs.

    Keys are not deduplicated; JSON text allows repeats and CBOR maps may
    produce them (``{"1": .., 1: ..}`` both end up under ``"1"``).
    """

    def __init__(self, pairs=None):
        self.pairs: List[Tuple[str, Any]] = list(pairs or [])

    def append(self, key: str, value: Any) -> None:
        self.pairs.append((key, value))

    def items(self) -> List[Tuple[str, Any]]:
        return list(self.pairs)

    def keys(self) -> List[str]:
        return [k for k, _ in self.pairs]

    def __len__(self) -> int:
        return len(self.pairs)

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, JSONObject):
            return NotImplemented
        return self.pairs == other.pairs

    def __repr__(self) -> str:
        return f"JSONObject({self.pairs!r})"


JSONValue = Union[None, bool, int, float, str, List[Any], JSONObject]


def bytes_to_text(data: bytes) -> str:
    return data.decode('utf-8', errors='replace')


def truncate_utf8(data: bytes, limit: int = MAX_KEY_LENGTH) -> bytes:
    """Cut ``data`` to at most ``limit`` bytes without splitting a character."""
    if len(data) <= limit:
        return data
    end = limit
    # step back over continuation bytes (10xxxxxx) of a cut character
    while end > 0 and (data[end] & 0xC0) == 0x80:
        end -= 1
    return data[:end]


def hex_bytestring(data: bytes) -> str:
    return "b" + data.hex().upper()


def map_key(key: CBORItem, index: int) -> str:
    """JSON key for the map pair at ``index``.

    Definite text strings are used as is (truncated to MAX_KEY_LENGTH bytes),
    unsigned integers in decimal, anything else gets a positional surrogate.
    """
    if isinstance(key, TextString) and key.definite:
        return bytes_to_text(truncate_utf8(key.data))
    if isinstance(key, UnsignedInt):
        return str(key.value)
    logger.debug("Surrogate key for %s map key at index %d", type(key).__name__, index)
    return SURROGATE_KEY % index


def _convert_leaf(item: Any) -> JSONValue:
    if isinstance(item, UnsignedInt):
        return item.value
    if isinstance(item, NegativeInt):
        return -1 - item.value
    if isinstance(item, ByteString):
        if item.definite:
            return hex_bytestring(item.data)
        return CHUNKED_BYTESTRING
    if isinstance(item, TextString):
        if item.definite:
            return bytes_to_text(item.data)
        return CHUNKED_STRING
    if isinstance(item, Bool):
        return item.value
    if isinstance(item, Null):
        return None
    if isinstance(item, Simple):
        logger.debug("Simple value %d has no JSON counterpart", item.value)
        return CONTROL_VALUE
    if isinstance(item, Float):
        return item.value
    logger.warning("Not a CBOR item: %r, emitting null", type(item).__name__)
    return None


def convert(item: CBORItem) -> JSONValue:
    """Convert a CBOR item tree into a JSON value tree.

    Walks the tree with an explicit work list, so arbitrarily deep input does
    not hit the recursion limit. Order of array elements and map pairs is kept.
    """
    result: List[JSONValue] = []
    # (item, callback placing its converted value into the parent)
    work: List[Tuple[Any, Callable[[JSONValue], None]]] = [(item, result.append)]

    while work:
        current, place = work.pop()

        if isinstance(current, Array):
            out: List[JSONValue] = []
            place(out)
            work.extend((child, out.append) for child in reversed(current.items))
        elif isinstance(current, Map):
            obj = JSONObject()
            place(obj)
            pending = []
            for index, (key, value) in enumerate(current.pairs):
                pending.append((value, _pair_setter(obj, map_key(key, index))))
            work.extend(reversed(pending))
        elif isinstance(current, Tag):
            obj = JSONObject()
            place(obj)
            work.append((current.content, _pair_setter(obj, TAG_KEY % current.tag)))
        else:
            place(_convert_leaf(current))

    return result[0]


def _pair_setter(obj: JSONObject, key: str) -> Callable[[JSONValue], None]:
    def place(value: JSONValue) -> None:
        obj.append(key, value)
    return place
