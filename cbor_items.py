#!/usr/bin/env python3
# Licensed under the Apache-2.0 license
"""CBOR item tree.

In-memory representation of one decoded CBOR data item. Every major type of
RFC 8949 maps to one immutable variant:

  * ``UnsignedInt`` / ``NegativeInt`` (major 0 / 1, the negative value is ``-1 - value``)
  * ``ByteString`` / ``TextString`` (major 2 / 3, raw payload plus definite flag)
  * ``Array`` / ``Map`` (major 4 / 5)
  * ``Tag`` (major 6)
  * ``Bool``, ``Null``, ``Simple``, ``Float`` (major 7)

Items are produced by ``cbor_decoder.decode`` or built from already decoded
Python values with ``from_native``.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator, List, Optional, Tuple, Union

from cbor2 import CBORSimpleValue, CBORTag, undefined

UINT64_MAX = 0xFFFFFFFFFFFFFFFF

# Simple value numbers with a dedicated meaning
SIMPLE_FALSE = 20
SIMPLE_TRUE = 21
SIMPLE_NULL = 22
SIMPLE_UNDEFINED = 23

# Bignum tags used when a native int does not fit the 64-bit argument
TAG_POSITIVE_BIGNUM = 2
TAG_NEGATIVE_BIGNUM = 3

DEFAULT_NATIVE_DEPTH = 512

_DONE = object()


@dataclass(frozen=True)
class UnsignedInt:
    value: int


@dataclass(frozen=True)
class NegativeInt:
    value: int

    @property
    def number(self) -> int:
        return -1 - self.value


@dataclass(frozen=True)
class ByteString:
    data: bytes
    definite: bool = True


@dataclass(frozen=True)
class TextString:
    """UTF-8 payload kept as bytes; validity is left to the consumer."""
    data: bytes
    definite: bool = True


@dataclass(frozen=True)
class Array:
    items: Tuple["CBORItem", ...]
    definite: bool = True


@dataclass(frozen=True)
class Map:
    """Ordered key/value pairs. Keys may be any item and may repeat."""
    pairs: Tuple[Tuple["CBORItem", "CBORItem"], ...]
    definite: bool = True


@dataclass(frozen=True)
class Tag:
    tag: int
    content: "CBORItem"


@dataclass(frozen=True)
class Bool:
    value: bool


@dataclass(frozen=True)
class Null:
    pass


@dataclass(frozen=True)
class Simple:
    """Any simple value other than false/true/null (23 is undefined)."""
    value: int


@dataclass(frozen=True)
class Float:
    value: float
    width: int = 8  # encoded size in bytes: 2, 4 or 8


CBORItem = Union[UnsignedInt, NegativeInt, ByteString, TextString, Array, Map,
                 Tag, Bool, Null, Simple, Float]


def _bignum(tag: int, magnitude: int) -> Tag:
    size = (magnitude.bit_length() + 7) // 8
    return Tag(tag, ByteString(magnitude.to_bytes(size, 'big')))


class _NativeFrame:
    """A list, dict or CBORTag whose children are still being converted."""

    def __init__(self, kind: type, values: Iterator[Any], tag: int = 0):
        self.kind = kind
        self.values = values
        self.tag = tag
        self.children: List[CBORItem] = []

    def build(self) -> CBORItem:
        if self.kind is Array:
            return Array(tuple(self.children))
        if self.kind is Map:
            it = iter(self.children)
            return Map(tuple(zip(it, it)))
        return Tag(self.tag, self.children[0])


def _native_node(obj: Any) -> Union[CBORItem, _NativeFrame]:
    """Item for a scalar, or an open frame for a container."""
    if obj is None:
        return Null()
    if obj is undefined:
        return Simple(SIMPLE_UNDEFINED)
    # cbor2 types first: depending on the cbor2 version CBORSimpleValue
    # derives from int or tuple
    if isinstance(obj, CBORTag):
        return _NativeFrame(Tag, iter((obj.value,)), tag=obj.tag)
    if isinstance(obj, CBORSimpleValue):
        if obj.value == SIMPLE_FALSE:
            return Bool(False)
        if obj.value == SIMPLE_TRUE:
            return Bool(True)
        if obj.value == SIMPLE_NULL:
            return Null()
        return Simple(obj.value)
    # bool is an int subclass
    if isinstance(obj, bool):
        return Bool(obj)
    if isinstance(obj, int):
        if obj >= 0:
            if obj > UINT64_MAX:
                return _bignum(TAG_POSITIVE_BIGNUM, obj)
            return UnsignedInt(obj)
        stored = -1 - obj
        if stored > UINT64_MAX:
            return _bignum(TAG_NEGATIVE_BIGNUM, stored)
        return NegativeInt(stored)
    if isinstance(obj, float):
        return Float(obj)
    if isinstance(obj, (bytes, bytearray, memoryview)):
        return ByteString(bytes(obj))
    if isinstance(obj, str):
        return TextString(obj.encode('utf-8', errors='surrogatepass'))
    if isinstance(obj, (list, tuple)):
        return _NativeFrame(Array, iter(obj))
    if isinstance(obj, dict):
        return _NativeFrame(Map, (part for pair in obj.items() for part in pair))
    raise TypeError(f"Cannot represent {type(obj).__name__} as a CBOR item")


def from_native(obj: Any, max_depth: int = DEFAULT_NATIVE_DEPTH) -> CBORItem:
    """Build an item tree from plain Python values.

    Accepts what ``cbor2.loads`` hands back for untagged data and unknown tags:
    ``None``, ``bool``, ``int``, ``float``, ``bytes``, ``str``, lists, dicts,
    ``CBORTag``, ``CBORSimpleValue`` and ``undefined``. Integers outside the
    64-bit argument range become bignum tags (2 / 3).

    A value inside ``max_depth`` enclosing containers is accepted; the walk
    uses an explicit stack, so the recursion limit does not apply.

    Raises:
        TypeError: for values with no CBOR counterpart
        ValueError: when nesting is deeper than ``max_depth``
    """
    stack: List[_NativeFrame] = []
    value = obj
    while True:
        if len(stack) > max_depth:
            raise ValueError(f"Native value nested deeper than {max_depth} levels")
        node = _native_node(value)
        item: Optional[CBORItem] = None
        if isinstance(node, _NativeFrame):
            stack.append(node)
        else:
            item = node

        # hand finished items to their parents until a parent has more values
        while True:
            if item is not None:
                if not stack:
                    return item
                stack[-1].children.append(item)
            value = next(stack[-1].values, _DONE)
            if value is not _DONE:
                break
            item = stack.pop().build()
