#!/usr/bin/env python3
# Licensed under the Apache-2.0 license
"""Render JSON value trees (as produced by ``cbor_to_json.convert``) to text."""
from __future__ import annotations

import json
import logging
import math
from typing import Any, List, Optional, Union

from cbor_to_json import JSONObject

logger = logging.getLogger(__name__)


def _scalar(value: Any, ensure_ascii: bool) -> str:
    if value is None or isinstance(value, (bool, int, str)):
        return json.dumps(value, ensure_ascii=ensure_ascii)
    if isinstance(value, float):
        if not math.isfinite(value):
            # NaN / Infinity have no JSON spelling
            logger.debug("Rendering non-finite float %r as null", value)
            return "null"
        return json.dumps(value)
    raise TypeError(f"Object of type {type(value).__name__} is not a JSON value")


def render(value: Any, indent: Optional[int] = None, ensure_ascii: bool = False) -> str:
    """Serialize a JSON value tree.

    Compact by default (``{"1":2,"3":[4,5]}``); with ``indent`` every member
    goes on its own line. Object pairs are written in order, repeated keys
    included. Uses an explicit stack, so tree depth is not limited by recursion.

    Raises:
        TypeError: if the tree holds something that is not a JSON value
    """
    item_sep = ","
    key_sep = ":" if indent is None else ": "

    def newline(level: int) -> str:
        if indent is None:
            return ""
        return "\n" + " " * (indent * level)

    parts: List[str] = []
    # entries are literal text or (value, nesting level) still to render
    work: List[Union[str, tuple]] = [(value, 0)]
    while work:
        entry = work.pop()
        if isinstance(entry, str):
            parts.append(entry)
            continue
        node, level = entry

        if isinstance(node, JSONObject):
            if not node:
                parts.append("{}")
                continue
            pending: List[Union[str, tuple]] = ["{"]
            for i, (key, member) in enumerate(node.items()):
                if not isinstance(key, str):
                    raise TypeError(f"Object keys must be str, not {type(key).__name__}")
                if i:
                    pending.append(item_sep)
                pending.append(newline(level + 1) + json.dumps(key, ensure_ascii=ensure_ascii) + key_sep)
                pending.append((member, level + 1))
            pending.append(newline(level) + "}")
            work.extend(reversed(pending))
        elif isinstance(node, (list, tuple)):
            if not node:
                parts.append("[]")
                continue
            pending = ["["]
            for i, member in enumerate(node):
                if i:
                    pending.append(item_sep)
                pending.append(newline(level + 1))
                pending.append((member, level + 1))
            pending.append(newline(level) + "]")
            work.extend(reversed(pending))
        else:
            parts.append(_scalar(node, ensure_ascii))

    return "".join(parts)
