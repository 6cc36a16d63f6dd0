#!/usr/bin/env python3
# Licensed under the Apache-2.0 license
"""Read CBOR data from a file and print it as JSON.

    $ cbor2json data/nested_array.cbor
    $ cbor2json token.cbor 0x10 --pretty

The optional offset skips that many leading bytes before decoding. Only the
first data item is converted. Diagnostics go to stderr, JSON to stdout.
"""
from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import List, Optional

from cbor_decoder import DEFAULT_MAX_DEPTH, CBORDecodeError, decode
from cbor_to_json import convert
from json_render import render

logger = logging.getLogger(__name__)

MAX_DEPTH_ENV = "CBOR2JSON_MAX_DEPTH"

EXIT_OK = 0
EXIT_DECODE_ERROR = 1
EXIT_IO_ERROR = 1
EXIT_USAGE = 2
EXIT_BAD_OFFSET = 255

PRETTY_INDENT = 2

_DIGITS = "0123456789abcdef"


class OffsetError(ValueError):
    """The start offset lies beyond the end of the input file."""

    def __init__(self, path: str, offset: int, length: int):
        self.path = path
        self.offset = offset
        self.length = length
        super().__init__(f"offset {offset} is larger than file {path} {length}")


def parse_offset(text: str) -> int:
    """Parse an offset the way strtoull(text, NULL, 0) would.

    ``0x`` selects hex, a leading ``0`` octal, anything else decimal. The
    longest run of valid digits is used and the rest ignored, so ``"09"`` and
    ``"0x"`` read as 0 and ``"1_0"`` as 1. Unlike strtoull, text with no
    leading digit (``"abc"``) and negative numbers are rejected instead of
    turning into 0 or wrapping around.
    """
    s = text.strip().lower()
    if s.startswith('+'):
        s = s[1:]
    elif s.startswith('-'):
        raise argparse.ArgumentTypeError(f"offset must not be negative: {text!r}")

    if s.startswith('0x') and s[2:3] and s[2] in _DIGITS[:16]:
        base, s = 16, s[2:]
    elif s.startswith('0'):
        base = 8
    else:
        base = 10

    end = 0
    while end < len(s) and s[end] in _DIGITS[:base]:
        end += 1
    if not end:
        raise argparse.ArgumentTypeError(f"invalid offset: {text!r}")
    return int(s[:end], base)


def default_max_depth() -> int:
    raw = os.environ.get(MAX_DEPTH_ENV)
    if not raw:
        return DEFAULT_MAX_DEPTH
    try:
        value = int(raw)
    except ValueError:
        value = 0
    if value < 1:
        logger.warning("Ignoring invalid %s=%r, using %d", MAX_DEPTH_ENV, raw, DEFAULT_MAX_DEPTH)
        return DEFAULT_MAX_DEPTH
    return value


def run(path: str, offset: int = 0, indent: Optional[int] = None,
        ensure_ascii: bool = False, max_depth: int = DEFAULT_MAX_DEPTH) -> str:
    """Decode the CBOR item in ``path`` at ``offset`` and return it as JSON text.

    Raises:
        OSError: the file cannot be read
        OffsetError: ``offset`` is past the end of the file
        CBORDecodeError: the data is not valid CBOR (nothing is converted)
    """
    with open(path, 'rb') as f:
        buffer = f.read()
    logger.debug("Read %d bytes from %s", len(buffer), path)

    if offset > len(buffer):
        raise OffsetError(path, offset, len(buffer))

    item, read = decode(buffer, offset, max_depth=max_depth)
    logger.debug("Decoded %s item from %d bytes", type(item).__name__, read)

    return render(convert(item), indent=indent, ensure_ascii=ensure_ascii)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cbor2json",
        description="Convert the first CBOR data item of a file to JSON",
    )
    parser.add_argument('input', help='CBOR input file')
    parser.add_argument('offset', nargs='?', type=parse_offset, default=0,
                        help='bytes to skip before decoding (decimal, 0x hex or 0 octal)')
    parser.add_argument('--pretty', action='store_true',
                        help=f'indent output by {PRETTY_INDENT} spaces')
    parser.add_argument('--indent', type=int, default=None,
                        help='indent output by N spaces (overrides --pretty)')
    parser.add_argument('--ascii', action='store_true',
                        help='escape non-ASCII characters in strings')
    parser.add_argument('--max-depth', type=int, default=None,
                        help=f'maximum container nesting (default {DEFAULT_MAX_DEPTH}, '
                             f'or ${MAX_DEPTH_ENV})')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='log decoding details to stderr')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        return EXIT_USAGE if e.code else EXIT_OK

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s',
        stream=sys.stderr,
    )

    indent = args.indent
    if indent is None and args.pretty:
        indent = PRETTY_INDENT
    max_depth = args.max_depth if args.max_depth is not None else default_max_depth()

    try:
        text = run(args.input, args.offset, indent=indent,
                   ensure_ascii=args.ascii, max_depth=max_depth)
    except OffsetError as e:
        logger.error("%s", e)
        return EXIT_BAD_OFFSET
    except CBORDecodeError as e:
        logger.error("There was an error while reading the input near byte %d "
                     "(read %d bytes in total): %s", e.position, e.read, e.code.value)
        logger.debug("%s", e)
        return EXIT_DECODE_ERROR
    except OSError as e:
        logger.error("Cannot read %s: %s", args.input, e)
        return EXIT_IO_ERROR

    sys.stdout.write(text + "\n")
    sys.stdout.flush()
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
