"""
Tests for the cbor2json command line.
"""

import argparse
import json

import cbor2
import pytest

import cbor2json
from cbor2json import (
    EXIT_BAD_OFFSET, EXIT_DECODE_ERROR, EXIT_IO_ERROR, EXIT_OK, EXIT_USAGE,
    OffsetError, default_max_depth, main, parse_offset, run,
)
from cbor_decoder import DEFAULT_MAX_DEPTH, CBORDecodeError


@pytest.fixture
def cbor_file(tmp_path):
    def write(data, name='input.cbor'):
        path = tmp_path / name
        path.write_bytes(data)
        return str(path)
    return write


def test_main_prints_json(cbor_file, capsys):
    """Compact JSON plus a trailing newline on stdout."""
    path = cbor_file(cbor2.dumps({1: 2, 3: [4, 5]}))
    assert main([path]) == EXIT_OK
    assert capsys.readouterr().out == '{"1":2,"3":[4,5]}\n'


def test_main_pretty(cbor_file, capsys):
    """--pretty indents by two spaces."""
    path = cbor_file(cbor2.dumps({'a': [1]}))
    assert main([path, '--pretty']) == EXIT_OK
    assert capsys.readouterr().out == '{\n  "a": [\n    1\n  ]\n}\n'


def test_main_indent_and_ascii(cbor_file, capsys):
    """--indent wins over --pretty, --ascii escapes."""
    path = cbor_file(cbor2.dumps(['é']))
    assert main([path, '--pretty', '--indent', '1', '--ascii']) == EXIT_OK
    assert capsys.readouterr().out == '[\n "\\u00e9"\n]\n'


def test_main_offset(cbor_file, capsys):
    """Leading bytes are skipped, offset may be hex."""
    path = cbor_file(b'\xde\xad' + cbor2.dumps([b'\x00\xff']))
    assert main([path, '2']) == EXIT_OK
    assert main([path, '0x2']) == EXIT_OK
    out = capsys.readouterr().out.splitlines()
    assert out == ['["b00FF"]', '["b00FF"]']


def test_main_offset_past_end(cbor_file, capsys, caplog):
    """Offset larger than the file."""
    path = cbor_file(b'\x01')
    assert main([path, '100']) == EXIT_BAD_OFFSET
    assert capsys.readouterr().out == ''
    assert 'offset 100 is larger than file' in caplog.text


def test_main_decode_error(cbor_file, capsys, caplog):
    """Decode failures report position and bytes read, print no JSON."""
    path = cbor_file(b'\x82\x01')
    assert main([path]) == EXIT_DECODE_ERROR
    assert capsys.readouterr().out == ''
    assert 'near byte 2 (read 2 bytes in total)' in caplog.text


def test_main_offset_at_end_is_decode_error(cbor_file, caplog):
    """Nothing left to decode after the offset."""
    path = cbor_file(b'\x01')
    assert main([path, '1']) == EXIT_DECODE_ERROR
    assert 'no data' in caplog.text


def test_main_missing_file(tmp_path, caplog):
    """Unreadable input."""
    assert main([str(tmp_path / 'missing.cbor')]) == EXIT_IO_ERROR
    assert 'Cannot read' in caplog.text


def test_main_usage_errors(cbor_file):
    """Missing file argument or bad offset."""
    assert main([]) == EXIT_USAGE
    assert main([cbor_file(b'\x01'), 'nope']) == EXIT_USAGE


def test_main_max_depth(cbor_file, monkeypatch):
    """--max-depth and the environment default."""
    path = cbor_file(b'\x81' * 10 + b'\x00')
    assert main([path, '--max-depth', '5']) == EXIT_DECODE_ERROR
    monkeypatch.setenv(cbor2json.MAX_DEPTH_ENV, '5')
    assert main([path]) == EXIT_DECODE_ERROR
    assert main([path, '--max-depth', '20']) == EXIT_OK


def test_run_returns_text(cbor_file):
    """run() is the testable core of the command."""
    path = cbor_file(cbor2.dumps(cbor2.CBORTag(0, '2020-01-01')))
    text = run(path)
    assert json.loads(text) == {'tag_0': '2020-01-01'}


def test_run_raises(cbor_file):
    """run() raises instead of exiting."""
    with pytest.raises(OffsetError) as exc:
        run(cbor_file(b'\x01\x02'), offset=3)
    assert exc.value.length == 2
    with pytest.raises(CBORDecodeError):
        run(cbor_file(b'\x1c'))


def test_parse_offset_bases():
    """strtoull-style base detection."""
    assert parse_offset('12') == 12
    assert parse_offset('+12') == 12
    assert parse_offset('0') == 0
    assert parse_offset('0x1f') == 31
    assert parse_offset('0X10') == 16
    assert parse_offset('010') == 8
    for bad in ('zz', '', '-1', 'x10'):
        with pytest.raises(argparse.ArgumentTypeError):
            parse_offset(bad)


def test_parse_offset_longest_valid_prefix():
    """Digits after the first invalid character are ignored."""
    assert parse_offset('09') == 0
    assert parse_offset('0x') == 0
    assert parse_offset('0xg') == 0
    assert parse_offset('1_0') == 1
    assert parse_offset('12abc') == 12
    assert parse_offset('0x1fz') == 31
    assert parse_offset('0o10') == 0
    assert parse_offset('0b11') == 0


def test_main_offset_with_trailing_garbage(cbor_file, capsys):
    """An offset like "2kb" skips two bytes, as the C tool would."""
    path = cbor_file(b'\xde\xad' + cbor2.dumps(7))
    assert main([path, '2kb']) == EXIT_OK
    assert capsys.readouterr().out == '7\n'


def test_default_max_depth_from_environment(monkeypatch, caplog):
    """Environment override, invalid values ignored."""
    monkeypatch.delenv(cbor2json.MAX_DEPTH_ENV, raising=False)
    assert default_max_depth() == DEFAULT_MAX_DEPTH
    monkeypatch.setenv(cbor2json.MAX_DEPTH_ENV, '64')
    assert default_max_depth() == 64
    monkeypatch.setenv(cbor2json.MAX_DEPTH_ENV, 'deep')
    assert default_max_depth() == DEFAULT_MAX_DEPTH
    assert 'Ignoring invalid' in caplog.text
