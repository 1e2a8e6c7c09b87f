#
#  kglue | kglue
#  opack.py
#
#  OPACK encoder/decoder
#
#  OPACK is the compact binary object format used by Apple's companion-link style protocols. Every value starts
#   with one tag byte which carries the kind and, for short values, the length or value itself:
#
#       0x01 / 0x02         true / false
#       0x03                terminator for open (0xDF / 0xEF) containers
#       0x06                date, 8 byte double, seconds since 2001-01-01
#       0x08 - 0x2F         small uint (tag - 8)
#       0x30 0x32 0x33      uint with 1, 4, 8 le bytes
#       0x35 0x36           float32 / float64
#       0x40 - 0x60         short string (tag - 0x40 bytes)
#       0x61 - 0x64         string with 1, 2, 4, 8 le length bytes
#       0x70 - 0x90         short data (tag - 0x70 bytes)
#       0x91 - 0x94         data with 1, 2, 4, 8 le length bytes
#       0xD0 - 0xDE 0xDF    array with (tag - 0xD0) children / open array
#       0xE0 - 0xEE 0xEF    dict with (tag - 0xE0) pairs / open dict
#
#  Doubles and floats (dates included) are stored as their little-endian bit pattern with the bytes reversed,
#   which is to say big-endian.
#
#  This file is part of kglue. kglue is free software that
#  is made available under the MIT license. Consult the
#  file "LICENSE" that is distributed together with this file
#  for the exact licensing terms.
#
#  Copyright (c) kat 2021.
#

import struct
from datetime import datetime, timedelta, timezone
from plistlib import UID

from kglue.exceptions import MalformedOpackException, UnexpectedTypeException
from kglue.log import log
from kglue.util import opts, to_uint64, UINT64_MASK

OPACK_TRUE = 0x01
OPACK_FALSE = 0x02
OPACK_TERMINATOR = 0x03
OPACK_DATE = 0x06
OPACK_SMALL_INT = 0x08
OPACK_SMALL_INT_MAX = 0x27
OPACK_UINT8 = 0x30
OPACK_UINT32 = 0x32
OPACK_UINT64 = 0x33
OPACK_FLOAT32 = 0x35
OPACK_FLOAT64 = 0x36
OPACK_STRING = 0x40
OPACK_STRING_LEN8 = 0x61
OPACK_STRING_LEN64 = 0x64
OPACK_DATA = 0x70
OPACK_DATA_LEN8 = 0x91
OPACK_DATA_LEN64 = 0x94
OPACK_ARRAY = 0xD0
OPACK_ARRAY_OPEN = 0xDF
OPACK_DICT = 0xE0
OPACK_DICT_OPEN = 0xEF

# strings and data up to this length carry it in the tag byte
SHORT_LEN_MAX = 0x20
# containers with more children than this use the open form
SHORT_COUNT_MAX = 14

# 2001-01-01 00:00:00 UTC
MAC_EPOCH = datetime(2001, 1, 1)

# index into these by (tag - LEN8 tag)
_LEN_SIZES = (1, 2, 4, 8)


class _Terminator:
    def __repr__(self):
        return 'OPACK_TERMINATOR'


TERMINATOR = _Terminator()


def _encode_length(out: bytearray, length: int, short_tag: int, len8_tag: int):
    if length <= SHORT_LEN_MAX:
        out.append(short_tag + length)
    elif length <= 0xFF:
        out.append(len8_tag)
        out.append(length)
    elif length <= 0xFFFF:
        out.append(len8_tag + 1)
        out += length.to_bytes(2, 'little')
    elif length <= 0xFFFFFFFF:
        out.append(len8_tag + 2)
        out += length.to_bytes(4, 'little')
    else:
        out.append(len8_tag + 3)
        out += length.to_bytes(8, 'little')


def _encode_uint(out: bytearray, value: int):
    if value <= OPACK_SMALL_INT_MAX:
        out.append(OPACK_SMALL_INT + value)
    elif value <= 0x7F or value >= UINT64_MASK - 0x7F:
        # the u8 form is sign extended on decode, so it covers 0x28..0x7F and -128..-1
        out.append(OPACK_UINT8)
        out.append(value & 0xFF)
    elif value <= 0xFFFFFFFF:
        out.append(OPACK_UINT32)
        out += value.to_bytes(4, 'little')
    else:
        out.append(OPACK_UINT64)
        out += value.to_bytes(8, 'little')


def _fits_float32(value: float) -> bool:
    try:
        return struct.unpack('>f', struct.pack('>f', value))[0] == value
    except OverflowError:
        return False


def _date_to_seconds(value: datetime) -> float:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return (value - MAC_EPOCH).total_seconds()


def _encode_node(out: bytearray, node, depth: int):
    if depth > opts.MAX_DEPTH:
        raise UnexpectedTypeException(f'tree is nested deeper than {opts.MAX_DEPTH} levels')

    if isinstance(node, UID):
        raise UnexpectedTypeException('UID nodes can not be represented in OPACK')
    elif isinstance(node, bool):
        out.append(OPACK_TRUE if node else OPACK_FALSE)
    elif isinstance(node, int):
        try:
            _encode_uint(out, to_uint64(node))
        except OverflowError as ex:
            raise UnexpectedTypeException(str(ex)) from ex
    elif isinstance(node, float):
        if _fits_float32(node):
            out.append(OPACK_FLOAT32)
            out += struct.pack('>f', node)
        else:
            out.append(OPACK_FLOAT64)
            out += struct.pack('>d', node)
    elif isinstance(node, datetime):
        out.append(OPACK_DATE)
        out += struct.pack('>d', _date_to_seconds(node))
    elif isinstance(node, str):
        raw = node.encode('utf-8')
        _encode_length(out, len(raw), OPACK_STRING, OPACK_STRING_LEN8)
        out += raw
    elif isinstance(node, (bytes, bytearray)):
        _encode_length(out, len(node), OPACK_DATA, OPACK_DATA_LEN8)
        out += node
    elif isinstance(node, (list, tuple)):
        count = len(node)
        out.append(OPACK_ARRAY + count if count <= SHORT_COUNT_MAX else OPACK_ARRAY_OPEN)
        for item in node:
            _encode_node(out, item, depth + 1)
        if count > SHORT_COUNT_MAX:
            out.append(OPACK_TERMINATOR)
    elif isinstance(node, dict):
        count = len(node)
        out.append(OPACK_DICT + count if count <= SHORT_COUNT_MAX else OPACK_DICT_OPEN)
        for key, value in node.items():
            if not isinstance(key, str):
                raise UnexpectedTypeException(f'dictionary key {key!r} is not a string')
            _encode_node(out, key, depth + 1)
            _encode_node(out, value, depth + 1)
        if count > SHORT_COUNT_MAX:
            out.append(OPACK_TERMINATOR)
    else:
        raise UnexpectedTypeException(f'unsupported data type {type(node).__name__} in plist')


def encode(tree) -> bytes:
    """
    Encode a plist tree as OPACK.

    Integers use the narrowest of small/u8/u32/u64 that decodes back to the same value, floats use float32 when
        the value survives the round trip, strings/data and containers use their short forms when they fit.

    :param tree: plist tree (bool, int, float, datetime, str, bytes, list, dict)
    :return: encoded bytes
    :raises UnexpectedTypeException: the tree holds something OPACK can't represent (None, UID, non-string keys,
        ints outside 64 bits)
    """
    out = bytearray()
    try:
        _encode_node(out, tree, 0)
    except UnexpectedTypeException as ex:
        log.error(f'Unable to encode tree: {ex}')
        raise
    log.debug_bytes('opack encoded', out)
    return bytes(out)


class _Reader:
    def __init__(self, data):
        self.data = bytes(data)
        self.pos = 0
        self.end = len(self.data)

    def fail(self, msg):
        log.error(msg)
        self.pos = self.end
        raise MalformedOpackException(msg)

    def read(self, count: int) -> bytes:
        if self.pos + count > self.end:
            self.fail(f'Size points past end of data (need {count} bytes at offset {self.pos}, have {self.end - self.pos})')
        chunk = self.data[self.pos:self.pos + count]
        self.pos += count
        return chunk

    def read_le(self, count: int, signed=False) -> int:
        return int.from_bytes(self.read(count), 'little', signed=signed)


def _decode_length(reader: _Reader, tag: int, short_tag: int, len8_tag: int) -> int:
    if tag < len8_tag:
        return tag - short_tag
    return reader.read_le(_LEN_SIZES[tag - len8_tag])


def _decode_obj(reader: _Reader, level: int):
    if level > opts.MAX_DEPTH:
        reader.fail(f'OPACK data is nested deeper than {opts.MAX_DEPTH} levels')

    offset = reader.pos
    tag = reader.read(1)[0]
    log.debug_tm(f'tag {tag:#04x} at offset {offset}')

    if tag == OPACK_FALSE:
        return False
    if tag == OPACK_TRUE:
        return True
    if tag == OPACK_TERMINATOR:
        return TERMINATOR
    if tag == OPACK_DATE:
        seconds = struct.unpack('>d', reader.read(8))[0]
        try:
            return MAC_EPOCH + timedelta(seconds=seconds)
        except (OverflowError, ValueError):
            reader.fail(f'Date at offset {offset} is out of range ({seconds})')

    if OPACK_SMALL_INT <= tag <= OPACK_FLOAT64:
        if tag == OPACK_FLOAT64:
            return struct.unpack('>d', reader.read(8))[0]
        if tag == OPACK_FLOAT32:
            return struct.unpack('>f', reader.read(4))[0]
        if tag < OPACK_UINT8:
            return tag - OPACK_SMALL_INT
        if tag == OPACK_UINT8:
            # sign extended into the 64-bit result
            return reader.read_le(1, signed=True) & UINT64_MASK
        if tag == OPACK_UINT32:
            return reader.read_le(4)
        if tag == OPACK_UINT64:
            return reader.read_le(8)
        reader.fail(f'Invalid encoded byte {tag:#04x} at offset {offset}')

    if OPACK_STRING <= tag <= OPACK_STRING_LEN64:
        length = _decode_length(reader, tag, OPACK_STRING, OPACK_STRING_LEN8)
        raw = reader.read(length)
        try:
            return raw.decode('utf-8')
        except UnicodeDecodeError:
            reader.fail(f'String at offset {offset} is not valid UTF-8')

    if OPACK_DATA <= tag <= OPACK_DATA_LEN64:
        length = _decode_length(reader, tag, OPACK_DATA, OPACK_DATA_LEN8)
        return reader.read(length)

    if OPACK_DICT <= tag <= OPACK_DICT_OPEN:
        open_form = tag == OPACK_DICT_OPEN
        remaining = None if open_form else tag - OPACK_DICT
        result = {}
        while remaining is None or remaining > 0:
            key = _decode_obj(reader, level + 1)
            if key is TERMINATOR:
                if not open_form:
                    reader.fail('Expected dictionary key, found terminator')
                break
            if not isinstance(key, str):
                reader.fail('Invalid node type for dictionary key node')
            value = _decode_obj(reader, level + 1)
            if value is TERMINATOR:
                reader.fail(f'Expected value for dictionary key {key!r}, found terminator')
            result[key] = value
            if remaining is not None:
                remaining -= 1
        return result

    if OPACK_ARRAY <= tag <= OPACK_ARRAY_OPEN:
        open_form = tag == OPACK_ARRAY_OPEN
        remaining = None if open_form else tag - OPACK_ARRAY
        result = []
        while remaining is None or remaining > 0:
            child = _decode_obj(reader, level + 1)
            if child is TERMINATOR:
                if not open_form:
                    reader.fail('Expected child node, found terminator')
                break
            result.append(child)
            if remaining is not None:
                remaining -= 1
        return result

    reader.fail(f'Unexpected character {tag:#04x} encountered at offset {offset}')


def _merge_top_level(out, value):
    if out is None:
        return value
    if isinstance(out, list):
        if isinstance(value, list):
            out.extend(value)
        else:
            out.append(value)
        return out
    if isinstance(out, dict) and isinstance(value, dict):
        out.update(value)
        return out
    msg = f'Can not merge top level {type(value).__name__} into {type(out).__name__}'
    log.error(msg)
    raise MalformedOpackException(msg)


def decode(data, into=None):
    """
    Decode an OPACK stream.

    The stream may hold several top-level values back to back. They are folded into one result: the first value
        becomes the result unless `into` is given, later arrays extend an array result, later scalars are
        appended to an array result, later dicts update a dict result.

    :param data: OPACK bytes
    :param into: Optional existing list/dict to decode into
    :return: The decoded tree (`into` itself, when it was given)
    :raises MalformedOpackException: the bytes are not valid OPACK; nothing partial is returned
    """
    if not data:
        raise MalformedOpackException('No data to decode')

    log.debug_bytes('opack decoding', data)
    reader = _Reader(data)
    values = []
    while reader.pos < reader.end:
        value = _decode_obj(reader, 0)
        if value is TERMINATOR:
            continue
        values.append(value)

    # fold into a scratch copy; `into` is only touched once everything merged
    if isinstance(into, list):
        result = list(into)
    elif isinstance(into, dict):
        result = dict(into)
    else:
        result = into
    for value in values:
        result = _merge_top_level(result, value)

    if isinstance(into, list):
        into[:] = result
        return into
    if isinstance(into, dict):
        into.clear()
        into.update(result)
        return into
    return result
