#
#  kglue | kglue
#  tlv.py
#
#  TLV8 records: [tag:u8][len:u8][value:len]
#
#  Values longer than 255 bytes are written as consecutive 255 byte records sharing the tag; copy_data() glues
#   every record carrying a tag back together.
#
#  This file is part of kglue. kglue is free software that
#  is made available under the MIT license. Consult the
#  file "LICENSE" that is distributed together with this file
#  for the exact licensing terms.
#
#  Copyright (c) kat 2021.
#

from typing import Iterator, NamedTuple, Optional, Tuple, Union

from kglue.exceptions import MalformedTLVException
from kglue.log import log

TLV_CHUNK_MAX = 0xFF
TLV_CAPACITY_STEP = 1024

BytesLike = Union[bytes, bytearray, memoryview]


class TLVRecord(NamedTuple):
    tag: int
    length: int
    offset: int  # offset of the value, not the header


class TLVBuffer:
    """
    Append-only TLV8 accumulator.

    Starts out with 1024 bytes of capacity and grows in 1024 byte steps. Usable as a context manager, which
        releases the buffer on exit:

        with TLVBuffer() as tlv:
            tlv.append(0x06, b'\\x01')
            send(bytes(tlv))
    """

    def __init__(self):
        self.capacity = TLV_CAPACITY_STEP
        self.length = 0
        self.data = bytearray(self.capacity)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.free()

    def __len__(self):
        return self.length

    def __bytes__(self):
        return bytes(self.data[:self.length])

    def free(self):
        self.data = bytearray()
        self.capacity = 0
        self.length = 0

    def to_bytes(self) -> bytes:
        return bytes(self)

    def _reserve(self, required: int):
        if self.length + required > self.capacity:
            self.capacity += ((required // TLV_CAPACITY_STEP) + 1) * TLV_CAPACITY_STEP
            self.data.extend(bytes(self.capacity - len(self.data)))

    def append(self, tag: int, value: BytesLike):
        """
        Append a value under `tag`, split into 255 byte records if it is longer than that.

        An empty value writes nothing.
        """
        if not 0 <= tag <= 0xFF:
            raise ValueError(f'TLV tag {tag} does not fit in a byte')
        value = bytes(value)

        chunk_count = -(-len(value) // TLV_CHUNK_MAX)
        self._reserve(len(value) + chunk_count * 2)

        pos = self.length
        for cur in range(0, len(value), TLV_CHUNK_MAX):
            chunk = value[cur:cur + TLV_CHUNK_MAX]
            self.data[pos] = tag
            self.data[pos + 1] = len(chunk)
            self.data[pos + 2:pos + 2 + len(chunk)] = chunk
            pos += 2 + len(chunk)
        self.length = pos

        log.debug_more(f'appended tag {tag:#04x} ({len(value)} bytes in {chunk_count} records)')

    def get_uint(self, tag: int) -> Optional[int]:
        return get_uint(self.data[:self.length], tag)

    def get_uint8(self, tag: int) -> Optional[int]:
        return get_uint8(self.data[:self.length], tag)

    def copy_data(self, tag: int) -> Optional[bytes]:
        return copy_data(self.data[:self.length], tag)


def iter_records(data: BytesLike, start=0, end=None) -> Iterator[TLVRecord]:
    """
    Walk the records in data[start:end].

    A trailing lone tag byte (no room for a length) ends the walk. Records whose declared length runs past `end`
        are still yielded; callers decide what to do with them.
    """
    end = len(data) if end is None else end
    pos = start
    while pos + 2 <= end:
        tag = data[pos]
        length = data[pos + 1]
        yield TLVRecord(tag, length, pos + 2)
        pos += 2 + length


def get_data_ptr(data: BytesLike, tag: int, start=0, end=None) -> Optional[Tuple[int, int]]:
    """
    Find the first record with `tag`.

    :return: (offset of the value, declared length) or None. Chunks are not recombined.
    """
    for record in iter_records(data, start, end):
        if record.tag == tag:
            return record.offset, record.length
    return None


def get_data(data: BytesLike, tag: int) -> Optional[bytes]:
    """Value of the first record with `tag`, or None."""
    found = get_data_ptr(data, tag)
    if found is None:
        return None
    offset, length = found
    if offset + length > len(data):
        return None
    return bytes(data[offset:offset + length])


def get_uint(data: BytesLike, tag: int) -> Optional[int]:
    """
    Read the first record with `tag` as a little-endian unsigned int.

    Only 1, 2, 4 and 8 byte records count; anything else (or a truncated record) is treated as not found.
    """
    if len(data) < 2:
        return None
    value = get_data(data, tag)
    if value is None or len(value) not in (1, 2, 4, 8):
        return None
    return int.from_bytes(value, 'little')


def get_uint8(data: BytesLike, tag: int) -> Optional[int]:
    if len(data) < 2:
        return None
    value = get_data(data, tag)
    if value is None or len(value) != 1:
        return None
    return value[0]


def copy_data(data: BytesLike, tag: int) -> Optional[bytes]:
    """
    Concatenate the values of every record with `tag`, in order.

    This reassembles values that append() split into 255 byte chunks, as well as values deliberately sent as
        several records.

    :return: The joined bytes, or None if no record has the tag
    :raises MalformedTLVException: a matching record runs past the end of data
    """
    if len(data) < 2:
        return None
    parts = []
    for record in iter_records(data):
        if record.tag != tag:
            continue
        if record.offset + record.length > len(data):
            msg = f'TLV record {tag:#04x} at offset {record.offset - 2} declares {record.length} bytes, ' \
                  f'only {len(data) - record.offset} left'
            log.error(msg)
            raise MalformedTLVException(msg)
        parts.append(bytes(data[record.offset:record.offset + record.length]))
    if not parts:
        return None
    return b''.join(parts)
