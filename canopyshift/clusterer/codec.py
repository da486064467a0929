# Copyright (c) 2025 massivedatascience
# Licensed under the Apache License, Version 2.0

"""
Binary wire format for the records exchanged between passes.

A record is either a sparse vector or a (user id, preference) pair. The
layout is big-endian and starts with a one-byte discriminator::

    vector:      0x01 | count:int32 | count * (index:int32, value:float32)
    preference:  0x00 | user_id:int64 | value:float32

Vector entries are written in insertion order and an index appears at most
once. Values are stored as 32-bit
floats, so only records whose values are representable in single precision
round-trip exactly.
"""

import struct
from typing import Iterator, NamedTuple, Tuple, Union

from .errors import MalformedRecord
from .vectors import MutableSparseVector

_BOOL = struct.Struct(">?")
_BOOL_BYTE = struct.Struct(">B")
_COUNT = struct.Struct(">i")
_ENTRY = struct.Struct(">if")
_PREFERENCE = struct.Struct(">qf")

_INT64_MIN = -(2 ** 63)
_INT64_MAX = 2 ** 63 - 1


class VectorRecord(NamedTuple):
    vector: MutableSparseVector


class PreferenceRecord(NamedTuple):
    user_id: int
    value: float


Record = Union[VectorRecord, PreferenceRecord]


def encode(record: Record) -> bytes:
    """Encode a record into its binary layout."""
    if isinstance(record, VectorRecord):
        vector = record.vector
        parts = [_BOOL.pack(True), _COUNT.pack(len(vector))]
        for index, value in vector.items():
            try:
                parts.append(_ENTRY.pack(index, value))
            except OverflowError:
                raise ValueError(
                    f"Value {value!r} at index {index} does not fit in a 32-bit float"
                ) from None
        return b"".join(parts)
    if isinstance(record, PreferenceRecord):
        if not _INT64_MIN <= record.user_id <= _INT64_MAX:
            raise ValueError(f"User id does not fit in 64 bits: {record.user_id}")
        try:
            return _BOOL.pack(False) + _PREFERENCE.pack(record.user_id, record.value)
        except OverflowError:
            raise ValueError(
                f"Preference {record.value!r} of user {record.user_id} does not fit in a 32-bit float"
            ) from None
    raise TypeError(f"Cannot encode {type(record).__name__}")


def decode_from(buffer, offset: int = 0) -> Tuple[Record, int]:
    """
    Decode one record starting at ``offset``.

    Returns the record and the offset just past it. Raises
    :class:`MalformedRecord` if the buffer ends before the record does or
    the bytes are not a valid record.
    """
    view = memoryview(buffer)
    flag = _unpack(_BOOL_BYTE, view, offset)[0]
    offset += 1
    if flag not in (0, 1):
        raise MalformedRecord(f"Invalid discriminator byte {flag:#04x} at offset {offset - 1}")
    if not flag:
        user_id, value = _unpack(_PREFERENCE, view, offset)
        return PreferenceRecord(user_id, value), offset + _PREFERENCE.size

    count = _unpack(_COUNT, view, offset)[0]
    offset += _COUNT.size
    if count < 0:
        raise MalformedRecord(f"Negative entry count {count}")
    end = offset + count * _ENTRY.size
    if end > len(view):
        raise MalformedRecord(
            f"Vector declares {count} entries but only {len(view) - offset} bytes remain"
        )
    vector = MutableSparseVector()
    for index, value in _ENTRY.iter_unpack(view[offset:end]):
        if index < 0:
            raise MalformedRecord(f"Negative vector index {index}")
        if index in vector:
            raise MalformedRecord(f"Duplicate vector index {index}")
        vector[index] = value
    return VectorRecord(vector), end


def decode(data) -> Record:
    """Decode a buffer holding exactly one record."""
    record, offset = decode_from(data)
    if offset != len(data):
        raise MalformedRecord(f"{len(data) - offset} trailing bytes after record")
    return record


def iter_records(data) -> Iterator[Record]:
    """Decode a buffer of back-to-back records."""
    offset = 0
    while offset < len(data):
        record, offset = decode_from(data, offset)
        yield record


def _unpack(fmt: struct.Struct, view: memoryview, offset: int):
    if offset + fmt.size > len(view):
        raise MalformedRecord(
            f"Truncated record: need {fmt.size} bytes at offset {offset}, have {max(len(view) - offset, 0)}"
        )
    return fmt.unpack_from(view, offset)
