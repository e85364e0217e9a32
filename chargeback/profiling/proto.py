from __future__ import annotations

"""Encoder for the pprof ``profile.proto`` message.

Only the fields the profiler produces are written: sample types, samples
with string labels, locations with a single line each, functions, the string
table, timestamps and the sampling period. Output is gzip-compressed, which
is what pprof tooling expects on the wire.
"""

import gzip
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

WIRE_VARINT = 0
WIRE_BYTES = 2

_UINT64_MASK = (1 << 64) - 1


@dataclass(frozen=True, slots=True)
class FrameInfo:
    """One stack frame, leaf-first order when part of a stack."""

    name: str
    system_name: str
    filename: str
    start_line: int
    line: int
    address: int = 0


def encode_varint(value: int) -> bytes:
    value &= _UINT64_MASK
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _key(field_number: int, wire_type: int) -> bytes:
    return encode_varint((field_number << 3) | wire_type)


def _varint_field(field_number: int, value: int) -> bytes:
    if not value:
        return b""
    return _key(field_number, WIRE_VARINT) + encode_varint(value)


def _bytes_field(field_number: int, payload: bytes) -> bytes:
    return _key(field_number, WIRE_BYTES) + encode_varint(len(payload)) + payload


def _packed_field(field_number: int, values: Sequence[int]) -> bytes:
    if not values:
        return b""
    payload = b"".join(encode_varint(v) for v in values)
    return _bytes_field(field_number, payload)


class ProfileBuilder:
    def __init__(
        self,
        sample_types: Sequence[Tuple[str, str]],
        *,
        period_type: Optional[Tuple[str, str]] = None,
        period: int = 0,
    ) -> None:
        self._strings: List[str] = [""]
        self._string_index: Dict[str, int] = {"": 0}
        self._sample_types = [(self._intern(t), self._intern(u)) for t, u in sample_types]
        self._period_type = (self._intern(period_type[0]), self._intern(period_type[1])) if period_type else None
        self.period = period
        self.time_nanos = time.time_ns()
        self.duration_nanos = 0
        self._functions: Dict[Tuple[str, str, str, int], int] = {}
        self._function_records: List[bytes] = []
        self._locations: Dict[Tuple[int, int, int], int] = {}
        self._location_records: List[bytes] = []
        self._samples: List[bytes] = []

    @property
    def sample_count(self) -> int:
        return len(self._samples)

    def add_sample(
        self,
        stack: Sequence[FrameInfo],
        values: Sequence[int],
        labels: Optional[Dict[str, str]] = None,
    ) -> None:
        if len(values) != len(self._sample_types):
            raise ValueError(f"expected {len(self._sample_types)} values, got {len(values)}")
        location_ids = [self._location_id(frame) for frame in stack]
        record = _packed_field(1, location_ids) + _packed_field(2, list(values))
        for key, value in (labels or {}).items():
            label = _varint_field(1, self._intern(key)) + _varint_field(2, self._intern(value))
            record += _bytes_field(3, label)
        self._samples.append(record)

    def encode(self) -> bytes:
        return gzip.compress(self.encode_raw())

    def encode_raw(self) -> bytes:
        out = bytearray()
        for type_idx, unit_idx in self._sample_types:
            out += _bytes_field(1, _varint_field(1, type_idx) + _varint_field(2, unit_idx))
        for sample in self._samples:
            out += _bytes_field(2, sample)
        for location in self._location_records:
            out += _bytes_field(4, location)
        for function in self._function_records:
            out += _bytes_field(5, function)
        for text in self._strings:
            out += _bytes_field(6, text.encode("utf-8"))
        out += _varint_field(9, self.time_nanos)
        out += _varint_field(10, self.duration_nanos)
        if self._period_type is not None:
            out += _bytes_field(11, _varint_field(1, self._period_type[0]) + _varint_field(2, self._period_type[1]))
        out += _varint_field(12, self.period)
        return bytes(out)

    def _intern(self, text: str) -> int:
        idx = self._string_index.get(text)
        if idx is None:
            idx = len(self._strings)
            self._strings.append(text)
            self._string_index[text] = idx
        return idx

    def _function_id(self, frame: FrameInfo) -> int:
        key = (frame.name, frame.system_name, frame.filename, frame.start_line)
        fid = self._functions.get(key)
        if fid is None:
            fid = len(self._function_records) + 1
            self._functions[key] = fid
            self._function_records.append(
                _varint_field(1, fid)
                + _varint_field(2, self._intern(frame.name))
                + _varint_field(3, self._intern(frame.system_name))
                + _varint_field(4, self._intern(frame.filename))
                + _varint_field(5, frame.start_line)
            )
        return fid

    def _location_id(self, frame: FrameInfo) -> int:
        fid = self._function_id(frame)
        key = (fid, frame.line, frame.address)
        lid = self._locations.get(key)
        if lid is None:
            lid = len(self._location_records) + 1
            self._locations[key] = lid
            line = _varint_field(1, fid) + _varint_field(2, frame.line)
            self._location_records.append(
                _varint_field(1, lid) + _varint_field(3, frame.address) + _bytes_field(4, line)
            )
        return lid


__all__ = ["FrameInfo", "ProfileBuilder", "encode_varint"]
