"""Binary snapshot wire format (version 1, little-endian).

Layout::

    u8  version
    u16 month_count
    u8  review_bucket_count, total_bucket_count, velocity_bucket_count
    month_count x 7-byte ASCII month labels ("YYYY-MM", space padded)
    per bucket (review, then total, then velocity):
        f64 min, f64 max
        u16[month_count] positive, negative, uncertain_positive, uncertain_negative
    i32 total_positive, total_negative, game_total_positive, game_total_negative,
        target_sample_count
    f64 positive_sample_rate, negative_sample_rate
    u8  flags (bit0 positive exhausted, bit1 negative exhausted,
               bit2 streaming, bit3 final)
    5 x u16[month_count] language counters
    u16 edit_month_count, edit_month_count x 7-byte labels
    i32 cell_count, cell_count x (u16 posted, u16 edited, u16 positive, u16 negative)
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass, replace
from typing import Sequence

import numpy as np

from review_audit.config import ProjectionConfig
from review_audit.errors import FormatError
from review_audit.features.projection import project_monthly
from review_audit.snapshot import (
    LANGUAGE_CHANNELS,
    MONTH_LABEL_LENGTH,
    Bucket,
    EditCell,
    EditHeatmap,
    LanguageStats,
    Snapshot,
)

LOGGER = logging.getLogger(__name__)

FORMAT_VERSION = 1
U16_MAX = 0xFFFF

FLAG_POSITIVE_EXHAUSTED = 0x01
FLAG_NEGATIVE_EXHAUSTED = 0x02
FLAG_STREAMING = 0x04
FLAG_FINAL = 0x08

_HEADER = struct.Struct("<BHBBB")
_RANGE = struct.Struct("<dd")
_TOTALS = struct.Struct("<iiiii")
_RATES = struct.Struct("<dd")
_CELL = struct.Struct("<HHHH")


class _Reader:
    def __init__(self, data: bytes) -> None:
        self._view = memoryview(data)
        self.offset = 0

    @property
    def remaining(self) -> int:
        return len(self._view) - self.offset

    def _require(self, size: int, what: str) -> None:
        if size > self.remaining:
            raise FormatError(
                f"Truncated snapshot: need {size} bytes for {what} at offset {self.offset}, "
                f"{self.remaining} left"
            )

    def unpack(self, layout: struct.Struct, what: str) -> tuple:
        self._require(layout.size, what)
        values = layout.unpack_from(self._view, self.offset)
        self.offset += layout.size
        return values

    def u8(self, what: str) -> int:
        self._require(1, what)
        value = self._view[self.offset]
        self.offset += 1
        return int(value)

    def u16(self, what: str) -> int:
        self._require(2, what)
        (value,) = struct.unpack_from("<H", self._view, self.offset)
        self.offset += 2
        return int(value)

    def i32(self, what: str) -> int:
        self._require(4, what)
        (value,) = struct.unpack_from("<i", self._view, self.offset)
        self.offset += 4
        return int(value)

    def u16_array(self, count: int, what: str) -> np.ndarray:
        size = count * 2
        self._require(size, what)
        values = np.frombuffer(self._view, dtype="<u2", count=count, offset=self.offset)
        self.offset += size
        return values.astype(np.int64)

    def labels(self, count: int, what: str) -> tuple[str, ...]:
        size = count * MONTH_LABEL_LENGTH
        self._require(size, what)
        raw = bytes(self._view[self.offset : self.offset + size])
        self.offset += size
        out: list[str] = []
        for idx in range(count):
            chunk = raw[idx * MONTH_LABEL_LENGTH : (idx + 1) * MONTH_LABEL_LENGTH]
            try:
                out.append(chunk.decode("ascii").strip())
            except UnicodeDecodeError as exc:
                raise FormatError(f"Non-ASCII {what} label at index {idx}") from exc
        return tuple(out)


def _check_ascending(months: tuple[str, ...]) -> None:
    for idx in range(1, len(months)):
        if months[idx] <= months[idx - 1]:
            raise FormatError(
                f"Month labels must be strictly ascending: {months[idx - 1]!r} then "
                f"{months[idx]!r} at index {idx}"
            )


def _read_bucket(reader: _Reader, month_count: int, family: str, index: int) -> Bucket:
    what = f"{family} bucket {index}"
    min_value, max_value = reader.unpack(_RANGE, f"{what} range")
    channels = [
        reader.u16_array(month_count, f"{what} {channel}")
        for channel in ("positive", "negative", "uncertain_positive", "uncertain_negative")
    ]
    return Bucket.from_counts(min_value, max_value, *channels)


def decode(data: bytes, config: ProjectionConfig | None = None) -> Snapshot:
    """Decode one wire message and attach its projected monthly series."""
    reader = _Reader(bytes(data))
    version = reader.u8("version")
    if version != FORMAT_VERSION:
        raise FormatError(f"Unsupported snapshot version: {version} (expected {FORMAT_VERSION})")

    month_count = reader.u16("month count")
    review_count = reader.u8("review bucket count")
    total_count = reader.u8("total bucket count")
    velocity_count = reader.u8("velocity bucket count")
    months = reader.labels(month_count, "month")
    _check_ascending(months)

    review_buckets = tuple(
        _read_bucket(reader, month_count, "review", idx) for idx in range(review_count)
    )
    total_buckets = tuple(
        _read_bucket(reader, month_count, "total", idx) for idx in range(total_count)
    )
    velocity_buckets = tuple(
        _read_bucket(reader, month_count, "velocity", idx) for idx in range(velocity_count)
    )

    (
        total_positive,
        total_negative,
        game_total_positive,
        game_total_negative,
        target_sample_count,
    ) = reader.unpack(_TOTALS, "totals")
    positive_sample_rate, negative_sample_rate = reader.unpack(_RATES, "sample rates")
    flags = reader.u8("flags")

    language = LanguageStats.from_channels(
        {
            name: reader.u16_array(month_count, f"language {name}")
            for name in LANGUAGE_CHANNELS
        },
        month_count,
    )

    edit_month_count = reader.u16("edit month count")
    edit_months = reader.labels(edit_month_count, "edit month")
    cell_count = reader.i32("edit cell count")
    if cell_count < 0:
        raise FormatError(f"Negative edit cell count: {cell_count}")
    cells: list[EditCell] = []
    for idx in range(cell_count):
        posted, edited, positive, negative = reader.unpack(_CELL, f"edit cell {idx}")
        if posted >= edit_month_count or edited >= edit_month_count:
            raise FormatError(
                f"Edit cell {idx} references month index ({posted}, {edited}) "
                f"beyond {edit_month_count} edit months"
            )
        cells.append(EditCell(posted, edited, positive, negative))

    if reader.remaining:
        raise FormatError(f"{reader.remaining} trailing bytes after snapshot payload")

    snapshot = Snapshot(
        months=months,
        review_buckets=review_buckets,
        total_buckets=total_buckets,
        velocity_buckets=velocity_buckets,
        total_positive=total_positive,
        total_negative=total_negative,
        game_total_positive=game_total_positive,
        game_total_negative=game_total_negative,
        target_sample_count=target_sample_count,
        positive_sample_rate=positive_sample_rate,
        negative_sample_rate=negative_sample_rate,
        positive_exhausted=bool(flags & FLAG_POSITIVE_EXHAUSTED),
        negative_exhausted=bool(flags & FLAG_NEGATIVE_EXHAUSTED),
        is_streaming=bool(flags & FLAG_STREAMING),
        is_final=bool(flags & FLAG_FINAL),
        language=language,
        edit_heatmap=EditHeatmap(months=edit_months, cells=tuple(cells)),
    )
    LOGGER.debug(
        "Decoded snapshot: %d months, %d sampled of %d",
        month_count,
        snapshot.sampled_total,
        snapshot.population_total,
    )
    return attach_projection(snapshot, config)


def attach_projection(snapshot: Snapshot, config: ProjectionConfig | None = None) -> Snapshot:
    return replace(snapshot, projected_monthly=project_monthly(snapshot, config))


def _pack_labels(labels: Sequence[str]) -> bytes:
    out = bytearray()
    for label in labels:
        encoded = label.encode("ascii")
        if len(encoded) > MONTH_LABEL_LENGTH:
            raise ValueError(f"Month label longer than {MONTH_LABEL_LENGTH} bytes: {label!r}")
        out += encoded.ljust(MONTH_LABEL_LENGTH, b" ")
    return bytes(out)


def _pack_u16(values: np.ndarray | Sequence[int], month_count: int) -> bytes:
    array = np.asarray(values, dtype=np.int64)
    if array.size != month_count:
        raise ValueError(f"Expected {month_count} per-month values, got {array.size}")
    return np.clip(array, 0, U16_MAX).astype("<u2").tobytes()


def encode(snapshot: Snapshot) -> bytes:
    month_count = snapshot.month_count
    for family in (snapshot.review_buckets, snapshot.total_buckets, snapshot.velocity_buckets):
        if len(family) > 0xFF:
            raise ValueError("At most 255 buckets per family fit the wire format")

    out = bytearray()
    out += _HEADER.pack(
        FORMAT_VERSION,
        month_count,
        len(snapshot.review_buckets),
        len(snapshot.total_buckets),
        len(snapshot.velocity_buckets),
    )
    out += _pack_labels(snapshot.months)
    for bucket in (*snapshot.review_buckets, *snapshot.total_buckets, *snapshot.velocity_buckets):
        out += _RANGE.pack(bucket.min_value, bucket.max_value)
        out += _pack_u16(bucket.positive, month_count)
        out += _pack_u16(bucket.negative, month_count)
        out += _pack_u16(bucket.uncertain_positive, month_count)
        out += _pack_u16(bucket.uncertain_negative, month_count)

    out += _TOTALS.pack(
        snapshot.total_positive,
        snapshot.total_negative,
        snapshot.game_total_positive,
        snapshot.game_total_negative,
        snapshot.target_sample_count,
    )
    out += _RATES.pack(snapshot.positive_sample_rate, snapshot.negative_sample_rate)
    flags = 0
    if snapshot.positive_exhausted:
        flags |= FLAG_POSITIVE_EXHAUSTED
    if snapshot.negative_exhausted:
        flags |= FLAG_NEGATIVE_EXHAUSTED
    if snapshot.is_streaming:
        flags |= FLAG_STREAMING
    if snapshot.is_final:
        flags |= FLAG_FINAL
    out.append(flags)

    language = snapshot.language or LanguageStats.empty(month_count)
    for channel in language.channels():
        out += _pack_u16(channel, month_count)

    heatmap = snapshot.edit_heatmap
    n_edit_months = len(heatmap.months)
    out += struct.pack("<H", n_edit_months)
    out += _pack_labels(heatmap.months)
    cells = [
        cell
        for cell in heatmap.cells
        if cell.posted_index < n_edit_months and cell.edited_index < n_edit_months
    ]
    out += struct.pack("<i", len(cells))
    for cell in cells:
        out += _CELL.pack(
            cell.posted_index,
            cell.edited_index,
            min(max(cell.positive, 0), U16_MAX),
            min(max(cell.negative, 0), U16_MAX),
        )
    return bytes(out)


@dataclass(frozen=True)
class DecodeResponse:
    ok: bool
    snapshot: Snapshot | None = None
    error: str | None = None


def decode_request(payload: bytes, config: ProjectionConfig | None = None) -> DecodeResponse:
    """Decode entry point for an isolated worker; never raises on bad input."""
    try:
        return DecodeResponse(ok=True, snapshot=decode(payload, config))
    except FormatError as exc:
        return DecodeResponse(ok=False, error=str(exc))
