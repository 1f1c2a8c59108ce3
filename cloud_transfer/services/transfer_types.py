"""Shared types, policy constants and part math for transfers."""

import math
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import PurePath

from cloud_transfer.services.errors import PartCountMismatchError, UnsupportedTypeError

ProgressCallback = Callable[[int], None]

# Must match the part size the gateway uses to decide how many URLs to hand
# back. R2 requires parts between 5 MB and 5 GB.
PART_SIZE_BYTES = 1 * 1024**3

# R2 rejects single PUTs above ~4.995 GB.
MULTIPART_THRESHOLD_BYTES = int(4.9 * 1024**3)

STREAM_CHUNK_BYTES = 1024 * 1024

CONTENT_TYPES = {
    ".mp4": "video/mp4",
    ".png": "image/png",
}

JSON_CONTENT_TYPE = "application/json"


@dataclass(frozen=True)
class TransferTarget:
    """A logical object: bucket-scoped key plus its byte length."""

    key: str
    size: int


@dataclass(frozen=True)
class PartRange:
    """One contiguous byte extent of a multi-part upload."""

    index: int
    offset: int
    length: int

    @property
    def end(self) -> int:
        """Exclusive end offset."""
        return self.offset + self.length


@dataclass
class MultipartSession:
    """A multi-part upload session as returned by the gateway."""

    key: str
    part_urls: list[str] = field(default_factory=list)

    @property
    def num_parts(self) -> int:
        return len(self.part_urls)


def content_type_for(key: str) -> str:
    """Map an object key to its content type.

    Only the suffixes in CONTENT_TYPES are accepted; anything else raises
    UnsupportedTypeError.
    """
    suffix = PurePath(key).suffix
    try:
        return CONTENT_TYPES[suffix]
    except KeyError:
        raise UnsupportedTypeError(f"Tried to upload invalid file type: {key}") from None


def expected_part_count(size: int, part_size: int = PART_SIZE_BYTES) -> int:
    """Number of parts a file of ``size`` bytes splits into (at least one)."""
    return max(1, math.ceil(size / part_size))


def compute_part_ranges(
    size: int,
    num_parts: int,
    part_size: int = PART_SIZE_BYTES,
) -> list[PartRange]:
    """Split ``[0, size)`` into ``num_parts`` contiguous ranges.

    Every range is ``part_size`` long except the last, which takes the
    remainder. ``num_parts`` comes from the gateway; if it disagrees with
    what ``part_size`` implies we fail rather than truncate or overrun.

    Raises:
        PartCountMismatchError: If num_parts != expected_part_count(size, part_size)
    """
    expected = expected_part_count(size, part_size)
    if num_parts != expected:
        raise PartCountMismatchError(
            f"Gateway returned {num_parts} part URLs but {size} bytes "
            f"at {part_size} bytes per part needs {expected}"
        )

    ranges: list[PartRange] = []
    offset = 0
    for index in range(num_parts):
        remaining = size - offset
        length = remaining if index == num_parts - 1 else min(part_size, remaining)
        ranges.append(PartRange(index=index, offset=offset, length=length))
        offset += length
    return ranges


def percent(done: int, total: int) -> int:
    """Integer percentage of ``done`` over ``total``, clamped to 0..100."""
    if total <= 0:
        return 100
    return max(0, min(100, round(100 * done / total)))


class MonotonicProgress:
    """Forward progress values to a callback, never going backwards.

    Values lower than or equal to the last one emitted are dropped.
    """

    def __init__(self, callback: ProgressCallback | None) -> None:
        self._callback = callback
        self.last = -1

    def __call__(self, value: int) -> None:
        value = max(0, min(100, int(value)))
        if value <= self.last:
            return
        self.last = value
        if self._callback:
            self._callback(value)

    def finish(self) -> None:
        """Emit 100 if it hasn't been emitted yet."""
        self(100)
