"""Database, read and write options, plus the comparator and filter policy interfaces."""

from __future__ import annotations

import abc
import dataclasses
import enum
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

_NUM_NON_TABLE_CACHE_FILES = 10


class CompressionType(enum.IntEnum):
    """Block compression method; the values are part of the on-disk format."""

    NO_COMPRESSION = 0x0
    SNAPPY_COMPRESSION = 0x1


class Comparator:
    """Total order over keys; the default is lexicographic byte-wise order.

    Subclasses may override any method to define another ordering.
    """

    def name(self) -> str:
        return "leveldb.BytewiseComparator"

    def compare(self, a: bytes, b: bytes) -> int:
        """Return a negative number, zero or a positive number as a <, ==, > b."""
        a, b = bytes(a), bytes(b)
        return (a > b) - (a < b)

    def find_shortest_separator(self, start: bytes, limit: bytes) -> bytes:
        """Return a short key in [start, limit), or start itself if none is found."""
        start, limit = bytes(start), bytes(limit)
        min_length = min(len(start), len(limit))
        diff_index = next(
            (i for i, (x, y) in enumerate(zip(start, limit)) if x != y), min_length
        )
        if diff_index >= min_length:
            # One key is a prefix of the other: nothing shorter to offer.
            return start
        diff_byte = start[diff_index]
        if diff_byte < 0xFF and diff_byte + 1 < limit[diff_index]:
            return start[:diff_index] + bytes([diff_byte + 1])
        return start

    def find_short_successor(self, key: bytes) -> bytes:
        """Return a short key that is >= key."""
        key = bytes(key)
        for index, byte in enumerate(key):
            if byte != 0xFF:
                return key[:index] + bytes([byte + 1])
        return key


class FilterPolicy(abc.ABC):
    """Builds small summaries of key sets that answer "may this key be present?"."""

    @abc.abstractmethod
    def name(self) -> str:
        """Name of the policy; must change whenever the filter encoding changes."""

    @abc.abstractmethod
    def create_filter(self, keys: Iterable[bytes]) -> bytes:
        """Return a filter summarising the given, comparator-ordered keys."""

    @abc.abstractmethod
    def key_may_match(self, key: bytes, filter_data: bytes) -> bool:
        """Return True whenever key was among the keys the filter was built from."""


def _clip(value: int, minimum: int, maximum: int) -> int:
    if value > maximum:
        value = maximum
    if value < minimum:
        value = minimum
    return value


@dataclass
class Options:
    """Parameters that control the behaviour of a database."""

    comparator: Comparator = field(default_factory=Comparator)
    create_if_missing: bool = False
    error_if_exists: bool = False
    paranoid_checks: bool = False
    info_log: Optional[Any] = None
    write_buffer_size: int = 4 << 20
    max_open_files: int = 1000
    block_cache: Optional[Any] = None
    block_size: int = 4096
    block_restart_interval: int = 16
    max_file_size: int = 2 << 20
    compression: CompressionType = CompressionType.SNAPPY_COMPRESSION
    reuse_logs: bool = False
    filter_policy: Optional[FilterPolicy] = None

    def sanitized(self) -> "Options":
        """Return a copy with size and count settings clipped to sensible ranges."""
        return dataclasses.replace(
            self,
            max_open_files=_clip(
                self.max_open_files, 64 + _NUM_NON_TABLE_CACHE_FILES, 50000
            ),
            write_buffer_size=_clip(self.write_buffer_size, 64 << 10, 1 << 30),
            max_file_size=_clip(self.max_file_size, 1 << 20, 1 << 30),
            block_size=_clip(self.block_size, 1 << 10, 4 << 20),
        )


@dataclass
class ReadOptions:
    """Options that control read operations."""

    verify_checksums: bool = False
    fill_cache: bool = True
    snapshot: Optional[Any] = None


@dataclass
class WriteOptions:
    """Options that control write operations."""

    sync: bool = False