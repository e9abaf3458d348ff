"""In-memory sorted table of recent writes, keyed by internal key."""

from __future__ import annotations

import functools
from typing import Optional, Tuple

from sortedcontainers import SortedKeyList

from lvlstore.dbformat import (
    InternalKeyComparator,
    LookupKey,
    ParsedInternalKey,
    ValueType,
    parse_internal_key,
)


def _varint_length(value: int) -> int:
    length = 1
    while value >= 0x80:
        value >>= 7
        length += 1
    return length


class MemTable:
    """Sorted collection of (internal key, value) entries.

    Entries are ordered by the given internal key comparator: user key
    ascending, then sequence number descending.
    """

    def __init__(self, comparator: InternalKeyComparator) -> None:
        self._comparator = comparator
        self._sort_key = functools.cmp_to_key(comparator.compare)
        sort_key = self._sort_key
        self._table: SortedKeyList = SortedKeyList(key=lambda entry: sort_key(entry[0]))
        self._usage = 0

    @property
    def comparator(self) -> InternalKeyComparator:
        return self._comparator

    def __len__(self) -> int:
        return len(self._table)

    def approximate_memory_usage(self) -> int:
        """Estimate of the bytes held by the entries, in their encoded size."""
        return self._usage

    def new_iterator(self) -> "MemTableIterator":
        """Return an iterator over the entries; it starts out not valid."""
        return MemTableIterator(self)

    def add(self, seq: int, value_type: ValueType, key: bytes, value: bytes) -> None:
        """Add an entry mapping key to value at the given sequence number and type."""
        key = bytes(key)
        value = bytes(value)
        internal_key = ParsedInternalKey(key, seq, ValueType(value_type)).encode()
        internal_key_size = len(internal_key)
        self._usage += (
            _varint_length(internal_key_size)
            + internal_key_size
            + _varint_length(len(value))
            + len(value)
        )
        self._table.add((internal_key, value))

    def get(self, lookup_key: LookupKey) -> Optional[bytes]:
        """Look up a user key as of the lookup key's sequence number.

        Returns the value if the table holds one, None if it holds nothing
        for the key, and raises KeyError if it holds a deletion for the key.
        """
        iterator = self.new_iterator()
        iterator.seek(lookup_key.internal_key())
        if not iterator.valid():
            return None
        parsed = parse_internal_key(iterator.key())
        user_comparator = self._comparator.user_comparator
        if user_comparator.compare(parsed.user_key, lookup_key.user_key()) != 0:
            return None
        if parsed.type == ValueType.VALUE:
            return iterator.value()
        raise KeyError(lookup_key.user_key())


class MemTableIterator:
    """Bidirectional cursor over the entries of a MemTable."""

    def __init__(self, table: MemTable) -> None:
        self._memtable = table
        self._index = -1

    def _entry(self) -> Tuple[bytes, bytes]:
        if not self.valid():
            raise ValueError("iterator is not positioned at an entry")
        return self._memtable._table[self._index]

    def valid(self) -> bool:
        return 0 <= self._index < len(self._memtable._table)

    def seek(self, target: bytes) -> None:
        """Position at the first entry whose internal key is >= target."""
        table = self._memtable._table
        self._index = table.bisect_key_left(self._memtable._sort_key(bytes(target)))

    def seek_to_first(self) -> None:
        self._index = 0

    def seek_to_last(self) -> None:
        self._index = len(self._memtable._table) - 1

    def next(self) -> None:
        self._entry()
        self._index += 1

    def prev(self) -> None:
        self._entry()
        self._index -= 1

    def key(self) -> bytes:
        """Internal key of the current entry."""
        return self._entry()[0]

    def value(self) -> bytes:
        return self._entry()[1]