"""User-facing iterator that folds internal entries into live user keys."""

from __future__ import annotations

import enum
import random
from typing import Any, Optional

from lvlstore.dbformat import (
    READ_BYTES_PERIOD,
    VALUE_TYPE_FOR_SEEK,
    CorruptionError,
    ParsedInternalKey,
    ValueType,
    extract_user_key,
    parse_internal_key,
)
from lvlstore.options import Comparator


class _Direction(enum.Enum):
    # Forward: the internal iterator sits on the entry that yields key()/value().
    # Reverse: it sits just before all entries whose user key == key().
    FORWARD = enum.auto()
    REVERSE = enum.auto()


class DBIterator:
    """Iterates over the user keys that were live at a given sequence number.

    The internal iterator yields (internal key, value) entries ordered by an
    internal key comparator. Several entries for the same user key are
    combined, deletion markers hide older values, and entries newer than
    `sequence` are ignored. If `db` is given, its record_read_sample(key)
    method is called roughly once per READ_BYTES_PERIOD bytes read.
    """

    def __init__(
        self,
        db: Any,
        user_comparator: Comparator,
        internal_iter: Any,
        sequence: int,
        seed: int = 0,
    ) -> None:
        self._db = db
        self._user_comparator = user_comparator
        self._iter = internal_iter
        self._sequence = sequence
        self._status: Optional[Exception] = None
        self._saved_key = b""
        self._saved_value = b""
        self._direction = _Direction.FORWARD
        self._valid = False
        self._rnd = random.Random(seed)
        self._bytes_counter = self._random_period()

    def _random_period(self) -> int:
        return self._rnd.randrange(2 * READ_BYTES_PERIOD)

    def valid(self) -> bool:
        return self._valid

    def _require_valid(self) -> None:
        if not self._valid:
            raise ValueError("iterator is not positioned at an entry")

    def key(self) -> bytes:
        self._require_valid()
        if self._direction is _Direction.FORWARD:
            return extract_user_key(self._iter.key())
        return self._saved_key

    def value(self) -> bytes:
        self._require_valid()
        if self._direction is _Direction.FORWARD:
            return self._iter.value()
        return self._saved_value

    def status(self) -> Optional[Exception]:
        """The first error met, or None if there has been none."""
        if self._status is not None:
            return self._status
        internal_status = getattr(self._iter, "status", None)
        return internal_status() if callable(internal_status) else None

    def _parse_key(self) -> Optional[ParsedInternalKey]:
        k = self._iter.key()
        self._bytes_counter -= len(k) + len(self._iter.value())
        while self._bytes_counter < 0:
            self._bytes_counter += self._random_period()
            if self._db is not None:
                self._db.record_read_sample(k)
        try:
            return parse_internal_key(k)
        except CorruptionError:
            self._status = CorruptionError("corrupted internal key in DBIter")
            return None

    def _clear_saved(self) -> None:
        self._saved_key = b""
        self._saved_value = b""

    def next(self) -> None:
        self._require_valid()
        if self._direction is _Direction.REVERSE:
            self._direction = _Direction.FORWARD
            # The internal iterator is just before this key's entries.
            if not self._iter.valid():
                self._iter.seek_to_first()
            else:
                self._iter.next()
            if not self._iter.valid():
                self._valid = False
                self._saved_key = b""
                return
            skip = self._saved_key
        else:
            skip = extract_user_key(self._iter.key())
        self._find_next_user_entry(True, skip)

    def _find_next_user_entry(self, skipping: bool, skip: bytes) -> None:
        while self._iter.valid():
            ikey = self._parse_key()
            if ikey is not None and ikey.sequence <= self._sequence:
                if ikey.type == ValueType.DELETION:
                    # Hide every older entry for this user key.
                    skip = ikey.user_key
                    skipping = True
                elif not (
                    skipping
                    and self._user_comparator.compare(ikey.user_key, skip) <= 0
                ):
                    self._valid = True
                    self._saved_key = b""
                    return
            self._iter.next()
        self._saved_key = b""
        self._valid = False

    def prev(self) -> None:
        self._require_valid()
        if self._direction is _Direction.FORWARD:
            # Step back until the user key changes.
            self._saved_key = extract_user_key(self._iter.key())
            while True:
                self._iter.prev()
                if not self._iter.valid():
                    self._valid = False
                    self._clear_saved()
                    return
                if (
                    self._user_comparator.compare(
                        extract_user_key(self._iter.key()), self._saved_key
                    )
                    < 0
                ):
                    break
            self._direction = _Direction.REVERSE
        self._find_prev_user_entry()

    def _find_prev_user_entry(self) -> None:
        value_type = ValueType.DELETION
        while self._iter.valid():
            ikey = self._parse_key()
            if ikey is not None and ikey.sequence <= self._sequence:
                if (
                    value_type != ValueType.DELETION
                    and self._user_comparator.compare(ikey.user_key, self._saved_key)
                    < 0
                ):
                    # A live value for a later key has been found.
                    break
                value_type = ikey.type
                if value_type == ValueType.DELETION:
                    self._clear_saved()
                else:
                    self._saved_key = extract_user_key(self._iter.key())
                    self._saved_value = bytes(self._iter.value())
            self._iter.prev()

        if value_type == ValueType.DELETION:
            self._valid = False
            self._clear_saved()
            self._direction = _Direction.FORWARD
        else:
            self._valid = True

    def seek(self, target: bytes) -> None:
        """Position at the first live user key >= target."""
        self._direction = _Direction.FORWARD
        self._clear_saved()
        seek_key = ParsedInternalKey(
            bytes(target), self._sequence, VALUE_TYPE_FOR_SEEK
        ).encode()
        self._iter.seek(seek_key)
        if self._iter.valid():
            self._find_next_user_entry(False, seek_key)
        else:
            self._valid = False

    def seek_to_first(self) -> None:
        self._direction = _Direction.FORWARD
        self._saved_value = b""
        self._iter.seek_to_first()
        if self._iter.valid():
            self._find_next_user_entry(False, self._saved_key)
        else:
            self._valid = False

    def seek_to_last(self) -> None:
        self._direction = _Direction.REVERSE
        self._saved_value = b""
        self._iter.seek_to_last()
        self._find_prev_user_entry()