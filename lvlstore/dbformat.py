"""Internal key format: user key followed by a packed sequence number and type."""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass
from typing import Iterable, Union

from lvlstore.options import Comparator, FilterPolicy

NUM_LEVELS = 7
L0_COMPACTION_TRIGGER = 99999
L0_SLOWDOWN_WRITES_TRIGGER = 99999
L0_STOP_WRITES_TRIGGER = 99999
MAX_MEM_COMPACT_LEVEL = 2
READ_BYTES_PERIOD = 1048576

MAX_SEQUENCE_NUMBER = (1 << 56) - 1

_FIXED64 = struct.Struct("<Q")


class CorruptionError(Exception):
    """Raised when stored data cannot be decoded."""


class ValueType(enum.IntEnum):
    """Kind of entry; the values are embedded in on-disk data."""

    DELETION = 0x0
    VALUE = 0x1


VALUE_TYPE_FOR_SEEK = ValueType.VALUE


def pack_sequence_and_type(seq: int, value_type: int) -> int:
    """Pack a sequence number and value type into one 64-bit tag."""
    if not 0 <= seq <= MAX_SEQUENCE_NUMBER:
        raise ValueError(f"sequence number out of range: {seq}")
    if not 0 <= value_type <= VALUE_TYPE_FOR_SEEK:
        raise ValueError(f"invalid value type: {value_type}")
    return (seq << 8) | int(value_type)


def escape_string(data: bytes) -> str:
    """Render bytes printably, hex-escaping anything outside ' '..'~'."""
    return "".join(
        chr(c) if 0x20 <= c <= 0x7E else f"\\x{c:02x}" for c in bytes(data)
    )


@dataclass(frozen=True)
class ParsedInternalKey:
    user_key: bytes
    sequence: int
    type: ValueType

    def debug_string(self) -> str:
        return f"'{escape_string(self.user_key)}' @ {self.sequence} : {int(self.type)}"

    def encode(self) -> bytes:
        """Serialise to the internal-key byte form."""
        return bytes(self.user_key) + _FIXED64.pack(
            pack_sequence_and_type(self.sequence, self.type)
        )


def _tag(internal_key: bytes) -> int:
    if len(internal_key) < 8:
        raise CorruptionError("internal key too short")
    return _FIXED64.unpack_from(internal_key, len(internal_key) - 8)[0]


def parse_internal_key(internal_key: bytes) -> ParsedInternalKey:
    """Decode an internal key, raising CorruptionError if it is malformed."""
    internal_key = bytes(internal_key)
    num = _tag(internal_key)
    c = num & 0xFF
    if c > ValueType.VALUE:
        raise CorruptionError(f"unknown value type {c} in internal key")
    return ParsedInternalKey(internal_key[:-8], num >> 8, ValueType(c))


def extract_user_key(internal_key: bytes) -> bytes:
    """Return the user-key part of an internal key."""
    internal_key = bytes(internal_key)
    if len(internal_key) < 8:
        raise CorruptionError("internal key too short")
    return internal_key[:-8]


def extract_value_type(internal_key: bytes) -> ValueType:
    """Return the value type stored in an internal key."""
    c = _tag(bytes(internal_key)) & 0xFF
    try:
        return ValueType(c)
    except ValueError:
        raise CorruptionError(f"unknown value type {c} in internal key") from None


_SEEK_SUFFIX = _FIXED64.pack(
    pack_sequence_and_type(MAX_SEQUENCE_NUMBER, VALUE_TYPE_FOR_SEEK)
)


class InternalKey:
    """An encoded internal key; an empty instance is invalid."""

    __slots__ = ("_rep",)

    def __init__(
        self,
        user_key: bytes | None = None,
        sequence: int = 0,
        value_type: ValueType = ValueType.VALUE,
    ) -> None:
        if user_key is None:
            self._rep = b""
        else:
            self._rep = ParsedInternalKey(bytes(user_key), sequence, value_type).encode()

    @classmethod
    def from_encoded(cls, data: bytes) -> "InternalKey":
        key = cls()
        key._rep = bytes(data)
        return key

    def encode(self) -> bytes:
        if not self._rep:
            raise ValueError("empty internal key")
        return self._rep

    def user_key(self) -> bytes:
        return extract_user_key(self._rep)

    def debug_string(self) -> str:
        try:
            return parse_internal_key(self._rep).debug_string()
        except CorruptionError:
            return "(bad)" + escape_string(self._rep)

    def __bool__(self) -> bool:
        return bool(self._rep)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, InternalKey):
            return NotImplemented
        return self._rep == other._rep

    def __hash__(self) -> int:
        return hash(self._rep)

    def __repr__(self) -> str:
        return f"InternalKey({self.debug_string()})"


_KeyLike = Union[bytes, InternalKey]


def _raw(key: _KeyLike) -> bytes:
    return key.encode() if isinstance(key, InternalKey) else bytes(key)


class InternalKeyComparator(Comparator):
    """Orders by user key ascending, then sequence number and type descending."""

    def __init__(self, user_comparator: Comparator) -> None:
        self._user_comparator = user_comparator

    @property
    def user_comparator(self) -> Comparator:
        return self._user_comparator

    def name(self) -> str:
        return "leveldb.InternalKeyComparator"

    def compare(self, a: _KeyLike, b: _KeyLike) -> int:
        a, b = _raw(a), _raw(b)
        r = self._user_comparator.compare(extract_user_key(a), extract_user_key(b))
        if r == 0:
            anum, bnum = _tag(a), _tag(b)
            if anum > bnum:
                r = -1
            elif anum < bnum:
                r = 1
        return r

    def find_shortest_separator(self, start: bytes, limit: bytes) -> bytes:
        start, limit = bytes(start), bytes(limit)
        user_start = extract_user_key(start)
        user_limit = extract_user_key(limit)
        tmp = self._user_comparator.find_shortest_separator(user_start, user_limit)
        if (
            len(tmp) < len(user_start)
            and self._user_comparator.compare(user_start, tmp) < 0
        ):
            # Physically shorter but logically larger: attach the earliest tag.
            return tmp + _SEEK_SUFFIX
        return start

    def find_short_successor(self, key: bytes) -> bytes:
        key = bytes(key)
        user_key = extract_user_key(key)
        tmp = self._user_comparator.find_short_successor(user_key)
        if len(tmp) < len(user_key) and self._user_comparator.compare(user_key, tmp) < 0:
            return tmp + _SEEK_SUFFIX
        return key


class InternalFilterPolicy(FilterPolicy):
    """Wraps a user filter policy so that it sees user keys instead of internal keys."""

    def __init__(self, user_policy: FilterPolicy) -> None:
        self._user_policy = user_policy

    def name(self) -> str:
        return self._user_policy.name()

    def create_filter(self, keys: Iterable[bytes]) -> bytes:
        return self._user_policy.create_filter([extract_user_key(k) for k in keys])

    def key_may_match(self, key: bytes, filter_data: bytes) -> bool:
        return self._user_policy.key_may_match(extract_user_key(key), filter_data)


def _encode_varint32(value: int) -> bytes:
    if not 0 <= value < (1 << 32):
        raise ValueError(f"value does not fit in 32 bits: {value}")
    out = bytearray()
    while value >= 0x80:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    out.append(value)
    return bytes(out)


class LookupKey:
    """Key for looking up a user key at a given snapshot sequence number.

    Layout: varint32 length, user key, 8-byte tag.
    """

    __slots__ = ("_data", "_kstart")

    def __init__(self, user_key: bytes, sequence: int) -> None:
        user_key = bytes(user_key)
        prefix = _encode_varint32(len(user_key) + 8)
        self._kstart = len(prefix)
        self._data = (
            prefix
            + user_key
            + _FIXED64.pack(pack_sequence_and_type(sequence, VALUE_TYPE_FOR_SEEK))
        )

    def memtable_key(self) -> bytes:
        return self._data

    def internal_key(self) -> bytes:
        return self._data[self._kstart:]

    def user_key(self) -> bytes:
        return self._data[self._kstart:-8]