"""A change to the set of table files, and its serialised form."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import List, Optional, Set, Tuple, Union

from lvlstore.dbformat import NUM_LEVELS, CorruptionError, InternalKey


class _Tag(enum.IntEnum):
    COMPARATOR = 1
    LOG_NUMBER = 2
    NEXT_FILE_NUMBER = 3
    LAST_SEQUENCE = 4
    COMPACT_POINTER = 5
    DELETED_FILE = 6
    NEW_FILE = 7
    # 8 was used for large value refs
    PREV_LOG_NUMBER = 9


@dataclass
class FileMetaData:
    """Description of one table file."""

    number: int = 0
    file_size: int = 0
    smallest: InternalKey = field(default_factory=InternalKey)
    largest: InternalKey = field(default_factory=InternalKey)
    refs: int = 0
    allowed_seeks: int = 1 << 30


def _varint(value: int) -> bytes:
    out = bytearray()
    while value >= 0x80:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    out.append(value)
    return bytes(out)


def _length_prefixed(data: bytes) -> bytes:
    return _varint(len(data)) + data


class _Input:
    """Cursor over encoded bytes; failed reads leave the position unchanged."""

    def __init__(self, data: bytes) -> None:
        self.data = data
        self.pos = 0

    def empty(self) -> bool:
        return self.pos >= len(self.data)

    def _varint(self, max_shift: int, bits: int) -> Optional[int]:
        result = 0
        pos = self.pos
        shift = 0
        while shift <= max_shift and pos < len(self.data):
            byte = self.data[pos]
            pos += 1
            result |= (byte & 0x7F) << shift
            if not byte & 0x80:
                self.pos = pos
                return result & ((1 << bits) - 1)
            shift += 7
        return None

    def varint32(self) -> Optional[int]:
        return self._varint(28, 32)

    def varint64(self) -> Optional[int]:
        return self._varint(63, 64)

    def length_prefixed(self) -> Optional[bytes]:
        start = self.pos
        length = self.varint32()
        if length is None or self.pos + length > len(self.data):
            self.pos = start
            return None
        value = self.data[self.pos:self.pos + length]
        self.pos += length
        return value

    def internal_key(self) -> Optional[InternalKey]:
        raw = self.length_prefixed()
        return None if raw is None else InternalKey.from_encoded(raw)

    def level(self) -> Optional[int]:
        start = self.pos
        value = self.varint32()
        if value is None or value >= NUM_LEVELS:
            self.pos = start
            return None
        return value


class VersionEdit:
    """Set of changes that turns one version of the file set into the next."""

    def __init__(self) -> None:
        self.compact_pointers: List[Tuple[int, InternalKey]] = []
        self.clear()

    def clear(self) -> None:
        """Reset every field except the compaction pointers."""
        self.comparator: Optional[bytes] = None
        self.log_number: Optional[int] = None
        self.prev_log_number: Optional[int] = None
        self.next_file_number: Optional[int] = None
        self.last_sequence: Optional[int] = None
        self.deleted_files: Set[Tuple[int, int]] = set()
        self.new_files: List[Tuple[int, FileMetaData]] = []

    def set_comparator_name(self, name: Union[str, bytes]) -> None:
        self.comparator = name.encode() if isinstance(name, str) else bytes(name)

    def set_log_number(self, num: int) -> None:
        self.log_number = num

    def set_prev_log_number(self, num: int) -> None:
        self.prev_log_number = num

    def set_next_file(self, num: int) -> None:
        self.next_file_number = num

    def set_last_sequence(self, seq: int) -> None:
        self.last_sequence = seq

    def set_compact_pointer(self, level: int, key: InternalKey) -> None:
        self.compact_pointers.append((level, key))

    def add_file(
        self,
        level: int,
        file: int,
        file_size: int,
        smallest: InternalKey,
        largest: InternalKey,
    ) -> None:
        """Record that table file number `file` was added at `level`."""
        self.new_files.append(
            (level, FileMetaData(number=file, file_size=file_size,
                                 smallest=smallest, largest=largest))
        )

    def delete_file(self, level: int, file: int) -> None:
        """Record that table file number `file` was removed from `level`."""
        self.deleted_files.add((level, file))

    def encode(self) -> bytes:
        """Serialise the edit."""
        out = bytearray()
        if self.comparator is not None:
            out += _varint(_Tag.COMPARATOR) + _length_prefixed(self.comparator)
        if self.log_number is not None:
            out += _varint(_Tag.LOG_NUMBER) + _varint(self.log_number)
        if self.prev_log_number is not None:
            out += _varint(_Tag.PREV_LOG_NUMBER) + _varint(self.prev_log_number)
        if self.next_file_number is not None:
            out += _varint(_Tag.NEXT_FILE_NUMBER) + _varint(self.next_file_number)
        if self.last_sequence is not None:
            out += _varint(_Tag.LAST_SEQUENCE) + _varint(self.last_sequence)
        for level, key in self.compact_pointers:
            out += _varint(_Tag.COMPACT_POINTER) + _varint(level)
            out += _length_prefixed(key.encode())
        for level, number in sorted(self.deleted_files):
            out += _varint(_Tag.DELETED_FILE) + _varint(level) + _varint(number)
        for level, meta in self.new_files:
            out += _varint(_Tag.NEW_FILE) + _varint(level)
            out += _varint(meta.number) + _varint(meta.file_size)
            out += _length_prefixed(meta.smallest.encode())
            out += _length_prefixed(meta.largest.encode())
        return bytes(out)

    def decode_from(self, src: bytes) -> None:
        """Replace the contents with those decoded from src.

        Raises CorruptionError if src is malformed.
        """
        self.clear()
        data = _Input(bytes(src))
        msg: Optional[str] = None
        while msg is None:
            tag = data.varint32()
            if tag is None:
                break
            if tag == _Tag.COMPARATOR:
                name = data.length_prefixed()
                if name is None:
                    msg = "comparator name"
                else:
                    self.comparator = name
            elif tag == _Tag.LOG_NUMBER:
                value = data.varint64()
                if value is None:
                    msg = "log number"
                else:
                    self.log_number = value
            elif tag == _Tag.PREV_LOG_NUMBER:
                value = data.varint64()
                if value is None:
                    msg = "previous log number"
                else:
                    self.prev_log_number = value
            elif tag == _Tag.NEXT_FILE_NUMBER:
                value = data.varint64()
                if value is None:
                    msg = "next file number"
                else:
                    self.next_file_number = value
            elif tag == _Tag.LAST_SEQUENCE:
                value = data.varint64()
                if value is None:
                    msg = "last sequence number"
                else:
                    self.last_sequence = value
            elif tag == _Tag.COMPACT_POINTER:
                level = data.level()
                key = data.internal_key() if level is not None else None
                if key is None:
                    msg = "compaction pointer"
                else:
                    self.compact_pointers.append((level, key))
            elif tag == _Tag.DELETED_FILE:
                level = data.level()
                number = data.varint64() if level is not None else None
                if number is None:
                    msg = "deleted file"
                else:
                    self.deleted_files.add((level, number))
            elif tag == _Tag.NEW_FILE:
                meta = self._decode_new_file(data)
                if meta is None:
                    msg = "new-file entry"
                else:
                    self.new_files.append(meta)
            else:
                msg = "unknown tag"

        if msg is None and not data.empty():
            msg = "invalid tag"
        if msg is not None:
            raise CorruptionError(f"VersionEdit: {msg}")

    @staticmethod
    def _decode_new_file(data: _Input) -> Optional[Tuple[int, FileMetaData]]:
        level = data.level()
        if level is None:
            return None
        number = data.varint64()
        if number is None:
            return None
        file_size = data.varint64()
        if file_size is None:
            return None
        smallest = data.internal_key()
        if smallest is None:
            return None
        largest = data.internal_key()
        if largest is None:
            return None
        return level, FileMetaData(number=number, file_size=file_size,
                                   smallest=smallest, largest=largest)

    def debug_string(self) -> str:
        """Human-readable listing of the edit."""
        parts = ["VersionEdit {"]
        if self.comparator is not None:
            parts.append("\n  Comparator: ")
            parts.append(self.comparator.decode("utf-8", "backslashreplace"))
        if self.log_number is not None:
            parts.append(f"\n  LogNumber: {self.log_number}")
        if self.prev_log_number is not None:
            parts.append(f"\n  PrevLogNumber: {self.prev_log_number}")
        if self.next_file_number is not None:
            parts.append(f"\n  NextFile: {self.next_file_number}")
        if self.last_sequence is not None:
            parts.append(f"\n  LastSeq: {self.last_sequence}")
        for level, key in self.compact_pointers:
            parts.append(f"\n  CompactPointer: {level} {key.debug_string()}")
        for level, number in sorted(self.deleted_files):
            parts.append(f"\n  DeleteFile: {level} {number}")
        for level, meta in self.new_files:
            parts.append(
                f"\n  AddFile: {level} {meta.number} {meta.file_size} "
                f"{meta.smallest.debug_string()} .. {meta.largest.debug_string()}"
            )
        parts.append("\n}\n")
        return "".join(parts)