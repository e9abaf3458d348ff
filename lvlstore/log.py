"""Write-ahead log format: records split into checksummed fragments in fixed-size blocks."""

from __future__ import annotations

import enum
import os
import struct
from typing import BinaryIO, Callable, Iterator, Optional, Tuple

from lvlstore.dbformat import CorruptionError

BLOCK_SIZE = 32768
# Header is checksum (4 bytes), length (2 bytes), type (1 byte).
HEADER_SIZE = 4 + 2 + 1

_FIXED32 = struct.Struct("<I")
_MASK_DELTA = 0xA282EAD8
_MASK32 = 0xFFFFFFFF
_MASK64 = (1 << 64) - 1


class RecordType(enum.IntEnum):
    """Type of a physical record; the values are part of the on-disk format."""

    ZERO = 0  # reserved for preallocated files
    FULL = 1
    FIRST = 2
    MIDDLE = 3
    LAST = 4


MAX_RECORD_TYPE = RecordType.LAST
_EOF = MAX_RECORD_TYPE + 1
_BAD_RECORD = MAX_RECORD_TYPE + 2


def _make_crc_table() -> Tuple[int, ...]:
    table = []
    for n in range(256):
        crc = n
        for _ in range(8):
            crc = (crc >> 1) ^ 0x82F63B78 if crc & 1 else crc >> 1
        table.append(crc)
    return tuple(table)


_CRC_TABLE = _make_crc_table()


def _crc32c_extend(crc: int, data: bytes) -> int:
    crc ^= _MASK32
    for byte in data:
        crc = _CRC_TABLE[(crc ^ byte) & 0xFF] ^ (crc >> 8)
    return crc ^ _MASK32


def _mask(crc: int) -> int:
    return ((((crc >> 15) | (crc << 17)) & _MASK32) + _MASK_DELTA) & _MASK32


def _unmask(masked: int) -> int:
    rot = (masked - _MASK_DELTA) & _MASK32
    return ((rot >> 17) | (rot << 15)) & _MASK32


_TYPE_CRC = tuple(_crc32c_extend(0, bytes([t])) for t in range(MAX_RECORD_TYPE + 1))


class LogWriter:
    """Appends records to a binary file-like object in the log format."""

    def __init__(self, dest: BinaryIO, dest_length: int = 0) -> None:
        """dest must already hold dest_length bytes of log data (zero if new)."""
        self._dest = dest
        self._block_offset = dest_length % BLOCK_SIZE

    def add_record(self, data: bytes) -> None:
        """Append one logical record; an empty record still emits one fragment."""
        data = bytes(data)
        pos = 0
        left = len(data)
        begin = True
        while True:
            leftover = BLOCK_SIZE - self._block_offset
            if leftover < HEADER_SIZE:
                # Switch to a new block, filling the trailer with zeros.
                if leftover > 0:
                    self._dest.write(b"\x00" * leftover)
                self._block_offset = 0

            avail = BLOCK_SIZE - self._block_offset - HEADER_SIZE
            fragment_length = min(left, avail)
            end = left == fragment_length
            if begin and end:
                record_type = RecordType.FULL
            elif begin:
                record_type = RecordType.FIRST
            elif end:
                record_type = RecordType.LAST
            else:
                record_type = RecordType.MIDDLE

            self._emit_physical_record(record_type, data[pos:pos + fragment_length])
            pos += fragment_length
            left -= fragment_length
            begin = False
            if left <= 0:
                break

    def _emit_physical_record(self, record_type: RecordType, payload: bytes) -> None:
        length = len(payload)
        crc = _mask(_crc32c_extend(_TYPE_CRC[record_type], payload))
        header = _FIXED32.pack(crc) + bytes([length & 0xFF, length >> 8, record_type])
        self._block_offset += HEADER_SIZE + length
        self._dest.write(header)
        self._dest.write(payload)
        flush = getattr(self._dest, "flush", None)
        if flush is not None:
            flush()


Reporter = Callable[[int, Exception], None]


class LogReader:
    """Reads logical records back from a binary file-like object.

    The optional reporter is called as reporter(bytes_dropped, error) whenever
    data is skipped because of corruption or a read failure.
    """

    def __init__(
        self,
        file: BinaryIO,
        reporter: Optional[Reporter] = None,
        checksum: bool = True,
        initial_offset: int = 0,
    ) -> None:
        self._file = file
        self._reporter = reporter
        self._checksum = checksum
        self._buffer = b""
        self._eof = False
        self._last_record_offset = 0
        self._end_of_buffer_offset = 0
        self._initial_offset = initial_offset
        self._resyncing = initial_offset > 0

    def _skip_to_initial_block(self) -> bool:
        offset_in_block = self._initial_offset % BLOCK_SIZE
        block_start_location = self._initial_offset - offset_in_block

        # Don't search a block if we'd be in the trailer.
        if offset_in_block > BLOCK_SIZE - 6:
            block_start_location += BLOCK_SIZE

        self._end_of_buffer_offset = block_start_location

        if block_start_location > 0:
            try:
                self._file.seek(block_start_location, os.SEEK_CUR)
            except OSError as exc:
                self._report_drop(block_start_location, exc)
                return False
        return True

    def read_record(self) -> Optional[bytes]:
        """Return the next logical record, or None at the end of the input."""
        if self._last_record_offset < self._initial_offset:
            if not self._skip_to_initial_block():
                return None

        scratch = bytearray()
        in_fragmented_record = False
        prospective_record_offset = 0

        while True:
            record_type, fragment = self._read_physical_record()
            physical_record_offset = (
                self._end_of_buffer_offset
                - len(self._buffer)
                - HEADER_SIZE
                - len(fragment)
            )

            if self._resyncing:
                if record_type == RecordType.MIDDLE:
                    continue
                if record_type == RecordType.LAST:
                    self._resyncing = False
                    continue
                self._resyncing = False

            if record_type == RecordType.FULL:
                if in_fragmented_record:
                    # Earlier writers could leave an empty FIRST fragment at a
                    # block's tail; that is not a corruption.
                    if scratch:
                        self._report_corruption(
                            len(scratch), "partial record without end(1)"
                        )
                prospective_record_offset = physical_record_offset
                self._last_record_offset = prospective_record_offset
                return fragment

            if record_type == RecordType.FIRST:
                if in_fragmented_record and scratch:
                    self._report_corruption(
                        len(scratch), "partial record without end(2)"
                    )
                prospective_record_offset = physical_record_offset
                scratch = bytearray(fragment)
                in_fragmented_record = True
            elif record_type == RecordType.MIDDLE:
                if not in_fragmented_record:
                    self._report_corruption(
                        len(fragment), "missing start of fragmented record(1)"
                    )
                else:
                    scratch += fragment
            elif record_type == RecordType.LAST:
                if not in_fragmented_record:
                    self._report_corruption(
                        len(fragment), "missing start of fragmented record(2)"
                    )
                else:
                    scratch += fragment
                    self._last_record_offset = prospective_record_offset
                    return bytes(scratch)
            elif record_type == _EOF:
                # A writer dying mid-record is not treated as corruption.
                return None
            elif record_type == _BAD_RECORD:
                if in_fragmented_record:
                    self._report_corruption(len(scratch), "error in middle of record")
                    in_fragmented_record = False
                    scratch = bytearray()
            else:
                dropped = len(fragment) + (len(scratch) if in_fragmented_record else 0)
                self._report_corruption(dropped, f"unknown record type {record_type}")
                in_fragmented_record = False
                scratch = bytearray()

    def last_record_offset(self) -> int:
        """Physical offset of the last record returned by read_record."""
        return self._last_record_offset

    def __iter__(self) -> Iterator[bytes]:
        while True:
            record = self.read_record()
            if record is None:
                return
            yield record

    def _report_corruption(self, dropped: int, reason: str) -> None:
        self._report_drop(dropped, CorruptionError(reason))

    def _report_drop(self, dropped: int, reason: Exception) -> None:
        position = (self._end_of_buffer_offset - len(self._buffer) - dropped) & _MASK64
        if self._reporter is not None and position >= self._initial_offset:
            self._reporter(dropped, reason)

    def _read_physical_record(self) -> Tuple[int, bytes]:
        while True:
            if len(self._buffer) < HEADER_SIZE:
                if not self._eof:
                    # Last read was a full block, so what is left is a trailer.
                    self._buffer = b""
                    try:
                        data = self._file.read(BLOCK_SIZE) or b""
                    except OSError as exc:
                        self._report_drop(BLOCK_SIZE, exc)
                        self._eof = True
                        return _EOF, b""
                    self._buffer = bytes(data)
                    self._end_of_buffer_offset += len(self._buffer)
                    if len(self._buffer) < BLOCK_SIZE:
                        self._eof = True
                    continue
                # A truncated header at the end of the file is just the end.
                self._buffer = b""
                return _EOF, b""

            buffer = self._buffer
            length = buffer[4] | (buffer[5] << 8)
            record_type = buffer[6]
            if HEADER_SIZE + length > len(buffer):
                drop_size = len(buffer)
                self._buffer = b""
                if not self._eof:
                    self._report_corruption(drop_size, "bad record length")
                    return _BAD_RECORD, b""
                # The writer died in the middle of writing the payload.
                return _EOF, b""

            if record_type == RecordType.ZERO and length == 0:
                # Preallocated, never-written space.
                self._buffer = b""
                return _BAD_RECORD, b""

            if self._checksum:
                expected_crc = _unmask(_FIXED32.unpack_from(buffer, 0)[0])
                actual_crc = _crc32c_extend(0, buffer[6:HEADER_SIZE + length])
                if actual_crc != expected_crc:
                    # The length may itself be corrupt: drop the whole buffer.
                    drop_size = len(buffer)
                    self._buffer = b""
                    self._report_corruption(drop_size, "checksum mismatch")
                    return _BAD_RECORD, b""

            payload = buffer[HEADER_SIZE:HEADER_SIZE + length]
            self._buffer = buffer[HEADER_SIZE + length:]

            # Skip physical records that started before the initial offset.
            if (
                self._end_of_buffer_offset - len(self._buffer) - HEADER_SIZE - length
                < self._initial_offset
            ):
                return _BAD_RECORD, b""

            return record_type, payload