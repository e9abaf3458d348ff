import io

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from lvlstore.dbformat import CorruptionError
from lvlstore.log import (
    BLOCK_SIZE,
    HEADER_SIZE,
    LogReader,
    LogWriter,
    RecordType,
)


def _write(records, dest_length=0, prefix=b""):
    buf = io.BytesIO()
    buf.write(prefix)
    writer = LogWriter(buf, dest_length)
    for record in records:
        writer.add_record(record)
    return buf.getvalue()


class _Collector:
    def __init__(self):
        self.drops = []

    def __call__(self, dropped, error):
        self.drops.append((dropped, error))


def _read_all(data, **kwargs):
    reporter = _Collector()
    reader = LogReader(io.BytesIO(data), reporter=reporter, **kwargs)
    return list(reader), reporter


def test_empty_record_header_bytes():
    data = _write([b""])
    assert len(data) == HEADER_SIZE
    assert data[4:7] == bytes([0, 0, RecordType.FULL])


def test_small_records_round_trip():
    records = [b"foo", b"bar", b"", b"xxxx"]
    got, reporter = _read_all(_write(records))
    assert got == records
    assert reporter.drops == []


def test_empty_input_reads_nothing():
    reader = LogReader(io.BytesIO(b""))
    assert reader.read_record() is None


def test_record_spanning_blocks_uses_first_and_last_types():
    record = bytes(range(256)) * (BLOCK_SIZE // 256)
    data = _write([record])
    assert data[6] == RecordType.FIRST
    assert data[BLOCK_SIZE + 6] == RecordType.LAST
    got, _ = _read_all(data)
    assert got == [record]


def test_large_record_uses_middle_fragments():
    record = b"m" * (3 * BLOCK_SIZE)
    data = _write([record])
    assert data[BLOCK_SIZE + 6] == RecordType.MIDDLE
    got, reporter = _read_all(data)
    assert got == [record]
    assert reporter.drops == []


def test_trailer_is_padded_with_zeros():
    first = b"a" * (BLOCK_SIZE - HEADER_SIZE - 3)
    data = _write([first, b"bar"])
    assert data[BLOCK_SIZE - 3:BLOCK_SIZE] == b"\x00\x00\x00"
    assert len(data) == BLOCK_SIZE + HEADER_SIZE + 3
    got, _ = _read_all(data)
    assert got == [first, b"bar"]


def test_writer_with_existing_length_pads_block():
    data = _write([b"bar"], dest_length=BLOCK_SIZE - 3, prefix=b"")
    assert data[:3] == b"\x00\x00\x00"
    assert data[3 + 6] == RecordType.FULL


def test_last_record_offset():
    data = _write([b"hello", b"world"])
    reader = LogReader(io.BytesIO(data))
    assert reader.read_record() == b"hello"
    assert reader.last_record_offset() == 0
    assert reader.read_record() == b"world"
    assert reader.last_record_offset() == HEADER_SIZE + len(b"hello")


def test_checksum_mismatch_is_reported():
    data = bytearray(_write([b"foo"]))
    data[HEADER_SIZE] ^= 0xFF
    got, reporter = _read_all(bytes(data))
    assert got == []
    assert len(reporter.drops) == 1
    dropped, error = reporter.drops[0]
    assert dropped == len(data)
    assert isinstance(error, CorruptionError)
    assert "checksum mismatch" in str(error)


def test_checksum_disabled_returns_corrupted_record():
    data = bytearray(_write([b"foo"]))
    data[HEADER_SIZE] = ord("g")
    got, reporter = _read_all(bytes(data), checksum=False)
    assert got == [b"goo"]
    assert reporter.drops == []


def test_unknown_record_type_is_reported():
    data = bytearray(_write([b"foo", b"bar"]))
    data[6] = 9
    got, reporter = _read_all(bytes(data), checksum=False)
    assert got == [b"bar"]
    assert len(reporter.drops) == 1
    assert reporter.drops[0][0] == 3
    assert "unknown record type 9" in str(reporter.drops[0][1])


def test_truncated_payload_is_silent_eof():
    data = _write([b"foo", b"bar"])
    got, reporter = _read_all(data[:-1])
    assert got == [b"foo"]
    assert reporter.drops == []


def test_truncated_header_is_silent_eof():
    data = _write([b"foo"])
    got, reporter = _read_all(data + b"\x01\x02\x03")
    assert got == [b"foo"]
    assert reporter.drops == []


def test_zero_filled_region_is_skipped():
    data = _write([b"foo"]) + b"\x00" * 20
    got, reporter = _read_all(data)
    assert got == [b"foo"]
    assert reporter.drops == []


def test_initial_offset_skips_earlier_records():
    records = [b"one", b"two", b"three"]
    data = _write(records)
    offset = HEADER_SIZE + len(b"one")
    got, _ = _read_all(data, initial_offset=offset)
    assert got == [b"two", b"three"]


def test_initial_offset_inside_fragmented_record_resyncs():
    big = b"z" * (2 * BLOCK_SIZE)
    data = _write([big, b"after"])
    reader = LogReader(io.BytesIO(data), initial_offset=1)
    assert reader.read_record() == b"after"
    assert reader.read_record() is None


def test_initial_offset_in_later_block_seeks():
    first = b"q" * BLOCK_SIZE
    data = _write([first, b"tail"])
    tail_offset = data.rindex(b"tail") - HEADER_SIZE
    reader = LogReader(io.BytesIO(data), initial_offset=tail_offset)
    assert reader.read_record() == b"tail"
    assert reader.last_record_offset() == tail_offset


def test_read_error_is_reported():
    class Broken(io.RawIOBase):
        def read(self, size=-1):
            raise OSError("disk gone")

    reporter = _Collector()
    reader = LogReader(Broken(), reporter=reporter)
    assert reader.read_record() is None
    assert len(reporter.drops) == 1
    assert reporter.drops[0][0] == BLOCK_SIZE
    assert isinstance(reporter.drops[0][1], OSError)


def test_missing_start_of_fragment_is_reported():
    big = b"k" * (BLOCK_SIZE + 100)
    data = _write([big, b"next"])
    # Drop the first block so the stream starts with a LAST fragment.
    got, reporter = _read_all(data[BLOCK_SIZE:])
    assert got == [b"next"]
    assert len(reporter.drops) == 1
    assert "missing start of fragmented record(2)" in str(reporter.drops[0][1])


@settings(max_examples=30, deadline=None)
@given(st.lists(st.binary(max_size=3 * BLOCK_SIZE // 2), max_size=6))
def test_round_trip_property(records):
    got, reporter = _read_all(_write(records))
    assert got == records
    assert reporter.drops == []


@settings(max_examples=30, deadline=None)
@given(st.lists(st.binary(max_size=2000), min_size=1, max_size=10))
def test_offsets_match_written_positions(records):
    data = _write(records)
    reader = LogReader(io.BytesIO(data))
    offsets = []
    while reader.read_record() is not None:
        offsets.append(reader.last_record_offset())
    assert len(offsets) == len(records)
    assert offsets == sorted(offsets)
    assert all(0 <= off < len(data) for off in offsets)


def test_writer_error_propagates():
    class Full(io.RawIOBase):
        def writable(self):
            return True

        def write(self, b):
            raise OSError("no space")

    writer = LogWriter(Full())
    with pytest.raises(OSError):
        writer.add_record(b"foo")