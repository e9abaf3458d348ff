# lvlstore

The building blocks of a log-structured (LSM) key-value storage engine,
in plain Python. Keys and values are `bytes`.

## Modules

- `lvlstore.options` holds the settings classes `Options`, `ReadOptions` and
  `WriteOptions`, and the `CompressionType` enum. `Options.sanitized()` returns
  a copy of the options with `max_open_files`, `write_buffer_size`,
  `max_file_size` and `block_size` clipped to their allowed ranges. The module
  also defines the `Comparator` class (byte-wise ordering by default) and the
  abstract `FilterPolicy` interface.
- `lvlstore.dbformat` covers internal keys, which are a user key followed by
  an 8-byte tag packing the sequence number and the `ValueType`. It provides
  `ParsedInternalKey`, `InternalKey`, `InternalKeyComparator`,
  `InternalFilterPolicy` and `LookupKey`, along with the helpers
  `parse_internal_key`, `extract_user_key`, `extract_value_type`,
  `pack_sequence_and_type` and `escape_string`. Malformed keys raise
  `CorruptionError`.
- `lvlstore.filename` builds and parses the names of database files. It has
  `log_file_name`, `table_file_name`, `sst_table_file_name`,
  `descriptor_file_name`, `current_file_name`, `lock_file_name`,
  `temp_file_name`, `info_log_file_name` and `old_info_log_file_name`.
  `parse_file_name` returns `(number, FileType)`, or `None` for a name that is
  not a database file. `set_current_file` writes the `CURRENT` file through a
  temporary file and raises `OSError` if that fails.
- `lvlstore.version_edit` has `VersionEdit` and `FileMetaData`. A
  `VersionEdit` is a manifest record: `encode()` serialises it,
  `decode_from()` reads one back and raises `CorruptionError` if the data is
  malformed, and `debug_string()` gives a readable listing.
- `lvlstore.log` is the block-structured write-ahead log. `LogWriter` appends
  records to a binary file-like object and splits large ones across 32 KiB
  blocks, each fragment checked with a CRC32C. `LogReader` reads the records
  back, either through `read_record()` or by iteration. A reader does not
  raise on damaged data: it skips it and, if you gave it a `reporter`, calls
  `reporter(bytes_dropped, error)`.
- `lvlstore.memtable` has `MemTable`, the sorted in-memory write buffer, and
  `MemTableIterator`. `MemTable.get()` returns the value, returns `None` when
  the key is absent, and raises `KeyError` when the newest visible entry for
  the key is a deletion.
- `lvlstore.db_iter` has `DBIterator`. It takes an iterator over internal keys,
  such as a `MemTableIterator`, and presents the user keys that were live at a
  given sequence number. It can move forwards and backwards.

## Installation

```
pip install .
```

For the tests:

```
pip install ".[test]"
pytest
```

## Example

```python
import io

from lvlstore.db_iter import DBIterator
from lvlstore.dbformat import InternalKeyComparator, LookupKey, ValueType
from lvlstore.log import LogReader, LogWriter
from lvlstore.memtable import MemTable
from lvlstore.options import Comparator

user_cmp = Comparator()
mem = MemTable(InternalKeyComparator(user_cmp))
mem.add(1, ValueType.VALUE, b"apple", b"red")
mem.add(2, ValueType.VALUE, b"banana", b"yellow")
mem.add(3, ValueType.DELETION, b"apple", b"")

print(mem.get(LookupKey(b"banana", 10)))   # b'yellow'
print(mem.get(LookupKey(b"apple", 2)))     # b'red' (older snapshot)
try:
    mem.get(LookupKey(b"apple", 10))
except KeyError:
    print("apple was deleted at sequence 3")

it = DBIterator(None, user_cmp, mem.new_iterator(), sequence=10)
it.seek_to_first()
while it.valid():
    print(it.key(), it.value())            # b'banana' b'yellow'
    it.next()

buf = io.BytesIO()
writer = LogWriter(buf)
writer.add_record(b"first")
writer.add_record(b"x" * 100_000)          # spans several blocks

buf.seek(0)
for record in LogReader(buf):
    print(len(record))                     # 5, then 100000
```

## What this package does not do

There is no database object here. You cannot open a database directory with
it, and it has no put/get/delete API over files. It does not build or read
sorted table files, and it has no block cache. It does not keep a version set
built from manifest records, and it does not run compaction. The modules are
the pieces such an engine is made of: key encoding, file naming, manifest
records, the write-ahead log, the memtable and the user-key iterator.