"""Building blocks of a log-structured key-value store: options, internal keys,
file names, version edits, write-ahead log, memtable and a user-key iterator."""

__version__ = "0.1.0"

__all__ = ["db_iter", "dbformat", "filename", "log", "memtable", "options", "version_edit"]