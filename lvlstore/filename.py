"""Names of the files that make up a database directory."""

from __future__ import annotations

import enum
import os
import re
from typing import Optional, Tuple

_MAX_UINT64 = (1 << 64) - 1
_DIGITS = re.compile(r"[0-9]+")


class FileType(enum.IntEnum):
    """Kind of file found in a database directory."""

    LOG_FILE = 0
    DB_LOCK_FILE = 1
    TABLE_FILE = 2
    DESCRIPTOR_FILE = 3
    CURRENT_FILE = 4
    TEMP_FILE = 5
    INFO_LOG_FILE = 6  # Either the current one, or an old one


def _require_positive(number: int) -> None:
    if number <= 0:
        raise ValueError(f"file number must be positive: {number}")


def _make_file_name(dbname: str, number: int, suffix: str) -> str:
    _require_positive(number)
    return f"{dbname}/{number:06d}.{suffix}"


def log_file_name(dbname: str, number: int) -> str:
    """Name of the write-ahead log file with the given number."""
    return _make_file_name(dbname, number, "log")


def table_file_name(dbname: str, number: int) -> str:
    """Name of the sorted table file with the given number."""
    return _make_file_name(dbname, number, "ldb")


def sst_table_file_name(dbname: str, number: int) -> str:
    """Legacy name of the sorted table file with the given number."""
    return _make_file_name(dbname, number, "sst")


def descriptor_file_name(dbname: str, number: int) -> str:
    """Name of the manifest (descriptor) file with the given number."""
    _require_positive(number)
    return f"{dbname}/MANIFEST-{number:06d}"


def current_file_name(dbname: str) -> str:
    """Name of the file that names the current manifest."""
    return dbname + "/CURRENT"


def lock_file_name(dbname: str) -> str:
    """Name of the database lock file."""
    return dbname + "/LOCK"


def temp_file_name(dbname: str, number: int) -> str:
    """Name of a temporary file owned by the database."""
    return _make_file_name(dbname, number, "dbtmp")


def info_log_file_name(dbname: str) -> str:
    """Name of the informational log file."""
    return dbname + "/LOG"


def old_info_log_file_name(dbname: str) -> str:
    """Name of the previous informational log file."""
    return dbname + "/LOG.old"


def _consume_decimal(text: str) -> Optional[Tuple[int, str]]:
    match = _DIGITS.match(text)
    if match is None:
        return None
    number = int(match.group())
    if number > _MAX_UINT64:
        return None
    return number, text[match.end():]


_FIXED_NAMES = {
    "CURRENT": FileType.CURRENT_FILE,
    "LOCK": FileType.DB_LOCK_FILE,
    "LOG": FileType.INFO_LOG_FILE,
    "LOG.old": FileType.INFO_LOG_FILE,
}

_SUFFIXES = {
    ".log": FileType.LOG_FILE,
    ".sst": FileType.TABLE_FILE,
    ".ldb": FileType.TABLE_FILE,
    ".dbtmp": FileType.TEMP_FILE,
}


def parse_file_name(filename: str) -> Optional[Tuple[int, FileType]]:
    """Return (number, type) for a database file name, or None if it is not one."""
    if filename in _FIXED_NAMES:
        return 0, _FIXED_NAMES[filename]
    if filename.startswith("MANIFEST-"):
        parsed = _consume_decimal(filename[len("MANIFEST-"):])
        if parsed is None or parsed[1]:
            return None
        return parsed[0], FileType.DESCRIPTOR_FILE
    parsed = _consume_decimal(filename)
    if parsed is None:
        return None
    number, suffix = parsed
    file_type = _SUFFIXES.get(suffix)
    if file_type is None:
        return None
    return number, file_type


def set_current_file(dbname: str, descriptor_number: int) -> None:
    """Make CURRENT name the manifest with the given number.

    Raises OSError if the file cannot be written or renamed into place.
    """
    manifest = descriptor_file_name(dbname, descriptor_number)
    contents = manifest[len(dbname) + 1:] + "\n"
    tmp = temp_file_name(dbname, descriptor_number)
    try:
        with open(tmp, "wb") as handle:
            handle.write(contents.encode())
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp, current_file_name(dbname))
    except OSError:
        try:
            os.remove(tmp)
        except OSError:
            pass
        raise