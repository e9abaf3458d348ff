import os

import pytest
from hypothesis import given, strategies as st

from lvlstore.filename import (
    FileType,
    current_file_name,
    descriptor_file_name,
    info_log_file_name,
    lock_file_name,
    log_file_name,
    old_info_log_file_name,
    parse_file_name,
    set_current_file,
    sst_table_file_name,
    table_file_name,
    temp_file_name,
)


def _base(path, dbname="db"):
    prefix = dbname + "/"
    assert path.startswith(prefix)
    return path[len(prefix):]


def test_log_file_name_is_zero_padded():
    assert log_file_name("db", 7) == "db/000007.log"


def test_descriptor_file_name_format():
    assert descriptor_file_name("db", 12) == "db/MANIFEST-000012"


def test_fixed_names():
    assert current_file_name("db") == "db/CURRENT"
    assert lock_file_name("db") == "db/LOCK"
    assert info_log_file_name("db") == "db/LOG"
    assert old_info_log_file_name("db") == "db/LOG.old"


@pytest.mark.parametrize(
    "func",
    [log_file_name, table_file_name, sst_table_file_name, descriptor_file_name, temp_file_name],
)
def test_zero_number_rejected(func):
    with pytest.raises(ValueError):
        func("db", 0)


@pytest.mark.parametrize(
    "func, expected",
    [
        (log_file_name, FileType.LOG_FILE),
        (table_file_name, FileType.TABLE_FILE),
        (sst_table_file_name, FileType.TABLE_FILE),
        (descriptor_file_name, FileType.DESCRIPTOR_FILE),
        (temp_file_name, FileType.TEMP_FILE),
    ],
)
@given(number=st.integers(min_value=1, max_value=(1 << 64) - 1))
def test_numbered_names_round_trip(func, expected, number):
    assert parse_file_name(_base(func("db", number))) == (number, expected)


@pytest.mark.parametrize(
    "func, expected",
    [
        (current_file_name, FileType.CURRENT_FILE),
        (lock_file_name, FileType.DB_LOCK_FILE),
        (info_log_file_name, FileType.INFO_LOG_FILE),
        (old_info_log_file_name, FileType.INFO_LOG_FILE),
    ],
)
def test_fixed_names_parse_with_zero_number(func, expected):
    assert parse_file_name(_base(func("db"))) == (0, expected)


@pytest.mark.parametrize(
    "name",
    [
        "",
        "foo",
        "foo-dx-100.log",
        ".log",
        "manifest",
        "CURREN",
        "CURRENTX",
        "MANIFES",
        "MANIFEST",
        "MANIFEST-",
        "XMANIFEST-3",
        "MANIFEST-3x",
        "LOC",
        "LOCKx",
        "LO",
        "LOGx",
        "18446744073709551616.log",
        "184467440737095516150.log",
        "100",
        "100.",
        "100.lop",
    ],
)
def test_invalid_names(name):
    assert parse_file_name(name) is None


def test_largest_number_accepted():
    number = (1 << 64) - 1
    assert parse_file_name(f"{number}.log") == (number, FileType.LOG_FILE)


def test_set_current_file_points_at_manifest(tmp_path):
    dbname = str(tmp_path)
    set_current_file(dbname, 5)
    with open(current_file_name(dbname)) as handle:
        content = handle.read()
    assert content == _base(descriptor_file_name(dbname, 5), dbname) + "\n"
    assert not os.path.exists(temp_file_name(dbname, 5))


def test_set_current_file_missing_dir_raises(tmp_path):
    dbname = str(tmp_path / "missing")
    with pytest.raises(OSError):
        set_current_file(dbname, 1)
    assert not os.path.exists(current_file_name(dbname))