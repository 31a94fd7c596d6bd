"""
Unit tests for the change classifier and timestamp normalization.
"""

import os
from pathlib import Path

import pytest

from classify import (
    Decision,
    classify,
    file_metadata,
    read_metadata,
    to_seconds,
)
from common import FileAccessError, FileRecord, Mode


RECORD = FileRecord(
    path="a.txt",
    size=15,
    created=1_700_000_000,
    modified=1_700_000_100,
    hash=b"\x00" * 20,
    hash_of_hash=b"\x00" * 20,
)


@pytest.mark.parametrize("mode", [Mode.BUILD, Mode.UPDATE])
def test_missing_record_is_new_when_writing(mode):
    assert classify(15, 1, 2, None, mode) == Decision.NEW


def test_missing_record_is_not_found_when_verifying():
    assert classify(15, 1, 2, None, Mode.VERIFY) == Decision.NOT_FOUND


@pytest.mark.parametrize("mode", [Mode.UPDATE, Mode.VERIFY])
def test_identical_metadata_is_unchanged(mode):
    assert classify(15, 1_700_000_000, 1_700_000_100, RECORD, mode) == Decision.UNCHANGED


@pytest.mark.parametrize(
    "size, created, modified",
    [
        (16, 1_700_000_000, 1_700_000_100),
        (15, 1_700_000_001, 1_700_000_100),
        (15, 1_700_000_000, 1_700_000_099),
    ],
)
def test_any_differing_field_is_changed(size, created, modified):
    assert classify(size, created, modified, RECORD, Mode.UPDATE) == Decision.CHANGED
    assert classify(size, created, modified, RECORD, Mode.VERIFY) == Decision.CHANGED


def test_to_seconds_floors_sub_second_precision():
    assert to_seconds(1_700_000_100_000_000_000) == 1_700_000_100
    assert to_seconds(1_700_000_100_999_999_999) == 1_700_000_100


def test_sub_second_touch_does_not_change_decision(tmp_path: Path):
    path = tmp_path / "f.bin"
    path.write_bytes(b"data")
    os.utime(path, ns=(1_700_000_100_100_000_000, 1_700_000_100_100_000_000))
    before = read_metadata(path)

    os.utime(path, ns=(1_700_000_100_900_000_000, 1_700_000_100_900_000_000))
    after = read_metadata(path)

    assert after.modified == before.modified == 1_700_000_100
    record = FileRecord("f.bin", before.size, before.created, before.modified, b"", b"")
    assert classify(after.size, after.created, after.modified, record, Mode.VERIFY) == Decision.UNCHANGED


def test_file_metadata_uses_whole_seconds(tmp_path: Path):
    path = tmp_path / "f.bin"
    path.write_bytes(b"12345")
    st = path.stat()
    meta = file_metadata(st)
    assert meta.size == 5
    assert meta.modified == st.st_mtime_ns // 1_000_000_000
    assert isinstance(meta.created, int)


def test_read_metadata_missing_file(tmp_path: Path):
    with pytest.raises(FileAccessError):
        read_metadata(tmp_path / "gone.txt")
