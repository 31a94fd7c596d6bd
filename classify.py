"""
Change classifier: compares live file metadata with a catalog record.
"""

import os
import sys
from enum import Enum
from pathlib import Path
from typing import NamedTuple, Optional

from common import FileAccessError, FileRecord, Mode


NS_PER_SECOND = 1_000_000_000


class Decision(str, Enum):
    UNCHANGED = "unchanged"
    CHANGED = "changed"
    NEW = "new"
    NOT_FOUND = "not_found"


class FileMetadata(NamedTuple):
    size: int
    created: int
    modified: int


def to_seconds(ns: int) -> int:
    """Floor a nanosecond timestamp to whole Unix seconds."""
    return ns // NS_PER_SECOND


def created_seconds(st: os.stat_result) -> int:
    """Creation time in whole seconds.

    Uses the birth time when the platform reports one. Windows reports
    creation time in st_ctime. Elsewhere (Linux) st_ctime is the inode change
    time, so the modification time stands in for creation.
    """
    birth_ns = getattr(st, "st_birthtime_ns", None)
    if birth_ns is not None:
        return to_seconds(birth_ns)
    birth = getattr(st, "st_birthtime", None)
    if birth is not None:
        return int(birth)
    if sys.platform == "win32":
        return to_seconds(st.st_ctime_ns)
    return to_seconds(st.st_mtime_ns)


def file_metadata(st: os.stat_result) -> FileMetadata:
    return FileMetadata(
        size=st.st_size,
        created=created_seconds(st),
        modified=to_seconds(st.st_mtime_ns),
    )


def read_metadata(file_path: Path) -> FileMetadata:
    """Stat a file; failures become FileAccessError."""
    try:
        return file_metadata(file_path.stat())
    except OSError as exc:
        raise FileAccessError(f"Cannot stat '{file_path}': {exc}") from exc


def classify(
    size: int,
    created: int,
    modified: int,
    record: Optional[FileRecord],
    mode: Mode,
) -> Decision:
    """Decide how a file relates to its catalog record.

    A missing record is NEW when building or updating and NOT_FOUND when
    verifying. Otherwise the file is UNCHANGED only if size, created and
    modified all match exactly.
    """
    if record is None:
        return Decision.NOT_FOUND if mode == Mode.VERIFY else Decision.NEW
    if (
        record.size == size
        and record.created == created
        and record.modified == modified
    ):
        return Decision.UNCHANGED
    return Decision.CHANGED


def classify_metadata(meta: FileMetadata, record: Optional[FileRecord], mode: Mode) -> Decision:
    return classify(meta.size, meta.created, meta.modified, record, mode)
