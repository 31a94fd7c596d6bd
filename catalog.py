"""
Catalog store: SQLite-backed mapping from relative path to fingerprint record.
"""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

from common import (
    FORMAT_VERSION,
    SQLITE_SIDECAR_SUFFIXES,
    CatalogMeta,
    FileRecord,
    IntegrityViolation,
    PreconditionError,
    StoreCommitError,
)


SCHEMA = """
CREATE TABLE files (
    path TEXT NOT NULL PRIMARY KEY,
    size INTEGER NOT NULL,
    created INTEGER NOT NULL,
    modified INTEGER NOT NULL,
    hash BLOB NOT NULL,
    hash_of_hash BLOB NOT NULL
);
CREATE TABLE meta (
    format_version INTEGER NOT NULL,
    algorithm_id TEXT NOT NULL,
    root_path TEXT NOT NULL,
    created_at INTEGER NOT NULL,
    last_updated_at INTEGER
);
"""


def _check_single_row(count: int) -> None:
    if count != 1:
        raise IntegrityViolation(f"Expected to insert/update 1 row, got {count}")


def remove_catalog_files(db_path: Path) -> None:
    """Delete a catalog file and any SQLite sidecars next to it."""
    for candidate in [db_path] + [Path(f"{db_path}{s}") for s in SQLITE_SIDECAR_SUFFIXES]:
        try:
            candidate.unlink()
        except FileNotFoundError:
            pass


class Catalog:
    """A catalog file opened for one pass.

    The connection runs in autocommit mode; every pass wraps its work in
    ``transaction()`` so all mutations land in a single commit.
    """

    def __init__(self, conn: sqlite3.Connection, db_path: Path, readonly: bool = False):
        self.conn = conn
        self.db_path = db_path
        self.readonly = readonly

    @classmethod
    def create(cls, db_path: Path) -> "Catalog":
        """Create a new, empty catalog file. The schema is written by initialize()."""
        if db_path.exists():
            raise PreconditionError(f"Database file '{db_path}' already exists")
        db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(db_path), isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        return cls(conn, db_path)

    @classmethod
    def open(cls, db_path: Path, readonly: bool = False) -> "Catalog":
        """Open an existing catalog."""
        if not db_path.is_file():
            raise PreconditionError(f"Database file '{db_path}' does not exist")
        if readonly:
            uri = f"{db_path.resolve().as_uri()}?mode=ro"
            conn = sqlite3.connect(uri, uri=True, isolation_level=None)
        else:
            conn = sqlite3.connect(str(db_path), isolation_level=None)
        conn.row_factory = sqlite3.Row
        catalog = cls(conn, db_path, readonly=readonly)
        try:
            catalog.read_meta()
        except (sqlite3.DatabaseError, IntegrityViolation) as exc:
            conn.close()
            raise PreconditionError(f"'{db_path}' is not a valid catalog: {exc}") from exc
        return catalog

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> "Catalog":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @contextmanager
    def transaction(self) -> Iterator["Catalog"]:
        """Run a block inside one transaction: commit on success, roll back on error."""
        self.conn.execute("BEGIN")
        try:
            yield self
        except BaseException:
            if self.conn.in_transaction:
                self.conn.execute("ROLLBACK")
            raise
        try:
            self.conn.execute("COMMIT")
        except sqlite3.Error as exc:
            if self.conn.in_transaction:
                self.conn.execute("ROLLBACK")
            raise StoreCommitError(f"Failed to commit '{self.db_path}': {exc}") from exc

    def initialize(self, root_path: str, algorithm_id: str, created_at: int) -> None:
        """Write schema and the meta row (inside the Build transaction)."""
        for statement in SCHEMA.split(";"):
            if statement.strip():
                self.conn.execute(statement)
        cursor = self.conn.execute(
            "INSERT INTO meta (format_version, algorithm_id, root_path, created_at) "
            "VALUES (?, ?, ?, ?)",
            (FORMAT_VERSION, algorithm_id, root_path, created_at),
        )
        _check_single_row(cursor.rowcount)
        logging.debug(f"Initialized catalog {self.db_path} ({algorithm_id})")

    def read_meta(self) -> CatalogMeta:
        rows = self.conn.execute(
            "SELECT format_version, algorithm_id, root_path, created_at, last_updated_at FROM meta"
        ).fetchall()
        if len(rows) != 1:
            raise IntegrityViolation(f"Expected 1 meta row, got {len(rows)}")
        row = rows[0]
        return CatalogMeta(
            format_version=row["format_version"],
            algorithm_id=row["algorithm_id"],
            root_path=row["root_path"],
            created_at=row["created_at"],
            last_updated_at=row["last_updated_at"],
        )

    def touch_last_updated(self, timestamp: int) -> None:
        cursor = self.conn.execute("UPDATE meta SET last_updated_at = ?", (timestamp,))
        _check_single_row(cursor.rowcount)

    def lookup(self, path: str) -> Optional[FileRecord]:
        """Fetch the record for a relative path, or None."""
        rows = self.conn.execute(
            "SELECT path, size, created, modified, hash, hash_of_hash FROM files WHERE path = ?",
            (path,),
        ).fetchmany(2)
        if not rows:
            return None
        if len(rows) > 1:
            raise IntegrityViolation(f"More than one row returned for '{path}'")
        row = rows[0]
        return FileRecord(
            path=row["path"],
            size=row["size"],
            created=row["created"],
            modified=row["modified"],
            hash=bytes(row["hash"]),
            hash_of_hash=bytes(row["hash_of_hash"]),
        )

    def insert(self, record: FileRecord) -> None:
        try:
            cursor = self.conn.execute(
                "INSERT INTO files (path, size, created, modified, hash, hash_of_hash) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    record.path,
                    record.size,
                    record.created,
                    record.modified,
                    record.hash,
                    record.hash_of_hash,
                ),
            )
        except sqlite3.IntegrityError as exc:
            raise IntegrityViolation(f"Cannot insert '{record.path}': {exc}") from exc
        _check_single_row(cursor.rowcount)

    def update(self, record: FileRecord) -> None:
        cursor = self.conn.execute(
            "UPDATE files SET size = ?, created = ?, modified = ?, hash = ?, hash_of_hash = ? "
            "WHERE path = ?",
            (
                record.size,
                record.created,
                record.modified,
                record.hash,
                record.hash_of_hash,
                record.path,
            ),
        )
        _check_single_row(cursor.rowcount)

    def count(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM files").fetchone()[0]

    def iter_paths(self) -> List[str]:
        return [row["path"] for row in self.conn.execute("SELECT path FROM files ORDER BY path")]
