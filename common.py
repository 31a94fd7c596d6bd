"""
Shared code for checksumer build, update and verify: constants, types, errors,
discovery, progress and reporting.
"""

import json
import logging
import os
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, Iterator, List, Optional, Sequence, Set, TypeVar, Union


FORMAT_VERSION = 1
DEFAULT_ALGORITHM = "sha1"
DEFAULT_CHUNK_SIZE = 8 * 1024 * 1024
DEFAULT_WORKERS = 1
DEFAULT_IGNORED_NAMES = frozenset({".DS_Store"})
HASH_BATCH_SIZE = 100
REPORT_INTERVAL_SECONDS = 5.0
SQLITE_SIDECAR_SUFFIXES = ("-wal", "-shm", "-journal")

T = TypeVar("T")


class ChecksumerError(Exception):
    """Base class for catalog reconciliation errors."""


class PreconditionError(ChecksumerError):
    """Run cannot start: bad root, catalog existence mismatch or no files."""


class FileAccessError(ChecksumerError):
    """A candidate file could not be stat'ed, opened or read."""


class DigestLengthMismatch(ChecksumerError):
    """The digest primitive returned an unexpected number of bytes."""


class IntegrityViolation(ChecksumerError):
    """A catalog mutation or lookup touched a number of rows other than one."""


class StoreCommitError(ChecksumerError):
    """The catalog transaction could not be committed."""


class Mode(str, Enum):
    BUILD = "build"
    UPDATE = "update"
    VERIFY = "verify"


@dataclass(frozen=True)
class FileRecord:
    """One catalog row."""
    path: str
    size: int
    created: int
    modified: int
    hash: bytes
    hash_of_hash: bytes


@dataclass(frozen=True)
class CatalogMeta:
    """The singleton metadata row."""
    format_version: int
    algorithm_id: str
    root_path: str
    created_at: int
    last_updated_at: Optional[int] = None


@dataclass
class Candidate:
    """A discovered file, addressed both on disk and in the catalog."""
    path: Path
    rel_path: str


@dataclass
class FileResult:
    """Per-file outcome of a pass: either an outcome value or an error."""
    rel_path: str
    outcome: Optional[str] = None
    error: Optional[str] = None
    size: int = 0
    details: Dict[str, object] = field(default_factory=dict)


@dataclass
class ScanConfig:
    """Options shared by discovery and the three passes."""
    ignored_names: FrozenSet[str] = DEFAULT_IGNORED_NAMES
    exclude_exts: FrozenSet[str] = frozenset()
    workers: int = DEFAULT_WORKERS
    chunk_size: int = DEFAULT_CHUNK_SIZE
    report_interval: float = REPORT_INTERVAL_SECONDS
    report_path: Optional[Path] = None


def setup_logging(log_file: Optional[Path] = None, verbose: bool = False) -> None:
    """Configure logging to file and console."""
    level = logging.DEBUG if verbose else logging.INFO
    handlers = [logging.StreamHandler(sys.stdout)]

    if log_file:
        handlers.append(logging.FileHandler(log_file, mode='w', encoding='utf-8'))

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


def parse_exclude_extensions(exclude_args: List[str]) -> Set[str]:
    """Normalize exclude extensions into a set of lowercase suffixes."""
    extensions: Set[str] = set()
    for item in exclude_args:
        for part in item.split(','):
            ext = part.strip().lower()
            if not ext:
                continue
            if not ext.startswith('.'):
                ext = f".{ext}"
            extensions.add(ext)
    return extensions


def parse_ignored_names(ignore_args: List[str]) -> Set[str]:
    """Split repeatable, comma-separated file names into a set (case preserved)."""
    names: Set[str] = set()
    for item in ignore_args:
        for part in item.split(','):
            name = part.strip()
            if name:
                names.add(name)
    return names


def iter_files(root: Path) -> Iterable[Path]:
    """Iterate through files under root without following symlinks."""
    stack = [root]
    while stack:
        current = stack.pop()
        try:
            with os.scandir(current) as entries:
                for entry in entries:
                    try:
                        if entry.is_dir(follow_symlinks=False):
                            stack.append(Path(entry.path))
                        elif entry.is_file(follow_symlinks=False):
                            yield Path(entry.path)
                    except OSError as exc:
                        logging.warning(f"Skipping entry {entry.path}: {exc}")
        except OSError as exc:
            logging.warning(f"Skipping directory {current}: {exc}")


def relative_key(file_path: Path, root: Path) -> str:
    """Catalog key for a file: path relative to root with forward slashes."""
    return file_path.relative_to(root).as_posix()


def excluded_paths_for(db_path: Path, report_path: Optional[Path] = None) -> Set[str]:
    """Absolute paths discovery must never yield: the catalog and its companions."""
    db_str = str(db_path.resolve())
    excluded = {db_str}
    excluded.update(db_str + suffix for suffix in SQLITE_SIDECAR_SUFFIXES)
    if report_path is not None:
        excluded.add(str(report_path.resolve()))
    return excluded


def is_ignored(name: str, config: ScanConfig) -> bool:
    """True if a file name is excluded by the ignore set or extension filter."""
    if name in config.ignored_names:
        return True
    suffix = os.path.splitext(name)[1].lower()
    return bool(suffix) and suffix in config.exclude_exts


def discover_files(root: Path, db_path: Path, config: ScanConfig) -> List[Candidate]:
    """Return candidate files under root, sorted by catalog key."""
    excluded = excluded_paths_for(db_path, config.report_path)
    candidates: List[Candidate] = []
    for file_path in iter_files(root):
        if str(file_path) in excluded:
            logging.debug(f"Excluding catalog file {file_path}")
            continue
        if is_ignored(file_path.name, config):
            logging.debug(f"Ignoring {file_path}")
            continue
        candidates.append(Candidate(path=file_path, rel_path=relative_key(file_path, root)))
    candidates.sort(key=lambda c: c.rel_path)

    if candidates:
        logging.info(f"Found {len(candidates)} files")
    else:
        logging.info("No files found")
    return candidates


class ProgressStats:
    """Counts processed files and bytes; logs progress at a fixed interval."""

    def __init__(self, total: int, report_interval: float = REPORT_INTERVAL_SECONDS):
        self.total = total
        self.report_interval = report_interval
        self.processed = 0
        self.bytes_processed = 0
        self._started = time.monotonic()
        self._last_report = self._started

    def increment(self, size: int = 0) -> None:
        self.processed += 1
        self.bytes_processed += size

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self._started

    def throughput_gbps(self) -> float:
        elapsed = self.elapsed
        if elapsed <= 0:
            return 0.0
        return self.bytes_processed / elapsed / 1024 / 1024 / 1024

    def report(self, include_throughput: bool = True) -> None:
        now = time.monotonic()
        if now - self._last_report < self.report_interval:
            return
        percentage = int(self.processed / self.total * 100) if self.total else 100
        line = f"[{percentage}%] Processed {self.processed} of {self.total} files"
        if include_throughput:
            line += f" ({self.throughput_gbps():.1f} GB/s)"
        logging.info(line)
        self._last_report = now


def batched(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of at most size items."""
    for start in range(0, len(items), size):
        yield items[start:start + size]


def failure_result(rel_path: str, error: Union[Exception, str]) -> FileResult:
    """Record a per-file failure and log it as it happens."""
    logging.warning(f"Error processing file '{rel_path}': {error}")
    return FileResult(rel_path=rel_path, error=str(error))


def failures_of(results: Iterable[FileResult]) -> List[Dict[str, object]]:
    return [{"path": r.rel_path, "error": r.error} for r in results if r.error is not None]


def paths_with(results: Iterable[FileResult], outcome: str) -> List[str]:
    return [r.rel_path for r in results if r.error is None and r.outcome == outcome]


def log_file_list(files: List[str], header: str) -> None:
    """Log a header followed by one line per file, if there are any."""
    if not files:
        return
    logging.info(header)
    for name in files:
        logging.info(f"  {name}")


def validate_root(root: Path) -> None:
    if not root.exists():
        raise PreconditionError(f"Path '{root}' does not exist")
    if not root.is_dir():
        raise PreconditionError(f"Path '{root}' is not a directory")


def build_report(
    root: Path,
    db_path: Path,
    algorithm: str,
    config: ScanConfig,
    stats: Dict[str, int],
    run_started: int,
    run_finished: int,
    mode: str,
    details: Optional[Dict[str, object]],
) -> Dict[str, object]:
    """Build JSON-compatible report."""
    report: Dict[str, object] = {
        "run_started": datetime.fromtimestamp(run_started).isoformat(),
        "run_finished": datetime.fromtimestamp(run_finished).isoformat(),
        "duration_seconds": run_finished - run_started,
        "root": str(root),
        "db": str(db_path),
        "hash_algo": algorithm,
        "mode": mode,
        "ignored_names": sorted(config.ignored_names),
        "exclude_exts": sorted(config.exclude_exts),
        "stats": stats,
    }
    if details:
        report.update(details)
    if config.workers > 1:
        report["workers"] = config.workers
    return report


def write_report(report: Dict[str, object], report_path: Path) -> None:
    """Write report to file."""
    report_json = json.dumps(report, indent=2, sort_keys=True)
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(report_json, encoding='utf-8')
    logging.info(f"Report written to {report_path}")
