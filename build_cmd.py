"""
Build command: hash every file under a root into a new catalog.
"""

import logging
import time
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from catalog import Catalog, remove_catalog_files
from classify import FileMetadata, read_metadata
from common import (
    DEFAULT_ALGORITHM,
    HASH_BATCH_SIZE,
    Candidate,
    FileAccessError,
    FileRecord,
    FileResult,
    IntegrityViolation,
    Mode,
    PreconditionError,
    ProgressStats,
    ScanConfig,
    batched,
    build_report,
    discover_files,
    failure_result,
    failures_of,
    log_file_list,
    paths_with,
    validate_root,
)
from fingerprint import DigestResult, Fingerprinter


ADDED = "added"

Prepared = Union[Tuple[Candidate, FileMetadata], FileResult]


def _prepare(candidate: Candidate) -> Prepared:
    try:
        return candidate, read_metadata(candidate.path)
    except FileAccessError as exc:
        return failure_result(candidate.rel_path, exc)


def _insert_file(
    catalog: Catalog,
    candidate: Candidate,
    metadata: FileMetadata,
    digest: DigestResult,
) -> FileResult:
    """Insert one hashed file; per-file problems come back as a failed result."""
    if digest.error:
        return failure_result(candidate.rel_path, digest.error)
    try:
        catalog.insert(FileRecord(
            path=candidate.rel_path,
            size=metadata.size,
            created=metadata.created,
            modified=metadata.modified,
            hash=digest.hash,
            hash_of_hash=digest.hash_of_hash,
        ))
    except IntegrityViolation as exc:
        return failure_result(candidate.rel_path, exc)
    return FileResult(rel_path=candidate.rel_path, outcome=ADDED, size=metadata.size)


def build_catalog(
    root: Path,
    db_path: Path,
    config: Optional[ScanConfig] = None,
    algorithm: str = DEFAULT_ALGORITHM,
) -> Dict[str, object]:
    """Create a catalog for every candidate file under root.

    The catalog must not exist yet. Per-file failures are collected and the
    pass carries on; everything that hashed cleanly is committed in a single
    transaction together with the meta row. The report's ``success`` is False
    when any file failed.
    """
    config = config or ScanConfig()
    root = root.resolve()
    db_path = db_path.resolve()

    if db_path.exists():
        raise PreconditionError(f"Database file '{db_path}' already exists")
    validate_root(root)
    fingerprinter = Fingerprinter(algorithm, config.chunk_size)

    run_started = int(time.time())
    logging.info(f"Building index ('{db_path}') for path '{root}'")
    candidates = discover_files(root, db_path, config)
    if not candidates:
        raise PreconditionError(f"No files found under '{root}'")

    progress = ProgressStats(len(candidates), config.report_interval)
    results: List[FileResult] = []

    catalog = Catalog.create(db_path)
    try:
        with catalog.transaction():
            catalog.initialize(str(root), algorithm, run_started)
            for batch in batched(candidates, HASH_BATCH_SIZE):
                prepared = [_prepare(c) for c in batch]
                ready = [p for p in prepared if not isinstance(p, FileResult)]
                digests = iter(fingerprinter.hash_files([c.path for c, _ in ready], config.workers))
                for item in prepared:
                    if isinstance(item, FileResult):
                        result = item
                    else:
                        candidate, metadata = item
                        result = _insert_file(catalog, candidate, metadata, next(digests))
                    results.append(result)
                    progress.increment(result.size)
                    progress.report()
            db_entries = catalog.count()
    except BaseException:
        catalog.close()
        remove_catalog_files(db_path)
        raise
    catalog.close()

    run_finished = int(time.time())
    logging.info(f"Finished in {progress.elapsed:.2f}s")

    added = paths_with(results, ADDED)
    errors = failures_of(results)
    log_file_list([e["path"] for e in errors], "Failed to process the following files:")

    stats = {
        "scanned": len(candidates),
        "added": len(added),
        "errors": len(errors),
        "bytes_hashed": progress.bytes_processed,
        "db_entries": db_entries,
    }
    logging.info(
        f"Build summary: {stats['scanned']} files | added: {stats['added']} | "
        f"errors: {stats['errors']} | DB total: {db_entries}"
    )
    return build_report(
        root=root,
        db_path=db_path,
        algorithm=algorithm,
        config=config,
        stats=stats,
        run_started=run_started,
        run_finished=run_finished,
        mode=Mode.BUILD.value,
        details={"added": added, "errors": errors, "success": not errors},
    )
