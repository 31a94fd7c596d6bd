"""
Update command: re-hash new or changed files and refresh their catalog rows.
"""

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

from catalog import Catalog
from classify import Decision, FileMetadata, classify_metadata, read_metadata
from common import (
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


@dataclass
class PendingUpdate:
    """A file whose stored record has been looked up and classified."""
    candidate: Candidate
    metadata: FileMetadata
    record: Optional[FileRecord]
    decision: Decision

    @property
    def needs_hash(self) -> bool:
        return self.decision in (Decision.NEW, Decision.CHANGED)


def _prepare(candidate: Candidate, catalog: Catalog) -> Union[PendingUpdate, FileResult]:
    try:
        metadata = read_metadata(candidate.path)
        record = catalog.lookup(candidate.rel_path)
    except (FileAccessError, IntegrityViolation) as exc:
        return failure_result(candidate.rel_path, exc)
    decision = classify_metadata(metadata, record, Mode.UPDATE)
    if decision == Decision.CHANGED:
        logging.info(f"File '{candidate.rel_path}' has changed")
    elif decision == Decision.NEW:
        logging.info(f"File '{candidate.rel_path}' is new")
    return PendingUpdate(candidate, metadata, record, decision)


def _apply(catalog: Catalog, pending: PendingUpdate, digest: DigestResult) -> FileResult:
    """Write the recomputed fingerprint for a new or changed file."""
    rel_path = pending.candidate.rel_path
    if digest.error:
        return failure_result(rel_path, digest.error)
    record = FileRecord(
        path=rel_path,
        size=pending.metadata.size,
        created=pending.metadata.created,
        modified=pending.metadata.modified,
        hash=digest.hash,
        hash_of_hash=digest.hash_of_hash,
    )
    try:
        if pending.decision == Decision.CHANGED:
            catalog.update(record)
        else:
            catalog.insert(record)
    except IntegrityViolation as exc:
        return failure_result(rel_path, exc)

    details: Dict[str, object] = {"hash": digest.hash.hex()}
    if pending.record is not None:
        details["previous_hash"] = pending.record.hash.hex()
    return FileResult(
        rel_path=rel_path,
        outcome=pending.decision.value,
        size=pending.metadata.size,
        details=details,
    )


def update_catalog(
    root: Path,
    db_path: Path,
    config: Optional[ScanConfig] = None,
) -> Dict[str, object]:
    """Bring an existing catalog up to date with the files under root.

    Unchanged files (same size, created and modified seconds) are skipped
    without hashing. New files are inserted and changed files overwritten.
    All writes and the meta ``last_updated_at`` stamp commit together.
    """
    config = config or ScanConfig()
    root = root.resolve()
    db_path = db_path.resolve()

    validate_root(root)
    if not db_path.is_file():
        raise PreconditionError(f"Database file '{db_path}' does not exist")

    run_started = int(time.time())
    logging.info(f"Updating index ('{db_path}') for path '{root}'")
    candidates = discover_files(root, db_path, config)
    if not candidates:
        raise PreconditionError(f"No files found under '{root}'")

    progress = ProgressStats(len(candidates), config.report_interval)
    results: List[FileResult] = []

    with Catalog.open(db_path) as catalog:
        algorithm = catalog.read_meta().algorithm_id
        fingerprinter = Fingerprinter(algorithm, config.chunk_size)
        with catalog.transaction():
            for batch in batched(candidates, HASH_BATCH_SIZE):
                prepared = [_prepare(c, catalog) for c in batch]
                to_hash = [
                    p.candidate.path for p in prepared
                    if isinstance(p, PendingUpdate) and p.needs_hash
                ]
                digests = iter(fingerprinter.hash_files(to_hash, config.workers))
                for item in prepared:
                    if isinstance(item, FileResult):
                        result = item
                    elif item.needs_hash:
                        result = _apply(catalog, item, next(digests))
                    else:
                        result = FileResult(
                            rel_path=item.candidate.rel_path,
                            outcome=Decision.UNCHANGED.value,
                        )
                    results.append(result)
                    progress.increment(result.size)
                    progress.report(include_throughput=False)
            catalog.touch_last_updated(int(time.time()))
        db_entries = catalog.count()

    run_finished = int(time.time())
    logging.info(f"Finished in {progress.elapsed:.2f}s")

    new_files = paths_with(results, Decision.NEW.value)
    changed_files = paths_with(results, Decision.CHANGED.value)
    unchanged = len(paths_with(results, Decision.UNCHANGED.value))
    errors = failures_of(results)

    log_file_list(new_files, "New files:")
    log_file_list(changed_files, "Changed files:")
    if not new_files and not changed_files:
        logging.info("No changed files")
    log_file_list([e["path"] for e in errors], "Failed to process the following files:")

    stats = {
        "scanned": len(candidates),
        "new": len(new_files),
        "changed": len(changed_files),
        "unchanged": unchanged,
        "errors": len(errors),
        "bytes_hashed": progress.bytes_processed,
        "db_entries": db_entries,
    }
    logging.info(
        f"Update summary: {stats['scanned']} files | new: {stats['new']} | "
        f"changed: {stats['changed']} | unchanged: {unchanged} | "
        f"errors: {stats['errors']} | DB total: {db_entries}"
    )

    updated = [
        {"path": r.rel_path, **r.details}
        for r in results
        if r.error is None and r.outcome == Decision.CHANGED.value
    ]
    return build_report(
        root=root,
        db_path=db_path,
        algorithm=algorithm,
        config=config,
        stats=stats,
        run_started=run_started,
        run_finished=run_finished,
        mode=Mode.UPDATE.value,
        details={
            "new": new_files,
            "changed": changed_files,
            "updated": updated,
            "errors": errors,
            "success": not errors,
        },
    )
