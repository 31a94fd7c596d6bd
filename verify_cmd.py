"""
Verify command: re-hash files and compare to stored hashes.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Dict, List, Optional, Set, Union

from catalog import Catalog
from classify import Decision, FileMetadata, classify_metadata, read_metadata
from common import (
    HASH_BATCH_SIZE,
    Candidate,
    DigestLengthMismatch,
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
    excluded_paths_for,
    failure_result,
    failures_of,
    is_ignored,
    log_file_list,
    paths_with,
    validate_root,
)
from fingerprint import DigestResult, Fingerprinter, digests_match


class VerifyOutcome(str, Enum):
    OK = "ok"
    FAILED = "failed"
    HASH_VERIFICATION_FAILED = "hash_verification_failed"
    FILE_CHANGED = "file_changed"
    NOT_FOUND = "not_found"


@dataclass
class PendingVerify:
    """A file whose metadata matches the catalog and whose content must be hashed."""
    candidate: Candidate
    metadata: FileMetadata
    record: FileRecord
    stored_hash_ok: bool


def _prepare(
    candidate: Candidate,
    catalog: Catalog,
    fingerprinter: Fingerprinter,
) -> Union[PendingVerify, FileResult]:
    rel_path = candidate.rel_path
    try:
        metadata = read_metadata(candidate.path)
        record = catalog.lookup(rel_path)
        decision = classify_metadata(metadata, record, Mode.VERIFY)
        if decision == Decision.NOT_FOUND:
            logging.info(f"File '{rel_path}' not found in the index")
            return FileResult(rel_path=rel_path, outcome=VerifyOutcome.NOT_FOUND.value)
        if decision == Decision.CHANGED:
            logging.info(f"File '{rel_path}' has changed")
            return FileResult(rel_path=rel_path, outcome=VerifyOutcome.FILE_CHANGED.value)

        fingerprinter.check_length(record.hash)
        stored_hash_ok = digests_match(
            fingerprinter.compute_hash_of_hash(record.hash),
            record.hash_of_hash,
        )
    except (FileAccessError, IntegrityViolation, DigestLengthMismatch) as exc:
        return failure_result(rel_path, exc)

    if not stored_hash_ok:
        logging.warning(f"Stored hash of file '{rel_path}' failed verification")
    return PendingVerify(candidate, metadata, record, stored_hash_ok)


def _content_unreadable(pending: PendingVerify, error: Union[Exception, str]) -> FileResult:
    rel_path = pending.candidate.rel_path
    if pending.stored_hash_ok:
        return failure_result(rel_path, error)
    # The stored hash is already known to be corrupt; keep that outcome.
    logging.warning(f"Error processing file '{rel_path}': {error}")
    return FileResult(
        rel_path=rel_path,
        outcome=VerifyOutcome.HASH_VERIFICATION_FAILED.value,
        size=pending.metadata.size,
        details={"content_error": str(error)},
    )


def _compare(pending: PendingVerify, digest: DigestResult) -> FileResult:
    """Compare the live content digest against the stored hash."""
    rel_path = pending.candidate.rel_path
    if digest.error:
        return _content_unreadable(pending, digest.error)
    try:
        content_ok = digests_match(digest.hash, pending.record.hash)
    except DigestLengthMismatch as exc:
        return _content_unreadable(pending, exc)

    details: Dict[str, object] = {}
    if not content_ok:
        details = {
            "expected_hash": pending.record.hash.hex(),
            "actual_hash": digest.hash.hex(),
        }

    # A corrupt catalog entry wins over the content result; it is kept as detail only.
    if not pending.stored_hash_ok:
        details["content_matches"] = content_ok
        outcome = VerifyOutcome.HASH_VERIFICATION_FAILED
    elif not content_ok:
        logging.warning(f"File '{rel_path}' failed verification")
        outcome = VerifyOutcome.FAILED
    else:
        outcome = VerifyOutcome.OK
    return FileResult(
        rel_path=rel_path,
        outcome=outcome.value,
        size=pending.metadata.size,
        details=details,
    )


def _find_missing(
    catalog: Catalog,
    root: Path,
    seen: Set[str],
    excluded: Set[str],
    config: ScanConfig,
) -> List[str]:
    """Catalog paths that discovery did not yield and that are not filtered out."""
    missing: List[str] = []
    for path in catalog.iter_paths():
        if path in seen:
            continue
        if is_ignored(PurePosixPath(path).name, config):
            continue
        if str(root / path) in excluded:
            continue
        logging.info(f"File '{path}' is in the index but missing on disk")
        missing.append(path)
    return missing


def verify_catalog(
    root: Path,
    db_path: Path,
    config: Optional[ScanConfig] = None,
    report_missing: bool = False,
) -> Dict[str, object]:
    """Verify files under root against the catalog without modifying it.

    Each file ends in exactly one bucket: ok, failed (content differs while
    metadata matches), hash_verification_failed (stored hash is corrupt),
    file_changed (metadata differs, not hashed), not_found (no record), or
    errors. With report_missing, catalog rows whose file was not discovered
    are listed under missing.
    """
    config = config or ScanConfig()
    root = root.resolve()
    db_path = db_path.resolve()

    validate_root(root)
    if not db_path.is_file():
        raise PreconditionError(f"Database file '{db_path}' does not exist")

    run_started = int(time.time())
    logging.info(f"Verifying index ('{db_path}') for path '{root}'")
    candidates = discover_files(root, db_path, config)
    if not candidates:
        raise PreconditionError(f"No files found under '{root}'")

    progress = ProgressStats(len(candidates), config.report_interval)
    results: List[FileResult] = []
    missing: List[str] = []

    with Catalog.open(db_path, readonly=True) as catalog:
        meta = catalog.read_meta()
        fingerprinter = Fingerprinter(meta.algorithm_id, config.chunk_size)
        with catalog.transaction():
            db_entries = catalog.count()
            for batch in batched(candidates, HASH_BATCH_SIZE):
                prepared = [_prepare(c, catalog, fingerprinter) for c in batch]
                to_hash = [p.candidate.path for p in prepared if isinstance(p, PendingVerify)]
                digests = iter(fingerprinter.hash_files(to_hash, config.workers))
                for item in prepared:
                    if isinstance(item, PendingVerify):
                        result = _compare(item, next(digests))
                    else:
                        result = item
                    results.append(result)
                    progress.increment(result.size)
                    progress.report()
            if report_missing:
                missing = _find_missing(
                    catalog,
                    root,
                    {c.rel_path for c in candidates},
                    excluded_paths_for(db_path, config.report_path),
                    config,
                )

    run_finished = int(time.time())
    logging.info(f"Finished in {progress.elapsed:.2f}s")

    ok = paths_with(results, VerifyOutcome.OK.value)
    failed = paths_with(results, VerifyOutcome.FAILED.value)
    hash_failed = paths_with(results, VerifyOutcome.HASH_VERIFICATION_FAILED.value)
    changed = paths_with(results, VerifyOutcome.FILE_CHANGED.value)
    not_found = paths_with(results, VerifyOutcome.NOT_FOUND.value)
    errors = failures_of(results)

    log_file_list(changed, "Changed files:")
    log_file_list(not_found, "Files not found in the index:")
    log_file_list(missing, "Files in the index but missing on disk:")
    log_file_list(failed, "Verification failed for the following files:")
    log_file_list(hash_failed, "Verification failed for hash of the following files:")
    log_file_list([e["path"] for e in errors], "Failed to process the following files:")

    stats = {
        "scanned": len(candidates),
        "ok": len(ok),
        "failed": len(failed),
        "hash_verification_failed": len(hash_failed),
        "file_changed": len(changed),
        "not_found": len(not_found),
        "missing": len(missing),
        "errors": len(errors),
        "bytes_hashed": progress.bytes_processed,
        "db_entries": db_entries,
    }
    logging.info(
        f"Completed: scanned={stats['scanned']}, ok={stats['ok']}, failed={stats['failed']}, "
        f"hash_verification_failed={stats['hash_verification_failed']}, "
        f"file_changed={stats['file_changed']}, not_found={stats['not_found']}, "
        f"missing={stats['missing']}, errors={stats['errors']}"
    )

    mismatched = [
        {"path": r.rel_path, **r.details}
        for r in results
        if r.error is None and r.outcome in (
            VerifyOutcome.FAILED.value,
            VerifyOutcome.HASH_VERIFICATION_FAILED.value,
        )
    ]
    success = not (failed or hash_failed or changed or not_found or missing or errors)
    details: Dict[str, object] = {
        "failed": failed,
        "hash_verification_failed": hash_failed,
        "file_changed": changed,
        "not_found": not_found,
        "mismatched": mismatched,
        "errors": errors,
        "success": success,
    }
    if report_missing:
        details["missing"] = missing
    return build_report(
        root=root,
        db_path=db_path,
        algorithm=meta.algorithm_id,
        config=config,
        stats=stats,
        run_started=run_started,
        run_finished=run_finished,
        mode=Mode.VERIFY.value,
        details=details,
    )
