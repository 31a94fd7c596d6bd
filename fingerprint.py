"""
Fingerprint engine: content digests and hash-of-hash over stored digests.
"""

import hashlib
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, List, Optional, Sequence, Tuple

from common import (
    DEFAULT_ALGORITHM,
    DEFAULT_CHUNK_SIZE,
    DigestLengthMismatch,
    FileAccessError,
    PreconditionError,
)


# Expected digest length in bytes per supported algorithm.
DIGEST_SIZES = {
    "sha1": 20,
    "sha256": 32,
    "sha512": 64,
    "blake2b": 64,
}


@dataclass
class DigestResult:
    """Result of hashing one file (for use in thread pool)."""
    path: Path
    hash: Optional[bytes] = None
    hash_of_hash: Optional[bytes] = None
    error: Optional[str] = None


class Fingerprinter:
    """Computes fixed-length digests with one configured algorithm."""

    def __init__(self, algorithm: str = DEFAULT_ALGORITHM, chunk_size: int = DEFAULT_CHUNK_SIZE):
        if algorithm not in DIGEST_SIZES:
            raise PreconditionError(f"Unsupported hash algorithm: {algorithm}")
        self.algorithm = algorithm
        self.digest_size = DIGEST_SIZES[algorithm]
        self.chunk_size = chunk_size

    def _new(self):
        return hashlib.new(self.algorithm)

    def check_length(self, digest: bytes) -> bytes:
        if len(digest) != self.digest_size:
            raise DigestLengthMismatch(
                f"Error calculating hash: invalid hash length of {len(digest)} bytes"
            )
        return digest

    def compute_digest(self, stream: BinaryIO) -> bytes:
        """Digest a binary stream read to EOF."""
        hasher = self._new()
        for chunk in iter(lambda: stream.read(self.chunk_size), b''):
            hasher.update(chunk)
        return self.check_length(hasher.digest())

    def compute_hash_of_hash(self, digest: bytes) -> bytes:
        hasher = self._new()
        hasher.update(digest)
        return self.check_length(hasher.digest())

    def digest_file(self, file_path: Path) -> bytes:
        """Digest a file's full content; I/O problems become FileAccessError."""
        try:
            with file_path.open('rb') as handle:
                return self.compute_digest(handle)
        except OSError as exc:
            raise FileAccessError(f"Cannot read '{file_path}': {exc}") from exc

    def hash_file(self, file_path: Path) -> Tuple[bytes, bytes]:
        """Return (hash, hash_of_hash) for a file."""
        digest = self.digest_file(file_path)
        return digest, self.compute_hash_of_hash(digest)

    def hash_task(self, file_path: Path) -> DigestResult:
        """Hash a file, capturing failures in the result instead of raising."""
        try:
            digest, hash_of_hash = self.hash_file(file_path)
        except (FileAccessError, DigestLengthMismatch) as exc:
            return DigestResult(path=file_path, error=str(exc))
        return DigestResult(path=file_path, hash=digest, hash_of_hash=hash_of_hash)

    def hash_files(self, paths: Sequence[Path], workers: int = 1) -> List[DigestResult]:
        """Hash many files, optionally on a thread pool; results keep input order."""
        if workers <= 1 or len(paths) <= 1:
            return [self.hash_task(p) for p in paths]
        logging.debug(f"Hashing {len(paths)} files on {workers} threads")
        with ThreadPoolExecutor(max_workers=workers) as executor:
            return list(executor.map(self.hash_task, paths))


def digests_match(actual: bytes, expected: bytes) -> bool:
    """Compare two digests of the same algorithm."""
    if len(actual) != len(expected):
        raise DigestLengthMismatch(
            f"Invalid hash length: expected {len(expected)}, got {len(actual)}"
        )
    return actual == expected
