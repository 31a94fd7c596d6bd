"""
Unit tests for digest computation and length checks.
"""

import hashlib
import io
from pathlib import Path

import pytest

from common import DigestLengthMismatch, FileAccessError, PreconditionError
from fingerprint import Fingerprinter, digests_match


def test_compute_digest_reads_whole_stream():
    fp = Fingerprinter("sha1", chunk_size=4)
    data = b"0123456789abcdef-tail"
    assert fp.compute_digest(io.BytesIO(data)) == hashlib.sha1(data).digest()


def test_empty_file_digest(tmp_path: Path):
    path = tmp_path / "empty.txt"
    path.write_bytes(b"")
    digest, hash_of_hash = Fingerprinter().hash_file(path)
    assert digest.hex().upper() == "DA39A3EE5E6B4B0D3255BFEF95601890AFD80709"
    assert hash_of_hash.hex().upper() == "BE1BDEC0AA74B4DCB079943E70528096CCA985F8"


def test_hash_of_hash_is_digest_of_raw_bytes():
    fp = Fingerprinter("sha256")
    digest = hashlib.sha256(b"content").digest()
    assert fp.compute_hash_of_hash(digest) == hashlib.sha256(digest).digest()


def test_check_length_rejects_wrong_size():
    fp = Fingerprinter("sha1")
    with pytest.raises(DigestLengthMismatch):
        fp.check_length(b"\x00" * 32)


def test_unsupported_algorithm():
    with pytest.raises(PreconditionError):
        Fingerprinter("md4")


def test_digest_file_missing_raises_access_error(tmp_path: Path):
    with pytest.raises(FileAccessError):
        Fingerprinter().digest_file(tmp_path / "missing.bin")


def test_hash_files_keeps_order_and_captures_errors(tmp_path: Path):
    paths = []
    for i in range(6):
        path = tmp_path / f"f{i}.bin"
        path.write_bytes(bytes([i]) * (i + 1))
        paths.append(path)
    paths.insert(3, tmp_path / "missing.bin")

    results = Fingerprinter().hash_files(paths, workers=3)

    assert [r.path for r in results] == paths
    assert results[3].error is not None
    assert results[3].hash is None
    assert results[0].hash == hashlib.sha1(b"\x00").digest()
    assert all(r.error is None for i, r in enumerate(results) if i != 3)


def test_digests_match():
    assert digests_match(b"\x01" * 20, b"\x01" * 20)
    assert not digests_match(b"\x01" * 20, b"\x02" * 20)
    with pytest.raises(DigestLengthMismatch):
        digests_match(b"\x01" * 20, b"\x01" * 19)
