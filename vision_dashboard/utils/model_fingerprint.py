import hashlib
from collections.abc import Iterable
from pathlib import Path

CHUNK_SIZE = 1024 * 1024


def _digest(chunks: Iterable[bytes]) -> str:
    digest = hashlib.sha256()
    for chunk in chunks:
        digest.update(chunk)
    return digest.hexdigest()


def sha256_bytes(content: bytes) -> str:
    return _digest([content])


def sha256_file(path: str | None) -> str | None:
    """Fingerprint of a weights file, or None when it is not on disk."""
    if not path or not Path(path).is_file():
        return None
    with Path(path).open('rb') as fh:
        return _digest(iter(lambda: fh.read(CHUNK_SIZE), b''))
