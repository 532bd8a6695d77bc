"""Hashing primitives used for request signing and upload de-duplication.

Every digest goes through :func:`_new_sha256` so that an interpreter without a
SHA-256 implementation fails loudly with :class:`CryptoUnavailable` instead of
silently signing with something weaker.
"""

import asyncio
import hashlib
import hmac
import os
from pathlib import Path

from r2drop.errors import CryptoUnavailable

# Full-body digests above this size are handed to a worker thread.
_THREAD_DIGEST_THRESHOLD = 1024 * 1024

# Defaults for the sampling fingerprint (overridable through UploadPolicy).
FINGERPRINT_THRESHOLD = 50 * 1024 * 1024
FINGERPRINT_CHUNK = 1024 * 1024


def _new_sha256(data: bytes = b""):
    try:
        return hashlib.new("sha256", data)
    except ValueError as e:
        raise CryptoUnavailable() from e


def _to_bytes(data: bytes | bytearray | memoryview | str) -> bytes:
    if isinstance(data, str):
        return data.encode("utf-8")
    return bytes(data)


def sha256_hex(data: bytes | bytearray | memoryview | str) -> str:
    """Return the lowercase hex SHA-256 digest of ``data``.

    Strings are UTF-8 encoded first.
    """
    return _new_sha256(_to_bytes(data)).hexdigest()


async def sha256_hex_async(data: bytes | bytearray | memoryview | str) -> str:
    """Async variant of :func:`sha256_hex`; large bodies hash off the event loop."""
    if len(data) < _THREAD_DIGEST_THRESHOLD:
        return sha256_hex(data)
    return await asyncio.to_thread(sha256_hex, data)


def hmac_sha256(key: bytes, message: str) -> bytes:
    """Return the raw HMAC-SHA256 of a UTF-8 message under ``key``."""
    _new_sha256()
    return hmac.new(key, message.encode("utf-8"), hashlib.sha256).digest()


def hmac_sha256_hex(key: bytes, message: str) -> str:
    """Return the HMAC-SHA256 of a UTF-8 message as lowercase hex."""
    return hmac_sha256(key, message).hex()


# ---------------------------------------------------------------------------
# De-duplication fingerprint
# ---------------------------------------------------------------------------


def _sample_ranges(size: int, chunk: int) -> list[tuple[int, int]]:
    """Return the (offset, length) windows sampled for a large file."""
    ranges = [(0, min(chunk, size))]
    middle = size // 2
    if middle > chunk:
        ranges.append((middle, min(chunk, size - middle)))
    if size > 2 * chunk:
        start = max(0, size - chunk)
        ranges.append((start, size - start))
    return ranges


def file_fingerprint(
    source: bytes | str | os.PathLike,
    name: str,
    threshold: int = FINGERPRINT_THRESHOLD,
    chunk: int = FINGERPRINT_CHUNK,
) -> str:
    """Compute a content fingerprint used to spot duplicate uploads.

    Files at or below ``threshold`` bytes get a full SHA-256. Larger files
    get a sampling digest over ``"{name}-{size}"`` followed by the first,
    middle and last ``chunk`` bytes. The sampling digest is a heuristic:
    distinct large files can collide, and it is never used for signing.

    Args:
        source: The file contents, or a path to the file.
        name: The file name mixed into the sampling digest.
        threshold: Size above which sampling is used.
        chunk: Size of each sampled window.

    Returns:
        64-character lowercase hex string.
    """
    if isinstance(source, (bytes, bytearray, memoryview)):
        data = bytes(source)
        size = len(data)
        if size <= threshold:
            return sha256_hex(data)
        digest = _new_sha256(f"{name}-{size}".encode("utf-8"))
        for offset, length in _sample_ranges(size, chunk):
            digest.update(data[offset:offset + length])
        return digest.hexdigest()

    path = Path(source)
    size = path.stat().st_size
    digest = _new_sha256()
    with open(path, "rb") as fh:
        if size <= threshold:
            for block in iter(lambda: fh.read(64 * 1024), b""):
                digest.update(block)
            return digest.hexdigest()
        digest.update(f"{name}-{size}".encode("utf-8"))
        for offset, length in _sample_ranges(size, chunk):
            fh.seek(offset)
            digest.update(fh.read(length))
    return digest.hexdigest()


async def file_fingerprint_async(
    source: bytes | str | os.PathLike,
    name: str,
    threshold: int = FINGERPRINT_THRESHOLD,
    chunk: int = FINGERPRINT_CHUNK,
) -> str:
    """Run :func:`file_fingerprint` in a worker thread."""
    return await asyncio.to_thread(file_fingerprint, source, name, threshold, chunk)
