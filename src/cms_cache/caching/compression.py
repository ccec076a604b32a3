"""
Gzip codec for oversized cache payloads.

Values are serialized to compact JSON before storage; serialized forms larger
than the configured threshold are gzip-compressed. Compression is CPU bound,
so the async helpers run it in the default executor.
"""

import asyncio
import gzip
import json
import zlib
from dataclasses import dataclass
from typing import Any, Tuple

from .errors import CacheIOError, SerializationError


DEFAULT_COMPRESSION_THRESHOLD = 1024  # bytes


def serialize(value: Any) -> Tuple[str, int]:
    """
    Serialize ``value`` to JSON; returns the text and its UTF-8 byte size.

    Values that JSON would reshape on the way back (tuples, non-string dict
    keys) are rejected so every stored value reads back equal to itself.
    """
    try:
        serialized = json.dumps(value, separators=(',', ':'), ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError, RecursionError) as e:
        raise SerializationError(f"Value is not JSON serializable: {e}") from e

    if json.loads(serialized) != value:
        raise SerializationError("Value does not survive a JSON round-trip")

    return serialized, len(serialized.encode('utf-8'))


def compress(serialized: str) -> bytes:
    """Gzip ``serialized``. Output is deterministic for a given input."""
    try:
        return gzip.compress(serialized.encode('utf-8'), mtime=0)
    except (UnicodeEncodeError, zlib.error) as e:
        raise CacheIOError(f"Compression failed: {e}") from e


def decompress(data: bytes) -> Any:
    """Gunzip ``data`` and parse the JSON it holds."""
    try:
        return json.loads(gzip.decompress(data).decode('utf-8'))
    except (OSError, EOFError, zlib.error, UnicodeDecodeError, ValueError, TypeError) as e:
        raise CacheIOError(f"Decompression failed: {e}") from e


async def compress_async(serialized: str) -> bytes:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, compress, serialized)


async def decompress_async(data: bytes) -> Any:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, decompress, data)


@dataclass
class CompressionPolicy:
    """Decides whether a serialized value is worth compressing."""
    enabled: bool = True
    threshold: int = DEFAULT_COMPRESSION_THRESHOLD

    def should_compress(self, size_bytes: int) -> bool:
        return self.enabled and size_bytes > self.threshold
