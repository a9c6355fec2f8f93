"""Parallel upload utilities."""
import os
from typing import Iterable, Optional

from ..models import Content, UploadRequest


def get_parallel_count(avg_size: float) -> int:
    """
    Get optimal parallel upload count based on average content size.

    Each upload is buffered in memory before sending, so large payloads
    get less parallelism.
    """
    MB = 1024 * 1024

    if avg_size < 1 * MB:
        return 10  # Small files: high parallelism
    elif avg_size < 10 * MB:
        return 6   # Medium files: moderate parallelism
    else:
        return 3   # Large files: low parallelism


def estimate_size(content: Optional[Content]) -> Optional[int]:
    """Best-effort size of ``content`` without reading it. None if unknown."""
    if content is None:
        return None
    if isinstance(content, (bytes, bytearray, memoryview)):
        return len(content)

    getbuffer = getattr(content, "getbuffer", None)
    if callable(getbuffer):
        try:
            remaining = getbuffer().nbytes - content.tell()
            return max(remaining, 0)
        except (ValueError, OSError):
            return None

    fileno = getattr(content, "fileno", None)
    if callable(fileno):
        try:
            return max(os.fstat(fileno()).st_size - content.tell(), 0)
        except (ValueError, OSError, AttributeError):
            return None

    return None


def parallel_count_for(requests: Iterable[UploadRequest]) -> int:
    """Parallelism for a batch, from the sizes that can be estimated."""
    sizes = [size for size in (estimate_size(r.content) for r in requests) if size is not None]
    if not sizes:
        return get_parallel_count(0)
    return get_parallel_count(sum(sizes) / len(sizes))
