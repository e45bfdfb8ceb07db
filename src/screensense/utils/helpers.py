"""Helper utility functions for ScreenSense."""

from __future__ import annotations

import asyncio
import time
import uuid
from typing import Awaitable, Optional, TypeVar
from urllib.parse import urlparse

from ..core.exceptions import CaptureTimeoutError
from ..core.logger import log

T = TypeVar('T')


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def generate_id(prefix: str) -> str:
    """Return a unique identifier such as ``screen_1718000000000_3fa2b1c4``.

    Args:
        prefix: Entity kind used as the id prefix.

    Returns:
        Identifier string.
    """
    return f"{prefix}_{now_ms()}_{uuid.uuid4().hex[:8]}"


async def with_timeout(awaitable: Awaitable[T], timeout: Optional[float], stage: str) -> T:
    """Await *awaitable*, raising :class:`CaptureTimeoutError` after *timeout* seconds.

    Args:
        awaitable: Coroutine or future to await.
        timeout: Timeout in seconds, ``None`` waits indefinitely.
        stage: Name of the suspended stage, used in the error message.

    Returns:
        Result of the awaitable.

    Raises:
        CaptureTimeoutError: If the timeout elapses first.
    """
    if timeout is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as exc:
        log.warning(f"Stage '{stage}' timed out after {timeout} seconds")
        raise CaptureTimeoutError(
            f"{stage} timed out after {timeout}s", details={"stage": stage, "timeout": timeout}
        ) from exc


def format_bytes(bytes_value: float) -> str:
    """Format bytes to a human-readable string.

    Args:
        bytes_value: Number of bytes.

    Returns:
        Formatted bytes string.
    """
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_value < 1024.0:
            return f"{bytes_value:.1f}{unit}"
        bytes_value /= 1024.0
    return f"{bytes_value:.1f}PB"


def url_domain(url: Optional[str]) -> Optional[str]:
    """Host part of *url*, or ``None`` when it has none."""
    if not url:
        return None
    parsed = urlparse(url if "://" in url else f"//{url}")
    return parsed.hostname or None

