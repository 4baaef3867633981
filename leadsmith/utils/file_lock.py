"""
Cross-process file locks
========================

Cooperative mutual exclusion over a named resource (usually a JSON document
in the data directory) for several processes sharing the same storage.

A lock is a marker file ``<resource>.lock`` holding ``{"pid", "timestamp"}``
(timestamp in epoch milliseconds). Markers older than LOCK_STALE_SECONDS
belong to a process that died without releasing and may be removed by the
next acquirer. Creation is exclusive, so two acquirers racing on a free
resource cannot both win.

Usage:
    with locked(path):
        ...read-modify-write path...

    await with_lock_async(path, save)
"""

import asyncio
import inspect
import json
import logging
import os
import time
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

from leadsmith.errors import LockTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")
PathLike = Union[str, Path]

LOCK_SUFFIX = ".lock"
LOCK_STALE_SECONDS = 30.0
CHECK_INTERVAL_SECONDS = 0.1
DEFAULT_TIMEOUT_SECONDS = 30.0


@dataclass
class LockHandle:
    resource: str
    marker: str
    pid: int
    timestamp: int


def lock_path(resource: PathLike) -> str:
    return f"{resource}{LOCK_SUFFIX}"


def _now_ms() -> int:
    return int(time.time() * 1000)


def _marker_age_ms(marker: str) -> Optional[float]:
    """
    Age of an existing marker in ms.

    Returns None if the marker is gone, ``inf`` if it is unreadable/corrupt.
    """
    try:
        with open(marker, "r", encoding="utf-8") as f:
            info = json.load(f)
        return _now_ms() - int(info["timestamp"])
    except FileNotFoundError:
        return None
    except (ValueError, KeyError, TypeError, OSError):
        return float("inf")


def is_locked(resource: PathLike, stale_after: float = LOCK_STALE_SECONDS) -> bool:
    """True if a live (non-stale) marker exists for ``resource``."""
    age = _marker_age_ms(lock_path(resource))
    return age is not None and age <= stale_after * 1000


def acquire(resource: PathLike, stale_after: float = LOCK_STALE_SECONDS) -> Optional[LockHandle]:
    """
    Try once to acquire the lock for ``resource``.

    A marker older than ``stale_after`` seconds (or corrupt) is removed first.

    Args:
        resource: Path of the guarded resource
        stale_after: Staleness threshold in seconds

    Returns:
        LockHandle on success, None if another live holder has it
    """
    marker = lock_path(resource)

    age = _marker_age_ms(marker)
    if age is not None:
        if age <= stale_after * 1000:
            return None
        logger.warning(f"Removing stale lock {marker} (age {age}ms)")
        try:
            os.unlink(marker)
        except FileNotFoundError:
            pass

    Path(marker).parent.mkdir(parents=True, exist_ok=True)
    handle = LockHandle(
        resource=str(resource), marker=marker, pid=os.getpid(), timestamp=_now_ms()
    )
    try:
        fd = os.open(marker, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
    except FileExistsError:
        return None

    with os.fdopen(fd, "w", encoding="utf-8") as f:
        json.dump({"pid": handle.pid, "timestamp": handle.timestamp}, f)
    return handle


def release(handle: Optional[LockHandle]) -> None:
    """
    Release a lock. A marker that is already gone, or that now belongs to
    another holder (ours was judged stale and replaced), is left alone.
    """
    if handle is None:
        return
    try:
        with open(handle.marker, "r", encoding="utf-8") as f:
            info = json.load(f)
    except FileNotFoundError:
        return
    except (ValueError, OSError):
        info = None

    if info and (info.get("pid") != handle.pid or info.get("timestamp") != handle.timestamp):
        logger.warning(f"Lock {handle.marker} was taken over by pid {info.get('pid')}, not removing")
        return

    try:
        os.unlink(handle.marker)
    except FileNotFoundError:
        pass


def wait_for_lock(
    resource: PathLike,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    stale_after: float = LOCK_STALE_SECONDS,
) -> bool:
    """Block until ``resource`` is free (or its marker stale). False on timeout."""
    deadline = time.monotonic() + timeout
    while is_locked(resource, stale_after):
        if time.monotonic() >= deadline:
            return False
        time.sleep(CHECK_INTERVAL_SECONDS)
    return True


# ============================================================================
# Scoped acquisition
# ============================================================================


@contextmanager
def locked(
    resource: PathLike,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    stale_after: float = LOCK_STALE_SECONDS,
):
    """
    Hold the lock for ``resource`` for the duration of the block.

    Raises:
        LockTimeout: If the lock could not be acquired within ``timeout`` seconds
    """
    deadline = time.monotonic() + timeout
    while True:
        handle = acquire(resource, stale_after)
        if handle is not None:
            break
        if time.monotonic() >= deadline:
            raise LockTimeout(f"Could not acquire lock for {resource} within {timeout}s")
        time.sleep(CHECK_INTERVAL_SECONDS)

    try:
        yield handle
    finally:
        release(handle)


def with_lock(
    resource: PathLike,
    fn: Callable[[], T],
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> T:
    """Run ``fn`` while holding the lock for ``resource``; always releases."""
    with locked(resource, timeout):
        return fn()


@asynccontextmanager
async def locked_async(
    resource: PathLike,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    stale_after: float = LOCK_STALE_SECONDS,
):
    """Async variant of ``locked`` (polls with asyncio.sleep)."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        handle = acquire(resource, stale_after)
        if handle is not None:
            break
        if loop.time() >= deadline:
            raise LockTimeout(f"Could not acquire lock for {resource} within {timeout}s")
        await asyncio.sleep(CHECK_INTERVAL_SECONDS)

    try:
        yield handle
    finally:
        release(handle)


async def with_lock_async(
    resource: PathLike,
    fn: Callable[[], Union[T, Awaitable[T]]],
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> Any:
    """Run ``fn`` (sync or async) while holding the lock for ``resource``."""
    async with locked_async(resource, timeout):
        result = fn()
        if inspect.isawaitable(result):
            result = await result
        return result
