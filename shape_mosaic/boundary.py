"""Round trips to external collaborators with a timeout and a fallback value.

Decoding, palette sampling and pattern detection all happen outside the
synthesis core. Each call goes through :func:`request`, which never waits
longer than its timeout and never raises: a timeout or a collaborator error
both resolve to the deterministic fallback.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class BoundaryResult(Generic[T]):
    value: T
    timed_out: bool = False
    failed: bool = False

    @property
    def fell_back(self) -> bool:
        return self.timed_out or self.failed


def request(
    func: Callable[..., T],
    *args: object,
    timeout: float,
    fallback: Callable[[], T],
    label: str = "collaborator",
) -> BoundaryResult[T]:
    """Call ``func(*args)`` on a worker thread and wait at most *timeout* s.

    The worker is not cancelled on timeout and its late result is dropped.
    It runs as a daemon thread so it never keeps the process alive.
    """
    outcome: queue.Queue[tuple[bool, object]] = queue.Queue(maxsize=1)

    def work() -> None:
        try:
            outcome.put((True, func(*args)))
        except Exception as exc:
            outcome.put((False, exc))

    worker = threading.Thread(target=work, name=f"mosaic-{label}", daemon=True)
    worker.start()
    try:
        ok, value = outcome.get(timeout=timeout)
    except queue.Empty:
        logger.warning("Timeout waiting for %s after %.1fs, using fallback", label, timeout)
        return BoundaryResult(fallback(), timed_out=True)

    if not ok:
        logger.error("%s failed: %s, using fallback", label, value)
        return BoundaryResult(fallback(), failed=True)

    logger.debug("%s answered", label)
    return BoundaryResult(value)
