"""Bounded execution of blocking classifier calls.

Session runs are synchronous and CPU-bound, so they go to a dedicated thread
pool sized by ``max_concurrent``. An ``asyncio.Semaphore`` of the same size
keeps callers from piling up on the executor queue: a caller that cannot get a
slot within ``SEMAPHORE_TIMEOUT_SECONDS`` gets ``TimeoutError``.
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

    from pneumoscan.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

SEMAPHORE_TIMEOUT_SECONDS: float = 5.0


class InferencePool:
    """Runs classifier sessions off the event loop, at most N at a time."""

    def __init__(self, settings: Settings) -> None:
        self._slots = asyncio.Semaphore(settings.max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent,
            thread_name_prefix="pneumoscan-inference",
        )

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Call ``func(*args)`` on a pool thread once a slot is free.

        Raises:
            TimeoutError: If no slot frees up within the timeout.
        """
        await asyncio.wait_for(self._slots.acquire(), timeout=SEMAPHORE_TIMEOUT_SECONDS)
        try:
            return await asyncio.get_running_loop().run_in_executor(self._executor, func, *args)
        finally:
            self._slots.release()

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)
        logger.debug("Inference pool shut down")
