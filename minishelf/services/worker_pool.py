"""Bounded thread pool for Pillow work.

Coroutines take a semaphore slot before handing a synchronous function to
the executor, so at most ``max_concurrent_transcodes`` images are decoded
at once. A caller that cannot get a slot within
``transcode_queue_timeout`` seconds gets a ``TimeoutError``.
"""
from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

    from minishelf.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ImageWorkerPool:
    def __init__(self, settings: Settings) -> None:
        self._timeout = settings.transcode_queue_timeout
        self._semaphore = asyncio.Semaphore(settings.max_concurrent_transcodes)
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent_transcodes,
            thread_name_prefix="image-transcode",
        )

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Run ``func(*args)`` on the pool once a slot is free.

        Raises:
            TimeoutError: If no slot frees up within the queue timeout.
        """
        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=self._timeout)
        except TimeoutError:
            logger.warning("No transcode slot free after %.1fs", self._timeout)
            raise

        try:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._executor, func, *args)
        finally:
            self._semaphore.release()

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)
