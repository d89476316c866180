from __future__ import annotations

import asyncio
import logging
from typing import Coroutine, Any, Optional

logger = logging.getLogger(__name__)


class RefreshTaskRegistry:
    """Keeps detached refresh tasks alive past the request that spawned them."""

    def __init__(self) -> None:
        self._inflight: set[asyncio.Task] = set()

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: Optional[str] = None) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    def __len__(self) -> int:
        return len(self._inflight)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight refreshes; on timeout, cancel what is left."""
        if not self._inflight:
            return
        pending = list(self._inflight)
        done, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning("Cancelled %d refresh tasks at shutdown", len(still_running))
            await asyncio.gather(*still_running, return_exceptions=True)


__all__ = ["RefreshTaskRegistry"]
