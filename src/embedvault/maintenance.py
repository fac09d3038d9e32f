"""
Periodic store maintenance
==========================

:class:`~embedvault.manager.StoreManager` schedules its cluster rebalance pass
through :func:`startup`. Cycles keep a fixed cadence: the time a pass takes is
subtracted from the next sleep. A failing pass is logged and reported to the
``on_cycle`` hook; only :func:`shutdown` stops the loop.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

# (succeeded, error) after every cycle
CycleHook = Callable[[bool, Optional[BaseException]], None]


async def startup(
    task_fn: Callable[[], Awaitable[object]],
    interval: float,
    *,
    name: str = "maintenance",
    on_cycle: Optional[CycleHook] = None,
) -> asyncio.Task:
    """Run ``task_fn`` every ``interval`` seconds, first one interval from now."""
    if interval <= 0:
        raise ValueError(f"interval must be positive, got {interval}")

    async def _periodic() -> None:
        delay = interval
        while True:
            await asyncio.sleep(delay)
            started = time.monotonic()
            error: Optional[BaseException] = None
            try:
                await task_fn()
            except Exception as exc:
                error = exc
                logger.error("%s cycle failed: %s", name, exc)
            if on_cycle is not None:
                try:
                    on_cycle(error is None, error)
                except Exception as exc:
                    logger.error("%s cycle hook failed: %s", name, exc)
            delay = max(0.0, interval - (time.monotonic() - started))

    return asyncio.create_task(_periodic(), name=name)


async def shutdown(task: asyncio.Task | None) -> None:
    if not task:
        return

    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    logger.info("Stopped %s task", task.get_name())


__all__ = ["startup", "shutdown", "CycleHook"]
