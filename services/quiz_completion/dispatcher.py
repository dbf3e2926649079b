"""Side-effect dispatcher: a bounded queue drained by a fixed pool of workers.

`dispatch` never blocks and never raises. When the queue is full (or the
dispatcher is not accepting work) the effect is dropped with a warning.
Every effect runs under its own timeout; failures are logged with the
effect's context and counted, never retried and never propagated.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from packages.common.metrics import side_effects, side_effects_dropped

log = logging.getLogger(__name__)

EffectFn = Callable[[], Awaitable[Any]]


@dataclass
class SideEffect:
    name: str
    fn: EffectFn
    context: Dict[str, Any] = field(default_factory=dict)
    timeout: float = 15.0


class SideEffectDispatcher:
    """Fire-and-forget execution with backpressure and shutdown draining."""

    def __init__(self, workers: int = 4, max_queue: int = 1000, default_timeout: float = 15.0) -> None:
        self.workers = max(1, workers)
        self.default_timeout = default_timeout
        self._queue: asyncio.Queue[SideEffect] = asyncio.Queue(maxsize=max_queue)
        self._tasks: List[asyncio.Task] = []
        self._accepting = False

    @property
    def running(self) -> bool:
        return bool(self._tasks) and self._accepting

    def pending(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        """Spawn the worker tasks on the running loop (idempotent)."""
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._worker(i), name=f"side-effect-worker-{i}") for i in range(self.workers)
        ]
        self._accepting = True
        log.info("Side-effect dispatcher started workers=%d", self.workers)

    def dispatch(
        self,
        name: str,
        fn: EffectFn,
        context: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> bool:
        """Queue `fn()` for background execution.

        Returns:
            True if queued; False if dropped.
        """
        effect = SideEffect(
            name=name,
            fn=fn,
            context=dict(context or {}),
            timeout=timeout if timeout is not None else self.default_timeout,
        )
        if not self._accepting:
            log.warning("Dispatcher not running; dropping side effect", extra={"effect": name, **effect.context})
            side_effects_dropped.labels(name).inc()
            return False
        try:
            self._queue.put_nowait(effect)
        except asyncio.QueueFull:
            log.warning("Side-effect queue full; dropping", extra={"effect": name, **effect.context})
            side_effects_dropped.labels(name).inc()
            return False
        return True

    async def join(self) -> None:
        """Wait until every queued effect has finished."""
        await self._queue.join()

    async def stop(self, drain_timeout: float = 10.0) -> None:
        """Stop accepting work, drain the queue for up to `drain_timeout` seconds, then cancel workers."""
        self._accepting = False
        if not self._tasks:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=drain_timeout)
        except asyncio.TimeoutError:
            log.warning("Side-effect drain timed out pending=%d", self._queue.qsize())
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        log.info("Side-effect dispatcher stopped")

    async def _worker(self, idx: int) -> None:
        while True:
            effect = await self._queue.get()
            try:
                await self._run(effect)
            finally:
                self._queue.task_done()

    async def _run(self, effect: SideEffect) -> None:
        extra = {"effect": effect.name, **effect.context}
        t0 = time.perf_counter()
        try:
            await asyncio.wait_for(effect.fn(), timeout=effect.timeout)
        except asyncio.TimeoutError:
            side_effects.labels(effect.name, "timeout").inc()
            log.warning("Side effect timed out after %.1fs", effect.timeout, extra=extra)
        except Exception as e:
            side_effects.labels(effect.name, "error").inc()
            log.exception("Side effect failed: %s", e, extra=extra)
        else:
            side_effects.labels(effect.name, "ok").inc()
            log.debug("Side effect done in %.3fs", time.perf_counter() - t0, extra=extra)
