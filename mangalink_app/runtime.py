"""
================================================================================
MangaLink v1.0 - Background Event Loop
================================================================================
Flask handles requests on worker threads; the mapping engine lives on one
asyncio loop owned by a daemon thread. Routes submit coroutines with
LoopRunner.run() and block for the result. Discovery tasks spawned by the
engine keep running on the loop between requests.

ExpirySweeper flushes expired store entries once at start and then on a
fixed interval.
================================================================================
"""

import asyncio
import logging
import threading
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class LoopRunner:
    """Owns an event loop running forever in a daemon thread."""

    def __init__(self, name: str = "mangalink-loop"):
        self._name = name
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._ready = threading.Event()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            raise RuntimeError("LoopRunner is not started")
        return self._loop

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> "LoopRunner":
        if self.running:
            return self

        def worker():
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
            self._loop = loop
            self._ready.set()
            try:
                loop.run_forever()
            finally:
                loop.close()

        self._ready.clear()
        self._thread = threading.Thread(target=worker, name=self._name, daemon=True)
        self._thread.start()
        self._ready.wait()
        return self

    def run(self, coro: Awaitable, timeout: Optional[float] = 60) -> Any:
        """Run a coroutine on the loop and wait for its result."""
        future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        return future.result(timeout)

    def stop(self, timeout: float = 5) -> None:
        if not self.running:
            return
        self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join(timeout)
        self._thread = None
        self._loop = None


class ExpirySweeper:
    """Periodic flush_expired() on the engine loop."""

    def __init__(self, flush: Callable[[], Any], interval: float):
        self._flush = flush
        self.interval = interval
        self._task: Optional[asyncio.Task] = None
        self.runs = 0

    def sweep(self) -> Any:
        try:
            removed = self._flush()
        except Exception as e:
            logger.error(f"❌ Expiry sweep failed: {e}")
            return None
        self.runs += 1
        return removed

    async def _run(self) -> None:
        while True:
            self.sweep()
            await asyncio.sleep(self.interval)

    def start(self) -> asyncio.Task:
        """Schedule on the running loop. First sweep happens immediately."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="expiry-sweeper")
        return self._task

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
