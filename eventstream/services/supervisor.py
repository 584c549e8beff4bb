"""Restarts the consumption loop after failures."""
import asyncio
from typing import Awaitable, Callable
import structlog
from .consumer import ConsumptionLoop
from ..metrics import Metrics

log = structlog.get_logger()


class ReconnectionSupervisor:
    """
    Keeps a consumption loop alive across broker failures.

    Each cycle builds a fresh ConsumptionLoop from ``loop_factory`` and runs
    it. When the loop fails the supervisor waits ``delay_ms``, disconnects
    the failed loop and starts a new one. There is no restart limit; the
    supervisor only returns once a loop stops cleanly after stop().
    """

    def __init__(
        self,
        loop_factory: Callable[[], ConsumptionLoop],
        delay_ms: int = 5000,
        metrics: Metrics | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ):
        """
        Initialize supervisor.

        Args:
            loop_factory: Builds a new, unstarted loop for each cycle
            delay_ms: Wait between a failure and the restart
            metrics: Optional metrics sink
            sleep: Awaitable sleep (defaults to one that wakes up on stop())
        """
        self._loop_factory = loop_factory
        self.delay_ms = delay_ms
        self._metrics = metrics
        self._sleep = sleep or self._interruptible_sleep
        self._stop_requested = asyncio.Event()
        self._current: ConsumptionLoop | None = None
        self.restarts = 0

    @property
    def current(self) -> ConsumptionLoop | None:
        """The loop of the running cycle, if any."""
        return self._current

    def stop(self):
        """Stop supervising; the current loop drains and run() returns."""
        self._stop_requested.set()
        if self._current is not None:
            self._current.stop()

    async def _interruptible_sleep(self, seconds: float):
        try:
            await asyncio.wait_for(self._stop_requested.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def run(self):
        """Run consumption cycles until stop() is called."""
        while True:
            loop = self._loop_factory()
            self._current = loop
            if self._stop_requested.is_set():
                loop.stop()

            try:
                await loop.run()
                return
            except Exception as e:
                log.error(
                    "supervisor.cycle_failed",
                    error=str(e),
                    error_type=e.__class__.__name__,
                    messages=loop.message_count,
                    exc_info=True,
                )

            if self._stop_requested.is_set():
                await loop.disconnect()
                return

            log.info("supervisor.restart_scheduled", delay_ms=self.delay_ms, restarts=self.restarts)
            await self._sleep(self.delay_ms / 1000)
            await loop.disconnect()

            if self._stop_requested.is_set():
                return
            self.restarts += 1
            if self._metrics:
                self._metrics.record_restart()
            log.info("supervisor.restarting", restarts=self.restarts)
