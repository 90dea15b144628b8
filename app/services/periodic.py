import asyncio
import logging

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Owns one asyncio task that calls tick() every `interval` seconds.

    start() is a no-op while already running and stop() cancels and awaits the
    task, so repeated start/stop cycles never leave a loop behind.
    """

    name = "periodic-task"

    def __init__(self, interval: float):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.interval = interval
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> None:
        raise NotImplementedError

    async def on_start(self) -> None:
        """Runs once inside the task before the first interval elapses."""

    def start(self) -> bool:
        """Start the loop. Returns False if it was already running."""
        if self.running:
            return False
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)
        return True

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        await self.on_start()
        while True:
            await asyncio.sleep(self.interval)
            await self.tick()

    async def __aenter__(self):
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()
