"""Per-session worker running supervisor turns one at a time."""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[None]]


class SupervisorWorker:
    """Runs queued jobs for one session strictly in submission order."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        self._queue: "asyncio.Queue[Job]" = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self._current: Optional[asyncio.Task] = None

    @property
    def busy(self) -> bool:
        """Whether a job is running or waiting."""
        return self._current is not None or not self._queue.empty()

    def submit(self, job: Job) -> None:
        """Queue a job, starting the worker on first use."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())
        self._queue.put_nowait(job)

    def cancel_current(self) -> bool:
        """Cancel the running job and drop queued ones. Returns whether anything was cancelled."""
        dropped = 0
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
            dropped += 1

        cancelled = self._current is not None and not self._current.done()
        if cancelled:
            self._current.cancel()
        if cancelled or dropped:
            logger.info(
                f"[GATEWAY] Supervisor turn interrupted - SessionId: {self.session_id}, "
                f"Dropped: {dropped}"
            )
        return cancelled or dropped > 0

    async def join(self) -> None:
        """Wait until every submitted job has finished."""
        await self._queue.join()

    async def stop(self) -> None:
        """Cancel outstanding work and stop the worker."""
        self.cancel_current()
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            current = asyncio.create_task(job())
            self._current = current
            try:
                await asyncio.wait({current})
            finally:
                if not current.done():
                    current.cancel()
                self._current = None
                self._queue.task_done()

            if current.cancelled():
                continue
            error = current.exception()
            if error is not None:
                logger.error(
                    f"[GATEWAY] Supervisor job failed - SessionId: {self.session_id}, "
                    f"Error: {type(error).__name__}: {str(error)}",
                    exc_info=error,
                )
