import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class JobAlreadyRunning(RuntimeError):
    pass


class JobRunner:
    """Runs each job as a detached asyncio task.

    At most one execution per job id is in flight. ``max_in_flight`` bounds how
    many jobs run at once; ``None`` means no ceiling and jobs start immediately.
    A job cancelled while still queued for a slot never starts; its
    ``on_abandoned`` callback is awaited instead so it can be marked failed.
    """

    def __init__(self, max_in_flight: Optional[int] = None):
        self.max_in_flight = max_in_flight
        self._semaphore = asyncio.Semaphore(max_in_flight) if max_in_flight else None
        self._tasks: Dict[str, asyncio.Task] = {}

    def submit(
        self,
        job_id: str,
        job: Awaitable,
        on_abandoned: Optional[Callable[[], Awaitable]] = None,
    ) -> asyncio.Task:
        if job_id in self._tasks:
            # close the coroutine so it is not reported as never awaited
            job.close()
            raise JobAlreadyRunning(f"Job {job_id} is already running")

        task = asyncio.get_running_loop().create_task(
            self._run(job_id, job, on_abandoned), name=f"job-{job_id}"
        )
        self._tasks[job_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job_id, None))
        logger.info(f"Job {job_id}: submitted ({len(self._tasks)} in flight)")
        return task

    async def _run(self, job_id, job, on_abandoned):
        started = False
        try:
            if self._semaphore is None:
                started = True
                await job
            else:
                async with self._semaphore:
                    started = True
                    await job
        except asyncio.CancelledError:
            logger.warning(f"Job {job_id}: cancelled")
            if not started:
                job.close()
                await self._abandon(job_id, on_abandoned)
            raise
        except Exception:
            logger.exception(f"Job {job_id}: unhandled error escaped the pipeline")

    @staticmethod
    async def _abandon(job_id, on_abandoned):
        if on_abandoned is None:
            return
        try:
            await on_abandoned()
        except Exception:
            logger.exception(f"Job {job_id}: failed to record abandoned job")

    @property
    def in_flight(self):
        return len(self._tasks)

    async def wait_idle(self):
        """Wait until every submitted job has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def shutdown(self):
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            logger.info(f"Cancelling {len(tasks)} running jobs")
            await asyncio.gather(*tasks, return_exceptions=True)
