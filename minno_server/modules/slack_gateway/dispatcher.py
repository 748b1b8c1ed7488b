"""
Background dispatch of acknowledged Slack deliveries.

Routes hand work to the dispatcher after validation and return immediately,
keeping inside Slack's three second acknowledgement budget. Workers drain a
bounded queue; a failing job is logged and kept in a failure list that an
operator can inspect and retry. Deliveries still queued or running at
shutdown are recorded there too. Nothing a job raises ever reaches the HTTP
response.
"""

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional
from uuid import uuid4

from minno_server.database import utcnow
from minno_server.utils.logging import get_logger, log_dispatch_event

logger = get_logger("slack.dispatcher")

Job = Callable[[], Awaitable[Any]]

# Error recorded for jobs interrupted or left queued by stop()
SHUTDOWN_ERROR = "shutdown"


@dataclass
class FailedDelivery:
    """A job that did not complete."""

    job_id: str
    description: str
    error: str
    failed_at: datetime
    job: Job = field(repr=False)


class EventDispatcher:
    """Bounded in-process queue with a pool of worker tasks."""

    def __init__(self, max_queue_size: int = 1000, workers: int = 2, max_failures: int = 100):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue_size)
        self._worker_count = max(1, workers)
        self._workers: List[asyncio.Task] = []
        self.failures: Deque[FailedDelivery] = deque(maxlen=max_failures)
        self.processed = 0
        self.dropped = 0

    @property
    def running(self) -> bool:
        return bool(self._workers)

    def start(self) -> None:
        """Start the worker tasks on the running event loop."""
        if self._workers:
            return

        for index in range(self._worker_count):
            self._workers.append(
                asyncio.create_task(self._worker(), name=f"dispatch-worker-{index}")
            )
        logger.info("Dispatcher started", workers=self._worker_count)

    async def stop(self, timeout: float = 0) -> None:
        """
        Stop the workers.

        Waits up to ``timeout`` seconds for the queue to drain, then cancels
        the workers. Jobs interrupted or still queued are recorded as
        failures so they can be retried.
        """
        if self._workers and timeout > 0:
            try:
                await asyncio.wait_for(self.drain(), timeout)
            except asyncio.TimeoutError:
                logger.warning("Dispatch queue not drained before shutdown", timeout=timeout)

        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()

        abandoned = 0
        while not self._queue.empty():
            job_id, description, job = self._queue.get_nowait()
            self._queue.task_done()
            self._record_failure(job_id, description, SHUTDOWN_ERROR, job)
            abandoned += 1

        if abandoned:
            logger.warning("Dispatcher stopped with pending jobs", pending=abandoned)
        logger.info("Dispatcher stopped")

    def submit(self, description: str, job: Job) -> Optional[str]:
        """
        Queue a job for background processing.

        Never raises: a full queue is logged and recorded as a failure.

        Returns:
            str: Job ID, or None if the job was dropped
        """
        job_id = uuid4().hex[:12]

        try:
            self._queue.put_nowait((job_id, description, job))
        except asyncio.QueueFull:
            self.dropped += 1
            self.failures.append(FailedDelivery(job_id, description, "dispatch queue full", utcnow(), job))
            log_dispatch_event(job_id, description, "dropped", queued=self._queue.qsize())
            return None

        logger.debug("Job queued", job_id=job_id, description=description)
        return job_id

    async def drain(self) -> None:
        """Wait until every queued job has finished."""
        await self._queue.join()

    def retry_failures(self) -> int:
        """
        Re-queue every recorded failure.

        Returns:
            int: Number of jobs queued again
        """
        failures = list(self.failures)
        self.failures.clear()

        retried = 0
        for failure in failures:
            if self.submit(failure.description, failure.job) is not None:
                retried += 1

        logger.info("Retried failed deliveries", retried=retried, total=len(failures))
        return retried

    def stats(self) -> Dict[str, int]:
        return {
            "workers": len(self._workers),
            "queued": self._queue.qsize(),
            "processed": self.processed,
            "failed": len(self.failures),
            "dropped": self.dropped,
        }

    async def _worker(self) -> None:
        while True:
            job_id, description, job = await self._queue.get()
            try:
                await self._run(job_id, description, job)
            finally:
                self._queue.task_done()

    async def _run(self, job_id: str, description: str, job: Job) -> None:
        started = time.monotonic()

        try:
            await job()
        except asyncio.CancelledError:
            self._record_failure(job_id, description, SHUTDOWN_ERROR, job, time.monotonic() - started)
            raise
        except Exception as e:
            logger.error(
                "Background delivery failed",
                job_id=job_id,
                description=description,
                error=str(e),
                exc_info=True,
            )
            self._record_failure(job_id, description, str(e), job, time.monotonic() - started)
            return

        self.processed += 1
        log_dispatch_event(job_id, description, "processed", time.monotonic() - started)

    def _record_failure(
        self,
        job_id: str,
        description: str,
        error: str,
        job: Job,
        duration: Optional[float] = None,
    ) -> None:
        self.failures.append(FailedDelivery(job_id, description, error, utcnow(), job))
        log_dispatch_event(job_id, description, "failed", duration, error=error)
