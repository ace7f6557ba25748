"""Bounded analysis queue with a fixed pool of async workers.

Analyses are queued by start_analysis() and executed by `concurrency`
worker tasks. The queue is bounded: submit() waits when it is full, which
pushes back on callers instead of piling up unbounded background work.

Usage:
    queue = AnalysisQueue(orchestrator, concurrency=2, maxsize=100)
    orchestrator.attach_queue(queue)
    await queue.start()
    ...
    await queue.shutdown()  # drains queued work by default
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING

from mailsense.core.errors import QueueClosedError
from mailsense.core.logging import get_logger

if TYPE_CHECKING:
    from mailsense.engine.orchestrator import AnalysisOrchestrator

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class AnalysisJob:
    message_id: int
    analysis_id: int | None = None
    instructions: str | None = None


class AnalysisQueue:
    """Runs queued analyses on a pool of worker tasks.

    Attributes:
        _orchestrator: Orchestrator whose run_analysis() executes each job
        _concurrency: Number of worker tasks
        _queue: Bounded job queue
        _workers: Running worker tasks
        _closed: Set once shutdown begins; submit() then raises
        _held: Analysis IDs queued or running here, which the reaper must skip
    """

    def __init__(self, orchestrator: AnalysisOrchestrator, concurrency: int = 2, maxsize: int = 100):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._orchestrator = orchestrator
        self._concurrency = concurrency
        self._queue: asyncio.Queue[AnalysisJob] = asyncio.Queue(maxsize=maxsize)
        self._workers: list[asyncio.Task[None]] = []
        self._closed = False
        self._held: set[int] = set()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return bool(self._workers) and not self._closed

    @property
    def held_analysis_ids(self) -> frozenset[int]:
        """Analyses this queue has accepted and not yet finished."""
        return frozenset(self._held)

    async def start(self) -> None:
        if self._workers:
            return
        self._closed = False
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"analysis-worker-{i}")
            for i in range(self._concurrency)
        ]
        logger.info("analysis_queue_started", concurrency=self._concurrency)

    async def submit(
        self,
        message_id: int,
        analysis_id: int | None = None,
        instructions: str | None = None,
    ) -> None:
        """Queue a job, waiting for space when the queue is full.

        Raises:
            QueueClosedError: If the queue is shutting down or was never started
        """
        if self._closed or not self._workers:
            raise QueueClosedError("Analysis queue is not accepting work")
        if analysis_id is not None:
            self._held.add(analysis_id)
        try:
            await self._queue.put(AnalysisJob(message_id, analysis_id, instructions))
        except BaseException:
            self._held.discard(analysis_id)
            raise
        logger.debug("analysis_job_queued", message_id=message_id, pending=self._queue.qsize())

    async def join(self) -> None:
        """Wait until every queued job has finished."""
        await self._queue.join()

    async def shutdown(self, drain: bool = True) -> None:
        """Stop accepting work and stop the workers.

        Args:
            drain: Finish queued jobs first; when False, queued jobs are dropped
                (their placeholders are reaped as stale on a later run)
        """
        self._closed = True
        if drain:
            await self._queue.join()
        else:
            dropped = 0
            while not self._queue.empty():
                job = self._queue.get_nowait()
                self._held.discard(job.analysis_id)
                self._queue.task_done()
                dropped += 1
            if dropped:
                logger.warning("analysis_jobs_dropped", count=dropped)

        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("analysis_queue_stopped", drained=drain)

    async def _worker(self, index: int) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._orchestrator.run_analysis(
                    job.message_id, job.analysis_id, job.instructions
                )
            except Exception as e:
                logger.exception(
                    "analysis_worker_error",
                    worker=index,
                    message_id=job.message_id,
                    analysis_id=job.analysis_id,
                    error=str(e),
                )
            finally:
                self._held.discard(job.analysis_id)
                self._queue.task_done()
