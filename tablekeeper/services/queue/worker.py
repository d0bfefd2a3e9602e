"""Worker pool draining the calculation queue.

Workers are asyncio tasks on the application's event loop. Each one claims a
job, runs the orchestrator under the job timeout and reports the outcome
back with its claim token. A separate maintenance task reaps stuck jobs and
trims the job history.
"""

import asyncio
import contextlib
from typing import Any, Protocol

import structlog

from tablekeeper.errors import TransientError
from tablekeeper.services.queue.jobs import CalculationJob
from tablekeeper.services.queue.manager import CalculationQueue

logger = structlog.get_logger(__name__)


class JobRunner(Protocol):
    """Anything that can execute a claimed job (the orchestrator)."""

    async def run(self, job: CalculationJob) -> Any:
        ...


class WorkerPool:
    """Fixed-size pool of queue workers."""

    def __init__(
        self,
        queue: CalculationQueue,
        orchestrator: JobRunner,
        size: int = 3,
        job_timeout: float = 30.0,
        poll_interval: float = 0.5,
        maintenance_interval: float = 5.0,
    ):
        if size < 1:
            raise ValueError("Worker pool size must be at least 1")
        self.queue = queue
        self.orchestrator = orchestrator
        self.size = size
        self.job_timeout = job_timeout
        self.poll_interval = poll_interval
        self.maintenance_interval = maintenance_interval

        self._workers: list[asyncio.Task] = []
        self._maintenance: asyncio.Task | None = None
        self._stopping: asyncio.Event | None = None

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._workers)

    def start(self) -> None:
        """Spawn the workers and the maintenance task on the running loop."""
        if self.running:
            return
        self._stopping = asyncio.Event()
        self._workers = [
            asyncio.create_task(self._work(f"worker-{i + 1}"), name=f"calculation-worker-{i + 1}")
            for i in range(self.size)
        ]
        self._maintenance = asyncio.create_task(
            self._maintain(), name="calculation-maintenance"
        )
        logger.info("worker_pool_started", workers=self.size, job_timeout=self.job_timeout)

    async def stop(self, timeout: float | None = None) -> None:
        """
        Stop the pool.

        Workers finish their current job unless ``timeout`` seconds pass
        first, after which they are cancelled and their jobs handed back to
        the queue for retry.
        """
        if self._stopping is None:
            return
        self._stopping.set()

        if self._maintenance is not None:
            self._maintenance.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._maintenance

        if self._workers:
            _, pending = await asyncio.wait(self._workers, timeout=timeout)
            for task in pending:
                task.cancel()
            await asyncio.gather(*self._workers, return_exceptions=True)

        self._workers = []
        self._maintenance = None
        self._stopping = None
        logger.info("worker_pool_stopped")

    async def run_once(self, worker: str = "manual") -> bool:
        """
        Claim and process at most one job.

        Returns:
            True if a job was processed
        """
        job = self.queue.dequeue()
        if job is None:
            return False
        await self._process(job, worker)
        return True

    async def drain(self, max_jobs: int | None = None) -> int:
        """Process eligible jobs until none is left. Returns the count."""
        processed = 0
        while max_jobs is None or processed < max_jobs:
            if not await self.run_once():
                break
            processed += 1
        return processed

    def maintain(self) -> dict[str, Any]:
        """One maintenance pass: reap stuck jobs, trim history."""
        reaped = self.queue.reap_stuck_jobs()
        pruned = self.queue.prune_history()
        return {"reaped": reaped, "pruned": pruned}

    async def _process(self, job: CalculationJob, worker: str) -> None:
        log = logger.bind(
            job_id=job.id,
            league_id=job.league_id,
            season_id=job.season_id,
            worker=worker,
        )
        try:
            result = await asyncio.wait_for(self.orchestrator.run(job), timeout=self.job_timeout)
        except asyncio.CancelledError:
            self.queue.fail(
                job.id,
                TransientError("Worker stopped during calculation"),
                claim_token=job.claim_token,
            )
            raise
        except asyncio.TimeoutError:
            log.warning("calculation_job_timeout", job_timeout=self.job_timeout)
            self.queue.fail(
                job.id,
                TransientError(f"Calculation timed out after {self.job_timeout}s"),
                claim_token=job.claim_token,
            )
            return
        except Exception as e:
            log.warning("calculation_job_error", error=str(e), error_type=type(e).__name__)
            self.queue.fail(job.id, e, claim_token=job.claim_token)
            return

        payload = result.to_dict() if hasattr(result, "to_dict") else result
        self.queue.complete(job.id, claim_token=job.claim_token, result=payload)

    async def _work(self, name: str) -> None:
        stopping = self._stopping
        while not stopping.is_set():
            if await self.run_once(worker=name):
                continue
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(stopping.wait(), timeout=self.poll_interval)

    async def _maintain(self) -> None:
        while True:
            await asyncio.sleep(self.maintenance_interval)
            try:
                self.maintain()
            except Exception as e:
                logger.exception("queue_maintenance_failed", error=str(e))
