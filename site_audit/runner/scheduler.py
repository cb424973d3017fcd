# === FILE: site_audit/runner/scheduler.py ===
"""
Bounded-concurrency audit scheduler.

Jobs wait in a FIFO :class:`asyncio.Queue` drained by exactly
``max_concurrency`` worker tasks, so no more than that many audits (and
Chrome instances) ever run at once and jobs start in submission order.
Each job resolves its own future with a :class:`JobResult`; failures are
data, not exceptions.
"""
from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Sequence, Tuple, Union

from site_audit.runner.auditor import Auditor
from site_audit.runner.models import Device, Job, JobResult
from site_audit.runner.retry import RetryPolicy, run_with_retry

__all__ = ("AuditScheduler", "DEFAULT_MAX_CONCURRENCY")

DEFAULT_MAX_CONCURRENCY = 3

_QueueItem = Tuple[Job, "asyncio.Future[JobResult]"]


class AuditScheduler:
    """Пул воркеров с жёстким лимитом параллельных аудитов и повторами через RetryPolicy."""

    def __init__(
        self,
        auditor: Auditor,
        *,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        policy: Optional[RetryPolicy] = None,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self.auditor = auditor
        self.max_concurrency = max_concurrency
        self.policy = policy or RetryPolicy()
        self.logger = logging.getLogger("SiteAudit")
        self._queue: Optional[asyncio.Queue[_QueueItem]] = None
        self._workers: List[asyncio.Task] = []
        self._running = 0
        self._peak_running = 0
        self._closed = False

    @classmethod
    def from_config(cls, auditor: Auditor, config) -> AuditScheduler:
        return cls(auditor, max_concurrency=config.max_concurrency, policy=config.retry_policy())

    async def __aenter__(self) -> AuditScheduler:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------ #
    # Observability                                                      #
    # ------------------------------------------------------------------ #

    @property
    def running(self) -> int:
        return self._running

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    @property
    def peak_running(self) -> int:
        return self._peak_running

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------ #
    # Public API                                                         #
    # ------------------------------------------------------------------ #

    def submit(self, url: str, device: Union[Device, str] = Device.MOBILE) -> asyncio.Future[JobResult]:
        """Enqueue one audit and return a future resolving to its JobResult.

        Never blocks; must be called from inside the running event loop.
        """
        if self._closed:
            raise RuntimeError("Scheduler is closed")
        loop = asyncio.get_running_loop()
        self._ensure_workers()
        future: asyncio.Future[JobResult] = loop.create_future()
        job = Job(url=url, device=Device(device))
        assert self._queue is not None
        self._queue.put_nowait((job, future))
        self.logger.debug("Queued %s (%s), %d pending", url, job.device.value, self._queue.qsize())
        return future

    async def submit_batch(
        self, urls: Sequence[str], device: Union[Device, str] = Device.MOBILE
    ) -> List[JobResult]:
        """Audit all *urls*; results are index-aligned with the input."""
        futures = [self.submit(url, device) for url in urls]
        if not futures:
            return []
        return list(await asyncio.gather(*futures))

    async def join(self) -> None:
        """Wait until every queued job has been processed."""
        if self._queue is not None:
            await self._queue.join()

    async def close(self) -> None:
        """Stop the workers; unresolved futures are cancelled."""
        if self._closed:
            return
        self._closed = True
        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()

        if self._queue is not None:
            while not self._queue.empty():
                job, future = self._queue.get_nowait()
                future.cancel()
                self._queue.task_done()
        self.logger.debug("Scheduler closed (peak concurrency %d)", self._peak_running)

    # ------------------------------------------------------------------ #
    # Internals                                                          #
    # ------------------------------------------------------------------ #

    def _ensure_workers(self) -> None:
        if self._workers:
            return
        self._queue = asyncio.Queue()
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"audit-worker-{i}") for i in range(self.max_concurrency)
        ]

    async def _worker(self, worker_id: int) -> None:
        assert self._queue is not None
        while True:
            job, future = await self._queue.get()
            if future.cancelled():
                self._queue.task_done()
                continue

            self._running += 1
            self._peak_running = max(self._peak_running, self._running)
            self.logger.info("[worker %d] auditing %s (%s), running=%d", worker_id, job.url, job.device.value, self._running)
            try:
                result = await run_with_retry(self.auditor, job, self.policy)
            except asyncio.CancelledError:
                future.cancel()
                raise
            except Exception as exc:  # pragma: no cover - run_with_retry encodes failures
                self.logger.exception("Unexpected error auditing %s", job.url)
                job.last_error = str(exc) or "Unknown error"
                result = JobResult.failure(job)
            finally:
                self._running -= 1
                self._queue.task_done()

            if not future.done():
                future.set_result(result)
