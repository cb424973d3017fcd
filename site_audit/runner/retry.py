# site_audit/runner/retry.py
"""
Retry wrapper around a single auditor: per-attempt timeout, transient-error
retries with a fixed delay, and conversion of every outcome into a JobResult.
"""
from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable

from site_audit.logger import logger
from site_audit.runner.errors import AuditTimeoutError, is_transient_error
from site_audit.runner.models import AuditOutcome, Job, JobResult, JobState, score_to_percent

if TYPE_CHECKING:
    from site_audit.runner.auditor import Auditor

MAX_RETRIES = 3
RETRY_DELAY = 2.0
ATTEMPT_TIMEOUT = 90.0

SleepT = Callable[[float], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_retries: int = MAX_RETRIES
    retry_delay: float = RETRY_DELAY
    attempt_timeout: float = ATTEMPT_TIMEOUT
    #: timeouts are not in the transient set, so they end the job unless enabled
    retry_on_timeout: bool = False

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        if self.retry_delay < 0:
            raise ValueError("retry_delay must be >= 0")
        if self.attempt_timeout <= 0:
            raise ValueError("attempt_timeout must be > 0")

    def should_retry(self, exc: BaseException, message: str) -> bool:
        if isinstance(exc, AuditTimeoutError) and self.retry_on_timeout:
            return True
        return is_transient_error(message)


def build_result(job: Job, outcome: AuditOutcome) -> JobResult:
    """Scale auditor fractions to 0–100 integers and package the outcome."""
    scores = outcome.scores
    return JobResult(
        url=job.url,
        device=job.device,
        performance=score_to_percent(scores.get("performance")),
        accessibility=score_to_percent(scores.get("accessibility")),
        best_practices=score_to_percent(scores.get("best-practices")),
        seo=score_to_percent(scores.get("seo")),
        audits=list(outcome.audits),
        metrics=outcome.metrics,
        raw_json=json.dumps(outcome.raw, ensure_ascii=False, default=str),
        attempts=job.attempt,
    )


async def _attempt(auditor: Auditor, job: Job, timeout: float) -> AuditOutcome:
    try:
        return await asyncio.wait_for(auditor.run(job.url, job.device), timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise AuditTimeoutError(timeout) from exc


async def run_with_retry(
    auditor: Auditor,
    job: Job,
    policy: RetryPolicy = RetryPolicy(),
    *,
    sleep: SleepT = asyncio.sleep,
) -> JobResult:
    """Drive *job* through up to ``policy.max_retries`` attempts.

    Never raises for audit failures: the last error message ends up in
    ``JobResult.error``. Only cancellation propagates.
    """
    while job.attempt < policy.max_retries:
        job.attempt += 1
        job.state = JobState.RUNNING
        logger.debug("Audit %s (%s) attempt %d/%d", job.url, job.device.value, job.attempt, policy.max_retries)
        try:
            outcome = await _attempt(auditor, job, policy.attempt_timeout)
        except asyncio.CancelledError:
            job.state = JobState.FAILED
            job.last_error = "Cancelled"
            raise
        except Exception as exc:
            message = str(exc) or "Unknown error"
            job.last_error = message
            logger.warning("Audit %s failed on attempt %d/%d: %s", job.url, job.attempt, policy.max_retries, message)

            if job.attempt < policy.max_retries and policy.should_retry(exc, message):
                job.state = JobState.PENDING
                logger.info("Retrying %s in %.1f s", job.url, policy.retry_delay)
                await sleep(policy.retry_delay)
                continue
            break

        try:
            result = build_result(job, outcome)
        except (TypeError, ValueError) as exc:
            job.last_error = f"Malformed audit result: {exc}"
            logger.error("Audit %s returned an unusable result: %s", job.url, exc)
            break
        job.state = JobState.SUCCEEDED
        logger.info("Audit %s done: perf=%d a11y=%d bp=%d seo=%d", job.url, result.performance, result.accessibility, result.best_practices, result.seo)
        return result

    job.state = JobState.FAILED
    logger.error("Audit %s gave up after %d attempt(s): %s", job.url, job.attempt, job.last_error)
    return JobResult.failure(job)


__all__ = ["RetryPolicy", "run_with_retry", "build_result", "MAX_RETRIES", "RETRY_DELAY", "ATTEMPT_TIMEOUT"]
