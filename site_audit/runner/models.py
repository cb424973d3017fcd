# site_audit/runner/models.py
"""
Data models for audit jobs and their results.
"""
from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

CATEGORY_IDS = ("performance", "accessibility", "best-practices", "seo")


class Device(str, Enum):
    """Device profile an audit is emulated with."""

    MOBILE = "mobile"
    DESKTOP = "desktop"


class JobState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class AuditSummary:
    """One failing or partially passing Lighthouse audit."""

    id: str
    title: str
    description: str = ""
    score: Optional[float] = None
    numeric_value: Optional[float] = None
    display_value: Optional[str] = None
    category: str = "other"
    details: Any = None


@dataclass(frozen=True, slots=True)
class MetricsSummary:
    """Lab metrics; any of them may be missing from a run."""

    first_contentful_paint: Optional[float] = None
    largest_contentful_paint: Optional[float] = None
    total_blocking_time: Optional[float] = None
    cumulative_layout_shift: Optional[float] = None
    speed_index: Optional[float] = None
    time_to_interactive: Optional[float] = None
    total_request_count: Optional[int] = None
    total_byte_weight: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass(frozen=True, slots=True)
class AuditOutcome:
    """What an auditor returns for one successful attempt.

    ``scores`` holds fractions in ``[0, 1]`` keyed by category id
    (see :data:`CATEGORY_IDS`); ``raw`` is the full result payload.
    """

    scores: Dict[str, Optional[float]]
    audits: List[AuditSummary] = field(default_factory=list)
    metrics: MetricsSummary = field(default_factory=MetricsSummary)
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class Job:
    """A single URL queued for auditing; mutated only while it runs."""

    url: str
    device: Device = Device.MOBILE
    attempt: int = 0
    state: JobState = JobState.PENDING
    last_error: Optional[str] = None


def score_to_percent(fraction: Optional[float]) -> int:
    """Scale a ``0.0–1.0`` category score to an integer ``0–100`` (half rounds up)."""
    if fraction is None:
        return 0
    try:
        value = math.floor(float(fraction) * 100 + 0.5)
    except (TypeError, ValueError, OverflowError):
        return 0
    return max(0, min(100, value))


@dataclass(frozen=True, slots=True)
class JobResult:
    """Terminal outcome of one job. ``error`` is set when every attempt failed."""

    url: str
    device: Device
    performance: int = 0
    accessibility: int = 0
    best_practices: int = 0
    seo: int = 0
    audits: List[AuditSummary] = field(default_factory=list)
    metrics: MetricsSummary = field(default_factory=MetricsSummary)
    raw_json: str = "{}"
    error: Optional[str] = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def scores(self) -> Dict[str, int]:
        return {
            "performance": self.performance,
            "accessibility": self.accessibility,
            "best_practices": self.best_practices,
            "seo": self.seo,
        }

    @classmethod
    def failure(cls, job: Job) -> JobResult:
        return cls(
            url=job.url,
            device=job.device,
            error=job.last_error or "Unknown error",
            attempts=job.attempt,
        )

    def to_dict(self, *, include_raw: bool = False) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "url": self.url,
            "device": self.device.value,
            **self.scores,
            "audits": [asdict(a) for a in self.audits],
            "metrics": self.metrics.to_dict(),
            "error": self.error,
            "attempts": self.attempts,
        }
        if include_raw:
            data["raw_json"] = self.raw_json
        return data
