# File: tests/conftest.py
import asyncio
from typing import Dict, List, Optional

import pytest

from site_audit.config import AuditConfig
from site_audit.runner.auditor import Auditor
from site_audit.runner.errors import AuditAttemptError
from site_audit.runner.models import AuditOutcome, Device, MetricsSummary


class FakeAuditor(Auditor):
    """
    Auditor stand-in: sleeps instead of launching Chrome and records
    how many attempts run at the same time.
    """

    def __init__(
        self,
        delay: float = 0.0,
        delays: Optional[Dict[str, float]] = None,
        failures: Optional[Dict[str, List[str]]] = None,
        scores: Optional[Dict[str, float]] = None,
    ) -> None:
        self.delay = delay
        self.delays = delays or {}
        self.failures = {url: list(msgs) for url, msgs in (failures or {}).items()}
        self.scores = scores or {"performance": 0.91, "accessibility": 0.875, "best-practices": 1.0, "seo": 0.5}
        self.calls: List[tuple] = []
        self.finished: List[str] = []
        self.active = 0
        self.max_active = 0
        self.acquired = 0
        self.released = 0

    async def run(self, url: str, device: Device) -> AuditOutcome:
        self.calls.append((url, device))
        self.active += 1
        self.acquired += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delays.get(url, self.delay))
            pending = self.failures.get(url)
            if pending:
                raise AuditAttemptError(pending.pop(0))
            self.finished.append(url)
            return AuditOutcome(
                scores=dict(self.scores),
                metrics=MetricsSummary(first_contentful_paint=1200.0),
                raw={"requestedUrl": url, "device": device.value},
            )
        finally:
            self.active -= 1
            self.released += 1


@pytest.fixture()
def fake_auditor() -> FakeAuditor:
    return FakeAuditor()


@pytest.fixture()
def fast_config(tmp_path) -> AuditConfig:
    """
    Config with short delays so retry paths finish quickly.
    """
    return AuditConfig(
        max_concurrency=3,
        max_retries=3,
        retry_delay=0.01,
        attempt_timeout=2.0,
        history_path=tmp_path / "history.json",
    )


@pytest.fixture()
def sample_lhr() -> dict:
    """
    Trimmed Lighthouse result with the fields the parser reads.
    """
    return {
        "requestedUrl": "https://example.com/",
        "finalUrl": "https://example.com/",
        "categories": {
            "performance": {
                "score": 0.87,
                "auditRefs": [
                    {"id": "first-contentful-paint"},
                    {"id": "largest-contentful-paint"},
                    {"id": "render-blocking-resources"},
                ],
            },
            "accessibility": {"score": 0.95, "auditRefs": [{"id": "color-contrast"}]},
            "best-practices": {"score": 1.0, "auditRefs": []},
            "seo": {"score": None, "auditRefs": [{"id": "meta-description"}]},
        },
        "audits": {
            "first-contentful-paint": {
                "id": "first-contentful-paint",
                "title": "First Contentful Paint",
                "score": 0.9,
                "numericValue": 1500.5,
                "displayValue": "1.5 s",
            },
            "largest-contentful-paint": {
                "id": "largest-contentful-paint",
                "title": "Largest Contentful Paint",
                "score": 1,
                "numericValue": 2100.0,
            },
            "render-blocking-resources": {
                "id": "render-blocking-resources",
                "title": "Eliminate render-blocking resources",
                "description": "Resources are blocking the first paint.",
                "score": 0.3,
                "displayValue": "Potential savings of 450 ms",
            },
            "color-contrast": {
                "id": "color-contrast",
                "title": "Background and foreground colors have a sufficient contrast ratio",
                "score": 0,
            },
            "meta-description": {"id": "meta-description", "title": "Document has a meta description", "score": None},
            "unlisted-audit": {"id": "unlisted-audit", "title": "Not in any category", "score": 0.5},
            "total-blocking-time": {"id": "total-blocking-time", "title": "TBT", "score": 1, "numericValue": 80},
            "cumulative-layout-shift": {"id": "cumulative-layout-shift", "title": "CLS", "score": 1, "numericValue": 0.02},
            "network-requests": {
                "id": "network-requests",
                "title": "Network Requests",
                "score": None,
                "details": {"items": [{"url": "a"}, {"url": "b"}, {"url": "c"}]},
            },
        },
    }
