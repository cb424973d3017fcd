# File: site_audit/engine.py
"""site_audit.engine: оркестрация пакетного аудита — проверка URL, планировщик, сохранение истории."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Union

from site_audit.config import AuditConfig
from site_audit.history import HistoryStore, utcnow
from site_audit.logger import logger
from site_audit.runner.auditor import Auditor, LighthouseAuditor
from site_audit.runner.models import Device, JobResult
from site_audit.runner.scheduler import AuditScheduler
from site_audit.url_utils import InvalidInput, parse_url_list

__all__ = ["BatchReport", "Engine", "TooManyUrlsError", "check_url_limit", "start_audit"]


class TooManyUrlsError(ValueError):
    """Запрос содержит больше URL, чем разрешено за один вызов."""

    def __init__(self, count: int, limit: int) -> None:
        super().__init__(f"Maximum {limit} URLs allowed per request (got {count})")
        self.count = count
        self.limit = limit


def check_url_limit(urls: Sequence[str], limit: int) -> None:
    if len(urls) > limit:
        raise TooManyUrlsError(len(urls), limit)


@dataclass(slots=True)
class BatchReport:
    """Результаты пакета (в порядке уникальных корректных URL) и отклонённые строки."""

    device: Device
    results: List[JobResult] = field(default_factory=list)
    invalid: List[InvalidInput] = field(default_factory=list)
    started_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None

    @property
    def succeeded(self) -> List[JobResult]:
        return [r for r in self.results if r.ok]

    @property
    def failed(self) -> List[JobResult]:
        return [r for r in self.results if not r.ok]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "device": self.device.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "results": [r.to_dict() for r in self.results],
            "invalid": [i.to_dict() for i in self.invalid],
        }

    def json(self, *, pretty: bool = False) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=2 if pretty else None)


class Engine:
    """Фасад для CLI, мониторинга и тестов.

    Планировщик создаётся при входе в ``async with`` (или лениво в analyze)
    и сбрасывается в close(), так что один Engine можно использовать повторно.
    """

    def __init__(
        self,
        config: AuditConfig,
        auditor: Optional[Auditor] = None,
        store: Optional[HistoryStore] = None,
    ) -> None:
        self.config = config
        self.auditor = auditor or LighthouseAuditor.from_config(config)
        self.store = store
        self.scheduler: Optional[AuditScheduler] = None

    async def __aenter__(self) -> Engine:
        self._ensure_scheduler()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _ensure_scheduler(self) -> AuditScheduler:
        if self.scheduler is None:
            self.scheduler = AuditScheduler.from_config(self.auditor, self.config)
        return self.scheduler

    async def close(self) -> None:
        scheduler, self.scheduler = self.scheduler, None
        if scheduler is not None:
            await scheduler.close()

    async def analyze(
        self,
        urls: Union[str, Sequence[str]],
        device: Union[Device, str, None] = None,
    ) -> BatchReport:
        """Проверяет и дедуплицирует URL, запускает аудиты и возвращает BatchReport."""
        device = Device(device or self.config.default_device)
        text = urls if isinstance(urls, str) else "\n".join(urls)
        parsed = parse_url_list(text)

        report = BatchReport(device=device, invalid=parsed.invalid)
        if parsed.invalid:
            logger.info("Rejected %d input(s): %s", len(parsed.invalid), ", ".join(i.input for i in parsed.invalid))
        if not parsed.valid:
            logger.warning("No valid URLs to audit")
            report.finished_at = utcnow()
            return report

        logger.info("Auditing %d URL(s) on %s", len(parsed.valid), device.value)
        report.results = await self._ensure_scheduler().submit_batch(parsed.valid, device)
        report.finished_at = utcnow()
        logger.info("Batch finished: %d ok, %d failed", len(report.succeeded), len(report.failed))

        if self.store is not None and report.succeeded:
            # file I/O stays off the event loop
            await asyncio.to_thread(self._persist, report)
        return report

    def _persist(self, report: BatchReport) -> None:
        assert self.store is not None
        try:
            self.store.save_results(report.succeeded, report.device)
        except (OSError, ValueError) as exc:
            logger.error("Error saving %d report(s): %s", len(report.succeeded), exc)

    def run(self, urls: Union[str, Sequence[str]], device: Union[Device, str, None] = None) -> BatchReport:
        """Синхронная обёртка над analyze() для скриптов."""

        async def _runner() -> BatchReport:
            async with self:
                return await self.analyze(urls, device)

        return asyncio.run(_runner())


async def start_audit(
    cfg: AuditConfig,
    urls: Union[str, Sequence[str]],
    device: Union[Device, str, None] = None,
    store: Optional[HistoryStore] = None,
) -> BatchReport:
    """Запускает Engine в контексте и возвращает отчёт пакета."""
    async with Engine(cfg, store=store) as engine:
        return await engine.analyze(urls, device)
