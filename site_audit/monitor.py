# File: site_audit/monitor.py
"""site_audit.monitor: периодический повторный аудит отслеживаемых сайтов.

Сам запуск по расписанию (cron, systemd timer) остаётся снаружи: модуль
решает, какие сайты «пора» проверить, и выполняет один цикл.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional, Union

from site_audit.engine import Engine
from site_audit.history import HistoryStore, utcnow
from site_audit.logger import logger
from site_audit.runner.models import Device, JobResult

__all__ = ["MonitorFrequency", "is_due", "monitor_once", "run_monitor_cycle"]


class MonitorFrequency(str, Enum):
    EVERY_6H = "6h"
    DAILY = "24h"
    WEEKLY = "7d"

    @property
    def interval(self) -> timedelta:
        return _INTERVALS[self]

    @classmethod
    def parse(cls, value: Union[str, MonitorFrequency, None]) -> MonitorFrequency:
        """Неизвестные значения трактуются как 24h."""
        try:
            return cls(value)
        except ValueError:
            return cls.DAILY


_INTERVALS = {
    MonitorFrequency.EVERY_6H: timedelta(hours=6),
    MonitorFrequency.DAILY: timedelta(hours=24),
    MonitorFrequency.WEEKLY: timedelta(days=7),
}


def is_due(
    last_report_at: Optional[datetime],
    frequency: Union[str, MonitorFrequency],
    now: Optional[datetime] = None,
) -> bool:
    """True, если отчётов ещё нет или с последнего прошло не меньше интервала."""
    if last_report_at is None:
        return True
    now = now or utcnow()
    return now - last_report_at >= MonitorFrequency.parse(frequency).interval


async def run_monitor_cycle(
    engine: Engine,
    store: HistoryStore,
    now: Optional[datetime] = None,
    device: Union[Device, str] = Device.MOBILE,
) -> List[JobResult]:
    """Один проход по отслеживаемым сайтам; ошибки одного сайта не прерывают цикл.

    Сохранение успешных результатов выполняет Engine, если к нему подключён store.
    """
    now = now or utcnow()
    results: List[JobResult] = []

    for site in store.list_sites(monitored_only=True):
        last = store.latest_report(site)
        if not is_due(last.created_at if last else None, site.monitoring_frequency, now):
            logger.debug("Monitor: %s not due yet", site.url)
            continue

        logger.info("Monitor: auditing %s (%s)", site.url, site.monitoring_frequency)
        try:
            report = await engine.analyze([site.url], device)
        except Exception as exc:
            logger.error("Monitor error for %s: %s", site.url, exc)
            continue

        for invalid in report.invalid:
            logger.warning("Monitor: stored URL %s rejected: %s", invalid.input, invalid.error)
        results.extend(report.results)

    return results


async def monitor_once(cfg, store: HistoryStore, device: Union[Device, str] = Device.MOBILE) -> List[JobResult]:
    """Создаёт Engine с подключённым store и выполняет один цикл мониторинга."""
    async with Engine(cfg, store=store) as engine:
        return await run_monitor_cycle(engine, store, device=device)
