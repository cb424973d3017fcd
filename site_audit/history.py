# File: site_audit/history.py
"""site_audit.history: файловое хранилище сайтов и истории отчётов.

Сайт идентифицируется нормализованным URL; каждый успешный аудит добавляет
неизменяемую запись отчёта с четырьмя оценками и устройством.

Индекс (``history.json``) хранит только метаданные. Сырой JSON Lighthouse
каждого отчёта лежит отдельным файлом ``<stem>.raw/<report_id>.json`` рядом
с индексом, поэтому запись нового отчёта не переписывает старые payload'ы.
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from site_audit.logger import logger
from site_audit.runner.models import Device, JobResult

__all__ = ["HistoryStore", "ReportRecord", "SiteRecord", "utcnow"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


def _atomic_write(path: Path, payload: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}-", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(payload)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class SiteRecord(BaseModel):
    """Отслеживаемый сайт."""

    id: str = Field(default_factory=_new_id)
    url: str
    created_at: datetime = Field(default_factory=utcnow)
    monitoring_enabled: bool = False
    monitoring_frequency: str = "24h"


class ReportRecord(BaseModel):
    """Один сохранённый отчёт; после создания не меняется."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    site_id: str
    created_at: datetime = Field(default_factory=utcnow)
    performance: int = Field(ge=0, le=100)
    accessibility: int = Field(ge=0, le=100)
    best_practices: int = Field(ge=0, le=100)
    seo: int = Field(ge=0, le=100)
    device: Device


class _HistoryFile(BaseModel):
    sites: List[SiteRecord] = Field(default_factory=list)
    reports: List[ReportRecord] = Field(default_factory=list)


class HistoryStore:
    """JSON-индекс на диске плюс по файлу на сырой отчёт; запись атомарная.

    Методы синхронные: из асинхронного кода их вызывают через
    ``asyncio.to_thread``, поэтому изменения защищены блокировкой.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path).expanduser()
        self.raw_dir = self.path.with_name(f"{self.path.stem}.raw")
        self._lock = threading.RLock()
        self._data = self._load()

    def _load(self) -> _HistoryFile:
        if not self.path.exists():
            return _HistoryFile()
        try:
            return _HistoryFile.model_validate_json(self.path.read_text(encoding="utf-8") or "{}")
        except ValidationError as exc:
            raise ValueError(f"Повреждён файл истории {self.path}: {exc}") from exc

    def _save(self) -> None:
        _atomic_write(self.path, self._data.model_dump_json(indent=2))

    # --- sites ------------------------------------------------------------

    def get_site(self, url: str) -> Optional[SiteRecord]:
        return next((s for s in self._data.sites if s.url == url), None)

    def get_site_by_id(self, site_id: str) -> Optional[SiteRecord]:
        return next((s for s in self._data.sites if s.id == site_id), None)

    def list_sites(self, *, monitored_only: bool = False) -> List[SiteRecord]:
        return [s for s in self._data.sites if s.monitoring_enabled or not monitored_only]

    def _site_for(self, url: str) -> SiteRecord:
        site = self.get_site(url)
        if site is None:
            site = SiteRecord(url=url)
            self._data.sites.append(site)
            logger.debug("Site registered: %s", url)
        return site

    def upsert_site(self, url: str) -> SiteRecord:
        with self._lock:
            known = self.get_site(url) is not None
            site = self._site_for(url)
            if not known:
                self._save()
            return site

    def set_monitoring(self, url: str, enabled: bool, frequency: Optional[str] = None) -> SiteRecord:
        with self._lock:
            site = self._site_for(url)
            site.monitoring_enabled = enabled
            if frequency is not None:
                site.monitoring_frequency = frequency
            self._save()
        logger.info("Monitoring %s for %s (%s)", "enabled" if enabled else "disabled", url, site.monitoring_frequency)
        return site

    # --- reports ----------------------------------------------------------

    def _append_report(self, site: SiteRecord, result: JobResult, device: Union[Device, str]) -> ReportRecord:
        if not result.ok:
            raise ValueError(f"Не сохраняем неуспешный аудит {result.url}: {result.error}")
        report = ReportRecord(
            site_id=site.id,
            performance=result.performance,
            accessibility=result.accessibility,
            best_practices=result.best_practices,
            seo=result.seo,
            device=Device(device),
        )
        _atomic_write(self._raw_path(report.id), result.raw_json)
        self._data.reports.append(report)
        return report

    def add_report(self, site: SiteRecord, result: JobResult, device: Union[Device, str]) -> ReportRecord:
        with self._lock:
            report = self._append_report(site, result, device)
            self._save()
            return report

    def save_result(self, result: JobResult, device: Union[Device, str, None] = None) -> ReportRecord:
        """Upsert сайта по URL и добавление отчёта одной записью индекса."""
        return self.save_results([result], device)[0]

    def save_results(
        self, results: Iterable[JobResult], device: Union[Device, str, None] = None
    ) -> List[ReportRecord]:
        """Сохраняет пакет успешных результатов; индекс переписывается один раз."""
        saved: List[ReportRecord] = []
        with self._lock:
            try:
                for result in results:
                    site = self._site_for(result.url)
                    saved.append(self._append_report(site, result, device or result.device))
            finally:
                if saved:
                    self._save()
        return saved

    def get_report(self, report_id: str) -> Optional[ReportRecord]:
        return next((r for r in self._data.reports if r.id == report_id), None)

    def _raw_path(self, report_id: str) -> Path:
        return self.raw_dir / f"{report_id}.json"

    def load_raw(self, report_id: str) -> Dict[str, Any]:
        """Сырой JSON Lighthouse отчёта; {} если файла нет или он не разбирается."""
        path = self._raw_path(report_id)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError:
            logger.warning("Broken raw payload for report %s", report_id)
            return {}
        return data if isinstance(data, dict) else {}

    def reports_for(self, url: str, limit: Optional[int] = None) -> List[ReportRecord]:
        """Отчёты сайта, начиная с самого свежего."""
        site = self.get_site(url)
        if site is None:
            return []
        # newest appended first, so equal timestamps keep insertion order reversed
        reports = [r for r in reversed(self._data.reports) if r.site_id == site.id]
        reports.sort(key=lambda r: r.created_at, reverse=True)
        return reports[:limit] if limit is not None else reports

    def latest_report(self, site: SiteRecord) -> Optional[ReportRecord]:
        reports = self.reports_for(site.url, limit=1)
        return reports[0] if reports else None
