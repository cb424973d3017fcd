# === FILE: site_audit/config.py ===
"""
Модуль для загрузки и валидации конфигурации SiteAudit.
Используется Pydantic для описания схемы и проверки данных.
"""
from __future__ import annotations

import errno
import json
import os
from pathlib import Path
from typing import Any, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from site_audit.logger import logger
from site_audit.runner.models import Device
from site_audit.runner.retry import RetryPolicy

DEFAULT_CHROME_FLAGS: List[str] = [
    "--headless",
    "--no-sandbox",
    "--disable-gpu",
    "--disable-dev-shm-usage",
]


class AuditConfig(BaseModel):
    """Конфигурация планировщика аудитов и запуска Lighthouse."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    max_concurrency: int = Field(3, ge=1, description="Максимум одновременно выполняемых аудитов.")
    max_retries: int = Field(3, ge=1, description="Число попыток на один URL (включая первую).")
    retry_delay: float = Field(2.0, ge=0, description="Пауза перед повтором (секунд).")
    attempt_timeout: float = Field(90.0, gt=0, description="Таймаут одной попытки (секунд).")
    retry_on_timeout: bool = Field(False, description="Считать таймаут попытки временной ошибкой.")
    max_urls: int = Field(10, ge=1, description="Лимит URL в одном запросе.")
    default_device: Device = Field(Device.MOBILE, description="Профиль устройства по умолчанию.")

    lighthouse_cmd: str = Field("lighthouse", min_length=1, description="Команда запуска Lighthouse CLI.")
    chrome_path: Optional[str] = Field(None, description="Путь к бинарнику Chrome/Chromium.")
    chrome_flags: List[str] = Field(default_factory=lambda: list(DEFAULT_CHROME_FLAGS))
    chrome_startup_timeout: float = Field(30.0, gt=0, description="Ожидание DevTools (секунд).")

    history_path: Path = Field(Path("data/history.json"), description="Файл истории отчётов.")

    @field_validator("lighthouse_cmd", mode="before")
    def _strip_cmd(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip()
        return v

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            retry_delay=self.retry_delay,
            attempt_timeout=self.attempt_timeout,
            retry_on_timeout=self.retry_on_timeout,
        )


_DEFAULT_CFG = Path("configs/default.yaml")


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ValueError(f"Неправильный YAML в {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise TypeError(f"Верхний уровень YAML должен быть mapping, получено {type(data).__name__}")
    return data


def _read_json(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8")) or {}
    except json.JSONDecodeError as exc:
        raise ValueError(f"Неправильный JSON в {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise TypeError(f"Верхний уровень JSON должен быть mapping, получено {type(data).__name__}")
    return data


def load_config(path: Union[str, Path, None] = None) -> AuditConfig:
    """
    Читает YAML или JSON и возвращает проверенный объект AuditConfig.
    Без явного пути используется configs/default.yaml, а при его отсутствии — значения по умолчанию.
    Явно указанный, но отсутствующий файл приводит к FileNotFoundError.
    """
    if path is None:
        if not _DEFAULT_CFG.exists():
            logger.debug("No %s found, using built-in defaults", _DEFAULT_CFG)
            return AuditConfig()
        path_obj = _DEFAULT_CFG
    else:
        path_obj = Path(path).expanduser().resolve()
        if not path_obj.is_file():
            raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), str(path_obj))

    suffix = path_obj.suffix.lower()
    if suffix in (".yaml", ".yml"):
        data = _read_yaml(path_obj)
    elif suffix == ".json":
        data = _read_json(path_obj)
    else:
        raise ValueError(f"Неподдерживаемый формат конфига: {suffix}")

    return AuditConfig(**data)
