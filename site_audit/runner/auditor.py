# site_audit/runner/auditor.py
"""
Auditor capability: performs one audit attempt for a URL and device profile.

:class:`Auditor` is the interface the scheduler depends on.
:class:`LighthouseAuditor` is the production implementation: every attempt
launches its own headless Chrome (:class:`ChromeInstance`), runs the
``lighthouse`` CLI against it and tears the browser down on every exit path,
including cancellation by the per-attempt timeout.
"""
from __future__ import annotations

import abc
import asyncio
import json
import os
import shlex
import shutil
import socket
import tempfile
import time
from typing import Any, Dict, List, Mapping, Optional, Sequence

from aiohttp import ClientError, ClientSession, ClientTimeout

from site_audit.logger import logger
from site_audit.runner.errors import AuditAttemptError
from site_audit.runner.models import CATEGORY_IDS, AuditOutcome, AuditSummary, Device, MetricsSummary

__all__ = (
    "Auditor",
    "ChromeInstance",
    "LighthouseAuditor",
    "DEVICE_PROFILES",
    "extract_audits",
    "extract_metrics",
    "find_chrome",
    "parse_lighthouse_result",
    "wait_for_devtools",
)

DEVICE_PROFILES: Dict[Device, Sequence[str]] = {
    # Lighthouse's defaults already emulate a throttled mid-range phone
    Device.MOBILE: ("--form-factor=mobile",),
    Device.DESKTOP: (
        "--form-factor=desktop",
        "--screenEmulation.mobile=false",
        "--screenEmulation.width=1350",
        "--screenEmulation.height=940",
        "--screenEmulation.deviceScaleFactor=1",
        "--throttling.rttMs=40",
        "--throttling.throughputKbps=10240",
        "--throttling.cpuSlowdownMultiplier=1",
        "--throttling.requestLatencyMs=0",
        "--throttling.downloadThroughputKbps=0",
        "--throttling.uploadThroughputKbps=0",
    ),
}

_CHROME_CANDIDATES = ("google-chrome", "google-chrome-stable", "chromium", "chromium-browser", "chrome")
_METRIC_AUDITS = {
    "first_contentful_paint": "first-contentful-paint",
    "largest_contentful_paint": "largest-contentful-paint",
    "total_blocking_time": "total-blocking-time",
    "cumulative_layout_shift": "cumulative-layout-shift",
    "speed_index": "speed-index",
    "time_to_interactive": "interactive",
    "total_byte_weight": "total-byte-weight",
}


class Auditor(abc.ABC):
    """Performs a single audit attempt. Raises on failure."""

    @abc.abstractmethod
    async def run(self, url: str, device: Device) -> AuditOutcome:
        raise NotImplementedError


# --------------------------------------------------------------------------- #
#                         Lighthouse result parsing                            #
# --------------------------------------------------------------------------- #


def extract_metrics(lhr: Mapping[str, Any]) -> MetricsSummary:
    audits = lhr.get("audits") or {}

    def numeric(audit_id: str) -> Optional[float]:
        return (audits.get(audit_id) or {}).get("numericValue")

    values: Dict[str, Any] = {field: numeric(audit_id) for field, audit_id in _METRIC_AUDITS.items()}
    items = ((audits.get("network-requests") or {}).get("details") or {}).get("items")
    values["total_request_count"] = len(items) if isinstance(items, list) else None
    return MetricsSummary(**values)


def extract_audits(lhr: Mapping[str, Any]) -> List[AuditSummary]:
    """Audits that did not fully pass, worst first, tagged with their category."""
    category_of: Dict[str, str] = {}
    for cat_id, category in (lhr.get("categories") or {}).items():
        for ref in category.get("auditRefs") or []:
            category_of[ref["id"]] = cat_id

    summaries = []
    for audit_id, audit in (lhr.get("audits") or {}).items():
        score = audit.get("score")
        if score is None or score >= 1:
            continue
        summaries.append(
            AuditSummary(
                id=audit.get("id", audit_id),
                title=audit.get("title", audit_id),
                description=audit.get("description") or "",
                score=score,
                numeric_value=audit.get("numericValue"),
                display_value=audit.get("displayValue"),
                category=category_of.get(audit.get("id", audit_id), "other"),
                details=audit.get("details"),
            )
        )
    summaries.sort(key=lambda a: a.score if a.score is not None else 1)
    return summaries


def parse_lighthouse_result(lhr: Mapping[str, Any]) -> AuditOutcome:
    if not lhr or not lhr.get("categories"):
        raise AuditAttemptError("Lighthouse returned no results")
    runtime_error = lhr.get("runtimeError")
    if runtime_error and runtime_error.get("message"):
        raise AuditAttemptError(runtime_error["message"])

    categories = lhr["categories"]
    scores = {cat_id: (categories.get(cat_id) or {}).get("score") for cat_id in CATEGORY_IDS}
    return AuditOutcome(
        scores=scores,
        audits=extract_audits(lhr),
        metrics=extract_metrics(lhr),
        raw=dict(lhr),
    )


# --------------------------------------------------------------------------- #
#                                  Chrome                                      #
# --------------------------------------------------------------------------- #


def find_chrome(explicit: Optional[str] = None) -> str:
    """Chrome binary: explicit path, ``CHROME_PATH`` or the first one on ``PATH``."""
    if explicit:
        return explicit
    env_path = os.environ.get("CHROME_PATH")
    if env_path:
        return env_path
    for name in _CHROME_CANDIDATES:
        found = shutil.which(name)
        if found:
            return found
    raise AuditAttemptError("Chrome executable not found (set chrome_path or CHROME_PATH)")


def _free_port(host: str) -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        return sock.getsockname()[1]


async def wait_for_devtools(
    host: str,
    port: int,
    timeout: float,
    *,
    interval: float = 0.1,
    process: Optional[asyncio.subprocess.Process] = None,
) -> Dict[str, Any]:
    """Poll ``/json/version`` until Chrome's DevTools endpoint answers.

    Raises :class:`AuditAttemptError` if the browser exits or the endpoint
    stays unreachable for *timeout* seconds.
    """
    url = f"http://{host}:{port}/json/version"
    deadline = time.monotonic() + timeout
    async with ClientSession(timeout=ClientTimeout(total=max(interval * 10, 1.0))) as session:
        while True:
            if process is not None and process.returncode is not None:
                raise AuditAttemptError(f"Chrome exited with code {process.returncode} before DevTools was ready")
            try:
                async with session.get(url) as resp:
                    if resp.status == 200:
                        return await resp.json(content_type=None)
            except (ClientError, asyncio.TimeoutError, ValueError):
                pass
            if time.monotonic() >= deadline:
                raise AuditAttemptError(f"connect ECONNREFUSED {host}:{port}")
            await asyncio.sleep(interval)


class ChromeInstance:
    """One headless Chrome with a throw-away profile, scoped to an ``async with`` block."""

    def __init__(
        self,
        executable: str,
        flags: Sequence[str] = (),
        *,
        startup_timeout: float = 30.0,
        host: str = "127.0.0.1",
    ) -> None:
        self.executable = executable
        self.flags = list(flags)
        self.startup_timeout = startup_timeout
        self.host = host
        self.port: Optional[int] = None
        self.process: Optional[asyncio.subprocess.Process] = None
        self._profile: Optional[tempfile.TemporaryDirectory] = None

    async def __aenter__(self) -> ChromeInstance:
        self._profile = tempfile.TemporaryDirectory(prefix="site-audit-chrome-", ignore_cleanup_errors=True)
        self.port = _free_port(self.host)
        args = [
            *self.flags,
            f"--remote-debugging-port={self.port}",
            f"--user-data-dir={self._profile.name}",
            "about:blank",
        ]
        try:
            try:
                self.process = await asyncio.create_subprocess_exec(
                    self.executable,
                    *args,
                    stdout=asyncio.subprocess.DEVNULL,
                    stderr=asyncio.subprocess.DEVNULL,
                )
            except OSError as exc:
                raise AuditAttemptError(f"Failed to launch Chrome ({self.executable}): {exc}") from exc
            logger.debug("Chrome pid=%s started on port %s", self.process.pid, self.port)
            await wait_for_devtools(self.host, self.port, self.startup_timeout, process=self.process)
        except BaseException:
            await self.close()
            raise
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        proc, self.process = self.process, None
        if proc is not None and proc.returncode is None:
            try:
                proc.terminate()
                await asyncio.wait_for(proc.wait(), timeout=5.0)
            except ProcessLookupError:
                pass
            except asyncio.TimeoutError:
                logger.warning("Chrome pid=%s ignored SIGTERM, killing", proc.pid)
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass
                await proc.wait()
            logger.debug("Chrome pid=%s stopped", proc.pid)
        if self._profile is not None:
            self._profile.cleanup()
            self._profile = None


# --------------------------------------------------------------------------- #
#                                Lighthouse                                    #
# --------------------------------------------------------------------------- #


class LighthouseAuditor(Auditor):
    """Runs the Lighthouse CLI against a fresh Chrome per attempt."""

    def __init__(
        self,
        lighthouse_cmd: str = "lighthouse",
        chrome_path: Optional[str] = None,
        chrome_flags: Sequence[str] = ("--headless", "--no-sandbox", "--disable-gpu", "--disable-dev-shm-usage"),
        startup_timeout: float = 30.0,
    ) -> None:
        self.lighthouse_cmd = shlex.split(lighthouse_cmd)
        self.chrome_path = chrome_path
        self.chrome_flags = list(chrome_flags)
        self.startup_timeout = startup_timeout

    @classmethod
    def from_config(cls, config) -> LighthouseAuditor:
        return cls(
            lighthouse_cmd=config.lighthouse_cmd,
            chrome_path=config.chrome_path,
            chrome_flags=config.chrome_flags,
            startup_timeout=config.chrome_startup_timeout,
        )

    def build_command(self, url: str, device: Device, port: int) -> List[str]:
        return [
            *self.lighthouse_cmd,
            url,
            f"--port={port}",
            "--output=json",
            "--output-path=stdout",
            "--quiet",
            f"--only-categories={','.join(CATEGORY_IDS)}",
            *DEVICE_PROFILES[Device(device)],
        ]

    async def run(self, url: str, device: Device) -> AuditOutcome:
        executable = find_chrome(self.chrome_path)
        async with ChromeInstance(executable, self.chrome_flags, startup_timeout=self.startup_timeout) as chrome:
            lhr = await self._lighthouse(self.build_command(url, device, chrome.port))
        return parse_lighthouse_result(lhr)

    async def _lighthouse(self, cmd: List[str]) -> Dict[str, Any]:
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise AuditAttemptError(f"Failed to start Lighthouse ({cmd[0]}): {exc}") from exc

        try:
            stdout, stderr = await proc.communicate()
        finally:
            if proc.returncode is None:
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass
                await proc.wait()

        if proc.returncode != 0:
            lines = [line for line in stderr.decode("utf-8", "replace").splitlines() if line.strip()]
            raise AuditAttemptError(lines[-1].strip() if lines else f"Lighthouse exited with code {proc.returncode}")

        try:
            lhr = json.loads(stdout.decode("utf-8", "replace") or "null")
        except json.JSONDecodeError as exc:
            raise AuditAttemptError("Lighthouse returned no results") from exc
        if not isinstance(lhr, dict):
            raise AuditAttemptError("Lighthouse returned no results")
        return lhr
