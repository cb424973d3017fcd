# File: tests/test_auditor.py
# Lighthouse parsing, command building, DevTools probe and process cleanup
from __future__ import annotations

import asyncio
import json
import stat
import sys
from collections.abc import AsyncIterator
from pathlib import Path

import pytest
import pytest_asyncio
from aiohttp import web

from site_audit.runner.auditor import (
    ChromeInstance,
    LighthouseAuditor,
    extract_audits,
    extract_metrics,
    find_chrome,
    parse_lighthouse_result,
    wait_for_devtools,
)
from site_audit.runner.errors import AuditAttemptError
from site_audit.runner.models import Device

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="uses shell scripts")


def write_script(path: Path, body: str) -> Path:
    path.write_text("#!/bin/sh\n" + body, encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IEXEC)
    return path


# --------------------------------------------------------------------------- #
#                              Result parsing                                  #
# --------------------------------------------------------------------------- #


def test_extract_metrics(sample_lhr):
    metrics = extract_metrics(sample_lhr)
    assert metrics.first_contentful_paint == 1500.5
    assert metrics.largest_contentful_paint == 2100.0
    assert metrics.total_blocking_time == 80
    assert metrics.cumulative_layout_shift == 0.02
    assert metrics.total_request_count == 3
    assert metrics.speed_index is None
    assert metrics.time_to_interactive is None
    assert metrics.total_byte_weight is None


def test_extract_audits_filters_sorts_and_categorises(sample_lhr):
    audits = extract_audits(sample_lhr)
    assert [a.id for a in audits] == [
        "color-contrast",
        "render-blocking-resources",
        "unlisted-audit",
        "first-contentful-paint",
    ]
    by_id = {a.id: a for a in audits}
    assert by_id["color-contrast"].category == "accessibility"
    assert by_id["render-blocking-resources"].category == "performance"
    assert by_id["render-blocking-resources"].description == "Resources are blocking the first paint."
    assert by_id["unlisted-audit"].category == "other"
    assert by_id["first-contentful-paint"].display_value == "1.5 s"
    assert by_id["first-contentful-paint"].numeric_value == 1500.5


def test_parse_lighthouse_result(sample_lhr):
    outcome = parse_lighthouse_result(sample_lhr)
    assert outcome.scores == {"performance": 0.87, "accessibility": 0.95, "best-practices": 1.0, "seo": None}
    assert outcome.raw["finalUrl"] == "https://example.com/"
    assert len(outcome.audits) == 4


@pytest.mark.parametrize("lhr", [{}, {"categories": {}}])
def test_parse_empty_result(lhr):
    with pytest.raises(AuditAttemptError, match="no results"):
        parse_lighthouse_result(lhr)


def test_parse_runtime_error(sample_lhr):
    sample_lhr["runtimeError"] = {"code": "NO_FCP", "message": "Protocol error (Page.navigate): Target closed."}
    with pytest.raises(AuditAttemptError, match="Protocol error"):
        parse_lighthouse_result(sample_lhr)


# --------------------------------------------------------------------------- #
#                              Command building                                #
# --------------------------------------------------------------------------- #


def test_build_command_mobile():
    auditor = LighthouseAuditor(lighthouse_cmd="npx lighthouse")
    cmd = auditor.build_command("https://example.com", Device.MOBILE, 9333)
    assert cmd[:3] == ["npx", "lighthouse", "https://example.com"]
    assert "--port=9333" in cmd
    assert "--output=json" in cmd
    assert "--only-categories=performance,accessibility,best-practices,seo" in cmd
    assert "--form-factor=mobile" in cmd
    assert not any(arg.startswith("--screenEmulation") for arg in cmd)


def test_build_command_desktop():
    cmd = LighthouseAuditor().build_command("https://example.com", Device.DESKTOP, 9333)
    assert "--form-factor=desktop" in cmd
    assert "--screenEmulation.width=1350" in cmd
    assert "--screenEmulation.height=940" in cmd
    assert "--throttling.rttMs=40" in cmd
    assert "--throttling.throughputKbps=10240" in cmd


def test_from_config(fast_config):
    auditor = LighthouseAuditor.from_config(fast_config)
    assert auditor.lighthouse_cmd == ["lighthouse"]
    assert auditor.chrome_flags == fast_config.chrome_flags
    assert auditor.startup_timeout == fast_config.chrome_startup_timeout


def test_find_chrome_prefers_explicit_then_env(monkeypatch):
    monkeypatch.setenv("CHROME_PATH", "/opt/chrome/chrome")
    assert find_chrome("/usr/bin/custom-chrome") == "/usr/bin/custom-chrome"
    assert find_chrome() == "/opt/chrome/chrome"


def test_find_chrome_missing(monkeypatch):
    monkeypatch.delenv("CHROME_PATH", raising=False)
    monkeypatch.setattr("site_audit.runner.auditor.shutil.which", lambda name: None)
    with pytest.raises(AuditAttemptError, match="Chrome executable not found"):
        find_chrome()


# --------------------------------------------------------------------------- #
#                              Lighthouse process                              #
# --------------------------------------------------------------------------- #


@posix_only
@pytest.mark.asyncio()
async def test_lighthouse_process_output_parsed(tmp_path, sample_lhr):
    payload = tmp_path / "lhr.json"
    payload.write_text(json.dumps(sample_lhr), encoding="utf-8")
    script = write_script(tmp_path / "fake-lighthouse", f'cat "{payload}"\n')
    auditor = LighthouseAuditor(lighthouse_cmd=str(script))

    lhr = await auditor._lighthouse(auditor.build_command("https://example.com", Device.MOBILE, 1))
    assert lhr["finalUrl"] == "https://example.com/"


@posix_only
@pytest.mark.asyncio()
async def test_lighthouse_failure_uses_last_stderr_line(tmp_path):
    script = write_script(
        tmp_path / "fake-lighthouse",
        'echo "Launching..." >&2\necho "Runtime error encountered: connect ECONNREFUSED 127.0.0.1:1" >&2\nexit 1\n',
    )
    auditor = LighthouseAuditor(lighthouse_cmd=str(script))
    with pytest.raises(AuditAttemptError, match="ECONNREFUSED"):
        await auditor._lighthouse([str(script)])


@posix_only
@pytest.mark.asyncio()
async def test_lighthouse_garbage_output(tmp_path):
    script = write_script(tmp_path / "fake-lighthouse", 'echo "not json"\n')
    auditor = LighthouseAuditor(lighthouse_cmd=str(script))
    with pytest.raises(AuditAttemptError, match="no results"):
        await auditor._lighthouse([str(script)])


@pytest.mark.asyncio()
async def test_lighthouse_missing_binary(tmp_path):
    auditor = LighthouseAuditor(lighthouse_cmd=str(tmp_path / "nope"))
    with pytest.raises(AuditAttemptError, match="Failed to start Lighthouse"):
        await auditor._lighthouse([str(tmp_path / "nope")])


# --------------------------------------------------------------------------- #
#                              Chrome / DevTools                               #
# --------------------------------------------------------------------------- #


@pytest_asyncio.fixture
async def devtools_server(unused_tcp_port: int) -> AsyncIterator[int]:
    app = web.Application()

    async def version(_):
        return web.json_response({"Browser": "HeadlessChrome/126.0", "webSocketDebuggerUrl": "ws://x"})

    app.router.add_get("/json/version", version)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", unused_tcp_port)
    await site.start()
    try:
        yield unused_tcp_port
    finally:
        await runner.cleanup()


@pytest.mark.asyncio()
async def test_wait_for_devtools_ready(devtools_server):
    info = await wait_for_devtools("127.0.0.1", devtools_server, timeout=2.0)
    assert info["Browser"].startswith("HeadlessChrome")


@pytest.mark.asyncio()
async def test_wait_for_devtools_unreachable(unused_tcp_port):
    with pytest.raises(AuditAttemptError, match=f"ECONNREFUSED 127.0.0.1:{unused_tcp_port}"):
        await wait_for_devtools("127.0.0.1", unused_tcp_port, timeout=0.3, interval=0.05)


@posix_only
@pytest.mark.asyncio()
async def test_chrome_startup_failure_kills_process_and_cleans_profile(tmp_path):
    fake_chrome = write_script(tmp_path / "fake-chrome", "exec sleep 30\n")
    chrome = ChromeInstance(str(fake_chrome), startup_timeout=0.3)

    with pytest.raises(AuditAttemptError, match="ECONNREFUSED"):
        async with chrome:
            pass

    assert chrome.process is None
    assert chrome._profile is None


@posix_only
@pytest.mark.asyncio()
async def test_chrome_exiting_early_is_reported(tmp_path):
    fake_chrome = write_script(tmp_path / "fake-chrome", "exit 3\n")
    with pytest.raises(AuditAttemptError, match="exited with code 3"):
        async with ChromeInstance(str(fake_chrome), startup_timeout=5.0):
            pass


@pytest.mark.asyncio()
async def test_chrome_missing_binary(tmp_path):
    with pytest.raises(AuditAttemptError, match="Failed to launch Chrome"):
        async with ChromeInstance(str(tmp_path / "no-chrome"), startup_timeout=0.5):
            pass


@posix_only
@pytest.mark.asyncio()
async def test_chrome_released_when_attempt_is_abandoned(tmp_path, monkeypatch, devtools_server):
    """Cancelling a running attempt (the timeout path) must stop the browser."""
    fake_chrome = write_script(tmp_path / "fake-chrome", "exec sleep 30\n")
    monkeypatch.setattr("site_audit.runner.auditor._free_port", lambda host: devtools_server)
    chrome = ChromeInstance(str(fake_chrome), startup_timeout=2.0)

    async def attempt():
        async with chrome:
            await asyncio.sleep(30)

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(attempt(), timeout=0.5)

    assert chrome.process is None
    assert chrome._profile is None
