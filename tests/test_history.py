# File: tests/test_history.py
import json
from datetime import timedelta

import pytest

from site_audit.history import HistoryStore, utcnow
from site_audit.runner.models import Device, JobResult


def ok_result(url="https://example.com", perf=80) -> JobResult:
    return JobResult(url=url, device=Device.MOBILE, performance=perf, accessibility=90, best_practices=70, seo=100, raw_json='{"k": 1}', attempts=1)


def test_upsert_site_is_idempotent(tmp_path):
    store = HistoryStore(tmp_path / "h.json")
    first = store.upsert_site("https://example.com")
    second = store.upsert_site("https://example.com")
    assert first.id == second.id
    assert len(store.list_sites()) == 1


def test_reports_newest_first_and_survive_reload(tmp_path):
    path = tmp_path / "nested" / "h.json"
    store = HistoryStore(path)
    store.save_result(ok_result(perf=10))
    store.save_result(ok_result(perf=20))
    store.save_result(ok_result(url="https://other.example.com", perf=30))

    reloaded = HistoryStore(path)
    reports = reloaded.reports_for("https://example.com")
    assert [r.performance for r in reports] == [20, 10]
    assert reloaded.reports_for("https://example.com", limit=1)[0].performance == 20
    assert reloaded.reports_for("https://unknown.example.com") == []
    assert json.loads(path.read_text(encoding="utf-8"))["sites"][0]["url"] == "https://example.com"


def test_failed_result_is_not_stored(tmp_path):
    store = HistoryStore(tmp_path / "h.json")
    site = store.upsert_site("https://example.com")
    failed = JobResult(url="https://example.com", device=Device.MOBILE, error="Target closed", attempts=3)
    with pytest.raises(ValueError):
        store.add_report(site, failed, Device.MOBILE)
    assert store.reports_for("https://example.com") == []


def test_latest_report(tmp_path):
    store = HistoryStore(tmp_path / "h.json")
    site = store.upsert_site("https://example.com")
    assert store.latest_report(site) is None
    report = store.add_report(site, ok_result(), "desktop")
    assert store.latest_report(site) == report
    assert report.device is Device.DESKTOP
    assert report.created_at <= utcnow() + timedelta(seconds=1)


def test_set_monitoring(tmp_path):
    store = HistoryStore(tmp_path / "h.json")
    store.set_monitoring("https://example.com", True, "6h")
    store.set_monitoring("https://other.example.com", False)

    reloaded = HistoryStore(tmp_path / "h.json")
    monitored = reloaded.list_sites(monitored_only=True)
    assert [(s.url, s.monitoring_frequency) for s in monitored] == [("https://example.com", "6h")]
    assert len(reloaded.list_sites()) == 2


def test_corrupt_file(tmp_path):
    path = tmp_path / "h.json"
    path.write_text('{"sites": "nope"}', encoding="utf-8")
    with pytest.raises(ValueError):
        HistoryStore(path)


def test_raw_payload_lives_outside_the_index(tmp_path):
    path = tmp_path / "h.json"
    store = HistoryStore(path)
    report = store.save_result(ok_result())

    index = json.loads(path.read_text(encoding="utf-8"))
    assert "raw_json" not in index["reports"][0]
    assert (tmp_path / "h.raw" / f"{report.id}.json").exists()
    assert HistoryStore(path).load_raw(report.id) == {"k": 1}


def test_load_raw_missing_or_broken(tmp_path):
    store = HistoryStore(tmp_path / "h.json")
    report = store.save_result(ok_result())
    assert store.load_raw("unknown-id") == {}
    (tmp_path / "h.raw" / f"{report.id}.json").write_text("{oops", encoding="utf-8")
    assert store.load_raw(report.id) == {}


def test_get_report_by_id(tmp_path):
    store = HistoryStore(tmp_path / "h.json")
    report = store.save_result(ok_result(perf=33))

    found = HistoryStore(tmp_path / "h.json").get_report(report.id)
    assert found == report
    assert store.get_site_by_id(found.site_id).url == "https://example.com"
    assert store.get_report("missing") is None


def test_save_results_writes_index_once(tmp_path, monkeypatch):
    store = HistoryStore(tmp_path / "h.json")
    saves = []
    original_save = store._save
    monkeypatch.setattr(store, "_save", lambda: (saves.append(1), original_save()))

    saved = store.save_results(
        [ok_result(), ok_result(url="https://other.example.com"), ok_result(perf=55)],
        Device.DESKTOP,
    )

    assert len(saves) == 1
    assert [r.device for r in saved] == [Device.DESKTOP] * 3
    assert len(store.list_sites()) == 2
    assert [r.performance for r in store.reports_for("https://example.com")] == [55, 80]


def test_save_result_single_write(tmp_path, monkeypatch):
    store = HistoryStore(tmp_path / "h.json")
    saves = []
    original_save = store._save
    monkeypatch.setattr(store, "_save", lambda: (saves.append(1), original_save()))

    store.save_result(ok_result())
    assert len(saves) == 1
