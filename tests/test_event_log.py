from __future__ import annotations

import json
import multiprocessing
import sys
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from memlog.models.schemas import LogRecord
from memlog.observability.metrics import get_metrics
from memlog.storage.event_log import EventLogStore


def _record(i: int = 0, **overrides) -> LogRecord:
    values = dict(
        timestamp=f"2026-10-18 10:00:{i % 60:02d}",
        uri=f"/api/items/{i}?q=a/b",
        user="admin@example.com",
        memory_usage_mb=100.5,
        peak_memory_mb=120.25,
        memory_limit="256M",
        memory_percent=46.97,
        active_plugins=["auth", "memory-logs"],
        method="GET",
        is_async=False,
        referrer="https://example.com/start",
        warning="",
    )
    values.update(overrides)
    return LogRecord(**values)


def test_append_then_read_all_round_trips_in_order(store: EventLogStore) -> None:
    written = [_record(i) for i in range(5)]
    for record in written:
        assert store.append(record) is True

    assert store.read_all() == written
    assert get_metrics().snapshot()["counters"]["records_appended_total"] == 5


def test_append_writes_one_unescaped_json_line_per_record(store: EventLogStore) -> None:
    store.append(_record(1, user="zoë"))
    store.append(_record(2))

    raw = store.path.read_text(encoding="utf-8")
    lines = raw.split("\n")
    assert raw.endswith("\n")
    assert len(lines) == 3 and lines[-1] == ""
    assert "\\/" not in raw
    assert "/api/items/1?q=a/b" in lines[0]
    assert "zoë" in lines[0]
    assert json.loads(lines[1])["uri"] == "/api/items/2?q=a/b"


def test_read_all_missing_file_is_empty(tmp_path: Path) -> None:
    store = EventLogStore(tmp_path / "nope" / "debug-memory.log")
    assert store.exists() is False
    assert store.read_all() == []


def test_read_all_skips_blank_and_malformed_lines(store: EventLogStore) -> None:
    good = _record(1)
    store.path.write_text(
        "\n".join(
            [
                good.model_dump_json(),
                "",
                "{not json",
                '{"timestamp": "x", "memory_usage_mb": "lots", "peak_memory_mb": 1, "memory_percent": 1}',
                '{"timestamp": "x", "memory_usage_mb": 1, "peak_memory_mb": 1, "memory_percent": -5}',
                "[1, 2, 3]",
                '{"timestamp": "2026-10-18 10',  # torn write
            ]
        ),
        encoding="utf-8",
    )

    assert store.read_all() == [good]
    assert get_metrics().snapshot()["counters"]["lines_skipped_total"] == 5


def test_read_all_accepts_plugin_era_field_names(store: EventLogStore) -> None:
    legacy = {
        "timestamp": "2025-03-01 12:00:00",
        "uri": "/wp-admin/index.php",
        "user": "admin",
        "memory_usage": 60,
        "peak_memory": 62.5,
        "memory_limit": "256M",
        "memory_percent": 24.41,
        "plugins": ["akismet/akismet.php"],
        "method": "GET",
        "is_ajax": True,
        "referrer": "",
        "warning": "",
    }
    store.path.write_text(json.dumps(legacy) + "\n", encoding="utf-8")

    [record] = store.read_all()
    assert record.memory_usage_mb == 60.0
    assert record.peak_memory_mb == 62.5
    assert record.active_plugins == ["akismet/akismet.php"]
    assert record.is_async is True


def test_clear_empties_existing_log(store: EventLogStore) -> None:
    store.append(_record(1))
    assert store.clear() is True
    assert store.exists() is True
    assert store.path.read_bytes() == b""
    assert store.read_all() == []


def test_clear_is_idempotent_and_does_not_create_file(tmp_path: Path) -> None:
    store = EventLogStore(tmp_path / "debug-memory.log")
    assert store.clear() is True
    assert store.clear() is True
    assert store.exists() is False
    assert store.read_all() == []


def test_append_after_clear_starts_fresh(store: EventLogStore) -> None:
    store.append(_record(1))
    store.clear()
    store.append(_record(2))
    assert [r.uri for r in store.read_all()] == ["/api/items/2?q=a/b"]


def test_append_failure_is_reported_not_raised(tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("file in the way", encoding="utf-8")
    store = EventLogStore(blocker / "debug-memory.log")

    assert store.append(_record(1)) is False
    assert get_metrics().snapshot()["counters"]["write_failures_total"] == 1


def test_concurrent_thread_appends_do_not_interleave(store: EventLogStore) -> None:
    long_plugins = [f"plugin-{n}" * 20 for n in range(50)]
    records = [_record(i, active_plugins=long_plugins) for i in range(200)]

    with ThreadPoolExecutor(max_workers=16) as pool:
        results = list(pool.map(store.append, records))

    assert all(results)
    lines = store.path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 200
    assert all(json.loads(line)["active_plugins"] == long_plugins for line in lines)
    assert sorted(r.uri for r in store.read_all()) == sorted(r.uri for r in records)


def _append_many(path: str, worker: int, count: int) -> None:
    store = EventLogStore(path)
    for i in range(count):
        store.append(_record(i, user=f"worker-{worker}", active_plugins=["x" * 4000]))


@pytest.mark.skipif(sys.platform == "win32", reason="relies on fork")
def test_concurrent_process_appends_do_not_interleave(store: EventLogStore) -> None:
    ctx = multiprocessing.get_context("fork")
    procs = [ctx.Process(target=_append_many, args=(str(store.path), w, 25)) for w in range(4)]
    for p in procs:
        p.start()
    for p in procs:
        p.join(timeout=60)
        assert p.exitcode == 0

    lines = store.path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 100
    records = store.read_all()
    assert len(records) == 100
    assert {r.user for r in records} == {f"worker-{w}" for w in range(4)}


@pytest.mark.skipif(sys.platform == "win32", reason="fcntl only")
def test_lock_failure_closes_handle_and_reports(store: EventLogStore, monkeypatch) -> None:
    import fcntl

    from memlog.storage import event_log

    opened = []
    real_open = open

    def tracking_open(*args, **kwargs):
        fh = real_open(*args, **kwargs)
        opened.append(fh)
        return fh

    def failing_flock(fd, op):
        raise OSError("lock unavailable")

    monkeypatch.setattr(event_log, "open", tracking_open, raising=False)
    monkeypatch.setattr(fcntl, "flock", failing_flock)

    assert store.append(_record(1)) is False
    assert opened and all(fh.closed for fh in opened)
    assert get_metrics().snapshot()["counters"]["write_failures_total"] == 1
    assert store.exists() is False


def test_read_all_derives_warning_from_percent(store: EventLogStore) -> None:
    base = {"timestamp": "2026-10-18 10:00:00", "memory_usage_mb": 200, "peak_memory_mb": 243.2, "memory_limit": "256M"}
    lines = [
        {**base, "memory_percent": 95.0, "warning": ""},
        {**base, "memory_percent": 10.0, "warning": "High memory usage"},
        {**base, "memory_percent": 90.0},
    ]
    store.path.write_text("".join(json.dumps(line) + "\n" for line in lines), encoding="utf-8")

    assert [r.warning for r in store.read_all()] == ["High memory usage", "", ""]


def test_open_stream_yields_file_in_chunks(store: EventLogStore) -> None:
    for i in range(20):
        store.append(_record(i))
    expected = store.path.read_bytes()

    chunks = list(store.open_stream(chunk_size=256))

    assert len(chunks) == -(-len(expected) // 256)
    assert all(len(chunk) <= 256 for chunk in chunks)
    assert b"".join(chunks) == expected


def test_open_stream_missing_file_raises_before_iteration(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        EventLogStore(tmp_path / "missing.log").open_stream()
