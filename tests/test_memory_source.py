import gc
import sys

import pytest

from memlog.telemetry.memory import ProcessMemorySource, RssWindow, get_memory_source, set_memory_source
from memlog.telemetry.sampler import CaptureContext, capture

MB = 1024 * 1024


def test_process_memory_source_reports_live_process() -> None:
    window = ProcessMemorySource().window()
    usage = window.usage_bytes()
    assert usage > 0
    assert window.peak_bytes() >= usage


def test_default_memory_source_is_process_source() -> None:
    set_memory_source(None)
    assert isinstance(get_memory_source(), ProcessMemorySource)


def test_rss_window_peak_is_max_of_start_and_end() -> None:
    samples = iter([300 * MB, 120 * MB, 120 * MB])
    window = RssWindow(lambda: next(samples))

    assert window.start_bytes == 300 * MB
    assert window.usage_bytes() == 120 * MB
    assert window.peak_bytes() == 300 * MB


def test_rss_window_tracks_growth_during_request() -> None:
    readings = [100 * MB]
    window = RssWindow(lambda: readings[-1])
    readings.append(180 * MB)
    assert window.peak_bytes() == 180 * MB


@pytest.mark.skipif(not sys.platform.startswith("linux"), reason="needs large allocations returned to the OS")
def test_freed_allocation_does_not_inflate_next_request_peak() -> None:
    source = ProcessMemorySource()
    baseline = source.rss_bytes()

    blob = bytearray(400 * MB)
    blob[:: 4096] = b"x" * len(blob[:: 4096])  # touch every page so it is resident
    assert source.rss_bytes() > baseline + 300 * MB
    del blob
    gc.collect()

    window = source.window()
    record = capture(
        CaptureContext(
            uri="/small",
            user="owner@example.com",
            memory_limit="1G",
            usage_bytes=window.usage_bytes(),
            peak_bytes=window.peak_bytes(),
        )
    )

    assert record.peak_memory_mb < (baseline + 200 * MB) / MB
    assert record.memory_percent < 90
    assert record.warning == ""
