from __future__ import annotations

import sys
import tracemalloc

import pytest

from chargeback.adapters.process import ProcessIntrospection
from chargeback.adapters.profiles import HeapProfile, ThreadsProfile


@pytest.fixture
def introspection() -> ProcessIntrospection:
    return ProcessIntrospection(sample_hz=100)


def test_cmdline_is_argv(introspection: ProcessIntrospection) -> None:
    assert introspection.cmdline() == sys.argv


def test_named_profiles(introspection: ProcessIntrospection) -> None:
    assert [p.name for p in introspection.profiles()] == ["heap", "threads"]
    assert introspection.lookup_profile("threads") is not None
    assert introspection.lookup_profile("goroutine") is None


def test_threads_profile_text_dump() -> None:
    profile = ThreadsProfile()
    assert profile.count() >= 1
    full = profile.write(debug=2).decode()
    assert "[MainThread]" in full or "thread " in full
    grouped = profile.write(debug=1).decode()
    assert grouped.startswith("threads profile: total ")


def test_threads_profile_binary_is_gzip() -> None:
    assert ThreadsProfile().write(debug=0)[:2] == b"\x1f\x8b"


def test_heap_profile_without_tracing() -> None:
    if tracemalloc.is_tracing():
        pytest.skip("tracemalloc already active")
    profile = HeapProfile()
    assert profile.count() == 0
    assert profile.write(debug=1).startswith(b"heap profile: 0: 0 [tracing=False]")


def test_heap_profile_with_tracing() -> None:
    was_tracing = tracemalloc.is_tracing()
    if not was_tracing:
        tracemalloc.start(5)
    try:
        keep = [bytearray(1024) for _ in range(50)]
        profile = HeapProfile()
        assert profile.count() > 0
        text = profile.write(debug=1).decode()
        assert "test_process_introspection.py" in text
        assert profile.write(debug=0)[:2] == b"\x1f\x8b"
        del keep
    finally:
        if not was_tracing:
            tracemalloc.stop()


def test_lookup_symbol_for_live_function(introspection: ProcessIntrospection) -> None:
    address = id(test_cmdline_is_argv.__code__)
    assert introspection.lookup_symbol(address) == f"{__name__}.test_cmdline_is_argv"


def test_lookup_symbols_resolves_batch(introspection: ProcessIntrospection) -> None:
    address = id(test_cmdline_is_argv.__code__)
    names = introspection.lookup_symbols([address, 1, 2, 3])
    assert names == {address: f"{__name__}.test_cmdline_is_argv"}


def test_heap_count_reuses_recent_snapshot(monkeypatch) -> None:
    was_tracing = tracemalloc.is_tracing()
    if not was_tracing:
        tracemalloc.start()
    snapshots = []
    real_take_snapshot = tracemalloc.take_snapshot

    def counting_take_snapshot():
        snapshots.append(1)
        return real_take_snapshot()

    monkeypatch.setattr(tracemalloc, "take_snapshot", counting_take_snapshot)
    now = [100.0]
    try:
        profile = HeapProfile(count_ttl=5.0, clock=lambda: now[0])
        first = profile.count()
        assert profile.count() == first
        assert len(snapshots) == 1
        now[0] += 5.0
        profile.count()
        assert len(snapshots) == 2
    finally:
        if not was_tracing:
            tracemalloc.stop()
