from __future__ import annotations

import threading
import time

import pytest

from chargeback.errors import ProfilerBusyError
from chargeback.profiling.cpu import CpuSampler, thread_cpu_ns
from chargeback.profiling.stacks import SymbolTable
from pprof_decode import decode_profile


def spin_for_profile(stop: threading.Event) -> None:
    total = 0
    while not stop.is_set():
        for i in range(10_000):
            total += i * i


def test_thread_cpu_clock_advances_for_busy_thread() -> None:
    start = thread_cpu_ns(threading.get_ident())
    if start is None:
        pytest.skip("per-thread CPU clocks unavailable")
    deadline = time.monotonic() + 0.05
    while time.monotonic() < deadline:
        pass
    assert thread_cpu_ns(threading.get_ident()) > start


def test_sampler_attributes_cpu_to_busy_thread() -> None:
    stop = threading.Event()
    worker = threading.Thread(target=spin_for_profile, args=(stop,), name="spinner")
    worker.start()
    symbols = SymbolTable()
    try:
        blob = CpuSampler(hz=200, symbols=symbols).run_for(0.5)
    finally:
        stop.set()
        worker.join()

    profile = decode_profile(blob)
    assert profile["sample_types"] == [("samples", "count"), ("cpu", "nanoseconds")]
    assert profile["period"] == 5_000_000
    assert profile["duration_nanos"] > 0
    names = {frame[0] for stack, _, _ in profile["samples"] for frame in stack}
    assert any(name.endswith("spin_for_profile") for name in names)
    assert all(values[0] > 0 and values[1] > 0 for _, values, _ in profile["samples"])
    addresses = {frame[2] for stack, _, _ in profile["samples"] for frame in stack}
    assert any((symbols.lookup(a) or "").endswith("spin_for_profile") for a in addresses)


def test_only_one_cpu_profile_at_a_time() -> None:
    first = CpuSampler(hz=50)
    first.start()
    try:
        with pytest.raises(ProfilerBusyError):
            CpuSampler(hz=50).start()
    finally:
        first.stop()
    second = CpuSampler(hz=50)
    second.start()
    second.stop()


def test_sampling_rate_must_be_positive() -> None:
    with pytest.raises(ValueError):
        CpuSampler(hz=0)
