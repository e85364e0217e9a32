from __future__ import annotations

import logging
import threading
import time
from collections import Counter
from typing import Dict, Optional, Tuple

from ..errors import ProfilerBusyError
from .proto import FrameInfo, ProfileBuilder
from .stacks import SymbolTable, current_stacks

logger = logging.getLogger("chargeback.profiling.cpu")

# one CPU profile per process
_active = threading.Lock()


def thread_cpu_ns(ident: int) -> Optional[int]:
    """CPU time consumed by thread ``ident``, or ``None`` when unavailable."""

    try:
        clock_id = time.pthread_getcpuclockid(ident)
        return time.clock_gettime_ns(clock_id)
    except (AttributeError, OSError):
        return None


class CpuSampler:
    """Periodically samples every thread's stack.

    Each sample is weighted by the CPU time the thread consumed since the
    previous tick. Threads that used no CPU are left out, so a thread parked
    in ``sleep`` or ``recv`` does not show up. Where per-thread CPU clocks are
    not available every live stack counts for one sampling period.
    """

    def __init__(self, hz: int = 100, symbols: Optional[SymbolTable] = None) -> None:
        if hz <= 0:
            raise ValueError("sampling rate must be positive")
        self.hz = hz
        self.period_ns = 1_000_000_000 // hz
        self.symbols = symbols
        self._counts: Counter[Tuple[FrameInfo, ...]] = Counter()
        self._cpu: Counter[Tuple[FrameInfo, ...]] = Counter()
        self._last_cpu: Dict[int, int] = {}
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._started_ns = 0
        self._stopped_ns = 0

    def start(self) -> None:
        if not _active.acquire(blocking=False):
            raise ProfilerBusyError("cpu profiling already in use")
        self._started_ns = time.time_ns()
        self._thread = threading.Thread(target=self._run, name="pprof-cpu-sampler", daemon=True)
        self._thread.start()
        logger.info("cpu profiling started at %d Hz", self.hz)

    def stop(self) -> None:
        if self._thread is None:
            return
        self._stop.set()
        self._thread.join()
        self._thread = None
        self._stopped_ns = time.time_ns()
        _active.release()
        logger.info("cpu profiling stopped, %d distinct stacks", len(self._counts))

    def run_for(self, seconds: float) -> bytes:
        self.start()
        try:
            time.sleep(seconds)
        finally:
            self.stop()
        return self.profile().encode()

    def tick(self, exclude: Optional[set[int]] = None) -> None:
        for ident, stack in current_stacks(self.symbols, exclude).items():
            if not stack:
                continue
            cpu_now = thread_cpu_ns(ident)
            if cpu_now is None:
                weight = self.period_ns
            else:
                previous = self._last_cpu.get(ident)
                self._last_cpu[ident] = cpu_now
                if previous is None:
                    continue
                weight = cpu_now - previous
                if weight <= 0:
                    continue
            key = tuple(stack)
            self._counts[key] += 1
            self._cpu[key] += weight

    def profile(self) -> ProfileBuilder:
        builder = ProfileBuilder(
            [("samples", "count"), ("cpu", "nanoseconds")],
            period_type=("cpu", "nanoseconds"),
            period=self.period_ns,
        )
        builder.time_nanos = self._started_ns or time.time_ns()
        builder.duration_nanos = max(0, (self._stopped_ns or time.time_ns()) - builder.time_nanos)
        for stack, count in self._counts.items():
            builder.add_sample(stack, [count, self._cpu[stack]])
        return builder

    def _run(self) -> None:
        own = {threading.get_ident()}
        interval = 1.0 / self.hz
        while not self._stop.wait(interval):
            self.tick(exclude=own)


__all__ = ["CpuSampler", "thread_cpu_ns"]
