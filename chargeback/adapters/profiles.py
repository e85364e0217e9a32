from __future__ import annotations

import linecache
import threading
import time
import tracemalloc
from collections import Counter
from typing import Callable, Iterable, List, Optional, Tuple

from ..ports.introspection import NamedProfile
from ..profiling.proto import FrameInfo, ProfileBuilder
from ..profiling.stacks import SymbolTable, current_stacks, format_stack, thread_names


class ThreadsProfile(NamedProfile):
    name = "threads"
    description = "Stack traces of all current threads. Use debug=2 as a query parameter to export in the same format as an unrecovered exception."

    def __init__(self, symbols: Optional[SymbolTable] = None) -> None:
        self._symbols = symbols

    def count(self) -> int:
        return threading.active_count()

    def write(self, debug: int = 0) -> bytes:
        stacks = current_stacks(self._symbols)
        names = thread_names()
        if debug <= 0:
            builder = ProfileBuilder([("threads", "count")], period_type=("threads", "count"), period=1)
            for ident, stack in stacks.items():
                builder.add_sample(stack, [1], {"thread": names.get(ident, str(ident))})
            return builder.encode()
        if debug == 1:
            return self._write_grouped(stacks).encode()
        return self._write_full(stacks, names).encode()

    def _write_grouped(self, stacks) -> str:
        grouped: Counter[Tuple[FrameInfo, ...]] = Counter(tuple(s) for s in stacks.values())
        out = [f"threads profile: total {len(stacks)}\n"]
        for stack, n in grouped.most_common():
            out.append(f"{n} @ " + " ".join(hex(frame.address) for frame in stack) + "\n")
            for frame in stack:
                out.append(f"#\t{frame.address:#x}\t{frame.name}+{frame.line - frame.start_line}\t{frame.filename}:{frame.line}\n")
            out.append("\n")
        return "".join(out)

    def _write_full(self, stacks, names) -> str:
        out = []
        for ident, stack in stacks.items():
            out.append(f"thread {ident} [{names.get(ident, 'unknown')}]:\n")
            out.append(format_stack(stack))
            out.append("\n")
        return "".join(out)


class HeapProfile(NamedProfile):
    name = "heap"
    description = "Live memory allocations traced by tracemalloc. Start the process with PYTHONTRACEMALLOC or PPROF_TRACEMALLOC_FRAMES to enable. You can specify the gc GET parameter to run GC before taking the heap sample, or seconds to get the allocations made over that many seconds."
    supports_delta = True

    def __init__(
        self,
        count_ttl: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._count_ttl = count_ttl
        self._sleep = sleep
        self._clock = clock
        self._cached_count: Optional[Tuple[float, int]] = None

    def count(self) -> int:
        if not tracemalloc.is_tracing():
            return 0
        # a snapshot copies every trace, so the index reuses a recent one
        now = self._clock()
        if self._cached_count is not None and now - self._cached_count[0] < self._count_ttl:
            return self._cached_count[1]
        count = len(tracemalloc.take_snapshot().traces)
        self._cached_count = (now, count)
        return count

    def write(self, debug: int = 0) -> bytes:
        if not tracemalloc.is_tracing():
            stats: List[tracemalloc.Statistic] = []
        else:
            stats = _snapshot().statistics("traceback")
        if debug <= 0:
            return self._write_proto((s.traceback, s.count, s.size) for s in stats)
        return self._write_text(stats).encode()

    def write_delta(self, seconds: int) -> bytes:
        """Heap change over ``seconds`` as per-traceback count and size diffs."""

        if not tracemalloc.is_tracing():
            self._sleep(seconds)
            return self._write_proto([], duration=seconds)
        before = _snapshot()
        self._sleep(seconds)
        after = _snapshot()
        diffs = [
            (d.traceback, d.count_diff, d.size_diff)
            for d in after.compare_to(before, "traceback")
            if d.count_diff or d.size_diff
        ]
        return self._write_proto(diffs, duration=seconds)

    def _write_proto(
        self,
        rows: Iterable[Tuple[tracemalloc.Traceback, int, int]],
        duration: float = 0,
    ) -> bytes:
        builder = ProfileBuilder(
            [("inuse_objects", "count"), ("inuse_space", "bytes")],
            period_type=("space", "bytes"),
            period=1,
        )
        builder.duration_nanos = int(duration * 1e9)
        for traceback, count, size in rows:
            # tracemalloc keeps the most recent call last
            stack = [
                FrameInfo(
                    name=f"{frame.filename}:{frame.lineno}",
                    system_name=linecache.getline(frame.filename, frame.lineno).strip(),
                    filename=frame.filename,
                    start_line=0,
                    line=frame.lineno,
                )
                for frame in reversed(traceback)
            ]
            builder.add_sample(stack, [count, size])
        return builder.encode()

    def _write_text(self, stats: List[tracemalloc.Statistic]) -> str:
        total_size = sum(s.size for s in stats)
        total_count = sum(s.count for s in stats)
        out = [f"heap profile: {total_count}: {total_size} [tracing={tracemalloc.is_tracing()}]\n"]
        for stat in stats:
            out.append(f"{stat.count}: {stat.size} @\n")
            for line in stat.traceback.format():
                out.append(f"#{line}\n")
        if tracemalloc.is_tracing():
            current, peak = tracemalloc.get_traced_memory()
            out.append(f"\n# traced_memory current={current} peak={peak}\n")
        return "".join(out)


def _snapshot() -> tracemalloc.Snapshot:
    return tracemalloc.take_snapshot().filter_traces([tracemalloc.Filter(False, tracemalloc.__file__)])


__all__ = ["HeapProfile", "ThreadsProfile"]
