from __future__ import annotations

"""Execution tracing through the interpreter's profile hook.

The recorder installs a hook on every thread for the duration of the trace
and stores one begin/end event per Python or C function call. Output is the
Trace Event Format understood by Perfetto and ``chrome://tracing``,
gzip-compressed.
"""

import gzip
import json
import logging
import os
import threading
import time
from typing import Any, Dict, List, Optional, Tuple

from ..errors import ProfilerBusyError
from .stacks import function_name, thread_names

logger = logging.getLogger("chargeback.profiling.trace")

# one trace per process
_active = threading.Lock()

Event = Tuple[str, str, int, int]


class TraceRecorder:
    def __init__(self, max_events: int = 1_000_000) -> None:
        if max_events <= 0:
            raise ValueError("max_events must be positive")
        self.max_events = max_events
        self.truncated = False
        self._events: List[Event] = []
        self._started_ns = 0
        self._stopped_ns = 0
        self._running = False

    def start(self) -> None:
        if not _active.acquire(blocking=False):
            raise ProfilerBusyError("tracing is already enabled")
        self._started_ns = time.perf_counter_ns()
        self._running = True
        threading.setprofile_all_threads(self._hook)
        logger.info("execution trace started")

    def stop(self) -> None:
        if not self._running:
            return
        threading.setprofile_all_threads(None)
        self._running = False
        self._stopped_ns = time.perf_counter_ns()
        _active.release()
        logger.info("execution trace stopped, %d events%s", len(self._events), " (truncated)" if self.truncated else "")

    def run_for(self, seconds: float) -> bytes:
        self.start()
        try:
            time.sleep(seconds)
        finally:
            self.stop()
        return self.encode()

    @property
    def events(self) -> List[Event]:
        return list(self._events)

    def _hook(self, frame, event: str, arg: Any) -> None:
        if not self._running:
            return
        if len(self._events) >= self.max_events:
            self.truncated = True
            return
        if event == "call":
            phase, name = "B", function_name(frame)
        elif event == "return":
            phase, name = "E", function_name(frame)
        elif event == "c_call":
            phase, name = "B", _c_function_name(arg)
        elif event in ("c_return", "c_exception"):
            phase, name = "E", _c_function_name(arg)
        else:
            return
        self._events.append((phase, name, time.perf_counter_ns(), threading.get_ident()))

    def to_dict(self) -> Dict[str, Any]:
        pid = os.getpid()
        trace_events: List[Dict[str, Any]] = []
        seen_threads = set()
        names = thread_names()
        for phase, name, ts_ns, tid in self._events:
            if tid not in seen_threads:
                seen_threads.add(tid)
                trace_events.append(
                    {
                        "name": "thread_name",
                        "ph": "M",
                        "pid": pid,
                        "tid": tid,
                        "args": {"name": names.get(tid, str(tid))},
                    }
                )
            trace_events.append(
                {
                    "name": name,
                    "ph": phase,
                    "ts": (ts_ns - self._started_ns) / 1000.0,
                    "pid": pid,
                    "tid": tid,
                }
            )
        return {
            "traceEvents": trace_events,
            "displayTimeUnit": "ns",
            "otherData": {
                "duration_ns": max(0, self._stopped_ns - self._started_ns),
                "truncated": self.truncated,
                "event_count": len(self._events),
            },
        }

    def encode(self) -> bytes:
        return gzip.compress(json.dumps(self.to_dict(), separators=(",", ":")).encode())


def _c_function_name(func: Any) -> str:
    module: Optional[str] = getattr(func, "__module__", None)
    qualname = getattr(func, "__qualname__", None) or getattr(func, "__name__", repr(func))
    return f"{module}.{qualname}" if module else qualname


__all__ = ["TraceRecorder"]
