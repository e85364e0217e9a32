from __future__ import annotations

import gc
import sys
from typing import Dict, Iterable, List, Optional

from ..ports.introspection import NamedProfile, RuntimeIntrospection
from ..profiling.cpu import CpuSampler
from ..profiling.stacks import SymbolTable
from ..profiling.trace import TraceRecorder
from .profiles import HeapProfile, ThreadsProfile

# shared by every provider so addresses from any profile stay resolvable
SYMBOLS = SymbolTable()


class ProcessIntrospection(RuntimeIntrospection):
    """Introspection backed by the running interpreter."""

    def __init__(
        self,
        sample_hz: int = 100,
        max_trace_events: int = 1_000_000,
        symbols: Optional[SymbolTable] = None,
    ) -> None:
        self.sample_hz = sample_hz
        self.max_trace_events = max_trace_events
        self.symbols = symbols if symbols is not None else SYMBOLS
        self._profiles: List[NamedProfile] = [
            HeapProfile(),
            ThreadsProfile(self.symbols),
        ]

    def cmdline(self) -> List[str]:
        return list(sys.argv)

    def profiles(self) -> List[NamedProfile]:
        return list(self._profiles)

    def cpu_profile(self, seconds: float) -> bytes:
        return CpuSampler(self.sample_hz, self.symbols).run_for(seconds)

    def trace(self, seconds: float) -> bytes:
        return TraceRecorder(self.max_trace_events).run_for(seconds)

    def lookup_symbol(self, address: int) -> Optional[str]:
        return self.symbols.lookup(address)

    def lookup_symbols(self, addresses: Iterable[int]) -> Dict[int, str]:
        return self.symbols.lookup_many(addresses)

    def collect_garbage(self) -> None:
        gc.collect()


__all__ = ["ProcessIntrospection", "SYMBOLS"]
