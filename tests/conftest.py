from __future__ import annotations

import gzip
from typing import Dict, Iterable, List, Optional
from urllib.parse import urlsplit

import pytest

from chargeback.errors import ProfilerBusyError
from chargeback.ports.introspection import NamedProfile, RuntimeIntrospection
from libs.python.http_core import HttpRequest


class StaticProfile(NamedProfile):
    def __init__(self, name: str, count: int = 3, supports_delta: bool = False) -> None:
        self.name = name
        self.description = f"{name} description"
        self.supports_delta = supports_delta
        self._count = count
        self.writes: List[int] = []
        self.delta_writes: List[int] = []

    def count(self) -> int:
        return self._count

    def write(self, debug: int = 0) -> bytes:
        self.writes.append(debug)
        if debug:
            return f"{self.name} debug={debug}\n".encode()
        return gzip.compress(self.name.encode())

    def write_delta(self, seconds: int) -> bytes:
        self.delta_writes.append(seconds)
        return gzip.compress(f"{self.name}-delta".encode())


class FakeIntrospection(RuntimeIntrospection):
    """In-memory provider recording every call made by the handlers."""

    def __init__(self) -> None:
        self.argv = ["/usr/bin/app", "--flag", "value"]
        self.named = [StaticProfile("threads", 4), StaticProfile("heap", 12, supports_delta=True)]
        self.symbols: Dict[int, str] = {0x1000: "app.main", 0x2000: "app.worker.run"}
        self.cpu_calls: List[float] = []
        self.trace_calls: List[float] = []
        self.symbol_batches: List[List[int]] = []
        self.gc_calls = 0
        self.busy = False

    def cmdline(self) -> List[str]:
        return list(self.argv)

    def profiles(self) -> List[NamedProfile]:
        return list(self.named)

    def cpu_profile(self, seconds: float) -> bytes:
        if self.busy:
            raise ProfilerBusyError("cpu profiling already in use")
        self.cpu_calls.append(seconds)
        return b"\x1f\x8bcpu"

    def trace(self, seconds: float) -> bytes:
        if self.busy:
            raise ProfilerBusyError("tracing is already enabled")
        self.trace_calls.append(seconds)
        return b"\x1f\x8btrace"

    def lookup_symbol(self, address: int) -> Optional[str]:
        return self.symbols.get(address)

    def lookup_symbols(self, addresses: Iterable[int]) -> Dict[int, str]:
        self.symbol_batches.append(list(addresses))
        return super().lookup_symbols(self.symbol_batches[-1])

    def collect_garbage(self) -> None:
        self.gc_calls += 1


def make_request(
    method: str,
    target: str,
    *,
    body: bytes = b"",
    write_timeout: Optional[float] = None,
) -> HttpRequest:
    parsed = urlsplit(target)
    return HttpRequest(
        method=method,
        target=target,
        path=parsed.path or "/",
        query=parsed.query,
        headers={},
        body=body,
        client=("127.0.0.1", 0),
        write_timeout=write_timeout,
    )


@pytest.fixture
def fake_introspection() -> FakeIntrospection:
    return FakeIntrospection()
