from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional


class NamedProfile(ABC):
    """A snapshot profile served under ``/debug/pprof/<name>``."""

    name: str
    description: str
    supports_delta = False

    @abstractmethod
    def count(self) -> int:
        ...

    @abstractmethod
    def write(self, debug: int = 0) -> bytes:
        """Return the profile: gzipped pprof for ``debug=0``, text otherwise."""

    def write_delta(self, seconds: int) -> bytes:
        """Return a gzipped pprof of what changed over the next ``seconds``."""

        raise NotImplementedError(f"{self.name} does not support delta profiles")


class RuntimeIntrospection(ABC):
    """Access to process runtime state used by the profiling endpoints."""

    @abstractmethod
    def cmdline(self) -> List[str]:
        ...

    @abstractmethod
    def profiles(self) -> List[NamedProfile]:
        ...

    def lookup_profile(self, name: str) -> Optional[NamedProfile]:
        for profile in self.profiles():
            if profile.name == name:
                return profile
        return None

    @abstractmethod
    def cpu_profile(self, seconds: float) -> bytes:
        """Sample CPU usage for ``seconds`` and return a gzipped pprof profile.

        Raises :class:`~chargeback.errors.ProfilerBusyError` when another CPU
        profile is already running.
        """

    @abstractmethod
    def trace(self, seconds: float) -> bytes:
        """Record an execution trace for ``seconds`` and return it gzipped."""

    @abstractmethod
    def lookup_symbol(self, address: int) -> Optional[str]:
        ...

    def lookup_symbols(self, addresses: Iterable[int]) -> Dict[int, str]:
        """Resolve many addresses at once; unresolved ones are left out."""

        names: Dict[int, str] = {}
        for address in addresses:
            name = self.lookup_symbol(address)
            if name is not None:
                names[address] = name
        return names

    def collect_garbage(self) -> None:
        return None
