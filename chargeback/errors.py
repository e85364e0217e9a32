from __future__ import annotations


class ProfilingError(Exception):
    """Base error raised while collecting runtime profiling data."""


class ProfilerBusyError(ProfilingError):
    """A process-wide profiler is already running."""


class UnknownProfileError(ProfilingError):
    def __init__(self, name: str) -> None:
        super().__init__(f"unknown profile {name!r}")
        self.name = name


class InvalidParameterError(ProfilingError):
    """A request parameter could not be interpreted."""
