from __future__ import annotations

import ipaddress
import os
import pathlib
from dataclasses import dataclass
from typing import Optional

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 6060


def _load_dotenv_if_present() -> None:
    # Optional, no dependency: load simple KEY=VALUE lines
    env_path = pathlib.Path(__file__).parent / ".env"
    if env_path.exists():
        for line in env_path.read_text().splitlines():
            line = line.strip()
            if not line or line.startswith('#'):
                continue
            if '=' in line:
                k, v = line.split('=', 1)
                os.environ.setdefault(k.strip(), v.strip())


@dataclass
class PprofConfig:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    sample_hz: int = 100
    write_timeout: Optional[float] = None
    max_trace_events: int = 1_000_000
    tracemalloc_frames: int = 0

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"


def load_config() -> PprofConfig:
    _load_dotenv_if_present()
    host = os.environ.get("PPROF_HOST", DEFAULT_HOST)
    port = _coerce_port(os.environ.get("PPROF_PORT", str(DEFAULT_PORT)))
    sample_hz = _coerce_positive_int("PPROF_SAMPLE_HZ", os.environ.get("PPROF_SAMPLE_HZ", "100"))
    max_events = _coerce_positive_int(
        "PPROF_MAX_TRACE_EVENTS", os.environ.get("PPROF_MAX_TRACE_EVENTS", "1000000")
    )
    frames = int(os.environ.get("PPROF_TRACEMALLOC_FRAMES", "0"))
    if frames < 0:
        raise ValueError("PPROF_TRACEMALLOC_FRAMES must not be negative")

    raw_timeout = os.environ.get("PPROF_WRITE_TIMEOUT", "").strip()
    write_timeout = float(raw_timeout) if raw_timeout else None
    if write_timeout is not None and write_timeout <= 0:
        write_timeout = None

    if not _is_loopback(host):
        raise ValueError(f"PPROF_HOST must be an IPv4 loopback address, got {host!r}")

    return PprofConfig(
        host=host,
        port=port,
        sample_hz=sample_hz,
        write_timeout=write_timeout,
        max_trace_events=max_events,
        tracemalloc_frames=frames,
    )


def _is_loopback(host: str) -> bool:
    if host == "localhost":
        return True
    try:
        return ipaddress.IPv4Address(host).is_loopback
    except ValueError:
        return False


def _coerce_port(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"invalid port number: {raw}") from exc
    if value < 0 or value > 65535:
        raise ValueError(f"invalid port number: {raw}")
    return value


def _coerce_positive_int(name: str, raw: str) -> int:
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc
    if value <= 0:
        raise ValueError(f"{name} must be positive")
    return value


__all__ = ["PprofConfig", "load_config", "DEFAULT_HOST", "DEFAULT_PORT"]
