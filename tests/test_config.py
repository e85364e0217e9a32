from __future__ import annotations

import pytest

from chargeback.config import PprofConfig, load_config


def _clear_pprof_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in (
        "PPROF_HOST",
        "PPROF_PORT",
        "PPROF_SAMPLE_HZ",
        "PPROF_WRITE_TIMEOUT",
        "PPROF_MAX_TRACE_EVENTS",
        "PPROF_TRACEMALLOC_FRAMES",
    ):
        monkeypatch.delenv(key, raising=False)


def test_default_config_binds_loopback_6060() -> None:
    cfg = PprofConfig()
    assert cfg.address == "127.0.0.1:6060"
    assert cfg.write_timeout is None


def test_load_config_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_pprof_env(monkeypatch)
    cfg = load_config()
    assert cfg == PprofConfig()


def test_load_config_reads_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_pprof_env(monkeypatch)
    monkeypatch.setenv("PPROF_HOST", "127.0.0.2")
    monkeypatch.setenv("PPROF_PORT", "0")
    monkeypatch.setenv("PPROF_SAMPLE_HZ", "250")
    monkeypatch.setenv("PPROF_WRITE_TIMEOUT", "15")
    monkeypatch.setenv("PPROF_MAX_TRACE_EVENTS", "5000")
    monkeypatch.setenv("PPROF_TRACEMALLOC_FRAMES", "10")
    cfg = load_config()
    assert cfg.address == "127.0.0.2:0"
    assert cfg.sample_hz == 250
    assert cfg.write_timeout == 15.0
    assert cfg.max_trace_events == 5000
    assert cfg.tracemalloc_frames == 10


def test_zero_write_timeout_means_unlimited(monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_pprof_env(monkeypatch)
    monkeypatch.setenv("PPROF_WRITE_TIMEOUT", "0")
    assert load_config().write_timeout is None


def test_localhost_is_accepted(monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_pprof_env(monkeypatch)
    monkeypatch.setenv("PPROF_HOST", "localhost")
    assert load_config().host == "localhost"


@pytest.mark.parametrize("host", ["0.0.0.0", "10.1.2.3", "example.com"])
def test_non_loopback_host_raises(monkeypatch: pytest.MonkeyPatch, host: str) -> None:
    _clear_pprof_env(monkeypatch)
    monkeypatch.setenv("PPROF_HOST", host)
    with pytest.raises(ValueError):
        load_config()


@pytest.mark.parametrize("port", ["-1", "65536", "http"])
def test_invalid_port_raises(monkeypatch: pytest.MonkeyPatch, port: str) -> None:
    _clear_pprof_env(monkeypatch)
    monkeypatch.setenv("PPROF_PORT", port)
    with pytest.raises(ValueError):
        load_config()


def test_non_positive_sample_rate_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    _clear_pprof_env(monkeypatch)
    monkeypatch.setenv("PPROF_SAMPLE_HZ", "0")
    with pytest.raises(ValueError):
        load_config()
