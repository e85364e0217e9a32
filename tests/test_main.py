from __future__ import annotations

import pytest

from chargeback import main as cli


class StubServer:
    def __init__(self) -> None:
        self.served = False
        self.shut_down = False

    def serve_forever(self) -> None:
        self.served = True
        raise KeyboardInterrupt

    def shutdown(self) -> None:
        self.shut_down = True


def test_main_serves_until_interrupted(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    for key in ("PPROF_HOST", "PPROF_PORT", "PPROF_TRACEMALLOC_FRAMES"):
        monkeypatch.delenv(key, raising=False)
    stub = StubServer()
    seen = {}

    def fake_builder(config):
        seen["address"] = config.address
        return stub

    monkeypatch.setattr(cli, "new_pprof_server", fake_builder)
    cli.main()

    assert seen["address"] == "127.0.0.1:6060"
    assert stub.served and stub.shut_down
    out = capsys.readouterr().out
    assert "http://127.0.0.1:6060/debug/pprof/" in out
