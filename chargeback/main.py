from __future__ import annotations

import logging
import os
import sys
import tracemalloc

from .config import load_config
from .pprof import new_pprof_server


def main() -> None:
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config = load_config()
    if config.tracemalloc_frames and not tracemalloc.is_tracing():
        tracemalloc.start(config.tracemalloc_frames)

    server = new_pprof_server(config)
    print(f"[pprof] serving profiles on http://{config.address}/debug/pprof/")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.shutdown()
    print("[pprof] shutting down")


def run() -> None:  # pragma: no cover - cli entry point
    try:
        main()
    except Exception as exc:  # noqa: BLE001
        print(f"[pprof] fatal error: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":  # pragma: no cover - cli entry point
    run()
