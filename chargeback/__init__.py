from .config import PprofConfig, load_config
from .pprof import new_pprof_mux, new_pprof_server

__all__ = [
    "PprofConfig",
    "load_config",
    "new_pprof_mux",
    "new_pprof_server",
]
