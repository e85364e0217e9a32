"""Runtime profilers and the pprof wire encoder."""

from .cpu import CpuSampler
from .proto import FrameInfo, ProfileBuilder
from .stacks import SymbolTable, current_stacks, walk_stack
from .trace import TraceRecorder

__all__ = [
    "CpuSampler",
    "FrameInfo",
    "ProfileBuilder",
    "SymbolTable",
    "TraceRecorder",
    "current_stacks",
    "walk_stack",
]
