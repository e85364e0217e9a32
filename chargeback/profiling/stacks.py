from __future__ import annotations

import gc
import sys
import threading
import types
from typing import Dict, Iterable, List, Optional

from .proto import FrameInfo

MAX_STACK_DEPTH = 128


class SymbolTable:
    """Maps code-object addresses seen in profiles back to function names."""

    def __init__(self, max_entries: int = 65536) -> None:
        self._max_entries = max_entries
        self._names: Dict[int, str] = {}
        self._lock = threading.Lock()

    def record(self, address: int, name: str) -> None:
        with self._lock:
            # ids are reused once a code object is freed
            if address in self._names:
                self._names[address] = name
                return
            if len(self._names) >= self._max_entries:
                self._names.pop(next(iter(self._names)))
            self._names[address] = name

    def lookup(self, address: int) -> Optional[str]:
        with self._lock:
            name = self._names.get(address)
        if name is not None:
            return name
        return live_function_names().get(address)

    def lookup_many(self, addresses: Iterable[int]) -> Dict[int, str]:
        """Resolve ``addresses``, scanning live functions at most once."""

        resolved: Dict[int, str] = {}
        missing: List[int] = []
        with self._lock:
            for address in addresses:
                name = self._names.get(address)
                if name is None:
                    missing.append(address)
                else:
                    resolved[address] = name
        if missing:
            live = live_function_names()
            for address in missing:
                if address in live:
                    resolved[address] = live[address]
        return resolved

    def __len__(self) -> int:
        return len(self._names)


def live_function_names() -> Dict[int, str]:
    """Map ``id(code)`` to a qualified name for every live Python function."""

    names: Dict[int, str] = {}
    for obj in gc.get_objects():
        if isinstance(obj, types.FunctionType):
            names.setdefault(id(obj.__code__), f"{obj.__module__}.{obj.__qualname__}")
    return names


def function_name(frame: types.FrameType) -> str:
    code = frame.f_code
    module = frame.f_globals.get("__name__", "")
    qualname = code.co_qualname
    return f"{module}.{qualname}" if module else qualname


def walk_stack(
    frame: Optional[types.FrameType],
    symbols: Optional[SymbolTable] = None,
    max_depth: int = MAX_STACK_DEPTH,
) -> List[FrameInfo]:
    """Return the stack starting at ``frame``, innermost frame first."""

    stack: List[FrameInfo] = []
    while frame is not None and len(stack) < max_depth:
        code = frame.f_code
        name = function_name(frame)
        address = id(code)
        if symbols is not None:
            symbols.record(address, name)
        stack.append(
            FrameInfo(
                name=name,
                system_name=code.co_name,
                filename=code.co_filename,
                start_line=code.co_firstlineno,
                line=frame.f_lineno or 0,
                address=address,
            )
        )
        frame = frame.f_back
    return stack


def thread_names() -> Dict[int, str]:
    return {t.ident: t.name for t in threading.enumerate() if t.ident is not None}


def current_stacks(
    symbols: Optional[SymbolTable] = None,
    exclude: Optional[set[int]] = None,
) -> Dict[int, List[FrameInfo]]:
    """Snapshot the stack of every live thread keyed by thread ident."""

    exclude = exclude or set()
    frames = sys._current_frames()
    return {
        ident: walk_stack(frame, symbols)
        for ident, frame in frames.items()
        if ident not in exclude
    }


def format_stack(stack: List[FrameInfo]) -> str:
    lines = []
    for frame in stack:
        lines.append(f"\t{frame.name}\n\t\t{frame.filename}:{frame.line}\n")
    return "".join(lines)


__all__ = [
    "SymbolTable",
    "current_stacks",
    "format_stack",
    "function_name",
    "live_function_names",
    "thread_names",
    "walk_stack",
]
