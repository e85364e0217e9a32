from __future__ import annotations

import gc
import sys
import threading

import pytest

from chargeback.profiling.stacks import SymbolTable, current_stacks, walk_stack


def named_caller(symbols: SymbolTable):
    return walk_stack(sys._getframe(), symbols)


def test_walk_stack_is_innermost_first() -> None:
    symbols = SymbolTable()
    stack = named_caller(symbols)
    assert stack[0].name == f"{__name__}.named_caller"
    assert stack[0].system_name == "named_caller"
    assert stack[1].name.endswith("test_walk_stack_is_innermost_first")
    assert symbols.lookup(stack[0].address) == f"{__name__}.named_caller"


def test_current_stacks_covers_live_threads() -> None:
    ready = threading.Event()
    release = threading.Event()

    def parked() -> None:
        ready.set()
        release.wait()

    worker = threading.Thread(target=parked)
    worker.start()
    ready.wait()
    try:
        stacks = current_stacks()
    finally:
        release.set()
        worker.join()
    assert threading.get_ident() in stacks
    assert any(frame.system_name == "parked" for frame in stacks[worker.ident])


def test_current_stacks_excludes_requested_threads() -> None:
    me = threading.get_ident()
    assert me not in current_stacks(exclude={me})


def test_symbol_table_falls_back_to_live_functions() -> None:
    symbols = SymbolTable()
    assert symbols.lookup(id(named_caller.__code__)) == f"{__name__}.named_caller"
    assert symbols.lookup(1) is None


def test_symbol_table_evicts_oldest_entry() -> None:
    symbols = SymbolTable(max_entries=2)
    symbols.record(1, "a")
    symbols.record(2, "b")
    symbols.record(3, "c")
    assert len(symbols) == 2
    assert symbols.lookup(3) == "c"


def test_symbol_table_record_replaces_reused_address() -> None:
    symbols = SymbolTable()
    symbols.record(1, "freed.function")
    symbols.record(1, "new.function")
    assert symbols.lookup(1) == "new.function"
    assert len(symbols) == 1


def test_lookup_many_scans_live_functions_once(monkeypatch) -> None:
    calls = []
    real_get_objects = gc.get_objects

    def counting_get_objects(*args):
        calls.append(args)
        return real_get_objects(*args)

    monkeypatch.setattr(gc, "get_objects", counting_get_objects)
    symbols = SymbolTable()
    symbols.record(0x10, "app.recorded")
    live = id(named_caller.__code__)
    names = symbols.lookup_many([0x10, live, *range(1, 2001)])
    assert len(calls) == 1
    assert names == {0x10: "app.recorded", live: f"{__name__}.named_caller"}


def test_lookup_many_skips_scan_when_all_recorded(monkeypatch) -> None:
    monkeypatch.setattr(gc, "get_objects", lambda *args: pytest.fail("unexpected heap scan"))
    symbols = SymbolTable()
    symbols.record(0x10, "app.recorded")
    assert symbols.lookup_many([0x10]) == {0x10: "app.recorded"}
