# tests/unit/logging/test_log_context.py — v1
"""Tests for logging/context.py — contextual logging variables."""

from __future__ import annotations

from pulsecollect.logging.context import (
    clear_context,
    get_context,
    run_context,
    set_run_context,
    set_source_context,
)


class TestLogContext:
    def setup_method(self):
        clear_context()

    def teardown_method(self):
        clear_context()

    def test_initial_state(self):
        ctx = get_context()
        assert ctx.run_id is None
        assert ctx.source is None
        assert ctx.step is None

    def test_set_run_context(self):
        set_run_context("run1", "continue")
        ctx = get_context()
        assert ctx.run_id == "run1"
        assert ctx.step == "continue"

    def test_set_source_context(self):
        set_source_context("instagram")
        assert get_context().source == "instagram"
        set_source_context(None)
        assert get_context().source is None

    def test_as_dict_filters_none(self):
        set_run_context("run1")
        d = get_context().as_dict()
        assert d == {"run_id": "run1"}

    def test_run_context_restores_previous(self):
        set_run_context("outer", "start")
        with run_context("inner", "continue"):
            assert get_context().run_id == "inner"
            assert get_context().step == "continue"
        ctx = get_context()
        assert ctx.run_id == "outer"
        assert ctx.step == "start"

    def test_clear(self):
        set_run_context("run1", "start")
        set_source_context("x")
        clear_context()
        assert get_context().as_dict() == {}
