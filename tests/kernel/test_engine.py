"""
Tests for voucher_kernel.db.engine.

Validates transactional scope semantics and the uninitialized-engine
guard.
"""

import pytest
from sqlalchemy import inspect, select

from voucher_kernel.db.engine import (
    get_engine,
    get_session,
    reset_engine,
    session_scope,
)
from voucher_kernel.services.sequence_service import SequenceCounter, SequenceService


def _counter_value(name: str) -> int | None:
    session = get_session()
    try:
        return session.execute(
            select(SequenceCounter.current_value).where(SequenceCounter.name == name)
        ).scalar_one_or_none()
    finally:
        session.close()


class TestSessionScope:
    def test_commits_on_exit(self, session_factory):
        with session_scope() as session:
            SequenceService(session).next_value("scoped")

        assert _counter_value("scoped") == 1

    def test_rolls_back_and_reraises(self, session_factory):
        with pytest.raises(RuntimeError):
            with session_scope() as session:
                SequenceService(session).next_value("scoped")
                raise RuntimeError("boom")

        assert _counter_value("scoped") is None


class TestTables:
    def test_all_models_registered(self, session_factory):
        tables = set(inspect(get_engine()).get_table_names())
        assert {
            "sequence_counters",
            "stores",
            "catalog_options",
            "purchase_orders",
            "purchase_items",
            "voucher_details",
        } <= tables


class TestUninitialized:
    def test_get_engine_raises(self):
        reset_engine()
        with pytest.raises(RuntimeError, match="not initialized"):
            get_engine()

    def test_get_session_raises(self):
        reset_engine()
        with pytest.raises(RuntimeError, match="not initialized"):
            get_session()
