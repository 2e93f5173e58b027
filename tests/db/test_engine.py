"""Engine lifecycle and transactional scope."""

import pytest
from sqlalchemy import func, select

from crm_kernel.db import get_engine, get_session, session_scope
from crm_kernel.db.engine import reset_engine
from crm_kernel.services.sequence_service import SequenceCounter, SequenceService


class TestUninitialized:

    def test_get_engine_requires_init(self):
        reset_engine()
        with pytest.raises(RuntimeError, match="not initialized"):
            get_engine()

    def test_get_session_requires_init(self):
        reset_engine()
        with pytest.raises(RuntimeError, match="not initialized"):
            get_session()


class TestSessionScope:

    def _count(self):
        with session_scope() as session:
            return session.execute(select(func.count()).select_from(SequenceCounter)).scalar_one()

    def test_commits_on_success(self, db_engine):
        with session_scope() as session:
            SequenceService(session).next_value("scoped")
        assert self._count() == 1

    def test_rolls_back_on_error(self, db_engine, captured_logs):
        with pytest.raises(ZeroDivisionError):
            with session_scope() as session:
                SequenceService(session).next_value("scoped")
                1 / 0

        assert self._count() == 0
        assert any(r["message"] == "transaction_rolled_back" for r in captured_logs())
