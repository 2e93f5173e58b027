"""
First-use race tests.

Two writers can both see "no row yet" and both try to insert the same
unique row: the tenant's None-Direct distributor, or a sequence counter.
The loser hits the unique constraint, rolls back its savepoint and re-reads
the winner's row.

These tests use sequential simulation: the competing row is committed
first and the lookup is forced to miss once, so the insert collides.

Run with: pytest tests/concurrency/test_first_use_races.py -v
Skip with: pytest -m "not slow_locks"
"""

from uuid import uuid4

import pytest
from sqlalchemy import func, select

from crm_kernel.services.sequence_service import SequenceCounter, SequenceService
from crm_modules.opportunity.models import AccountType
from crm_modules.opportunity.orm import AccountModel
from crm_modules.opportunity.sentinel import (
    NONE_DIRECT_NAME,
    NONE_DIRECT_SYSTEM_KEY,
    SentinelDistributorResolver,
)

pytestmark = pytest.mark.slow_locks


def _miss_first_lookup(real):
    """Side effect that reports "not found" once, then defers to ``real``."""
    calls = []

    def lookup(self, *args):
        calls.append(args)
        if len(calls) == 1:
            return None
        return real(self, *args)

    return lookup


class TestSentinelFirstUseRace:

    def _competitor_sentinel(self, session, tenant_id, actor_id) -> AccountModel:
        winner = AccountModel(
            tenant_id=tenant_id,
            name=NONE_DIRECT_NAME,
            account_type=AccountType.DISTRIBUTOR.value,
            system_key=NONE_DIRECT_SYSTEM_KEY,
            active=True,
            created_by_id=actor_id,
        )
        session.add(winner)
        session.commit()
        return winner

    def _sentinel_count(self, session, tenant_id) -> int:
        return session.execute(
            select(func.count())
            .select_from(AccountModel)
            .where(
                AccountModel.tenant_id == tenant_id,
                AccountModel.system_key == NONE_DIRECT_SYSTEM_KEY,
            )
        ).scalar_one()

    def test_loser_returns_winner(self, session, tenant_id, actor_id, monkeypatch):
        winner = self._competitor_sentinel(session, tenant_id, actor_id)
        monkeypatch.setattr(
            SentinelDistributorResolver, "_find",
            _miss_first_lookup(SentinelDistributorResolver._find),
        )

        ref = SentinelDistributorResolver(session, tenant_id, actor_id).resolve_none_direct()
        session.commit()

        assert ref.id == winner.id
        assert self._sentinel_count(session, tenant_id) == 1

    def test_race_logged(self, session, tenant_id, actor_id, monkeypatch, captured_logs):
        self._competitor_sentinel(session, tenant_id, actor_id)
        monkeypatch.setattr(
            SentinelDistributorResolver, "_find",
            _miss_first_lookup(SentinelDistributorResolver._find),
        )

        SentinelDistributorResolver(session, tenant_id, actor_id).resolve_none_direct()

        events = [r["message"] for r in captured_logs()]
        assert "none_direct_distributor_race_retry" in events
        assert "none_direct_distributor_created" not in events

    def test_loser_keeps_outer_transaction(self, session, tenant_id, actor_id, monkeypatch):
        """Only the savepoint is rolled back; earlier work in the transaction survives."""
        self._competitor_sentinel(session, tenant_id, actor_id)
        pending = AccountModel(
            tenant_id=tenant_id,
            name="Pending Vendor",
            account_type=AccountType.VENDOR.value,
            active=True,
            created_by_id=actor_id,
        )
        session.add(pending)
        session.flush()
        monkeypatch.setattr(
            SentinelDistributorResolver, "_find",
            _miss_first_lookup(SentinelDistributorResolver._find),
        )

        SentinelDistributorResolver(session, tenant_id, actor_id).resolve_none_direct()
        session.commit()

        assert session.get(AccountModel, pending.id) is not None
        assert self._sentinel_count(session, tenant_id) == 1

    def test_other_tenant_unaffected(self, session, tenant_id, other_tenant_id, actor_id, monkeypatch):
        self._competitor_sentinel(session, tenant_id, actor_id)
        monkeypatch.setattr(
            SentinelDistributorResolver, "_find",
            _miss_first_lookup(SentinelDistributorResolver._find),
        )

        ours = SentinelDistributorResolver(session, tenant_id, actor_id).resolve_none_direct()
        theirs = SentinelDistributorResolver(session, other_tenant_id, actor_id).resolve_none_direct()
        session.commit()

        assert ours.id != theirs.id
        assert self._sentinel_count(session, tenant_id) == 1
        assert self._sentinel_count(session, other_tenant_id) == 1


class TestSequenceFirstUseRace:

    def _competitor_counter(self, session, name: str) -> None:
        session.add(SequenceCounter(name=name, current_value=1))
        session.commit()

    def test_loser_allocates_after_winner(self, session, monkeypatch):
        name = f"race:{uuid4()}"
        self._competitor_counter(session, name)
        monkeypatch.setattr(
            SequenceService, "_locked_counter",
            _miss_first_lookup(SequenceService._locked_counter),
        )

        seq = SequenceService(session)
        values = [seq.next_value(name) for _ in range(3)]
        session.commit()

        assert values == [2, 3, 4]
        assert len(set(values)) == len(values)
        assert seq.current_value(name) == 4

    def test_single_counter_row(self, session, monkeypatch):
        name = f"race:{uuid4()}"
        self._competitor_counter(session, name)
        monkeypatch.setattr(
            SequenceService, "_locked_counter",
            _miss_first_lookup(SequenceService._locked_counter),
        )

        SequenceService(session).next_value(name)
        session.commit()

        rows = session.execute(
            select(func.count()).select_from(SequenceCounter).where(SequenceCounter.name == name)
        ).scalar_one()
        assert rows == 1

    def test_race_logged(self, session, monkeypatch, captured_logs):
        name = f"race:{uuid4()}"
        self._competitor_counter(session, name)
        monkeypatch.setattr(
            SequenceService, "_locked_counter",
            _miss_first_lookup(SequenceService._locked_counter),
        )

        SequenceService(session).next_value(name)

        retries = [r for r in captured_logs() if r["message"] == "sequence_counter_race_retry"]
        assert retries[0]["sequence_name"] == name
