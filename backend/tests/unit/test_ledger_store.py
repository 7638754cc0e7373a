"""Unit tests for ledger store error mapping."""
import asyncio
from types import SimpleNamespace

import pytest
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError

from loyalty_dao.errors import Conflict, StoreUnavailable, error_payload
from loyalty_dao.models.organization import Organization
from loyalty_dao.services.ledger import LedgerStore


async def _raise(exc: Exception):
    raise exc


class TestLedgerStoreCalls:
    """Tests for how driver failures surface from the ledger store"""

    @pytest.mark.asyncio
    async def test_slow_call_times_out_as_store_unavailable(self):
        store = LedgerStore(SimpleNamespace(), timeout=0.01)

        with pytest.raises(StoreUnavailable) as exc_info:
            await store._call(asyncio.sleep(1), "get dao_proposals")

        assert exc_info.value.context["operation"] == "get dao_proposals"
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    @pytest.mark.parametrize("exc", [
        OperationalError("SELECT 1", {}, Exception("database is locked")),
        InterfaceError("SELECT 1", {}, Exception("connection closed")),
    ])
    async def test_driver_failure_is_store_unavailable(self, exc):
        store = LedgerStore(SimpleNamespace(), timeout=1.0)

        with pytest.raises(StoreUnavailable):
            await store._call(_raise(exc), "update dao_proposals")

    @pytest.mark.asyncio
    async def test_constraint_violation_is_conflict(self):
        store = LedgerStore(SimpleNamespace(), timeout=1.0)
        exc = IntegrityError("INSERT INTO dao_votes", {}, Exception("UNIQUE constraint failed"))

        with pytest.raises(Conflict):
            await store._call(_raise(exc), "insert dao_votes")

    @pytest.mark.asyncio
    async def test_lookup_on_unreachable_database(self):
        db = SimpleNamespace(
            execute=lambda stmt: _raise(OperationalError("SELECT", {}, Exception("unable to open database")))
        )
        store = LedgerStore(db, timeout=1.0)

        with pytest.raises(StoreUnavailable) as exc_info:
            await store.get(Organization, "dao-1")

        payload = error_payload(exc_info.value, path="/api/v1/daos/dao-1")
        assert payload["retryable"] is True
        assert payload["path"] == "/api/v1/daos/dao-1"
