"""Execution coordinator: applies ratified changes exactly once."""
import enum
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

import structlog

from loyalty_dao.models.audit import GovernanceEventType
from loyalty_dao.models.change_request import ChangeRequest, ChangeRequestStatus
from loyalty_dao.models.database import utcnow
from loyalty_dao.models.governance import Proposal, ProposalStatus
from loyalty_dao.models.organization import Organization
from loyalty_dao.services.audit import AuditService
from loyalty_dao.services.config_store import ConfigurationStore
from loyalty_dao.services.ledger import LedgerStore
from loyalty_dao.services.lifecycle import ProposalLifecycle

logger = structlog.get_logger()


class ExecutionOutcome(str, enum.Enum):
    EXECUTED = "executed"
    ALREADY_EXECUTED = "already_executed"
    NOT_READY = "not_ready"


@dataclass
class ExecutionResult:
    proposal_id: str
    outcome: ExecutionOutcome
    status: str
    executed_at: Optional[datetime] = None
    ready_at: Optional[datetime] = None
    change_request_id: Optional[str] = None
    parameter_name: Optional[str] = None
    applied_value: Any = None
    reason: Optional[str] = None


class ExecutionCoordinator:
    """
    Runs ``passed -> executed`` once the execution delay has elapsed.

    The configuration store is written before the ledger is marked; if the
    marking fails, a retry re-applies the same value by name, which the store
    treats as a no-op. The ``status = 'passed'`` guard makes the proposal the
    idempotency key.
    """

    def __init__(
        self,
        store: LedgerStore,
        config_store: ConfigurationStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.config_store = config_store
        self.clock = clock
        self.lifecycle = ProposalLifecycle(store, clock=clock)
        self.audit = AuditService(store)

    async def execute_if_ready(self, proposal_id: str) -> ExecutionResult:
        proposal = await self.lifecycle.refresh(proposal_id)

        if proposal.status == ProposalStatus.EXECUTED.value:
            return self._already_executed(proposal)

        if proposal.status != ProposalStatus.PASSED.value:
            return ExecutionResult(
                proposal_id=proposal_id,
                outcome=ExecutionOutcome.NOT_READY,
                status=proposal.status,
                reason=f"Proposal is {proposal.status}",
            )

        organization = await self.store.get(Organization, proposal.dao_id)
        ready_at = proposal.end_time + timedelta(seconds=organization.execution_delay_seconds)
        now = self.clock()
        if now < ready_at:
            return ExecutionResult(
                proposal_id=proposal_id,
                outcome=ExecutionOutcome.NOT_READY,
                status=proposal.status,
                ready_at=ready_at,
                reason="Execution delay has not elapsed",
            )

        change = await self.store.find(ChangeRequest, proposal_id=proposal_id)
        if change is not None and change.status != ChangeRequestStatus.IMPLEMENTED.value:
            await self.config_store.apply_parameter(change.parameter_name, change.new_value, proposal_id)

        async with self.store.transaction():
            changed = await self.store.update(
                Proposal,
                proposal_id,
                {"status": ProposalStatus.EXECUTED.value, "executed_at": now, "updated_at": now},
                where=[Proposal.status == ProposalStatus.PASSED.value],
            )
            if changed:
                await self._mark_implemented(proposal, change, now)

        if not changed:
            # Another worker executed it between our read and write
            proposal = await self.store.get(Proposal, proposal_id)
            return self._already_executed(proposal)

        logger.info(
            "Proposal executed",
            proposal_id=proposal_id,
            change_request_id=change.id if change else None,
        )
        return ExecutionResult(
            proposal_id=proposal_id,
            outcome=ExecutionOutcome.EXECUTED,
            status=ProposalStatus.EXECUTED.value,
            executed_at=now,
            ready_at=ready_at,
            change_request_id=change.id if change else None,
            parameter_name=change.parameter_name if change else None,
            applied_value=change.new_value if change else None,
        )

    async def _mark_implemented(self, proposal: Proposal, change: Optional[ChangeRequest], now: datetime) -> None:
        await self.audit.record(
            dao_id=proposal.dao_id,
            event_type=GovernanceEventType.PROPOSAL_EXECUTED,
            actor="system",
            reference_id=proposal.id,
            reference_type="proposal",
            data={"change_request_id": change.id if change else None},
        )
        if change is None:
            return

        marked = await self.store.update(
            ChangeRequest,
            change.id,
            {"status": ChangeRequestStatus.IMPLEMENTED.value, "implemented_at": now},
            where=[ChangeRequest.status != ChangeRequestStatus.IMPLEMENTED.value],
        )
        if marked:
            await self.audit.record(
                dao_id=proposal.dao_id,
                event_type=GovernanceEventType.CHANGE_IMPLEMENTED,
                actor="system",
                reference_id=change.id,
                reference_type="change_request",
                data={"parameter_name": change.parameter_name, "new_value": change.new_value},
            )

    @staticmethod
    def _already_executed(proposal: Proposal) -> ExecutionResult:
        return ExecutionResult(
            proposal_id=proposal.id,
            outcome=ExecutionOutcome.ALREADY_EXECUTED,
            status=proposal.status,
            executed_at=proposal.executed_at,
            reason="Proposal has already been executed",
        )
