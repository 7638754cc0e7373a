"""Change-request bridge: privileged loyalty changes become governance proposals."""
import enum
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, List, Optional

import structlog

from loyalty_dao.errors import InactiveMember, InvalidState, ValidationError
from loyalty_dao.models.audit import GovernanceEventType
from loyalty_dao.models.change_request import ChangeRequest, ChangeRequestStatus, LoyaltyChangeType
from loyalty_dao.models.database import utcnow
from loyalty_dao.models.governance import GOVERNANCE_CHANGE_CATEGORY, Proposal, ProposalStatus
from loyalty_dao.models.organization import Member, Organization
from loyalty_dao.services.audit import AuditService
from loyalty_dao.services.ledger import LedgerStore
from loyalty_dao.services.lifecycle import ProposalLifecycle
from loyalty_dao.services.voting_power import to_decimal

logger = structlog.get_logger()


class SubmissionOutcome(str, enum.Enum):
    PROPOSED = "proposed"
    PROPOSAL_CREATION_DEFERRED = "proposal_creation_deferred"


@dataclass
class ChangeSubmission:
    """Result of submitting a change; ``proposal`` is None when creation was deferred."""
    change_request: ChangeRequest
    proposal: Optional[Proposal]
    outcome: SubmissionOutcome

    @property
    def deferred(self) -> bool:
        return self.outcome == SubmissionOutcome.PROPOSAL_CREATION_DEFERRED


@dataclass
class ApprovalCheck:
    approved: bool
    proposal_id: Optional[str]
    proposal_status: Optional[str]
    reason: Optional[str] = None


def parse_change_type(change_type: str) -> LoyaltyChangeType:
    try:
        return LoyaltyChangeType(change_type)
    except ValueError:
        raise ValidationError(f"Unknown change type: {change_type}", field="change_type")


def proposal_title(change_type: LoyaltyChangeType, parameter_name: str) -> str:
    return f"Loyalty Change: {change_type.display_name} - {parameter_name}"[:200]


def proposal_summary(parameter_name: str, old_value: Any, new_value: Any) -> str:
    return f"Change {parameter_name} from {json.dumps(old_value)} to {json.dumps(new_value)}"


def proposal_body(change_type: LoyaltyChangeType, parameter_name: str, old_value: Any, new_value: Any, reason: str) -> str:
    """Markdown description shown to voters."""
    return "\n".join([
        "# Loyalty Application Behavior Change",
        "",
        "## Change Type",
        change_type.display_name,
        "",
        "## Parameter",
        parameter_name,
        "",
        "## Current Value",
        json.dumps(old_value),
        "",
        "## Proposed Value",
        json.dumps(new_value),
        "",
        "## Reason for Change",
        reason,
        "",
        "## Implementation",
        "Once approved and after the execution delay, the new value is applied automatically.",
    ])


class ChangeRequestBridge:
    """
    Turns change requests into linked proposals.

    The change itself is never applied here; that is the execution
    coordinator's job once the proposal has passed.
    """

    def __init__(self, store: LedgerStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock
        self.lifecycle = ProposalLifecycle(store, clock=clock)
        self.audit = AuditService(store)

    async def submit_change(
        self,
        change_type: str,
        parameter_name: str,
        old_value: Any,
        new_value: Any,
        reason: str,
        proposer_id: str,
    ) -> ChangeSubmission:
        """
        Create a change request and its proposal in one transaction.

        When the proposer is below the proposal threshold the request is still
        committed, as ``pending`` with no proposal, and the outcome says so.
        """
        kind = parse_change_type(change_type)
        if not parameter_name or not parameter_name.strip() or len(parameter_name) > 100:
            raise ValidationError("Parameter name must be 1-100 characters", field="parameter_name")
        if not reason or not reason.strip():
            raise ValidationError("A reason for the change is required", field="reason")
        if old_value == new_value:
            raise ValidationError("New value is identical to the current value", field="new_value")

        async with self.store.transaction():
            proposer = await self.store.get(Member, proposer_id)
            organization = await self.lifecycle.get_active_organization(proposer.dao_id)

            change = ChangeRequest(
                dao_id=organization.id,
                change_type=kind.value,
                parameter_name=parameter_name.strip(),
                old_value=old_value,
                new_value=new_value,
                reason=reason.strip(),
                proposed_by=proposer_id,
                status=ChangeRequestStatus.PENDING.value,
                created_at=self.clock(),
            )
            await self.store.insert(change)
            await self.audit.record(
                dao_id=organization.id,
                event_type=GovernanceEventType.CHANGE_REQUESTED,
                actor=proposer_id,
                reference_id=change.id,
                reference_type="change_request",
                data={"change_type": kind.value, "parameter_name": change.parameter_name},
            )

            submission = await self._bridge(change, organization, proposer)

        return submission

    async def retry_proposal(self, change_request_id: str, proposer_id: Optional[str] = None) -> ChangeSubmission:
        """
        Re-attempt proposal creation for a pending request, optionally on
        behalf of a different member of the same organization.
        """
        async with self.store.transaction():
            change = await self.store.get(ChangeRequest, change_request_id)
            if change.status != ChangeRequestStatus.PENDING.value or change.proposal_id is not None:
                raise InvalidState(
                    f"Change request already bridged (status: {change.status})",
                    change_request_id=change_request_id,
                    status=change.status,
                )
            proposer = await self.store.get(Member, proposer_id or change.proposed_by)
            if proposer.dao_id != change.dao_id:
                raise InactiveMember(
                    "Proposer is not a member of this organization",
                    member_id=proposer.id,
                    reason="not_in_organization",
                )
            organization = await self.lifecycle.get_active_organization(change.dao_id)
            submission = await self._bridge(change, organization, proposer)

        return submission

    async def _bridge(self, change: ChangeRequest, organization: Organization, proposer: Member) -> ChangeSubmission:
        """Create the linked proposal if the proposer qualifies; runs in the caller's transaction."""
        resolution = self.lifecycle.resolver.resolve_member(proposer, organization.id)
        threshold = to_decimal(organization.min_proposal_threshold)

        if not resolution.eligible or resolution.power < threshold:
            if resolution.eligible:
                deferred_reason = (
                    f"Proposer voting power {resolution.power} is below "
                    f"the proposal threshold {threshold}"
                )
            else:
                deferred_reason = f"Proposer is not eligible ({resolution.reason.value})"
            await self.store.update(ChangeRequest, change.id, {"deferred_reason": deferred_reason})
            await self.audit.record(
                dao_id=organization.id,
                event_type=GovernanceEventType.CHANGE_PROPOSAL_DEFERRED,
                actor=proposer.id,
                reference_id=change.id,
                reference_type="change_request",
                notes=deferred_reason,
            )
            logger.warning(
                "Proposal creation deferred for change request",
                change_request_id=change.id,
                proposer_id=proposer.id,
                reason=deferred_reason,
            )
            change = await self.store.get(ChangeRequest, change.id)
            return ChangeSubmission(change, None, SubmissionOutcome.PROPOSAL_CREATION_DEFERRED)

        kind = LoyaltyChangeType(change.change_type)
        proposal = await self.lifecycle.insert_proposal(
            organization,
            proposer.id,
            title=proposal_title(kind, change.parameter_name),
            description=proposal_summary(change.parameter_name, change.old_value, change.new_value),
            full_description=proposal_body(
                kind, change.parameter_name, change.old_value, change.new_value, change.reason
            ),
            category=GOVERNANCE_CHANGE_CATEGORY,
            voting_type=organization.default_voting_type,
            tags=["loyalty", "governance", kind.value],
            activate=True,
        )
        await self.store.update(
            ChangeRequest,
            change.id,
            {
                "proposal_id": proposal.id,
                "status": ChangeRequestStatus.PROPOSED.value,
                "deferred_reason": None,
            },
            where=[ChangeRequest.proposal_id.is_(None)],
        )
        logger.info(
            "Change request bridged to proposal",
            change_request_id=change.id,
            proposal_id=proposal.id,
        )
        change = await self.store.get(ChangeRequest, change.id)
        return ChangeSubmission(change, proposal, SubmissionOutcome.PROPOSED)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_change_request(self, change_request_id: str) -> ChangeRequest:
        change = await self.store.get(ChangeRequest, change_request_id)
        if change.proposal_id is not None and change.status == ChangeRequestStatus.PROPOSED.value:
            # Resolving the proposal also settles the change request status
            await self.lifecycle.refresh(change.proposal_id)
            change = await self.store.get(ChangeRequest, change_request_id)
        return change

    async def list_change_requests(
        self,
        dao_id: str,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[ChangeRequest]:
        if status is not None and status not in {s.value for s in ChangeRequestStatus}:
            raise ValidationError(f"Unknown change request status: {status}", field="status")
        await self.store.get(Organization, dao_id)
        await self.lifecycle.resolve_due(dao_id)

        filters = [ChangeRequest.dao_id == dao_id]
        if status:
            filters.append(ChangeRequest.status == status)
        return await self.store.query(
            ChangeRequest,
            filters=filters,
            order_by=[ChangeRequest.created_at.desc(), ChangeRequest.id],
            limit=limit,
            offset=offset,
        )

    async def list_pending(self, dao_id: str) -> List[ChangeRequest]:
        """Requests still waiting on a proposal or a vote outcome."""
        await self.store.get(Organization, dao_id)
        await self.lifecycle.resolve_due(dao_id)
        return await self.store.query(
            ChangeRequest,
            filters=[
                ChangeRequest.dao_id == dao_id,
                ChangeRequest.status.in_([
                    ChangeRequestStatus.PENDING.value,
                    ChangeRequestStatus.PROPOSED.value,
                ]),
            ],
            order_by=[ChangeRequest.created_at.desc(), ChangeRequest.id],
        )

    async def validate_approval(self, change_request_id: str) -> ApprovalCheck:
        """Whether the change has been ratified by a passed (or executed) proposal."""
        change = await self.get_change_request(change_request_id)
        if change.proposal_id is None:
            return ApprovalCheck(False, None, None, reason="No proposal exists for this change request")

        proposal = await self.store.get(Proposal, change.proposal_id)
        approved = proposal.status in (ProposalStatus.PASSED.value, ProposalStatus.EXECUTED.value)
        return ApprovalCheck(
            approved=approved,
            proposal_id=proposal.id,
            proposal_status=proposal.status,
            reason=None if approved else f"Proposal is {proposal.status}",
        )
