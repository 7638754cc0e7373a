"""Proposal lifecycle: creation, activation, withdrawal and time-based resolution."""
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Iterable, List, Optional

import structlog
from sqlalchemy import select

from loyalty_dao.errors import (
    InactiveMember,
    InvalidState,
    NotAuthorized,
    ThresholdNotMet,
    ValidationError,
)
from loyalty_dao.models.audit import GovernanceEventType
from loyalty_dao.models.change_request import ChangeRequest, ChangeRequestStatus
from loyalty_dao.models.database import utcnow
from loyalty_dao.models.governance import Proposal, ProposalStatus
from loyalty_dao.models.organization import Organization, VotingType
from loyalty_dao.services.audit import AuditService
from loyalty_dao.services.ledger import LedgerStore
from loyalty_dao.services.voting_power import ZERO, VotingPowerResolver, to_decimal

logger = structlog.get_logger()

SIMPLE_MAJORITY_THRESHOLD = Decimal("50")

# Terminal outcomes of the voting window
RESOLVED_STATUSES = {ProposalStatus.PASSED, ProposalStatus.FAILED, ProposalStatus.EXPIRED}


def approval_threshold(voting_type: str, super_majority_threshold: Any) -> Decimal:
    """Percentage of yes/(yes+no) power needed to pass."""
    if voting_type == VotingType.SUPER_MAJORITY.value:
        return to_decimal(super_majority_threshold)
    return SIMPLE_MAJORITY_THRESHOLD


def approval_percentage(yes_votes: Any, no_votes: Any) -> Decimal:
    """Yes share of decisive power; abstentions are excluded. Zero when nothing decisive was cast."""
    yes = to_decimal(yes_votes)
    decisive = yes + to_decimal(no_votes)
    if decisive <= ZERO:
        return ZERO
    return yes * 100 / decisive


def quorum_met(participation_rate: Any, quorum_percentage: Any) -> bool:
    return to_decimal(participation_rate) >= to_decimal(quorum_percentage)


def tally_outcome(proposal: Any, organization: Any) -> ProposalStatus:
    """Outcome of a closed voting window from the proposal's aggregate counters."""
    if not quorum_met(proposal.participation_rate, organization.quorum_percentage):
        return ProposalStatus.EXPIRED
    threshold = approval_threshold(proposal.voting_type, organization.super_majority_threshold)
    if approval_percentage(proposal.yes_votes, proposal.no_votes) >= threshold:
        return ProposalStatus.PASSED
    return ProposalStatus.FAILED


def evaluate(proposal: Any, organization: Any, now: datetime) -> ProposalStatus:
    """
    Status a proposal should have at ``now``.

    Pure: only ``active`` proposals whose window has closed change; every other
    state is returned as stored. Safe to call from reads and the sweeper alike.
    """
    status = ProposalStatus(proposal.status)
    if status != ProposalStatus.ACTIVE or proposal.end_time is None:
        return status
    if now < proposal.end_time:
        return status
    return tally_outcome(proposal, organization)


class ProposalLifecycle:
    """Owns every proposal status transition except execution."""

    def __init__(self, store: LedgerStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock
        self.resolver = VotingPowerResolver(store)
        self.audit = AuditService(store)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    @staticmethod
    def validate_fields(title: str, description: str, category: str, voting_type: Optional[str]) -> None:
        if not title or not title.strip():
            raise ValidationError("Proposal title is required", field="title")
        if len(title) > 200:
            raise ValidationError("Proposal title must be at most 200 characters", field="title")
        if not description or not description.strip():
            raise ValidationError("Proposal description is required", field="description")
        if not category or not category.strip() or len(category) > 50:
            raise ValidationError("Proposal category must be 1-50 characters", field="category")
        if voting_type is not None and voting_type not in {v.value for v in VotingType}:
            raise ValidationError(f"Unknown voting type: {voting_type}", field="voting_type")

    async def get_active_organization(self, dao_id: str) -> Organization:
        organization = await self.store.get(Organization, dao_id)
        if not organization.is_active:
            raise InvalidState("Organization is inactive", dao_id=dao_id)
        return organization

    async def create_proposal(
        self,
        dao_id: str,
        proposer_id: str,
        title: str,
        description: str,
        category: str,
        voting_type: Optional[str] = None,
        full_description: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
    ) -> Proposal:
        """
        Create a proposal and activate it when the proposer meets the threshold.

        Below the threshold the proposal is still committed as a draft and
        ``ThresholdNotMet`` is raised with its id.
        """
        self.validate_fields(title, description, category, voting_type)

        async with self.store.transaction():
            organization = await self.get_active_organization(dao_id)
            resolution = await self.resolver.resolve_for_org(proposer_id, dao_id)
            if not resolution.eligible:
                raise InactiveMember(
                    "Proposer is not an active member of this organization",
                    member_id=proposer_id,
                    reason=resolution.reason.value,
                )
            activate = resolution.power >= to_decimal(organization.min_proposal_threshold)
            proposal = await self.insert_proposal(
                organization,
                proposer_id,
                title=title.strip(),
                description=description.strip(),
                category=category.strip(),
                voting_type=voting_type,
                full_description=full_description,
                tags=tags,
                activate=activate,
            )

        if not activate:
            logger.info(
                "Proposal left in draft, proposer below threshold",
                proposal_id=proposal.id,
                power=str(resolution.power),
                threshold=str(organization.min_proposal_threshold),
            )
            raise ThresholdNotMet(
                "Proposer voting power is below the organization's proposal threshold",
                proposal_id=proposal.id,
                voting_power=str(resolution.power),
                min_proposal_threshold=str(organization.min_proposal_threshold),
            )
        return proposal

    async def insert_proposal(
        self,
        organization: Organization,
        proposer_id: str,
        title: str,
        description: str,
        category: str,
        voting_type: Optional[str] = None,
        full_description: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
        activate: bool = True,
    ) -> Proposal:
        """Insert a proposal inside the caller's transaction. Threshold checks are the caller's job."""
        now = self.clock()
        proposal = Proposal(
            dao_id=organization.id,
            proposer_id=proposer_id,
            title=title,
            description=description,
            full_description=full_description,
            category=category,
            tags=list(tags or []),
            voting_type=voting_type or organization.default_voting_type,
            status=ProposalStatus.DRAFT.value,
            total_votes=ZERO,
            yes_votes=ZERO,
            no_votes=ZERO,
            abstain_votes=ZERO,
            participation_rate=0.0,
            created_at=now,
        )
        if activate:
            proposal.status = ProposalStatus.ACTIVE.value
            proposal.start_time = now
            proposal.end_time = now + timedelta(seconds=organization.voting_period_seconds)

        await self.store.insert(proposal)
        await self.audit.record(
            dao_id=organization.id,
            event_type=GovernanceEventType.PROPOSAL_CREATED,
            actor=proposer_id,
            reference_id=proposal.id,
            reference_type="proposal",
            data={
                "status": proposal.status,
                "category": proposal.category,
                "voting_type": proposal.voting_type,
                "end_time": proposal.end_time.isoformat() if proposal.end_time else None,
            },
            notes=f"Proposal created: {proposal.title}",
        )
        logger.info(
            "Proposal created",
            proposal_id=proposal.id,
            dao_id=organization.id,
            status=proposal.status,
        )
        return proposal

    # ------------------------------------------------------------------
    # Draft transitions
    # ------------------------------------------------------------------

    async def activate(self, proposal_id: str) -> Proposal:
        """Retry ``draft -> active`` with the proposer's current voting power."""
        async with self.store.transaction():
            proposal = await self.store.get(Proposal, proposal_id)
            if proposal.status != ProposalStatus.DRAFT.value:
                raise InvalidState(
                    f"Only draft proposals can be activated (status: {proposal.status})",
                    proposal_id=proposal_id,
                    status=proposal.status,
                )
            organization = await self.get_active_organization(proposal.dao_id)
            resolution = await self.resolver.resolve_for_org(proposal.proposer_id, proposal.dao_id)
            if not resolution.eligible:
                raise InactiveMember(
                    "Proposer is no longer an active member of this organization",
                    member_id=proposal.proposer_id,
                    reason=resolution.reason.value,
                )
            if resolution.power < to_decimal(organization.min_proposal_threshold):
                raise ThresholdNotMet(
                    "Proposer voting power is below the organization's proposal threshold",
                    proposal_id=proposal_id,
                    voting_power=str(resolution.power),
                    min_proposal_threshold=str(organization.min_proposal_threshold),
                )

            now = self.clock()
            changed = await self.store.update(
                Proposal,
                proposal_id,
                {
                    "status": ProposalStatus.ACTIVE.value,
                    "start_time": now,
                    "end_time": now + timedelta(seconds=organization.voting_period_seconds),
                    "updated_at": now,
                },
                where=[Proposal.status == ProposalStatus.DRAFT.value],
            )
            if not changed:
                raise InvalidState("Proposal changed state concurrently", proposal_id=proposal_id)

            await self.audit.record(
                dao_id=proposal.dao_id,
                event_type=GovernanceEventType.PROPOSAL_ACTIVATED,
                actor=proposal.proposer_id,
                reference_id=proposal_id,
                reference_type="proposal",
            )

        return await self.store.get(Proposal, proposal_id)

    async def withdraw(self, proposal_id: str, member_id: str) -> Proposal:
        """Withdraw a draft. Active proposals cannot be cancelled."""
        async with self.store.transaction():
            proposal = await self.store.get(Proposal, proposal_id)
            if proposal.proposer_id != member_id:
                raise NotAuthorized("Only the proposer can withdraw a proposal", proposal_id=proposal_id)
            changed = await self.store.update(
                Proposal,
                proposal_id,
                {"status": ProposalStatus.CANCELLED.value, "updated_at": self.clock()},
                where=[Proposal.status == ProposalStatus.DRAFT.value],
            )
            if not changed:
                raise InvalidState(
                    f"Only draft proposals can be withdrawn (status: {proposal.status})",
                    proposal_id=proposal_id,
                    status=proposal.status,
                )
            await self.audit.record(
                dao_id=proposal.dao_id,
                event_type=GovernanceEventType.PROPOSAL_WITHDRAWN,
                actor=member_id,
                reference_id=proposal_id,
                reference_type="proposal",
            )

        return await self.store.get(Proposal, proposal_id)

    # ------------------------------------------------------------------
    # Time-based resolution
    # ------------------------------------------------------------------

    async def refresh(self, proposal_id: str) -> Proposal:
        """Lazily resolve a proposal whose voting window has closed."""
        proposal = await self.store.get(Proposal, proposal_id)
        now = self.clock()
        if proposal.status != ProposalStatus.ACTIVE.value or proposal.end_time is None or now < proposal.end_time:
            return proposal

        organization = await self.store.get(Organization, proposal.dao_id)
        outcome = evaluate(proposal, organization, now)
        if outcome == ProposalStatus.ACTIVE:
            return proposal

        async with self.store.transaction():
            await self._apply_resolution(proposal, outcome, now)

        return await self.store.get(Proposal, proposal_id)

    async def _apply_resolution(self, proposal: Proposal, outcome: ProposalStatus, now: datetime) -> bool:
        """
        Move an active proposal to its outcome. Only one concurrent caller wins
        the ``status = 'active'`` guard; losers change nothing.
        """
        changed = await self.store.update(
            Proposal,
            proposal.id,
            {"status": outcome.value, "resolved_at": now, "updated_at": now},
            where=[Proposal.status == ProposalStatus.ACTIVE.value],
        )
        if not changed:
            return False

        if outcome == ProposalStatus.PASSED:
            change_patch = {"status": ChangeRequestStatus.APPROVED.value, "approved_at": now}
        else:
            change_patch = {"status": ChangeRequestStatus.REJECTED.value}
        await self.store.update_where(
            ChangeRequest,
            [
                ChangeRequest.proposal_id == proposal.id,
                ChangeRequest.status == ChangeRequestStatus.PROPOSED.value,
            ],
            change_patch,
        )

        await self.audit.record(
            dao_id=proposal.dao_id,
            event_type=GovernanceEventType.PROPOSAL_RESOLVED,
            actor="system",
            reference_id=proposal.id,
            reference_type="proposal",
            data={
                "status": outcome.value,
                "yes_votes": str(proposal.yes_votes),
                "no_votes": str(proposal.no_votes),
                "abstain_votes": str(proposal.abstain_votes),
                "participation_rate": proposal.participation_rate,
            },
        )
        logger.info("Proposal resolved", proposal_id=proposal.id, status=outcome.value)
        return True

    async def list_due(self, dao_id: Optional[str] = None) -> List[str]:
        """Ids of active proposals whose voting window has closed."""
        now = self.clock()
        stmt = select(Proposal.id).where(
            Proposal.status == ProposalStatus.ACTIVE.value,
            Proposal.end_time <= now,
        )
        if dao_id is not None:
            stmt = stmt.where(Proposal.dao_id == dao_id)
        result = await self.store.execute(stmt.order_by(Proposal.end_time), "query due proposals")
        return list(result.scalars().all())

    async def resolve_due(self, dao_id: Optional[str] = None) -> List[Proposal]:
        """Resolve every due proposal; returns those that left ``active``."""
        resolved = []
        for proposal_id in await self.list_due(dao_id):
            proposal = await self.refresh(proposal_id)
            if proposal.status != ProposalStatus.ACTIVE.value:
                resolved.append(proposal)
        return resolved

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_proposal(self, proposal_id: str) -> Proposal:
        return await self.refresh(proposal_id)

    async def list_proposals(
        self,
        dao_id: str,
        status: Optional[str] = None,
        category: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Proposal]:
        """List proposals newest first, resolving any whose window has closed."""
        if status is not None and status not in {s.value for s in ProposalStatus}:
            raise ValidationError(f"Unknown proposal status: {status}", field="status")

        await self.store.get(Organization, dao_id)
        await self.resolve_due(dao_id)

        filters = [Proposal.dao_id == dao_id]
        if status:
            filters.append(Proposal.status == status)
        if category:
            filters.append(Proposal.category == category)
        return await self.store.query(
            Proposal,
            filters=filters,
            order_by=[Proposal.created_at.desc(), Proposal.id],
            limit=limit,
            offset=offset,
        )
