"""Vote tally service: one vote per (proposal, voter) with atomic counter updates."""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional

import structlog
from sqlalchemy import func, select

from loyalty_dao.errors import (
    Conflict,
    DuplicateVote,
    InactiveMember,
    ProposalNotActive,
    ValidationError,
)
from loyalty_dao.models.audit import GovernanceEventType
from loyalty_dao.models.database import utcnow
from loyalty_dao.models.governance import Proposal, ProposalStatus, Vote, VoteChoice
from loyalty_dao.models.organization import Member, Organization
from loyalty_dao.services.audit import AuditService
from loyalty_dao.services.ledger import LedgerStore
from loyalty_dao.services.lifecycle import (
    ProposalLifecycle,
    approval_percentage,
    approval_threshold,
    quorum_met,
)
from loyalty_dao.services.voting_power import ZERO, to_decimal

logger = structlog.get_logger()

MAX_REASON_LENGTH = 2000

# Counter column incremented for each choice
_CHOICE_COLUMNS = {
    VoteChoice.YES: "yes_votes",
    VoteChoice.NO: "no_votes",
    VoteChoice.ABSTAIN: "abstain_votes",
}


@dataclass
class ProposalResults:
    """Power-weighted results for a proposal at a point in time."""
    proposal_id: str
    status: str
    total_votes: Decimal
    yes_votes: Decimal
    no_votes: Decimal
    abstain_votes: Decimal
    participation_rate: float
    yes_percentage: float
    no_percentage: float
    abstain_percentage: float
    quorum_met: bool
    threshold_met: bool
    time_remaining_seconds: Optional[int]
    voter_count: int


def parse_choice(choice: str) -> VoteChoice:
    try:
        return VoteChoice(choice)
    except ValueError:
        raise ValidationError(f"Unknown vote choice: {choice}", field="choice")


class VoteTallyService:
    """Records votes and keeps proposal aggregates consistent with them."""

    def __init__(self, store: LedgerStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock
        self.lifecycle = ProposalLifecycle(store, clock=clock)
        self.resolver = self.lifecycle.resolver
        self.audit = AuditService(store)

    async def cast_vote(
        self,
        proposal_id: str,
        voter_id: str,
        choice: str,
        reason: Optional[str] = None,
    ) -> Vote:
        """
        Cast a power-weighted vote.

        The vote insert and the counter increment commit together. Duplicate
        votes are rejected by the (proposal_id, voter_id) unique constraint,
        so concurrent submissions for the same voter yield exactly one vote.
        """
        vote_choice = parse_choice(choice)
        if reason is not None and len(reason) > MAX_REASON_LENGTH:
            raise ValidationError(f"Reason must be at most {MAX_REASON_LENGTH} characters", field="reason")

        # Closes the window first so a late vote sees the resolved status
        proposal = await self.lifecycle.refresh(proposal_id)
        now = self.clock()
        self._ensure_open(proposal, now)

        async with self.store.transaction():
            member = await self.store.get(Member, voter_id)
            resolution = self.resolver.resolve_member(member, proposal.dao_id)
            if not resolution.eligible:
                raise InactiveMember(
                    "Voter is not an active member of this organization",
                    member_id=voter_id,
                    reason=resolution.reason.value,
                )
            power = resolution.power
            if power <= ZERO:
                raise ValidationError("Voter has no voting power", member_id=voter_id)

            vote = Vote(
                proposal_id=proposal_id,
                voter_id=voter_id,
                choice=vote_choice.value,
                voting_power=power,
                reason=reason,
                created_at=now,
            )
            try:
                await self.store.insert(vote)
            except Conflict:
                raise DuplicateVote(
                    "Voter has already voted on this proposal",
                    proposal_id=proposal_id,
                    voter_id=voter_id,
                )

            eligible_power = await self.resolver.total_eligible_power(proposal.dao_id)
            await self._increment_tally(proposal_id, vote_choice, power, eligible_power, now)

            await self.store.update(Member, voter_id, {"last_active_at": now})
            await self.audit.record(
                dao_id=proposal.dao_id,
                event_type=GovernanceEventType.VOTE_CAST,
                actor=voter_id,
                reference_id=proposal_id,
                reference_type="proposal",
                data={"choice": vote_choice.value, "voting_power": str(power)},
            )

        logger.info(
            "Vote recorded",
            proposal_id=proposal_id,
            voter_id=voter_id,
            choice=vote_choice.value,
            voting_power=str(power),
        )
        return vote

    @staticmethod
    def _ensure_open(proposal: Proposal, now: datetime) -> None:
        if proposal.status != ProposalStatus.ACTIVE.value:
            raise ProposalNotActive(
                f"Proposal is {proposal.status}, cannot vote",
                proposal_id=proposal.id,
                status=proposal.status,
            )
        if proposal.end_time is not None and now >= proposal.end_time:
            raise ProposalNotActive("Voting has ended", proposal_id=proposal.id, status=proposal.status)

    async def _increment_tally(
        self,
        proposal_id: str,
        choice: VoteChoice,
        power: Decimal,
        eligible_power: Decimal,
        now: datetime,
    ) -> None:
        """
        ``SET <choice> = <choice> + power, total = total + power`` in one
        statement, guarded by ``status = 'active'`` and the window end.
        """
        column = getattr(Proposal, _CHOICE_COLUMNS[choice])
        patch = {
            _CHOICE_COLUMNS[choice]: column + power,
            "total_votes": Proposal.total_votes + power,
            "updated_at": now,
        }
        if eligible_power > ZERO:
            patch["participation_rate"] = (Proposal.total_votes + power) * 100 / eligible_power

        changed = await self.store.update(
            Proposal,
            proposal_id,
            patch,
            where=[
                Proposal.status == ProposalStatus.ACTIVE.value,
                Proposal.end_time > now,
            ],
        )
        if not changed:
            # Resolved between the read and the write; the vote insert rolls back with this.
            raise ProposalNotActive("Voting has ended", proposal_id=proposal_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_vote(self, proposal_id: str, voter_id: str) -> Optional[Vote]:
        return await self.store.find(Vote, proposal_id=proposal_id, voter_id=voter_id)

    async def list_votes(self, proposal_id: str, limit: int = 100, offset: int = 0) -> List[Vote]:
        await self.store.get(Proposal, proposal_id)
        return await self.store.query(
            Vote,
            filters=[Vote.proposal_id == proposal_id],
            order_by=[Vote.created_at, Vote.id],
            limit=limit,
            offset=offset,
        )

    async def results(self, proposal_id: str) -> ProposalResults:
        proposal = await self.lifecycle.refresh(proposal_id)
        organization = await self.store.get(Organization, proposal.dao_id)
        now = self.clock()

        total = to_decimal(proposal.total_votes)
        yes = to_decimal(proposal.yes_votes)
        no = to_decimal(proposal.no_votes)
        abstain = to_decimal(proposal.abstain_votes)

        def share(part: Decimal) -> float:
            return float(part * 100 / total) if total > ZERO else 0.0

        time_remaining = None
        if proposal.status == ProposalStatus.ACTIVE.value and proposal.end_time is not None:
            time_remaining = max(0, int((proposal.end_time - now).total_seconds()))

        voter_count = await self.store.scalar(
            select(func.count(Vote.id)).where(Vote.proposal_id == proposal_id), "count dao_votes"
        )
        threshold = approval_threshold(proposal.voting_type, organization.super_majority_threshold)

        return ProposalResults(
            proposal_id=proposal.id,
            status=proposal.status,
            total_votes=total,
            yes_votes=yes,
            no_votes=no,
            abstain_votes=abstain,
            participation_rate=float(proposal.participation_rate or 0.0),
            yes_percentage=share(yes),
            no_percentage=share(no),
            abstain_percentage=share(abstain),
            quorum_met=quorum_met(proposal.participation_rate, organization.quorum_percentage),
            threshold_met=(yes + no) > ZERO and approval_percentage(yes, no) >= threshold,
            time_remaining_seconds=time_remaining,
            voter_count=voter_count or 0,
        )
