"""Voting power resolution from governance-token balances."""
import enum
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import func, select

from loyalty_dao.models.governance import Proposal
from loyalty_dao.models.organization import Member
from loyalty_dao.services.ledger import LedgerStore

ZERO = Decimal("0")


def to_decimal(value: Any) -> Decimal:
    """Normalize DB/JSON numerics (float, int, str, Decimal, None) to Decimal."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


class Ineligibility(str, enum.Enum):
    INACTIVE_MEMBER = "inactive_member"
    NOT_IN_ORGANIZATION = "not_in_organization"


@dataclass
class VotingPowerResult:
    """Resolved weight for one member; ``reason`` is set when power is forced to zero."""
    member_id: str
    power: Decimal
    reason: Optional[Ineligibility] = None

    @property
    def eligible(self) -> bool:
        return self.reason is None


class VotingPowerResolver:
    """
    Computes a member's voting weight.

    Power is the live governance-token balance at the time of the call (1:1),
    not a snapshot taken at proposal start. Reads only.
    """

    def __init__(self, store: LedgerStore):
        self.store = store

    @staticmethod
    def power_from_balance(balance: Any) -> Decimal:
        power = to_decimal(balance)
        return power if power > ZERO else ZERO

    async def resolve(self, member_id: str, proposal_id: str) -> VotingPowerResult:
        proposal = await self.store.get(Proposal, proposal_id)
        return await self.resolve_for_org(member_id, proposal.dao_id)

    async def resolve_for_org(self, member_id: str, dao_id: str) -> VotingPowerResult:
        member = await self.store.get(Member, member_id)
        return self.resolve_member(member, dao_id)

    def resolve_member(self, member: Member, dao_id: str) -> VotingPowerResult:
        if member.dao_id != dao_id:
            return VotingPowerResult(member.id, ZERO, Ineligibility.NOT_IN_ORGANIZATION)
        if not member.is_active:
            return VotingPowerResult(member.id, ZERO, Ineligibility.INACTIVE_MEMBER)
        return VotingPowerResult(member.id, self.power_from_balance(member.governance_tokens))

    async def total_eligible_power(self, dao_id: str) -> Decimal:
        """Sum of voting power across the organization's active members."""
        total = await self.store.scalar(
            select(func.coalesce(func.sum(Member.governance_tokens), 0)).where(
                Member.dao_id == dao_id,
                Member.is_active.is_(True),
                Member.governance_tokens > 0,
            ),
            "sum dao_members.governance_tokens",
        )
        return to_decimal(total)
