"""Organization and membership management."""
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

import structlog
from solders.pubkey import Pubkey
from sqlalchemy import func, select

from loyalty_dao.config import get_settings
from loyalty_dao.errors import Conflict, NotAuthorized, ValidationError
from loyalty_dao.models.database import TOKEN_SCALE, utcnow
from loyalty_dao.models.governance import Proposal, ProposalStatus
from loyalty_dao.models.organization import ADMIN_ROLES, Member, MemberRole, Organization, VotingType
from loyalty_dao.services.ledger import LedgerStore
from loyalty_dao.services.voting_power import ZERO, VotingPowerResolver, to_decimal

logger = structlog.get_logger()

# Settings an admin may change after creation
MUTABLE_SETTINGS = {
    "name",
    "description",
    "min_proposal_threshold",
    "voting_period_seconds",
    "execution_delay_seconds",
    "quorum_percentage",
    "super_majority_threshold",
    "default_voting_type",
}


@dataclass
class DAOStats:
    total_members: int
    active_members: int
    total_proposals: int
    active_proposals: int
    participation_rate: float
    average_voting_power: Decimal


def validate_wallet_address(address: Optional[str]) -> Optional[str]:
    """Wallet addresses are Solana public keys (base58)."""
    if address is None or address == "":
        return None
    try:
        return str(Pubkey.from_string(address))
    except ValueError:
        raise ValidationError("Invalid wallet address", field="wallet_address")


def validate_governance_settings(values: Dict[str, Any]) -> None:
    """Range checks shared by create and update."""
    if "name" in values and (not values["name"] or len(values["name"]) > 100):
        raise ValidationError("Name must be 1-100 characters", field="name")
    if "quorum_percentage" in values:
        quorum = float(values["quorum_percentage"])
        if not 0 < quorum <= 100:
            raise ValidationError("Quorum must be in (0, 100]", field="quorum_percentage")
    if "super_majority_threshold" in values:
        threshold = float(values["super_majority_threshold"])
        if not 50 < threshold <= 100:
            raise ValidationError("Super-majority threshold must be in (50, 100]", field="super_majority_threshold")
    if "voting_period_seconds" in values and int(values["voting_period_seconds"]) <= 0:
        raise ValidationError("Voting period must be positive", field="voting_period_seconds")
    if "execution_delay_seconds" in values and int(values["execution_delay_seconds"]) < 0:
        raise ValidationError("Execution delay cannot be negative", field="execution_delay_seconds")
    if "min_proposal_threshold" in values and to_decimal(values["min_proposal_threshold"]) < ZERO:
        raise ValidationError("Proposal threshold cannot be negative", field="min_proposal_threshold")
    if "default_voting_type" in values and values["default_voting_type"] not in {v.value for v in VotingType}:
        raise ValidationError("Unknown voting type", field="default_voting_type")
    if "governance_token_symbol" in values:
        symbol = values["governance_token_symbol"]
        if not symbol or len(symbol) > 10:
            raise ValidationError("Token symbol must be 1-10 characters", field="governance_token_symbol")
    if "governance_token_decimals" in values and not 0 <= int(values["governance_token_decimals"]) <= TOKEN_SCALE:
        raise ValidationError(
            f"Token decimals must be between 0 and {TOKEN_SCALE}", field="governance_token_decimals"
        )


def validate_token_amount(amount: Any, decimals: int) -> Decimal:
    """Parse a token balance, rejecting negatives and precision the token does not have."""
    tokens = to_decimal(amount)
    if not tokens.is_finite() or tokens < ZERO:
        raise ValidationError("Governance token balance cannot be negative", field="governance_tokens")
    if tokens != tokens.to_integral_value() and -tokens.normalize().as_tuple().exponent > decimals:
        raise ValidationError(
            f"Governance token balance has more than {decimals} decimal places",
            field="governance_tokens",
        )
    return tokens


class OrganizationService:
    """Organization settings, membership and statistics."""

    def __init__(self, store: LedgerStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock
        self.resolver = VotingPowerResolver(store)

    async def create_organization(self, name: str, **overrides: Any) -> Organization:
        settings = get_settings()
        values = {
            "name": name,
            "description": overrides.get("description"),
            "governance_token_symbol": overrides.get("governance_token_symbol") or settings.default_governance_token_symbol,
            "governance_token_decimals": overrides.get("governance_token_decimals", settings.default_governance_token_decimals),
            "min_proposal_threshold": overrides.get("min_proposal_threshold", settings.default_min_proposal_threshold),
            "voting_period_seconds": overrides.get("voting_period_seconds", settings.default_voting_period_seconds),
            "execution_delay_seconds": overrides.get("execution_delay_seconds", settings.default_execution_delay_seconds),
            "quorum_percentage": overrides.get("quorum_percentage", settings.default_quorum_percentage),
            "super_majority_threshold": overrides.get("super_majority_threshold", settings.default_super_majority_threshold),
            "default_voting_type": overrides.get("default_voting_type") or VotingType.SIMPLE_MAJORITY.value,
        }
        validate_governance_settings(values)
        values["min_proposal_threshold"] = to_decimal(values["min_proposal_threshold"])

        async with self.store.transaction():
            organization = Organization(**values, is_active=True, version=1, created_at=self.clock())
            await self.store.insert(organization)

        logger.info("Organization created", dao_id=organization.id, name=name)
        return organization

    async def get_organization(self, dao_id: str) -> Organization:
        return await self.store.get(Organization, dao_id)

    async def list_organizations(self, active_only: bool = True, limit: int = 50, offset: int = 0) -> List[Organization]:
        filters = [Organization.is_active.is_(True)] if active_only else []
        return await self.store.query(
            Organization,
            filters=filters,
            order_by=[Organization.created_at.desc(), Organization.id],
            limit=limit,
            offset=offset,
        )

    async def _require_admin(self, dao_id: str, actor_id: str) -> Member:
        actor = await self.store.find(Member, id=actor_id)
        if actor is None or actor.dao_id != dao_id or not actor.is_active or actor.role not in ADMIN_ROLES:
            raise NotAuthorized("Only organization admins can change settings", dao_id=dao_id)
        return actor

    async def update_organization(
        self,
        dao_id: str,
        patch: Dict[str, Any],
        actor_id: str,
        expected_version: Optional[int] = None,
    ) -> Organization:
        unknown = set(patch) - MUTABLE_SETTINGS
        if unknown:
            raise ValidationError(f"Settings cannot be changed: {', '.join(sorted(unknown))}", fields=sorted(unknown))
        validate_governance_settings(patch)

        async with self.store.transaction():
            organization = await self.store.get(Organization, dao_id)
            await self._require_admin(dao_id, actor_id)
            values = dict(patch)
            if "min_proposal_threshold" in values:
                values["min_proposal_threshold"] = to_decimal(values["min_proposal_threshold"])
            values["updated_at"] = self.clock()
            changed = await self.store.update(
                Organization,
                dao_id,
                values,
                expected_version=expected_version if expected_version is not None else organization.version,
            )
            if not changed:
                raise Conflict("Organization was modified concurrently", dao_id=dao_id)

        logger.info("Organization updated", dao_id=dao_id, fields=sorted(patch), actor_id=actor_id)
        return await self.store.get(Organization, dao_id)

    async def deactivate_organization(self, dao_id: str, actor_id: str) -> Organization:
        async with self.store.transaction():
            await self.store.get(Organization, dao_id)
            await self._require_admin(dao_id, actor_id)
            await self.store.update(Organization, dao_id, {"is_active": False, "updated_at": self.clock()})
        logger.info("Organization deactivated", dao_id=dao_id, actor_id=actor_id)
        return await self.store.get(Organization, dao_id)

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    async def join(
        self,
        dao_id: str,
        user_id: str,
        wallet_address: Optional[str] = None,
        governance_tokens: Any = 0,
        role: str = MemberRole.MEMBER.value,
    ) -> Member:
        if not user_id or len(user_id) > 64:
            raise ValidationError("User id must be 1-64 characters", field="user_id")
        if role not in {r.value for r in MemberRole}:
            raise ValidationError(f"Unknown role: {role}", field="role")
        wallet = validate_wallet_address(wallet_address)

        async with self.store.transaction():
            organization = await self.store.get(Organization, dao_id)
            tokens = validate_token_amount(governance_tokens, organization.governance_token_decimals)
            if not organization.is_active:
                raise ValidationError("Organization is inactive", dao_id=dao_id)
            now = self.clock()
            member = Member(
                dao_id=dao_id,
                user_id=user_id,
                wallet_address=wallet,
                role=role,
                governance_tokens=tokens,
                voting_power=self.resolver.power_from_balance(tokens),
                joined_at=now,
                last_active_at=now,
                is_active=True,
            )
            try:
                await self.store.insert(member)
            except Conflict:
                raise Conflict("User is already a member of this organization", dao_id=dao_id, user_id=user_id)

        logger.info("Member joined", dao_id=dao_id, member_id=member.id, role=role)
        return member

    async def get_member(self, member_id: str) -> Member:
        return await self.store.get(Member, member_id)

    async def list_members(
        self,
        dao_id: str,
        active_only: bool = True,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Member]:
        await self.store.get(Organization, dao_id)
        filters = [Member.dao_id == dao_id]
        if active_only:
            filters.append(Member.is_active.is_(True))
        return await self.store.query(
            Member,
            filters=filters,
            order_by=[Member.governance_tokens.desc(), Member.joined_at],
            limit=limit,
            offset=offset,
        )

    async def set_governance_tokens(self, member_id: str, amount: Any) -> Member:
        """Record a new token balance; the cached voting power follows it."""
        async with self.store.transaction():
            member = await self.store.get(Member, member_id)
            organization = await self.store.get(Organization, member.dao_id)
            tokens = validate_token_amount(amount, organization.governance_token_decimals)
            await self.store.update(
                Member,
                member_id,
                {"governance_tokens": tokens, "voting_power": self.resolver.power_from_balance(tokens)},
            )
        return await self.store.get(Member, member_id)

    async def deactivate_member(self, member_id: str) -> Member:
        async with self.store.transaction():
            await self.store.get(Member, member_id)
            await self.store.update(Member, member_id, {"is_active": False})
        return await self.store.get(Member, member_id)

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    async def stats(self, dao_id: str) -> DAOStats:
        await self.store.get(Organization, dao_id)
        settings = get_settings()
        activity_cutoff = self.clock() - timedelta(days=settings.member_activity_window_days)
        eligible = [Member.dao_id == dao_id, Member.is_active.is_(True)]

        total_members = await self.store.scalar(
            select(func.count(Member.id)).where(Member.dao_id == dao_id), "count dao_members"
        )
        eligible_members = await self.store.scalar(
            select(func.count(Member.id)).where(*eligible), "count eligible dao_members"
        )
        active_members = await self.store.scalar(
            select(func.count(Member.id)).where(*eligible, Member.last_active_at >= activity_cutoff),
            "count active dao_members",
        )
        total_proposals = await self.store.scalar(
            select(func.count(Proposal.id)).where(Proposal.dao_id == dao_id), "count dao_proposals"
        )
        active_proposals = await self.store.scalar(
            select(func.count(Proposal.id)).where(
                Proposal.dao_id == dao_id,
                Proposal.status == ProposalStatus.ACTIVE.value,
            ),
            "count active dao_proposals",
        )

        # Average participation over the ten most recent passed proposals
        recent = await self.store.query(
            Proposal,
            filters=[
                Proposal.dao_id == dao_id,
                Proposal.status.in_([ProposalStatus.PASSED.value, ProposalStatus.EXECUTED.value]),
            ],
            order_by=[Proposal.created_at.desc()],
            limit=10,
        )
        participation = sum(p.participation_rate or 0.0 for p in recent) / len(recent) if recent else 0.0

        total_power = await self.resolver.total_eligible_power(dao_id)
        average_power = total_power / eligible_members if eligible_members else ZERO

        return DAOStats(
            total_members=total_members or 0,
            active_members=active_members or 0,
            total_proposals=total_proposals or 0,
            active_proposals=active_proposals or 0,
            participation_rate=participation,
            average_voting_power=average_power,
        )
