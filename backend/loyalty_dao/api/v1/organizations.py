"""Organization and membership API endpoints"""
from datetime import datetime
from typing import Callable, List, Optional

from fastapi import APIRouter, Depends, Path, Query

from loyalty_dao.api.v1.deps import get_clock, get_store
from loyalty_dao.errors import NotFound, ValidationError
from loyalty_dao.models.audit import GovernanceEvent, GovernanceEventType
from loyalty_dao.models.organization import Member, Organization
from loyalty_dao.schemas.organization import (
    CreateOrganizationRequest,
    DAOStatsResponse,
    GovernanceEventResponse,
    JoinRequest,
    MemberListResponse,
    MemberResponse,
    OrganizationResponse,
    SetTokensRequest,
    UpdateOrganizationRequest,
)
from loyalty_dao.services.audit import AuditService
from loyalty_dao.services.ledger import LedgerStore
from loyalty_dao.services.organizations import OrganizationService

router = APIRouter()


def _organization_to_response(o: Organization) -> OrganizationResponse:
    """Convert Organization model to response schema"""
    return OrganizationResponse(
        id=o.id,
        name=o.name,
        description=o.description,
        governance_token_symbol=o.governance_token_symbol,
        governance_token_decimals=o.governance_token_decimals,
        min_proposal_threshold=float(o.min_proposal_threshold or 0),
        voting_period_seconds=o.voting_period_seconds,
        execution_delay_seconds=o.execution_delay_seconds,
        quorum_percentage=o.quorum_percentage,
        super_majority_threshold=o.super_majority_threshold,
        default_voting_type=o.default_voting_type,
        is_active=o.is_active,
        version=o.version,
        created_at=o.created_at,
    )


def _member_to_response(m: Member) -> MemberResponse:
    return MemberResponse(
        id=m.id,
        dao_id=m.dao_id,
        user_id=m.user_id,
        wallet_address=m.wallet_address,
        role=m.role,
        governance_tokens=float(m.governance_tokens or 0),
        voting_power=float(m.voting_power or 0),
        joined_at=m.joined_at,
        last_active_at=m.last_active_at,
        is_active=m.is_active,
    )


def _event_to_response(e: GovernanceEvent) -> GovernanceEventResponse:
    return GovernanceEventResponse(
        id=e.id,
        event_type=e.event_type,
        actor=e.actor,
        reference_id=e.reference_id,
        reference_type=e.reference_type,
        data=e.data,
        notes=e.notes,
        created_at=e.created_at,
    )


@router.post("", response_model=OrganizationResponse, status_code=201)
async def create_organization(
    request: CreateOrganizationRequest,
    store: LedgerStore = Depends(get_store),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Create a DAO with its governance settings"""
    overrides = request.model_dump(exclude_none=True, exclude={"name"})
    if "default_voting_type" in overrides:
        overrides["default_voting_type"] = request.default_voting_type.value
    organization = await OrganizationService(store, clock=clock).create_organization(request.name, **overrides)
    return _organization_to_response(organization)


@router.get("", response_model=List[OrganizationResponse])
async def list_organizations(
    include_inactive: bool = False,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    store: LedgerStore = Depends(get_store),
):
    """List DAOs, newest first"""
    organizations = await OrganizationService(store).list_organizations(
        active_only=not include_inactive, limit=limit, offset=offset
    )
    return [_organization_to_response(o) for o in organizations]


@router.get("/{dao_id}", response_model=OrganizationResponse)
async def get_organization(dao_id: str = Path(...), store: LedgerStore = Depends(get_store)):
    """Get a DAO"""
    return _organization_to_response(await OrganizationService(store).get_organization(dao_id))


@router.patch("/{dao_id}", response_model=OrganizationResponse)
async def update_organization(
    request: UpdateOrganizationRequest,
    dao_id: str = Path(...),
    store: LedgerStore = Depends(get_store),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Change governance settings. Admins only; settings are versioned."""
    organization = await OrganizationService(store, clock=clock).update_organization(
        dao_id,
        request.settings_patch(),
        actor_id=request.actor_id,
        expected_version=request.expected_version,
    )
    return _organization_to_response(organization)


@router.get("/{dao_id}/stats", response_model=DAOStatsResponse)
async def get_stats(
    dao_id: str = Path(...),
    store: LedgerStore = Depends(get_store),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Membership and participation statistics"""
    stats = await OrganizationService(store, clock=clock).stats(dao_id)
    return DAOStatsResponse(
        total_members=stats.total_members,
        active_members=stats.active_members,
        total_proposals=stats.total_proposals,
        active_proposals=stats.active_proposals,
        participation_rate=stats.participation_rate,
        average_voting_power=float(stats.average_voting_power),
    )


@router.get("/{dao_id}/activity", response_model=List[GovernanceEventResponse])
async def get_activity(
    dao_id: str = Path(...),
    event_type: Optional[List[str]] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    store: LedgerStore = Depends(get_store),
):
    """Governance audit trail, newest first"""
    event_types = None
    if event_type:
        try:
            event_types = [GovernanceEventType(t) for t in event_type]
        except ValueError:
            raise ValidationError(f"Unknown event type in {event_type}", field="event_type")
    await OrganizationService(store).get_organization(dao_id)
    events = await AuditService(store).get_activity(dao_id, limit=limit, offset=offset, event_types=event_types)
    return [_event_to_response(e) for e in events]


@router.post("/{dao_id}/members", response_model=MemberResponse, status_code=201)
async def join_organization(
    request: JoinRequest,
    dao_id: str = Path(...),
    store: LedgerStore = Depends(get_store),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Join a DAO"""
    member = await OrganizationService(store, clock=clock).join(
        dao_id,
        request.user_id,
        wallet_address=request.wallet_address,
        governance_tokens=request.governance_tokens,
        role=request.role.value,
    )
    return _member_to_response(member)


@router.get("/{dao_id}/members", response_model=MemberListResponse)
async def list_members(
    dao_id: str = Path(...),
    include_inactive: bool = False,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    store: LedgerStore = Depends(get_store),
):
    """List members by token balance"""
    members = await OrganizationService(store).list_members(
        dao_id, active_only=not include_inactive, limit=limit, offset=offset
    )
    return MemberListResponse(members=[_member_to_response(m) for m in members], total=len(members))


@router.put("/{dao_id}/members/{member_id}/tokens", response_model=MemberResponse)
async def set_member_tokens(
    request: SetTokensRequest,
    dao_id: str = Path(...),
    member_id: str = Path(...),
    store: LedgerStore = Depends(get_store),
):
    """Record a member's governance token balance"""
    service = OrganizationService(store)
    member = await service.get_member(member_id)
    if member.dao_id != dao_id:
        raise NotFound("Member not found in this organization", dao_id=dao_id, member_id=member_id)
    member = await service.set_governance_tokens(member_id, request.governance_tokens)
    return _member_to_response(member)
