"""Proposal, voting and execution API endpoints"""
from datetime import datetime
from typing import Callable, List, Optional

from fastapi import APIRouter, Depends, Path, Query

from loyalty_dao.api.v1.deps import get_clock, get_store
from loyalty_dao.models.governance import Proposal, Vote
from loyalty_dao.schemas.governance import (
    CreateProposalRequest,
    ExecutionResponse,
    MemberActionRequest,
    ProposalResponse,
    ProposalResultsResponse,
    VoteRequest,
    VoteResponse,
    VotingPowerResponse,
)
from loyalty_dao.services.config_store import ConfigurationStore, get_config_store
from loyalty_dao.services.execution import ExecutionCoordinator
from loyalty_dao.services.ledger import LedgerStore
from loyalty_dao.services.lifecycle import ProposalLifecycle
from loyalty_dao.services.tally import VoteTallyService
from loyalty_dao.services.voting_power import VotingPowerResolver

# Mounted under /daos/{dao_id}/proposals
dao_router = APIRouter()
# Mounted under /proposals
router = APIRouter()


def _proposal_to_response(p: Proposal) -> ProposalResponse:
    """Convert Proposal model to response schema"""
    return ProposalResponse(
        id=p.id,
        dao_id=p.dao_id,
        proposer_id=p.proposer_id,
        title=p.title,
        description=p.description,
        full_description=p.full_description,
        category=p.category,
        tags=list(p.tags or []),
        voting_type=p.voting_type,
        status=p.status,
        start_time=p.start_time,
        end_time=p.end_time,
        total_votes=float(p.total_votes or 0),
        yes_votes=float(p.yes_votes or 0),
        no_votes=float(p.no_votes or 0),
        abstain_votes=float(p.abstain_votes or 0),
        participation_rate=float(p.participation_rate or 0),
        approval_percentage=p.approval_percentage,
        created_at=p.created_at,
        resolved_at=p.resolved_at,
        executed_at=p.executed_at,
    )


def _vote_to_response(v: Vote) -> VoteResponse:
    return VoteResponse(
        id=v.id,
        proposal_id=v.proposal_id,
        voter_id=v.voter_id,
        choice=v.choice,
        voting_power=float(v.voting_power or 0),
        reason=v.reason,
        created_at=v.created_at,
    )


@dao_router.post("", response_model=ProposalResponse, status_code=201)
async def create_proposal(
    request: CreateProposalRequest,
    dao_id: str = Path(...),
    store: LedgerStore = Depends(get_store),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """
    Create a proposal.

    A proposer below the organization's threshold gets a 403 ThresholdNotMet;
    the proposal is kept as a draft and its id is returned in the error body.
    """
    proposal = await ProposalLifecycle(store, clock=clock).create_proposal(
        dao_id,
        request.proposer_id,
        title=request.title,
        description=request.description,
        category=request.category,
        voting_type=request.voting_type.value if request.voting_type else None,
        full_description=request.full_description,
        tags=request.tags,
    )
    return _proposal_to_response(proposal)


@dao_router.get("", response_model=List[ProposalResponse])
async def list_proposals(
    dao_id: str = Path(...),
    status: Optional[str] = None,
    category: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    store: LedgerStore = Depends(get_store),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """List proposals, optionally filtered by status and category"""
    proposals = await ProposalLifecycle(store, clock=clock).list_proposals(
        dao_id, status=status, category=category, limit=limit, offset=offset
    )
    return [_proposal_to_response(p) for p in proposals]


@router.get("/{proposal_id}", response_model=ProposalResponse)
async def get_proposal(
    proposal_id: str = Path(...),
    store: LedgerStore = Depends(get_store),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Get a proposal, resolving it first if its voting window has closed"""
    return _proposal_to_response(await ProposalLifecycle(store, clock=clock).get_proposal(proposal_id))


@router.post("/{proposal_id}/activate", response_model=ProposalResponse)
async def activate_proposal(
    proposal_id: str = Path(...),
    store: LedgerStore = Depends(get_store),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Open voting on a draft whose proposer now meets the threshold"""
    return _proposal_to_response(await ProposalLifecycle(store, clock=clock).activate(proposal_id))


@router.post("/{proposal_id}/withdraw", response_model=ProposalResponse)
async def withdraw_proposal(
    request: MemberActionRequest,
    proposal_id: str = Path(...),
    store: LedgerStore = Depends(get_store),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Withdraw a draft (proposer only)"""
    proposal = await ProposalLifecycle(store, clock=clock).withdraw(proposal_id, request.member_id)
    return _proposal_to_response(proposal)


@router.post("/{proposal_id}/votes", response_model=VoteResponse, status_code=201)
async def cast_vote(
    request: VoteRequest,
    proposal_id: str = Path(...),
    store: LedgerStore = Depends(get_store),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Cast a vote weighted by the voter's current governance tokens"""
    vote = await VoteTallyService(store, clock=clock).cast_vote(
        proposal_id,
        request.voter_id,
        request.choice.value,
        reason=request.reason,
    )
    return _vote_to_response(vote)


@router.get("/{proposal_id}/votes", response_model=List[VoteResponse])
async def list_votes(
    proposal_id: str = Path(...),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    store: LedgerStore = Depends(get_store),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """List votes in the order they were cast"""
    votes = await VoteTallyService(store, clock=clock).list_votes(proposal_id, limit=limit, offset=offset)
    return [_vote_to_response(v) for v in votes]


@router.get("/{proposal_id}/results", response_model=ProposalResultsResponse)
async def get_results(
    proposal_id: str = Path(...),
    store: LedgerStore = Depends(get_store),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Power-weighted results with quorum and threshold status"""
    results = await VoteTallyService(store, clock=clock).results(proposal_id)
    return ProposalResultsResponse(
        proposal_id=results.proposal_id,
        status=results.status,
        total_votes=float(results.total_votes),
        yes_votes=float(results.yes_votes),
        no_votes=float(results.no_votes),
        abstain_votes=float(results.abstain_votes),
        participation_rate=results.participation_rate,
        yes_percentage=results.yes_percentage,
        no_percentage=results.no_percentage,
        abstain_percentage=results.abstain_percentage,
        quorum_met=results.quorum_met,
        threshold_met=results.threshold_met,
        time_remaining_seconds=results.time_remaining_seconds,
        voter_count=results.voter_count,
    )


@router.get("/{proposal_id}/voting-power/{member_id}", response_model=VotingPowerResponse)
async def get_voting_power(
    proposal_id: str = Path(...),
    member_id: str = Path(...),
    store: LedgerStore = Depends(get_store),
):
    """Voting power a member would cast on this proposal right now"""
    result = await VotingPowerResolver(store).resolve(member_id, proposal_id)
    return VotingPowerResponse(
        member_id=member_id,
        proposal_id=proposal_id,
        voting_power=float(result.power),
        eligible=result.eligible,
        reason=result.reason.value if result.reason else None,
    )


@router.post("/{proposal_id}/execute", response_model=ExecutionResponse)
async def execute_proposal(
    proposal_id: str = Path(...),
    store: LedgerStore = Depends(get_store),
    config_store: ConfigurationStore = Depends(get_config_store),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """
    Execute a passed proposal once its delay has elapsed.

    Repeated calls are safe: the outcome is ``already_executed`` and the
    parameter is not applied again. ``not_ready`` carries ``ready_at`` when
    the delay is still running.
    """
    result = await ExecutionCoordinator(store, config_store, clock=clock).execute_if_ready(proposal_id)
    return ExecutionResponse(
        proposal_id=result.proposal_id,
        outcome=result.outcome.value,
        status=result.status,
        executed_at=result.executed_at,
        ready_at=result.ready_at,
        change_request_id=result.change_request_id,
        parameter_name=result.parameter_name,
        applied_value=result.applied_value,
        reason=result.reason,
    )
