"""Loyalty change request API endpoints"""
from datetime import datetime
from typing import Callable, List, Optional

from fastapi import APIRouter, Depends, Path, Query
from fastapi.responses import JSONResponse

from loyalty_dao.api.v1.deps import get_clock, get_store
from loyalty_dao.api.v1.proposals import _proposal_to_response
from loyalty_dao.errors import ValidationError
from loyalty_dao.models.change_request import ChangeRequest
from loyalty_dao.schemas.change_request import (
    ApprovalResponse,
    ChangeRequestResponse,
    ChangeSubmissionResponse,
    RetryChangeRequest,
    SubmitChangeRequest,
)
from loyalty_dao.services.bridge import ChangeRequestBridge, ChangeSubmission
from loyalty_dao.services.ledger import LedgerStore
from loyalty_dao.services.voting_power import Ineligibility

# Mounted under /daos/{dao_id}/change-requests
dao_router = APIRouter()
# Mounted under /change-requests
router = APIRouter()

DEFERRED_ERROR = "ProposalCreationDeferred"


def _change_to_response(c: ChangeRequest) -> ChangeRequestResponse:
    return ChangeRequestResponse(
        id=c.id,
        dao_id=c.dao_id,
        change_type=c.change_type,
        parameter_name=c.parameter_name,
        old_value=c.old_value,
        new_value=c.new_value,
        reason=c.reason,
        proposed_by=c.proposed_by,
        status=c.status,
        proposal_id=c.proposal_id,
        deferred_reason=c.deferred_reason,
        created_at=c.created_at,
        approved_at=c.approved_at,
        implemented_at=c.implemented_at,
    )


def _submission_response(submission: ChangeSubmission) -> JSONResponse:
    """201 with the new proposal, or 202 when proposal creation was deferred"""
    body = ChangeSubmissionResponse(
        outcome=submission.outcome.value,
        error=DEFERRED_ERROR if submission.deferred else None,
        change_request=_change_to_response(submission.change_request),
        proposal=_proposal_to_response(submission.proposal) if submission.proposal else None,
    )
    return JSONResponse(
        status_code=202 if submission.deferred else 201,
        content=body.model_dump(mode="json"),
    )


@dao_router.post("", response_model=ChangeSubmissionResponse, status_code=201)
async def submit_change(
    request: SubmitChangeRequest,
    dao_id: str = Path(...),
    store: LedgerStore = Depends(get_store),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """
    Submit a loyalty parameter change and open a governance proposal for it.

    When the proposer is below the proposal threshold the request is kept as
    ``pending`` and the response is 202 with ``error: ProposalCreationDeferred``.
    """
    bridge = ChangeRequestBridge(store, clock=clock)
    proposer = await bridge.lifecycle.resolver.resolve_for_org(request.proposer_id, dao_id)
    if proposer.reason == Ineligibility.NOT_IN_ORGANIZATION:
        raise ValidationError("Proposer does not belong to this organization", dao_id=dao_id)

    submission = await bridge.submit_change(
        change_type=request.change_type.value,
        parameter_name=request.parameter_name,
        old_value=request.old_value,
        new_value=request.new_value,
        reason=request.reason,
        proposer_id=request.proposer_id,
    )
    return _submission_response(submission)


@dao_router.get("", response_model=List[ChangeRequestResponse])
async def list_change_requests(
    dao_id: str = Path(...),
    status: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    store: LedgerStore = Depends(get_store),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """List change requests, optionally filtered by status"""
    changes = await ChangeRequestBridge(store, clock=clock).list_change_requests(
        dao_id, status=status, limit=limit, offset=offset
    )
    return [_change_to_response(c) for c in changes]


@dao_router.get("/pending", response_model=List[ChangeRequestResponse])
async def list_pending_changes(
    dao_id: str = Path(...),
    store: LedgerStore = Depends(get_store),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Requests waiting on a proposal or a vote outcome"""
    changes = await ChangeRequestBridge(store, clock=clock).list_pending(dao_id)
    return [_change_to_response(c) for c in changes]


@router.get("/{change_request_id}", response_model=ChangeRequestResponse)
async def get_change_request(
    change_request_id: str = Path(...),
    store: LedgerStore = Depends(get_store),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Get a change request with its current status"""
    change = await ChangeRequestBridge(store, clock=clock).get_change_request(change_request_id)
    return _change_to_response(change)


@router.post("/{change_request_id}/retry", response_model=ChangeSubmissionResponse)
async def retry_change_request(
    request: RetryChangeRequest,
    change_request_id: str = Path(...),
    store: LedgerStore = Depends(get_store),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Re-attempt proposal creation for a deferred change request"""
    submission = await ChangeRequestBridge(store, clock=clock).retry_proposal(
        change_request_id, proposer_id=request.proposer_id
    )
    return _submission_response(submission)


@router.get("/{change_request_id}/approval", response_model=ApprovalResponse)
async def get_approval(
    change_request_id: str = Path(...),
    store: LedgerStore = Depends(get_store),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Whether the change has been ratified by a passed proposal"""
    check = await ChangeRequestBridge(store, clock=clock).validate_approval(change_request_id)
    return ApprovalResponse(
        change_request_id=change_request_id,
        approved=check.approved,
        proposal_id=check.proposal_id,
        proposal_status=check.proposal_status,
        reason=check.reason,
    )
