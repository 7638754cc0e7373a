"""Change request schemas"""
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, Any

from loyalty_dao.models.change_request import LoyaltyChangeType
from loyalty_dao.schemas.governance import ProposalResponse


class SubmitChangeRequest(BaseModel):
    proposer_id: str
    change_type: LoyaltyChangeType
    parameter_name: str = Field(..., min_length=1, max_length=100)
    old_value: Any = None
    new_value: Any
    reason: str = Field(..., min_length=1)


class RetryChangeRequest(BaseModel):
    proposer_id: Optional[str] = None  # Defaults to the original proposer


class ChangeRequestResponse(BaseModel):
    id: str
    dao_id: str
    change_type: str
    parameter_name: str
    old_value: Any = None
    new_value: Any = None
    reason: str
    proposed_by: str
    status: str
    proposal_id: Optional[str] = None
    deferred_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    implemented_at: Optional[datetime] = None


class ChangeSubmissionResponse(BaseModel):
    outcome: str
    error: Optional[str] = None  # "ProposalCreationDeferred" when no proposal was created
    change_request: ChangeRequestResponse
    proposal: Optional[ProposalResponse] = None


class ApprovalResponse(BaseModel):
    change_request_id: str
    approved: bool
    proposal_id: Optional[str] = None
    proposal_status: Optional[str] = None
    reason: Optional[str] = None
