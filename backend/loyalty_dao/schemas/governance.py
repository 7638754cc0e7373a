"""Governance schemas"""
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List, Any

from loyalty_dao.models.governance import VoteChoice
from loyalty_dao.models.organization import VotingType


class CreateProposalRequest(BaseModel):
    proposer_id: str
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1)
    full_description: Optional[str] = None
    category: str = Field(..., min_length=1, max_length=50)
    voting_type: Optional[VotingType] = None
    tags: List[str] = []


class ProposalResponse(BaseModel):
    id: str
    dao_id: str
    proposer_id: str
    title: str
    description: str
    full_description: Optional[str] = None
    category: str
    tags: List[str] = []
    voting_type: str
    status: str
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    total_votes: float
    yes_votes: float
    no_votes: float
    abstain_votes: float
    participation_rate: float
    approval_percentage: float
    created_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    executed_at: Optional[datetime] = None


class MemberActionRequest(BaseModel):
    member_id: str


class VoteRequest(BaseModel):
    voter_id: str
    choice: VoteChoice
    reason: Optional[str] = Field(None, max_length=2000)


class VoteResponse(BaseModel):
    id: str
    proposal_id: str
    voter_id: str
    choice: str
    voting_power: float
    reason: Optional[str] = None
    created_at: Optional[datetime] = None


class ProposalResultsResponse(BaseModel):
    proposal_id: str
    status: str
    total_votes: float
    yes_votes: float
    no_votes: float
    abstain_votes: float
    participation_rate: float
    yes_percentage: float
    no_percentage: float
    abstain_percentage: float
    quorum_met: bool
    threshold_met: bool
    time_remaining_seconds: Optional[int] = None
    voter_count: int


class ExecutionResponse(BaseModel):
    proposal_id: str
    outcome: str
    status: str
    executed_at: Optional[datetime] = None
    ready_at: Optional[datetime] = None
    change_request_id: Optional[str] = None
    parameter_name: Optional[str] = None
    applied_value: Any = None
    reason: Optional[str] = None


class VotingPowerResponse(BaseModel):
    member_id: str
    proposal_id: str
    voting_power: float
    eligible: bool
    reason: Optional[str] = None
