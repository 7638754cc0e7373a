"""Organization and membership schemas"""
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, Dict, Any, List

from loyalty_dao.models.organization import MemberRole, VotingType


class CreateOrganizationRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    governance_token_symbol: Optional[str] = None
    governance_token_decimals: Optional[int] = None
    min_proposal_threshold: Optional[float] = None
    voting_period_seconds: Optional[int] = None
    execution_delay_seconds: Optional[int] = None
    quorum_percentage: Optional[float] = None
    super_majority_threshold: Optional[float] = None
    default_voting_type: Optional[VotingType] = None


class UpdateOrganizationRequest(BaseModel):
    actor_id: str  # Member making the change; must be an admin
    expected_version: Optional[int] = None
    name: Optional[str] = None
    description: Optional[str] = None
    min_proposal_threshold: Optional[float] = None
    voting_period_seconds: Optional[int] = None
    execution_delay_seconds: Optional[int] = None
    quorum_percentage: Optional[float] = None
    super_majority_threshold: Optional[float] = None
    default_voting_type: Optional[VotingType] = None

    def settings_patch(self) -> Dict[str, Any]:
        patch = self.model_dump(exclude_unset=True, exclude={"actor_id", "expected_version"})
        if "default_voting_type" in patch and patch["default_voting_type"] is not None:
            patch["default_voting_type"] = VotingType(patch["default_voting_type"]).value
        return patch


class OrganizationResponse(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    governance_token_symbol: str
    governance_token_decimals: int
    min_proposal_threshold: float
    voting_period_seconds: int
    execution_delay_seconds: int
    quorum_percentage: float
    super_majority_threshold: float
    default_voting_type: str
    is_active: bool
    version: int
    created_at: Optional[datetime] = None


class JoinRequest(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    wallet_address: Optional[str] = None
    governance_tokens: float = 0
    role: MemberRole = MemberRole.MEMBER


class SetTokensRequest(BaseModel):
    governance_tokens: float = Field(..., ge=0)


class MemberResponse(BaseModel):
    id: str
    dao_id: str
    user_id: str
    wallet_address: Optional[str] = None
    role: str
    governance_tokens: float
    voting_power: float
    joined_at: Optional[datetime] = None
    last_active_at: Optional[datetime] = None
    is_active: bool


class DAOStatsResponse(BaseModel):
    total_members: int
    active_members: int
    total_proposals: int
    active_proposals: int
    participation_rate: float
    average_voting_power: float


class GovernanceEventResponse(BaseModel):
    id: int
    event_type: str
    actor: Optional[str] = None
    reference_id: Optional[str] = None
    reference_type: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None


class MemberListResponse(BaseModel):
    members: List[MemberResponse]
    total: int
