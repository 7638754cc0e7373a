"""Database models"""
from loyalty_dao.models.database import Base, get_db
from loyalty_dao.models.organization import Organization, Member, MemberRole, VotingType
from loyalty_dao.models.governance import Proposal, Vote, ProposalStatus, VoteChoice
from loyalty_dao.models.change_request import (
    ChangeRequest,
    ChangeRequestStatus,
    LoyaltyChangeType,
    LoyaltyParameter,
)
from loyalty_dao.models.audit import GovernanceEvent, GovernanceEventType

__all__ = [
    "Base",
    "get_db",
    "Organization",
    "Member",
    "MemberRole",
    "VotingType",
    "Proposal",
    "Vote",
    "ProposalStatus",
    "VoteChoice",
    # Change requests
    "ChangeRequest",
    "ChangeRequestStatus",
    "LoyaltyChangeType",
    "LoyaltyParameter",
    # Audit trail
    "GovernanceEvent",
    "GovernanceEventType",
]
