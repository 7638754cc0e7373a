"""Governance models"""
import enum

from sqlalchemy import (
    Column, String, DateTime, Float, Numeric, ForeignKey, Text, JSON,
    Index, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from loyalty_dao.models.database import TOKEN_SCALE, Base, utcnow
from loyalty_dao.models.organization import new_id


class ProposalStatus(str, enum.Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PASSED = "passed"
    FAILED = "failed"
    EXPIRED = "expired"
    EXECUTED = "executed"
    CANCELLED = "cancelled"  # draft withdrawn by its proposer


class VoteChoice(str, enum.Enum):
    YES = "yes"
    NO = "no"
    ABSTAIN = "abstain"


# Category assigned to proposals generated from change requests
GOVERNANCE_CHANGE_CATEGORY = "governance-change"


class Proposal(Base):
    """Governance proposal"""
    __tablename__ = "dao_proposals"

    id = Column(String(36), primary_key=True, default=new_id)
    dao_id = Column(String(36), ForeignKey("dao_organizations.id"), nullable=False, index=True)
    proposer_id = Column(String(36), ForeignKey("dao_members.id"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    full_description = Column(Text, nullable=True)
    category = Column(String(50), nullable=False, index=True)
    tags = Column(JSON, nullable=False, default=list)
    voting_type = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, index=True)
    start_time = Column(DateTime, nullable=True)
    end_time = Column(DateTime, nullable=True, index=True)

    # Vote-power weighted tallies
    total_votes = Column(Numeric(38, TOKEN_SCALE), nullable=False, default=0)
    yes_votes = Column(Numeric(38, TOKEN_SCALE), nullable=False, default=0)
    no_votes = Column(Numeric(38, TOKEN_SCALE), nullable=False, default=0)
    abstain_votes = Column(Numeric(38, TOKEN_SCALE), nullable=False, default=0)
    participation_rate = Column(Float, nullable=False, default=0.0)  # percent of eligible power

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    resolved_at = Column(DateTime, nullable=True)
    executed_at = Column(DateTime, nullable=True)

    # Relationships
    organization = relationship("Organization")

    __table_args__ = (
        Index("ix_dao_proposals_dao_status", "dao_id", "status"),
    )

    @property
    def approval_percentage(self) -> float:
        decisive = (self.yes_votes or 0) + (self.no_votes or 0)
        if decisive == 0:
            return 0.0
        return float(self.yes_votes / decisive * 100)

    def __repr__(self):
        return f"<Proposal {self.id[:8]} ({self.status})>"


class Vote(Base):
    """Vote record"""
    __tablename__ = "dao_votes"

    id = Column(String(36), primary_key=True, default=new_id)
    proposal_id = Column(String(36), ForeignKey("dao_proposals.id"), nullable=False, index=True)
    voter_id = Column(String(36), ForeignKey("dao_members.id"), nullable=False, index=True)
    choice = Column(String(10), nullable=False)  # yes, no, abstain
    voting_power = Column(Numeric(38, TOKEN_SCALE), nullable=False)
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    # Relationships
    proposal = relationship("Proposal")

    __table_args__ = (
        UniqueConstraint("proposal_id", "voter_id", name="uq_dao_votes_proposal_voter"),
    )

    def __repr__(self):
        return f"<Vote {self.voter_id[:8]}... ({self.choice})>"
