"""DAO organization and membership models"""
import enum
import uuid

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Float, Numeric, Text,
    ForeignKey, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from loyalty_dao.models.database import TOKEN_SCALE, Base, utcnow


def new_id() -> str:
    return str(uuid.uuid4())


class VotingType(str, enum.Enum):
    SIMPLE_MAJORITY = "simple_majority"
    SUPER_MAJORITY = "super_majority"


class MemberRole(str, enum.Enum):
    MEMBER = "member"
    MODERATOR = "moderator"
    ADMIN = "admin"
    FOUNDER = "founder"


# Roles allowed to change organization settings
ADMIN_ROLES = {MemberRole.ADMIN.value, MemberRole.FOUNDER.value}


class Organization(Base):
    """A tenant DAO and its governance parameters"""
    __tablename__ = "dao_organizations"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    governance_token_symbol = Column(String(10), nullable=False)
    governance_token_decimals = Column(Integer, nullable=False, default=9)
    min_proposal_threshold = Column(Numeric(38, TOKEN_SCALE), nullable=False, default=0)
    voting_period_seconds = Column(Integer, nullable=False)
    execution_delay_seconds = Column(Integer, nullable=False, default=0)
    quorum_percentage = Column(Float, nullable=False)  # 0-100
    super_majority_threshold = Column(Float, nullable=False)  # 0-100
    default_voting_type = Column(String(20), nullable=False, default=VotingType.SIMPLE_MAJORITY.value)
    is_active = Column(Boolean, nullable=False, default=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Organization {self.name} ({self.governance_token_symbol})>"


class Member(Base):
    """Membership of a user in a DAO"""
    __tablename__ = "dao_members"

    id = Column(String(36), primary_key=True, default=new_id)
    dao_id = Column(String(36), ForeignKey("dao_organizations.id"), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    wallet_address = Column(String(44), nullable=True)
    role = Column(String(20), nullable=False, default=MemberRole.MEMBER.value)
    governance_tokens = Column(Numeric(38, TOKEN_SCALE), nullable=False, default=0)
    voting_power = Column(Numeric(38, TOKEN_SCALE), nullable=False, default=0)  # cached, not authoritative
    joined_at = Column(DateTime, default=utcnow)
    last_active_at = Column(DateTime, default=utcnow)
    is_active = Column(Boolean, nullable=False, default=True)

    # Relationships
    organization = relationship("Organization")

    __table_args__ = (
        UniqueConstraint("dao_id", "user_id", name="uq_dao_members_dao_user"),
    )

    def __repr__(self):
        return f"<Member {self.user_id} in {self.dao_id} ({self.role})>"
