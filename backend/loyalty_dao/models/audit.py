"""Governance audit event model."""
import enum

from sqlalchemy import Column, Integer, String, DateTime, Text, JSON, Index

from loyalty_dao.models.database import Base, utcnow


class GovernanceEventType(str, enum.Enum):
    """All audited governance events."""
    # Proposals
    PROPOSAL_CREATED = "proposal_created"
    PROPOSAL_ACTIVATED = "proposal_activated"
    PROPOSAL_WITHDRAWN = "proposal_withdrawn"
    PROPOSAL_RESOLVED = "proposal_resolved"
    PROPOSAL_EXECUTED = "proposal_executed"

    # Voting
    VOTE_CAST = "vote_cast"

    # Change requests
    CHANGE_REQUESTED = "change_requested"
    CHANGE_PROPOSAL_DEFERRED = "change_proposal_deferred"
    CHANGE_IMPLEMENTED = "change_implemented"


class GovernanceEvent(Base):
    """
    Append-only trail of governance state changes.

    Rows are written in the same transaction as the change they describe, so
    the trail never records something that was rolled back.
    """
    __tablename__ = "governance_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    dao_id = Column(String(36), nullable=False, index=True)
    event_type = Column(String(40), nullable=False, index=True)
    actor = Column(String(64), nullable=True)  # member id or "system"
    reference_id = Column(String(36), nullable=True)
    reference_type = Column(String(30), nullable=True)  # proposal, vote, change_request
    data = Column(JSON, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        Index("ix_governance_events_reference", "reference_type", "reference_id"),
    )

    def __repr__(self):
        return f"<GovernanceEvent(id={self.id}, type={self.event_type}, ref={self.reference_id})>"
