"""Audit service for recording governance events."""
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import select

from loyalty_dao.models.audit import GovernanceEvent, GovernanceEventType
from loyalty_dao.services.ledger import LedgerStore

logger = structlog.get_logger()


class AuditService:
    """Service for recording and reading the governance event trail."""

    def __init__(self, store: LedgerStore):
        self.store = store

    async def record(
        self,
        dao_id: str,
        event_type: GovernanceEventType,
        actor: Optional[str] = None,
        reference_id: Optional[str] = None,
        reference_type: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
        notes: Optional[str] = None,
    ) -> GovernanceEvent:
        """
        Record an event to the governance trail.

        Runs inside the caller's transaction; the event is committed or
        rolled back together with the change it describes.

        Args:
            dao_id: Organization the event belongs to
            event_type: The type of event (from GovernanceEventType enum)
            actor: Member id or "system"
            reference_id: ID of the related entity
            reference_type: Type of the related entity
            data: Additional event-specific data as JSON
            notes: Human-readable notes

        Returns:
            The created GovernanceEvent record
        """
        event = GovernanceEvent(
            dao_id=dao_id,
            event_type=event_type.value,
            actor=actor,
            reference_id=reference_id,
            reference_type=reference_type,
            data=data,
            notes=notes,
        )
        await self.store.insert(event)

        logger.info(
            "Recorded governance event",
            event_id=event.id,
            event_type=event_type.value,
            dao_id=dao_id,
            reference_id=reference_id,
        )

        return event

    async def get_activity(
        self,
        dao_id: str,
        limit: int = 50,
        offset: int = 0,
        event_types: Optional[List[GovernanceEventType]] = None,
    ) -> List[GovernanceEvent]:
        """
        Get governance activity for an organization, newest first.

        Args:
            dao_id: The organization to get activity for
            limit: Maximum records to return
            offset: Records to skip
            event_types: Optional filter for specific event types
        """
        filters = [GovernanceEvent.dao_id == dao_id]
        if event_types:
            filters.append(GovernanceEvent.event_type.in_([t.value for t in event_types]))

        return await self.store.query(
            GovernanceEvent,
            filters=filters,
            order_by=[GovernanceEvent.id.desc()],
            limit=limit,
            offset=offset,
        )

    async def get_reference_history(self, reference_type: str, reference_id: str) -> List[GovernanceEvent]:
        """Get every event for one entity in the order they happened."""
        result = await self.store.execute(
            select(GovernanceEvent)
            .where(
                GovernanceEvent.reference_type == reference_type,
                GovernanceEvent.reference_id == reference_id,
            )
            .order_by(GovernanceEvent.id),
            "query governance_events",
        )
        return list(result.scalars().all())
