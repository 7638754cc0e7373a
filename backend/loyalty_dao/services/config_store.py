"""Configuration store for governed loyalty parameters."""
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_dao.errors import ParameterApplyFailed
from loyalty_dao.models.change_request import LoyaltyParameter
from loyalty_dao.models.database import async_session_factory, utcnow

logger = structlog.get_logger()


class ConfigurationStore(ABC):
    """
    Target of approved parameter changes.

    ``apply_parameter`` must be idempotent by name: applying the value a
    parameter already holds is a no-op. It is not transactional with the
    ledger store.
    """

    @abstractmethod
    async def apply_parameter(self, name: str, value: Any, proposal_id: Optional[str] = None) -> None:
        """Set ``name`` to ``value``; raise ParameterApplyFailed on failure."""

    @abstractmethod
    async def get_parameter(self, name: str) -> Optional[Any]:
        """Current value of ``name`` or None when unset."""


class DatabaseConfigurationStore(ConfigurationStore):
    """Upserts into ``loyalty_parameters`` using its own session per call."""

    def __init__(self, session_factory: Callable[[], AsyncSession]):
        self.session_factory = session_factory

    async def apply_parameter(self, name: str, value: Any, proposal_id: Optional[str] = None) -> None:
        try:
            async with self.session_factory() as session:
                parameter = await session.get(LoyaltyParameter, name)
                if parameter is None:
                    session.add(LoyaltyParameter(
                        name=name,
                        value=value,
                        updated_by_proposal=proposal_id,
                        updated_at=utcnow(),
                    ))
                elif parameter.value == value:
                    logger.info("Parameter already holds value, skipping", parameter=name)
                    return
                else:
                    parameter.value = value
                    parameter.updated_by_proposal = proposal_id
                    parameter.updated_at = utcnow()
                await session.commit()
        except SQLAlchemyError as e:
            logger.error("Failed to apply loyalty parameter", parameter=name, error=str(e))
            raise ParameterApplyFailed(f"Could not apply parameter {name}", parameter=name) from e

        logger.info("Applied loyalty parameter", parameter=name, proposal_id=proposal_id)

    async def get_parameter(self, name: str) -> Optional[Any]:
        async with self.session_factory() as session:
            parameter = await session.get(LoyaltyParameter, name)
            return parameter.value if parameter is not None else None

    async def all_parameters(self) -> Dict[str, Any]:
        async with self.session_factory() as session:
            result = await session.execute(select(LoyaltyParameter).order_by(LoyaltyParameter.name))
            return {p.name: p.value for p in result.scalars().all()}


_config_store: Optional[ConfigurationStore] = None


def get_config_store() -> ConfigurationStore:
    """Get or create configuration store singleton"""
    global _config_store
    if _config_store is None:
        _config_store = DatabaseConfigurationStore(async_session_factory)
    return _config_store
