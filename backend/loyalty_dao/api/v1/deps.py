"""Shared API dependencies"""
from datetime import datetime
from typing import Callable

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_dao.config import get_settings
from loyalty_dao.models.database import get_db, utcnow
from loyalty_dao.services.ledger import LedgerStore


def get_clock() -> Callable[[], datetime]:
    """Time source for request handlers; tests override it to move time forward"""
    return utcnow


async def get_store(db: AsyncSession = Depends(get_db)) -> LedgerStore:
    return LedgerStore(db, timeout=get_settings().store_timeout_seconds)
