"""Ledger store: transactional access to governance tables with typed failures."""
import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Dict, Iterable, List, Optional, Sequence, Type, TypeVar

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_dao.config import get_settings
from loyalty_dao.errors import Conflict, NotFound, StoreUnavailable
from loyalty_dao.models.database import Base

logger = structlog.get_logger()

ModelT = TypeVar("ModelT", bound=Base)
T = TypeVar("T")


class LedgerStore:
    """
    Thin wrapper over an AsyncSession.

    Every call is bounded by ``store_timeout_seconds``. Driver failures are
    translated into ``Conflict`` (unique or version violations) and
    ``StoreUnavailable`` (timeouts, lost connections). Nothing here retries.
    """

    def __init__(self, db: AsyncSession, timeout: Optional[float] = None):
        self.db = db
        self.timeout = timeout if timeout is not None else get_settings().store_timeout_seconds
        self._depth = 0

    async def _call(self, awaitable: Awaitable[T], operation: str) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error("Ledger store call timed out", operation=operation, timeout=self.timeout)
            raise StoreUnavailable(f"Ledger store timed out during {operation}", operation=operation)
        except IntegrityError as e:
            raise Conflict(f"Constraint violated during {operation}", operation=operation) from e
        except (OperationalError, InterfaceError) as e:
            logger.error("Ledger store unavailable", operation=operation, error=str(e))
            raise StoreUnavailable(f"Ledger store unavailable during {operation}", operation=operation) from e

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["LedgerStore"]:
        """
        Group calls into one commit.

        Nested use joins the outermost transaction; only the outermost block
        commits or rolls back.
        """
        self._depth += 1
        try:
            yield self
            if self._depth == 1:
                await self._call(self.db.commit(), "commit")
        except BaseException:
            if self._depth == 1:
                await self.db.rollback()
            raise
        finally:
            self._depth -= 1

    async def get(self, model: Type[ModelT], id: Any, for_update: bool = False) -> ModelT:
        row = await self.find(model, for_update=for_update, id=id)
        if row is None:
            raise NotFound(f"{model.__name__} not found", entity=model.__tablename__, id=str(id))
        return row

    async def find(self, model: Type[ModelT], for_update: bool = False, **filters: Any) -> Optional[ModelT]:
        stmt = select(model).filter_by(**filters).execution_options(populate_existing=True)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._call(self.db.execute(stmt), f"get {model.__tablename__}")
        return result.scalars().first()

    async def insert(self, row: ModelT) -> ModelT:
        self.db.add(row)
        await self._call(self.db.flush(), f"insert {row.__tablename__}")
        return row

    async def update(
        self,
        model: Type[ModelT],
        id: Any,
        patch: Dict[str, Any],
        expected_version: Optional[int] = None,
        where: Sequence[Any] = (),
    ) -> int:
        """
        Single conditional UPDATE. Returns the number of rows changed.

        ``where`` adds guard conditions (e.g. ``Proposal.status == 'active'``);
        a zero return means a guard or the version check did not match.
        """
        conditions = [model.id == id, *where]
        values = dict(patch)
        if expected_version is not None:
            conditions.append(model.version == expected_version)
            values["version"] = model.version + 1
        return await self.update_where(model, conditions, values)

    async def update_where(self, model: Type[ModelT], conditions: Sequence[Any], patch: Dict[str, Any]) -> int:
        stmt = (
            update(model)
            .where(*conditions)
            .values(**patch)
            .execution_options(synchronize_session=False)
        )
        result = await self._call(self.db.execute(stmt), f"update {model.__tablename__}")
        return result.rowcount

    async def query(
        self,
        model: Type[ModelT],
        filters: Iterable[Any] = (),
        order_by: Iterable[Any] = (),
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[ModelT]:
        stmt = select(model).where(*filters).order_by(*order_by).execution_options(populate_existing=True)
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset:
            stmt = stmt.offset(offset)
        result = await self._call(self.db.execute(stmt), f"query {model.__tablename__}")
        return list(result.scalars().all())

    async def scalar(self, stmt: Any, operation: str = "scalar") -> Any:
        result = await self._call(self.db.execute(stmt), operation)
        return result.scalar()

    async def execute(self, stmt: Any, operation: str = "execute") -> Any:
        return await self._call(self.db.execute(stmt), operation)
