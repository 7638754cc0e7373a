"""Proposal sweeper for resolving closed voting windows and executing passed proposals."""
import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_dao.errors import GovernanceError
from loyalty_dao.models.database import async_session_factory, utcnow
from loyalty_dao.models.governance import Proposal, ProposalStatus
from loyalty_dao.services.config_store import ConfigurationStore, get_config_store
from loyalty_dao.services.execution import ExecutionCoordinator, ExecutionOutcome
from loyalty_dao.services.ledger import LedgerStore
from loyalty_dao.services.lifecycle import ProposalLifecycle

logger = structlog.get_logger()


@dataclass
class SweepReport:
    resolved: int = 0
    executed: int = 0
    errors: int = 0


class ProposalSweeper:
    """
    Background task that runs lifecycle resolution on a fixed interval.

    Reads resolve proposals lazily as well; the sweeper only guarantees that
    nothing waits on a read to close. Every transition it makes is guarded,
    so several workers can sweep at once.
    """

    def __init__(
        self,
        interval_seconds: int = 60,
        auto_execute: bool = True,
        session_factory: Callable[[], AsyncSession] = async_session_factory,
        config_store: Optional[ConfigurationStore] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the proposal sweeper.

        Args:
            interval_seconds: How often to sweep (default: 60s)
            auto_execute: Execute passed proposals once their delay elapses
            session_factory: Source of database sessions
            config_store: Target for executed parameter changes
            clock: Time source
        """
        self.interval_seconds = interval_seconds
        self.auto_execute = auto_execute
        self.session_factory = session_factory
        self.config_store = config_store
        self.clock = clock
        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self):
        """Start the background sweeper."""
        if self._running:
            logger.warning("Proposal sweeper already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Proposal sweeper started", interval_seconds=self.interval_seconds)

    async def stop(self):
        """Stop the background sweeper."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Proposal sweeper stopped")

    async def _run_loop(self):
        """Main sweeper loop."""
        while self._running:
            try:
                await self.sweep()
            except Exception as e:
                logger.error("Error in proposal sweeper", error=str(e))

            await asyncio.sleep(self.interval_seconds)

    async def sweep(self) -> SweepReport:
        """Resolve every due proposal, then execute passed ones if enabled."""
        report = SweepReport()
        async with self.session_factory() as db:
            store = LedgerStore(db)
            lifecycle = ProposalLifecycle(store, clock=self.clock)

            for proposal_id in await lifecycle.list_due():
                try:
                    proposal = await lifecycle.refresh(proposal_id)
                    if proposal.status != ProposalStatus.ACTIVE.value:
                        report.resolved += 1
                except GovernanceError as e:
                    report.errors += 1
                    await db.rollback()
                    logger.error("Failed to resolve proposal", proposal_id=proposal_id, error=e.detail)

            if self.auto_execute:
                await self._execute_passed(store, report)

        if report.resolved or report.executed or report.errors:
            logger.info(
                "Proposal sweep finished",
                resolved=report.resolved,
                executed=report.executed,
                errors=report.errors,
            )
        return report

    async def _execute_passed(self, store: LedgerStore, report: SweepReport) -> None:
        coordinator = ExecutionCoordinator(
            store,
            self.config_store or get_config_store(),
            clock=self.clock,
        )
        result = await store.execute(
            select(Proposal.id).where(Proposal.status == ProposalStatus.PASSED.value),
            "query passed proposals",
        )
        for proposal_id in result.scalars().all():
            try:
                outcome = await coordinator.execute_if_ready(proposal_id)
                if outcome.outcome == ExecutionOutcome.EXECUTED:
                    report.executed += 1
            except GovernanceError as e:
                report.errors += 1
                await store.db.rollback()
                logger.error("Failed to execute proposal", proposal_id=proposal_id, error=e.detail)


# Singleton instance
_sweeper: Optional[ProposalSweeper] = None


def get_proposal_sweeper(interval_seconds: int = 60, auto_execute: bool = True) -> ProposalSweeper:
    """Get or create the singleton proposal sweeper."""
    global _sweeper
    if _sweeper is None:
        _sweeper = ProposalSweeper(interval_seconds=interval_seconds, auto_execute=auto_execute)
    return _sweeper


async def start_proposal_sweeper(interval_seconds: int = 60, auto_execute: bool = True):
    """Start the proposal sweeper."""
    sweeper = get_proposal_sweeper(interval_seconds, auto_execute)
    await sweeper.start()


async def stop_proposal_sweeper():
    """Stop the proposal sweeper."""
    global _sweeper
    if _sweeper:
        await _sweeper.stop()
        _sweeper = None
