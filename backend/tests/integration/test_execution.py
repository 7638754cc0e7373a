"""Integration tests for executing passed proposals"""
import pytest

from loyalty_dao.errors import ParameterApplyFailed, StoreUnavailable
from loyalty_dao.models.audit import GovernanceEventType
from loyalty_dao.models.change_request import ChangeRequest, ChangeRequestStatus, LoyaltyParameter
from loyalty_dao.models.governance import Proposal, ProposalStatus
from loyalty_dao.services.audit import AuditService
from loyalty_dao.services.bridge import ChangeRequestBridge
from loyalty_dao.services.config_store import DatabaseConfigurationStore
from loyalty_dao.services.execution import ExecutionCoordinator, ExecutionOutcome
from loyalty_dao.services.lifecycle import ProposalLifecycle
from loyalty_dao.services.sweeper import ProposalSweeper
from loyalty_dao.services.tally import VoteTallyService


async def _passed_change(store, seed, clock, new_value=3):
    """A change request whose proposal has passed; the clock is left at the end of voting"""
    org = await seed.organization()
    proposer = await seed.member(org, tokens=500)
    submission = await ChangeRequestBridge(store, clock=clock).submit_change(
        "point_release_delay", "release_delay_days", 7, new_value, "Faster access to points", proposer.id
    )
    await VoteTallyService(store, clock=clock).cast_vote(submission.proposal.id, proposer.id, "yes")
    clock.advance(hours=1)
    return submission.change_request.id, submission.proposal.id


class TestExecuteIfReady:
    """Tests for the execution coordinator"""

    @pytest.mark.asyncio
    async def test_not_ready_during_delay(self, store, seed, clock, config_store):
        change_id, proposal_id = await _passed_change(store, seed, clock)
        coordinator = ExecutionCoordinator(store, config_store, clock=clock)

        result = await coordinator.execute_if_ready(proposal_id)

        assert result.outcome == ExecutionOutcome.NOT_READY
        assert result.status == ProposalStatus.PASSED.value
        assert (result.ready_at - clock.now).total_seconds() == 600
        assert config_store.calls == []

    @pytest.mark.asyncio
    async def test_executes_after_delay(self, store, seed, clock, config_store):
        change_id, proposal_id = await _passed_change(store, seed, clock)
        clock.advance(minutes=10)

        result = await ExecutionCoordinator(store, config_store, clock=clock).execute_if_ready(proposal_id)

        assert result.outcome == ExecutionOutcome.EXECUTED
        assert result.parameter_name == "release_delay_days"
        assert result.applied_value == 3
        assert config_store.values == {"release_delay_days": 3}
        assert config_store.calls == [("release_delay_days", 3, proposal_id)]

        proposal = await store.get(Proposal, proposal_id)
        change = await store.get(ChangeRequest, change_id)
        assert proposal.status == ProposalStatus.EXECUTED.value
        assert proposal.executed_at == clock.now
        assert change.status == ChangeRequestStatus.IMPLEMENTED.value
        assert change.implemented_at == clock.now

    @pytest.mark.asyncio
    async def test_second_execution_is_a_no_op(self, store, seed, clock, config_store):
        """Running execution twice applies the parameter once and keeps the first timestamps"""
        change_id, proposal_id = await _passed_change(store, seed, clock)
        clock.advance(minutes=10)
        coordinator = ExecutionCoordinator(store, config_store, clock=clock)
        await coordinator.execute_if_ready(proposal_id)
        first_implemented_at = (await store.get(ChangeRequest, change_id)).implemented_at

        clock.advance(minutes=5)
        result = await coordinator.execute_if_ready(proposal_id)

        assert result.outcome == ExecutionOutcome.ALREADY_EXECUTED
        assert len(config_store.calls) == 1
        assert (await store.get(ChangeRequest, change_id)).implemented_at == first_implemented_at

        history = await AuditService(store).get_reference_history("proposal", proposal_id)
        executed = [e for e in history if e.event_type == GovernanceEventType.PROPOSAL_EXECUTED.value]
        assert len(executed) == 1

    @pytest.mark.asyncio
    async def test_failed_proposal_is_not_ready(self, store, seed, clock, config_store):
        org = await seed.organization()
        proposer = await seed.member(org, tokens=500)
        submission = await ChangeRequestBridge(store, clock=clock).submit_change(
            "merchant_limits", "daily_cap", 100, 50, "Reduce abuse", proposer.id
        )
        await VoteTallyService(store, clock=clock).cast_vote(submission.proposal.id, proposer.id, "no")
        clock.advance(days=1)

        result = await ExecutionCoordinator(store, config_store, clock=clock).execute_if_ready(submission.proposal.id)

        assert result.outcome == ExecutionOutcome.NOT_READY
        assert result.status == ProposalStatus.FAILED.value
        assert config_store.calls == []

    @pytest.mark.asyncio
    async def test_apply_failure_leaves_proposal_passed(self, store, seed, clock, config_store, failing_config_store):
        """A failed apply surfaces as retryable and the next attempt succeeds"""
        change_id, proposal_id = await _passed_change(store, seed, clock)
        clock.advance(minutes=10)
        with pytest.raises(ParameterApplyFailed):
            await ExecutionCoordinator(store, failing_config_store, clock=clock).execute_if_ready(proposal_id)
        assert (await store.get(Proposal, proposal_id)).status == ProposalStatus.PASSED.value
        assert (await store.get(ChangeRequest, change_id)).status == ChangeRequestStatus.APPROVED.value

        result = await ExecutionCoordinator(store, config_store, clock=clock).execute_if_ready(proposal_id)
        assert result.outcome == ExecutionOutcome.EXECUTED
        assert config_store.values == {"release_delay_days": 3}

    @pytest.mark.asyncio
    async def test_plain_proposal_executes_without_parameter(self, store, seed, clock, config_store):
        org = await seed.organization()
        proposer = await seed.member(org, tokens=500)
        proposal = await ProposalLifecycle(store, clock=clock).create_proposal(
            org.id, proposer.id, title="Adopt a code of conduct", description="Text attached", category="community"
        )
        await VoteTallyService(store, clock=clock).cast_vote(proposal.id, proposer.id, "yes")
        clock.advance(hours=2)

        result = await ExecutionCoordinator(store, config_store, clock=clock).execute_if_ready(proposal.id)

        assert result.outcome == ExecutionOutcome.EXECUTED
        assert result.change_request_id is None
        assert config_store.calls == []


class TestDatabaseConfigurationStore:
    """Tests for the loyalty_parameters store"""

    @pytest.mark.asyncio
    async def test_apply_and_read(self, session_factory):
        config = DatabaseConfigurationStore(session_factory)

        await config.apply_parameter("inactivity_timeout_days", 90, "proposal-1")
        await config.apply_parameter("referral_bonus", {"points": 50})

        assert await config.get_parameter("inactivity_timeout_days") == 90
        assert await config.get_parameter("missing") is None
        assert await config.all_parameters() == {"inactivity_timeout_days": 90, "referral_bonus": {"points": 50}}

    @pytest.mark.asyncio
    async def test_reapplying_same_value_keeps_provenance(self, session_factory):
        config = DatabaseConfigurationStore(session_factory)
        await config.apply_parameter("daily_cap", 10, "proposal-1")
        await config.apply_parameter("daily_cap", 10, "proposal-2")

        async with session_factory() as session:
            parameter = await session.get(LoyaltyParameter, "daily_cap")
            assert parameter.updated_by_proposal == "proposal-1"

    @pytest.mark.asyncio
    async def test_retry_after_ledger_failure_keeps_applied_value(self, store, seed, clock, session_factory, monkeypatch):
        change_id, proposal_id = await _passed_change(store, seed, clock, new_value=2)
        clock.advance(minutes=10)
        config = DatabaseConfigurationStore(session_factory)
        coordinator = ExecutionCoordinator(store, config, clock=clock)

        update = store.update
        failed = []

        async def update_failing_once(model, id, patch, *args, **kwargs):
            if patch.get("status") == ProposalStatus.EXECUTED.value and not failed:
                failed.append(id)
                raise StoreUnavailable("Ledger store timed out during update dao_proposals")
            return await update(model, id, patch, *args, **kwargs)

        monkeypatch.setattr(store, "update", update_failing_once)

        with pytest.raises(StoreUnavailable):
            await coordinator.execute_if_ready(proposal_id)

        assert failed == [proposal_id]
        assert await config.get_parameter("release_delay_days") == 2
        async with session_factory() as session:
            applied = await session.get(LoyaltyParameter, "release_delay_days")
            applied_at = applied.updated_at
            assert applied.updated_by_proposal == proposal_id
        assert (await store.get(Proposal, proposal_id)).status == ProposalStatus.PASSED.value

        result = await coordinator.execute_if_ready(proposal_id)

        assert result.outcome == ExecutionOutcome.EXECUTED
        assert (await store.get(ChangeRequest, change_id)).status == ChangeRequestStatus.IMPLEMENTED.value
        async with session_factory() as session:
            applied = await session.get(LoyaltyParameter, "release_delay_days")
            assert applied.value == 2
            assert applied.updated_by_proposal == proposal_id
            assert applied.updated_at == applied_at

    @pytest.mark.asyncio
    async def test_execution_writes_loyalty_parameters(self, store, seed, clock, session_factory):
        change_id, proposal_id = await _passed_change(store, seed, clock, new_value=2)
        clock.advance(minutes=10)

        await ExecutionCoordinator(
            store, DatabaseConfigurationStore(session_factory), clock=clock
        ).execute_if_ready(proposal_id)

        assert await DatabaseConfigurationStore(session_factory).get_parameter("release_delay_days") == 2


class TestProposalSweeper:
    """Tests for the background sweep"""

    @pytest.mark.asyncio
    async def test_sweep_resolves_and_executes(self, store, seed, clock, session_factory, config_store):
        change_id, proposal_id = await _passed_change(store, seed, clock)
        clock.advance(minutes=10)
        sweeper = ProposalSweeper(session_factory=session_factory, config_store=config_store, clock=clock)

        report = await sweeper.sweep()

        assert report.resolved == 1
        assert report.executed == 1
        assert report.errors == 0
        assert (await store.get(Proposal, proposal_id)).status == ProposalStatus.EXECUTED.value
        assert config_store.values == {"release_delay_days": 3}

    @pytest.mark.asyncio
    async def test_sweep_respects_auto_execute(self, store, seed, clock, session_factory, config_store):
        change_id, proposal_id = await _passed_change(store, seed, clock)
        clock.advance(minutes=10)
        sweeper = ProposalSweeper(
            auto_execute=False, session_factory=session_factory, config_store=config_store, clock=clock
        )

        report = await sweeper.sweep()

        assert report.resolved == 1
        assert report.executed == 0
        assert (await store.get(Proposal, proposal_id)).status == ProposalStatus.PASSED.value

    @pytest.mark.asyncio
    async def test_idle_sweep(self, session_factory, clock, config_store):
        report = await ProposalSweeper(session_factory=session_factory, config_store=config_store, clock=clock).sweep()
        assert (report.resolved, report.executed, report.errors) == (0, 0, 0)
