"""Integration tests for bridging loyalty change requests into proposals"""
import pytest

from loyalty_dao.errors import InvalidState, NotFound, ValidationError
from loyalty_dao.models.audit import GovernanceEventType
from loyalty_dao.models.change_request import ChangeRequest, ChangeRequestStatus
from loyalty_dao.models.governance import GOVERNANCE_CHANGE_CATEGORY, Proposal, ProposalStatus
from loyalty_dao.services.audit import AuditService
from loyalty_dao.services.bridge import ChangeRequestBridge, SubmissionOutcome
from loyalty_dao.services.organizations import OrganizationService
from loyalty_dao.services.tally import VoteTallyService


async def _submit(bridge, proposer, **overrides):
    fields = {
        "change_type": "point_release_delay",
        "parameter_name": "release_delay_days",
        "old_value": 7,
        "new_value": 3,
        "reason": "Members asked for faster access to earned points",
        "proposer_id": proposer.id,
    }
    fields.update(overrides)
    return await bridge.submit_change(**fields)


class TestSubmitChange:
    """Tests for change submission"""

    @pytest.mark.asyncio
    async def test_qualified_proposer_gets_linked_proposal(self, store, seed, clock):
        org = await seed.organization()
        proposer = await seed.member(org, tokens=500)

        submission = await _submit(ChangeRequestBridge(store, clock=clock), proposer)

        assert submission.outcome == SubmissionOutcome.PROPOSED
        change, proposal = submission.change_request, submission.proposal
        assert change.status == ChangeRequestStatus.PROPOSED.value
        assert change.proposal_id == proposal.id
        assert proposal.status == ProposalStatus.ACTIVE.value
        assert proposal.category == GOVERNANCE_CHANGE_CATEGORY
        assert proposal.title == "Loyalty Change: Point Release Delay - release_delay_days"
        assert proposal.description == "Change release_delay_days from 7 to 3"
        assert "## Reason for Change" in proposal.full_description
        assert proposal.tags == ["loyalty", "governance", "point_release_delay"]

    @pytest.mark.asyncio
    async def test_proposal_uses_organization_voting_type(self, store, seed, clock):
        org = await seed.organization(default_voting_type="super_majority")
        proposer = await seed.member(org, tokens=500)

        submission = await _submit(ChangeRequestBridge(store, clock=clock), proposer)
        assert submission.proposal.voting_type == "super_majority"

    @pytest.mark.asyncio
    async def test_below_threshold_defers_proposal(self, store, seed, clock):
        """The request is kept as pending with no proposal"""
        org = await seed.organization()
        proposer = await seed.member(org, tokens=10)

        submission = await _submit(ChangeRequestBridge(store, clock=clock), proposer)

        assert submission.deferred
        assert submission.proposal is None
        change = await store.get(ChangeRequest, submission.change_request.id)
        assert change.status == ChangeRequestStatus.PENDING.value
        assert change.proposal_id is None
        assert "below the proposal threshold" in change.deferred_reason
        proposals = await store.query(Proposal, filters=[Proposal.dao_id == org.id])
        assert proposals == []

    @pytest.mark.asyncio
    async def test_deferral_is_audited(self, store, seed, clock):
        org = await seed.organization()
        proposer = await seed.member(org, tokens=10)
        submission = await _submit(ChangeRequestBridge(store, clock=clock), proposer)

        history = await AuditService(store).get_reference_history("change_request", submission.change_request.id)
        assert [e.event_type for e in history] == [
            GovernanceEventType.CHANGE_REQUESTED.value,
            GovernanceEventType.CHANGE_PROPOSAL_DEFERRED.value,
        ]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("overrides", [
        {"change_type": "free_points"},
        {"parameter_name": ""},
        {"parameter_name": "p" * 101},
        {"reason": "  "},
        {"old_value": 5, "new_value": 5},
    ])
    async def test_invalid_submission(self, store, seed, clock, overrides):
        org = await seed.organization()
        proposer = await seed.member(org, tokens=500)

        with pytest.raises(ValidationError):
            await _submit(ChangeRequestBridge(store, clock=clock), proposer, **overrides)

    @pytest.mark.asyncio
    async def test_unknown_proposer(self, store, seed, clock):
        await seed.organization()
        bridge = ChangeRequestBridge(store, clock=clock)

        with pytest.raises(NotFound):
            await bridge.submit_change("merchant_limits", "daily_cap", 10, 20, "More headroom", "missing")


class TestRetryProposal:
    """Tests for re-attempting a deferred proposal"""

    @pytest.mark.asyncio
    async def test_retry_after_balance_rises(self, store, seed, clock):
        org = await seed.organization()
        proposer = await seed.member(org, tokens=10)
        bridge = ChangeRequestBridge(store, clock=clock)
        submission = await _submit(bridge, proposer)

        await OrganizationService(store, clock=clock).set_governance_tokens(proposer.id, 200)
        retried = await bridge.retry_proposal(submission.change_request.id)

        assert retried.outcome == SubmissionOutcome.PROPOSED
        assert retried.change_request.proposal_id == retried.proposal.id
        assert retried.change_request.deferred_reason is None

    @pytest.mark.asyncio
    async def test_retry_by_another_member(self, store, seed, clock):
        org = await seed.organization()
        proposer = await seed.member(org, tokens=10)
        sponsor = await seed.member(org, tokens=1000)
        bridge = ChangeRequestBridge(store, clock=clock)
        submission = await _submit(bridge, proposer)

        retried = await bridge.retry_proposal(submission.change_request.id, proposer_id=sponsor.id)
        assert retried.proposal.proposer_id == sponsor.id

    @pytest.mark.asyncio
    async def test_retry_already_bridged(self, store, seed, clock):
        org = await seed.organization()
        proposer = await seed.member(org, tokens=500)
        bridge = ChangeRequestBridge(store, clock=clock)
        submission = await _submit(bridge, proposer)

        with pytest.raises(InvalidState):
            await bridge.retry_proposal(submission.change_request.id)


class TestChangeRequestStatus:
    """Tests for status flowing from the linked proposal"""

    @pytest.mark.asyncio
    async def test_passed_proposal_approves_change(self, store, seed, clock):
        org = await seed.organization()
        proposer = await seed.member(org, tokens=500)
        bridge = ChangeRequestBridge(store, clock=clock)
        submission = await _submit(bridge, proposer)
        await VoteTallyService(store, clock=clock).cast_vote(submission.proposal.id, proposer.id, "yes")

        clock.advance(hours=1)
        change = await bridge.get_change_request(submission.change_request.id)

        assert change.status == ChangeRequestStatus.APPROVED.value
        assert change.approved_at == clock.now
        check = await bridge.validate_approval(change.id)
        assert check.approved is True
        assert check.proposal_status == ProposalStatus.PASSED.value

    @pytest.mark.asyncio
    async def test_failed_proposal_rejects_change(self, store, seed, clock):
        org = await seed.organization()
        proposer = await seed.member(org, tokens=500)
        bridge = ChangeRequestBridge(store, clock=clock)
        submission = await _submit(bridge, proposer)
        await VoteTallyService(store, clock=clock).cast_vote(submission.proposal.id, proposer.id, "no")

        clock.advance(hours=1)
        change = await bridge.get_change_request(submission.change_request.id)

        assert change.status == ChangeRequestStatus.REJECTED.value
        assert (await bridge.validate_approval(change.id)).approved is False

    @pytest.mark.asyncio
    async def test_deferred_change_is_not_approved(self, store, seed, clock):
        org = await seed.organization()
        proposer = await seed.member(org, tokens=10)
        bridge = ChangeRequestBridge(store, clock=clock)
        submission = await _submit(bridge, proposer)

        check = await bridge.validate_approval(submission.change_request.id)
        assert check.approved is False
        assert check.proposal_id is None

    @pytest.mark.asyncio
    async def test_pending_and_filtered_lists(self, store, seed, clock):
        org = await seed.organization()
        proposer = await seed.member(org, tokens=500)
        junior = await seed.member(org, tokens=10)
        bridge = ChangeRequestBridge(store, clock=clock)
        await _submit(bridge, proposer)
        await _submit(bridge, junior, parameter_name="referral_bonus", change_type="referral_parameters")

        pending = await bridge.list_pending(org.id)
        deferred = await bridge.list_change_requests(org.id, status="pending")

        assert len(pending) == 2
        assert [c.parameter_name for c in deferred] == ["referral_bonus"]
        with pytest.raises(ValidationError):
            await bridge.list_change_requests(org.id, status="unknown")
