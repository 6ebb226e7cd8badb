"""
Tests for govledger/protocol/governance.py

Tests the async governance protocol end to end: boundary operations,
notification broadcasting, pause gate and concurrent callers.
"""

import json

import pytest
import trio
from unittest.mock import AsyncMock, Mock

from govledger.config import (
    PROPOSAL_CREATED_TOPIC,
    PROPOSAL_ENDED_TOPIC,
    PROPOSAL_CANCELLED_TOPIC,
    VOTE_CAST_TOPIC,
    VOTE_DELEGATED_TOPIC,
)
from govledger.errors import (
    AlreadyVoted,
    ContractPaused,
    InvalidDuration,
    InvalidOption,
    ProposalEnded,
    ProposalNotActive,
    ProposalNotFound,
    Unauthorized,
)
from govledger.protocol.governance import GovernanceProtocol
from govledger.protocol.registry import ProposalStatus
from govledger.protocol.weighting import BalanceWeightProvider, VotingMechanism
from govledger.storage import FileBackend


# ============================================================================
# TEST DATA
# ============================================================================

OWNER = "EOwnerTest000"
CREATOR = "ECreatorTest111"
STRANGER = "EStrangerTest999"
DAY = 24 * 60 * 60
START = 1_700_000_000


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: int = START):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


def create_mock_peers():
    """Create mock publisher."""
    mock_peers = Mock()
    mock_peers.broadcast = AsyncMock()
    return mock_peers


def create_test_governance(peers=None, backend=None, weights=None):
    clock = FakeClock()
    governance = GovernanceProtocol(
        owner=OWNER,
        backend=backend,
        peers=peers,
        weights=weights,
        clock=clock,
    )
    return governance, clock


async def create_test_proposal(governance, options=None, quorum=0, duration=7 * DAY, **kwargs):
    return await governance.create_proposal(
        caller=CREATOR,
        title="Pick a colour",
        description="",
        options=options or ["A", "B", "C"],
        duration=duration,
        quorum=quorum,
        **kwargs,
    )


class SlowPeers:
    """Publisher that yields to the scheduler on every broadcast."""

    def __init__(self):
        self.topics = []

    async def broadcast(self, topic, data):
        await trio.sleep(0)
        self.topics.append(topic)


def broadcast_topics(peers):
    return [c.args[0] for c in peers.broadcast.await_args_list]


# ============================================================================
# SCENARIO TESTS
# ============================================================================

class TestScenarios:
    """End-to-end scenarios through the public surface."""

    @pytest.mark.trio
    async def test_quorum_scenario(self):
        """Test A/B/C, quorum 3, votes 0,0,1 over a 7 day window."""
        peers = create_mock_peers()
        governance, clock = create_test_governance(peers=peers)

        proposal_id = await create_test_proposal(governance, quorum=3)
        for voter, option in [("EVoterA", 0), ("EVoterB", 0), ("EVoterC", 1)]:
            await governance.vote(voter, proposal_id, option)

        assert [governance.get_vote_count(proposal_id, i) for i in range(3)] == [2, 1, 0]
        proposal = governance.get_proposal(proposal_id)
        assert proposal.total_votes_weight == 3
        assert proposal.quorum_reached is True
        assert governance.get_winning_option(proposal_id) == 0

        clock.advance(7 * DAY)
        winner = await governance.end_proposal(STRANGER, proposal_id)
        assert winner == 0
        assert governance.get_proposal(proposal_id).status == ProposalStatus.ENDED

        assert broadcast_topics(peers) == [
            PROPOSAL_CREATED_TOPIC,
            VOTE_CAST_TOPIC,
            VOTE_CAST_TOPIC,
            VOTE_CAST_TOPIC,
            PROPOSAL_ENDED_TOPIC,
        ]
        ended_payload = json.loads(peers.broadcast.await_args_list[-1].args[1].decode())
        assert ended_payload["winning_option"] == 0
        assert ended_payload["proposal_id"] == proposal_id

    @pytest.mark.trio
    async def test_delegation_scenario(self):
        """Test delegate-then-vote and self-delegation are Unauthorized."""
        peers = create_mock_peers()
        governance, _ = create_test_governance(peers=peers)
        proposal_id = await create_test_proposal(governance)

        await governance.delegate_vote("EVoterA", proposal_id, "EVoterB")
        with pytest.raises(Unauthorized):
            await governance.vote("EVoterA", proposal_id, 0)
        with pytest.raises(Unauthorized):
            await governance.delegate_vote("EVoterC", proposal_id, "EVoterC")

        assert governance.get_delegation(proposal_id, "EVoterA").delegate == "EVoterB"
        assert governance.get_user_vote(proposal_id, "EVoterA") is None
        assert VOTE_DELEGATED_TOPIC in broadcast_topics(peers)

    @pytest.mark.trio
    async def test_cancel_scenario(self):
        """Test stranger cancel fails, creator cancel works, later votes fail."""
        peers = create_mock_peers()
        governance, _ = create_test_governance(peers=peers)
        proposal_id = await create_test_proposal(governance)

        with pytest.raises(Unauthorized):
            await governance.cancel_proposal(STRANGER, proposal_id)

        await governance.cancel_proposal(CREATOR, proposal_id)
        assert governance.get_proposal(proposal_id).status == ProposalStatus.CANCELLED
        assert broadcast_topics(peers)[-1] == PROPOSAL_CANCELLED_TOPIC

        with pytest.raises(ProposalNotActive):
            await governance.vote("EVoterA", proposal_id, 0)


# ============================================================================
# OPERATION TESTS
# ============================================================================

class TestOperations:
    """Tests for individual protocol operations."""

    @pytest.mark.trio
    async def test_proposal_count(self):
        governance, _ = create_test_governance()
        assert governance.get_proposal_count() == 0
        assert await create_test_proposal(governance) == 0
        assert await create_test_proposal(governance) == 1
        assert governance.get_proposal_count() == 2

    @pytest.mark.trio
    async def test_duration_rejected(self):
        governance, _ = create_test_governance()
        with pytest.raises(InvalidDuration):
            await create_test_proposal(governance, duration=60)
        assert governance.get_proposal_count() == 0

    @pytest.mark.trio
    async def test_vote_after_deadline_without_finalize(self):
        """Test ProposalEnded once the clock passes end, status still ACTIVE."""
        governance, clock = create_test_governance()
        proposal_id = await create_test_proposal(governance, duration=DAY)

        clock.advance(DAY)
        with pytest.raises(ProposalEnded):
            await governance.vote("EVoterA", proposal_id, 0)
        assert governance.get_proposal(proposal_id).status == ProposalStatus.ACTIVE
        assert [p.proposal_id for p in governance.get_finalizable_proposals()] == [proposal_id]

    @pytest.mark.trio
    async def test_end_too_early(self):
        governance, clock = create_test_governance()
        proposal_id = await create_test_proposal(governance, duration=DAY)

        clock.advance(DAY - 1)
        with pytest.raises(ProposalNotActive):
            await governance.end_proposal(STRANGER, proposal_id)
        assert governance.get_finalizable_proposals() == []

    @pytest.mark.trio
    async def test_double_vote(self):
        governance, _ = create_test_governance()
        proposal_id = await create_test_proposal(governance)
        await governance.vote("EVoterA", proposal_id, 1)

        with pytest.raises(AlreadyVoted):
            await governance.vote("EVoterA", proposal_id, 2)
        assert governance.get_user_vote(proposal_id, "EVoterA").option_index == 1

    @pytest.mark.trio
    async def test_unknown_proposal(self):
        governance, _ = create_test_governance()
        with pytest.raises(ProposalNotFound):
            await governance.vote("EVoterA", 7, 0)
        with pytest.raises(ProposalNotFound):
            governance.get_proposal(7)

    @pytest.mark.trio
    async def test_unknown_ids_allocate_no_locks(self):
        """Test rejected calls on unknown ids leave no per-proposal state behind."""
        governance, _ = create_test_governance()

        for proposal_id in range(100):
            with pytest.raises(ProposalNotFound):
                await governance.vote("EVoterA", proposal_id, 0)
        with pytest.raises(ProposalNotFound):
            await governance.delegate_vote("EVoterA", 500, "EVoterB")
        with pytest.raises(ProposalNotFound):
            await governance.end_proposal(STRANGER, 501)
        with pytest.raises(ProposalNotFound):
            await governance.cancel_proposal(OWNER, 502)

        assert governance._proposal_locks == {}
        assert governance.metrics.rejection_count("vote") == 100
        assert governance.metrics.rejection_count() == 103

    @pytest.mark.trio
    async def test_non_integer_option_index(self):
        """Test a float index is rejected and tallies stay consistent."""
        governance, _ = create_test_governance()
        proposal_id = await create_test_proposal(governance)

        with pytest.raises(InvalidOption):
            await governance.vote("EVoterA", proposal_id, 1.0)
        await governance.vote("EVoterA", proposal_id, 1)

        tallies = [governance.get_vote_count(proposal_id, i) for i in range(3)]
        assert tallies == [0, 1, 0]
        assert sum(tallies) == governance.get_proposal(proposal_id).total_votes_weight
        assert governance.get_winning_option(proposal_id) == 1

    @pytest.mark.trio
    async def test_weighted_proposal(self):
        balances = {"EWhale": 400}
        governance, _ = create_test_governance(
            weights=BalanceWeightProvider(lambda voter: balances.get(voter, 0))
        )
        proposal_id = await create_test_proposal(
            governance, mechanism=VotingMechanism.QUADRATIC
        )
        await governance.vote("EWhale", proposal_id, 2)
        await governance.vote("EMinnow", proposal_id, 1)

        assert governance.get_vote_count(proposal_id, 2) == 20
        assert governance.get_vote_count(proposal_id, 1) == 1
        assert governance.get_winning_option(proposal_id) == 2

    @pytest.mark.trio
    async def test_broadcast_failure_keeps_state(self):
        """Test a failing publisher does not undo the committed vote."""
        peers = create_mock_peers()
        governance, _ = create_test_governance(peers=peers)
        proposal_id = await create_test_proposal(governance)

        peers.broadcast.side_effect = RuntimeError("network down")
        await governance.vote("EVoterA", proposal_id, 0)

        assert governance.get_vote_count(proposal_id, 0) == 1

    @pytest.mark.trio
    async def test_active_proposals(self):
        governance, _ = create_test_governance()
        first = await create_test_proposal(governance)
        second = await create_test_proposal(governance)
        await governance.cancel_proposal(OWNER, first)

        assert [p.proposal_id for p in governance.get_active_proposals()] == [second]


# ============================================================================
# PAUSE TESTS
# ============================================================================

class TestPause:
    """Tests for the owner pause gate through the protocol."""

    @pytest.mark.trio
    async def test_pause_blocks_create_vote_delegate(self):
        governance, clock = create_test_governance()
        proposal_id = await create_test_proposal(governance, duration=DAY)

        await governance.pause(OWNER)
        assert governance.is_paused() is True

        with pytest.raises(ContractPaused):
            await create_test_proposal(governance)
        with pytest.raises(ContractPaused):
            await governance.vote("EVoterA", proposal_id, 0)
        with pytest.raises(ContractPaused):
            await governance.delegate_vote("EVoterA", proposal_id, "EVoterB")

        clock.advance(DAY)
        assert await governance.end_proposal(STRANGER, proposal_id) == 0

        await governance.unpause(OWNER)
        assert await create_test_proposal(governance) == 1

    @pytest.mark.trio
    async def test_pause_requires_owner(self):
        governance, _ = create_test_governance()
        with pytest.raises(Unauthorized):
            await governance.pause(STRANGER)
        assert governance.is_paused() is False


# ============================================================================
# CONCURRENCY TESTS
# ============================================================================

class TestConcurrency:
    """Tests for concurrent callers."""

    @pytest.mark.trio
    async def test_concurrent_votes(self):
        """Test concurrent tasks keep one vote per voter and consistent tallies."""
        peers = SlowPeers()
        governance, _ = create_test_governance(peers=peers)
        proposal_id = await create_test_proposal(governance, quorum=10)

        rejected = []

        async def cast(voter, option):
            try:
                await governance.vote(voter, proposal_id, option)
            except AlreadyVoted:
                rejected.append(voter)

        async with trio.open_nursery() as nursery:
            for i in range(20):
                nursery.start_soon(cast, f"EVoter{i % 10}", i % 3)

        tallies = [governance.get_vote_count(proposal_id, i) for i in range(3)]
        proposal = governance.get_proposal(proposal_id)
        assert len(rejected) == 10
        assert sum(tallies) == proposal.total_votes_weight == 10
        assert proposal.quorum_reached is True

    @pytest.mark.trio
    async def test_created_broadcast_precedes_votes(self):
        """Test a vote on a fresh proposal is published after its creation."""
        peers = SlowPeers()
        governance, _ = create_test_governance(peers=peers)

        async def vote_when_visible():
            while governance.get_proposal_count() == 0:
                await trio.sleep(0)
            await governance.vote("EVoterA", 0, 1)

        async with trio.open_nursery() as nursery:
            nursery.start_soon(vote_when_visible)
            nursery.start_soon(create_test_proposal, governance)

        assert peers.topics == [PROPOSAL_CREATED_TOPIC, VOTE_CAST_TOPIC]


# ============================================================================
# PERSISTENCE TESTS
# ============================================================================

class TestPersistence:
    """Tests for state surviving a restart."""

    @pytest.mark.trio
    async def test_file_backend_restart(self, tmp_path):
        path = tmp_path / "state.json"
        governance, _ = create_test_governance(backend=FileBackend(path))
        proposal_id = await create_test_proposal(governance, quorum=1)
        await governance.vote("EVoterA", proposal_id, 2)
        await governance.pause(OWNER)

        restarted, _ = create_test_governance(backend=FileBackend(path))
        assert restarted.get_proposal_count() == 1
        assert restarted.get_vote_count(proposal_id, 2) == 1
        assert restarted.get_proposal(proposal_id).quorum_reached is True
        assert restarted.is_paused() is True

        await restarted.unpause(OWNER)
        with pytest.raises(AlreadyVoted):
            await restarted.vote("EVoterA", proposal_id, 0)


# ============================================================================
# STATS TESTS
# ============================================================================

class TestStats:
    """Tests for get_stats."""

    @pytest.mark.trio
    async def test_stats(self):
        governance, _ = create_test_governance()
        proposal_id = await create_test_proposal(governance, quorum=1)
        await governance.vote("EVoterA", proposal_id, 0)
        await governance.delegate_vote("EVoterB", proposal_id, "EVoterA")

        stats = governance.get_stats()
        assert stats["total_proposals"] == 1
        assert stats["active_proposals"] == 1
        assert stats["votes_cast"] == 1
        assert stats["delegations"] == 1
        assert stats["total_votes_weight"] == 1
        assert stats["quorum_reached_proposals"] == 1
