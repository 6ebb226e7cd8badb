"""
govledger/protocol/governance.py

Governance protocol: the public surface over the registry and vote ledger.

Every mutating call reads the clock once, runs the engine operation to
completion under a lock, and then broadcasts the resulting notification.
Per-proposal trio locks keep votes, tallies and notifications for one
proposal in a single order when many tasks call in concurrently.

Key Features:
- Proposal creation with 1..10 options and a bounded voting window
- One vote per voter, weight fixed by the proposal's mechanism
- Delegation that revokes the delegator's own vote
- Time-gated finalization callable by anyone
- Owner pause gate

Usage:
    from govledger import GovernanceProtocol, VotingMechanism

    governance = GovernanceProtocol(owner="EOwner", peers=peers)

    proposal_id = await governance.create_proposal(
        caller="EAlice",
        title="Pick the next feature",
        description="",
        options=["A", "B", "C"],
        duration=7 * 86400,
        mechanism=VotingMechanism.SIMPLE,
        quorum=3,
    )

    await governance.vote("EBob", proposal_id, 0)

    # After the deadline, anyone may finalize
    winner = await governance.end_proposal("ECarol", proposal_id)
"""

import logging
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

import trio

from ..config import DEFAULT_DURATION, GovernanceConfig
from ..errors import GovernanceError, ProposalNotFound
from ..events import EventEmitter, GovernanceEvent
from ..metrics import GovernanceMetrics
from ..storage import MemoryBackend, StateBackend
from .ledger import DelegationRecord, VoteLedger, VoteRecord
from .registry import Proposal, ProposalRegistry, ProposalStatus
from .weighting import VotingMechanism, WeightProvider

logger = logging.getLogger("govledger.protocol.governance")


def _system_clock() -> int:
    return int(time.time())


class GovernanceProtocol:
    """
    Governance state machine with proposal lifecycle, voting and delegation.

    The caller principal is supplied by the transport that authenticated it.
    """

    def __init__(
        self,
        owner: str,
        backend: Optional[StateBackend] = None,
        peers: Any = None,
        weights: Optional[WeightProvider] = None,
        clock: Optional[Callable[[], int]] = None,
        config: Optional[GovernanceConfig] = None,
    ):
        """
        Initialize GovernanceProtocol.

        Args:
            owner: Principal allowed to pause and to cancel any proposal
            backend: State backend (in-memory when omitted)
            peers: Optional publisher with async broadcast(topic, data)
            weights: Weight capability for WEIGHTED/QUADRATIC proposals
            clock: Callable returning the current time in seconds
            config: Creation limits
        """
        self._peers = peers
        self._clock = clock or _system_clock

        self.backend = backend or MemoryBackend()
        self.emitter = EventEmitter()
        self.registry = ProposalRegistry(self.backend, owner, config, self.emitter)
        self.ledger = VoteLedger(self.registry, self.backend, weights, self.emitter)
        self.metrics = GovernanceMetrics(self)

        self._outbox: List[GovernanceEvent] = []
        self.emitter.subscribe(self._outbox.append)

        self._registry_lock = trio.Lock()
        self._proposal_locks: Dict[int, trio.Lock] = {}

    @property
    def owner(self) -> str:
        return self.registry.owner

    def _now(self) -> int:
        return int(self._clock())

    def _lock_for(self, operation: str, proposal_id: int) -> trio.Lock:
        """Get the lock serializing writes to one proposal.

        Locks only exist for stored proposals; unknown ids are rejected first.
        """
        lock = self._proposal_locks.get(proposal_id)
        if lock is None:
            with self._tracked(operation):
                if not self.registry.exists(proposal_id):
                    raise ProposalNotFound("Proposal not found", proposal_id=proposal_id)
            lock = self._proposal_locks[proposal_id] = trio.Lock()
        return lock

    @contextmanager
    def _tracked(self, operation: str) -> Iterator[None]:
        """Count rejected operations by error class."""
        try:
            yield
        except GovernanceError as e:
            self.metrics.record_rejection(operation, e)
            raise

    async def _flush(self) -> None:
        """Broadcast queued notifications in emission order."""
        while self._outbox:
            event = self._outbox.pop(0)
            if self._peers is None:
                continue
            try:
                await self._peers.broadcast(event.topic, event.encode())
            except Exception as e:
                logger.error(f"Failed to broadcast {event.topic}: {e}")

    # ========================================================================
    # PROPOSALS
    # ========================================================================

    async def create_proposal(
        self,
        caller: str,
        title: str,
        description: str,
        options: List[str],
        duration: int = DEFAULT_DURATION,
        mechanism: Union[VotingMechanism, str] = VotingMechanism.SIMPLE,
        quorum: int = 0,
    ) -> int:
        """
        Create a proposal.

        Returns:
            New proposal id
        """
        now = self._now()
        async with self._registry_lock:
            # Held through the broadcast so the created notification precedes
            # any vote on the new id.
            lock = trio.Lock()
            async with lock:
                with self._tracked("create_proposal"):
                    proposal_id = self.registry.create(
                        title, description, options, duration, mechanism, quorum, caller, now
                    )
                self._proposal_locks[proposal_id] = lock
                await self._flush()
        return proposal_id

    async def end_proposal(self, caller: str, proposal_id: int) -> int:
        """
        Finalize a proposal whose voting window has passed.

        Any caller may finalize; the outcome depends only on the tallies.

        Returns:
            Winning option index
        """
        now = self._now()
        async with self._lock_for("end_proposal", proposal_id):
            with self._tracked("end_proposal"):
                winner = self.ledger.finalize(proposal_id, now)
            logger.info(f"Proposal {proposal_id} finalized by {caller}: option {winner} wins")
            await self._flush()
        return winner

    async def cancel_proposal(self, caller: str, proposal_id: int) -> None:
        """Cancel an active proposal (creator or owner)."""
        async with self._lock_for("cancel_proposal", proposal_id):
            with self._tracked("cancel_proposal"):
                self.registry.cancel(proposal_id, caller)
            await self._flush()

    # ========================================================================
    # VOTING
    # ========================================================================

    async def vote(self, caller: str, proposal_id: int, option_index: int) -> VoteRecord:
        """Cast the caller's vote."""
        now = self._now()
        async with self._lock_for("vote", proposal_id):
            with self._tracked("vote"):
                record = self.ledger.cast_vote(proposal_id, option_index, caller, now)
            await self._flush()
        return record

    async def delegate_vote(self, caller: str, proposal_id: int, delegate: str) -> DelegationRecord:
        """Give up the caller's vote on a proposal in favour of a delegate."""
        now = self._now()
        async with self._lock_for("delegate_vote", proposal_id):
            with self._tracked("delegate_vote"):
                record = self.ledger.delegate(proposal_id, delegate, caller, now)
            await self._flush()
        return record

    # ========================================================================
    # PAUSE GATE
    # ========================================================================

    async def pause(self, caller: str) -> None:
        async with self._registry_lock:
            with self._tracked("pause"):
                self.registry.pause(caller)

    async def unpause(self, caller: str) -> None:
        async with self._registry_lock:
            with self._tracked("unpause"):
                self.registry.unpause(caller)

    def is_paused(self) -> bool:
        return self.registry.is_paused()

    # ========================================================================
    # QUERY METHODS
    # ========================================================================

    def get_proposal(self, proposal_id: int) -> Proposal:
        """Get a proposal by id (raises ProposalNotFound)."""
        return self.registry.get(proposal_id)

    def get_proposal_count(self) -> int:
        return self.registry.count()

    def get_vote_count(self, proposal_id: int, option_index: int) -> int:
        """Accumulated weight for an option."""
        return self.ledger.tally_of(proposal_id, option_index)

    def get_user_vote(self, proposal_id: int, voter: str) -> Optional[VoteRecord]:
        return self.ledger.vote_of(proposal_id, voter)

    def get_delegation(self, proposal_id: int, delegator: str) -> Optional[DelegationRecord]:
        return self.ledger.delegation_of(proposal_id, delegator)

    def get_winning_option(self, proposal_id: int) -> int:
        return self.ledger.winning_option(proposal_id)

    def get_active_proposals(self) -> List[Proposal]:
        """Proposals still in the ACTIVE state (including ones past their end)."""
        return list(self.registry.proposals(ProposalStatus.ACTIVE))

    def get_finalizable_proposals(self) -> List[Proposal]:
        """ACTIVE proposals whose window has passed and can be ended."""
        now = self._now()
        return [p for p in self.registry.proposals(ProposalStatus.ACTIVE) if now >= p.end_time]

    def get_stats(self) -> dict:
        """Get governance statistics."""
        stats = self.registry.get_stats()
        votes_cast = 0
        delegations = 0
        quorum_reached = 0
        total_weight = 0
        for proposal in self.registry.proposals():
            votes_cast += len(self.ledger.votes(proposal.proposal_id))
            delegations += len(self.ledger.delegations(proposal.proposal_id))
            total_weight += proposal.total_votes_weight
            if proposal.quorum_reached:
                quorum_reached += 1

        stats.update({
            "votes_cast": votes_cast,
            "delegations": delegations,
            "total_votes_weight": total_weight,
            "quorum_reached_proposals": quorum_reached,
        })
        return stats
