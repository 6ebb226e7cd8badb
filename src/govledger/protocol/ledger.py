"""
govledger/protocol/ledger.py

Vote ledger: vote records, delegation records and per-option tallies.

Each voter casts at most one vote per proposal. Its weight is computed from
the proposal's mechanism at cast time and frozen. Tallies are counters kept
in step with the proposal's total_votes_weight inside one transaction, so
sum(tallies) == total_votes_weight always holds.

Delegating revokes the delegator's own right to vote on that proposal. It
does not move weight to the delegate; the delegate votes with their own
weight only.

Usage:
    ledger = VoteLedger(registry, backend)

    ledger.cast_vote(proposal_id, option_index=1, caller="EAlice", now=now)
    ledger.delegate(proposal_id, delegate="EBob", caller="ECarol", now=now)

    winner = ledger.winning_option(proposal_id)
"""

import logging
from dataclasses import dataclass, asdict
from typing import List, Optional

from ..config import VOTE_PREFIX, DELEGATION_PREFIX, TALLY_PREFIX, is_zero_principal
from ..errors import (
    AlreadyDelegated,
    AlreadyVoted,
    GovernanceError,
    InvalidOption,
    ProposalEnded,
    ProposalNotActive,
    Unauthorized,
)
from ..events import EventEmitter, ProposalEnded as ProposalEndedEvent, VoteCast, VoteDelegated
from ..storage import StateBackend
from .registry import Proposal, ProposalRegistry
from .weighting import WeightProvider, compute_weight

logger = logging.getLogger("govledger.protocol.ledger")


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True)
class VoteRecord:
    """A vote cast on a proposal. Immutable once written."""
    proposal_id: int
    voter: str
    option_index: int
    weight: int
    timestamp: int

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "VoteRecord":
        return cls(
            proposal_id=int(data["proposal_id"]),
            voter=data["voter"],
            option_index=int(data["option_index"]),
            weight=int(data["weight"]),
            timestamp=int(data["timestamp"]),
        )


@dataclass(frozen=True)
class DelegationRecord:
    """Revocation of a delegator's voting right in favour of a delegate."""
    proposal_id: int
    delegator: str
    delegate: str
    timestamp: int

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "DelegationRecord":
        return cls(
            proposal_id=int(data["proposal_id"]),
            delegator=data["delegator"],
            delegate=data["delegate"],
            timestamp=int(data["timestamp"]),
        )


def vote_key(proposal_id: int, voter: str) -> str:
    return f"{VOTE_PREFIX}{proposal_id}:{voter}"


def delegation_key(proposal_id: int, delegator: str) -> str:
    return f"{DELEGATION_PREFIX}{proposal_id}:{delegator}"


def tally_key(proposal_id: int, option_index: int) -> str:
    return f"{TALLY_PREFIX}{proposal_id}:{option_index}"


# ============================================================================
# VOTE LEDGER
# ============================================================================

class VoteLedger:
    """
    Owns votes, delegations and tallies, scoped per proposal.

    Reads proposals through the registry and updates them only through
    ProposalRegistry.record_weight().
    """

    def __init__(
        self,
        registry: ProposalRegistry,
        backend: Optional[StateBackend] = None,
        weights: Optional[WeightProvider] = None,
        emitter: Optional[EventEmitter] = None,
    ):
        """
        Initialize VoteLedger.

        Args:
            registry: Proposal registry (lower layer)
            backend: State backend, shared with the registry by default
            weights: Weight capability for WEIGHTED/QUADRATIC proposals
            emitter: Event emitter, shared with the registry by default
        """
        self.registry = registry
        self.backend = backend or registry.backend
        self.weights = weights
        self.emitter = emitter or registry.emitter

    def _require_open(self, proposal: Proposal, now: int) -> None:
        """Status and time checks shared by voting and delegation."""
        if not proposal.is_active():
            raise ProposalNotActive(
                f"Proposal is {proposal.status.value}", proposal_id=proposal.proposal_id
            )
        if now >= proposal.end_time:
            raise ProposalEnded("Voting period has ended", proposal_id=proposal.proposal_id)

    # ========================================================================
    # VOTING
    # ========================================================================

    def cast_vote(self, proposal_id: int, option_index: int, caller: str, now: int) -> VoteRecord:
        """
        Cast a vote.

        Args:
            proposal_id: Proposal to vote on
            option_index: Index into the proposal's options
            caller: Voting principal
            now: Current time from the clock

        Returns:
            The stored VoteRecord

        Raises:
            ContractPaused, ProposalNotFound, ProposalNotActive, ProposalEnded,
            AlreadyVoted, InvalidOption, Unauthorized (caller delegated),
            InvalidWeight
        """
        self.registry.require_not_paused()
        proposal = self.registry.get(proposal_id)

        try:
            self._require_open(proposal, now)
            if self.backend.contains(vote_key(proposal_id, caller)):
                raise AlreadyVoted(f"{caller} already voted", proposal_id=proposal_id)
            if isinstance(option_index, bool) or not isinstance(option_index, int):
                raise InvalidOption(
                    f"Option index must be an integer, got {option_index!r}",
                    proposal_id=proposal_id,
                )
            if not 0 <= option_index < proposal.option_count:
                raise InvalidOption(
                    f"Option {option_index} out of range 0..{proposal.option_count - 1}",
                    proposal_id=proposal_id,
                )
            if self.backend.contains(delegation_key(proposal_id, caller)):
                raise Unauthorized(f"{caller} delegated and cannot vote", proposal_id=proposal_id)

            weight = compute_weight(caller, proposal.mechanism, self.weights)
        except GovernanceError as e:
            logger.warning(f"Rejected vote by {caller}: {e}")
            raise

        vote = VoteRecord(
            proposal_id=proposal_id,
            voter=caller,
            option_index=option_index,
            weight=weight,
            timestamp=now,
        )

        with self.backend.transaction() as txn:
            txn.put(vote_key(proposal_id, caller), vote.to_dict())
            key = tally_key(proposal_id, option_index)
            txn.put(key, int(txn.get(key, 0)) + weight)
            updated = self.registry.record_weight(txn, proposal_id, weight)

        logger.info(
            f"Vote on {proposal_id} by {caller}: option {option_index}, weight {weight}"
        )
        self.emitter.emit(VoteCast(
            proposal_id=proposal_id,
            voter=caller,
            option_index=option_index,
            weight=weight,
            total_votes_weight=updated.total_votes_weight,
            quorum_reached=updated.quorum_reached,
        ))
        return vote

    # ========================================================================
    # DELEGATION
    # ========================================================================

    def delegate(self, proposal_id: int, delegate: str, caller: str, now: int) -> DelegationRecord:
        """
        Give up the caller's vote on a proposal in favour of a delegate.

        Raises:
            ContractPaused, ProposalNotFound, ProposalNotActive, ProposalEnded,
            AlreadyVoted, Unauthorized (zero or self delegate), AlreadyDelegated
        """
        self.registry.require_not_paused()
        proposal = self.registry.get(proposal_id)

        try:
            self._require_open(proposal, now)
            if self.backend.contains(vote_key(proposal_id, caller)):
                raise AlreadyVoted(f"{caller} already voted", proposal_id=proposal_id)
            if is_zero_principal(delegate):
                raise Unauthorized("Delegate must not be the zero address", proposal_id=proposal_id)
            if delegate == caller:
                raise Unauthorized("Cannot delegate to self", proposal_id=proposal_id)
            if self.backend.contains(delegation_key(proposal_id, caller)):
                raise AlreadyDelegated(f"{caller} already delegated", proposal_id=proposal_id)
        except GovernanceError as e:
            logger.warning(f"Rejected delegation by {caller}: {e}")
            raise

        record = DelegationRecord(
            proposal_id=proposal_id,
            delegator=caller,
            delegate=delegate,
            timestamp=now,
        )
        self.backend.put(delegation_key(proposal_id, caller), record.to_dict())

        logger.info(f"Delegation on {proposal_id}: {caller} -> {delegate}")
        self.emitter.emit(VoteDelegated(proposal_id=proposal_id, delegator=caller, delegate=delegate))
        return record

    # ========================================================================
    # RESOLUTION
    # ========================================================================

    def winning_option(self, proposal_id: int) -> int:
        """
        Option with the highest tally.

        Ties go to the lowest index. With no votes, option 0 wins with
        zero weight.
        """
        proposal = self.registry.get(proposal_id)
        winner = 0
        best = 0
        for index in range(proposal.option_count):
            weight = self.tally_of(proposal_id, index)
            if weight > best:
                best = weight
                winner = index
        return winner

    def finalize(self, proposal_id: int, now: int) -> int:
        """
        End a proposal whose window has passed and announce the winner.

        Returns:
            Winning option index
        """
        proposal = self.registry.transition_to_ended(proposal_id, now)
        winner = self.winning_option(proposal_id)
        self.emitter.emit(ProposalEndedEvent(
            proposal_id=proposal_id,
            winning_option=winner,
            total_votes_weight=proposal.total_votes_weight,
            quorum_reached=proposal.quorum_reached,
        ))
        return winner

    # ========================================================================
    # QUERIES
    # ========================================================================

    def vote_of(self, proposal_id: int, voter: str) -> Optional[VoteRecord]:
        data = self.backend.get(vote_key(proposal_id, voter))
        return VoteRecord.from_dict(data) if data is not None else None

    def has_voted(self, proposal_id: int, voter: str) -> bool:
        return self.backend.contains(vote_key(proposal_id, voter))

    def delegation_of(self, proposal_id: int, delegator: str) -> Optional[DelegationRecord]:
        data = self.backend.get(delegation_key(proposal_id, delegator))
        return DelegationRecord.from_dict(data) if data is not None else None

    def tally_of(self, proposal_id: int, option_index: int) -> int:
        """Accumulated weight for an option (0 when nothing was cast)."""
        return int(self.backend.get(tally_key(proposal_id, option_index), 0))

    def tallies(self, proposal_id: int) -> List[int]:
        """Tally for every option of a proposal, in option order."""
        proposal = self.registry.get(proposal_id)
        return [self.tally_of(proposal_id, i) for i in range(proposal.option_count)]

    def votes(self, proposal_id: int) -> List[VoteRecord]:
        """All vote records for a proposal."""
        prefix = f"{VOTE_PREFIX}{proposal_id}:"
        return [VoteRecord.from_dict(self.backend.get(k)) for k in self.backend.list_keys(prefix)]

    def delegations(self, proposal_id: int) -> List[DelegationRecord]:
        """All delegation records for a proposal."""
        prefix = f"{DELEGATION_PREFIX}{proposal_id}:"
        return [DelegationRecord.from_dict(self.backend.get(k)) for k in self.backend.list_keys(prefix)]
