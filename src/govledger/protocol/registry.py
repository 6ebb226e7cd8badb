"""
govledger/protocol/registry.py

Proposal registry: creation, numbering and lifecycle status of proposals.

Proposals are numbered densely from 0 and never deleted. Status moves only
from ACTIVE to ENDED (time based, anyone may trigger) or from ACTIVE to
CANCELLED (creator or registry owner). Both end states are terminal.

The registry also owns the owner-gated pause flag. While paused, creation
fails and the vote ledger refuses votes and delegations.

Usage:
    registry = ProposalRegistry(MemoryBackend(), owner="EOwner")

    proposal_id = registry.create(
        title="Raise relay bonus",
        description="",
        options=["Yes", "No"],
        duration=7 * 86400,
        mechanism=VotingMechanism.SIMPLE,
        quorum=100,
        caller="EAlice",
        now=int(time.time()),
    )
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Union

from ..config import (
    GovernanceConfig,
    PROPOSAL_PREFIX,
    PROPOSAL_COUNT_KEY,
    PAUSED_KEY,
)
from ..errors import (
    ContractPaused,
    EmptyOption,
    EmptyOptions,
    EmptyTitle,
    InvalidDuration,
    InvalidQuorum,
    ProposalNotActive,
    ProposalNotFound,
    TooManyOptions,
    Unauthorized,
    ValidationError,
)
from ..events import EventEmitter, ProposalCancelled, ProposalCreated
from ..storage import StateBackend, Transaction
from .weighting import VotingMechanism

logger = logging.getLogger("govledger.protocol.registry")


# ============================================================================
# DATA STRUCTURES
# ============================================================================

class ProposalStatus(Enum):
    """Status of a proposal."""
    ACTIVE = "active"                 # Open for voting until end_time
    ENDED = "ended"                   # Finalized after end_time
    CANCELLED = "cancelled"           # Cancelled by creator or owner


@dataclass
class Proposal:
    """A governance proposal."""
    proposal_id: int
    creator: str
    title: str
    description: str
    start_time: int
    end_time: int
    options: List[str] = field(default_factory=list)
    status: ProposalStatus = ProposalStatus.ACTIVE
    total_votes_weight: int = 0
    mechanism: VotingMechanism = VotingMechanism.SIMPLE
    quorum: int = 0                   # 0 = disabled
    quorum_reached: bool = False

    @property
    def option_count(self) -> int:
        return len(self.options)

    def is_active(self) -> bool:
        return self.status == ProposalStatus.ACTIVE

    def is_open(self, now: int) -> bool:
        """Active and still inside the voting window."""
        return self.is_active() and now < self.end_time

    def to_dict(self) -> dict:
        return {
            "proposal_id": self.proposal_id,
            "creator": self.creator,
            "title": self.title,
            "description": self.description,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "options": list(self.options),
            "status": self.status.value,
            "total_votes_weight": self.total_votes_weight,
            "mechanism": self.mechanism.value,
            "quorum": self.quorum,
            "quorum_reached": self.quorum_reached,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Proposal":
        return cls(
            proposal_id=int(data["proposal_id"]),
            creator=data["creator"],
            title=data["title"],
            description=data.get("description", ""),
            start_time=int(data["start_time"]),
            end_time=int(data["end_time"]),
            options=list(data.get("options", [])),
            status=ProposalStatus(data.get("status", "active")),
            total_votes_weight=int(data.get("total_votes_weight", 0)),
            mechanism=VotingMechanism(data.get("mechanism", "simple")),
            quorum=int(data.get("quorum", 0)),
            quorum_reached=bool(data.get("quorum_reached", False)),
        )


def proposal_key(proposal_id: int) -> str:
    return f"{PROPOSAL_PREFIX}{proposal_id}"


def _coerce_mechanism(mechanism: Union[VotingMechanism, str]) -> VotingMechanism:
    try:
        return VotingMechanism(mechanism)
    except ValueError:
        raise ValidationError(f"Unknown voting mechanism: {mechanism!r}") from None


# ============================================================================
# PROPOSAL REGISTRY
# ============================================================================

class ProposalRegistry:
    """
    Owns proposal records, their numbering and status.

    All methods that change state validate fully first and then write
    through a single Transaction.
    """

    def __init__(
        self,
        backend: StateBackend,
        owner: str,
        config: Optional[GovernanceConfig] = None,
        emitter: Optional[EventEmitter] = None,
    ):
        """
        Initialize ProposalRegistry.

        Args:
            backend: State backend holding proposal records
            owner: Principal allowed to pause and to cancel any proposal
            config: Creation limits (defaults from govledger.config)
            emitter: Event emitter for notifications
        """
        self.backend = backend
        self.owner = owner
        self.config = config or GovernanceConfig()
        self.config.validate()
        self.emitter = emitter or EventEmitter()

    # ========================================================================
    # PAUSE GATE
    # ========================================================================

    def is_paused(self) -> bool:
        return bool(self.backend.get(PAUSED_KEY, False))

    def require_not_paused(self) -> None:
        if self.is_paused():
            logger.warning("Rejected operation: governance is paused")
            raise ContractPaused("Governance is paused")

    def pause(self, caller: str) -> None:
        """Pause creation, voting and delegation (owner only)."""
        self._set_paused(caller, True)

    def unpause(self, caller: str) -> None:
        """Lift the pause (owner only)."""
        self._set_paused(caller, False)

    def _set_paused(self, caller: str, paused: bool) -> None:
        if caller != self.owner:
            logger.warning(f"Unauthorized pause toggle by {caller}")
            raise Unauthorized("Only the owner can pause or unpause")

        if self.is_paused() == paused:
            logger.debug(f"Pause flag already {paused}")
            return

        self.backend.put(PAUSED_KEY, paused)
        logger.info(f"Governance {'paused' if paused else 'unpaused'} by {caller}")

    # ========================================================================
    # QUERIES
    # ========================================================================

    def count(self) -> int:
        """Number of proposals ever created (next id to allocate)."""
        return int(self.backend.get(PROPOSAL_COUNT_KEY, 0))

    def exists(self, proposal_id: int) -> bool:
        return self.backend.contains(proposal_key(proposal_id))

    def get(self, proposal_id: int) -> Proposal:
        """
        Get a proposal by id.

        Raises:
            ProposalNotFound: no proposal with this id
        """
        data = self.backend.get(proposal_key(proposal_id))
        if data is None:
            raise ProposalNotFound("Proposal not found", proposal_id=proposal_id)
        return Proposal.from_dict(data)

    def proposals(self, status: Optional[ProposalStatus] = None) -> Iterator[Proposal]:
        """Iterate proposals in id order, optionally filtered by status."""
        for proposal_id in range(self.count()):
            proposal = self.get(proposal_id)
            if status is None or proposal.status == status:
                yield proposal

    # ========================================================================
    # CREATION
    # ========================================================================

    def _validate_creation(
        self,
        title: str,
        options: List[str],
        duration: int,
        quorum: int,
    ) -> None:
        if not title or not title.strip():
            raise EmptyTitle("Proposal title must not be empty")
        if not options:
            raise EmptyOptions("Proposal needs at least one option")
        if len(options) > self.config.max_options:
            raise TooManyOptions(
                f"Proposal has {len(options)} options, maximum is {self.config.max_options}"
            )
        for index, label in enumerate(options):
            if not label or not label.strip():
                raise EmptyOption(f"Option {index} must not be empty")
        if isinstance(duration, bool) or not isinstance(duration, int):
            raise InvalidDuration(f"Duration must be whole seconds, got {duration!r}")
        if not self.config.min_duration <= duration <= self.config.max_duration:
            raise InvalidDuration(
                f"Duration {duration}s outside "
                f"[{self.config.min_duration}, {self.config.max_duration}]"
            )
        if quorum < 0:
            raise InvalidQuorum(f"Quorum must be >= 0, got {quorum}")

    def create(
        self,
        title: str,
        description: str,
        options: List[str],
        duration: int,
        mechanism: Union[VotingMechanism, str],
        quorum: int,
        caller: str,
        now: int,
    ) -> int:
        """
        Create a new proposal.

        Args:
            title: Non-empty title
            description: Free text, may be empty
            options: 1..max_options non-empty labels
            duration: Voting window in seconds
            mechanism: Voting mechanism (enum or its value)
            quorum: Minimum accumulated weight, 0 disables
            caller: Creating principal
            now: Current time from the clock

        Returns:
            New proposal id
        """
        self.require_not_paused()

        try:
            self._validate_creation(title, options, duration, quorum)
            mechanism = _coerce_mechanism(mechanism)
        except ValidationError as e:
            logger.warning(f"Rejected proposal from {caller}: {e}")
            raise

        proposal_id = self.count()
        proposal = Proposal(
            proposal_id=proposal_id,
            creator=caller,
            title=title,
            description=description or "",
            start_time=now,
            end_time=now + duration,
            options=list(options),
            status=ProposalStatus.ACTIVE,
            mechanism=mechanism,
            quorum=quorum,
        )

        with self.backend.transaction() as txn:
            txn.put(proposal_key(proposal_id), proposal.to_dict())
            txn.put(PROPOSAL_COUNT_KEY, proposal_id + 1)

        logger.info(f"Created proposal {proposal_id} by {caller}: {title}")
        self.emitter.emit(ProposalCreated(
            proposal_id=proposal_id,
            creator=caller,
            title=title,
            options=list(options),
            mechanism=mechanism.value,
            quorum=quorum,
            start_time=proposal.start_time,
            end_time=proposal.end_time,
        ))
        return proposal_id

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    def transition_to_ended(self, proposal_id: int, now: int) -> Proposal:
        """
        Mark a proposal ENDED once its window has passed.

        Callable by anyone; the deadline alone decides.

        Raises:
            ProposalNotActive: not ACTIVE, or now < end_time
        """
        proposal = self.get(proposal_id)
        if not proposal.is_active():
            logger.warning(f"Cannot end proposal {proposal_id}: status {proposal.status.value}")
            raise ProposalNotActive("Proposal is not active", proposal_id=proposal_id)
        if now < proposal.end_time:
            logger.warning(f"Cannot end proposal {proposal_id}: voting open until {proposal.end_time}")
            raise ProposalNotActive("Voting period has not ended", proposal_id=proposal_id)

        proposal.status = ProposalStatus.ENDED
        self.backend.put(proposal_key(proposal_id), proposal.to_dict())
        logger.info(f"Ended proposal {proposal_id}")
        return proposal

    def cancel(self, proposal_id: int, caller: str) -> Proposal:
        """
        Cancel a proposal (creator or owner, ACTIVE only).

        Raises:
            Unauthorized: caller is neither creator nor owner
            ProposalNotActive: proposal already ended or cancelled
        """
        proposal = self.get(proposal_id)
        if caller != proposal.creator and caller != self.owner:
            logger.warning(f"Unauthorized cancel of proposal {proposal_id} by {caller}")
            raise Unauthorized("Only the creator or owner can cancel", proposal_id=proposal_id)
        if not proposal.is_active():
            logger.warning(f"Cannot cancel proposal {proposal_id}: status {proposal.status.value}")
            raise ProposalNotActive("Proposal is not active", proposal_id=proposal_id)

        proposal.status = ProposalStatus.CANCELLED
        self.backend.put(proposal_key(proposal_id), proposal.to_dict())

        logger.info(f"Cancelled proposal {proposal_id} by {caller}")
        self.emitter.emit(ProposalCancelled(proposal_id=proposal_id, cancelled_by=caller))
        return proposal

    # ========================================================================
    # LEDGER UPDATE CONTRACT
    # ========================================================================

    def record_weight(self, txn: Transaction, proposal_id: int, weight: int) -> Proposal:
        """
        Add vote weight to a proposal inside the caller's transaction.

        The only proposal fields touched are total_votes_weight and
        quorum_reached; quorum_reached never goes back to False.
        """
        data = txn.get(proposal_key(proposal_id))
        if data is None:
            raise ProposalNotFound("Proposal not found", proposal_id=proposal_id)

        proposal = Proposal.from_dict(data)
        proposal.total_votes_weight += weight
        if proposal.quorum > 0 and proposal.total_votes_weight >= proposal.quorum:
            if not proposal.quorum_reached:
                logger.info(f"Proposal {proposal_id} reached quorum {proposal.quorum}")
            proposal.quorum_reached = True

        txn.put(proposal_key(proposal_id), proposal.to_dict())
        return proposal

    def get_stats(self) -> Dict[str, Any]:
        """Registry statistics."""
        status_counts = {status.value: 0 for status in ProposalStatus}
        for proposal in self.proposals():
            status_counts[proposal.status.value] += 1

        return {
            "total_proposals": self.count(),
            "active_proposals": status_counts["active"],
            "ended_proposals": status_counts["ended"],
            "cancelled_proposals": status_counts["cancelled"],
            "paused": self.is_paused(),
            "owner": self.owner,
        }
