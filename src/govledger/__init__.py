"""
govledger - Governance state machine for proposals, votes and delegation

Built around:
- ProposalRegistry for proposal numbering and lifecycle
- VoteLedger for vote records, delegations and tallies
- Pluggable vote weighting (simple, weighted, quadratic)
- Transactional key-value state (memory or JSON file)
- Prometheus metrics for monitoring

Usage:
    from govledger import GovernanceProtocol, VotingMechanism

    governance = GovernanceProtocol(owner="EOwner")

    proposal_id = await governance.create_proposal(
        caller="EAlice",
        title="Adopt the new fee schedule",
        description="",
        options=["Yes", "No"],
        duration=7 * 86400,
    )

    await governance.vote("EBob", proposal_id, 0)
    tally = governance.get_vote_count(proposal_id, 0)

Persistent state:
    from govledger.storage import FileBackend

    governance = GovernanceProtocol(owner="EOwner", backend=FileBackend())

Metrics Usage:
    prometheus_output = governance.metrics.collect()
"""

from .protocol import (
    GovernanceProtocol,
    ProposalRegistry,
    VoteLedger,
    Proposal,
    ProposalStatus,
    VoteRecord,
    DelegationRecord,
    VotingMechanism,
    WeightProvider,
    DefaultWeightProvider,
    BalanceWeightProvider,
)
from .storage import StateBackend, MemoryBackend, FileBackend, StorageError
from .events import EventEmitter, GovernanceEvent
from .metrics import GovernanceMetrics
from .config import (
    GovernanceConfig,
    MIN_DURATION,
    MAX_DURATION,
    MAX_OPTIONS,
    ZERO_ADDRESS,
)
from .errors import GovernanceError

__version__ = "0.1.0"

__all__ = [
    "GovernanceProtocol",
    "ProposalRegistry",
    "VoteLedger",
    "Proposal",
    "ProposalStatus",
    "VoteRecord",
    "DelegationRecord",
    "VotingMechanism",
    "WeightProvider",
    "DefaultWeightProvider",
    "BalanceWeightProvider",
    "StateBackend",
    "MemoryBackend",
    "FileBackend",
    "StorageError",
    "EventEmitter",
    "GovernanceEvent",
    "GovernanceMetrics",
    "GovernanceConfig",
    "MIN_DURATION",
    "MAX_DURATION",
    "MAX_OPTIONS",
    "ZERO_ADDRESS",
    "GovernanceError",
]
