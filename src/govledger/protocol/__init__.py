"""
govledger/protocol/

Proposal registry, vote ledger and the governance protocol built on them.
"""

from .weighting import (
    VotingMechanism,
    WeightProvider,
    DefaultWeightProvider,
    BalanceWeightProvider,
    compute_weight,
)
from .registry import ProposalRegistry, Proposal, ProposalStatus
from .ledger import VoteLedger, VoteRecord, DelegationRecord
from .governance import GovernanceProtocol

__all__ = [
    "VotingMechanism",
    "WeightProvider",
    "DefaultWeightProvider",
    "BalanceWeightProvider",
    "compute_weight",
    "ProposalRegistry",
    "Proposal",
    "ProposalStatus",
    "VoteLedger",
    "VoteRecord",
    "DelegationRecord",
    "GovernanceProtocol",
]
