"""
govledger/protocol/weighting.py

Vote weight computation.

Each proposal fixes a VotingMechanism at creation. When a vote is cast the
ledger asks compute_weight() for the voter's weight, which is frozen into the
vote record:

- SIMPLE     -> always 1
- WEIGHTED   -> delegated to the injected WeightProvider
- QUADRATIC  -> delegated to the injected WeightProvider

Usage:
    from govledger.protocol.weighting import BalanceWeightProvider

    provider = BalanceWeightProvider(token.balance_of)
    ledger = VoteLedger(registry, backend, weights=provider)
"""

import logging
import math
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, Optional

from ..errors import InvalidWeight

logger = logging.getLogger("govledger.protocol.weighting")


class VotingMechanism(Enum):
    """Rule used to turn a voter into a vote weight."""
    SIMPLE = "simple"
    WEIGHTED = "weighted"
    QUADRATIC = "quadratic"


class WeightProvider(ABC):
    """Capability that supplies weights for WEIGHTED and QUADRATIC proposals."""

    @abstractmethod
    def weighted(self, voter: str) -> int:
        """Weight of a voter under the WEIGHTED mechanism."""
        pass

    @abstractmethod
    def quadratic(self, voter: str) -> int:
        """Weight of a voter under the QUADRATIC mechanism."""
        pass


class DefaultWeightProvider(WeightProvider):
    """
    Fallback provider returning 1 for every voter.

    Non-authoritative: it stands in until a real balance source is wired in,
    which makes WEIGHTED and QUADRATIC behave exactly like SIMPLE.
    """

    def weighted(self, voter: str) -> int:
        return 1

    def quadratic(self, voter: str) -> int:
        return 1


class BalanceWeightProvider(WeightProvider):
    """
    Provider backed by a balance lookup.

    WEIGHTED uses the balance directly; QUADRATIC uses its integer square
    root. Both are floored at 1 so every eligible voter counts.
    """

    def __init__(self, balance_of: Callable[[str], int]):
        self._balance_of = balance_of

    def _balance(self, voter: str) -> int:
        balance = int(self._balance_of(voter))
        return max(balance, 0)

    def weighted(self, voter: str) -> int:
        return max(1, self._balance(voter))

    def quadratic(self, voter: str) -> int:
        return max(1, math.isqrt(self._balance(voter)))


def compute_weight(
    voter: str,
    mechanism: VotingMechanism,
    provider: Optional[WeightProvider] = None,
) -> int:
    """
    Compute the weight for a vote.

    Args:
        voter: Voting principal
        mechanism: Proposal's voting mechanism
        provider: Weight capability (DefaultWeightProvider when omitted)

    Returns:
        Integer weight >= 1

    Raises:
        InvalidWeight: provider returned a weight below 1
    """
    provider = provider or DefaultWeightProvider()

    if mechanism is VotingMechanism.SIMPLE:
        weight = 1
    elif mechanism is VotingMechanism.WEIGHTED:
        weight = provider.weighted(voter)
    elif mechanism is VotingMechanism.QUADRATIC:
        weight = provider.quadratic(voter)
    else:
        raise ValueError(f"Unknown voting mechanism: {mechanism!r}")

    if not isinstance(weight, int) or isinstance(weight, bool) or weight < 1:
        raise InvalidWeight(f"Weight for {voter} must be an integer >= 1, got {weight!r}")

    logger.debug(f"Weight for {voter} under {mechanism.value}: {weight}")
    return weight
