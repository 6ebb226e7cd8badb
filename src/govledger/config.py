"""
govledger/config.py

Configuration constants and data classes for govledger.
"""

from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Dict


# Voting window bounds (seconds)
MIN_DURATION = 60 * 60                # 1 hour
MAX_DURATION = 30 * 24 * 60 * 60      # 30 days
DEFAULT_DURATION = 7 * 24 * 60 * 60   # 1 week

# Maximum number of options on a single proposal
MAX_OPTIONS = 10

# Principal treated as "no address"
ZERO_ADDRESS = "0x" + "0" * 40

# Notification topics
PROPOSAL_CREATED_TOPIC = "governance/proposals/created"
PROPOSAL_ENDED_TOPIC = "governance/proposals/ended"
PROPOSAL_CANCELLED_TOPIC = "governance/proposals/cancelled"
VOTE_CAST_TOPIC = "governance/votes/cast"
VOTE_DELEGATED_TOPIC = "governance/votes/delegated"

# State key prefixes
STATE_PREFIX = "gov:"
META_PREFIX = STATE_PREFIX + "meta:"
PROPOSAL_PREFIX = STATE_PREFIX + "proposal:"
VOTE_PREFIX = STATE_PREFIX + "vote:"
DELEGATION_PREFIX = STATE_PREFIX + "delegation:"
TALLY_PREFIX = STATE_PREFIX + "tally:"

PROPOSAL_COUNT_KEY = META_PREFIX + "proposal_count"
PAUSED_KEY = META_PREFIX + "paused"

# Default location for the JSON state file
DEFAULT_STATE_PATH = Path.home() / ".govledger" / "state.json"


def is_zero_principal(principal: str) -> bool:
    """Check if a principal is empty or the zero address."""
    return not principal or principal == ZERO_ADDRESS


@dataclass
class GovernanceConfig:
    """Tunable limits for proposal creation."""
    min_duration: int = MIN_DURATION
    max_duration: int = MAX_DURATION
    max_options: int = MAX_OPTIONS

    def validate(self) -> None:
        """Reject configurations that could never admit a proposal."""
        if self.min_duration <= 0:
            raise ValueError("min_duration must be positive")
        if self.max_duration < self.min_duration:
            raise ValueError("max_duration must be >= min_duration")
        if self.max_options < 1:
            raise ValueError("max_options must be at least 1")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
