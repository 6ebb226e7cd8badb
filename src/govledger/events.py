"""
govledger/events.py

Governance notifications.

Each state change produces one event record. The registry and ledger emit
events synchronously after their transaction commits; subscribers (an
indexer, the async facade's broadcast queue, tests) receive them in order.
"""

import json
import logging
from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, List, Optional

from .config import (
    PROPOSAL_CREATED_TOPIC,
    PROPOSAL_ENDED_TOPIC,
    PROPOSAL_CANCELLED_TOPIC,
    VOTE_CAST_TOPIC,
    VOTE_DELEGATED_TOPIC,
)

logger = logging.getLogger("govledger.events")


# ============================================================================
# EVENT RECORDS
# ============================================================================

@dataclass(frozen=True)
class GovernanceEvent:
    """Base event."""

    topic = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"event": self.__class__.__name__, **asdict(self)}

    def encode(self) -> bytes:
        """JSON payload for broadcasting."""
        return json.dumps(self.to_dict(), sort_keys=True).encode()


@dataclass(frozen=True)
class ProposalCreated(GovernanceEvent):
    proposal_id: int
    creator: str
    title: str
    options: List[str]
    mechanism: str
    quorum: int
    start_time: int
    end_time: int

    topic = PROPOSAL_CREATED_TOPIC


@dataclass(frozen=True)
class VoteCast(GovernanceEvent):
    proposal_id: int
    voter: str
    option_index: int
    weight: int
    total_votes_weight: int
    quorum_reached: bool

    topic = VOTE_CAST_TOPIC


@dataclass(frozen=True)
class VoteDelegated(GovernanceEvent):
    proposal_id: int
    delegator: str
    delegate: str

    topic = VOTE_DELEGATED_TOPIC


@dataclass(frozen=True)
class ProposalEnded(GovernanceEvent):
    proposal_id: int
    winning_option: int
    total_votes_weight: int
    quorum_reached: bool

    topic = PROPOSAL_ENDED_TOPIC


@dataclass(frozen=True)
class ProposalCancelled(GovernanceEvent):
    proposal_id: int
    cancelled_by: str

    topic = PROPOSAL_CANCELLED_TOPIC


# ============================================================================
# EMITTER
# ============================================================================

EventCallback = Callable[[GovernanceEvent], None]


class EventEmitter:
    """
    Fan-out of governance events to subscribers.

    State is already committed when emit() runs, so a failing subscriber is
    logged and skipped rather than propagated to the caller.
    """

    def __init__(self, history_limit: int = 1000):
        self._subscribers: List[EventCallback] = []
        self._history: List[GovernanceEvent] = []
        self._history_limit = history_limit

    def subscribe(self, callback: EventCallback) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: EventCallback) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def emit(self, event: GovernanceEvent) -> None:
        """Deliver an event to every subscriber."""
        self._history.append(event)
        if len(self._history) > self._history_limit:
            self._history = self._history[-self._history_limit:]

        logger.debug(f"Event {event.topic}: {event.to_dict()}")
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Event subscriber failed on {event.topic}: {e}")

    def history(self, topic: Optional[str] = None) -> List[GovernanceEvent]:
        """Recently emitted events, optionally filtered by topic."""
        if topic is None:
            return list(self._history)
        return [e for e in self._history if e.topic == topic]
