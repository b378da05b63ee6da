"""
StakeGuard Event Notifications

Engines emit named events after a state change has been fully applied.
Subscribers are notified synchronously; a failing subscriber is logged and
never undoes the operation that emitted the event.
"""

import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional

from .constants import EVENT_HISTORY_LIMIT
from .logger import get_logger

logger = get_logger(__name__)


VALIDATOR_REGISTERED = "ValidatorRegistered"
VALIDATOR_SELECTED = "ValidatorSelected"
VALIDATOR_SLASHED = "ValidatorSlashed"
GOVERNANCE_REVIEW_REQUIRED = "GovernanceReviewRequired"
SLASH_APPEALED = "SlashAppealed"
REWARDS_DISTRIBUTED = "RewardsDistributed"
POOL_FUNDED = "PoolFunded"
EPOCH_ADVANCED = "EpochAdvanced"
WEIGHTS_UPDATED = "WeightsUpdated"
VALIDATOR_DISQUALIFIED = "ValidatorDisqualified"
VOTE_CAST = "VoteCast"
VOTE_DELEGATED = "VoteDelegated"

WILDCARD = "*"

EventHandler = Callable[["EngineEvent"], None]


@dataclass(frozen=True)
class EngineEvent:
    """A notification emitted by one of the engines."""
    name: str
    payload: Dict[str, Any]
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "payload": dict(self.payload),
            "timestamp": self.timestamp,
        }


class EventBus:
    """Synchronous publish/subscribe with a bounded replay history."""

    def __init__(self, history_limit: int = EVENT_HISTORY_LIMIT):
        self._handlers: Dict[str, List[EventHandler]] = {}
        self._history: Deque[EngineEvent] = deque(maxlen=history_limit)

    def subscribe(self, name: str, handler: EventHandler) -> None:
        """Register ``handler`` for ``name`` (or ``"*"`` for every event)."""
        self._handlers.setdefault(name, []).append(handler)

    def unsubscribe(self, name: str, handler: EventHandler) -> bool:
        handlers = self._handlers.get(name, [])
        if handler in handlers:
            handlers.remove(handler)
            return True
        return False

    def emit(self, name: str, **payload: Any) -> EngineEvent:
        event = EngineEvent(name=name, payload=payload)
        self._history.append(event)
        logger.debug(f"{name} {payload}")

        for handler in self._handlers.get(name, []) + self._handlers.get(WILDCARD, []):
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Event handler for {name} failed: {e}")
        return event

    def history(self, name: Optional[str] = None) -> List[EngineEvent]:
        if name is None:
            return list(self._history)
        return [e for e in self._history if e.name == name]
