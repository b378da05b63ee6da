"""
StakeGuard External Collaborators

Narrow contracts for the services the engine consumes but does not own.
Each collaborator is injected into the engines, so production wiring and
deterministic test doubles are interchangeable.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List

from .logger import get_logger

logger = get_logger(__name__)


class StakeLedger(ABC):
    """Authoritative source and sink of validator stake."""

    @abstractmethod
    def get_stake(self, address: str) -> int:
        """Current stake held for ``address``."""

    @abstractmethod
    def slash(self, address: str, amount: int) -> None:
        """Remove ``amount`` from the stake of ``address``."""

    @abstractmethod
    def restore(self, address: str, amount: int) -> None:
        """Return ``amount`` to the stake of ``address``."""


class ReputationOracle(ABC):
    """Supplies reputation scores in ``[0, 100]``."""

    @abstractmethod
    def get_reputation(self, address: str) -> int:
        ...


class FraudOracle(ABC):
    """
    Sybil / fraud-pattern detection, consumed as an accept/reject gate.

    A voter is rejected when ``is_flagged`` is true or ``fraud_score`` reaches
    the configured ``voting.fraud_threshold``.
    """

    @abstractmethod
    def detect_anomalies(self, address: str) -> None:
        """Advisory scan; may update the oracle's own state."""

    @abstractmethod
    def is_flagged(self, address: str) -> bool:
        ...

    @abstractmethod
    def fraud_score(self, address: str) -> int:
        """Non-negative suspicion score for ``address``."""


class IntegrityHasher(ABC):
    """Produces opaque tamper-evidence commitments over field tuples."""

    @abstractmethod
    def commit(self, *fields: Any) -> str:
        ...


class AuditSink(ABC):
    """Fire-and-forget durable audit trail."""

    @abstractmethod
    def record(self, category: str, message: str, amount: int, subject: str) -> None:
        ...


# ══════════════════════════════════════════════════════════════════════
#  IN-PROCESS DEFAULTS
# ══════════════════════════════════════════════════════════════════════

class NullFraudOracle(FraudOracle):
    """Fraud oracle that never flags anybody."""

    def detect_anomalies(self, address: str) -> None:
        return None

    def is_flagged(self, address: str) -> bool:
        return False

    def fraud_score(self, address: str) -> int:
        return 0


@dataclass(frozen=True)
class AuditEntry:
    """A single audit-trail line."""
    category: str
    message: str
    amount: int
    subject: str
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "message": self.message,
            "amount": self.amount,
            "subject": self.subject,
            "timestamp": self.timestamp,
        }


class LoggingAuditSink(AuditSink):
    """
    Audit sink that writes to the ``stakeguard.audit`` logger and keeps the
    entries in memory for inspection.
    """

    def __init__(self):
        self._entries: List[AuditEntry] = []
        self._logger = get_logger("stakeguard.audit")

    def record(self, category: str, message: str, amount: int, subject: str) -> None:
        entry = AuditEntry(category=category, message=message, amount=amount, subject=subject)
        self._entries.append(entry)
        self._logger.info(f"[{category}] {message} (subject={subject}, amount={amount})")

    @property
    def entries(self) -> List[AuditEntry]:
        return list(self._entries)


def record_audit(audit: AuditSink, category: str, message: str, amount: int, subject: str) -> None:
    """Write an audit entry; a failing sink never affects the caller."""
    try:
        audit.record(category, message, amount, subject)
    except Exception as e:
        logger.error(f"Audit sink failed for {category} on {subject}: {e}")
