"""
StakeGuard Validator Types

Core data types for the validator subsystem.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional


class SlashingReason(str, Enum):
    """Common slashable offenses. Free-form reasons are accepted too."""
    DOUBLE_SIGN = "double_sign"
    INVALID_ATTESTATION = "invalid_attestation"
    DOWNTIME = "downtime"
    FRAUD = "fraud"
    OTHER = "other"


class SlashStatus(Enum):
    """Outcome of a slash request."""
    APPLIED = "applied"
    PENDING_GOVERNANCE_REVIEW = "pending_governance_review"


@dataclass
class ValidatorRecord:
    """
    Authoritative record of one validator.

    Attributes:
        address: Validator identity
        stake: Value at risk (never negative)
        performance_score: Performance metric in [0, 100]
        reputation_score: Reputation metric in [0, 100]
        uptime_score: Uptime metric in [0, 100]
        offense_count: Applied slashes minus successful appeals
        disqualified: Excluded from scoring, selection and rewards
        last_selected_epoch: Epoch of the most recent selection
        pending_rewards: Distributed but unclaimed rewards
    """
    address: str
    stake: int = 0
    performance_score: int = 0
    reputation_score: int = 0
    uptime_score: int = 0
    offense_count: int = 0
    disqualified: bool = False
    last_selected_epoch: Optional[int] = None
    pending_rewards: int = 0
    registered_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def is_eligible(self) -> bool:
        return not self.disqualified

    def to_dict(self) -> dict:
        return {
            'address': self.address,
            'stake': self.stake,
            'performance_score': self.performance_score,
            'reputation_score': self.reputation_score,
            'uptime_score': self.uptime_score,
            'offense_count': self.offense_count,
            'disqualified': self.disqualified,
            'last_selected_epoch': self.last_selected_epoch,
            'pending_rewards': self.pending_rewards,
            'registered_at': self.registered_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'ValidatorRecord':
        return cls(
            address=data['address'],
            stake=int(data.get('stake', 0)),
            performance_score=int(data.get('performance_score', 0)),
            reputation_score=int(data.get('reputation_score', 0)),
            uptime_score=int(data.get('uptime_score', 0)),
            offense_count=int(data.get('offense_count', 0)),
            disqualified=bool(data.get('disqualified', False)),
            last_selected_epoch=data.get('last_selected_epoch'),
            pending_rewards=int(data.get('pending_rewards', 0)),
            registered_at=(
                datetime.fromisoformat(data['registered_at'])
                if 'registered_at' in data else datetime.utcnow()
            ),
        )


@dataclass(frozen=True)
class SlashingRecord:
    """Immutable entry in a validator's slashing history."""
    index: int
    validator: str
    penalty_amount: int
    requested_penalty: int
    reason: str
    integrity_hash: str
    timestamp: int

    def to_dict(self) -> dict:
        return {
            'index': self.index,
            'validator': self.validator,
            'penalty_amount': self.penalty_amount,
            'requested_penalty': self.requested_penalty,
            'reason': self.reason,
            'integrity_hash': self.integrity_hash,
            'timestamp': self.timestamp,
        }


@dataclass(frozen=True)
class ScoreRecord:
    """Merit score of one eligible validator."""
    address: str
    total_score: int
    integrity_commitment: str

    def to_dict(self) -> dict:
        return {
            'address': self.address,
            'total_score': self.total_score,
            'integrity_commitment': self.integrity_commitment,
        }


@dataclass(frozen=True)
class SelectionResult:
    """
    Result of a selection round.

    ``address`` is None when no eligible validator has a positive score.
    """
    address: Optional[str]
    total_score: int
    epoch: int

    @property
    def selected(self) -> bool:
        return self.address is not None


@dataclass(frozen=True)
class SlashOutcome:
    """Result of a slash request."""
    status: SlashStatus
    validator: str
    requested_penalty: int
    adjusted_penalty: int
    record: Optional[SlashingRecord] = None

    @property
    def applied(self) -> bool:
        return self.status is SlashStatus.APPLIED


@dataclass(frozen=True)
class AppealOutcome:
    """Result of a successful appeal."""
    validator: str
    record_index: int
    restored_amount: int
    offense_count: int


@dataclass
class RewardReport:
    """Outcome of one reward distribution."""
    epoch: int
    total_pool: int
    total_score: int
    rewards: Dict[str, int] = field(default_factory=dict)

    @property
    def distributed(self) -> int:
        return sum(self.rewards.values())

    @property
    def dust(self) -> int:
        """Rounding remainder dropped by truncating division."""
        return self.total_pool - self.distributed

    @property
    def recipients(self) -> List[str]:
        return [address for address, amount in self.rewards.items() if amount > 0]

    def to_dict(self) -> dict:
        return {
            'epoch': self.epoch,
            'total_pool': self.total_pool,
            'total_score': self.total_score,
            'distributed': self.distributed,
            'dust': self.dust,
            'rewards': dict(self.rewards),
        }
