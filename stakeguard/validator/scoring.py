"""
StakeGuard Merit Scoring

Weighted multi-criteria scoring of validators:

    total = perf*Wp//100 + rep*Wr//100 + uptime*Wu//100 + stake*Ws//100

Every term truncates independently, so a score can sit up to three units
below the real-valued weighted sum. That loss is deterministic and identical
on every participant.
"""

from typing import Callable, List, Optional

from ..config import EngineConfig, ScoringWeights
from ..constants import WEIGHT_TOTAL
from ..exceptions import ExternalCollaboratorFailure
from ..interfaces import IntegrityHasher
from ..logger import get_logger
from .registry import ValidatorRegistry
from .types import ScoreRecord, ValidatorRecord

logger = get_logger(__name__)


def weighted_score(validator: ValidatorRecord, weights: ScoringWeights) -> int:
    """Integer merit score of ``validator`` under ``weights``."""
    return (
        validator.performance_score * weights.performance // WEIGHT_TOTAL
        + validator.reputation_score * weights.reputation // WEIGHT_TOTAL
        + validator.uptime_score * weights.uptime // WEIGHT_TOTAL
        + validator.stake * weights.stake // WEIGHT_TOTAL
    )


class ScoringEngine:
    """
    Computes merit scores and their integrity commitments.

    Holds no state of its own: weights are read from the live engine
    configuration on every call.
    """

    def __init__(
        self,
        registry: ValidatorRegistry,
        hasher: IntegrityHasher,
        get_config: Callable[[], EngineConfig],
    ):
        self.registry = registry
        self.hasher = hasher
        self._get_config = get_config

    @property
    def weights(self) -> ScoringWeights:
        return self._get_config().scoring

    def score(self, validator: ValidatorRecord) -> Optional[ScoreRecord]:
        """
        Score a single validator.

        Returns:
            ScoreRecord, or None if the validator is disqualified
        """
        if validator.disqualified:
            return None

        total = weighted_score(validator, self.weights)
        try:
            commitment = self.hasher.commit(validator.address, total)
        except Exception as e:
            raise ExternalCollaboratorFailure("IntegrityHasher", str(e)) from e

        return ScoreRecord(
            address=validator.address,
            total_score=total,
            integrity_commitment=commitment,
        )

    def score_all(self) -> List[ScoreRecord]:
        """
        Score every eligible validator in registration order.

        Disqualified validators produce no entry, so the result is not
        index-aligned with the registry.
        """
        records = []
        for validator in self.registry:
            record = self.score(validator)
            if record is not None:
                records.append(record)
        return records

    def score_of(self, address: str) -> int:
        """Plain score for ``address``; zero when disqualified."""
        validator = self.registry.require(address)
        if validator.disqualified:
            return 0
        return weighted_score(validator, self.weights)

    def total_score(self) -> int:
        """Sum of scores over the whole registry (disqualified count as zero)."""
        weights = self.weights
        return sum(
            weighted_score(v, weights) for v in self.registry if not v.disqualified
        )

    def ranking(self) -> List[ScoreRecord]:
        """Eligible validators ordered by score, ties kept in registration order."""
        return sorted(self.score_all(), key=lambda r: -r.total_score)
