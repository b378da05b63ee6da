"""
StakeGuard Rewards Distribution

Accumulates a reward pool and pays it out pro-rata by merit score:

    reward(v) = total_pool * score(v) // sum(score)

Truncation leaves a remainder smaller than the number of validators with a
positive score. The remainder is not redistributed: the pool is reset to
zero after every distribution.
"""

import time
from dataclasses import dataclass
from typing import Callable, Optional

from ..config import EngineConfig
from ..events import EventBus, POOL_FUNDED, REWARDS_DISTRIBUTED
from ..exceptions import PreconditionViolation
from ..guard import ExclusiveSection
from ..interfaces import AuditSink, record_audit
from ..logger import get_logger
from ..metrics import MetricsCollector
from .registry import ValidatorRegistry, check_amount
from .scoring import ScoringEngine
from .types import RewardReport

logger = get_logger(__name__)


@dataclass
class RewardPool:
    """
    Process-wide reward pool.

    Attributes:
        total_pool: Undistributed balance
        current_epoch: Number of completed distributions
        epoch_duration: Minimum network time between distributions
        last_distribution_at: Network time of the last distribution
    """
    total_pool: int = 0
    current_epoch: int = 0
    epoch_duration: int = 0
    last_distribution_at: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            'total_pool': self.total_pool,
            'current_epoch': self.current_epoch,
            'epoch_duration': self.epoch_duration,
            'last_distribution_at': self.last_distribution_at,
        }


class RewardDistributionEngine:
    """
    Funds and distributes the reward pool across the registered validator set.

    Rewards are credited to each validator's ``pending_rewards`` and paid out
    through ``claim``.
    """

    def __init__(
        self,
        registry: ValidatorRegistry,
        scoring: ScoringEngine,
        guard: ExclusiveSection,
        audit: AuditSink,
        events: EventBus,
        get_config: Callable[[], EngineConfig],
        clock: Callable[[], int] = lambda: int(time.time()),
        metrics: Optional[MetricsCollector] = None,
    ):
        self.registry = registry
        self.scoring = scoring
        self.guard = guard
        self.audit = audit
        self.events = events
        self._get_config = get_config
        self._clock = clock
        self.metrics = metrics
        self.pool = RewardPool(epoch_duration=get_config().rewards.epoch_duration)

    def fund(self, amount: int) -> int:
        """
        Add ``amount`` to the pool.

        Returns:
            New pool balance
        """
        with self.guard.hold("fund_pool"):
            check_amount("amount", amount, allow_zero=False)
            self.pool.total_pool += amount
            balance = self.pool.total_pool

        logger.info(f"PoolFunded: +{amount} (pool={balance})")
        if self.metrics:
            self.metrics.reward_pool.set(balance)
        self.events.emit(POOL_FUNDED, amount=amount, total_pool=balance)
        return balance

    def distribute(self) -> RewardReport:
        """
        Distribute the whole pool pro-rata by merit score.

        Raises:
            PreconditionViolation: Empty pool, zero total score, or the
                previous distribution was less than ``epoch_duration`` ago
        """
        with self.guard.hold("distribute"):
            pool = self.pool
            duration = self._get_config().rewards.epoch_duration

            if pool.total_pool <= 0:
                raise PreconditionViolation("empty_pool", "Reward pool is empty")

            now = self._clock()
            if (pool.last_distribution_at is not None
                    and now - pool.last_distribution_at < duration):
                raise PreconditionViolation(
                    "epoch_not_elapsed",
                    f"Next distribution allowed at "
                    f"{pool.last_distribution_at + duration}, now {now}"
                )

            scores = {
                v.address: self.scoring.score_of(v.address) for v in self.registry
            }
            total_score = sum(scores.values())
            if total_score <= 0:
                raise PreconditionViolation(
                    "zero_total_score", "No registered validator has a positive score"
                )

            report = RewardReport(
                epoch=pool.current_epoch,
                total_pool=pool.total_pool,
                total_score=total_score,
            )
            for address, score in scores.items():
                reward = pool.total_pool * score // total_score
                report.rewards[address] = reward
                if reward:
                    self.registry.require(address).pending_rewards += reward

            pool.total_pool = 0
            pool.current_epoch += 1
            pool.last_distribution_at = now
            pool.epoch_duration = duration

        logger.info(
            f"RewardsDistributed: epoch {report.epoch} paid {report.distributed} of "
            f"{report.total_pool} to {len(report.recipients)} validators (dust={report.dust})"
        )
        record_audit(
            self.audit, "rewards", f"Distribution for epoch {report.epoch}",
            report.distributed, "*",
        )
        if self.metrics:
            self.metrics.reward_pool.set(0)
            self.metrics.rewards_distributed_total.inc(report.distributed)
            self.metrics.reward_dust_total.inc(report.dust)
        self.events.emit(
            REWARDS_DISTRIBUTED,
            epoch=report.epoch,
            total_pool=report.total_pool,
            distributed=report.distributed,
            dust=report.dust,
        )
        return report

    def claim(self, address: str) -> int:
        """Pay out and zero the pending rewards of ``address``."""
        with self.guard.hold("claim_rewards"):
            record = self.registry.require(address)
            amount = record.pending_rewards
            record.pending_rewards = 0

        if amount:
            logger.info(f"Rewards claimed: {address} received {amount} units")
            record_audit(self.audit, "rewards", "Rewards claimed", amount, address)
        return amount

    def pending(self, address: str) -> int:
        return self.registry.require(address).pending_rewards
