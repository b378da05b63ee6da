"""
StakeGuard Engine

Wires the validator registry, scoring, selection, slashing, rewards and
voting subsystems around one shared critical section, one configuration
holder and one capability authority.

Every administrative entry point takes an ``AdminCapability``; read-only
queries and voter operations do not. The engine itself only holds the
critical section for its own mutations (epoch rotation, configuration swaps,
registry edits); sub-engine calls take it themselves.
"""

import time
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional, Union

from .access import AdminCapability, CapabilityAuthority
from .config import EngineConfig, ScoringWeights, VotingConfig, VotingWeights
from .constants import METRIC_MAX, METRIC_MIN
from .crypto import KeccakIntegrityHasher
from .events import (
    EPOCH_ADVANCED,
    VALIDATOR_DISQUALIFIED,
    VALIDATOR_REGISTERED,
    WEIGHTS_UPDATED,
    EventBus,
)
from .exceptions import ExternalCollaboratorFailure, PreconditionViolation
from .governance import VoteChoice, VoteReceipt, VoterRecord, VotingModel
from .guard import ExclusiveSection
from .interfaces import (
    AuditSink,
    FraudOracle,
    IntegrityHasher,
    LoggingAuditSink,
    NullFraudOracle,
    ReputationOracle,
    StakeLedger,
    record_audit,
)
from .logger import get_logger
from .metrics import MetricsCollector
from .validator import (
    AppealOutcome,
    RegistryReputationOracle,
    RegistryStakeLedger,
    RewardDistributionEngine,
    RewardReport,
    ScoreRecord,
    ScoringEngine,
    SelectionProcess,
    SelectionResult,
    SlashingEngine,
    SlashingReason,
    SlashingRecord,
    SlashOutcome,
    ValidatorRecord,
    ValidatorRegistry,
)
from .validator.registry import check_amount

logger = get_logger(__name__)


class StakeGuardEngine:
    """
    Validator incentive and discipline engine.

    Usage:
        engine = StakeGuardEngine(config=load_config())
        admin = engine.issue_capability("operator")
        engine.register_validator(admin, "0xA", stake=1000, performance_score=90,
                                  reputation_score=80, uptime_score=95)
        engine.select_best()
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        ledger: Optional[StakeLedger] = None,
        reputation_oracle: Optional[ReputationOracle] = None,
        fraud_oracle: Optional[FraudOracle] = None,
        hasher: Optional[IntegrityHasher] = None,
        audit: Optional[AuditSink] = None,
        clock: Optional[Callable[[], int]] = None,
        events: Optional[EventBus] = None,
    ):
        self._config = config or EngineConfig()
        self._config.validate()

        self.clock = clock or (lambda: int(time.time()))
        self.registry = ValidatorRegistry()
        self.ledger = ledger or RegistryStakeLedger(self.registry)
        self.reputation_oracle = reputation_oracle or RegistryReputationOracle(self.registry)
        self.fraud_oracle = fraud_oracle or NullFraudOracle()
        self.hasher = hasher or KeccakIntegrityHasher()
        self.audit = audit or LoggingAuditSink()
        self.events = events or EventBus()
        self.guard = ExclusiveSection("stakeguard")
        self.authority = CapabilityAuthority()
        self.metrics = MetricsCollector() if self._config.metrics.enabled else None

        self.current_epoch = 0
        self.last_epoch_advance_at = self.clock()

        self.scoring = ScoringEngine(self.registry, self.hasher, self.get_config)
        self.selection = SelectionProcess(
            self.registry, self.scoring, self.guard, self.audit, self.events,
            get_epoch=lambda: self.current_epoch,
            metrics=self.metrics,
        )
        self.slashing = SlashingEngine(
            self.registry, self.ledger, self.hasher, self.audit, self.events,
            self.guard, self.get_config, clock=self.clock, metrics=self.metrics,
        )
        self.rewards = RewardDistributionEngine(
            self.registry, self.scoring, self.guard, self.audit, self.events,
            self.get_config, clock=self.clock, metrics=self.metrics,
        )
        self.voting = VotingModel(
            self.guard, self.events, self.audit, self.get_config,
            reputation_oracle=self.reputation_oracle,
            fraud_oracle=self.fraud_oracle,
            clock=self.clock,
            metrics=self.metrics,
        )

        logger.info(f"StakeGuard engine initialized (config v{self._config.version})")

    # =========================================================================
    # CAPABILITIES & CONFIGURATION
    # =========================================================================

    def issue_capability(self, holder: str) -> AdminCapability:
        return self.authority.issue(holder)

    def revoke_capability(self, capability: AdminCapability, holder: str) -> bool:
        self.authority.require(capability, "revoke_capability")
        return self.authority.revoke(holder)

    def get_config(self) -> EngineConfig:
        return self._config

    @property
    def config(self) -> EngineConfig:
        return self._config

    def _swap_config(
        self,
        capability: AdminCapability,
        operation: str,
        build: Callable[[EngineConfig], Dict[str, Any]],
    ) -> EngineConfig:
        """
        Replace the active configuration.

        ``build`` receives the configuration current at swap time and returns
        the sections to replace, so partial updates never overwrite a
        concurrent change with stale values.
        """
        holder = self.authority.require(capability, operation)
        with self.guard.hold(operation):
            previous = self._config
            candidate = previous.evolve(**build(previous))
            self._config = candidate

        logger.info(f"Configuration v{previous.version} → v{candidate.version} ({operation})")
        record_audit(self.audit, "config", operation, candidate.version, holder)
        self.events.emit(
            WEIGHTS_UPDATED,
            operation=operation,
            version=candidate.version,
            config=candidate.to_dict(),
        )
        return candidate

    def update_scoring_weights(
        self,
        capability: AdminCapability,
        performance: int,
        reputation: int,
        uptime: int,
        stake: int,
    ) -> EngineConfig:
        """
        Replace the merit score weights.

        Raises:
            AuthorizationViolation: Invalid capability
            PreconditionViolation: Weights not summing to 100; the previous
                configuration stays in effect
        """
        weights = ScoringWeights(
            performance=performance, reputation=reputation, uptime=uptime, stake=stake,
        )
        return self._swap_config(
            capability, "update_scoring_weights", lambda current: {"scoring": weights}
        )

    def update_voting_weights(
        self,
        capability: AdminCapability,
        stake: int,
        reputation: int,
        decay_rate: Optional[int] = None,
        fraud_threshold: Optional[int] = None,
    ) -> EngineConfig:
        def build(current: EngineConfig) -> Dict[str, Any]:
            voting = current.voting
            return {"voting": VotingConfig(
                weights=VotingWeights(stake=stake, reputation=reputation),
                decay_rate=voting.decay_rate if decay_rate is None else decay_rate,
                fraud_threshold=voting.fraud_threshold if fraud_threshold is None else fraud_threshold,
            )}

        return self._swap_config(capability, "update_voting_weights", build)

    def update_slashing_params(
        self,
        capability: AdminCapability,
        min_penalty: Optional[int] = None,
        max_penalty: Optional[int] = None,
        governance_review_threshold: Optional[int] = None,
        appeal_restore_percent: Optional[int] = None,
    ) -> EngineConfig:
        overrides = {
            "min_penalty": min_penalty,
            "max_penalty": max_penalty,
            "governance_review_threshold": governance_review_threshold,
            "appeal_restore_percent": appeal_restore_percent,
        }

        def build(current: EngineConfig) -> Dict[str, Any]:
            changed = {k: v for k, v in overrides.items() if v is not None}
            return {"slashing": replace(current.slashing, **changed)}

        return self._swap_config(capability, "update_slashing_params", build)

    # =========================================================================
    # EPOCHS
    # =========================================================================

    def advance_epoch(self, capability: AdminCapability) -> int:
        """
        Rotate to the next epoch.

        Raises:
            PreconditionViolation: Fewer than ``epoch_interval`` time units
                since the previous rotation
        """
        holder = self.authority.require(capability, "advance_epoch")
        with self.guard.hold("advance_epoch"):
            interval = self._config.epochs.epoch_interval
            now = self.clock()
            elapsed = now - self.last_epoch_advance_at
            if elapsed < interval:
                raise PreconditionViolation(
                    "epoch_interval",
                    f"Only {elapsed} of {interval} time units elapsed since the last epoch"
                )
            self.current_epoch += 1
            self.last_epoch_advance_at = now
            epoch = self.current_epoch

        logger.info(f"EpochAdvanced: {epoch - 1} → {epoch}")
        record_audit(self.audit, "epoch", "Epoch advanced", epoch, holder)
        if self.metrics:
            self.metrics.current_epoch.set(epoch)
        self.events.emit(EPOCH_ADVANCED, epoch=epoch, timestamp=now)
        return epoch

    # =========================================================================
    # VALIDATOR ADMINISTRATION
    # =========================================================================

    def register_validator(
        self,
        capability: AdminCapability,
        address: str,
        stake: int = 0,
        performance_score: int = 0,
        reputation_score: int = 0,
        uptime_score: int = 0,
    ) -> ValidatorRecord:
        holder = self.authority.require(capability, "register_validator")
        with self.guard.hold("register_validator"):
            record = self.registry.register(
                address,
                stake=stake,
                performance_score=performance_score,
                reputation_score=reputation_score,
                uptime_score=uptime_score,
            )
            count = len(self.registry)

        record_audit(self.audit, "registry", f"Registered by {holder}", stake, address)
        if self.metrics:
            self.metrics.registered_validators.set(count)
        self.events.emit(VALIDATOR_REGISTERED, validator=address, stake=stake)
        return record

    def update_metrics(
        self,
        capability: AdminCapability,
        address: str,
        performance_score: Optional[int] = None,
        reputation_score: Optional[int] = None,
        uptime_score: Optional[int] = None,
    ) -> ValidatorRecord:
        holder = self.authority.require(capability, "update_metrics")
        with self.guard.hold("update_metrics"):
            record = self.registry.update_metrics(
                address,
                performance_score=performance_score,
                reputation_score=reputation_score,
                uptime_score=uptime_score,
            )

        logger.debug(f"Metrics updated for {address}")
        record_audit(self.audit, "registry", f"Metrics updated by {holder}", 0, address)
        return record

    def refresh_reputation(self, capability: AdminCapability, address: str) -> int:
        """Pull ``address``'s reputation from the reputation oracle."""
        holder = self.authority.require(capability, "refresh_reputation")
        with self.guard.hold("refresh_reputation"):
            record = self.registry.require(address)
            try:
                reputation = self.reputation_oracle.get_reputation(address)
            except Exception as e:
                raise ExternalCollaboratorFailure("ReputationOracle", str(e)) from e
            if (isinstance(reputation, bool) or not isinstance(reputation, int)
                    or not METRIC_MIN <= reputation <= METRIC_MAX):
                raise ExternalCollaboratorFailure(
                    "ReputationOracle", f"reputation {reputation!r} for {address} outside [0, 100]"
                )
            record.reputation_score = reputation

        record_audit(self.audit, "registry", f"Reputation refreshed by {holder}", reputation, address)
        return reputation

    def add_stake(self, capability: AdminCapability, address: str, amount: int) -> int:
        """Credit ``amount`` through the stake ledger; returns the new stake."""
        holder = self.authority.require(capability, "add_stake")
        with self.guard.hold("add_stake"):
            self.registry.require(address)
            check_amount("amount", amount, allow_zero=False)
            stake = self.slashing.credit_stake(address, amount)
            self.registry.set_stake(address, stake)

        logger.info(f"Stake added: {address} +{amount} (stake={stake})")
        record_audit(self.audit, "stake", f"Stake added by {holder}", amount, address)
        return stake

    def disqualify(self, capability: AdminCapability, address: str) -> ValidatorRecord:
        return self._set_disqualified(capability, address, True)

    def clear_disqualification(self, capability: AdminCapability, address: str) -> ValidatorRecord:
        return self._set_disqualified(capability, address, False)

    def _set_disqualified(
        self, capability: AdminCapability, address: str, disqualified: bool
    ) -> ValidatorRecord:
        operation = "disqualify" if disqualified else "clear_disqualification"
        holder = self.authority.require(capability, operation)
        with self.guard.hold(operation):
            record = self.registry.set_disqualified(address, disqualified)

        if disqualified:
            logger.warning(f"Validator disqualified: {address}")
        else:
            logger.info(f"Disqualification cleared: {address}")
        record_audit(self.audit, "registry", f"{operation} by {holder}", 0, address)
        self.events.emit(VALIDATOR_DISQUALIFIED, validator=address, disqualified=disqualified)
        return record

    # =========================================================================
    # SELECTION, SLASHING, REWARDS
    # =========================================================================

    def select_best(self) -> SelectionResult:
        return self.selection.select_best()

    def slash(
        self,
        capability: AdminCapability,
        validator: str,
        requested_penalty: int,
        reason: Union[SlashingReason, str],
    ) -> SlashOutcome:
        self.authority.require(capability, "slash")
        return self.slashing.slash(validator, requested_penalty, reason)

    def appeal(self, capability: AdminCapability, validator: str, record_index: int) -> AppealOutcome:
        self.authority.require(capability, "appeal")
        return self.slashing.appeal(validator, record_index)

    def fund_pool(self, capability: AdminCapability, amount: int) -> int:
        self.authority.require(capability, "fund_pool")
        return self.rewards.fund(amount)

    def distribute_rewards(self, capability: AdminCapability) -> RewardReport:
        self.authority.require(capability, "distribute_rewards")
        return self.rewards.distribute()

    def claim_rewards(self, address: str) -> int:
        return self.rewards.claim(address)

    # =========================================================================
    # VOTING
    # =========================================================================

    def register_voter(
        self, voter: str, stake: int, reputation_score: Optional[int] = None
    ) -> VoterRecord:
        return self.voting.register_voter(voter, stake, reputation_score)

    def cast_vote(self, voter: str, choice: VoteChoice = VoteChoice.FOR) -> VoteReceipt:
        return self.voting.cast_vote(voter, choice)

    def delegate_vote(self, delegator: str, delegatee: str) -> None:
        self.voting.delegate_vote(delegator, delegatee)

    def flag_fraud(self, capability: AdminCapability, voter: str, count: int = 1) -> int:
        self.authority.require(capability, "flag_fraud")
        return self.voting.flag_fraud(voter, count)

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_validator(self, address: str) -> Optional[ValidatorRecord]:
        return self.registry.get(address)

    def score_of(self, address: str) -> int:
        self.registry.require(address)
        return self.scoring.score_of(address)

    def scores(self) -> List[ScoreRecord]:
        return self.scoring.score_all()

    def ranking(self) -> List[ScoreRecord]:
        return self.scoring.ranking()

    def slashing_history(self, validator: str, offset: int = 0, limit: int = 50) -> List[SlashingRecord]:
        return self.slashing.history(validator, offset, limit)

    def voting_power(self, voter: str) -> int:
        return self.voting.voting_power(voter)

    def pending_rewards(self, address: str) -> int:
        return self.rewards.pending(address)

    def status(self) -> Dict[str, Any]:
        """Snapshot of engine state for dashboards and the CLI."""
        return {
            "configVersion": self._config.version,
            "currentEpoch": self.current_epoch,
            "lastEpochAdvanceAt": self.last_epoch_advance_at,
            "validators": len(self.registry),
            "eligibleValidators": len(self.registry.eligible()),
            "totalStake": self.registry.total_stake,
            "totalScore": self.scoring.total_score(),
            "rewardPool": self.rewards.pool.to_dict(),
            "slashingRecords": self.slashing.log.count(),
            "voters": self.voting.voter_count,
            "busy": self.guard.busy,
        }

    def __repr__(self) -> str:
        return (
            f"<StakeGuardEngine validators={len(self.registry)} "
            f"epoch={self.current_epoch} config=v{self._config.version}>"
        )
