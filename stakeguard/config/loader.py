"""
StakeGuard TOML Configuration Loader

Loads every section of the engine configuration with environment variable
overrides. Each section is a frozen dataclass with ``from_dict`` and
``check``; ``EngineConfig`` bundles them under a version number so the
engine can swap a whole validated configuration in one step.

Environment variable mapping:
    [epochs] epoch_interval                   → STAKEGUARD_EPOCH_INTERVAL
    [slashing] governance_review_threshold    → STAKEGUARD_GOVERNANCE_REVIEW_THRESHOLD
    [voting] fraud_threshold                  → STAKEGUARD_FRAUD_THRESHOLD
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict

import tomli

from ..constants import (
    APPEAL_RESTORE_PERCENT,
    DEFAULT_EPOCH_DURATION,
    DEFAULT_EPOCH_INTERVAL,
    DEFAULT_FRAUD_THRESHOLD,
    DEFAULT_GOVERNANCE_REVIEW_THRESHOLD,
    DEFAULT_MAX_PENALTY,
    DEFAULT_MIN_PENALTY,
    DEFAULT_PERFORMANCE_WEIGHT,
    DEFAULT_REPUTATION_DECAY_RATE,
    DEFAULT_REPUTATION_WEIGHT,
    DEFAULT_STAKE_WEIGHT,
    DEFAULT_UPTIME_WEIGHT,
    DEFAULT_VOTING_REPUTATION_WEIGHT,
    DEFAULT_VOTING_STAKE_WEIGHT,
    MIN_EPOCH_INTERVAL,
    WEIGHT_TOTAL,
)
from ..exceptions import ConfigurationError, PreconditionViolation
from ..logger import get_logger

logger = get_logger(__name__)


def _check_int(name: str, value: Any, minimum: int = 0) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise PreconditionViolation("config_type", f"{name} must be an integer, got {value!r}")
    if value < minimum:
        raise PreconditionViolation("config_range", f"{name} must be >= {minimum}, got {value}")


def _check_weights(kind: str, weights: Dict[str, int]) -> None:
    for name, value in weights.items():
        _check_int(f"{kind}.{name}", value)
    total = sum(weights.values())
    if total != WEIGHT_TOTAL:
        raise PreconditionViolation(
            "weights_sum",
            f"{kind} weights must sum to {WEIGHT_TOTAL}, got {total} ({weights})"
        )


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScoringWeights:
    """[scoring.weights]: merit score weights, summing to 100."""
    performance: int = DEFAULT_PERFORMANCE_WEIGHT
    reputation: int = DEFAULT_REPUTATION_WEIGHT
    uptime: int = DEFAULT_UPTIME_WEIGHT
    stake: int = DEFAULT_STAKE_WEIGHT

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScoringWeights":
        return cls(
            performance=data.get("performance", DEFAULT_PERFORMANCE_WEIGHT),
            reputation=data.get("reputation", DEFAULT_REPUTATION_WEIGHT),
            uptime=data.get("uptime", DEFAULT_UPTIME_WEIGHT),
            stake=data.get("stake", DEFAULT_STAKE_WEIGHT),
        )

    def check(self) -> None:
        _check_weights("scoring", self.to_dict())

    def to_dict(self) -> Dict[str, int]:
        return {
            "performance": self.performance,
            "reputation": self.reputation,
            "uptime": self.uptime,
            "stake": self.stake,
        }


@dataclass(frozen=True)
class VotingWeights:
    """[voting] stake_weight / reputation_weight, summing to 100."""
    stake: int = DEFAULT_VOTING_STAKE_WEIGHT
    reputation: int = DEFAULT_VOTING_REPUTATION_WEIGHT

    def check(self) -> None:
        _check_weights("voting", self.to_dict())

    def to_dict(self) -> Dict[str, int]:
        return {"stake": self.stake, "reputation": self.reputation}


@dataclass(frozen=True)
class VotingConfig:
    """[voting] section."""
    weights: VotingWeights = field(default_factory=VotingWeights)
    decay_rate: int = DEFAULT_REPUTATION_DECAY_RATE
    fraud_threshold: int = DEFAULT_FRAUD_THRESHOLD

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VotingConfig":
        return cls(
            weights=VotingWeights(
                stake=data.get("stake_weight", DEFAULT_VOTING_STAKE_WEIGHT),
                reputation=data.get("reputation_weight", DEFAULT_VOTING_REPUTATION_WEIGHT),
            ),
            decay_rate=data.get("decay_rate", DEFAULT_REPUTATION_DECAY_RATE),
            fraud_threshold=data.get("fraud_threshold", DEFAULT_FRAUD_THRESHOLD),
        )

    def check(self) -> None:
        self.weights.check()
        _check_int("voting.decay_rate", self.decay_rate)
        if self.decay_rate > 100:
            raise PreconditionViolation("config_range", "voting.decay_rate must be <= 100")
        _check_int("voting.fraud_threshold", self.fraud_threshold, minimum=1)


@dataclass(frozen=True)
class SlashingConfig:
    """[slashing] section."""
    min_penalty: int = DEFAULT_MIN_PENALTY
    max_penalty: int = DEFAULT_MAX_PENALTY
    governance_review_threshold: int = DEFAULT_GOVERNANCE_REVIEW_THRESHOLD
    appeal_restore_percent: int = APPEAL_RESTORE_PERCENT

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SlashingConfig":
        return cls(
            min_penalty=data.get("min_penalty", DEFAULT_MIN_PENALTY),
            max_penalty=data.get("max_penalty", DEFAULT_MAX_PENALTY),
            governance_review_threshold=data.get(
                "governance_review_threshold", DEFAULT_GOVERNANCE_REVIEW_THRESHOLD
            ),
            appeal_restore_percent=data.get("appeal_restore_percent", APPEAL_RESTORE_PERCENT),
        )

    def check(self) -> None:
        _check_int("slashing.min_penalty", self.min_penalty, minimum=1)
        _check_int("slashing.max_penalty", self.max_penalty, minimum=1)
        if self.min_penalty > self.max_penalty:
            raise PreconditionViolation(
                "penalty_band",
                f"min_penalty {self.min_penalty} exceeds max_penalty {self.max_penalty}"
            )
        _check_int("slashing.governance_review_threshold", self.governance_review_threshold, minimum=1)
        _check_int("slashing.appeal_restore_percent", self.appeal_restore_percent)
        if self.appeal_restore_percent > 100:
            raise PreconditionViolation("config_range", "appeal_restore_percent must be <= 100")


@dataclass(frozen=True)
class RewardConfig:
    """[rewards] section."""
    epoch_duration: int = DEFAULT_EPOCH_DURATION

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RewardConfig":
        return cls(epoch_duration=data.get("epoch_duration", DEFAULT_EPOCH_DURATION))

    def check(self) -> None:
        _check_int("rewards.epoch_duration", self.epoch_duration)


@dataclass(frozen=True)
class EpochConfig:
    """[epochs] section."""
    epoch_interval: int = DEFAULT_EPOCH_INTERVAL

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EpochConfig":
        return cls(epoch_interval=data.get("epoch_interval", DEFAULT_EPOCH_INTERVAL))

    def check(self) -> None:
        _check_int("epochs.epoch_interval", self.epoch_interval, minimum=MIN_EPOCH_INTERVAL)


@dataclass(frozen=True)
class MetricsConfig:
    """[metrics] section."""
    enabled: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MetricsConfig":
        return cls(enabled=bool(data.get("enabled", True)))


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EngineConfig:
    """
    Complete, versioned engine configuration.

    Instances are immutable; ``evolve`` validates a candidate with the
    requested changes and returns it with the version bumped.
    """
    version: int = 1
    scoring: ScoringWeights = field(default_factory=ScoringWeights)
    voting: VotingConfig = field(default_factory=VotingConfig)
    slashing: SlashingConfig = field(default_factory=SlashingConfig)
    rewards: RewardConfig = field(default_factory=RewardConfig)
    epochs: EpochConfig = field(default_factory=EpochConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)

    def check(self) -> None:
        """Raise ``PreconditionViolation`` on the first invalid section."""
        self.scoring.check()
        self.voting.check()
        self.slashing.check()
        self.rewards.check()
        self.epochs.check()

    def validate(self) -> bool:
        """
        Validate configuration.

        Raises:
            ConfigurationError: If any section is invalid
        """
        try:
            self.check()
        except PreconditionViolation as e:
            raise ConfigurationError(str(e)) from e
        return True

    def evolve(self, **changes: Any) -> "EngineConfig":
        candidate = replace(self, version=self.version + 1, **changes)
        candidate.check()
        return candidate

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineConfig":
        scoring_data = data.get("scoring", {})
        return cls(
            scoring=ScoringWeights.from_dict(scoring_data.get("weights", {})),
            voting=VotingConfig.from_dict(data.get("voting", {})),
            slashing=SlashingConfig.from_dict(data.get("slashing", {})),
            rewards=RewardConfig.from_dict(data.get("rewards", {})),
            epochs=EpochConfig.from_dict(data.get("epochs", {})),
            metrics=MetricsConfig.from_dict(data.get("metrics", {})),
        )

    @classmethod
    def from_file(cls, config_path: str) -> "EngineConfig":
        """
        Load configuration from a TOML file.

        Args:
            config_path: Path to the TOML file

        Returns:
            Validated EngineConfig instance
        """
        path = Path(config_path)
        if not path.exists():
            logger.warning("Config file not found: %s, using defaults", config_path)
            cfg = cls().apply_env()
            cfg.validate()
            return cfg

        try:
            with open(path, "rb") as f:
                raw = tomli.load(f)
        except tomli.TOMLDecodeError as e:
            raise ConfigurationError(f"Invalid TOML in {config_path}: {e}") from e

        cfg = cls.from_dict(raw).apply_env()
        cfg.validate()
        return cfg

    # --- env overrides ----------------------------------------------------

    def apply_env(self) -> "EngineConfig":
        """Return a copy with environment variable overrides applied."""
        cfg = self
        try:
            if v := os.environ.get("STAKEGUARD_EPOCH_INTERVAL"):
                cfg = replace(cfg, epochs=replace(cfg.epochs, epoch_interval=int(v)))
            if v := os.environ.get("STAKEGUARD_GOVERNANCE_REVIEW_THRESHOLD"):
                cfg = replace(
                    cfg, slashing=replace(cfg.slashing, governance_review_threshold=int(v))
                )
            if v := os.environ.get("STAKEGUARD_FRAUD_THRESHOLD"):
                cfg = replace(cfg, voting=replace(cfg.voting, fraud_threshold=int(v)))
        except ValueError as e:
            raise ConfigurationError(f"Invalid environment override: {e}") from e
        return cfg

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "scoring": {"weights": self.scoring.to_dict()},
            "voting": {
                "stake_weight": self.voting.weights.stake,
                "reputation_weight": self.voting.weights.reputation,
                "decay_rate": self.voting.decay_rate,
                "fraud_threshold": self.voting.fraud_threshold,
            },
            "slashing": {
                "min_penalty": self.slashing.min_penalty,
                "max_penalty": self.slashing.max_penalty,
                "governance_review_threshold": self.slashing.governance_review_threshold,
                "appeal_restore_percent": self.slashing.appeal_restore_percent,
            },
            "rewards": {"epoch_duration": self.rewards.epoch_duration},
            "epochs": {"epoch_interval": self.epochs.epoch_interval},
            "metrics": {"enabled": self.metrics.enabled},
        }


def load_config(config_path: str = "stakeguard.toml") -> EngineConfig:
    """Load and validate the engine configuration."""
    return EngineConfig.from_file(config_path)
