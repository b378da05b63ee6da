"""
StakeGuard Configuration

Loads the engine configuration from TOML at startup.
Environment variables override TOML values.
"""

from .loader import (
    EngineConfig,
    EpochConfig,
    MetricsConfig,
    RewardConfig,
    ScoringWeights,
    SlashingConfig,
    VotingConfig,
    VotingWeights,
    load_config,
)

__all__ = [
    "EngineConfig",
    "EpochConfig",
    "MetricsConfig",
    "RewardConfig",
    "ScoringWeights",
    "SlashingConfig",
    "VotingConfig",
    "VotingWeights",
    "load_config",
]
