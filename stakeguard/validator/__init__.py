"""
StakeGuard Validator Subsystem

Provides:
  - ValidatorRecord / SlashingRecord / outcomes      (types.py)
  - ValidatorRegistry and registry-backed oracles     (registry.py)
  - ScoringEngine                                     (scoring.py)
  - SelectionProcess                                  (selection.py)
  - SlashingEngine / SlashingLog                      (slashing.py, history.py)
  - RewardDistributionEngine / RewardPool             (rewards.py)
"""

from .types import (
    AppealOutcome,
    RewardReport,
    ScoreRecord,
    SelectionResult,
    SlashingReason,
    SlashingRecord,
    SlashOutcome,
    SlashStatus,
    ValidatorRecord,
)
from .registry import (
    RegistryReputationOracle,
    RegistryStakeLedger,
    ValidatorRegistry,
)
from .scoring import ScoringEngine, weighted_score
from .selection import SelectionProcess
from .history import SlashingLog
from .slashing import SlashingEngine, adjusted_penalty
from .rewards import RewardDistributionEngine, RewardPool

__all__ = [
    # Types
    "AppealOutcome",
    "RewardReport",
    "ScoreRecord",
    "SelectionResult",
    "SlashingReason",
    "SlashingRecord",
    "SlashOutcome",
    "SlashStatus",
    "ValidatorRecord",
    # Registry
    "RegistryReputationOracle",
    "RegistryStakeLedger",
    "ValidatorRegistry",
    # Engines
    "ScoringEngine",
    "weighted_score",
    "SelectionProcess",
    "SlashingLog",
    "SlashingEngine",
    "adjusted_penalty",
    "RewardDistributionEngine",
    "RewardPool",
]
