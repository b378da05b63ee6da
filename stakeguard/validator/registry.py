"""
StakeGuard Validator Registry

Authoritative store of validator records. Every other component reads from
here; only staking, slashing and appeal paths move stake.
"""

from typing import Dict, Iterator, List, Optional

from ..constants import METRIC_MAX, METRIC_MIN
from ..exceptions import PreconditionViolation
from ..interfaces import ReputationOracle, StakeLedger
from ..logger import get_logger
from .types import ValidatorRecord

logger = get_logger(__name__)


def check_metric(name: str, value: int) -> int:
    """Validate a [0, 100] metric and return it as int."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise PreconditionViolation("metric_type", f"{name} must be an integer, got {value!r}")
    if not METRIC_MIN <= value <= METRIC_MAX:
        raise PreconditionViolation(
            "metric_range",
            f"{name} must be within [{METRIC_MIN}, {METRIC_MAX}], got {value}"
        )
    return value


def check_amount(name: str, value: int, allow_zero: bool = True) -> int:
    """Validate a non-negative (or positive) integer amount."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise PreconditionViolation("amount_type", f"{name} must be an integer, got {value!r}")
    if value < 0 or (value == 0 and not allow_zero):
        raise PreconditionViolation(
            "amount_range",
            f"{name} must be {'non-negative' if allow_zero else 'positive'}, got {value}"
        )
    return value


class ValidatorRegistry:
    """
    Insertion-ordered map of validator address to ``ValidatorRecord``.

    Enumeration order is registration order, which is what selection uses to
    break ties.
    """

    def __init__(self):
        self._validators: Dict[str, ValidatorRecord] = {}

    # ── Registration ──────────────────────────────────────────────────

    def register(
        self,
        address: str,
        stake: int = 0,
        performance_score: int = 0,
        reputation_score: int = 0,
        uptime_score: int = 0,
    ) -> ValidatorRecord:
        if not address:
            raise PreconditionViolation("address", "Validator address must be non-empty")
        if address in self._validators:
            raise PreconditionViolation("already_registered", f"{address} is already registered")

        record = ValidatorRecord(
            address=address,
            stake=check_amount("stake", stake),
            performance_score=check_metric("performance_score", performance_score),
            reputation_score=check_metric("reputation_score", reputation_score),
            uptime_score=check_metric("uptime_score", uptime_score),
        )
        self._validators[address] = record
        logger.info(f"Validator registered: {address} (stake={stake})")
        return record

    # ── Lookup ────────────────────────────────────────────────────────

    def get(self, address: str) -> Optional[ValidatorRecord]:
        return self._validators.get(address)

    def require(self, address: str) -> ValidatorRecord:
        record = self._validators.get(address)
        if record is None:
            raise PreconditionViolation("unregistered", f"Validator {address} is not registered")
        return record

    def __contains__(self, address: str) -> bool:
        return address in self._validators

    def __iter__(self) -> Iterator[ValidatorRecord]:
        return iter(list(self._validators.values()))

    def __len__(self) -> int:
        return len(self._validators)

    def addresses(self) -> List[str]:
        return list(self._validators)

    def eligible(self) -> List[ValidatorRecord]:
        return [v for v in self._validators.values() if v.is_eligible]

    @property
    def total_stake(self) -> int:
        return sum(v.stake for v in self._validators.values())

    # ── Mutation ──────────────────────────────────────────────────────

    def update_metrics(
        self,
        address: str,
        performance_score: Optional[int] = None,
        reputation_score: Optional[int] = None,
        uptime_score: Optional[int] = None,
    ) -> ValidatorRecord:
        """Update any subset of the metrics; all values are validated first."""
        record = self.require(address)
        if performance_score is not None:
            check_metric("performance_score", performance_score)
        if reputation_score is not None:
            check_metric("reputation_score", reputation_score)
        if uptime_score is not None:
            check_metric("uptime_score", uptime_score)

        if performance_score is not None:
            record.performance_score = performance_score
        if reputation_score is not None:
            record.reputation_score = reputation_score
        if uptime_score is not None:
            record.uptime_score = uptime_score
        return record

    def set_stake(self, address: str, stake: int) -> ValidatorRecord:
        record = self.require(address)
        record.stake = check_amount("stake", stake)
        return record

    def set_disqualified(self, address: str, disqualified: bool) -> ValidatorRecord:
        record = self.require(address)
        record.disqualified = disqualified
        return record

    def to_dict(self) -> Dict[str, dict]:
        return {address: v.to_dict() for address, v in self._validators.items()}


class RegistryStakeLedger(StakeLedger):
    """Stake ledger that keeps balances directly on the registry records."""

    def __init__(self, registry: ValidatorRegistry):
        self.registry = registry

    def get_stake(self, address: str) -> int:
        return self.registry.require(address).stake

    def slash(self, address: str, amount: int) -> None:
        record = self.registry.require(address)
        if amount > record.stake:
            raise PreconditionViolation(
                "insufficient_stake",
                f"Cannot slash {amount} from {address} holding {record.stake}"
            )
        record.stake -= amount

    def restore(self, address: str, amount: int) -> None:
        self.registry.require(address).stake += amount


class RegistryReputationOracle(ReputationOracle):
    """Reputation oracle answering from the registry's own records."""

    def __init__(self, registry: ValidatorRegistry):
        self.registry = registry

    def get_reputation(self, address: str) -> int:
        return self.registry.require(address).reputation_score
