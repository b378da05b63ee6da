"""
StakeGuard Prometheus Metrics Collector

Pure-Python Prometheus text exposition (format version 0.0.4) for the
engine's counters and gauges.

Metric types:
    - Counter: only ever increases (e.g. slashes applied)
    - Gauge:   set to the current value (e.g. reward pool balance)
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import ClassVar, Dict, List, Optional, Union

Number = Union[int, float]


# ---------------------------------------------------------------------------
# Metric primitives
# ---------------------------------------------------------------------------

@dataclass
class _Metric:
    name: str
    help: str = ""
    _value: Number = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    kind: ClassVar[str] = "untyped"

    @property
    def value(self) -> Number:
        return self._value

    def expose(self) -> str:
        header = [f"# HELP {self.name} {self.help}"] if self.help else []
        return "\n".join(header + [
            f"# TYPE {self.name} {self.kind}",
            f"{self.name} {self._value}",
        ])


@dataclass
class Counter(_Metric):
    """Monotonic counter; stake amounts are counted in whole units."""
    kind: ClassVar[str] = "counter"

    def inc(self, amount: Number = 1) -> None:
        if amount < 0:
            raise ValueError(f"{self.name}: counters cannot decrease (got {amount})")
        with self._lock:
            self._value += amount


@dataclass
class Gauge(_Metric):
    kind: ClassVar[str] = "gauge"

    def set(self, value: Number) -> None:
        with self._lock:
            self._value = value

    def inc(self, amount: Number = 1) -> None:
        with self._lock:
            self._value += amount

    def dec(self, amount: Number = 1) -> None:
        with self._lock:
            self._value -= amount


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class MetricsRegistry:
    """Ordered set of metrics rendered together as one scrape body."""

    def __init__(self):
        self._by_name: Dict[str, _Metric] = {}
        self._lock = threading.Lock()

    def register(self, metric: _Metric) -> _Metric:
        with self._lock:
            if metric.name in self._by_name:
                raise ValueError(f"Duplicate metric name: {metric.name}")
            self._by_name[metric.name] = metric
        return metric

    def get(self, name: str) -> Optional[_Metric]:
        return self._by_name.get(name)

    @property
    def names(self) -> List[str]:
        return list(self._by_name)

    def expose(self) -> str:
        with self._lock:
            blocks = [metric.expose() for metric in self._by_name.values()]
        return "\n\n".join(blocks) + "\n"


# ---------------------------------------------------------------------------
# Engine-level collector
# ---------------------------------------------------------------------------

class MetricsCollector:
    """
    Pre-configured metrics for one StakeGuard engine.

    The engines update these as operations complete; ``expose()`` returns the
    scrape body.
    """

    def __init__(self):
        self.registry = MetricsRegistry()

        # --- Validator set ---
        self.registered_validators = Gauge(
            "stakeguard_registered_validators",
            "Number of registered validators",
        )
        self.current_epoch = Gauge(
            "stakeguard_current_epoch",
            "Current engine epoch",
        )
        self.selections_total = Counter(
            "stakeguard_selections_total",
            "Total successful validator selections",
        )

        # --- Discipline ---
        self.slashes_total = Counter(
            "stakeguard_slashes_total",
            "Total slashes applied",
        )
        self.slashed_stake_total = Counter(
            "stakeguard_slashed_stake_total",
            "Total stake removed by slashing",
        )
        self.governance_escalations_total = Counter(
            "stakeguard_governance_escalations_total",
            "Slash requests deferred to governance review",
        )
        self.appeals_total = Counter(
            "stakeguard_appeals_total",
            "Total successful appeals",
        )

        # --- Rewards ---
        self.reward_pool = Gauge(
            "stakeguard_reward_pool",
            "Current undistributed reward pool",
        )
        self.rewards_distributed_total = Counter(
            "stakeguard_rewards_distributed_total",
            "Total rewards credited to validators",
        )
        self.reward_dust_total = Counter(
            "stakeguard_reward_dust_total",
            "Total rounding remainder dropped by distributions",
        )

        # --- Governance ---
        self.votes_total = Counter(
            "stakeguard_votes_total",
            "Total votes cast",
        )

        for attr in list(vars(self).values()):
            if isinstance(attr, _Metric):
                self.registry.register(attr)

    def expose(self) -> str:
        return self.registry.expose()
