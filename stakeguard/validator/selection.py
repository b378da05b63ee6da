"""
StakeGuard Validator Selection

Picks the single highest-scoring eligible validator for the current epoch.
Selection is a deterministic arg-max over live registry state; it never
rotates the epoch itself.
"""

from typing import Callable, Optional

from ..events import EventBus, VALIDATOR_SELECTED
from ..guard import ExclusiveSection
from ..interfaces import AuditSink, record_audit
from ..logger import get_logger
from ..metrics import MetricsCollector
from .registry import ValidatorRegistry
from .scoring import ScoringEngine
from .types import SelectionResult

logger = get_logger(__name__)


class SelectionProcess:
    """
    Selects the validator entitled to produce the next epoch's work.

    Tie-break: the running maximum starts at zero and is only replaced on a
    strictly greater score, so the first validator enumerated with the top
    score wins, and a field where every score is zero selects nobody.
    """

    def __init__(
        self,
        registry: ValidatorRegistry,
        scoring: ScoringEngine,
        guard: ExclusiveSection,
        audit: AuditSink,
        events: EventBus,
        get_epoch: Callable[[], int],
        metrics: Optional[MetricsCollector] = None,
    ):
        self.registry = registry
        self.scoring = scoring
        self.guard = guard
        self.audit = audit
        self.events = events
        self._get_epoch = get_epoch
        self.metrics = metrics

    def best_candidate(self) -> SelectionResult:
        """Compute the winner without recording anything."""
        epoch = self._get_epoch()
        best_address = None
        best_score = 0

        for record in self.scoring.score_all():
            if record.total_score > best_score:
                best_score = record.total_score
                best_address = record.address

        return SelectionResult(address=best_address, total_score=best_score, epoch=epoch)

    def select_best(self) -> SelectionResult:
        """
        Select and record the best eligible validator.

        Returns:
            SelectionResult; ``address`` is None when nobody is eligible
        """
        with self.guard.hold("select_best"):
            result = self.best_candidate()

            if not result.selected:
                logger.warning(f"No eligible validator for epoch {result.epoch}")
                return result

            self.registry.require(result.address).last_selected_epoch = result.epoch

        logger.info(
            f"ValidatorSelected: {result.address} for epoch {result.epoch} "
            f"(score={result.total_score})"
        )
        record_audit(
            self.audit, "selection",
            f"Selected for epoch {result.epoch}", result.total_score, result.address,
        )
        if self.metrics:
            self.metrics.selections_total.inc()
        self.events.emit(
            VALIDATOR_SELECTED,
            validator=result.address,
            total_score=result.total_score,
            epoch=result.epoch,
        )
        return result
