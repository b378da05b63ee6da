"""
StakeGuard Slashing System

Reputation-scaled penalties for validator misbehavior, with governance
escalation for large penalties and record-bound appeals.

Per-validator state machine:

    Active --slash--> Active(offense_count + 1)
    Active --slash (adjusted >= review threshold)--> pending governance review (no change)
    Active --appeal--> Active(offense_count - 1, floored at 0)

Slashing never disqualifies; disqualification is a separate administrative
action.
"""

import time
from typing import Callable, List, Optional, Union

from ..config import EngineConfig
from ..constants import WEIGHT_TOTAL
from ..events import (
    EventBus,
    GOVERNANCE_REVIEW_REQUIRED,
    SLASH_APPEALED,
    VALIDATOR_SLASHED,
)
from ..exceptions import ExternalCollaboratorFailure, PreconditionViolation
from ..guard import ExclusiveSection
from ..interfaces import AuditSink, IntegrityHasher, StakeLedger, record_audit
from ..logger import get_logger
from ..metrics import MetricsCollector
from .history import SlashingLog
from .registry import ValidatorRegistry, check_amount
from .types import (
    AppealOutcome,
    SlashingReason,
    SlashingRecord,
    SlashOutcome,
    SlashStatus,
)

logger = get_logger(__name__)


def adjusted_penalty(requested_penalty: int, reputation_score: int) -> int:
    """
    Scale a penalty down by reputation.

    Reputation 100 pays nothing, reputation 0 pays the full request.
    """
    return requested_penalty * (WEIGHT_TOTAL - reputation_score) // WEIGHT_TOTAL


class SlashingEngine:
    """
    Applies slashing penalties and processes appeals.

    Stake moves exclusively through the injected ``StakeLedger``; the registry
    copy is refreshed from the ledger after every movement.
    """

    def __init__(
        self,
        registry: ValidatorRegistry,
        ledger: StakeLedger,
        hasher: IntegrityHasher,
        audit: AuditSink,
        events: EventBus,
        guard: ExclusiveSection,
        get_config: Callable[[], EngineConfig],
        clock: Callable[[], int] = lambda: int(time.time()),
        metrics: Optional[MetricsCollector] = None,
    ):
        self.registry = registry
        self.ledger = ledger
        self.hasher = hasher
        self.audit = audit
        self.events = events
        self.guard = guard
        self._get_config = get_config
        self._clock = clock
        self.metrics = metrics
        self.log = SlashingLog()

    # =========================================================================
    # SLASHING
    # =========================================================================

    def slash(
        self,
        validator: str,
        requested_penalty: int,
        reason: Union[SlashingReason, str],
    ) -> SlashOutcome:
        """
        Slash a validator.

        Args:
            validator: Validator address
            requested_penalty: Nominal penalty before reputation scaling
            reason: Offense description

        Returns:
            SlashOutcome with status APPLIED or PENDING_GOVERNANCE_REVIEW

        Raises:
            PreconditionViolation: Penalty outside the configured band, unknown
                validator, or stake below the requested penalty
            ExternalCollaboratorFailure: Ledger or hasher failure
        """
        reason = reason.value if isinstance(reason, SlashingReason) else str(reason)

        with self.guard.hold("slash"):
            params = self._get_config().slashing
            check_amount("requested_penalty", requested_penalty)
            if not params.min_penalty <= requested_penalty <= params.max_penalty:
                raise PreconditionViolation(
                    "penalty_range",
                    f"Penalty {requested_penalty} outside "
                    f"[{params.min_penalty}, {params.max_penalty}]"
                )

            record = self.registry.require(validator)
            stake = self._ledger_stake(validator)
            if stake < requested_penalty:
                raise PreconditionViolation(
                    "insufficient_stake",
                    f"{validator} holds {stake}, less than requested penalty {requested_penalty}"
                )

            adjusted = adjusted_penalty(requested_penalty, record.reputation_score)

            if adjusted >= params.governance_review_threshold:
                outcome = SlashOutcome(
                    status=SlashStatus.PENDING_GOVERNANCE_REVIEW,
                    validator=validator,
                    requested_penalty=requested_penalty,
                    adjusted_penalty=adjusted,
                )
            else:
                timestamp = self._clock()
                integrity_hash = self._commit(validator, adjusted, timestamp, reason)
                new_stake = self._move_stake(validator, stake, -adjusted)

                self.registry.set_stake(validator, new_stake)
                record.offense_count += 1
                slashing_record = self.log.append(
                    validator=validator,
                    penalty_amount=adjusted,
                    requested_penalty=requested_penalty,
                    reason=reason,
                    integrity_hash=integrity_hash,
                    timestamp=timestamp,
                )
                outcome = SlashOutcome(
                    status=SlashStatus.APPLIED,
                    validator=validator,
                    requested_penalty=requested_penalty,
                    adjusted_penalty=adjusted,
                    record=slashing_record,
                )

        if outcome.applied:
            self._after_slash(outcome, reason)
        else:
            self._after_escalation(outcome, reason)
        return outcome

    def _after_slash(self, outcome: SlashOutcome, reason: str) -> None:
        logger.info(
            f"ValidatorSlashed: {outcome.validator} lost {outcome.adjusted_penalty} units "
            f"(requested={outcome.requested_penalty}, reason={reason})"
        )
        record_audit(
            self.audit, "slashing", f"Slashed for {reason}",
            outcome.adjusted_penalty, outcome.validator,
        )
        if self.metrics:
            self.metrics.slashes_total.inc()
            self.metrics.slashed_stake_total.inc(outcome.adjusted_penalty)
        self.events.emit(
            VALIDATOR_SLASHED,
            validator=outcome.validator,
            penalty=outcome.adjusted_penalty,
            reason=reason,
            record_index=outcome.record.index,
            integrity_hash=outcome.record.integrity_hash,
        )

    def _after_escalation(self, outcome: SlashOutcome, reason: str) -> None:
        logger.warning(
            f"GovernanceReviewRequired: adjusted penalty {outcome.adjusted_penalty} for "
            f"{outcome.validator} reaches the review threshold (reason={reason})"
        )
        record_audit(
            self.audit, "governance_review", f"Slash for {reason} escalated",
            outcome.adjusted_penalty, outcome.validator,
        )
        if self.metrics:
            self.metrics.governance_escalations_total.inc()
        self.events.emit(
            GOVERNANCE_REVIEW_REQUIRED,
            validator=outcome.validator,
            requested_penalty=outcome.requested_penalty,
            adjusted_penalty=outcome.adjusted_penalty,
            reason=reason,
        )

    # =========================================================================
    # APPEALS
    # =========================================================================

    def appeal(self, validator: str, record_index: int) -> AppealOutcome:
        """
        Appeal one slashing record.

        Restores ``appeal_restore_percent`` of that record's penalty and
        decrements the offense count. Each record can be appealed once.

        Raises:
            PreconditionViolation: Unknown validator or record, record already
                appealed, or no offense on file
        """
        with self.guard.hold("appeal"):
            record = self.registry.require(validator)
            slashing_record = self.log.get(record_index)
            if slashing_record is None or slashing_record.validator != validator:
                raise PreconditionViolation(
                    "unknown_record",
                    f"No slashing record #{record_index} for {validator}"
                )
            if self.log.is_appealed(record_index):
                raise PreconditionViolation(
                    "already_appealed",
                    f"Slashing record #{record_index} has already been appealed"
                )
            if record.offense_count <= 0:
                raise PreconditionViolation("no_offense", f"{validator} has no offense on file")

            percent = self._get_config().slashing.appeal_restore_percent
            restored = slashing_record.penalty_amount * percent // WEIGHT_TOTAL

            stake = self._ledger_stake(validator)
            new_stake = self._move_stake(validator, stake, restored)

            self.registry.set_stake(validator, new_stake)
            record.offense_count = max(0, record.offense_count - 1)
            self.log.mark_appealed(record_index)

            outcome = AppealOutcome(
                validator=validator,
                record_index=record_index,
                restored_amount=restored,
                offense_count=record.offense_count,
            )

        logger.info(
            f"SlashAppealed: {validator} record #{record_index} restored {restored} units "
            f"(offenses={outcome.offense_count})"
        )
        record_audit(self.audit, "appeal", f"Appeal of record #{record_index}", restored, validator)
        if self.metrics:
            self.metrics.appeals_total.inc()
        self.events.emit(
            SLASH_APPEALED,
            validator=validator,
            record_index=record_index,
            restored=restored,
            offense_count=outcome.offense_count,
        )
        return outcome

    # =========================================================================
    # QUERIES
    # =========================================================================

    def history(self, validator: str, offset: int = 0, limit: int = 50) -> List[SlashingRecord]:
        return self.log.history(validator, offset=offset, limit=limit)

    def appealable(self, validator: str) -> List[SlashingRecord]:
        return self.log.unappealed(validator)

    # =========================================================================
    # COLLABORATOR HELPERS
    # =========================================================================

    def credit_stake(self, validator: str, amount: int) -> int:
        """
        Credit ``amount`` through the ledger and return the verified balance.

        Caller must hold the engine's critical section.
        """
        before = self._ledger_stake(validator)
        return self._move_stake(validator, before, amount)

    def _ledger_stake(self, validator: str) -> int:
        try:
            stake = self.ledger.get_stake(validator)
        except PreconditionViolation:
            raise
        except Exception as e:
            raise ExternalCollaboratorFailure("StakeLedger", f"get_stake failed: {e}") from e
        if isinstance(stake, bool) or not isinstance(stake, int) or stake < 0:
            raise ExternalCollaboratorFailure(
                "StakeLedger", f"get_stake returned invalid stake {stake!r} for {validator}"
            )
        return stake

    def _move_stake(self, validator: str, before: int, delta: int) -> int:
        """
        Apply ``delta`` through the ledger and verify the resulting balance.

        If the ledger accepted the movement but the balance cannot be read
        back or does not match, the opposite movement is issued before the
        failure propagates.
        """
        try:
            if delta < 0:
                self.ledger.slash(validator, -delta)
            else:
                self.ledger.restore(validator, delta)
        except PreconditionViolation:
            raise
        except Exception as e:
            raise ExternalCollaboratorFailure("StakeLedger", f"stake movement failed: {e}") from e

        try:
            after = self._ledger_stake(validator)
            if after != before + delta:
                raise ExternalCollaboratorFailure(
                    "StakeLedger",
                    f"expected stake {before + delta} for {validator} after movement, got {after}"
                )
        except (ExternalCollaboratorFailure, PreconditionViolation):
            self._reverse_stake(validator, delta)
            raise
        return after

    def _reverse_stake(self, validator: str, delta: int) -> None:
        try:
            if delta < 0:
                self.ledger.restore(validator, -delta)
            else:
                self.ledger.slash(validator, delta)
        except Exception as e:
            logger.critical(
                f"StakeLedger rollback of {delta:+d} units for {validator} failed: {e}; "
                f"ledger and registry may disagree"
            )
        else:
            logger.warning(f"StakeLedger movement of {delta:+d} units for {validator} rolled back")

    def _commit(self, *fields) -> str:
        try:
            return self.hasher.commit(*fields)
        except Exception as e:
            raise ExternalCollaboratorFailure("IntegrityHasher", str(e)) from e
