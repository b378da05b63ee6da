"""
StakeGuard Slashing History

Append-only arena of slashing records. Records live in one list; each
validator keeps only the arena indices of its own records, and reads are
paginated so histories can grow without copying them on every query.
"""

from typing import Dict, List, Optional, Set

from ..constants import DEFAULT_HISTORY_PAGE_SIZE, MAX_HISTORY_PAGE_SIZE
from ..exceptions import PreconditionViolation
from .types import SlashingRecord


class SlashingLog:
    """Append-only slashing record store keyed by validator."""

    def __init__(self):
        self._arena: List[SlashingRecord] = []
        self._by_validator: Dict[str, List[int]] = {}
        self._appealed: Set[int] = set()

    def append(
        self,
        validator: str,
        penalty_amount: int,
        requested_penalty: int,
        reason: str,
        integrity_hash: str,
        timestamp: int,
    ) -> SlashingRecord:
        record = SlashingRecord(
            index=len(self._arena),
            validator=validator,
            penalty_amount=penalty_amount,
            requested_penalty=requested_penalty,
            reason=reason,
            integrity_hash=integrity_hash,
            timestamp=timestamp,
        )
        self._arena.append(record)
        self._by_validator.setdefault(validator, []).append(record.index)
        return record

    def get(self, index: int) -> Optional[SlashingRecord]:
        if 0 <= index < len(self._arena):
            return self._arena[index]
        return None

    def history(
        self,
        validator: str,
        offset: int = 0,
        limit: int = DEFAULT_HISTORY_PAGE_SIZE,
    ) -> List[SlashingRecord]:
        """
        One page of ``validator``'s records, oldest first.

        Raises:
            PreconditionViolation: If offset is negative or limit is out of range
        """
        if offset < 0:
            raise PreconditionViolation("page_offset", f"offset must be >= 0, got {offset}")
        if not 1 <= limit <= MAX_HISTORY_PAGE_SIZE:
            raise PreconditionViolation(
                "page_limit", f"limit must be within [1, {MAX_HISTORY_PAGE_SIZE}], got {limit}"
            )
        indices = self._by_validator.get(validator, [])
        return [self._arena[i] for i in indices[offset:offset + limit]]

    def count(self, validator: Optional[str] = None) -> int:
        if validator is None:
            return len(self._arena)
        return len(self._by_validator.get(validator, []))

    def total_penalties(self, validator: str) -> int:
        return sum(self._arena[i].penalty_amount for i in self._by_validator.get(validator, []))

    # ── Appeal bookkeeping ────────────────────────────────────────────

    def is_appealed(self, index: int) -> bool:
        return index in self._appealed

    def mark_appealed(self, index: int) -> None:
        self._appealed.add(index)

    def unappealed(self, validator: str) -> List[SlashingRecord]:
        return [
            self._arena[i] for i in self._by_validator.get(validator, [])
            if i not in self._appealed
        ]
