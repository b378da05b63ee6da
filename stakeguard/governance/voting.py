"""
Reputation-Weighted Voting Model

Implements:
  - Voting power = stake*Ws//100 + reputation*Wr//100 (own weight pair)
  - Reputation decay on every vote cast
  - Single-hop, immutable delegation records
  - Fraud-flag disqualification
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..config import EngineConfig
from ..constants import METRIC_MAX, METRIC_MIN, WEIGHT_TOTAL
from ..events import EventBus, VOTE_CAST, VOTE_DELEGATED
from ..exceptions import ExternalCollaboratorFailure, PreconditionViolation
from ..guard import ExclusiveSection
from ..interfaces import AuditSink, FraudOracle, NullFraudOracle, ReputationOracle, record_audit
from ..logger import get_logger
from ..metrics import MetricsCollector
from ..validator.registry import check_amount, check_metric

logger = get_logger(__name__)


# ══════════════════════════════════════════════════════════════════════
#  VOTE DATA
# ══════════════════════════════════════════════════════════════════════

class VoteChoice(Enum):
    FOR = "for"
    AGAINST = "against"
    ABSTAIN = "abstain"


@dataclass
class VoterRecord:
    """A registered voter."""
    address: str
    stake: int
    reputation_score: int
    last_vote_at: Optional[int] = None
    has_voted: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "stake": self.stake,
            "reputationScore": self.reputation_score,
            "lastVoteAt": self.last_vote_at,
            "hasVoted": self.has_voted,
        }


@dataclass(frozen=True)
class VoteReceipt:
    """Proof of a cast vote."""
    voter: str
    choice: VoteChoice
    voting_power: int
    reputation_after: int
    timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "voter": self.voter,
            "choice": self.choice.value,
            "votingPower": self.voting_power,
            "reputationAfter": self.reputation_after,
            "timestamp": self.timestamp,
        }


@dataclass
class VoteTally:
    """Voting power accumulated per choice."""
    votes_for: int = 0
    votes_against: int = 0
    votes_abstain: int = 0
    voters: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.votes_for + self.votes_against + self.votes_abstain

    def add(self, choice: VoteChoice, power: int, voter: str) -> None:
        if choice is VoteChoice.FOR:
            self.votes_for += power
        elif choice is VoteChoice.AGAINST:
            self.votes_against += power
        else:
            self.votes_abstain += power
        self.voters.append(voter)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "votesFor": self.votes_for,
            "votesAgainst": self.votes_against,
            "votesAbstain": self.votes_abstain,
            "totalVotes": self.total,
            "voters": list(self.voters),
        }


# ══════════════════════════════════════════════════════════════════════
#  VOTING MODEL
# ══════════════════════════════════════════════════════════════════════

class VotingModel:
    """
    Reputation-weighted voting.

    Decay and the voted flag are never reset here; opening a new round is
    the job of the surrounding governance process. Delegation is recorded
    but not aggregated: ``delegators_of`` exposes it for callers that need
    to sum delegated power.
    """

    def __init__(
        self,
        guard: ExclusiveSection,
        events: EventBus,
        audit: AuditSink,
        get_config: Callable[[], EngineConfig],
        reputation_oracle: Optional[ReputationOracle] = None,
        fraud_oracle: Optional[FraudOracle] = None,
        clock: Callable[[], int] = lambda: int(time.time()),
        metrics: Optional[MetricsCollector] = None,
    ):
        self.guard = guard
        self.events = events
        self.audit = audit
        self._get_config = get_config
        self.reputation_oracle = reputation_oracle
        self.fraud_oracle = fraud_oracle or NullFraudOracle()
        self._clock = clock
        self.metrics = metrics

        self._voters: Dict[str, VoterRecord] = {}
        self._delegations: Dict[str, str] = {}  # delegator → delegatee
        self._fraud_flags: Dict[str, int] = {}
        self._tally = VoteTally()

    # ── Registration ──────────────────────────────────────────────────

    def register_voter(
        self,
        voter: str,
        stake: int,
        reputation_score: Optional[int] = None,
    ) -> VoterRecord:
        """
        Register a voter. Reputation defaults to the reputation oracle's value.
        """
        with self.guard.hold("register_voter"):
            if not voter:
                raise PreconditionViolation("address", "Voter address must be non-empty")
            if voter in self._voters:
                raise PreconditionViolation("already_registered", f"{voter} is already a voter")
            check_amount("stake", stake)
            if reputation_score is None:
                reputation_score = self._oracle_reputation(voter)
            else:
                check_metric("reputation_score", reputation_score)

            record = VoterRecord(address=voter, stake=stake, reputation_score=reputation_score)
            self._voters[voter] = record

        logger.info(f"Voter registered: {voter} (stake={stake}, reputation={reputation_score})")
        return record

    def _oracle_reputation(self, voter: str) -> int:
        if self.reputation_oracle is None:
            raise PreconditionViolation(
                "reputation_source", f"No reputation given for {voter} and no oracle configured"
            )
        try:
            reputation = self.reputation_oracle.get_reputation(voter)
        except PreconditionViolation:
            raise
        except Exception as e:
            raise ExternalCollaboratorFailure("ReputationOracle", str(e)) from e
        if (isinstance(reputation, bool) or not isinstance(reputation, int)
                or not METRIC_MIN <= reputation <= METRIC_MAX):
            raise ExternalCollaboratorFailure(
                "ReputationOracle", f"reputation {reputation!r} for {voter} outside [0, 100]"
            )
        return reputation

    # ── Voting power ──────────────────────────────────────────────────

    def voting_power(self, voter: str) -> int:
        record = self.require(voter)
        weights = self._get_config().voting.weights
        return (
            record.stake * weights.stake // WEIGHT_TOTAL
            + record.reputation_score * weights.reputation // WEIGHT_TOTAL
        )

    # ── Cast vote ─────────────────────────────────────────────────────

    def cast_vote(self, voter: str, choice: VoteChoice = VoteChoice.FOR) -> VoteReceipt:
        """
        Cast a reputation-weighted vote.

        Raises:
            PreconditionViolation: Unregistered voter, already voted, or
                fraud-disqualified voter
        """
        with self.guard.hold("cast_vote"):
            record = self.require(voter)
            if record.has_voted:
                raise PreconditionViolation("already_voted", f"{voter} has already voted")
            if self.is_disqualified(voter):
                logger.warning(f"Vote rejected: {voter} is fraud-disqualified")
                raise PreconditionViolation(
                    "fraud_threshold",
                    f"{voter} has {self.fraud_flags(voter)} fraud flags "
                    f"(threshold {self._get_config().voting.fraud_threshold})"
                )
            if self._oracle_flagged(voter):
                logger.warning(f"Vote rejected: {voter} flagged by fraud oracle")
                raise PreconditionViolation("fraud_flagged", f"{voter} is flagged by the fraud oracle")

            power = self.voting_power(voter)
            decay_rate = self._get_config().voting.decay_rate
            now = self._clock()

            record.reputation_score = max(
                0, record.reputation_score - record.reputation_score * decay_rate // WEIGHT_TOTAL
            )
            record.has_voted = True
            record.last_vote_at = now
            self._tally.add(choice, power, voter)

            receipt = VoteReceipt(
                voter=voter,
                choice=choice,
                voting_power=power,
                reputation_after=record.reputation_score,
                timestamp=now,
            )

        logger.info(
            f"VoteCast: {voter} → {choice.name} (power={power}, "
            f"reputation={receipt.reputation_after})"
        )
        record_audit(self.audit, "voting", f"Vote {choice.name}", power, voter)
        if self.metrics:
            self.metrics.votes_total.inc()
        self.events.emit(VOTE_CAST, voter=voter, choice=choice.value, voting_power=power)
        return receipt

    def _oracle_flagged(self, voter: str) -> bool:
        """True when the oracle flags ``voter`` or scores it at or above the fraud threshold."""
        try:
            self.fraud_oracle.detect_anomalies(voter)
            if self.fraud_oracle.is_flagged(voter):
                return True
            score = self.fraud_oracle.fraud_score(voter)
        except Exception as e:
            raise ExternalCollaboratorFailure("FraudOracle", str(e)) from e
        if isinstance(score, bool) or not isinstance(score, int) or score < 0:
            raise ExternalCollaboratorFailure(
                "FraudOracle", f"fraud_score returned invalid score {score!r} for {voter}"
            )
        return score >= self._get_config().voting.fraud_threshold

    # ── Delegation ────────────────────────────────────────────────────

    def delegate_vote(self, delegator: str, delegatee: str) -> None:
        """
        Record a single-hop delegation.

        A voter delegates at most once and cannot change it afterwards. A
        voter that has delegated cannot receive delegations, and a voter that
        has received delegations cannot delegate, so chains never form.
        """
        with self.guard.hold("delegate_vote"):
            self.require(delegator)
            self.require(delegatee)
            if delegator == delegatee:
                raise PreconditionViolation("self_delegation", "Cannot delegate to self")
            if delegator in self._delegations:
                raise PreconditionViolation(
                    "already_delegated",
                    f"{delegator} already delegated to {self._delegations[delegator]}"
                )
            if delegatee in self._delegations:
                raise PreconditionViolation(
                    "delegation_hop",
                    f"{delegatee} has delegated and cannot receive delegations"
                )
            if self.delegators_of(delegator):
                raise PreconditionViolation(
                    "delegation_hop",
                    f"{delegator} holds delegations and cannot delegate"
                )
            self._delegations[delegator] = delegatee

        logger.info(f"VoteDelegated: {delegator} → {delegatee}")
        record_audit(self.audit, "voting", f"Delegated to {delegatee}", 0, delegator)
        self.events.emit(VOTE_DELEGATED, delegator=delegator, delegatee=delegatee)

    def delegation_of(self, delegator: str) -> Optional[str]:
        return self._delegations.get(delegator)

    def delegators_of(self, delegatee: str) -> List[str]:
        return [d for d, target in self._delegations.items() if target == delegatee]

    # ── Fraud ─────────────────────────────────────────────────────────

    def flag_fraud(self, voter: str, count: int = 1) -> int:
        """Add fraud flags to ``voter``; returns the new flag count."""
        with self.guard.hold("flag_fraud"):
            self.require(voter)
            check_amount("count", count, allow_zero=False)
            self._fraud_flags[voter] = self._fraud_flags.get(voter, 0) + count
            flags = self._fraud_flags[voter]

        threshold = self._get_config().voting.fraud_threshold
        if flags >= threshold:
            logger.warning(f"Voter {voter} disqualified: {flags} fraud flags (threshold {threshold})")
        else:
            logger.info(f"Fraud flag raised for {voter} ({flags}/{threshold})")
        record_audit(self.audit, "fraud", "Fraud flag raised", flags, voter)
        return flags

    def fraud_flags(self, voter: str) -> int:
        return self._fraud_flags.get(voter, 0)

    def is_disqualified(self, voter: str) -> bool:
        return self.fraud_flags(voter) >= self._get_config().voting.fraud_threshold

    # ── Queries ───────────────────────────────────────────────────────

    def get(self, voter: str) -> Optional[VoterRecord]:
        return self._voters.get(voter)

    def require(self, voter: str) -> VoterRecord:
        record = self._voters.get(voter)
        if record is None:
            raise PreconditionViolation("unregistered", f"Voter {voter} is not registered")
        return record

    def has_voted(self, voter: str) -> bool:
        record = self._voters.get(voter)
        return bool(record and record.has_voted)

    @property
    def tally(self) -> VoteTally:
        return self._tally

    @property
    def voter_count(self) -> int:
        return len(self._voters)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "voters": {v: r.to_dict() for v, r in self._voters.items()},
            "delegations": dict(self._delegations),
            "fraudFlags": dict(self._fraud_flags),
            "tally": self._tally.to_dict(),
        }

    def __repr__(self) -> str:
        return f"<VotingModel voters={len(self._voters)} delegations={len(self._delegations)}>"
