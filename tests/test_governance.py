"""
StakeGuard Governance Test Suite

Coverage:
  Voting power  : stake/reputation weighting, weight updates
  Cast vote     : decay, one vote per voter, tally, fraud disqualification
  Delegation    : single hop, immutability, relationship queries
"""

from unittest.mock import MagicMock

import pytest

from stakeguard.engine import StakeGuardEngine
from stakeguard.events import VOTE_CAST, VOTE_DELEGATED
from stakeguard.exceptions import (
    AuthorizationViolation,
    ExternalCollaboratorFailure,
    PreconditionViolation,
)
from stakeguard.governance import VoteChoice
from stakeguard.interfaces import FraudOracle, ReputationOracle


ALICE = "0xA11CE"
BOB = "0xB0B"
CAROL = "0xCA201"
DAVE = "0xDA5E"


def make_voters(engine, *voters, stake=1000, reputation=50):
    for voter in voters:
        engine.register_voter(voter, stake, reputation)


# ══════════════════════════════════════════════════════════════════════
#  REGISTRATION & POWER
# ══════════════════════════════════════════════════════════════════════


class TestVoterRegistration:
    """register_voter()"""

    def test_register(self, engine):
        record = engine.register_voter(ALICE, 1000, 50)
        assert record.stake == 1000
        assert record.reputation_score == 50
        assert record.has_voted is False
        assert record.last_vote_at is None

    def test_duplicate_rejected(self, engine):
        engine.register_voter(ALICE, 1000, 50)
        with pytest.raises(PreconditionViolation) as exc:
            engine.register_voter(ALICE, 5, 5)
        assert exc.value.precondition == "already_registered"

    def test_reputation_out_of_range_rejected(self, engine):
        with pytest.raises(PreconditionViolation) as exc:
            engine.register_voter(ALICE, 1000, 120)
        assert exc.value.precondition == "metric_range"

    def test_reputation_from_validator_record(self, engine, admin):
        engine.register_validator(admin, ALICE, stake=10, reputation_score=77)
        assert engine.register_voter(ALICE, 1000).reputation_score == 77

    def test_reputation_from_injected_oracle(self, clock):
        oracle = MagicMock(spec=ReputationOracle)
        oracle.get_reputation.return_value = 64
        engine = StakeGuardEngine(clock=clock, reputation_oracle=oracle)
        assert engine.register_voter(ALICE, 1000).reputation_score == 64
        oracle.get_reputation.assert_called_once_with(ALICE)

    def test_oracle_out_of_contract_value(self, clock):
        oracle = MagicMock(spec=ReputationOracle)
        oracle.get_reputation.return_value = 250
        engine = StakeGuardEngine(clock=clock, reputation_oracle=oracle)
        with pytest.raises(ExternalCollaboratorFailure, match="outside"):
            engine.register_voter(ALICE, 1000)
        assert engine.voting.get(ALICE) is None

    def test_non_validator_without_reputation(self, engine):
        with pytest.raises(PreconditionViolation) as exc:
            engine.register_voter(ALICE, 1000)
        assert exc.value.precondition == "unregistered"
        assert engine.voting.get(ALICE) is None


class TestVotingPower:
    """stake*Ws//100 + reputation*Wr//100"""

    def test_default_weights(self, engine):
        engine.register_voter(ALICE, 1000, 50)
        # 1000*60//100 + 50*40//100
        assert engine.voting_power(ALICE) == 620

    def test_unregistered(self, engine):
        with pytest.raises(PreconditionViolation) as exc:
            engine.voting_power(ALICE)
        assert exc.value.precondition == "unregistered"

    def test_weight_update_applies(self, engine, admin):
        engine.register_voter(ALICE, 1000, 50)
        engine.update_voting_weights(admin, stake=10, reputation=90)
        assert engine.voting_power(ALICE) == 100 + 45

    def test_bad_weight_update_keeps_previous(self, engine, admin):
        engine.register_voter(ALICE, 1000, 50)
        with pytest.raises(PreconditionViolation) as exc:
            engine.update_voting_weights(admin, stake=70, reputation=40)
        assert exc.value.precondition == "weights_sum"
        assert engine.voting_power(ALICE) == 620
        assert engine.config.version == 1


# ══════════════════════════════════════════════════════════════════════
#  CAST VOTE
# ══════════════════════════════════════════════════════════════════════


class TestCastVote:
    """cast_vote()"""

    def test_vote_decays_reputation(self, engine, clock):
        engine.register_voter(ALICE, 1000, 50)
        receipt = engine.cast_vote(ALICE)
        assert receipt.voting_power == 620
        assert receipt.reputation_after == 45
        record = engine.voting.get(ALICE)
        assert record.has_voted is True
        assert record.last_vote_at == clock.now

    def test_decay_truncates(self, engine):
        engine.register_voter(ALICE, 1000, 9)
        assert engine.cast_vote(ALICE).reputation_after == 9

    def test_zero_reputation_stays_zero(self, engine):
        engine.register_voter(ALICE, 1000, 0)
        assert engine.cast_vote(ALICE).reputation_after == 0

    def test_power_computed_before_decay(self, engine):
        engine.register_voter(ALICE, 0, 100)
        receipt = engine.cast_vote(ALICE)
        assert receipt.voting_power == 40
        assert engine.voting_power(ALICE) == 36

    def test_double_vote_rejected(self, engine):
        engine.register_voter(ALICE, 1000, 50)
        engine.cast_vote(ALICE)
        with pytest.raises(PreconditionViolation) as exc:
            engine.cast_vote(ALICE, VoteChoice.AGAINST)
        assert exc.value.precondition == "already_voted"
        assert engine.voting.get(ALICE).reputation_score == 45

    def test_unregistered_rejected(self, engine):
        with pytest.raises(PreconditionViolation) as exc:
            engine.cast_vote(ALICE)
        assert exc.value.precondition == "unregistered"

    def test_tally(self, engine):
        make_voters(engine, ALICE, BOB, CAROL)
        engine.cast_vote(ALICE, VoteChoice.FOR)
        engine.cast_vote(BOB, VoteChoice.AGAINST)
        engine.cast_vote(CAROL, VoteChoice.ABSTAIN)
        tally = engine.voting.tally
        assert tally.votes_for == tally.votes_against == tally.votes_abstain == 620
        assert tally.total == 1860
        assert tally.voters == [ALICE, BOB, CAROL]

    def test_vote_event_and_metric(self, engine):
        engine.register_voter(ALICE, 1000, 50)
        engine.cast_vote(ALICE, VoteChoice.AGAINST)
        event = engine.events.history(VOTE_CAST)[-1]
        assert event.payload == {"voter": ALICE, "choice": "against", "voting_power": 620}
        assert engine.metrics.votes_total.value == 1


class TestFraud:
    """Fraud flags and oracle checks."""

    def test_threshold_disqualifies(self, engine, admin):
        engine.register_voter(ALICE, 1000, 50)
        assert engine.flag_fraud(admin, ALICE) == 1
        assert engine.flag_fraud(admin, ALICE, count=2) == 3
        assert engine.voting.is_disqualified(ALICE)
        with pytest.raises(PreconditionViolation) as exc:
            engine.cast_vote(ALICE)
        assert exc.value.precondition == "fraud_threshold"
        assert engine.voting.get(ALICE).has_voted is False

    def test_below_threshold_can_vote(self, engine, admin):
        engine.register_voter(ALICE, 1000, 50)
        engine.flag_fraud(admin, ALICE, count=2)
        assert not engine.voting.is_disqualified(ALICE)
        assert engine.cast_vote(ALICE).voting_power == 620

    def test_threshold_from_config(self, engine, admin):
        engine.register_voter(ALICE, 1000, 50)
        engine.flag_fraud(admin, ALICE)
        engine.update_voting_weights(admin, stake=60, reputation=40, fraud_threshold=1)
        assert engine.voting.is_disqualified(ALICE)

    def test_flag_requires_capability(self, engine):
        engine.register_voter(ALICE, 1000, 50)
        with pytest.raises(AuthorizationViolation):
            engine.flag_fraud(None, ALICE)
        assert engine.voting.fraud_flags(ALICE) == 0

    def test_flag_unregistered_rejected(self, engine, admin):
        with pytest.raises(PreconditionViolation) as exc:
            engine.flag_fraud(admin, ALICE)
        assert exc.value.precondition == "unregistered"

    def test_oracle_flagged_voter_rejected(self, clock):
        oracle = MagicMock(spec=FraudOracle)
        oracle.is_flagged.return_value = True
        engine = StakeGuardEngine(clock=clock, fraud_oracle=oracle)
        engine.register_voter(ALICE, 1000, 50)
        with pytest.raises(PreconditionViolation) as exc:
            engine.cast_vote(ALICE)
        assert exc.value.precondition == "fraud_flagged"
        oracle.detect_anomalies.assert_called_once_with(ALICE)
        assert engine.voting.get(ALICE).reputation_score == 50

    def test_oracle_failure(self, clock):
        oracle = MagicMock(spec=FraudOracle)
        oracle.detect_anomalies.side_effect = TimeoutError("oracle timeout")
        engine = StakeGuardEngine(clock=clock, fraud_oracle=oracle)
        engine.register_voter(ALICE, 1000, 50)
        with pytest.raises(ExternalCollaboratorFailure, match="FraudOracle"):
            engine.cast_vote(ALICE)
        assert not engine.voting.has_voted(ALICE)

    @pytest.mark.parametrize("score,rejected", [(0, False), (2, False), (3, True), (9, True)])
    def test_oracle_fraud_score_gate(self, clock, score, rejected):
        oracle = MagicMock(spec=FraudOracle)
        oracle.is_flagged.return_value = False
        oracle.fraud_score.return_value = score
        engine = StakeGuardEngine(clock=clock, fraud_oracle=oracle)
        engine.register_voter(ALICE, 1000, 50)
        if rejected:
            with pytest.raises(PreconditionViolation) as exc:
                engine.cast_vote(ALICE)
            assert exc.value.precondition == "fraud_flagged"
            assert not engine.voting.has_voted(ALICE)
        else:
            assert engine.cast_vote(ALICE).voting_power == 620
        oracle.fraud_score.assert_called_once_with(ALICE)

    def test_oracle_invalid_fraud_score(self, clock):
        oracle = MagicMock(spec=FraudOracle)
        oracle.is_flagged.return_value = False
        oracle.fraud_score.return_value = -1
        engine = StakeGuardEngine(clock=clock, fraud_oracle=oracle)
        engine.register_voter(ALICE, 1000, 50)
        with pytest.raises(ExternalCollaboratorFailure, match="fraud_score"):
            engine.cast_vote(ALICE)
        assert engine.voting.get(ALICE).reputation_score == 50


# ══════════════════════════════════════════════════════════════════════
#  DELEGATION
# ══════════════════════════════════════════════════════════════════════


class TestDelegation:
    """delegate_vote()"""

    def test_delegate(self, engine):
        make_voters(engine, ALICE, BOB, CAROL)
        engine.delegate_vote(ALICE, BOB)
        engine.delegate_vote(CAROL, BOB)
        assert engine.voting.delegation_of(ALICE) == BOB
        assert engine.voting.delegators_of(BOB) == [ALICE, CAROL]
        event = engine.events.history(VOTE_DELEGATED)[-1]
        assert event.payload == {"delegator": CAROL, "delegatee": BOB}

    def test_power_not_aggregated(self, engine):
        make_voters(engine, ALICE, BOB)
        engine.delegate_vote(ALICE, BOB)
        assert engine.voting_power(BOB) == 620

    def test_self_delegation_rejected(self, engine):
        make_voters(engine, ALICE)
        with pytest.raises(PreconditionViolation) as exc:
            engine.delegate_vote(ALICE, ALICE)
        assert exc.value.precondition == "self_delegation"

    def test_unregistered_party_rejected(self, engine):
        make_voters(engine, ALICE)
        with pytest.raises(PreconditionViolation) as exc:
            engine.delegate_vote(ALICE, BOB)
        assert exc.value.precondition == "unregistered"
        with pytest.raises(PreconditionViolation):
            engine.delegate_vote(BOB, ALICE)

    def test_delegation_is_immutable(self, engine):
        make_voters(engine, ALICE, BOB, CAROL)
        engine.delegate_vote(ALICE, BOB)
        with pytest.raises(PreconditionViolation) as exc:
            engine.delegate_vote(ALICE, CAROL)
        assert exc.value.precondition == "already_delegated"
        assert engine.voting.delegation_of(ALICE) == BOB

    def test_delegatee_that_delegated_rejected(self, engine):
        make_voters(engine, ALICE, BOB, CAROL)
        engine.delegate_vote(BOB, CAROL)
        with pytest.raises(PreconditionViolation) as exc:
            engine.delegate_vote(ALICE, BOB)
        assert exc.value.precondition == "delegation_hop"

    def test_delegator_holding_delegations_rejected(self, engine):
        make_voters(engine, ALICE, BOB, CAROL)
        engine.delegate_vote(ALICE, BOB)
        with pytest.raises(PreconditionViolation) as exc:
            engine.delegate_vote(BOB, CAROL)
        assert exc.value.precondition == "delegation_hop"

    def test_no_cycles(self, engine):
        make_voters(engine, ALICE, BOB, CAROL, DAVE)
        engine.delegate_vote(ALICE, BOB)
        engine.delegate_vote(CAROL, DAVE)
        for delegator, delegatee in [(BOB, ALICE), (DAVE, CAROL), (BOB, CAROL)]:
            with pytest.raises(PreconditionViolation):
                engine.delegate_vote(delegator, delegatee)

    def test_to_dict(self, engine):
        make_voters(engine, ALICE, BOB)
        engine.delegate_vote(ALICE, BOB)
        d = engine.voting.to_dict()
        assert d["delegations"] == {ALICE: BOB}
        assert d["voters"][ALICE]["stake"] == 1000
        assert "VotingModel" in repr(engine.voting)
