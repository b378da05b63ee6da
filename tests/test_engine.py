"""
StakeGuard Engine Test Suite

Coverage:
  Capabilities   : issue, verify, revoke, forged tokens
  Epochs         : interval gating, events, metrics
  Configuration  : versioned swaps, rejected updates
  Administration : metrics, reputation refresh, stake, disqualification
  Observability  : events, audit trail, status snapshot, metrics exposition
"""

import threading
from unittest.mock import MagicMock

import pytest

from stakeguard.access import AdminCapability, CapabilityAuthority
from stakeguard.config import EngineConfig
from stakeguard.engine import StakeGuardEngine
from stakeguard.events import (
    EPOCH_ADVANCED,
    VALIDATOR_DISQUALIFIED,
    VALIDATOR_REGISTERED,
    WEIGHTS_UPDATED,
    WILDCARD,
    EventBus,
)
from stakeguard.exceptions import (
    AuthorizationViolation,
    ConfigurationError,
    ExternalCollaboratorFailure,
    PreconditionViolation,
)
from stakeguard.interfaces import ReputationOracle, StakeLedger


ALICE = "0xA11CE"
BOB = "0xB0B"


# ══════════════════════════════════════════════════════════════════════
#  CAPABILITIES
# ══════════════════════════════════════════════════════════════════════


class TestCapabilities:
    """Administrator capability tokens."""

    def test_issue_and_verify(self):
        authority = CapabilityAuthority()
        cap = authority.issue("ops")
        assert authority.is_valid(cap)
        assert authority.require(cap, "test") == "ops"
        assert authority.holders == ["ops"]

    def test_token_not_in_repr(self):
        cap = CapabilityAuthority().issue("ops")
        assert cap.token not in repr(cap)

    def test_forged_token_rejected(self):
        authority = CapabilityAuthority()
        authority.issue("ops")
        forged = AdminCapability(holder="ops", token="00" * 32)
        with pytest.raises(AuthorizationViolation, match="slash"):
            authority.require(forged, "slash")

    def test_revoked_capability_rejected(self, engine, admin):
        other = engine.issue_capability("backup")
        assert engine.revoke_capability(other, "operator")
        with pytest.raises(AuthorizationViolation):
            engine.register_validator(admin, ALICE)
        assert ALICE not in engine.registry

    def test_reissue_replaces_token(self):
        authority = CapabilityAuthority()
        first = authority.issue("ops")
        second = authority.issue("ops")
        assert not authority.is_valid(first)
        assert authority.is_valid(second)

    def test_capability_from_other_engine_rejected(self, engine, clock):
        foreign = StakeGuardEngine(clock=clock).issue_capability("operator")
        with pytest.raises(AuthorizationViolation):
            engine.fund_pool(foreign, 100)
        assert engine.rewards.pool.total_pool == 0

    @pytest.mark.parametrize("call", [
        lambda e: e.register_validator(None, ALICE),
        lambda e: e.advance_epoch(None),
        lambda e: e.update_scoring_weights(None, 25, 25, 25, 25),
        lambda e: e.update_slashing_params(None, min_penalty=1),
        lambda e: e.fund_pool(None, 10),
        lambda e: e.distribute_rewards(None),
        lambda e: e.slash(None, ALICE, 1000, "other"),
        lambda e: e.appeal(None, ALICE, 0),
        lambda e: e.disqualify(None, ALICE),
    ])
    def test_admin_operations_require_capability(self, engine, call):
        with pytest.raises(AuthorizationViolation):
            call(engine)


# ══════════════════════════════════════════════════════════════════════
#  EPOCHS
# ══════════════════════════════════════════════════════════════════════


class TestEpochs:
    """advance_epoch()"""

    def test_interval_enforced(self, engine, admin, clock):
        clock.advance(engine.config.epochs.epoch_interval - 1)
        with pytest.raises(PreconditionViolation) as exc:
            engine.advance_epoch(admin)
        assert exc.value.precondition == "epoch_interval"
        assert engine.current_epoch == 0

    def test_advance(self, engine, admin, clock):
        clock.advance(100)
        assert engine.advance_epoch(admin) == 1
        assert engine.last_epoch_advance_at == clock.now
        event = engine.events.history(EPOCH_ADVANCED)[-1]
        assert event.payload["epoch"] == 1
        assert engine.metrics.current_epoch.value == 1

    def test_interval_measured_from_last_advance(self, engine, admin, clock):
        clock.advance(100)
        engine.advance_epoch(admin)
        clock.advance(60)
        with pytest.raises(PreconditionViolation):
            engine.advance_epoch(admin)
        clock.advance(40)
        assert engine.advance_epoch(admin) == 2

    def test_interval_below_minimum_rejected(self):
        with pytest.raises(ConfigurationError, match="epoch_interval"):
            StakeGuardEngine(config=EngineConfig.from_dict({"epochs": {"epoch_interval": 49}}))


# ══════════════════════════════════════════════════════════════════════
#  CONFIGURATION SWAPS
# ══════════════════════════════════════════════════════════════════════


class TestConfigurationUpdates:
    """Versioned configuration updates."""

    def test_scoring_weights_update(self, engine, admin):
        engine.register_validator(
            admin, ALICE, stake=1000, performance_score=80, reputation_score=90, uptime_score=100,
        )
        config = engine.update_scoring_weights(admin, 25, 25, 25, 25)
        assert config.version == 2
        assert engine.config is config
        # 20 + 22 + 25 + 250
        assert engine.score_of(ALICE) == 317
        event = engine.events.history(WEIGHTS_UPDATED)[-1]
        assert event.payload["version"] == 2
        assert event.payload["operation"] == "update_scoring_weights"

    def test_rejected_weights_leave_config(self, engine, admin):
        before = engine.config
        with pytest.raises(PreconditionViolation) as exc:
            engine.update_scoring_weights(admin, 40, 30, 20, 11)
        assert exc.value.precondition == "weights_sum"
        assert engine.config is before
        assert engine.events.history(WEIGHTS_UPDATED) == []

    def test_negative_weight_rejected(self, engine, admin):
        with pytest.raises(PreconditionViolation):
            engine.update_scoring_weights(admin, 110, -10, 0, 0)
        assert engine.config.scoring.performance == 40

    def test_slashing_params_update(self, engine, admin):
        engine.register_validator(admin, ALICE, stake=5000, reputation_score=0)
        engine.update_slashing_params(admin, governance_review_threshold=4000)
        assert engine.config.slashing.min_penalty == 100
        assert engine.slash(admin, ALICE, 3000, "other").applied

    def test_penalty_band_inverted_rejected(self, engine, admin):
        with pytest.raises(PreconditionViolation) as exc:
            engine.update_slashing_params(admin, min_penalty=6000)
        assert exc.value.precondition == "penalty_band"
        assert engine.config.slashing.min_penalty == 100

    def test_versions_increase_monotonically(self, engine, admin):
        engine.update_scoring_weights(admin, 25, 25, 25, 25)
        engine.update_voting_weights(admin, 50, 50)
        engine.update_slashing_params(admin, max_penalty=6000)
        assert engine.config.version == 4


# ══════════════════════════════════════════════════════════════════════
#  VALIDATOR ADMINISTRATION
# ══════════════════════════════════════════════════════════════════════


class TestAdministration:
    """Registry administration through the engine."""

    def test_register_emits_event(self, engine, admin):
        engine.register_validator(admin, ALICE, stake=10)
        event = engine.events.history(VALIDATOR_REGISTERED)[-1]
        assert event.payload == {"validator": ALICE, "stake": 10}
        assert engine.metrics.registered_validators.value == 1

    def test_update_metrics(self, engine, admin):
        engine.register_validator(admin, ALICE, performance_score=10)
        record = engine.update_metrics(admin, ALICE, performance_score=90, uptime_score=50)
        assert (record.performance_score, record.uptime_score) == (90, 50)
        assert engine.score_of(ALICE) == 36 + 10

    def test_refresh_reputation(self, clock):
        oracle = MagicMock(spec=ReputationOracle)
        oracle.get_reputation.return_value = 42
        engine = StakeGuardEngine(clock=clock, reputation_oracle=oracle)
        admin = engine.issue_capability("operator")
        engine.register_validator(admin, ALICE, reputation_score=90)
        assert engine.refresh_reputation(admin, ALICE) == 42
        assert engine.get_validator(ALICE).reputation_score == 42

    def test_refresh_reputation_failure_keeps_value(self, clock):
        oracle = MagicMock(spec=ReputationOracle)
        oracle.get_reputation.side_effect = RuntimeError("stale feed")
        engine = StakeGuardEngine(clock=clock, reputation_oracle=oracle)
        admin = engine.issue_capability("operator")
        engine.register_validator(admin, ALICE, reputation_score=90)
        with pytest.raises(ExternalCollaboratorFailure, match="ReputationOracle"):
            engine.refresh_reputation(admin, ALICE)
        assert engine.get_validator(ALICE).reputation_score == 90

    def test_add_stake(self, engine, admin):
        engine.register_validator(admin, ALICE, stake=100)
        assert engine.add_stake(admin, ALICE, 50) == 150
        with pytest.raises(PreconditionViolation) as exc:
            engine.add_stake(admin, ALICE, 0)
        assert exc.value.precondition == "amount_range"
        assert engine.get_validator(ALICE).stake == 150

    def test_add_stake_reversed_when_balance_unreadable(self, clock):
        ledger = MagicMock(spec=StakeLedger)
        ledger.get_stake.side_effect = [100, TimeoutError("ledger read timeout")]
        engine = StakeGuardEngine(clock=clock, ledger=ledger)
        admin = engine.issue_capability("operator")
        engine.register_validator(admin, ALICE, stake=100)

        with pytest.raises(ExternalCollaboratorFailure, match="ledger read timeout"):
            engine.add_stake(admin, ALICE, 50)
        ledger.restore.assert_called_once_with(ALICE, 50)
        ledger.slash.assert_called_once_with(ALICE, 50)
        assert engine.get_validator(ALICE).stake == 100

    def test_disqualify_and_clear(self, engine, admin):
        engine.register_validator(admin, ALICE, performance_score=50)
        engine.disqualify(admin, ALICE)
        assert engine.select_best().address is None
        engine.clear_disqualification(admin, ALICE)
        assert engine.select_best().address == ALICE
        events = engine.events.history(VALIDATOR_DISQUALIFIED)
        assert [e.payload["disqualified"] for e in events] == [True, False]


# ══════════════════════════════════════════════════════════════════════
#  OBSERVABILITY
# ══════════════════════════════════════════════════════════════════════


class TestObservability:
    """Events, audit trail, status and metrics."""

    def test_handler_failure_is_isolated(self, engine, admin):
        handler = MagicMock(side_effect=RuntimeError("subscriber bug"))
        engine.events.subscribe(VALIDATOR_REGISTERED, handler)
        engine.register_validator(admin, ALICE)
        handler.assert_called_once()
        assert ALICE in engine.registry

    def test_wildcard_subscription(self, engine, admin):
        seen = []
        engine.events.subscribe(WILDCARD, lambda event: seen.append(event.name))
        engine.register_validator(admin, ALICE, performance_score=50)
        engine.select_best()
        assert seen == ["ValidatorRegistered", "ValidatorSelected"]

    def test_handler_may_call_back_into_engine(self, engine, admin):
        results = []
        engine.events.subscribe(VALIDATOR_REGISTERED, lambda e: results.append(engine.select_best()))
        engine.register_validator(admin, ALICE, performance_score=50)
        assert results[0].address == ALICE

    def test_event_history_bounded(self):
        bus = EventBus(history_limit=3)
        for i in range(5):
            bus.emit("Tick", i=i)
        assert [e.payload["i"] for e in bus.history()] == [2, 3, 4]

    def test_audit_trail(self, engine, admin):
        engine.register_validator(admin, ALICE, stake=1000, reputation_score=70)
        engine.slash(admin, ALICE, 1000, "downtime")
        categories = [entry.category for entry in engine.audit.entries]
        assert categories == ["registry", "slashing"]
        assert engine.audit.entries[-1].amount == 300

    def test_status_snapshot(self, engine, admin):
        engine.register_validator(
            admin, ALICE, stake=1000, performance_score=80, reputation_score=90, uptime_score=100,
        )
        engine.fund_pool(admin, 500)
        status = engine.status()
        assert status["validators"] == 1
        assert status["totalStake"] == 1000
        assert status["totalScore"] == 179
        assert status["rewardPool"]["total_pool"] == 500
        assert status["busy"] is False

    def test_metrics_exposition(self, engine, admin):
        engine.register_validator(admin, ALICE, performance_score=50)
        engine.select_best()
        body = engine.metrics.expose()
        assert "# TYPE stakeguard_selections_total counter" in body
        assert "stakeguard_registered_validators 1" in body

    def test_metrics_disabled(self, clock):
        engine = StakeGuardEngine(
            config=EngineConfig.from_dict({"metrics": {"enabled": False}}), clock=clock,
        )
        admin = engine.issue_capability("operator")
        engine.register_validator(admin, ALICE, performance_score=50)
        assert engine.metrics is None
        assert engine.select_best().address == ALICE


# ══════════════════════════════════════════════════════════════════════
#  CONCURRENCY
# ══════════════════════════════════════════════════════════════════════


class TestConcurrency:
    """Mutations from several threads are serialized."""

    def test_concurrent_funding(self, engine, admin):
        def fund():
            for _ in range(200):
                engine.fund_pool(admin, 1)

        threads = [threading.Thread(target=fund) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert engine.rewards.pool.total_pool == 800

    def test_concurrent_votes_counted_once(self, engine):
        for i in range(20):
            engine.register_voter(f"0x{i:02x}", 100, 50)

        def vote(voter):
            try:
                engine.cast_vote(voter)
            except PreconditionViolation:
                pass

        threads = [
            threading.Thread(target=vote, args=(f"0x{i % 20:02x}",)) for i in range(60)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(engine.voting.tally.voters) == 20
        assert engine.voting.tally.votes_for == 20 * 80

    def test_partial_update_sees_change_made_before_it_enters(self, engine, admin):
        require = engine.authority.require
        raced = []

        def require_then_race(capability, operation):
            if operation == "update_slashing_params" and not raced:
                raced.append(operation)
                other = threading.Thread(
                    target=engine.update_slashing_params,
                    args=(admin,),
                    kwargs={"governance_review_threshold": 3000},
                )
                other.start()
                other.join()
            return require(capability, operation)

        engine.authority.require = require_then_race
        config = engine.update_slashing_params(admin, min_penalty=200)
        assert config.slashing.min_penalty == 200
        assert config.slashing.governance_review_threshold == 3000
        assert config.version == 3

    def test_concurrent_partial_updates_all_survive(self, engine, admin):
        def update(**changes):
            for _ in range(50):
                engine.update_slashing_params(admin, **changes)

        threads = [
            threading.Thread(target=update, kwargs={"min_penalty": 200}),
            threading.Thread(target=update, kwargs={"governance_review_threshold": 3000}),
            threading.Thread(target=update, kwargs={"appeal_restore_percent": 40}),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        slashing = engine.config.slashing
        assert (slashing.min_penalty, slashing.governance_review_threshold) == (200, 3000)
        assert slashing.appeal_restore_percent == 40
        assert engine.config.version == 1 + 150
