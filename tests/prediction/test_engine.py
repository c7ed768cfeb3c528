"""Tests for backend.prediction.engine -- PredictionEngine gate and state machine.

Phases: Idle -> Pending -> Revealed -> Idle, with Locked reached whenever the
quota is spent or the caller locks the session. Invalid events raise
InvalidTransitionError and leave the state untouched.
"""

from __future__ import annotations

import random
from decimal import Decimal

import pytest

from backend.common.config import Settings
from backend.common.schemas import DifficultyTier, PredictionResult, SessionPhase, SessionState
from backend.prediction.catalog import OutcomeCatalog
from backend.prediction.engine import PredictionEngine
from backend.prediction.exceptions import InvalidTransitionError, UnknownTierError
from backend.prediction.policies import RarityPolicy, TieredPolicy


class TestInitialPhase:
    def test_fresh_session_is_idle(self, make_engine) -> None:
        engine = make_engine()
        assert engine.phase is SessionPhase.IDLE
        assert engine.tier is DifficultyTier.EASY
        assert engine.remaining == 15
        assert engine.result is None

    def test_exhausted_quota_starts_locked(self, make_engine) -> None:
        engine = make_engine(usage_count=15)
        assert engine.phase is SessionPhase.LOCKED
        assert engine.locked is True

    def test_locked_flag_starts_locked(self, make_engine) -> None:
        engine = make_engine(locked=True)
        assert engine.phase is SessionPhase.LOCKED

    def test_restored_revealed_keeps_result(self, make_engine) -> None:
        """A stored Revealed session at the limit still shows its last result."""
        result = PredictionResult(value=Decimal("1.23"), steps=5, confidence=88)
        engine = make_engine(usage_count=15, phase=SessionPhase.REVEALED, result=result)
        assert engine.phase is SessionPhase.REVEALED
        assert engine.result == result

    def test_default_state_when_none(self) -> None:
        engine = PredictionEngine()
        assert engine.phase is SessionPhase.IDLE
        assert engine.usage_limit == 15

    def test_confidence_range_validated(self) -> None:
        with pytest.raises(ValueError, match="confidence_min"):
            PredictionEngine(confidence_min=90, confidence_max=80)


class TestRequestPrediction:
    def test_idle_to_pending(self, make_engine) -> None:
        engine = make_engine()
        assert engine.request_prediction() is SessionPhase.PENDING
        assert engine.phase is SessionPhase.PENDING

    def test_records_chosen_tier(self, make_engine) -> None:
        engine = make_engine()
        engine.request_prediction(DifficultyTier.HARD)
        assert engine.tier is DifficultyTier.HARD

    def test_accepts_tier_name(self, make_engine) -> None:
        engine = make_engine()
        engine.request_prediction("Hardcore")
        assert engine.tier is DifficultyTier.HARDCORE

    def test_unknown_tier_leaves_state(self, make_engine) -> None:
        engine = make_engine()
        with pytest.raises(UnknownTierError):
            engine.request_prediction("Impossible")
        assert engine.phase is SessionPhase.IDLE

    def test_quota_spent_locks(self, make_engine) -> None:
        engine = make_engine(usage_count=14, usage_limit=15)
        engine.request_prediction()
        engine.resolve_prediction()
        engine.next_round()
        assert engine.request_prediction() is SessionPhase.LOCKED
        assert engine.locked is True

    def test_quota_spent_locks_from_revealed(self, make_engine) -> None:
        engine = make_engine(usage_count=14)
        engine.request_prediction()
        engine.resolve_prediction()
        assert engine.phase is SessionPhase.REVEALED
        assert engine.request_prediction() is SessionPhase.LOCKED
        assert engine.result is None

    def test_locked_stays_locked(self, make_engine) -> None:
        engine = make_engine(usage_count=15)
        assert engine.request_prediction() is SessionPhase.LOCKED
        assert engine.request_prediction() is SessionPhase.LOCKED

    def test_from_revealed_with_quota_rejected(self, make_engine) -> None:
        engine = make_engine()
        engine.request_prediction()
        engine.resolve_prediction()
        with pytest.raises(InvalidTransitionError) as exc_info:
            engine.request_prediction()
        assert exc_info.value.event == "request_prediction"
        assert exc_info.value.phase == "Revealed"
        assert engine.phase is SessionPhase.REVEALED

    def test_while_pending_rejected(self, make_engine) -> None:
        engine = make_engine()
        engine.request_prediction()
        with pytest.raises(InvalidTransitionError):
            engine.request_prediction()
        assert engine.phase is SessionPhase.PENDING


class TestResolvePrediction:
    def test_pending_to_revealed(self, make_engine) -> None:
        engine = make_engine()
        engine.request_prediction()
        result = engine.resolve_prediction()
        assert engine.phase is SessionPhase.REVEALED
        assert engine.result == result
        assert 70 <= result.confidence <= 99

    def test_increments_usage_by_one(self, make_engine) -> None:
        engine = make_engine(usage_count=3)
        engine.request_prediction()
        engine.resolve_prediction()
        assert engine.usage_count == 4
        assert engine.remaining == 11

    def test_result_comes_from_tier(self, make_engine, catalog: OutcomeCatalog) -> None:
        engine = make_engine()
        engine.request_prediction(DifficultyTier.MEDIUM)
        result = engine.resolve_prediction()
        ladder = {(o.value, o.steps) for o in catalog.list_for(DifficultyTier.MEDIUM)}
        assert (result.value, result.steps) in ladder

    def test_updates_last_drawn_value(self, make_engine) -> None:
        engine = make_engine()
        engine.request_prediction()
        result = engine.resolve_prediction()
        assert engine.state.last_drawn_value == result.value

    @pytest.mark.parametrize("phase_setup", ["idle", "revealed"])
    def test_outside_pending_rejected(self, make_engine, phase_setup: str) -> None:
        engine = make_engine()
        if phase_setup == "revealed":
            engine.request_prediction()
            engine.resolve_prediction()
        count = engine.usage_count
        with pytest.raises(InvalidTransitionError):
            engine.resolve_prediction()
        assert engine.usage_count == count

    def test_locked_rejected(self, make_engine) -> None:
        engine = make_engine(locked=True)
        with pytest.raises(InvalidTransitionError):
            engine.resolve_prediction()


class TestNextRound:
    def test_revealed_to_idle_clears_result(self, make_engine) -> None:
        engine = make_engine()
        engine.request_prediction()
        engine.resolve_prediction()
        assert engine.next_round() is SessionPhase.IDLE
        assert engine.result is None

    def test_keeps_last_drawn_value(self, make_engine) -> None:
        engine = make_engine()
        engine.request_prediction()
        result = engine.resolve_prediction()
        engine.next_round()
        assert engine.state.last_drawn_value == result.value

    @pytest.mark.parametrize("setup", ["idle", "pending", "locked"])
    def test_other_phases_rejected(self, make_engine, setup: str) -> None:
        engine = make_engine(locked=setup == "locked")
        if setup == "pending":
            engine.request_prediction()
        phase = engine.phase
        with pytest.raises(InvalidTransitionError):
            engine.next_round()
        assert engine.phase is phase


class TestCancelPending:
    def test_pending_to_idle_without_usage(self, make_engine) -> None:
        engine = make_engine(usage_count=5)
        engine.request_prediction()
        assert engine.cancel_pending() is SessionPhase.IDLE
        assert engine.usage_count == 5
        assert engine.result is None

    def test_outside_pending_rejected(self, make_engine) -> None:
        engine = make_engine()
        with pytest.raises(InvalidTransitionError):
            engine.cancel_pending()


class TestLockCheck:
    def test_locks_when_quota_spent(self, make_engine) -> None:
        engine = make_engine(usage_count=14)
        engine.request_prediction()
        engine.resolve_prediction()
        assert engine.acknowledge_lock_check() is True
        assert engine.phase is SessionPhase.LOCKED
        assert engine.result is None

    def test_no_lock_with_quota_left(self, make_engine) -> None:
        engine = make_engine(usage_count=3)
        assert engine.acknowledge_lock_check() is False
        assert engine.phase is SessionPhase.IDLE

    def test_rejected_while_pending(self, make_engine) -> None:
        engine = make_engine()
        engine.request_prediction()
        with pytest.raises(InvalidTransitionError):
            engine.acknowledge_lock_check()

    def test_rejected_when_locked(self, make_engine) -> None:
        engine = make_engine(locked=True)
        with pytest.raises(InvalidTransitionError):
            engine.acknowledge_lock_check()


class TestElectiveLock:
    def test_lock_early(self, make_engine) -> None:
        engine = make_engine(usage_count=2)
        assert engine.lock() is SessionPhase.LOCKED
        assert engine.locked is True
        # Locked by flag even with quota left
        assert engine.request_prediction() is SessionPhase.LOCKED

    def test_lock_is_idempotent(self, make_engine) -> None:
        engine = make_engine(locked=True)
        assert engine.lock() is SessionPhase.LOCKED

    def test_lock_rejected_while_pending(self, make_engine) -> None:
        engine = make_engine()
        engine.request_prediction()
        with pytest.raises(InvalidTransitionError):
            engine.lock()


class TestExternalReset:
    """Deposit signals: unlock and usage reset are independent operations."""

    def test_unlock_returns_to_idle(self, make_engine) -> None:
        engine = make_engine(usage_count=2, locked=True)
        assert engine.unlock() is SessionPhase.IDLE
        assert engine.locked is False
        assert engine.usage_count == 2

    def test_unlock_without_reset_relocks_on_request(self, make_engine) -> None:
        engine = make_engine(usage_count=15)
        engine.unlock()
        assert engine.phase is SessionPhase.IDLE
        assert engine.request_prediction() is SessionPhase.LOCKED

    def test_reset_usage_keeps_lock(self, make_engine) -> None:
        engine = make_engine(usage_count=15)
        before = engine.reset_usage()
        assert before == 15
        assert engine.usage_count == 0
        assert engine.locked is True
        assert engine.phase is SessionPhase.LOCKED

    def test_unlock_and_reset_reopens_gate(self, make_engine) -> None:
        engine = make_engine(usage_count=15)
        engine.reset_usage()
        engine.unlock()
        assert engine.remaining == 15
        assert engine.request_prediction() is SessionPhase.PENDING

    def test_reset_rejected_while_pending(self, make_engine) -> None:
        engine = make_engine()
        engine.request_prediction()
        with pytest.raises(InvalidTransitionError):
            engine.reset_usage()
        with pytest.raises(InvalidTransitionError):
            engine.unlock()


class TestSelectTier:
    def test_changes_tier(self, make_engine) -> None:
        engine = make_engine()
        assert engine.select_tier("Medium") is DifficultyTier.MEDIUM
        assert engine.tier is DifficultyTier.MEDIUM

    def test_rejected_while_pending(self, make_engine) -> None:
        engine = make_engine()
        engine.request_prediction()
        with pytest.raises(InvalidTransitionError):
            engine.select_tier(DifficultyTier.HARD)
        assert engine.tier is DifficultyTier.EASY

    def test_unknown_rejected(self, make_engine) -> None:
        engine = make_engine()
        with pytest.raises(UnknownTierError):
            engine.select_tier("Legendary")


class TestAntiRepeat:
    @pytest.mark.parametrize("tier", list(DifficultyTier))
    def test_no_consecutive_equal_values(self, tier: DifficultyTier, round_runner) -> None:
        engine = PredictionEngine(
            SessionState(usage_limit=10_000, tier=tier),
            rng=random.Random(99),
        )
        previous = None
        for _ in range(400):
            result = round_runner(engine)
            assert result.value != previous
            previous = result.value

    def test_memory_survives_tier_switch(self, make_engine) -> None:
        """last_drawn_value carries across tiers; a shared value cannot repeat."""
        engine = make_engine(usage_limit=1000, last_drawn_value=Decimal("1.12"))
        # "1.12x" exists in both Easy and Medium
        for _ in range(200):
            engine.request_prediction(DifficultyTier.MEDIUM)
            result = engine.resolve_prediction()
            engine.next_round()
            engine.state.last_drawn_value = Decimal("1.12")
            assert result.value != Decimal("1.12")

    def test_hardcore_after_280(self, make_engine) -> None:
        engine = make_engine(usage_limit=1000, tier=DifficultyTier.HARDCORE)
        for _ in range(200):
            engine.state.last_drawn_value = Decimal("2.80")
            engine.request_prediction()
            result = engine.resolve_prediction()
            engine.next_round()
            assert result.label in {"1.63x", "4.95x", "9.08x"}

    def test_single_candidate_tier(self, rng: random.Random, round_runner) -> None:
        catalog = OutcomeCatalog({DifficultyTier.HARDCORE: ["3.00x"]})
        engine = PredictionEngine(
            SessionState(tier=DifficultyTier.HARDCORE),
            policy=TieredPolicy(catalog),
            rng=rng,
        )
        for _ in range(5):
            result = round_runner(engine)
            assert result.label == "3.00x"
            assert result.steps == 1
            assert engine.state.last_drawn_value is None


class TestUsageAccounting:
    def test_fifteen_round_scenario(self, make_engine, round_runner) -> None:
        """14 prior rounds: the 15th succeeds, the 16th request locks."""
        engine = make_engine(usage_count=0, usage_limit=15)
        for _ in range(14):
            round_runner(engine)
        assert engine.usage_count == 14

        assert engine.request_prediction() is SessionPhase.PENDING
        engine.resolve_prediction()
        assert engine.usage_count == 15
        assert engine.remaining == 0
        engine.next_round()

        assert engine.request_prediction() is SessionPhase.LOCKED
        assert engine.usage_count == 15

    def test_usage_strictly_increases(self, make_engine) -> None:
        engine = make_engine(usage_limit=50)
        counts = [engine.usage_count]
        for _ in range(20):
            engine.request_prediction()
            engine.resolve_prediction()
            counts.append(engine.usage_count)
            engine.next_round()
        assert counts == list(range(21))

    def test_usage_never_exceeds_limit(self, make_engine) -> None:
        engine = make_engine(usage_limit=3)
        for _ in range(10):
            if engine.request_prediction() is SessionPhase.LOCKED:
                break
            engine.resolve_prediction()
            engine.next_round()
        assert engine.usage_count == 3
        assert engine.phase is SessionPhase.LOCKED

    def test_confidence_uniform_through_engine(self) -> None:
        engine = PredictionEngine(SessionState(usage_limit=100_000), rng=random.Random(5))
        seen = set()
        for _ in range(3000):
            engine.request_prediction()
            seen.add(engine.resolve_prediction().confidence)
            engine.next_round()
        assert seen == set(range(70, 100))


class TestFromSettings:
    def test_defaults(self, test_settings: Settings) -> None:
        engine = PredictionEngine.from_settings(test_settings)
        assert engine.usage_limit == test_settings.usage_limit
        assert isinstance(engine.policy, TieredPolicy)
        assert engine.max_resample_attempts == 50

    def test_rarity_policy(self) -> None:
        settings = Settings(selection_policy="rarity", rare_chance=0.0, usage_limit=5)
        engine = PredictionEngine.from_settings(settings, rng=random.Random(3))
        assert isinstance(engine.policy, RarityPolicy)
        engine.request_prediction(DifficultyTier.HARDCORE)
        result = engine.resolve_prediction()
        assert result.label in {"1.20x", "1.44x", "1.72x", "2.06x", "2.47x"}

    def test_snapshot_is_independent(self, make_engine) -> None:
        engine = make_engine()
        snap = engine.snapshot()
        engine.request_prediction()
        assert snap.phase is SessionPhase.IDLE
        assert engine.phase is SessionPhase.PENDING
