"""Per-session prediction engine: usage gate, state machine, anti-repeat draw.

The engine is a synchronous state transducer over a SessionState. It never
sleeps or schedules anything; the caller owns the suspense delay between
`request_prediction` and `resolve_prediction` and may abandon it with
`cancel_pending`.

State transitions:
    Idle --request_prediction [quota left, unlocked]--> Pending
    Idle/Revealed/Locked --request_prediction [quota spent or locked]--> Locked
    Pending --resolve_prediction--> Revealed   (usage_count += 1)
    Pending --cancel_pending--> Idle           (usage_count unchanged)
    Revealed --next_round--> Idle              (result cleared)
    Idle/Revealed --acknowledge_lock_check [quota spent]--> Locked
    Idle/Revealed/Locked --lock--> Locked
    Locked --unlock--> Idle                    (external deposit signal)

Any event issued in a phase that does not accept it raises
InvalidTransitionError and leaves the state untouched. Quota exhaustion is
a normal transition, not an error.

Usage:
    from backend.prediction.engine import PredictionEngine

    engine = PredictionEngine.from_settings(get_settings(), state=stored_state)
    if engine.request_prediction(DifficultyTier.HARD) is SessionPhase.PENDING:
        ...  # caller waits its own delay
        result = engine.resolve_prediction()
"""

from __future__ import annotations

import random

from backend.common.config import Settings
from backend.common.logging import get_logger
from backend.common.metrics import (
    INVALID_TRANSITIONS_TOTAL,
    PREDICTIONS_DRAWN_TOTAL,
    SESSION_LOCKS_TOTAL,
)
from backend.common.schemas import (
    DifficultyTier,
    PredictionResult,
    SessionPhase,
    SessionState,
)
from backend.prediction.catalog import OutcomeCatalog, coerce_tier
from backend.prediction.exceptions import InvalidTransitionError
from backend.prediction.policies import (
    CONFIDENCE_MAX,
    CONFIDENCE_MIN,
    DEFAULT_MAX_ATTEMPTS,
    SelectionPolicy,
    TieredPolicy,
    build_policy,
    draw_confidence,
    draw_outcome,
)

logger = get_logger("ENGINE")

# Phases in which the session is at rest (no draw in flight)
_SETTLED = frozenset({SessionPhase.IDLE, SessionPhase.REVEALED, SessionPhase.LOCKED})


class PredictionEngine:
    """Session-scoped gate and draw orchestration.

    Args:
        state: Session state to drive. A fresh SessionState when None.
        policy: Candidate selection policy. TieredPolicy over the default
            catalog when None.
        rng: Random source. A fresh random.Random when None.
        max_resample_attempts: Bound on anti-repeat resampling.
        confidence_min: Lowest confidence percentage (inclusive).
        confidence_max: Highest confidence percentage (inclusive).
    """

    def __init__(
        self,
        state: SessionState | None = None,
        *,
        policy: SelectionPolicy | None = None,
        rng: random.Random | None = None,
        max_resample_attempts: int = DEFAULT_MAX_ATTEMPTS,
        confidence_min: int = CONFIDENCE_MIN,
        confidence_max: int = CONFIDENCE_MAX,
    ) -> None:
        if confidence_min > confidence_max:
            msg = f"confidence_min ({confidence_min}) exceeds confidence_max ({confidence_max})"
            raise ValueError(msg)

        self.state = state if state is not None else SessionState()
        self.policy = policy or TieredPolicy()
        self.rng = rng or random.Random()
        self.max_resample_attempts = max_resample_attempts
        self.confidence_min = confidence_min
        self.confidence_max = confidence_max

        # A locked flag always means the Locked phase; an idle session with
        # no quota left starts out Locked.
        if self.state.locked and self.state.phase is not SessionPhase.LOCKED:
            self._enter_locked("restored_locked")
        elif self.state.phase is SessionPhase.IDLE and self.quota_exhausted:
            self._enter_locked("quota")

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        state: SessionState | None = None,
        *,
        catalog: OutcomeCatalog | None = None,
        rng: random.Random | None = None,
    ) -> PredictionEngine:
        """Build an engine wired to the configured policy and draw bounds."""
        if state is None:
            state = SessionState(usage_limit=settings.usage_limit)
        return cls(
            state,
            policy=build_policy(settings.selection_policy, catalog, settings.rare_chance),
            rng=rng,
            max_resample_attempts=settings.max_resample_attempts,
            confidence_min=settings.confidence_min,
            confidence_max=settings.confidence_max,
        )

    # ─── Read-only views ───

    @property
    def phase(self) -> SessionPhase:
        return self.state.phase

    @property
    def tier(self) -> DifficultyTier:
        return self.state.tier

    @property
    def locked(self) -> bool:
        return self.state.locked

    @property
    def result(self) -> PredictionResult | None:
        """The active result; only set while Revealed."""
        return self.state.result

    @property
    def usage_count(self) -> int:
        return self.state.usage_count

    @property
    def usage_limit(self) -> int:
        return self.state.usage_limit

    @property
    def remaining(self) -> int:
        """Draws left before the gate closes. Derived, never stored."""
        return max(0, self.state.usage_limit - self.state.usage_count)

    @property
    def quota_exhausted(self) -> bool:
        return self.state.usage_count >= self.state.usage_limit

    def snapshot(self) -> SessionState:
        """Deep copy of the current state, safe to hand to a store."""
        return self.state.model_copy(deep=True)

    # ─── Caller-controlled tier ───

    def select_tier(self, tier: object) -> DifficultyTier:
        """Change the session's tier. Not allowed while a draw is pending.

        Raises:
            UnknownTierError: If `tier` is not a recognized tier.
            InvalidTransitionError: If called while Pending.
        """
        new_tier = coerce_tier(tier)
        if self.state.phase is SessionPhase.PENDING:
            self._reject("select_tier")
        if new_tier is not self.state.tier:
            logger.info(
                "Tier selected",
                extra={"data": {"from": self.state.tier.value, "to": new_tier.value}},
            )
            self.state.tier = new_tier
        return new_tier

    # ─── State machine events ───

    def request_prediction(self, tier: object | None = None) -> SessionPhase:
        """Gate check. Moves to Pending when allowed, otherwise to Locked.

        Args:
            tier: Tier to draw from. Keeps the current tier when None.

        Returns:
            The phase after the event (PENDING or LOCKED).

        Raises:
            UnknownTierError: If `tier` is given and not a recognized tier.
            InvalidTransitionError: While Pending, or from Revealed with
                quota left (the caller must start the next round first).
        """
        new_tier = coerce_tier(tier) if tier is not None else None
        phase = self.state.phase

        if phase not in _SETTLED:
            self._reject("request_prediction")

        if self.state.locked or self.quota_exhausted:
            if phase is SessionPhase.LOCKED:
                return phase
            self._enter_locked("quota" if self.quota_exhausted else "locked")
            return self.state.phase

        if phase is not SessionPhase.IDLE:
            self._reject("request_prediction")

        if new_tier is not None:
            self.state.tier = new_tier
        self.state.phase = SessionPhase.PENDING
        logger.info(
            "Prediction requested",
            extra={
                "data": {
                    "tier": self.state.tier.value,
                    "usage_count": self.state.usage_count,
                    "remaining": self.remaining,
                }
            },
        )
        return self.state.phase

    def resolve_prediction(self) -> PredictionResult:
        """Draw the outcome and confidence for the pending request.

        Raises:
            InvalidTransitionError: If not Pending.
        """
        if self.state.phase is not SessionPhase.PENDING:
            self._reject("resolve_prediction")

        tier = self.state.tier
        candidates = self.policy.candidates_for(tier, self.rng)
        draw = draw_outcome(
            candidates,
            self.state.last_drawn_value,
            self.rng,
            self.max_resample_attempts,
        )
        confidence = draw_confidence(self.rng, self.confidence_min, self.confidence_max)

        result = PredictionResult(
            value=draw.outcome.value,
            steps=draw.outcome.steps,
            confidence=confidence,
        )

        # With a single candidate there is nothing to avoid next time
        self.state.last_drawn_value = None if draw.candidate_count == 1 else draw.outcome.value
        self.state.usage_count += 1
        self.state.result = result
        self.state.phase = SessionPhase.REVEALED

        PREDICTIONS_DRAWN_TOTAL.labels(tier=tier.value, policy=self.policy.name).inc()
        logger.info(
            "Prediction revealed",
            extra={
                "data": {
                    "tier": tier.value,
                    "value": result.label,
                    "steps": result.steps,
                    "confidence": result.confidence,
                    "attempts": draw.attempts,
                    "usage_count": self.state.usage_count,
                    "remaining": self.remaining,
                }
            },
        )
        return result

    def next_round(self) -> SessionPhase:
        """Clear the revealed result and return to Idle.

        Raises:
            InvalidTransitionError: If not Revealed.
        """
        if self.state.phase is not SessionPhase.REVEALED:
            self._reject("next_round")
        self.state.result = None
        self.state.phase = SessionPhase.IDLE
        logger.info("Next round", extra={"data": {"remaining": self.remaining}})
        return self.state.phase

    def cancel_pending(self) -> SessionPhase:
        """Abandon a pending request without consuming quota.

        Raises:
            InvalidTransitionError: If not Pending.
        """
        if self.state.phase is not SessionPhase.PENDING:
            self._reject("cancel_pending")
        self.state.phase = SessionPhase.IDLE
        logger.info("Pending prediction cancelled", extra={"data": {"tier": self.state.tier.value}})
        return self.state.phase

    def acknowledge_lock_check(self) -> bool:
        """Lock the session if its quota is spent.

        Returns:
            True if the session is Locked after the check.

        Raises:
            InvalidTransitionError: If Pending or already Locked.
        """
        if self.state.phase not in (SessionPhase.IDLE, SessionPhase.REVEALED):
            self._reject("acknowledge_lock_check")
        if self.quota_exhausted:
            self._enter_locked("quota")
            return True
        return False

    def lock(self) -> SessionPhase:
        """Lock the session early, on the caller's initiative.

        Raises:
            InvalidTransitionError: If Pending.
        """
        if self.state.phase is SessionPhase.PENDING:
            self._reject("lock")
        if self.state.phase is not SessionPhase.LOCKED:
            self._enter_locked("elected")
        return self.state.phase

    # ─── External resets (deposit signal) ───

    def unlock(self) -> SessionPhase:
        """Clear the lock flag. A Locked session returns to Idle.

        Usage is not touched: if the quota is still spent, the next
        request locks the session again.

        Raises:
            InvalidTransitionError: If Pending.
        """
        if self.state.phase is SessionPhase.PENDING:
            self._reject("unlock")
        was_locked = self.state.locked
        self.state.locked = False
        if self.state.phase is SessionPhase.LOCKED:
            self.state.phase = SessionPhase.IDLE
        if was_locked:
            logger.info(
                "Session unlocked",
                extra={
                    "data": {"usage_count": self.state.usage_count, "remaining": self.remaining}
                },
            )
        return self.state.phase

    def reset_usage(self) -> int:
        """Reset usage_count to zero. The lock flag is not touched.

        Returns:
            The usage count before the reset.

        Raises:
            InvalidTransitionError: If Pending.
        """
        if self.state.phase is SessionPhase.PENDING:
            self._reject("reset_usage")
        before = self.state.usage_count
        self.state.usage_count = 0
        logger.info("Usage reset", extra={"data": {"usage_count_before": before}})
        return before

    # ─── Internals ───

    def _enter_locked(self, reason: str) -> None:
        self.state.locked = True
        self.state.result = None
        self.state.phase = SessionPhase.LOCKED
        SESSION_LOCKS_TOTAL.labels(reason=reason).inc()
        logger.warning(
            "Session locked",
            extra={
                "data": {
                    "reason": reason,
                    "usage_count": self.state.usage_count,
                    "usage_limit": self.state.usage_limit,
                }
            },
        )

    def _reject(self, event: str) -> None:
        phase = self.state.phase.value
        INVALID_TRANSITIONS_TOTAL.labels(event=event).inc()
        logger.warning(
            "Invalid transition rejected",
            extra={"data": {"event": event, "phase": phase}},
        )
        raise InvalidTransitionError(event, phase)
