"""
Retention Engine - FSRS memory model for flashcard scheduling.

Implements the FSRS-4.5 forgetting curve:
- Retrievability R(t, S) = (1 + 19/81 * t / S) ^ -0.5
- Stability grows on successful recall, shrinks on a lapse
- Difficulty drifts with each rating and reverts towards its initial value

Cards move through New -> Learning -> Review, dropping to Relearning on a
lapse. Learning steps are minutes apart; Review intervals are whole days.

The scheduler is a pure function of (card, rating, now). It never touches
the card's review statistics (total reviews, streak); those belong to the
caller, see ``apply_rating_stats``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import IntEnum
from typing import Any

from loguru import logger


# =============================================================================
# FSRS-4.5 CONSTANTS
# =============================================================================

FSRS_PARAMS = {
    "w": [
        0.4072,   # w0: initial stability for Again
        1.1829,   # w1: initial stability for Hard
        3.1262,   # w2: initial stability for Good
        15.4722,  # w3: initial stability for Easy
        7.2102,   # w4: initial difficulty (Good)
        0.5316,   # w5: initial difficulty slope
        1.0651,   # w6: difficulty change per grade
        0.0234,   # w7: mean reversion weight
        1.616,    # w8: recall stability scale (exp)
        0.1544,   # w9: stability saturation
        1.0824,   # w10: retrievability gain
        1.9813,   # w11: forget stability scale
        0.0953,   # w12: forget difficulty exponent
        0.2975,   # w13: forget stability exponent
        2.2042,   # w14: forget retrievability gain
        0.2407,   # w15: hard penalty
        2.9466,   # w16: easy bonus
    ],
    "requestRetention": 0.90,
    "maximumInterval": 36500,
}

DECAY = -0.5
FACTOR = 19 / 81

S_MIN = 0.1
D_MIN = 1.0
D_MAX = 10.0

SECONDS_PER_DAY = 86400


class Rating(IntEnum):
    """Self-assessed recall quality."""

    AGAIN = 1
    HARD = 2
    GOOD = 3
    EASY = 4


class State(IntEnum):
    """Card maturity."""

    NEW = 0
    LEARNING = 1
    REVIEW = 2
    RELEARNING = 3


# Same-day steps for cards that have not graduated yet
NEW_STEPS = {
    Rating.AGAIN: timedelta(minutes=1),
    Rating.HARD: timedelta(minutes=5),
    Rating.GOOD: timedelta(minutes=10),
}
LEARNING_STEPS = {
    Rating.AGAIN: timedelta(minutes=5),
    Rating.HARD: timedelta(minutes=10),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None, default: datetime) -> datetime:
    """Return an aware UTC datetime, falling back to ``default``."""
    if not isinstance(value, datetime):
        return default
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def ceil_days(delta: timedelta) -> int:
    """Whole days for a time gap, rounded up. Used for every day count."""
    return math.ceil(delta.total_seconds() / SECONDS_PER_DAY)


# =============================================================================
# Card State
# =============================================================================


@dataclass
class CardState:
    """Scheduling state and review statistics for one question."""

    question_id: str
    question: str = ""
    stability: float = 0.0
    difficulty: float = 0.0
    elapsed_days: int = 0
    scheduled_days: int = 0
    reps: int = 0
    lapses: int = 0
    state: State = State.NEW
    last_review: datetime = field(default_factory=utcnow)
    due: datetime = field(default_factory=utcnow)
    # Stats (owned by the caller, not the scheduler)
    total_reviews: int = 0
    correct_streak: int = 0
    created_at: datetime = field(default_factory=utcnow)

    @classmethod
    def new(cls, question_id: str, question: str, now: datetime | None = None) -> CardState:
        """A card that has never been reviewed; due immediately."""
        now = ensure_utc(now, utcnow())
        return cls(
            question_id=question_id,
            question=question,
            state=State.NEW,
            last_review=now,
            due=now,
            created_at=now,
        )

    def retrievability(self, now: datetime) -> float:
        """Probability of recall at ``now`` (1.0 for unreviewed cards)."""
        if self.state == State.NEW or self.stability <= 0:
            return 1.0 if self.state == State.NEW else 0.0
        elapsed = max(0.0, (now - self.last_review).total_seconds() / SECONDS_PER_DAY)
        return forgetting_curve(elapsed, self.stability)


def is_due(card: CardState, now: datetime | None = None) -> bool:
    """A card is due once its due timestamp has passed."""
    now = ensure_utc(now, utcnow())
    return ensure_utc(card.due, now) <= now


def is_new(card: CardState) -> bool:
    return card.state == State.NEW


def days_until_due(card: CardState, now: datetime | None = None) -> int:
    """Days until the card is due, rounded up; zero or negative when due."""
    now = ensure_utc(now, utcnow())
    return ceil_days(ensure_utc(card.due, now) - now)


def forgetting_curve(elapsed_days: float, stability: float) -> float:
    return math.pow(1 + FACTOR * elapsed_days / stability, DECAY)


# =============================================================================
# Ratings and statistics
# =============================================================================


def parse_rating(value: Any) -> Rating:
    """
    Coerce user input into a Rating.

    Accepts Rating members, integers (clamped into 1..4) and names
    ("again", "hard", "good", "easy"). Anything else is treated as Again.
    """
    if isinstance(value, Rating):
        return value
    if isinstance(value, bool):
        logger.warning(f"Invalid rating {value!r}, treating as Again")
        return Rating.AGAIN
    if isinstance(value, int):
        return Rating(min(max(value, Rating.AGAIN), Rating.EASY))
    if isinstance(value, float) and math.isfinite(value):
        return parse_rating(int(round(value)))
    if isinstance(value, str):
        text = value.strip()
        if text.lstrip("-").isdigit():
            return parse_rating(int(text))
        try:
            return Rating[text.upper()]
        except KeyError:
            pass
    logger.warning(f"Invalid rating {value!r}, treating as Again")
    return Rating.AGAIN


def is_correct(rating: Rating) -> bool:
    return rating in (Rating.GOOD, Rating.EASY)


def apply_rating_stats(card: CardState, rating: Rating) -> CardState:
    """Update the caller-owned statistics for one rating."""
    return replace(
        card,
        total_reviews=max(0, card.total_reviews) + 1,
        correct_streak=max(0, card.correct_streak) + 1 if is_correct(rating) else 0,
    )


# =============================================================================
# Scheduler
# =============================================================================


class FSRSScheduler:
    """
    FSRS-4.5 Spaced Repetition Scheduler.

    Calculates the next memory state and due date for a rating.
    """

    def __init__(
        self,
        params: dict | None = None,
        request_retention: float | None = None,
        maximum_interval: int | None = None,
    ):
        self.params = params or FSRS_PARAMS
        self.w = self.params["w"]
        self.request_retention = request_retention or self.params["requestRetention"]
        self.max_interval = maximum_interval or self.params["maximumInterval"]

    def review(
        self,
        card: CardState,
        rating: Rating | int | str,
        now: datetime | None = None,
    ) -> CardState:
        """
        Apply a rating to a card.

        Args:
            card: Current state (not modified)
            rating: Again/Hard/Good/Easy, coerced with ``parse_rating``
            now: Review time (defaults to the current UTC time)

        Returns:
            New card state with reps, lapses, stability, difficulty,
            state and due updated. Statistics are left untouched.
        """
        grade = parse_rating(rating)
        now = ensure_utc(now, utcnow())
        card = self.sanitize(card, now)

        if card.state == State.NEW:
            elapsed_days = 0
        else:
            elapsed_days = max(0, ceil_days(now - card.last_review))

        if card.state == State.NEW:
            next_card = self._review_new(card, grade, now)
        elif card.state in (State.LEARNING, State.RELEARNING):
            next_card = self._review_learning(card, grade, now)
        else:
            next_card = self._review_mature(card, grade, now)

        next_card.reps = card.reps + 1
        next_card.lapses = card.lapses + (1 if grade == Rating.AGAIN else 0)
        next_card.elapsed_days = elapsed_days
        next_card.last_review = now

        logger.debug(
            f"{card.question_id}: {card.state.name} --{grade.name}--> "
            f"{next_card.state.name} (S={next_card.stability:.2f}, "
            f"D={next_card.difficulty:.2f}, due in {next_card.scheduled_days}d)"
        )
        return next_card

    def sanitize(self, card: CardState, now: datetime) -> CardState:
        """Clamp corrupt values to safe defaults instead of failing."""
        try:
            state = State(card.state)
        except ValueError:
            state = State.NEW if card.reps <= 0 else State.REVIEW
            logger.warning(f"{card.question_id}: unknown state {card.state!r}, using {state.name}")

        stability = _finite(card.stability, 0.0)
        difficulty = _finite(card.difficulty, 0.0)
        if state != State.NEW:
            stability = max(S_MIN, stability)
            difficulty = self._clamp_difficulty(difficulty or self._initial_difficulty(Rating.GOOD))
        else:
            stability = max(0.0, stability)

        return replace(
            card,
            state=state,
            stability=stability,
            difficulty=difficulty,
            elapsed_days=max(0, _int(card.elapsed_days)),
            scheduled_days=max(0, _int(card.scheduled_days)),
            reps=max(0, _int(card.reps)),
            lapses=max(0, _int(card.lapses)),
            total_reviews=max(0, _int(card.total_reviews)),
            correct_streak=max(0, _int(card.correct_streak)),
            last_review=min(ensure_utc(card.last_review, now), now),
            due=ensure_utc(card.due, now),
            created_at=ensure_utc(card.created_at, now),
        )

    # =========================================================================
    # State transitions
    # =========================================================================

    def _review_new(self, card: CardState, grade: Rating, now: datetime) -> CardState:
        stability = self._initial_stability(grade)
        difficulty = self._initial_difficulty(grade)

        if grade == Rating.EASY:
            interval = self._next_interval(stability)
            return self._scheduled(card, State.REVIEW, stability, difficulty, interval, now)

        return self._stepped(card, State.LEARNING, stability, difficulty, NEW_STEPS[grade], now)

    def _review_learning(self, card: CardState, grade: Rating, now: datetime) -> CardState:
        difficulty = self._next_difficulty(card.difficulty, grade)

        if grade in LEARNING_STEPS:
            return self._stepped(card, card.state, card.stability, difficulty, LEARNING_STEPS[grade], now)

        r = card.retrievability(now)
        good_stability = self._next_recall_stability(card.difficulty, card.stability, r, Rating.GOOD)
        good_interval = self._next_interval(good_stability)

        if grade == Rating.GOOD:
            return self._scheduled(card, State.REVIEW, good_stability, difficulty, good_interval, now)

        easy_stability = self._next_recall_stability(card.difficulty, card.stability, r, Rating.EASY)
        easy_interval = max(self._next_interval(easy_stability), good_interval + 1)
        return self._scheduled(card, State.REVIEW, easy_stability, difficulty, easy_interval, now)

    def _review_mature(self, card: CardState, grade: Rating, now: datetime) -> CardState:
        d, s = card.difficulty, card.stability
        r = card.retrievability(now)
        difficulty = self._next_difficulty(d, grade)

        if grade == Rating.AGAIN:
            stability = self._next_forget_stability(d, s, r)
            return self._stepped(card, State.RELEARNING, stability, difficulty, LEARNING_STEPS[grade], now)

        stabilities = {
            g: self._next_recall_stability(d, s, r, g)
            for g in (Rating.HARD, Rating.GOOD, Rating.EASY)
        }
        hard_interval = self._next_interval(stabilities[Rating.HARD])
        good_interval = self._next_interval(stabilities[Rating.GOOD])
        hard_interval = min(hard_interval, good_interval)
        good_interval = max(good_interval, hard_interval + 1)
        easy_interval = max(self._next_interval(stabilities[Rating.EASY]), good_interval + 1)

        interval = {
            Rating.HARD: hard_interval,
            Rating.GOOD: good_interval,
            Rating.EASY: easy_interval,
        }[grade]
        return self._scheduled(card, State.REVIEW, stabilities[grade], difficulty, interval, now)

    def _stepped(
        self, card: CardState, state: State, stability: float, difficulty: float,
        step: timedelta, now: datetime,
    ) -> CardState:
        return replace(
            card, state=state, stability=stability, difficulty=difficulty,
            scheduled_days=0, due=now + step,
        )

    def _scheduled(
        self, card: CardState, state: State, stability: float, difficulty: float,
        interval: int, now: datetime,
    ) -> CardState:
        return replace(
            card, state=state, stability=stability, difficulty=difficulty,
            scheduled_days=interval, due=now + timedelta(days=interval),
        )

    # =========================================================================
    # Memory model
    # =========================================================================

    def _initial_stability(self, grade: Rating) -> float:
        """Initial stability based on first review grade."""
        return max(self.w[grade - 1], S_MIN)

    def _initial_difficulty(self, grade: Rating) -> float:
        """Initial difficulty based on first review grade."""
        return self._clamp_difficulty(self.w[4] - self.w[5] * (grade - 3))

    def _next_difficulty(self, d: float, grade: Rating) -> float:
        """Shift difficulty by grade, then revert towards the Good default."""
        shifted = d - self.w[6] * (grade - 3)
        reverted = self.w[7] * self._initial_difficulty(Rating.GOOD) + (1 - self.w[7]) * shifted
        return self._clamp_difficulty(reverted)

    def _next_recall_stability(self, d: float, s: float, r: float, grade: Rating) -> float:
        """Calculate new stability after successful recall."""
        hard_penalty = self.w[15] if grade == Rating.HARD else 1.0
        easy_bonus = self.w[16] if grade == Rating.EASY else 1.0

        new_s = s * (
            1 + math.exp(self.w[8]) *
            (11 - d) *
            math.pow(s, -self.w[9]) *
            (math.exp((1 - r) * self.w[10]) - 1) *
            hard_penalty *
            easy_bonus
        )
        # Successful recall never lowers stability
        return max(s, new_s)

    def _next_forget_stability(self, d: float, s: float, r: float) -> float:
        """Calculate new stability after forgetting."""
        new_s = self.w[11] * math.pow(d, -self.w[12]) * (
            math.pow(s + 1, self.w[13]) - 1
        ) * math.exp((1 - r) * self.w[14])

        return max(S_MIN, min(s, new_s))

    def _next_interval(self, stability: float) -> int:
        """Convert stability to whole days (rounded up) at the requested retention."""
        interval = stability / FACTOR * (math.pow(self.request_retention, 1 / DECAY) - 1)
        # Float noise trimmed before rounding up
        return max(1, min(self.max_interval, math.ceil(round(interval, 6))))

    @staticmethod
    def _clamp_difficulty(d: float) -> float:
        return max(D_MIN, min(D_MAX, d))


def _finite(value: Any, default: float) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        return default
    return value if math.isfinite(value) else default


def _int(value: Any) -> int:
    return int(_finite(value, 0.0))


_default_scheduler = FSRSScheduler()


def review(card: CardState, rating: Rating | int | str, now: datetime | None = None) -> CardState:
    """Apply a rating with the default FSRS parameters."""
    return _default_scheduler.review(card, rating, now)
