"""
Unit tests for the FSRS retention engine.
"""
from datetime import timedelta

import pytest

from dck.study.retention_engine import (
    D_MAX,
    FSRS_PARAMS,
    S_MIN,
    CardState,
    FSRSScheduler,
    Rating,
    State,
    apply_rating_stats,
    ceil_days,
    days_until_due,
    is_due,
    is_new,
    parse_rating,
    review,
)

W = FSRS_PARAMS["w"]


@pytest.fixture
def scheduler():
    return FSRSScheduler()


@pytest.fixture
def new_card(now):
    return CardState.new("q_test", "What is TCP?", now)


@pytest.fixture
def mature_card(now):
    """A card in Review, last seen ten days ago and due now."""
    return CardState(
        question_id="q_mature",
        question="What is UDP?",
        stability=10.0,
        difficulty=5.0,
        scheduled_days=10,
        reps=4,
        lapses=0,
        state=State.REVIEW,
        last_review=now - timedelta(days=10),
        due=now,
        created_at=now - timedelta(days=30),
    )


class TestNewCards:
    """First review of a card."""

    def test_fresh_card_is_due_immediately(self, new_card, now):
        assert new_card.due == new_card.created_at == now
        assert is_due(new_card, now)
        assert is_new(new_card)
        assert new_card.retrievability(now) == 1.0

    @pytest.mark.parametrize(
        "rating,minutes",
        [(Rating.AGAIN, 1), (Rating.HARD, 5), (Rating.GOOD, 10)],
    )
    def test_learning_steps(self, scheduler, new_card, now, rating, minutes):
        card = scheduler.review(new_card, rating, now)

        assert card.state == State.LEARNING
        assert card.due == now + timedelta(minutes=minutes)
        assert card.scheduled_days == 0
        assert card.stability == pytest.approx(W[rating - 1])

    def test_initial_difficulty_by_grade(self, scheduler, new_card, now):
        good = scheduler.review(new_card, Rating.GOOD, now)
        again = scheduler.review(new_card, Rating.AGAIN, now)

        assert good.difficulty == pytest.approx(W[4])
        assert again.difficulty == pytest.approx(W[4] + 2 * W[5])

    def test_easy_graduates(self, scheduler, new_card, now):
        card = scheduler.review(new_card, Rating.EASY, now)

        assert card.state == State.REVIEW
        # At 90% retention the interval equals the stability, rounded up
        assert card.scheduled_days == 16
        assert card.due == now + timedelta(days=16)

    def test_first_review_counters(self, scheduler, new_card, now):
        card = scheduler.review(new_card, Rating.AGAIN, now)

        assert card.reps == 1
        assert card.lapses == 1
        assert card.elapsed_days == 0
        assert card.last_review == now

    def test_input_card_not_modified(self, scheduler, new_card, now):
        scheduler.review(new_card, Rating.GOOD, now)
        assert new_card.state == State.NEW
        assert new_card.reps == 0


class TestLearningCards:

    @pytest.fixture
    def learning_card(self, scheduler, new_card, now):
        return scheduler.review(new_card, Rating.GOOD, now)

    def test_good_graduates(self, scheduler, learning_card, now):
        later = now + timedelta(minutes=10)
        card = scheduler.review(learning_card, Rating.GOOD, later)

        assert card.state == State.REVIEW
        assert card.scheduled_days >= 1
        assert card.due == later + timedelta(days=card.scheduled_days)
        assert card.stability >= learning_card.stability

    def test_again_stays_in_learning(self, scheduler, learning_card, now):
        later = now + timedelta(minutes=10)
        card = scheduler.review(learning_card, Rating.AGAIN, later)

        assert card.state == State.LEARNING
        assert card.due == later + timedelta(minutes=5)
        assert card.lapses == 1

    def test_easy_beats_good(self, scheduler, learning_card, now):
        later = now + timedelta(minutes=10)
        good = scheduler.review(learning_card, Rating.GOOD, later)
        easy = scheduler.review(learning_card, Rating.EASY, later)

        assert easy.state == State.REVIEW
        assert easy.scheduled_days > good.scheduled_days


class TestReviewCards:

    def test_retrievability_at_stability(self, mature_card, now):
        # R(t=S) = (1 + 19/81) ** -0.5 = 0.9
        assert mature_card.retrievability(now) == pytest.approx(0.9)

    def test_lapse(self, scheduler, mature_card, now):
        card = scheduler.review(mature_card, Rating.AGAIN, now)

        assert card.state == State.RELEARNING
        assert card.lapses == 1
        assert card.due == now + timedelta(minutes=5)
        assert S_MIN <= card.stability <= mature_card.stability

    def test_interval_ordering(self, scheduler, mature_card, now):
        hard = scheduler.review(mature_card, Rating.HARD, now)
        good = scheduler.review(mature_card, Rating.GOOD, now)
        easy = scheduler.review(mature_card, Rating.EASY, now)

        assert hard.scheduled_days <= good.scheduled_days < easy.scheduled_days
        assert mature_card.stability <= hard.stability <= good.stability <= easy.stability

    def test_elapsed_days_rounds_up(self, scheduler, mature_card, now):
        mature_card.last_review = now - timedelta(days=1, hours=5)
        card = scheduler.review(mature_card, Rating.GOOD, now)
        assert card.elapsed_days == 2

    def test_difficulty_moves_with_grade(self, scheduler, mature_card, now):
        again = scheduler.review(mature_card, Rating.AGAIN, now)
        easy = scheduler.review(mature_card, Rating.EASY, now)
        assert again.difficulty > mature_card.difficulty > easy.difficulty

    def test_maximum_interval(self, mature_card, now):
        scheduler = FSRSScheduler(maximum_interval=10)
        mature_card.stability = 1000.0

        card = scheduler.review(mature_card, Rating.GOOD, now)

        assert card.scheduled_days == 10

    def test_lower_retention_gives_longer_intervals(self, new_card, now):
        default = FSRSScheduler().review(new_card, Rating.EASY, now)
        relaxed = FSRSScheduler(request_retention=0.8).review(new_card, Rating.EASY, now)
        assert relaxed.scheduled_days > default.scheduled_days


class TestMonotonicity:
    """reps always grows by one; lapses only on Again."""

    def test_review_sequence(self, scheduler, new_card, now):
        card = new_card
        moment = now
        for rating in [Rating.GOOD, Rating.AGAIN, Rating.HARD, Rating.GOOD, Rating.EASY, Rating.AGAIN]:
            moment = max(moment, card.due)
            updated = scheduler.review(card, rating, moment)

            assert updated.reps == card.reps + 1
            expected_lapses = card.lapses + (1 if rating == Rating.AGAIN else 0)
            assert updated.lapses == expected_lapses
            card = updated

    def test_module_level_review(self, new_card, now):
        card = review(new_card, "good", now)
        assert card.reps == 1
        assert card.state == State.LEARNING


class TestSanitize:
    """Corrupt state is clamped instead of failing."""

    def test_non_finite_values(self, scheduler, mature_card, now):
        mature_card.stability = float("nan")
        mature_card.difficulty = 50.0

        card = scheduler.sanitize(mature_card, now)

        assert card.stability == S_MIN
        assert card.difficulty == D_MAX

    def test_unknown_state(self, scheduler, mature_card, now):
        mature_card.state = 7
        card = scheduler.sanitize(mature_card, now)
        assert card.state == State.REVIEW

    def test_corrupt_card_still_reviews(self, scheduler, mature_card, now):
        mature_card.stability = -3.0
        mature_card.reps = -2
        card = scheduler.review(mature_card, Rating.GOOD, now)

        assert card.reps == 1
        assert card.stability >= S_MIN


class TestRatings:

    @pytest.mark.parametrize(
        "value,expected",
        [
            (Rating.HARD, Rating.HARD),
            (3, Rating.GOOD),
            (9, Rating.EASY),
            (0, Rating.AGAIN),
            (2.6, Rating.GOOD),
            ("4", Rating.EASY),
            ("easy", Rating.EASY),
            (" Hard ", Rating.HARD),
            ("bogus", Rating.AGAIN),
            (None, Rating.AGAIN),
            (True, Rating.AGAIN),
        ],
    )
    def test_parse_rating(self, value, expected):
        assert parse_rating(value) == expected

    def test_stats_on_correct(self, new_card):
        card = apply_rating_stats(new_card, Rating.GOOD)
        card = apply_rating_stats(card, Rating.EASY)

        assert card.total_reviews == 2
        assert card.correct_streak == 2

    def test_stats_reset_streak(self, new_card):
        card = apply_rating_stats(new_card, Rating.GOOD)
        card = apply_rating_stats(card, Rating.HARD)

        assert card.total_reviews == 2
        assert card.correct_streak == 0


class TestDueDates:

    def test_due_is_inclusive(self, new_card, now):
        assert is_due(new_card, now)
        assert not is_due(new_card, now - timedelta(seconds=1))

    def test_days_until_due_rounds_up(self, new_card, now):
        new_card.due = now + timedelta(hours=5)
        assert days_until_due(new_card, now) == 1

        new_card.due = now + timedelta(days=1, minutes=1)
        assert days_until_due(new_card, now) == 2

    def test_overdue_is_not_positive(self, new_card, now):
        new_card.due = now - timedelta(days=3)
        assert days_until_due(new_card, now) <= 0

    def test_ceil_days(self):
        assert ceil_days(timedelta(0)) == 0
        assert ceil_days(timedelta(seconds=1)) == 1
        assert ceil_days(timedelta(days=2)) == 2
