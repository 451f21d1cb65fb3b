"""
Study metrics.

Two sources:
- Card state: per-document counts by state, due counts, difficulty, and
  their sums across documents (retention = review cards / all cards).
- Session history: the summary tables of archived transcripts, rolled up
  into totals, rating percentages, consistency and an accuracy trend.
"""

from __future__ import annotations

import csv
import io
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

from loguru import logger

from dck.study.retention_engine import State, days_until_due, ensure_utc, is_due, is_new, utcnow

if TYPE_CHECKING:
    from dck.delivery.state_store import ReconciledCard

CONSISTENCY_WINDOW_DAYS = 7
TREND_THRESHOLD = 5


# =============================================================================
# Card state metrics
# =============================================================================


@dataclass
class DocumentMetrics:
    """Card statistics for one document."""

    name: str
    total_cards: int = 0
    new_cards: int = 0
    learning_cards: int = 0
    review_cards: int = 0
    due_count: int = 0
    due_today: int = 0
    due_this_week: int = 0
    total_reviews: int = 0
    avg_difficulty: float = 0.0

    @property
    def new_count(self) -> int:
        return self.new_cards


@dataclass
class OverallMetrics:
    """Card statistics summed across documents."""

    documents: list[DocumentMetrics] = field(default_factory=list)
    total_cards: int = 0
    new_cards: int = 0
    learning_cards: int = 0
    review_cards: int = 0
    due_count: int = 0
    due_today: int = 0
    due_this_week: int = 0
    total_reviews: int = 0

    @property
    def new_count(self) -> int:
        return self.new_cards

    @property
    def retention_rate(self) -> float:
        """Percentage of cards in the Review state."""
        if self.total_cards == 0:
            return 0.0
        return self.review_cards / self.total_cards * 100


def document_metrics(
    name: str, reconciled: Iterable[ReconciledCard], now: datetime | None = None
) -> DocumentMetrics:
    """
    Compute statistics for one document's reconciled cards.

    Average difficulty only counts cards that have been reviewed, since a
    new card has no difficulty yet.
    """
    now = ensure_utc(now, utcnow())
    metrics = DocumentMetrics(name=name)
    difficulty_sum = 0.0
    rated = 0

    for item in reconciled:
        card = item.card
        metrics.total_cards += 1
        metrics.total_reviews += card.total_reviews

        if card.state == State.NEW:
            metrics.new_cards += 1
        elif card.state in (State.LEARNING, State.RELEARNING):
            metrics.learning_cards += 1
        else:
            metrics.review_cards += 1

        if not is_new(card):
            difficulty_sum += card.difficulty
            rated += 1

        days = days_until_due(card, now)
        if is_due(card, now):
            metrics.due_count += 1
        if days <= 0:
            metrics.due_today += 1
        if days <= 7:
            metrics.due_this_week += 1

    metrics.avg_difficulty = difficulty_sum / rated if rated else 0.0
    return metrics


def aggregate(documents: Iterable[DocumentMetrics]) -> OverallMetrics:
    """Sum per-document metrics."""
    overall = OverallMetrics()
    for doc in documents:
        overall.documents.append(doc)
        overall.total_cards += doc.total_cards
        overall.new_cards += doc.new_cards
        overall.learning_cards += doc.learning_cards
        overall.review_cards += doc.review_cards
        overall.due_count += doc.due_count
        overall.due_today += doc.due_today
        overall.due_this_week += doc.due_this_week
        overall.total_reviews += doc.total_reviews
    return overall


# =============================================================================
# Session history metrics
# =============================================================================

FILENAME_PATTERN = re.compile(r"session\.(\d{4})-(\d{2})-(\d{2})-(\d{2})-(\d{2})")
DURATION_PATTERN = re.compile(r"\|\s*Total Duration\s*\|\s*(\d+)s?\s*\|", re.IGNORECASE)
CARDS_PATTERN = re.compile(r"\|\s*Cards Reviewed\s*\|\s*(\d+)\s*\|", re.IGNORECASE)
ACCURACY_PATTERN = re.compile(r"\|\s*Accuracy Rate\s*\|\s*([\d.]+)%\s*\|", re.IGNORECASE)
AI_SECTION_PATTERN = re.compile(r"^### AI Evaluation", re.MULTILINE)


def _rating_pattern(label: str) -> re.Pattern:
    return re.compile(rf"\|\s*{label}[^|]*\|\s*(\d+)\s*\|\s*([\d.]+)%\s*\|", re.IGNORECASE)


RATING_PATTERNS = {name: _rating_pattern(name) for name in ("again", "hard", "good", "easy")}


@dataclass
class SessionMetrics:
    """Figures read back from one session transcript."""

    session_date: str
    session_time: str
    cards_reviewed: int = 0
    duration: int = 0
    avg_time_per_card: int = 0
    again_count: int = 0
    hard_count: int = 0
    good_count: int = 0
    easy_count: int = 0
    ai_usage_count: int = 0
    accuracy_rate: float = 0.0


@dataclass
class HistoryMetrics:
    """Roll-up of all archived sessions."""

    total_sessions: int = 0
    total_cards_reviewed: int = 0
    total_study_time: int = 0
    avg_time_per_card: int = 0
    avg_session_duration: int = 0
    avg_cards_per_session: int = 0
    total_again: int = 0
    total_hard: int = 0
    total_good: int = 0
    total_easy: int = 0
    again_percentage: int = 0
    hard_percentage: int = 0
    good_percentage: int = 0
    easy_percentage: int = 0
    total_ai_usage: int = 0
    ai_usage_rate: int = 0
    study_days_count: int = 0
    avg_sessions_per_day: float = 0.0
    consistency_score: int = 0
    overall_accuracy: int = 0
    improvement_trend: str = "stable"


def _round(value: float) -> int:
    return int(value + 0.5) if value >= 0 else -int(-value + 0.5)


def parse_session_file(content: str, filename: str) -> SessionMetrics | None:
    """
    Read the summary tables of a transcript.

    Returns:
        Metrics, or None if the filename does not follow the session naming
    """
    match = FILENAME_PATTERN.search(filename)
    if not match:
        return None

    year, month, day, hour, minute = match.groups()
    # Only the header tables; card sections may contain arbitrary text
    header = content.split("\n---", 1)[0]

    def first_int(pattern: re.Pattern) -> int:
        found = pattern.search(header)
        return int(found.group(1)) if found else 0

    cards = first_int(CARDS_PATTERN)
    duration = first_int(DURATION_PATTERN)
    accuracy = ACCURACY_PATTERN.search(header)

    return SessionMetrics(
        session_date=f"{year}-{month}-{day}",
        session_time=f"{hour}:{minute}",
        cards_reviewed=cards,
        duration=duration,
        avg_time_per_card=_round(duration / cards) if cards else 0,
        again_count=first_int(RATING_PATTERNS["again"]),
        hard_count=first_int(RATING_PATTERNS["hard"]),
        good_count=first_int(RATING_PATTERNS["good"]),
        easy_count=first_int(RATING_PATTERNS["easy"]),
        ai_usage_count=len(AI_SECTION_PATTERN.findall(content)),
        accuracy_rate=float(accuracy.group(1)) if accuracy else 0.0,
    )


def calculate_trend(sessions: list[SessionMetrics]) -> str:
    """Compare mean accuracy of the first and last third of sessions."""
    if len(sessions) < 3:
        return "insufficient data"

    ordered = sorted(sessions, key=lambda s: (s.session_date, s.session_time))
    third = len(ordered) // 3
    first = ordered[:third]
    last = ordered[-third:]

    difference = (
        sum(s.accuracy_rate for s in last) / len(last)
        - sum(s.accuracy_rate for s in first) / len(first)
    )
    if difference > TREND_THRESHOLD:
        return "improving"
    if difference < -TREND_THRESHOLD:
        return "declining"
    return "stable"


def calculate_overall_metrics(sessions: list[SessionMetrics]) -> HistoryMetrics:
    if not sessions:
        return HistoryMetrics()

    total_sessions = len(sessions)
    total_cards = sum(s.cards_reviewed for s in sessions)
    total_time = sum(s.duration for s in sessions)
    totals = {
        "again": sum(s.again_count for s in sessions),
        "hard": sum(s.hard_count for s in sessions),
        "good": sum(s.good_count for s in sessions),
        "easy": sum(s.easy_count for s in sessions),
    }
    total_ratings = sum(totals.values())
    total_ai = sum(s.ai_usage_count for s in sessions)

    def pct(part: int, whole: int) -> int:
        return _round(part / whole * 100) if whole else 0

    study_days = len({s.session_date for s in sessions})
    with_accuracy = [s for s in sessions if s.accuracy_rate > 0]

    return HistoryMetrics(
        total_sessions=total_sessions,
        total_cards_reviewed=total_cards,
        total_study_time=total_time,
        avg_time_per_card=_round(total_time / total_cards) if total_cards else 0,
        avg_session_duration=_round(total_time / total_sessions),
        avg_cards_per_session=_round(total_cards / total_sessions),
        total_again=totals["again"],
        total_hard=totals["hard"],
        total_good=totals["good"],
        total_easy=totals["easy"],
        again_percentage=pct(totals["again"], total_ratings),
        hard_percentage=pct(totals["hard"], total_ratings),
        good_percentage=pct(totals["good"], total_ratings),
        easy_percentage=pct(totals["easy"], total_ratings),
        total_ai_usage=total_ai,
        ai_usage_rate=pct(total_ai, total_cards),
        study_days_count=study_days,
        avg_sessions_per_day=round(total_sessions / study_days, 2) if study_days else 0.0,
        consistency_score=min(100, pct(study_days, CONSISTENCY_WINDOW_DAYS)),
        overall_accuracy=(
            _round(sum(s.accuracy_rate for s in with_accuracy) / len(with_accuracy))
            if with_accuracy
            else 0
        ),
        improvement_trend=calculate_trend(sessions),
    )


def format_duration(seconds: int) -> str:
    """H:MM:SS, or M:SS under an hour."""
    hours, remainder = divmod(int(seconds), 3600)
    minutes, secs = divmod(remainder, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def load_session_history(folder: Path | str, sessions_dir_name: str = ".sessions") -> list[SessionMetrics]:
    """
    Parse every transcript in ``<folder>/.sessions``, newest first.

    Unreadable files are skipped with a warning.
    """
    sessions_dir = Path(folder) / sessions_dir_name
    if not sessions_dir.is_dir():
        return []

    sessions = []
    for path in sessions_dir.glob("session.*.md"):
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Failed to read session file {path}: {e}")
            continue
        metrics = parse_session_file(content, path.name)
        if metrics:
            sessions.append(metrics)

    sessions.sort(key=lambda s: (s.session_date, s.session_time), reverse=True)
    return sessions


# =============================================================================
# CSV export
# =============================================================================


def _to_csv(rows: list[list]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerows(rows)
    return buffer.getvalue()


def generate_summary_csv(metrics: HistoryMetrics) -> str:
    rows = [
        ["Metric", "Value"],
        ["Total Sessions", metrics.total_sessions],
        ["Total Cards Reviewed", metrics.total_cards_reviewed],
        ["Total Study Time (seconds)", metrics.total_study_time],
        ["Total Study Time (formatted)", format_duration(metrics.total_study_time)],
        ["Average Time Per Card (seconds)", metrics.avg_time_per_card],
        ["Average Session Duration (seconds)", metrics.avg_session_duration],
        ["Average Cards Per Session", metrics.avg_cards_per_session],
        [],
        ["Rating Distribution", ""],
        ['Total "Again" Ratings', f"{metrics.total_again} ({metrics.again_percentage}%)"],
        ['Total "Hard" Ratings', f"{metrics.total_hard} ({metrics.hard_percentage}%)"],
        ['Total "Good" Ratings', f"{metrics.total_good} ({metrics.good_percentage}%)"],
        ['Total "Easy" Ratings', f"{metrics.total_easy} ({metrics.easy_percentage}%)"],
        [],
        ["AI Evaluation Usage", ""],
        ["Total AI Evaluations", metrics.total_ai_usage],
        ["AI Usage Rate", f"{metrics.ai_usage_rate}%"],
        [],
        ["Study Consistency", ""],
        ["Study Days Count", metrics.study_days_count],
        ["Average Sessions Per Day", metrics.avg_sessions_per_day],
        ["Consistency Score (0-100)", metrics.consistency_score],
        [],
        ["Performance", ""],
        ["Overall Accuracy Rate", f"{metrics.overall_accuracy}%"],
        ["Improvement Trend", metrics.improvement_trend],
    ]
    return _to_csv(rows)


def generate_sessions_csv(sessions: list[SessionMetrics]) -> str:
    rows: list[list] = [[
        "Date",
        "Time",
        "Cards Reviewed",
        "Duration (seconds)",
        "Avg Time Per Card (seconds)",
        "Again",
        "Hard",
        "Good",
        "Easy",
        "AI Usage Count",
        "Accuracy Rate (%)",
    ]]
    for s in sessions:
        rows.append([
            s.session_date,
            s.session_time,
            s.cards_reviewed,
            s.duration,
            s.avg_time_per_card,
            s.again_count,
            s.hard_count,
            s.good_count,
            s.easy_count,
            s.ai_usage_count,
            s.accuracy_rate,
        ])
    return _to_csv(rows)
