"""
Session transcripts.

A finished session is archived as a markdown report in the study folder:

    <folder>/.sessions/session.2026-10-17-09-30.md

The report opens with a summary table and a rating distribution table
(read back by dck.study.metrics), followed by one section per reviewed card.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from dck.content.loader import DocumentLoader
from dck.integrations.evaluation import Evaluation
from dck.study.retention_engine import Rating

SESSIONS_DIR_NAME = ".sessions"

RATING_LABELS = {
    Rating.AGAIN: "Again (1/4)",
    Rating.HARD: "Hard (2/4)",
    Rating.GOOD: "Good (3/4)",
    Rating.EASY: "Easy (4/4)",
}


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class SessionCardRecord:
    """One rated card."""

    question_id: str
    source_file: str
    question: str
    user_answer: str
    expected_answer: str
    rating: Rating
    old_interval: int
    new_interval: int
    evaluation: Evaluation | None = None


@dataclass
class SessionSummary:
    """Totals for a finished session."""

    files: list[str]
    start: datetime
    end: datetime
    cards_reviewed: int = 0
    ratings: dict[str, int] = field(
        default_factory=lambda: {"again": 0, "hard": 0, "good": 0, "easy": 0}
    )

    @classmethod
    def from_records(
        cls, files: list[str], start: datetime, end: datetime, records: list[SessionCardRecord]
    ) -> SessionSummary:
        ratings = {rating.name.lower(): 0 for rating in Rating}
        for record in records:
            ratings[Rating(record.rating).name.lower()] += 1
        return cls(files=files, start=start, end=end, cards_reviewed=len(records), ratings=ratings)

    @property
    def duration_seconds(self) -> int:
        return max(0, int((self.end - self.start).total_seconds() + 0.5))

    @property
    def correct_count(self) -> int:
        return self.ratings["good"] + self.ratings["easy"]

    @property
    def incorrect_count(self) -> int:
        return self.ratings["again"] + self.ratings["hard"]

    @property
    def accuracy(self) -> float:
        """Share of Good/Easy ratings (0.0 - 1.0)."""
        if self.cards_reviewed == 0:
            return 0.0
        return self.correct_count / self.cards_reviewed


# =============================================================================
# Rendering
# =============================================================================


def _cell(text: str) -> str:
    return text.replace("|", "\\|").replace("\n", " ")


def _level(value: str) -> str:
    return value.replace("_", " ")


def _percent(count: int, total: int) -> str:
    return f"{(count / total * 100) if total else 0:.1f}%"


def _render_evaluation(ai: Evaluation) -> list[str]:
    lines = [
        "### AI Evaluation",
        "",
        f"**Overall Score:** {ai.overall_score:g}%",
        f"**Suggested Rating:** {ai.suggested_rating}/4",
        "",
        f"**Accuracy:** {_level(ai.accuracy.level)}",
    ]
    if ai.accuracy.explanation:
        lines.append(f"  {ai.accuracy.explanation}")

    lines += ["", f"**Completeness:** {_level(ai.completeness.level)}"]
    if ai.completeness.missing_points:
        lines.append("  Missing points:")
        lines += [f"  - {point}" for point in ai.completeness.missing_points]

    lines += ["", f"**Clarity:** {_level(ai.clarity.level)}"]
    if ai.clarity.suggestion:
        lines.append(f"  {ai.clarity.suggestion}")

    lines += ["", f"**Reasoning Quality:** {_level(ai.reasoning.level)}"]
    if ai.reasoning.explanation:
        lines.append(f"  {ai.reasoning.explanation}")

    lines += ["", f"**Answer Structure:** {_level(ai.structure.level)}"]
    if ai.structure.feedback:
        lines.append(f"  {ai.structure.feedback}")

    keywords = ai.keyword_analysis
    lines += ["", f"**Keyword Analysis ({keywords.keyword_score:g}%):**"]
    if keywords.found_keywords:
        lines.append(f"  Found: {', '.join(keywords.found_keywords)}")
    if keywords.missing_keywords:
        lines.append(f"  Missing: {', '.join(keywords.missing_keywords)}")
    lines.append("")

    if ai.improvements:
        lines.append("**Suggested Improvements:**")
        lines += [f"- {item}" for item in ai.improvements]
        lines.append("")

    if ai.strengths:
        lines.append("**Strengths:**")
        lines += [f"- {item}" for item in ai.strengths]
        lines.append("")

    return lines


def render_session_markdown(summary: SessionSummary, records: list[SessionCardRecord]) -> str:
    """Format a finished session as a markdown report."""
    started = summary.start.astimezone()
    total = summary.cards_reviewed

    lines = [
        f"# Flashcard Session - {started.strftime('%B %d, %Y at %I:%M %p')}",
        "",
        "## Session Summary",
        "",
        "| Metric | Value |",
        "|--------|-------|",
        f"| Files Reviewed | {_cell(', '.join(summary.files))} |",
        f"| Total Duration | {summary.duration_seconds}s |",
        f"| Cards Reviewed | {total} |",
        f"| Performance | {summary.correct_count} correct, {summary.incorrect_count} incorrect |",
        f"| Accuracy Rate | {summary.accuracy * 100:.1f}% |",
        "",
        "## Rating Distribution",
        "",
        "| Rating | Count | Percentage |",
        "|--------|-------|------------|",
    ]
    for rating in Rating:
        count = summary.ratings[rating.name.lower()]
        lines.append(f"| {RATING_LABELS[rating]} | {count} | {_percent(count, total)} |")
    lines += ["", "---", ""]

    for number, record in enumerate(records, start=1):
        lines += [
            f"## Card {number} - {record.source_file}",
            "",
            f"**Question:** {record.question}",
            "",
            "**Your Answer:**",
            record.user_answer if record.user_answer else "_(No answer provided)_",
            "",
        ]
        if record.evaluation is not None:
            lines += _render_evaluation(record.evaluation)

        rating = Rating(record.rating)
        lines += [
            "**Expected Answer:**",
            record.expected_answer,
            "",
            f"**Self-Rating:** [{int(rating)}] {RATING_LABELS[rating]}",
            f"**FSRS Interval:** {record.old_interval} days -> {record.new_interval} days",
            "",
            "---",
            "",
        ]

    return "\n".join(lines)


def session_filename(moment: datetime | None = None) -> str:
    """``session.YYYY-MM-DD-HH-MM.md`` for the given (local) time."""
    moment = moment or datetime.now()
    return f"session.{moment.strftime('%Y-%m-%d-%H-%M')}.md"


def save_session_transcript(
    folder: Path | str,
    summary: SessionSummary,
    records: list[SessionCardRecord],
    loader: DocumentLoader | None = None,
    sessions_dir_name: str = SESSIONS_DIR_NAME,
) -> Path:
    """
    Render and archive a session under ``<folder>/<sessions_dir_name>/``.

    A second session within the same minute gets a ``-2``, ``-3`` ... suffix.

    Raises:
        OSError: If the transcript cannot be written
    """
    loader = loader or DocumentLoader()
    sessions_dir = Path(folder) / sessions_dir_name
    name = session_filename(summary.start.astimezone())

    path = sessions_dir / name
    counter = 2
    while path.exists():
        path = sessions_dir / name.replace(".md", f"-{counter}.md")
        counter += 1

    return loader.write_text(path, render_session_markdown(summary, records))
