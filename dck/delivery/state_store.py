"""
Card State Store for dck.

Persists FSRS state per question in a sidecar file next to each document:

    notes/networking.md
    notes/networking.flashcard    <- {"sourceFile": ..., "cards": [...]}

Every write replaces the whole sidecar atomically (temp file + rename), so a
crash mid-write never leaves a document's other cards corrupted. A card file
that exists but cannot be read is never overwritten. Failures are reported
as ``False`` and logged; the store never retries.
"""

from __future__ import annotations

import json
import math
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable

from loguru import logger

from dck.content.loader import DocumentLoader
from dck.content.parser import Question, QuestionExtractor, find_duplicate_ids
from dck.study.retention_engine import (
    CardState,
    State,
    days_until_due,
    ensure_utc,
    is_due,
    is_new,
    utcnow,
)

DEFAULT_SIDECAR_SUFFIX = ".flashcard"


class CardReadError(Exception):
    """Raised when a card file exists but cannot be read or parsed."""


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class ReconciledCard:
    """A parsed question paired with its (stored or fresh) card state."""

    question: Question
    card: CardState

    @property
    def question_id(self) -> str:
        return self.question.question_id

    @property
    def source_file(self) -> str:
        return self.question.source_file

    @property
    def difficulty(self) -> float:
        return self.card.difficulty

    def is_due(self, now: datetime | None = None) -> bool:
        return is_due(self.card, now)

    def is_new(self) -> bool:
        return is_new(self.card)

    def days_until_due(self, now: datetime | None = None) -> int:
        return days_until_due(self.card, now)


# =============================================================================
# Serialization
# =============================================================================


def format_timestamp(value: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision and a Z suffix."""
    value = ensure_utc(value, utcnow())
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Any, default: datetime) -> datetime:
    """Parse an ISO-8601 string; unparseable values fall back to ``default``."""
    if isinstance(value, datetime):
        return ensure_utc(value, default)
    if not isinstance(value, str) or not value.strip():
        return default
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return ensure_utc(datetime.fromisoformat(text), default)
    except ValueError:
        return default


def card_to_dict(card: CardState) -> dict[str, Any]:
    """Convert to the sidecar JSON layout."""
    return {
        "questionId": card.question_id,
        "question": card.question,
        "fsrs": {
            "stability": card.stability,
            "difficulty": card.difficulty,
            "elapsed_days": card.elapsed_days,
            "scheduled_days": card.scheduled_days,
            "reps": card.reps,
            "lapses": card.lapses,
            "state": int(card.state),
            "last_review": format_timestamp(card.last_review),
            "due": format_timestamp(card.due),
        },
        "stats": {
            "totalReviews": card.total_reviews,
            "correctStreak": card.correct_streak,
            "createdAt": format_timestamp(card.created_at),
        },
    }


def card_from_dict(data: dict[str, Any], now: datetime | None = None) -> CardState:
    """
    Create from the sidecar JSON layout.

    Missing or malformed fields are replaced by defaults so one corrupt
    card never blocks loading the rest.
    """
    now = ensure_utc(now, utcnow())
    fsrs = data.get("fsrs") if isinstance(data.get("fsrs"), dict) else {}
    stats = data.get("stats") if isinstance(data.get("stats"), dict) else {}

    reps = _count(fsrs.get("reps"))
    try:
        state = State(int(fsrs.get("state", State.NEW)))
    except (TypeError, ValueError):
        state = _state_from_name(fsrs.get("state"), reps)

    return CardState(
        question_id=str(data["questionId"]),
        question=str(data.get("question", "")),
        stability=_number(fsrs.get("stability")),
        difficulty=_number(fsrs.get("difficulty")),
        elapsed_days=_count(fsrs.get("elapsed_days")),
        scheduled_days=_count(fsrs.get("scheduled_days")),
        reps=reps,
        lapses=_count(fsrs.get("lapses")),
        state=state,
        last_review=parse_timestamp(fsrs.get("last_review"), now),
        due=parse_timestamp(fsrs.get("due"), now),
        total_reviews=_count(stats.get("totalReviews")),
        correct_streak=_count(stats.get("correctStreak")),
        created_at=parse_timestamp(stats.get("createdAt"), now),
    )


def _number(value: Any) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        return 0.0
    return value if math.isfinite(value) and value >= 0 else 0.0


def _count(value: Any) -> int:
    return int(_number(value))


def _state_from_name(value: Any, reps: int) -> State:
    if isinstance(value, str) and value.strip().upper() in State.__members__:
        return State[value.strip().upper()]
    return State.NEW if reps == 0 else State.REVIEW


# =============================================================================
# Reconciliation
# =============================================================================


def reconcile(
    questions: Iterable[Question],
    persisted_cards: Iterable[CardState],
    now: datetime | None = None,
) -> list[ReconciledCard]:
    """
    Pair each question with its stored card, creating New cards for misses.

    Output follows the order of ``questions``.
    """
    now = ensure_utc(now, utcnow())
    by_id: dict[str, CardState] = {}
    for card in persisted_cards:
        by_id.setdefault(card.question_id, card)

    reconciled = []
    for question in questions:
        card = by_id.get(question.question_id)
        if card is None:
            card = CardState.new(question.question_id, question.text, now)
        reconciled.append(ReconciledCard(question=question, card=card))
    return reconciled


# =============================================================================
# Card Store
# =============================================================================


class CardStore:
    """
    Sidecar-file persistence for card state.

    Handles:
    - Reading and writing one card collection per document
    - Reconciling parsed questions with stored cards
    - Upserting a reviewed card (whole-file atomic replace)
    """

    def __init__(
        self,
        loader: DocumentLoader | None = None,
        extractor: QuestionExtractor | None = None,
        sidecar_suffix: str = DEFAULT_SIDECAR_SUFFIX,
    ):
        """
        Initialize the card store.

        Args:
            loader: Document reader (defaults to DocumentLoader)
            extractor: Question extractor (defaults to QuestionExtractor)
            sidecar_suffix: Suffix replacing the document's own suffix
        """
        self.loader = loader or DocumentLoader()
        self.extractor = extractor or QuestionExtractor()
        self.sidecar_suffix = sidecar_suffix
        self._collections: dict[Path, list[CardState]] = {}

    def sidecar_path(self, document: Path | str) -> Path:
        """Card file for a document: ``notes.md`` -> ``notes.flashcard``."""
        return Path(document).with_suffix(self.sidecar_suffix)

    # =========================================================================
    # Persistence
    # =========================================================================

    def read_cards(self, document: Path | str, refresh: bool = False) -> list[CardState]:
        """
        Load the stored cards of a document.

        Args:
            document: Path to the markdown document
            refresh: Ignore the in-memory copy and re-read the file

        Returns:
            Stored cards, or an empty list when the sidecar is missing or unreadable
        """
        document = Path(document)
        if not refresh and document in self._collections:
            return list(self._collections[document])

        try:
            cards = self._load_sidecar(document)
        except CardReadError as e:
            logger.warning(f"{e}; treating its cards as new")
            return []

        self._collections[document] = cards
        return list(cards)

    def _load_sidecar(self, document: Path) -> list[CardState]:
        """
        Read a sidecar from disk. A missing file holds no cards.

        Raises:
            CardReadError: If the file exists but is unreadable or has no card list
        """
        path = self.sidecar_path(document)
        if not path.exists():
            return []

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
            raise CardReadError(f"Could not read card file {path}: {e}") from e

        raw_cards = data.get("cards") if isinstance(data, dict) else None
        if not isinstance(raw_cards, list):
            raise CardReadError(f"Card file {path} has no card list")

        now = utcnow()
        cards = []
        for raw in raw_cards:
            if not isinstance(raw, dict) or "questionId" not in raw:
                logger.warning(f"Skipping malformed card entry in {path}")
                continue
            cards.append(card_from_dict(raw, now))

        logger.debug(f"Loaded {len(cards)} cards from {path}")
        return cards

    def _read_for_update(self, document: Path) -> list[CardState] | None:
        """Fresh copy of the stored cards, or None if rewriting would lose some."""
        try:
            return self._load_sidecar(document)
        except CardReadError as e:
            logger.error(f"{e}; leaving it untouched, repair or remove it to save reviews")
            return None

    def write_cards(self, document: Path | str, cards: list[CardState]) -> bool:
        """
        Replace the stored cards of a document in one atomic write.

        Returns:
            True on success, False if the file could not be written
        """
        document = Path(document)
        path = self.sidecar_path(document)
        payload = {
            "sourceFile": document.name,
            "cards": [card_to_dict(card) for card in cards],
        }

        tmp_name = None
        try:
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=path.parent,
                prefix=f".{path.name}.",
                suffix=".tmp",
                delete=False,
            ) as f:
                tmp_name = f.name
                json.dump(payload, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to write card file {path}: {e}")
            if tmp_name and os.path.exists(tmp_name):
                os.remove(tmp_name)
            return False

        self._collections[document] = list(cards)
        logger.debug(f"Wrote {len(cards)} cards to {path}")
        return True

    def apply_review(self, document: Path | str, question_id: str, rated: CardState) -> bool:
        """
        Upsert one card into a document's collection and persist it.

        Args:
            document: Path to the markdown document
            question_id: Id the card is stored under
            rated: Card state to store

        Returns:
            True if the collection was written. False if the write failed or
            the existing file could not be read (it is never overwritten then)
        """
        document = Path(document)
        cards = self._read_for_update(document)
        if cards is None:
            return False

        for index, card in enumerate(cards):
            if card.question_id == question_id:
                cards[index] = rated
                break
        else:
            cards.append(rated)

        return self.write_cards(document, cards)

    def remove_card(self, document: Path | str, question_id: str) -> bool:
        """
        Drop one card from a document's collection.

        Returns:
            True if the collection is stored without the card
        """
        document = Path(document)
        cards = self._read_for_update(document)
        if cards is None:
            return False

        remaining = [card for card in cards if card.question_id != question_id]
        if len(remaining) == len(cards):
            return True
        return self.write_cards(document, remaining)

    def has_card(self, document: Path | str, question_id: str) -> bool:
        """Whether the sidecar currently stores a card under ``question_id``."""
        try:
            cards = self._load_sidecar(Path(document))
        except CardReadError:
            return False
        return any(card.question_id == question_id for card in cards)

    # =========================================================================
    # Queries
    # =========================================================================

    def reconcile(
        self,
        questions: Iterable[Question],
        persisted_cards: Iterable[CardState],
        now: datetime | None = None,
    ) -> list[ReconciledCard]:
        return reconcile(questions, persisted_cards, now)

    def load_document(self, document: Path | str, now: datetime | None = None) -> list[ReconciledCard]:
        """
        Parse a document and merge its questions with stored state.

        Raises:
            FileNotFoundError: If the document does not exist
        """
        document = Path(document)
        text = self.loader.read_text(document)
        questions = self.extractor.extract(text, document.name)

        for question_id, group in find_duplicate_ids(questions).items():
            texts = ", ".join(repr(q.text[:40]) for q in group)
            logger.warning(
                f"Id collision in {document.name}: {question_id} is shared by {texts}; "
                f"these questions will share one card"
            )

        return reconcile(questions, self.read_cards(document), now)

