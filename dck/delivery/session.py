"""
Study session orchestration.

A session walks one fixed queue of cards built from the selected documents:

    SELECTING --start()--> REVIEWING --last rating / end()--> COMPLETE

While reviewing, each rating is scheduled, persisted through the CardStore
and recorded. Skipping sends the current card to the back of the queue;
undo restores the previous card state and steps back. The queue never grows.

An optional evaluator is handed in by the caller. ``evaluate_answer`` scores
the current card with it; the result is passed back into ``rate`` so it ends
up in the transcript.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable

from loguru import logger

from dck.content.loader import DocumentLoader
from dck.content.parser import Question
from dck.delivery.state_store import CardStore
from dck.delivery.transcript import (
    SESSIONS_DIR_NAME,
    SessionCardRecord,
    SessionSummary,
    render_session_markdown,
    save_session_transcript,
)
from dck.integrations.evaluation import AnswerEvaluator, Evaluation, EvaluationError
from dck.study.retention_engine import (
    CardState,
    FSRSScheduler,
    Rating,
    apply_rating_stats,
    days_until_due,
    is_due,
    is_new,
    parse_rating,
    utcnow,
)


class SessionPhase(str, Enum):
    SELECTING = "selecting"
    REVIEWING = "reviewing"
    COMPLETE = "complete"


class SessionMode(str, Enum):
    """Which cards enter the queue."""

    REVIEW = "review"  # due and new cards
    STUDY = "study"  # every card


class SortOrder(str, Enum):
    RANDOM = "random"
    SEQUENTIAL = "sequential"
    HARDEST = "hardest"
    EASIEST = "easiest"


class SessionStateError(RuntimeError):
    """Raised when an action does not fit the session's phase."""


@dataclass
class SessionCard:
    """A queued question with its working card state."""

    document: Path
    question: Question
    card: CardState

    @property
    def question_id(self) -> str:
        return self.question.question_id

    @property
    def source_file(self) -> str:
        return self.question.source_file


@dataclass
class UndoEntry:
    index: int
    record: SessionCardRecord
    previous: CardState
    was_stored: bool = True


@dataclass
class ReviewOutcome:
    """Result of rating the current card."""

    record: SessionCardRecord
    card: CardState
    persisted: bool
    completed: bool


class StudySession:
    """
    One review pass over the cards of the selected documents.

    Example:
        session = StudySession(store, [Path("notes/tcp.md")], order=SortOrder.HARDEST)
        session.start()
        while session.phase == SessionPhase.REVIEWING:
            card = session.current_card
            session.rate(Rating.GOOD, user_answer="...")
        print(session.render_transcript())
    """

    def __init__(
        self,
        store: CardStore,
        documents: list[Path | str],
        mode: SessionMode | str = SessionMode.REVIEW,
        order: SortOrder | str = SortOrder.RANDOM,
        scheduler: FSRSScheduler | None = None,
        evaluator: AnswerEvaluator | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Initialize a session.

        Args:
            store: Card persistence
            documents: Markdown documents to draw cards from
            mode: REVIEW (due + new) or STUDY (all cards)
            order: Queue ordering policy
            scheduler: FSRS scheduler (defaults to standard parameters)
            evaluator: AI answer evaluator, owned by the caller
            rng: Random source for RANDOM ordering
            clock: Returns the current time (aware UTC)
        """
        self.store = store
        self.documents = [Path(d) for d in documents]
        self.mode = SessionMode(mode)
        self.order = SortOrder(order)
        self.scheduler = scheduler or FSRSScheduler()
        self.evaluator = evaluator
        self.rng = rng or random.Random()
        self.clock = clock or utcnow

        self.phase = SessionPhase.SELECTING
        self.queue: list[SessionCard] = []
        self.index = 0
        self.total_cards_in_session = 0
        self.records: list[SessionCardRecord] = []
        self.persistence_failures: list[str] = []
        self.started_at: datetime | None = None
        self.summary: SessionSummary | None = None
        self._undo_stack: list[UndoEntry] = []

    # =========================================================================
    # Selecting
    # =========================================================================

    def build_queue(self, now: datetime) -> list[SessionCard]:
        """Collect, filter and order the cards of all selected documents."""
        queue: list[SessionCard] = []
        for document in self.documents:
            try:
                reconciled = self.store.load_document(document, now)
            except (OSError, UnicodeDecodeError) as e:
                logger.warning(f"Skipping {document}: {e}")
                continue

            for item in reconciled:
                if self.mode == SessionMode.STUDY or is_due(item.card, now) or is_new(item.card):
                    queue.append(SessionCard(document=document, question=item.question, card=item.card))

        return self._ordered(queue)

    def _ordered(self, queue: list[SessionCard]) -> list[SessionCard]:
        if self.order == SortOrder.RANDOM:
            shuffled = list(queue)
            self.rng.shuffle(shuffled)
            return shuffled
        if self.order == SortOrder.HARDEST:
            return sorted(queue, key=lambda c: c.card.difficulty, reverse=True)
        if self.order == SortOrder.EASIEST:
            return sorted(queue, key=lambda c: c.card.difficulty)
        return list(queue)

    def start(self) -> int:
        """
        Build the queue and begin reviewing.

        Returns:
            Number of cards in the session (the session completes at once if 0)
        """
        if self.phase != SessionPhase.SELECTING:
            raise SessionStateError(f"Cannot start a session that is {self.phase.value}")

        now = self.clock()
        self.started_at = now
        self.queue = self.build_queue(now)
        self.total_cards_in_session = len(self.queue)
        self.index = 0
        self.phase = SessionPhase.REVIEWING

        logger.info(
            f"Session started: {self.total_cards_in_session} cards from "
            f"{len(self.documents)} documents ({self.mode.value}, {self.order.value})"
        )
        if not self.queue:
            self._complete(now)
        return self.total_cards_in_session

    # =========================================================================
    # Reviewing
    # =========================================================================

    @property
    def current_card(self) -> SessionCard | None:
        if self.phase != SessionPhase.REVIEWING or self.index >= len(self.queue):
            return None
        return self.queue[self.index]

    @property
    def progress(self) -> tuple[int, int]:
        """(cards rated, cards in session)."""
        return len(self.records), self.total_cards_in_session

    @property
    def can_undo(self) -> bool:
        return self.phase == SessionPhase.REVIEWING and bool(self._undo_stack)

    async def evaluate_answer(self, user_answer: str) -> Evaluation | None:
        """
        Score an answer to the current card with the evaluator.

        Returns:
            The evaluation, or None without an evaluator, for a blank answer,
            or when the provider fails
        """
        item = self._require_current()
        if self.evaluator is None or not user_answer.strip():
            return None

        try:
            return await self.evaluator.evaluate(item.question.text, item.question.answer, user_answer)
        except EvaluationError as e:
            logger.warning(f"Evaluation failed for {item.question_id}: {e}")
            return None

    def rate(
        self,
        rating: Rating | int | str,
        user_answer: str = "",
        evaluation: Evaluation | None = None,
    ) -> ReviewOutcome:
        """
        Rate the current card, persist it and move on.

        A failed write is reported in the outcome; the session still advances.
        """
        item = self._require_current()
        grade = parse_rating(rating)
        now = self.clock()

        previous = item.card
        old_interval = days_until_due(previous, now)
        updated = apply_rating_stats(self.scheduler.review(previous, grade, now), grade)
        new_interval = days_until_due(updated, now)

        was_stored = self.store.has_card(item.document, item.question_id)
        persisted = self.store.apply_review(item.document, item.question_id, updated)
        if not persisted:
            self.persistence_failures.append(item.question_id)
            logger.error(f"Rating for {item.question_id} was not saved; continuing session")

        record = SessionCardRecord(
            question_id=item.question_id,
            source_file=item.source_file,
            question=item.question.text,
            user_answer=user_answer,
            expected_answer=item.question.answer,
            rating=grade,
            old_interval=old_interval,
            new_interval=new_interval,
            evaluation=evaluation,
        )
        self._undo_stack.append(
            UndoEntry(index=self.index, record=record, previous=previous, was_stored=was_stored)
        )
        self.records.append(record)
        self._share_card(item, updated)

        if self.index >= len(self.queue) - 1:
            self._complete(now)
        else:
            self.index += 1

        return ReviewOutcome(
            record=record,
            card=updated,
            persisted=persisted,
            completed=self.phase == SessionPhase.COMPLETE,
        )

    def skip(self) -> None:
        """Send the current card to the back of the queue."""
        item = self._require_current()
        self.queue.pop(self.index)
        self.queue.append(item)
        logger.debug(f"Skipped {item.question_id}")

    def undo(self) -> bool:
        """
        Revert the most recent rating.

        Returns:
            True if a rating was undone
        """
        if not self.can_undo:
            return False

        entry = self._undo_stack.pop()
        self.records.pop()
        item = self.queue[entry.index]

        if entry.was_stored:
            restored = self.store.apply_review(item.document, entry.record.question_id, entry.previous)
        else:
            restored = self.store.remove_card(item.document, entry.record.question_id)
        if not restored:
            self.persistence_failures.append(entry.record.question_id)
            logger.error(f"Undo for {entry.record.question_id} was not saved")

        self._share_card(item, entry.previous)
        self.index = entry.index
        logger.debug(f"Undid rating for {entry.record.question_id}")
        return True

    def _share_card(self, item: SessionCard, card: CardState) -> None:
        """Questions of one document with the same id review one card."""
        for queued in self.queue:
            if queued.document == item.document and queued.question_id == item.question_id:
                queued.card = card

    def _require_current(self) -> SessionCard:
        card = self.current_card
        if card is None:
            raise SessionStateError(f"No card to review (session is {self.phase.value})")
        return card

    # =========================================================================
    # Complete
    # =========================================================================

    def end(self) -> SessionSummary:
        """Finish now, keeping whatever has been rated so far."""
        if self.summary is None:
            self._complete(self.clock())
        return self.summary

    def _complete(self, now: datetime) -> None:
        self.phase = SessionPhase.COMPLETE
        self.summary = SessionSummary.from_records(
            files=[d.name for d in self.documents],
            start=self.started_at or now,
            end=now,
            records=self.records,
        )
        self._undo_stack.clear()
        logger.info(
            f"Session complete: {self.summary.cards_reviewed} reviewed, "
            f"accuracy {self.summary.accuracy:.0%}"
        )

    def render_transcript(self) -> str:
        if self.summary is None:
            raise SessionStateError("Session has not finished")
        return render_session_markdown(self.summary, self.records)

    def save_transcript(
        self,
        folder: Path | str,
        loader: DocumentLoader | None = None,
        sessions_dir_name: str = SESSIONS_DIR_NAME,
    ) -> Path | None:
        """
        Archive the transcript in ``<folder>/.sessions``.

        Returns:
            Written path, or None when nothing was reviewed or the write failed
        """
        if self.summary is None:
            raise SessionStateError("Session has not finished")
        if not self.records:
            return None

        try:
            return save_session_transcript(
                folder, self.summary, self.records, loader or self.store.loader, sessions_dir_name
            )
        except OSError as e:
            logger.error(f"Failed to save session transcript: {e}")
            return None
