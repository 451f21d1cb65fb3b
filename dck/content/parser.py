"""
Flashcard extraction from markdown documents.

A flashcard is a top-level list item (no indentation) followed by an
indented block:

    - What does TCP stand for?
        Transmission Control Protocol
    1. Name the layers of the OSI model
        - Physical
        - Data Link

The list item is the question; the indented block, with its common
indentation removed, is the answer. Items without an indented block are not
flashcards and are skipped.
"""

from __future__ import annotations

import re
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

QUESTION_PATTERN = re.compile(r"^([-*+]|\d+\.)\s+(.+)")

ID_PREFIX = "q_"
ID_PREFIX_CHARS = 100

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


@dataclass(frozen=True)
class Question:
    """A question/answer pair parsed from a document."""

    question_id: str
    text: str
    answer: str
    source_file: str
    line_number: int = 0


# =============================================================================
# Identity
# =============================================================================


def base_name(source_file: str) -> str:
    """File name without directories, for both / and \\ separators."""
    name = source_file.split("/")[-1].split("\\")[-1]
    return name or source_file


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def string_hash(value: str) -> str:
    """
    32-bit rolling hash (h * 31 + unit) rendered in base 36.

    Iterates UTF-16 code units so ids match across platforms for
    non-BMP characters too.
    """
    h = 0
    data = value.encode("utf-16-le")
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = (h * 31 + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return _to_base36(abs(h))


def generate_question_id(question: str, source_file: str) -> str:
    """
    Deterministic id for a question.

    Only the first 100 characters of the stripped question and the file's
    base name participate, so answer edits and folder moves keep the id.
    """
    content = question.strip()[:ID_PREFIX_CHARS] + base_name(source_file)
    return ID_PREFIX + string_hash(content)


# =============================================================================
# Extraction
# =============================================================================


def _leading_whitespace(line: str) -> int:
    return len(line) - len(line.lstrip())


def normalize_indentation(lines: list[str]) -> str:
    """Remove the common leading whitespace of non-blank lines, then strip."""
    indents = [_leading_whitespace(line) for line in lines if line.strip()]
    if not indents:
        return "\n".join(lines).strip()
    min_indent = min(indents)
    return "\n".join(line[min_indent:] for line in lines).strip()


def _unwrap_single_item(answer: str) -> str:
    """A one-line answer written as a list item (``- 4``) reads as its content."""
    if "\n" in answer:
        return answer
    match = QUESTION_PATTERN.match(answer)
    return match.group(2).strip() if match else answer


def extract_questions(document_text: str, source_file: str) -> list[Question]:
    """
    Parse document text into questions.

    Args:
        document_text: Raw markdown
        source_file: File name (or path) the text came from

    Returns:
        Questions in document order
    """
    questions: list[Question] = []
    current: str | None = None
    answer_lines: list[str] = []
    question_line = 0

    def flush() -> None:
        if current is None:
            return
        answer = _unwrap_single_item(normalize_indentation(answer_lines)) if answer_lines else ""
        if not answer:
            logger.debug(f"Skipping item without answer at {source_file}:{question_line}")
            return
        questions.append(
            Question(
                question_id=generate_question_id(current, source_file),
                text=current,
                answer=answer,
                source_file=source_file,
                line_number=question_line,
            )
        )

    for line_number, line in enumerate(document_text.splitlines(), start=1):
        stripped = line.strip()
        if not stripped:
            continue

        indent = _leading_whitespace(line)
        if indent == 0:
            match = QUESTION_PATTERN.match(stripped)
            if match:
                flush()
                current = match.group(2).strip()
                answer_lines = []
                question_line = line_number
            # Plain text at column 0 (headings, prose) is not part of any card
            continue

        if current is not None:
            answer_lines.append(line)

    flush()
    return questions


def find_duplicate_ids(questions: list[Question]) -> dict[str, list[Question]]:
    """Group distinct question texts that share one id (hash or prefix collisions)."""
    by_id: dict[str, list[Question]] = defaultdict(list)
    for question in questions:
        by_id[question.question_id].append(question)

    return {
        question_id: group
        for question_id, group in by_id.items()
        if len({q.text.strip() for q in group}) > 1
    }


class QuestionExtractor:
    """Extracts flashcard questions from documents on disk or in memory."""

    def extract(self, document_text: str, source_file: str) -> list[Question]:
        """Parse text; ``source_file`` is reduced to its base name."""
        return extract_questions(document_text, base_name(source_file))

    def parse_file(self, path: Path | str) -> list[Question]:
        """Parse a single markdown file."""
        path = Path(path)

        if not path.exists():
            raise FileNotFoundError(f"Document not found: {path}")

        return self.extract(path.read_text(encoding="utf-8"), path.name)
