"""
Content: question extraction and document I/O.

Core modules:
- parser: Inline question/answer extraction and stable question IDs
- loader: Markdown document discovery and text I/O
"""

from .loader import DocumentLoader, DocumentRef
from .parser import (
    Question,
    QuestionExtractor,
    extract_questions,
    find_duplicate_ids,
    generate_question_id,
)

__all__ = [
    "DocumentLoader",
    "DocumentRef",
    "Question",
    "QuestionExtractor",
    "extract_questions",
    "find_duplicate_ids",
    "generate_question_id",
]
