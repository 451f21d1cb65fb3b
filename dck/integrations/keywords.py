"""
Keyword extraction for answer checking.

Keywords are the **bold** spans of an expected answer:

    "**Photosynthesis** turns light into **glucose**"
    -> ["Photosynthesis", "glucose"]
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

KEYWORD_PATTERN = re.compile(r"\*\*(.+?)\*\*")


@dataclass
class KeywordMatch:
    found: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)

    @property
    def score(self) -> int:
        """Percentage of keywords found (100 when there are none)."""
        total = len(self.found) + len(self.missing)
        if total == 0:
            return 100
        return round(len(self.found) / total * 100)


def extract_keywords(text: str) -> list[str]:
    keywords = []
    for match in KEYWORD_PATTERN.finditer(text):
        keyword = match.group(1).strip()
        if keyword:
            keywords.append(keyword)
    return keywords


def find_matching_keywords(expected: list[str], user_answer: str) -> KeywordMatch:
    """Case-insensitive substring check of each keyword against the answer."""
    answer = user_answer.lower()
    result = KeywordMatch()
    for keyword in expected:
        if keyword.lower() in answer:
            result.found.append(keyword)
        else:
            result.missing.append(keyword)
    return result
