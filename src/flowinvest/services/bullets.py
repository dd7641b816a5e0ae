"""
Sentiment-tagged bullet grammar.

A valid line reads ``• [+] short text`` where the tag is one of ``+``, ``~``
or ``-`` and the text has fewer than ``max_words`` words.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

SENTIMENT_RANK = {"+": 0, "~": 1, "-": 2}
PREFIX_LENGTH = len("• [+] ")

_BULLET_LINE = re.compile(r"^• \[(\+|-|~)\] (?=\S)")


def split_lines(value: Any) -> list[str] | None:
    """Normalize a list or newline-separated string into non-blank lines."""
    if isinstance(value, str):
        return [line.strip() for line in value.splitlines() if line.strip()]
    if isinstance(value, list):
        if not all(isinstance(item, str) for item in value):
            return None
        return [item.strip() for item in value if item.strip()]
    return None


@dataclass(frozen=True)
class BulletGrammar:
    max_words: int = 10

    def is_valid_line(self, line: str) -> bool:
        if not _BULLET_LINE.match(line):
            return False
        return 0 < len(line[PREFIX_LENGTH:].split()) < self.max_words

    def validate(self, value: Any) -> list[str] | None:
        """Return the normalized lines when ``value`` satisfies the grammar, else None."""
        lines = split_lines(value)
        if not lines:
            return None
        if all(self.is_valid_line(line) for line in lines):
            return lines
        return None

    def is_valid(self, value: Any) -> bool:
        return self.validate(value) is not None


def sort_by_sentiment(lines: list[str]) -> list[str]:
    """Stable sort: positive, then neutral, then negative lines."""
    return sorted(lines, key=lambda line: SENTIMENT_RANK.get(line[3:4], len(SENTIMENT_RANK)))
