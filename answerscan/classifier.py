"""
Line Classifier
===============
Decides whether a raw text line opens a new numbered answer.

The vision model returns loosely structured text: answer numbers written in
the margin come back as leading tokens ("3.", "Question 4:", "7)") but the
same text also carries numerals inside answers ("100 m/s", "3.14"). Only a
leading number inside the accepted range counts as a delimiter.
"""

from __future__ import annotations

import logging
import re

from .models import LineClassification

logger = logging.getLogger(__name__)

# ─── Acceptance Policy ────────────────────────────────────────────────────────

MIN_QUESTION_NUMBER = 1
MAX_QUESTION_NUMBER = 99

# ─── Delimiter Patterns ───────────────────────────────────────────────────────

# "3. text", "3) text", "3: text", "3 - text", "3 text", "Question 3: text",
# "Question 3". A "." or "-" directly followed by a digit is a decimal or a
# range ("3.14", "10-15"), not a delimiter.
QUESTION_PATTERN = re.compile(
    r"^(?:question\s*:?\s*)?(\d+)(?:\s*[.:)\-](?!\d)\s*|\s+|$)(.*)$",
    re.IGNORECASE,
)

# A numbered delimiter buried mid-line after a finished sentence:
# "and continues here. 4. Next answer"
INLINE_DELIMITER_PATTERN = re.compile(
    r"(?<=[.!?;])\s+(?=(?:question\s*:?\s*)?\d{1,2}\s*[.:)](?!\d)(?:\s|$))",
    re.IGNORECASE,
)

# Words whose trailing "." is not a sentence end: "see Fig. 2: the curve"
ABBREVIATIONS = frozenset({
    "fig", "figs", "eq", "eqn", "eqs", "no", "nos", "vol", "pg", "pp", "p",
    "sec", "ch", "ref", "refs", "e.g", "i.e", "cf", "vs", "approx",
})


def is_valid_question_number(number: int) -> bool:
    return MIN_QUESTION_NUMBER <= number <= MAX_QUESTION_NUMBER


def split_lines(text: str) -> list[str]:
    """
    Split raw page text into stripped, non-blank lines.

    Lines are also broken in front of numbered delimiters that follow
    sentence-ending punctuation, so a model that runs two answers together
    on one line still yields a delimiter line for the second one.
    """
    if not text:
        return []

    lines: list[str] = []
    for raw_line in text.replace("\r\n", "\n").replace("\r", "\n").split("\n"):
        line = raw_line.strip()
        if not line:
            continue
        for piece in _split_run_together(line):
            piece = piece.strip()
            if piece:
                lines.append(piece)
    return lines


def _ends_with_abbreviation(text: str) -> bool:
    words = text.split()
    if not words:
        return False
    return words[-1].lstrip("([").rstrip(".").lower() in ABBREVIATIONS


def _split_run_together(line: str) -> list[str]:
    pieces: list[str] = []
    start = 0
    for match in INLINE_DELIMITER_PATTERN.finditer(line):
        if _ends_with_abbreviation(line[:match.start()]):
            continue
        pieces.append(line[start:match.start()])
        start = match.end()
    pieces.append(line[start:])
    return pieces


def classify_line(line: str) -> LineClassification:
    """Classify one line as a new-question delimiter or a continuation."""
    line = line.strip()
    match = QUESTION_PATTERN.match(line)
    if not match:
        return LineClassification(is_new_question=False)

    number = int(match.group(1))
    if not is_valid_question_number(number):
        logger.debug(f"Ignoring out-of-range delimiter {number}: {line!r}")
        return LineClassification(
            is_new_question=False,
            rejected_number=number,
        )

    return LineClassification(
        is_new_question=True,
        number=number,
        inline_text=match.group(2).strip(),
    )
