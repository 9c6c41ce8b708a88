"""
Record Store
============
Ordered, deduplicated collection of committed answer records, keyed by
question number.

A commit for a number that already has a record is appended to it, never
stored as a second record, no matter how many other numbers were committed
in between. Whitespace is normalized only when the store is finalized.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Iterable, Optional

from .classifier import is_valid_question_number
from .models import AnswerFragment, AnswerRecord

logger = logging.getLogger(__name__)


def normalize_whitespace(text: str) -> str:
    """Collapse whitespace runs to single spaces and trim."""
    return " ".join(text.split())


def join_fragments(left: str, right: str) -> str:
    """
    Join two text fragments, inserting one space only when neither side
    already has whitespace at the join point.
    """
    if not left:
        return right
    if not right:
        return left
    if left[-1].isspace() or right[0].isspace():
        return left + right
    return left + " " + right


class RecordStore:
    """Per-document store of answer records."""

    def __init__(self):
        self._records: dict[int, AnswerRecord] = {}
        self._commit_counts: Counter[int] = Counter()

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, question_number: int) -> bool:
        return question_number in self._records

    def get(self, question_number: int) -> Optional[AnswerRecord]:
        return self._records.get(question_number)

    @property
    def question_numbers(self) -> list[int]:
        return sorted(self._records)

    @property
    def recurring_numbers(self) -> list[int]:
        """Numbers committed more than once (re-opened after another answer)."""
        return sorted(n for n, count in self._commit_counts.items() if count > 1)

    def commit(self, fragment: AnswerFragment):
        """Append a fragment to the record for its question number."""
        number = fragment.question_number
        record = self._records.get(number)

        if record is None:
            self._records[number] = AnswerRecord(
                question_number=number,
                text=fragment.text,
                page_start=fragment.page_start,
                page_end=fragment.page_end,
            )
        else:
            logger.info(
                f"Question {number} reappeared on page {fragment.page_start}; "
                f"appending to existing answer"
            )
            record.text = join_fragments(record.text, fragment.text)
            record.page_start = min(record.page_start, fragment.page_start)
            record.page_end = max(record.page_end, fragment.page_end)

        self._commit_counts[number] += 1

    def commit_all(self, fragments: Iterable[AnswerFragment]):
        for fragment in fragments:
            self.commit(fragment)

    def empty_numbers(self) -> list[int]:
        """Numbers whose text is empty after normalization."""
        return sorted(
            n for n, record in self._records.items()
            if not normalize_whitespace(record.text)
        )

    def finalize(self) -> list[AnswerRecord]:
        """
        Produce the final record set: normalized text, numbers in range,
        non-empty answers only, ascending by question number.
        """
        finalized: list[AnswerRecord] = []
        for number in sorted(self._records):
            record = self._records[number]
            text = normalize_whitespace(record.text)

            if not is_valid_question_number(number):
                logger.warning(f"Dropping out-of-range question {number}")
                continue
            if not text:
                logger.debug(f"Dropping empty answer for question {number}")
                continue

            finalized.append(record.model_copy(update={"text": text}))

        return finalized
