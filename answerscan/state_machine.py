"""
State Machine Merger
====================
Deterministic state machine that merges classified page lines into
per-question answer records across page boundaries.

Each page is folded into the running `CarryState` by a pure transition
(`advance_page`). The single open answer is never committed at a page
break; it stays open so a continuation on the next page lands in the same
buffer. It commits only when a new numbered line appears or the document
ends.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Iterable, Optional

from .classifier import classify_line, split_lines
from .models import (
    AnswerFragment,
    AnswerRecord,
    CarryState,
    PageStats,
    PageTransition,
)
from .record_store import RecordStore

logger = logging.getLogger(__name__)


class MergerState(Enum):
    """Merge states: either no answer is open, or exactly one is."""
    NO_OPEN_RECORD = "NO_OPEN_RECORD"
    RECORD_OPEN = "RECORD_OPEN"


def state_of(carry: CarryState) -> MergerState:
    if carry.is_open:
        return MergerState.RECORD_OPEN
    return MergerState.NO_OPEN_RECORD


def _flush(question_number: int, buffer: list[str], opened_on: int, last_page: int) -> AnswerFragment:
    return AnswerFragment(
        question_number=question_number,
        text=" ".join(buffer),
        page_start=opened_on,
        page_end=max(opened_on, last_page),
    )


def advance_page(carry: CarryState, text: str, page_number: int) -> PageTransition:
    """
    Fold one page of raw text into the carry state.

    Args:
        carry: State left open by the previous page.
        text: Raw text extracted from this page (may be empty).
        page_number: 1-indexed page number, used for page spans.

    Returns:
        PageTransition with the outgoing carry, the fragments committed on
        this page (in order) and line counters.
    """
    lines = split_lines(text)
    stats = PageStats(line_count=len(lines))

    if not lines:
        return PageTransition(carry=carry, stats=stats)

    commits: list[AnswerFragment] = []
    number = carry.last_question_number
    buffer = list(carry.pending_text)
    opened_on = carry.opened_on_page or page_number
    last_page = carry.last_text_page or opened_on

    for line in lines:
        classification = classify_line(line)

        if classification.is_new_question:
            stats.new_question_lines += 1
            stats.questions_started.append(classification.number)

            if number is not None:
                commits.append(_flush(number, buffer, opened_on, last_page))

            logger.debug(
                f"Detected answer {classification.number} on page {page_number}"
            )
            number = classification.number
            buffer = [classification.inline_text] if classification.inline_text else []
            opened_on = page_number
            last_page = page_number
            continue

        if classification.rejected_number is not None:
            stats.rejected_numbers.append(classification.rejected_number)

        if number is None:
            # No answer context yet (preamble before the first number)
            stats.discarded_lines += 1
            continue

        stats.continuation_lines += 1
        buffer.append(line)
        last_page = page_number

    if number is None:
        outgoing = CarryState()
    else:
        outgoing = CarryState(
            last_question_number=number,
            pending_text=tuple(buffer),
            opened_on_page=opened_on,
            last_text_page=last_page,
        )

    return PageTransition(carry=outgoing, commits=commits, stats=stats)


def close_document(carry: CarryState) -> list[AnswerFragment]:
    """Commit the answer still open at the end of the document, if any."""
    if not carry.is_open:
        return []
    opened_on = carry.opened_on_page or 1
    return [_flush(
        carry.last_question_number,
        list(carry.pending_text),
        opened_on,
        carry.last_text_page or opened_on,
    )]


class TranscriptStateMachine:
    """
    Threads `CarryState` through a document's pages in order and applies
    the committed fragments to a `RecordStore`.
    """

    def __init__(self):
        self.carry = CarryState()
        self.store = RecordStore()
        self.page_number = 0
        self.page_stats: list[PageStats] = []

    def reset(self):
        """Reset the state machine for a fresh document."""
        self.carry = CarryState()
        self.store = RecordStore()
        self.page_number = 0
        self.page_stats = []

    @property
    def state(self) -> MergerState:
        return state_of(self.carry)

    def feed_page(self, text: str, page_number: Optional[int] = None) -> PageStats:
        """Merge the next page. Pages must be fed in document order."""
        self.page_number = page_number or self.page_number + 1

        transition = advance_page(self.carry, text, self.page_number)
        self.store.commit_all(transition.commits)
        self.carry = transition.carry
        self.page_stats.append(transition.stats)

        return transition.stats

    def finalize(self) -> list[AnswerRecord]:
        """Commit the open answer and return the finalized records."""
        self.store.commit_all(close_document(self.carry))
        self.carry = CarryState()
        return self.store.finalize()

    def parse(self, pages: Iterable[str]) -> list[AnswerRecord]:
        """Merge a whole document given as per-page text."""
        self.reset()
        for text in pages:
            self.feed_page(text)
        return self.finalize()
