"""
Validation Engine
=================
Post-merge validation and reporting.

After transcribing each document, generates a report:
    - Total / Failed / Empty Pages
    - Answers Produced
    - Missing Question Numbers (gaps in sequence)
    - Recurring Question Numbers (re-opened after another answer)
    - Rejected Out-of-Range Numbers
    - Discarded Preamble Lines
    - Answers Dropped As Empty
    - Multi-Page Answers

Never silently ignores failures.
"""

from __future__ import annotations

import logging

from .models import (
    AnswerRecord,
    PageOutcome,
    PageStatus,
    TranscriptValidationReport,
)
from .record_store import RecordStore

logger = logging.getLogger(__name__)


class TranscriptValidator:
    """
    Validates a finished transcript and produces a report.
    """

    def validate(
        self,
        records: list[AnswerRecord],
        pages: list[PageOutcome],
        store: RecordStore,
    ) -> TranscriptValidationReport:
        """
        Run full validation on a finalized transcript.

        Args:
            records: Finalized records, ascending by question number.
            pages: Per-page outcomes in document order.
            store: The record store the records were finalized from.

        Returns:
            TranscriptValidationReport with all detected issues.
        """
        report = TranscriptValidationReport(
            total_pages=len(pages),
            failed_pages=[p.page_number for p in pages if p.status == PageStatus.FAILED],
            empty_pages=[p.page_number for p in pages if p.status == PageStatus.EMPTY],
            total_answers=len(records),
        )

        numbers = [r.question_number for r in records]
        if numbers:
            expected = set(range(min(numbers), max(numbers) + 1))
            report.missing_question_numbers = sorted(expected - set(numbers))

        report.recurring_question_numbers = store.recurring_numbers
        report.rejected_numbers = sorted({
            n for p in pages for n in p.stats.rejected_numbers
        })
        report.discarded_preamble_lines = sum(
            p.stats.discarded_lines for p in pages
        )
        report.dropped_empty_answers = store.empty_numbers()
        report.multi_page_answers = [
            r.question_number for r in records if r.spans_pages
        ]

        if not records:
            logger.warning("Transcript has no answers")

        logger.info("=" * 60)
        logger.info("TRANSCRIPT REPORT")
        logger.info("=" * 60)
        logger.info(
            f"Pages: {report.total_pages} "
            f"(failed: {len(report.failed_pages)}, empty: {len(report.empty_pages)})"
        )
        logger.info(f"Answers: {report.total_answers}")
        logger.info(
            f"Missing Question Numbers: {len(report.missing_question_numbers)}"
        )
        logger.info(
            f"Recurring Question Numbers: {len(report.recurring_question_numbers)}"
        )
        logger.info(f"Rejected Numbers: {report.rejected_numbers}")
        logger.info(
            f"Discarded Preamble Lines: {report.discarded_preamble_lines}"
        )
        logger.info(
            f"Dropped Empty Answers: {len(report.dropped_empty_answers)}"
        )
        logger.info(f"Multi-Page Answers: {len(report.multi_page_answers)}")
        logger.info("=" * 60)

        return report
