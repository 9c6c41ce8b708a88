"""
Data Models
===========
Pydantic models for transcription state, transcript output, answer keys
and evaluation results.
All output models serialize to the camelCase JSON shape API clients expect.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field


# ─── Enums ────────────────────────────────────────────────────────────────────


class PageStatus(str, Enum):
    """Outcome of text extraction for a single page."""
    OK = "ok"
    EMPTY = "empty"
    FAILED = "failed"


class SourceType(str, Enum):
    """Kind of document a transcript was produced from."""
    PDF = "pdf"
    IMAGES = "images"
    TEXT = "text"


# ─── Line / Merge State Models ────────────────────────────────────────────────


class LineClassification(BaseModel):
    """Result of classifying one raw text line."""
    model_config = ConfigDict(frozen=True)

    is_new_question: bool
    number: Optional[int] = None
    inline_text: Optional[str] = None
    rejected_number: Optional[int] = Field(
        default=None,
        description="Delimiter number refused because it is out of range",
    )


class CarryState(BaseModel):
    """
    State threaded from one page to the next.
    Holds the single open (uncommitted) answer, if any.
    """
    model_config = ConfigDict(frozen=True)

    last_question_number: Optional[int] = None
    pending_text: tuple[str, ...] = ()
    opened_on_page: Optional[int] = None
    last_text_page: Optional[int] = None

    @property
    def is_open(self) -> bool:
        return self.last_question_number is not None


class AnswerFragment(BaseModel):
    """A committed buffer for one question, emitted by the merger."""
    model_config = ConfigDict(frozen=True)

    question_number: int
    text: str = ""
    page_start: int = Field(ge=1)
    page_end: int = Field(ge=1)


class PageStats(BaseModel):
    """Line-level counters for one page's merge step."""
    line_count: int = 0
    new_question_lines: int = 0
    continuation_lines: int = 0
    discarded_lines: int = 0
    questions_started: list[int] = Field(default_factory=list)
    rejected_numbers: list[int] = Field(default_factory=list)


class PageTransition(BaseModel):
    """Result of merging one page: outgoing carry plus committed fragments."""
    carry: CarryState
    commits: list[AnswerFragment] = Field(default_factory=list)
    stats: PageStats = Field(default_factory=PageStats)


# ─── Record Models ────────────────────────────────────────────────────────────


class AnswerRecord(BaseModel):
    """
    Accumulated answer text for one question number.
    Text is normalized only when the record store is finalized.
    """
    question_number: int
    text: str = ""
    page_start: int = Field(ge=1)
    page_end: int = Field(ge=1)

    @computed_field
    @property
    def spans_pages(self) -> bool:
        return self.page_end > self.page_start


class TranscriptEntry(BaseModel):
    """One line of the final transcript."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    margin_number: int = Field(alias="marginNumber", ge=1)
    answer: str


# ─── Document / Page Models ───────────────────────────────────────────────────


class PageOutcome(BaseModel):
    """What happened to one page during transcription."""
    page_number: int = Field(ge=1)
    status: PageStatus = PageStatus.OK
    text_length: int = 0
    error: Optional[str] = None
    stats: PageStats = Field(default_factory=PageStats)


class DocumentMetadata(BaseModel):
    """Metadata about the transcribed source."""
    source: str = ""
    source_type: SourceType = SourceType.PDF
    total_pages: int = 0
    file_hash: str = ""
    file_size_bytes: int = 0


class TranscriptVersion(BaseModel):
    """Version tracking for a transcription run."""
    transcriber_version: str = "1.0.0"
    vision_model: str = ""
    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )


class TranscriptValidationReport(BaseModel):
    """Post-merge validation report."""
    total_pages: int = 0
    failed_pages: list[int] = Field(default_factory=list)
    empty_pages: list[int] = Field(default_factory=list)
    total_answers: int = 0
    missing_question_numbers: list[int] = Field(default_factory=list)
    recurring_question_numbers: list[int] = Field(default_factory=list)
    rejected_numbers: list[int] = Field(default_factory=list)
    discarded_preamble_lines: int = 0
    dropped_empty_answers: list[int] = Field(default_factory=list)
    multi_page_answers: list[int] = Field(default_factory=list)

    @computed_field
    @property
    def page_success_rate(self) -> float:
        if self.total_pages == 0:
            return 0.0
        return round(
            (self.total_pages - len(self.failed_pages)) / self.total_pages * 100,
            2
        )


class TranscriptResult(BaseModel):
    """
    Complete output of a transcription run.
    `to_response()` renders the public transcript shape.
    """
    document: DocumentMetadata
    version: TranscriptVersion
    answers: list[TranscriptEntry] = Field(default_factory=list)
    records: list[AnswerRecord] = Field(default_factory=list)
    pages: list[PageOutcome] = Field(default_factory=list)
    validation: TranscriptValidationReport = Field(
        default_factory=TranscriptValidationReport
    )

    def to_response(self) -> dict:
        return {
            "answers": [a.model_dump(by_alias=True) for a in self.answers]
        }


# ─── Answer Key / Evaluation Models ───────────────────────────────────────────


class AnswerKeyEntry(BaseModel):
    """Grading logic for one question in the answer key."""
    logic: str
    diagram: bool = False


class SubmittedAnswer(BaseModel):
    """A student answer submitted for evaluation."""
    model_config = ConfigDict(populate_by_name=True)

    margin_number: int = Field(alias="marginNumber")
    answer: str = ""
    has_diagram: Optional[bool] = Field(default=None, alias="hasDiagram")


class LLMScore(BaseModel):
    """Strict JSON shape expected back from the scoring model."""
    model_config = ConfigDict(populate_by_name=True)

    marks: float = Field(ge=0)
    max_marks: Optional[float] = Field(default=None, alias="maxMarks")
    reasons: list[str] = Field(default_factory=list)
    justification: str = ""


class EvaluationResult(BaseModel):
    """Score for one submitted answer."""
    model_config = ConfigDict(populate_by_name=True)

    question_number: str = Field(alias="questionNumber")
    mark: str
    adjusted_mark: Optional[str] = Field(default=None, alias="adjustedMark")
    reason: str = ""
    justification: Optional[str] = None
    has_diagram: Optional[bool] = Field(default=None, alias="hasDiagram")
    evaluation_method: str = Field(alias="evaluationMethod")
    diagram_marks: Optional[int] = Field(default=None, alias="diagramMarks")
    error: Optional[str] = None

    def to_response(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class EvaluationSummary(BaseModel):
    """Aggregate marks across a whole answer sheet."""
    model_config = ConfigDict(populate_by_name=True)

    total_questions: int = Field(alias="totalQuestions")
    total_marks: str = Field(alias="totalMarks")
    percentage: int


class EvaluationReport(BaseModel):
    """Complete output of an answer-sheet evaluation."""
    success: bool = True
    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    results: list[EvaluationResult] = Field(default_factory=list)
    summary: EvaluationSummary

    def to_response(self) -> dict:
        return {
            "success": self.success,
            "timestamp": self.timestamp,
            "results": [r.to_response() for r in self.results],
            "summary": self.summary.model_dump(by_alias=True),
        }
