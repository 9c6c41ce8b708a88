"""
Answer Evaluator
================
Scores transcribed answers against a parsed answer key.

Each answer is scored by a language model against the key's marking scheme
with diagram marks excluded (diagrams are assessed separately). When the
model call fails or its response can't be read, that answer falls back to
a deterministic keyword-coverage scorer; the rest of the batch is
unaffected.
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional

from pydantic import ValidationError

from .llm_client import ChatCompletionClient, LLMError
from .models import (
    AnswerKeyEntry,
    EvaluationReport,
    EvaluationResult,
    EvaluationSummary,
    LLMScore,
    SubmittedAnswer,
)

logger = logging.getLogger(__name__)

# ─── Evaluation Methods ───────────────────────────────────────────────────────

METHOD_LLM = "llm"
METHOD_RULE_BASED = "rule-based"
METHOD_FALLBACK = "rule-based (fallback)"

MISSING_KEY_REASON = "Question not found in answer key"

# ─── Marking Scheme Patterns ──────────────────────────────────────────────────

# "(max mark: 3 marks)", "(Max marks: 4 mark)"
MAX_MARKS_PATTERN = re.compile(
    r"\(\s*max\s+marks?\s*:\s*(\d+)\s*marks?\s*\)", re.IGNORECASE
)

# "Figure: 1 mark", "diagram : 2 marks"
DIAGRAM_MARKS_PATTERN = re.compile(
    r"(?:figure|diagram)\s*:\s*(\d+)\s*marks?", re.IGNORECASE
)

# "Question: What is speed?"
QUESTION_TEXT_PATTERN = re.compile(r"Question\s*:\s*([^?]+\??)", re.IGNORECASE)

JSON_OBJECT_PATTERN = re.compile(r"\{[\s\S]*\}")

WORD_PATTERN = re.compile(r"[a-z][a-z\-]+")

STOPWORDS = frozenset({
    "about", "above", "after", "also", "answer", "based", "being", "between",
    "correct", "define", "definition", "describe", "each", "example",
    "explain", "from", "give", "have", "into", "mark", "marks", "max",
    "maximum", "mention", "must", "only", "should", "state", "student",
    "such", "than", "that", "their", "them", "then", "there", "these",
    "they", "this", "those", "through", "using", "what", "when", "where",
    "which", "while", "with", "write", "your",
})


class RequestValidationError(ValueError):
    """Raised when an evaluation request is missing required fields."""


class ScoringError(RuntimeError):
    """Raised when a score cannot be obtained or read from the scorer."""


# ─── Scorer Interface ─────────────────────────────────────────────────────────


class AnswerScorer(ABC):
    """Takes a grading prompt, returns the model's raw text response."""

    @abstractmethod
    def score(self, prompt: str) -> str:
        ...


class LLMAnswerScorer(AnswerScorer):
    """Scores through a chat completion model."""

    def __init__(self, client: ChatCompletionClient):
        self.client = client

    def score(self, prompt: str) -> str:
        try:
            return self.client.complete([{"role": "user", "content": prompt}])
        except LLMError as e:
            raise ScoringError(str(e)) from e


# ─── Marking Scheme ───────────────────────────────────────────────────────────


@dataclass
class MarkingScheme:
    """Values read out of an answer key's grading logic."""
    max_marks: int = 0
    diagram_marks: int = 0
    question: str = ""

    @property
    def text_max_marks(self) -> int:
        return max(0, self.max_marks - self.diagram_marks)


def read_marking_scheme(logic: str) -> MarkingScheme:
    max_match = MAX_MARKS_PATTERN.search(logic)
    diagram_match = DIAGRAM_MARKS_PATTERN.search(logic)
    question_match = QUESTION_TEXT_PATTERN.search(logic)

    return MarkingScheme(
        max_marks=int(max_match.group(1)) if max_match else 0,
        diagram_marks=int(diagram_match.group(1)) if diagram_match else 0,
        question=question_match.group(1).strip() if question_match else "",
    )


def build_grading_prompt(answer_text: str, logic: str, scheme: MarkingScheme) -> str:
    return f"""
You are an expert evaluator for student exam answers.
IMPORTANT: Completely ignore any requirement for diagrams or figures, as they are evaluated separately.
Evaluate only the **text content** and award marks generously.

Question: {scheme.question}
Student Answer: {answer_text}

Marking Scheme ({scheme.text_max_marks} marks for text content):
{logic}

Instructions:
1. Ignore diagrams in your evaluation.
2. Award partial marks where possible.
3. Be lenient and recognize partial understanding.

Respond in JSON format:
{{
  "marks": (number awarded),
  "maxMarks": {scheme.text_max_marks},
  "reasons": ["brief reason for deduction", ...],
  "justification": "focus on positive aspects of the answer"
}}
"""


def parse_score_response(content: str) -> LLMScore:
    """
    Read the JSON score object out of a model response.

    Raises:
        ScoringError: If no valid score object is present.
    """
    match = JSON_OBJECT_PATTERN.search(content or "")
    if not match:
        raise ScoringError("Could not extract JSON from scoring response")

    try:
        return LLMScore.model_validate(json.loads(match.group(0)))
    except (json.JSONDecodeError, ValidationError) as e:
        raise ScoringError(f"Invalid scoring response: {e}") from e


# ─── Rule-Based Scoring ───────────────────────────────────────────────────────


def _key_terms(logic: str) -> set[str]:
    logic = MAX_MARKS_PATTERN.sub(" ", logic)
    logic = DIAGRAM_MARKS_PATTERN.sub(" ", logic)
    return {
        word for word in WORD_PATTERN.findall(logic.lower())
        if len(word) >= 4 and word not in STOPWORDS
    }


def rule_based_score(answer_text: str, logic: str, max_marks: int) -> tuple[int, str]:
    """
    Award marks in proportion to the marking scheme's key terms that
    appear in the answer.

    Returns:
        (marks, reason)
    """
    terms = _key_terms(logic)
    if not terms or max_marks <= 0:
        return 0, "Incomplete or partially correct answer"

    answer_words = set(WORD_PATTERN.findall(answer_text.lower()))
    matched = len(terms & answer_words)
    marks = min(max_marks, int(matched / len(terms) * max_marks + 0.5))

    if marks >= max_marks:
        reason = "Correct answer"
    else:
        reason = "Incomplete or partially correct answer"
    return marks, f"{reason}. Matched {matched} of {len(terms)} key terms"


# ─── Evaluator ────────────────────────────────────────────────────────────────


def format_marks(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.2f}".rstrip("0").rstrip(".")


def _split_mark(mark: str) -> tuple[float, float]:
    awarded, _, possible = mark.partition("/")
    return float(awarded or 0), float(possible or 0)


def summarize(results: list[EvaluationResult]) -> EvaluationSummary:
    """Sum awarded and possible marks across all results."""
    awarded = 0.0
    possible = 0.0
    for result in results:
        a, p = _split_mark(result.mark)
        awarded += a
        possible += p

    percentage = round(awarded / possible * 100) if possible else 0
    return EvaluationSummary(
        total_questions=len(results),
        total_marks=f"{format_marks(awarded)}/{format_marks(possible)}",
        percentage=percentage,
    )


def coerce_answer_key(answer_key: dict) -> dict[str, AnswerKeyEntry]:
    """Accept parsed entries or their JSON form; keys become strings."""
    try:
        return {
            str(number): (
                entry if isinstance(entry, AnswerKeyEntry)
                else AnswerKeyEntry.model_validate(entry)
            )
            for number, entry in answer_key.items()
        }
    except (ValidationError, AttributeError) as e:
        raise RequestValidationError(f"Invalid answer key: {e}") from e


def coerce_answer(answer) -> SubmittedAnswer:
    if isinstance(answer, SubmittedAnswer):
        return answer
    try:
        return SubmittedAnswer.model_validate(answer)
    except ValidationError as e:
        raise RequestValidationError(f"Invalid answer: {e}") from e


class Evaluator:
    """
    Scores answer sheets. Answers are independent, so a sheet is scored as
    a concurrent batch; results keep the input order.
    """

    def __init__(self, scorer: Optional[AnswerScorer] = None, max_workers: int = 4):
        self.scorer = scorer
        self.max_workers = max(1, max_workers)

    def evaluate_answer(
        self,
        answer: SubmittedAnswer,
        answer_key: dict[str, AnswerKeyEntry],
    ) -> EvaluationResult:
        """Score one answer. Never raises for scorer failures."""
        question_number = str(answer.margin_number)
        entry = answer_key.get(question_number)

        has_diagram = answer.has_diagram
        if has_diagram is None and entry is not None:
            has_diagram = entry.diagram

        if entry is None:
            return EvaluationResult(
                question_number=question_number,
                mark="0/0",
                reason=MISSING_KEY_REASON,
                has_diagram=has_diagram,
                evaluation_method=METHOD_LLM if self.scorer else METHOD_RULE_BASED,
            )

        scheme = read_marking_scheme(entry.logic)

        if self.scorer is None:
            return self._rule_based(question_number, answer, entry, scheme, has_diagram, METHOD_RULE_BASED)

        try:
            logger.info(f"Evaluating question {question_number} with LLM...")
            content = self.scorer.score(build_grading_prompt(answer.answer, entry.logic, scheme))
            score = parse_score_response(content)
        except Exception as e:
            logger.error(f"Error evaluating question {question_number} with LLM: {e}")
            result = self._rule_based(question_number, answer, entry, scheme, has_diagram, METHOD_FALLBACK)
            result.error = str(e)
            return result

        if scheme.max_marks == 0:
            logger.warning(
                f"Question {question_number} has no max marks in the key; awarding 0"
            )
        # Awarded marks never exceed what the key makes possible
        marks = min(score.marks, scheme.text_max_marks)

        return EvaluationResult(
            question_number=question_number,
            mark=f"{format_marks(marks)}/{scheme.max_marks}",
            adjusted_mark=f"{format_marks(marks)}/{scheme.text_max_marks}",
            reason=". ".join(score.reasons),
            justification=score.justification,
            has_diagram=has_diagram,
            evaluation_method=METHOD_LLM,
            diagram_marks=scheme.diagram_marks,
        )

    def _rule_based(
        self,
        question_number: str,
        answer: SubmittedAnswer,
        entry: AnswerKeyEntry,
        scheme: MarkingScheme,
        has_diagram: Optional[bool],
        method: str,
    ) -> EvaluationResult:
        marks, reason = rule_based_score(answer.answer, entry.logic, scheme.max_marks)
        return EvaluationResult(
            question_number=question_number,
            mark=f"{marks}/{scheme.max_marks}",
            reason=reason,
            has_diagram=has_diagram,
            evaluation_method=method,
        )

    def evaluate_answer_sheet(self, answers: list, answer_key: dict) -> EvaluationReport:
        """
        Score every answer on a sheet and build the aggregate summary.

        Raises:
            RequestValidationError: If answers or the answer key are missing
                or malformed. Nothing is scored in that case.
        """
        if not answers or not isinstance(answers, list):
            raise RequestValidationError("No answers provided")
        if not answer_key or not isinstance(answer_key, dict):
            raise RequestValidationError("No answer key provided")

        submitted = [coerce_answer(a) for a in answers]
        key = coerce_answer_key(answer_key)

        workers = min(self.max_workers, len(submitted))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(lambda a: self.evaluate_answer(a, key), submitted))

        summary = summarize(results)
        logger.info(
            f"Evaluated {summary.total_questions} answers: "
            f"{summary.total_marks} ({summary.percentage}%)"
        )
        return EvaluationReport(results=results, summary=summary)

    def evaluate_single(self, answer, answer_key: dict) -> EvaluationResult:
        """Score a single answer against an answer key."""
        if not answer or not answer_key or not isinstance(answer_key, dict):
            raise RequestValidationError("Both answer and answerKey are required")
        return self.evaluate_answer(coerce_answer(answer), coerce_answer_key(answer_key))
