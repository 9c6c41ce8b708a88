"""
Test Suite for Answer Keys and Evaluation
==========================================
Tests for answer-key parsing, marking-scheme reading, the evaluator's
LLM and fallback paths, and the chat completion client.
"""

from __future__ import annotations

import threading
from unittest.mock import MagicMock

import pytest
import requests

from answerscan.answer_key import (
    AnswerKeyFormatError,
    has_diagram_reference,
    load_answer_key,
    parse_answer_key,
)
from answerscan.evaluator import (
    METHOD_FALLBACK,
    METHOD_LLM,
    METHOD_RULE_BASED,
    MISSING_KEY_REASON,
    AnswerScorer,
    Evaluator,
    LLMAnswerScorer,
    RequestValidationError,
    ScoringError,
    format_marks,
    parse_score_response,
    read_marking_scheme,
    rule_based_score,
    summarize,
)
from answerscan.llm_client import ChatCompletionClient, LLMError
from answerscan.models import (
    AnswerKeyEntry,
    EvaluationResult,
    SubmittedAnswer,
)


GOOD_RESPONSE = (
    'Here is the evaluation:\n'
    '{"marks": 2, "maxMarks": 2, "reasons": ["Clear definition"], '
    '"justification": "Covers the key idea"}'
)


class StubScorer(AnswerScorer):
    """Returns a canned response; raises when the prompt contains `fail_on`."""

    def __init__(self, response: str = GOOD_RESPONSE, fail_on: str = None):
        self.response = response
        self.fail_on = fail_on
        self.prompts: list[str] = []
        self._lock = threading.Lock()

    def score(self, prompt: str) -> str:
        with self._lock:
            self.prompts.append(prompt)
        if self.fail_on and self.fail_on in prompt:
            raise ScoringError("service down")
        return self.response


# ═══════════════════════════════════════════════════════════════════════════════
# ANSWER KEY TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestAnswerKeyParser:
    """Test answer-key text parsing."""

    def test_basic_key(self):
        key = parse_answer_key(
            "1 Define speed (max mark: 3 marks)\n"
            "2 Define velocity, see Figure 1 (max mark: 4 marks)"
        )

        assert key == {
            "1": AnswerKeyEntry(logic="Define speed (max mark: 3 marks)", diagram=False),
            "2": AnswerKeyEntry(
                logic="Define velocity, see Figure 1 (max mark: 4 marks)",
                diagram=True,
            ),
        }

    def test_headers_and_continuations(self):
        key = parse_answer_key(
            "Answer Key\n"
            "Question Number Grading Logic\n"
            "1 Define speed\n"
            "   scalar quantity (max mark: 3 marks)\n"
            "\n"
            "2. Draw a block diagram of the system\n"
        )

        assert list(key) == ["1", "2"]
        assert key["1"].logic == "Define speed scalar quantity (max mark: 3 marks)"
        assert not key["1"].diagram
        assert key["2"].diagram

    def test_decimal_line_is_continuation(self):
        key = parse_answer_key("1 Define speed\n1.5 marks for units")

        assert len(key) == 1
        assert "1.5 marks for units" in key["1"].logic

    def test_keys_are_normalized(self):
        key = parse_answer_key("01) Newton's first law")
        assert list(key) == ["1"]

    def test_no_numbered_lines_raises(self):
        with pytest.raises(AnswerKeyFormatError):
            parse_answer_key("Answer Key\nThis key has no numbered lines")

    def test_empty_text_raises(self):
        with pytest.raises(AnswerKeyFormatError):
            parse_answer_key("")

    def test_diagram_keywords(self):
        assert has_diagram_reference("Label the Figures")
        assert has_diagram_reference("see fig. 2")
        assert has_diagram_reference("Complete the truth tables")
        assert has_diagram_reference("Draw a flow chart")
        assert not has_diagram_reference("Define speed (max mark: 3 marks)")
        assert not has_diagram_reference("")

    def test_diagram_keywords_match_inside_words(self):
        assert has_diagram_reference("Explain the configuration")
        assert has_diagram_reference("Choose a suitable method")
        assert has_diagram_reference("DIAGRAMMATIC summary")

    def test_load_from_text_file(self, tmp_path):
        path = tmp_path / "key.txt"
        path.write_text("1 Define work (max mark: 2 marks)\n", encoding="utf-8")

        key = load_answer_key(str(path))
        assert key["1"].logic == "Define work (max mark: 2 marks)"


# ═══════════════════════════════════════════════════════════════════════════════
# MARKING SCHEME TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestMarkingScheme:
    """Test marking-scheme reading and scoring helpers."""

    def test_read_marking_scheme(self):
        scheme = read_marking_scheme(
            "Question: What is speed? Define speed (max mark: 3 marks) Figure: 1 mark"
        )

        assert scheme.max_marks == 3
        assert scheme.diagram_marks == 1
        assert scheme.question == "What is speed?"
        assert scheme.text_max_marks == 2

    def test_missing_values_default_to_zero(self):
        scheme = read_marking_scheme("Define speed")

        assert scheme.max_marks == 0
        assert scheme.diagram_marks == 0
        assert scheme.text_max_marks == 0

    def test_parse_score_response(self):
        score = parse_score_response(GOOD_RESPONSE)

        assert score.marks == 2
        assert score.max_marks == 2
        assert score.reasons == ["Clear definition"]

    def test_parse_score_response_without_json(self):
        with pytest.raises(ScoringError, match="Could not extract JSON"):
            parse_score_response("I cannot grade this")

    def test_parse_score_response_invalid_shape(self):
        with pytest.raises(ScoringError):
            parse_score_response('{"marks": -1}')

    def test_rule_based_full_coverage(self):
        marks, reason = rule_based_score(
            "speed is a scalar quantity",
            "Speed is a scalar quantity (max mark: 2 marks)",
            2,
        )
        assert marks == 2
        assert reason.startswith("Correct answer")

    def test_rule_based_partial_coverage(self):
        marks, reason = rule_based_score(
            "speed is scalar",
            "Speed is a scalar quantity (max mark: 2 marks)",
            2,
        )
        assert marks == 1
        assert reason == (
            "Incomplete or partially correct answer. Matched 2 of 3 key terms"
        )

    def test_format_marks(self):
        assert format_marks(3.0) == "3"
        assert format_marks(2.5) == "2.5"

    def test_summarize(self):
        results = [
            EvaluationResult(question_number="1", mark="2/3", evaluation_method=METHOD_LLM),
            EvaluationResult(question_number="2", mark="1/4", evaluation_method=METHOD_LLM),
        ]
        summary = summarize(results)

        assert summary.total_questions == 2
        assert summary.total_marks == "3/7"
        assert summary.percentage == 43

    def test_summarize_zero_possible(self):
        results = [
            EvaluationResult(question_number="9", mark="0/0", evaluation_method=METHOD_LLM),
        ]
        assert summarize(results).percentage == 0
        assert summarize([]).total_marks == "0/0"


# ═══════════════════════════════════════════════════════════════════════════════
# EVALUATOR TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestEvaluator:
    """Test the evaluator's scoring paths."""

    KEY = {
        "1": AnswerKeyEntry(
            logic="Question: What is speed? Speed is a scalar quantity "
                  "(max mark: 3 marks) Figure: 1 mark",
            diagram=True,
        ),
        "2": AnswerKeyEntry(logic="Velocity has direction (max mark: 2 marks)"),
    }

    def _answer(self, number: int, text: str = "speed is a scalar quantity"):
        return SubmittedAnswer(margin_number=number, answer=text)

    def test_llm_score(self):
        evaluator = Evaluator(StubScorer())
        result = evaluator.evaluate_answer(self._answer(1), self.KEY)

        assert result.evaluation_method == METHOD_LLM
        assert result.mark == "2/3"
        assert result.adjusted_mark == "2/2"
        assert result.diagram_marks == 1
        assert result.has_diagram is True
        assert result.reason == "Clear definition"
        assert result.error is None

    def test_llm_marks_clamped_to_text_max(self):
        scorer = StubScorer('{"marks": 5, "reasons": []}')
        result = Evaluator(scorer).evaluate_answer(self._answer(1), self.KEY)

        assert result.mark == "2/3"

    def test_key_without_max_marks_awards_nothing(self):
        key = {"5": AnswerKeyEntry(logic="Define acceleration")}
        result = Evaluator(StubScorer()).evaluate_answer(self._answer(5), key)

        assert result.evaluation_method == METHOD_LLM
        assert result.mark == "0/0"
        assert result.adjusted_mark == "0/0"
        assert summarize([result]).total_marks == "0/0"

    def test_prompt_excludes_diagram_marks(self):
        scorer = StubScorer()
        Evaluator(scorer).evaluate_answer(self._answer(1, "my answer"), self.KEY)

        prompt = scorer.prompts[0]
        assert "Student Answer: my answer" in prompt
        assert "Marking Scheme (2 marks for text content)" in prompt
        assert "Question: What is speed?" in prompt

    def test_scorer_failure_falls_back(self):
        scorer = MagicMock(spec=AnswerScorer)
        scorer.score.side_effect = RuntimeError("connection reset")

        result = Evaluator(scorer).evaluate_answer(self._answer(2, "velocity direction"), self.KEY)

        assert result.evaluation_method == METHOD_FALLBACK
        assert "connection reset" in result.error
        assert result.mark == "2/2"

    def test_unreadable_response_falls_back(self):
        result = Evaluator(StubScorer("no json here")).evaluate_answer(
            self._answer(2), self.KEY
        )

        assert result.evaluation_method == METHOD_FALLBACK
        assert "Could not extract JSON" in result.error

    def test_missing_key_entry(self):
        result = Evaluator(StubScorer()).evaluate_answer(self._answer(7), self.KEY)

        assert result.mark == "0/0"
        assert result.reason == MISSING_KEY_REASON

    def test_offline_evaluator(self):
        result = Evaluator().evaluate_answer(self._answer(2, "velocity direction"), self.KEY)

        assert result.evaluation_method == METHOD_RULE_BASED
        assert result.mark == "2/2"

    def test_submitted_diagram_flag_wins(self):
        answer = SubmittedAnswer(margin_number=1, answer="x", has_diagram=False)
        result = Evaluator(StubScorer()).evaluate_answer(answer, self.KEY)

        assert result.has_diagram is False

    def test_answer_sheet_keeps_order_and_isolates_failures(self):
        scorer = StubScorer(fail_on="Student Answer: bad")
        evaluator = Evaluator(scorer, max_workers=4)

        report = evaluator.evaluate_answer_sheet(
            [
                {"marginNumber": 1, "answer": "good"},
                {"marginNumber": 2, "answer": "bad"},
                {"marginNumber": 3, "answer": "unknown"},
            ],
            {number: entry.model_dump() for number, entry in self.KEY.items()},
        )

        assert [r.question_number for r in report.results] == ["1", "2", "3"]
        assert report.results[0].evaluation_method == METHOD_LLM
        assert report.results[1].evaluation_method == METHOD_FALLBACK
        assert report.results[2].mark == "0/0"
        assert report.summary.total_questions == 3

    def test_answer_sheet_response_shape(self):
        report = Evaluator(StubScorer()).evaluate_answer_sheet(
            [{"marginNumber": 1, "answer": "good"}],
            {"1": self.KEY["1"].model_dump()},
        )
        body = report.to_response()

        assert body["success"] is True
        assert body["results"][0]["questionNumber"] == "1"
        assert body["results"][0]["evaluationMethod"] == METHOD_LLM
        assert "error" not in body["results"][0]
        assert body["summary"] == {
            "totalQuestions": 1,
            "totalMarks": "2/3",
            "percentage": 67,
        }

    def test_missing_answers_rejected(self):
        scorer = MagicMock(spec=AnswerScorer)
        evaluator = Evaluator(scorer)

        with pytest.raises(RequestValidationError):
            evaluator.evaluate_answer_sheet([], {"1": {"logic": "x"}})
        with pytest.raises(RequestValidationError):
            evaluator.evaluate_answer_sheet([{"marginNumber": 1, "answer": "a"}], None)
        with pytest.raises(RequestValidationError):
            evaluator.evaluate_answer_sheet([{"answer": "no number"}], {"1": {"logic": "x"}})

        scorer.score.assert_not_called()

    def test_evaluate_single(self):
        result = Evaluator(StubScorer()).evaluate_single(
            {"marginNumber": 2, "answer": "velocity"},
            {"2": {"logic": "Velocity has direction (max mark: 2 marks)", "diagram": False}},
        )
        assert result.mark == "2/2"

        with pytest.raises(RequestValidationError):
            Evaluator(StubScorer()).evaluate_single(None, {"2": {"logic": "x"}})

    def test_llm_scorer_wraps_client_errors(self):
        client = MagicMock()
        client.complete.side_effect = LLMError("quota exceeded")

        with pytest.raises(ScoringError, match="quota exceeded"):
            LLMAnswerScorer(client).score("prompt")


# ═══════════════════════════════════════════════════════════════════════════════
# CHAT COMPLETION CLIENT TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestChatCompletionClient:
    """Test the HTTP client against a mocked session."""

    def _client(self, session, api_key="secret"):
        return ChatCompletionClient(
            api_key=api_key,
            model="test-model",
            base_url="https://example.test/v1/",
            timeout=5,
            session=session,
        )

    def test_complete(self):
        session = MagicMock()
        session.post.return_value.json.return_value = {
            "choices": [{"message": {"content": "1. answer"}}]
        }

        text = self._client(session).complete([{"role": "user", "content": "hi"}])

        assert text == "1. answer"
        args, kwargs = session.post.call_args
        assert args[0] == "https://example.test/v1/chat/completions"
        assert kwargs["headers"]["Authorization"] == "Bearer secret"
        assert kwargs["json"]["model"] == "test-model"
        assert kwargs["timeout"] == 5

    def test_missing_api_key(self):
        session = MagicMock()

        with pytest.raises(LLMError, match="TOGETHER_API_KEY"):
            self._client(session, api_key="").complete([])
        session.post.assert_not_called()

    def test_timeout(self):
        session = MagicMock()
        session.post.side_effect = requests.exceptions.Timeout()

        with pytest.raises(LLMError, match="timed out"):
            self._client(session).complete([])

    def test_http_error(self):
        session = MagicMock()
        session.post.return_value.raise_for_status.side_effect = (
            requests.exceptions.HTTPError("429 Too Many Requests")
        )

        with pytest.raises(LLMError, match="request failed"):
            self._client(session).complete([])

    def test_malformed_response(self):
        session = MagicMock()
        session.post.return_value.json.return_value = {"unexpected": True}

        with pytest.raises(LLMError, match="Malformed"):
            self._client(session).complete([])
