"""
Test Suite for the HTTP Microservice
=====================================
Route-level tests through Flask's test client with stub collaborators.
"""

from __future__ import annotations

import io
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import requests

from answerscan.engine import TranscriberConfig
from answerscan.evaluator import METHOD_FALLBACK, METHOD_LLM, AnswerScorer
from answerscan.extractor import TextExtractor
from answerscan.server import create_app
from answerscan.workspace import RequestWorkspace


class StubExtractor(TextExtractor):
    def __init__(self, pages):
        self.pages = list(pages)
        self.calls = 0

    def extract(self, image_path: Path) -> str:
        self.calls += 1
        return self.pages[self.calls - 1]


class StubRasterizer:
    image_format = "png"

    def __init__(self, count: int = 2, error: Exception = None):
        self.count = count
        self.error = error

    def page_count(self, pdf_path: str) -> int:
        if self.error:
            raise self.error
        return self.count

    def rasterize_page(self, pdf_path: str, page_number: int, output_path: Path) -> Path:
        Path(output_path).write_bytes(b"\x89PNG")
        return Path(output_path)


class StubScorer(AnswerScorer):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = 0

    def score(self, prompt: str) -> str:
        self.calls += 1
        if self.fail:
            raise RuntimeError("scoring service unavailable")
        return '{"marks": 3, "reasons": ["Complete"], "justification": "Good"}'


PAGES = [
    "Roll No: 42\n3. The answer starts here",
    "and continues here. 4. Next answer",
]

KEY_DATA = {
    "3": {"logic": "Explain inertia (max mark: 3 marks)", "diagram": False},
    "4": {"logic": "Explain momentum (max mark: 4 marks)", "diagram": False},
}


def _make_client(tmp_path, rasterizer=None, scorer=None, pages=PAGES):
    app = create_app({
        "TESTING": True,
        "TRANSCRIBER_CONFIG": TranscriberConfig(
            work_dir=str(tmp_path / "work"),
            log_level="WARNING",
        ),
        "TEXT_EXTRACTOR": StubExtractor(pages),
        "RASTERIZER": rasterizer or StubRasterizer(len(pages)),
        "ANSWER_SCORER": scorer or StubScorer(),
    })
    return app.test_client()


@pytest.fixture
def client(tmp_path):
    return _make_client(tmp_path)


# ═══════════════════════════════════════════════════════════════════════════════
# HEALTH / INFO
# ═══════════════════════════════════════════════════════════════════════════════


class TestHealth:

    def test_index(self, client):
        resp = client.get("/")
        assert resp.status_code == 200
        assert resp.get_data(as_text=True) == "API is running!"

    def test_health(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "healthy"

    def test_info(self, client):
        body = client.get("/api/info").get_json()
        assert "cross_page_answer_merge" in body["capabilities"]


# ═══════════════════════════════════════════════════════════════════════════════
# TRANSCRIPTION ROUTE
# ═══════════════════════════════════════════════════════════════════════════════


class TestTranscribeRoute:

    EXPECTED = [
        {"marginNumber": 3, "answer": "The answer starts here and continues here."},
        {"marginNumber": 4, "answer": "Next answer"},
    ]

    def test_upload_pdf(self, client, tmp_path):
        resp = client.post(
            "/api/transcribe",
            data={"file": (io.BytesIO(b"%PDF-1.4 fake"), "sheet.pdf")},
            content_type="multipart/form-data",
        )

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["success"] is True
        assert body["answers"] == self.EXPECTED
        assert body["validation"]["discarded_preamble_lines"] == 1
        assert list((tmp_path / "work").iterdir()) == []

    def test_pdf_url(self, client):
        def fake_download(self, url, timeout=60.0, default_name="download.pdf"):
            path = self.file_path("remote.pdf")
            path.write_bytes(b"%PDF-1.4 fake")
            return path

        with patch.object(RequestWorkspace, "download", autospec=True, side_effect=fake_download):
            resp = client.post(
                "/api/transcribe",
                json={"pdfUrl": "https://example.test/remote.pdf"},
            )

        assert resp.status_code == 200
        assert resp.get_json()["answers"] == self.EXPECTED

    def test_missing_input(self, client):
        resp = client.post("/api/transcribe", json={})

        assert resp.status_code == 400
        assert resp.get_json() == {
            "success": False,
            "error": "No PDF or image URL provided",
        }

    def test_no_body(self, client):
        resp = client.post("/api/transcribe")

        assert resp.status_code == 400
        assert resp.get_json()["success"] is False

    def test_download_failure(self, client):
        with patch.object(
            RequestWorkspace,
            "download",
            side_effect=requests.ConnectionError("connection refused"),
        ):
            resp = client.post(
                "/api/transcribe",
                json={"pdfUrl": "https://example.test/remote.pdf"},
            )

        assert resp.status_code == 502
        body = resp.get_json()
        assert body["success"] is False
        assert "connection refused" in body["details"]

    def test_unreadable_pdf(self, tmp_path):
        client = _make_client(
            tmp_path,
            rasterizer=StubRasterizer(error=RuntimeError("Cannot open PDF")),
        )
        resp = client.post(
            "/api/transcribe",
            data={"file": (io.BytesIO(b"not a pdf"), "broken.pdf")},
            content_type="multipart/form-data",
        )

        assert resp.status_code == 422
        assert resp.get_json()["error"] == "Processing failed"


# ═══════════════════════════════════════════════════════════════════════════════
# ANSWER KEY ROUTE
# ═══════════════════════════════════════════════════════════════════════════════


class TestAnswerKeyRoute:

    def test_text_body(self, client):
        resp = client.post(
            "/api/answer-key",
            json={"text": "1 Define speed (max mark: 3 marks)\n2 Draw a diagram"},
        )

        assert resp.status_code == 200
        assert resp.get_json()["data"] == {
            "1": {"logic": "Define speed (max mark: 3 marks)", "diagram": False},
            "2": {"logic": "Draw a diagram", "diagram": True},
        }

    def test_text_upload(self, client):
        resp = client.post(
            "/api/answer-key",
            data={"file": (io.BytesIO(b"1 Define work (max mark: 2 marks)"), "key.txt")},
            content_type="multipart/form-data",
        )

        assert resp.status_code == 200
        assert list(resp.get_json()["data"]) == ["1"]

    def test_malformed_key(self, client):
        resp = client.post("/api/answer-key", json={"text": "no numbered lines"})

        assert resp.status_code == 422
        assert resp.get_json()["success"] is False

    def test_missing_text(self, client):
        resp = client.post("/api/answer-key", json={})
        assert resp.status_code == 400


# ═══════════════════════════════════════════════════════════════════════════════
# EVALUATION ROUTES
# ═══════════════════════════════════════════════════════════════════════════════


class TestEvaluateRoute:

    ANSWERS = [
        {"marginNumber": 3, "answer": "inertia resists change"},
        {"marginNumber": 4, "answer": "momentum is mass times velocity"},
    ]

    def test_evaluate(self, client):
        resp = client.post(
            "/api/evaluate",
            json={"answers": self.ANSWERS, "key": {"data": KEY_DATA}},
        )

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["success"] is True
        assert [r["questionNumber"] for r in body["results"]] == ["3", "4"]
        assert all(r["evaluationMethod"] == METHOD_LLM for r in body["results"])
        assert body["summary"] == {
            "totalQuestions": 2,
            "totalMarks": "6/7",
            "percentage": 86,
        }

    def test_scorer_failure_falls_back(self, tmp_path):
        client = _make_client(tmp_path, scorer=StubScorer(fail=True))
        resp = client.post(
            "/api/evaluate",
            json={"answers": self.ANSWERS, "key": {"data": KEY_DATA}},
        )

        assert resp.status_code == 200
        results = resp.get_json()["results"]
        assert all(r["evaluationMethod"] == METHOD_FALLBACK for r in results)
        assert "scoring service unavailable" in results[0]["error"]

    def test_invalid_request(self, tmp_path):
        scorer = MagicMock(spec=AnswerScorer)
        client = _make_client(tmp_path, scorer=scorer)

        resp = client.post("/api/evaluate", json={"answers": self.ANSWERS})

        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Invalid request format"
        scorer.score.assert_not_called()

    def test_non_json_body(self, client):
        resp = client.post("/api/evaluate", data="answers")
        assert resp.status_code == 400

    def test_evaluate_single(self, client):
        resp = client.post(
            "/api/evaluate/single",
            json={"answer": self.ANSWERS[0], "answerKey": KEY_DATA},
        )

        assert resp.status_code == 200
        result = resp.get_json()["result"]
        assert result["questionNumber"] == "3"
        assert result["mark"] == "3/3"
