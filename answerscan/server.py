"""
HTTP Microservice
=================
Flask-based HTTP API for the answer-sheet transcriber.

Endpoints:
    POST   /api/transcribe        → Transcribe a PDF / page image (URL or upload)
    POST   /api/answer-key        → Parse an answer key (upload or text)
    POST   /api/evaluate          → Score an answer sheet against a key
    POST   /api/evaluate/single   → Score one answer
    GET    /api/health            → Health check
    GET    /api/info              → Version / capability info

Every failure is answered with `{"success": false, "error": "..."}`.
"""

from __future__ import annotations

import logging
from pathlib import Path

import requests
from flask import Flask, jsonify, request
from flask_cors import CORS

from . import __version__
from .answer_key import AnswerKeyFormatError, extract_key_text, parse_answer_key
from .engine import TranscriberConfig, TranscriptionEngine
from .evaluator import Evaluator, LLMAnswerScorer, RequestValidationError
from .llm_client import ChatCompletionClient
from .rasterizer import is_image_file
from .workspace import RequestWorkspace

logger = logging.getLogger(__name__)

app = Flask(__name__)
CORS(app)


def create_app(config: dict = None) -> Flask:
    """
    Create and configure the Flask app.

    Recognized keys besides Flask's own:
        TRANSCRIBER_CONFIG: TranscriberConfig (defaults to from_env())
        TEXT_EXTRACTOR: TextExtractor used for page text
        RASTERIZER: PdfRasterizer used for PDF pages
        ANSWER_SCORER: AnswerScorer used for evaluation
    """
    if config:
        app.config.update(config)

    app.config.setdefault("MAX_CONTENT_LENGTH", 100 * 1024 * 1024)  # 100MB
    if app.config.get("TRANSCRIBER_CONFIG") is None:
        app.config["TRANSCRIBER_CONFIG"] = TranscriberConfig.from_env()

    return app


# ─── Collaborators ────────────────────────────────────────────────────────────


def _transcriber_config() -> TranscriberConfig:
    return app.config.get("TRANSCRIBER_CONFIG") or TranscriberConfig.from_env()


def _engine() -> TranscriptionEngine:
    return TranscriptionEngine(
        _transcriber_config(),
        extractor=app.config.get("TEXT_EXTRACTOR"),
        rasterizer=app.config.get("RASTERIZER"),
    )


def _evaluator() -> Evaluator:
    config = _transcriber_config()
    scorer = app.config.get("ANSWER_SCORER") or LLMAnswerScorer(
        ChatCompletionClient(
            api_key=config.api_key,
            model=config.scoring_model,
            base_url=config.api_base_url,
            timeout=config.request_timeout,
        )
    )
    return Evaluator(scorer, max_workers=config.max_workers)


def _failure(message: str, status: int, details: str = None):
    body = {"success": False, "error": message}
    if details:
        body["details"] = details
    return jsonify(body), status


# ─── Health Check ─────────────────────────────────────────────────────────────


@app.route("/", methods=["GET"])
def index():
    return "API is running!"


@app.route("/api/health", methods=["GET"])
def health():
    """Health check endpoint."""
    return jsonify({
        "status": "healthy",
        "service": "answerscan",
        "version": __version__,
    })


@app.route("/api/info", methods=["GET"])
def info():
    """Version and capability info."""
    config = _transcriber_config()
    return jsonify({
        "version": __version__,
        "rasterizer": "PyMuPDF",
        "vision_model": config.vision_model,
        "scoring_model": config.scoring_model,
        "capabilities": [
            "page_transcription",
            "cross_page_answer_merge",
            "answer_key_parsing",
            "answer_evaluation",
        ],
        "supported_formats": ["pdf", "png", "jpg", "webp"],
    })


# ─── Transcription ────────────────────────────────────────────────────────────


@app.route("/api/transcribe", methods=["POST"])
def transcribe():
    """
    Transcribe a scanned answer sheet.

    Accepts either:
        - A file upload (multipart/form-data, field "file"): PDF or image
        - A JSON body with "pdfUrl" or "imageUrl"
    """
    if "file" in request.files:
        file = request.files["file"]
        if not file.filename:
            return _failure("No file selected", 400)
        pdf_url = image_url = None
    elif request.is_json:
        data = request.get_json(silent=True) or {}
        pdf_url = data.get("pdfUrl")
        image_url = data.get("imageUrl")
        if not pdf_url and not image_url:
            return _failure("No PDF or image URL provided", 400)
        file = None
    else:
        return _failure("Provide a file upload or JSON with pdfUrl / imageUrl", 400)

    engine = _engine()

    try:
        if file is not None:
            with RequestWorkspace(engine.config.work_dir) as workspace:
                path = workspace.save_upload(file, file.filename)
                if is_image_file(str(path)):
                    result = engine.transcribe_images([str(path)])
                else:
                    result = engine.transcribe_pdf(str(path))
        else:
            result = engine.transcribe_url(
                pdf_url or image_url,
                is_image=bool(image_url) and not pdf_url,
            )
    except requests.RequestException as e:
        logger.error(f"Download failed: {e}")
        return _failure("Failed to download document", 502, str(e))
    except (FileNotFoundError, RuntimeError) as e:
        logger.error(f"Processing failed: {e}")
        return _failure("Processing failed", 422, str(e))
    except Exception as e:
        logger.exception("Unexpected transcription failure")
        return _failure("Processing failed", 500, str(e))

    return jsonify({
        "success": True,
        **result.to_response(),
        "validation": result.validation.model_dump(),
    }), 200


# ─── Answer Key ───────────────────────────────────────────────────────────────


@app.route("/api/answer-key", methods=["POST"])
def answer_key():
    """
    Parse an answer key.

    Accepts either:
        - A file upload (field "file"): PDF or plain text
        - A JSON body with "text"
    """
    if "file" in request.files:
        file = request.files["file"]
        if not file.filename:
            return _failure("No file selected", 400)
        try:
            if Path(file.filename).suffix.lower() == ".pdf":
                with RequestWorkspace(_transcriber_config().work_dir) as workspace:
                    text = extract_key_text(str(workspace.save_upload(file, file.filename)))
            else:
                text = file.read().decode("utf-8", errors="replace")
        except RuntimeError as e:
            return _failure("Failed to extract text from PDF", 422, str(e))
    elif request.is_json:
        text = (request.get_json(silent=True) or {}).get("text")
        if not text:
            return _failure("No answer key text provided", 400)
    else:
        return _failure("Provide a file upload or JSON with text", 400)

    try:
        parsed = parse_answer_key(text)
    except AnswerKeyFormatError as e:
        return _failure(str(e), 422)

    return jsonify({
        "success": True,
        "data": {number: entry.model_dump() for number, entry in parsed.items()},
    }), 200


# ─── Evaluation ───────────────────────────────────────────────────────────────


@app.route("/api/evaluate", methods=["POST"])
def evaluate():
    """Score `{answers: [...], key: {data: {...}}}`."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return _failure("Invalid request format", 400, "Expected a JSON body")

    key = data.get("key")
    key_data = key.get("data") if isinstance(key, dict) else None

    try:
        report = _evaluator().evaluate_answer_sheet(data.get("answers"), key_data)
    except RequestValidationError as e:
        return _failure("Invalid request format", 400, str(e))

    return jsonify(report.to_response()), 200


@app.route("/api/evaluate/single", methods=["POST"])
def evaluate_single():
    """Score `{answer: {...}, answerKey: {...}}`."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return _failure("Invalid request format", 400, "Expected a JSON body")

    try:
        result = _evaluator().evaluate_single(data.get("answer"), data.get("answerKey"))
    except RequestValidationError as e:
        return _failure("Invalid request format", 400, str(e))

    return jsonify({"success": True, "result": result.to_response()}), 200


# ─── Run Server ──────────────────────────────────────────────────────────────


def run_server(
    host: str = "0.0.0.0",
    port: int = 3000,
    debug: bool = False,
):
    """Start the microservice server."""
    create_app()
    app.run(host=host, port=port, debug=debug)


if __name__ == "__main__":
    run_server(debug=True)
