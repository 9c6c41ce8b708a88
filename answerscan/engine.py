"""
Transcription Engine
====================
Page orchestrator that combines rasterization, per-page text extraction,
the cross-page state machine and validation into a complete pipeline.

Usage:
    engine = TranscriptionEngine(config)
    result = engine.transcribe_pdf("path/to/answer_sheet.pdf")
    # result.to_response() -> {"answers": [{"marginNumber": 1, "answer": ...}]}

Architecture:
    PDF → PdfRasterizer → page image → TextExtractor → page text →
    TranscriptStateMachine → RecordStore → TranscriptValidator →
    TranscriptResult (JSON)

Pages of one document are processed strictly in order: each page's merge
step depends on the carry state left by the previous page.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional

from . import __version__
from .extractor import TextExtractor, VisionModelExtractor
from .llm_client import DEFAULT_API_BASE, ChatCompletionClient
from .models import (
    DocumentMetadata,
    PageOutcome,
    PageStatus,
    SourceType,
    TranscriptEntry,
    TranscriptResult,
    TranscriptVersion,
)
from .rasterizer import PdfRasterizer, is_image_file
from .state_machine import TranscriptStateMachine
from .validator import TranscriptValidator
from .workspace import RequestWorkspace

logger = logging.getLogger(__name__)

LOG_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass
class TranscriberConfig:
    """Configuration for the transcription engine and evaluator."""

    # Model API
    api_key: str = ""
    api_base_url: str = DEFAULT_API_BASE
    vision_model: str = "meta-llama/Llama-3.2-90B-Vision-Instruct-Turbo"
    scoring_model: str = "meta-llama/Llama-3.3-70B-Instruct-Turbo"
    request_timeout: float = 120.0

    # Rendering
    dpi: int = 200

    # Per-request temp storage (system temp dir when None)
    work_dir: Optional[str] = None

    # Evaluation
    max_workers: int = 4

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @classmethod
    def from_env(cls, **overrides) -> "TranscriberConfig":
        """Build a config from environment variables; non-None overrides win."""
        env = os.environ
        config = cls(
            api_key=env.get("TOGETHER_API_KEY", ""),
            api_base_url=env.get("ANSWERSCAN_API_BASE", DEFAULT_API_BASE),
            vision_model=env.get("ANSWERSCAN_VISION_MODEL", cls.vision_model),
            scoring_model=env.get("ANSWERSCAN_SCORING_MODEL", cls.scoring_model),
            request_timeout=float(env.get("ANSWERSCAN_TIMEOUT", cls.request_timeout)),
            dpi=int(env.get("ANSWERSCAN_DPI", cls.dpi)),
            work_dir=env.get("ANSWERSCAN_WORK_DIR") or None,
            max_workers=int(env.get("ANSWERSCAN_MAX_WORKERS", cls.max_workers)),
            log_level=env.get("ANSWERSCAN_LOG_LEVEL", cls.log_level),
        )
        for key, value in overrides.items():
            if value is not None:
                setattr(config, key, value)
        return config


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None):
    """Configure the answerscan package logger."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    package_logger = logging.getLogger("answerscan")
    package_logger.setLevel(level)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    # Console handler
    if not package_logger.handlers:
        console = logging.StreamHandler()
        console.setLevel(level)
        console.setFormatter(formatter)
        package_logger.addHandler(console)
    else:
        for handler in package_logger.handlers:
            handler.setLevel(level)

    # File handler
    if log_file and not any(
        isinstance(h, logging.FileHandler)
        and h.baseFilename == os.path.abspath(log_file)
        for h in package_logger.handlers
    ):
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        package_logger.addHandler(file_handler)


PageReader = Callable[[], str]


class TranscriptionEngine:
    """
    Main transcription engine.

    Orchestrates the full pipeline:
        1. Page count / rasterization (PDF input)
        2. Text extraction, one call per page
        3. Cross-page merge (state machine + record store)
        4. Final filtering, sorting and validation

    A failure on one page degrades that page to empty text; it never aborts
    the document. Each call works on its own state and workspace, so one
    engine may serve concurrent documents.
    """

    def __init__(
        self,
        config: Optional[TranscriberConfig] = None,
        extractor: Optional[TextExtractor] = None,
        rasterizer: Optional[PdfRasterizer] = None,
    ):
        self.config = config or TranscriberConfig()
        setup_logging(self.config.log_level, self.config.log_file)

        self.extractor = extractor or VisionModelExtractor(
            ChatCompletionClient(
                api_key=self.config.api_key,
                model=self.config.vision_model,
                base_url=self.config.api_base_url,
                timeout=self.config.request_timeout,
            )
        )
        self.rasterizer = rasterizer or PdfRasterizer(dpi=self.config.dpi)

    # ─── Entry Points ─────────────────────────────────────────────────────

    def transcribe_pdf(
        self,
        pdf_path: str,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> TranscriptResult:
        """
        Transcribe a scanned answer-sheet PDF.

        Args:
            pdf_path: Path to the PDF file.
            progress_callback: Callback(page_num, total_pages) called on each page.

        Returns:
            TranscriptResult with answers, page outcomes and validation.

        Raises:
            FileNotFoundError: If the PDF doesn't exist.
            RuntimeError: If the PDF cannot be opened or has no pages.
        """
        pdf_path = os.path.abspath(pdf_path)
        total_pages = self.rasterizer.page_count(pdf_path)

        logger.info(f"Transcribing {pdf_path} ({total_pages} pages)")

        metadata = DocumentMetadata(
            source=os.path.basename(pdf_path),
            source_type=SourceType.PDF,
            total_pages=total_pages,
            file_hash=_compute_file_hash([pdf_path]),
            file_size_bytes=os.path.getsize(pdf_path),
        )

        with RequestWorkspace(self.config.work_dir) as workspace:
            readers = [
                self._pdf_page_reader(workspace, pdf_path, page_number)
                for page_number in range(1, total_pages + 1)
            ]
            return self._run(readers, metadata, progress_callback)

    def transcribe_images(
        self,
        image_paths: list[str],
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> TranscriptResult:
        """Transcribe page images given in page order."""
        if not image_paths:
            raise ValueError("No page images given")

        for path in image_paths:
            if not os.path.exists(path):
                raise FileNotFoundError(f"Image not found: {path}")

        metadata = DocumentMetadata(
            source=", ".join(os.path.basename(p) for p in image_paths),
            source_type=SourceType.IMAGES,
            total_pages=len(image_paths),
            file_hash=_compute_file_hash(image_paths),
            file_size_bytes=sum(os.path.getsize(p) for p in image_paths),
        )

        readers = [
            (lambda p=path: self.extractor.extract(Path(p)))
            for path in image_paths
        ]
        return self._run(readers, metadata, progress_callback)

    def transcribe_url(self, url: str, is_image: Optional[bool] = None) -> TranscriptResult:
        """
        Download a PDF or a single page image and transcribe it.

        Raises:
            requests.RequestException: If the download fails.
        """
        with RequestWorkspace(self.config.work_dir) as workspace:
            path = workspace.download(url, timeout=self.config.request_timeout)
            if is_image is None:
                is_image = is_image_file(str(path))

            if is_image:
                result = self.transcribe_images([str(path)])
            else:
                result = self.transcribe_pdf(str(path))

        result.document.source = url
        return result

    def transcribe_pages(
        self,
        page_texts: Iterable[str],
        source: str = "",
    ) -> TranscriptResult:
        """Merge already-extracted page texts (no model calls)."""
        texts = list(page_texts)
        metadata = DocumentMetadata(
            source=source,
            source_type=SourceType.TEXT,
            total_pages=len(texts),
        )
        readers = [(lambda t=text: t) for text in texts]
        return self._run(readers, metadata)

    # ─── Pipeline ─────────────────────────────────────────────────────────

    def _pdf_page_reader(
        self,
        workspace: RequestWorkspace,
        pdf_path: str,
        page_number: int,
    ) -> PageReader:
        def read() -> str:
            suffix = f".{self.rasterizer.image_format}"
            with workspace.page_file(page_number, suffix=suffix) as image_path:
                self.rasterizer.rasterize_page(pdf_path, page_number, image_path)
                return self.extractor.extract(image_path)
        return read

    def _run(
        self,
        readers: list[PageReader],
        metadata: DocumentMetadata,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> TranscriptResult:
        start_time = time.time()
        total_pages = len(readers)

        machine = TranscriptStateMachine()
        outcomes: list[PageOutcome] = []

        for page_number, read in enumerate(readers, start=1):
            text, error = self._read_page(read, page_number)
            stats = machine.feed_page(text, page_number)

            if error:
                status = PageStatus.FAILED
            elif not text.strip():
                status = PageStatus.EMPTY
            else:
                status = PageStatus.OK

            outcomes.append(PageOutcome(
                page_number=page_number,
                status=status,
                text_length=len(text),
                error=error,
                stats=stats,
            ))

            if progress_callback:
                progress_callback(page_number, total_pages)

        records = machine.finalize()
        validation = TranscriptValidator().validate(records, outcomes, machine.store)

        result = TranscriptResult(
            document=metadata,
            version=TranscriptVersion(
                transcriber_version=__version__,
                vision_model=self.extractor.name,
            ),
            answers=[
                TranscriptEntry(margin_number=r.question_number, answer=r.text)
                for r in records
            ],
            records=records,
            pages=outcomes,
            validation=validation,
        )

        elapsed = time.time() - start_time
        logger.info(
            f"Transcription complete in {elapsed:.2f}s: "
            f"{len(records)} answers from {total_pages} pages"
        )
        return result

    def _read_page(self, read: PageReader, page_number: int) -> tuple[str, Optional[str]]:
        """Run one page's extraction; a failure yields empty text plus the error."""
        try:
            return read() or "", None
        except Exception as e:
            logger.warning(f"Page {page_number} extraction failed: {e}")
            return "", str(e)

    # ─── Output ───────────────────────────────────────────────────────────

    def save(self, result: TranscriptResult, filepath: str):
        """Save a TranscriptResult to a JSON file."""
        path = Path(filepath)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(result.model_dump(mode="json"), f, indent=2, ensure_ascii=False)
        logger.info(f"Saved transcript: {path}")


def _compute_file_hash(paths: list[str]) -> str:
    """Compute SHA-256 over one or more files, in order."""
    sha256 = hashlib.sha256()
    for path in paths:
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(8192), b""):
                sha256.update(chunk)
    return sha256.hexdigest()
