"""
Answer Key Parser
=================
Parses answer-key text (typed, or extracted from a PDF) into a mapping of
question number to grading logic.

Expected layout, one question per line, continuation lines allowed:

    Answer Key
    Question Number Grading Logic
    1 Define speed (max mark: 3 marks)
    2 Define velocity, see Figure 1
      with direction (max mark: 4 marks)
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

import fitz  # PyMuPDF

from .models import AnswerKeyEntry

logger = logging.getLogger(__name__)

# Header lines produced by the answer-key template
HEADER_LINES = frozenset({"answer key", "question number grading logic"})

DIAGRAM_KEYWORDS = (
    "diagram",
    "figure",
    "fig",
    "drawing",
    "illustration",
    "block diagram",
    "flow chart",
    "table",
)

# "<digits><whitespace or delimiter><rest>"; "1.5" is not a question line
KEY_LINE_PATTERN = re.compile(r"^(\d+)(?:\s*[.:)|\-](?!\d)\s*|\s+)(\S.*)$")


class AnswerKeyFormatError(ValueError):
    """Raised when no line of the key has the `<number> <logic>` shape."""


def has_diagram_reference(text: str) -> bool:
    """Case-insensitive containment of any diagram keyword."""
    lowered = text.lower()
    return any(keyword in lowered for keyword in DIAGRAM_KEYWORDS)


def _clean_lines(raw_text: str) -> list[str]:
    text = raw_text.replace("\r\n", "\n").replace("\r", "\n")
    return [
        line.strip()
        for line in text.split("\n")
        if line.strip() and line.strip().lower() not in HEADER_LINES
    ]


def parse_answer_key(raw_text: str) -> dict[str, AnswerKeyEntry]:
    """
    Parse answer-key text into `{"<number>": AnswerKeyEntry}`.

    Raises:
        AnswerKeyFormatError: If not a single line starts with a question number.
    """
    lines = _clean_lines(raw_text or "")

    if not any(KEY_LINE_PATTERN.match(line) for line in lines):
        raise AnswerKeyFormatError(
            "Answer key does not follow the expected format: no line starts "
            "with a question number. Please use the answer key template."
        )

    result: dict[str, AnswerKeyEntry] = {}
    current_question = None
    details: list[str] = []

    def commit():
        logic = " ".join(details).strip()
        result[current_question] = AnswerKeyEntry(
            logic=logic,
            diagram=has_diagram_reference(logic),
        )

    for line in lines:
        match = KEY_LINE_PATTERN.match(line)
        if match:
            if current_question is not None:
                commit()
            current_question = str(int(match.group(1)))
            details = [match.group(2)]
        elif current_question is not None:
            details.append(line)
        else:
            logger.debug(f"Skipping answer-key line before first question: {line!r}")

    if current_question is not None:
        commit()

    logger.info(f"Parsed answer key with {len(result)} questions")
    return result


def extract_key_text(pdf_path: str) -> str:
    """
    Extract plain text from an answer-key PDF.

    Raises:
        FileNotFoundError: If the PDF doesn't exist.
        RuntimeError: If the PDF cannot be read.
    """
    if not Path(pdf_path).exists():
        raise FileNotFoundError(f"PDF not found: {pdf_path}")

    try:
        with fitz.open(pdf_path) as doc:
            return "\n".join(page.get_text() for page in doc)
    except RuntimeError as e:
        raise RuntimeError(f"Failed to extract text from PDF: {e}") from e


def load_answer_key(path: str) -> dict[str, AnswerKeyEntry]:
    """Load and parse an answer key from a `.pdf` or plain-text file."""
    if Path(path).suffix.lower() == ".pdf":
        text = extract_key_text(path)
    else:
        text = Path(path).read_text(encoding="utf-8")
    return parse_answer_key(text)
