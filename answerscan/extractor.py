"""
Page Text Extraction
====================
Capability interface for turning one page image into raw text, plus the
vision-model implementation used in production.
"""

from __future__ import annotations

import base64
import logging
import mimetypes
from abc import ABC, abstractmethod
from pathlib import Path

from .llm_client import ChatCompletionClient, LLMError

logger = logging.getLogger(__name__)

TRANSCRIPTION_PROMPT = (
    "Print the margin numbers and the answers exactly as they are written, "
    "for evaluation. No formatting is required. Do not add explanations or "
    "any extra text, and do not create margin numbers that are not on the page."
)


class ExtractionError(RuntimeError):
    """Raised when a page's text cannot be extracted."""


class TextExtractor(ABC):
    """One call per page image; returns raw, unstructured text or raises."""

    @property
    def name(self) -> str:
        return type(self).__name__

    @abstractmethod
    def extract(self, image_path: Path) -> str:
        ...


def encode_image(image_path: Path) -> str:
    """Encode an image file as a base64 data URL."""
    mime_type, _ = mimetypes.guess_type(str(image_path))
    with open(image_path, "rb") as f:
        encoded = base64.b64encode(f.read()).decode("ascii")
    return f"data:{mime_type or 'image/png'};base64,{encoded}"


class VisionModelExtractor(TextExtractor):
    """Sends the page image to a vision chat model with a transcription prompt."""

    def __init__(self, client: ChatCompletionClient, prompt: str = TRANSCRIPTION_PROMPT):
        self.client = client
        self.prompt = prompt

    @property
    def name(self) -> str:
        return self.client.model

    def extract(self, image_path: Path) -> str:
        image_path = Path(image_path)
        if not image_path.exists():
            raise ExtractionError(f"Page image not found: {image_path}")

        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": self.prompt},
                    {
                        "type": "image_url",
                        "image_url": {"url": encode_image(image_path)},
                    },
                ],
            },
        ]

        try:
            text = self.client.complete(messages)
        except LLMError as e:
            raise ExtractionError(str(e)) from e

        logger.debug(f"Extracted {len(text)} chars from {image_path.name}")
        return text
