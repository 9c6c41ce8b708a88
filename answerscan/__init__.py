"""
Answer Sheet Transcriber
========================
Reconstructs per-question answer transcripts from scanned, multi-page exam
answer sheets and scores them against a parsed answer key.

Architecture:
    - Rasterizer: Renders PDF pages to images (PyMuPDF)
    - Text Extractor: Vision model call, one per page image
    - Line Classifier: Detects numbered answer delimiters in raw page text
    - State Machine: Merges classified lines across page boundaries
    - Record Store: Ordered, deduplicated per-question records
    - Evaluator: Scores answers against the answer key with LLM + fallback

Version: 1.0.0
"""

__version__ = "1.0.0"
