"""
Request Workspace
=================
Scoped working storage for one transcription request.

Directory Layout:
    <work_dir>/answerscan-XXXXXX/     # One per request, removed on exit
    ├── <downloaded or uploaded source>
    └── page-0001.png               # Per-page render, removed after its page
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional
from urllib.parse import urlparse

import requests

logger = logging.getLogger(__name__)


class RequestWorkspace:
    """
    Temporary directory owned by a single request.

    Usage:
        with RequestWorkspace(work_dir) as ws:
            pdf_path = ws.download(url)
            with ws.page_file(1) as image_path:
                ...
    """

    def __init__(self, base_dir: Optional[str] = None, prefix: str = "answerscan-"):
        self.base_dir = base_dir
        self.prefix = prefix
        self.path: Optional[Path] = None

    def __enter__(self) -> "RequestWorkspace":
        if self.base_dir:
            Path(self.base_dir).mkdir(parents=True, exist_ok=True)
        self.path = Path(tempfile.mkdtemp(prefix=self.prefix, dir=self.base_dir))
        logger.debug(f"Workspace created: {self.path}")
        return self

    def __exit__(self, exc_type, exc, tb):
        self.cleanup()

    def cleanup(self):
        """Remove the workspace directory and everything in it."""
        if self.path is None or not self.path.exists():
            return
        try:
            shutil.rmtree(self.path)
            logger.debug(f"Workspace removed: {self.path}")
        except OSError as e:
            logger.warning(f"Failed to remove workspace {self.path}: {e}")
        self.path = None

    def file_path(self, filename: str) -> Path:
        if self.path is None:
            raise RuntimeError("Workspace is not open")
        return self.path / _sanitize_name(filename)

    @contextmanager
    def page_file(self, page_number: int, suffix: str = ".png") -> Iterator[Path]:
        """Path for one page's render; the file is deleted when the block exits."""
        path = self.file_path(f"page-{page_number:04d}{suffix}")
        try:
            yield path
        finally:
            if path.exists():
                path.unlink()

    def save_upload(self, file_obj, filename: str) -> Path:
        """Save a Flask file upload into the workspace."""
        dest = self.file_path(filename or "upload")
        file_obj.save(str(dest))
        logger.info(f"Upload saved: {dest.name}")
        return dest

    def download(self, url: str, timeout: float = 60.0, default_name: str = "download.pdf") -> Path:
        """
        Download a remote file into the workspace.

        Raises:
            requests.RequestException: If the download fails.
        """
        name = Path(urlparse(url).path).name or default_name
        dest = self.file_path(name)

        with requests.get(url, stream=True, timeout=timeout) as resp:
            resp.raise_for_status()
            with open(dest, "wb") as f:
                for chunk in resp.iter_content(chunk_size=8192):
                    if chunk:
                        f.write(chunk)

        logger.info(f"Downloaded {url} -> {dest.name}")
        return dest


def _sanitize_name(name: str) -> str:
    """Sanitize a name for filesystem use."""
    safe = "".join(
        c if c.isalnum() or c in "-_. " else "_"
        for c in name
    ).strip().replace(" ", "_")[:100]
    # "." and ".." would escape the workspace
    return safe if safe.strip(".") else "file"
