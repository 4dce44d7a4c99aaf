"""Persisting artifacts produced by browser sessions."""

from __future__ import annotations

import logging
from pathlib import Path

from .browser.base import HarnessError

LOGGER = logging.getLogger(__name__)


class ArtifactError(HarnessError):
    """Raised when an artifact cannot be written or verified."""


def save_pdf(data: bytes, directory: Path, name: str) -> Path:
    """Write ``data`` to ``directory/name``, creating the directory if needed.

    The written file is checked against ``len(data)`` before the path is returned.
    """

    if not data:
        raise ArtifactError("Refusing to write an empty PDF")
    if not name.lower().endswith(".pdf"):
        name = f"{name}.pdf"
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    try:
        path.write_bytes(data)
    except OSError as exc:
        raise ArtifactError(f"Could not write {path}: {exc}") from exc
    size = path.stat().st_size
    if size != len(data):
        raise ArtifactError(f"{path} has {size} bytes, expected {len(data)}")
    LOGGER.info("PDF saved to: %s (%d bytes)", path.resolve(), size)
    return path
