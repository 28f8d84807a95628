"""
File storage for audio assets.

Every byte the engine persists outside the database (synthesized affirmation
audio, user recordings) goes through a FileStorage. Services only ever see
the returned URL.

    - LocalFileStorage: writes under STORAGE_DIR, URLs under STORAGE_BASE_URL

Layout: ``<folder>/<owner>/<uuid>.<ext>``, e.g.
``affirmations/user-recorded/firebase-uid/3f2c....m4a``.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from pathlib import Path

from reflection.core.exceptions import DependencyError

logger = logging.getLogger(__name__)

USER_AUDIO_FOLDER = "affirmations/user-recorded"


def _safe_segment(value: str) -> str:
    keep = []
    for ch in value:
        if ch.isalnum() or ch in ("_", "-", "@"):
            keep.append(ch)
        else:
            keep.append("_")
    return "".join(keep)[:128] or "anonymous"


class FileStorage(ABC):
    """Abstract interface for blob storage backends."""

    @abstractmethod
    def store(self, content: bytes, *, folder: str, extension: str,
              owner: str | None = None) -> str:
        """Persist ``content`` and return its public URL. Raises DependencyError."""
        ...


class LocalFileStorage(FileStorage):
    """Filesystem-backed storage for single-node and dev deployments."""

    def __init__(self, root: str, base_url: str = "/media"):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    def store(self, content: bytes, *, folder: str, extension: str,
              owner: str | None = None) -> str:
        if not content:
            raise DependencyError("file storage", "empty payload")
        extension = (extension or "bin").lstrip(".").lower()
        relative = Path(folder) / _safe_segment(owner or "anonymous") / f"{uuid.uuid4()}.{extension}"
        target = self.root / relative
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with target.open("wb") as out:
                out.write(content)
        except OSError as exc:
            raise DependencyError("file storage", str(exc)) from exc
        logger.info("Stored %d bytes at %s", len(content), relative.as_posix())
        return f"{self.base_url}/{relative.as_posix()}"
