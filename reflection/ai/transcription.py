"""
Reflection Waves
Speech-to-text providers for spoken beliefs.

    - OpenAITranscriber: Whisper, English
    - LocalStubTranscriber: decodes UTF-8 payloads, for dev/testing

Failures always surface as DependencyError; nothing is persisted when a
transcription fails.
"""

import io
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

from reflection.core.exceptions import DependencyError

logger = logging.getLogger(__name__)

_MIME_EXTENSIONS = {
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/mp4": "m4a",
    "audio/x-m4a": "m4a",
    "audio/aac": "aac",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/webm": "webm",
    "audio/ogg": "ogg",
}


@dataclass
class AudioUpload:
    """Raw audio handed in by a client."""

    content: bytes
    filename: str = "recording.m4a"
    mimetype: str | None = None

    @property
    def extension(self) -> str:
        if self.filename and "." in self.filename:
            return self.filename.rsplit(".", 1)[1].lower()
        return _MIME_EXTENSIONS.get((self.mimetype or "").lower(), "m4a")


class Transcriber(ABC):
    """Abstract interface for transcription providers."""

    @abstractmethod
    def transcribe(self, audio: AudioUpload) -> str:
        """Return the transcript. Raises DependencyError on failure."""
        ...


class OpenAITranscriber(Transcriber):
    """OpenAI Whisper transcription."""

    def __init__(self, api_key: str, model: str = "whisper-1", language: str = "en"):
        self.api_key = api_key
        self.model = model
        self.language = language
        self._client = None

    def _get_client(self):
        if self._client is None:
            try:
                import openai
                self._client = openai.OpenAI(api_key=self.api_key)
            except ImportError:
                raise RuntimeError("openai package not installed. Run: pip install openai")
        return self._client

    def transcribe(self, audio: AudioUpload) -> str:
        if not audio.content:
            raise DependencyError("transcription", "empty audio")
        logger.info("Transcribing %d bytes (%s)", len(audio.content), audio.extension)
        try:
            transcription = self._get_client().audio.transcriptions.create(
                model=self.model,
                file=(f"recording.{audio.extension}", io.BytesIO(audio.content)),
                language=self.language,
            )
        except Exception as exc:
            raise DependencyError("transcription", str(exc)) from exc
        text = (getattr(transcription, "text", "") or "").strip()
        if not text:
            raise DependencyError("transcription", "no speech detected")
        return text


class LocalStubTranscriber(Transcriber):
    """Treats the upload as UTF-8 text. Binary payloads fail like real silence."""

    def transcribe(self, audio: AudioUpload) -> str:
        try:
            text = audio.content.decode("utf-8").strip()
        except (UnicodeDecodeError, AttributeError) as exc:
            raise DependencyError("transcription", "unreadable audio") from exc
        if not text:
            raise DependencyError("transcription", "no speech detected")
        return text
