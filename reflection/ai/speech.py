"""
Reflection Waves
Speech synthesis providers + voice preference mapping.

Providers render affirmation text to audio, store it through the configured
file storage and return the public URL:
    - OpenAISpeechSynthesizer: OpenAI TTS (mp3)
    - LocalStubSynthesizer: deterministic placeholder bytes, no API key

Voice names accepted from callers are either the stored enum values
(``ANDROGYNOUS_CALM``) or the persona names shown in clients (``River``).
"""

import hashlib
import logging
from abc import ABC, abstractmethod

from reflection.core.exceptions import DependencyError
from reflection.models.user import DEFAULT_TTS_VOICE, TTS_VOICE_PREFERENCES

logger = logging.getLogger(__name__)

AI_AUDIO_FOLDER = "affirmations/ai-generated"

# Persona display name → stored voice preference
PERSONA_VOICES = {
    "sage": "ANDROGYNOUS_WISE",
    "phoenix": "FEMALE_ENERGETIC",
    "river": "ANDROGYNOUS_CALM",
    "quinn": "FEMALE_EMPATHETIC",
    "alex": "MALE_FRIENDLY",
    "robin": "MALE_CONFIDENT",
}

# Stored voice preference → OpenAI TTS voice id
OPENAI_VOICES = {
    "MALE_CONFIDENT": "onyx",
    "MALE_FRIENDLY": "echo",
    "FEMALE_EMPATHETIC": "nova",
    "FEMALE_ENERGETIC": "shimmer",
    "ANDROGYNOUS_CALM": "alloy",
    "ANDROGYNOUS_WISE": "fable",
}


def normalize_voice(name):
    """
    Map a caller-supplied voice name to a stored preference.

    Accepts enum values (any case) and persona names. Returns None for
    None/blank/unknown input.
    """
    if not name or not str(name).strip():
        return None
    key = str(name).strip()
    if key.upper() in TTS_VOICE_PREFERENCES:
        return key.upper()
    mapped = PERSONA_VOICES.get(key.lower())
    if mapped is None:
        logger.warning("Unknown voice override %r ignored", name)
    return mapped


def resolve_voice(*candidates):
    """First candidate that normalizes to a known voice, else the default."""
    for candidate in candidates:
        voice = normalize_voice(candidate)
        if voice:
            return voice
    return DEFAULT_TTS_VOICE


# ── Provider Abstract Base ────────────────────────────────────────────────────

class SpeechSynthesizer(ABC):
    """Abstract interface for speech synthesis providers."""

    def __init__(self, storage):
        self.storage = storage

    @abstractmethod
    def render(self, text: str, voice: str) -> bytes:
        """Return encoded audio bytes for ``text`` spoken in ``voice``."""
        ...

    def synthesize(self, text: str, voice: str, *, owner: str | None = None) -> str:
        """
        Render ``text`` and store the audio.

        Returns:
            Public URL of the stored audio file.

        Raises:
            DependencyError: rendering or storage failed.
        """
        if not text or not text.strip():
            raise DependencyError("speech synthesis", "empty text")
        voice = voice if voice in TTS_VOICE_PREFERENCES else DEFAULT_TTS_VOICE
        try:
            audio = self.render(text.strip(), voice)
        except DependencyError:
            raise
        except Exception as exc:
            raise DependencyError("speech synthesis", str(exc)) from exc
        url = self.storage.store(audio, folder=AI_AUDIO_FOLDER, extension="mp3", owner=owner)
        logger.info("Synthesized %d bytes of audio with voice %s", len(audio), voice)
        return url


# ── OpenAI Provider ───────────────────────────────────────────────────────────

class OpenAISpeechSynthesizer(SpeechSynthesizer):
    """OpenAI text-to-speech provider."""

    def __init__(self, storage, api_key: str, model: str = "tts-1"):
        super().__init__(storage)
        self.api_key = api_key
        self.model = model
        self._client = None

    def _get_client(self):
        if self._client is None:
            try:
                import openai
                self._client = openai.OpenAI(api_key=self.api_key)
            except ImportError:
                raise RuntimeError("openai package not installed. Run: pip install openai")
        return self._client

    def render(self, text: str, voice: str) -> bytes:
        response = self._get_client().audio.speech.create(
            model=self.model,
            voice=OPENAI_VOICES.get(voice, "alloy"),
            input=text,
            response_format="mp3",
        )
        audio = response.content
        if not audio:
            raise DependencyError("speech synthesis", "empty audio response")
        return audio


# ── Local Stub Provider (for dev/test without API keys) ──────────────────────

class LocalStubSynthesizer(SpeechSynthesizer):
    """Writes a small deterministic payload instead of real audio."""

    def render(self, text: str, voice: str) -> bytes:
        digest = hashlib.sha256(f"{voice}:{text}".encode()).hexdigest()
        return f"STUB-AUDIO {voice} {digest}".encode()
