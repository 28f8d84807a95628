"""
External collaborators used by the engine services.

One ``Collaborators`` bundle is built per app in ``create_app`` and stored in
``app.extensions["collaborators"]``. Services fetch it with
``get_collaborators()``; tests swap individual members for fakes.

Provider selection mirrors the key-presence rule of the LLM gateway: the
OpenAI providers are used only when AI_PROVIDER is "openai" AND a key is
configured, otherwise the deterministic local stubs are installed.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable

from flask import Flask, current_app

from reflection.ai.speech import LocalStubSynthesizer, OpenAISpeechSynthesizer
from reflection.ai.transcription import LocalStubTranscriber, OpenAITranscriber
from reflection.ai.transformation import LocalStubTransformer, OpenAITransformer
from reflection.integrations.storage import LocalFileStorage
from reflection.services.clock import SystemClock

logger = logging.getLogger(__name__)


@dataclass
class Collaborators:
    transformer: Any
    synthesizer: Any
    transcriber: Any
    storage: Any
    clock: Any
    # Delivers completion notifications (push/email). Called with the
    # Notification.to_dict() payload; optional.
    dispatcher: Callable[[dict], None] | None = None


def init_collaborators(app: Flask) -> Collaborators:
    """Build the collaborator bundle from app config and register it."""
    storage = LocalFileStorage(app.config["STORAGE_DIR"], app.config["STORAGE_BASE_URL"])
    api_key = app.config.get("OPENAI_API_KEY")
    provider = app.config.get("AI_PROVIDER", "openai")

    if provider == "openai" and api_key:
        collaborators = Collaborators(
            transformer=OpenAITransformer(api_key, app.config["OPENAI_NLP_MODEL"]),
            synthesizer=OpenAISpeechSynthesizer(storage, api_key, app.config["OPENAI_TTS_MODEL"]),
            transcriber=OpenAITranscriber(api_key, app.config["OPENAI_TRANSCRIPTION_MODEL"]),
            storage=storage,
            clock=SystemClock(),
        )
    else:
        if provider == "openai":
            logger.warning("OPENAI_API_KEY not set; using local stub AI providers")
        collaborators = Collaborators(
            transformer=LocalStubTransformer(),
            synthesizer=LocalStubSynthesizer(storage),
            transcriber=LocalStubTranscriber(),
            storage=storage,
            clock=SystemClock(),
        )

    app.extensions["collaborators"] = collaborators
    logger.info("Collaborators initialized (provider=%s)",
                "openai" if isinstance(collaborators.transformer, OpenAITransformer) else "local")
    return collaborators


def get_collaborators() -> Collaborators:
    return current_app.extensions["collaborators"]
