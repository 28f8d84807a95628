"""
Reflection Waves
Belief Transformation providers.

Turns a raw belief statement into ``{limiting_belief, affirmation}``:
    - OpenAITransformer: chat completion in JSON mode
    - LocalStubTransformer: deterministic output for dev/testing

Providers raise DependencyError on any failure. ``transform_with_fallback``
is the degraded path used by the affirmation generator: a failed call yields
a clearly-marked placeholder so the workflow still advances.

Usage:
    from reflection.ai.transformation import transform_with_fallback
    result = transform_with_fallback(transformer, "Money is scarce")
    result["affirmation"], result["is_fallback"]
"""

import json
import logging
import re
import threading
from abc import ABC, abstractmethod

from reflection.core.exceptions import DependencyError

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = """You are a cognitive reframing assistant specializing in transforming limiting beliefs into empowering affirmations.

Your role is to:
1. Identify and extract the core belief pattern from the user's statement (which may be limiting, neutral, or already positive)
2. Transform it into a positive, empowering affirmation that:
   - Is written in first person (I am, I have, I can, etc.)
   - Is present tense and actionable
   - Directly addresses the specific topic of the original belief (body image, relationships, work, ...)
   - Is specific and meaningful, not a generic statement or a cliché
   - Maintains psychological authenticity

Guidelines:
- If the statement contains a limiting belief, extract it as a clear, concise statement of the negative pattern
- If the statement is already positive or neutral, identify the core belief and strengthen it
- The affirmation MUST stay on topic with the original belief
- Keep affirmations realistic and achievable

Return your response as a JSON object with exactly these two fields:
- "limitingBelief": A clear statement of the belief pattern
- "generatedAffirmation": The empowering affirmation in first person that addresses the same topic"""

FALLBACK_LIMITING_BELIEF = "Belief pattern not identified"
FALLBACK_AFFIRMATION = (
    "I am transforming my relationship with this belief. "
    "I choose to see new possibilities and create positive change in my life."
)

_fallback_lock = threading.Lock()
_fallback_total = 0


# ── Helpers ───────────────────────────────────────────────────────────────────

def sanitize_text(text: str) -> str:
    """Strip markdown markers and collapse whitespace."""
    if not text:
        return ""
    text = text.strip()
    text = text.replace("**", "").replace("*", "")
    text = re.sub(r"#{1,6}\s", "", text)
    text = re.sub(r"\n{2,}", "\n", text)
    text = re.sub(r"\s{2,}", " ", text)
    return text.strip()


def fallback_transformation(belief_text: str | None) -> dict:
    """Placeholder used when the provider is unavailable or fails."""
    return {
        "limiting_belief": (belief_text or "").strip() or FALLBACK_LIMITING_BELIEF,
        "affirmation": FALLBACK_AFFIRMATION,
        "is_fallback": True,
    }


def fallback_count() -> int:
    """Number of fallback transformations served since process start."""
    return _fallback_total


def transform_with_fallback(transformer, belief_text: str) -> dict:
    """Call ``transformer`` and degrade to the placeholder on any failure."""
    global _fallback_total
    try:
        if not belief_text or not belief_text.strip():
            raise DependencyError("transformation", "empty belief text")
        return transformer.transform(belief_text)
    except Exception as exc:
        with _fallback_lock:
            _fallback_total += 1
        logger.warning("Belief transformation failed, using fallback (%s): %s",
                       _fallback_total, exc)
        return fallback_transformation(belief_text)


# ── Provider Abstract Base ────────────────────────────────────────────────────

class BeliefTransformer(ABC):
    """Abstract interface for belief transformation providers."""

    @abstractmethod
    def transform(self, belief_text: str) -> dict:
        """
        Transform a raw belief into a normalized belief and an affirmation.

        Returns:
            dict with keys: limiting_belief, affirmation, is_fallback (False)

        Raises:
            DependencyError: provider unavailable, bad response, empty fields.
        """
        ...


# ── OpenAI Provider ───────────────────────────────────────────────────────────

class OpenAITransformer(BeliefTransformer):
    """OpenAI chat-completion transformer (JSON response mode)."""

    def __init__(self, api_key: str, model: str = "gpt-3.5-turbo"):
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

    def transform(self, belief_text: str) -> dict:
        logger.info("Starting belief transformation for: %s...", belief_text[:50])
        try:
            response = self._get_client().chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": belief_text},
                ],
                response_format={"type": "json_object"},
                temperature=0.7,
                max_tokens=500,
            )
        except Exception as exc:
            raise DependencyError("transformation", str(exc)) from exc

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise DependencyError("transformation", "empty response")
        try:
            parsed = json.loads(content)
        except ValueError as exc:
            raise DependencyError("transformation", "invalid JSON response") from exc
        if not isinstance(parsed, dict):
            raise DependencyError("transformation", "invalid JSON response")

        limiting_belief = sanitize_text(parsed.get("limitingBelief") or "")
        affirmation = sanitize_text(parsed.get("generatedAffirmation") or "")
        if not limiting_belief or not affirmation:
            raise DependencyError("transformation", "missing required fields in response")
        if len(affirmation) > 500:
            logger.warning("Generated affirmation is very long (%d chars)", len(affirmation))

        logger.info("Belief transformation completed. Affirmation length: %d chars",
                    len(affirmation))
        return {"limiting_belief": limiting_belief, "affirmation": affirmation,
                "is_fallback": False}


# ── Local Stub Provider (for dev/test without API keys) ──────────────────────

class LocalStubTransformer(BeliefTransformer):
    """
    Deterministic transformer for dev/testing.
    No API key required.
    """

    def transform(self, belief_text: str) -> dict:
        belief = sanitize_text(belief_text).rstrip(".")
        return {
            "limiting_belief": belief,
            "affirmation": f"I release the belief that {belief[:1].lower()}{belief[1:]}. "
                           "I am open to a new story.",
            "is_fallback": False,
        }
