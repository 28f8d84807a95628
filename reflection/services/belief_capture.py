"""Belief capture: first submission, re-recording and editing of the belief.

A belief arrives as exactly one of ``text`` or ``audio`` (an AudioUpload).
Audio is transcribed first; a transcription failure raises DependencyError
and nothing is written.
"""
import logging

from reflection.core.exceptions import DependencyError, ValidationError
from reflection.models.session import (
    AFFIRMATION_GENERATED, BELIEF_CAPTURED, BELIEF_SUBMITTABLE, HAS_AFFIRMATION, RE_RECORDABLE,
)
from reflection.services.collaborators import get_collaborators
from reflection.services.helpers.scoped_queries import get_owned_session, resolve_user
from reflection.services.helpers.transactions import commit_unit

logger = logging.getLogger(__name__)


def _capture(text, audio):
    """Return ``(raw_belief_text, transcription_text)`` for one input."""
    has_text = text is not None
    has_audio = audio is not None
    if has_text and has_audio:
        raise ValidationError("Provide either text or audio, not both")
    if not has_text and not has_audio:
        raise ValidationError("Either text or audio must be provided")

    if has_text:
        cleaned = str(text).strip()
        if not cleaned:
            raise ValidationError("Belief text must not be empty", details={"text": "empty"})
        return cleaned, None

    if not audio.content:
        raise ValidationError("Audio recording is empty", details={"audio": "empty"})
    transcript = (get_collaborators().transcriber.transcribe(audio) or "").strip()
    if not transcript:
        raise DependencyError("transcription", "no speech detected")
    return transcript, transcript


def submit_belief(principal_id, session_id, text=None, audio=None):
    """PENDING → BELIEF_CAPTURED."""
    user = resolve_user(principal_id)
    session = get_owned_session(user, session_id)
    session.ensure_status(BELIEF_SUBMITTABLE, "submit belief")

    raw, transcription = _capture(text, audio)
    session.raw_belief_text = raw
    session.transcription_text = transcription
    session.transition_to(BELIEF_CAPTURED)
    commit_unit("submit belief")

    logger.info("Belief captured (%s)", "audio" if transcription else "text",
                extra={"user_id": user.id, "session_id": session.id})
    return session


def re_record_belief(principal_id, session_id, text=None, audio=None):
    """Replace the belief. From AFFIRMATION_GENERATED this drops the generated
    affirmation and both audio mirrors and returns to BELIEF_CAPTURED.

    Candidate Affirmation rows are kept; the next generation re-selects.
    """
    user = resolve_user(principal_id)
    session = get_owned_session(user, session_id)
    session.ensure_status(RE_RECORDABLE, "re-record belief")

    raw, transcription = _capture(text, audio)
    clock = get_collaborators().clock

    if session.status == AFFIRMATION_GENERATED:
        session.limiting_belief = None
        session.generated_affirmation = None
        session.ai_affirmation_audio_url = None
        session.user_affirmation_audio_url = None
        session.transition_to(BELIEF_CAPTURED)

    session.raw_belief_text = raw
    session.transcription_text = transcription
    session.belief_rerecord_count = (session.belief_rerecord_count or 0) + 1
    session.belief_rerecorded_at = clock.now()
    commit_unit("re-record belief")

    logger.info("Belief re-recorded (count=%d)", session.belief_rerecord_count,
                extra={"user_id": user.id, "session_id": session.id})
    return session


def edit_belief(principal_id, session_id, text):
    """Rewrite the belief text only. Affirmations and audio are untouched."""
    user = resolve_user(principal_id)
    session = get_owned_session(user, session_id)
    session.ensure_status(HAS_AFFIRMATION, "edit belief")

    cleaned = (text or "").strip()
    if not cleaned:
        raise ValidationError("Belief text must not be empty", details={"text": "empty"})
    session.raw_belief_text = cleaned
    session.transcription_text = cleaned
    commit_unit("edit belief")
    return session
