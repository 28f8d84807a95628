"""Affirmation curator: edit, select and delete candidate affirmations.

Exactly one affirmation per session is selected once any exist. Selection
and deletion run under the session row lock (SELECT ... FOR UPDATE) and
clear-then-set inside one transaction; the partial unique index
``uq_affirmations_session_selected_true`` rejects anything that slips past.

The session's ``generated_affirmation`` / ``ai_affirmation_audio_url`` are
rewritten in the same transaction that changes the selection.
"""
import logging

from sqlalchemy import func, select, update

from reflection.ai.speech import normalize_voice, resolve_voice
from reflection.core.exceptions import InvalidStateError, ValidationError
from reflection.models import db
from reflection.models.session import HAS_AFFIRMATION, Affirmation
from reflection.services.collaborators import get_collaborators
from reflection.services.helpers.scoped_queries import (
    get_owned_session, get_selected_affirmation, get_session_affirmation, resolve_user,
)
from reflection.services.helpers.transactions import commit_unit

logger = logging.getLogger(__name__)


def edit_affirmation(principal_id, session_id, text, voice_override=None):
    """Rewrite the selected affirmation's text. Its audio is discarded.

    Runs under the session row lock so the text lands on whichever
    affirmation is selected at commit time, together with the mirror.
    """
    user = resolve_user(principal_id)
    session = get_owned_session(user, session_id, lock=True)
    session.ensure_status(HAS_AFFIRMATION, "edit affirmation")
    if not session.generated_affirmation or not session.generated_affirmation.strip():
        raise InvalidStateError("Cannot edit affirmation. No generated affirmation found in session")

    cleaned = (text or "").strip()
    if not cleaned:
        raise ValidationError("Affirmation text cannot be empty", details={"text": "empty"})
    voice = normalize_voice(voice_override)

    selected = get_selected_affirmation(session)
    if selected:
        selected.affirmation_text = cleaned
        selected.audio_url = None
        if voice:
            selected.tts_voice_preference = voice

    session.generated_affirmation = cleaned
    session.ai_affirmation_audio_url = None
    commit_unit("edit affirmation")

    logger.info("Affirmation edited; audio cleared",
                extra={"user_id": user.id, "session_id": session.id})
    return session


def select_affirmation(principal_id, session_id, affirmation_id):
    """Make ``affirmation_id`` the session's only selected affirmation.

    Missing audio is synthesized first (outside the lock) with the
    affirmation's stored voice, else the user's default; the voice is
    persisted if the affirmation had none. Synthesis failure leaves the
    audio empty and the selection still happens.
    """
    user = resolve_user(principal_id)
    session = get_owned_session(user, session_id)
    session.ensure_status(HAS_AFFIRMATION, "select affirmation")
    affirmation = get_session_affirmation(session, affirmation_id)

    voice = resolve_voice(affirmation.tts_voice_preference, user.tts_voice_preference)
    audio_url = affirmation.audio_url
    if not audio_url and affirmation.affirmation_text:
        try:
            audio_url = get_collaborators().synthesizer.synthesize(
                affirmation.affirmation_text, voice, owner=user.external_id,
            )
        except Exception as exc:
            logger.warning("Speech synthesis failed for affirmation %s: %s",
                           affirmation_id, exc,
                           extra={"user_id": user.id, "session_id": session.id})

    session = get_owned_session(user, session_id, lock=True)
    session.ensure_status(HAS_AFFIRMATION, "select affirmation")
    affirmation = get_session_affirmation(session, affirmation_id)

    db.session.execute(
        update(Affirmation)
        .where(Affirmation.session_id == session.id, Affirmation.id != affirmation.id)
        .values(is_selected=False)
    )
    affirmation.is_selected = True
    if not affirmation.audio_url:
        affirmation.audio_url = audio_url
    if not affirmation.tts_voice_preference:
        affirmation.tts_voice_preference = voice

    session.generated_affirmation = affirmation.affirmation_text
    session.ai_affirmation_audio_url = affirmation.audio_url
    commit_unit("select affirmation")

    logger.info("Selected affirmation %s", affirmation_id,
                extra={"user_id": user.id, "session_id": session.id})
    return session


def delete_affirmation(principal_id, session_id, affirmation_id):
    """Delete a non-selected affirmation. The session keeps at least one."""
    user = resolve_user(principal_id)
    session = get_owned_session(user, session_id, lock=True)
    session.ensure_status(HAS_AFFIRMATION, "delete affirmation")
    affirmation = get_session_affirmation(session, affirmation_id)

    remaining = db.session.execute(
        select(func.count(Affirmation.id)).where(Affirmation.session_id == session.id)
    ).scalar_one()
    if remaining <= 1:
        raise InvalidStateError(
            "Cannot delete the only affirmation. Session must have at least one affirmation"
        )
    if affirmation.is_selected:
        raise InvalidStateError(
            "Cannot delete the selected affirmation. Select a different affirmation first"
        )

    db.session.delete(affirmation)
    commit_unit("delete affirmation")

    logger.info("Deleted affirmation %s", affirmation_id,
                extra={"user_id": user.id, "session_id": session.id})
    return session
