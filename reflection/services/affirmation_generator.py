"""Affirmation generator: new candidates from the belief, and voice regeneration.

Transaction policy: each operation commits its own unit of work. External
calls (transformation, synthesis) run before the session row is locked so a
slow provider never holds the lock.

Degradation rules:
- transformation failure → fallback placeholder, workflow still advances
- synthesis failure during generation → audio stays None
- synthesis failure during regenerate_voice → DependencyError to the caller
"""
import logging

from sqlalchemy import func, select, update

from reflection.ai.speech import resolve_voice
from reflection.ai.transformation import transform_with_fallback
from reflection.core.exceptions import InvalidStateError
from reflection.models import db
from reflection.models.session import (
    AFFIRMATION_GENERATED, GENERATABLE, HAS_AFFIRMATION, Affirmation,
)
from reflection.services.collaborators import get_collaborators
from reflection.services.helpers.scoped_queries import (
    get_owned_session, get_selected_affirmation, resolve_user,
)
from reflection.services.helpers.transactions import commit_unit

logger = logging.getLogger(__name__)


def _needs_selection(session) -> bool:
    """True when the next candidate must become the selected one.

    That is the first generation, and the first generation after a
    re-record cleared the session's mirror.
    """
    has_any = db.session.execute(
        select(func.count(Affirmation.id)).where(Affirmation.session_id == session.id)
    ).scalar_one() > 0
    return not has_any or not session.generated_affirmation


def _next_order(session) -> int:
    current = db.session.execute(
        select(func.max(Affirmation.order)).where(Affirmation.session_id == session.id)
    ).scalar_one()
    return 0 if current is None else current + 1


def generate_affirmation(principal_id, session_id, voice_override=None):
    """Append a new candidate affirmation and move to AFFIRMATION_GENERATED."""
    user = resolve_user(principal_id)
    session = get_owned_session(user, session_id)
    session.ensure_status(GENERATABLE, "generate affirmation")
    if not session.raw_belief_text or not session.raw_belief_text.strip():
        raise InvalidStateError("Cannot generate affirmation. No belief text found in session")

    collaborators = get_collaborators()
    transformation = transform_with_fallback(collaborators.transformer, session.raw_belief_text)
    text = transformation["affirmation"]
    voice = resolve_voice(voice_override, user.tts_voice_preference)

    audio_url = None
    if _needs_selection(session):
        try:
            audio_url = collaborators.synthesizer.synthesize(text, voice, owner=user.external_id)
        except Exception as exc:
            logger.warning("Speech synthesis failed, continuing without audio: %s", exc,
                           extra={"user_id": user.id, "session_id": session.id})

    # Serialize with concurrent generate/select on the same session
    session = get_owned_session(user, session_id, lock=True)
    session.ensure_status(GENERATABLE, "generate affirmation")
    select_new = _needs_selection(session)

    if select_new:
        db.session.execute(
            update(Affirmation)
            .where(Affirmation.session_id == session.id, Affirmation.is_selected.is_(True))
            .values(is_selected=False)
        )

    affirmation = Affirmation(
        session_id=session.id,
        affirmation_text=text,
        audio_url=audio_url if select_new else None,
        is_selected=select_new,
        order=_next_order(session),
        tts_voice_preference=voice,
    )
    db.session.add(affirmation)

    session.limiting_belief = transformation["limiting_belief"]
    if select_new:
        session.generated_affirmation = affirmation.affirmation_text
        session.ai_affirmation_audio_url = affirmation.audio_url
    session.transition_to(AFFIRMATION_GENERATED)
    commit_unit("generate affirmation")

    logger.info("Created affirmation %s (order=%d, selected=%s, fallback=%s)",
                affirmation.id, affirmation.order, select_new, transformation["is_fallback"],
                extra={"user_id": user.id, "session_id": session.id})
    return session


def regenerate_voice(principal_id, session_id, voice_override=None):
    """Resynthesize audio for the selected affirmation and remember the voice used.

    Raises:
        DependencyError: synthesis or storage failed; nothing is changed.
        InvalidStateError: another affirmation was selected while synthesis
            ran; the new audio is discarded.
    """
    user = resolve_user(principal_id)
    session = get_owned_session(user, session_id)
    session.ensure_status(HAS_AFFIRMATION, "regenerate voice")

    selected = session.selected_affirmation
    text = selected.affirmation_text if selected else session.generated_affirmation
    if not text or not text.strip():
        raise InvalidStateError("Cannot regenerate voice. No generated affirmation found in session")

    voice = resolve_voice(
        voice_override,
        selected.tts_voice_preference if selected else None,
        user.tts_voice_preference,
    )
    selected_id = selected.id if selected else None
    audio_url = get_collaborators().synthesizer.synthesize(text, voice, owner=user.external_id)

    # The selection or its text may have changed while synthesis ran
    session = get_owned_session(user, session_id, lock=True)
    session.ensure_status(HAS_AFFIRMATION, "regenerate voice")
    selected = get_selected_affirmation(session)
    current_text = selected.affirmation_text if selected else session.generated_affirmation
    if (selected.id if selected else None) != selected_id or current_text != text:
        db.session.rollback()
        logger.warning("Selected affirmation changed during voice regeneration; audio discarded",
                       extra={"user_id": user.id, "session_id": session_id})
        raise InvalidStateError(
            "Cannot regenerate voice. The selected affirmation changed, try again"
        )

    if selected:
        selected.audio_url = audio_url
        selected.tts_voice_preference = voice
    session.ai_affirmation_audio_url = audio_url
    commit_unit("regenerate voice")

    logger.info("Regenerated affirmation audio with voice %s%s", voice,
                " (override)" if voice_override else "",
                extra={"user_id": user.id, "session_id": session.id})
    return session
