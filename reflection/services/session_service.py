"""Reflection session service: creation, reads, playback and user recordings.

Transaction policy: every public function is one unit of work and commits
before returning (see helpers.transactions).

Operations:
- create_session: open a PENDING session against one of the user's categories
- get_session / list_sessions / list_affirmations: owner-scoped reads
- track_playback: bump the playback counter
- record_user_affirmation: store the user's own recording of the affirmation
"""
import logging
import math

from sqlalchemy import func, select

from reflection.core.exceptions import ValidationError
from reflection.integrations.storage import USER_AUDIO_FOLDER
from reflection.models import db
from reflection.models.session import HAS_AFFIRMATION, PENDING, Affirmation, ReflectionSession
from reflection.services.collaborators import get_collaborators
from reflection.services.helpers.scoped_queries import (
    get_owned_category, get_owned_session, resolve_user,
)
from reflection.services.helpers.transactions import commit_unit

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100

CATEGORY_PROMPTS = {
    "Finances": "Money is...",
    "Finance": "Money is...",
    "Relationships": "Love is...",
    "Health": "My body is...",
    "Career": "My work is...",
    "Work": "My work is...",
    "Personal Growth": "I am...",
    "Personal Development": "I am...",
    "Leisure": "Fun is...",
    "Environment": "My environment is...",
    "Spirituality": "Spirituality is...",
    "Mindfulness": "Mindfulness is...",
}


def prompt_for_category(name: str) -> str:
    """Opening prompt for a category: exact, then fuzzy, then generic."""
    name = (name or "").strip()
    if name in CATEGORY_PROMPTS:
        return CATEGORY_PROMPTS[name]
    lowered = name.lower()
    if lowered:
        for key, prompt in CATEGORY_PROMPTS.items():
            key_lower = key.lower()
            if key_lower in lowered or lowered in key_lower:
                return prompt
    return f"{name} is..."


# ── Create / read ────────────────────────────────────────────────────────


def create_session(principal_id, category_id, wheel_focus_id=None):
    """Open a new PENDING session. The prompt is fixed here, from the category."""
    user = resolve_user(principal_id)
    category = get_owned_category(user, category_id)

    session = ReflectionSession(
        user_id=user.id,
        category_id=category.id,
        wheel_focus_id=wheel_focus_id,
        prompt=prompt_for_category(category.name),
        status=PENDING,
        playback_count=0,
        belief_rerecord_count=0,
    )
    db.session.add(session)
    commit_unit("create session")
    logger.info("Reflection session created", extra={"user_id": user.id, "session_id": session.id})
    return session


def get_session(principal_id, session_id):
    user = resolve_user(principal_id)
    return get_owned_session(user, session_id)


def list_sessions(principal_id, page=1, limit=10):
    """Newest-first page of the caller's sessions plus pagination metadata."""
    try:
        page = int(page)
        limit = int(limit)
    except (TypeError, ValueError):
        raise ValidationError("page and limit must be integers")
    if page < 1:
        raise ValidationError("page must be >= 1", details={"page": page})
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}",
                              details={"limit": limit})

    user = resolve_user(principal_id)
    total = db.session.execute(
        select(func.count(ReflectionSession.id)).where(ReflectionSession.user_id == user.id)
    ).scalar_one()
    items = db.session.execute(
        select(ReflectionSession)
        .where(ReflectionSession.user_id == user.id)
        .order_by(ReflectionSession.created_at.desc(), ReflectionSession.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).scalars().all()

    total_pages = math.ceil(total / limit) if total else 0
    return {
        "items": items,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_previous": page > 1,
        },
    }


def list_affirmations(principal_id, session_id):
    """All candidate affirmations of a session, newest first."""
    user = resolve_user(principal_id)
    session = get_owned_session(user, session_id)
    return db.session.execute(
        select(Affirmation)
        .where(Affirmation.session_id == session.id)
        .order_by(Affirmation.order.desc())
    ).scalars().all()


# ── Engagement ───────────────────────────────────────────────────────────


def track_playback(principal_id, session_id):
    user = resolve_user(principal_id)
    session = get_owned_session(user, session_id)
    session.ensure_status(HAS_AFFIRMATION, "track playback")

    session.playback_count = (session.playback_count or 0) + 1
    session.last_played_at = get_collaborators().clock.now()
    commit_unit("track playback")
    return session


def record_user_affirmation(principal_id, session_id, audio):
    """Store the user's own recording. Independent of which affirmation is selected.

    Raises:
        DependencyError: storage failed; the session is left untouched.
    """
    user = resolve_user(principal_id)
    session = get_owned_session(user, session_id)
    session.ensure_status(HAS_AFFIRMATION, "record affirmation audio")
    if audio is None or not audio.content:
        raise ValidationError("Audio recording is required")

    url = get_collaborators().storage.store(
        audio.content, folder=USER_AUDIO_FOLDER, extension=audio.extension,
        owner=user.external_id,
    )
    session.user_affirmation_audio_url = url
    commit_unit("record affirmation audio")
    logger.info("User affirmation audio stored",
                extra={"user_id": user.id, "session_id": session.id})
    return session
