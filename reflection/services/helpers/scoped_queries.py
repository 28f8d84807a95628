"""
Owner-scoped query helpers.

Every session/affirmation/wave lookup in the services MUST go through these
helpers. A record owned by another user is indistinguishable from a missing
one: both raise NotFoundError.

Usage:
    user = resolve_user(principal_id)
    session = get_owned_session(user, session_id, lock=True)
    wave = get_owned_wave(user, wave_id)
"""

import logging

from sqlalchemy import select

from reflection.core.exceptions import NotFoundError
from reflection.models import db
from reflection.models.session import Affirmation, ReflectionSession, Wave
from reflection.models.user import Category, User

logger = logging.getLogger(__name__)


def resolve_user(principal_id: str) -> User:
    """Map an external principal id to the internal User."""
    if not principal_id:
        raise NotFoundError(resource="User")
    user = db.session.execute(
        select(User).where(User.external_id == principal_id)
    ).scalar_one_or_none()
    if user is None:
        logger.debug("resolve_user: no user for principal %s", principal_id)
        raise NotFoundError(resource="User", resource_id=principal_id)
    return user


def get_owned_category(user: User, category_id: int) -> Category:
    category = db.session.execute(
        select(Category).where(Category.id == category_id, Category.user_id == user.id)
    ).scalar_one_or_none()
    if category is None:
        raise NotFoundError(resource="Category", resource_id=category_id)
    return category


def get_owned_session(user: User, session_id: str, *, lock: bool = False) -> ReflectionSession:
    """Fetch a session owned by ``user``.

    Args:
        lock: Take a row lock (SELECT ... FOR UPDATE) for read-modify-write
              sequences that must serialize per session.
    """
    stmt = select(ReflectionSession).where(
        ReflectionSession.id == session_id,
        ReflectionSession.user_id == user.id,
    )
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    session = db.session.execute(stmt).scalar_one_or_none()
    if session is None:
        logger.debug("get_owned_session: %s not found for user %s", session_id, user.id)
        raise NotFoundError(resource="Reflection session", resource_id=session_id)
    return session


def get_session_affirmation(session: ReflectionSession, affirmation_id: str) -> Affirmation:
    """Fetch an affirmation that belongs to ``session``."""
    affirmation = db.session.execute(
        select(Affirmation).where(
            Affirmation.id == affirmation_id,
            Affirmation.session_id == session.id,
        )
    ).scalar_one_or_none()
    if affirmation is None:
        raise NotFoundError(resource="Affirmation", resource_id=affirmation_id)
    return affirmation


def get_selected_affirmation(session: ReflectionSession) -> Affirmation | None:
    """Re-read the session's selected affirmation from the database.

    Bypasses the loaded ``session.affirmations`` collection, which can lag
    behind a selection committed by another request.
    """
    return db.session.execute(
        select(Affirmation)
        .where(Affirmation.session_id == session.id, Affirmation.is_selected.is_(True))
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def get_owned_wave(user: User, wave_id: str) -> Wave:
    """Fetch a wave whose session is owned by ``user``."""
    wave = db.session.execute(
        select(Wave)
        .join(ReflectionSession, Wave.session_id == ReflectionSession.id)
        .where(Wave.id == wave_id, ReflectionSession.user_id == user.id)
    ).scalar_one_or_none()
    if wave is None:
        raise NotFoundError(resource="Wave", resource_id=wave_id)
    return wave
