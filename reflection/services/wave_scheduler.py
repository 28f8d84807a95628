"""Wave scheduler: create, update and delete time-boxed listening windows.

At most one wave per session is active. Creation and activation check for
another active wave under the session row lock; the partial unique index
``uq_waves_session_active_true`` backs the rule at the database level.

``end_date`` is never set directly: it is always start_date + duration_days
(see Wave.reschedule).
"""
import logging
from datetime import datetime

from flask import current_app
from sqlalchemy import select

from reflection.core.exceptions import InvalidStateError, ValidationError
from reflection.models import db
from reflection.models.session import COMPLETED, HAS_AFFIRMATION, Wave
from reflection.services.clock import as_utc
from reflection.services.collaborators import get_collaborators
from reflection.services.helpers.scoped_queries import (
    get_owned_session, get_owned_wave, resolve_user,
)
from reflection.services.helpers.transactions import commit_unit

logger = logging.getLogger(__name__)


def _validate_duration(duration_days):
    choices = current_app.config["WAVE_DURATION_CHOICES"]
    try:
        duration = int(duration_days)
    except (TypeError, ValueError):
        raise ValidationError("durationDays must be an integer",
                              details={"duration_days": duration_days})
    if duration not in choices:
        raise ValidationError(
            f"durationDays must be one of {', '.join(str(c) for c in choices)}",
            details={"duration_days": duration},
        )
    return duration


def _parse_start(start_date):
    """Accept a datetime or an ISO-8601 string (a trailing Z means UTC)."""
    if isinstance(start_date, datetime):
        return as_utc(start_date)
    if isinstance(start_date, str):
        raw = start_date.strip()
        if raw.endswith(("Z", "z")):
            raw = raw[:-1] + "+00:00"
        try:
            return as_utc(datetime.fromisoformat(raw))
        except ValueError:
            pass
    raise ValidationError("startDate must be an ISO-8601 datetime",
                          details={"start_date": repr(start_date)})


def _validate_start(start_date, now):
    start = _parse_start(start_date)
    if start < now:
        raise ValidationError("Wave start date cannot be in the past",
                              details={"start_date": start.isoformat()})
    return start


def _other_active_wave(session_id, exclude_wave_id=None):
    stmt = select(Wave).where(Wave.session_id == session_id, Wave.is_active.is_(True))
    if exclude_wave_id is not None:
        stmt = stmt.where(Wave.id != exclude_wave_id)
    return db.session.execute(stmt.limit(1)).scalar_one_or_none()


def create_wave(principal_id, session_id, duration_days=None, start_date=None):
    """Start a new active wave on a session that has an affirmation."""
    user = resolve_user(principal_id)
    session = get_owned_session(user, session_id, lock=True)
    session.ensure_status(HAS_AFFIRMATION, "create wave")
    if not session.approved_affirmation and not session.generated_affirmation:
        raise InvalidStateError(
            "Cannot create a wave. Session must have an approved or generated affirmation"
        )
    if _other_active_wave(session.id) is not None:
        raise InvalidStateError(
            "Cannot create a new wave. Session already has an active wave"
        )

    if duration_days is None:
        duration_days = current_app.config["DEFAULT_WAVE_DURATION_DAYS"]
    duration = _validate_duration(duration_days)
    now = get_collaborators().clock.now()
    start = now if start_date is None else _validate_start(start_date, now)

    wave = Wave(session_id=session.id, is_active=True)
    wave.reschedule(start, duration)
    db.session.add(wave)
    commit_unit("create wave")

    logger.info("Wave %s created (%d days, ends %s)", wave.id, duration, wave.end_date,
                extra={"user_id": user.id, "session_id": session.id, "wave_id": wave.id})
    return session


def update_wave(principal_id, wave_id, duration_days=None, start_date=None, is_active=None):
    """Change duration, start date and/or active flag of a wave.

    A new start date recomputes end_date with the effective duration; a
    duration alone recomputes from the existing start date. Activation is
    rejected while another wave of the session is active.
    """
    user = resolve_user(principal_id)
    wave = get_owned_wave(user, wave_id)
    session = get_owned_session(user, wave.session_id, lock=True)
    if session.status == COMPLETED:
        raise InvalidStateError("Cannot update wave", current_status=session.status)

    duration = _validate_duration(duration_days) if duration_days is not None else None
    if start_date is not None:
        start = _validate_start(start_date, get_collaborators().clock.now())
        wave.reschedule(start, duration if duration is not None else wave.duration_days)
    elif duration is not None:
        wave.reschedule(as_utc(wave.start_date), duration)

    if is_active is not None:
        if is_active and _other_active_wave(session.id, exclude_wave_id=wave.id) is not None:
            raise InvalidStateError(
                "Cannot activate this wave. Session already has another active wave"
            )
        wave.is_active = bool(is_active)

    commit_unit("update wave")
    logger.info("Wave %s updated", wave.id,
                extra={"user_id": user.id, "session_id": session.id, "wave_id": wave.id})
    return wave


def delete_wave(principal_id, wave_id):
    user = resolve_user(principal_id)
    wave = get_owned_wave(user, wave_id)
    db.session.delete(wave)
    commit_unit("delete wave")
    logger.info("Wave %s deleted", wave_id, extra={"user_id": user.id, "wave_id": wave_id})
