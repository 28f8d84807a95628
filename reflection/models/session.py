"""
Reflection Waves
Reflection session domain models.

Models:
    - ReflectionSession: one belief → affirmation workflow instance
    - Affirmation: one candidate phrasing; exactly one selected per session
    - Wave: time-boxed listening window; at most one active per session

Both "exactly one" / "at most one" rules are backed by partial unique
indexes so a racing writer fails at flush time instead of leaving two rows
flagged.
"""

import uuid
from datetime import datetime, timedelta, timezone

from reflection.core.exceptions import InvalidStateError
from reflection.models import db


# ── Status constants & transitions ───────────────────────────────────────────

PENDING = "PENDING"
BELIEF_CAPTURED = "BELIEF_CAPTURED"
AFFIRMATION_GENERATED = "AFFIRMATION_GENERATED"
APPROVED = "APPROVED"
COMPLETED = "COMPLETED"

SESSION_STATUSES = (PENDING, BELIEF_CAPTURED, AFFIRMATION_GENERATED, APPROVED, COMPLETED)

# COMPLETED is reachable from every non-terminal state, but only through the
# expiration reconciler.
SESSION_TRANSITIONS = {
    PENDING:               [BELIEF_CAPTURED, COMPLETED],
    BELIEF_CAPTURED:       [BELIEF_CAPTURED, AFFIRMATION_GENERATED, COMPLETED],
    AFFIRMATION_GENERATED: [AFFIRMATION_GENERATED, BELIEF_CAPTURED, APPROVED, COMPLETED],
    APPROVED:              [COMPLETED],
    COMPLETED:             [],
}

# Statuses from which each client operation is legal.
BELIEF_SUBMITTABLE = (PENDING,)
GENERATABLE = (BELIEF_CAPTURED, AFFIRMATION_GENERATED)
RE_RECORDABLE = (BELIEF_CAPTURED, AFFIRMATION_GENERATED)
HAS_AFFIRMATION = (AFFIRMATION_GENERATED, APPROVED)


def validate_session_transition(old_status, new_status):
    """Return True if ReflectionSession status transition is valid."""
    return new_status in SESSION_TRANSITIONS.get(old_status, [])


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


class ReflectionSession(db.Model):
    """
    One belief-to-affirmation workflow instance, owned by a single user.

    ``generated_affirmation`` and ``ai_affirmation_audio_url`` mirror the
    selected Affirmation row. Only the curator/generator write them, and
    always in the same transaction that changes the selection.
    """

    __tablename__ = "reflection_sessions"
    __table_args__ = (
        db.Index("ix_reflection_sessions_user_status", "user_id", "status"),
        db.Index("ix_reflection_sessions_user_created", "user_id", "created_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"),
                        nullable=False, index=True)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id", ondelete="CASCADE"),
                            nullable=False, index=True)
    wheel_focus_id = db.Column(db.String(36), nullable=True, index=True)

    # Content
    prompt = db.Column(db.Text, nullable=False)
    raw_belief_text = db.Column(db.Text, nullable=True)
    transcription_text = db.Column(db.Text, nullable=True,
                                   comment="Set only when the belief came from audio")
    limiting_belief = db.Column(db.Text, nullable=True)
    generated_affirmation = db.Column(db.Text, nullable=True,
                                      comment="Mirror of the selected affirmation text")
    approved_affirmation = db.Column(db.Text, nullable=True)

    # Media
    ai_affirmation_audio_url = db.Column(db.Text, nullable=True,
                                         comment="Mirror of the selected affirmation audio")
    user_affirmation_audio_url = db.Column(db.Text, nullable=True)

    # Engagement
    playback_count = db.Column(db.Integer, nullable=False, default=0)
    last_played_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Re-record tracking
    belief_rerecord_count = db.Column(db.Integer, nullable=False, default=0)
    belief_rerecorded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Lifecycle
    status = db.Column(db.String(30), nullable=False, default=PENDING)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    affirmations = db.relationship(
        "Affirmation", backref="session", lazy="select",
        order_by="Affirmation.order",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    waves = db.relationship(
        "Wave", backref="session", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    category = db.relationship("Category", lazy="select")

    def ensure_status(self, allowed, action):
        """Raise InvalidStateError unless the session is in one of ``allowed``."""
        if self.status not in allowed:
            raise InvalidStateError(
                f"Cannot {action}",
                current_status=self.status,
                required_statuses=tuple(allowed),
            )

    def transition_to(self, new_status):
        """Move to ``new_status`` if the transition table allows it."""
        if not validate_session_transition(self.status, new_status):
            raise InvalidStateError(
                f"Invalid transition: {self.status} → {new_status}",
            )
        self.status = new_status

    @property
    def selected_affirmation(self):
        return next((a for a in self.affirmations if a.is_selected), None)

    @property
    def active_wave(self):
        return self.waves.filter_by(is_active=True).first()

    def to_dict(self, include_affirmations=False, include_active_wave=False):
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "category_id": self.category_id,
            "category": {"id": self.category.id, "name": self.category.name}
            if self.category else None,
            "wheel_focus_id": self.wheel_focus_id,
            "prompt": self.prompt,
            "raw_belief_text": self.raw_belief_text,
            "transcription_text": self.transcription_text,
            "limiting_belief": self.limiting_belief,
            "generated_affirmation": self.generated_affirmation,
            "approved_affirmation": self.approved_affirmation,
            "ai_affirmation_audio_url": self.ai_affirmation_audio_url,
            "user_affirmation_audio_url": self.user_affirmation_audio_url,
            "playback_count": self.playback_count,
            "last_played_at": _iso(self.last_played_at),
            "belief_rerecord_count": self.belief_rerecord_count,
            "belief_rerecorded_at": _iso(self.belief_rerecorded_at),
            "status": self.status,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "completed_at": _iso(self.completed_at),
        }
        if include_affirmations:
            # Newest first, the way clients list candidates
            data["affirmations"] = [
                a.to_dict() for a in sorted(self.affirmations, key=lambda a: a.order, reverse=True)
            ]
        if include_active_wave:
            wave = self.active_wave
            data["active_wave"] = wave.to_dict() if wave else None
        return data

    def __repr__(self):
        return f"<ReflectionSession {self.id} {self.status}>"


class Affirmation(db.Model):
    """
    One candidate phrasing for a session.

    ``tts_voice_preference`` pins the voice used for this affirmation so a
    later change of the user's default does not re-voice it.
    """

    __tablename__ = "affirmations"
    __table_args__ = (
        db.Index("ix_affirmations_session_order", "session_id", "order"),
        db.Index(
            "uq_affirmations_session_selected_true",
            "session_id",
            unique=True,
            postgresql_where=db.text("is_selected IS TRUE"),
            sqlite_where=db.text("is_selected = 1"),
        ),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    session_id = db.Column(db.String(36),
                           db.ForeignKey("reflection_sessions.id", ondelete="CASCADE"),
                           nullable=False, index=True)
    affirmation_text = db.Column(db.Text, nullable=False)
    audio_url = db.Column(db.Text, nullable=True)
    is_selected = db.Column(db.Boolean, nullable=False, default=False)
    order = db.Column(db.Integer, nullable=False, default=0,
                      comment="Zero-based insertion sequence within the session")
    tts_voice_preference = db.Column(db.String(30), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "session_id": self.session_id,
            "affirmation_text": self.affirmation_text,
            "audio_url": self.audio_url,
            "is_selected": self.is_selected,
            "order": self.order,
            "tts_voice_preference": self.tts_voice_preference,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        flag = "*" if self.is_selected else ""
        return f"<Affirmation {self.id} #{self.order}{flag}>"


class Wave(db.Model):
    """
    Time-boxed listening window attached to a session.

    ``end_date`` is derived: always ``start_date + duration_days``.
    """

    __tablename__ = "waves"
    __table_args__ = (
        db.Index("ix_waves_session_active", "session_id", "is_active"),
        db.Index("ix_waves_end_date_active", "end_date", "is_active"),
        db.Index(
            "uq_waves_session_active_true",
            "session_id",
            unique=True,
            postgresql_where=db.text("is_active IS TRUE"),
            sqlite_where=db.text("is_active = 1"),
        ),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    session_id = db.Column(db.String(36),
                           db.ForeignKey("reflection_sessions.id", ondelete="CASCADE"),
                           nullable=False, index=True)
    start_date = db.Column(db.DateTime(timezone=True), nullable=False)
    end_date = db.Column(db.DateTime(timezone=True), nullable=False)
    duration_days = db.Column(db.Integer, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def reschedule(self, start_date, duration_days):
        """Set start/duration and recompute end_date from them."""
        self.start_date = start_date
        self.duration_days = duration_days
        self.end_date = start_date + timedelta(days=duration_days)

    def to_dict(self):
        return {
            "id": self.id,
            "session_id": self.session_id,
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "duration_days": self.duration_days,
            "is_active": self.is_active,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        state = "active" if self.is_active else "inactive"
        return f"<Wave {self.id} {self.duration_days}d {state}>"
