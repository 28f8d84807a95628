"""
Reflection Waves
Owner-side models.

User and category management live outside the engine; these tables hold only
what the engine reads or writes:
    - User: principal mapping, default TTS voice, lifetime completed-session counter
    - Category: wheel-of-life topic a session is opened against
"""

from datetime import datetime, timezone

from reflection.models import db


# ── Constants ────────────────────────────────────────────────────────────────

TTS_VOICE_PREFERENCES = (
    "MALE_CONFIDENT",
    "MALE_FRIENDLY",
    "FEMALE_EMPATHETIC",
    "FEMALE_ENERGETIC",
    "ANDROGYNOUS_CALM",
    "ANDROGYNOUS_WISE",
)
DEFAULT_TTS_VOICE = "ANDROGYNOUS_CALM"


class User(db.Model):
    """Internal user record resolved from an external principal id."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    external_id = db.Column(db.String(128), unique=True, nullable=False, index=True,
                            comment="Identity-provider principal (e.g. Firebase uid)")
    display_name = db.Column(db.String(150), nullable=True)
    tts_voice_preference = db.Column(db.String(30), nullable=True, default=DEFAULT_TTS_VOICE)
    completed_sessions = db.Column(db.Integer, nullable=False, default=0,
                                   comment="Lifetime count of completed reflection sessions")

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    categories = db.relationship("Category", backref="user", lazy="dynamic",
                                 cascade="all, delete-orphan", passive_deletes=True)

    def to_dict(self):
        return {
            "id": self.id,
            "external_id": self.external_id,
            "display_name": self.display_name,
            "tts_voice_preference": self.tts_voice_preference,
            "completed_sessions": self.completed_sessions,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<User {self.id} {self.external_id}>"


class Category(db.Model):
    """Topic domain (Finances, Relationships, ...) owned by one user."""

    __tablename__ = "categories"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"),
                        nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {"id": self.id, "user_id": self.user_id, "name": self.name}

    def __repr__(self):
        return f"<Category {self.id} {self.name!r}>"
