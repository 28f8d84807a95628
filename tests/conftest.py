"""
Shared pytest fixtures for the Reflection Waves test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse); also
      installs fake collaborators and a frozen clock on the app
    - clock / transformer / synthesizer / transcriber / storage: the fakes
    - user, category: owner-side rows the engine reads
    - pending_session, captured_session, generated_session: sessions
      driven through the public operations to a given status
"""

from datetime import datetime, timedelta, timezone

import pytest

from reflection import create_app
from reflection.core.exceptions import DependencyError
from reflection.models import db as _db
from reflection.models.user import Category, User
from reflection.services.collaborators import Collaborators

PRINCIPAL = "firebase-uid-123"
OTHER_PRINCIPAL = "firebase-uid-999"


# ── Fakes ────────────────────────────────────────────────────────────────


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, now=None):
        self.current = now or datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

    def now(self):
        return self.current

    def advance(self, **kwargs):
        self.current = self.current + timedelta(**kwargs)
        return self.current


class FakeTransformer:
    def __init__(self):
        self.calls = []
        self.fail = False

    def transform(self, belief_text):
        self.calls.append(belief_text)
        if self.fail:
            raise DependencyError("transformation", "provider unavailable")
        n = len(self.calls)
        return {
            "limiting_belief": f"Belief: {belief_text}",
            "affirmation": f"Affirmation {n}: I welcome abundance",
            "is_fallback": False,
        }


class FakeSynthesizer:
    def __init__(self):
        self.calls = []
        self.fail = False

    def synthesize(self, text, voice, *, owner=None):
        self.calls.append((text, voice))
        if self.fail:
            raise DependencyError("speech synthesis", "tts down")
        return f"https://storage.test/media/affirmations/ai-generated/{len(self.calls)}.mp3"


class FakeTranscriber:
    def __init__(self, transcript="I never have enough money"):
        self.transcript = transcript
        self.calls = []
        self.fail = False

    def transcribe(self, audio):
        self.calls.append(audio)
        if self.fail:
            raise DependencyError("transcription", "whisper unavailable")
        return self.transcript


class MemoryStorage:
    def __init__(self):
        self.objects = {}
        self.fail = False

    def store(self, content, *, folder, extension, owner=None):
        if self.fail:
            raise DependencyError("file storage", "bucket unavailable")
        url = f"https://storage.test/media/{folder}/{owner}/{len(self.objects) + 1}.{extension}"
        self.objects[url] = content
        return url


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: fakes installed, rollback after test, recreate tables."""
    original = app.extensions["collaborators"]
    storage = MemoryStorage()
    app.extensions["collaborators"] = Collaborators(
        transformer=FakeTransformer(),
        synthesizer=FakeSynthesizer(),
        transcriber=FakeTranscriber(),
        storage=storage,
        clock=FrozenClock(),
    )
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()
    app.extensions["collaborators"] = original


@pytest.fixture()
def collaborators(app):
    return app.extensions["collaborators"]


@pytest.fixture()
def clock(collaborators):
    return collaborators.clock


@pytest.fixture()
def transformer(collaborators):
    return collaborators.transformer


@pytest.fixture()
def synthesizer(collaborators):
    return collaborators.synthesizer


@pytest.fixture()
def transcriber(collaborators):
    return collaborators.transcriber


@pytest.fixture()
def storage(collaborators):
    return collaborators.storage


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def user():
    u = User(external_id=PRINCIPAL, display_name="Test User")
    _db.session.add(u)
    _db.session.commit()
    return u


@pytest.fixture()
def other_user():
    u = User(external_id=OTHER_PRINCIPAL, display_name="Someone Else")
    _db.session.add(u)
    _db.session.commit()
    return u


@pytest.fixture()
def category(user):
    c = Category(user_id=user.id, name="Finances")
    _db.session.add(c)
    _db.session.commit()
    return c


@pytest.fixture()
def pending_session(category):
    from reflection.services.session_service import create_session
    return create_session(PRINCIPAL, category.id)


@pytest.fixture()
def captured_session(pending_session):
    from reflection.services.belief_capture import submit_belief
    return submit_belief(PRINCIPAL, pending_session.id, text="Money is scarce")


@pytest.fixture()
def generated_session(captured_session):
    from reflection.services.affirmation_generator import generate_affirmation
    return generate_affirmation(PRINCIPAL, captured_session.id)
