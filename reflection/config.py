"""
Reflection Waves
Configuration classes for Flask App Factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name])
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Default SQLite path for local dev when PostgreSQL is not running
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'reflection_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"


def normalize_database_url(url):
    """Point bare PostgreSQL URLs at the psycopg (v3) driver.

    Railway/Heroku hand out postgres://, and SQLAlchemy maps a driverless
    postgresql:// to psycopg2, which is not installed.
    """
    if not url:
        return url
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return "postgresql+psycopg://" + url[len(prefix):]
    return url


# Generate a random key for development; production MUST use a stable env var
_DEV_SECRET = secrets.token_hex(32)


class Config:
    """Base configuration shared across all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
    }

    # AI providers: "openai" or "local" (deterministic stubs, no key required)
    AI_PROVIDER = os.getenv("AI_PROVIDER", "openai")
    OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
    OPENAI_NLP_MODEL = os.getenv("OPENAI_NLP_MODEL", "gpt-3.5-turbo")
    OPENAI_TTS_MODEL = os.getenv("OPENAI_TTS_MODEL", "tts-1")
    OPENAI_TRANSCRIPTION_MODEL = os.getenv("OPENAI_TRANSCRIPTION_MODEL", "whisper-1")

    # File storage (user recordings + synthesized audio)
    STORAGE_DIR = os.getenv("STORAGE_DIR", os.path.join(basedir, "instance", "uploads"))
    STORAGE_BASE_URL = os.getenv("STORAGE_BASE_URL", "/media")

    # Waves
    WAVE_DURATION_CHOICES = (1, 3, 7, 14, 30)
    DEFAULT_WAVE_DURATION_DAYS = 7

    # Scheduler
    SCHEDULER_ENABLED = os.getenv("SCHEDULER_ENABLED", "true").lower() == "true"
    WAVE_SWEEP_INTERVAL_SECONDS = int(os.getenv("WAVE_SWEEP_INTERVAL_SECONDS", "60"))


class DevelopmentConfig(Config):
    """Development environment configuration."""

    DEBUG = True
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = (
        normalize_database_url(_raw_db_url) if _raw_db_url else _SQLITE_DEV
    )


class TestingConfig(Config):
    """Testing environment configuration."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = normalize_database_url(os.getenv("TEST_DATABASE_URL", _SQLITE_TEST))
    AI_PROVIDER = "local"
    OPENAI_API_KEY = ""
    SCHEDULER_ENABLED = False
    STORAGE_BASE_URL = "https://storage.test/media"


class ProductionConfig(Config):
    """Production environment configuration."""

    DEBUG = False
    _raw_db_url = os.getenv("DATABASE_URL", "")
    SQLALCHEMY_DATABASE_URI = normalize_database_url(_raw_db_url) or None

    # Override engine options with PostgreSQL pool sizing + statement timeout
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,   # recycle connections every 5 min
        "pool_timeout": 20,    # wait max 20s for a connection from pool
        "connect_args": {
            "options": "-c statement_timeout=30000",  # 30s query timeout
        },
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


# Configuration mapping: environment name -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
