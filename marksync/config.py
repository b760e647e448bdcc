import os
from pathlib import Path


BASE_DIR = Path(__file__).resolve().parent.parent


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "default-secret-key")
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", f"sqlite:///{BASE_DIR / 'marksync.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
    SYNC_EVENT_LOG_ENABLED = os.environ.get("SYNC_EVENT_LOG_ENABLED", "1") == "1"
    SYNC_EVENTS_PAGE_LIMIT = int(os.environ.get("SYNC_EVENTS_PAGE_LIMIT", "200"))
    SYNC_MAX_CHANGES_PER_REQUEST = int(
        os.environ.get("SYNC_MAX_CHANGES_PER_REQUEST", "5000")
    )


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    LOG_LEVEL = "DEBUG"
