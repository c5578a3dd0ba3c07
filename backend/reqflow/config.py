# backend/reqflow/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/reqflow.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///reqflow.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Workflow guard conditions
    MIN_REJECTION_COMMENT_LENGTH = int(os.environ.get("MIN_REJECTION_COMMENT_LENGTH", "10"))
    MIN_PICKUP_NOTE_LENGTH = int(os.environ.get("MIN_PICKUP_NOTE_LENGTH", "10"))
