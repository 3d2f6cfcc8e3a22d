# backend/bazaar/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name, default))


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/bazaar.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///bazaar.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Transaction PIN guard
    PIN_BCRYPT_ROUNDS = _env_int("PIN_BCRYPT_ROUNDS", 10)
    PIN_MAX_FAILED_ATTEMPTS = _env_int("PIN_MAX_FAILED_ATTEMPTS", 5)
    PIN_LOCKOUT_MINUTES = _env_int("PIN_LOCKOUT_MINUTES", 60)

    # Bearer credentials issued by the login collaborator
    CREDENTIAL_TTL_HOURS = _env_int("CREDENTIAL_TTL_HOURS", 24)

    # Optimistic concurrency retry loop
    TXN_RETRY_ATTEMPTS = _env_int("TXN_RETRY_ATTEMPTS", 3)
    TXN_RETRY_BACKOFF_SECONDS = float(os.environ.get("TXN_RETRY_BACKOFF_SECONDS", "0.1"))

    CORS_ALLOWED_ORIGINS = [
        origin.strip()
        for origin in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ).split(",")
        if origin.strip()
    ]
