#!/usr/bin/env python3
"""
Configuration management for the Enclave SMS backend.
"""

import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

_PKG_DIR = os.path.join(os.path.dirname(__file__), "..")


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


class Config:
    """Configuration class for the application."""

    # Gemini (Google) API Configuration, used by the fallback intent classifier
    GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
    GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
    LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", 5))

    # Redis Configuration
    REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
    REDIS_DB = int(os.getenv("REDIS_DB", 0))
    USE_REDIS = _flag("USE_REDIS", "true")
    SESSION_KEY_PREFIX = os.getenv("SESSION_KEY_PREFIX", "enclave")

    # Session Configuration
    HISTORY_WINDOW = int(os.getenv("HISTORY_WINDOW", 10))
    HISTORY_MAX_ENTRIES = int(os.getenv("HISTORY_MAX_ENTRIES", 200))

    # Relational store (members, announcements, polls)
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///" + os.path.join(_PKG_DIR, "data", "enclave.db"))
    # Comma-separated organizer numbers; only organizers may draft and send
    ADMIN_NUMBERS = [n.strip() for n in os.getenv("ADMIN_NUMBERS", "").split(",") if n.strip()]

    # Exposes POST /turn and GET /session/{sender}; they carry no auth, keep off in production
    ENABLE_DEBUG_ROUTES = _flag("ENABLE_DEBUG_ROUTES", "false")

    # Twilio Configuration
    TWILIO_ACCOUNT_SID = os.getenv("TWILIO_ACCOUNT_SID")
    TWILIO_AUTH_TOKEN = os.getenv("TWILIO_AUTH_TOKEN")
    TWILIO_PHONE_NUMBER = os.getenv("TWILIO_PHONE_NUMBER")
    VALIDATE_TWILIO_SIGNATURE = _flag("VALIDATE_TWILIO_SIGNATURE", "true")
    # Public URL Twilio calls; signatures are computed against it, not the proxied request URL
    PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL")
    SMS_MAX_CHUNK = int(os.getenv("SMS_MAX_CHUNK", 1600))

    # Content retrieval (FAISS + Whoosh over org documents)
    CHUNKS_FILE_PATH = os.getenv("CHUNKS_FILE_PATH", "data/processed/chunks.json")
    FAISS_INDEX_PATH = os.getenv("FAISS_INDEX_PATH", "data/processed/faiss_index.bin")
    WHOOSH_INDEX_PATH = os.getenv("WHOOSH_INDEX_PATH", "data/processed/whoosh_index")
    EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "all-MiniLM-L6-v2")
    CONTENT_TOP_K = int(os.getenv("CONTENT_TOP_K", 5))

    # Product-help reference document
    PRODUCT_REFERENCE_PATH = os.getenv(
        "PRODUCT_REFERENCE_PATH", os.path.join(_PKG_DIR, "data", "raw", "product_reference.md")
    )

    @classmethod
    def debug_print(cls):
        print(f"[CONFIG] GEMINI_MODEL={cls.GEMINI_MODEL} set={bool(cls.GEMINI_API_KEY)} timeout={cls.LLM_TIMEOUT_SECONDS}s")
        print(f"[CONFIG] REDIS={cls.REDIS_HOST}:{cls.REDIS_PORT}/{cls.REDIS_DB} use={cls.USE_REDIS}")
        print(f"[CONFIG] TWILIO set={bool(cls.TWILIO_ACCOUNT_SID)} validate={cls.VALIDATE_TWILIO_SIGNATURE}")
        print(f"[CONFIG] ADMINS={len(cls.ADMIN_NUMBERS)} debug_routes={cls.ENABLE_DEBUG_ROUTES}")

    @classmethod
    def validate(cls):
        """Validate that numeric settings make sense."""
        problems = []

        if not 0 < cls.LLM_TIMEOUT_SECONDS < 10:
            problems.append("LLM_TIMEOUT_SECONDS must be between 0 and 10")
        if cls.HISTORY_WINDOW < 1:
            problems.append("HISTORY_WINDOW must be positive")
        if cls.SMS_MAX_CHUNK < 2:
            problems.append("SMS_MAX_CHUNK must be at least 2")

        if problems:
            raise ValueError(f"Invalid configuration: {', '.join(problems)}")

        return True

# Validate configuration on import
Config.validate()
