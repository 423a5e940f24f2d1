"""
FallacyScan Configuration

Central settings loaded from environment variables.
"""

import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class Settings:
    """Immutable application settings."""

    # --- LLM Provider ---
    LLM_PROVIDER: str = os.getenv("FALLACYSCAN_LLM_PROVIDER", "gemini")
    GEMINI_API_KEY: str = os.getenv("GEMINI_API_KEY", "")
    GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
    OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
    OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")

    # --- Cache ---
    # Empty URL = primary tier disabled, in-process store only
    REDIS_URL: str = os.getenv("FALLACYSCAN_REDIS_URL", "")
    CACHE_PREFIX: str = os.getenv("FALLACYSCAN_CACHE_PREFIX", "cache")
    ANALYSIS_TTL_SECONDS: int = int(
        os.getenv("FALLACYSCAN_ANALYSIS_TTL_SECONDS", "86400")
    )

    # --- Streaming ---
    STREAM_BATCH_INTERVAL: float = float(
        os.getenv("FALLACYSCAN_STREAM_BATCH_INTERVAL", "1.0")
    )

    # --- Rate Limiting ---
    RATE_LIMIT_ENABLED: bool = _env_bool("FALLACYSCAN_RATE_LIMIT_ENABLED", "true")
    RATE_LIMIT_REQUESTS: int = int(os.getenv("FALLACYSCAN_RATE_LIMIT_REQUESTS", "10"))
    RATE_LIMIT_WINDOW_SECONDS: float = float(
        os.getenv("FALLACYSCAN_RATE_LIMIT_WINDOW_SECONDS", "60")
    )

    # --- Input ---
    MAX_TEXT_LENGTH: int = int(os.getenv("FALLACYSCAN_MAX_TEXT_LENGTH", "5000"))

    # --- Server ---
    HOST: str = os.getenv("FALLACYSCAN_HOST", "0.0.0.0")
    PORT: int = int(os.getenv("FALLACYSCAN_PORT", "8000"))

    # --- CORS ---
    CORS_ORIGINS: str = os.getenv("FALLACYSCAN_CORS_ORIGINS", "*")


settings = Settings()
