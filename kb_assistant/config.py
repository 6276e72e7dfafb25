"""
Application configuration using Pydantic Settings.
All config is loaded from environment variables / .env file.
"""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    # ── App ──────────────────────────────────────────────
    APP_NAME: str = "school-knowledge-assistant"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"  # comma-separated
    APP_TIMEZONE: str = "Europe/Moscow"

    # ── Supabase ─────────────────────────────────────────
    SUPABASE_URL: str = ""
    SUPABASE_KEY: str = ""  # service_role key, the knowledge base is admin-only

    # ── Knowledge base storage ───────────────────────────
    KB_STORE_BACKEND: str = "memory"  # memory | supabase

    # ── LLM (Provider-Agnostic) ──────────────────────────
    LLM_PROVIDER: str = "groq"  # groq | openai | gemini
    LLM_MODEL: str = "qwen/qwen3-32b"
    LLM_API_KEY: str = ""
    LLM_TEMPERATURE: float = 0.7
    LLM_MAX_TOKENS: int = 2000

    # ── Embedding ────────────────────────────────────────
    EMBEDDING_PROVIDER: str = "gemini"  # gemini | openai
    EMBEDDING_MODEL: str = "text-embedding-004"
    EMBEDDING_API_KEY: str = ""
    EMBEDDING_DIMENSIONS: int = 768

    # ── Google Drive (sync source) ───────────────────────
    GOOGLE_DRIVE_API_KEY: str = ""
    GOOGLE_DRIVE_FOLDER_ID: str = ""
    GOOGLE_DRIVE_TIMEOUT: int = 30  # HTTP timeout in seconds

    # ── Chunking / retrieval ─────────────────────────────
    KB_CHUNK_SIZE: int = 3000
    KB_CHUNK_OVERLAP: int = 300
    KB_MIN_CHUNK_SIZE: int = 50
    KB_TOP_K: int = 5
    KB_SOURCE_PREVIEW_LENGTH: int = 200

    # ── Sync ─────────────────────────────────────────────
    KB_MIN_CONTENT_LENGTH: int = 10
    KB_CHANGE_PREFIX_LENGTH: int = 500  # prefix compared to detect unchanged files
    KB_EMBED_DELAY_SECONDS: float = 0.2  # between chunk embeddings (provider rate limit)
    KB_FILE_DELAY_SECONDS: float = 0.5  # between files
    KB_SYNC_CRON: str = ""  # e.g. "0 3 * * *"; empty disables scheduled sync

    # ── System settings cache ────────────────────────────
    SETTINGS_CACHE_TTL_SECONDS: int = 60

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
        "extra": "ignore",
    }

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance (singleton)."""
    return Settings()
