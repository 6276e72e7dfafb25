"""
Settings feature: Mutable system settings with defaults and a TTL cache.

Lookup order for get(key):
  cache → repository → hard-coded default (persisted on first read)
A repository failure falls back to the default instead of failing the caller.
"""

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone

from cachetools import TTLCache
from supabase import Client

from kb_assistant.core.exceptions import SettingNotFoundError
from kb_assistant.features.knowledge.prompts import DEFAULT_SYSTEM_PROMPT

logger = logging.getLogger(__name__)

AI_SYSTEM_PROMPT = "ai_system_prompt"
AI_MODEL = "ai_model"
AI_TEMPERATURE = "ai_temperature"

DEFAULT_VALUES: dict[str, str] = {
    AI_SYSTEM_PROMPT: DEFAULT_SYSTEM_PROMPT,
    AI_MODEL: "qwen/qwen3-32b",
    AI_TEMPERATURE: "0.7",
}


def category_for_key(key: str) -> str:
    if key.startswith("ai_"):
        return "ai"
    if key.startswith("maintenance_"):
        return "maintenance"
    if key.startswith(("security_", "session_")):
        return "security"
    return "general"


# ── Repositories ─────────────────────────────────────────

class SettingsRepository(ABC):
    @abstractmethod
    def fetch(self, key: str) -> str | None:
        ...

    @abstractmethod
    def upsert(self, key: str, value: str, category: str) -> None:
        ...


class SupabaseSettingsRepository(SettingsRepository):
    """Rows in the `system_settings` table, keyed by `key`."""

    TABLE = "system_settings"

    def __init__(self, db: Client):
        self.db = db

    def fetch(self, key: str) -> str | None:
        result = self.db.table(self.TABLE).select("value").eq("key", key).limit(1).execute()
        return result.data[0]["value"] if result.data else None

    def upsert(self, key: str, value: str, category: str) -> None:
        self.db.table(self.TABLE).upsert(
            {
                "key": key,
                "value": value,
                "category": category,
                "updated_at": datetime.now(timezone.utc).isoformat(),
            },
            on_conflict="key",
        ).execute()


class InMemorySettingsRepository(SettingsRepository):
    def __init__(self, initial: dict[str, str] | None = None):
        self._values = dict(initial or {})

    def fetch(self, key: str) -> str | None:
        return self._values.get(key)

    def upsert(self, key: str, value: str, category: str) -> None:
        self._values[key] = value


# ── Service ──────────────────────────────────────────────

class SettingsService:
    """get / set / reset_to_default over a repository, cached for ``cache_ttl`` seconds."""

    def __init__(
        self,
        repository: SettingsRepository,
        cache_ttl: int = 60,
        defaults: dict[str, str] | None = None,
    ):
        self.repository = repository
        self.defaults = DEFAULT_VALUES if defaults is None else defaults
        self._cache: TTLCache = TTLCache(maxsize=128, ttl=cache_ttl)
        self._lock = threading.Lock()

    def get(self, key: str) -> str:
        """Current value of a setting.

        Raises:
            SettingNotFoundError: Not stored and no default exists.
        """
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            return cached

        default = self.defaults.get(key)
        try:
            value = self.repository.fetch(key)
            if value is None and default is not None:
                # First read: persist the default so admins can see and edit it
                self.repository.upsert(key, default, category_for_key(key))
                value = default
        except Exception as e:
            logger.error(f"❌ Error reading setting {key}: {e}")
            if default is None:
                raise SettingNotFoundError(key) from e
            return default

        if value is None:
            raise SettingNotFoundError(key)

        with self._lock:
            self._cache[key] = value
        return value

    def set(self, key: str, value: str) -> None:
        self.repository.upsert(key, value, category_for_key(key))
        with self._lock:
            self._cache[key] = value
        logger.info(f"⚙️ Setting updated: {key}")

    def reset_to_default(self, key: str) -> str:
        """Restore the hard-coded default and return it.

        Raises:
            SettingNotFoundError: The key has no default.
        """
        default = self.defaults.get(key)
        if default is None:
            raise SettingNotFoundError(key)
        self.set(key, default)
        return default
