"""Runtime settings shared by every send gate.

Settings live in a store (the ``settings`` table, or memory in tests) and are
served from a short-lived snapshot. Writes go through to the store and update
the snapshot immediately, so a kill-switch flip is visible to the next gate
check in this process; other processes see it after at most one TTL.
"""

import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from outreach_engine.config import settings as app_settings
from outreach_engine.logging_config import get_logger
from outreach_engine.models import SettingEntry

logger = get_logger("settings_service")

GLOBAL_SEND_ENABLED = "global_send_enabled"
AUTO_REPLY_ENABLED = "auto_reply_enabled"
MAX_FOLLOWUPS_WITHOUT_REPLY = "max_followups_without_reply"
MAX_CHARS_PER_MESSAGE = "max_chars_per_message"
LINK_POLICY = "link_policy"

LINK_POLICY_NO_LINKS_UNTIL_ENGAGEMENT = "no_links_until_engagement"
LINK_POLICY_ALWAYS_ALLOWED = "always_allowed"
ALLOWED_LINK_POLICIES = {LINK_POLICY_NO_LINKS_UNTIL_ENGAGEMENT, LINK_POLICY_ALWAYS_ALLOWED}

DEFAULT_SETTINGS: dict[str, Any] = {
    GLOBAL_SEND_ENABLED: True,
    AUTO_REPLY_ENABLED: True,
    MAX_FOLLOWUPS_WITHOUT_REPLY: 3,
    MAX_CHARS_PER_MESSAGE: 420,
    LINK_POLICY: LINK_POLICY_NO_LINKS_UNTIL_ENGAGEMENT,
}

_BOOL_KEYS = {GLOBAL_SEND_ENABLED, AUTO_REPLY_ENABLED}
_INT_KEYS = {MAX_FOLLOWUPS_WITHOUT_REPLY, MAX_CHARS_PER_MESSAGE}


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() not in {"0", "false", "no", "off", ""}
    return bool(value)


def coerce_setting(key: str, value: Any) -> Any:
    """Validate and normalize a value for a known key. Raises ValueError."""
    if key not in DEFAULT_SETTINGS:
        raise ValueError(f"Unknown setting: {key}")
    if key in _BOOL_KEYS:
        return _to_bool(value)
    if key in _INT_KEYS:
        try:
            number = int(value)
        except (TypeError, ValueError):
            raise ValueError(f"{key} must be an integer")
        if number < 1:
            raise ValueError(f"{key} must be positive")
        return number
    if key == LINK_POLICY:
        policy = str(value).strip().lower()
        if policy not in ALLOWED_LINK_POLICIES:
            raise ValueError(f"link_policy must be one of {sorted(ALLOWED_LINK_POLICIES)}")
        return policy
    return value


class SettingsStore(ABC):
    @abstractmethod
    def load_all(self) -> dict[str, Any]:
        """Return every stored key/value pair."""

    @abstractmethod
    def save(self, key: str, value: Any) -> None:
        """Persist a single key."""


class MemorySettingsStore(SettingsStore):
    def __init__(self, initial: Optional[dict[str, Any]] = None):
        self._values = dict(initial or {})
        self._lock = threading.Lock()

    def load_all(self) -> dict[str, Any]:
        with self._lock:
            return dict(self._values)

    def save(self, key: str, value: Any) -> None:
        with self._lock:
            self._values[key] = value


class DatabaseSettingsStore(SettingsStore):
    """Settings table access on a dedicated session, committed per write."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def load_all(self) -> dict[str, Any]:
        db = self.session_factory()
        try:
            return {row.key: row.value for row in db.query(SettingEntry).all()}
        finally:
            db.close()

    def save(self, key: str, value: Any) -> None:
        db = self.session_factory()
        try:
            entry = db.query(SettingEntry).filter(SettingEntry.key == key).first()
            if entry is None:
                db.add(SettingEntry(key=key, value=value))
            else:
                entry.value = value
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


class SettingsProvider:
    def __init__(
        self,
        store: SettingsStore,
        ttl_seconds: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._snapshot: Optional[dict[str, Any]] = None
        self._loaded_at = 0.0

    def seed_defaults(self) -> None:
        """Write defaults for keys the store does not have yet."""
        stored = self.store.load_all()
        for key, value in DEFAULT_SETTINGS.items():
            if key not in stored:
                self.store.save(key, value)
        self.reload()

    def reload(self) -> dict[str, Any]:
        stored = self.store.load_all()
        snapshot = dict(DEFAULT_SETTINGS)
        for key, value in stored.items():
            if key in DEFAULT_SETTINGS:
                try:
                    snapshot[key] = coerce_setting(key, value)
                except ValueError as exc:
                    logger.warning(f"Ignoring stored setting {key}={value!r}: {exc}")
            else:
                snapshot[key] = value
        with self._lock:
            self._snapshot = snapshot
            self._loaded_at = self._clock()
        return dict(snapshot)

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            fresh = self._snapshot is not None and (self._clock() - self._loaded_at) < self.ttl_seconds
            if fresh:
                return dict(self._snapshot)
        return self.reload()

    def get(self, key: str, default: Any = None) -> Any:
        return self.snapshot().get(key, default)

    def set(self, key: str, value: Any) -> Any:
        coerced = coerce_setting(key, value)
        self.store.save(key, coerced)
        with self._lock:
            if self._snapshot is not None:
                self._snapshot[key] = coerced
        logger.info("Setting updated", extra={"context": {"key": key, "value": coerced}})
        return coerced

    def global_send_enabled(self) -> bool:
        return _to_bool(self.get(GLOBAL_SEND_ENABLED, True))

    def auto_reply_enabled(self) -> bool:
        return _to_bool(self.get(AUTO_REPLY_ENABLED, True))

    def max_followups_without_reply(self) -> int:
        return int(self.get(MAX_FOLLOWUPS_WITHOUT_REPLY, DEFAULT_SETTINGS[MAX_FOLLOWUPS_WITHOUT_REPLY]))

    def max_chars_per_message(self) -> int:
        return int(self.get(MAX_CHARS_PER_MESSAGE, DEFAULT_SETTINGS[MAX_CHARS_PER_MESSAGE]))

    def link_policy(self) -> str:
        return str(self.get(LINK_POLICY, LINK_POLICY_NO_LINKS_UNTIL_ENGAGEMENT))


_provider: Optional[SettingsProvider] = None


def build_settings_provider() -> SettingsProvider:
    if app_settings.settings_backend == "memory":
        store: SettingsStore = MemorySettingsStore()
    else:
        from outreach_engine.database import SessionLocal

        store = DatabaseSettingsStore(SessionLocal)
    return SettingsProvider(store, ttl_seconds=app_settings.settings_cache_ttl_seconds)


def get_settings_provider() -> SettingsProvider:
    """Get or create the process-wide settings provider."""
    global _provider
    if _provider is None:
        _provider = build_settings_provider()
    return _provider


def set_settings_provider(provider: Optional[SettingsProvider]) -> None:
    global _provider
    _provider = provider
