import pytest

from outreach_engine.models import SettingEntry
from outreach_engine.services.settings_service import (
    AUTO_REPLY_ENABLED,
    GLOBAL_SEND_ENABLED,
    LINK_POLICY,
    MAX_CHARS_PER_MESSAGE,
    DatabaseSettingsStore,
    MemorySettingsStore,
    SettingsProvider,
    coerce_setting,
)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestCoerceSetting:
    def test_bool_strings(self):
        assert coerce_setting(GLOBAL_SEND_ENABLED, "false") is False
        assert coerce_setting(AUTO_REPLY_ENABLED, "1") is True

    def test_int_must_be_positive(self):
        assert coerce_setting(MAX_CHARS_PER_MESSAGE, "300") == 300
        with pytest.raises(ValueError):
            coerce_setting(MAX_CHARS_PER_MESSAGE, 0)
        with pytest.raises(ValueError):
            coerce_setting(MAX_CHARS_PER_MESSAGE, "many")

    def test_link_policy_values(self):
        assert coerce_setting(LINK_POLICY, "ALWAYS_ALLOWED") == "always_allowed"
        with pytest.raises(ValueError):
            coerce_setting(LINK_POLICY, "sometimes")

    def test_unknown_key(self):
        with pytest.raises(ValueError):
            coerce_setting("send_faster", True)


class TestSettingsProvider:
    def test_defaults_when_store_empty(self):
        provider = SettingsProvider(MemorySettingsStore())
        assert provider.global_send_enabled() is True
        assert provider.max_followups_without_reply() == 3
        assert provider.max_chars_per_message() == 420
        assert provider.link_policy() == "no_links_until_engagement"

    def test_set_is_visible_immediately(self):
        clock = FakeClock()
        provider = SettingsProvider(MemorySettingsStore(), ttl_seconds=60, clock=clock)
        provider.snapshot()
        provider.set(GLOBAL_SEND_ENABLED, False)
        assert provider.global_send_enabled() is False

    def test_external_change_seen_after_ttl(self):
        clock = FakeClock()
        store = MemorySettingsStore()
        provider = SettingsProvider(store, ttl_seconds=5, clock=clock)
        assert provider.auto_reply_enabled() is True

        store.save(AUTO_REPLY_ENABLED, False)
        assert provider.auto_reply_enabled() is True

        clock.now = 6
        assert provider.auto_reply_enabled() is False

    def test_reload_is_explicit(self):
        store = MemorySettingsStore()
        provider = SettingsProvider(store, ttl_seconds=60, clock=FakeClock())
        provider.snapshot()
        store.save(MAX_CHARS_PER_MESSAGE, 100)
        provider.reload()
        assert provider.max_chars_per_message() == 100

    def test_invalid_stored_value_falls_back_to_default(self):
        provider = SettingsProvider(MemorySettingsStore({MAX_CHARS_PER_MESSAGE: "oops"}))
        assert provider.max_chars_per_message() == 420

    def test_set_rejects_invalid_value(self):
        provider = SettingsProvider(MemorySettingsStore())
        with pytest.raises(ValueError):
            provider.set(MAX_CHARS_PER_MESSAGE, -5)


class TestDatabaseSettingsStore:
    def test_seed_and_write_through(self, session_factory):
        provider = SettingsProvider(DatabaseSettingsStore(session_factory), ttl_seconds=0)
        provider.seed_defaults()
        provider.set(GLOBAL_SEND_ENABLED, False)

        db = session_factory()
        try:
            row = db.query(SettingEntry).filter(SettingEntry.key == GLOBAL_SEND_ENABLED).one()
            assert row.value is False
            assert db.query(SettingEntry).count() == 5
        finally:
            db.close()

        fresh = SettingsProvider(DatabaseSettingsStore(session_factory))
        assert fresh.global_send_enabled() is False
