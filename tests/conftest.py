import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SETTINGS_BACKEND"] = "memory"
os.environ["FOLLOWUP_WORKER_ENABLED"] = "false"
os.environ["ADMIN_TOKEN"] = "test-admin-token"
os.environ.pop("ALERT_BOT_TOKEN", None)
os.environ.pop("ALERT_CHAT_ID", None)

from typing import List, Optional  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import outreach_engine.models  # noqa: E402,F401
from outreach_engine.database import Base  # noqa: E402
from outreach_engine.services.ai_service import set_llm_provider  # noqa: E402
from outreach_engine.services.circuit_breaker import CircuitBreaker  # noqa: E402
from outreach_engine.services.llm import LLMProvider, LLMResponse  # noqa: E402
from outreach_engine.services.locks import KeyedLocks  # noqa: E402
from outreach_engine.services.settings_service import (  # noqa: E402
    DEFAULT_SETTINGS,
    MemorySettingsStore,
    SettingsProvider,
)


class FakeLLMProvider(LLMProvider):
    """Returns scripted replies in order; an Exception item is raised instead."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls = []

    def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        timeout_seconds: Optional[float] = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        self.calls.append({"messages": messages, "model": model, "json_mode": json_mode})
        if not self.responses:
            raise RuntimeError("no scripted response left")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return LLMResponse(content=item, model=model or "fake")


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def settings_provider():
    return SettingsProvider(MemorySettingsStore(dict(DEFAULT_SETTINGS)), ttl_seconds=0)


@pytest.fixture
def breaker_events():
    return []


@pytest.fixture
def breaker(settings_provider, breaker_events):
    return CircuitBreaker(
        settings_provider,
        max_consecutive_errors=3,
        event_sink=lambda event_type, payload: breaker_events.append((event_type, payload)),
        alert_sink=None,
    )


@pytest.fixture
def locks():
    return KeyedLocks()


@pytest.fixture
def fake_llm():
    provider = FakeLLMProvider()
    set_llm_provider(provider)
    yield provider
    set_llm_provider(None)
