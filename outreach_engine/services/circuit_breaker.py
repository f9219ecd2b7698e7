"""Layered send gate.

Layer 1 is the persisted ``global_send_enabled`` toggle, layer 2 the per-contact
flags. Layer 3 is the consecutive-error counter kept here; reaching the
threshold switches layer 1 off. Layer 4 (content policy) belongs to the
validator and never touches the counter.
"""

import threading
from dataclasses import dataclass
from typing import Callable, Optional

from outreach_engine.config import settings as app_settings
from outreach_engine.logging_config import get_logger
from outreach_engine.models import Contact
from outreach_engine.services.alert_service import alert_critical
from outreach_engine.services.contact_service import ConsentStatus
from outreach_engine.services.event_service import SYSTEM_IDENTITY, EventType, record_detached_event
from outreach_engine.services.settings_service import (
    GLOBAL_SEND_ENABLED,
    SettingsProvider,
    get_settings_provider,
)
from outreach_engine.services.state_machine import PipelineStage

logger = get_logger("circuit_breaker")

EventSink = Callable[[EventType, dict], None]
AlertSink = Callable[[str, Optional[dict]], bool]


@dataclass
class SendDecision:
    allowed: bool
    reason: Optional[str] = None
    layer: Optional[str] = None

    def to_dict(self) -> dict:
        return {"allowed": self.allowed, "reason": self.reason, "layer": self.layer}


def check_contact_gate(contact: Optional[Contact]) -> SendDecision:
    """Layer 2: per-contact flags. Unknown contacts pass."""
    if contact is None:
        return SendDecision(allowed=True)
    if contact.consent_status == ConsentStatus.DND.value or contact.pipeline_stage == PipelineStage.DND.value:
        return SendDecision(allowed=False, reason="contact_dnd", layer="contact")
    if contact.human_required:
        return SendDecision(allowed=False, reason="human_required", layer="contact")
    if contact.bot_paused:
        return SendDecision(allowed=False, reason="bot_paused", layer="contact")
    return SendDecision(allowed=True)


class CircuitBreaker:
    def __init__(
        self,
        settings_provider: SettingsProvider,
        max_consecutive_errors: int = 3,
        event_sink: Optional[EventSink] = None,
        alert_sink: Optional[AlertSink] = alert_critical,
    ):
        self.settings_provider = settings_provider
        self.max_consecutive_errors = max(1, max_consecutive_errors)
        self.event_sink = event_sink
        self.alert_sink = alert_sink
        self._lock = threading.Lock()
        self._error_count = 0

    @property
    def error_count(self) -> int:
        with self._lock:
            return self._error_count

    def is_global_enabled(self) -> bool:
        return self.settings_provider.global_send_enabled()

    def can_send(self, contact: Optional[Contact]) -> SendDecision:
        """Layers 1 and 2, evaluated fresh on every call."""
        if not self.is_global_enabled():
            return SendDecision(allowed=False, reason="global_send_disabled", layer="global")
        return check_contact_gate(contact)

    def record_success(self) -> None:
        with self._lock:
            self._error_count = 0

    def record_error(self, error: Optional[str] = None) -> bool:
        """Count a handling failure. Returns True if this call tripped the breaker."""
        with self._lock:
            self._error_count += 1
            count = self._error_count
            should_trip = count >= self.max_consecutive_errors and self.is_global_enabled()
            if should_trip:
                self.settings_provider.set(GLOBAL_SEND_ENABLED, False)

        logger.warning(
            "Handling error recorded",
            extra={"context": {"error_count": count, "threshold": self.max_consecutive_errors, "error": error}},
        )
        if not should_trip:
            return False

        payload = {"reason": "consecutive_errors", "count": count, "last_error": error}
        logger.error("Circuit breaker tripped, global send disabled", extra={"context": payload})
        self._emit(EventType.CIRCUIT_BREAKER_TRIPPED, payload)
        if self.alert_sink:
            self.alert_sink("Circuit breaker tripped: global send disabled", payload)
        return True

    def emergency_stop(self, operator: Optional[str] = None) -> None:
        self.settings_provider.set(GLOBAL_SEND_ENABLED, False)
        logger.warning("Emergency stop: all sending disabled", extra={"context": {"operator": operator}})
        self._emit(EventType.EMERGENCY_STOP, {"operator": operator})

    def resume(self, operator: Optional[str] = None) -> None:
        with self._lock:
            self.settings_provider.set(GLOBAL_SEND_ENABLED, True)
            self._error_count = 0
        logger.info("Global sending resumed", extra={"context": {"operator": operator}})
        self._emit(EventType.SEND_RESUMED, {"operator": operator})

    def _emit(self, event_type: EventType, payload: dict) -> None:
        if self.event_sink is None:
            return
        try:
            self.event_sink(event_type, payload)
        except Exception as exc:
            logger.error(f"Failed to emit {event_type.value}: {exc}")


def _database_event_sink(event_type: EventType, payload: dict) -> None:
    from outreach_engine.database import SessionLocal

    record_detached_event(SessionLocal, SYSTEM_IDENTITY, event_type, payload)


_breaker: Optional[CircuitBreaker] = None


def get_circuit_breaker() -> CircuitBreaker:
    """Get or create the process-wide circuit breaker."""
    global _breaker
    if _breaker is None:
        _breaker = CircuitBreaker(
            get_settings_provider(),
            max_consecutive_errors=app_settings.max_consecutive_errors,
            event_sink=_database_event_sink,
        )
    return _breaker


def set_circuit_breaker(breaker: Optional[CircuitBreaker]) -> None:
    global _breaker
    _breaker = breaker
