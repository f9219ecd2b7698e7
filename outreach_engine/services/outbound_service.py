"""Outbound gate: circuit breaker, then validator, then similarity.

Transports call ``evaluate_outbound`` before delivery and ``confirm_outbound``
after the gateway accepted the message.
"""

from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.orm import Session

from outreach_engine.config import settings
from outreach_engine.logging_config import get_logger
from outreach_engine.models import ConversationTurn
from outreach_engine.services.ccb_service import get_do_not_list
from outreach_engine.services.circuit_breaker import CircuitBreaker, SendDecision, check_contact_gate
from outreach_engine.services.contact_service import get_contact, get_or_create_contact, normalize_phone, touch_outbound
from outreach_engine.services.conversation_service import OUTGOING, add_turn, get_recent_outbound_texts
from outreach_engine.services.event_service import EventType, record_event
from outreach_engine.services.policy_service import PhrasePolicy
from outreach_engine.services.settings_service import SettingsProvider
from outreach_engine.services.similarity_service import SimilarityResult, check_similarity
from outreach_engine.services.state_machine import parse_stage
from outreach_engine.services.validator_service import ValidationResult, validate_message

logger = get_logger("outbound_service")


@dataclass
class OutboundDecision:
    allowed: bool
    reason: Optional[str] = None
    layer: Optional[str] = None  # global, contact, content, similarity
    validation: Optional[ValidationResult] = None
    similarity: Optional[SimilarityResult] = None
    do_not: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "reason": self.reason,
            "layer": self.layer,
            "validation": self.validation.to_dict() if self.validation else None,
            "similarity": self.similarity.to_dict() if self.similarity else None,
            "do_not": self.do_not,
        }


def can_send(db: Session, phone: str, breaker: CircuitBreaker) -> SendDecision:
    return breaker.can_send(get_contact(db, phone))


def evaluate_outbound(
    db: Session,
    phone: str,
    text: str,
    breaker: CircuitBreaker,
    settings_provider: SettingsProvider,
    run_id: Optional[str] = None,
    system_reply: bool = False,
    policy: Optional[PhrasePolicy] = None,
) -> OutboundDecision:
    """Full pre-send check. System replies (opt-out ack, holding reply) skip the contact gate."""
    phone = normalize_phone(phone)
    contact = get_contact(db, phone)
    do_not = get_do_not_list(contact)

    if not breaker.is_global_enabled():
        gate = SendDecision(allowed=False, reason="global_send_disabled", layer="global")
    elif system_reply:
        gate = SendDecision(allowed=True)
    else:
        gate = check_contact_gate(contact)
    if not gate.allowed:
        record_event(db, phone, EventType.SEND_BLOCKED, {"reason": gate.reason, "layer": gate.layer}, run_id)
        return OutboundDecision(allowed=False, reason=gate.reason, layer=gate.layer, do_not=do_not)

    stage = parse_stage(contact.pipeline_stage) if contact else None
    validation = validate_message(text, stage, settings_provider, policy)
    if not validation.valid:
        record_event(
            db,
            phone,
            EventType.VALIDATION_FAILED,
            {"violations": [v.to_dict() for v in validation.violations], "text": text[:200]},
            run_id,
        )
        return OutboundDecision(
            allowed=False,
            reason="validation_failed",
            layer="content",
            validation=validation,
            do_not=do_not,
        )

    similarity = check_similarity(
        text,
        get_recent_outbound_texts(db, phone, settings.similarity_window),
        threshold=settings.similarity_threshold,
    )
    if similarity.similar:
        record_event(db, phone, EventType.SIMILARITY_FLAGGED, similarity.to_dict(), run_id)
        if settings.similarity_blocks_send:
            return OutboundDecision(
                allowed=False,
                reason="too_similar",
                layer="similarity",
                validation=validation,
                similarity=similarity,
                do_not=do_not,
            )

    return OutboundDecision(allowed=True, validation=validation, similarity=similarity, do_not=do_not)


def confirm_outbound(
    db: Session,
    phone: str,
    text: str,
    run_id: Optional[str] = None,
    source: str = "reply",
    message_id: Optional[str] = None,
) -> ConversationTurn:
    """Log a delivered message: turn, last-contacted timestamp, OUTBOUND_MESSAGE."""
    contact, _ = get_or_create_contact(db, phone)
    turn = add_turn(db, contact.phone, OUTGOING, text, run_id)
    touch_outbound(contact, turn.created_at)
    record_event(
        db,
        contact.phone,
        EventType.OUTBOUND_MESSAGE,
        {"source": source, "length": len(text), "message_id": message_id, "turn_id": turn.id},
        run_id,
    )
    return turn
