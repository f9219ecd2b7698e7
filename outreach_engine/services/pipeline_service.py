"""Inbound message pipeline.

Order per message: log the turn, consent check, escalation check, intent
classification, stage transition, rejection tally, CCB regeneration. Handling
for one phone number is serialized; different numbers run in parallel.
"""

import uuid
from dataclasses import dataclass, field
from typing import Callable, Optional

from sqlalchemy.orm import Session

from outreach_engine.logging_config import ContactLoggerAdapter, get_logger
from outreach_engine.services.ccb_service import generate_ccb, get_do_not_list, should_regenerate
from outreach_engine.services.circuit_breaker import CircuitBreaker, SendDecision, get_circuit_breaker
from outreach_engine.services.consent_service import ConsentAction, process_inbound_consent
from outreach_engine.services.contact_service import (
    ConsentStatus,
    get_or_create_contact,
    normalize_phone,
    set_stage,
    touch_inbound,
)
from outreach_engine.services.conversation_service import INCOMING, add_turn, count_turns, get_recent_turns
from outreach_engine.services.escalation_service import HOLDING_REPLY, detect_escalation, execute_escalation
from outreach_engine.services.event_service import SYSTEM_IDENTITY, EventType, record_detached_event, record_event
from outreach_engine.services.intent_service import IntentResult, classify_intent
from outreach_engine.services.locks import KeyedLocks, get_contact_locks
from outreach_engine.services.policy_service import PhrasePolicy, get_phrase_policy
from outreach_engine.services.rejection_service import evaluate_rejections
from outreach_engine.services.settings_service import SettingsProvider, get_settings_provider
from outreach_engine.services.state_machine import TERMINAL_STAGES, PipelineStage, next_stage, parse_stage

logger = get_logger("pipeline")

Classifier = Callable[..., IntentResult]
CCBGenerator = Callable[..., Optional[dict]]
FailureSink = Callable[[str, dict], None]


class PipelineAction:
    PROCESSED = "processed"
    DND_SET = "dnd_set"
    ESCALATED = "escalated"
    IGNORED_DND = "ignored_dnd"
    HUMAN_REQUIRED = "human_required"


@dataclass
class PipelineResult:
    phone: str
    run_id: str
    action: str
    previous_stage: PipelineStage
    current_stage: PipelineStage
    reply: Optional[str] = None
    intent: Optional[IntentResult] = None
    stage_changed: bool = False
    ccb_regenerated: bool = False
    ccb: Optional[dict] = None
    do_not: list[str] = field(default_factory=list)
    can_reply: bool = False
    reply_gate: Optional[SendDecision] = None

    def to_dict(self) -> dict:
        return {
            "phone": self.phone,
            "run_id": self.run_id,
            "action": self.action,
            "previous_stage": self.previous_stage.value,
            "current_stage": self.current_stage.value,
            "reply": self.reply,
            "intent": self.intent.to_dict() if self.intent else None,
            "stage_changed": self.stage_changed,
            "ccb_regenerated": self.ccb_regenerated,
            "ccb": self.ccb,
            "do_not": self.do_not,
            "can_reply": self.can_reply,
            "reply_gate": self.reply_gate.to_dict() if self.reply_gate else None,
        }


def _database_failure_sink(phone: str, payload: dict) -> None:
    from outreach_engine.database import SessionLocal

    record_detached_event(SessionLocal, phone or SYSTEM_IDENTITY, EventType.HANDLING_FAILED, payload)


class InboundPipeline:
    def __init__(
        self,
        breaker: CircuitBreaker,
        settings_provider: SettingsProvider,
        policy: Optional[PhrasePolicy] = None,
        classifier: Classifier = classify_intent,
        ccb_generator: CCBGenerator = generate_ccb,
        locks: Optional[KeyedLocks] = None,
        failure_sink: Optional[FailureSink] = _database_failure_sink,
    ):
        self.breaker = breaker
        self.settings_provider = settings_provider
        self.policy = policy
        self.classifier = classifier
        self.ccb_generator = ccb_generator
        self.locks = locks or get_contact_locks()
        self.failure_sink = failure_sink

    def handle(self, db: Session, phone: str, text: str, name: Optional[str] = None) -> PipelineResult:
        """Process one inbound message and commit. Exceptions count toward the breaker."""
        phone = normalize_phone(phone)
        run_id = str(uuid.uuid4())
        with self.locks.hold(phone):
            try:
                result = self._process(db, phone, text, name, run_id)
                db.commit()
            except Exception as exc:
                db.rollback()
                logger.exception(f"Inbound handling failed for {phone}")
                self.breaker.record_error(str(exc))
                if self.failure_sink:
                    self.failure_sink(phone, {"run_id": run_id, "error": str(exc)[:500]})
                raise
        self.breaker.record_success()
        return result

    def _process(self, db: Session, phone: str, text: str, name: Optional[str], run_id: str) -> PipelineResult:
        log = ContactLoggerAdapter(logger, phone, run_id)
        policy = self.policy or get_phrase_policy()

        contact, created = get_or_create_contact(db, phone, name=name)
        add_turn(db, contact.phone, INCOMING, text, run_id)
        touch_inbound(contact)
        record_event(db, contact.phone, EventType.INBOUND_MESSAGE, {"length": len(text), "created": created}, run_id)

        previous = parse_stage(contact.pipeline_stage)
        result = PipelineResult(
            phone=contact.phone,
            run_id=run_id,
            action=PipelineAction.PROCESSED,
            previous_stage=previous,
            current_stage=previous,
        )

        if contact.consent_status == ConsentStatus.DND.value:
            result.action = PipelineAction.IGNORED_DND
            log.info("Inbound from DND contact logged only")
            return result

        if contact.human_required:
            result.action = PipelineAction.HUMAN_REQUIRED
            result.do_not = get_do_not_list(contact)
            log.info("Inbound for contact awaiting human, no automation")
            return result

        consent = process_inbound_consent(db, contact, text, run_id, policy)
        if consent.action == ConsentAction.DND_SET:
            result.action = PipelineAction.DND_SET
            result.reply = consent.reply
            result.current_stage = PipelineStage.DND
            result.stage_changed = previous != PipelineStage.DND
            result.reply_gate = self._system_reply_gate()
            result.can_reply = result.reply_gate.allowed
            return result

        escalation = detect_escalation(text, policy=policy)
        if escalation.escalate:
            execute_escalation(db, contact, escalation, text, run_id)
            result.action = PipelineAction.ESCALATED
            result.reply = HOLDING_REPLY
            result.do_not = get_do_not_list(contact)
            result.reply_gate = self._system_reply_gate()
            result.can_reply = result.reply_gate.allowed
            return result

        history = [
            f"{'CONTACT' if t.direction == INCOMING else 'BOT'}: {t.text}"
            for t in get_recent_turns(db, contact.phone, 7)[:-1]
        ]
        intent = self.classifier(text, history, policy)
        result.intent = intent
        record_event(db, contact.phone, EventType.INTENT_CLASSIFIED, intent.to_dict(), run_id)

        target = next_stage(previous, intent.intent)
        stage_changed = False
        if target != previous:
            stage_changed = set_stage(db, contact, target, f"intent: {intent.intent.value}", run_id)

        if parse_stage(contact.pipeline_stage) not in TERMINAL_STAGES:
            tally = evaluate_rejections(db, contact.phone, policy)
            if tally.give_up:
                reason = "hard_rejection" if tally.hard else f"rejections: {tally.soft_count}"
                stage_changed = set_stage(db, contact, PipelineStage.LOST, reason, run_id) or stage_changed

        turn_count = count_turns(db, contact.phone)
        if should_regenerate(contact, stage_changed, turn_count):
            ccb = self.ccb_generator(db, contact, run_id)
            result.ccb_regenerated = ccb is not None

        result.current_stage = parse_stage(contact.pipeline_stage)
        result.stage_changed = result.current_stage != previous
        result.ccb = contact.ccb
        result.do_not = get_do_not_list(contact)
        result.reply_gate = self.breaker.can_send(contact)
        result.can_reply = self.settings_provider.auto_reply_enabled() and result.reply_gate.allowed

        log.info(
            "Inbound processed",
            extra={
                "context": {
                    "intent": intent.intent.value,
                    "intent_source": intent.source,
                    "from_stage": previous.value,
                    "to_stage": result.current_stage.value,
                    "ccb_regenerated": result.ccb_regenerated,
                }
            },
        )
        return result

    def _system_reply_gate(self) -> SendDecision:
        if not self.breaker.is_global_enabled():
            return SendDecision(allowed=False, reason="global_send_disabled", layer="global")
        return SendDecision(allowed=True)


_pipeline: Optional[InboundPipeline] = None


def get_inbound_pipeline() -> InboundPipeline:
    """Get or create the process-wide inbound pipeline."""
    global _pipeline
    if _pipeline is None:
        _pipeline = InboundPipeline(get_circuit_breaker(), get_settings_provider())
    return _pipeline
