"""Two-pass Conversation Conclusion Bundle generator.

Pass A extracts facts from the recent transcript, pass B turns the facts into a
strategy. Either pass failing leaves the previous bundle in place.
"""

import json
import uuid
from datetime import datetime, timezone
from typing import Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from outreach_engine.config import settings
from outreach_engine.logging_config import get_logger
from outreach_engine.models import Contact
from outreach_engine.schemas.ccb import CCBFacts, CCBStrategy
from outreach_engine.services.ai_service import request_json
from outreach_engine.services.contact_service import raise_risk_score, set_stage, store_ccb
from outreach_engine.services.conversation_service import format_transcript, get_recent_turns
from outreach_engine.services.event_service import EventType, record_event
from outreach_engine.services.state_machine import TERMINAL_STAGES, PipelineStage, parse_stage

logger = get_logger("ccb_service")

FACTS_PROMPT = """Extract ONLY factual data from this conversation. Return valid JSON:
{
  "profile": {"name": null, "company": null, "role": null, "location": null, "language": null},
  "interest": {"primary_product": null, "secondary_interest": null, "use_case": null},
  "budget": {"mentioned": false, "range": null, "currency": null},
  "timeline": {"mentioned": false, "urgency": null, "specific_date": null},
  "objections": [],
  "questions_asked": [],
  "sentiment": "positive|neutral|negative",
  "engagement_level": "high|medium|low|none",
  "key_facts": []
}
Be strictly factual. Only extract what was explicitly said. Never guess."""

STRATEGY_PROMPT = """You are a sales strategist. Given extracted facts about a contact, produce a
Conversation Conclusion Bundle. Return valid JSON:
{
  "stage": {
    "current": "<current stage>",
    "recommended": "INTRO|QUALIFYING|VALUE_DELIVERY|BOOKING|FOLLOW_UP|WON|LOST",
    "reason": "why this stage",
    "next_condition": "what moves them forward"
  },
  "conclusion": "2-3 sentences: who they are, what they want, what blocks the deal",
  "next_best_actions": [{"priority": 1, "action": "description", "needs_human": false}],
  "follow_up": {"max_followups": 1, "if_no_reply_hours": 10, "timing_class": "minutes|hours|days",
                "message_type": "micro_value_nudge|question|proof_asset"},
  "risk_delta": 0,
  "risk_factors": [],
  "do_not": ["things to avoid with this contact"]
}
risk_delta is how much the contact's risk (0-100) should rise; use 0 if nothing changed."""


def should_regenerate(contact: Contact, stage_changed: bool, turn_count: int, every: Optional[int] = None) -> bool:
    """No bundle yet, a stage change, or every Nth turn."""
    every = every or settings.ccb_regenerate_every
    if not contact.ccb:
        return True
    if stage_changed:
        return True
    return turn_count > 0 and turn_count % every == 0


def extract_facts(db: Session, contact: Contact) -> Optional[CCBFacts]:
    turns = get_recent_turns(db, contact.phone, settings.ccb_history_turns)
    if not turns:
        return None

    contact_info = f"Contact info: {contact.name or 'Unknown'}, {contact.company or 'Unknown'}"
    payload = request_json(
        [
            {"role": "system", "content": FACTS_PROMPT},
            {"role": "user", "content": f"{contact_info}\n\nConversation:\n{format_transcript(turns)}"},
        ],
        stage="ccb_facts_llm_ms",
        model=settings.slow_model,
        max_tokens=600,
    )
    if payload is None:
        return None
    try:
        return CCBFacts.model_validate(payload)
    except ValidationError as exc:
        logger.warning(f"CCB facts did not match schema for {contact.phone}: {exc.error_count()} errors")
        return None


def generate_strategy(stage: PipelineStage, facts: CCBFacts) -> Optional[CCBStrategy]:
    payload = request_json(
        [
            {"role": "system", "content": STRATEGY_PROMPT},
            {
                "role": "user",
                "content": f"Current stage: {stage.value}\nFacts: {json.dumps(facts.model_dump(), ensure_ascii=False)}",
            },
        ],
        stage="ccb_strategy_llm_ms",
        model=settings.slow_model,
        max_tokens=700,
        temperature=0.3,
    )
    if payload is None:
        return None
    try:
        return CCBStrategy.model_validate(payload)
    except ValidationError as exc:
        logger.warning(f"CCB strategy did not match schema: {exc.error_count()} errors")
        return None


def recommended_stage(strategy: CCBStrategy) -> Optional[PipelineStage]:
    raw = strategy.stage.recommended
    if not raw:
        return None
    stage = parse_stage(raw, default=None)
    # DND only ever comes from the consent engine.
    if stage == PipelineStage.DND:
        return None
    return stage


def generate_ccb(db: Session, contact: Contact, run_id: Optional[str] = None) -> Optional[dict]:
    """Regenerate the bundle. Returns the stored bundle or None if a pass failed."""
    ccb_run_id = str(uuid.uuid4())
    current = parse_stage(contact.pipeline_stage)

    facts = extract_facts(db, contact)
    if facts is None:
        record_event(db, contact.phone, EventType.CCB_FAILED, {"pass": "facts", "ccb_run_id": ccb_run_id}, run_id)
        return None

    strategy = generate_strategy(current, facts)
    if strategy is None:
        record_event(db, contact.phone, EventType.CCB_FAILED, {"pass": "strategy", "ccb_run_id": ccb_run_id}, run_id)
        return None

    bundle = {
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "run_id": ccb_run_id,
        "facts": facts.model_dump(),
        "strategy": strategy.model_dump(),
    }
    version = store_ccb(db, contact, bundle)

    target = recommended_stage(strategy)
    applied = False
    if target is not None and target != current and current not in TERMINAL_STAGES:
        reason = f"CCB: {strategy.stage.reason or 'recommended'}"
        applied = set_stage(db, contact, target, reason, run_id)

    if strategy.risk_delta > 0:
        raise_risk_score(db, contact, strategy.risk_delta, reason="ccb", run_id=run_id)

    record_event(
        db,
        contact.phone,
        EventType.CCB_GENERATED,
        {
            "version": version,
            "ccb_run_id": ccb_run_id,
            "recommended_stage": target.value if target else None,
            "stage_applied": applied,
            "risk_delta": strategy.risk_delta,
        },
        run_id,
    )
    logger.info(
        f"CCB v{version} generated for {contact.phone}",
        extra={"context": {"recommended_stage": target.value if target else None, "applied": applied}},
    )
    return contact.ccb


def get_do_not_list(contact: Optional[Contact]) -> list[str]:
    if contact is None or not isinstance(contact.ccb, dict):
        return []
    strategy = contact.ccb.get("strategy") or {}
    do_not = strategy.get("do_not") if isinstance(strategy, dict) else None
    return [str(item) for item in do_not] if isinstance(do_not, list) else []
