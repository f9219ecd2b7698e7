import re
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.orm import Session

from outreach_engine.config import settings
from outreach_engine.logging_config import get_logger
from outreach_engine.models import Contact
from outreach_engine.services.alert_service import alert_warning
from outreach_engine.services.contact_service import raise_risk_score, set_human_required
from outreach_engine.services.event_service import EventType, record_event
from outreach_engine.services.policy_service import PhrasePolicy, get_phrase_policy, normalize_for_matching

logger = get_logger("escalation_service")

HOLDING_REPLY = "Gute Frage, da verbinde ich dich am besten mit einem Kollegen der dir das genauer erklären kann."
RISK_PER_TRIGGER = 15

_AMOUNT_PATTERNS = (
    re.compile(r"[$€£]\s?(\d[\d.,]*)"),
    re.compile(r"(\d[\d.,]*)\s?(?:€|\$|eur\b|euro\b|usd\b|dollar\b|chf\b|franken\b)", re.IGNORECASE),
)


@dataclass
class EscalationTrigger:
    type: str  # keyword, repeated_mention, high_amount
    category: Optional[str] = None
    keyword: Optional[str] = None
    count: Optional[int] = None
    amount: Optional[int] = None

    def to_dict(self) -> dict:
        return {k: v for k, v in self.__dict__.items() if v is not None}


@dataclass
class EscalationCheck:
    triggers: list[EscalationTrigger] = field(default_factory=list)

    @property
    def escalate(self) -> bool:
        return bool(self.triggers)

    @property
    def risk_increase(self) -> int:
        return len(self.triggers) * RISK_PER_TRIGGER


def parse_amount(raw: str) -> Optional[int]:
    """'10.000' and '10,000' are thousands; a trailing 1-2 digit group is decimals."""
    raw = raw.strip(".,")
    decimal_match = re.match(r"^(.*\d)[.,](\d{1,2})$", raw)
    integer_part = decimal_match.group(1) if decimal_match else raw
    digits = re.sub(r"[.,]", "", integer_part)
    return int(digits) if digits.isdigit() else None


def extract_amounts(message: str) -> list[int]:
    amounts = []
    for pattern in _AMOUNT_PATTERNS:
        for raw in pattern.findall(message or ""):
            amount = parse_amount(raw)
            if amount is not None:
                amounts.append(amount)
    return amounts


def detect_escalation(
    message: str,
    amount_ceiling: Optional[int] = None,
    policy: Optional[PhrasePolicy] = None,
) -> EscalationCheck:
    policy = policy or get_phrase_policy()
    ceiling = amount_ceiling if amount_ceiling is not None else settings.escalation_amount_ceiling
    normalized = normalize_for_matching(message)
    check = EscalationCheck()
    if not normalized:
        return check

    for category, matcher in policy.escalation_categories.items():
        for keyword in matcher.find_all(normalized):
            check.triggers.append(EscalationTrigger(type="keyword", category=category, keyword=keyword))

    for term in policy.repeated_terms:
        count = len(re.findall(re.escape(term), normalized))
        if count >= policy.repeat_threshold:
            check.triggers.append(EscalationTrigger(type="repeated_mention", keyword=term, count=count))

    amounts = extract_amounts(message)
    if amounts and max(amounts) > ceiling:
        check.triggers.append(EscalationTrigger(type="high_amount", amount=max(amounts)))

    return check


def execute_escalation(
    db: Session,
    contact: Contact,
    check: EscalationCheck,
    message: str,
    run_id: Optional[str] = None,
) -> None:
    """Hand the contact to a human. Only an explicit resume clears the flag."""
    triggers = [t.to_dict() for t in check.triggers]
    set_human_required(db, contact, reason="escalation", run_id=run_id)
    risk = raise_risk_score(db, contact, check.risk_increase, reason="escalation", run_id=run_id)
    record_event(
        db,
        contact.phone,
        EventType.ESCALATION_TRIGGERED,
        {"triggers": triggers, "risk_increase": check.risk_increase, "risk_score": risk},
        run_id,
    )
    logger.warning(
        f"Escalation for {contact.phone}",
        extra={"context": {"triggers": triggers, "risk_score": risk}},
    )
    alert_warning(
        "Contact escalated to human",
        {"phone": contact.phone, "triggers": len(triggers), "message": (message or "")[:200]},
    )
