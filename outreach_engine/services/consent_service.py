from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from sqlalchemy.orm import Session

from outreach_engine.logging_config import get_logger
from outreach_engine.models import Contact
from outreach_engine.services.contact_service import ConsentStatus, set_consent, set_dnd
from outreach_engine.services.policy_service import PhrasePolicy, get_phrase_policy, normalize_for_matching

logger = get_logger("consent_service")

DND_ACKNOWLEDGEMENT = "Alles klar, werde mich nicht mehr melden. Alles Gute!"


class ConsentAction(str, Enum):
    NONE = "none"
    DND_SET = "dnd_set"
    OPTED_IN = "opted_in"


@dataclass
class ConsentOutcome:
    action: ConsentAction
    reply: Optional[str] = None
    matched: list[str] = field(default_factory=list)

    @property
    def short_circuit(self) -> bool:
        return self.action == ConsentAction.DND_SET


@dataclass
class InitiateDecision:
    allowed: bool
    kind: Optional[str] = None
    reason: Optional[str] = None


def find_opt_out_terms(message: str, policy: Optional[PhrasePolicy] = None) -> list[str]:
    policy = policy or get_phrase_policy()
    normalized = normalize_for_matching(message)
    if not normalized:
        return []
    return policy.opt_out.find_all(normalized)


def is_opt_out_message(message: str, policy: Optional[PhrasePolicy] = None) -> bool:
    return bool(find_opt_out_terms(message, policy))


def process_inbound_consent(
    db: Session,
    contact: Contact,
    message: str,
    run_id: Optional[str] = None,
    policy: Optional[PhrasePolicy] = None,
) -> ConsentOutcome:
    """Opt-out detection first; otherwise any reply counts as opt-in."""
    matched = find_opt_out_terms(message, policy)
    if matched:
        set_dnd(db, contact, reason=f"opt_out: {', '.join(matched)}", run_id=run_id)
        logger.info(f"Contact {contact.phone} opted out", extra={"context": {"matched": matched}})
        return ConsentOutcome(action=ConsentAction.DND_SET, reply=DND_ACKNOWLEDGEMENT, matched=matched)

    if contact.consent_status in (ConsentStatus.UNKNOWN.value, ConsentStatus.SOFT_OPTIN_SENT.value):
        set_consent(db, contact, ConsentStatus.OPTED_IN, reason="inbound_reply", run_id=run_id)
        return ConsentOutcome(action=ConsentAction.OPTED_IN)

    return ConsentOutcome(action=ConsentAction.NONE)


def can_initiate_contact(contact: Optional[Contact]) -> InitiateDecision:
    if contact is None:
        return InitiateDecision(allowed=True, kind="new_contact")

    status = contact.consent_status
    if status == ConsentStatus.UNKNOWN.value:
        return InitiateDecision(allowed=True, kind="permission_check_only")
    if status == ConsentStatus.SOFT_OPTIN_SENT.value:
        return InitiateDecision(allowed=False, reason="waiting_for_reply")
    if status == ConsentStatus.OPTED_IN.value:
        return InitiateDecision(allowed=True, kind="full_messaging")
    if status == ConsentStatus.DND.value:
        return InitiateDecision(allowed=False, reason="contact_dnd")
    return InitiateDecision(allowed=False, reason=f"unknown_consent_status:{status}")
