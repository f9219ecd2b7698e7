from dataclasses import dataclass, field
from typing import Optional

from outreach_engine.config import settings
from outreach_engine.logging_config import get_logger
from outreach_engine.services.ai_service import request_json
from outreach_engine.services.policy_service import PhrasePolicy, get_phrase_policy, normalize_for_matching
from outreach_engine.services.state_machine import Intent, parse_intent

logger = get_logger("intent_service")

SENTIMENTS = {"positive", "neutral", "negative", "hostile"}
URGENCIES = {"high", "medium", "low"}
SLOT_KEYS = ("budget", "timeline", "location")

CLASSIFY_PROMPT = """Classify the latest message of a contact in a sales chat (German or English).
Return ONLY valid JSON:
{"intent": "greeting|question|interest|not_interested|objection|confirmation|thanks|appointment|pricing|other",
 "sentiment": "positive|neutral|negative|hostile",
 "urgency": "high|medium|low",
 "confidence": 0.0,
 "slots": {"budget": null, "timeline": null, "location": null}}

A polite refusal ("nein danke", "no thanks") is not_interested, not thanks."""


@dataclass
class IntentResult:
    intent: Intent
    sentiment: str = "neutral"
    urgency: str = "low"
    slots: dict = field(default_factory=dict)
    confidence: float = 0.0
    source: str = "fallback"  # local_override, llm, fallback
    matched_phrase: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "intent": self.intent.value,
            "sentiment": self.sentiment,
            "urgency": self.urgency,
            "slots": self.slots,
            "confidence": self.confidence,
            "source": self.source,
            "matched_phrase": self.matched_phrase,
        }


def fallback_intent() -> IntentResult:
    return IntentResult(intent=Intent.OTHER)


def detect_rejection_override(message: str, policy: Optional[PhrasePolicy] = None) -> Optional[IntentResult]:
    """Local phrase match that beats the remote classifier."""
    policy = policy or get_phrase_policy()
    phrase = policy.rejection_override_hit(normalize_for_matching(message))
    if not phrase:
        return None
    return IntentResult(
        intent=parse_intent(policy.rejection_override_intent),
        sentiment="negative",
        urgency="low",
        confidence=1.0,
        source="local_override",
        matched_phrase=phrase,
    )


def _coerce_confidence(value) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.5
    return max(0.0, min(1.0, confidence))


def _build_messages(message: str, history: list[str]) -> list[dict]:
    user_content = message
    if history:
        window = "\n".join(history[-6:])
        user_content = f"Recent conversation:\n{window}\n\nLatest message:\n{message}"
    return [
        {"role": "system", "content": CLASSIFY_PROMPT},
        {"role": "user", "content": user_content},
    ]


def classify_intent(
    message: str,
    history: Optional[list[str]] = None,
    policy: Optional[PhrasePolicy] = None,
) -> IntentResult:
    """Classify an inbound message; never raises."""
    override = detect_rejection_override(message, policy)
    if override:
        logger.info(
            "Intent override",
            extra={"context": {"intent": override.intent.value, "phrase": override.matched_phrase}},
        )
        return override

    payload = request_json(
        _build_messages(message, history or []),
        stage="intent_llm_ms",
        model=settings.fast_model,
        timeout_seconds=settings.intent_timeout_seconds,
        max_tokens=150,
    )
    if payload is None:
        return fallback_intent()

    raw_intent = str(payload.get("intent") or "").strip().lower()
    intent = parse_intent(raw_intent)
    if intent == Intent.OTHER and raw_intent != Intent.OTHER.value:
        logger.warning(f"Unknown intent label from classifier: {raw_intent!r}")
        return fallback_intent()

    sentiment = str(payload.get("sentiment") or "neutral").lower()
    urgency = str(payload.get("urgency") or "low").lower()
    raw_slots = payload.get("slots") if isinstance(payload.get("slots"), dict) else {}

    return IntentResult(
        intent=intent,
        sentiment=sentiment if sentiment in SENTIMENTS else "neutral",
        urgency=urgency if urgency in URGENCIES else "low",
        slots={key: raw_slots.get(key) for key in SLOT_KEYS if raw_slots.get(key) is not None},
        confidence=_coerce_confidence(payload.get("confidence")),
        source="llm",
    )
