import json

import httpx

from outreach_engine.services.intent_service import classify_intent, detect_rejection_override
from outreach_engine.services.state_machine import Intent


class TestRejectionOverride:
    def test_override_wins_without_calling_llm(self, fake_llm):
        result = classify_intent("Nein danke")

        assert result.intent == Intent.NOT_INTERESTED
        assert result.source == "local_override"
        assert result.confidence == 1.0
        assert result.matched_phrase == "nein danke"
        assert fake_llm.calls == []

    def test_no_override_for_neutral_text(self):
        assert detect_rejection_override("Danke, klingt gut") is None


class TestClassifyIntent:
    def test_llm_result_is_parsed(self, fake_llm):
        fake_llm.responses = [
            json.dumps(
                {
                    "intent": "interest",
                    "sentiment": "positive",
                    "urgency": "medium",
                    "confidence": 0.9,
                    "slots": {"budget": "5k", "timeline": None, "colour": "red"},
                }
            )
        ]
        result = classify_intent("Klingt spannend, erzähl mehr", history=["BOT: Hey!"])

        assert result.intent == Intent.INTEREST
        assert result.sentiment == "positive"
        assert result.urgency == "medium"
        assert result.slots == {"budget": "5k"}
        assert result.source == "llm"
        assert fake_llm.calls[0]["json_mode"] is True

    def test_prose_around_json_is_tolerated(self, fake_llm):
        fake_llm.responses = ['Sure! {"intent": "question", "confidence": "high"} hope that helps']
        result = classify_intent("Was kostet das?")
        assert result.intent == Intent.QUESTION
        assert result.confidence == 0.5

    def test_unknown_label_falls_back(self, fake_llm):
        fake_llm.responses = ['{"intent": "purchase_now"}']
        result = classify_intent("Ich kaufe sofort")
        assert result.intent == Intent.OTHER
        assert result.source == "fallback"

    def test_timeout_falls_back(self, fake_llm):
        fake_llm.responses = [httpx.ReadTimeout("slow")]
        result = classify_intent("Hallo?")
        assert result.intent == Intent.OTHER
        assert result.sentiment == "neutral"
        assert result.confidence == 0.0

    def test_garbage_falls_back(self, fake_llm):
        fake_llm.responses = ["no json at all"]
        assert classify_intent("Hmm").source == "fallback"
