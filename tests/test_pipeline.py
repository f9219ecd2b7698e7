import json
from unittest.mock import Mock

import pytest

from outreach_engine.services.ccb_service import generate_ccb
from outreach_engine.services.consent_service import DND_ACKNOWLEDGEMENT
from outreach_engine.services.contact_service import get_contact, get_or_create_contact
from outreach_engine.services.conversation_service import count_turns
from outreach_engine.services.escalation_service import HOLDING_REPLY
from outreach_engine.services.event_service import EventType, list_events
from outreach_engine.services.intent_service import IntentResult, classify_intent
from outreach_engine.services.pipeline_service import InboundPipeline, PipelineAction
from outreach_engine.services.settings_service import AUTO_REPLY_ENABLED, GLOBAL_SEND_ENABLED
from outreach_engine.services.state_machine import Intent, PipelineStage


def _pipeline(breaker, settings_provider, locks, classifier=None, ccb_generator=None):
    return InboundPipeline(
        breaker,
        settings_provider,
        classifier=classifier or Mock(return_value=IntentResult(intent=Intent.OTHER, source="llm")),
        ccb_generator=ccb_generator or Mock(return_value=None),
        locks=locks,
        failure_sink=None,
    )


class TestInboundPipeline:
    def test_interest_moves_intro_to_qualifying(self, db, breaker, settings_provider, locks):
        classifier = Mock(return_value=IntentResult(intent=Intent.INTEREST, source="llm", confidence=0.9))
        pipeline = _pipeline(breaker, settings_provider, locks, classifier=classifier)

        result = pipeline.handle(db, "+49 157 000", "Klingt interessant, erzähl mehr", name="Jonas")

        assert result.action == PipelineAction.PROCESSED
        assert result.previous_stage == PipelineStage.INTRO
        assert result.current_stage == PipelineStage.QUALIFYING
        assert result.stage_changed is True
        assert result.can_reply is True
        contact = get_contact(db, "49157000")
        assert contact.consent_status == "OPTED_IN"
        assert contact.name == "Jonas"
        stage_event = list_events(db, "49157000", EventType.STAGE_CHANGED.value)[0]
        assert stage_event.payload["reason"] == "intent: interest"

    def test_history_excludes_current_message(self, db, breaker, settings_provider, locks):
        classifier = Mock(return_value=IntentResult(intent=Intent.GREETING, source="llm"))
        pipeline = _pipeline(breaker, settings_provider, locks, classifier=classifier)

        pipeline.handle(db, "49157001", "Hi")
        pipeline.handle(db, "49157001", "Was macht ihr genau?")

        message, history, _ = classifier.call_args[0]
        assert message == "Was macht ihr genau?"
        assert history == ["CONTACT: Hi"]

    def test_rejection_override_beats_classifier(self, db, breaker, settings_provider, locks, fake_llm):
        contact, _ = get_or_create_contact(db, "49157002", pipeline_stage="QUALIFYING", consent_status="OPTED_IN")
        contact.ccb = {"strategy": {"do_not": ["push pricing"]}}
        db.commit()
        pipeline = _pipeline(breaker, settings_provider, locks, classifier=classify_intent)

        result = pipeline.handle(db, "49157002", "Nein danke")

        assert result.intent.source == "local_override"
        assert result.current_stage == PipelineStage.LOST
        assert result.do_not == ["push pricing"]
        assert fake_llm.calls == []

    def test_rejection_with_fresh_ccb_stays_lost(self, db, breaker, settings_provider, locks, fake_llm):
        contact, _ = get_or_create_contact(db, "49157020", pipeline_stage="QUALIFYING", consent_status="OPTED_IN")
        contact.ccb = {"version": 1, "strategy": {"do_not": ["old advice"]}}
        contact.ccb_version = 1
        db.commit()
        fake_llm.responses = [
            json.dumps({"sentiment": "negative", "engagement_level": "low", "objections": ["kein bedarf"]}),
            json.dumps(
                {
                    "stage": {"current": "LOST", "recommended": "QUALIFYING", "reason": "try again later"},
                    "conclusion": "Declined for now.",
                    "do_not": ["follow up this week"],
                }
            ),
        ]
        pipeline = _pipeline(breaker, settings_provider, locks, classifier=classify_intent, ccb_generator=generate_ccb)

        result = pipeline.handle(db, "49157020", "Nein danke")

        assert result.intent.source == "local_override"
        assert result.ccb_regenerated is True
        assert result.current_stage == PipelineStage.LOST
        assert result.do_not == ["follow up this week"]
        assert len(fake_llm.calls) == 2
        contact = get_contact(db, "49157020")
        assert contact.pipeline_stage == "LOST"
        assert contact.ccb_version == 2
        stages = [e.payload["to"] for e in list_events(db, "49157020", EventType.STAGE_CHANGED.value)]
        assert stages == ["LOST"]

    def test_opt_out_returns_acknowledgement(self, db, breaker, settings_provider, locks):
        classifier = Mock()
        pipeline = _pipeline(breaker, settings_provider, locks, classifier=classifier)

        result = pipeline.handle(db, "49157003", "Bitte nicht mehr schreiben")

        assert result.action == PipelineAction.DND_SET
        assert result.reply == DND_ACKNOWLEDGEMENT
        assert result.current_stage == PipelineStage.DND
        assert result.can_reply is True
        classifier.assert_not_called()
        contact = get_contact(db, "49157003")
        assert contact.consent_status == "DND"
        assert contact.bot_paused is True

    def test_opt_out_ack_respects_global_toggle_only(self, db, breaker, settings_provider, locks):
        settings_provider.set(AUTO_REPLY_ENABLED, False)
        pipeline = _pipeline(breaker, settings_provider, locks)
        assert pipeline.handle(db, "49157004", "stop").can_reply is True

        settings_provider.set(GLOBAL_SEND_ENABLED, False)
        result = pipeline.handle(db, "49157005", "stop")
        assert result.can_reply is False
        assert result.reply_gate.reason == "global_send_disabled"

    def test_escalation_hands_over_to_human(self, db, breaker, settings_provider, locks):
        classifier = Mock()
        pipeline = _pipeline(breaker, settings_provider, locks, classifier=classifier)

        result = pipeline.handle(db, "49157006", "Ist das ein scam?")

        assert result.action == PipelineAction.ESCALATED
        assert result.reply == HOLDING_REPLY
        classifier.assert_not_called()
        contact = get_contact(db, "49157006")
        assert contact.human_required is True
        assert contact.risk_score == 15
        assert len(list_events(db, "49157006", EventType.ESCALATION_TRIGGERED.value)) == 1

    def test_human_required_contact_gets_no_automation(self, db, breaker, settings_provider, locks):
        get_or_create_contact(db, "49157007", human_required=True)
        db.commit()
        classifier = Mock()
        pipeline = _pipeline(breaker, settings_provider, locks, classifier=classifier)

        result = pipeline.handle(db, "49157007", "Hallo?")

        assert result.action == PipelineAction.HUMAN_REQUIRED
        assert result.reply is None
        classifier.assert_not_called()
        assert count_turns(db, "49157007") == 1

    def test_dnd_contact_is_logged_only(self, db, breaker, settings_provider, locks):
        get_or_create_contact(db, "49157008", consent_status="DND", pipeline_stage="DND", bot_paused=True)
        db.commit()
        classifier = Mock()
        pipeline = _pipeline(breaker, settings_provider, locks, classifier=classifier)

        result = pipeline.handle(db, "49157008", "Doch Interesse!")

        assert result.action == PipelineAction.IGNORED_DND
        assert result.current_stage == PipelineStage.DND
        assert result.can_reply is False
        classifier.assert_not_called()
        assert get_contact(db, "49157008").consent_status == "DND"

    def test_three_soft_rejections_close_as_lost(self, db, breaker, settings_provider, locks):
        get_or_create_contact(db, "49157009", pipeline_stage="QUALIFYING", consent_status="OPTED_IN")
        db.commit()
        classifier = Mock(return_value=IntentResult(intent=Intent.OBJECTION, source="llm"))
        pipeline = _pipeline(breaker, settings_provider, locks, classifier=classifier)

        pipeline.handle(db, "49157009", "Hab keine Zeit")
        pipeline.handle(db, "49157009", "Echt keine Zeit gerade")
        result = pipeline.handle(db, "49157009", "Wie gesagt, keine Zeit")

        assert result.current_stage == PipelineStage.LOST
        assert get_contact(db, "49157009").stage_reason == "rejections: 3"

    def test_ccb_generated_on_first_message(self, db, breaker, settings_provider, locks):
        ccb_generator = Mock(return_value={"version": 1})
        pipeline = _pipeline(breaker, settings_provider, locks, ccb_generator=ccb_generator)

        result = pipeline.handle(db, "49157010", "Hallo")

        assert result.ccb_regenerated is True
        ccb_generator.assert_called_once()

    def test_auto_reply_off_blocks_normal_reply(self, db, breaker, settings_provider, locks):
        settings_provider.set(AUTO_REPLY_ENABLED, False)
        pipeline = _pipeline(breaker, settings_provider, locks)

        result = pipeline.handle(db, "49157011", "Hallo")

        assert result.reply_gate.allowed is True
        assert result.can_reply is False

    def test_repeated_failures_trip_breaker(self, db, breaker, settings_provider, locks, breaker_events):
        classifier = Mock(side_effect=RuntimeError("classifier crashed"))
        pipeline = _pipeline(breaker, settings_provider, locks, classifier=classifier)

        for _ in range(3):
            with pytest.raises(RuntimeError):
                pipeline.handle(db, "49157012", "Hallo")

        assert settings_provider.global_send_enabled() is False
        assert [event for event, _ in breaker_events] == [EventType.CIRCUIT_BREAKER_TRIPPED]
        assert count_turns(db, "49157012") == 0

        breaker.resume(operator="ops")
        assert breaker.error_count == 0
        assert settings_provider.global_send_enabled() is True

    def test_success_resets_error_counter(self, db, breaker, settings_provider, locks):
        failing = _pipeline(breaker, settings_provider, locks, classifier=Mock(side_effect=RuntimeError("x")))
        for _ in range(2):
            with pytest.raises(RuntimeError):
                failing.handle(db, "49157013", "Hallo")

        _pipeline(breaker, settings_provider, locks).handle(db, "49157013", "Hallo")

        assert breaker.error_count == 0
        assert settings_provider.global_send_enabled() is True
