import pytest

from outreach_engine.services.state_machine import (
    ABSORBING_STAGES,
    TRANSITIONS,
    Intent,
    PipelineStage,
    is_terminal,
    next_stage,
    parse_intent,
    parse_stage,
)


class TestTransitions:
    def test_intro_interest_moves_to_qualifying(self):
        assert next_stage(PipelineStage.INTRO, Intent.INTEREST) == PipelineStage.QUALIFYING

    def test_intro_not_interested_is_lost(self):
        assert next_stage(PipelineStage.INTRO, Intent.NOT_INTERESTED) == PipelineStage.LOST

    def test_qualifying_appointment_goes_to_booking(self):
        assert next_stage(PipelineStage.QUALIFYING, Intent.APPOINTMENT) == PipelineStage.BOOKING

    def test_qualifying_not_interested_is_lost(self):
        assert next_stage(PipelineStage.QUALIFYING, Intent.NOT_INTERESTED) == PipelineStage.LOST

    def test_value_delivery_thanks_goes_to_booking(self):
        assert next_stage(PipelineStage.VALUE_DELIVERY, Intent.THANKS) == PipelineStage.BOOKING

    def test_booking_confirmation_is_won(self):
        assert next_stage(PipelineStage.BOOKING, Intent.CONFIRMATION) == PipelineStage.WON

    def test_follow_up_question_requalifies(self):
        assert next_stage(PipelineStage.FOLLOW_UP, Intent.QUESTION) == PipelineStage.QUALIFYING

    def test_lost_interest_reopens(self):
        assert next_stage(PipelineStage.LOST, Intent.INTEREST) == PipelineStage.QUALIFYING

    def test_unlisted_pair_is_self_loop(self):
        assert next_stage(PipelineStage.BOOKING, Intent.GREETING) == PipelineStage.BOOKING
        assert next_stage(PipelineStage.INTRO, Intent.OTHER) == PipelineStage.INTRO


class TestTotality:
    @pytest.mark.parametrize("stage", list(PipelineStage))
    def test_every_pair_has_a_target(self, stage):
        for intent in Intent:
            assert isinstance(next_stage(stage, intent), PipelineStage)

    @pytest.mark.parametrize("stage", sorted(ABSORBING_STAGES, key=lambda s: s.value))
    def test_absorbing_stages_never_move(self, stage):
        for intent in Intent:
            assert next_stage(stage, intent) == stage

    def test_no_intent_leads_to_dnd(self):
        for targets in TRANSITIONS.values():
            assert PipelineStage.DND not in targets.values()


class TestParsing:
    def test_parse_stage_is_case_insensitive(self):
        assert parse_stage("qualifying") == PipelineStage.QUALIFYING

    def test_parse_stage_unknown_uses_default(self):
        assert parse_stage("nonsense") == PipelineStage.INTRO
        assert parse_stage("nonsense", default=None) is None

    def test_parse_intent_unknown_is_other(self):
        assert parse_intent("buy_now") == Intent.OTHER
        assert parse_intent(None) == Intent.OTHER
        assert parse_intent(" Interest ") == Intent.INTEREST

    def test_terminal_stages(self):
        assert is_terminal(PipelineStage.LOST) is True
        assert is_terminal(PipelineStage.BOOKING) is False
