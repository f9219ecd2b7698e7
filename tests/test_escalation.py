from unittest.mock import patch

from outreach_engine.services.contact_service import get_or_create_contact
from outreach_engine.services.escalation_service import (
    RISK_PER_TRIGGER,
    detect_escalation,
    execute_escalation,
    extract_amounts,
    parse_amount,
)
from outreach_engine.services.event_service import list_events


class TestAmounts:
    def test_thousands_separators(self):
        assert parse_amount("10.000") == 10000
        assert parse_amount("10,000") == 10000

    def test_trailing_cents_are_decimals(self):
        assert parse_amount("12,50") == 12
        assert parse_amount("1.234,56") == 1234

    def test_extract_with_symbols_and_words(self):
        assert sorted(extract_amounts("Ich hab 50.000 € und $ 200")) == [200, 50000]
        assert extract_amounts("so 300 Euro") == [300]


class TestDetectEscalation:
    def test_keyword_per_category(self):
        check = detect_escalation("Is this a scam? I will call my lawyer")
        categories = {t.category for t in check.triggers if t.type == "keyword"}
        assert categories == {"fraud", "legal"}
        assert check.escalate is True

    def test_inflected_keywords(self):
        check = detect_escalation("The payments went to scammers, my lawyers know")
        keywords = {(t.category, t.keyword) for t in check.triggers if t.type == "keyword"}
        assert keywords == {("payment", "payment"), ("fraud", "scam"), ("legal", "lawyer")}

    def test_single_token_needs_word_boundary(self):
        assert detect_escalation("That is an issue for me").escalate is False

    def test_repeated_mention(self):
        check = detect_escalation("scam scam, total scam")
        repeated = [t for t in check.triggers if t.type == "repeated_mention"]
        assert repeated and repeated[0].count == 3

    def test_high_amount_is_strictly_above_ceiling(self):
        assert detect_escalation("Ich kann 10.000 € investieren", amount_ceiling=10000).escalate is False
        check = detect_escalation("Ich kann 25.000 € investieren", amount_ceiling=10000)
        assert [t.type for t in check.triggers] == ["high_amount"]
        assert check.triggers[0].amount == 25000

    def test_plain_message(self):
        check = detect_escalation("Klingt interessant, erzähl mehr")
        assert check.escalate is False
        assert check.risk_increase == 0


class TestExecuteEscalation:
    @patch("outreach_engine.services.escalation_service.alert_warning")
    def test_sets_human_required_and_risk(self, mock_alert, db):
        contact, _ = get_or_create_contact(db, "49170000")
        check = detect_escalation("Das ist Betrug, ich gehe zur Polizei")

        execute_escalation(db, contact, check, "Das ist Betrug, ich gehe zur Polizei")

        assert contact.human_required is True
        assert contact.risk_score == len(check.triggers) * RISK_PER_TRIGGER
        event = list_events(db, contact.phone, "ESCALATION_TRIGGERED")[0]
        assert event.payload["risk_increase"] == contact.risk_score
        mock_alert.assert_called_once()

    @patch("outreach_engine.services.escalation_service.alert_warning")
    def test_risk_is_capped(self, mock_alert, db):
        contact, _ = get_or_create_contact(db, "49170001", risk_score=95)
        check = detect_escalation("scam fraud betrug lawyer")

        execute_escalation(db, contact, check, "scam fraud betrug lawyer")

        assert contact.risk_score == 100
