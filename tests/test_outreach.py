import asyncio
import json
import random
import threading
import time
from unittest.mock import MagicMock

from outreach_engine.services.contact_service import get_contact, get_or_create_contact
from outreach_engine.services.conversation_service import INCOMING, add_turn, get_recent_turns
from outreach_engine.services.event_service import EventType, list_events
from outreach_engine.services.outreach_service import (
    Campaign,
    CampaignPacing,
    CampaignRunner,
    CampaignStatus,
    CampaignTarget,
    cancel_campaign,
    generate_opener_variations,
    prepare_campaign,
    register_campaign,
)
from outreach_engine.services.settings_service import GLOBAL_SEND_ENABLED
from outreach_engine.services.template_service import opener_fallbacks
from outreach_engine.services.transport import Transport, TransportError

OPENER = "Hey, ich hab deine Nummer aus der M3 Gruppe. Bist du auch im Blockchain-Bereich?"
NO_DELAY = CampaignPacing(min_delay_seconds=0, max_delay_seconds=0, batch_size=15, cooldown_seconds=0)


def _transport(message_id="wamid-1"):
    transport = MagicMock(spec=Transport)
    transport.send.return_value = message_id
    return transport


def _runner(session_factory, transport, breaker, settings_provider, locks, **kwargs):
    kwargs.setdefault("pacing", NO_DELAY)
    return CampaignRunner(
        session_factory,
        transport,
        breaker,
        settings_provider,
        rng=random.Random(1),
        locks=locks,
        **kwargs,
    )


def _campaign(batch_id, *phones):
    return Campaign(
        batch_id=batch_id,
        batch_type="test",
        targets=[CampaignTarget(phone=p, message=f"Hey {i}, bist du auch bei M3 dabei?") for i, p in enumerate(phones)],
    )


class TestOpenerVariations:
    def test_uses_llm_variations(self, fake_llm):
        fake_llm.responses = [json.dumps([f"Servus {i}, bist du auch bei M3?" for i in range(5)])]

        variations = generate_opener_variations(OPENER, count=3)

        assert variations == [f"Servus {i}, bist du auch bei M3?" for i in range(3)]
        assert len(fake_llm.calls) == 1

    def test_pads_short_llm_answer_with_fallbacks(self, fake_llm):
        fake_llm.responses = ['["Moin A, bist du dabei?", "Moin B, bist du dabei?", "Moin C, bist du dabei?"]']

        variations = generate_opener_variations(OPENER, count=5, rng=random.Random(3))

        assert variations[:3] == ["Moin A, bist du dabei?", "Moin B, bist du dabei?", "Moin C, bist du dabei?"]
        assert all(v in opener_fallbacks() for v in variations[3:])
        assert len(set(variations)) == 5

    def test_retries_then_falls_back(self, fake_llm):
        fake_llm.responses = ["no idea", RuntimeError("boom"), '["nur eine"]']

        variations = generate_opener_variations(OPENER, count=4, rng=random.Random(0))

        assert len(fake_llm.calls) == 3
        assert len(variations) == 4
        assert all(v in opener_fallbacks() for v in variations)
        assert len(set(variations)) == 4


class TestPrepareCampaign:
    def test_dedupes_phones_and_creates_contacts(self, db, fake_llm):
        campaign = prepare_campaign(db, ["+49 158 1", "491581", "49 158 2", "n/a"], OPENER, batch_id="batch-prep")

        assert [t.phone for t in campaign.targets] == ["491581", "491582"]
        assert campaign.status == CampaignStatus.PREPARED
        contact = get_contact(db, "491581")
        assert contact.batch_id == "batch-prep"
        assert contact.consent_status == "UNKNOWN"


class TestCampaignPacing:
    def test_no_delay_before_first_send(self):
        assert CampaignPacing().delay_before(0, random.Random(0)) == 0.0

    def test_cooldown_after_each_batch(self):
        pacing = CampaignPacing(batch_size=15, cooldown_seconds=1500)
        assert pacing.delay_before(15, random.Random(0)) == 1500
        assert pacing.delay_before(30, random.Random(0)) == 1500

    def test_random_delay_within_bounds(self):
        pacing = CampaignPacing(min_delay_seconds=60, max_delay_seconds=90)
        delays = [pacing.delay_before(n, random.Random(n)) for n in range(1, 14)]
        assert all(60 <= d <= 90 for d in delays)


class TestCampaignRunner:
    def test_sends_and_marks_soft_optin(self, db, session_factory, breaker, settings_provider, locks):
        transport = _transport()
        campaign = _campaign("batch-send", "49158100", "49158101")

        asyncio.run(_runner(session_factory, transport, breaker, settings_provider, locks).run(campaign))

        assert campaign.status == CampaignStatus.COMPLETED
        assert campaign.sent_count == 2
        assert transport.send.call_count == 2
        db.expire_all()
        contact = get_contact(db, "49158100")
        assert contact.consent_status == "SOFT_OPTIN_SENT"
        assert contact.last_contacted_at is not None
        assert get_recent_turns(db, "49158100")[0].text == "Hey 0, bist du auch bei M3 dabei?"
        event = list_events(db, "49158101", EventType.OUTREACH_SENT.value)[0]
        assert event.payload["batch_id"] == "batch-send"
        assert event.payload["message_id"] == "wamid-1"

    def test_skips_ineligible_contacts(self, db, session_factory, breaker, settings_provider, locks):
        get_or_create_contact(db, "49158200", consent_status="DND", pipeline_stage="DND")
        get_or_create_contact(db, "49158201", consent_status="SOFT_OPTIN_SENT")
        contact, _ = get_or_create_contact(db, "49158202")
        add_turn(db, contact.phone, INCOMING, "Hallo?")
        db.commit()
        transport = _transport()
        campaign = _campaign("batch-skip", "49158200", "49158201", "49158202", "49158203")

        asyncio.run(_runner(session_factory, transport, breaker, settings_provider, locks).run(campaign))

        assert [r.get("reason") for r in campaign.results[:3]] == ["dnd", "already_contacted", "has_conversation"]
        assert campaign.results[3]["status"] == "sent"
        transport.send.assert_called_once_with("49158203", "Hey 3, bist du auch bei M3 dabei?")

    def test_kill_switch_stops_campaign(self, session_factory, breaker, settings_provider, locks):
        settings_provider.set(GLOBAL_SEND_ENABLED, False)
        transport = _transport()
        campaign = _campaign("batch-kill", "49158300", "49158301")

        asyncio.run(_runner(session_factory, transport, breaker, settings_provider, locks).run(campaign))

        assert campaign.status == CampaignStatus.STOPPED
        assert campaign.results == [{"phone": "49158300", "status": "stopped", "reason": "kill_switch"}]
        transport.send.assert_not_called()

    def test_cancel_during_delay(self, session_factory, breaker, settings_provider, locks):
        transport = _transport()
        campaign = _campaign("batch-cancel", "49158400", "49158401", "49158402")
        delays = []

        async def fake_sleep(seconds):
            delays.append(seconds)
            campaign.cancel()

        runner = _runner(
            session_factory,
            transport,
            breaker,
            settings_provider,
            locks,
            pacing=CampaignPacing(min_delay_seconds=5, max_delay_seconds=5, batch_size=15, cooldown_seconds=60),
            sleep=fake_sleep,
        )
        asyncio.run(runner.run(campaign))

        assert campaign.status == CampaignStatus.CANCELLED
        assert delays == [5]
        assert campaign.sent_count == 1
        assert transport.send.call_count == 1

    def test_transport_error_counts_toward_breaker(self, db, session_factory, breaker, settings_provider, locks):
        transport = MagicMock(spec=Transport)
        transport.send.side_effect = TransportError("gateway down")
        campaign = _campaign("batch-error", "49158500")

        asyncio.run(_runner(session_factory, transport, breaker, settings_provider, locks).run(campaign))

        assert campaign.results[0]["status"] == "error"
        assert breaker.error_count == 1
        assert len(list_events(db, "49158500", EventType.OUTREACH_ERROR.value)) == 1
        assert get_contact(db, "49158500") is None

    def test_event_loop_keeps_running_while_contact_is_locked(self, session_factory, breaker, settings_provider, locks):
        transport = _transport()
        campaign = _campaign("batch-locked", "49158700")
        held = threading.Event()
        release = threading.Event()

        def hold_contact():
            with locks.hold("49158700"):
                held.set()
                release.wait(5)

        holder = threading.Thread(target=hold_contact)
        holder.start()
        assert held.wait(5)

        async def run_with_heartbeat():
            runner = _runner(session_factory, transport, breaker, settings_provider, locks)
            task = asyncio.create_task(runner.run(campaign))
            started = time.monotonic()
            for _ in range(10):
                await asyncio.sleep(0.01)
            elapsed = time.monotonic() - started
            sent_while_locked = transport.send.called
            release.set()
            await asyncio.wait_for(task, timeout=5)
            return elapsed, sent_while_locked

        elapsed, sent_while_locked = asyncio.run(run_with_heartbeat())
        holder.join(5)

        assert elapsed < 1.0
        assert sent_while_locked is False
        assert campaign.status == CampaignStatus.COMPLETED
        assert campaign.sent_count == 1

    def test_contact_that_replied_during_delay_is_skipped(self, session_factory, breaker, settings_provider, locks):
        transport = _transport()
        campaign = _campaign("batch-replied", "49158800", "49158801")

        async def reply_during_sleep(seconds):
            session = session_factory()
            contact, _ = get_or_create_contact(session, "49158801")
            add_turn(session, contact.phone, INCOMING, "Wer bist du?")
            session.commit()
            session.close()

        runner = _runner(
            session_factory,
            transport,
            breaker,
            settings_provider,
            locks,
            pacing=CampaignPacing(min_delay_seconds=1, max_delay_seconds=1, batch_size=15, cooldown_seconds=60),
            sleep=reply_during_sleep,
        )
        asyncio.run(runner.run(campaign))

        assert campaign.results[1] == {"phone": "49158801", "status": "skipped", "reason": "has_conversation"}
        transport.send.assert_called_once_with("49158800", "Hey 0, bist du auch bei M3 dabei?")


class TestCampaignRegistry:
    def test_cancel_prepared_campaign(self):
        campaign = _campaign("batch-registry", "49158600")
        register_campaign(campaign)

        assert cancel_campaign("batch-registry") is True
        assert campaign.status == CampaignStatus.CANCELLED
        assert cancel_campaign("batch-registry") is False

    def test_cancel_unknown_campaign(self):
        assert cancel_campaign("does-not-exist") is False
