"""Cold outreach campaigns: opener variations, contact preparation, paced sending."""

import asyncio
import random
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from sqlalchemy.orm import Session

from outreach_engine.config import settings
from outreach_engine.logging_config import get_logger
from outreach_engine.services.ai_service import parse_json_array, request_text
from outreach_engine.services.circuit_breaker import CircuitBreaker
from outreach_engine.services.consent_service import can_initiate_contact
from outreach_engine.services.contact_service import (
    ConsentStatus,
    get_contact,
    get_or_create_contact,
    normalize_phone,
    set_consent,
    touch_outbound,
)
from outreach_engine.services.conversation_service import OUTGOING, add_turn, has_history
from outreach_engine.services.event_service import EventType, record_event
from outreach_engine.services.locks import KeyedLocks, get_contact_locks
from outreach_engine.services.outbound_service import evaluate_outbound
from outreach_engine.services.settings_service import SettingsProvider
from outreach_engine.services.template_service import opener_fallbacks
from outreach_engine.services.transport import Transport, TransportError

logger = get_logger("outreach_service")

OPENER_ATTEMPTS = 3
MAX_VARIATIONS_PER_REQUEST = 10

OPENER_PROMPT = """Du bist ein WhatsApp-Nachrichten Experte. Erstelle GENAU {count} einzigartige Variationen.

REGELN:
- Jede MUSS anders klingen (andere Wortwahl, andere Satzstruktur, andere Anrede)
- Kurz: 1-2 Sätze, unter 150 Zeichen
- Casual "du", wie ein Kumpel
- Variiere Anreden: Servus, Moin, Hoi, Hey, Hi, Na, Grüß dich
- KEIN Link, maximal ein Emoji
- Sprache: {language}

Antworte NUR mit einem JSON-Array, NICHTS anderes:
["variation1", "variation2", ...]"""


class CampaignStatus:
    PREPARED = "prepared"
    RUNNING = "running"
    COMPLETED = "completed"
    STOPPED = "stopped"
    CANCELLED = "cancelled"


@dataclass
class CampaignTarget:
    phone: str
    message: str


@dataclass
class Campaign:
    batch_id: str
    batch_type: str
    targets: list[CampaignTarget]
    status: str = CampaignStatus.PREPARED
    results: list[dict] = field(default_factory=list)
    cancel_requested: bool = False
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def cancel(self) -> None:
        self.cancel_requested = True

    @property
    def sent_count(self) -> int:
        return sum(1 for r in self.results if r["status"] == "sent")

    def to_dict(self) -> dict:
        return {
            "batch_id": self.batch_id,
            "batch_type": self.batch_type,
            "status": self.status,
            "total": len(self.targets),
            "sent": self.sent_count,
            "targets": [{"phone": t.phone, "message": t.message} for t in self.targets],
            "results": self.results,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


def _fallback_variations(count: int, rng: random.Random, exclude: Optional[set[str]] = None) -> list[str]:
    pool = [text for text in opener_fallbacks() if text not in (exclude or set())] or opener_fallbacks()
    if not pool:
        return []
    shuffled = list(pool)
    rng.shuffle(shuffled)
    return [shuffled[i % len(shuffled)] for i in range(count)]


def _unique(items: list) -> list[str]:
    seen: list[str] = []
    for item in items:
        text = str(item).strip()
        if text and text not in seen:
            seen.append(text)
    return seen


def generate_opener_variations(
    template: str,
    count: int = 10,
    language: str = "German",
    rng: Optional[random.Random] = None,
) -> list[str]:
    """Distinct opener variations; pads with shuffled fallbacks when the LLM falls short."""
    rng = rng or random.Random()
    if count <= 0:
        return []

    batch_size = min(count, MAX_VARIATIONS_PER_REQUEST)
    messages = [
        {"role": "system", "content": OPENER_PROMPT.format(count=batch_size, language=language)},
        {"role": "user", "content": f'Vorlage: "{template}"\nErstelle {batch_size} Variationen.'},
    ]
    for attempt in range(1, OPENER_ATTEMPTS + 1):
        content = request_text(
            messages,
            stage="opener_llm_ms",
            timeout_seconds=settings.opener_timeout_seconds,
            max_tokens=1200,
            temperature=0.95,
        )
        parsed = _unique(parse_json_array(content) or [])
        if len(parsed) >= 3:
            logger.info(f"LLM generated {len(parsed)} opener variations (attempt {attempt})")
            if len(parsed) >= count:
                return parsed[:count]
            return parsed + _fallback_variations(count - len(parsed), rng, exclude=set(parsed))
        logger.warning(f"Opener variation attempt {attempt} unusable")

    logger.warning("All opener attempts failed, using fallback variations")
    return _fallback_variations(count, rng)


def prepare_campaign(
    db: Session,
    phones: list[str],
    opener_template: str,
    batch_id: Optional[str] = None,
    batch_type: str = "outreach",
    language: str = "German",
    rng: Optional[random.Random] = None,
) -> Campaign:
    """Create UNKNOWN-consent contacts and pair each with an opener. Caller commits."""
    batch_id = batch_id or f"outreach_{uuid.uuid4().hex[:12]}"
    cleaned = []
    for phone in phones:
        normalized = normalize_phone(phone)
        if normalized and normalized not in cleaned:
            cleaned.append(normalized)

    variations = generate_opener_variations(opener_template, len(cleaned), language, rng)
    targets = []
    for index, phone in enumerate(cleaned):
        get_or_create_contact(
            db,
            phone,
            notes=f"Outreach batch: {batch_id}",
            batch_id=batch_id,
            batch_type=batch_type,
        )
        message = variations[index] if index < len(variations) else opener_template
        targets.append(CampaignTarget(phone=phone, message=message))

    logger.info(
        "Campaign prepared",
        extra={"context": {"batch_id": batch_id, "targets": len(targets), "batch_type": batch_type}},
    )
    return Campaign(batch_id=batch_id, batch_type=batch_type, targets=targets)


@dataclass
class CampaignPacing:
    min_delay_seconds: float = 60.0
    max_delay_seconds: float = 90.0
    batch_size: int = 15
    cooldown_seconds: float = 25 * 60

    @classmethod
    def from_settings(cls) -> "CampaignPacing":
        return cls(
            min_delay_seconds=settings.outreach_min_delay_seconds,
            max_delay_seconds=settings.outreach_max_delay_seconds,
            batch_size=settings.outreach_batch_size,
            cooldown_seconds=settings.outreach_cooldown_seconds,
        )

    def delay_before(self, sent_so_far: int, rng: random.Random) -> float:
        if sent_so_far <= 0:
            return 0.0
        if self.batch_size > 0 and sent_so_far % self.batch_size == 0:
            return self.cooldown_seconds
        return rng.uniform(self.min_delay_seconds, self.max_delay_seconds)


class CampaignRunner:
    """Sends a prepared campaign, one short-lived session per target."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        transport: Transport,
        breaker: CircuitBreaker,
        settings_provider: SettingsProvider,
        pacing: Optional[CampaignPacing] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
        locks: Optional[KeyedLocks] = None,
    ):
        self.session_factory = session_factory
        self.transport = transport
        self.breaker = breaker
        self.settings_provider = settings_provider
        self.pacing = pacing or CampaignPacing.from_settings()
        self.sleep = sleep
        self.rng = rng or random.Random()
        self.locks = locks or get_contact_locks()

    async def run(self, campaign: Campaign) -> Campaign:
        campaign.status = CampaignStatus.RUNNING
        campaign.started_at = datetime.now(timezone.utc)
        logger.info(
            "Campaign started",
            extra={"context": {"batch_id": campaign.batch_id, "targets": len(campaign.targets)}},
        )

        sent = 0
        for index, target in enumerate(campaign.targets):
            if campaign.cancel_requested:
                campaign.status = CampaignStatus.CANCELLED
                break

            skip_reason = await asyncio.to_thread(self._skip_reason, target.phone)
            if skip_reason:
                campaign.results.append({"phone": target.phone, "status": "skipped", "reason": skip_reason})
                continue

            if not await asyncio.to_thread(self.breaker.is_global_enabled):
                campaign.results.append({"phone": target.phone, "status": "stopped", "reason": "kill_switch"})
                campaign.status = CampaignStatus.STOPPED
                logger.warning(f"Campaign {campaign.batch_id} stopped: global send disabled")
                break

            delay = self.pacing.delay_before(sent, self.rng)
            if delay > 0:
                await self.sleep(delay)
                if campaign.cancel_requested:
                    campaign.status = CampaignStatus.CANCELLED
                    break
                if not await asyncio.to_thread(self.breaker.is_global_enabled):
                    campaign.results.append(
                        {"phone": target.phone, "status": "stopped", "reason": "kill_switch"}
                    )
                    campaign.status = CampaignStatus.STOPPED
                    break

            outcome = await asyncio.to_thread(self._deliver, campaign, target, index)
            campaign.results.append(outcome)
            if outcome["status"] == "sent":
                sent += 1

        if campaign.status == CampaignStatus.RUNNING:
            campaign.status = CampaignStatus.COMPLETED
        campaign.finished_at = datetime.now(timezone.utc)
        logger.info(
            "Campaign finished",
            extra={
                "context": {
                    "batch_id": campaign.batch_id,
                    "status": campaign.status,
                    "sent": campaign.sent_count,
                    "total": len(campaign.targets),
                }
            },
        )
        return campaign

    def _skip_reason(self, phone: str) -> Optional[str]:
        db = self.session_factory()
        try:
            contact = get_contact(db, phone)
            if contact is not None:
                if contact.consent_status == ConsentStatus.DND.value:
                    return "dnd"
                if contact.consent_status in (ConsentStatus.SOFT_OPTIN_SENT.value, ConsentStatus.OPTED_IN.value):
                    return "already_contacted"
            if has_history(db, phone):
                return "has_conversation"
            decision = can_initiate_contact(contact)
            if not decision.allowed:
                return decision.reason
            return None
        finally:
            db.close()

    def _deliver(self, campaign: Campaign, target: CampaignTarget, index: int) -> dict:
        """Gate, send and record one target. Runs in a worker thread under the contact lock."""
        run_id = f"{campaign.batch_id}:{index}"
        with self.locks.hold(target.phone):
            skip_reason = self._skip_reason(target.phone)
            if skip_reason:
                return {"phone": target.phone, "status": "skipped", "reason": skip_reason}

            db = self.session_factory()
            try:
                decision = evaluate_outbound(
                    db,
                    target.phone,
                    target.message,
                    self.breaker,
                    self.settings_provider,
                    run_id=run_id,
                )
                if not decision.allowed:
                    db.commit()
                    return {"phone": target.phone, "status": "blocked", "reason": decision.reason}

                try:
                    message_id = self.transport.send(target.phone, target.message)
                except TransportError as exc:
                    record_event(
                        db,
                        target.phone,
                        EventType.OUTREACH_ERROR,
                        {"error": str(exc)[:500], "batch_id": campaign.batch_id},
                        run_id,
                    )
                    db.commit()
                    logger.error(f"Outreach send failed for {target.phone}: {exc}")
                    self.breaker.record_error(str(exc))
                    return {"phone": target.phone, "status": "error", "error": str(exc)}

                contact, _ = get_or_create_contact(db, target.phone)
                turn = add_turn(db, contact.phone, OUTGOING, target.message, run_id)
                touch_outbound(contact, turn.created_at)
                set_consent(db, contact, ConsentStatus.SOFT_OPTIN_SENT, reason="outreach_sent", run_id=run_id)
                record_event(
                    db,
                    contact.phone,
                    EventType.OUTREACH_SENT,
                    {"batch_id": campaign.batch_id, "index": index, "message_id": message_id},
                    run_id,
                )
                db.commit()
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

        self.breaker.record_success()
        return {"phone": target.phone, "status": "sent", "message": target.message}


_campaigns: dict[str, Campaign] = {}
_campaign_tasks: dict[str, asyncio.Task] = {}


def register_campaign(campaign: Campaign) -> None:
    _campaigns[campaign.batch_id] = campaign


def get_campaign(batch_id: str) -> Optional[Campaign]:
    return _campaigns.get(batch_id)


def list_campaigns() -> list[Campaign]:
    return list(_campaigns.values())


def start_campaign(runner: CampaignRunner, campaign: Campaign) -> asyncio.Task:
    """Schedule a campaign on the running loop."""
    register_campaign(campaign)
    task = asyncio.create_task(runner.run(campaign))
    _campaign_tasks[campaign.batch_id] = task

    def _finished(done: asyncio.Task) -> None:
        _campaign_tasks.pop(campaign.batch_id, None)
        if done.cancelled():
            campaign.status = CampaignStatus.CANCELLED
            return
        exc = done.exception()
        if exc is not None:
            campaign.status = CampaignStatus.STOPPED
            logger.error(
                "Campaign task failed",
                extra={"context": {"batch_id": campaign.batch_id, "error": str(exc)}},
            )

    task.add_done_callback(_finished)
    return task


def cancel_campaign(batch_id: str) -> bool:
    campaign = _campaigns.get(batch_id)
    if campaign is None or campaign.status not in (CampaignStatus.PREPARED, CampaignStatus.RUNNING):
        return False
    campaign.cancel()
    if campaign.status == CampaignStatus.PREPARED:
        campaign.status = CampaignStatus.CANCELLED
    logger.info(f"Campaign {batch_id} cancel requested")
    return True
