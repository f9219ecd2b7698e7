from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from outreach_engine.config import settings
from outreach_engine.logging_config import get_logger
from outreach_engine.models import QueuedMessage
from outreach_engine.services.circuit_breaker import CircuitBreaker
from outreach_engine.services.conversation_service import INCOMING, get_recent_turns
from outreach_engine.services.locks import KeyedLocks, get_contact_locks
from outreach_engine.services.outbound_service import confirm_outbound, evaluate_outbound
from outreach_engine.services.settings_service import SettingsProvider
from outreach_engine.services.transport import Transport, TransportError

logger = get_logger("dispatch_service")


def get_pending(db: Session, limit: int = 20) -> list[QueuedMessage]:
    return (
        db.query(QueuedMessage)
        .filter(QueuedMessage.status == "PENDING")
        .order_by(QueuedMessage.priority.asc(), QueuedMessage.created_at.asc(), QueuedMessage.id.asc())
        .limit(limit)
        .all()
    )


def list_queue(db: Session, status: Optional[str] = None, limit: int = 100) -> list[QueuedMessage]:
    query = db.query(QueuedMessage)
    if status:
        query = query.filter(QueuedMessage.status == status.upper())
    return query.order_by(QueuedMessage.created_at.desc()).limit(limit).all()


def serialize_queued(item: QueuedMessage) -> dict:
    return {
        "id": item.id,
        "phone": item.phone,
        "text": item.text,
        "source": item.source,
        "archetype": item.archetype,
        "priority": item.priority,
        "status": item.status,
        "attempts": item.attempts,
        "last_error": item.last_error,
        "created_at": item.created_at.isoformat() if item.created_at else None,
        "sent_at": item.sent_at.isoformat() if item.sent_at else None,
    }


def _contact_replied(db: Session, phone: str) -> bool:
    turns = get_recent_turns(db, phone, 1)
    return bool(turns) and turns[-1].direction == INCOMING


def dispatch_pending(
    db: Session,
    transport: Transport,
    breaker: CircuitBreaker,
    settings_provider: SettingsProvider,
    limit: Optional[int] = None,
    locks: Optional[KeyedLocks] = None,
) -> dict:
    """Send queued messages through the outbound gate, one commit per message."""
    locks = locks or get_contact_locks()
    results = {"sent": 0, "blocked": 0, "failed": 0, "retrying": 0, "stopped": False}

    for item in get_pending(db, limit or settings.dispatch_batch_limit):
        if not breaker.is_global_enabled():
            results["stopped"] = True
            logger.warning("Dispatch stopped: global send disabled")
            break

        with locks.hold(item.phone):
            if _contact_replied(db, item.phone):
                item.status = "BLOCKED"
                item.last_error = "contact_replied"
                db.commit()
                results["blocked"] += 1
                continue

            decision = evaluate_outbound(
                db,
                item.phone,
                item.text,
                breaker,
                settings_provider,
                run_id=f"queue:{item.id}",
            )
            if not decision.allowed:
                if decision.layer == "global":
                    db.commit()
                    results["stopped"] = True
                    break
                item.status = "BLOCKED"
                item.last_error = decision.reason
                db.commit()
                results["blocked"] += 1
                continue

            item.attempts = (item.attempts or 0) + 1
            try:
                message_id = transport.send(item.phone, item.text)
            except TransportError as exc:
                item.last_error = str(exc)[:500]
                if item.attempts >= settings.dispatch_max_attempts:
                    item.status = "FAILED"
                    results["failed"] += 1
                else:
                    results["retrying"] += 1
                db.commit()
                logger.error(f"Dispatch failed for queue item {item.id}: {exc}")
                breaker.record_error(str(exc))
                continue

            confirm_outbound(
                db,
                item.phone,
                item.text,
                run_id=f"queue:{item.id}",
                source=item.source,
                message_id=message_id,
            )
            item.status = "SENT"
            item.sent_at = datetime.now(timezone.utc)
            item.last_error = None
            db.commit()
            breaker.record_success()
            results["sent"] += 1

    if any(results[key] for key in ("sent", "blocked", "failed", "retrying")):
        logger.info("Dispatch processed", extra={"context": results})
    return results
