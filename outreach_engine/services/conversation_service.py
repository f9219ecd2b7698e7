from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from outreach_engine.models import ConversationTurn

INCOMING = "incoming"
OUTGOING = "outgoing"


def ensure_timezone(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def add_turn(
    db: Session,
    phone: str,
    direction: str,
    text: str,
    run_id: Optional[str] = None,
    at: Optional[datetime] = None,
) -> ConversationTurn:
    if direction not in (INCOMING, OUTGOING):
        raise ValueError(f"Invalid direction: {direction}")
    turn = ConversationTurn(
        phone=phone,
        direction=direction,
        text=text,
        run_id=run_id,
        created_at=at or datetime.now(timezone.utc),
    )
    db.add(turn)
    db.flush()
    return turn


def get_recent_turns(db: Session, phone: str, limit: int = 10) -> list[ConversationTurn]:
    """Last ``limit`` turns, oldest first. Ties on timestamp keep insertion order."""
    rows = (
        db.query(ConversationTurn)
        .filter(ConversationTurn.phone == phone)
        .order_by(ConversationTurn.created_at.desc(), ConversationTurn.id.desc())
        .limit(limit)
        .all()
    )
    return list(reversed(rows))


def get_recent_outbound_texts(db: Session, phone: str, limit: int = 50) -> list[str]:
    rows = (
        db.query(ConversationTurn.text)
        .filter(ConversationTurn.phone == phone, ConversationTurn.direction == OUTGOING)
        .order_by(ConversationTurn.created_at.desc(), ConversationTurn.id.desc())
        .limit(limit)
        .all()
    )
    return [row[0] for row in rows]


def get_incoming_texts(db: Session, phone: str, limit: int = 50) -> list[str]:
    rows = (
        db.query(ConversationTurn.text)
        .filter(ConversationTurn.phone == phone, ConversationTurn.direction == INCOMING)
        .order_by(ConversationTurn.created_at.desc(), ConversationTurn.id.desc())
        .limit(limit)
        .all()
    )
    return [row[0] for row in rows]


def count_turns(db: Session, phone: str) -> int:
    return db.query(ConversationTurn).filter(ConversationTurn.phone == phone).count()


def has_history(db: Session, phone: str) -> bool:
    return db.query(ConversationTurn.id).filter(ConversationTurn.phone == phone).first() is not None


def format_transcript(turns: list[ConversationTurn]) -> str:
    lines = []
    for turn in turns:
        speaker = "CONTACT" if turn.direction == INCOMING else "BOT"
        lines.append(f"{speaker}: {turn.text}")
    return "\n".join(lines)
