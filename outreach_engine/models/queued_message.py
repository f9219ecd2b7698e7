from sqlalchemy import Column, DateTime, Integer, Text

from outreach_engine.database import Base
from outreach_engine.models.types import utcnow


class QueuedMessage(Base):
    __tablename__ = "message_queue"

    id = Column(Integer, primary_key=True, autoincrement=True)
    phone = Column(Text, nullable=False, index=True)
    text = Column(Text, nullable=False)
    source = Column(Text, nullable=False, default="followup")  # followup, manual
    archetype = Column(Text)  # nudge_1, nudge_2, nudge_3, reminder
    priority = Column(Integer, nullable=False, default=3)
    status = Column(Text, nullable=False, default="PENDING")  # PENDING, SENT, BLOCKED, FAILED
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    sent_at = Column(DateTime(timezone=True))
