from sqlalchemy import Boolean, Column, DateTime, Integer, Text
from sqlalchemy.orm import relationship

from outreach_engine.database import Base
from outreach_engine.models.types import JSONType, utcnow


class Contact(Base):
    __tablename__ = "contacts"

    phone = Column(Text, primary_key=True)
    name = Column(Text)
    company = Column(Text)
    notes = Column(Text)
    batch_id = Column(Text)
    batch_type = Column(Text)
    consent_status = Column(Text, nullable=False, default="UNKNOWN")  # UNKNOWN, SOFT_OPTIN_SENT, OPTED_IN, DND
    pipeline_stage = Column(Text, nullable=False, default="INTRO")
    stage_reason = Column(Text)
    bot_paused = Column(Boolean, nullable=False, default=False)
    human_required = Column(Boolean, nullable=False, default=False)
    risk_score = Column(Integer, nullable=False, default=0)
    ccb = Column(JSONType)
    ccb_version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    last_contacted_at = Column(DateTime(timezone=True))
    last_inbound_at = Column(DateTime(timezone=True))

    turns = relationship("ConversationTurn", back_populates="contact", order_by="ConversationTurn.id")
