from sqlalchemy import Column, DateTime, ForeignKey, Integer, Text
from sqlalchemy.orm import relationship

from outreach_engine.database import Base
from outreach_engine.models.types import utcnow


class ConversationTurn(Base):
    __tablename__ = "conversations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    phone = Column(Text, ForeignKey("contacts.phone"), nullable=False, index=True)
    direction = Column(Text, nullable=False)  # incoming, outgoing
    text = Column(Text, nullable=False)
    run_id = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    contact = relationship("Contact", back_populates="turns")
