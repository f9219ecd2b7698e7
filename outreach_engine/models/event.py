import uuid

from sqlalchemy import Column, DateTime, Text, Uuid

from outreach_engine.database import Base
from outreach_engine.models.types import JSONType, utcnow


class Event(Base):
    __tablename__ = "events"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    phone = Column(Text, nullable=False, index=True)  # contact phone or SYSTEM
    event_type = Column(Text, nullable=False, index=True)
    payload = Column(JSONType, nullable=False, default=dict)
    run_id = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
