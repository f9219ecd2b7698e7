from sqlalchemy import Column, DateTime, Text

from outreach_engine.database import Base
from outreach_engine.models.types import JSONType, utcnow


class SettingEntry(Base):
    __tablename__ = "settings"

    key = Column(Text, primary_key=True)
    value = Column(JSONType)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
