from sqlalchemy import Column, String, Text, DateTime
from database import Base
from datetime import datetime


class KeyValueEntry(Base):
    """One logical collection, stored as a serialized JSON document."""
    __tablename__ = "kv_entries"

    key = Column(String(200), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
