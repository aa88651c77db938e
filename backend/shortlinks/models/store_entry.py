from sqlalchemy import Column, String, DateTime, JSON, func
from ..database import Base


class StoreEntry(Base):
    """One top-level collection of the key-value store"""
    __tablename__ = "store_entries"

    key = Column(String(100), primary_key=True)
    value = Column(JSON, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<StoreEntry {self.key}>"
