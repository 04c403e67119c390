from sqlalchemy import Column, DateTime, String

from mira.database import Base


class DedupEntry(Base):
    __tablename__ = "dedup_entries"

    sender = Column(String(255), primary_key=True)
    content_hash = Column(String(64), primary_key=True)
    first_seen_at = Column(DateTime(timezone=True), nullable=False)
