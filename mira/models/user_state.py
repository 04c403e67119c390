from sqlalchemy import Boolean, Column, DateTime, Integer, String

from mira.database import Base


class UserStateRecord(Base):
    __tablename__ = "user_states"

    sender = Column(String(255), primary_key=True)
    first_seen_at = Column(DateTime(timezone=True), nullable=False)
    last_seen_at = Column(DateTime(timezone=True), nullable=False)
    message_count = Column(Integer, nullable=False, default=0)
    last_welcome_at = Column(DateTime(timezone=True))
    active = Column(Boolean, nullable=False, default=True)
    last_bot_response_at = Column(DateTime(timezone=True))
    ignored_count = Column(Integer, nullable=False, default=0)
