from sqlalchemy import Column, DateTime, String, Text

from mira.database import Base


class ForwardTicketRecord(Base):
    __tablename__ = "forward_tickets"

    id = Column(String(64), primary_key=True)
    client_id = Column(String(255), nullable=False)
    staff_id = Column(String(255), nullable=False, index=True)
    staff_name = Column(Text, nullable=False)
    department = Column(String(100), nullable=False)
    client_display_name = Column(Text)
    original_text = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
