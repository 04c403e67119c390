from sqlalchemy import JSON, Column, DateTime, Integer

from mira.database import Base


class AnalyticsSnapshotRecord(Base):
    __tablename__ = "analytics_snapshots"

    id = Column(Integer, primary_key=True)
    payload = Column(JSON, nullable=False)  # AnalyticsState as a dict
    saved_at = Column(DateTime(timezone=True), nullable=False)
