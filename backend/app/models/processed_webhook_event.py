from sqlalchemy import Column, DateTime, Integer, JSON, String
from sqlalchemy.sql import func

from ..platform.database import Base


class ProcessedWebhookEvent(Base):
    """Provider event ids already applied to the ledger."""

    __tablename__ = "processed_webhook_events"

    id = Column(Integer, primary_key=True, index=True)
    provider = Column(String, nullable=False, default="stripe")
    event_id = Column(String, nullable=False, unique=True, index=True)
    event_type = Column(String, nullable=False)
    outcome = Column(String, nullable=False)
    event_metadata = Column("metadata", JSON, nullable=True)
    processed_at = Column(DateTime(timezone=True), server_default=func.now())
