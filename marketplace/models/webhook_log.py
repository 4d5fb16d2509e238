import uuid
from sqlalchemy import Column, String, Text, TIMESTAMP, UniqueConstraint
from sqlalchemy.sql import func
from marketplace.db import Base


class WebhookLog(Base):
    __tablename__ = "webhook_logs"

    __table_args__ = (UniqueConstraint("event_id", name="uq_webhook_logs_event_id"),)

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    event_id = Column(String(150), nullable=False)
    event_type = Column(String(50), nullable=False)
    payload = Column(Text)

    status = Column(String(30), nullable=False)  # PROCESSED / ALREADY_PROCESSED

    processed_at = Column(TIMESTAMP)
    created_at = Column(TIMESTAMP, server_default=func.now())
