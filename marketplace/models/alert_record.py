import uuid
from sqlalchemy import Column, Index, Integer, JSON, String, Text, TIMESTAMP
from sqlalchemy.sql import func
from marketplace.db import Base


class AlertRecord(Base):
    """Delivery record of an alert; FAILED rows form the dead-letter queue."""

    __tablename__ = "alert_records"

    __table_args__ = (Index("ix_alert_records_status", "status"),)

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    severity = Column(String(20), nullable=False)  # CRITICAL / HIGH / WARNING
    event = Column(String(100), nullable=False)
    message = Column(Text, nullable=False)
    metadata_ = Column("metadata", JSON, nullable=False, default=dict)
    environment = Column(String(50))

    attempts = Column(JSON, nullable=False, default=list)
    attempt_count = Column(Integer, nullable=False, default=0)

    status = Column(String(20), nullable=False)  # DELIVERED / FAILED

    created_at = Column(TIMESTAMP, server_default=func.now())
    last_attempt_at = Column(TIMESTAMP)
