import uuid
from sqlalchemy import Boolean, Column, String, TIMESTAMP
from sqlalchemy.sql import func
from marketplace.db import Base


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    user_id = Column(String(36), nullable=False)
    type = Column(String(20), nullable=False)  # SALE / PURCHASE
    title = Column(String(255), nullable=False)
    message = Column(String(1000), nullable=False)

    is_read = Column(Boolean, nullable=False, default=False)

    created_at = Column(TIMESTAMP, server_default=func.now())
