import uuid
from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, TIMESTAMP, UniqueConstraint
from sqlalchemy.sql import func
from marketplace.db import Base


class Purchase(Base):
    __tablename__ = "purchases"

    __table_args__ = (UniqueConstraint("transaction_id", name="uq_purchases_transaction_id"),)

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    user_id = Column(String(36), nullable=False)
    note_id = Column(String(36), ForeignKey("notes.id"), nullable=False)
    transaction_id = Column(String(36), ForeignKey("transactions.id"), nullable=False)

    watermarked_file_url = Column(String(1000))
    watermark_id = Column(String(100), nullable=False)

    download_count = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(TIMESTAMP, server_default=func.now())
