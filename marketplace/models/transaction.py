import uuid
from sqlalchemy import Column, ForeignKey, Index, Numeric, String, TIMESTAMP
from sqlalchemy.sql import func
from marketplace.db import Base


class Transaction(Base):
    __tablename__ = "transactions"

    __table_args__ = (Index("ix_transactions_gateway_order_id", "payment_gateway_order_id"),)

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    payment_gateway_order_id = Column(String(100), nullable=False)
    payment_gateway_payment_id = Column(String(100))
    payment_gateway_signature = Column(String(200))

    buyer_id = Column(String(36), nullable=False)
    seller_id = Column(String(36), nullable=False)
    note_id = Column(String(36), ForeignKey("notes.id"), nullable=False)

    amount = Column(Numeric(12, 2), nullable=False, default=0)
    seller_earning = Column(Numeric(12, 2), nullable=False)

    status = Column(String(20), nullable=False, default="PENDING")  # PENDING / SUCCESS / FAILED

    escrow_release_at = Column(TIMESTAMP)
    escrow_released_at = Column(TIMESTAMP)

    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())
