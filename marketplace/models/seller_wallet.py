import uuid
from sqlalchemy import Boolean, Column, Numeric, String, TIMESTAMP, UniqueConstraint
from sqlalchemy.sql import func
from marketplace.db import Base


class SellerWallet(Base):
    __tablename__ = "seller_wallets"

    __table_args__ = (UniqueConstraint("seller_id", name="uq_seller_wallets_seller_id"),)

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    seller_id = Column(String(36), nullable=False)

    available_balance = Column(Numeric(12, 2), nullable=False, default=0)
    pending_balance = Column(Numeric(12, 2), nullable=False, default=0)
    total_earned = Column(Numeric(12, 2), nullable=False, default=0)
    total_withdrawn = Column(Numeric(12, 2), nullable=False, default=0)
    minimum_withdrawal_amount = Column(Numeric(12, 2), nullable=False, default=100)

    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())
