from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel


class WalletOut(BaseModel):
    seller_id: str

    available_balance: Decimal
    pending_balance: Decimal
    total_earned: Decimal
    total_withdrawn: Decimal
    minimum_withdrawal_amount: Decimal

    is_active: bool

    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
