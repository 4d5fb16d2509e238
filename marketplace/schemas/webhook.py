from typing import Optional

from pydantic import BaseModel


class PaymentEntity(BaseModel):
    id: str
    order_id: str
    amount: Optional[int] = None
    status: Optional[str] = None

    class Config:
        extra = "allow"


class PaymentWrapper(BaseModel):
    entity: PaymentEntity


class GatewayPayload(BaseModel):
    payment: Optional[PaymentWrapper] = None

    class Config:
        extra = "allow"


class GatewayEvent(BaseModel):
    event: str
    created_at: int
    payload: Optional[GatewayPayload] = None

    class Config:
        extra = "allow"

    @property
    def payment(self) -> Optional[PaymentEntity]:
        if self.payload is None or self.payload.payment is None:
            return None
        return self.payload.payment.entity
