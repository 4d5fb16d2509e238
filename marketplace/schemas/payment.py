from pydantic import BaseModel, Field


class ManualVerificationIn(BaseModel):
    razorpayOrderId: str = Field(min_length=1, max_length=100)
    razorpayPaymentId: str = Field(min_length=1, max_length=100)
    razorpaySignature: str = Field(min_length=1, max_length=200)
