from pydantic import BaseModel, Field
from typing import Optional
from decimal import Decimal


class PaymentRequest(BaseModel):
    settlement_id: str
    amount: Decimal = Field(..., gt=0)
    currency: str
    description: str


class PaymentSession(BaseModel):
    provider: str  # mock, stripe, razorpay
    provider_payment_id: str
    checkout_url: Optional[str] = None

