# payrpc/api/models/payment.py
from typing import List, Optional

from pydantic import BaseModel


class PaymentDetails(BaseModel):
    """
    Payment challenge returned with HTTP 402.
    """
    paymentRequired: bool = True
    amount: float
    recipient: str
    requestId: str
    expiresAt: int  # epoch milliseconds
    message: str


class PaymentRequiredResponse(BaseModel):
    """
    Body of an HTTP 402 challenge response.
    """
    success: bool = False
    error: str = "Payment required"
    payment: PaymentDetails


class ErrorResponse(BaseModel):
    """
    Body of a rejected payment attempt.
    """
    success: bool = False
    error: str
    code: Optional[str] = None


class DiscountTierInfo(BaseModel):
    name: str
    minTokens: int
    discount: int
    price: float


class PaymentInfoResponse(BaseModel):
    """
    Response model for the payment info endpoint.
    """
    amount: float
    unit: str
    recipient: str
    timeoutMs: int
    headers: List[str]
    tiers: List[DiscountTierInfo]
