# payrpc/api/endpoints/payment.py
from fastapi import APIRouter, Request
import logging

from payrpc.api.models.payment import DiscountTierInfo, PaymentInfoResponse
from payrpc.payment.gate import PAYMENT_SIGNATURE_HEADER, REQUEST_ID_HEADER, PaymentConfig
from payrpc.payment.pricing import describe_tiers

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/payment/info", response_model=PaymentInfoResponse)
def get_payment_info(request: Request) -> PaymentInfoResponse:
    """
    Describe how to pay for protected endpoints.

    Free endpoint: returns the base price, recipient wallet, verification
    window, the headers a paid request must carry and the discount tiers.
    """
    config: PaymentConfig = request.app.state.payment_config
    return PaymentInfoResponse(
        amount=config.amount,
        unit=config.unit,
        recipient=config.recipient,
        timeoutMs=config.timeout_ms,
        headers=[PAYMENT_SIGNATURE_HEADER, REQUEST_ID_HEADER],
        tiers=[DiscountTierInfo(**tier) for tier in describe_tiers()],
    )
