# payrpc/api/endpoints/wallet.py
from fastapi import APIRouter, Depends, HTTPException, Request
import logging

from payrpc.api.models.wallet import WalletAccountResponse
from payrpc.payment.errors import PaymentStoreError
from payrpc.payment.pricing import get_discount_tier, price_for_tier
from payrpc.payment.wallets import WalletAccountingStore

logger = logging.getLogger(__name__)

router = APIRouter()


def get_wallet_store(request: Request) -> WalletAccountingStore:
    """Wallet store constructed by the application entry point."""
    return request.app.state.wallets


@router.get("/wallet/{address}", response_model=WalletAccountResponse)
def get_wallet_account(
    address: str,
    request: Request,
    wallets: WalletAccountingStore = Depends(get_wallet_store),
) -> WalletAccountResponse:
    """
    Get usage totals and discount tier for a payer wallet.

    Returns:
        WalletAccountResponse: Totals recorded from verified payments

    Raises:
        HTTPException: 404 if the wallet has never paid, 500 if the store fails
    """
    try:
        account = wallets.get_account(address)
    except PaymentStoreError as e:
        logger.error(f"Failed to load wallet account {address}: {e}")
        raise HTTPException(
            status_code=500,
            detail="Failed to load wallet account"
        )

    if account is None:
        raise HTTPException(status_code=404, detail="Wallet not found")

    tier = get_discount_tier(account.discount_tier)
    logger.info(f"Wallet endpoint accessed for {address}: {account.total_requests} requests")
    return WalletAccountResponse(
        walletAddress=account.address,
        totalRequests=account.total_requests,
        totalSpent=account.total_spent,
        discountTier=tier.name,
        discountPercent=tier.discount_percent,
        pricePerCall=price_for_tier(request.app.state.payment_config.amount, tier.name),
        firstSeenAt=account.first_seen_at,
        lastSeenAt=account.last_seen_at,
    )
