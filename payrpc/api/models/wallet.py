# payrpc/api/models/wallet.py
from datetime import datetime

from pydantic import BaseModel


class WalletAccountResponse(BaseModel):
    """
    Response model for wallet usage endpoint.
    """
    walletAddress: str
    totalRequests: int
    totalSpent: float
    discountTier: str
    discountPercent: int
    pricePerCall: float  # SOL at the wallet's tier
    firstSeenAt: datetime
    lastSeenAt: datetime
