"""SQLAlchemy models for payment challenges and wallet accounting."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from payrpc.db.session import Base, utcnow

# Longest x-request-id the gate accepts
REQUEST_ID_MAX_LENGTH = 64


def _new_payment_id() -> str:
    return uuid.uuid4().hex


class Payment(Base):
    """A payment challenge and, once paid, its verified proof."""

    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_payment_id)
    request_id: Mapped[str] = mapped_column(String(REQUEST_ID_MAX_LENGTH), index=True, nullable=False)
    # NULL until a proof is bound; NULLs never collide under the unique index.
    signature: Mapped[Optional[str]] = mapped_column(String(100), unique=True, nullable=True)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    payer_wallet: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    endpoint: Mapped[str] = mapped_column(Text, nullable=False)
    verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class WalletAccountModel(Base):
    """Running usage totals for a payer wallet."""

    __tablename__ = "wallet_accounts"

    wallet_address: Mapped[str] = mapped_column(String(64), primary_key=True)
    total_requests: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_spent: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    # Reserved for holdings-based tiers; not populated yet.
    token_balance: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    discount_tier: Mapped[str] = mapped_column(String(16), nullable=False, default="none")
    first_seen_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    last_seen_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
