# payrpc/payment/wallets.py
"""
Per-payer usage accounting.

Totals are incremented inside the database (``total = total + n``) rather
than read, modified and written back, so concurrent successes for the
same wallet are all counted.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from payrpc.db.session import utcnow
from payrpc.models.payment import WalletAccountModel
from payrpc.payment.errors import PaymentStoreError
from payrpc.payment.pricing import DEFAULT_TIER

logger = logging.getLogger(__name__)


@dataclass
class WalletAccount:
    address: str
    total_requests: int
    total_spent: float
    discount_tier: str
    first_seen_at: datetime
    last_seen_at: datetime


class WalletAccountingStore:
    """SQLAlchemy-backed wallet usage totals."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def _increment(self, address: str, amount: float, now: datetime) -> bool:
        with self._session_factory.begin() as session:
            updated = session.execute(
                update(WalletAccountModel)
                .where(WalletAccountModel.wallet_address == address)
                .values(
                    total_requests=WalletAccountModel.total_requests + 1,
                    total_spent=WalletAccountModel.total_spent + amount,
                    last_seen_at=now,
                )
                .execution_options(synchronize_session=False)
            ).rowcount
        return updated == 1

    def record_success(self, address: str, amount: float) -> None:
        """
        Count one paid request of ``amount`` SOL for ``address``.

        Creates the account with the default discount tier on first sight.

        Raises:
            PaymentStoreError: If the store is unavailable
        """
        now = utcnow()
        try:
            if self._increment(address, amount, now):
                return

            try:
                with self._session_factory.begin() as session:
                    session.add(WalletAccountModel(
                        wallet_address=address,
                        total_requests=1,
                        total_spent=amount,
                        token_balance=0.0,
                        discount_tier=DEFAULT_TIER,
                        first_seen_at=now,
                        last_seen_at=now,
                    ))
                logger.info(f"New wallet account {address}")
                return
            except IntegrityError:
                # A concurrent first request created the account
                pass

            if not self._increment(address, amount, now):
                raise PaymentStoreError(f"Wallet account {address} vanished during update")
        except SQLAlchemyError as e:
            logger.error(f"Failed to update wallet account {address}: {e}")
            raise PaymentStoreError("Failed to update wallet account") from e

    def get_account(self, address: str) -> Optional[WalletAccount]:
        """Return a snapshot of the account for ``address``, if it exists."""
        try:
            with self._session_factory() as session:
                account = session.get(WalletAccountModel, address)
                if account is None:
                    return None
                return WalletAccount(
                    address=account.wallet_address,
                    total_requests=account.total_requests,
                    total_spent=account.total_spent,
                    discount_tier=account.discount_tier,
                    first_seen_at=account.first_seen_at,
                    last_seen_at=account.last_seen_at,
                )
        except SQLAlchemyError as e:
            logger.error(f"Failed to load wallet account {address}: {e}")
            raise PaymentStoreError("Failed to load wallet account") from e
