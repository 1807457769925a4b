"""ORM models for payments and payer accounting."""

from payrpc.models.payment import Payment, WalletAccountModel

__all__ = ["Payment", "WalletAccountModel"]
