# payrpc/payment/verification.py
"""
On-chain verification of proof-of-payment signatures.

Given a transaction signature, the verifier fetches the transaction from
the ledger and checks, in order:
1. The transaction exists and is confirmed
2. It executed successfully
3. It carries a block time within the timeout window
4. It increased the payment wallet's balance
5. The delivered amount is at least 99% of the required amount

Verification is read-only and safe to repeat. Ledger outages raise
LedgerUnavailableError instead of producing an invalid result.
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from payrpc.payment.errors import VerificationError
from payrpc.payment.signature import is_valid_signature
from payrpc.services.solana_rpc import LedgerTransaction, lamports_to_sol, sol_to_lamports

logger = logging.getLogger(__name__)

# Delivered amount may fall short of the price by this much (fees, rounding)
AMOUNT_TOLERANCE_PERCENT = 1


class LedgerClient(Protocol):
    def get_transaction(self, signature: str) -> Optional[LedgerTransaction]:
        ...


# (transaction, recipient index) -> payer address or None
PayerResolver = Callable[[LedgerTransaction, int], Optional[str]]


def first_debited_account(tx: LedgerTransaction, recipient_index: int) -> Optional[str]:
    """
    Attribute the payment to the first account whose balance decreased.

    This is a heuristic, not proof of who signed: in transactions with a
    separate fee payer or nested transfers it can name the wrong account.
    """
    for index, account in enumerate(tx.account_keys):
        if index == recipient_index:
            continue
        if tx.balance_change(index) < 0:
            return account
    return None


@dataclass
class VerificationResult:
    valid: bool
    signature: str
    amount: Optional[float] = None
    required_amount: Optional[float] = None
    payer: Optional[str] = None
    recipient: Optional[str] = None
    timestamp: Optional[int] = None
    elapsed_seconds: Optional[int] = None
    error: Optional[VerificationError] = None
    message: Optional[str] = None


def _now_ms() -> int:
    return int(time.time() * 1000)


class LedgerVerifier:
    """Confirms that a signature proves a sufficient, recent payment."""

    def __init__(
        self,
        ledger: LedgerClient,
        recipient: str,
        payer_resolver: PayerResolver = first_debited_account,
        clock: Callable[[], int] = _now_ms,
    ):
        """
        Args:
            ledger: Client able to fetch transactions by signature
            recipient: Payment wallet address that must receive the funds
            payer_resolver: Strategy naming the payer of a matched transfer
            clock: Returns the current time in epoch milliseconds
        """
        self.ledger = ledger
        self.recipient = recipient
        self.payer_resolver = payer_resolver
        self.clock = clock

    def _invalid(
        self,
        signature: str,
        error: VerificationError,
        message: str,
        **details
    ) -> VerificationResult:
        logger.info(f"Payment {signature[:12]}... rejected ({error.value}): {message}")
        return VerificationResult(
            valid=False,
            signature=signature,
            error=error,
            message=message,
            **details
        )

    def verify(self, signature: str, required_amount: float, timeout_ms: int) -> VerificationResult:
        """
        Verify a payment signature against the ledger.

        Args:
            signature: Base58 transaction signature presented as proof
            required_amount: Price in SOL
            timeout_ms: Maximum allowed age of the transaction

        Returns:
            VerificationResult; ``valid`` is True only if every check passed

        Raises:
            LedgerUnavailableError: If the ledger could not be queried
        """
        if not is_valid_signature(signature):
            return self._invalid(
                signature, VerificationError.MALFORMED_PROOF, "Invalid signature format"
            )

        tx = self.ledger.get_transaction(signature)
        if tx is None:
            return self._invalid(
                signature, VerificationError.NOT_FOUND, "Transaction not found or not confirmed"
            )

        if not tx.success:
            return self._invalid(
                signature, VerificationError.EXECUTION_FAILED, "Transaction failed on-chain"
            )

        if not tx.block_time:
            return self._invalid(
                signature, VerificationError.TIMESTAMP_UNAVAILABLE, "Block time not available"
            )

        age_ms = self.clock() - tx.block_time * 1000
        if age_ms > timeout_ms:
            elapsed = int(age_ms // 1000)
            return self._invalid(
                signature,
                VerificationError.EXPIRED,
                f"Transaction too old ({elapsed}s)",
                timestamp=tx.block_time,
                elapsed_seconds=elapsed,
            )

        recipient_index = None
        delivered_lamports = 0
        for index, account in enumerate(tx.account_keys):
            if account != self.recipient:
                continue
            change = tx.balance_change(index)
            if change > 0:
                recipient_index = index
                delivered_lamports = change
                break

        if recipient_index is None:
            return self._invalid(
                signature,
                VerificationError.NO_PAYMENT_FOUND,
                "No payment found to payment wallet",
                timestamp=tx.block_time,
            )

        payer = self.payer_resolver(tx, recipient_index)
        amount = lamports_to_sol(delivered_lamports)

        # Compared in lamports so the 99% boundary is exact
        required_lamports = sol_to_lamports(required_amount)
        if delivered_lamports * 100 < required_lamports * (100 - AMOUNT_TOLERANCE_PERCENT):
            return self._invalid(
                signature,
                VerificationError.INSUFFICIENT_AMOUNT,
                f"Insufficient payment: {amount} SOL (required: {required_amount} SOL)",
                amount=amount,
                required_amount=required_amount,
                payer=payer,
                timestamp=tx.block_time,
            )

        logger.info(f"Payment {signature[:12]}... verified: {amount} SOL from {payer}")
        return VerificationResult(
            valid=True,
            signature=signature,
            amount=amount,
            required_amount=required_amount,
            payer=payer,
            recipient=self.recipient,
            timestamp=tx.block_time,
        )
