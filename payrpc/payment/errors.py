# payrpc/payment/errors.py
"""
Error taxonomy for the payment authorization engine.

Verification outcomes are values, not exceptions: the ledger verifier
returns a VerificationResult carrying one VerificationError member. Only
failures that say nothing about the payment itself (ledger unreachable,
store down) are raised.
"""
from enum import Enum


class VerificationError(Enum):
    """Reasons a proof of payment was judged invalid."""
    MALFORMED_PROOF = "malformed_proof"
    NOT_FOUND = "not_found"
    EXECUTION_FAILED = "execution_failed"
    TIMESTAMP_UNAVAILABLE = "timestamp_unavailable"
    EXPIRED = "expired"
    NO_PAYMENT_FOUND = "no_payment_found"
    INSUFFICIENT_AMOUNT = "insufficient_amount"


class PaymentError(Exception):
    """Base class for payment engine failures."""


class LedgerUnavailableError(PaymentError):
    """The ledger node could not be reached or answered with an error.

    Transient: the payment may well be valid, so callers should surface
    this as retryable rather than as a definitive rejection.
    """


class PaymentStoreError(PaymentError):
    """The durable payment store failed for reasons unrelated to the payment."""
