# payrpc/payment/gate.py
"""
Payment authorization gate.

Drives one request through the payment state machine:

    no proof           -> issue challenge (402)
    malformed proof    -> reject (400)
    proof verified for this request  -> authorized, no ledger call
    proof verified for another request -> reject (403)
    otherwise          -> verify on-chain -> record -> authorized, or 402

The gate owns no state. The durable store is the source of truth for
"already verified"; the cache only shortcuts that lookup, and cache
failures degrade to a store read. Any ambiguous outcome denies access.
"""
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional

from payrpc.api.models.payment import ErrorResponse, PaymentDetails, PaymentRequiredResponse
from payrpc.models.payment import REQUEST_ID_MAX_LENGTH
from payrpc.payment.errors import LedgerUnavailableError, PaymentStoreError, VerificationError
from payrpc.payment.pricing import resolve_endpoint_price
from payrpc.payment.signature import quick_validate_signature
from payrpc.payment.store import PaymentChallenge, PaymentLedgerStore, PaymentRecord
from payrpc.payment.verification import LedgerVerifier, VerificationResult
from payrpc.payment.wallets import WalletAccountingStore
from payrpc.services.cache import PaymentCache

logger = logging.getLogger(__name__)

# Request headers carrying the proof
PAYMENT_SIGNATURE_HEADER = "x-payment-signature"
REQUEST_ID_HEADER = "x-request-id"

# Response header flagging a payment challenge
PAYMENT_REQUIRED_HEADER = "X-Payment-Required"

LEDGER_RETRY_AFTER_SECONDS = 5
UNKNOWN_PAYER = "unknown"


class GateOutcome(Enum):
    """Terminal states of the authorization state machine."""
    CHALLENGE_ISSUED = "challenge_issued"
    FORMAT_REJECTED = "format_rejected"
    REPLAY_MISMATCH = "replay_mismatch"
    CACHE_AUTHORIZED = "cache_authorized"
    AUTHORIZED = "authorized"
    VERIFY_REJECTED = "verify_rejected"
    LEDGER_UNAVAILABLE = "ledger_unavailable"
    INTERNAL_ERROR = "internal_error"


@dataclass(frozen=True)
class PaymentConfig:
    """Read-only payment parameters injected by the process entry point."""
    amount: float
    recipient: str
    timeout_ms: int
    endpoint_prices: Mapping[str, float] = field(default_factory=dict)
    unit: str = "SOL"
    cache_ttl_seconds: int = 3600

    def price_for(self, endpoint: str) -> float:
        return resolve_endpoint_price(endpoint, self.amount, self.endpoint_prices)


@dataclass
class GateDecision:
    """
    Verdict for one request.

    Authorized decisions carry the payment id and payer used to tag usage
    records; denied decisions carry a complete response to send as is.
    """
    authorized: bool
    outcome: GateOutcome
    status_code: int = 200
    body: Optional[Dict[str, Any]] = None
    headers: Dict[str, str] = field(default_factory=dict)
    payment_id: Optional[str] = None
    payer_address: Optional[str] = None
    request_id: Optional[str] = None
    verification: Optional[VerificationResult] = None


def _now_ms() -> int:
    return int(time.time() * 1000)


def generate_request_id() -> str:
    """Generate an opaque, unique challenge identifier."""
    return uuid.uuid4().hex


def _reject(
    outcome: GateOutcome,
    status_code: int,
    message: str,
    code: Optional[str] = None,
    headers: Optional[Dict[str, str]] = None,
    **details
) -> GateDecision:
    return GateDecision(
        authorized=False,
        outcome=outcome,
        status_code=status_code,
        body=ErrorResponse(error=message, code=code).model_dump(),
        headers=headers or {},
        **details
    )


class AuthorizationGate:
    """Orchestrates challenge issuance, proof verification and accounting."""

    def __init__(
        self,
        config: PaymentConfig,
        verifier: LedgerVerifier,
        payments: PaymentLedgerStore,
        wallets: WalletAccountingStore,
        cache: Optional[PaymentCache] = None,
        clock: Callable[[], int] = _now_ms,
    ):
        self.config = config
        self.verifier = verifier
        self.payments = payments
        self.wallets = wallets
        self.cache = cache
        self.clock = clock

    def authorize(
        self,
        signature: Optional[str],
        request_id: Optional[str],
        endpoint: str
    ) -> GateDecision:
        """
        Decide whether a request to ``endpoint`` has been paid for.

        Args:
            signature: Value of the x-payment-signature header, if any
            request_id: Value of the x-request-id header, if any
            endpoint: Resource path being requested

        Returns:
            GateDecision; never raises for store, cache or ledger failures
        """
        try:
            if not signature or not request_id:
                return self.issue_challenge(endpoint)

            if not quick_validate_signature(signature):
                logger.warning(f"payment: Malformed signature for {endpoint}")
                return _reject(
                    GateOutcome.FORMAT_REJECTED,
                    400,
                    "Invalid signature format",
                    code=VerificationError.MALFORMED_PROOF.value,
                )

            if len(request_id) > REQUEST_ID_MAX_LENGTH:
                logger.warning(f"payment: Oversized request id ({len(request_id)} chars) for {endpoint}")
                return _reject(
                    GateOutcome.FORMAT_REJECTED,
                    400,
                    "Invalid request id",
                    code="malformed_request_id",
                )

            existing = self._find_payment(signature)
            if existing is not None and existing.verified:
                return self._decide_existing(existing, request_id)

            return self._verify_and_record(signature, request_id, endpoint)

        except LedgerUnavailableError as e:
            logger.error(f"payment: Ledger unavailable while verifying for {endpoint}: {e}")
            return _reject(
                GateOutcome.LEDGER_UNAVAILABLE,
                503,
                "Payment verification temporarily unavailable",
                code="ledger_unavailable",
                headers={"Retry-After": str(LEDGER_RETRY_AFTER_SECONDS)},
            )
        except PaymentStoreError as e:
            logger.error(f"payment: Store failure for {endpoint}: {e}")
            return _reject(GateOutcome.INTERNAL_ERROR, 500, "Internal server error", code="internal_error")
        except Exception as e:
            logger.exception(f"payment: Unexpected failure authorizing {endpoint}: {e}")
            return _reject(GateOutcome.INTERNAL_ERROR, 500, "Internal server error", code="internal_error")

    def issue_challenge(self, endpoint: str) -> GateDecision:
        """
        Create and persist a new payment challenge for ``endpoint``.

        Raises:
            PaymentStoreError: If the challenge could not be stored
        """
        request_id = generate_request_id()
        amount = self.config.price_for(endpoint)
        expires_at_ms = self.clock() + self.config.timeout_ms

        self.payments.create(PaymentChallenge(
            request_id=request_id,
            amount=amount,
            endpoint=endpoint,
            expires_at=datetime.fromtimestamp(expires_at_ms / 1000, tz=timezone.utc),
        ))

        details = PaymentDetails(
            amount=amount,
            recipient=self.config.recipient,
            requestId=request_id,
            expiresAt=expires_at_ms,
            message=f"Pay {amount} {self.config.unit} to access this endpoint",
        )
        logger.info(f"payment: Issued challenge {request_id} for {endpoint} ({amount} {self.config.unit})")

        return GateDecision(
            authorized=False,
            outcome=GateOutcome.CHALLENGE_ISSUED,
            status_code=402,
            body=PaymentRequiredResponse(payment=details).model_dump(),
            headers={PAYMENT_REQUIRED_HEADER: "true"},
            request_id=request_id,
        )

    def _decide_existing(self, record: PaymentRecord, request_id: str) -> GateDecision:
        if record.request_id == request_id:
            logger.info(f"payment: Proof already verified for request {request_id}, payment {record.id}")
            return GateDecision(
                authorized=True,
                outcome=GateOutcome.CACHE_AUTHORIZED,
                payment_id=record.id,
                payer_address=record.payer_address,
                request_id=request_id,
            )

        logger.warning(
            f"payment: Signature reuse rejected, bound to request {record.request_id}, "
            f"presented with {request_id}"
        )
        return _reject(
            GateOutcome.REPLAY_MISMATCH,
            403,
            "Signature already used for different request",
            code="replay_mismatch",
            request_id=request_id,
        )

    def _verify_and_record(self, signature: str, request_id: str, endpoint: str) -> GateDecision:
        required_amount = self.config.price_for(endpoint)
        verification = self.verifier.verify(signature, required_amount, self.config.timeout_ms)

        if not verification.valid:
            return _reject(
                GateOutcome.VERIFY_REJECTED,
                402,
                verification.message or "Payment verification failed",
                code=verification.error.value if verification.error else None,
                request_id=request_id,
                verification=verification,
            )

        now_ms = self.clock()
        result = self.payments.upsert_verified(
            proof_id=signature,
            request_id=request_id,
            amount=verification.amount if verification.amount is not None else required_amount,
            payer_address=verification.payer or UNKNOWN_PAYER,
            endpoint=endpoint,
            verified_at=datetime.fromtimestamp(now_ms / 1000, tz=timezone.utc),
            expires_at=datetime.fromtimestamp((now_ms + self.config.timeout_ms) / 1000, tz=timezone.utc),
        )
        record = result.record

        if not result.created:
            # Lost the race to a concurrent verification of the same proof
            self._remember(record)
            decision = self._decide_existing(record, request_id)
            decision.verification = verification
            return decision

        self._remember(record)

        if verification.payer:
            try:
                self.wallets.record_success(verification.payer, record.amount)
            except PaymentStoreError as e:
                # The payment itself is recorded; only the usage totals are behind
                logger.error(f"payment: Wallet accounting failed for {verification.payer}: {e}")
        else:
            logger.warning(f"payment: No payer identified for payment {record.id}, accounting skipped")

        return GateDecision(
            authorized=True,
            outcome=GateOutcome.AUTHORIZED,
            payment_id=record.id,
            payer_address=record.payer_address,
            request_id=request_id,
            verification=verification,
        )

    # Cache-aside helpers; the cache never changes a verdict

    def _cache_key(self, signature: str) -> str:
        return f"payment:verified:{signature}"

    def _find_payment(self, signature: str) -> Optional[PaymentRecord]:
        if self.cache is not None:
            try:
                cached = self.cache.get(self._cache_key(signature))
                if cached:
                    return PaymentRecord.from_cache(cached)
            except Exception as e:
                logger.warning(f"payment: Ignoring cache read failure: {e}")

        record = self.payments.find_by_proof_id(signature)
        if record is not None and record.verified:
            self._remember(record)
        return record

    def _remember(self, record: PaymentRecord) -> None:
        if self.cache is None or not record.verified or not record.proof_id:
            return
        try:
            self.cache.set(self._cache_key(record.proof_id), record.to_cache(), self.config.cache_ttl_seconds)
        except Exception as e:
            logger.warning(f"payment: Ignoring cache write failure: {e}")
