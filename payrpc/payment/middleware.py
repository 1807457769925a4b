# payrpc/payment/middleware.py
"""
FastAPI middleware for pay-per-call payment verification.

This module provides HTTP middleware that:
1. Intercepts requests to protected endpoints
2. Checks if payment is required (PAYMENT_ENABLED)
3. Runs the authorization gate on the x-payment-signature and
   x-request-id headers
4. Returns the gate's 402/400/403/5xx response when access is denied
5. Exposes the authorizing payment on request.state.payment and logs
   the served request to the audit log
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from fastapi import Request, Response
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from payrpc.core.config import settings
from payrpc.payment import audit
from payrpc.payment.gate import (
    PAYMENT_SIGNATURE_HEADER,
    REQUEST_ID_HEADER,
    AuthorizationGate,
    GateDecision,
    GateOutcome,
)

logger = logging.getLogger(__name__)

PROTECTED_METHODS = ("GET", "POST")


@dataclass
class PaymentContext:
    """Payment that authorized the current request."""
    payment_id: str
    payer_address: str
    request_id: str


def is_protected_endpoint(method: str, path: str, prefixes: List[str]) -> bool:
    """Check if the request matches a protected endpoint prefix."""
    if method not in PROTECTED_METHODS:
        return False
    normalized = path.rstrip("/")
    for prefix in prefixes:
        prefix = prefix.rstrip("/")
        if normalized == prefix or normalized.startswith(prefix + "/"):
            return True
    return False


def get_client_ip(request: Request) -> str:
    """Extract client IP from request, handling proxies."""
    # Check for forwarded headers first
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP in the chain
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    # Fall back to direct connection
    if request.client:
        return request.client.host

    return "unknown"


def get_payment_context(request: Request) -> Optional[PaymentContext]:
    """Return the payment attached to ``request`` by the middleware, if any."""
    return getattr(request.state, "payment", None)


def audit_decision(
    decision: GateDecision,
    client_ip: str,
    endpoint: str,
    signature: Optional[str]
) -> None:
    """Write the audit event matching a gate decision."""
    outcome = decision.outcome

    if outcome == GateOutcome.CHALLENGE_ISSUED:
        payment = decision.body["payment"]
        audit.log_payment_required_sent(
            client_ip=client_ip,
            endpoint=endpoint,
            amount=payment["amount"],
            recipient=payment["recipient"],
            expires_at=payment["expiresAt"],
            request_id=decision.request_id,
        )
    elif outcome == GateOutcome.AUTHORIZED:
        verification = decision.verification
        audit.log_payment_verified(
            client_ip=client_ip,
            payer=decision.payer_address,
            payment_id=decision.payment_id,
            amount=verification.amount if verification else None,
            signature=signature,
            request_id=decision.request_id,
        )
    elif outcome == GateOutcome.REPLAY_MISMATCH:
        audit.log_replay_rejected(
            client_ip=client_ip,
            signature=signature,
            request_id=decision.request_id,
        )
    elif outcome == GateOutcome.LEDGER_UNAVAILABLE:
        audit.log_ledger_unavailable(
            client_ip=client_ip,
            signature=signature,
            request_id=decision.request_id,
        )
    elif outcome in (GateOutcome.FORMAT_REJECTED, GateOutcome.VERIFY_REJECTED):
        audit.log_payment_rejected(
            client_ip=client_ip,
            reason=decision.body["error"],
            status_code=decision.status_code,
            code=decision.body.get("code"),
            signature=signature,
            request_id=decision.request_id,
        )
    elif outcome == GateOutcome.INTERNAL_ERROR:
        audit.log_error(
            client_ip=client_ip,
            error_type="internal_error",
            error_message=decision.body["error"],
            context={"endpoint": endpoint},
            request_id=decision.request_id,
        )


class PaymentMiddleware(BaseHTTPMiddleware):
    """
    Payment gate middleware for FastAPI.

    When PAYMENT_ENABLED=true, this middleware:
    - Checks if the endpoint requires payment
    - Issues a 402 challenge when no proof is presented
    - Verifies presented proofs through the authorization gate
    - Passes authorized requests on with request.state.payment set

    When PAYMENT_ENABLED=false, all requests pass through unchanged.
    """

    def __init__(
        self,
        app,
        gate: AuthorizationGate,
        protected_prefixes: Optional[List[str]] = None,
        enabled: Optional[bool] = None
    ):
        super().__init__(app)
        self.gate = gate
        self._protected_prefixes = protected_prefixes
        self._enabled = enabled

    @property
    def enabled(self) -> bool:
        """Whether payments are enforced (from settings unless given explicitly)."""
        if self._enabled is not None:
            return self._enabled
        return settings.PAYMENT_ENABLED

    @property
    def protected_prefixes(self) -> List[str]:
        """Protected path prefixes (from settings unless given explicitly)."""
        if self._protected_prefixes is not None:
            return self._protected_prefixes
        return settings.protected_prefixes

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Response]
    ) -> Response:
        # Skip if payments are disabled
        if not self.enabled:
            return await call_next(request)

        # Skip if not a protected endpoint
        endpoint = request.url.path
        if not is_protected_endpoint(request.method, endpoint, self.protected_prefixes):
            return await call_next(request)

        started = time.monotonic()
        client_ip = get_client_ip(request)
        signature = request.headers.get(PAYMENT_SIGNATURE_HEADER)
        request_id = request.headers.get(REQUEST_ID_HEADER)

        # The gate blocks on the store and ledger; a disconnecting client
        # does not interrupt it mid-way.
        decision = await run_in_threadpool(self.gate.authorize, signature, request_id, endpoint)
        audit_decision(decision, client_ip, endpoint, signature)

        if not decision.authorized:
            logger.info(
                f"payment: {request.method} {endpoint} from {client_ip} denied "
                f"({decision.outcome.value}, {decision.status_code})"
            )
            return JSONResponse(
                status_code=decision.status_code,
                content=decision.body,
                headers=decision.headers,
            )

        request.state.payment = PaymentContext(
            payment_id=decision.payment_id,
            payer_address=decision.payer_address,
            request_id=decision.request_id,
        )

        response = await call_next(request)

        audit.log_api_request(
            client_ip=client_ip,
            endpoint=endpoint,
            method=request.method,
            status_code=response.status_code,
            response_time_ms=int((time.monotonic() - started) * 1000),
            payment_id=decision.payment_id,
            payer_wallet=decision.payer_address,
            user_agent=request.headers.get("User-Agent"),
            request_id=decision.request_id,
        )
        return response
