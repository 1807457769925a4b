# payrpc/payment/store.py
"""
Durable store for payment challenges and verified proofs.

Each challenge is a row created unverified with no signature. When a proof
is verified the row is bound to the signature, which is unique across the
table, so a signature maps to at most one payment record. The verified
upsert reports whether the caller performed the unverified -> verified
transition, which lets exactly one writer drive per-payer accounting.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from payrpc.models.payment import Payment
from payrpc.payment.errors import PaymentStoreError

logger = logging.getLogger(__name__)


@dataclass
class PaymentChallenge:
    """A newly issued payment request, before any proof exists."""
    request_id: str
    amount: float
    endpoint: str
    expires_at: datetime


@dataclass
class PaymentRecord:
    """Detached snapshot of a payment row."""
    id: str
    request_id: str
    proof_id: Optional[str]
    amount: float
    payer_address: str
    endpoint: str
    verified: bool
    verified_at: Optional[datetime]
    expires_at: datetime

    @classmethod
    def from_model(cls, payment: Payment) -> "PaymentRecord":
        return cls(
            id=payment.id,
            request_id=payment.request_id,
            proof_id=payment.signature,
            amount=payment.amount,
            payer_address=payment.payer_wallet,
            endpoint=payment.endpoint,
            verified=payment.verified,
            verified_at=payment.verified_at,
            expires_at=payment.expires_at,
        )

    def to_cache(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "request_id": self.request_id,
            "proof_id": self.proof_id,
            "amount": self.amount,
            "payer_address": self.payer_address,
            "endpoint": self.endpoint,
            "verified": self.verified,
            "verified_at": self.verified_at.isoformat() if self.verified_at else None,
            "expires_at": self.expires_at.isoformat(),
        }

    @classmethod
    def from_cache(cls, data: Dict[str, Any]) -> "PaymentRecord":
        verified_at = data.get("verified_at")
        return cls(
            id=data["id"],
            request_id=data["request_id"],
            proof_id=data.get("proof_id"),
            amount=float(data["amount"]),
            payer_address=data.get("payer_address", ""),
            endpoint=data.get("endpoint", ""),
            verified=bool(data["verified"]),
            verified_at=datetime.fromisoformat(verified_at) if verified_at else None,
            expires_at=datetime.fromisoformat(data["expires_at"]),
        )


@dataclass
class UpsertResult:
    record: PaymentRecord
    created: bool  # True only for the writer that marked the proof verified


class PaymentLedgerStore:
    """SQLAlchemy-backed payment record store."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def find_by_proof_id(self, proof_id: str) -> Optional[PaymentRecord]:
        """Return the record bound to ``proof_id``, if any."""
        try:
            with self._session_factory() as session:
                payment = session.scalars(
                    select(Payment).where(Payment.signature == proof_id)
                ).first()
                return PaymentRecord.from_model(payment) if payment else None
        except SQLAlchemyError as e:
            logger.error(f"Payment lookup failed for {proof_id[:12]}...: {e}")
            raise PaymentStoreError("Payment lookup failed") from e

    def find_by_request_id(self, request_id: str) -> Optional[PaymentRecord]:
        """Return the most recent record issued under ``request_id``, if any."""
        try:
            with self._session_factory() as session:
                payment = session.scalars(
                    select(Payment)
                    .where(Payment.request_id == request_id)
                    .order_by(Payment.created_at.desc())
                ).first()
                return PaymentRecord.from_model(payment) if payment else None
        except SQLAlchemyError as e:
            logger.error(f"Payment lookup failed for request {request_id}: {e}")
            raise PaymentStoreError("Payment lookup failed") from e

    def create(self, challenge: PaymentChallenge) -> PaymentRecord:
        """Persist a new unverified challenge with no proof bound yet."""
        payment = Payment(
            request_id=challenge.request_id,
            signature=None,
            amount=challenge.amount,
            payer_wallet="",
            endpoint=challenge.endpoint,
            verified=False,
            expires_at=challenge.expires_at,
        )
        try:
            with self._session_factory.begin() as session:
                session.add(payment)
                session.flush()
                record = PaymentRecord.from_model(payment)
        except SQLAlchemyError as e:
            logger.error(f"Failed to store payment challenge {challenge.request_id}: {e}")
            raise PaymentStoreError("Failed to store payment challenge") from e

        logger.debug(f"Stored payment challenge {challenge.request_id} for {challenge.endpoint}")
        return record

    def upsert_verified(
        self,
        proof_id: str,
        request_id: str,
        amount: float,
        payer_address: str,
        endpoint: str,
        verified_at: datetime,
        expires_at: datetime,
    ) -> UpsertResult:
        """
        Record ``proof_id`` as verified, creating or extending its record.

        The first writer either binds the proof to the open challenge issued
        under ``request_id`` or inserts a fresh verified row. A concurrent
        writer for the same proof hits the unique constraint and joins the
        existing record instead, with ``created=False``.

        Raises:
            PaymentStoreError: If the store is unavailable
        """
        verified_values = {
            "signature": proof_id,
            "amount": amount,
            "payer_wallet": payer_address,
            "endpoint": endpoint,
            "verified": True,
            "verified_at": verified_at,
            "expires_at": expires_at,
        }

        try:
            try:
                with self._session_factory.begin() as session:
                    payment = self._bind_open_challenge(session, request_id, verified_values)
                    if payment is None:
                        payment = Payment(request_id=request_id, **verified_values)
                        session.add(payment)
                        session.flush()
                    record = PaymentRecord.from_model(payment)
                logger.info(f"Payment {record.id} verified for proof {proof_id[:12]}...")
                return UpsertResult(record=record, created=True)
            except IntegrityError:
                logger.info(f"Proof {proof_id[:12]}... already recorded, joining existing record")

            with self._session_factory.begin() as session:
                flipped = session.execute(
                    update(Payment)
                    .where(Payment.signature == proof_id, Payment.verified.is_(False))
                    .values(
                        verified=True,
                        verified_at=verified_at,
                        payer_wallet=payer_address,
                        amount=amount,
                    )
                    .execution_options(synchronize_session=False)
                ).rowcount
                payment = session.scalars(
                    select(Payment).where(Payment.signature == proof_id)
                ).one()
                return UpsertResult(record=PaymentRecord.from_model(payment), created=flipped == 1)
        except SQLAlchemyError as e:
            logger.error(f"Failed to record verified payment {proof_id[:12]}...: {e}")
            raise PaymentStoreError("Failed to record verified payment") from e

    def _bind_open_challenge(
        self, session, request_id: str, values: Dict[str, Any]
    ) -> Optional[Payment]:
        """Attach a proof to the unpaid challenge issued under ``request_id``."""
        challenge_id = session.scalars(
            select(Payment.id)
            .where(
                Payment.request_id == request_id,
                Payment.signature.is_(None),
                Payment.verified.is_(False),
            )
            .limit(1)
        ).first()
        if challenge_id is None:
            return None

        bound = session.execute(
            update(Payment)
            .where(
                Payment.id == challenge_id,
                Payment.signature.is_(None),
                Payment.verified.is_(False),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        ).rowcount
        if bound != 1:
            # Another proof claimed this challenge first
            return None

        session.flush()
        return session.get(Payment, challenge_id, populate_existing=True)
