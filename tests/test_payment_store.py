# tests/test_payment_store.py
"""
Unit tests for the durable payment store.
"""
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from payrpc.models.payment import Payment
from payrpc.payment.errors import PaymentStoreError
from payrpc.payment.store import PaymentChallenge, PaymentLedgerStore, PaymentRecord

from conftest import make_signature, PAYER

NOW = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def challenge(request_id="req-1", endpoint="/api/v1/account/balance/abc"):
    return PaymentChallenge(
        request_id=request_id,
        amount=0.001,
        endpoint=endpoint,
        expires_at=NOW + timedelta(seconds=30),
    )


def upsert(store, proof_id, request_id="req-1", payer=PAYER, amount=0.001):
    return store.upsert_verified(
        proof_id=proof_id,
        request_id=request_id,
        amount=amount,
        payer_address=payer,
        endpoint="/api/v1/account/balance/abc",
        verified_at=NOW,
        expires_at=NOW + timedelta(seconds=30),
    )


class TestCreate:
    """Test challenge creation."""

    def test_create_unverified_challenge(self, payment_store):
        """Challenges are stored unverified with no proof bound."""
        record = payment_store.create(challenge())

        assert record.id
        assert record.request_id == "req-1"
        assert record.proof_id is None
        assert record.verified is False
        assert record.payer_address == ""

    def test_many_open_challenges(self, payment_store):
        """Unbound challenges do not collide on the unique proof column."""
        first = payment_store.create(challenge("req-1"))
        second = payment_store.create(challenge("req-2"))
        assert first.id != second.id

    def test_find_by_request_id(self, payment_store):
        """Challenges can be looked up by request id."""
        created = payment_store.create(challenge("req-9"))
        assert payment_store.find_by_request_id("req-9").id == created.id
        assert payment_store.find_by_request_id("missing") is None


class TestUpsertVerified:
    """Test the verified upsert and its first-writer-wins contract."""

    def test_binds_open_challenge(self, payment_store):
        """A proof for a known request id completes that challenge."""
        issued = payment_store.create(challenge("req-1"))
        signature = make_signature(1)

        result = upsert(payment_store, signature, "req-1")

        assert result.created is True
        assert result.record.id == issued.id
        assert result.record.proof_id == signature
        assert result.record.verified is True
        assert result.record.payer_address == PAYER

    def test_inserts_without_challenge(self, payment_store):
        """A proof for an unknown request id creates a record lazily."""
        signature = make_signature(2)

        result = upsert(payment_store, signature, "never-issued")

        assert result.created is True
        assert result.record.request_id == "never-issued"
        assert payment_store.find_by_proof_id(signature).id == result.record.id

    def test_second_writer_joins(self, payment_store):
        """Repeating the upsert folds into the first record."""
        payment_store.create(challenge("req-1"))
        signature = make_signature(3)

        first = upsert(payment_store, signature, "req-1")
        second = upsert(payment_store, signature, "req-1")

        assert first.created is True
        assert second.created is False
        assert second.record.id == first.record.id

    def test_second_writer_other_request_keeps_binding(self, payment_store):
        """A racing writer for another request cannot rebind the proof."""
        signature = make_signature(4)
        upsert(payment_store, signature, "req-A")

        result = upsert(payment_store, signature, "req-B")

        assert result.created is False
        assert result.record.request_id == "req-A"

    def test_one_row_per_proof(self, payment_store, session_factory):
        """A proof maps to at most one record."""
        signature = make_signature(5)
        for request_id in ("req-1", "req-1", "req-2"):
            upsert(payment_store, signature, request_id)

        with session_factory() as session:
            rows = session.scalars(select(Payment).where(Payment.signature == signature)).all()
        assert len(rows) == 1

    def test_flips_unverified_row_for_proof(self, payment_store, session_factory):
        """An unverified row already holding the proof is marked verified once."""
        signature = make_signature(6)
        with session_factory.begin() as session:
            session.add(Payment(
                request_id="req-1",
                signature=signature,
                amount=0.001,
                endpoint="/api/v1/token/info/x",
                verified=False,
                expires_at=NOW,
            ))

        first = upsert(payment_store, signature, "req-1")
        second = upsert(payment_store, signature, "req-1")

        assert first.created is True
        assert first.record.verified is True
        assert second.created is False

    def test_challenge_claimed_by_other_proof(self, payment_store):
        """Once a challenge is paid, another proof gets its own record."""
        payment_store.create(challenge("req-1"))
        first = upsert(payment_store, make_signature(7), "req-1")
        second = upsert(payment_store, make_signature(8), "req-1")

        assert second.created is True
        assert second.record.id != first.record.id


class TestCacheSerialisation:
    """Test PaymentRecord cache snapshots."""

    def test_snapshot_round_trip(self, payment_store):
        """A verified record survives a cache round trip."""
        record = upsert(payment_store, make_signature(9)).record
        restored = PaymentRecord.from_cache(record.to_cache())

        assert restored.id == record.id
        assert restored.proof_id == record.proof_id
        assert restored.verified is True
        assert restored.request_id == record.request_id


class TestStoreFailures:
    """Test that database failures surface as PaymentStoreError."""

    def _broken_store(self):
        session_factory = MagicMock()
        session_factory.side_effect = OperationalError("SELECT", {}, Exception("db down"))
        session_factory.begin.side_effect = OperationalError("INSERT", {}, Exception("db down"))
        return PaymentLedgerStore(session_factory)

    def test_lookup_failure(self):
        """Lookups raise PaymentStoreError."""
        with pytest.raises(PaymentStoreError):
            self._broken_store().find_by_proof_id(make_signature(1))

    def test_create_failure(self):
        """Challenge creation raises PaymentStoreError."""
        with pytest.raises(PaymentStoreError):
            self._broken_store().create(challenge())

    def test_upsert_failure(self):
        """Verified upsert raises PaymentStoreError."""
        with pytest.raises(PaymentStoreError):
            upsert(self._broken_store(), make_signature(1))
