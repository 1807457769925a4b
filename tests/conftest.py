# tests/conftest.py
"""
Shared fixtures for payment engine tests.

Every test gets a fresh in-memory SQLite database and a fake ledger whose
transactions are built from LedgerTransaction objects, so no test needs a
Solana node, Redis or a database server.
"""
import os
import tempfile

# Must be set before payrpc.core.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("PAYMENT_ENABLED", "true")
os.environ.setdefault(
    "PAYMENT_AUDIT_LOG_PATH",
    os.path.join(tempfile.mkdtemp(prefix="payrpc-audit-"), "payment_audit.jsonl"),
)

import base58
import pytest

from payrpc.db.session import create_db_engine, create_session_factory, create_tables, drop_tables
from payrpc.payment.gate import AuthorizationGate, PaymentConfig
from payrpc.payment.store import PaymentLedgerStore
from payrpc.payment.verification import LedgerVerifier
from payrpc.payment.wallets import WalletAccountingStore
from payrpc.services.cache import PaymentCache
from payrpc.services.solana_rpc import LedgerTransaction

RECIPIENT = "PayRecipient1111111111111111111111111111111"
PAYER = "PayerWa11et1111111111111111111111111111111"
SYSTEM_PROGRAM = "11111111111111111111111111111111"

PRICE_SOL = 0.001
PRICE_LAMPORTS = 1_000_000
TIMEOUT_MS = 30000
BLOCK_TIME = 1_700_000_000
NOW_MS = BLOCK_TIME * 1000 + 5000  # five seconds after the block


def make_signature(seed: int = 1) -> str:
    """A well-formed base58 signature (64 bytes, 87-88 characters)."""
    return base58.b58encode(bytes([seed]) * 64).decode()


def make_payment_tx(
    signature: str,
    lamports: int = PRICE_LAMPORTS,
    block_time=BLOCK_TIME,
    payer: str = PAYER,
    recipient: str = RECIPIENT,
    success: bool = True,
    fee: int = 5000,
) -> LedgerTransaction:
    """A transfer of ``lamports`` from ``payer`` to ``recipient``."""
    return LedgerTransaction(
        signature=signature,
        success=success,
        block_time=block_time,
        account_keys=[payer, recipient, SYSTEM_PROGRAM],
        pre_balances=[5_000_000_000, 200_000_000, 1],
        post_balances=[5_000_000_000 - lamports - fee, 200_000_000 + lamports, 1],
    )


class FakeLedger:
    """In-memory ledger recording every lookup."""

    def __init__(self, transactions=None, error=None):
        self.transactions = {tx.signature: tx for tx in transactions or []}
        self.error = error
        self.calls = []

    def add(self, tx: LedgerTransaction) -> None:
        self.transactions[tx.signature] = tx

    def get_transaction(self, signature):
        self.calls.append(signature)
        if self.error is not None:
            raise self.error
        return self.transactions.get(signature)


@pytest.fixture()
def engine():
    engine = create_db_engine("sqlite://")
    create_tables(engine)
    try:
        yield engine
    finally:
        drop_tables(engine)
        engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture()
def payment_store(session_factory):
    return PaymentLedgerStore(session_factory)


@pytest.fixture()
def wallet_store(session_factory):
    return WalletAccountingStore(session_factory)


@pytest.fixture()
def ledger():
    return FakeLedger()


@pytest.fixture()
def verifier(ledger):
    return LedgerVerifier(ledger, recipient=RECIPIENT, clock=lambda: NOW_MS)


@pytest.fixture()
def cache():
    return PaymentCache()


@pytest.fixture()
def payment_config():
    return PaymentConfig(amount=PRICE_SOL, recipient=RECIPIENT, timeout_ms=TIMEOUT_MS)


@pytest.fixture()
def gate(payment_config, verifier, payment_store, wallet_store, cache):
    return AuthorizationGate(
        config=payment_config,
        verifier=verifier,
        payments=payment_store,
        wallets=wallet_store,
        cache=cache,
        clock=lambda: NOW_MS,
    )
