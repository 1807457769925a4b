# payrpc/main.py
from fastapi import FastAPI
import logging

from payrpc.core.config import Settings, settings
from payrpc.api.endpoints import payment, wallet
from payrpc.db.session import create_db_engine, create_session_factory, create_tables
from payrpc.payment.gate import AuthorizationGate, PaymentConfig
from payrpc.payment.middleware import PaymentMiddleware
from payrpc.payment.store import PaymentLedgerStore
from payrpc.payment.verification import LedgerVerifier
from payrpc.payment.wallets import WalletAccountingStore
from payrpc.services.cache import PaymentCache
from payrpc.services.solana_rpc import SolanaRpcClient

# Configure basic logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def build_payment_config(config: Settings) -> PaymentConfig:
    return PaymentConfig(
        amount=config.PAYMENT_AMOUNT_SOL,
        recipient=config.PAYMENT_WALLET_ADDRESS,
        timeout_ms=config.PAYMENT_TIMEOUT_MS,
        endpoint_prices=dict(config.PAYMENT_ENDPOINT_PRICES),
        cache_ttl_seconds=config.PAYMENT_CACHE_TTL_SECONDS,
    )


def create_app(config: Settings = settings) -> FastAPI:
    """
    Build the application and every client the payment gate depends on.

    Connections are created here, once per process, and injected; no
    component opens its own.
    """
    engine = create_db_engine(config.DATABASE_URL, echo=config.SQL_DEBUG)
    create_tables(engine)
    session_factory = create_session_factory(engine)

    payment_config = build_payment_config(config)
    ledger = SolanaRpcClient(config.SOLANA_RPC_URL, timeout=config.SOLANA_RPC_TIMEOUT_SECONDS)
    wallets = WalletAccountingStore(session_factory)
    gate = AuthorizationGate(
        config=payment_config,
        verifier=LedgerVerifier(ledger, recipient=payment_config.recipient),
        payments=PaymentLedgerStore(session_factory),
        wallets=wallets,
        cache=PaymentCache(redis_url=config.REDIS_URL),
    )

    app = FastAPI(
        title=config.PROJECT_NAME,
        openapi_url=f"{config.API_V1_STR}/openapi.json"  # Standard location for OpenAPI spec
    )
    app.state.payment_config = payment_config
    app.state.wallets = wallets

    app.add_middleware(
        PaymentMiddleware,
        gate=gate,
        protected_prefixes=config.protected_prefixes,
        enabled=config.PAYMENT_ENABLED,
    )

    # The prefix ensures all routes start with /api/v1
    app.include_router(payment.router, prefix=config.API_V1_STR, tags=["payment"])
    app.include_router(wallet.router, prefix=config.API_V1_STR, tags=["wallet"])

    @app.get("/", summary="Health Check", tags=["default"])
    def read_root():
        """ Basic health check endpoint. """
        logger.info("Root endpoint '/' accessed.")
        return {"status": "ok", "message": f"Welcome to {config.PROJECT_NAME}"}

    logger.info(
        f"Payment gate ready: {payment_config.amount} {payment_config.unit} per call "
        f"to {payment_config.recipient}, protecting {config.protected_prefixes}"
    )
    return app


app = create_app()
