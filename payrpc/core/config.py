# payrpc/core/config.py
from functools import lru_cache
from typing import Dict, List, Optional

from dotenv import load_dotenv
from pydantic_settings import BaseSettings

# Load .env file if it exists
load_dotenv()

DEFAULT_PROTECTED_PREFIXES = (
    "/api/v1/account,/api/v1/token,/api/v1/network,/api/v1/analytics,/api/v1/batch"
)


class Settings(BaseSettings):
    PROJECT_NAME: str = "PayRPC"
    API_V1_STR: str = "/api/v1"

    # Ledger node
    SOLANA_RPC_URL: str = "https://api.mainnet-beta.solana.com"
    SOLANA_RPC_TIMEOUT_SECONDS: float = 10.0

    # Payment gate
    PAYMENT_ENABLED: bool = True
    PAYMENT_WALLET_ADDRESS: str = "PayRPCPlaceholder1111111111111111111111111"
    PAYMENT_AMOUNT_SOL: float = 0.001
    PAYMENT_TIMEOUT_MS: int = 30000
    PAYMENT_ENDPOINT_PRICES: Dict[str, float] = {}  # JSON object: path prefix -> SOL
    PAYMENT_PROTECTED_PREFIXES: str = DEFAULT_PROTECTED_PREFIXES
    PAYMENT_AUDIT_LOG_PATH: str = "logs/payment_audit.jsonl"

    # Durable store
    DATABASE_URL: str = "sqlite:///./payrpc.db"
    SQL_DEBUG: bool = False

    # Fast cache; in-process memory cache when unset
    REDIS_URL: Optional[str] = None
    PAYMENT_CACHE_TTL_SECONDS: int = 3600

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields from .env

    @property
    def protected_prefixes(self) -> List[str]:
        return [p.strip() for p in self.PAYMENT_PROTECTED_PREFIXES.split(",") if p.strip()]


@lru_cache()  # Cache the settings object for performance
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
