# payrpc/services/solana_rpc.py
"""
Solana JSON-RPC client used by the ledger verifier.

Only the transaction lookup needed to confirm payments lives here; the
data endpoints of the wider service query the node elsewhere.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

import requests
from requests.exceptions import RequestException

from payrpc.payment.errors import LedgerUnavailableError

logger = logging.getLogger(__name__)

# Conversion constant
LAMPORTS_PER_SOL = 1_000_000_000


def sol_to_lamports(sol: float) -> int:
    """Convert SOL to lamports, rounding down."""
    return int(Decimal(str(sol)) * LAMPORTS_PER_SOL)


def lamports_to_sol(lamports: int) -> float:
    """Convert lamports to SOL."""
    return lamports / LAMPORTS_PER_SOL


@dataclass
class LedgerTransaction:
    """The parts of a confirmed transaction needed to verify a payment."""
    signature: str
    success: bool
    block_time: Optional[int]
    account_keys: List[str] = field(default_factory=list)
    pre_balances: List[int] = field(default_factory=list)
    post_balances: List[int] = field(default_factory=list)

    def balance_change(self, index: int) -> int:
        """Lamport delta for the account at ``index``; missing balances count as 0."""
        pre = self.pre_balances[index] if index < len(self.pre_balances) else 0
        post = self.post_balances[index] if index < len(self.post_balances) else 0
        return (post or 0) - (pre or 0)


def parse_transaction(signature: str, result: Dict[str, Any]) -> LedgerTransaction:
    """
    Build a LedgerTransaction from a ``getTransaction`` result object.

    Account keys for versioned transactions are the static keys followed by
    the writable and then readonly addresses loaded from lookup tables,
    matching the order of the balance arrays.
    """
    meta = result.get("meta") or {}
    message = (result.get("transaction") or {}).get("message") or {}

    account_keys = []
    for key in message.get("accountKeys") or []:
        # jsonParsed encoding returns objects instead of plain strings
        account_keys.append(key["pubkey"] if isinstance(key, dict) else key)

    loaded = meta.get("loadedAddresses") or {}
    account_keys.extend(loaded.get("writable") or [])
    account_keys.extend(loaded.get("readonly") or [])

    return LedgerTransaction(
        signature=signature,
        success=meta.get("err") is None,
        block_time=result.get("blockTime"),
        account_keys=account_keys,
        pre_balances=list(meta.get("preBalances") or []),
        post_balances=list(meta.get("postBalances") or []),
    )


class SolanaRpcClient:
    """Blocking JSON-RPC client for a Solana node."""

    def __init__(self, rpc_url: str, timeout: float = 10.0, commitment: str = "confirmed"):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.commitment = commitment

    def _call(self, method: str, params: List[Any]) -> Any:
        """
        Issue a JSON-RPC call and return its ``result`` member.

        Raises:
            LedgerUnavailableError: On timeouts, transport or HTTP errors,
                malformed responses and JSON-RPC error objects.
        """
        try:
            response = requests.post(
                self.rpc_url,
                json={
                    "jsonrpc": "2.0",
                    "method": method,
                    "params": params,
                    "id": 1
                },
                timeout=self.timeout
            )
            response.raise_for_status()
            body = response.json()
        except RequestException as e:
            logger.error(f"Solana RPC {method} failed ({self.rpc_url}): {e}")
            raise LedgerUnavailableError(f"Ledger request failed: {e}") from e
        except ValueError as e:
            logger.error(f"Solana RPC {method} returned invalid JSON: {e}")
            raise LedgerUnavailableError("Ledger returned an invalid response") from e

        if not isinstance(body, dict):
            raise LedgerUnavailableError("Ledger returned an invalid response")

        if "error" in body:
            logger.error(f"Solana RPC {method} error: {body['error']}")
            raise LedgerUnavailableError(f"RPC error: {body['error']}")

        if "result" not in body:
            raise LedgerUnavailableError("Invalid RPC response: missing 'result' field")

        return body["result"]

    def get_transaction(self, signature: str) -> Optional[LedgerTransaction]:
        """
        Fetch a confirmed transaction by signature.

        Returns:
            The parsed transaction, or None if the node does not know it
            (not found, or not yet confirmed at the configured commitment).
        """
        result = self._call(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "json",
                    "commitment": self.commitment,
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )
        if result is None:
            logger.debug(f"Transaction {signature[:12]}... not found")
            return None
        return parse_transaction(signature, result)
