# tests/test_solana_rpc.py
"""
Unit tests for the Solana JSON-RPC client.
"""
import pytest
from unittest.mock import patch, MagicMock

import requests

from payrpc.payment.errors import LedgerUnavailableError
from payrpc.services.solana_rpc import (
    SolanaRpcClient,
    LedgerTransaction,
    parse_transaction,
    sol_to_lamports,
    lamports_to_sol,
    LAMPORTS_PER_SOL,
)

from conftest import make_signature, PAYER, RECIPIENT, BLOCK_TIME


def rpc_response(body, status_code=200):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = body
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status_code} error")
    return response


def transaction_result(err=None, loaded=None):
    result = {
        "blockTime": BLOCK_TIME,
        "slot": 250_000_000,
        "meta": {
            "err": err,
            "fee": 5000,
            "preBalances": [5_000_000_000, 200_000_000, 1],
            "postBalances": [4_998_995_000, 201_000_000, 1],
        },
        "transaction": {
            "message": {
                "accountKeys": [PAYER, RECIPIENT, "11111111111111111111111111111111"],
            },
        },
    }
    if loaded is not None:
        result["meta"]["loadedAddresses"] = loaded
    return result


class TestConversionFunctions:
    """Test unit conversion functions."""

    def test_sol_to_lamports(self):
        """SOL converts to whole lamports."""
        assert sol_to_lamports(1) == LAMPORTS_PER_SOL
        assert sol_to_lamports(0.001) == 1_000_000

    def test_sol_to_lamports_no_float_drift(self):
        """Decimal conversion avoids binary float error."""
        # 0.29 * 1e9 is 289999999.99999994 in float arithmetic
        assert sol_to_lamports(0.29) == 290_000_000

    def test_lamports_to_sol(self):
        """Lamports convert to SOL."""
        assert lamports_to_sol(1_000_000) == 0.001
        assert lamports_to_sol(0) == 0.0


class TestParseTransaction:
    """Test getTransaction result normalisation."""

    def test_successful_transaction(self):
        """Static keys, balances and block time are extracted."""
        tx = parse_transaction("sig", transaction_result())

        assert tx.success is True
        assert tx.block_time == BLOCK_TIME
        assert tx.account_keys[:2] == [PAYER, RECIPIENT]
        assert tx.balance_change(1) == 1_000_000
        assert tx.balance_change(0) == -1_005_000

    def test_failed_transaction(self):
        """meta.err marks the transaction as failed."""
        tx = parse_transaction("sig", transaction_result(err={"InstructionError": [0, "Custom"]}))
        assert tx.success is False

    def test_loaded_addresses_appended(self):
        """v0 lookup-table addresses follow the static keys, writable first."""
        tx = parse_transaction(
            "sig",
            transaction_result(loaded={"writable": ["W1"], "readonly": ["R1", "R2"]}),
        )
        assert tx.account_keys[3:] == ["W1", "R1", "R2"]

    def test_json_parsed_account_keys(self):
        """Object-style account keys are reduced to their pubkey."""
        result = transaction_result()
        result["transaction"]["message"]["accountKeys"] = [
            {"pubkey": PAYER, "signer": True},
            {"pubkey": RECIPIENT, "signer": False},
        ]
        tx = parse_transaction("sig", result)
        assert tx.account_keys == [PAYER, RECIPIENT]

    def test_missing_balances_count_as_zero(self):
        """Balance change past the end of the arrays is zero."""
        tx = LedgerTransaction(signature="sig", success=True, block_time=1)
        assert tx.balance_change(5) == 0


class TestGetTransaction:
    """Test the getTransaction RPC call."""

    @patch("payrpc.services.solana_rpc.requests.post")
    def test_request_shape(self, mock_post):
        """Calls getTransaction with confirmed commitment and v0 support."""
        mock_post.return_value = rpc_response({"jsonrpc": "2.0", "id": 1, "result": None})
        signature = make_signature(1)

        client = SolanaRpcClient("https://rpc.example.com", timeout=3)
        client.get_transaction(signature)

        args, kwargs = mock_post.call_args
        assert args[0] == "https://rpc.example.com"
        assert kwargs["timeout"] == 3
        payload = kwargs["json"]
        assert payload["method"] == "getTransaction"
        assert payload["params"][0] == signature
        assert payload["params"][1]["commitment"] == "confirmed"
        assert payload["params"][1]["maxSupportedTransactionVersion"] == 0

    @patch("payrpc.services.solana_rpc.requests.post")
    def test_not_found_returns_none(self, mock_post):
        """A null result means not found or not confirmed."""
        mock_post.return_value = rpc_response({"jsonrpc": "2.0", "id": 1, "result": None})

        client = SolanaRpcClient("https://rpc.example.com")
        assert client.get_transaction(make_signature(1)) is None

    @patch("payrpc.services.solana_rpc.requests.post")
    def test_found_returns_transaction(self, mock_post):
        """A result object is parsed into a LedgerTransaction."""
        mock_post.return_value = rpc_response(
            {"jsonrpc": "2.0", "id": 1, "result": transaction_result()}
        )
        signature = make_signature(2)

        tx = SolanaRpcClient("https://rpc.example.com").get_transaction(signature)

        assert tx.signature == signature
        assert tx.success is True

    @patch("payrpc.services.solana_rpc.requests.post")
    def test_timeout_raises_ledger_unavailable(self, mock_post):
        """Timeouts are transient ledger failures."""
        mock_post.side_effect = requests.Timeout("read timed out")

        with pytest.raises(LedgerUnavailableError):
            SolanaRpcClient("https://rpc.example.com").get_transaction(make_signature(1))

    @patch("payrpc.services.solana_rpc.requests.post")
    def test_connection_error_raises_ledger_unavailable(self, mock_post):
        """Connection failures are transient ledger failures."""
        mock_post.side_effect = requests.ConnectionError("refused")

        with pytest.raises(LedgerUnavailableError):
            SolanaRpcClient("https://rpc.example.com").get_transaction(make_signature(1))

    @patch("payrpc.services.solana_rpc.requests.post")
    def test_http_error_raises_ledger_unavailable(self, mock_post):
        """HTTP 429/5xx from the node is a ledger failure."""
        mock_post.return_value = rpc_response({}, status_code=429)

        with pytest.raises(LedgerUnavailableError):
            SolanaRpcClient("https://rpc.example.com").get_transaction(make_signature(1))

    @patch("payrpc.services.solana_rpc.requests.post")
    def test_rpc_error_raises_ledger_unavailable(self, mock_post):
        """JSON-RPC error objects are ledger failures."""
        mock_post.return_value = rpc_response(
            {"jsonrpc": "2.0", "id": 1, "error": {"code": -32005, "message": "Node is behind"}}
        )

        with pytest.raises(LedgerUnavailableError, match="RPC error"):
            SolanaRpcClient("https://rpc.example.com").get_transaction(make_signature(1))

    @patch("payrpc.services.solana_rpc.requests.post")
    def test_missing_result_raises_ledger_unavailable(self, mock_post):
        """Responses without a result member are rejected."""
        mock_post.return_value = rpc_response({"jsonrpc": "2.0", "id": 1})

        with pytest.raises(LedgerUnavailableError, match="missing 'result'"):
            SolanaRpcClient("https://rpc.example.com").get_transaction(make_signature(1))

    @patch("payrpc.services.solana_rpc.requests.post")
    def test_invalid_json_raises_ledger_unavailable(self, mock_post):
        """Undecodable bodies are ledger failures."""
        response = rpc_response(None)
        response.json.side_effect = ValueError("Expecting value")
        mock_post.return_value = response

        with pytest.raises(LedgerUnavailableError):
            SolanaRpcClient("https://rpc.example.com").get_transaction(make_signature(1))
