# payrpc/payment/signature.py
"""
Offline format checks for proof-of-payment signatures.

A proof is a base58-encoded transaction signature: 64 raw bytes, which
encode to 86-88 base58 characters. These checks never touch the network.
"""
import logging

import base58

logger = logging.getLogger(__name__)

SIGNATURE_BYTES = 64
MIN_ENCODED_LENGTH = 86
MAX_ENCODED_LENGTH = 88


def is_valid_signature(signature: str) -> bool:
    """Return True if ``signature`` decodes from base58 to exactly 64 bytes."""
    if not signature or not isinstance(signature, str):
        return False
    try:
        decoded = base58.b58decode(signature)
    except ValueError:
        return False
    return len(decoded) == SIGNATURE_BYTES


def quick_validate_signature(signature: str) -> bool:
    """
    Cheap pre-check used before any store or ledger access.

    Bounds the encoded length first so oversized input is rejected
    without decoding it, then performs the full decode check.
    """
    if not signature or not isinstance(signature, str):
        return False
    if not MIN_ENCODED_LENGTH <= len(signature) <= MAX_ENCODED_LENGTH:
        return False
    return is_valid_signature(signature)
