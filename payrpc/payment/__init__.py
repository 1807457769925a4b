# payrpc/payment/__init__.py
"""
Pay-per-call payment authorization engine.

Callers pay for each request with an on-chain SOL transfer and present the
transaction signature as proof. Key components:
- signature: offline proof format checks
- verification: confirms a proof against the ledger
- store: durable payment challenges and verified proofs
- wallets: per-payer usage totals and discount tiers
- gate: the authorization state machine
- middleware: HTTP integration for protected endpoints
- audit: payment event audit log
- pricing: endpoint prices and discount tier table

Configuration is loaded from environment variables via payrpc.core.config
and injected by payrpc.main.
"""

__version__ = "0.1.0"
