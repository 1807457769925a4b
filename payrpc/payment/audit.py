# payrpc/payment/audit.py
"""
Audit logging for payment events.

This module logs payment gate events for:
- Dispute resolution
- Financial reconciliation
- Debugging verification failures
- Per-request usage tracking

Log format: JSON lines (one event per line)
Log location: Configured via PAYMENT_AUDIT_LOG_PATH

Events logged:
- 402 challenge issued (request id, amount, recipient, expiry)
- Payment verified (payer, amount, payment id)
- Payment rejected (verifier reason, status)
- Replay rejected (signature reused across requests)
- Ledger unavailable (transient verification failure)
- API request (endpoint, status, response time, payment id, payer)
- Error (type, context)
"""
import json
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from payrpc.core.config import settings

logger = logging.getLogger(__name__)


class AuditEventType(Enum):
    """Types of audit events that can be logged."""
    PAYMENT_REQUIRED_SENT = "payment_required_sent"
    PAYMENT_VERIFIED = "payment_verified"
    PAYMENT_REJECTED = "payment_rejected"
    REPLAY_REJECTED = "replay_rejected"
    LEDGER_UNAVAILABLE = "ledger_unavailable"
    API_REQUEST = "api_request"
    ERROR = "error"


def generate_event_id() -> str:
    """Generate a short id for events not tied to a payment challenge."""
    return str(uuid.uuid4())[:8]


def get_audit_log_path() -> Path:
    """Get the path to the audit log file."""
    return Path(settings.PAYMENT_AUDIT_LOG_PATH)


def ensure_audit_log_directory() -> bool:
    """
    Ensure the audit log directory exists.

    Returns:
        True if directory exists or was created, False on error
    """
    try:
        log_dir = get_audit_log_path().parent
        if not log_dir.exists():
            log_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created audit log directory: {log_dir}")
        return True
    except OSError as e:
        logger.error(f"Failed to create audit log directory: {e}")
        return False


def create_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    client_ip: Optional[str] = None,
    wallet_address: Optional[str] = None,
    request_id: Optional[str] = None
) -> Dict[str, Any]:
    """
    Create an audit event dictionary.

    Args:
        event_type: Type of event to log
        data: Event-specific data
        client_ip: Client IP address (if available)
        wallet_address: Payer wallet address (if known)
        request_id: Payment request identifier (if available)

    Returns:
        A structured event ready to be written to the audit log
    """
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type.value,
        "request_id": request_id or generate_event_id(),
        "client_ip": client_ip,
        "wallet_address": wallet_address,
        "data": data
    }


def log_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    client_ip: Optional[str] = None,
    wallet_address: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """
    Append an event to the payment audit log.

    Write failures are logged and swallowed; auditing never changes the
    outcome of a request.

    Returns:
        The request_id used for this event, or None on error
    """
    event = create_audit_event(
        event_type=event_type,
        data=data,
        client_ip=client_ip,
        wallet_address=wallet_address,
        request_id=request_id
    )

    try:
        ensure_audit_log_directory()
        with open(get_audit_log_path(), "a") as f:
            f.write(json.dumps(event, default=str) + "\n")

        logger.debug(f"Audit event logged: {event_type.value} [{event['request_id']}]")
        return event["request_id"]

    except (OSError, TypeError, ValueError) as e:
        logger.error(f"Failed to write audit event: {e}")
        return None


# Convenience functions for specific event types

def log_payment_required_sent(
    client_ip: str,
    endpoint: str,
    amount: float,
    recipient: str,
    expires_at: int,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a 402 challenge event."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_REQUIRED_SENT,
        data={
            "endpoint": endpoint,
            "amount": amount,
            "recipient": recipient,
            "expires_at": expires_at,
        },
        client_ip=client_ip,
        request_id=request_id
    )


def log_payment_verified(
    client_ip: str,
    payer: Optional[str],
    payment_id: str,
    amount: Optional[float],
    signature: str,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log an on-chain payment verification."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_VERIFIED,
        data={
            "payment_id": payment_id,
            "amount": amount,
            "signature": signature,
        },
        client_ip=client_ip,
        wallet_address=payer,
        request_id=request_id
    )


def log_payment_rejected(
    client_ip: str,
    reason: str,
    status_code: int,
    code: Optional[str] = None,
    signature: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a rejected proof of payment."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_REJECTED,
        data={
            "reason": reason,
            "code": code,
            "status_code": status_code,
            "signature": signature,
        },
        client_ip=client_ip,
        request_id=request_id
    )


def log_replay_rejected(
    client_ip: str,
    signature: str,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a signature presented for a request it was not verified for."""
    return log_audit_event(
        event_type=AuditEventType.REPLAY_REJECTED,
        data={
            "signature": signature,
        },
        client_ip=client_ip,
        request_id=request_id
    )


def log_ledger_unavailable(
    client_ip: str,
    signature: str,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a verification that could not reach the ledger."""
    return log_audit_event(
        event_type=AuditEventType.LEDGER_UNAVAILABLE,
        data={
            "signature": signature,
            "retryable": True,
        },
        client_ip=client_ip,
        request_id=request_id
    )


def log_api_request(
    client_ip: str,
    endpoint: str,
    method: str,
    status_code: int,
    response_time_ms: int,
    payment_id: Optional[str] = None,
    payer_wallet: Optional[str] = None,
    user_agent: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a served API request tagged with the payment that authorized it."""
    return log_audit_event(
        event_type=AuditEventType.API_REQUEST,
        data={
            "endpoint": endpoint,
            "method": method,
            "status_code": status_code,
            "success": 200 <= status_code < 400,
            "response_time_ms": response_time_ms,
            "payment_id": payment_id,
            "user_agent": user_agent,
        },
        client_ip=client_ip,
        wallet_address=payer_wallet,
        request_id=request_id
    )


def log_error(
    client_ip: str,
    error_type: str,
    error_message: str,
    context: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log an error event."""
    return log_audit_event(
        event_type=AuditEventType.ERROR,
        data={
            "error_type": error_type,
            "error_message": error_message,
            "context": context or {},
        },
        client_ip=client_ip,
        request_id=request_id
    )


def read_audit_log(
    max_entries: Optional[int] = 100,
    event_type: Optional[AuditEventType] = None,
    client_ip: Optional[str] = None
) -> List[Dict[str, Any]]:
    """
    Read entries from the audit log.

    Args:
        max_entries: Maximum number of entries to return
        event_type: Filter by event type (optional)
        client_ip: Filter by client IP (optional)

    Returns:
        List of audit events (most recent first)
    """
    log_path = get_audit_log_path()
    if not log_path.exists():
        return []

    events = []
    try:
        with open(log_path, "r") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    event = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if event_type and event.get("event_type") != event_type.value:
                    continue
                if client_ip and event.get("client_ip") != client_ip:
                    continue
                events.append(event)
    except OSError as e:
        logger.error(f"Failed to read audit log: {e}")
        return []

    return list(reversed(events))[:max_entries]


def get_audit_stats() -> Dict[str, Any]:
    """
    Get statistics from the audit log.

    Returns:
        Dict with event counts and date range
    """
    log_path = get_audit_log_path()
    stats: Dict[str, Any] = {
        "total_events": 0,
        "events_by_type": {},
        "first_event": None,
        "last_event": None,
        "log_path": str(log_path),
        "log_exists": log_path.exists(),
    }
    if not stats["log_exists"]:
        return stats

    for event in reversed(read_audit_log(max_entries=None)):
        stats["total_events"] += 1
        event_name = event.get("event_type", "unknown")
        stats["events_by_type"][event_name] = stats["events_by_type"].get(event_name, 0) + 1
        timestamp = event.get("timestamp")
        if timestamp:
            if stats["first_event"] is None:
                stats["first_event"] = timestamp
            stats["last_event"] = timestamp

    return stats
