"""Ledger reference builders.

A reference names the real-world event an entry stands for. Two entries for
the same event must build the same string; distinct events must never collide.
"""
from uuid import uuid4


def purchase_reference(session_id: str) -> str:
    return f"stripe_session_purchase:{session_id}"


def purchase_refund_reference(session_id: str) -> str:
    """Credits restored when a credit pack checkout is refunded."""
    return f"stripe_session_purchase:{session_id}:refund"


def refund_marker_reference(session_id: str) -> str:
    """Zero-delta marker that blocks a second refund of the same checkout."""
    return f"stripe_session_refund:{session_id}"


def scan_reference(scan_id: str) -> str:
    return f"scan:{scan_id}"


def unlock_refund_reference(original_reference: str) -> str:
    return f"refund:{original_reference}"


def admin_reference(reason: str | None) -> str:
    """Each admin submission is its own event, so the reference carries a nonce."""
    return f"admin:{reason or 'manual_adjustment'}:{uuid4().hex}"


def gateway_refund_idempotency_key(session_id: str) -> str:
    return f"creditledger_refund_{session_id}"
