"""Audit trail recording and digesting for signature requests."""

import hashlib
import json
import logging
from typing import Any, Dict, Iterable, Optional

from sqlalchemy.orm import Session

from signflow.models.signature_request import AuditAction, SignatureAuditEntry
from signflow.utils.auth import CallerIdentity

logger = logging.getLogger(__name__)


def create_audit_entry(
    session: Session,
    request_id: int,
    action: AuditAction,
    caller: CallerIdentity,
    recipient_id: Optional[int] = None,
    details: Optional[Dict[str, Any]] = None,
) -> SignatureAuditEntry:
    """Append an audit entry in the caller's transaction."""
    entry = SignatureAuditEntry(
        request_id=request_id,
        recipient_id=recipient_id,
        action=action.value,
        actor=caller.actor,
        details=details,
        ip_address=caller.ip_address,
        user_agent=caller.user_agent,
    )
    session.add(entry)
    session.flush()
    logger.debug(f"Audit {action.value} on request {request_id} by {caller.actor}")
    return entry


def audit_trail_digest(entries: Iterable[SignatureAuditEntry]) -> str:
    """
    SHA-256 over the canonical JSON form of the audit trail.

    Any edit, removal or reordering of an entry changes the digest.
    """
    canonical = [
        {
            "id": entry.id,
            "action": entry.action,
            "actor": entry.actor,
            "recipient_id": entry.recipient_id,
            "details": entry.details,
            "ip_address": entry.ip_address,
            "user_agent": entry.user_agent,
            "created_at": entry.created_at.isoformat() if entry.created_at else None,
        }
        for entry in sorted(entries, key=lambda e: e.id)
    ]
    payload = json.dumps(canonical, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
