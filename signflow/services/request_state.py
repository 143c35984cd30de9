"""
Guarded status transitions of a signature request.

Both automatic transitions (``pending -> completed`` and ``pending ->
expired``) are single conditional UPDATE statements; the row count tells the
caller whether it performed the transition, so concurrent callers cannot
both observe it.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import exists, select, update
from sqlalchemy.orm import Session

from signflow.infrastructure.events import record_change
from signflow.models.signature_request import (
    AuditAction,
    RecipientStatus,
    SignatureRecipient,
    SignatureRequest,
    SignatureRequestStatus,
)
from signflow.services.audit_trail import create_audit_entry
from signflow.utils.auth import SYSTEM_CALLER, CallerIdentity
from signflow.utils.clock import utcnow
from signflow.utils.errors import NotPendingError, RequestExpiredError, RequestNotSentError

logger = logging.getLogger(__name__)


def complete_if_all_signed(session: Session, request_id: int, caller: CallerIdentity = SYSTEM_CALLER) -> bool:
    """
    Move a pending request to ``completed`` when every recipient has signed.

    Returns True only for the call that performed the transition.
    """
    session.flush()
    now = utcnow()

    unsigned = exists().where(
        SignatureRecipient.request_id == request_id,
        SignatureRecipient.status != RecipientStatus.SIGNED.value,
    )
    any_recipient = exists().where(SignatureRecipient.request_id == request_id)

    result = session.execute(
        update(SignatureRequest)
        .where(
            SignatureRequest.id == request_id,
            SignatureRequest.status == SignatureRequestStatus.PENDING.value,
            any_recipient,
            ~unsigned,
        )
        .values(
            status=SignatureRequestStatus.COMPLETED.value,
            completed_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        _refresh(session, request_id)
        return False

    _refresh(session, request_id)
    create_audit_entry(
        session,
        request_id,
        AuditAction.REQUEST_COMPLETED,
        caller,
        details={"completed_at": now.isoformat()},
    )
    record_change(
        session,
        request_id,
        AuditAction.REQUEST_COMPLETED.value,
        status=SignatureRequestStatus.COMPLETED.value,
    )
    logger.info(f"Signature request {request_id} completed")
    return True


def expire_if_due(
    session: Session,
    request_id: int,
    now: Optional[datetime] = None,
    caller: CallerIdentity = SYSTEM_CALLER,
) -> bool:
    """Move a pending request past its ``expires_at`` to ``expired``."""
    session.flush()
    now = now or utcnow()

    result = session.execute(
        update(SignatureRequest)
        .where(
            SignatureRequest.id == request_id,
            SignatureRequest.status == SignatureRequestStatus.PENDING.value,
            SignatureRequest.expires_at.is_not(None),
            SignatureRequest.expires_at < now,
        )
        .values(status=SignatureRequestStatus.EXPIRED.value, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    _refresh(session, request_id)
    if result.rowcount != 1:
        return False

    create_audit_entry(session, request_id, AuditAction.REQUEST_EXPIRED, caller)
    record_change(
        session,
        request_id,
        AuditAction.REQUEST_EXPIRED.value,
        status=SignatureRequestStatus.EXPIRED.value,
    )
    logger.info(f"Signature request {request_id} expired")
    return True


def assert_open(request: SignatureRequest) -> None:
    """Raise unless recipients may still act on ``request``."""
    if request.status == SignatureRequestStatus.DRAFT.value:
        raise RequestNotSentError(
            message=f"Signature request {request.id} has not been sent yet",
            details={"status": request.status},
        )
    if request.status == SignatureRequestStatus.EXPIRED.value or (
        request.status == SignatureRequestStatus.PENDING.value
        and request.expires_at is not None
        and utcnow() > request.expires_at
    ):
        raise RequestExpiredError(
            message=f"Signature request {request.id} expired at {request.expires_at.isoformat() if request.expires_at else 'an earlier date'}",
            details={"expires_at": request.expires_at.isoformat() if request.expires_at else None},
        )
    if request.status != SignatureRequestStatus.PENDING.value:
        raise NotPendingError(
            message=f"Signature request {request.id} is {request.status}, not pending",
            details={"status": request.status},
        )


def _refresh(session: Session, request_id: int) -> None:
    session.execute(
        select(SignatureRequest)
        .where(SignatureRequest.id == request_id)
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
