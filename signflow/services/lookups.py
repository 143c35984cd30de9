"""Row lookups and locks shared by the workflow services."""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from signflow.models.signature_request import (
    SignatureField,
    SignatureRecipient,
    SignatureRequest,
    SignatureRequestStatus,
)
from signflow.utils.clock import utcnow
from signflow.utils.errors import create_not_found_error


def get_request(session: Session, request_id: int) -> SignatureRequest:
    request = session.get(SignatureRequest, request_id)
    if request is None:
        raise create_not_found_error("Signature request", request_id)
    return request


def get_request_by_external_id(session: Session, external_id: str) -> SignatureRequest:
    request = session.execute(
        select(SignatureRequest).where(SignatureRequest.external_id == external_id)
    ).scalar_one_or_none()
    if request is None:
        raise create_not_found_error("Signature request", external_id)
    return request


def lock_request(session: Session, request_id: int) -> SignatureRequest:
    """
    Load the request with ``SELECT ... FOR UPDATE`` and fresh column values.

    Every operation that reads recipient or field state and then writes
    based on it takes this lock first, which serializes signers of the same
    request.
    """
    request = session.execute(
        select(SignatureRequest)
        .where(SignatureRequest.id == request_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if request is None:
        raise create_not_found_error("Signature request", request_id)
    return request


def get_recipient(session: Session, recipient_id: int) -> SignatureRecipient:
    recipient = session.get(SignatureRecipient, recipient_id)
    if recipient is None:
        raise create_not_found_error("Recipient", recipient_id)
    return recipient


def get_recipient_by_token(session: Session, access_token: str) -> SignatureRecipient:
    recipient = session.execute(
        select(SignatureRecipient).where(SignatureRecipient.access_token == access_token)
    ).scalar_one_or_none()
    if recipient is None:
        raise create_not_found_error("Signing session", "token")
    return recipient


def get_field(session: Session, field_id: int) -> SignatureField:
    field = session.get(SignatureField, field_id)
    if field is None:
        raise create_not_found_error("Field", field_id)
    return field


def fresh_recipients(session: Session, request_id: int) -> List[SignatureRecipient]:
    """All recipients of a request in signing order, re-read from the database."""
    return list(
        session.execute(
            select(SignatureRecipient)
            .where(SignatureRecipient.request_id == request_id)
            .order_by(SignatureRecipient.signing_order, SignatureRecipient.id)
            .execution_options(populate_existing=True)
        ).scalars()
    )


def is_past_expiry(request: SignatureRequest, now: Optional[datetime] = None) -> bool:
    """True when the request is expired or is pending past its ``expires_at``."""
    if request.status == SignatureRequestStatus.EXPIRED.value:
        return True
    # Drafts and completed requests never move to expired
    if request.status != SignatureRequestStatus.PENDING.value or request.expires_at is None:
        return False
    return (now or utcnow()) > request.expires_at
