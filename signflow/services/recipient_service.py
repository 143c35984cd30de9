"""Recipient registry: view and sign transitions with signing-order checks."""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy.orm import Session

from signflow.infrastructure.events import record_change
from signflow.models.signature_request import (
    AuditAction,
    RecipientStatus,
    SignatureRecipient,
    SignatureRequest,
)
from signflow.services.audit_trail import create_audit_entry
from signflow.services.field_service import FieldService, describe_field
from signflow.services.lookups import fresh_recipients, get_recipient, lock_request
from signflow.services.request_state import assert_open, complete_if_all_signed, expire_if_due
from signflow.utils.auth import CallerIdentity, ensure_recipient_access
from signflow.utils.clock import utcnow
from signflow.utils.errors import (
    AlreadySignedError,
    IncompleteFieldsError,
    OutOfOrderError,
)

logger = logging.getLogger(__name__)


@dataclass
class SignOutcome:
    """Result of a successful sign."""

    recipient: SignatureRecipient
    request_status: str
    request_completed: bool
    next_recipients: List[SignatureRecipient] = field(default_factory=list)


def blocking_predecessor(
    request: SignatureRequest,
    recipient: SignatureRecipient,
    recipients: List[SignatureRecipient],
) -> Optional[SignatureRecipient]:
    """
    Lowest-ordered unsigned recipient that must sign before ``recipient``.

    Always None when the request does not enforce a signing order.
    """
    if not request.signing_order_enabled:
        return None
    for other in recipients:
        if other.signing_order >= recipient.signing_order:
            break
        if other.status != RecipientStatus.SIGNED.value:
            return other
    return None


def out_of_order_error(predecessor: SignatureRecipient, recipient: SignatureRecipient) -> OutOfOrderError:
    return OutOfOrderError(
        message=f"recipient {predecessor.signing_order} must sign before recipient {recipient.signing_order}",
        details={
            "blocking_recipient_id": predecessor.id,
            "blocking_signing_order": predecessor.signing_order,
            "signing_order": recipient.signing_order,
        },
    )


class RecipientService:
    """Tracks each recipient's progress through view and sign."""

    def __init__(self, session: Session, field_service: Optional[FieldService] = None):
        """Initialize with database session."""
        self.session = session
        self.field_service = field_service or FieldService(session)

    def mark_viewed(self, recipient_id: int, caller: CallerIdentity) -> SignatureRecipient:
        """
        Record the first time a recipient opens the request.

        Re-viewing is a no-op and never moves ``viewed_at``.
        """
        ensure_recipient_access(caller, recipient_id)
        recipient = get_recipient(self.session, recipient_id)
        assert_open(recipient.request)

        if recipient.status != RecipientStatus.PENDING.value:
            return recipient

        recipient.status = RecipientStatus.VIEWED.value
        recipient.viewed_at = utcnow()
        recipient.ip_address = caller.ip_address
        recipient.user_agent = caller.user_agent
        self.session.flush()

        create_audit_entry(
            self.session,
            recipient.request_id,
            AuditAction.RECIPIENT_VIEWED,
            caller,
            recipient_id=recipient.id,
        )
        record_change(
            self.session,
            recipient.request_id,
            AuditAction.RECIPIENT_VIEWED.value,
            recipient_id=recipient.id,
            status=recipient.status,
        )
        return recipient

    def mark_signed(self, recipient_id: int, caller: CallerIdentity) -> SignOutcome:
        """
        Sign on behalf of a recipient whose required fields are filled.

        The request row stays locked from the ordering check until the
        status write, and completion is decided by ``complete_if_all_signed``
        in the same transaction.
        """
        ensure_recipient_access(caller, recipient_id)
        recipient = get_recipient(self.session, recipient_id)
        request = lock_request(self.session, recipient.request_id)

        expire_if_due(self.session, request.id)
        assert_open(request)

        recipients = fresh_recipients(self.session, request.id)
        if recipient.status == RecipientStatus.SIGNED.value:
            raise AlreadySignedError(
                message=f"Recipient {recipient.id} already signed at {recipient.signed_at.isoformat() if recipient.signed_at else 'an earlier time'}",
                details={"recipient_id": recipient.id},
            )

        predecessor = blocking_predecessor(request, recipient, recipients)
        if predecessor is not None:
            raise out_of_order_error(predecessor, recipient)

        missing = self.field_service.missing_required_fields(recipient.id)
        if missing:
            raise IncompleteFieldsError(
                message="Required fields are incomplete: " + ", ".join(describe_field(f) for f in missing),
                details={"missing_field_ids": [f.id for f in missing]},
            )

        now = utcnow()
        recipient.status = RecipientStatus.SIGNED.value
        recipient.signed_at = now
        if recipient.viewed_at is None:
            recipient.viewed_at = now
        recipient.ip_address = caller.ip_address or recipient.ip_address
        recipient.user_agent = caller.user_agent or recipient.user_agent
        self.session.flush()

        create_audit_entry(
            self.session,
            request.id,
            AuditAction.RECIPIENT_SIGNED,
            caller,
            recipient_id=recipient.id,
            details={"signing_order": recipient.signing_order},
        )
        record_change(
            self.session,
            request.id,
            AuditAction.RECIPIENT_SIGNED.value,
            recipient_id=recipient.id,
            status=recipient.status,
        )
        logger.info(f"Recipient {recipient.id} signed request {request.id}")

        completed = complete_if_all_signed(self.session, request.id, caller)

        next_recipients = []
        if not completed and request.signing_order_enabled:
            next_recipients = [
                r for r in recipients
                if r.signing_order == recipient.signing_order + 1
                and r.status == RecipientStatus.PENDING.value
            ]

        return SignOutcome(
            recipient=recipient,
            request_status=request.status,
            request_completed=completed,
            next_recipients=next_recipients,
        )
