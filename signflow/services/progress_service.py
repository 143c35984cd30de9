"""Progress tracking and notification intents for signature requests."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from signflow.config.settings import SigningSettings, get_settings
from signflow.infrastructure.events import record_change
from signflow.models.signature_request import (
    AuditAction,
    RecipientStatus,
    SignatureRecipient,
    SignatureRequest,
    SignatureRequestStatus,
)
from signflow.schemas.signature_request import (
    ProgressResponse,
    RecipientProgress,
    RecipientStatusEnum,
    SignatureRequestStatusEnum,
)
from signflow.services.audit_trail import create_audit_entry
from signflow.services.lookups import fresh_recipients, get_recipient, get_request, lock_request
from signflow.services.recipient_service import SignOutcome, blocking_predecessor, out_of_order_error
from signflow.services.request_state import assert_open, expire_if_due
from signflow.utils.auth import SYSTEM_CALLER, CallerIdentity, ensure_originator_access
from signflow.utils.clock import utcnow
from signflow.utils.errors import AlreadySignedError, APIError

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    """What a notification tells its recipient."""

    SIGNATURE_REQUEST = "signature_request"
    REMINDER = "reminder"
    YOUR_TURN = "your_turn"
    COMPLETED = "completed"


@dataclass(frozen=True)
class NotificationIntent:
    """A message that should reach one recipient; delivery happens elsewhere."""

    kind: NotificationKind
    request_id: int
    recipient_id: int
    email: str
    name: str
    access_token: str
    title: str
    message: Optional[str] = None
    expires_at: Optional[datetime] = None
    reminder_count: int = 0


def completion_percentage_of(recipients: Iterable[SignatureRecipient]) -> float:
    """Signed recipients as a percentage of all recipients, two decimals."""
    recipients = list(recipients)
    if not recipients:
        return 0.0
    signed = sum(1 for r in recipients if r.status == RecipientStatus.SIGNED.value)
    return round(signed / len(recipients) * 100, 2)


def intents_for(
    kind: NotificationKind,
    request: SignatureRequest,
    recipients: Iterable[SignatureRecipient],
) -> List[NotificationIntent]:
    return [
        NotificationIntent(
            kind=kind,
            request_id=request.id,
            recipient_id=r.id,
            email=r.email,
            name=r.name,
            access_token=r.access_token,
            title=request.title,
            message=request.message,
            expires_at=request.expires_at,
            reminder_count=r.reminder_count,
        )
        for r in recipients
    ]


class ProgressService:
    """Completion progress, reminders and next-recipient hand-off."""

    def __init__(self, session: Session, settings: Optional[SigningSettings] = None):
        """Initialize with database session."""
        self.session = session
        self.settings = settings or get_settings().signing

    # =========================================================================
    # Progress
    # =========================================================================

    def completion_percentage(self, request_id: int) -> float:
        get_request(self.session, request_id)
        return completion_percentage_of(fresh_recipients(self.session, request_id))

    def progress(self, request_id: int, caller: CallerIdentity) -> ProgressResponse:
        """Per-recipient progress for the originator."""
        request = get_request(self.session, request_id)
        ensure_originator_access(caller, request.created_by)
        recipients = fresh_recipients(self.session, request_id)

        return ProgressResponse(
            request_id=request.id,
            status=SignatureRequestStatusEnum(request.status),
            completion_percentage=completion_percentage_of(recipients),
            signed_count=sum(1 for r in recipients if r.status == RecipientStatus.SIGNED.value),
            total_recipients=len(recipients),
            recipients=[
                RecipientProgress(
                    recipient_id=r.id,
                    name=r.name,
                    email=r.email,
                    signing_order=r.signing_order,
                    status=RecipientStatusEnum(r.status),
                    fields_total=len(r.fields),
                    fields_completed=sum(1 for f in r.fields if f.is_complete),
                )
                for r in recipients
            ],
        )

    # =========================================================================
    # Notification Intents
    # =========================================================================

    def initial_intents(self, request_id: int, recipients: List[SignatureRecipient]) -> List[NotificationIntent]:
        """Intents for the recipients notified when a request is sent."""
        request = get_request(self.session, request_id)
        return intents_for(NotificationKind.SIGNATURE_REQUEST, request, recipients)

    def next_recipient_intents(self, outcome: SignOutcome) -> List[NotificationIntent]:
        """Hand the request to the next signer after a sign in an ordered request."""
        if not outcome.next_recipients:
            return []
        request = get_request(self.session, outcome.recipient.request_id)
        now = utcnow()
        for recipient in outcome.next_recipients:
            recipient.notified_at = now
        self.session.flush()
        return intents_for(NotificationKind.YOUR_TURN, request, outcome.next_recipients)

    def completion_intents(self, request_id: int) -> List[NotificationIntent]:
        """Tell every recipient that the request is fully signed."""
        request = get_request(self.session, request_id)
        if request.status != SignatureRequestStatus.COMPLETED.value:
            return []
        return intents_for(NotificationKind.COMPLETED, request, fresh_recipients(self.session, request_id))

    # =========================================================================
    # Reminders
    # =========================================================================

    def send_reminder(self, recipient_id: int, caller: CallerIdentity) -> NotificationIntent:
        """
        Record a reminder for a recipient who has not signed.

        Only pending requests can be reminded about, and in an ordered request
        only recipients whose turn has come.
        """
        recipient = get_recipient(self.session, recipient_id)
        request = lock_request(self.session, recipient.request_id)
        ensure_originator_access(caller, request.created_by)

        expire_if_due(self.session, request.id)
        if recipient.status == RecipientStatus.SIGNED.value:
            raise AlreadySignedError(
                message=f"Recipient {recipient.id} already signed; no reminder sent",
                details={"recipient_id": recipient.id},
            )
        assert_open(request)

        predecessor = blocking_predecessor(request, recipient, fresh_recipients(self.session, request.id))
        if predecessor is not None:
            raise out_of_order_error(predecessor, recipient)

        now = utcnow()
        recipient.reminder_count += 1
        recipient.last_reminder_at = now
        if recipient.notified_at is None:
            recipient.notified_at = now
        self.session.flush()

        create_audit_entry(
            self.session,
            request.id,
            AuditAction.REMINDER_SENT,
            caller,
            recipient_id=recipient.id,
            details={"reminder_count": recipient.reminder_count},
        )
        record_change(
            self.session,
            request.id,
            AuditAction.REMINDER_SENT.value,
            recipient_id=recipient.id,
        )
        logger.info(f"Reminder {recipient.reminder_count} recorded for recipient {recipient.id}")
        return intents_for(NotificationKind.REMINDER, request, [recipient])[0]

    def due_reminders(self, now: Optional[datetime] = None) -> List[SignatureRecipient]:
        """Unsigned, already-notified recipients whose last notice is older than the interval."""
        now = now or utcnow()
        cutoff = now - timedelta(hours=self.settings.reminder_interval_hours)
        last_notice = func.coalesce(SignatureRecipient.last_reminder_at, SignatureRecipient.notified_at)

        stmt = (
            select(SignatureRecipient)
            .join(SignatureRequest, SignatureRequest.id == SignatureRecipient.request_id)
            .where(
                SignatureRequest.status == SignatureRequestStatus.PENDING.value,
                or_(SignatureRequest.expires_at.is_(None), SignatureRequest.expires_at > now),
                SignatureRecipient.status != RecipientStatus.SIGNED.value,
                SignatureRecipient.notified_at.is_not(None),
                last_notice < cutoff,
            )
            .order_by(SignatureRecipient.request_id, SignatureRecipient.signing_order)
        )
        return list(self.session.execute(stmt).scalars())

    def send_due_reminders(self, now: Optional[datetime] = None) -> List[NotificationIntent]:
        """Record reminders for every due recipient as the system caller."""
        intents = []
        for recipient in self.due_reminders(now):
            try:
                intents.append(self.send_reminder(recipient.id, SYSTEM_CALLER))
            except APIError as e:
                logger.warning(f"Skipping reminder for recipient {recipient.id}: {e.message}")
        return intents
