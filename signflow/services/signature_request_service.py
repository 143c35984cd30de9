"""Service for signature request lifecycle management."""

import logging
import uuid
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from signflow.config.settings import Settings, get_settings
from signflow.infrastructure.events import record_change
from signflow.models.signature_request import (
    AuditAction,
    RecipientStatus,
    SignatureAuditEntry,
    SignatureField,
    SignatureRecipient,
    SignatureRequest,
    SignatureRequestStatus,
)
from signflow.schemas.signature_request import (
    CreateSignatureRequest,
    FieldResponse,
    FieldTypeEnum,
    RecipientResponse,
    RecipientStatusEnum,
    SignatureRequestResponse,
    SignatureRequestStatusEnum,
    SignatureRequestSummary,
    WorkflowStatus,
)
from signflow.services.audit_trail import create_audit_entry
from signflow.services.lookups import (
    fresh_recipients,
    get_request,
    get_request_by_external_id,
    lock_request,
)
from signflow.services.progress_service import completion_percentage_of
from signflow.services.request_state import complete_if_all_signed, expire_if_due
from signflow.utils.auth import CallerIdentity, UserRole, ensure_originator_access
from signflow.utils.clock import utcnow
from signflow.utils.errors import InvalidWorkflowError, create_field_error

logger = logging.getLogger(__name__)


# =============================================================================
# Status Descriptions
# =============================================================================

STATUS_DESCRIPTIONS = {
    SignatureRequestStatus.DRAFT: "Draft - not yet sent",
    SignatureRequestStatus.PENDING: "Waiting for signatures",
    SignatureRequestStatus.COMPLETED: "All recipients have signed",
    SignatureRequestStatus.EXPIRED: "Expired before completion",
}

RECIPIENT_STATUS_DESCRIPTIONS = {
    RecipientStatus.PENDING: "Not yet opened",
    RecipientStatus.VIEWED: "Opened, not signed",
    RecipientStatus.SIGNED: "Signed",
}


def _as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class SignatureRequestService:
    """Service for creating, sending and tracking signature requests."""

    def __init__(self, session: Session, settings: Optional[Settings] = None):
        """Initialize with database session."""
        self.session = session
        self.settings = settings or get_settings()

    # =========================================================================
    # Creation
    # =========================================================================

    def create(self, data: CreateSignatureRequest, caller: CallerIdentity) -> SignatureRequest:
        """
        Create a request with its recipients and fields in one transaction.

        With ``send_immediately`` the request starts ``pending``; otherwise it
        stays a ``draft`` until ``send`` is called.
        """
        now = utcnow()
        expires_at = _as_naive_utc(data.expires_at)
        if expires_at is None and self.settings.signing.default_expiry_days:
            expires_at = now + timedelta(days=self.settings.signing.default_expiry_days)

        orders = self._validate_definition(data, expires_at, now)

        request = SignatureRequest(
            external_id=str(uuid.uuid4()),
            document_ref=data.document_ref,
            document_sha256=data.document_sha256.lower() if data.document_sha256 else None,
            title=data.title,
            message=data.message,
            status=SignatureRequestStatus.DRAFT.value,
            signing_order_enabled=data.signing_order_enabled,
            created_by=caller.user_id,
            expires_at=expires_at,
            webhook_url=data.webhook_url,
            webhook_events=list(data.webhook_events),
        )
        self.session.add(request)
        self.session.flush()

        recipients: List[SignatureRecipient] = []
        for recipient_def, order in zip(data.recipients, orders):
            recipient = SignatureRecipient(
                request_id=request.id,
                name=recipient_def.name,
                email=recipient_def.email,
                role=recipient_def.role,
                signing_order=order,
                access_token=uuid.uuid4().hex,
                status=RecipientStatus.PENDING.value,
            )
            self.session.add(recipient)
            recipients.append(recipient)
        self.session.flush()

        for field_def in data.fields:
            self.session.add(
                SignatureField(
                    request_id=request.id,
                    recipient_id=recipients[field_def.recipient_index].id,
                    field_type=field_def.field_type.value,
                    field_label=field_def.field_label,
                    placeholder_text=field_def.placeholder_text,
                    required=field_def.required,
                    page_number=field_def.page_number,
                    x_position=field_def.x_position,
                    y_position=field_def.y_position,
                    width=field_def.width,
                    height=field_def.height,
                )
            )
        self.session.flush()

        create_audit_entry(
            self.session,
            request.id,
            AuditAction.REQUEST_CREATED,
            caller,
            details={
                "recipients": len(recipients),
                "fields": len(data.fields),
                "signing_order_enabled": data.signing_order_enabled,
            },
        )
        record_change(
            self.session,
            request.id,
            AuditAction.REQUEST_CREATED.value,
            status=request.status,
        )
        logger.info(
            f"Signature request {request.id} created by {caller.actor} "
            f"with {len(recipients)} recipients"
        )

        if data.send_immediately:
            self._send(request, caller)

        self.session.refresh(request)
        return request

    def _validate_definition(
        self,
        data: CreateSignatureRequest,
        expires_at: Optional[datetime],
        now: datetime,
    ) -> List[int]:
        """Check structural rules and return the signing order per recipient."""
        if not data.recipients:
            raise InvalidWorkflowError(
                message="A signature request needs at least one recipient",
                field_errors=[create_field_error("recipients", "At least one recipient is required", "required")],
            )

        duplicates = [email for email, count in Counter(r.email for r in data.recipients).items() if count > 1]
        if duplicates:
            raise InvalidWorkflowError(
                message=f"Recipient emails must be unique: {', '.join(sorted(duplicates))}",
                field_errors=[create_field_error("recipients", f"Duplicate email {e}", "duplicate") for e in sorted(duplicates)],
            )

        for idx, field_def in enumerate(data.fields):
            if field_def.recipient_index >= len(data.recipients):
                raise InvalidWorkflowError(
                    message=(
                        f"Field {idx} is assigned to recipient index {field_def.recipient_index}, "
                        f"but only {len(data.recipients)} recipients were given"
                    ),
                    field_errors=[create_field_error(f"fields.{idx}.recipient_index", "No such recipient", "out_of_range")],
                )

        if not any(f.required for f in data.fields):
            raise InvalidWorkflowError(
                message="A signature request needs at least one required field",
                field_errors=[create_field_error("fields", "At least one required field is needed", "required")],
            )

        orders = [r.signing_order or idx + 1 for idx, r in enumerate(data.recipients)]
        if data.signing_order_enabled and sorted(orders) != list(range(1, len(orders) + 1)):
            raise InvalidWorkflowError(
                message=(
                    "Signing orders must be unique and run from 1 to "
                    f"{len(orders)} without gaps, got {sorted(orders)}"
                ),
                field_errors=[create_field_error("recipients.signing_order", "Orders must be 1..n", "invalid_order")],
            )

        if expires_at is not None and expires_at <= now:
            raise InvalidWorkflowError(
                message=f"expires_at {expires_at.isoformat()} is in the past",
                field_errors=[create_field_error("expires_at", "Must be in the future", "in_past")],
            )

        return orders

    # =========================================================================
    # Sending
    # =========================================================================

    def send(self, request_id: int, caller: CallerIdentity) -> List[SignatureRecipient]:
        """Move a draft to ``pending`` and return the recipients to notify."""
        request = lock_request(self.session, request_id)
        ensure_originator_access(caller, request.created_by)

        if request.status != SignatureRequestStatus.DRAFT.value:
            raise InvalidWorkflowError(
                message=f"Signature request {request.id} is {request.status}; only drafts can be sent",
                details={"status": request.status},
            )
        if request.expires_at is not None and request.expires_at <= utcnow():
            raise InvalidWorkflowError(
                message=f"expires_at {request.expires_at.isoformat()} is in the past",
                details={"expires_at": request.expires_at.isoformat()},
            )
        return self._send(request, caller)

    def _send(self, request: SignatureRequest, caller: CallerIdentity) -> List[SignatureRecipient]:
        now = utcnow()
        request.status = SignatureRequestStatus.PENDING.value
        request.sent_at = now

        recipients = fresh_recipients(self.session, request.id)
        if request.signing_order_enabled:
            first_order = min(r.signing_order for r in recipients)
            to_notify = [r for r in recipients if r.signing_order == first_order]
        else:
            to_notify = recipients
        for recipient in to_notify:
            recipient.notified_at = now
        self.session.flush()

        create_audit_entry(
            self.session,
            request.id,
            AuditAction.REQUEST_SENT,
            caller,
            details={"notified": [r.email for r in to_notify]},
        )
        record_change(
            self.session,
            request.id,
            AuditAction.REQUEST_SENT.value,
            status=request.status,
        )
        logger.info(f"Signature request {request.id} sent to {len(to_notify)} recipients")
        return to_notify

    # =========================================================================
    # Status
    # =========================================================================

    def recompute_status(self, request_id: int, caller: Optional[CallerIdentity] = None) -> bool:
        """
        Complete the request if every recipient has signed.

        True only for the call that performed the ``completed`` transition.
        """
        if caller is None:
            return complete_if_all_signed(self.session, request_id)
        return complete_if_all_signed(self.session, request_id, caller)

    def check_expiry(self, request_id: int) -> str:
        """Expire a pending request past its deadline; return the current status."""
        expire_if_due(self.session, request_id)
        return get_request(self.session, request_id).status

    # =========================================================================
    # Retrieval
    # =========================================================================

    def get(self, request_id: int, caller: CallerIdentity) -> SignatureRequest:
        request = get_request(self.session, request_id)
        ensure_originator_access(caller, request.created_by)
        return request

    def get_by_external_id(self, external_id: str, caller: CallerIdentity) -> SignatureRequest:
        request = get_request_by_external_id(self.session, external_id)
        ensure_originator_access(caller, request.created_by)
        return request

    def list_requests(
        self,
        caller: CallerIdentity,
        status: Optional[SignatureRequestStatusEnum] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[SignatureRequest], int]:
        """List requests visible to the caller, newest first."""
        stmt = select(SignatureRequest).options(selectinload(SignatureRequest.recipients))

        if not caller.has_role(UserRole.ADMIN):
            stmt = stmt.where(SignatureRequest.created_by == caller.user_id)

        if status:
            stmt = stmt.where(SignatureRequest.status == status.value)

        count_stmt = select(func.count()).select_from(stmt.subquery())
        total = self.session.execute(count_stmt).scalar() or 0

        stmt = (
            stmt
            .order_by(SignatureRequest.created_at.desc(), SignatureRequest.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(self.session.execute(stmt).scalars()), total

    def get_audit_trail(self, request_id: int, caller: CallerIdentity) -> List[SignatureAuditEntry]:
        request = self.get(request_id, caller)
        stmt = (
            select(SignatureAuditEntry)
            .where(SignatureAuditEntry.request_id == request.id)
            .order_by(SignatureAuditEntry.id)
        )
        return list(self.session.execute(stmt).scalars())

    # =========================================================================
    # Response Building
    # =========================================================================

    def signing_url(self, recipient: SignatureRecipient) -> str:
        return f"{self.settings.public_base_url}/sign/{recipient.access_token}"

    def build_recipient_response(
        self,
        recipient: SignatureRecipient,
        include_link: bool = True,
    ) -> RecipientResponse:
        fields = recipient.fields
        return RecipientResponse(
            id=recipient.id,
            name=recipient.name,
            email=recipient.email,
            role=recipient.role,
            signing_order=recipient.signing_order,
            status=RecipientStatusEnum(recipient.status),
            status_description=RECIPIENT_STATUS_DESCRIPTIONS.get(
                RecipientStatus(recipient.status),
                recipient.status,
            ),
            signing_url=self.signing_url(recipient) if include_link else None,
            notified_at=recipient.notified_at,
            viewed_at=recipient.viewed_at,
            signed_at=recipient.signed_at,
            reminder_count=recipient.reminder_count,
            last_reminder_at=recipient.last_reminder_at,
            fields_total=len(fields),
            fields_completed=sum(1 for f in fields if f.is_complete),
        )

    @staticmethod
    def build_field_response(field: SignatureField) -> FieldResponse:
        return FieldResponse(
            id=field.id,
            recipient_id=field.recipient_id,
            field_type=FieldTypeEnum(field.field_type),
            page_number=field.page_number,
            x_position=field.x_position,
            y_position=field.y_position,
            width=field.width,
            height=field.height,
            required=field.required,
            field_label=field.field_label,
            placeholder_text=field.placeholder_text,
            value=field.value,
            completed_at=field.completed_at,
        )

    def build_response(self, request: SignatureRequest) -> SignatureRequestResponse:
        """Build the originator's full view of a request."""
        recipients = sorted(request.recipients, key=lambda r: r.signing_order)
        return SignatureRequestResponse(
            id=request.id,
            external_id=request.external_id,
            title=request.title,
            message=request.message,
            document_ref=request.document_ref,
            document_sha256=request.document_sha256,
            status=SignatureRequestStatusEnum(request.status),
            status_description=STATUS_DESCRIPTIONS.get(
                SignatureRequestStatus(request.status),
                request.status,
            ),
            signing_order_enabled=request.signing_order_enabled,
            created_by=request.created_by,
            created_at=request.created_at,
            sent_at=request.sent_at,
            expires_at=request.expires_at,
            completed_at=request.completed_at,
            certificate_generated=request.certificate_generated,
            certificate_ref=request.certificate_ref,
            completion_percentage=completion_percentage_of(recipients),
            recipients=[self.build_recipient_response(r) for r in recipients],
            fields=[self.build_field_response(f) for f in request.fields],
            workflow=self._build_workflow_status(request, recipients),
        )

    def _build_workflow_status(
        self,
        request: SignatureRequest,
        recipients: List[SignatureRecipient],
    ) -> WorkflowStatus:
        unsigned = [r for r in recipients if r.status != RecipientStatus.SIGNED.value]
        current_order = None
        if request.signing_order_enabled and unsigned:
            current_order = min(r.signing_order for r in unsigned)
        return WorkflowStatus(
            current_signing_order=current_order,
            waiting_on=[r.email for r in unsigned],
            can_generate_certificate=request.status == SignatureRequestStatus.COMPLETED.value,
        )

    def build_summary(self, request: SignatureRequest) -> SignatureRequestSummary:
        return SignatureRequestSummary(
            id=request.id,
            external_id=request.external_id,
            title=request.title,
            status=SignatureRequestStatusEnum(request.status),
            created_at=request.created_at,
            expires_at=request.expires_at,
            completed_at=request.completed_at,
            recipients_count=len(request.recipients),
            completion_percentage=completion_percentage_of(request.recipients),
        )

