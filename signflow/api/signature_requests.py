"""API endpoints for originators managing signature requests."""

import logging
from typing import Annotated, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.orm import Session

from signflow.api.background import schedule_notifications, settle_expiry
from signflow.api.dependencies import (
    get_current_caller,
    get_notifier,
    get_storage,
    get_webhooks,
)
from signflow.config.settings import get_settings
from signflow.database import get_db
from signflow.infrastructure.events import get_change_feed
from signflow.infrastructure.storage import S3StorageService
from signflow.infrastructure.webhooks import WebhookService
from signflow.schemas.signature_request import (
    AuditTrailEntryResponse,
    CertificateResponse,
    ChangeEventResponse,
    ChangesResponse,
    CreateSignatureRequest,
    ProgressResponse,
    ReminderResponse,
    SendResponse,
    SignatureRequestListResponse,
    SignatureRequestResponse,
    SignatureRequestStatusEnum,
    SignedDocumentResponse,
    VerificationResponse,
)
from signflow.services.lookups import get_recipient
from signflow.services.notifications import SignatureNotifier
from signflow.services.progress_service import ProgressService
from signflow.services.signature_request_service import SignatureRequestService
from signflow.services.verification_service import VerificationService
from signflow.utils.auth import CallerIdentity, UserRole
from signflow.utils.errors import ForbiddenError

logger = logging.getLogger(__name__)


# =============================================================================
# Router Setup
# =============================================================================

signature_request_router = APIRouter(
    prefix="/api/signature-requests",
    tags=["Signature Requests"],
)


# =============================================================================
# Dependencies
# =============================================================================

def get_request_service(
    session: Annotated[Session, Depends(get_db)],
) -> SignatureRequestService:
    """Get signature request service instance."""
    return SignatureRequestService(session)


def get_progress_service(
    session: Annotated[Session, Depends(get_db)],
) -> ProgressService:
    return ProgressService(session)


def get_verification_service(
    session: Annotated[Session, Depends(get_db)],
    storage: Annotated[S3StorageService, Depends(get_storage)],
) -> VerificationService:
    return VerificationService(session, storage)


# =============================================================================
# Create / List / Get
# =============================================================================

@signature_request_router.post(
    "",
    response_model=SignatureRequestResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a signature request",
    description="""
    Create a signature request with its recipients and fields.

    **Signing order:**
    - With `signing_order_enabled`, recipients sign in ascending `signing_order`
    - Orders must be exactly 1..n; omitted orders follow list position

    **Fields:**
    - Each field belongs to one recipient by `recipient_index`
    - At least one field must be required

    With `send_immediately` (default) the request is sent and the first
    recipients are emailed; otherwise it is kept as a draft.
    """,
)
def create_signature_request(
    data: CreateSignatureRequest,
    background_tasks: BackgroundTasks,
    caller: Annotated[CallerIdentity, Depends(get_current_caller)],
    service: Annotated[SignatureRequestService, Depends(get_request_service)],
    progress: Annotated[ProgressService, Depends(get_progress_service)],
    notifier: Annotated[SignatureNotifier, Depends(get_notifier)],
) -> SignatureRequestResponse:
    request = service.create(data, caller)

    notified = [r for r in request.recipients if r.notified_at is not None]
    schedule_notifications(background_tasks, notifier, progress.initial_intents(request.id, notified))
    return service.build_response(request)


@signature_request_router.get(
    "",
    response_model=SignatureRequestListResponse,
    summary="List signature requests",
)
def list_signature_requests(
    caller: Annotated[CallerIdentity, Depends(get_current_caller)],
    service: Annotated[SignatureRequestService, Depends(get_request_service)],
    status_filter: Annotated[Optional[SignatureRequestStatusEnum], Query(alias="status")] = None,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[Optional[int], Query(ge=1)] = None,
) -> SignatureRequestListResponse:
    pagination = get_settings().pagination
    size = min(page_size or pagination.default_page_size, pagination.max_page_size)
    requests, total = service.list_requests(caller, status=status_filter, page=page, page_size=size)
    return SignatureRequestListResponse(
        items=[service.build_summary(r) for r in requests],
        total=total,
        page=page,
        page_size=size,
    )


@signature_request_router.get(
    "/{request_id}",
    response_model=SignatureRequestResponse,
    summary="Get a signature request",
)
def get_signature_request(
    request_id: int,
    background_tasks: BackgroundTasks,
    session: Annotated[Session, Depends(get_db)],
    caller: Annotated[CallerIdentity, Depends(get_current_caller)],
    service: Annotated[SignatureRequestService, Depends(get_request_service)],
    webhooks: Annotated[WebhookService, Depends(get_webhooks)],
) -> SignatureRequestResponse:
    request = service.get(request_id, caller)
    settle_expiry(session, request.id, background_tasks, webhooks)
    return service.build_response(request)


# =============================================================================
# Workflow
# =============================================================================

@signature_request_router.post(
    "/{request_id}/send",
    response_model=SendResponse,
    summary="Send a draft signature request",
)
def send_signature_request(
    request_id: int,
    background_tasks: BackgroundTasks,
    caller: Annotated[CallerIdentity, Depends(get_current_caller)],
    service: Annotated[SignatureRequestService, Depends(get_request_service)],
    progress: Annotated[ProgressService, Depends(get_progress_service)],
    notifier: Annotated[SignatureNotifier, Depends(get_notifier)],
) -> SendResponse:
    notified = service.send(request_id, caller)
    schedule_notifications(background_tasks, notifier, progress.initial_intents(request_id, notified))
    return SendResponse(
        request_id=request_id,
        status=SignatureRequestStatusEnum.PENDING,
        notified=[r.email for r in notified],
    )


@signature_request_router.get(
    "/{request_id}/progress",
    response_model=ProgressResponse,
    summary="Per-recipient signing progress",
)
def get_progress(
    request_id: int,
    background_tasks: BackgroundTasks,
    session: Annotated[Session, Depends(get_db)],
    caller: Annotated[CallerIdentity, Depends(get_current_caller)],
    service: Annotated[SignatureRequestService, Depends(get_request_service)],
    progress: Annotated[ProgressService, Depends(get_progress_service)],
    webhooks: Annotated[WebhookService, Depends(get_webhooks)],
) -> ProgressResponse:
    service.get(request_id, caller)
    settle_expiry(session, request_id, background_tasks, webhooks)
    return progress.progress(request_id, caller)


@signature_request_router.post(
    "/recipients/{recipient_id}/reminders",
    response_model=ReminderResponse,
    summary="Remind a recipient who has not signed",
)
def send_reminder(
    recipient_id: int,
    background_tasks: BackgroundTasks,
    session: Annotated[Session, Depends(get_db)],
    caller: Annotated[CallerIdentity, Depends(get_current_caller)],
    progress: Annotated[ProgressService, Depends(get_progress_service)],
    notifier: Annotated[SignatureNotifier, Depends(get_notifier)],
    webhooks: Annotated[WebhookService, Depends(get_webhooks)],
) -> ReminderResponse:
    recipient = get_recipient(session, recipient_id)
    settle_expiry(session, recipient.request_id, background_tasks, webhooks)

    intent = progress.send_reminder(recipient_id, caller)
    schedule_notifications(background_tasks, notifier, [intent])
    return ReminderResponse(
        recipient_id=recipient.id,
        email=recipient.email,
        reminder_count=recipient.reminder_count,
        last_reminder_at=recipient.last_reminder_at,
    )


# =============================================================================
# Verification & Certificate
# =============================================================================

@signature_request_router.get(
    "/{request_id}/verify",
    response_model=VerificationResponse,
    summary="Verify a signature request",
    description="Read-only authenticity summary; optionally filtered to one recipient email.",
)
def verify_signature_request(
    request_id: int,
    caller: Annotated[CallerIdentity, Depends(get_current_caller)],
    service: Annotated[SignatureRequestService, Depends(get_request_service)],
    verification: Annotated[VerificationService, Depends(get_verification_service)],
    recipient_email: Optional[str] = None,
) -> VerificationResponse:
    service.get(request_id, caller)
    return verification.verify(request_id, recipient_email)


@signature_request_router.post(
    "/{request_id}/certificate",
    response_model=CertificateResponse,
    summary="Generate the completion certificate",
    description="Idempotent: later calls return the certificate produced by the first.",
)
def generate_certificate(
    request_id: int,
    caller: Annotated[CallerIdentity, Depends(get_current_caller)],
    verification: Annotated[VerificationService, Depends(get_verification_service)],
    storage: Annotated[S3StorageService, Depends(get_storage)],
) -> CertificateResponse:
    result = verification.generate_certificate(request_id, caller)
    request = result.request

    download = storage.generate_download_url(
        request.certificate_ref,
        filename=f"certificate-{request.external_id}.pdf",
    )
    return CertificateResponse(
        request_id=request.id,
        certificate_ref=request.certificate_ref,
        certificate_sha256=request.certificate_sha256,
        generated_at=request.certificate_generated_at,
        newly_generated=result.newly_generated,
        download_url=download.download_url if download else None,
    )


@signature_request_router.post(
    "/{request_id}/signed-document",
    response_model=SignedDocumentResponse,
    summary="Generate the signed document",
    description=(
        "Stamp every captured value onto the completed document. "
        "Idempotent: later calls return the PDF produced by the first."
    ),
)
def generate_signed_document(
    request_id: int,
    caller: Annotated[CallerIdentity, Depends(get_current_caller)],
    verification: Annotated[VerificationService, Depends(get_verification_service)],
    storage: Annotated[S3StorageService, Depends(get_storage)],
) -> SignedDocumentResponse:
    result = verification.generate_signed_document(request_id, caller)
    request = result.request

    download = storage.generate_download_url(
        request.signed_document_ref,
        filename=f"signed-{request.external_id}.pdf",
    )
    return SignedDocumentResponse(
        request_id=request.id,
        signed_document_ref=request.signed_document_ref,
        signed_document_sha256=request.signed_document_sha256,
        generated_at=request.signed_document_generated_at,
        newly_generated=result.newly_generated,
        download_url=download.download_url if download else None,
    )


@signature_request_router.get(
    "/{request_id}/audit-trail",
    response_model=List[AuditTrailEntryResponse],
    summary="Audit trail of a signature request",
)
def get_audit_trail(
    request_id: int,
    caller: Annotated[CallerIdentity, Depends(get_current_caller)],
    service: Annotated[SignatureRequestService, Depends(get_request_service)],
) -> List[AuditTrailEntryResponse]:
    return [
        AuditTrailEntryResponse(
            id=entry.id,
            action=entry.action,
            actor=entry.actor,
            recipient_id=entry.recipient_id,
            details=entry.details,
            ip_address=entry.ip_address,
            user_agent=entry.user_agent,
            created_at=entry.created_at,
        )
        for entry in service.get_audit_trail(request_id, caller)
    ]


@signature_request_router.get(
    "/{request_id}/changes",
    response_model=ChangesResponse,
    summary="Poll committed changes of a signature request",
)
def get_changes(
    request_id: int,
    caller: Annotated[CallerIdentity, Depends(get_current_caller)],
    service: Annotated[SignatureRequestService, Depends(get_request_service)],
    since: Annotated[int, Query(ge=0)] = 0,
) -> ChangesResponse:
    service.get(request_id, caller)
    feed = get_change_feed()
    return ChangesResponse(
        request_id=request_id,
        events=[
            ChangeEventResponse(
                sequence=e.sequence,
                request_id=e.request_id,
                kind=e.kind,
                recipient_id=e.recipient_id,
                field_id=e.field_id,
                status=e.status,
                occurred_at=e.occurred_at,
            )
            for e in feed.events_since(request_id, since)
        ],
        last_sequence=feed.last_sequence(request_id),
    )


# =============================================================================
# Maintenance
# =============================================================================

@signature_request_router.post(
    "/reminders/run",
    response_model=List[ReminderResponse],
    summary="Send every reminder that is due",
    description="Admin only. Intended to be called by a scheduler.",
)
def run_due_reminders(
    background_tasks: BackgroundTasks,
    session: Annotated[Session, Depends(get_db)],
    caller: Annotated[CallerIdentity, Depends(get_current_caller)],
    progress: Annotated[ProgressService, Depends(get_progress_service)],
    notifier: Annotated[SignatureNotifier, Depends(get_notifier)],
) -> List[ReminderResponse]:
    if not caller.has_role(UserRole.ADMIN):
        raise ForbiddenError("Only administrators can run the reminder sweep")

    intents = progress.send_due_reminders()
    schedule_notifications(background_tasks, notifier, intents)
    logger.info(f"Reminder sweep queued {len(intents)} reminders")

    responses = []
    for intent in intents:
        recipient = get_recipient(session, intent.recipient_id)
        responses.append(ReminderResponse(
            recipient_id=recipient.id,
            email=recipient.email,
            reminder_count=recipient.reminder_count,
            last_reminder_at=recipient.last_reminder_at,
        ))
    return responses
