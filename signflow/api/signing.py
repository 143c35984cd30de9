"""API endpoints used by recipients through their signing link."""

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.orm import Session

from signflow.api.background import schedule_notifications, schedule_webhook, settle_expiry
from signflow.api.dependencies import (
    get_notifier,
    get_recipient_caller,
    get_signing_recipient,
    get_storage,
    get_webhooks,
)
from signflow.database import get_db
from signflow.infrastructure.storage import S3StorageService
from signflow.infrastructure.webhooks import WebhookEventType, WebhookService
from signflow.models.signature_request import RecipientStatus, SignatureRecipient
from signflow.schemas.signature_request import (
    CaptureResponse,
    FieldTypeEnum,
    FieldValueSubmission,
    RecipientStatusEnum,
    SignatureCaptureRequest,
    SignatureRequestStatusEnum,
    SignResponse,
    SigningSessionResponse,
    VerificationResponse,
)
from signflow.services.field_service import FieldService
from signflow.services.lookups import fresh_recipients
from signflow.services.notifications import SignatureNotifier
from signflow.services.progress_service import ProgressService, completion_percentage_of
from signflow.services.recipient_service import RecipientService, blocking_predecessor
from signflow.services.request_state import assert_open
from signflow.services.signature_request_service import SignatureRequestService
from signflow.services.signing_capture_service import CaptureResult, SigningCaptureService
from signflow.services.verification_service import VerificationService
from signflow.utils.auth import CallerIdentity
from signflow.utils.errors import APIError

logger = logging.getLogger(__name__)


# =============================================================================
# Router Setup
# =============================================================================

signing_router = APIRouter(
    prefix="/api/signing/{access_token}",
    tags=["Signing"],
)

verification_router = APIRouter(
    prefix="/api/verify",
    tags=["Verification"],
)


# =============================================================================
# Dependencies
# =============================================================================

def get_capture_service(
    session: Annotated[Session, Depends(get_db)],
    storage: Annotated[S3StorageService, Depends(get_storage)],
) -> SigningCaptureService:
    return SigningCaptureService(session, storage)


def _capture_response(result: CaptureResult) -> CaptureResponse:
    field = result.field
    return CaptureResponse(
        field_id=field.id,
        field_type=FieldTypeEnum(field.field_type),
        completed_at=field.completed_at,
        value=field.value,
        degraded=result.degraded,
    )


# =============================================================================
# Session
# =============================================================================

@signing_router.get(
    "",
    response_model=SigningSessionResponse,
    summary="Open a signing session",
    description="""
    Returns the request and the recipient's own fields.

    The first open of a sent request marks the recipient as viewed. When the
    recipient cannot sign (request closed, already signed, or waiting on an
    earlier signer) `can_sign` is false and `blocked_reason` says why.
    """,
)
def open_signing_session(
    background_tasks: BackgroundTasks,
    session: Annotated[Session, Depends(get_db)],
    recipient: Annotated[SignatureRecipient, Depends(get_signing_recipient)],
    caller: Annotated[CallerIdentity, Depends(get_recipient_caller)],
    webhooks: Annotated[WebhookService, Depends(get_webhooks)],
) -> SigningSessionResponse:
    settle_expiry(session, recipient.request_id, background_tasks, webhooks)
    request = recipient.request

    blocked_reason: Optional[str] = None
    try:
        assert_open(request)
    except APIError as e:
        blocked_reason = e.message
    else:
        RecipientService(session).mark_viewed(recipient.id, caller)

    if blocked_reason is None and recipient.status == RecipientStatus.SIGNED.value:
        blocked_reason = "You have already signed this request"
    if blocked_reason is None:
        predecessor = blocking_predecessor(request, recipient, fresh_recipients(session, request.id))
        if predecessor is not None:
            blocked_reason = f"Waiting for recipient {predecessor.signing_order} to sign first"

    request_service = SignatureRequestService(session)
    return SigningSessionResponse(
        request_id=request.id,
        title=request.title,
        message=request.message,
        document_ref=request.document_ref,
        request_status=SignatureRequestStatusEnum(request.status),
        expires_at=request.expires_at,
        recipient=request_service.build_recipient_response(recipient, include_link=False),
        fields=[request_service.build_field_response(f) for f in recipient.fields],
        can_sign=blocked_reason is None,
        blocked_reason=blocked_reason,
    )


# =============================================================================
# Fields
# =============================================================================

@signing_router.put(
    "/fields/{field_id}",
    response_model=CaptureResponse,
    summary="Fill a text, date or checkbox field",
)
def submit_field_value(
    field_id: int,
    submission: FieldValueSubmission,
    background_tasks: BackgroundTasks,
    session: Annotated[Session, Depends(get_db)],
    recipient: Annotated[SignatureRecipient, Depends(get_signing_recipient)],
    caller: Annotated[CallerIdentity, Depends(get_recipient_caller)],
    capture: Annotated[SigningCaptureService, Depends(get_capture_service)],
    webhooks: Annotated[WebhookService, Depends(get_webhooks)],
) -> CaptureResponse:
    settle_expiry(session, recipient.request_id, background_tasks, webhooks)
    return _capture_response(capture.capture_value(field_id, recipient.id, submission.value, caller))


@signing_router.post(
    "/fields/{field_id}/signature",
    response_model=CaptureResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Capture a drawn signature or initial",
    description="""
    Accepts pointer strokes or a `data:image/...` URL. The image is cropped
    to its ink, fitted to 400x200 and stored as JPEG. When storage is
    unavailable the image is kept inline and `degraded` is true.
    """,
)
def capture_signature(
    field_id: int,
    data: SignatureCaptureRequest,
    background_tasks: BackgroundTasks,
    session: Annotated[Session, Depends(get_db)],
    recipient: Annotated[SignatureRecipient, Depends(get_signing_recipient)],
    caller: Annotated[CallerIdentity, Depends(get_recipient_caller)],
    capture: Annotated[SigningCaptureService, Depends(get_capture_service)],
    webhooks: Annotated[WebhookService, Depends(get_webhooks)],
) -> CaptureResponse:
    settle_expiry(session, recipient.request_id, background_tasks, webhooks)
    result = capture.capture_signature(
        field_id,
        recipient.id,
        caller,
        strokes=data.strokes,
        canvas_width=data.canvas_width,
        canvas_height=data.canvas_height,
        image_data=data.image_data,
    )
    return _capture_response(result)


@signing_router.delete(
    "/fields/{field_id}",
    response_model=CaptureResponse,
    summary="Clear a field value",
)
def clear_field(
    field_id: int,
    background_tasks: BackgroundTasks,
    session: Annotated[Session, Depends(get_db)],
    recipient: Annotated[SignatureRecipient, Depends(get_signing_recipient)],
    caller: Annotated[CallerIdentity, Depends(get_recipient_caller)],
    webhooks: Annotated[WebhookService, Depends(get_webhooks)],
) -> CaptureResponse:
    settle_expiry(session, recipient.request_id, background_tasks, webhooks)
    field = FieldService(session).clear(field_id, recipient.id, caller)
    return _capture_response(CaptureResult(field=field))


# =============================================================================
# Sign
# =============================================================================

@signing_router.post(
    "/sign",
    response_model=SignResponse,
    summary="Sign the request",
    description="""
    Marks the recipient as signed once every required field is filled.

    In an ordered request every lower-ordered recipient must have signed
    first. The next recipient is emailed; when the last recipient signs the
    request completes and everyone is emailed.
    """,
)
def sign(
    background_tasks: BackgroundTasks,
    session: Annotated[Session, Depends(get_db)],
    recipient: Annotated[SignatureRecipient, Depends(get_signing_recipient)],
    caller: Annotated[CallerIdentity, Depends(get_recipient_caller)],
    notifier: Annotated[SignatureNotifier, Depends(get_notifier)],
    webhooks: Annotated[WebhookService, Depends(get_webhooks)],
) -> SignResponse:
    settle_expiry(session, recipient.request_id, background_tasks, webhooks)

    outcome = RecipientService(session).mark_signed(recipient.id, caller)
    progress = ProgressService(session)
    request = recipient.request

    schedule_notifications(background_tasks, notifier, progress.next_recipient_intents(outcome))
    schedule_webhook(background_tasks, webhooks, request, WebhookEventType.SIGNED)
    if outcome.request_completed:
        schedule_notifications(background_tasks, notifier, progress.completion_intents(request.id))
        schedule_webhook(background_tasks, webhooks, request, WebhookEventType.COMPLETED)

    return SignResponse(
        recipient_id=recipient.id,
        status=RecipientStatusEnum(recipient.status),
        signed_at=recipient.signed_at,
        request_status=SignatureRequestStatusEnum(outcome.request_status),
        request_completed=outcome.request_completed,
        completion_percentage=completion_percentage_of(fresh_recipients(session, request.id)),
    )


# =============================================================================
# Public Verification
# =============================================================================

@verification_router.get(
    "/{external_id}",
    response_model=VerificationResponse,
    summary="Verify a signature request by its public id",
)
def verify_by_external_id(
    external_id: str,
    session: Annotated[Session, Depends(get_db)],
    email: str,
) -> VerificationResponse:
    return VerificationService(session).verify_external(external_id, email)
