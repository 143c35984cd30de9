"""Verification queries, completion certificates and signed documents."""

import base64
import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from pypdf.errors import PdfReadError
from sqlalchemy import select
from sqlalchemy.orm import Session

from signflow.infrastructure.events import record_change
from signflow.infrastructure.storage import FileCategory, S3StorageService, get_storage_service
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
    CheckboxValue,
    DateValue,
    FieldTypeEnum,
    InitialValue,
    RecipientStatusEnum,
    SignatureRequestStatusEnum,
    SignatureValue,
    StoredInline,
    TextValue,
    VerificationResponse,
    VerifiedField,
    VerifiedRecipient,
    field_value_adapter,
)
from signflow.services.audit_trail import audit_trail_digest, create_audit_entry
from signflow.services.certificate_pdf import CertificateContent, CertificateSigner, render_certificate
from signflow.services.lookups import (
    get_request,
    get_request_by_external_id,
    is_past_expiry,
    lock_request,
)
from signflow.services.signed_document_pdf import StampedField, stamp_document
from signflow.utils.auth import CallerIdentity, ensure_originator_access
from signflow.utils.clock import utcnow
from signflow.utils.errors import (
    DocumentIntegrityError,
    DocumentUnreadableError,
    NotCompletedError,
    StorageUnavailableError,
)

logger = logging.getLogger(__name__)


@dataclass
class CertificateResult:
    request: SignatureRequest
    newly_generated: bool


@dataclass
class SignedDocumentResult:
    request: SignatureRequest
    newly_generated: bool


class VerificationService:
    """Read-only verification and idempotent certificate generation."""

    def __init__(self, session: Session, storage: Optional[S3StorageService] = None):
        self.session = session
        self._storage = storage

    @property
    def storage(self) -> S3StorageService:
        if self._storage is None:
            self._storage = get_storage_service()
        return self._storage

    # =========================================================================
    # Verification
    # =========================================================================

    def verify(self, request_id: int, recipient_email: Optional[str] = None) -> VerificationResponse:
        """
        Summarize a request's authenticity without writing anything.

        A request past its ``expires_at`` counts as expired here even when
        that status has not been persisted yet.
        """
        request = get_request(self.session, request_id)
        return self._verify(request, recipient_email)

    def verify_external(self, external_id: str, recipient_email: Optional[str] = None) -> VerificationResponse:
        request = get_request_by_external_id(self.session, external_id)
        return self._verify(request, recipient_email)

    def _verify(self, request: SignatureRequest, recipient_email: Optional[str]) -> VerificationResponse:
        now = utcnow()
        expired = is_past_expiry(request, now)
        is_complete = request.status == SignatureRequestStatus.COMPLETED.value

        recipients = sorted(request.recipients, key=lambda r: r.signing_order)
        if recipient_email is not None:
            wanted = recipient_email.strip().lower()
            recipients = [r for r in recipients if r.email.lower() == wanted]

        fields_filled = all(f.is_complete for f in request.fields if f.required)

        return VerificationResponse(
            request_id=request.id,
            external_id=request.external_id,
            title=request.title,
            document_ref=request.document_ref,
            document_sha256=request.document_sha256,
            status=SignatureRequestStatusEnum(
                SignatureRequestStatus.EXPIRED.value if expired else request.status
            ),
            created_at=request.created_at,
            expires_at=request.expires_at,
            completed_at=request.completed_at,
            certificate_generated=request.certificate_generated,
            certificate_ref=request.certificate_ref,
            signed_document_ref=request.signed_document_ref,
            recipients=[self._verified_recipient(r) for r in recipients],
            audit_trail_sha256=audit_trail_digest(self._audit_entries(request.id)),
            is_complete=is_complete,
            is_valid=not expired and (not is_complete or fields_filled),
            checked_at=now,
        )

    @staticmethod
    def _verified_recipient(recipient: SignatureRecipient) -> VerifiedRecipient:
        signed = recipient.status == RecipientStatus.SIGNED.value
        return VerifiedRecipient(
            name=recipient.name,
            email=recipient.email,
            role=recipient.role,
            signing_order=recipient.signing_order,
            status=RecipientStatusEnum(recipient.status),
            viewed_at=recipient.viewed_at,
            signed_at=recipient.signed_at,
            ip_address=recipient.ip_address,
            user_agent=recipient.user_agent,
            fields_count=len(recipient.fields),
            completed_fields_count=sum(1 for f in recipient.fields if f.is_complete),
            fields=[
                VerifiedField(
                    id=f.id,
                    field_type=FieldTypeEnum(f.field_type),
                    field_label=f.field_label,
                    required=f.required,
                    value=f.value if signed else None,
                    completed_at=f.completed_at,
                )
                for f in recipient.fields
            ],
        )

    def _audit_entries(self, request_id: int) -> List[SignatureAuditEntry]:
        stmt = (
            select(SignatureAuditEntry)
            .where(SignatureAuditEntry.request_id == request_id)
            .order_by(SignatureAuditEntry.id)
        )
        return list(self.session.execute(stmt).scalars())

    # =========================================================================
    # Certificate
    # =========================================================================

    def generate_certificate(self, request_id: int, caller: CallerIdentity) -> CertificateResult:
        """
        Produce the completion certificate once.

        Later calls return the stored reference. The request row is locked
        for the whole call so concurrent callers produce one artifact.
        """
        request = lock_request(self.session, request_id)
        ensure_originator_access(caller, request.created_by)

        if request.status != SignatureRequestStatus.COMPLETED.value:
            raise NotCompletedError(
                message=f"Cannot generate certificate for incomplete signature request {request.id} (status {request.status})",
                details={"status": request.status},
            )
        if request.certificate_generated:
            return CertificateResult(request=request, newly_generated=False)

        now = utcnow()
        audit_digest = audit_trail_digest(self._audit_entries(request.id))
        pdf = render_certificate(self._certificate_content(request, audit_digest, now))
        pdf_sha256 = hashlib.sha256(pdf).hexdigest()

        result = self.storage.upload_bytes(
            pdf,
            f"certificates/{request.external_id}/certificate.pdf",
            content_type="application/pdf",
            category=FileCategory.CERTIFICATE,
            custom_metadata={"request-id": str(request.id), "sha256": pdf_sha256},
        )
        if not result.success:
            raise StorageUnavailableError(
                message=f"Certificate for signature request {request.id} could not be stored: {result.error}",
                details={"request_id": request.id},
            )

        request.certificate_generated = True
        request.certificate_ref = result.ref
        request.certificate_sha256 = pdf_sha256
        request.certificate_generated_at = now
        self.session.flush()

        create_audit_entry(
            self.session,
            request.id,
            AuditAction.CERTIFICATE_GENERATED,
            caller,
            details={
                "certificate_ref": result.ref,
                "certificate_sha256": pdf_sha256,
                "audit_trail_sha256": audit_digest,
            },
        )
        record_change(self.session, request.id, AuditAction.CERTIFICATE_GENERATED.value, status=request.status)
        logger.info(f"Certificate generated for signature request {request.id}: {result.ref}")
        return CertificateResult(request=request, newly_generated=True)

    @staticmethod
    def _certificate_content(request: SignatureRequest, audit_digest: str, now: datetime) -> CertificateContent:
        return CertificateContent(
            certificate_id=request.external_id,
            request_id=request.id,
            title=request.title,
            document_ref=request.document_ref,
            status=request.status,
            created_at=request.created_at,
            completed_at=request.completed_at,
            generated_at=now,
            document_sha256=request.document_sha256,
            audit_trail_sha256=audit_digest,
            signers=[
                CertificateSigner(
                    name=r.name,
                    email=r.email,
                    role=r.role,
                    status=r.status,
                    signed_at=r.signed_at,
                    ip_address=r.ip_address,
                    fields_completed=sum(1 for f in r.fields if f.is_complete),
                    fields_total=len(r.fields),
                )
                for r in sorted(request.recipients, key=lambda r: r.signing_order)
            ],
        )

    # =========================================================================
    # Signed Document
    # =========================================================================

    def generate_signed_document(self, request_id: int, caller: CallerIdentity) -> SignedDocumentResult:
        """
        Stamp every captured value onto the original document, once.

        The source PDF is read from storage and, when the request recorded
        one, checked against ``document_sha256`` before anything is drawn.
        Later calls return the stored reference.
        """
        request = lock_request(self.session, request_id)
        ensure_originator_access(caller, request.created_by)

        if request.status != SignatureRequestStatus.COMPLETED.value:
            raise NotCompletedError(
                message=f"Cannot stamp incomplete signature request {request.id} (status {request.status})",
                details={"status": request.status},
            )
        if request.signed_document_ref:
            return SignedDocumentResult(request=request, newly_generated=False)

        document = self.storage.download_bytes(request.document_ref, FileCategory.DOCUMENT)
        if document is None:
            raise StorageUnavailableError(
                message=f"Document {request.document_ref} could not be read from storage",
                details={"document_ref": request.document_ref},
            )
        if request.document_sha256 and hashlib.sha256(document).hexdigest() != request.document_sha256:
            raise DocumentIntegrityError(details={"document_ref": request.document_ref})

        stamped = [self._stamped_field(f) for f in sorted(request.fields, key=lambda f: f.id) if f.value]
        try:
            pdf = stamp_document(document, stamped)
        except PdfReadError as e:
            raise DocumentUnreadableError(
                message=f"Document {request.document_ref} is not a readable PDF: {e}",
                details={"document_ref": request.document_ref},
            )
        pdf_sha256 = hashlib.sha256(pdf).hexdigest()

        result = self.storage.upload_bytes(
            pdf,
            f"signed/{request.external_id}/signed-document.pdf",
            content_type="application/pdf",
            category=FileCategory.SIGNED_DOCUMENT,
            custom_metadata={"request-id": str(request.id), "sha256": pdf_sha256},
        )
        if not result.success:
            raise StorageUnavailableError(
                message=f"Signed document for signature request {request.id} could not be stored: {result.error}",
                details={"request_id": request.id},
            )

        now = utcnow()
        request.signed_document_ref = result.ref
        request.signed_document_sha256 = pdf_sha256
        request.signed_document_generated_at = now
        self.session.flush()

        create_audit_entry(
            self.session,
            request.id,
            AuditAction.SIGNED_DOCUMENT_GENERATED,
            caller,
            details={
                "signed_document_ref": result.ref,
                "signed_document_sha256": pdf_sha256,
                "fields_stamped": len(stamped),
            },
        )
        record_change(self.session, request.id, AuditAction.SIGNED_DOCUMENT_GENERATED.value, status=request.status)
        logger.info(f"Signed document generated for signature request {request.id}: {result.ref}")
        return SignedDocumentResult(request=request, newly_generated=True)

    def _stamped_field(self, field: SignatureField) -> StampedField:
        stamped = StampedField(
            page_number=field.page_number,
            x_position=field.x_position,
            y_position=field.y_position,
            width=field.width,
            height=field.height,
        )
        value = field_value_adapter.validate_python(field.value)
        if isinstance(value, (SignatureValue, InitialValue)):
            stamped.image = self._image_bytes(value.value)
        elif isinstance(value, TextValue):
            stamped.text = value.value
        elif isinstance(value, DateValue):
            stamped.text = value.value.strftime("%b %d, %Y")
        elif isinstance(value, CheckboxValue):
            stamped.checked = value.value
        return stamped

    def _image_bytes(self, image) -> bytes:
        if isinstance(image, StoredInline):
            try:
                return base64.b64decode(image.data.split(",", 1)[-1], validate=True)
            except ValueError as e:
                raise DocumentUnreadableError(message=f"Inline signature image is not valid base64: {e}")

        data = self.storage.download_bytes(image.ref, FileCategory.SIGNATURE)
        if data is None:
            raise StorageUnavailableError(
                message=f"Signature image {image.ref} could not be read from storage",
                details={"ref": image.ref},
            )
        return data
