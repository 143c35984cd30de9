"""Field placement store: typed values captured for each recipient."""

import logging
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from signflow.config.settings import SigningSettings, get_settings
from signflow.infrastructure.events import record_change
from signflow.models.signature_request import (
    AuditAction,
    FieldType,
    RecipientStatus,
    SignatureField,
    SignatureRequestStatus,
)
from signflow.schemas.signature_request import (
    CheckboxValue,
    TextValue,
    field_value_adapter,
)
from signflow.services.audit_trail import create_audit_entry
from signflow.services.lookups import get_field, get_recipient, lock_request
from signflow.services.request_state import assert_open
from signflow.utils.auth import CallerIdentity, ensure_recipient_access
from signflow.utils.clock import utcnow
from signflow.utils.errors import (
    FieldLockedError,
    InvalidFieldValueError,
    create_field_error,
)

logger = logging.getLogger(__name__)


class FieldService:
    """Stores and validates field values for recipients."""

    def __init__(self, session: Session, settings: Optional[SigningSettings] = None):
        """Initialize with database session."""
        self.session = session
        self.settings = settings or get_settings().signing

    # =========================================================================
    # Value Validation
    # =========================================================================

    def validate_value(
        self,
        field: SignatureField,
        raw: Union[BaseModel, Dict[str, Any]],
    ) -> BaseModel:
        """
        Parse ``raw`` into the value variant for ``field.field_type``.

        A dict without ``field_type`` is read as a value for this field's type.
        """
        data = raw.model_dump(mode="json") if isinstance(raw, BaseModel) else dict(raw)
        submitted_type = data.setdefault("field_type", field.field_type)
        if submitted_type != field.field_type:
            raise InvalidFieldValueError(
                message=f"Field {field.id} expects a {field.field_type} value, got {submitted_type}",
                details={"field_id": field.id, "field_type": field.field_type},
            )

        try:
            value = field_value_adapter.validate_python(data)
        except PydanticValidationError as e:
            raise InvalidFieldValueError(
                message=f"Invalid {field.field_type} value for field {field.id}",
                details={"field_id": field.id},
                field_errors=[
                    create_field_error(
                        ".".join(str(part) for part in err["loc"]) or "value",
                        err["msg"],
                        err["type"],
                    )
                    for err in e.errors()
                ],
            ) from e

        if isinstance(value, TextValue):
            text = value.value.strip()
            if not text:
                raise InvalidFieldValueError(
                    message=f"Text for field {field.id} is empty",
                    details={"field_id": field.id},
                )
            if len(text) > self.settings.text_max_length:
                raise InvalidFieldValueError(
                    message=(
                        f"Text for field {field.id} is {len(text)} characters; "
                        f"the limit is {self.settings.text_max_length}"
                    ),
                    details={"field_id": field.id, "max_length": self.settings.text_max_length},
                )
            value = TextValue(value=text)

        return value

    # =========================================================================
    # Submit / Clear
    # =========================================================================

    def submit(
        self,
        field_id: int,
        recipient_id: int,
        value: Union[BaseModel, Dict[str, Any]],
        caller: CallerIdentity,
    ) -> SignatureField:
        """
        Store a value for a field owned by ``recipient_id``.

        Last write wins. An unchecked checkbox clears the field.
        """
        ensure_recipient_access(caller, recipient_id)
        field = get_field(self.session, field_id)
        lock_request(self.session, field.request_id)
        self.ensure_writable(field, recipient_id)

        parsed = self.validate_value(field, value)

        if isinstance(parsed, CheckboxValue) and not parsed.value:
            return self._clear(field, caller)

        field.value = parsed.model_dump(mode="json")
        field.completed_at = utcnow()
        self.session.flush()

        create_audit_entry(
            self.session,
            field.request_id,
            AuditAction.FIELD_COMPLETED,
            caller,
            recipient_id=recipient_id,
            details={"field_id": field.id, "field_type": field.field_type},
        )
        record_change(
            self.session,
            field.request_id,
            AuditAction.FIELD_COMPLETED.value,
            recipient_id=recipient_id,
            field_id=field.id,
        )
        logger.info(f"Field {field.id} ({field.field_type}) completed by recipient {recipient_id}")
        return field

    def clear(self, field_id: int, recipient_id: int, caller: CallerIdentity) -> SignatureField:
        """Remove a field's value before its owner signs."""
        ensure_recipient_access(caller, recipient_id)
        field = get_field(self.session, field_id)
        lock_request(self.session, field.request_id)
        self.ensure_writable(field, recipient_id)
        return self._clear(field, caller)

    def _clear(self, field: SignatureField, caller: CallerIdentity) -> SignatureField:
        had_value = field.completed_at is not None
        field.value = None
        field.completed_at = None
        self.session.flush()

        if had_value:
            create_audit_entry(
                self.session,
                field.request_id,
                AuditAction.FIELD_CLEARED,
                caller,
                recipient_id=field.recipient_id,
                details={"field_id": field.id, "field_type": field.field_type},
            )
            record_change(
                self.session,
                field.request_id,
                AuditAction.FIELD_CLEARED.value,
                recipient_id=field.recipient_id,
                field_id=field.id,
            )
        return field

    def ensure_writable(self, field: SignatureField, recipient_id: int) -> None:
        # Expiry and drafts take precedence; on a completed request every owner
        # has signed, so the lock below applies
        if field.request.status != SignatureRequestStatus.COMPLETED.value:
            assert_open(field.request)

        if field.recipient_id != recipient_id:
            raise FieldLockedError(
                message=f"Field {field.id} belongs to recipient {field.recipient_id}",
                details={"field_id": field.id, "owner_recipient_id": field.recipient_id},
            )

        recipient = get_recipient(self.session, recipient_id)
        if recipient.status == RecipientStatus.SIGNED.value:
            raise FieldLockedError(
                message=f"Field {field.id} is locked because recipient {recipient_id} has already signed",
                details={"field_id": field.id, "signed_at": recipient.signed_at.isoformat() if recipient.signed_at else None},
            )

    # =========================================================================
    # Completeness
    # =========================================================================

    def missing_required_fields(self, recipient_id: int) -> List[SignatureField]:
        """Required fields owned by the recipient that still have no value."""
        stmt = (
            select(SignatureField)
            .where(
                SignatureField.recipient_id == recipient_id,
                SignatureField.required.is_(True),
                SignatureField.completed_at.is_(None),
            )
            .order_by(SignatureField.id)
        )
        return list(self.session.execute(stmt).scalars())

    def is_recipient_complete(self, recipient_id: int) -> bool:
        """Whether every required field owned by the recipient has a value."""
        self.session.flush()
        return not self.missing_required_fields(recipient_id)


def describe_field(field: SignatureField) -> str:
    """Short human label for error messages."""
    label = field.field_label or FieldType(field.field_type).value
    return f"{label} (field {field.id})"
