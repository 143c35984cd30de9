"""API errors and the JSON envelope they render to."""

from dataclasses import dataclass, field
from enum import Enum
from http import HTTPStatus
from typing import Any, Dict, List, Optional


class ErrorCategory(str, Enum):
    """How a caller is expected to react to an error."""

    VALIDATION = "validation"
    ORDERING = "ordering"
    STATE = "state"
    INFRASTRUCTURE = "infrastructure"


@dataclass
class FieldError:
    """A problem with one input field, addressed by its dotted path."""

    field: str
    message: str
    code: str = "invalid"

    def to_dict(self) -> Dict[str, str]:
        """JSON form of the field error."""
        return {
            "field": self.field,
            "message": self.message,
            "code": self.code,
        }


@dataclass
class ErrorResponse:
    """Body of every non-2xx response: ``{"error": {...}}``."""

    message: str
    status_code: int
    error_code: str
    category: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    field_errors: List[FieldError] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """JSON body; empty sections are omitted."""
        result = {
            "error": {
                "message": self.message,
                "code": self.error_code,
            }
        }

        if self.category:
            result["error"]["category"] = self.category

        if self.details:
            result["error"]["details"] = self.details

        if self.field_errors:
            result["error"]["field_errors"] = [
                fe.to_dict() for fe in self.field_errors
            ]

        return result


class APIError(Exception):
    """Base error; subclasses set the HTTP status and error code."""

    status_code: int = HTTPStatus.INTERNAL_SERVER_ERROR
    error_code: str = "internal_error"
    category: Optional[ErrorCategory] = None
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        field_errors: Optional[List[FieldError]] = None,
    ):
        self.message = message or self.__class__.message
        self.details = details
        self.field_errors = field_errors or []
        super().__init__(self.message)

    def to_response(self) -> ErrorResponse:
        """Render as an ErrorResponse."""
        return ErrorResponse(
            message=self.message,
            status_code=self.status_code,
            error_code=self.error_code,
            category=self.category.value if self.category else None,
            details=self.details,
            field_errors=self.field_errors,
        )


class ValidationError(APIError):
    """Input rejected before any state changed."""

    status_code: int = HTTPStatus.BAD_REQUEST
    error_code: str = "validation_error"
    category = ErrorCategory.VALIDATION
    message: str = "Request validation failed"


class NotFoundError(APIError):
    """Unknown id, external id or signing token."""

    status_code: int = HTTPStatus.NOT_FOUND
    error_code: str = "not_found"
    category = ErrorCategory.STATE
    message: str = "Resource not found"


class UnauthorizedError(APIError):
    """No caller identity on the request."""

    status_code: int = HTTPStatus.UNAUTHORIZED
    error_code: str = "unauthorized"
    message: str = "Authentication required"


class ForbiddenError(APIError):
    """Caller may not act on this request."""

    status_code: int = HTTPStatus.FORBIDDEN
    error_code: str = "forbidden"
    message: str = "Access denied"


# =============================================================================
# Signature Workflow Errors
# =============================================================================

class InvalidWorkflowError(ValidationError):
    """Request definition violates a structural rule."""

    error_code: str = "invalid_workflow"
    message: str = "Signature request definition is invalid"


class InvalidFieldValueError(ValidationError):
    """Submitted value does not match the field's type."""

    error_code: str = "invalid_field_value"
    message: str = "Field value does not match the field type"


class CaptureEmptyError(ValidationError):
    """Signature capture contained no drawn strokes."""

    error_code: str = "capture_empty"
    message: str = "Signature capture is empty"


class OutOfOrderError(APIError):
    """Recipient attempted to act before an earlier recipient signed."""

    status_code: int = HTTPStatus.CONFLICT
    error_code: str = "out_of_order"
    category = ErrorCategory.ORDERING
    message: str = "An earlier recipient must sign first"


class FieldLockedError(APIError):
    """Field may not be written by this caller in its current state."""

    status_code: int = HTTPStatus.CONFLICT
    error_code: str = "field_locked"
    category = ErrorCategory.ORDERING
    message: str = "Field can no longer be edited"


class StateError(APIError):
    """Base for operations rejected because of the workflow's current state."""

    status_code: int = HTTPStatus.CONFLICT
    error_code: str = "invalid_state"
    category = ErrorCategory.STATE


class RequestExpiredError(StateError):
    """Request passed its expiry date."""

    status_code: int = HTTPStatus.GONE
    error_code: str = "request_expired"
    message: str = "Signature request has expired"


class NotCompletedError(StateError):
    """Operation needs a completed request."""

    error_code: str = "not_completed"
    message: str = "Signature request is not completed"


class AlreadySignedError(StateError):
    """Recipient has already signed."""

    error_code: str = "already_signed"
    message: str = "Recipient has already signed"


class IncompleteFieldsError(StateError):
    """Recipient still has required fields without a value."""

    error_code: str = "incomplete_fields"
    message: str = "Required fields are incomplete"


class RequestNotSentError(StateError):
    """Recipient action attempted on a request that is still a draft."""

    error_code: str = "request_not_sent"
    message: str = "Signature request has not been sent yet"


class NotPendingError(StateError):
    """Operation needs a pending request."""

    error_code: str = "not_pending"
    message: str = "Signature request is not pending"


class StorageUnavailableError(APIError):
    """Durable storage rejected an artifact that has no inline fallback."""

    status_code: int = HTTPStatus.SERVICE_UNAVAILABLE
    error_code: str = "storage_unavailable"
    category = ErrorCategory.INFRASTRUCTURE
    message: str = "Artifact storage is unavailable"


class DocumentIntegrityError(StateError):
    """Stored document no longer matches the digest recorded at creation."""

    error_code: str = "document_modified"
    message: str = "Document content does not match its recorded SHA-256"


class DocumentUnreadableError(APIError):
    """Stored document could not be parsed as a PDF."""

    status_code: int = HTTPStatus.UNPROCESSABLE_ENTITY
    error_code: str = "document_unreadable"
    category = ErrorCategory.INFRASTRUCTURE
    message: str = "Document is not a readable PDF"


def create_field_error(field: str, message: str, code: str = "invalid") -> FieldError:
    """Shorthand for ``FieldError``."""
    return FieldError(field=field, message=message, code=code)


def create_not_found_error(resource_type: str, identifier: Any) -> NotFoundError:
    """NotFoundError naming the missing resource in its details."""
    return NotFoundError(
        message=f"{resource_type} {identifier} not found",
        details={"resource_type": resource_type, "identifier": str(identifier)},
    )
