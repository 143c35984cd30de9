"""Shared FastAPI dependencies for the signature API."""

from typing import Annotated, Optional, Tuple

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from signflow.database import get_db
from signflow.infrastructure.storage import S3StorageService, get_storage_service
from signflow.infrastructure.webhooks import WebhookService, get_webhook_service
from signflow.models.signature_request import SignatureRecipient
from signflow.services.lookups import get_recipient_by_token
from signflow.services.notifications import SignatureNotifier
from signflow.utils.auth import CallerIdentity, UserRole, originator_identity, recipient_identity


def get_client_info(request: Request) -> Tuple[Optional[str], Optional[str]]:
    """Extract client IP and user agent from request."""
    ip_address = request.client.host if request.client else None
    user_agent = request.headers.get("user-agent")
    return ip_address, user_agent


def get_current_caller(
    request: Request,
    x_user_id: Annotated[Optional[str], Header(alias="X-User-ID")] = None,
    x_user_role: Annotated[Optional[str], Header(alias="X-User-Role")] = None,
) -> CallerIdentity:
    """
    Resolve the originator from request headers.

    In production this would verify a JWT or session cookie; for development
    the user id and role are taken from headers.
    """
    roles = [UserRole.ORIGINATOR]
    if x_user_role:
        try:
            roles = [UserRole(x_user_role)]
        except ValueError:
            pass
    # Recipients and the system never act through originator routes
    roles = [r for r in roles if r in (UserRole.ADMIN, UserRole.ORIGINATOR)] or [UserRole.ORIGINATOR]

    ip_address, user_agent = get_client_info(request)
    return originator_identity(x_user_id, roles=roles, ip_address=ip_address, user_agent=user_agent)


def get_signing_recipient(
    access_token: str,
    session: Annotated[Session, Depends(get_db)],
) -> SignatureRecipient:
    """Resolve the recipient that owns a signing link."""
    return get_recipient_by_token(session, access_token)


def get_recipient_caller(
    request: Request,
    recipient: Annotated[SignatureRecipient, Depends(get_signing_recipient)],
) -> CallerIdentity:
    ip_address, user_agent = get_client_info(request)
    return recipient_identity(recipient.id, recipient.email, ip_address=ip_address, user_agent=user_agent)


def get_storage() -> S3StorageService:
    return get_storage_service()


def get_notifier() -> SignatureNotifier:
    return SignatureNotifier()


def get_webhooks() -> WebhookService:
    return get_webhook_service()
