"""Caller identity and authorization helpers."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from signflow.utils.errors import ForbiddenError, UnauthorizedError


class UserRole(str, Enum):
    """Role definitions for access control."""

    ADMIN = "admin"
    ORIGINATOR = "originator"
    RECIPIENT = "recipient"
    SYSTEM = "system"


@dataclass
class CallerIdentity:
    """
    Identity of whoever invokes a workflow operation.

    Passed explicitly into every service call. Originators carry a
    ``user_id``; recipients carry ``recipient_id`` and ``email`` resolved
    from their access token.
    """

    user_id: Optional[str] = None
    recipient_id: Optional[int] = None
    email: Optional[str] = None
    roles: List[UserRole] = field(default_factory=lambda: [UserRole.ORIGINATOR])
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @property
    def actor(self) -> str:
        """Label written to the audit trail."""
        if self.email:
            return self.email
        if self.user_id:
            return self.user_id
        return "system"

    def has_role(self, role: UserRole) -> bool:
        return role in self.roles

    @property
    def is_recipient(self) -> bool:
        return self.recipient_id is not None


SYSTEM_CALLER = CallerIdentity(roles=[UserRole.SYSTEM])


def originator_identity(
    user_id: Optional[str],
    roles: Optional[List[UserRole]] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> CallerIdentity:
    """Build the identity of an authenticated originator."""
    if not user_id:
        raise UnauthorizedError("Authentication required")
    return CallerIdentity(
        user_id=user_id,
        roles=roles or [UserRole.ORIGINATOR],
        ip_address=ip_address,
        user_agent=user_agent,
    )


def recipient_identity(
    recipient_id: int,
    email: str,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> CallerIdentity:
    """Build the identity of a recipient acting through their signing link."""
    return CallerIdentity(
        recipient_id=recipient_id,
        email=email,
        roles=[UserRole.RECIPIENT],
        ip_address=ip_address,
        user_agent=user_agent,
    )


def ensure_originator_access(caller: CallerIdentity, created_by: Optional[str]) -> None:
    """
    Check that the caller may manage a request.

    Admins and the system caller may manage any request; originators only
    the ones they created.
    """
    if caller.has_role(UserRole.ADMIN) or caller.has_role(UserRole.SYSTEM):
        return
    if caller.user_id is None or caller.user_id != created_by:
        raise ForbiddenError(
            message="Not authorized to manage this signature request",
            details={"created_by": created_by},
        )


def ensure_recipient_access(caller: CallerIdentity, recipient_id: int) -> None:
    """Check that the caller acts as ``recipient_id`` (or is the system)."""
    if caller.has_role(UserRole.SYSTEM):
        return
    if caller.recipient_id != recipient_id:
        raise ForbiddenError(
            message=f"Caller may not act as recipient {recipient_id}",
            details={"recipient_id": recipient_id},
        )
