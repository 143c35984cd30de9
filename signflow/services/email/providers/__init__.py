"""Email transports."""

from signflow.services.email.providers.base import (
    DeliveryResult,
    EmailAddress,
    EmailMessage,
    EmailProvider,
    EmailProviderType,
    MockEmailProvider,
)
from signflow.services.email.providers.sendgrid import SendGridProvider

__all__ = [
    "DeliveryResult",
    "EmailAddress",
    "EmailMessage",
    "EmailProvider",
    "EmailProviderType",
    "MockEmailProvider",
    "SendGridProvider",
]
