"""Signature notification email: templates, providers and delivery."""

from signflow.services.email.email_service import EmailService, EmailServiceConfig, get_email_service
from signflow.services.email.providers.base import (
    DeliveryResult,
    EmailAddress,
    EmailProvider,
    EmailProviderType,
    MockEmailProvider,
)
from signflow.services.email.template_service import EmailTemplateService

__all__ = [
    "DeliveryResult",
    "EmailAddress",
    "EmailProvider",
    "EmailProviderType",
    "EmailService",
    "EmailServiceConfig",
    "EmailTemplateService",
    "MockEmailProvider",
    "get_email_service",
]
