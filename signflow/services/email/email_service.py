"""Templated email delivery with provider fallback."""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from signflow.services.email.providers.base import (
    DeliveryResult,
    EmailAddress,
    EmailMessage,
    EmailProvider,
    EmailProviderType,
    MockEmailProvider,
)
from signflow.services.email.providers.sendgrid import SendGridProvider
from signflow.services.email.template_service import EmailTemplateService

logger = logging.getLogger(__name__)


@dataclass
class EmailServiceConfig:
    primary_provider: EmailProviderType = EmailProviderType.MOCK
    fallback_provider: Optional[EmailProviderType] = None
    default_from_email: str = "no-reply@signflow.local"
    default_from_name: str = "SignFlow"
    provider_configs: Dict[EmailProviderType, Dict[str, Any]] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> "EmailServiceConfig":
        """
        EMAIL_PROVIDER / EMAIL_FALLBACK_PROVIDER pick ``sendgrid`` or ``mock``;
        unknown names fall back to ``mock`` for the primary and to none for
        the fallback.
        """
        def provider(name: str) -> Optional[EmailProviderType]:
            try:
                return EmailProviderType(name.lower())
            except ValueError:
                return None

        return cls(
            primary_provider=provider(os.getenv("EMAIL_PROVIDER", "mock")) or EmailProviderType.MOCK,
            fallback_provider=provider(os.getenv("EMAIL_FALLBACK_PROVIDER", "")),
            default_from_email=os.getenv("EMAIL_FROM_ADDRESS", "no-reply@signflow.local"),
            default_from_name=os.getenv("EMAIL_FROM_NAME", "SignFlow"),
            provider_configs={
                EmailProviderType.SENDGRID: {
                    "sandbox_mode": os.getenv("SENDGRID_SANDBOX", "false").lower() == "true",
                },
            },
        )


class EmailService:
    """
    Renders templates and hands messages to the primary provider, retrying
    once on the fallback provider when the primary reports a failure.
    """

    PROVIDER_CLASSES = {
        EmailProviderType.SENDGRID: SendGridProvider,
        EmailProviderType.MOCK: MockEmailProvider,
    }

    def __init__(
        self,
        config: Optional[EmailServiceConfig] = None,
        providers: Optional[Dict[EmailProviderType, EmailProvider]] = None,
        template_service: Optional[EmailTemplateService] = None,
    ):
        self.config = config or EmailServiceConfig.from_env()
        self.template_service = template_service or EmailTemplateService()
        self._providers: Dict[EmailProviderType, EmailProvider] = dict(providers or {})
        if not self._providers:
            self._init_providers()

    def _init_providers(self) -> None:
        for provider_type in (self.config.primary_provider, self.config.fallback_provider):
            if provider_type is None or provider_type in self._providers:
                continue
            try:
                self._providers[provider_type] = self.PROVIDER_CLASSES[provider_type](
                    self.config.provider_configs.get(provider_type, {})
                )
            except ValueError as e:
                logger.error(f"Email provider {provider_type.value} is misconfigured: {e}")
                continue
            logger.info(f"Initialized email provider: {provider_type.value}")

    @property
    def sender(self) -> EmailAddress:
        return EmailAddress(self.config.default_from_email, self.config.default_from_name or None)

    async def send_template(
        self,
        template_id: str,
        to: List[EmailAddress],
        context: Dict[str, Any],
        tags: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> DeliveryResult:
        """Render ``template_id`` with ``context`` and deliver it to ``to``."""
        subject, html_content, text_content = self.template_service.render(template_id, context)
        message = EmailMessage(
            to=to,
            subject=subject,
            html_content=html_content,
            text_content=text_content,
            sender=self.sender,
            tags=tags or [],
            metadata=metadata or {},
        )
        return await self.deliver(message)

    async def deliver(self, message: EmailMessage) -> DeliveryResult:
        result = None
        primary = self._providers.get(self.config.primary_provider)
        if primary is not None:
            result = await primary.send(message)
            if result.success:
                return result

        fallback = self._providers.get(self.config.fallback_provider) if self.config.fallback_provider else None
        if fallback is not None:
            reason = result.error_message if result else "primary provider unavailable"
            logger.warning(f"Retrying email to {message.recipients} on {fallback.provider_type.value}: {reason}")
            return await fallback.send(message)

        return result or DeliveryResult.failed("No email provider is configured")


_email_service: Optional[EmailService] = None


def get_email_service() -> EmailService:
    global _email_service
    if _email_service is None:
        _email_service = EmailService()
    return _email_service
