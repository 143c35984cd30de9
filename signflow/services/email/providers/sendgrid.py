"""SendGrid provider over the v3 mail send API."""

import logging
import os
from typing import Any, Dict, Optional

import httpx

from signflow.services.email.providers.base import (
    DeliveryResult,
    EmailMessage,
    EmailProvider,
    EmailProviderType,
)

logger = logging.getLogger(__name__)

# SendGrid accepts at most 10 categories per message
MAX_CATEGORIES = 10


class SendGridProvider(EmailProvider):
    """
    Sends through SendGrid.

    Config options (environment in brackets):
    - api_key [SENDGRID_API_KEY], required
    - sandbox_mode: validate without delivering
    - timeout: seconds per request
    """

    provider_type = EmailProviderType.SENDGRID
    API_BASE_URL = "https://api.sendgrid.com/v3"

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        config = config or {}
        self.api_key = config.get("api_key") or os.getenv("SENDGRID_API_KEY")
        if not self.api_key:
            raise ValueError("SendGrid API key is required")
        self.sandbox_mode = bool(config.get("sandbox_mode", False))
        self.timeout = float(config.get("timeout", 30.0))
        self._transport = transport

    async def send(self, message: EmailMessage) -> DeliveryResult:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.API_BASE_URL}/mail/send",
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json=self.build_payload(message),
                )
        except httpx.HTTPError as e:
            logger.error(f"SendGrid request for {message.recipients} failed: {e}")
            return DeliveryResult.failed(str(e), self.provider_type)

        if response.is_success:
            return DeliveryResult.sent(self.provider_type, response.headers.get("x-message-id"))

        try:
            errors = response.json().get("errors", [])
        except ValueError:
            errors = []
        error = errors[0].get("message") if errors else f"HTTP {response.status_code}"
        logger.warning(f"SendGrid rejected email to {message.recipients}: {error}")
        return DeliveryResult.failed(error, self.provider_type, status_code=response.status_code)

    def build_payload(self, message: EmailMessage) -> Dict[str, Any]:
        personalization: Dict[str, Any] = {
            "to": [{"email": a.email, "name": a.name or ""} for a in message.to],
        }
        if message.metadata:
            # custom_args must be strings; they come back on SendGrid event webhooks
            personalization["custom_args"] = {k: str(v) for k, v in message.metadata.items()}

        payload: Dict[str, Any] = {
            "personalizations": [personalization],
            "subject": message.subject,
            "content": [],
        }
        if message.sender:
            payload["from"] = {"email": message.sender.email, "name": message.sender.name or ""}
        if message.text_content:
            payload["content"].append({"type": "text/plain", "value": message.text_content})
        if message.html_content:
            payload["content"].append({"type": "text/html", "value": message.html_content})
        if message.tags:
            payload["categories"] = message.tags[:MAX_CATEGORIES]
        if self.sandbox_mode:
            payload["mail_settings"] = {"sandbox_mode": {"enable": True}}
        return payload
