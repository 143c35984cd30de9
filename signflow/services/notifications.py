"""Delivery of signature workflow notification intents as email."""

import logging
from typing import Iterable, List, Optional

from signflow.config.settings import Settings, get_settings
from signflow.services.email.email_service import EmailService, get_email_service
from signflow.services.email.providers.base import DeliveryResult, EmailAddress
from signflow.services.progress_service import NotificationIntent, NotificationKind

logger = logging.getLogger(__name__)


TEMPLATE_BY_KIND = {
    NotificationKind.SIGNATURE_REQUEST: "signature_request",
    NotificationKind.REMINDER: "signature_reminder",
    NotificationKind.YOUR_TURN: "signature_your_turn",
    NotificationKind.COMPLETED: "signature_completed",
}


def signing_url_for(base_url: str, access_token: str) -> str:
    return f"{base_url.rstrip('/')}/sign/{access_token}"


class SignatureNotifier:
    """
    Sends one email per notification intent.

    Delivery failures are logged and reported in the returned results; they
    never undo the workflow change that produced the intent.
    """

    def __init__(
        self,
        email_service: Optional[EmailService] = None,
        settings: Optional[Settings] = None,
    ):
        self.email_service = email_service or get_email_service()
        self.settings = settings or get_settings()

    def context_for(self, intent: NotificationIntent) -> dict:
        return {
            "name": intent.name,
            "title": intent.title,
            "message": intent.message,
            "signing_url": signing_url_for(self.settings.public_base_url, intent.access_token),
            "expires_at": intent.expires_at,
            "reminder_count": intent.reminder_count,
        }

    async def notify(self, intent: NotificationIntent) -> DeliveryResult:
        result = await self.email_service.send_template(
            TEMPLATE_BY_KIND[intent.kind],
            to=[EmailAddress(intent.email, intent.name)],
            context=self.context_for(intent),
            tags=["signature", intent.kind.value],
            metadata={"request_id": intent.request_id, "recipient_id": intent.recipient_id},
        )
        if result.success:
            logger.info(
                f"Sent {intent.kind.value} email for request {intent.request_id} "
                f"to recipient {intent.recipient_id}"
            )
        else:
            logger.warning(
                f"Failed to send {intent.kind.value} email for request {intent.request_id} "
                f"to recipient {intent.recipient_id}: {result.error_message}"
            )
        return result

    async def notify_all(self, intents: Iterable[NotificationIntent]) -> List[DeliveryResult]:
        return [await self.notify(intent) for intent in intents]
