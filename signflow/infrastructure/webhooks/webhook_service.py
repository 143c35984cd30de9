"""
Webhook Infrastructure Service

Outbound webhook delivery for signature request events, with HMAC signatures
and exponential backoff retry.
"""

import asyncio
import hashlib
import hmac
import logging
import os
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

import httpx
from pydantic import BaseModel, Field

from signflow.models.signature_request import RecipientStatus, SignatureRequest

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration
# =============================================================================

class WebhookConfig(BaseModel):
    """Delivery, retry and signing settings for outbound webhooks."""

    # Delivery settings
    timeout_seconds: float = Field(default=10.0, description="Request timeout")
    max_payload_bytes: int = Field(default=256 * 1024, description="Largest event body sent")

    # Retry settings
    max_retries: int = Field(default=3, description="Retries after the first attempt")
    first_retry_delay: float = Field(default=1.0, description="Seconds before the first retry")
    max_retry_delay: float = Field(default=60.0, description="Max delay")
    backoff_factor: float = Field(default=2.0, description="Delay growth per retry")

    # Security
    signing_secret: str = Field(
        default_factory=lambda: os.getenv("WEBHOOK_SIGNING_SECRET", ""),
        description="HMAC secret shared with receivers",
    )
    signature_header: str = Field(default="X-SignFlow-Signature", description="Signature header name")
    timestamp_header: str = Field(default="X-SignFlow-Timestamp", description="Timestamp header")


# =============================================================================
# Enums
# =============================================================================

class WebhookEventType(str, Enum):
    """Request events a webhook can subscribe to."""

    SIGNED = "signed"
    COMPLETED = "completed"
    EXPIRED = "expired"


class DeliveryStatus(str, Enum):
    """Webhook delivery status."""

    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"


# =============================================================================
# Models
# =============================================================================

class WebhookPayload(BaseModel):
    """Webhook event payload."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    event_type: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    data: Dict[str, Any]

    version: str = "1.0"
    source: str = "signflow"


class DeliveryAttempt(BaseModel):
    """One POST of an event to a receiver."""

    attempt_number: int
    status: DeliveryStatus
    response_code: Optional[int] = None
    error_message: Optional[str] = None
    duration_ms: Optional[int] = None


class WebhookDelivery(BaseModel):
    """All attempts made for one event."""

    url: str
    payload: WebhookPayload
    status: DeliveryStatus = DeliveryStatus.PENDING
    attempts: List[DeliveryAttempt] = Field(default_factory=list)


# =============================================================================
# Signature
# =============================================================================

class WebhookSignature:
    """HMAC-SHA256 signature generation and verification for webhooks."""

    def generate(self, payload: str, secret: str, timestamp: Optional[int] = None) -> str:
        """
        Generate HMAC signature for payload.

        Signature format: t={timestamp},v1={signature}
        """
        if timestamp is None:
            timestamp = int(time.time())
        signed_payload = f"{timestamp}.{payload}"
        signature = hmac.new(secret.encode(), signed_payload.encode(), hashlib.sha256).hexdigest()
        return f"t={timestamp},v1={signature}"

    def verify(self, payload: str, signature_header: str, secret: str, tolerance_seconds: int = 300) -> bool:
        """Return True if the signature matches and is within the time tolerance."""
        try:
            parts = dict(p.split("=", 1) for p in signature_header.split(","))
            timestamp = int(parts.get("t", 0))
        except ValueError:
            return False
        received_signature = parts.get("v1", "")

        if abs(int(time.time()) - timestamp) > tolerance_seconds:
            return False

        expected = self.generate(payload, secret, timestamp).split("v1=", 1)[1]
        return hmac.compare_digest(expected, received_signature)


# =============================================================================
# Payload Building
# =============================================================================

def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def build_request_event_data(request: SignatureRequest) -> Dict[str, Any]:
    """Request summary plus one entry per recipient, ready for JSON."""
    recipients = sorted(request.recipients, key=lambda r: r.signing_order)
    return {
        "request_id": request.id,
        "external_id": request.external_id,
        "title": request.title,
        "document_ref": request.document_ref,
        "status": request.status,
        "created_at": _iso(request.created_at),
        "completed_at": _iso(request.completed_at),
        "expires_at": _iso(request.expires_at),
        "signed_count": sum(1 for r in recipients if r.status == RecipientStatus.SIGNED.value),
        "recipients": [
            {
                "name": r.name,
                "email": r.email,
                "signing_order": r.signing_order,
                "status": r.status,
                "signed_at": _iso(r.signed_at),
            }
            for r in recipients
        ],
    }


def subscribed(request: SignatureRequest, event: WebhookEventType) -> bool:
    return bool(request.webhook_url) and event.value in (request.webhook_events or [])


# =============================================================================
# Webhook Service
# =============================================================================

class WebhookService:
    """Delivers request events to the request's webhook URL with retries."""

    def __init__(self, config: Optional[WebhookConfig] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config or WebhookConfig()
        self.signature = WebhookSignature()
        self._transport = transport

    async def deliver(self, url: str, event_type: str, data: Dict[str, Any]) -> WebhookDelivery:
        """POST the event to ``url``; retry failures with exponential backoff."""
        payload = WebhookPayload(event_type=event_type, data=data)
        delivery = WebhookDelivery(url=url, payload=payload)
        payload_json = payload.model_dump_json()

        if len(payload_json) > self.config.max_payload_bytes:
            delivery.status = DeliveryStatus.FAILED
            delivery.attempts.append(DeliveryAttempt(
                attempt_number=1,
                status=DeliveryStatus.FAILED,
                error_message=f"Event body is {len(payload_json)} bytes, limit is {self.config.max_payload_bytes}",
            ))
            logger.warning(f"Webhook payload for {event_type} too large, not delivered")
            return delivery

        max_attempts = self.config.max_retries + 1
        async with httpx.AsyncClient(timeout=self.config.timeout_seconds, transport=self._transport) as client:
            for attempt in range(max_attempts):
                result = await self._attempt_delivery(client, url, payload, payload_json, attempt + 1)
                delivery.attempts.append(result)
                if result.status == DeliveryStatus.DELIVERED:
                    delivery.status = DeliveryStatus.DELIVERED
                    return delivery

                if attempt < max_attempts - 1:
                    delay = self._calculate_retry_delay(attempt)
                    logger.warning(
                        f"Webhook delivery to {url} failed ({result.error_message}), "
                        f"retrying in {delay}s (attempt {attempt + 1}/{max_attempts})"
                    )
                    await asyncio.sleep(delay)

        delivery.status = DeliveryStatus.FAILED
        logger.error(f"Webhook delivery of {event_type} to {url} failed after {max_attempts} attempts")
        return delivery

    async def _attempt_delivery(
        self,
        client: httpx.AsyncClient,
        url: str,
        payload: WebhookPayload,
        payload_json: str,
        attempt_number: int,
    ) -> DeliveryAttempt:
        start_time = time.time()
        timestamp = int(time.time())
        headers = {
            "Content-Type": "application/json",
            self.config.signature_header: self.signature.generate(payload_json, self.config.signing_secret, timestamp),
            self.config.timestamp_header: str(timestamp),
            "User-Agent": "SignFlow-Webhook/1.0",
            "X-Webhook-ID": payload.id,
            "X-Delivery-Attempt": str(attempt_number),
        }

        try:
            response = await client.post(url, content=payload_json, headers=headers)
        except httpx.TimeoutException as e:
            status, code, error = DeliveryStatus.FAILED, None, f"Timeout: {e}"
        except httpx.RequestError as e:
            status, code, error = DeliveryStatus.FAILED, None, f"Request error: {e}"
        else:
            code = response.status_code
            if 200 <= code < 300:
                status, error = DeliveryStatus.DELIVERED, None
            else:
                status, error = DeliveryStatus.FAILED, f"HTTP {code}: {response.reason_phrase}"

        return DeliveryAttempt(
            attempt_number=attempt_number,
            status=status,
            response_code=code,
            error_message=error,
            duration_ms=int((time.time() - start_time) * 1000),
        )

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt + 1``, capped at ``max_retry_delay``."""
        delay = self.config.first_retry_delay * (self.config.backoff_factor ** attempt)
        return min(delay, self.config.max_retry_delay)


# Singleton instance
_webhook_service: Optional[WebhookService] = None


def get_webhook_service() -> WebhookService:
    """Process-wide service using environment configuration."""
    global _webhook_service
    if _webhook_service is None:
        _webhook_service = WebhookService()
    return _webhook_service
