"""
Notification Sender

Outbound delivery of verification codes. The two-factor core only asks for
"send this message to this destination over this channel"; transports live
here. Delivery is best effort: failures are logged and reported as False,
never raised back into code issuance.
"""

import asyncio
import logging
from typing import Protocol

import httpx

from gatekeeper.config import settings
from gatekeeper.services.email_service import EmailService

logger = logging.getLogger(__name__)

CHANNEL_EMAIL = "email"
CHANNEL_SMS = "sms"


class NotificationSender(Protocol):
    async def send(self, channel: str, destination: str, message: str) -> bool: ...


class DefaultNotificationSender:
    """E-mail over SMTP; SMS through an HTTP gateway when one is configured."""

    def __init__(
        self,
        email_service: EmailService | None = None,
        sms_gateway_url: str | None = None,
        sms_gateway_token: str | None = None,
        timeout: float = 10.0,
    ):
        self.email_service = email_service or EmailService()
        self.sms_gateway_url = sms_gateway_url if sms_gateway_url is not None else settings.sms_gateway_url
        self.sms_gateway_token = sms_gateway_token if sms_gateway_token is not None else settings.sms_gateway_token
        self.timeout = timeout

    async def send(self, channel: str, destination: str, message: str) -> bool:
        if channel == CHANNEL_EMAIL:
            return await self._send_email(destination, message)
        if channel == CHANNEL_SMS:
            return await self._send_sms(destination, message)
        logger.warning(f"Unknown notification channel: {channel}")
        return False

    async def _send_email(self, destination: str, message: str) -> bool:
        code = message
        expires_minutes = max(1, settings.verification_code_ttl_seconds // 60)
        return await asyncio.to_thread(self.email_service.send_verification_code, destination, code, expires_minutes)

    async def _send_sms(self, destination: str, message: str) -> bool:
        if not self.sms_gateway_url:
            logger.warning("SMS gateway not configured; verification SMS dropped")
            return False

        headers = {"Content-Type": "application/json"}
        if self.sms_gateway_token:
            headers["Authorization"] = f"Bearer {self.sms_gateway_token}"

        body = f"Your verification code is: {message}"
        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    self.sms_gateway_url,
                    json={"to": destination, "message": body},
                    headers=headers,
                    timeout=self.timeout,
                )
            if 200 <= response.status_code < 300:
                return True
            logger.warning(f"SMS gateway returned HTTP {response.status_code}")
        except httpx.TimeoutException:
            logger.warning("SMS gateway request timed out")
        except httpx.RequestError as e:
            logger.warning(f"SMS gateway request error: {e}")
        return False


_default_sender: DefaultNotificationSender | None = None


def get_notification_sender() -> NotificationSender:
    """FastAPI dependency for the process-wide notification sender."""
    global _default_sender
    if _default_sender is None:
        _default_sender = DefaultNotificationSender()
    return _default_sender
