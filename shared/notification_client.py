"""
WhatsApp notification client for reminder delivery.

This module provides the NotificationClient class, a thin wrapper around the
messaging provider HTTP API (WHATSAPP_API_URL / WHATSAPP_API_TOKEN). Delivery
failures are reported through SendResult and never raised, so a dispatcher
can record them on the reminder row.
"""

import logging
from dataclasses import dataclass

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from shared.config import get_settings

logger = logging.getLogger(__name__)

SUPPORTED_CHANNELS = {"whatsapp"}


@dataclass(frozen=True)
class SendResult:
    """Outcome of one send attempt."""

    ok: bool
    note: str | None = None


class NotificationClient:
    """
    Client for the WhatsApp messaging provider.

    send(to, message) -> SendResult(ok, note)
    """

    def __init__(self, timeout: float = 10.0):
        settings = get_settings()
        self.api_url = settings.WHATSAPP_API_URL
        self.api_token = settings.WHATSAPP_API_TOKEN
        self.timeout = timeout

        self.headers = {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        }

    @property
    def configured(self) -> bool:
        return bool(self.api_url and self.api_token)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _post(self, to: str, message: str) -> httpx.Response:
        async with httpx.AsyncClient() as client:
            return await client.post(
                self.api_url,
                json={"to": to, "message": message},
                headers=self.headers,
                timeout=self.timeout,
            )

    async def send(self, to: str, message: str) -> SendResult:
        """
        Send a text message.

        Args:
            to: E.164 phone number
            message: Message body

        Returns:
            SendResult(ok=True) on a 2xx response, otherwise ok=False with a note
        """
        if not self.configured:
            return SendResult(ok=False, note="no provider configured")

        try:
            response = await self._post(to, message)
        except httpx.HTTPError as e:
            logger.error(f"HTTP error sending WhatsApp message to {to}: {e}")
            return SendResult(ok=False, note=f"{type(e).__name__}: {e}")

        if response.is_success:
            logger.info(f"WhatsApp message sent to {to}")
            return SendResult(ok=True)

        logger.warning(
            f"WhatsApp provider rejected message to {to}: "
            f"status={response.status_code} body={response.text[:200]}"
        )
        return SendResult(ok=False, note=f"provider status {response.status_code}")
