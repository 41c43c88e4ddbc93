"""
MetaCloudTransport - WhatsApp Cloud API over the Graph API.
"""
import logging
from typing import Optional

import httpx

from incident_intake.core.config import settings
from incident_intake.services.phone import mask_phone

from .base import MessageResult, WhatsAppTransport

logger = logging.getLogger(__name__)

# Graph API base URL (no trailing slash)
GRAPH_API_BASE = "https://graph.facebook.com"


class MetaCloudTransport(WhatsAppTransport):
    """
    Sends messages from the business phone number registered on the WABA.
    """

    provider = "meta"

    def __init__(
        self,
        phone_number_id: str,
        access_token: str,
        api_version: Optional[str] = None,
        timeout: float = 30,
    ):
        self.phone_number_id = phone_number_id
        self.access_token = access_token
        self.api_version = api_version or settings.META_GRAPH_API_VERSION or "v21.0"
        self.base_url = f"{GRAPH_API_BASE}/{self.api_version}"
        self.timeout = timeout

    @property
    def messages_url(self) -> str:
        return f"{self.base_url}/{self.phone_number_id}/messages"

    @property
    def headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

    async def _post_message(self, payload: dict) -> MessageResult:
        from incident_intake.services.http_client import get_http_client

        try:
            client = await get_http_client()
            response = await client.post(
                self.messages_url,
                headers=self.headers,
                json=payload,
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()

            message_id = None
            if data.get("messages"):
                message_id = data["messages"][0].get("id")

            return MessageResult(success=True, message_id=message_id, provider=self.provider)

        except (httpx.HTTPError, ValueError) as e:
            error_msg = self._extract_error(e)
            logger.warning(
                f"[MetaCloud] Send to {mask_phone(payload.get('to'))} failed: {error_msg}"
            )
            return MessageResult(success=False, error=error_msg, provider=self.provider)

    def _extract_error(self, exc: Exception) -> str:
        """Readable error from an httpx exception."""
        if isinstance(exc, httpx.HTTPStatusError):
            try:
                error = exc.response.json().get("error", {})
                code = error.get("code", "unknown")
                msg = error.get("message", str(exc))
                return f"meta_error_{code}: {msg}"
            except (ValueError, AttributeError):
                return f"HTTP {exc.response.status_code}: {exc.response.text[:200]}"
        if isinstance(exc, httpx.TimeoutException):
            return "meta_timeout"
        if isinstance(exc, httpx.ConnectError):
            return "meta_connect_error"
        return str(exc)

    async def send_text(self, to: str, body: str) -> MessageResult:
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": self.format_phone(to),
            "type": "text",
            "text": {"preview_url": False, "body": body},
        }
        return await self._post_message(payload)
