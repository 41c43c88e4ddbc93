"""
Outbound WhatsApp transport interface.

Everything that replies to or notifies a user goes through send_text;
failures come back in MessageResult instead of being raised.
"""
import logging
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from typing import Optional

from incident_intake.services.phone import mask_phone, normalize_phone

logger = logging.getLogger(__name__)


@dataclass
class MessageResult:
    """Outcome of one send."""

    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    provider: Optional[str] = None


class WhatsAppTransport(ABC):
    """Sends WhatsApp text messages."""

    provider: str = "base"

    @abstractmethod
    async def send_text(self, to: str, body: str) -> MessageResult:
        """
        Send a text message.

        Args:
            to: recipient number, any formatting (27821234567)
            body: message text (WhatsApp markdown allowed)
        """
        pass

    def format_phone(self, phone: str) -> str:
        """Digits only."""
        return normalize_phone(phone)


class LogOnlyTransport(WhatsAppTransport):
    """
    Transport used when no WhatsApp credentials are configured.

    Logs instead of sending. The last max_kept messages stay available
    for inspection through .sent; sent_count keeps the running total.
    """

    provider = "log"

    def __init__(self, max_kept: int = 100):
        self._recent: deque[tuple[str, str]] = deque(maxlen=max_kept)
        self.sent_count = 0

    @property
    def sent(self) -> list[tuple[str, str]]:
        """(to, body) pairs, oldest first."""
        return list(self._recent)

    async def send_text(self, to: str, body: str) -> MessageResult:
        self._recent.append((to, body))
        self.sent_count += 1
        logger.info(f"[LogTransport] Would send to {mask_phone(to)}: {body[:80]!r}")
        return MessageResult(success=True, message_id=f"log-{self.sent_count}", provider=self.provider)
