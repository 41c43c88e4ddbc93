"""
Meta customer-service window tracking.

Free-form replies are free for FREE_WINDOW_HOURS after the user's last
inbound message. Each inbound message restarts the window.
"""
from datetime import datetime, timedelta
from typing import Optional

from incident_intake.core.config import settings
from incident_intake.schemas.incidents import WhatsAppUser, utcnow

MAX_FREE_MESSAGES = 1000


def refresh_window(user: WhatsAppUser, now: Optional[datetime] = None) -> WhatsAppUser:
    """Inbound message: restart the window and reset the outbound counter."""
    now = now or utcnow()
    user.window_start_time = now
    user.messages_in_window = 0
    user.last_message_at = now
    return user


def record_outbound(user: WhatsAppUser) -> WhatsAppUser:
    user.messages_in_window += 1
    return user


def _window_end(user: WhatsAppUser) -> Optional[datetime]:
    if user.window_start_time is None:
        return None
    return user.window_start_time + timedelta(hours=settings.FREE_WINDOW_HOURS)


def is_within_free_window(user: WhatsAppUser, now: Optional[datetime] = None) -> bool:
    end = _window_end(user)
    if end is None:
        return False
    return (now or utcnow()) < end and user.messages_in_window < MAX_FREE_MESSAGES


def remaining_window_minutes(user: WhatsAppUser, now: Optional[datetime] = None) -> int:
    end = _window_end(user)
    if end is None:
        return 0
    remaining = (end - (now or utcnow())).total_seconds() / 60
    return max(0, int(remaining))
