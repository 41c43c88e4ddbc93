"""
Domain entities for incidents, categories and WhatsApp identities.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ActivityStatus(str, Enum):
    """Incident lifecycle."""

    UNASSIGNED = "Unassigned"
    OPEN = "Open"
    IN_PROGRESS = "In Progress"
    RESOLVED = "Resolved"


class UpdateType(str, Enum):
    PROGRESS = "progress"
    STATUS_CHANGE = "status_change"
    ASSIGNMENT = "assignment"
    COMPLETION = "completion"


class StaffRole(str, Enum):
    TEACHER = "Teacher"
    ADMIN = "Admin"
    MAINTENANCE = "Maintenance"
    SUPPORT_STAFF = "Support Staff"
    STAFF = "Staff"


@dataclass
class Category:
    """Incident taxonomy entry. Read-only for this service."""

    id: str
    name: str
    is_system: bool = False


@dataclass
class StaffUser:
    """Staff account a WhatsApp number can be linked to."""

    id: str
    name: str
    role: str = StaffRole.STAFF.value
    phone_number: Optional[str] = None


@dataclass
class WhatsAppUser:
    """
    WhatsApp identity keyed by phone number.

    linked_user_id is set by the out-of-band verification process, or when
    an unlinked number reports its first incident.
    """

    phone_number: str
    display_name: Optional[str] = None
    is_verified: bool = False
    linked_user_id: Optional[str] = None
    messages_in_window: int = 0
    window_start_time: Optional[datetime] = None
    last_message_at: Optional[datetime] = None
    is_blocked: bool = False


@dataclass
class ParsedActivityData:
    """
    Classifier output.

    Always fully populated and within length limits once sanitized.
    needs_review marks records produced without a real AI provider.
    """

    category_id: str
    subcategory: str
    location: str
    notes: str
    needs_review: bool = False


@dataclass(frozen=True)
class ActivityUpdate:
    """One entry of an activity's append-only update log."""

    author_id: str
    notes: str
    update_type: UpdateType = UpdateType.PROGRESS
    status_context: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class Activity:
    """Persisted incident."""

    id: str
    user_id: str
    category_id: str
    subcategory: str
    location: str
    notes: str = ""
    status: ActivityStatus = ActivityStatus.OPEN
    timestamp: datetime = field(default_factory=utcnow)
    assigned_to_user_id: Optional[str] = None
    assignment_instructions: Optional[str] = None
    resolution_notes: Optional[str] = None
    source_message_id: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    media_path: Optional[str] = None
    needs_review: bool = False
    updates: list[ActivityUpdate] = field(default_factory=list)

    @property
    def short_id(self) -> str:
        """8-character id prefix used in WhatsApp replies."""
        return self.id[:8]


def reference_number(activity: Activity, category: Optional[Category]) -> str:
    """Human reference like MAIN-3f2a."""
    prefix = category.name[:4].upper() if category and category.name else "TASK"
    return f"{prefix}-{activity.id[-4:]}"
