"""
Repository interfaces.

The ingestion pipeline never talks to storage directly; it goes through these
interfaces. InMemoryStore (repositories.memory) implements all of them.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from incident_intake.schemas.incidents import (
    Activity,
    ActivityStatus,
    ActivityUpdate,
    Category,
    StaffUser,
    WhatsAppUser,
)


class CategoryRepository(ABC):
    """Read access to the category taxonomy."""

    @abstractmethod
    async def list_all(self) -> List[Category]:
        pass

    @abstractmethod
    async def get_by_ids(self, ids: Iterable[str]) -> List[Category]:
        """Return the categories whose id is in ids (unknown ids ignored)."""
        pass

    @abstractmethod
    async def find_by_name(self, name: str) -> Optional[Category]:
        """Case-insensitive exact name lookup."""
        pass

    @abstractmethod
    async def create(self, name: str, is_system: bool = False) -> Category:
        pass


class WhatsAppUserRepository(ABC):
    @abstractmethod
    async def get_by_phone(self, phone_number: str) -> Optional[WhatsAppUser]:
        pass

    @abstractmethod
    async def upsert(self, user: WhatsAppUser) -> WhatsAppUser:
        """Insert or replace the record keyed by phone_number."""
        pass


class StaffRepository(ABC):
    @abstractmethod
    async def get(self, user_id: str) -> Optional[StaffUser]:
        pass

    @abstractmethod
    async def get_by_phone(self, phone_number: str) -> Optional[StaffUser]:
        """Lookup by phone; formatting differences are ignored."""
        pass

    @abstractmethod
    async def create(self, name: str, role: str, phone_number: Optional[str] = None) -> StaffUser:
        pass


class ActivityRepository(ABC):
    """
    Incident storage.

    Status and assignment changes go through update(); the updates log only
    grows through append_update().
    """

    @abstractmethod
    async def create(self, activity: Activity) -> Activity:
        pass

    @abstractmethod
    async def get(self, activity_id: str) -> Optional[Activity]:
        pass

    @abstractmethod
    async def find_by_prefix(
        self,
        prefix: str,
        assigned_to_user_id: Optional[str] = None,
    ) -> Optional[Activity]:
        """Most recent activity whose id starts with prefix."""
        pass

    @abstractmethod
    async def list_by_reporter(self, user_id: str, limit: int = 10) -> List[Activity]:
        pass

    @abstractmethod
    async def list_by_assignee(
        self,
        user_id: str,
        status: Optional[ActivityStatus] = None,
        limit: int = 15,
    ) -> List[Activity]:
        pass

    @abstractmethod
    async def count_by_status(self, since: Optional[datetime] = None) -> dict[str, int]:
        """Counts per status value plus a 'total' key."""
        pass

    @abstractmethod
    async def update(self, activity_id: str, **fields) -> Optional[Activity]:
        pass

    @abstractmethod
    async def append_update(self, activity_id: str, update: ActivityUpdate) -> Optional[Activity]:
        pass


class ProcessedMessageRepository(ABC):
    """Idempotency keys of inbound platform messages."""

    @abstractmethod
    async def mark_processed(self, message_id: str) -> bool:
        """
        Record message_id.

        Returns:
            True if this is the first time the id is seen, False for a duplicate
        """
        pass


@dataclass
class Repositories:
    """Bundle handed to services that need several repositories."""

    categories: CategoryRepository
    whatsapp_users: WhatsAppUserRepository
    staff: StaffRepository
    activities: ActivityRepository
    processed_messages: ProcessedMessageRepository
