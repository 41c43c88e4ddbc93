"""
In-memory implementation of every repository interface.

Process-local and lost on restart. Used by tests and single-process
deployments; each method is free of awaits between read and write, so
concurrent coroutines cannot interleave inside one operation.
"""
import dataclasses
import uuid
from collections import OrderedDict
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
from incident_intake.services.phone import normalize_phone

from .base import (
    ActivityRepository,
    CategoryRepository,
    ProcessedMessageRepository,
    Repositories,
    StaffRepository,
    WhatsAppUserRepository,
)


def _new_id() -> str:
    return uuid.uuid4().hex


class InMemoryCategoryRepository(CategoryRepository):
    def __init__(self, categories: Optional[Iterable[Category]] = None):
        self._items: dict[str, Category] = {c.id: c for c in categories or []}

    async def list_all(self) -> List[Category]:
        return list(self._items.values())

    async def get_by_ids(self, ids: Iterable[str]) -> List[Category]:
        return [self._items[i] for i in ids if i in self._items]

    async def find_by_name(self, name: str) -> Optional[Category]:
        wanted = name.strip().lower()
        for category in self._items.values():
            if category.name.lower() == wanted:
                return category
        return None

    async def create(self, name: str, is_system: bool = False) -> Category:
        category = Category(id=_new_id(), name=name, is_system=is_system)
        self._items[category.id] = category
        return category


class InMemoryWhatsAppUserRepository(WhatsAppUserRepository):
    def __init__(self, users: Optional[Iterable[WhatsAppUser]] = None):
        self._items: dict[str, WhatsAppUser] = {u.phone_number: u for u in users or []}

    async def get_by_phone(self, phone_number: str) -> Optional[WhatsAppUser]:
        return self._items.get(phone_number)

    async def upsert(self, user: WhatsAppUser) -> WhatsAppUser:
        self._items[user.phone_number] = user
        return user


class InMemoryStaffRepository(StaffRepository):
    def __init__(self, users: Optional[Iterable[StaffUser]] = None):
        self._items: dict[str, StaffUser] = {u.id: u for u in users or []}

    async def get(self, user_id: str) -> Optional[StaffUser]:
        return self._items.get(user_id)

    async def get_by_phone(self, phone_number: str) -> Optional[StaffUser]:
        wanted = normalize_phone(phone_number)
        if not wanted:
            return None
        for user in self._items.values():
            if user.phone_number and normalize_phone(user.phone_number) == wanted:
                return user
        return None

    async def create(self, name: str, role: str, phone_number: Optional[str] = None) -> StaffUser:
        user = StaffUser(id=_new_id(), name=name, role=role, phone_number=phone_number)
        self._items[user.id] = user
        return user


class InMemoryActivityRepository(ActivityRepository):
    def __init__(self):
        # Insertion order == creation order
        self._items: "OrderedDict[str, Activity]" = OrderedDict()

    async def create(self, activity: Activity) -> Activity:
        if not activity.id:
            activity = dataclasses.replace(activity, id=_new_id())
        self._items[activity.id] = activity
        return activity

    async def get(self, activity_id: str) -> Optional[Activity]:
        return self._items.get(activity_id)

    async def find_by_prefix(
        self,
        prefix: str,
        assigned_to_user_id: Optional[str] = None,
    ) -> Optional[Activity]:
        prefix = prefix.strip().lower()
        if not prefix:
            return None
        for activity in self._newest_first():
            if not activity.id.lower().startswith(prefix):
                continue
            if assigned_to_user_id and activity.assigned_to_user_id != assigned_to_user_id:
                continue
            return activity
        return None

    async def list_by_reporter(self, user_id: str, limit: int = 10) -> List[Activity]:
        found = [a for a in self._newest_first() if a.user_id == user_id]
        return found[:limit]

    async def list_by_assignee(
        self,
        user_id: str,
        status: Optional[ActivityStatus] = None,
        limit: int = 15,
    ) -> List[Activity]:
        found = [
            a for a in self._newest_first()
            if a.assigned_to_user_id == user_id and (status is None or a.status == status)
        ]
        return found[:limit]

    async def count_by_status(self, since: Optional[datetime] = None) -> dict[str, int]:
        counts = {status.value: 0 for status in ActivityStatus}
        total = 0
        for activity in self._items.values():
            if since is not None and activity.timestamp < since:
                continue
            counts[activity.status.value] += 1
            total += 1
        counts["total"] = total
        return counts

    async def update(self, activity_id: str, **fields) -> Optional[Activity]:
        activity = self._items.get(activity_id)
        if activity is None:
            return None
        if "updates" in fields:
            raise ValueError("updates log is append-only, use append_update()")
        updated = dataclasses.replace(activity, **fields)
        self._items[activity_id] = updated
        return updated

    async def append_update(self, activity_id: str, update: ActivityUpdate) -> Optional[Activity]:
        activity = self._items.get(activity_id)
        if activity is None:
            return None
        activity.updates.append(update)
        return activity

    def _newest_first(self) -> List[Activity]:
        ordered = sorted(
            enumerate(self._items.values()),
            key=lambda pair: (pair[1].timestamp, pair[0]),
            reverse=True,
        )
        return [activity for _, activity in ordered]


class InMemoryProcessedMessageRepository(ProcessedMessageRepository):
    """Remembers the last max_entries message ids."""

    def __init__(self, max_entries: int = 10_000):
        self._seen: "OrderedDict[str, None]" = OrderedDict()
        self._max_entries = max_entries

    async def mark_processed(self, message_id: str) -> bool:
        if message_id in self._seen:
            return False
        self._seen[message_id] = None
        while len(self._seen) > self._max_entries:
            self._seen.popitem(last=False)
        return True


def create_in_memory_repositories(
    categories: Optional[Iterable[Category]] = None,
    staff: Optional[Iterable[StaffUser]] = None,
    whatsapp_users: Optional[Iterable[WhatsAppUser]] = None,
) -> Repositories:
    """Build a Repositories bundle backed by process memory."""
    return Repositories(
        categories=InMemoryCategoryRepository(categories),
        whatsapp_users=InMemoryWhatsAppUserRepository(whatsapp_users),
        staff=InMemoryStaffRepository(staff),
        activities=InMemoryActivityRepository(),
        processed_messages=InMemoryProcessedMessageRepository(),
    )
