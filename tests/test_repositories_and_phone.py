"""
Tests for in-memory repositories and phone helpers.
"""
from datetime import timedelta

import pytest

from incident_intake.repositories.memory import (
    InMemoryProcessedMessageRepository,
    create_in_memory_repositories,
)
from incident_intake.schemas.incidents import (
    Activity,
    ActivityStatus,
    ActivityUpdate,
    Category,
    reference_number,
    utcnow,
)
from incident_intake.services.phone import (
    format_phone_number,
    is_valid_phone,
    mask_phone,
    normalize_phone,
)


def make_activity(activity_id, minutes_ago=0, **fields):
    return Activity(
        id=activity_id,
        user_id=fields.pop("user_id", "staff-1"),
        category_id="cat-maint",
        subcategory="Plumbing Issue",
        location="Library",
        timestamp=utcnow() - timedelta(minutes=minutes_ago),
        **fields,
    )


class TestPhoneHelpers:
    def test_normalize(self):
        assert normalize_phone("+27 (82) 123-4567") == "27821234567"
        assert normalize_phone(None) == ""

    def test_valid_length(self):
        assert is_valid_phone("082 123 4567") is True
        assert is_valid_phone("12345") is False
        assert is_valid_phone("1" * 16) is False

    def test_format_local_numbers(self):
        assert format_phone_number("0821234567") == "+27821234567"
        assert format_phone_number("821234567") == "+27821234567"
        assert format_phone_number("+44 20 7946 0958") == "+442079460958"

    def test_mask(self):
        assert mask_phone("27821234567") == "*******4567"
        assert mask_phone("12") == "****"


class TestActivityRepository:
    """In-memory activity store."""

    @pytest.mark.asyncio
    async def test_prefix_lookup_prefers_newest(self):
        repos = create_in_memory_repositories()
        await repos.activities.create(make_activity("abc111", minutes_ago=10))
        await repos.activities.create(make_activity("abc222", minutes_ago=1))

        found = await repos.activities.find_by_prefix("ABC")

        assert found.id == "abc222"

    @pytest.mark.asyncio
    async def test_prefix_lookup_filtered_by_assignee(self):
        repos = create_in_memory_repositories()
        await repos.activities.create(make_activity("abc111", assigned_to_user_id="staff-2"))
        await repos.activities.create(make_activity("abc222"))

        found = await repos.activities.find_by_prefix("abc", assigned_to_user_id="staff-2")

        assert found.id == "abc111"
        assert await repos.activities.find_by_prefix("  ") is None

    @pytest.mark.asyncio
    async def test_count_by_status_since(self):
        repos = create_in_memory_repositories()
        await repos.activities.create(make_activity("a1", status=ActivityStatus.RESOLVED))
        await repos.activities.create(make_activity("a2"))
        await repos.activities.create(make_activity("a3", minutes_ago=60 * 24 * 10))

        counts = await repos.activities.count_by_status(since=utcnow() - timedelta(days=7))

        assert counts["total"] == 2
        assert counts["Resolved"] == 1
        assert counts["Open"] == 1

    @pytest.mark.asyncio
    async def test_updates_are_append_only(self):
        repos = create_in_memory_repositories()
        await repos.activities.create(make_activity("a1"))

        with pytest.raises(ValueError):
            await repos.activities.update("a1", updates=[])

        await repos.activities.append_update("a1", ActivityUpdate(author_id="staff-1", notes="On it"))
        stored = await repos.activities.get("a1")
        assert [u.notes for u in stored.updates] == ["On it"]

    @pytest.mark.asyncio
    async def test_update_missing(self):
        repos = create_in_memory_repositories()
        assert await repos.activities.update("nope", status=ActivityStatus.RESOLVED) is None


class TestProcessedMessages:
    @pytest.mark.asyncio
    async def test_first_mark_wins(self):
        repo = InMemoryProcessedMessageRepository()

        assert await repo.mark_processed("wamid.1") is True
        assert await repo.mark_processed("wamid.1") is False

    @pytest.mark.asyncio
    async def test_oldest_ids_are_forgotten(self):
        repo = InMemoryProcessedMessageRepository(max_entries=2)
        for message_id in ("m1", "m2", "m3"):
            await repo.mark_processed(message_id)

        assert await repo.mark_processed("m1") is True
        assert await repo.mark_processed("m3") is False


class TestReferenceNumber:
    def test_uses_category_prefix(self):
        activity = make_activity("0123456789abcdef")

        assert reference_number(activity, Category(id="c", name="Maintenance")) == "MAIN-cdef"
        assert activity.short_id == "01234567"
