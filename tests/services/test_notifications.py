"""
Tests for notification fan-out and the activity lifecycle.
"""
import pytest
from unittest.mock import AsyncMock

from incident_intake.core.exceptions import NotFoundError
from incident_intake.schemas.incidents import (
    ActivityStatus,
    ParsedActivityData,
    UpdateType,
)
from incident_intake.services.notifications import (
    AssignmentOptions,
    build_confirmation_message,
    clean_phone,
    notes_preview,
)
from incident_intake.services.whatsapp.base import MessageResult


def sent_to(transport, phone):
    return [body for to, body in transport.sent if to == phone]


@pytest.fixture
def parsed():
    return ParsedActivityData(
        category_id="cat-maint",
        subcategory="Window Repair",
        location="Classroom 5A",
        notes="Window cracked after the storm",
    )


class TestHelpers:
    def test_clean_phone(self):
        assert clean_phone("+27 (82) 123-4567") == "+27821234567"
        assert clean_phone(None) == ""

    def test_notes_preview(self):
        assert notes_preview("short") == "short"
        assert notes_preview("x" * 250) == "x" * 200 + "..."


class TestConfirmation:
    """Reporter confirmation after ingestion."""

    @pytest.mark.asyncio
    async def test_confirmation_message(self, activities, notifier, transport, categories, parsed):
        activity = await activities.create("staff-teacher", parsed)

        result = await notifier.send_incident_confirmation(activity, "27821234567")

        assert result.success is True
        [body] = sent_to(transport, "27821234567")
        assert body == build_confirmation_message(activity, categories[0])
        assert body.startswith("✅ *Incident Report Logged*")
        assert f"MAIN-{activity.id[-4:]}" in body
        assert "📊 **Status:** Open" in body

    @pytest.mark.asyncio
    async def test_short_phone_is_rejected(self, activities, notifier, transport, parsed):
        activity = await activities.create("staff-teacher", parsed)

        result = await notifier.send_incident_confirmation(activity, "12345")

        assert result.success is False
        assert "Invalid phone number format" in result.error
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_transport_failure_is_returned(self, activities, notifier, transport, parsed):
        activity = await activities.create("staff-teacher", parsed)
        transport.send_text = AsyncMock(return_value=MessageResult(success=False, error="meta_timeout"))

        result = await notifier.send_incident_confirmation(activity, "27821234567")

        assert result.success is False
        assert result.error == "meta_timeout"


class TestAssignment:
    @pytest.mark.asyncio
    async def test_assign_notifies_assignee(self, activities, repositories, transport, parsed):
        activity = await activities.create("staff-teacher", parsed)

        updated = await activities.assign(
            activity.id,
            "staff-maint",
            actor_id="staff-admin",
            instructions="Bring a ladder",
            options=AssignmentOptions(priority="urgent"),
        )

        assert updated.status == ActivityStatus.IN_PROGRESS
        assert updated.assignment_instructions == "Bring a ladder"
        [body] = sent_to(transport, "27820000002")
        assert body.startswith("🚨 URGENT: 🎯 *New Task Assignment*")
        assert "👤 **Reported by:** Ms Naidoo" in body
        assert "Bring a ladder" in body

        stored = await repositories.activities.get(activity.id)
        assert stored.updates[-1].update_type == UpdateType.ASSIGNMENT
        assert stored.updates[-1].status_context == "Open -> In Progress"

    @pytest.mark.asyncio
    async def test_assignee_without_valid_phone(self, activities, repositories, transport, parsed):
        await repositories.staff.create("New Hire", "Maintenance", phone_number="0821")
        hire = await repositories.staff.get_by_phone("0821")
        activity = await activities.create("staff-teacher", parsed)

        await activities.assign(activity.id, hire.id, actor_id="staff-admin")

        assert transport.sent == []
        assert (await repositories.activities.get(activity.id)).assigned_to_user_id == hire.id


class TestStatusChange:
    @pytest.mark.asyncio
    async def test_both_parties_notified_except_actor(self, activities, transport, parsed):
        activity = await activities.create("staff-teacher", parsed)
        await activities.assign(activity.id, "staff-maint", actor_id="staff-admin", notify=False)

        _, batch = await activities.change_status(
            activity.id, ActivityStatus.RESOLVED, actor_id="staff-admin", notes="Glass replaced"
        )

        assert batch.success is True
        reporter_msg = sent_to(transport, "27820000003")[0]
        assignee_msg = sent_to(transport, "27820000002")[0]
        assert "✅ **Task Completed!**" in reporter_msg
        assert "💡 **Resolution:** Glass replaced" in reporter_msg
        assert assignee_msg.startswith("✅ **Task Marked Complete:")

    @pytest.mark.asyncio
    async def test_actor_is_skipped(self, activities, transport, parsed):
        activity = await activities.create("staff-teacher", parsed)
        await activities.assign(activity.id, "staff-maint", actor_id="staff-admin", notify=False)

        _, batch = await activities.change_status(
            activity.id, ActivityStatus.RESOLVED, actor_id="staff-maint", notes="Done"
        )

        assert batch.assignee_notification is None
        assert batch.reporter_notification.success is True
        assert sent_to(transport, "27820000002") == []

    @pytest.mark.asyncio
    async def test_failed_delivery_reported_in_errors(self, activities, repositories, transport, parsed):
        await repositories.staff.create("No Phone", "Teacher", phone_number="123")
        reporter = await repositories.staff.get_by_phone("123")
        activity = await activities.create(reporter.id, parsed)

        updated, batch = await activities.change_status(activity.id, ActivityStatus.IN_PROGRESS)

        assert updated.status == ActivityStatus.IN_PROGRESS
        assert batch.success is False
        assert batch.errors == ["Failed to notify reporter: Invalid phone number format for No Phone"]

    @pytest.mark.asyncio
    async def test_recipient_without_phone_is_reported(self, activities, repositories, transport, parsed):
        reporter = await repositories.staff.create("No Number", "Teacher")
        activity = await activities.create(reporter.id, parsed)
        await activities.assign(activity.id, "staff-maint", notify=False)

        _, batch = await activities.change_status(activity.id, ActivityStatus.RESOLVED, actor_id="staff-admin")

        assert batch.success is False
        assert batch.reporter_notification.success is False
        assert batch.errors == ["Failed to notify reporter: No Number has no phone number"]
        assert batch.assignee_notification.success is True
        assert len(sent_to(transport, "27820000002")) == 1

    @pytest.mark.asyncio
    async def test_missing_activity(self, activities):
        with pytest.raises(NotFoundError):
            await activities.change_status("nope", ActivityStatus.RESOLVED)


class TestUpdates:
    @pytest.mark.asyncio
    async def test_assignee_update_goes_to_reporter(self, activities, transport, parsed):
        activity = await activities.create("staff-teacher", parsed)
        await activities.assign(activity.id, "staff-maint", notify=False)

        updated, batch = await activities.add_update(activity.id, "staff-maint", "Ordered new glass")

        assert batch.success is True
        [body] = sent_to(transport, "27820000003")
        assert "👤 **Updated by:** Sipho Maintenance" in body
        assert "Ordered new glass" in body
        assert body.endswith("We'll keep you updated on progress.")
        assert updated.updates[-1].notes == "Ordered new glass"

    @pytest.mark.asyncio
    async def test_reporter_update_goes_to_assignee(self, activities, transport, parsed):
        activity = await activities.create("staff-teacher", parsed)
        await activities.assign(activity.id, "staff-maint", notify=False)

        await activities.add_update(activity.id, "staff-teacher", "It is raining in now")

        [body] = sent_to(transport, "27820000002")
        assert "The reporter has provided additional information." in body
