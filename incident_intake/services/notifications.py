"""
WhatsApp notifications for staff and reporters.

Delivery failures are returned in the result objects and logged, never
raised: a failed notification must not undo the change that triggered it.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from incident_intake.repositories.base import Repositories
from incident_intake.schemas.incidents import (
    Activity,
    ActivityStatus,
    Category,
    StaffUser,
    UpdateType,
    reference_number,
    utcnow,
)
from incident_intake.services.phone import mask_phone
from incident_intake.services.whatsapp.base import WhatsAppTransport

logger = logging.getLogger(__name__)

MIN_PHONE_DIGITS = 10
NOTES_PREVIEW_CHARS = 200


@dataclass
class NotificationResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class NotificationBatchResult:
    """Outcome of a fan-out to reporter and assignee."""

    reporter_notification: Optional[NotificationResult] = None
    assignee_notification: Optional[NotificationResult] = None
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class AssignmentOptions:
    priority: str = "normal"  # "urgent" adds a banner
    custom_message: Optional[str] = None
    include_instructions: bool = True


def clean_phone(phone: Optional[str]) -> str:
    """Keep digits and '+'."""
    return "".join(ch for ch in (phone or "") if ch.isdigit() or ch == "+")


def format_time(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M")


def notes_preview(notes: str) -> str:
    if len(notes) > NOTES_PREVIEW_CHARS:
        return notes[:NOTES_PREVIEW_CHARS] + "..."
    return notes


def build_assignment_message(
    activity: Activity,
    category: Optional[Category],
    reporter: Optional[StaffUser],
    options: AssignmentOptions,
) -> str:
    prefix = "🚨 URGENT: " if options.priority == "urgent" else ""
    title = options.custom_message or "New Task Assignment"
    category_name = category.name if category else "Task"

    message = (
        f"{prefix}🎯 *{title}*\n\n"
        f"📋 **Reference:** {reference_number(activity, category)}\n"
        f"🏷️ **Category:** {category_name} - {activity.subcategory}\n"
        f"📍 **Location:** {activity.location}\n"
        f"👤 **Reported by:** {reporter.name if reporter else 'Unknown'}\n"
        f"📅 **Created:** {format_time(activity.timestamp)}"
    )
    if activity.assignment_instructions:
        message += f"\n\n📝 **Instructions:**\n{activity.assignment_instructions}"
    if activity.notes and activity.notes.strip():
        message += f"\n\n💬 **Details:**\n{notes_preview(activity.notes)}"
    if options.include_instructions:
        message += (
            "\n\n🔧 **Next Steps:**\n"
            '• Reply with "Starting" to acknowledge\n'
            '• Reply with "Update: [message]" for progress updates\n'
            '• Reply with "Complete" when finished\n\n'
            "📞 Need help? Contact your supervisor or reply with any questions."
        )
    return message


def build_status_message(
    activity: Activity,
    category: Optional[Category],
    old_status: str,
    new_status: str,
    resolution_notes: Optional[str] = None,
) -> str:
    message = (
        f"📊 *Status Update: {reference_number(activity, category)}*\n\n"
        f"🏷️ **Task:** {activity.subcategory}\n"
        f"📍 **Location:** {activity.location}\n"
        f"📈 **Status:** {old_status} → **{new_status}**\n"
        f"⏰ **Updated:** {format_time(utcnow())}\n\n"
    )
    if new_status == ActivityStatus.RESOLVED.value:
        message += "✅ **Task Completed!**\n"
        if resolution_notes:
            message += f"💡 **Resolution:** {resolution_notes}\n"
        message += "\nThank you for your patience. The issue has been resolved."
    elif new_status == ActivityStatus.IN_PROGRESS.value:
        message += (
            "🔄 **Work Started**\n\nOur team is now working on this issue. "
            "You'll receive updates as progress is made."
        )
    elif new_status == ActivityStatus.OPEN.value:
        message += (
            "📋 **Task Opened**\n\nThis issue has been logged and will be assigned "
            "to a team member soon."
        )
    return message


def build_completion_message(
    activity: Activity,
    category: Optional[Category],
    resolution_notes: Optional[str],
) -> str:
    resolution = f"💡 **Resolution:** {resolution_notes}\n\n" if resolution_notes else ""
    return (
        f"✅ **Task Marked Complete: {reference_number(activity, category)}**\n\n"
        f"🏷️ **Task:** {activity.subcategory}\n"
        f"📍 **Location:** {activity.location}\n\n"
        f"{resolution}Great work completing this task!"
    )


def build_update_message(
    activity: Activity,
    category: Optional[Category],
    author: Optional[StaffUser],
    notes: str,
    update_type: UpdateType,
) -> str:
    status_line = (
        "✅ **Status:** Task completed"
        if update_type == UpdateType.COMPLETION
        else "🔄 **Status:** In progress"
    )
    return (
        f"📋 *Update: {reference_number(activity, category)}*\n\n"
        f"🏷️ **Task:** {activity.subcategory}\n"
        f"📍 **Location:** {activity.location}\n"
        f"👤 **Updated by:** {author.name if author else 'System'}\n"
        f"⏰ **Time:** {format_time(utcnow())}\n\n"
        f"💬 **Update:**\n{notes}\n\n"
        f"{status_line}"
    )


def build_confirmation_message(activity: Activity, category: Optional[Category]) -> str:
    category_name = category.name if category else "General"
    ref = reference_number(activity, category)
    return (
        "✅ *Incident Report Logged*\n\n"
        f"📋 **Reference:** {ref}\n"
        f"🏷️ **Category:** {category_name} - {activity.subcategory}\n"
        f"📍 **Location:** {activity.location}\n"
        f"⏰ **Reported:** {format_time(activity.timestamp)}\n"
        f"📊 **Status:** {activity.status.value}\n\n"
        "Your incident has been successfully recorded and will be reviewed by our team.\n\n"
        f"Type /status {ref} to check updates."
    )


class NotificationDispatcher:
    """
    Builds and sends notification messages.

    Args:
        repositories: used to load activity, category and people
        transport: outbound WhatsApp channel
    """

    def __init__(self, repositories: Repositories, transport: WhatsAppTransport):
        self.repos = repositories
        self.transport = transport

    async def _send(self, phone: Optional[str], body: str, recipient: str) -> NotificationResult:
        cleaned = clean_phone(phone)
        if not cleaned:
            return NotificationResult(success=False, error=f"{recipient} has no phone number")
        if len(cleaned.lstrip("+")) < MIN_PHONE_DIGITS:
            logger.warning(f"[Notify] Invalid phone for {recipient}: {mask_phone(cleaned)}")
            return NotificationResult(success=False, error=f"Invalid phone number format for {recipient}")

        result = await self.transport.send_text(cleaned, body)
        if not result.success:
            logger.warning(f"[Notify] Delivery to {mask_phone(cleaned)} failed: {result.error}")
            return NotificationResult(success=False, error=result.error)
        return NotificationResult(success=True, message_id=result.message_id)

    async def _load(self, activity_id: str):
        activity = await self.repos.activities.get(activity_id)
        if activity is None:
            return None, None
        categories = await self.repos.categories.get_by_ids([activity.category_id])
        return activity, (categories[0] if categories else None)

    async def notify_assignment(
        self,
        activity_id: str,
        assignee_id: Optional[str] = None,
        options: Optional[AssignmentOptions] = None,
    ) -> NotificationResult:
        """Tell the assignee about a new task."""
        options = options or AssignmentOptions()
        activity, category = await self._load(activity_id)
        if activity is None:
            return NotificationResult(success=False, error="Activity not found")

        assignee_id = assignee_id or activity.assigned_to_user_id
        assignee = await self.repos.staff.get(assignee_id) if assignee_id else None
        if assignee is None:
            return NotificationResult(success=False, error="No assigned user found for activity")

        reporter = await self.repos.staff.get(activity.user_id)
        message = build_assignment_message(activity, category, reporter, options)
        result = await self._send(assignee.phone_number, message, f"Staff member {assignee.name}")
        if result.success:
            logger.info(
                f"[Notify] Assignment {reference_number(activity, category)} sent to "
                f"{mask_phone(assignee.phone_number)}"
            )
        return result

    async def _fan_out(self, targets: list[tuple[str, Optional[StaffUser], str]]) -> NotificationBatchResult:
        """Send concurrently; targets are (slot, person, body)."""
        batch = NotificationBatchResult()
        sends = [self._send(person.phone_number, body, person.name) for _, person, body in targets]
        results = await asyncio.gather(*sends, return_exceptions=True)

        for (slot, _, _), result in zip(targets, results):
            label = "reporter" if slot == "reporter" else "assigned staff"
            if isinstance(result, Exception):
                logger.error(f"[Notify] Failed to notify {label}: {result}")
                result = NotificationResult(success=False, error=str(result))
            if not result.success:
                batch.errors.append(f"Failed to notify {label}: {result.error}")
            setattr(batch, f"{slot}_notification", result)
        return batch

    async def notify_status_change(
        self,
        activity_id: str,
        old_status: str,
        new_status: str,
        actor_id: Optional[str] = None,
        resolution_notes: Optional[str] = None,
    ) -> NotificationBatchResult:
        """Tell reporter and assignee (other than the actor) about a status change."""
        activity, category = await self._load(activity_id)
        if activity is None:
            return NotificationBatchResult(errors=["Activity not found"])

        targets = []
        reporter = await self.repos.staff.get(activity.user_id)
        if reporter and reporter.id != actor_id:
            targets.append((
                "reporter",
                reporter,
                build_status_message(activity, category, old_status, new_status, resolution_notes),
            ))

        if activity.assigned_to_user_id and activity.assigned_to_user_id != actor_id:
            assignee = await self.repos.staff.get(activity.assigned_to_user_id)
            if assignee:
                if new_status == ActivityStatus.RESOLVED.value:
                    body = build_completion_message(activity, category, resolution_notes)
                else:
                    body = build_status_message(activity, category, old_status, new_status, resolution_notes)
                targets.append(("assignee", assignee, body))

        return await self._fan_out(targets)

    async def notify_update(
        self,
        activity_id: str,
        author_id: str,
        notes: str,
        update_type: UpdateType = UpdateType.PROGRESS,
    ) -> NotificationBatchResult:
        """
        Relay a progress update between assignee and reporter.

        Assignee-authored updates go to the reporter; reporter-authored
        updates go to the assignee.
        """
        activity, category = await self._load(activity_id)
        if activity is None:
            return NotificationBatchResult(errors=["Activity not found"])

        author = await self.repos.staff.get(author_id)
        body = build_update_message(activity, category, author, notes, update_type)

        targets = []
        if author_id == activity.assigned_to_user_id:
            reporter = await self.repos.staff.get(activity.user_id)
            if reporter and reporter.id != author_id:
                targets.append((
                    "reporter",
                    reporter,
                    f"{body}\n\nThank you for your patience. We'll keep you updated on progress.",
                ))
        if author_id == activity.user_id and activity.assigned_to_user_id:
            assignee = await self.repos.staff.get(activity.assigned_to_user_id)
            if assignee and assignee.id != author_id:
                targets.append((
                    "assignee",
                    assignee,
                    f"{body}\n\nThe reporter has provided additional information. "
                    "Please review and update accordingly.",
                ))

        return await self._fan_out(targets)

    async def send_incident_confirmation(
        self,
        activity: Activity,
        phone: str,
        category: Optional[Category] = None,
    ) -> NotificationResult:
        """Confirmation to the reporter after an incident is logged."""
        if category is None:
            categories = await self.repos.categories.get_by_ids([activity.category_id])
            category = categories[0] if categories else None
        return await self._send(phone, build_confirmation_message(activity, category), "reporter")
