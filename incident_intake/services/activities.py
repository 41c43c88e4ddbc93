"""
Incident lifecycle operations.

Every change goes through ActivityService so the update log and the
notifications stay consistent with the stored record.
"""
import logging
import uuid
from typing import Optional

from incident_intake.core.exceptions import NotFoundError
from incident_intake.repositories.base import Repositories
from incident_intake.schemas.incidents import (
    Activity,
    ActivityStatus,
    ActivityUpdate,
    ParsedActivityData,
    UpdateType,
)
from incident_intake.services.notifications import (
    AssignmentOptions,
    NotificationBatchResult,
    NotificationDispatcher,
)

logger = logging.getLogger(__name__)


class ActivityService:
    def __init__(self, repositories: Repositories, notifier: NotificationDispatcher):
        self.repos = repositories
        self.notifier = notifier

    async def _get(self, activity_id: str) -> Activity:
        activity = await self.repos.activities.get(activity_id)
        if activity is None:
            raise NotFoundError("Activity", activity_id)
        return activity

    async def create(
        self,
        user_id: str,
        parsed: ParsedActivityData,
        status: ActivityStatus = ActivityStatus.OPEN,
        **extra,
    ) -> Activity:
        """
        Persist a new incident from classifier output.

        Args:
            extra: optional Activity fields (source_message_id, latitude, media_path, ...)
        """
        activity = Activity(
            id=uuid.uuid4().hex,
            user_id=user_id,
            category_id=parsed.category_id,
            subcategory=parsed.subcategory,
            location=parsed.location,
            notes=parsed.notes,
            status=status,
            needs_review=parsed.needs_review,
            **extra,
        )
        created = await self.repos.activities.create(activity)
        logger.info(
            f"[Activities] Created {created.short_id} ({parsed.subcategory} @ {parsed.location})"
        )
        return created

    async def assign(
        self,
        activity_id: str,
        assignee_id: str,
        actor_id: Optional[str] = None,
        instructions: Optional[str] = None,
        notify: bool = True,
        options: Optional[AssignmentOptions] = None,
    ) -> Activity:
        """Assign and move to In Progress."""
        activity = await self._get(activity_id)
        fields = {"assigned_to_user_id": assignee_id, "status": ActivityStatus.IN_PROGRESS}
        if instructions:
            fields["assignment_instructions"] = instructions
        updated = await self.repos.activities.update(activity.id, **fields)

        await self.repos.activities.append_update(
            activity.id,
            ActivityUpdate(
                author_id=actor_id or assignee_id,
                notes=instructions or "Assigned",
                update_type=UpdateType.ASSIGNMENT,
                status_context=f"{activity.status.value} -> {ActivityStatus.IN_PROGRESS.value}",
            ),
        )

        if notify:
            result = await self.notifier.notify_assignment(activity.id, assignee_id, options)
            if not result.success:
                logger.warning(f"[Activities] Assignment notice for {activity.short_id} not sent: {result.error}")
        return updated

    async def change_status(
        self,
        activity_id: str,
        new_status: ActivityStatus,
        actor_id: Optional[str] = None,
        notes: Optional[str] = None,
        notify: bool = True,
    ) -> tuple[Activity, Optional[NotificationBatchResult]]:
        """
        Move to new_status; Resolved stores notes as resolution notes.

        Returns:
            (updated activity, notification result or None when notify is False)
        """
        activity = await self._get(activity_id)
        old_status = activity.status

        fields = {"status": new_status}
        if new_status == ActivityStatus.RESOLVED and notes:
            fields["resolution_notes"] = notes
        updated = await self.repos.activities.update(activity.id, **fields)

        await self.repos.activities.append_update(
            activity.id,
            ActivityUpdate(
                author_id=actor_id or activity.user_id,
                notes=notes or f"Status changed to {new_status.value}",
                update_type=(
                    UpdateType.COMPLETION
                    if new_status == ActivityStatus.RESOLVED
                    else UpdateType.STATUS_CHANGE
                ),
                status_context=f"{old_status.value} -> {new_status.value}",
            ),
        )
        logger.info(f"[Activities] {activity.short_id}: {old_status.value} -> {new_status.value}")

        result = None
        if notify:
            result = await self.notifier.notify_status_change(
                activity.id, old_status.value, new_status.value, actor_id, notes
            )
            for error in result.errors:
                logger.warning(f"[Activities] {activity.short_id}: {error}")
        return updated, result

    async def add_update(
        self,
        activity_id: str,
        author_id: str,
        notes: str,
        update_type: UpdateType = UpdateType.PROGRESS,
    ) -> tuple[Activity, NotificationBatchResult]:
        """Append a progress note and relay it to the other party."""
        activity = await self._get(activity_id)
        updated = await self.repos.activities.append_update(
            activity.id,
            ActivityUpdate(author_id=author_id, notes=notes, update_type=update_type),
        )
        result = await self.notifier.notify_update(activity.id, author_id, notes, update_type)
        return updated, result
