"""
Webhook ingestion pipeline.

One inbound WhatsApp message becomes one of:
- a command reply (slash commands)
- a contextual reply (greetings, thanks)
- a logged incident plus a confirmation to the reporter

Messages are processed independently; a failure in one never affects the
others in the same payload.
"""
import logging
import re
from dataclasses import dataclass, field, replace
from typing import Any, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from incident_intake.core.config import ClassifierConfig
from incident_intake.core.exceptions import MediaDownloadError, MediaRejectedError
from incident_intake.repositories.base import Repositories
from incident_intake.schemas.incidents import (
    ActivityStatus,
    Category,
    StaffRole,
    WhatsAppUser,
)
from incident_intake.schemas.webhook import (
    Contact,
    InboundMessage,
    LocationMessage,
    TextMessage,
    UnknownMessage,
    WebhookValue,
    parse_inbound_message,
)
from incident_intake.services.activities import ActivityService
from incident_intake.services.classification.classifier import IncidentClassifier
from incident_intake.services.commands import CommandRouter, is_command
from incident_intake.services.notifications import NotificationDispatcher
from incident_intake.services.phone import mask_phone
from incident_intake.services.whatsapp.base import WhatsAppTransport
from incident_intake.services.whatsapp.extractor import ExtractedContent, extract_content
from incident_intake.services.whatsapp.media import MediaFetcher
from incident_intake.services.whatsapp.window import record_outbound, refresh_window

logger = logging.getLogger(__name__)

GREETING_REPLY = (
    "Hello! 👋\n\n"
    "I can help you report incidents and check task status.\n\n"
    "Send me details about any issues you'd like to report, or type /help for available commands."
)
THANKS_REPLY = "You're welcome! 😊\n\nIs there anything else you need help with?"
LOCATION_ONLY_REPLY = (
    "📍 Thank you for sharing the location.\n\n"
    "Please also provide a description of the issue at this location so I can "
    "create a proper incident report."
)
ERROR_REPLY = (
    "❌ *Error*\n\n"
    "Failed to process your incident report. Please try again or contact support.\n\n"
    "Please try again or contact support if the problem persists.\n\n"
    "Type /help for available commands."
)

GREETING_PATTERN = re.compile(
    r"^(hi|hello|hey|hiya|good (morning|afternoon|evening))[\s!.,]*$", re.IGNORECASE
)
THANKS_PATTERN = re.compile(
    r"^(thanks|thank you|thx|ty|cheers|ok thanks|thanks a lot)[\s!.,]*$", re.IGNORECASE
)


def contextual_reply(text: str) -> Optional[str]:
    """Canned reply for small talk; None when the text should be classified."""
    stripped = text.strip()
    if GREETING_PATTERN.match(stripped):
        return GREETING_REPLY
    if THANKS_PATTERN.match(stripped):
        return THANKS_REPLY
    return None


def unknown_type_reply(message_type: str) -> str:
    return (
        f"I received your {message_type} but need more information to help you.\n\n"
        "Type /help for available commands or provide details about any issues you'd like to report."
    )


@dataclass
class IngestionSummary:
    """Per-payload counters, returned to the webhook route."""

    processed: int = 0
    duplicates: int = 0
    failed: int = 0
    statuses: int = 0
    incident_ids: list[str] = field(default_factory=list)


class IngestionService:
    """
    Turns webhook payloads into incidents and replies.

    Args:
        repositories: storage
        transport: outbound WhatsApp channel for replies
        classifier: AI classifier with keyword fallback
        commands: slash command router
        notifier: sends the incident confirmation
        activities: creates incidents
        media_fetcher: optional; without it attachments are not stored
    """

    def __init__(
        self,
        repositories: Repositories,
        transport: WhatsAppTransport,
        classifier: IncidentClassifier,
        commands: CommandRouter,
        notifier: NotificationDispatcher,
        activities: ActivityService,
        media_fetcher: Optional[MediaFetcher] = None,
    ):
        self.repos = repositories
        self.transport = transport
        self.classifier = classifier
        self.commands = commands
        self.notifier = notifier
        self.activities = activities
        self.media_fetcher = media_fetcher

    async def ingest(self, payload: dict[str, Any]) -> IngestionSummary:
        """
        Process a full webhook payload.

        Only changes with field == "messages" are handled. Never raises for
        per-message problems; they are counted in the summary.
        """
        summary = IngestionSummary()
        entries = payload.get("entry") or []
        if not isinstance(entries, list):
            logger.warning(f"[Ingestion] 'entry' is {type(entries).__name__}, not a list")
            summary.failed += 1
            entries = []

        for entry in entries:
            changes = entry.get("changes") if isinstance(entry, dict) else None
            if not isinstance(changes, list):
                logger.warning(f"[Ingestion] Skipping malformed entry: {str(entry)[:100]}")
                summary.failed += 1
                continue

            for change in changes:
                if not isinstance(change, dict):
                    logger.warning(f"[Ingestion] Skipping malformed change: {str(change)[:100]}")
                    summary.failed += 1
                    continue
                if change.get("field") != "messages":
                    logger.debug(f"[Ingestion] Ignoring field: {change.get('field')}")
                    continue
                try:
                    value = WebhookValue.model_validate(change.get("value") or {})
                except PydanticValidationError as e:
                    logger.warning(f"[Ingestion] Malformed change value: {e}")
                    summary.failed += 1
                    continue

                for status in value.statuses:
                    self._log_status(status)
                    summary.statuses += 1

                for raw in value.messages:
                    await self._process_raw(raw, value.contacts, summary)

        logger.info(
            f"[Ingestion] processed={summary.processed} duplicates={summary.duplicates} "
            f"failed={summary.failed} statuses={summary.statuses}"
        )
        return summary

    @staticmethod
    def _log_status(status: dict) -> None:
        logger.info(
            f"[Ingestion] Message {status.get('id')} to {mask_phone(status.get('recipient_id'))}: "
            f"{status.get('status')}"
        )
        for error in status.get("errors") or []:
            logger.warning(f"[Ingestion] Delivery error {error.get('code')}: {error.get('title')}")

    async def _process_raw(
        self, raw: dict, contacts: Sequence[Contact], summary: IngestionSummary
    ) -> None:
        try:
            message = parse_inbound_message(raw)
        except PydanticValidationError as e:
            logger.warning(f"[Ingestion] Skipping malformed message {raw.get('id')}: {e}")
            summary.failed += 1
            return

        # Marked before processing: a redelivery during processing is a no-op
        if not await self.repos.processed_messages.mark_processed(message.id):
            logger.info(f"[Ingestion] Duplicate message {message.id} ignored")
            summary.duplicates += 1
            return

        try:
            activity_id = await self.process_message(message, contacts)
        except Exception:
            logger.exception(f"[Ingestion] Failed to process message {message.id}")
            summary.failed += 1
            return

        summary.processed += 1
        if activity_id:
            summary.incident_ids.append(activity_id)

    async def process_message(
        self, message: InboundMessage, contacts: Sequence[Contact] = ()
    ) -> Optional[str]:
        """
        Handle one parsed message.

        Returns:
            id of the created incident, or None when no incident was created
        """
        content = extract_content(message, contacts)
        user = await self._touch_user(message.from_, content)
        if user.is_blocked:
            logger.info(f"[Ingestion] Blocked sender {mask_phone(user.phone_number)} ignored")
            return None

        if isinstance(message, TextMessage):
            if is_command(content.text):
                await self.commands.route(content.text, user, message.id)
                await self._count_outbound(user)
                return None
            reply = contextual_reply(content.text)
            if reply:
                await self._reply(user, reply)
                return None

        if isinstance(message, LocationMessage) and not (
            message.location.name or message.location.address
        ):
            await self._reply(user, LOCATION_ONLY_REPLY)
            return None

        if isinstance(message, UnknownMessage):
            await self._reply(user, unknown_type_reply(message.type))
            return None

        return await self._create_incident(message, content, user)

    async def _touch_user(self, phone: str, content: ExtractedContent) -> WhatsAppUser:
        """Load or register the sender and restart their messaging window."""
        user = await self.repos.whatsapp_users.get_by_phone(phone)
        if user is None:
            display_name = None if content.sender_name.startswith("Unknown (") else content.sender_name
            user = WhatsAppUser(phone_number=phone, display_name=display_name)
            logger.info(f"[Ingestion] New WhatsApp user {mask_phone(phone)}")
        refresh_window(user)
        return await self.repos.whatsapp_users.upsert(user)

    async def _count_outbound(self, user: WhatsAppUser) -> None:
        record_outbound(user)
        await self.repos.whatsapp_users.upsert(user)

    async def _reply(self, user: WhatsAppUser, text: str) -> None:
        result = await self.transport.send_text(user.phone_number, text)
        if not result.success:
            logger.warning(f"[Ingestion] Reply to {mask_phone(user.phone_number)} failed: {result.error}")
            return
        await self._count_outbound(user)

    async def _categories(self) -> list[Category]:
        categories = await self.repos.categories.list_all()
        if categories:
            return categories
        logger.warning("[Ingestion] No categories configured, creating 'General'")
        return [await self.repos.categories.create("General", is_system=True)]

    async def _reporter_id(self, user: WhatsAppUser) -> str:
        """Staff id the incident is filed under; creates one for unlinked senders."""
        if user.linked_user_id:
            return user.linked_user_id

        existing = await self.repos.staff.get_by_phone(user.phone_number)
        if existing is None:
            name = user.display_name or f"WhatsApp User ({user.phone_number[-4:]})"
            existing = await self.repos.staff.create(
                name=name, role=StaffRole.STAFF.value, phone_number=user.phone_number
            )
            logger.info(f"[Ingestion] Created staff user {existing.id} for {mask_phone(user.phone_number)}")
        user.linked_user_id = existing.id
        await self.repos.whatsapp_users.upsert(user)
        return existing.id

    async def _store_media(self, content: ExtractedContent) -> Optional[str]:
        if content.media is None or self.media_fetcher is None:
            return None
        try:
            stored = await self.media_fetcher.download(content.media.id, content.media.mime_type)
        except MediaRejectedError as e:
            logger.warning(f"[Ingestion] Media {content.media.id} rejected: {e.message}")
            return None
        except MediaDownloadError as e:
            logger.error(f"[Ingestion] Media {content.media.id} not stored (retryable={e.retryable}): {e.message}")
            return None
        return stored.local_path

    async def _create_incident(
        self, message: InboundMessage, content: ExtractedContent, user: WhatsAppUser
    ) -> Optional[str]:
        try:
            media_path = await self._store_media(content)
            categories = await self._categories()
            parsed = await self.classifier.classify(content.text, categories)
            reporter_id = await self._reporter_id(user)

            location = parsed.location
            extra = {"source_message_id": message.id, "media_path": media_path}
            if content.location is not None:
                shared = content.location.address or content.location.name
                if shared:
                    location = shared[: ClassifierConfig.LOCATION_MAX_CHARS]
                extra["latitude"] = content.location.latitude
                extra["longitude"] = content.location.longitude

            notes = f"{parsed.notes}\n\n[Created via WhatsApp from {mask_phone(user.phone_number)}]"
            parsed = replace(parsed, location=location, notes=notes)

            activity = await self.activities.create(
                reporter_id, parsed, status=ActivityStatus.OPEN, **extra
            )
            category = next((c for c in categories if c.id == activity.category_id), None)
            result = await self.notifier.send_incident_confirmation(activity, user.phone_number, category)
            if result.success:
                await self._count_outbound(user)
            else:
                logger.warning(f"[Ingestion] Confirmation for {activity.short_id} not sent: {result.error}")
            return activity.id

        except Exception:
            logger.exception(f"[Ingestion] Incident creation failed for message {message.id}")
            await self._reply(user, ERROR_REPLY)
            return None
