"""
Tests for the webhook ingestion pipeline.
"""
import pytest
from unittest.mock import AsyncMock

from conftest import message_payload, text_payload
from incident_intake.core.exceptions import MediaDownloadError, UnsupportedMediaTypeError
from incident_intake.repositories.memory import create_in_memory_repositories
from incident_intake.schemas.incidents import ActivityStatus, WhatsAppUser
from incident_intake.services.activities import ActivityService
from incident_intake.services.commands import CommandRouter
from incident_intake.services.ingestion import (
    ERROR_REPLY,
    GREETING_REPLY,
    LOCATION_ONLY_REPLY,
    THANKS_REPLY,
    IngestionService,
    contextual_reply,
)
from incident_intake.services.notifications import NotificationDispatcher
from incident_intake.services.whatsapp.media import StoredMedia

REPORTER = "27821234567"


def sent_to(transport, phone):
    return [body for to, body in transport.sent if to == phone]


class TestContextualReply:
    def test_greetings(self):
        assert contextual_reply("Hello!") == GREETING_REPLY
        assert contextual_reply("good morning") == GREETING_REPLY

    def test_thanks(self):
        assert contextual_reply("Thank you.") == THANKS_REPLY

    def test_incident_text_is_not_small_talk(self):
        assert contextual_reply("Hi, the window in room 12 is broken") is None


class TestFreeTextIncident:
    """A plain message becomes an Open incident plus a confirmation."""

    @pytest.mark.asyncio
    async def test_creates_incident_and_confirms(self, ingestion, repositories, transport):
        summary = await ingestion.ingest(text_payload("Broken window in classroom 5a"))

        assert summary.processed == 1
        [activity_id] = summary.incident_ids
        activity = await repositories.activities.get(activity_id)

        assert activity.status == ActivityStatus.OPEN
        assert activity.category_id == "cat-maint"
        assert activity.subcategory == "Window Repair"
        assert activity.location == "Classroom 5A"
        assert activity.needs_review is True
        assert activity.source_message_id == "wamid.test1"
        assert activity.notes.endswith("[Created via WhatsApp from *******4567]")

        [confirmation] = sent_to(transport, REPORTER)
        assert confirmation.startswith("✅ *Incident Report Logged*")

    @pytest.mark.asyncio
    async def test_unlinked_sender_gets_staff_record(self, ingestion, repositories):
        summary = await ingestion.ingest(text_payload("Leak in the office", name="Thandi"))

        activity = await repositories.activities.get(summary.incident_ids[0])
        reporter = await repositories.staff.get(activity.user_id)
        assert reporter.name == "Thandi"
        assert reporter.role == "Staff"

        user = await repositories.whatsapp_users.get_by_phone(REPORTER)
        assert user.linked_user_id == reporter.id
        assert user.display_name == "Thandi"

    @pytest.mark.asyncio
    async def test_linked_sender_files_under_own_staff_id(self, ingestion, repositories, verified_admin):
        await repositories.whatsapp_users.upsert(verified_admin)

        summary = await ingestion.ingest(text_payload("Broken desk in the lab", phone="27820000001"))

        activity = await repositories.activities.get(summary.incident_ids[0])
        assert activity.user_id == "staff-admin"

    @pytest.mark.asyncio
    async def test_duplicate_delivery_is_ignored(self, ingestion, repositories, transport):
        payload = text_payload("Broken window in classroom 5a")

        first = await ingestion.ingest(payload)
        second = await ingestion.ingest(payload)

        assert first.processed == 1
        assert second.duplicates == 1
        assert second.processed == 0
        assert second.incident_ids == []
        assert len(sent_to(transport, REPORTER)) == 1

    @pytest.mark.asyncio
    async def test_shared_location_overrides_classifier(self, ingestion, repositories):
        message = {
            "from": REPORTER,
            "id": "wamid.loc",
            "type": "location",
            "location": {"latitude": -26.2, "longitude": 28.04, "name": "Main Hall", "address": "1 School Rd"},
        }

        summary = await ingestion.ingest(message_payload(message))

        activity = await repositories.activities.get(summary.incident_ids[0])
        assert activity.location == "1 School Rd"
        assert activity.latitude == -26.2
        assert activity.longitude == 28.04

    @pytest.mark.asyncio
    async def test_empty_category_list_gets_general(self, transport, classifier):
        repos = create_in_memory_repositories()
        notifier = NotificationDispatcher(repos, transport)
        activities = ActivityService(repos, notifier)
        service = IngestionService(
            repos, transport, classifier, CommandRouter(repos, transport, activities), notifier, activities
        )

        summary = await service.ingest(text_payload("Something odd happened"))

        [general] = await repos.categories.list_all()
        assert general.name == "General"
        activity = await repos.activities.get(summary.incident_ids[0])
        assert activity.category_id == general.id


class TestRepliesWithoutIncident:
    @pytest.mark.asyncio
    async def test_greeting(self, ingestion, repositories, transport):
        summary = await ingestion.ingest(text_payload("Hi"))

        assert summary.incident_ids == []
        assert sent_to(transport, REPORTER) == [GREETING_REPLY]
        user = await repositories.whatsapp_users.get_by_phone(REPORTER)
        assert user.messages_in_window == 1

    @pytest.mark.asyncio
    async def test_command_is_routed(self, ingestion, transport):
        summary = await ingestion.ingest(text_payload("/help"))

        assert summary.incident_ids == []
        [reply] = sent_to(transport, REPORTER)
        assert "*Available Commands for Guest:*" in reply

    @pytest.mark.asyncio
    async def test_location_without_description(self, ingestion, transport):
        message = {"from": REPORTER, "id": "wamid.pin", "type": "location",
                   "location": {"latitude": -26.2, "longitude": 28.04}}

        summary = await ingestion.ingest(message_payload(message))

        assert summary.incident_ids == []
        assert sent_to(transport, REPORTER) == [LOCATION_ONLY_REPLY]

    @pytest.mark.asyncio
    async def test_unknown_type(self, ingestion, transport):
        message = {"from": REPORTER, "id": "wamid.st", "type": "sticker", "sticker": {"id": "s1"}}

        summary = await ingestion.ingest(message_payload(message))

        assert summary.processed == 1
        [reply] = sent_to(transport, REPORTER)
        assert reply.startswith("I received your sticker but need more information")

    @pytest.mark.asyncio
    async def test_blocked_sender(self, ingestion, repositories, transport):
        await repositories.whatsapp_users.upsert(WhatsAppUser(phone_number=REPORTER, is_blocked=True))

        summary = await ingestion.ingest(text_payload("Broken window"))

        assert summary.incident_ids == []
        assert transport.sent == []


class TestFailures:
    @pytest.mark.asyncio
    async def test_creation_failure_sends_error_reply(self, ingestion, transport):
        ingestion.activities.create = AsyncMock(side_effect=RuntimeError("db down"))

        summary = await ingestion.ingest(text_payload("Broken window"))

        assert summary.processed == 1
        assert summary.incident_ids == []
        assert sent_to(transport, REPORTER) == [ERROR_REPLY]

    @pytest.mark.asyncio
    async def test_malformed_message_is_counted(self, ingestion):
        payload = message_payload({"type": "text", "text": {"body": "no id or sender"}})

        summary = await ingestion.ingest(payload)

        assert summary.failed == 1
        assert summary.processed == 0

    @pytest.mark.asyncio
    async def test_one_bad_message_does_not_stop_others(self, ingestion):
        payload = text_payload("Broken window in room 3")
        payload["entry"][0]["changes"][0]["value"]["messages"].insert(0, {"type": "text"})

        summary = await ingestion.ingest(payload)

        assert summary.failed == 1
        assert summary.processed == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("entry", ["oops", {"entry": {"changes": []}}, {"changes": "nope"}])
    async def test_non_list_entry_is_counted(self, ingestion, entry):
        summary = await ingestion.ingest({"object": "whatsapp_business_account", "entry": entry})

        assert summary.failed == 1
        assert summary.processed == 0

    @pytest.mark.asyncio
    async def test_malformed_entries_do_not_stop_valid_ones(self, ingestion, repositories):
        payload = text_payload("Broken window in room 3")
        payload["entry"][0]["changes"].insert(0, "not a change")
        payload["entry"][:0] = ["not an entry", {"id": "waba-2"}]

        summary = await ingestion.ingest(payload)

        assert summary.failed == 3
        assert summary.processed == 1
        [activity_id] = summary.incident_ids
        assert await repositories.activities.get(activity_id) is not None

    @pytest.mark.asyncio
    async def test_statuses_and_other_fields(self, ingestion):
        payload = {
            "object": "whatsapp_business_account",
            "entry": [{
                "id": "waba-1",
                "changes": [
                    {"field": "account_update", "value": {}},
                    {"field": "messages", "value": {
                        "messaging_product": "whatsapp",
                        "statuses": [{"id": "wamid.out", "status": "delivered", "recipient_id": REPORTER}],
                    }},
                ],
            }],
        }

        summary = await ingestion.ingest(payload)

        assert summary.statuses == 1
        assert summary.processed == 0


class TestMedia:
    def _image_payload(self):
        return message_payload({
            "from": REPORTER,
            "id": "wamid.img",
            "type": "image",
            "image": {"id": "media-1", "mime_type": "image/jpeg", "caption": "Broken tap in the office"},
        })

    def _service(self, ingestion, fetcher):
        ingestion.media_fetcher = fetcher
        return ingestion

    @pytest.mark.asyncio
    async def test_media_path_is_stored(self, ingestion, repositories):
        fetcher = AsyncMock()
        fetcher.download.return_value = StoredMedia(
            local_path="/tmp/media-1.jpg", sha256="ab", size=10, mime_type="image/jpeg"
        )

        summary = await self._service(ingestion, fetcher).ingest(self._image_payload())

        activity = await repositories.activities.get(summary.incident_ids[0])
        assert activity.media_path == "/tmp/media-1.jpg"
        assert activity.subcategory == "Plumbing Issue"
        fetcher.download.assert_awaited_once_with("media-1", "image/jpeg")

    @pytest.mark.asyncio
    async def test_download_failure_still_creates_incident(self, ingestion, repositories):
        fetcher = AsyncMock()
        fetcher.download.side_effect = MediaDownloadError("timeout")

        summary = await self._service(ingestion, fetcher).ingest(self._image_payload())

        activity = await repositories.activities.get(summary.incident_ids[0])
        assert activity.media_path is None

    @pytest.mark.asyncio
    async def test_rejected_media_still_creates_incident(self, ingestion, repositories):
        fetcher = AsyncMock()
        fetcher.download.side_effect = UnsupportedMediaTypeError("image/jpeg")

        summary = await self._service(ingestion, fetcher).ingest(self._image_payload())

        assert len(summary.incident_ids) == 1
