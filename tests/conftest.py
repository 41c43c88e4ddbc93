"""
Shared test fixtures.

Fixtures here are available to every test module. Repositories are the
in-memory implementations; outbound WhatsApp goes to LogOnlyTransport so
tests can inspect what would have been sent.
"""

import pytest
from typing import Any
from unittest.mock import AsyncMock, MagicMock

from incident_intake.repositories.memory import create_in_memory_repositories
from incident_intake.schemas.incidents import Category, StaffRole, StaffUser, WhatsAppUser
from incident_intake.services.activities import ActivityService
from incident_intake.services.classification.classifier import IncidentClassifier
from incident_intake.services.commands import CommandRouter
from incident_intake.services.ingestion import IngestionService
from incident_intake.services.llm import MockProvider, ProviderSelector
from incident_intake.services.notifications import NotificationDispatcher
from incident_intake.services.whatsapp.base import LogOnlyTransport


# =============================================================================
# MOCK FACTORIES
# =============================================================================


def make_http_response(
    status_code: int = 200,
    json_data: dict[str, Any] | list[Any] | None = None,
    text: str = "",
) -> MagicMock:
    """
    Mock of an httpx.Response.

    Args:
        status_code: HTTP status code
        json_data: value returned by .json()
        text: raw body
    """
    mock = MagicMock()
    mock.status_code = status_code
    mock.json.return_value = json_data if json_data is not None else {}
    mock.text = text
    mock.is_success = 200 <= status_code < 300
    mock.is_error = status_code >= 400
    return mock


def text_payload(
    body: str,
    phone: str = "27821234567",
    message_id: str = "wamid.test1",
    name: str = "Thandi",
) -> dict:
    """Webhook payload carrying one text message."""
    return message_payload(
        {"from": phone, "id": message_id, "timestamp": "1700000000", "type": "text", "text": {"body": body}},
        phone=phone,
        name=name,
    )


def message_payload(message: dict, phone: str = "27821234567", name: str = "Thandi") -> dict:
    return {
        "object": "whatsapp_business_account",
        "entry": [{
            "id": "waba-1",
            "changes": [{
                "field": "messages",
                "value": {
                    "messaging_product": "whatsapp",
                    "metadata": {"phone_number_id": "123456789"},
                    "contacts": [{"wa_id": phone, "profile": {"name": name}}],
                    "messages": [message],
                },
            }],
        }],
    }


# =============================================================================
# DOMAIN FIXTURES
# =============================================================================


@pytest.fixture
def categories():
    return [
        Category(id="cat-maint", name="Maintenance"),
        Category(id="cat-disc", name="Discipline"),
        Category(id="cat-sport", name="Sports"),
        Category(id="cat-gen", name="General", is_system=True),
    ]


@pytest.fixture
def staff():
    return [
        StaffUser(id="staff-admin", name="Principal Dlamini", role=StaffRole.ADMIN.value, phone_number="27820000001"),
        StaffUser(id="staff-maint", name="Sipho Maintenance", role=StaffRole.MAINTENANCE.value, phone_number="27820000002"),
        StaffUser(id="staff-teacher", name="Ms Naidoo", role=StaffRole.TEACHER.value, phone_number="27820000003"),
    ]


@pytest.fixture
def repositories(categories, staff):
    return create_in_memory_repositories(categories=categories, staff=staff)


@pytest.fixture
def transport():
    return LogOnlyTransport()


@pytest.fixture
def mock_provider():
    return MockProvider()


@pytest.fixture
def selector(mock_provider):
    """Selector with no vendor adapters: every call lands on the mock."""
    return ProviderSelector([], fallback=mock_provider)


@pytest.fixture
def classifier(selector):
    return IncidentClassifier(selector)


@pytest.fixture
def notifier(repositories, transport):
    return NotificationDispatcher(repositories, transport)


@pytest.fixture
def activities(repositories, notifier):
    return ActivityService(repositories, notifier)


@pytest.fixture
def command_router(repositories, transport, activities):
    return CommandRouter(repositories, transport, activities)


@pytest.fixture
def ingestion(repositories, transport, classifier, command_router, notifier, activities):
    return IngestionService(
        repositories=repositories,
        transport=transport,
        classifier=classifier,
        commands=command_router,
        notifier=notifier,
        activities=activities,
    )


@pytest.fixture
def verified_admin():
    return WhatsAppUser(phone_number="27820000001", display_name="Principal", is_verified=True, linked_user_id="staff-admin")


@pytest.fixture
def mock_http_client():
    """AsyncMock standing in for the shared httpx.AsyncClient."""
    client = AsyncMock()
    client.get.return_value = make_http_response()
    client.post.return_value = make_http_response()
    return client
