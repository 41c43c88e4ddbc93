"""
Service wiring for the API.

Each getter is cached so the app shares one instance per process; tests
override them with app.dependency_overrides.
"""
import logging
import uuid
from functools import lru_cache

from incident_intake.core.config import settings
from incident_intake.repositories.base import Repositories
from incident_intake.repositories.memory import create_in_memory_repositories
from incident_intake.schemas.incidents import Category
from incident_intake.services.activities import ActivityService
from incident_intake.services.classification.classifier import IncidentClassifier
from incident_intake.services.commands import CommandRouter
from incident_intake.services.ingestion import IngestionService
from incident_intake.services.llm import ProviderSelector, get_provider_selector
from incident_intake.services.notifications import NotificationDispatcher
from incident_intake.services.whatsapp.base import LogOnlyTransport, WhatsAppTransport
from incident_intake.services.whatsapp.media import MediaFetcher
from incident_intake.services.whatsapp.meta_cloud import MetaCloudTransport

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = ("Maintenance", "Discipline", "Sports", "General")


@lru_cache()
def get_repositories() -> Repositories:
    categories = [
        Category(id=uuid.uuid4().hex, name=name, is_system=True) for name in DEFAULT_CATEGORIES
    ]
    return create_in_memory_repositories(categories=categories)


@lru_cache()
def get_transport() -> WhatsAppTransport:
    """Meta Cloud API when credentials are set, otherwise log-only."""
    if settings.WHATSAPP_ACCESS_TOKEN and settings.WHATSAPP_PHONE_NUMBER_ID:
        return MetaCloudTransport(
            phone_number_id=settings.WHATSAPP_PHONE_NUMBER_ID,
            access_token=settings.WHATSAPP_ACCESS_TOKEN,
        )
    logger.warning("[Deps] WhatsApp credentials not configured, replies are only logged")
    return LogOnlyTransport()


def get_selector() -> ProviderSelector:
    return get_provider_selector()


@lru_cache()
def get_ingestion_service() -> IngestionService:
    repositories = get_repositories()
    transport = get_transport()
    notifier = NotificationDispatcher(repositories, transport)
    activities = ActivityService(repositories, notifier)
    media_fetcher = MediaFetcher() if settings.WHATSAPP_ACCESS_TOKEN else None

    return IngestionService(
        repositories=repositories,
        transport=transport,
        classifier=IncidentClassifier(get_selector()),
        commands=CommandRouter(repositories, transport, activities),
        notifier=notifier,
        activities=activities,
        media_fetcher=media_fetcher,
    )
