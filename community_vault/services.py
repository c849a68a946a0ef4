from dataclasses import dataclass
from typing import Any

from fastapi import Request

from .ai import AIService
from .config import Settings
from .ingestion import IngestionPipeline
from .mailer import EmailSender
from .notifications import NotificationDispatcher
from .payments import WebhookHandler
from .payouts import SplitConfig
from .storage import StorageBackend, build_storage
from .vector_store import VectorIndex
from .whop import WhopClient


@dataclass
class Services:
    """Provider handles owned by the application, built once at startup."""

    settings: Settings
    storage: StorageBackend
    ai: AIService
    vectors: VectorIndex
    email: EmailSender
    whop: WhopClient
    notifications: NotificationDispatcher
    ingestion: IngestionPipeline
    webhooks: WebhookHandler
    identity: Any


def build_services(settings: Settings, **overrides) -> Services:
    """
    Construct every provider client from settings. Keyword overrides
    (storage=..., ai=..., vectors=..., email=..., whop=...) replace the
    default client, which is how tests inject fakes.
    """
    from .auth import IdentityResolver

    storage = overrides.get("storage") or build_storage(settings)
    ai = overrides.get("ai") or AIService.from_settings(settings)
    vectors = overrides.get("vectors") or VectorIndex.from_settings(settings)
    email = overrides.get("email") or EmailSender.from_settings(settings)
    whop = overrides.get("whop") or WhopClient.from_settings(settings)

    notifications = NotificationDispatcher(email)
    split_config = SplitConfig.from_settings(settings)

    return Services(
        settings=settings,
        storage=storage,
        ai=ai,
        vectors=vectors,
        email=email,
        whop=whop,
        notifications=notifications,
        ingestion=IngestionPipeline(storage, ai, vectors, notifications),
        webhooks=WebhookHandler(settings.whop_signing_secret, notifications, split_config),
        identity=IdentityResolver.from_settings(settings, whop),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
