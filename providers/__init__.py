"""Partner gateways, built once from settings and injectable for tests."""
from dataclasses import dataclass
from functools import lru_cache

from config import settings
from providers.kyc import KycGateway
from providers.notifications import Notifier
from providers.payments import CollectionGateway, NachGateway


@dataclass
class Providers:
    kyc: KycGateway
    nach: NachGateway
    collection: CollectionGateway
    notifier: Notifier


@lru_cache
def get_providers() -> Providers:
    timeout = settings.provider_timeout_seconds
    return Providers(
        kyc=KycGateway(
            settings.verification_api_url,
            settings.verification_api_key,
            settings.verification_api_secret,
            timeout=timeout,
        ),
        nach=NachGateway(settings.nach_api_url, settings.nach_api_key, timeout=timeout),
        collection=CollectionGateway(settings.collection_api_url, settings.collection_api_key, timeout=timeout),
        notifier=Notifier(settings.notification_api_url, settings.notification_api_key, timeout=timeout),
    )


__all__ = ["Providers", "get_providers", "KycGateway", "NachGateway", "CollectionGateway", "Notifier"]
