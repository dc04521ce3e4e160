"""Calendar provider adapters, keyed by provider type."""

from cabbagesync.config import Settings
from cabbagesync.oauth2.common import ProviderType
from cabbagesync.oauth2.providers.base import OAuth2Provider
from cabbagesync.oauth2.providers.google import GoogleOAuth2Provider
from cabbagesync.oauth2.providers.microsoft import MicrosoftOAuth2Provider


def build_providers(settings: Settings) -> dict[ProviderType, OAuth2Provider]:
    """Instantiate one adapter per provider type, configured or not."""
    return {
        ProviderType.GOOGLE: GoogleOAuth2Provider(settings),
        ProviderType.MICROSOFT: MicrosoftOAuth2Provider(settings),
    }


__all__ = [
    "OAuth2Provider",
    "GoogleOAuth2Provider",
    "MicrosoftOAuth2Provider",
    "build_providers",
]
