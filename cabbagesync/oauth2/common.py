"""Shared OAuth2 types, constants and errors."""

from enum import IntEnum
from typing import Literal, Optional

from pydantic import BaseModel

OIDC_SCOPES = ["openid", "profile", "email"]

# Sign-up and login are handled by the accounts service; this one only links calendars
OAuth2Reason = Literal["link"]


class ProviderType(IntEnum):
    """External calendar providers. Values are persisted; do not renumber."""
    MICROSOFT = 2
    GOOGLE = 3

    @property
    def display_name(self) -> str:
        return self.name.capitalize()

    @classmethod
    def from_slug(cls, slug: str) -> "ProviderType":
        """'google' -> ProviderType.GOOGLE; raises ValueError for unknown slugs."""
        try:
            return cls[slug.upper()]
        except KeyError:
            raise ValueError(f"Unknown OAuth2 provider: {slug}") from None


class OAuth2Error(Exception):
    """Base class for OAuth2 and calendar provider errors."""

    # Stable code reported to the browser in error redirects
    code = "E_OAUTH2_ERROR"


class OAuth2NotConfiguredError(OAuth2Error):
    code = "E_OAUTH2_NOT_AVAILABLE"

    def __init__(self):
        super().__init__("OAuth2 not configured")


class OAuth2ErrorResponseError(OAuth2Error):
    """A provider answered with a non-2xx status."""

    code = "E_INTERNAL_SERVER_ERROR"

    def __init__(self, status_code: int, error_code: Optional[str] = None):
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(f"OAuth2 error response: status={status_code} error={error_code}")

    @property
    def is_invalid_token(self) -> bool:
        """The credentials were revoked or expired for good."""
        return self.status_code == 401 or self.error_code == "invalid_grant"

    @property
    def is_gone(self) -> bool:
        return self.status_code in (404, 410)


class OAuth2InvalidStateError(OAuth2Error):
    code = "E_OAUTH2_INVALID_STATE"

    def __init__(self):
        super().__init__("OAuth2 invalid state")


class OAuth2InvalidOrExpiredNonceError(OAuth2Error):
    code = "E_OAUTH2_INVALID_OR_EXPIRED_NONCE"

    def __init__(self):
        super().__init__("OAuth2 invalid or expired nonce")


class OAuth2NoRefreshTokenError(OAuth2Error):
    code = "E_OAUTH2_NO_REFRESH_TOKEN"

    def __init__(self):
        super().__init__("OAuth2 no refresh token")


class OAuth2NotAllScopesGrantedError(OAuth2Error):
    code = "E_OAUTH2_NOT_ALL_SCOPES_GRANTED"

    def __init__(self):
        super().__init__("OAuth2 not all scopes granted")


class OAuth2AccountAlreadyLinkedError(OAuth2Error):
    code = "E_OAUTH2_ACCOUNT_ALREADY_LINKED"

    def __init__(self):
        super().__init__("OAuth2 account already linked")


class OAuth2Config(BaseModel):
    """Static endpoints and scopes of a provider."""
    authz_endpoint: str
    token_endpoint: str
    revoke_endpoint: Optional[str] = None
    scopes: list[str]


class OAuth2State(BaseModel):
    """Round-tripped through the provider in the 'state' parameter."""
    reason: OAuth2Reason
    post_redirect: str
    user_id: Optional[int] = None
    # Passed from the browser to this server
    client_nonce: Optional[str] = None
    # Passed from this server to the provider (Microsoft PKCE lookup)
    server_nonce: Optional[str] = None


class CalendarEvent(BaseModel):
    """An event read from an external calendar."""
    id: str
    summary: str = ""
    start: str  # e.g. "2022-10-23T13:00:00Z"
    end: str


class EventChange(BaseModel):
    """
    One item of a provider listing page, normalized.

    Delta pages may carry only the changed fields, so everything except the
    id is optional.
    """
    id: str
    removed: bool = False
    summary: Optional[str] = None
    start: Optional[str] = None
    end: Optional[str] = None


class DeltaPage(BaseModel):
    """One page of a full or incremental listing."""
    changes: list[EventChange]
    next_page_token: Optional[str] = None
    # Set on the last page only
    next_cursor: Optional[str] = None
