"""Provider adapter interface shared by Google and Microsoft."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional
from urllib.parse import urlencode

from cabbagesync.config import Settings
from cabbagesync.meetings.models import Meeting
from cabbagesync.oauth2.common import (
    DeltaPage,
    OAuth2Config,
    OAuth2ErrorResponseError,
    OAuth2NotConfiguredError,
    OAuth2State,
    ProviderType,
)
from cabbagesync.oauth2.credentials import OAuth2Credential
from cabbagesync.oauth2.http import FORM_CONTENT_TYPE, post_form, request

logger = logging.getLogger(__name__)


class OAuth2Provider(ABC):
    """
    One external calendar provider.

    Subclasses supply client authentication, event listing and event
    mutation; this class builds the authorization URL and talks to the
    token and revocation endpoints, which look the same for every provider.
    """

    type: ProviderType

    def __init__(self, settings: Settings):
        self.settings = settings

    @property
    @abstractmethod
    def static_config(self) -> OAuth2Config:
        ...

    @abstractmethod
    def is_configured(self) -> bool:
        """True iff the server-side app credentials for this provider are present."""

    @abstractmethod
    def scopes_to_expect_in_response(self) -> list[str]:
        ...

    @abstractmethod
    def get_partial_authz_query_params(self, state: OAuth2State) -> dict[str, str]:
        """Provider-specific query parameters; may record a server nonce in state."""

    @abstractmethod
    def get_partial_token_form_params(self, server_nonce: Optional[str]) -> dict[str, str]:
        """Client authentication for the authorization code grant."""

    @abstractmethod
    def get_partial_refresh_params(self) -> dict[str, str]:
        """Client authentication for the refresh token grant."""

    @abstractmethod
    async def fetch_full_sync_page(
        self,
        credential: OAuth2Credential,
        api_start: str,
        api_end: str,
        page_token: Optional[str] = None,
    ) -> DeltaPage:
        ...

    @abstractmethod
    async def fetch_incremental_page(
        self,
        credential: OAuth2Credential,
        cursor: str,
        page_token: Optional[str] = None,
    ) -> DeltaPage:
        ...

    @abstractmethod
    def event_in_window(self, start: str, end: str, api_start: str, api_end: str) -> bool:
        ...

    @abstractmethod
    async def create_or_update_meeting_event(
        self,
        credential: OAuth2Credential,
        existing_event_id: Optional[str],
        meeting: Meeting,
    ) -> str:
        """Create the event for a scheduled meeting (or update it) and return its ID."""

    @abstractmethod
    async def delete_meeting_event(self, credential: OAuth2Credential, event_id: str) -> None:
        ...

    def is_cursor_invalid(self, error: OAuth2ErrorResponseError) -> bool:
        """The provider wants a full resynchronization."""
        return error.status_code == 410

    def meeting_url(self, meeting: Meeting) -> str:
        return f"{self.settings.public_url}/m/{meeting.id}"

    def build_authorization_url(
        self,
        state: OAuth2State,
        prompt_consent: bool,
        encode_state: Callable[[OAuth2State], str],
    ) -> str:
        """Build the authorization endpoint URL; the state is encoded last."""
        params = self.authorization_query_params(state, prompt_consent)
        # The provider may have added a server nonce to the state by now
        params["state"] = encode_state(state)
        return f"{self.static_config.authz_endpoint}?{urlencode(params)}"

    def authorization_query_params(self, state: OAuth2State, prompt_consent: bool) -> dict[str, str]:
        if not self.is_configured():
            raise OAuth2NotConfiguredError()
        params = {
            **self.get_partial_authz_query_params(state),
            "response_type": "code",
            "response_mode": "query",
            "scope": " ".join(self.static_config.scopes),
        }
        if prompt_consent:
            params["prompt"] = "consent"
        return params

    async def exchange_code_for_tokens(self, code: str, server_nonce: Optional[str] = None) -> dict[str, Any]:
        """POST the authorization code to the token endpoint and return the OIDC response."""
        if not self.is_configured():
            raise OAuth2NotConfiguredError()
        form = {
            **self.get_partial_token_form_params(server_nonce),
            "code": code,
            "grant_type": "authorization_code",
        }
        return await post_form(self.static_config.token_endpoint, form)

    async def revoke(self, credential: OAuth2Credential) -> None:
        """Revoke the refresh token, if the provider has a revocation endpoint."""
        revoke_endpoint = self.static_config.revoke_endpoint
        if not revoke_endpoint:
            return
        await request(
            "POST",
            revoke_endpoint,
            data={"token": credential.refresh_token},
            headers={"content-type": FORM_CONTENT_TYPE},
        )
