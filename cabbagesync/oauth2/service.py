"""OAuth2 account linking and unlinking, and calendar reads for the API."""

import logging
from typing import Optional

from jose import JWTError, jwt
from pydantic import ValidationError

from cabbagesync.config import Settings, get_session_secret, get_settings
from cabbagesync.database import get_database
from cabbagesync.meetings.repository import get_meeting
from cabbagesync.oauth2 import credentials as credential_store
from cabbagesync.oauth2.common import (
    CalendarEvent,
    OAuth2InvalidStateError,
    OAuth2NoRefreshTokenError,
    OAuth2NotAllScopesGrantedError,
    OAuth2NotConfiguredError,
    OAuth2State,
    ProviderType,
)
from cabbagesync.oauth2.credentials import OAuth2Credential
from cabbagesync.oauth2.providers import OAuth2Provider, build_providers
from cabbagesync.oauth2.tokens import calculate_token_expiration_time
from cabbagesync.sync.reconcile import get_events_for_meeting
from cabbagesync.utils.dates import seconds_since_epoch
from cabbagesync.utils.tasks import settle_all

logger = logging.getLogger(__name__)

STATE_ALGORITHM = "HS256"
# The user has this long to get through the consent screen
STATE_LIFETIME_SECONDS = 15 * 60


class OAuth2Service:
    """Entry point for the HTTP layer; owns one adapter per provider."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.providers: dict[ProviderType, OAuth2Provider] = build_providers(settings)

    def get_provider(self, provider_type: ProviderType) -> OAuth2Provider:
        return self.providers[provider_type]

    def provider_is_supported(self, provider_type: ProviderType) -> bool:
        return self.providers[provider_type].is_configured()

    def get_supported_providers(self) -> list[OAuth2Provider]:
        return [provider for provider in self.providers.values() if provider.is_configured()]

    def _get_configured_provider(self, provider_type: ProviderType) -> OAuth2Provider:
        provider = self.get_provider(provider_type)
        if not provider.is_configured():
            raise OAuth2NotConfiguredError()
        return provider

    def encode_state(self, state: OAuth2State) -> str:
        """Sign the state so it cannot be tampered with on its way through the provider."""
        claims = state.model_dump(exclude_none=True)
        claims["exp"] = seconds_since_epoch() + STATE_LIFETIME_SECONDS
        return jwt.encode(claims, get_session_secret(), algorithm=STATE_ALGORITHM)

    def decode_state(self, token: str) -> OAuth2State:
        try:
            claims = jwt.decode(token, get_session_secret(), algorithms=[STATE_ALGORITHM])
            claims.pop("exp", None)
            return OAuth2State(**claims)
        except (JWTError, ValidationError) as e:
            logger.warning(f"Invalid OAuth2 state: {e}")
            raise OAuth2InvalidStateError()

    def get_request_url(self, provider_type: ProviderType, state: OAuth2State, prompt_consent: bool) -> str:
        """URL of the provider's consent screen."""
        provider = self._get_configured_provider(provider_type)
        return provider.build_authorization_url(state, prompt_consent, self.encode_state)

    def _check_refresh_token_and_scopes(self, provider: OAuth2Provider, data: dict) -> None:
        if not data.get("refresh_token"):
            logger.error("Refresh token was not present")
            raise OAuth2NoRefreshTokenError()
        granted = set((data.get("scope") or "").split())
        if not set(provider.scopes_to_expect_in_response()) <= granted:
            logger.error(f"Not all requested scopes were present: {data.get('scope')}")
            raise OAuth2NotAllScopesGrantedError()

    async def handle_link_callback(self, provider_type: ProviderType, code: str, state_token: str) -> OAuth2State:
        """
        Finish linking a calendar after the provider redirected back to us.

        Returns the decoded state so the caller can redirect the browser.

        Raises:
            OAuth2Error: any of the linking failures (invalid state or nonce,
                no refresh token, missing scopes, account already linked).
        """
        state = self.decode_state(state_token)
        if state.user_id is None:
            raise OAuth2InvalidStateError()

        provider = self._get_configured_provider(provider_type)
        data = await provider.exchange_code_for_tokens(code, state.server_nonce)
        self._check_refresh_token_and_scopes(provider, data)

        # The ID token comes straight from the token endpoint over TLS
        try:
            claims = jwt.get_unverified_claims(data["id_token"])
        except (KeyError, JWTError) as e:
            logger.error(f"Could not decode ID token: {e}")
            raise OAuth2InvalidStateError()

        await credential_store.insert_credential(OAuth2Credential(
            user_id=state.user_id,
            provider_type=provider.type,
            sub=claims["sub"],
            access_token=data["access_token"],
            access_token_expires_at=calculate_token_expiration_time(data["expires_in"]),
            refresh_token=data["refresh_token"],
            linked_calendar=True,
        ))
        logger.info(f"Linked {provider.type.display_name} calendar for user {state.user_id}")
        return state

    async def _user_has_password(self, user_id: int) -> bool:
        db = await get_database()
        cursor = await db.execute("SELECT password_hash FROM users WHERE id = ?", (user_id,))
        row = await cursor.fetchone()
        return bool(row and row["password_hash"])

    async def unlink_account(self, provider_type: ProviderType, user_id: int) -> None:
        """
        Stop using a user's calendar.

        A user who signed up through this provider has no password, so the
        credential is kept for signing in and only the calendar data goes.
        """
        provider = self.get_provider(provider_type)
        credential = await credential_store.get_credential(provider_type, user_id)
        if credential is None:
            return

        if not await self._user_has_password(user_id):
            await credential_store.unlink_calendar_keep_sign_in(provider_type, user_id)
            logger.info(f"Unlinked {provider_type.display_name} calendar for user {user_id}, sign-in kept")
            return

        await provider.revoke(credential)
        await credential_store.delete_credential(provider_type, user_id)
        logger.info(f"Unlinked {provider_type.display_name} account for user {user_id}")

    async def unlink_all_accounts(self, user_id: int) -> None:
        """Unlink every provider; one failure does not stop the others."""
        await settle_all(
            (self.unlink_account(provider.type, user_id) for provider in self.get_supported_providers()),
            f"Unlink OAuth2 account of user {user_id}",
        )

    async def get_events_for_meeting(
        self,
        provider_type: ProviderType,
        user_id: int,
        meeting_id: int,
    ) -> Optional[list[CalendarEvent]]:
        """Events from the user's calendar for a meeting; None if there is no such meeting."""
        provider = self._get_configured_provider(provider_type)
        meeting = await get_meeting(meeting_id)
        if meeting is None:
            return None
        return await get_events_for_meeting(provider, user_id, meeting)


_oauth2_service: Optional[OAuth2Service] = None


def get_oauth2_service() -> OAuth2Service:
    """Get the process-wide OAuth2 service."""
    global _oauth2_service
    if _oauth2_service is None:
        _oauth2_service = OAuth2Service(get_settings())
    return _oauth2_service


def reset_oauth2_service() -> None:
    global _oauth2_service
    _oauth2_service = None
