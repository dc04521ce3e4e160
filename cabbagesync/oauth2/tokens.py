"""Access token lifecycle: refresh on expiry, drop revoked credentials."""

import logging
from typing import TYPE_CHECKING, Awaitable, Callable, Optional, TypeVar

from cabbagesync.oauth2 import credentials as credential_store
from cabbagesync.oauth2.common import OAuth2ErrorResponseError
from cabbagesync.oauth2.credentials import OAuth2Credential
from cabbagesync.oauth2.http import post_form
from cabbagesync.utils.dates import seconds_since_epoch

if TYPE_CHECKING:
    from cabbagesync.oauth2.providers.base import OAuth2Provider

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Subtracted from expires_in so a token is never used in its last seconds
TOKEN_EXPIRY_MARGIN_SECONDS = 5


def calculate_token_expiration_time(expires_in: int) -> int:
    """Absolute expiry (epoch seconds) for a token valid for expires_in seconds."""
    return seconds_since_epoch() + int(expires_in) - TOKEN_EXPIRY_MARGIN_SECONDS


async def delete_if_invalid(error: Exception, credential: OAuth2Credential) -> None:
    """Delete the credential if the error shows it was revoked or expired for good."""
    if isinstance(error, OAuth2ErrorResponseError) and error.is_invalid_token:
        # Assume that the user revoked access
        logger.warning(
            f"Invalid credentials for user_id={credential.user_id} "
            f"provider={credential.provider_type.display_name}. Deleting OAuth2 data."
        )
        await credential_store.delete_credential(credential.provider_type, credential.user_id)


async def refresh_access_token(
    provider: "OAuth2Provider",
    credential: OAuth2Credential,
) -> OAuth2Credential:
    """
    Perform a refresh-token grant and persist the result.

    Raises:
        OAuth2ErrorResponseError: the token endpoint rejected the grant. If the
            grant is invalid the credential has already been deleted.
    """
    form = {
        **provider.get_partial_refresh_params(),
        "grant_type": "refresh_token",
        "refresh_token": credential.refresh_token,
    }
    try:
        data = await post_form(provider.static_config.token_endpoint, form)
    except OAuth2ErrorResponseError as e:
        await delete_if_invalid(e, credential)
        raise

    updated = credential.model_copy(update={
        "access_token": data["access_token"],
        "access_token_expires_at": calculate_token_expiration_time(data["expires_in"]),
    })
    # Providers do not always issue a new refresh token
    new_refresh_token = data.get("refresh_token")
    if new_refresh_token:
        updated.refresh_token = new_refresh_token

    await credential_store.update_tokens(
        updated.provider_type,
        updated.user_id,
        updated.access_token,
        updated.access_token_expires_at,
        new_refresh_token,
    )
    logger.info(f"Refreshed {provider.type.display_name} access token for user {credential.user_id}")
    return updated


async def refresh_if_necessary(
    provider: "OAuth2Provider",
    credential: OAuth2Credential,
) -> OAuth2Credential:
    if credential.access_token_expires_at > seconds_since_epoch():
        return credential
    return await refresh_access_token(provider, credential)


async def get_valid_credential(
    provider: "OAuth2Provider",
    user_id: int,
) -> Optional[OAuth2Credential]:
    """
    Get a credential with an unexpired access token.

    Returns None if the user has no credential for this provider, or if the
    credential is kept for sign-in only (calendar unlinked).
    """
    credential = await credential_store.get_credential(provider.type, user_id)
    if credential is None or not credential.linked_calendar:
        return None
    return await refresh_if_necessary(provider, credential)


async def call_with_credential(
    provider: "OAuth2Provider",
    credential: OAuth2Credential,
    call: Callable[[OAuth2Credential], Awaitable[T]],
) -> tuple[T, OAuth2Credential]:
    """
    Run a provider API call with a fresh access token.

    Returns the call's result and the credential it succeeded with; callers
    making several calls pass that credential to the next one.

    A 401 answer triggers one forced refresh and one retry of the call. If
    the retry still fails with an invalid token, the credential is deleted.
    """
    credential = await refresh_if_necessary(provider, credential)
    try:
        return await call(credential), credential
    except OAuth2ErrorResponseError as e:
        if e.status_code != 401:
            raise
        logger.info(
            f"Access token rejected for user {credential.user_id}, refreshing and retrying once"
        )

    credential = await refresh_access_token(provider, credential)
    try:
        return await call(credential), credential
    except OAuth2ErrorResponseError as e:
        await delete_if_invalid(e, credential)
        raise
