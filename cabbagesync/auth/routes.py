"""Calendar linking routes."""

import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from cabbagesync.auth.session import User, get_current_user
from cabbagesync.config import get_settings
from cabbagesync.oauth2.common import (
    OAuth2Error,
    OAuth2NoRefreshTokenError,
    OAuth2NotConfiguredError,
    OAuth2State,
    ProviderType,
)
from cabbagesync.oauth2.service import get_oauth2_service

logger = logging.getLogger(__name__)
router = APIRouter(tags=["oauth2"])


class LinkCalendarRequest(BaseModel):
    """Where to send the browser once linking is done."""
    post_redirect: str = "/"
    nonce: Optional[str] = None


class RedirectResponseBody(BaseModel):
    redirect: str


def parse_provider(provider: str) -> ProviderType:
    try:
        return ProviderType.from_slug(provider)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown provider")


def _frontend_url(path: str) -> str:
    return f"{get_settings().public_url}{path}"


def _error_redirect(code: str, provider_type: ProviderType) -> RedirectResponse:
    query = urlencode({"e": code, "provider": provider_type.name})
    return RedirectResponse(url=_frontend_url(f"/error?{query}"), status_code=status.HTTP_302_FOUND)


@router.post("/api/me/link-{provider}-calendar", response_model=RedirectResponseBody)
async def link_calendar(
    provider: str,
    body: LinkCalendarRequest,
    user: User = Depends(get_current_user),
):
    """Start linking a calendar; the client sends the browser to the returned URL."""
    provider_type = parse_provider(provider)
    if not body.post_redirect.startswith("/"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="post_redirect must be a path")
    service = get_oauth2_service()
    state = OAuth2State(
        reason="link",
        post_redirect=body.post_redirect,
        user_id=user.id,
        client_nonce=body.nonce,
    )
    try:
        url = service.get_request_url(provider_type, state, prompt_consent=True)
    except OAuth2NotConfiguredError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Provider not available")
    return RedirectResponseBody(redirect=url)


@router.delete("/api/me/link-{provider}-calendar", status_code=status.HTTP_204_NO_CONTENT)
async def unlink_calendar(provider: str, user: User = Depends(get_current_user)):
    """Stop using a linked calendar."""
    provider_type = parse_provider(provider)
    await get_oauth2_service().unlink_account(provider_type, user.id)


@router.get("/redirect/{provider}")
async def oauth2_redirect(
    provider: str,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    error_description: Optional[str] = None,
):
    """Handle the provider's redirect back to us after the consent screen."""
    provider_type = parse_provider(provider)
    service = get_oauth2_service()

    if error or not code or not state:
        logger.error(f"OAuth2 error from {provider_type.display_name}: {error} - {error_description}")
        return _error_redirect(OAuth2Error.code, provider_type)

    try:
        decoded_state = await service.handle_link_callback(provider_type, code, state)
    except OAuth2NoRefreshTokenError:
        # The user consented before, so no refresh token was issued. Ask again.
        retry_state = service.decode_state(state)
        retry_state.server_nonce = None
        url = service.get_request_url(provider_type, retry_state, prompt_consent=True)
        return RedirectResponse(url=url, status_code=status.HTTP_302_FOUND)
    except OAuth2Error as e:
        logger.warning(f"Linking {provider_type.display_name} calendar failed: {e}")
        return _error_redirect(e.code, provider_type)

    return RedirectResponse(url=_frontend_url(decoded_state.post_redirect), status_code=status.HTTP_302_FOUND)
