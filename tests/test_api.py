"""Tests for API endpoints."""

from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from jose import jwt

from cabbagesync.auth.routes import LinkCalendarRequest, link_calendar, oauth2_redirect, unlink_calendar
from cabbagesync.auth.session import User, create_session_token, get_current_user
from cabbagesync.api.calendar_events import get_calendar_events
from cabbagesync.oauth2.common import CalendarEvent, OAuth2ErrorResponseError, OAuth2State, ProviderType
from cabbagesync.oauth2.credentials import get_credential
from cabbagesync.oauth2.providers.google import SCOPES_IN_RESPONSE
from cabbagesync.oauth2.service import get_oauth2_service

from conftest import insert_credential, insert_user


def _user(user_id: int = 1) -> User:
    return User(id=user_id, name="User", email="user@example.com")


def _query(url: str) -> dict:
    return {key: values[0] for key, values in parse_qs(urlparse(url).query).items()}


def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_server_info(client):
    response = client.get("/api/server-info")
    assert response.status_code == 200
    assert response.json() == {"googleOAuth2IsSupported": True, "microsoftOAuth2IsSupported": False}


def test_calendar_events_requires_authentication(client):
    response = client.get("/api/me/google-calendar-events", params={"meetingID": 1})
    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Bearer"


def test_link_requires_authentication(client):
    response = client.post("/api/me/link-google-calendar", json={"post_redirect": "/"})
    assert response.status_code == 401


def test_invalid_bearer_token(client):
    response = client.get(
        "/api/me/google-calendar-events",
        params={"meetingID": 1},
        headers={"Authorization": "Bearer not-a-token"},
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_session_token_resolves_user(test_db):
    user_id = await insert_user("session@example.com", name="Session", password_hash="hash")
    token = create_session_token(user_id)

    user = await get_current_user(HTTPAuthorizationCredentials(scheme="Bearer", credentials=token))

    assert (user.id, user.name, user.has_password) == (user_id, "Session", True)


@pytest.mark.asyncio
async def test_session_token_for_deleted_user(test_db):
    token = create_session_token(999)

    with pytest.raises(HTTPException) as exc:
        await get_current_user(HTTPAuthorizationCredentials(scheme="Bearer", credentials=token))
    assert exc.value.status_code == 401


@pytest.mark.asyncio
async def test_link_calendar_returns_consent_url():
    response = await link_calendar("google", LinkCalendarRequest(post_redirect="/m/4", nonce="n1"), user=_user(3))

    assert response.redirect.startswith("https://accounts.google.com/o/oauth2/v2/auth?")
    params = _query(response.redirect)
    assert params["prompt"] == "consent"
    state = get_oauth2_service().decode_state(params["state"])
    assert state == OAuth2State(reason="link", post_redirect="/m/4", user_id=3, client_nonce="n1")


@pytest.mark.asyncio
async def test_link_calendar_rejects_absolute_redirect():
    with pytest.raises(HTTPException) as exc:
        await link_calendar("google", LinkCalendarRequest(post_redirect="https://evil.example"), user=_user())
    assert exc.value.status_code == 400


@pytest.mark.asyncio
@pytest.mark.parametrize("provider", ["microsoft", "yahoo"])
async def test_link_calendar_unavailable_provider(provider):
    with pytest.raises(HTTPException) as exc:
        await link_calendar(provider, LinkCalendarRequest(), user=_user())
    assert exc.value.status_code == 404


@pytest.mark.asyncio
async def test_redirect_with_provider_error():
    response = await oauth2_redirect("google", error="access_denied", error_description="User said no")

    assert response.status_code == 302
    assert response.headers["location"] == "http://localhost:3000/error?e=E_OAUTH2_ERROR&provider=GOOGLE"


@pytest.mark.asyncio
async def test_redirect_success_links_calendar(test_db, mock_http):
    user_id = await insert_user("redirect@example.com")
    mock_http(lambda request: httpx.Response(200, json={
        "access_token": "access-token",
        "refresh_token": "refresh-token",
        "expires_in": 3599,
        "scope": " ".join(SCOPES_IN_RESPONSE),
        "id_token": jwt.encode({"sub": "google-sub"}, "irrelevant", algorithm="HS256"),
    }))
    state = get_oauth2_service().encode_state(OAuth2State(reason="link", post_redirect="/m/8", user_id=user_id))

    response = await oauth2_redirect("google", code="code", state=state)

    assert response.headers["location"] == "http://localhost:3000/m/8"
    assert (await get_credential(ProviderType.GOOGLE, user_id)).sub == "google-sub"


@pytest.mark.asyncio
async def test_redirect_without_refresh_token_prompts_consent_again(test_db, mock_http):
    user_id = await insert_user("noref@example.com")
    mock_http(lambda request: httpx.Response(200, json={
        "access_token": "access-token",
        "expires_in": 3599,
        "scope": " ".join(SCOPES_IN_RESPONSE),
        "id_token": jwt.encode({"sub": "google-sub"}, "irrelevant", algorithm="HS256"),
    }))
    state = get_oauth2_service().encode_state(OAuth2State(reason="link", post_redirect="/m/8", user_id=user_id))

    response = await oauth2_redirect("google", code="code", state=state)

    location = response.headers["location"]
    assert location.startswith("https://accounts.google.com/")
    params = _query(location)
    assert params["prompt"] == "consent"
    assert get_oauth2_service().decode_state(params["state"]).user_id == user_id


@pytest.mark.asyncio
async def test_redirect_with_invalid_state(test_db):
    response = await oauth2_redirect("google", code="code", state="garbage")

    assert _query(response.headers["location"]) == {"e": "E_OAUTH2_INVALID_STATE", "provider": "GOOGLE"}


@pytest.mark.asyncio
async def test_unlink_calendar(test_db, mock_http):
    user_id = await insert_user("unlink@example.com", password_hash="hash")
    await insert_credential(user_id)
    mock_http(lambda request: httpx.Response(200))

    await unlink_calendar("google", user=_user(user_id))

    assert await get_credential(ProviderType.GOOGLE, user_id) is None


@pytest.mark.asyncio
async def test_calendar_events_response(monkeypatch):
    service = get_oauth2_service()

    async def fake_events(provider_type, user_id, meeting_id):
        assert (provider_type, user_id, meeting_id) == (ProviderType.GOOGLE, 1, 10)
        return [CalendarEvent(id="x", summary="Dentist", start="2022-12-21T16:00:00Z", end="2022-12-21T17:00:00Z")]

    monkeypatch.setattr(service, "get_events_for_meeting", fake_events)

    response = await get_calendar_events("google", meeting_id=10, user=_user())

    assert response.model_dump() == {"events": [{
        "summary": "Dentist",
        "startDateTime": "2022-12-21T16:00:00Z",
        "endDateTime": "2022-12-21T17:00:00Z",
    }]}


@pytest.mark.asyncio
async def test_calendar_events_unknown_meeting(test_db):
    with pytest.raises(HTTPException) as exc:
        await get_calendar_events("google", meeting_id=404, user=_user())
    assert exc.value.status_code == 404


@pytest.mark.asyncio
async def test_calendar_events_provider_not_configured():
    with pytest.raises(HTTPException) as exc:
        await get_calendar_events("microsoft", meeting_id=1, user=_user())
    assert exc.value.status_code == 404


@pytest.mark.asyncio
async def test_calendar_events_provider_failure_is_bad_gateway(monkeypatch):
    service = get_oauth2_service()

    async def failing(provider_type, user_id, meeting_id):
        raise OAuth2ErrorResponseError(503)

    monkeypatch.setattr(service, "get_events_for_meeting", failing)

    with pytest.raises(HTTPException) as exc:
        await get_calendar_events("google", meeting_id=1, user=_user())
    assert exc.value.status_code == 502
    assert exc.value.detail == "E_INTERNAL_SERVER_ERROR"
