"""Google Calendar provider."""

import asyncio
import logging
from typing import Any, Callable, Optional

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from cabbagesync.meetings.models import Meeting
from cabbagesync.oauth2.common import (
    OIDC_SCOPES,
    DeltaPage,
    EventChange,
    OAuth2Config,
    OAuth2ErrorResponseError,
    OAuth2State,
    ProviderType,
)
from cabbagesync.oauth2.credentials import OAuth2Credential
from cabbagesync.oauth2.http import error_code_from_body
from cabbagesync.oauth2.providers.base import OAuth2Provider
from cabbagesync.utils.dates import to_utc_from_all_day_date, to_utc_from_rfc3339

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"

CALENDAR_ID = "primary"

# Only events created by this app or owned by the user
CALENDAR_SCOPES = ["https://www.googleapis.com/auth/calendar.events.owned"]

# The profile and email scopes come back in their long form
SCOPES_IN_RESPONSE = [
    "openid",
    "https://www.googleapis.com/auth/userinfo.profile",
    "https://www.googleapis.com/auth/userinfo.email",
    *CALENDAR_SCOPES,
]


def _resolve_time(value: Optional[dict]) -> Optional[str]:
    """Google times are {dateTime: RFC 3339} or, for all-day events, {date}."""
    if not value:
        return None
    if value.get("dateTime"):
        return to_utc_from_rfc3339(value["dateTime"])
    if value.get("date"):
        return to_utc_from_all_day_date(value["date"])
    return None


def _to_change(item: dict) -> EventChange:
    # Deleted events only carry the ID and the status
    if item.get("status") == "cancelled":
        return EventChange(id=item["id"], removed=True)
    return EventChange(
        id=item["id"],
        summary=item.get("summary", ""),
        start=_resolve_time(item.get("start")),
        end=_resolve_time(item.get("end")),
    )


def _to_page(result: dict) -> DeltaPage:
    return DeltaPage(
        changes=[_to_change(item) for item in result.get("items", [])],
        next_page_token=result.get("nextPageToken"),
        next_cursor=result.get("nextSyncToken"),
    )


class GoogleOAuth2Provider(OAuth2Provider):
    """Google Calendar through the Calendar API v3 client library."""

    type = ProviderType.GOOGLE

    _static_config = OAuth2Config(
        authz_endpoint=GOOGLE_AUTH_URL,
        token_endpoint=GOOGLE_TOKEN_URL,
        revoke_endpoint=GOOGLE_REVOKE_URL,
        scopes=[*OIDC_SCOPES, *CALENDAR_SCOPES],
    )

    @property
    def static_config(self) -> OAuth2Config:
        return self._static_config

    def is_configured(self) -> bool:
        settings = self.settings
        return bool(
            settings.oauth2_google_enabled
            and settings.oauth2_google_client_id
            and settings.oauth2_google_client_secret
            and settings.oauth2_google_redirect_uri
        )

    def scopes_to_expect_in_response(self) -> list[str]:
        return SCOPES_IN_RESPONSE

    def get_partial_authz_query_params(self, state: OAuth2State) -> dict[str, str]:
        return {
            "client_id": self.settings.oauth2_google_client_id,
            "redirect_uri": self.settings.oauth2_google_redirect_uri,
            # Needed to get a refresh token
            "access_type": "offline",
        }

    def get_partial_token_form_params(self, server_nonce: Optional[str]) -> dict[str, str]:
        return {
            "client_id": self.settings.oauth2_google_client_id,
            "client_secret": self.settings.oauth2_google_client_secret,
            "redirect_uri": self.settings.oauth2_google_redirect_uri,
        }

    def get_partial_refresh_params(self) -> dict[str, str]:
        return {
            "client_id": self.settings.oauth2_google_client_id,
            "client_secret": self.settings.oauth2_google_client_secret,
        }

    def _build_service(self, access_token: str):
        return build("calendar", "v3", credentials=Credentials(token=access_token), cache_discovery=False)

    async def _execute(self, access_token: str, make_request: Callable[[Any], Any]) -> Any:
        """
        Run a Calendar API request in a worker thread.

        ``make_request`` receives the events resource and returns an
        unexecuted request. HttpError is translated to OAuth2ErrorResponseError.
        """
        def run():
            service = self._build_service(access_token)
            return make_request(service.events()).execute()

        try:
            return await asyncio.to_thread(run)
        except HttpError as e:
            content = e.content.decode("utf-8", errors="replace") if e.content else ""
            logger.error(f"statusCode={e.resp.status} body={content}")
            raise OAuth2ErrorResponseError(e.resp.status, error_code_from_body(content)) from e

    async def fetch_full_sync_page(
        self,
        credential: OAuth2Credential,
        api_start: str,
        api_end: str,
        page_token: Optional[str] = None,
    ) -> DeltaPage:
        params = {
            "calendarId": CALENDAR_ID,
            "maxAttendees": 1,
            "singleEvents": True,
            "timeMin": api_start,
            "timeMax": api_end,
        }
        if page_token:
            params["pageToken"] = page_token
        result = await self._execute(credential.access_token, lambda events: events.list(**params))
        return _to_page(result)

    async def fetch_incremental_page(
        self,
        credential: OAuth2Credential,
        cursor: str,
        page_token: Optional[str] = None,
    ) -> DeltaPage:
        # timeMin/timeMax are not allowed together with a sync token
        params = {
            "calendarId": CALENDAR_ID,
            "maxAttendees": 1,
            "singleEvents": True,
            "syncToken": cursor,
        }
        if page_token:
            params["pageToken"] = page_token
        result = await self._execute(credential.access_token, lambda events: events.list(**params))
        return _to_page(result)

    def event_in_window(self, start: str, end: str, api_start: str, api_end: str) -> bool:
        # timeMin/timeMax select every event overlapping the window
        return start < api_end and end > api_start

    def _event_body(self, meeting: Meeting) -> dict:
        body = {
            "start": {"dateTime": meeting.scheduled_start_datetime},
            "end": {"dateTime": meeting.scheduled_end_datetime},
            "summary": meeting.name,
            "source": {"title": meeting.name, "url": self.meeting_url(meeting)},
        }
        if meeting.about:
            body["description"] = meeting.about
        return body

    async def create_or_update_meeting_event(
        self,
        credential: OAuth2Credential,
        existing_event_id: Optional[str],
        meeting: Meeting,
    ) -> str:
        body = self._event_body(meeting)

        if existing_event_id:
            try:
                await self._execute(
                    credential.access_token,
                    lambda events: events.update(
                        calendarId=CALENDAR_ID, eventId=existing_event_id, body=body
                    ),
                )
                return existing_event_id
            except OAuth2ErrorResponseError as e:
                if not e.is_gone:
                    raise
                # The user deleted the event; make a new one
                logger.info(f"Event {existing_event_id} no longer exists, creating a new one")

        created = await self._execute(
            credential.access_token,
            lambda events: events.insert(calendarId=CALENDAR_ID, body=body),
        )
        return created["id"]

    async def delete_meeting_event(self, credential: OAuth2Credential, event_id: str) -> None:
        try:
            await self._execute(
                credential.access_token,
                lambda events: events.delete(calendarId=CALENDAR_ID, eventId=event_id),
            )
        except OAuth2ErrorResponseError as e:
            if e.is_gone:
                # Already deleted
                return
            raise
