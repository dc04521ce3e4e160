"""
Event reconciliation: the external calendar events overlapping a meeting.

The last synchronized window, the provider's continuation cursor and the
resulting events are cached per (meeting, user, provider). As long as the
meeting's window does not change, only the delta since the last sync is
requested; otherwise (or when the provider invalidates the cursor) the whole
window is listed again.
"""

import logging
from typing import Callable, Iterable, Optional

from cabbagesync.meetings.models import Meeting
from cabbagesync.oauth2.common import CalendarEvent, EventChange, OAuth2Error, OAuth2ErrorResponseError
from cabbagesync.oauth2.credentials import OAuth2Credential
from cabbagesync.oauth2.providers.base import OAuth2Provider
from cabbagesync.oauth2.tokens import call_with_credential, get_valid_credential
from cabbagesync.sync import store
from cabbagesync.sync.store import SyncCursor
from cabbagesync.utils.dates import to_utc_from_date_hour_and_tz

logger = logging.getLogger(__name__)

InWindow = Callable[[str, str, str, str], bool]


class SyncCursorMissingError(OAuth2Error):
    """A listing ended without a next page or a continuation cursor."""

    code = "E_INTERNAL_SERVER_ERROR"

    def __init__(self):
        super().__init__("Calendar listing ended without a sync cursor")


def compute_window(meeting: Meeting) -> tuple[str, str]:
    """
    UTC window [start, end] covering every tentative date of a meeting.

    If the meeting's hours wrap past midnight (max_end_hour <= min_start_hour),
    the end falls on the day after the latest tentative date.
    """
    min_date = min(meeting.tentative_dates)
    max_date = max(meeting.tentative_dates)
    end_hour = meeting.max_end_hour
    if end_hour <= meeting.min_start_hour:
        end_hour += 24
    api_start = to_utc_from_date_hour_and_tz(min_date, meeting.min_start_hour, meeting.timezone)
    api_end = to_utc_from_date_hour_and_tz(max_date, end_hour, meeting.timezone)
    return api_start, api_end


def merge_changes(
    events_map: dict[str, CalendarEvent],
    changes: Iterable[EventChange],
    api_start: str,
    api_end: str,
    in_window: InWindow,
) -> None:
    """
    Apply one page of changes to events_map in place.

    Removed items are deleted. Other items are merged into the existing entry,
    so a change carrying only some fields keeps the others. Events which end
    up outside of the window are dropped.
    """
    for change in changes:
        existing = events_map.get(change.id)
        if change.removed:
            events_map.pop(change.id, None)
            continue

        start = change.start or (existing.start if existing else None)
        end = change.end or (existing.end if existing else None)
        if start is None or end is None:
            logger.debug(f"Skipping event {change.id} without start/end")
            continue
        if not in_window(start, end, api_start, api_end):
            events_map.pop(change.id, None)
            continue

        if change.summary is not None:
            summary = change.summary
        elif existing:
            summary = existing.summary
        else:
            summary = ""
        events_map[change.id] = CalendarEvent(id=change.id, summary=summary, start=start, end=end)


async def _incremental_sync(
    provider: OAuth2Provider,
    credential: OAuth2Credential,
    stored: Optional[SyncCursor],
    api_start: str,
    api_end: str,
) -> Optional[tuple[list[CalendarEvent], str, bool]]:
    """
    Replay the delta since the stored cursor.

    Returns None if a full sync is needed instead: no cursor, a cursor for a
    different window, or a cursor the provider no longer accepts.
    """
    if stored is None or (stored.prev_range_start, stored.prev_range_end) != (api_start, api_end):
        return None

    events_map = {event.id: event for event in stored.events}
    changed = False
    page_token = None
    try:
        while True:
            page, credential = await call_with_credential(
                provider,
                credential,
                lambda c, token=page_token: provider.fetch_incremental_page(c, stored.sync_cursor, token),
            )
            if page.changes:
                changed = True
                merge_changes(events_map, page.changes, api_start, api_end, provider.event_in_window)
            if page.next_cursor:
                return list(events_map.values()), page.next_cursor, changed
            if not page.next_page_token:
                raise SyncCursorMissingError()
            page_token = page.next_page_token
    except OAuth2ErrorResponseError as e:
        if provider.is_cursor_invalid(e):
            logger.info(
                f"{provider.type.display_name} sync cursor for user {credential.user_id} "
                f"is no longer valid, doing full sync"
            )
            return None
        raise


async def _full_sync(
    provider: OAuth2Provider,
    credential: OAuth2Credential,
    api_start: str,
    api_end: str,
) -> tuple[list[CalendarEvent], str]:
    events_map: dict[str, CalendarEvent] = {}
    page_token = None
    while True:
        page, credential = await call_with_credential(
            provider,
            credential,
            lambda c, token=page_token: provider.fetch_full_sync_page(c, api_start, api_end, token),
        )
        merge_changes(events_map, page.changes, api_start, api_end, provider.event_in_window)
        if page.next_cursor:
            return list(events_map.values()), page.next_cursor
        if not page.next_page_token:
            raise SyncCursorMissingError()
        page_token = page.next_page_token


async def get_events_for_meeting(
    provider: OAuth2Provider,
    user_id: int,
    meeting: Meeting,
) -> list[CalendarEvent]:
    """
    Events in the user's calendar which overlap the meeting's window, sorted by start.

    Returns an empty list if the user has no linked calendar for this
    provider. Provider errors propagate.
    """
    credential = await get_valid_credential(provider, user_id)
    if credential is None:
        return []

    api_start, api_end = compute_window(meeting)
    stored = await store.get_sync_cursor(provider.type, meeting.id, user_id)

    result = await _incremental_sync(provider, credential, stored, api_start, api_end)
    if result is not None:
        events, next_cursor, need_to_save = result
    else:
        events, next_cursor = await _full_sync(provider, credential, api_start, api_end)
        need_to_save = True

    if need_to_save:
        await store.save_sync_cursor(SyncCursor(
            meeting_id=meeting.id,
            user_id=user_id,
            provider_type=provider.type,
            prev_range_start=api_start,
            prev_range_end=api_end,
            sync_cursor=next_cursor,
            events=events,
        ))

    # Hide the event we created for this meeting in the user's own calendar
    created_event_id = await store.get_created_event_id(provider.type, meeting.id, user_id)
    return sorted(
        (event for event in events if event.id != created_event_id),
        key=lambda event: event.start,
    )
