"""External calendar events for the meeting page."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from cabbagesync.auth.routes import parse_provider
from cabbagesync.auth.session import User, get_current_user
from cabbagesync.oauth2.common import OAuth2Error, OAuth2NotConfiguredError
from cabbagesync.oauth2.service import get_oauth2_service

logger = logging.getLogger(__name__)
router = APIRouter(tags=["calendar"])


class ExternalEventResponse(BaseModel):
    summary: str
    startDateTime: str
    endDateTime: str


class ExternalEventsResponse(BaseModel):
    events: list[ExternalEventResponse]


@router.get("/me/{provider}-calendar-events", response_model=ExternalEventsResponse)
async def get_calendar_events(
    provider: str,
    meeting_id: int = Query(..., alias="meetingID"),
    user: User = Depends(get_current_user),
):
    """Busy times from the user's calendar, to overlay on the availabilities grid."""
    provider_type = parse_provider(provider)
    try:
        events = await get_oauth2_service().get_events_for_meeting(provider_type, user.id, meeting_id)
    except OAuth2NotConfiguredError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Provider not available")
    except OAuth2Error as e:
        # The client shows the meeting without an overlay
        logger.error(f"Could not get {provider_type.display_name} events for user {user.id}: {e}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.code)

    if events is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Meeting not found")

    return ExternalEventsResponse(events=[
        ExternalEventResponse(summary=event.summary, startDateTime=event.start, endDateTime=event.end)
        for event in events
    ])
