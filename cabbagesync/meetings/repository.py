"""Meeting writes which affect external calendars, publishing lifecycle events."""

import json
import logging
from typing import Optional

from cabbagesync.database import get_database
from cabbagesync.meetings.events import (
    MeetingEventBus,
    MeetingEventType,
    MeetingLifecycleEvent,
    get_event_bus,
)
from cabbagesync.meetings.models import Meeting, Respondent, row_to_meeting, row_to_respondent

logger = logging.getLogger(__name__)


async def get_meeting(meeting_id: int) -> Optional[Meeting]:
    db = await get_database()
    cursor = await db.execute("SELECT * FROM meetings WHERE id = ?", (meeting_id,))
    row = await cursor.fetchone()
    return row_to_meeting(row) if row else None


async def get_respondent(respondent_id: int) -> Optional[Respondent]:
    db = await get_database()
    cursor = await db.execute(
        "SELECT * FROM meeting_respondents WHERE respondent_id = ?", (respondent_id,)
    )
    row = await cursor.fetchone()
    return row_to_respondent(row) if row else None


async def create_meeting(
    name: str,
    timezone: str,
    min_start_hour: float,
    max_end_hour: float,
    tentative_dates: list[str],
    about: str = "",
    creator_id: Optional[int] = None,
) -> Meeting:
    db = await get_database()
    cursor = await db.execute(
        """INSERT INTO meetings
           (name, about, timezone, min_start_hour, max_end_hour, tentative_dates, creator_id)
           VALUES (?, ?, ?, ?, ?, ?, ?)
           RETURNING id""",
        (name, about, timezone, min_start_hour, max_end_hour, json.dumps(sorted(tentative_dates)), creator_id)
    )
    row = await cursor.fetchone()
    await db.commit()
    return await get_meeting(row["id"])


async def schedule_meeting(
    meeting_id: int,
    start: str,
    end: str,
    bus: Optional[MeetingEventBus] = None,
) -> Optional[Meeting]:
    """Set (or change) the scheduled time; start and end are UTC strings."""
    db = await get_database()
    await db.execute(
        """UPDATE meetings SET scheduled_start_datetime = ?, scheduled_end_datetime = ?
           WHERE id = ?""",
        (start, end, meeting_id)
    )
    await db.commit()
    meeting = await get_meeting(meeting_id)
    if meeting:
        (bus or get_event_bus()).publish(
            MeetingLifecycleEvent(type=MeetingEventType.SCHEDULED, meeting=meeting)
        )
    return meeting


async def unschedule_meeting(meeting_id: int, bus: Optional[MeetingEventBus] = None) -> Optional[Meeting]:
    db = await get_database()
    await db.execute(
        """UPDATE meetings SET scheduled_start_datetime = NULL, scheduled_end_datetime = NULL
           WHERE id = ?""",
        (meeting_id,)
    )
    await db.commit()
    meeting = await get_meeting(meeting_id)
    if meeting:
        (bus or get_event_bus()).publish(
            MeetingLifecycleEvent(type=MeetingEventType.UNSCHEDULED, meeting=meeting)
        )
    return meeting


async def update_meeting_details(
    meeting_id: int,
    name: Optional[str] = None,
    about: Optional[str] = None,
    bus: Optional[MeetingEventBus] = None,
) -> Optional[Meeting]:
    """Change the name and/or description shown in created calendar events."""
    updates = []
    params: list = []
    if name is not None:
        updates.append("name = ?")
        params.append(name)
    if about is not None:
        updates.append("about = ?")
        params.append(about)

    if updates:
        db = await get_database()
        params.append(meeting_id)
        await db.execute(f"UPDATE meetings SET {', '.join(updates)} WHERE id = ?", params)
        await db.commit()

    meeting = await get_meeting(meeting_id)
    if meeting and updates:
        (bus or get_event_bus()).publish(
            MeetingLifecycleEvent(type=MeetingEventType.EDITED, meeting=meeting)
        )
    return meeting


async def delete_meeting(meeting_id: int, bus: Optional[MeetingEventBus] = None) -> bool:
    """
    Delete a meeting.

    Calendar events are removed first: the rows linking respondents to the
    events we created cascade away with the meeting.
    """
    meeting = await get_meeting(meeting_id)
    if not meeting:
        return False

    await (bus or get_event_bus()).publish_and_wait(
        MeetingLifecycleEvent(type=MeetingEventType.DELETED, meeting=meeting)
    )

    db = await get_database()
    await db.execute("DELETE FROM meetings WHERE id = ?", (meeting_id,))
    await db.commit()
    logger.info(f"Deleted meeting {meeting_id}")
    return True


async def add_respondent(
    meeting_id: int,
    user_id: Optional[int],
    availabilities: list[str],
    guest_name: Optional[str] = None,
    bus: Optional[MeetingEventBus] = None,
) -> Respondent:
    db = await get_database()
    cursor = await db.execute(
        """INSERT INTO meeting_respondents (meeting_id, user_id, guest_name, availabilities)
           VALUES (?, ?, ?, ?)
           RETURNING respondent_id""",
        (meeting_id, user_id, guest_name, json.dumps(availabilities))
    )
    row = await cursor.fetchone()
    await db.commit()
    respondent = await get_respondent(row["respondent_id"])

    meeting = await get_meeting(meeting_id)
    # Guests have no calendar to update
    if meeting and user_id is not None:
        (bus or get_event_bus()).publish(
            MeetingLifecycleEvent(type=MeetingEventType.RESPONDENT_ADDED, meeting=meeting, user_id=user_id)
        )
    return respondent


async def remove_respondent(respondent_id: int, bus: Optional[MeetingEventBus] = None) -> bool:
    """Delete a respondent, after removing their calendar event."""
    respondent = await get_respondent(respondent_id)
    if not respondent:
        return False

    meeting = await get_meeting(respondent.meeting_id)
    if meeting and respondent.user_id is not None:
        await (bus or get_event_bus()).publish_and_wait(
            MeetingLifecycleEvent(
                type=MeetingEventType.RESPONDENT_REMOVED,
                meeting=meeting,
                user_id=respondent.user_id,
            )
        )

    db = await get_database()
    await db.execute("DELETE FROM meeting_respondents WHERE respondent_id = ?", (respondent_id,))
    await db.commit()
    return True
