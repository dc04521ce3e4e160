"""Persistence for sync cursors and created-event links."""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from cryptography.exceptions import InvalidTag
from pydantic import BaseModel

from cabbagesync.database import get_database
from cabbagesync.oauth2.common import CalendarEvent, ProviderType
from cabbagesync.oauth2.credentials import OAuth2Credential, row_to_credential

logger = logging.getLogger(__name__)


class SyncCursor(BaseModel):
    """Last synchronized window of one user's calendar for one meeting."""
    meeting_id: int
    user_id: int
    provider_type: ProviderType
    prev_range_start: str
    prev_range_end: str
    sync_cursor: str
    events: list[CalendarEvent]


@dataclass
class LinkedRespondent:
    """A respondent whose calendar is linked, with the event we created for them (if any)."""
    respondent_id: int
    credential: OAuth2Credential
    created_event_id: Optional[str]


async def get_sync_cursor(
    provider_type: ProviderType,
    meeting_id: int,
    user_id: int,
) -> Optional[SyncCursor]:
    db = await get_database()
    cursor = await db.execute(
        """SELECT * FROM calendar_sync_cursors
           WHERE meeting_id = ? AND user_id = ? AND provider_type = ?""",
        (meeting_id, user_id, int(provider_type))
    )
    row = await cursor.fetchone()
    if not row:
        return None
    return SyncCursor(
        meeting_id=row["meeting_id"],
        user_id=row["user_id"],
        provider_type=ProviderType(row["provider_type"]),
        prev_range_start=row["prev_range_start"],
        prev_range_end=row["prev_range_end"],
        sync_cursor=row["sync_cursor"],
        events=[CalendarEvent(**event) for event in json.loads(row["events"])],
    )


async def save_sync_cursor(sync_cursor: SyncCursor) -> None:
    """Insert or replace; concurrent writers for the same row are last-write-wins."""
    db = await get_database()
    await db.execute(
        """INSERT INTO calendar_sync_cursors
           (meeting_id, user_id, provider_type, events, prev_range_start,
            prev_range_end, sync_cursor, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?)
           ON CONFLICT(meeting_id, user_id, provider_type) DO UPDATE SET
           events = excluded.events,
           prev_range_start = excluded.prev_range_start,
           prev_range_end = excluded.prev_range_end,
           sync_cursor = excluded.sync_cursor,
           updated_at = excluded.updated_at""",
        (
            sync_cursor.meeting_id,
            sync_cursor.user_id,
            int(sync_cursor.provider_type),
            json.dumps([event.model_dump() for event in sync_cursor.events]),
            sync_cursor.prev_range_start,
            sync_cursor.prev_range_end,
            sync_cursor.sync_cursor,
            datetime.utcnow().isoformat(),
        )
    )
    await db.commit()


async def delete_sync_cursors_for_ended_meetings(latest_date: str) -> int:
    """Delete cursors of meetings whose last tentative date is before latest_date."""
    db = await get_database()
    cursor = await db.execute(
        """DELETE FROM calendar_sync_cursors
           WHERE meeting_id IN (
               SELECT m.id FROM meetings m
               WHERE (SELECT MAX(value) FROM json_each(m.tentative_dates)) < ?
           )""",
        (latest_date,)
    )
    await db.commit()
    return cursor.rowcount


async def get_created_event_id(
    provider_type: ProviderType,
    meeting_id: int,
    user_id: int,
) -> Optional[str]:
    """ID of the event we created in this user's calendar for this meeting."""
    db = await get_database()
    cursor = await db.execute(
        """SELECT e.created_event_id FROM calendar_created_events e
           JOIN meeting_respondents r ON r.respondent_id = e.respondent_id
           WHERE r.meeting_id = ? AND e.user_id = ? AND e.provider_type = ?""",
        (meeting_id, user_id, int(provider_type))
    )
    row = await cursor.fetchone()
    return row["created_event_id"] if row else None


async def get_linked_respondents(
    provider_type: ProviderType,
    meeting_id: int,
    user_id: Optional[int] = None,
    only_with_created_event: bool = False,
) -> list[LinkedRespondent]:
    """
    Respondents of a meeting whose calendar for this provider is linked.

    Pass user_id to restrict the result to a single respondent.
    """
    join = "JOIN" if only_with_created_event else "LEFT JOIN"
    query = f"""SELECT c.*, r.respondent_id, e.created_event_id
                FROM meeting_respondents r
                JOIN oauth2_credentials c
                    ON c.user_id = r.user_id AND c.provider_type = ?
                {join} calendar_created_events e
                    ON e.respondent_id = r.respondent_id AND e.provider_type = c.provider_type
                WHERE r.meeting_id = ? AND c.linked_calendar"""
    params: list = [int(provider_type), meeting_id]
    if user_id is not None:
        query += " AND r.user_id = ?"
        params.append(user_id)

    db = await get_database()
    cursor = await db.execute(query, params)
    rows = await cursor.fetchall()

    linked = []
    for row in rows:
        try:
            credential = row_to_credential(row)
        except (InvalidTag, ValueError) as e:
            # One unreadable credential must not hold up the other respondents
            logger.error(
                f"Could not decrypt credential of user {row['user_id']} "
                f"for respondent {row['respondent_id']}: {e!r}"
            )
            continue
        linked.append(LinkedRespondent(
            respondent_id=row["respondent_id"],
            credential=credential,
            created_event_id=row["created_event_id"],
        ))
    return linked


async def save_created_event(
    provider_type: ProviderType,
    respondent_id: int,
    user_id: int,
    created_event_id: str,
) -> None:
    db = await get_database()
    await db.execute(
        """INSERT INTO calendar_created_events
           (respondent_id, user_id, provider_type, created_event_id)
           VALUES (?, ?, ?, ?)
           ON CONFLICT(respondent_id, provider_type) DO UPDATE SET
           created_event_id = excluded.created_event_id""",
        (respondent_id, user_id, int(provider_type), created_event_id)
    )
    await db.commit()


async def delete_created_event(provider_type: ProviderType, respondent_id: int) -> None:
    db = await get_database()
    await db.execute(
        "DELETE FROM calendar_created_events WHERE respondent_id = ? AND provider_type = ?",
        (respondent_id, int(provider_type))
    )
    await db.commit()
