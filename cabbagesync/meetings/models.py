"""Meeting and respondent records as read by the calendar sync subsystem."""

import json
from typing import Optional

from pydantic import BaseModel


class Meeting(BaseModel):
    """A meeting; times are UTC strings like '2022-12-21T15:00:00Z'."""
    id: int
    name: str
    about: str = ""
    timezone: str  # IANA name
    min_start_hour: float
    max_end_hour: float
    tentative_dates: list[str]  # 'YYYY-MM-DD'
    scheduled_start_datetime: Optional[str] = None
    scheduled_end_datetime: Optional[str] = None
    creator_id: Optional[int] = None

    @property
    def is_scheduled(self) -> bool:
        return self.scheduled_start_datetime is not None and self.scheduled_end_datetime is not None


class Respondent(BaseModel):
    respondent_id: int
    meeting_id: int
    user_id: Optional[int] = None  # None for guests
    guest_name: Optional[str] = None
    availabilities: list[str] = []


def row_to_meeting(row) -> Meeting:
    return Meeting(
        id=row["id"],
        name=row["name"],
        about=row["about"],
        timezone=row["timezone"],
        min_start_hour=row["min_start_hour"],
        max_end_hour=row["max_end_hour"],
        tentative_dates=json.loads(row["tentative_dates"]),
        scheduled_start_datetime=row["scheduled_start_datetime"],
        scheduled_end_datetime=row["scheduled_end_datetime"],
        creator_id=row["creator_id"],
    )


def row_to_respondent(row) -> Respondent:
    return Respondent(
        respondent_id=row["respondent_id"],
        meeting_id=row["meeting_id"],
        user_id=row["user_id"],
        guest_name=row["guest_name"],
        availabilities=json.loads(row["availabilities"]),
    )
