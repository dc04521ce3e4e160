"""In-process meeting lifecycle events."""

import logging
from enum import Enum
from typing import Awaitable, Callable, Optional

from pydantic import BaseModel

from cabbagesync.meetings.models import Meeting
from cabbagesync.utils.tasks import create_background_task, settle_all

logger = logging.getLogger(__name__)


class MeetingEventType(str, Enum):
    SCHEDULED = "scheduled"
    UNSCHEDULED = "unscheduled"
    EDITED = "edited"
    DELETED = "deleted"
    RESPONDENT_ADDED = "respondent_added"
    RESPONDENT_REMOVED = "respondent_removed"


class MeetingLifecycleEvent(BaseModel):
    type: MeetingEventType
    meeting: Meeting
    # Set for the respondent_* events
    user_id: Optional[int] = None


Handler = Callable[[MeetingLifecycleEvent], Awaitable[None]]


class MeetingEventBus:
    """Fan meeting lifecycle events out to subscribers."""

    def __init__(self):
        self._handlers: list[Handler] = []

    def subscribe(self, handler: Handler) -> None:
        self._handlers.append(handler)

    def unsubscribe(self, handler: Handler) -> None:
        self._handlers.remove(handler)

    def publish(self, event: MeetingLifecycleEvent) -> None:
        """Dispatch to every handler in the background and return immediately."""
        for handler in self._handlers:
            create_background_task(
                handler(event),
                task_name=f"meeting_{event.meeting.id}_{event.type.value}",
            )

    async def publish_and_wait(self, event: MeetingLifecycleEvent) -> None:
        """Dispatch and wait until every handler has finished, successfully or not."""
        await settle_all(
            (handler(event) for handler in self._handlers),
            f"Handler for meeting {event.meeting.id} {event.type.value}",
        )


_event_bus: Optional[MeetingEventBus] = None


def get_event_bus() -> MeetingEventBus:
    """Get the process-wide event bus."""
    global _event_bus
    if _event_bus is None:
        _event_bus = MeetingEventBus()
    return _event_bus
