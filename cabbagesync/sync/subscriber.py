"""Route meeting lifecycle events to the meeting event manager."""

import logging

from cabbagesync.meetings.events import MeetingEventType, MeetingLifecycleEvent
from cabbagesync.sync.meeting_events import MeetingEventManager

logger = logging.getLogger(__name__)


class CalendarSyncSubscriber:
    """Event bus handler; pass the instance itself to MeetingEventBus.subscribe()."""

    def __init__(self, manager: MeetingEventManager):
        self.manager = manager

    async def __call__(self, event: MeetingLifecycleEvent) -> None:
        meeting = event.meeting
        logger.debug(f"Meeting {meeting.id}: {event.type.value}")

        if event.type in (MeetingEventType.SCHEDULED, MeetingEventType.EDITED):
            # Editing an unscheduled meeting has nothing to update
            if meeting.is_scheduled:
                await self.manager.create_or_update_events_for_all_respondents(meeting)
        elif event.type in (MeetingEventType.UNSCHEDULED, MeetingEventType.DELETED):
            await self.manager.delete_events_for_all_respondents(meeting.id)
        elif event.type == MeetingEventType.RESPONDENT_ADDED:
            if meeting.is_scheduled and event.user_id is not None:
                await self.manager.create_or_update_event_for_respondent(event.user_id, meeting)
        elif event.type == MeetingEventType.RESPONDENT_REMOVED:
            if event.user_id is not None:
                await self.manager.delete_event_for_respondent(event.user_id, meeting.id)
