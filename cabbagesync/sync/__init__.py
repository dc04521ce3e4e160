"""Calendar event reconciliation and meeting event synchronization."""

from cabbagesync.sync.meeting_events import MeetingEventManager
from cabbagesync.sync.reconcile import get_events_for_meeting
from cabbagesync.sync.subscriber import CalendarSyncSubscriber

__all__ = [
    "MeetingEventManager",
    "get_events_for_meeting",
    "CalendarSyncSubscriber",
]
