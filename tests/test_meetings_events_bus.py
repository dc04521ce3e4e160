"""Tests for meeting lifecycle events and their routing to calendar sync."""

import asyncio

import pytest

from cabbagesync.database import get_database
from cabbagesync.meetings import repository
from cabbagesync.meetings.events import MeetingEventBus, MeetingEventType, MeetingLifecycleEvent
from cabbagesync.meetings.models import Meeting
from cabbagesync.sync.meeting_events import MeetingEventManager
from cabbagesync.sync.subscriber import CalendarSyncSubscriber

from conftest import insert_meeting, insert_respondent, insert_user


def _meeting(scheduled: bool = True) -> Meeting:
    return Meeting(
        id=5,
        name="Sync",
        timezone="UTC",
        min_start_hour=9,
        max_end_hour=17,
        tentative_dates=["2022-12-21"],
        scheduled_start_datetime="2022-12-21T10:00:00Z" if scheduled else None,
        scheduled_end_datetime="2022-12-21T11:00:00Z" if scheduled else None,
    )


class Recorder:
    def __init__(self):
        self.events: list[MeetingLifecycleEvent] = []
        self.received = asyncio.Event()

    async def __call__(self, event: MeetingLifecycleEvent) -> None:
        self.events.append(event)
        self.received.set()


@pytest.mark.asyncio
async def test_publish_and_wait_survives_failing_handler():
    bus = MeetingEventBus()
    recorder = Recorder()

    async def failing(event):
        raise RuntimeError("boom")

    bus.subscribe(failing)
    bus.subscribe(recorder)

    await bus.publish_and_wait(MeetingLifecycleEvent(type=MeetingEventType.DELETED, meeting=_meeting()))

    assert [event.type for event in recorder.events] == [MeetingEventType.DELETED]


@pytest.mark.asyncio
async def test_publish_runs_in_background():
    bus = MeetingEventBus()
    recorder = Recorder()
    bus.subscribe(recorder)

    bus.publish(MeetingLifecycleEvent(type=MeetingEventType.EDITED, meeting=_meeting()))

    assert recorder.events == []
    await asyncio.wait_for(recorder.received.wait(), timeout=1)
    assert recorder.events[0].type == MeetingEventType.EDITED


@pytest.mark.asyncio
async def test_unsubscribe():
    bus = MeetingEventBus()
    recorder = Recorder()
    bus.subscribe(recorder)
    bus.unsubscribe(recorder)

    await bus.publish_and_wait(MeetingLifecycleEvent(type=MeetingEventType.DELETED, meeting=_meeting()))

    assert recorder.events == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "event_type, scheduled, user_id, expected",
    [
        (MeetingEventType.SCHEDULED, True, None, "create_or_update_events_for_all_respondents"),
        (MeetingEventType.EDITED, True, None, "create_or_update_events_for_all_respondents"),
        (MeetingEventType.EDITED, False, None, None),
        (MeetingEventType.UNSCHEDULED, False, None, "delete_events_for_all_respondents"),
        (MeetingEventType.DELETED, True, None, "delete_events_for_all_respondents"),
        (MeetingEventType.RESPONDENT_ADDED, True, 3, "create_or_update_event_for_respondent"),
        (MeetingEventType.RESPONDENT_ADDED, False, 3, None),
        (MeetingEventType.RESPONDENT_REMOVED, True, 3, "delete_event_for_respondent"),
    ],
)
async def test_subscriber_routing(mocker, event_type, scheduled, user_id, expected):
    manager = mocker.AsyncMock(spec=MeetingEventManager)
    subscriber = CalendarSyncSubscriber(manager)

    await subscriber(MeetingLifecycleEvent(type=event_type, meeting=_meeting(scheduled), user_id=user_id))

    called = [
        name
        for name in (
            "create_or_update_events_for_all_respondents",
            "create_or_update_event_for_respondent",
            "delete_events_for_all_respondents",
            "delete_event_for_respondent",
        )
        if getattr(manager, name).await_count
    ]
    assert called == ([expected] if expected else [])


@pytest.mark.asyncio
async def test_schedule_meeting_publishes(test_db):
    bus = MeetingEventBus()
    recorder = Recorder()
    bus.subscribe(recorder)
    meeting_id = await insert_meeting()

    meeting = await repository.schedule_meeting(
        meeting_id, "2022-12-21T15:00:00Z", "2022-12-21T16:00:00Z", bus=bus
    )

    assert meeting.is_scheduled
    await asyncio.wait_for(recorder.received.wait(), timeout=1)
    event = recorder.events[0]
    assert event.type == MeetingEventType.SCHEDULED
    assert event.meeting.scheduled_start_datetime == "2022-12-21T15:00:00Z"


@pytest.mark.asyncio
async def test_guest_respondent_publishes_nothing(test_db):
    bus = MeetingEventBus()
    recorder = Recorder()
    bus.subscribe(recorder)
    meeting_id = await insert_meeting()

    respondent = await repository.add_respondent(meeting_id, None, [], guest_name="Guest", bus=bus)
    await asyncio.sleep(0)

    assert respondent.guest_name == "Guest"
    assert recorder.events == []


@pytest.mark.asyncio
async def test_delete_meeting_waits_for_handlers_before_deleting(test_db):
    bus = MeetingEventBus()
    meeting_id = await insert_meeting(scheduled=("2022-12-21T15:00:00Z", "2022-12-21T16:00:00Z"))
    seen_rows = []

    async def handler(event):
        # The meeting must still exist while calendar events are removed
        db = await get_database()
        cursor = await db.execute("SELECT COUNT(*) FROM meetings WHERE id = ?", (event.meeting.id,))
        seen_rows.append((await cursor.fetchone())[0])

    bus.subscribe(handler)

    assert await repository.delete_meeting(meeting_id, bus=bus) is True
    assert seen_rows == [1]
    assert await repository.get_meeting(meeting_id) is None
    assert await repository.delete_meeting(meeting_id, bus=bus) is False


@pytest.mark.asyncio
async def test_remove_respondent_waits_for_handlers_before_deleting(test_db):
    bus = MeetingEventBus()
    meeting_id = await insert_meeting()
    user_id = await insert_user("leaving@example.com")
    respondent_id = await insert_respondent(meeting_id, user_id)
    seen = []

    async def handler(event):
        seen.append((event.type, event.user_id, await repository.get_respondent(respondent_id) is not None))

    bus.subscribe(handler)

    assert await repository.remove_respondent(respondent_id, bus=bus) is True
    assert seen == [(MeetingEventType.RESPONDENT_REMOVED, user_id, True)]
    assert await repository.get_respondent(respondent_id) is None
