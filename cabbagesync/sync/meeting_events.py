"""Keep a "this meeting is scheduled" event in each respondent's calendar."""

import logging
from typing import Optional

from cabbagesync.meetings.models import Meeting
from cabbagesync.oauth2.common import ProviderType
from cabbagesync.oauth2.providers.base import OAuth2Provider
from cabbagesync.oauth2.tokens import call_with_credential
from cabbagesync.sync import store
from cabbagesync.sync.store import LinkedRespondent
from cabbagesync.utils.tasks import settle_all

logger = logging.getLogger(__name__)


class MeetingEventManager:
    """
    Creates, updates and deletes meeting events in respondents' calendars.

    Every public method is best effort: each (provider, respondent) pair is
    handled independently and concurrently, failures are logged and never
    raised to the caller.
    """

    def __init__(self, providers: dict[ProviderType, OAuth2Provider]):
        self.providers = providers

    def _configured_providers(self) -> list[OAuth2Provider]:
        return [provider for provider in self.providers.values() if provider.is_configured()]

    async def _create_or_update(
        self,
        provider: OAuth2Provider,
        linked: LinkedRespondent,
        meeting: Meeting,
    ) -> None:
        event_id, _ = await call_with_credential(
            provider,
            linked.credential,
            lambda c: provider.create_or_update_meeting_event(c, linked.created_event_id, meeting),
        )
        if event_id != linked.created_event_id:
            await store.save_created_event(
                provider.type, linked.respondent_id, linked.credential.user_id, event_id
            )
        logger.debug(
            f"{provider.type.display_name} event {event_id} up to date for respondent {linked.respondent_id}"
        )

    async def _delete(self, provider: OAuth2Provider, linked: LinkedRespondent) -> None:
        await call_with_credential(
            provider,
            linked.credential,
            lambda c: provider.delete_meeting_event(c, linked.created_event_id),
        )
        await store.delete_created_event(provider.type, linked.respondent_id)
        logger.debug(
            f"Deleted {provider.type.display_name} event {linked.created_event_id} "
            f"for respondent {linked.respondent_id}"
        )

    async def _create_or_update_for_provider(
        self,
        provider: OAuth2Provider,
        meeting: Meeting,
        user_id: Optional[int] = None,
    ) -> None:
        respondents = await store.get_linked_respondents(provider.type, meeting.id, user_id=user_id)
        await settle_all(
            (self._create_or_update(provider, linked, meeting) for linked in respondents),
            f"{provider.type.display_name} create/update event for meeting {meeting.id}",
        )

    async def _delete_for_provider(
        self,
        provider: OAuth2Provider,
        meeting_id: int,
        user_id: Optional[int] = None,
    ) -> None:
        respondents = await store.get_linked_respondents(
            provider.type, meeting_id, user_id=user_id, only_with_created_event=True
        )
        await settle_all(
            (self._delete(provider, linked) for linked in respondents),
            f"{provider.type.display_name} delete event for meeting {meeting_id}",
        )

    async def create_or_update_events_for_all_respondents(self, meeting: Meeting) -> None:
        if not meeting.is_scheduled:
            return
        await settle_all(
            (self._create_or_update_for_provider(p, meeting) for p in self._configured_providers()),
            f"Create/update events for meeting {meeting.id}",
        )

    async def create_or_update_event_for_respondent(self, user_id: int, meeting: Meeting) -> None:
        if not meeting.is_scheduled:
            return
        await settle_all(
            (self._create_or_update_for_provider(p, meeting, user_id) for p in self._configured_providers()),
            f"Create/update events for user {user_id} in meeting {meeting.id}",
        )

    async def delete_events_for_all_respondents(self, meeting_id: int) -> None:
        await settle_all(
            (self._delete_for_provider(p, meeting_id) for p in self._configured_providers()),
            f"Delete events for meeting {meeting_id}",
        )

    async def delete_event_for_respondent(self, user_id: int, meeting_id: int) -> None:
        await settle_all(
            (self._delete_for_provider(p, meeting_id, user_id) for p in self._configured_providers()),
            f"Delete events for user {user_id} in meeting {meeting_id}",
        )
