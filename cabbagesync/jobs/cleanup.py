"""Retention cleanup jobs."""

import logging
from datetime import datetime, timedelta

from cabbagesync.config import get_settings
from cabbagesync.oauth2.common import ProviderType
from cabbagesync.oauth2.service import get_oauth2_service
from cabbagesync.sync.store import delete_sync_cursors_for_ended_meetings

logger = logging.getLogger(__name__)


async def prune_stale_sync_cursors() -> int:
    """
    Delete cached calendar events of meetings which are long over.

    A meeting is over once its latest tentative date has passed; its cursors
    are kept for SYNC_CURSOR_RETENTION_DAYS after that.
    """
    settings = get_settings()
    cutoff = (datetime.utcnow() - timedelta(days=settings.sync_cursor_retention_days)).date().isoformat()
    deleted = await delete_sync_cursors_for_ended_meetings(cutoff)
    if deleted:
        logger.info(f"Pruned {deleted} stale sync cursors (meetings ending before {cutoff})")
    return deleted


async def purge_expired_code_verifiers() -> int:
    """Drop PKCE code verifiers whose consent screen was never completed."""
    provider = get_oauth2_service().get_provider(ProviderType.MICROSOFT)
    purged = provider.code_verifier_cache.purge_expired()
    if purged:
        logger.debug(f"Purged {purged} expired PKCE code verifiers")
    return purged
