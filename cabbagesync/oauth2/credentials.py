"""Persisted OAuth2 credentials, one row per (user, provider)."""

import logging
import sqlite3
from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from cabbagesync.database import get_database
from cabbagesync.encryption import decrypt_value, encrypt_value
from cabbagesync.oauth2.common import OAuth2AccountAlreadyLinkedError, ProviderType

logger = logging.getLogger(__name__)


class OAuth2Credential(BaseModel):
    """Decrypted credential row."""
    user_id: int
    provider_type: ProviderType
    sub: str  # account ID at the provider
    access_token: str
    access_token_expires_at: int  # seconds since epoch
    refresh_token: str
    linked_calendar: bool = True


def row_to_credential(row) -> OAuth2Credential:
    """Build a credential from a row selecting the oauth2_credentials columns."""
    return OAuth2Credential(
        user_id=row["user_id"],
        provider_type=ProviderType(row["provider_type"]),
        sub=row["sub"],
        access_token=decrypt_value(row["access_token_encrypted"]),
        access_token_expires_at=row["access_token_expires_at"],
        refresh_token=decrypt_value(row["refresh_token_encrypted"]),
        linked_calendar=bool(row["linked_calendar"]),
    )


async def get_credential(provider_type: ProviderType, user_id: int) -> Optional[OAuth2Credential]:
    """Get a user's credential for a provider."""
    db = await get_database()
    cursor = await db.execute(
        """SELECT * FROM oauth2_credentials
           WHERE user_id = ? AND provider_type = ?""",
        (user_id, int(provider_type))
    )
    row = await cursor.fetchone()
    if row:
        return row_to_credential(row)
    return None


async def get_user_id_by_sub(provider_type: ProviderType, sub: str) -> Optional[int]:
    """Find which user a provider account is linked to."""
    db = await get_database()
    cursor = await db.execute(
        "SELECT user_id FROM oauth2_credentials WHERE provider_type = ? AND sub = ?",
        (int(provider_type), sub)
    )
    row = await cursor.fetchone()
    return row["user_id"] if row else None


async def insert_credential(credential: OAuth2Credential) -> None:
    """
    Store a new credential.

    Raises:
        OAuth2AccountAlreadyLinkedError: the user already has a credential for
            this provider, or the provider account belongs to another user.
    """
    db = await get_database()
    try:
        await db.execute(
            """INSERT INTO oauth2_credentials
               (user_id, provider_type, sub, access_token_encrypted,
                access_token_expires_at, refresh_token_encrypted, linked_calendar, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                credential.user_id,
                int(credential.provider_type),
                credential.sub,
                encrypt_value(credential.access_token),
                credential.access_token_expires_at,
                encrypt_value(credential.refresh_token),
                credential.linked_calendar,
                datetime.utcnow().isoformat(),
            )
        )
        await db.commit()
    except sqlite3.IntegrityError:
        await db.rollback()
        raise OAuth2AccountAlreadyLinkedError()


async def update_tokens(
    provider_type: ProviderType,
    user_id: int,
    access_token: str,
    access_token_expires_at: int,
    refresh_token: Optional[str] = None,
) -> None:
    """Persist a refreshed access token (and the refresh token, if reissued)."""
    db = await get_database()
    now = datetime.utcnow().isoformat()

    if refresh_token:
        await db.execute(
            """UPDATE oauth2_credentials SET
               access_token_encrypted = ?, access_token_expires_at = ?,
               refresh_token_encrypted = ?, updated_at = ?
               WHERE user_id = ? AND provider_type = ?""",
            (
                encrypt_value(access_token),
                access_token_expires_at,
                encrypt_value(refresh_token),
                now,
                user_id,
                int(provider_type),
            )
        )
    else:
        await db.execute(
            """UPDATE oauth2_credentials SET
               access_token_encrypted = ?, access_token_expires_at = ?, updated_at = ?
               WHERE user_id = ? AND provider_type = ?""",
            (encrypt_value(access_token), access_token_expires_at, now, user_id, int(provider_type))
        )
    await db.commit()


async def delete_credential(provider_type: ProviderType, user_id: int) -> None:
    """Delete a credential; cached events and created-event links cascade."""
    db = await get_database()
    await db.execute(
        "DELETE FROM oauth2_credentials WHERE user_id = ? AND provider_type = ?",
        (user_id, int(provider_type))
    )
    await db.commit()


async def unlink_calendar_keep_sign_in(provider_type: ProviderType, user_id: int) -> None:
    """Stop calendar access but keep the tokens so the user can still sign in."""
    db = await get_database()
    await db.execute(
        """UPDATE oauth2_credentials SET linked_calendar = FALSE, updated_at = ?
           WHERE user_id = ? AND provider_type = ?""",
        (datetime.utcnow().isoformat(), user_id, int(provider_type))
    )
    await db.execute(
        "DELETE FROM calendar_sync_cursors WHERE user_id = ? AND provider_type = ?",
        (user_id, int(provider_type))
    )
    await db.commit()
