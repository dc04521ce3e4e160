"""Bearer token authentication using JWTs issued by the accounts service."""

import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from cabbagesync.config import get_session_secret, get_settings
from cabbagesync.database import get_database

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

bearer_scheme = HTTPBearer(auto_error=False)


class User(BaseModel):
    """User model for authenticated requests."""
    id: int
    name: str
    email: str
    has_password: bool = False


def create_session_token(user_id: int) -> str:
    """Create a JWT access token for a user."""
    settings = get_settings()
    expire = datetime.utcnow() + timedelta(days=settings.session_expire_days)
    return jwt.encode({"sub": str(user_id), "exp": expire}, get_session_secret(), algorithm=ALGORITHM)


def verify_session_token(token: str) -> Optional[int]:
    """Verify a token and return the user ID it was issued for."""
    try:
        payload = jwt.decode(token, get_session_secret(), algorithms=[ALGORITHM])
        return int(payload["sub"])
    except (JWTError, KeyError, ValueError) as e:
        logger.warning(f"Invalid session token: {e}")
        return None


async def get_user_by_id(user_id: int) -> Optional[User]:
    db = await get_database()
    cursor = await db.execute("SELECT * FROM users WHERE id = ?", (user_id,))
    row = await cursor.fetchone()
    if row:
        return User(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            has_password=bool(row["password_hash"]),
        )
    return None


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> User:
    """Get the current user from the bearer token, raises 401 if not authenticated."""
    user = None
    if credentials is not None:
        user_id = verify_session_token(credentials.credentials)
        if user_id is not None:
            user = await get_user_by_id(user_id)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user
