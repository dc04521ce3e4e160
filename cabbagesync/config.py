"""Application configuration management."""

import hashlib
import os
import secrets
from functools import lru_cache
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings


# Fallback JWT secret when no encryption key exists yet (generated once per process)
_fallback_session_secret: Optional[str] = None


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_path: str = "/data/cabbagesync.db"

    # Encryption
    encryption_key_file: str = "/secrets/encryption.key"

    # Server
    # The public-facing URL of the meeting app; used for links in created events
    public_url: str = "http://localhost:3000"
    log_level: str = "info"

    # Session
    jwt_signing_key: Optional[str] = None  # Derived from encryption key if not set
    session_expire_days: int = 7

    # Rate limiting
    rate_limit_per_minute: int = 60

    # Outbound HTTP
    http_timeout_seconds: float = 30.0

    # Google
    oauth2_google_enabled: bool = True
    oauth2_google_client_id: Optional[str] = None
    oauth2_google_client_secret: Optional[str] = None
    oauth2_google_redirect_uri: Optional[str] = None

    # Microsoft
    oauth2_microsoft_enabled: bool = True
    oauth2_microsoft_client_id: Optional[str] = None
    # PEM-encoded certificate and private key used for the client assertion
    oauth2_microsoft_certificate_path: Optional[str] = None
    oauth2_microsoft_private_key_path: Optional[str] = None
    # 'common' allows work/school and personal accounts, 'consumers' only personal ones
    oauth2_microsoft_tenant_id: str = "consumers"
    oauth2_microsoft_redirect_uri: Optional[str] = None

    # Retention / jobs
    sync_cursor_retention_days: int = 60
    cleanup_interval_minutes: int = 5

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @field_validator("public_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def get_encryption_key() -> bytes:
    """Load encryption key from file."""
    settings = get_settings()
    key_file = settings.encryption_key_file

    if not os.path.exists(key_file):
        raise RuntimeError(f"Encryption key file not found at {key_file}")

    with open(key_file, "rb") as f:
        key = f.read()
        # Only strip trailing newlines; a general strip() can corrupt binary keys
        while key and key[-1:] in (b'\n', b'\r'):
            key = key[:-1]

    if len(key) < 32:
        raise RuntimeError("Invalid encryption key: must be at least 32 bytes")

    return key


def get_session_secret() -> str:
    """Get the JWT signing secret, derived from the encryption key if not set."""
    settings = get_settings()
    if settings.jwt_signing_key:
        return settings.jwt_signing_key

    try:
        key = get_encryption_key()
        return hashlib.sha256(key + b"session_secret").hexdigest()
    except RuntimeError:
        # No key on disk: tokens will not survive a restart
        global _fallback_session_secret
        if _fallback_session_secret is None:
            _fallback_session_secret = secrets.token_urlsafe(32)
        return _fallback_session_secret
