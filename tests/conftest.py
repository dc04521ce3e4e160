"""Pytest configuration and fixtures."""

import json
import os
import tempfile
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import httpx
import pytest
import pytest_asyncio
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID
from fastapi.testclient import TestClient

# Set test environment variables before imports
os.environ["DATABASE_PATH"] = ":memory:"
os.environ["ENCRYPTION_KEY_FILE"] = "/tmp/test_cabbagesync_encryption.key"
os.environ["PUBLIC_URL"] = "http://localhost:3000"
os.environ["JWT_SIGNING_KEY"] = "test-signing-key"
os.environ["RATE_LIMIT_PER_MINUTE"] = "10000"
os.environ["OAUTH2_GOOGLE_CLIENT_ID"] = "google-client-id"
os.environ["OAUTH2_GOOGLE_CLIENT_SECRET"] = "google-client-secret"
os.environ["OAUTH2_GOOGLE_REDIRECT_URI"] = "http://localhost:3000/redirect/google"


@pytest.fixture(scope="function")
def test_encryption_key():
    """Create a temporary encryption key and install it as the global manager."""
    from cabbagesync.encryption import generate_encryption_key, init_encryption_manager

    key = generate_encryption_key()

    with tempfile.NamedTemporaryFile(mode="wb", delete=False, suffix=".key") as f:
        f.write(key)
        key_path = f.name

    init_encryption_manager(key)

    yield key

    if os.path.exists(key_path):
        os.remove(key_path)


@pytest_asyncio.fixture
async def test_db(test_encryption_key):
    """Create a fresh in-memory test database."""
    from cabbagesync.database import get_database, close_database
    import cabbagesync.database as db_module

    db_module._db_connection = None

    db = await get_database()

    yield db

    await close_database()
    db_module._db_connection = None


@pytest.fixture(autouse=True)
def reset_singletons():
    """Give every test its own OAuth2 service and event bus."""
    import cabbagesync.meetings.events as events_module
    from cabbagesync.oauth2.service import reset_oauth2_service

    reset_oauth2_service()
    events_module._event_bus = None
    yield
    reset_oauth2_service()
    events_module._event_bus = None


@pytest.fixture
def client():
    """Create a test client for the FastAPI app."""
    from cabbagesync.main import app

    with TestClient(app) as c:
        yield c


@pytest.fixture
def mock_http(monkeypatch):
    """
    Route outbound HTTP through an httpx.MockTransport.

    Call the returned function with a handler taking an httpx.Request; every
    request seen is appended to the returned list.
    """
    import cabbagesync.oauth2.http as http_module

    requests: list[httpx.Request] = []

    def install(handler: Callable[[httpx.Request], httpx.Response]) -> list[httpx.Request]:
        def recording_handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return handler(request)

        transport = httpx.MockTransport(recording_handler)
        monkeypatch.setattr(http_module, "_new_client", lambda: httpx.AsyncClient(transport=transport))
        return requests

    return install


@pytest.fixture(scope="session")
def microsoft_certificate(tmp_path_factory):
    """Self-signed certificate and private key files for the client assertion."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "cabbagesync-test")])
    now = datetime.now(timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=30))
        .sign(key, hashes.SHA256())
    )

    directory = tmp_path_factory.mktemp("microsoft")
    cert_path = directory / "cert.pem"
    key_path = directory / "key.pem"
    cert_path.write_bytes(certificate.public_bytes(serialization.Encoding.PEM))
    key_path.write_bytes(key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ))
    return {
        "cert_path": str(cert_path),
        "key_path": str(key_path),
        "certificate": certificate,
        "public_key_pem": key.public_key().public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode(),
    }


@pytest.fixture
def microsoft_settings(microsoft_certificate):
    from cabbagesync.config import Settings

    return Settings(
        oauth2_microsoft_client_id="microsoft-client-id",
        oauth2_microsoft_certificate_path=microsoft_certificate["cert_path"],
        oauth2_microsoft_private_key_path=microsoft_certificate["key_path"],
        oauth2_microsoft_redirect_uri="http://localhost:3000/redirect/microsoft",
    )


async def insert_user(email: str, name: str = "User", password_hash: Optional[str] = None) -> int:
    from cabbagesync.database import get_database

    db = await get_database()
    cursor = await db.execute(
        """INSERT INTO users (name, email, password_hash)
           VALUES (?, ?, ?)
           RETURNING id""",
        (name, email, password_hash),
    )
    row = await cursor.fetchone()
    await db.commit()
    return row["id"]


async def insert_meeting(
    name: str = "Team sync",
    tentative_dates: Optional[list[str]] = None,
    timezone_name: str = "America/New_York",
    min_start_hour: float = 10,
    max_end_hour: float = 16,
    about: str = "",
    scheduled: Optional[tuple[str, str]] = None,
) -> int:
    from cabbagesync.database import get_database

    dates = tentative_dates or ["2022-12-21", "2022-12-22", "2022-12-24"]
    start, end = scheduled or (None, None)
    db = await get_database()
    cursor = await db.execute(
        """INSERT INTO meetings
           (name, about, timezone, min_start_hour, max_end_hour, tentative_dates,
            scheduled_start_datetime, scheduled_end_datetime)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?)
           RETURNING id""",
        (name, about, timezone_name, min_start_hour, max_end_hour, json.dumps(dates), start, end),
    )
    row = await cursor.fetchone()
    await db.commit()
    return row["id"]


async def insert_respondent(meeting_id: int, user_id: Optional[int]) -> int:
    from cabbagesync.database import get_database

    db = await get_database()
    cursor = await db.execute(
        """INSERT INTO meeting_respondents (meeting_id, user_id, availabilities)
           VALUES (?, ?, '[]')
           RETURNING respondent_id""",
        (meeting_id, user_id),
    )
    row = await cursor.fetchone()
    await db.commit()
    return row["respondent_id"]


async def insert_credential(
    user_id: int,
    provider_type=None,
    expires_at: Optional[int] = None,
    linked_calendar: bool = True,
    access_token: str = "access-token",
    refresh_token: str = "refresh-token",
):
    from cabbagesync.oauth2.common import ProviderType
    from cabbagesync.oauth2.credentials import OAuth2Credential, insert_credential as store
    from cabbagesync.utils.dates import seconds_since_epoch

    credential = OAuth2Credential(
        user_id=user_id,
        provider_type=provider_type or ProviderType.GOOGLE,
        sub=f"sub-{user_id}",
        access_token=access_token,
        access_token_expires_at=expires_at if expires_at is not None else seconds_since_epoch() + 3600,
        refresh_token=refresh_token,
        linked_calendar=linked_calendar,
    )
    await store(credential)
    return credential
