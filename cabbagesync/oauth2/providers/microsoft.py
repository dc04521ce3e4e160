"""Microsoft (Outlook / Graph) calendar provider."""

import base64
import hashlib
import logging
import secrets
import string
from typing import Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from jose import jwt

from cabbagesync.config import Settings
from cabbagesync.meetings.models import Meeting
from cabbagesync.oauth2.cache import ExpiringCache
from cabbagesync.oauth2.common import (
    OIDC_SCOPES,
    DeltaPage,
    EventChange,
    OAuth2Config,
    OAuth2ErrorResponseError,
    OAuth2InvalidOrExpiredNonceError,
    OAuth2InvalidStateError,
    OAuth2State,
    ProviderType,
)
from cabbagesync.oauth2.credentials import OAuth2Credential
from cabbagesync.oauth2.http import bearer_headers, request_json
from cabbagesync.oauth2.providers.base import OAuth2Provider
from cabbagesync.utils.dates import seconds_since_epoch, to_utc_from_datetime_and_tz, utc_to_naive_iso

logger = logging.getLogger(__name__)

MICROSOFT_LOGIN_URL = "https://login.microsoftonline.com"
GRAPH_API_URL = "https://graph.microsoft.com/v1.0"
CALENDAR_VIEW_DELTA_URL = f"{GRAPH_API_URL}/me/calendarView/delta"
EVENTS_URL = f"{GRAPH_API_URL}/me/events"

CALENDAR_SCOPES = ["https://graph.microsoft.com/Calendars.ReadWrite"]

CLIENT_ASSERTION_TYPE = "urn:ietf:params:oauth:client-assertion-type:jwt-bearer"
CLIENT_ASSERTION_LIFETIME_SECONDS = 5 * 60

CODE_VERIFIER_LENGTH = 43
CODE_VERIFIER_ALPHABET = string.ascii_letters + string.digits + "-._~"
CODE_VERIFIER_TTL_SECONDS = 5 * 60

# Graph returns local times in the zone named by this header
PREFER_UTC = {"Prefer": 'outlook.timezone="UTC"'}


def _base64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_pkce_code_verifier() -> str:
    return "".join(secrets.choice(CODE_VERIFIER_ALPHABET) for _ in range(CODE_VERIFIER_LENGTH))


def generate_pkce_code_challenge(code_verifier: str) -> str:
    """S256 code challenge: base64url(sha256(verifier)) without padding."""
    return _base64url(hashlib.sha256(code_verifier.encode("ascii")).digest())


def certificate_thumbprint(certificate_pem: bytes) -> str:
    """base64url-encoded SHA-1 thumbprint of a PEM certificate (the 'x5t' JWT header)."""
    certificate = x509.load_pem_x509_certificate(certificate_pem)
    return _base64url(certificate.fingerprint(hashes.SHA1()))


def _resolve_time(value: Optional[dict]) -> Optional[str]:
    if not value:
        return None
    return to_utc_from_datetime_and_tz(value["dateTime"], value.get("timeZone") or "UTC")


def _to_change(item: dict) -> EventChange:
    if "@removed" in item or item.get("isCancelled"):
        return EventChange(id=item["id"], removed=True)
    change = EventChange(
        id=item["id"],
        start=_resolve_time(item.get("start")),
        end=_resolve_time(item.get("end")),
    )
    # Delta items may leave out fields which did not change
    if "subject" in item:
        change.summary = item["subject"] or ""
    return change


def _to_page(response: dict) -> DeltaPage:
    return DeltaPage(
        changes=[_to_change(item) for item in response.get("value", [])],
        next_page_token=response.get("@odata.nextLink"),
        next_cursor=response.get("@odata.deltaLink"),
    )


class MicrosoftOAuth2Provider(OAuth2Provider):
    """
    Microsoft identity platform plus Microsoft Graph.

    The client authenticates with a certificate-signed JWT assertion rather
    than a static secret, and the authorization code flow uses PKCE. Code
    verifiers are kept in memory, keyed by a nonce which travels in the
    OAuth2 state, so the redirect must reach the same process.
    """

    type = ProviderType.MICROSOFT

    def __init__(self, settings: Settings):
        super().__init__(settings)
        tenant = settings.oauth2_microsoft_tenant_id
        self._static_config = OAuth2Config(
            authz_endpoint=f"{MICROSOFT_LOGIN_URL}/{tenant}/oauth2/v2.0/authorize",
            token_endpoint=f"{MICROSOFT_LOGIN_URL}/{tenant}/oauth2/v2.0/token",
            # Microsoft has no revocation endpoint
            revoke_endpoint=None,
            scopes=[*OIDC_SCOPES, "offline_access", *CALENDAR_SCOPES],
        )
        self.code_verifier_cache: ExpiringCache[str] = ExpiringCache()
        self._private_key: Optional[str] = None
        self._x5t: Optional[str] = None
        self._load_certificate()

    def _load_certificate(self) -> None:
        settings = self.settings
        if not (
            settings.oauth2_microsoft_enabled
            and settings.oauth2_microsoft_certificate_path
            and settings.oauth2_microsoft_private_key_path
        ):
            return
        try:
            with open(settings.oauth2_microsoft_certificate_path, "rb") as f:
                certificate_pem = f.read()
            with open(settings.oauth2_microsoft_private_key_path, "r") as f:
                private_key = f.read()
            self._x5t = certificate_thumbprint(certificate_pem)
            self._private_key = private_key
        except (OSError, ValueError) as e:
            logger.error(f"Could not load Microsoft OAuth2 certificate or private key: {e}")
            self._x5t = None
            self._private_key = None

    @property
    def static_config(self) -> OAuth2Config:
        return self._static_config

    def is_configured(self) -> bool:
        settings = self.settings
        return bool(
            settings.oauth2_microsoft_enabled
            and settings.oauth2_microsoft_client_id
            and settings.oauth2_microsoft_redirect_uri
            and self._private_key
            and self._x5t
        )

    def scopes_to_expect_in_response(self) -> list[str]:
        # 'offline_access' is not echoed back
        return [*OIDC_SCOPES, *CALENDAR_SCOPES]

    def generate_client_assertion(self) -> str:
        """RS256 JWT identifying this app to the token endpoint."""
        now = seconds_since_epoch()
        client_id = self.settings.oauth2_microsoft_client_id
        claims = {
            "aud": self.static_config.token_endpoint,
            "exp": now + CLIENT_ASSERTION_LIFETIME_SECONDS,
            "iss": client_id,
            "nbf": now,
            "sub": client_id,
            "iat": now,
        }
        return jwt.encode(claims, self._private_key, algorithm="RS256", headers={"x5t": self._x5t})

    def get_partial_authz_query_params(self, state: OAuth2State) -> dict[str, str]:
        nonce = _base64url(secrets.token_bytes(16))
        code_verifier = generate_pkce_code_verifier()
        self.code_verifier_cache.add(nonce, code_verifier, CODE_VERIFIER_TTL_SECONDS)
        state.server_nonce = nonce
        return {
            "client_id": self.settings.oauth2_microsoft_client_id,
            "redirect_uri": self.settings.oauth2_microsoft_redirect_uri,
            "code_challenge": generate_pkce_code_challenge(code_verifier),
            "code_challenge_method": "S256",
        }

    def get_partial_token_form_params(self, server_nonce: Optional[str]) -> dict[str, str]:
        if not server_nonce:
            raise OAuth2InvalidStateError()
        code_verifier = self.code_verifier_cache.pop(server_nonce)
        if not code_verifier:
            raise OAuth2InvalidOrExpiredNonceError()
        return {
            "client_id": self.settings.oauth2_microsoft_client_id,
            "redirect_uri": self.settings.oauth2_microsoft_redirect_uri,
            "code_verifier": code_verifier,
            "client_assertion_type": CLIENT_ASSERTION_TYPE,
            "client_assertion": self.generate_client_assertion(),
        }

    def get_partial_refresh_params(self) -> dict[str, str]:
        return {
            "client_id": self.settings.oauth2_microsoft_client_id,
            "client_assertion_type": CLIENT_ASSERTION_TYPE,
            "client_assertion": self.generate_client_assertion(),
        }

    async def _get_delta_page(self, credential: OAuth2Credential, url: str, params: Optional[dict] = None) -> DeltaPage:
        response = await request_json(
            "GET",
            url,
            params=params,
            headers=bearer_headers(credential.access_token, PREFER_UTC),
        )
        return _to_page(response or {})

    async def fetch_full_sync_page(
        self,
        credential: OAuth2Credential,
        api_start: str,
        api_end: str,
        page_token: Optional[str] = None,
    ) -> DeltaPage:
        # nextLink URLs already carry every query parameter
        if page_token:
            return await self._get_delta_page(credential, page_token)
        params = {
            "$select": "id,subject,start,end,isCancelled",
            "startDateTime": api_start,
            "endDateTime": api_end,
        }
        return await self._get_delta_page(credential, CALENDAR_VIEW_DELTA_URL, params)

    async def fetch_incremental_page(
        self,
        credential: OAuth2Credential,
        cursor: str,
        page_token: Optional[str] = None,
    ) -> DeltaPage:
        return await self._get_delta_page(credential, page_token or cursor)

    def event_in_window(self, start: str, end: str, api_start: str, api_end: str) -> bool:
        # The delta API may return events outside of the requested range
        return start >= api_start and end <= api_end

    def _event_body(self, meeting: Meeting) -> dict:
        content = meeting.about
        link = self.meeting_url(meeting)
        content = f"{content}\n\n{link}" if content else link
        return {
            "subject": meeting.name,
            "body": {"contentType": "text", "content": content},
            "start": {"dateTime": utc_to_naive_iso(meeting.scheduled_start_datetime), "timeZone": "UTC"},
            "end": {"dateTime": utc_to_naive_iso(meeting.scheduled_end_datetime), "timeZone": "UTC"},
        }

    async def create_or_update_meeting_event(
        self,
        credential: OAuth2Credential,
        existing_event_id: Optional[str],
        meeting: Meeting,
    ) -> str:
        body = self._event_body(meeting)
        headers = bearer_headers(credential.access_token, PREFER_UTC)

        if existing_event_id:
            try:
                await request_json("PATCH", f"{EVENTS_URL}/{existing_event_id}", json=body, headers=headers)
                return existing_event_id
            except OAuth2ErrorResponseError as e:
                if not e.is_gone:
                    raise
                logger.info(f"Event {existing_event_id} no longer exists, creating a new one")

        created = await request_json("POST", EVENTS_URL, json=body, headers=headers)
        return created["id"]

    async def delete_meeting_event(self, credential: OAuth2Credential, event_id: str) -> None:
        try:
            await request_json(
                "DELETE",
                f"{EVENTS_URL}/{event_id}",
                headers=bearer_headers(credential.access_token),
            )
        except OAuth2ErrorResponseError as e:
            if e.is_gone:
                return
            raise
