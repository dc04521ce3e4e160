"""Outbound HTTP for token endpoints and provider REST APIs."""

import json
import logging
from typing import Any, Optional

import httpx

from cabbagesync.config import get_settings
from cabbagesync.oauth2.common import OAuth2ErrorResponseError

logger = logging.getLogger(__name__)

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


def _new_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=get_settings().http_timeout_seconds)


def error_code_from_body(text: str) -> Optional[str]:
    # Token endpoints answer e.g. {"error": "invalid_grant", "error_description": "..."};
    # REST APIs nest an object under "error", which carries no usable code string.
    try:
        body = json.loads(text)
    except ValueError:
        return None
    if isinstance(body, dict) and isinstance(body.get("error"), str):
        return body["error"]
    return None


async def request(method: str, url: str, **kwargs: Any) -> httpx.Response:
    """
    Send a request and raise OAuth2ErrorResponseError on any non-2xx status.

    Keyword arguments are passed through to httpx (headers, data, json, params).
    """
    logger.debug(f"{method} {url}")
    async with _new_client() as client:
        response = await client.request(method, url, **kwargs)

    if not 200 <= response.status_code < 300:
        logger.error(f"statusCode={response.status_code} body={response.text}")
        raise OAuth2ErrorResponseError(response.status_code, error_code_from_body(response.text))

    return response


async def request_json(method: str, url: str, **kwargs: Any) -> Optional[Any]:
    """Like request(), but return the decoded JSON body (None if there is none)."""
    response = await request(method, url, **kwargs)
    # The content-type can be e.g. "application/json; charset=UTF-8"
    if response.headers.get("content-type", "").startswith("application/json"):
        return response.json()
    # Some endpoints, like deleting an event, return no body
    return None


async def post_form(url: str, form: dict[str, str]) -> Any:
    """POST an application/x-www-form-urlencoded body and decode the JSON answer."""
    return await request_json(
        "POST",
        url,
        data=form,
        headers={"content-type": FORM_CONTENT_TYPE},
    )


def bearer_headers(access_token: str, extra: Optional[dict[str, str]] = None) -> dict[str, str]:
    """Authorization header for provider API calls."""
    headers = {"authorization": f"Bearer {access_token}"}
    if extra:
        headers.update(extra)
    return headers
