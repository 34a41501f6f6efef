"""API client for the Toon thermostat cloud.

This module provides functions to interact with the Toon API, including
the OAuth2 token endpoint, agreement listing, status polling, thermostat
updates and webhook subscription management. Low-level errors are
classified here and re-raised as the typed exceptions of ``errors``.
"""

import base64
import json
import logging
from datetime import UTC, datetime, timedelta
from typing import Any
from urllib.parse import urlencode

import httpx
from homeassistant.core import HomeAssistant
from homeassistant.helpers.httpx_client import create_async_httpx_client
from httpx_retries import Retry, RetryTransport

from .const import API_BASE_URL, AUTHORIZE_URL, TOKEN_URL
from .errors import (
    ToonApiAuthError,
    ToonApiClientError,
    ToonApiConnectionError,
    ToonApiServerError,
    ToonAuthExchangeError,
    ToonCommunicationError,
    ToonTokenRefreshError,
)
from .models import Agreement, OAuth2Token, ToonClientConfig

_LOGGER = logging.getLogger(__name__)

# HTTP status codes
HTTP_NO_CONTENT = 204
HTTP_BAD_REQUEST = 400
HTTP_UNAUTHORIZED = 401
HTTP_FORBIDDEN = 403
HTTP_INTERNAL_SERVER_ERROR = 500

COMMUNICATION_ERROR = "communicationError"
COMMUNICATION_ERROR_DESCRIPTION = "Error communicating with Toon"

DEFAULT_TOKEN_LIFETIME = 3600  # Seconds, used when expires_in is missing

# Thermostat writes (PUT) and subscriptions (POST) are never repeated blindly
RETRYABLE_METHODS = ("GET", "HEAD", "DELETE")


def create_headers(access_token: str | None = None) -> dict[str, str]:
    """Create HTTP headers for Toon API requests.

    Args:
        access_token: Optional bearer token to include in headers.

    Returns:
        Dictionary containing HTTP headers for API requests.

    """
    headers = {
        "content-type": "application/json",
        "accept": "application/json",
        "cache-control": "no-cache",
    }
    if access_token:
        headers["authorization"] = f"Bearer {access_token}"
    return headers


def is_http_error(status: int) -> bool:
    """Check if HTTP status code indicates an error."""
    return status >= HTTP_BAD_REQUEST


def is_auth_error(status: int) -> bool:
    """Check if HTTP status code indicates an authentication error."""
    return status in (HTTP_UNAUTHORIZED, HTTP_FORBIDDEN)


def is_server_error(status: int) -> bool:
    """Check if HTTP status code indicates a server side error."""
    return status >= HTTP_INTERNAL_SERVER_ERROR


def is_communication_error(status: int, data: Any) -> bool:
    """Check if an error response reports that Toon itself is unreachable.

    The Toon API answers with a 500 and one of several markers in the body
    when the cloud cannot reach the thermostat in the home.

    Args:
        status: HTTP status code of the response.
        data: Parsed error body, may be anything the server returned.

    Returns:
        True if the response carries the communication error signature.

    """
    if status != HTTP_INTERNAL_SERVER_ERROR or not isinstance(data, dict):
        return False
    return (
        data.get("type") == COMMUNICATION_ERROR
        or data.get("errorCode") == COMMUNICATION_ERROR
        or data.get("description") == COMMUNICATION_ERROR_DESCRIPTION
    )


def _parse_body(response: httpx.Response) -> Any:
    if response.status_code == HTTP_NO_CONTENT or not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def validate_response(response: httpx.Response) -> Any:
    """Validate HTTP response and return parsed JSON data.

    Args:
        response: HTTP response object to validate.

    Returns:
        Parsed JSON data from response, None for empty responses.

    Raises:
        ToonApiAuthError: If authentication error is detected.
        ToonCommunicationError: If Toon cannot be reached by the cloud.
        ToonApiServerError: If the server failed otherwise.
        ToonApiClientError: If any other API error is detected.

    """
    data = _parse_body(response)
    _validate_http_status(response.status_code, data)
    return data


def _validate_http_status(status: int, data: Any) -> None:
    if not is_http_error(status):
        return

    if is_auth_error(status):
        auth_error = f"Authentication error: {status}"
        raise ToonApiAuthError(auth_error, status)

    if is_communication_error(status, data):
        raise ToonCommunicationError(COMMUNICATION_ERROR_DESCRIPTION, status)

    client_error = f"Request failed: {status}"
    if isinstance(data, dict) and data.get("description"):
        client_error = f"{client_error} ({data['description']})"

    if is_server_error(status):
        raise ToonApiServerError(client_error, status)

    raise ToonApiClientError(client_error, status)


def extract_jwt_claims(token: str) -> dict[str, Any]:
    """Extract the claims of a JWT access token.

    Toon has issued both JWT and opaque access tokens, so a token that cannot
    be decoded yields an empty dict instead of an error.

    Args:
        token: Access token string.

    Returns:
        The decoded payload of the token, or an empty dict.

    """
    jwt_parts_count = 3
    base64_padding_mod = 4

    parts = token.split(".")
    if len(parts) != jwt_parts_count:
        return {}

    payload_encoded = parts[1]
    padding = len(payload_encoded) % base64_padding_mod
    if padding:
        payload_encoded += "=" * (base64_padding_mod - padding)

    try:
        payload_bytes = base64.urlsafe_b64decode(payload_encoded)
        payload = json.loads(payload_bytes.decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        _LOGGER.debug("Access token is not a decodable JWT")
        return {}

    return payload if isinstance(payload, dict) else {}


def extract_token(data: Any, previous_refresh_token: str | None = None) -> OAuth2Token:
    """Extract the token pair from a token endpoint response.

    Args:
        data: Token endpoint response data.
        previous_refresh_token: Refresh token to keep when the response does
            not rotate it.

    Returns:
        OAuth2Token with an absolute expiration timestamp.

    Raises:
        ToonApiClientError: If the response does not contain an access token.

    """
    if not isinstance(data, dict) or "access_token" not in data:
        error_msg = "Token response without access_token"
        raise ToonApiClientError(error_msg)

    refresh_token = data.get("refresh_token") or previous_refresh_token
    if not refresh_token:
        error_msg = "Token response without refresh_token"
        raise ToonApiClientError(error_msg)

    expires_in = int(data.get("expires_in") or DEFAULT_TOKEN_LIFETIME)
    return OAuth2Token(
        access_token=data["access_token"],
        refresh_token=refresh_token,
        expires_at=datetime.now(UTC) + timedelta(seconds=expires_in),
    )


def extract_agreements(data: Any) -> list[Agreement]:
    """Extract the agreement list from the agreements response.

    Args:
        data: API response data, expected to be a list of agreements.

    Returns:
        List of Agreement objects, empty if the response is not a list.

    """
    if not isinstance(data, list):
        _LOGGER.warning("Unexpected agreements response: %s", data)
        return []

    return [
        Agreement(
            agreement_id=str(agreement["agreementId"]),
            display_common_name=str(agreement["displayCommonName"]),
            street=agreement.get("street"),
            house_number=agreement.get("houseNumber"),
            postal_code=agreement.get("postalCode"),
            city=agreement.get("city"),
            heating_type=agreement.get("heatingType"),
        )
        for agreement in data
        if "agreementId" in agreement and "displayCommonName" in agreement
    ]


def is_webhook_registered(
    webhooks: Any, application_id: str, callback_url: str
) -> bool:
    """Check if this application already holds a subscription for its callback."""
    if not isinstance(webhooks, list):
        return False
    return any(
        webhook.get("applicationId") == application_id
        and webhook.get("callbackUrl") == callback_url
        for webhook in webhooks
        if isinstance(webhook, dict)
    )


def build_authorize_url(config: ToonClientConfig, state: str | None = None) -> str:
    """Build the URL the user visits to authorize this application."""
    params = {
        "response_type": "code",
        "client_id": config.client_id,
        "redirect_uri": config.redirect_uri,
        "tenant_id": config.tenant_id,
    }
    if state:
        params["state"] = state
    return f"{AUTHORIZE_URL}?{urlencode(params)}"


def create_session_client(hass: HomeAssistant) -> httpx.AsyncClient:
    """Create HTTP client with retry logic for Toon API.

    Args:
        hass: Home Assistant instance.

    Returns:
        Configured httpx AsyncClient with retry transport.

    """
    base_client = create_async_httpx_client(hass, timeout=10.0)
    retry = Retry(total=3, backoff_factor=0.5, allowed_methods=RETRYABLE_METHODS)
    base_client._transport = RetryTransport(  # noqa: SLF001
        transport=base_client._transport,  # noqa: SLF001
        retry=retry,
    )
    return base_client


async def _async_post_token(
    session: httpx.AsyncClient, payload: dict[str, str]
) -> Any:
    headers = {"accept": "application/json", "cache-control": "no-cache"}
    try:
        response = await session.post(TOKEN_URL, headers=headers, data=payload)
    except httpx.RequestError as err:
        error_msg = f"Connection error: {err}"
        raise ToonApiConnectionError(error_msg) from err
    return validate_response(response)


async def async_exchange_code(
    session: httpx.AsyncClient,
    config: ToonClientConfig,
    code: str,
) -> OAuth2Token:
    """Exchange an authorization code for a token pair.

    Args:
        session: HTTP client session.
        config: OAuth2 client configuration.
        code: Authorization code returned to the redirect URI.

    Returns:
        OAuth2Token for the new session.

    Raises:
        ToonAuthExchangeError: If the code is invalid or the endpoint fails.

    """
    if not code:
        error_msg = "Missing authorization code"
        raise ToonAuthExchangeError(error_msg)

    payload = {
        "grant_type": "authorization_code",
        "code": code,
        "client_id": config.client_id,
        "client_secret": config.client_secret,
        "redirect_uri": config.redirect_uri,
        "tenant_id": config.tenant_id,
    }

    _LOGGER.debug("Exchanging authorization code with Toon API")
    try:
        data = await _async_post_token(session, payload)
        token = extract_token(data)
    except ToonApiClientError as err:
        error_msg = f"Authorization code exchange failed: {err}"
        raise ToonAuthExchangeError(error_msg, err.status) from err
    _LOGGER.debug("Successfully exchanged authorization code")
    return token


async def async_refresh_token(
    session: httpx.AsyncClient,
    config: ToonClientConfig,
    refresh_token: str,
) -> OAuth2Token:
    """Exchange a refresh token for a new access token.

    Args:
        session: HTTP client session.
        config: OAuth2 client configuration.
        refresh_token: Current refresh token.

    Returns:
        New OAuth2Token, keeping the old refresh token if it was not rotated.

    Raises:
        ToonTokenRefreshError: If the token endpoint rejects the refresh.

    """
    payload = {
        "grant_type": "refresh_token",
        "refresh_token": refresh_token,
        "client_id": config.client_id,
        "client_secret": config.client_secret,
    }

    _LOGGER.debug("Refreshing access token with Toon API")
    try:
        data = await _async_post_token(session, payload)
        token = extract_token(data, refresh_token)
    except ToonApiClientError as err:
        error_msg = f"Token refresh failed: {err}"
        raise ToonTokenRefreshError(error_msg, err.status) from err
    _LOGGER.debug("Successfully refreshed access token")
    return token


async def async_request(
    session: httpx.AsyncClient,
    method: str,
    path: str,
    access_token: str,
    json_data: Any = None,
) -> Any:
    """Perform an authenticated request against the Toon API.

    Args:
        session: HTTP client session.
        method: HTTP method.
        path: Path relative to the API base URL.
        access_token: Bearer token.
        json_data: Optional JSON body.

    Returns:
        Parsed response body.

    Raises:
        ToonApiConnectionError: If the API cannot be reached.
        ToonApiClientError: Or one of its subclasses for error responses.

    """
    url = f"{API_BASE_URL}/{path.lstrip('/')}"
    headers = create_headers(access_token)

    _LOGGER.debug("%s %s", method, url)
    try:
        response = await session.request(method, url, headers=headers, json=json_data)
    except httpx.RequestError as err:
        error_msg = f"Connection error: {err}"
        raise ToonApiConnectionError(error_msg) from err
    return validate_response(response)


async def async_get_agreements(
    session: httpx.AsyncClient, access_token: str
) -> list[Agreement]:
    """Fetch the agreements (thermostats) of the account."""
    data = await async_request(session, "GET", "agreements", access_token)
    agreements = extract_agreements(data)
    _LOGGER.debug("Retrieved %d agreements from Toon API", len(agreements))
    return agreements


async def async_get_status(
    session: httpx.AsyncClient, access_token: str, agreement_id: str
) -> dict[str, Any]:
    """Fetch the full status snapshot of an agreement."""
    data = await async_request(session, "GET", f"{agreement_id}/status", access_token)
    return data if isinstance(data, dict) else {}


async def async_update_thermostat(
    session: httpx.AsyncClient,
    access_token: str,
    agreement_id: str,
    data: dict[str, Any],
) -> Any:
    """Write a complete thermostat object for an agreement."""
    _LOGGER.debug("Updating thermostat of %s: %s", agreement_id, data)
    return await async_request(
        session, "PUT", f"{agreement_id}/thermostat", access_token, data
    )


async def async_get_webhooks(
    session: httpx.AsyncClient, access_token: str, agreement_id: str
) -> list[dict[str, Any]]:
    """List the webhook subscriptions of an agreement."""
    data = await async_request(session, "GET", f"{agreement_id}/webhooks", access_token)
    return data if isinstance(data, list) else []


async def async_register_webhook(
    session: httpx.AsyncClient,
    access_token: str,
    agreement_id: str,
    application_id: str,
    callback_url: str,
    subscribed_actions: list[str],
) -> Any:
    """Request a push subscription for an agreement."""
    payload = {
        "applicationId": application_id,
        "callbackUrl": callback_url,
        "subscribedActions": subscribed_actions,
    }
    return await async_request(
        session, "POST", f"{agreement_id}/webhooks", access_token, payload
    )


async def async_unregister_webhook(
    session: httpx.AsyncClient,
    access_token: str,
    agreement_id: str,
    application_id: str,
) -> Any:
    """End the push subscription of this application for an agreement."""
    return await async_request(
        session, "DELETE", f"{agreement_id}/webhooks/{application_id}", access_token
    )
