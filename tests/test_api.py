"""Tests for the Toon API client."""

import json
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import Mock, patch
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from pytest_httpx import HTTPXMock

from custom_components.toon_thermostat import api
from custom_components.toon_thermostat.const import API_BASE_URL, TOKEN_URL
from custom_components.toon_thermostat.errors import (
    ToonApiAuthError,
    ToonApiClientError,
    ToonApiConnectionError,
    ToonApiServerError,
    ToonAuthExchangeError,
    ToonCommunicationError,
    ToonError,
    ToonTokenRefreshError,
)
from custom_components.toon_thermostat.models import Agreement, ToonClientConfig

from .conftest import AGREEMENT_ID, COMMON_NAME, WEBHOOK_URL, create_test_jwt

ACCESS_TOKEN = "access-token"


class TestErrors:
    """Tests for the exception hierarchy."""

    def test_client_error_keeps_status(self) -> None:
        """Test that ToonApiClientError stores the HTTP status."""
        error = ToonApiClientError("Request failed", 502)
        assert error.status == 502
        assert isinstance(error, ToonError)

    def test_communication_error_is_server_error(self) -> None:
        """Test that communication errors are classified as server errors."""
        error = ToonCommunicationError("offline", 500)
        assert isinstance(error, ToonApiServerError)
        assert isinstance(error, ToonApiClientError)

    def test_exchange_and_refresh_errors_are_auth_errors(self) -> None:
        """Test that token endpoint failures are authentication errors."""
        assert isinstance(ToonAuthExchangeError("x"), ToonApiAuthError)
        assert isinstance(ToonTokenRefreshError("x"), ToonApiAuthError)


class TestCreateHeaders:
    """Tests for create_headers function."""

    def test_create_headers_returns_base_headers(self) -> None:
        """Test that create_headers returns base headers without auth."""
        headers = api.create_headers()
        assert headers["content-type"] == "application/json"
        assert headers["accept"] == "application/json"
        assert "authorization" not in headers

    def test_create_headers_includes_bearer_token(self) -> None:
        """Test that create_headers includes the bearer token when provided."""
        headers = api.create_headers(ACCESS_TOKEN)
        assert headers["authorization"] == f"Bearer {ACCESS_TOKEN}"


class TestStatusHelpers:
    """Tests for the HTTP status helpers."""

    def test_is_http_error(self) -> None:
        """Test that only 4xx and 5xx are errors."""
        assert api.is_http_error(200) is False
        assert api.is_http_error(204) is False
        assert api.is_http_error(400) is True
        assert api.is_http_error(500) is True

    def test_is_auth_error(self) -> None:
        """Test that 401 and 403 are authentication errors."""
        assert api.is_auth_error(401) is True
        assert api.is_auth_error(403) is True
        assert api.is_auth_error(400) is False

    def test_is_server_error(self) -> None:
        """Test that 5xx are server errors."""
        assert api.is_server_error(503) is True
        assert api.is_server_error(404) is False


class TestIsCommunicationError:
    """Tests for is_communication_error function."""

    @pytest.mark.parametrize(
        "body",
        [
            {"type": "communicationError"},
            {"errorCode": "communicationError"},
            {"description": "Error communicating with Toon"},
        ],
    )
    def test_signature_on_500_is_detected(self, body: dict[str, Any]) -> None:
        """Test that each marker of the signature is recognised."""
        assert api.is_communication_error(500, body) is True

    def test_signature_requires_500(self) -> None:
        """Test that the markers on another status are not a communication error."""
        assert api.is_communication_error(502, {"type": "communicationError"}) is False

    def test_other_500_is_not_communication_error(self) -> None:
        """Test that a plain 500 is not a communication error."""
        assert api.is_communication_error(500, {"description": "boom"}) is False
        assert api.is_communication_error(500, "Internal Server Error") is False


class TestValidateResponse:
    """Tests for validate_response function."""

    def test_returns_json_on_success(self) -> None:
        """Test that a successful response returns its JSON body."""
        response = httpx.Response(200, json={"ok": True})
        assert api.validate_response(response) == {"ok": True}

    def test_returns_none_for_no_content(self) -> None:
        """Test that an empty response returns None."""
        assert api.validate_response(httpx.Response(204)) is None

    def test_raises_auth_error_on_401(self) -> None:
        """Test that 401 raises ToonApiAuthError with its status."""
        with pytest.raises(ToonApiAuthError) as exc_info:
            api.validate_response(httpx.Response(401))
        assert exc_info.value.status == 401

    def test_raises_communication_error(self) -> None:
        """Test that the communication signature raises ToonCommunicationError."""
        response = httpx.Response(500, json={"type": "communicationError"})
        with pytest.raises(ToonCommunicationError):
            api.validate_response(response)

    def test_raises_server_error_on_other_5xx(self) -> None:
        """Test that other server failures raise ToonApiServerError."""
        response = httpx.Response(503, text="unavailable")
        with pytest.raises(ToonApiServerError) as exc_info:
            api.validate_response(response)
        assert not isinstance(exc_info.value, ToonCommunicationError)

    def test_raises_client_error_with_description(self) -> None:
        """Test that 4xx raises ToonApiClientError including the description."""
        response = httpx.Response(404, json={"description": "Agreement not found"})
        with pytest.raises(ToonApiClientError, match="Agreement not found"):
            api.validate_response(response)


class TestExtractJwtClaims:
    """Tests for extract_jwt_claims function."""

    def test_returns_payload_of_jwt(self) -> None:
        """Test that the claims of a JWT are decoded."""
        claims = api.extract_jwt_claims(create_test_jwt("user-42"))
        assert claims["sub"] == "user-42"

    def test_returns_empty_dict_for_opaque_token(self) -> None:
        """Test that opaque tokens yield no claims."""
        assert api.extract_jwt_claims("opaque-token") == {}
        assert api.extract_jwt_claims("a.!!!.c") == {}


class TestExtractToken:
    """Tests for extract_token function."""

    def test_extracts_token_pair(self) -> None:
        """Test that the token pair and expiry are extracted."""
        before = datetime.now(UTC)
        token = api.extract_token(
            {"access_token": "a", "refresh_token": "r", "expires_in": 1800}
        )
        assert token.access_token == "a"
        assert token.refresh_token == "r"
        assert before + timedelta(seconds=1790) < token.expires_at
        assert token.expires_at <= datetime.now(UTC) + timedelta(seconds=1800)

    def test_keeps_previous_refresh_token(self) -> None:
        """Test that a response without refresh_token keeps the old one."""
        token = api.extract_token({"access_token": "a"}, "old-refresh")
        assert token.refresh_token == "old-refresh"

    def test_raises_without_access_token(self) -> None:
        """Test that a response without access_token is rejected."""
        with pytest.raises(ToonApiClientError):
            api.extract_token({"refresh_token": "r"})


class TestExtractAgreements:
    """Tests for extract_agreements function."""

    def test_extracts_agreements(
        self, sample_agreements_response: list[dict[str, Any]]
    ) -> None:
        """Test that agreements are built from the response."""
        agreements = api.extract_agreements(sample_agreements_response)
        assert len(agreements) == 1
        assert agreements[0].agreement_id == AGREEMENT_ID
        assert agreements[0].display_common_name == COMMON_NAME
        assert agreements[0].house_number == "1"

    def test_skips_incomplete_entries(self) -> None:
        """Test that entries without identifiers are skipped."""
        assert api.extract_agreements([{"street": "Nowhere"}]) == []

    def test_returns_empty_list_for_unexpected_response(self) -> None:
        """Test that a non-list response yields no agreements."""
        assert api.extract_agreements({"error": "nope"}) == []

    def test_agreement_name_includes_address(self, agreement: Agreement) -> None:
        """Test the human-readable agreement name."""
        assert agreement.name() == "Toon"
        assert agreement.name(include_address=True) == "Toon: Dorpsstraat 1, 1234 AB Amsterdam"


class TestIsWebhookRegistered:
    """Tests for is_webhook_registered function."""

    def test_matches_application_and_callback(self) -> None:
        """Test that a subscription of this application is found."""
        webhooks = [{"applicationId": "client-id", "callbackUrl": WEBHOOK_URL}]
        assert api.is_webhook_registered(webhooks, "client-id", WEBHOOK_URL) is True

    def test_ignores_other_callbacks(self) -> None:
        """Test that subscriptions for other callbacks do not match."""
        webhooks = [{"applicationId": "client-id", "callbackUrl": "https://other"}]
        assert api.is_webhook_registered(webhooks, "client-id", WEBHOOK_URL) is False
        assert api.is_webhook_registered(None, "client-id", WEBHOOK_URL) is False


class TestBuildAuthorizeUrl:
    """Tests for build_authorize_url function."""

    def test_contains_client_and_state(self, client_config: ToonClientConfig) -> None:
        """Test that the authorize URL carries client, tenant and state."""
        url = api.build_authorize_url(client_config, state="session-x")
        query = parse_qs(urlparse(url).query)
        assert url.startswith("https://api.toon.eu/authorize?")
        assert query["client_id"] == ["client-id"]
        assert query["response_type"] == ["code"]
        assert query["tenant_id"] == ["eneco"]
        assert query["state"] == ["session-x"]


class TestTokenEndpoint:
    """Tests for the token endpoint calls."""

    @pytest.mark.asyncio
    async def test_exchange_code_returns_token(
        self, httpx_mock: HTTPXMock, client_config: ToonClientConfig
    ) -> None:
        """Test that a valid code is exchanged for a token pair."""
        httpx_mock.add_response(
            url=TOKEN_URL,
            method="POST",
            json={"access_token": "a", "refresh_token": "r", "expires_in": 3600},
        )
        async with httpx.AsyncClient() as session:
            token = await api.async_exchange_code(session, client_config, "the-code")

        assert token.access_token == "a"
        form = parse_qs(httpx_mock.get_request().content.decode())
        assert form["grant_type"] == ["authorization_code"]
        assert form["code"] == ["the-code"]
        assert form["client_secret"] == ["client-secret"]

    @pytest.mark.asyncio
    async def test_exchange_code_raises_on_rejected_code(
        self, httpx_mock: HTTPXMock, client_config: ToonClientConfig
    ) -> None:
        """Test that a rejected code raises ToonAuthExchangeError."""
        httpx_mock.add_response(url=TOKEN_URL, method="POST", status_code=400)
        async with httpx.AsyncClient() as session:
            with pytest.raises(ToonAuthExchangeError) as exc_info:
                await api.async_exchange_code(session, client_config, "bad")
        assert exc_info.value.status == 400

    @pytest.mark.asyncio
    async def test_exchange_code_rejects_empty_code(
        self, client_config: ToonClientConfig
    ) -> None:
        """Test that an empty code is rejected without a request."""
        async with httpx.AsyncClient() as session:
            with pytest.raises(ToonAuthExchangeError):
                await api.async_exchange_code(session, client_config, "")

    @pytest.mark.asyncio
    async def test_refresh_token_returns_new_token(
        self, httpx_mock: HTTPXMock, client_config: ToonClientConfig
    ) -> None:
        """Test that the refresh token is exchanged for a new access token."""
        httpx_mock.add_response(
            url=TOKEN_URL,
            method="POST",
            json={"access_token": "new-access", "expires_in": 3600},
        )
        async with httpx.AsyncClient() as session:
            token = await api.async_refresh_token(session, client_config, "refresh")

        assert token.access_token == "new-access"
        assert token.refresh_token == "refresh"
        form = parse_qs(httpx_mock.get_request().content.decode())
        assert form["grant_type"] == ["refresh_token"]

    @pytest.mark.asyncio
    async def test_refresh_token_wraps_connection_error(
        self, httpx_mock: HTTPXMock, client_config: ToonClientConfig
    ) -> None:
        """Test that a connection failure raises ToonTokenRefreshError."""
        httpx_mock.add_exception(httpx.ConnectError("down"), url=TOKEN_URL)
        async with httpx.AsyncClient() as session:
            with pytest.raises(ToonTokenRefreshError) as exc_info:
                await api.async_refresh_token(session, client_config, "refresh")
        assert isinstance(exc_info.value.__cause__, ToonApiConnectionError)


class TestToonEndpoints:
    """Tests for the authenticated Toon API calls."""

    @pytest.mark.asyncio
    async def test_get_agreements(
        self,
        httpx_mock: HTTPXMock,
        sample_agreements_response: list[dict[str, Any]],
    ) -> None:
        """Test that agreements are fetched with the bearer token."""
        httpx_mock.add_response(
            url=f"{API_BASE_URL}/agreements",
            method="GET",
            json=sample_agreements_response,
        )
        async with httpx.AsyncClient() as session:
            agreements = await api.async_get_agreements(session, ACCESS_TOKEN)

        assert [a.agreement_id for a in agreements] == [AGREEMENT_ID]
        request = httpx_mock.get_request()
        assert request.headers["authorization"] == f"Bearer {ACCESS_TOKEN}"

    @pytest.mark.asyncio
    async def test_get_status(
        self, httpx_mock: HTTPXMock, sample_status_response: dict[str, Any]
    ) -> None:
        """Test that the status snapshot is returned."""
        httpx_mock.add_response(
            url=f"{API_BASE_URL}/{AGREEMENT_ID}/status",
            method="GET",
            json=sample_status_response,
        )
        async with httpx.AsyncClient() as session:
            status = await api.async_get_status(session, ACCESS_TOKEN, AGREEMENT_ID)
        assert status == sample_status_response

    @pytest.mark.asyncio
    async def test_get_status_raises_communication_error(
        self, httpx_mock: HTTPXMock
    ) -> None:
        """Test that an unreachable thermostat raises ToonCommunicationError."""
        httpx_mock.add_response(
            url=f"{API_BASE_URL}/{AGREEMENT_ID}/status",
            method="GET",
            status_code=500,
            json={"errorCode": "communicationError"},
        )
        async with httpx.AsyncClient() as session:
            with pytest.raises(ToonCommunicationError):
                await api.async_get_status(session, ACCESS_TOKEN, AGREEMENT_ID)

    @pytest.mark.asyncio
    async def test_request_wraps_connection_error(self, httpx_mock: HTTPXMock) -> None:
        """Test that transport errors raise ToonApiConnectionError."""
        httpx_mock.add_exception(
            httpx.ReadTimeout("timeout"), url=f"{API_BASE_URL}/agreements"
        )
        async with httpx.AsyncClient() as session:
            with pytest.raises(ToonApiConnectionError):
                await api.async_get_agreements(session, ACCESS_TOKEN)

    @pytest.mark.asyncio
    async def test_update_thermostat_puts_full_object(
        self, httpx_mock: HTTPXMock
    ) -> None:
        """Test that the thermostat object is written with PUT."""
        httpx_mock.add_response(
            url=f"{API_BASE_URL}/{AGREEMENT_ID}/thermostat",
            method="PUT",
            status_code=204,
        )
        data = {"currentSetpoint": 2100, "programState": 2, "activeState": -1}
        async with httpx.AsyncClient() as session:
            await api.async_update_thermostat(session, ACCESS_TOKEN, AGREEMENT_ID, data)

        assert json.loads(httpx_mock.get_request().content) == data

    @pytest.mark.asyncio
    async def test_register_webhook_posts_subscription(
        self, httpx_mock: HTTPXMock
    ) -> None:
        """Test that a webhook subscription is requested with POST."""
        httpx_mock.add_response(
            url=f"{API_BASE_URL}/{AGREEMENT_ID}/webhooks",
            method="POST",
            status_code=201,
        )
        async with httpx.AsyncClient() as session:
            await api.async_register_webhook(
                session,
                ACCESS_TOKEN,
                AGREEMENT_ID,
                "client-id",
                WEBHOOK_URL,
                ["Thermostat"],
            )

        assert json.loads(httpx_mock.get_request().content) == {
            "applicationId": "client-id",
            "callbackUrl": WEBHOOK_URL,
            "subscribedActions": ["Thermostat"],
        }

    @pytest.mark.asyncio
    async def test_unregister_webhook_deletes_subscription(
        self, httpx_mock: HTTPXMock
    ) -> None:
        """Test that the subscription of this application is deleted."""
        httpx_mock.add_response(
            url=f"{API_BASE_URL}/{AGREEMENT_ID}/webhooks/client-id",
            method="DELETE",
            status_code=204,
        )
        async with httpx.AsyncClient() as session:
            result = await api.async_unregister_webhook(
                session, ACCESS_TOKEN, AGREEMENT_ID, "client-id"
            )
        assert result is None


class TestCreateSessionClient:
    """Tests for create_session_client function."""

    @pytest.fixture
    def session_client(self) -> httpx.AsyncClient:
        """Create a session client on top of a plain httpx client."""
        with patch(
            "custom_components.toon_thermostat.api.create_async_httpx_client",
            return_value=httpx.AsyncClient(),
        ) as mock_create_client:
            client = api.create_session_client(Mock())
        mock_create_client.assert_called_once()
        return client

    @pytest.mark.asyncio
    async def test_thermostat_write_is_sent_once(
        self, httpx_mock: HTTPXMock, session_client: httpx.AsyncClient
    ) -> None:
        """Test that the transport does not repeat a failed thermostat write."""
        url = f"{API_BASE_URL}/{AGREEMENT_ID}/thermostat"
        httpx_mock.add_response(url=url, method="PUT", status_code=503)

        async with session_client:
            with pytest.raises(ToonApiServerError):
                await api.async_update_thermostat(
                    session_client, ACCESS_TOKEN, AGREEMENT_ID, {"programState": 1}
                )

        assert len(httpx_mock.get_requests(method="PUT")) == 1

    @pytest.mark.asyncio
    async def test_reads_are_retried_by_transport(
        self,
        httpx_mock: HTTPXMock,
        session_client: httpx.AsyncClient,
        sample_status_response: dict[str, Any],
    ) -> None:
        """Test that a status read is retried on a transient server error."""
        url = f"{API_BASE_URL}/{AGREEMENT_ID}/status"
        httpx_mock.add_response(url=url, method="GET", status_code=503)
        httpx_mock.add_response(url=url, method="GET", json=sample_status_response)

        async with session_client:
            status = await api.async_get_status(
                session_client, ACCESS_TOKEN, AGREEMENT_ID
            )

        assert status == sample_status_response
        assert len(httpx_mock.get_requests(method="GET")) == 2
