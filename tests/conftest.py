"""Pytest configuration and fixtures for Toon Thermostat tests."""

import base64
import json
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock, Mock

import pytest

from custom_components.toon_thermostat.models import (
    Agreement,
    DeviceBinding,
    OAuth2Token,
    ToonClientConfig,
    ToonSession,
)
from custom_components.toon_thermostat.session import ToonOAuth2Session

AGREEMENT_ID = "agreement-1"
COMMON_NAME = "eneco-001-123456"
SESSION_ID = "session-1"
WEBHOOK_URL = "https://example.com/api/webhook/abc"


def create_test_jwt(sub: str = "toon_user", exp_timestamp: int | None = None) -> str:
    """Create a test JWT access token.

    Args:
        sub: Subject claim, used as the session identifier.
        exp_timestamp: Optional expiration timestamp. If None, defaults to
            1 hour from now.

    Returns:
        A JWT token string with header, payload, and signature.

    """
    if exp_timestamp is None:
        exp_timestamp = int(datetime.now(UTC).timestamp()) + 3600

    header = {"alg": "HS256", "typ": "JWT"}
    payload = {"exp": exp_timestamp, "sub": sub}

    header_encoded = (
        base64.urlsafe_b64encode(json.dumps(header).encode()).decode().rstrip("=")
    )
    payload_encoded = (
        base64.urlsafe_b64encode(json.dumps(payload).encode()).decode().rstrip("=")
    )

    return f"{header_encoded}.{payload_encoded}.signature"


def no_delay(attempt: int) -> float:
    """Retry delay that does not wait."""
    return 0


class MemoryStore:
    """In-memory stand-in for Home Assistant's Store."""

    def __init__(self, data: dict[str, Any] | None = None) -> None:
        self.data = data
        self.saves: list[dict[str, Any]] = []

    async def async_load(self) -> dict[str, Any] | None:
        return self.data

    async def async_save(self, data: dict[str, Any]) -> None:
        self.data = data
        self.saves.append(data)


@pytest.fixture
def client_config() -> ToonClientConfig:
    """Fixture providing OAuth2 application credentials."""
    return ToonClientConfig(client_id="client-id", client_secret="client-secret")


@pytest.fixture
def valid_token() -> OAuth2Token:
    """Fixture providing a token pair valid for one hour."""
    return OAuth2Token(
        access_token=create_test_jwt(SESSION_ID),
        refresh_token="refresh-token",
        expires_at=datetime.now(UTC) + timedelta(hours=1),
    )


@pytest.fixture
def expired_token() -> OAuth2Token:
    """Fixture providing a token pair whose access token has expired."""
    return OAuth2Token(
        access_token="expired-access-token",
        refresh_token="refresh-token",
        expires_at=datetime.now(UTC) - timedelta(minutes=5),
    )


@pytest.fixture
def toon_session(valid_token: OAuth2Token) -> ToonSession:
    """Fixture providing an authorized session."""
    return ToonSession(session_id=SESSION_ID, token=valid_token, title="Toon")


@pytest.fixture
def agreement() -> Agreement:
    """Fixture providing the agreement of a single thermostat."""
    return Agreement(
        agreement_id=AGREEMENT_ID,
        display_common_name=COMMON_NAME,
        street="Dorpsstraat",
        house_number="1",
        postal_code="1234 AB",
        city="AMSTERDAM",
        heating_type="GAS",
    )


@pytest.fixture
def binding() -> DeviceBinding:
    """Fixture providing the binding of the test device."""
    return DeviceBinding(
        agreement_id=AGREEMENT_ID,
        common_name=COMMON_NAME,
        session_id=SESSION_ID,
    )


@pytest.fixture
def sample_agreements_response() -> list[dict[str, Any]]:
    """Fixture providing a sample agreements API response."""
    return [
        {
            "agreementId": AGREEMENT_ID,
            "displayCommonName": COMMON_NAME,
            "street": "Dorpsstraat",
            "houseNumber": "1",
            "postalCode": "1234 AB",
            "city": "AMSTERDAM",
            "heatingType": "GAS",
        },
    ]


@pytest.fixture
def sample_thermostat_info() -> dict[str, Any]:
    """Fixture providing a sample thermostatInfo section."""
    return {
        "currentSetpoint": 2050,
        "currentDisplayTemp": 2155,
        "programState": 1,
        "activeState": 1,
        "nextProgram": 1,
        "burnerInfo": "0",
    }


@pytest.fixture
def sample_status_response(sample_thermostat_info: dict[str, Any]) -> dict[str, Any]:
    """Fixture providing a sample status API response."""
    return {
        "thermostatInfo": sample_thermostat_info,
        "thermostatStates": {
            "state": [
                {"id": 0, "tempValue": 2100},
                {"id": 1, "tempValue": 1950},
                {"id": 2, "tempValue": 1700},
                {"id": 3, "tempValue": 1500},
            ],
        },
        "powerUsage": {"value": 420, "dayUsage": 5000, "dayLowUsage": 3000},
        "gasUsage": {"value": 0, "dayUsage": 1200},
    }


@pytest.fixture
def mock_oauth2_session(client_config: ToonClientConfig) -> Mock:
    """Fixture providing a mocked OAuth2 session."""
    session = Mock(spec=ToonOAuth2Session)
    session.session_id = SESSION_ID
    session.config_id = client_config.config_id
    session.config = client_config
    session.async_get_status = AsyncMock(return_value={})
    session.async_update_state = AsyncMock(return_value=None)
    session.async_get_agreements = AsyncMock(return_value=[])
    session.async_register_webhook_subscription = AsyncMock(return_value=True)
    session.async_unregister_webhook_subscription = AsyncMock(return_value=None)
    return session


@pytest.fixture
def mock_sink() -> Mock:
    """Fixture providing a capability sink recording every call."""
    return Mock(
        spec=[
            "set_capability_value",
            "set_available",
            "set_unavailable",
            "set_warning",
            "unset_warning",
        ]
    )
