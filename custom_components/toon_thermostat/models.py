"""Data models for Toon Thermostat integration."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import UTC, datetime, timedelta
from typing import Any

from .const import DEFAULT_CONFIG_ID, DEFAULT_REDIRECT_URI, DEFAULT_TENANT_ID


@dataclass
class OAuth2Token:
    """Represents an OAuth2 token pair with the access token expiration."""

    access_token: str
    refresh_token: str
    expires_at: datetime

    def is_expired(self, margin: float = 0) -> bool:
        """Return True if the access token expires within margin seconds."""
        return datetime.now(UTC) + timedelta(seconds=margin) >= self.expires_at

    def as_dict(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": int(self.expires_at.timestamp()),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OAuth2Token:
        return cls(
            access_token=data["access_token"],
            refresh_token=data["refresh_token"],
            expires_at=datetime.fromtimestamp(data["expires_at"], UTC),
        )


@dataclass
class ToonSession:
    """Represents the OAuth2 session identity of the Toon account.

    A session without a token is a temporary shell used while the
    authorization code exchange is still pending.
    """

    session_id: str
    config_id: str = DEFAULT_CONFIG_ID
    token: OAuth2Token | None = None
    title: str = "Toon"

    @property
    def is_authorized(self) -> bool:
        return self.token is not None

    def as_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "config_id": self.config_id,
            "title": self.title,
            "token": self.token.as_dict() if self.token else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToonSession:
        token = data.get("token")
        return cls(
            session_id=data["session_id"],
            config_id=data.get("config_id", DEFAULT_CONFIG_ID),
            token=OAuth2Token.from_dict(token) if token else None,
            title=data.get("title", "Toon"),
        )


@dataclass(frozen=True)
class ToonClientConfig:
    """OAuth2 application credentials a session is issued for."""

    client_id: str
    client_secret: str
    config_id: str = DEFAULT_CONFIG_ID
    tenant_id: str = DEFAULT_TENANT_ID
    redirect_uri: str = DEFAULT_REDIRECT_URI


@dataclass(frozen=True)
class Agreement:
    """Represents a Toon agreement, a single thermostat installation.

    Attributes:
        agreement_id: Vendor identifier used in API paths.
        display_common_name: Identifier of the display, used in webhooks.

    """

    agreement_id: str
    display_common_name: str
    street: str | None = None
    house_number: str | None = None
    postal_code: str | None = None
    city: str | None = None
    heating_type: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Agreement:
        return cls(
            agreement_id=data["agreement_id"],
            display_common_name=data["display_common_name"],
            street=data.get("street"),
            house_number=data.get("house_number"),
            postal_code=data.get("postal_code"),
            city=data.get("city"),
            heating_type=data.get("heating_type"),
        )

    def name(self, include_address: bool = False) -> str:
        """Return a human-readable name for the agreement."""
        if not include_address or not self.street:
            return "Toon"
        street = f"{self.street} {self.house_number or ''}".strip()
        place = f"{self.postal_code or ''} {(self.city or '').capitalize()}".strip()
        return f"Toon: {', '.join(part for part in (street, place) if part)}"


@dataclass
class DeviceBinding:
    """Associates one device with one agreement and one session."""

    agreement_id: str
    common_name: str
    session_id: str
    config_id: str = DEFAULT_CONFIG_ID

    def rebind(self, session_id: str, config_id: str) -> DeviceBinding:
        return replace(self, session_id=session_id, config_id=config_id)


@dataclass(slots=True)
class ParsedStatusUpdate:
    """A status payload split into the sections the device sync consumes."""

    common_name: str | None = None
    time_to_live: float | None = None
    thermostat_info: dict[str, Any] | None = None
    power_usage: dict[str, Any] | None = None
    gas_usage: dict[str, Any] | None = None
    state_temperatures: dict[int, float] = field(default_factory=dict)
