"""Coordinators for Toon Thermostat integration."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from homeassistant.exceptions import ConfigEntryAuthFailed
from homeassistant.helpers.update_coordinator import DataUpdateCoordinator, UpdateFailed

from .api import HTTP_BAD_REQUEST, HTTP_FORBIDDEN, HTTP_UNAUTHORIZED
from .const import DEFAULT_POLL_INTERVAL, DOMAIN, RETRY_ATTEMPTS, TOKEN_REFRESH_INTERVAL
from .errors import ToonError, ToonNotAuthenticatedError, ToonTokenRefreshError
from .models import OAuth2Token
from .retry import async_retry, exponential_delay

if TYPE_CHECKING:
    from collections.abc import Callable

    from homeassistant.config_entries import ConfigEntry
    from homeassistant.core import HomeAssistant

    from .device import ToonDeviceSync
    from .models import Agreement
    from .session import ToonOAuth2Session

_LOGGER = logging.getLogger(__name__)

# Token endpoint answers that mean the refresh token itself was rejected
REJECTED_REFRESH_STATUSES = (HTTP_BAD_REQUEST, HTTP_UNAUTHORIZED, HTTP_FORBIDDEN)


class ToonTokenCoordinator(DataUpdateCoordinator[OAuth2Token | None]):
    """Coordinator that refreshes the Toon access token on a fixed interval."""

    def __init__(
        self,
        hass: HomeAssistant,
        config_entry: ConfigEntry,
        oauth2_session: ToonOAuth2Session,
        *,
        retry_attempts: int = RETRY_ATTEMPTS,
        retry_delay: Callable[[int], float] = exponential_delay,
    ) -> None:
        """Initialize the coordinator."""
        super().__init__(
            hass,
            _LOGGER,
            config_entry=config_entry,
            name=f"{DOMAIN}_token",
            update_interval=timedelta(seconds=TOKEN_REFRESH_INTERVAL),
        )
        self.oauth2_session = oauth2_session
        self._retry_attempts = retry_attempts
        self._retry_delay = retry_delay
        self.data = oauth2_session.token

    def reset_oauth2_client(self, oauth2_session: ToonOAuth2Session) -> None:
        """Refresh the tokens of a new session after re-authentication."""
        _LOGGER.debug("Token refresh now follows session %s", oauth2_session.session_id)
        self.oauth2_session = oauth2_session
        self.data = oauth2_session.token

    async def async_eager_refresh(self) -> None:
        """Refresh once at startup to cover a long offline period.

        Failures are only logged: the scheduled refresh and the refresh
        before expired calls take over.
        """
        try:
            self.data = await self.oauth2_session.async_refresh_access_tokens()
        except ToonError as err:
            _LOGGER.warning("Initial Toon token refresh failed: %s", err)

    async def _async_update_data(self) -> OAuth2Token | None:
        """Refresh the access token, retrying transient failures."""
        try:
            return await async_retry(
                self.oauth2_session.async_refresh_access_tokens,
                max_attempts=self._retry_attempts,
                delay=self._retry_delay,
                retry_on=(ToonTokenRefreshError,),
            )
        except ToonNotAuthenticatedError as err:
            error_msg = f"Not logged in to Toon: {err}"
            raise ConfigEntryAuthFailed(error_msg) from err
        except ToonTokenRefreshError as err:
            if err.status in REJECTED_REFRESH_STATUSES:
                error_msg = f"Toon refresh token rejected: {err}"
                _LOGGER.warning("Toon refresh token rejected, reauthorization required")
                raise ConfigEntryAuthFailed(error_msg) from err
            error_msg = f"Token refresh failed: {err}"
            _LOGGER.exception("Error refreshing Toon access token")
            raise UpdateFailed(error_msg) from err


class ToonDeviceCoordinator(DataUpdateCoordinator[dict[str, Any]]):
    """Holds the capability values of one thermostat.

    The device sync writes capability values and availability into this
    coordinator, which notifies the entities. Polling only serves as a
    fallback for missed webhook pushes.
    """

    def __init__(
        self,
        hass: HomeAssistant,
        config_entry: ConfigEntry,
        agreement: Agreement,
    ) -> None:
        super().__init__(
            hass,
            _LOGGER,
            config_entry=config_entry,
            name=f"{DOMAIN}_{agreement.display_common_name}",
            update_interval=timedelta(seconds=DEFAULT_POLL_INTERVAL),
        )
        self.agreement = agreement
        self.device: ToonDeviceSync | None = None
        self.available = False
        self.unavailable_reason: str | None = None
        self.warning: str | None = None
        self.data = {}

    def set_capability_value(self, capability: str, value: Any) -> None:
        if capability in self.data and self.data[capability] == value:
            return
        self.data[capability] = value
        self.async_update_listeners()

    def set_available(self) -> None:
        self.available = True
        self.unavailable_reason = None
        self.warning = None
        self.async_update_listeners()

    def set_unavailable(self, reason: str) -> None:
        self.available = False
        self.unavailable_reason = reason
        self.async_update_listeners()

    def set_warning(self, message: str) -> None:
        if self.warning != message:
            _LOGGER.warning("Toon %s: %s", self.agreement.display_common_name, message)
        self.warning = message
        self.async_update_listeners()

    def unset_warning(self) -> None:
        self.warning = None
        self.async_update_listeners()

    async def _async_update_data(self) -> dict[str, Any]:
        if self.device is None:
            _LOGGER.debug("No Toon device attached to %s yet", self.name)
            return self.data

        await self.device.async_get_status_update()
        return self.data
