"""
Configuration flow for Toon Thermostat integration.

The user registers an application with Toon, enters its client credentials,
authorizes it in the browser and pastes the authorization code back. The
flow then discovers the agreements (thermostats) of the account.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import voluptuous as vol
from homeassistant.components import webhook
from homeassistant.config_entries import (
    SOURCE_REAUTH,
    ConfigEntryState,
    ConfigFlow,
    ConfigFlowResult,
)

from . import async_get_registry
from .const import (
    CONF_AGREEMENTS,
    CONF_CLIENT_ID,
    CONF_CLIENT_SECRET,
    CONF_CODE,
    CONF_CONFIG_ID,
    CONF_SESSION_ID,
    CONF_WEBHOOK_ID,
    DEFAULT_CONFIG_ID,
    DOMAIN,
    ERROR_CANNOT_CONNECT,
    ERROR_INVALID_AUTH,
    ERROR_MULTIPLE_SESSIONS,
    ERROR_NO_AGREEMENTS,
    ERROR_UNKNOWN,
)
from .errors import (
    ToonApiConnectionError,
    ToonAuthExchangeError,
    ToonError,
    ToonMultipleSessionsError,
)
from .models import ToonClientConfig

_LOGGER = logging.getLogger(__name__)


class ToonThermostatConfigFlow(ConfigFlow, domain=DOMAIN):
    """Handle configuration flow for Toon Thermostat integration."""

    VERSION = 1

    def __init__(self) -> None:
        """Initialize the config flow."""
        super().__init__()
        self._client_config: ToonClientConfig | None = None
        self._authorize_url: str | None = None

    async def async_step_user(
        self, user_input: dict[str, Any] | None = None
    ) -> ConfigFlowResult:
        """
        Handle the initial step of the config flow.

        Args:
            user_input: User input data containing the client credentials.

        Returns:
            ConfigFlowResult indicating the next step or errors.

        """
        await self.async_set_unique_id(DOMAIN)
        self._abort_if_unique_id_configured()

        errors: dict[str, str] = {}

        if user_input is not None:
            self._client_config = ToonClientConfig(
                client_id=user_input[CONF_CLIENT_ID],
                client_secret=user_input[CONF_CLIENT_SECRET],
            )
            registry = async_get_registry(self.hass)

            try:
                self._authorize_url = await registry.async_login(self._client_config)
            except ToonMultipleSessionsError:
                _LOGGER.exception("Corrupted session storage (%s)", ERROR_MULTIPLE_SESSIONS)
                errors["base"] = ERROR_MULTIPLE_SESSIONS
            else:
                if self._authorize_url is None:
                    return self.async_abort(reason="already_configured")
                return await self.async_step_authorize()

        return self.async_show_form(
            step_id="user",
            data_schema=vol.Schema(
                {
                    vol.Required(CONF_CLIENT_ID): str,
                    vol.Required(CONF_CLIENT_SECRET): str,
                }
            ),
            errors=errors,
        )

    async def async_step_authorize(
        self, user_input: dict[str, Any] | None = None
    ) -> ConfigFlowResult:
        """Show the authorization URL and exchange the pasted code."""
        errors: dict[str, str] = {}

        if user_input is not None:
            registry = async_get_registry(self.hass)

            try:
                oauth2_session = await registry.async_complete_login(user_input[CONF_CODE])
                agreements = await oauth2_session.async_get_agreements()
            except ToonAuthExchangeError as err:
                if isinstance(err.__cause__, ToonApiConnectionError):
                    _LOGGER.exception("Connection error (%s)", ERROR_CANNOT_CONNECT)
                    errors["base"] = ERROR_CANNOT_CONNECT
                else:
                    _LOGGER.warning("Authorization failed (%s): %s", ERROR_INVALID_AUTH, err)
                    errors["base"] = ERROR_INVALID_AUTH
            except ToonApiConnectionError:
                _LOGGER.exception("Connection error (%s)", ERROR_CANNOT_CONNECT)
                errors["base"] = ERROR_CANNOT_CONNECT
            except ToonError:
                _LOGGER.exception("Unexpected Toon error (%s)", ERROR_UNKNOWN)
                errors["base"] = ERROR_UNKNOWN
            else:
                if self.source == SOURCE_REAUTH:
                    return await self._async_finish_reauth(oauth2_session.session_id)

                if not agreements:
                    _LOGGER.warning("No agreements found on the Toon account")
                    return self.async_abort(reason=ERROR_NO_AGREEMENTS)

                return self.async_create_entry(
                    title=oauth2_session.title,
                    data={
                        CONF_CLIENT_ID: self._client_config.client_id,
                        CONF_CLIENT_SECRET: self._client_config.client_secret,
                        CONF_CONFIG_ID: self._client_config.config_id,
                        CONF_SESSION_ID: oauth2_session.session_id,
                        CONF_AGREEMENTS: [agreement.as_dict() for agreement in agreements],
                        CONF_WEBHOOK_ID: webhook.async_generate_id(),
                    },
                )

        return self.async_show_form(
            step_id="authorize",
            data_schema=vol.Schema({vol.Required(CONF_CODE): str}),
            description_placeholders={"url": self._authorize_url or ""},
            errors=errors,
        )

    async def async_step_reauth(
        self, entry_data: Mapping[str, Any]
    ) -> ConfigFlowResult:
        """Start over with the stored client credentials."""
        self._client_config = ToonClientConfig(
            client_id=entry_data[CONF_CLIENT_ID],
            client_secret=entry_data[CONF_CLIENT_SECRET],
            config_id=entry_data.get(CONF_CONFIG_ID, DEFAULT_CONFIG_ID),
        )
        return await self.async_step_reauth_confirm()

    async def async_step_reauth_confirm(
        self, user_input: dict[str, Any] | None = None
    ) -> ConfigFlowResult:
        """Log out of the stale session and request a new authorization."""
        if user_input is None:
            return self.async_show_form(step_id="reauth_confirm")

        registry = async_get_registry(self.hass)
        await registry.async_logout()
        self._authorize_url = await registry.async_login(self._client_config)
        return await self.async_step_authorize()

    async def _async_finish_reauth(self, session_id: str) -> ConfigFlowResult:
        entry = self._get_reauth_entry()
        data_updates = {CONF_SESSION_ID: session_id}

        if entry.state is ConfigEntryState.LOADED:
            # The registry rebound devices and token refresh to the new session
            self.hass.config_entries.async_update_entry(
                entry, data={**entry.data, **data_updates}
            )
            return self.async_abort(reason="reauth_successful")

        return self.async_update_reload_and_abort(entry, data_updates=data_updates)
