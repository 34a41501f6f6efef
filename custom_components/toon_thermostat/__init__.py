from __future__ import annotations

import logging

from homeassistant.config_entries import ConfigEntry
from homeassistant.const import Platform
from homeassistant.core import HomeAssistant, callback
from homeassistant.exceptions import ConfigEntryAuthFailed
from homeassistant.helpers.storage import Store

from .api import create_session_client
from .const import (
    CONF_AGREEMENTS,
    CONF_CLIENT_ID,
    CONF_CLIENT_SECRET,
    CONF_CONFIG_ID,
    CONF_WEBHOOK_ID,
    DEFAULT_CONFIG_ID,
    DOMAIN,
    STORAGE_KEY,
    STORAGE_VERSION,
)
from .coordinator import ToonDeviceCoordinator, ToonTokenCoordinator
from .device import ToonDeviceSync
from .errors import ToonMultipleSessionsError
from .models import Agreement, DeviceBinding, ToonClientConfig
from .registry import ToonSessionRegistry
from .webhook import ToonWebhookRouter, async_remove_webhook, async_setup_webhook

_LOGGER = logging.getLogger(__name__)

PLATFORMS = [Platform.BINARY_SENSOR, Platform.CLIMATE, Platform.SENSOR]

DATA_REGISTRY = "registry"


@callback
def async_get_registry(hass: HomeAssistant) -> ToonSessionRegistry:
    """Return the session registry shared by the whole Home Assistant instance."""
    domain_data = hass.data.setdefault(DOMAIN, {})
    if DATA_REGISTRY not in domain_data:
        domain_data[DATA_REGISTRY] = ToonSessionRegistry(
            create_session_client(hass),
            Store(hass, STORAGE_VERSION, STORAGE_KEY),
        )
    return domain_data[DATA_REGISTRY]


def client_config_from_entry(entry: ConfigEntry) -> ToonClientConfig:
    return ToonClientConfig(
        client_id=entry.data[CONF_CLIENT_ID],
        client_secret=entry.data[CONF_CLIENT_SECRET],
        config_id=entry.data.get(CONF_CONFIG_ID, DEFAULT_CONFIG_ID),
    )


async def async_setup_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    _LOGGER.info("Setting up Toon Thermostat integration for entry %s", entry.entry_id)

    registry = async_get_registry(hass)
    registry.register_client_config(client_config_from_entry(entry))

    try:
        oauth2_session = await registry.async_get_session()
    except ToonMultipleSessionsError as err:
        _LOGGER.error("Corrupted Toon session storage for entry %s: %s", entry.entry_id, err)
        return False

    if oauth2_session is None or oauth2_session.token is None:
        error_msg = "Not logged in to Toon, please authorize again"
        raise ConfigEntryAuthFailed(error_msg)

    token_coordinator = ToonTokenCoordinator(hass, entry, oauth2_session)
    await token_coordinator.async_eager_refresh()
    # A listener keeps the refresh interval scheduled
    entry.async_on_unload(token_coordinator.async_add_listener(lambda: None))
    entry.async_on_unload(
        registry.add_login_listener(token_coordinator.reset_oauth2_client)
    )

    router = ToonWebhookRouter()
    webhook_id = entry.data[CONF_WEBHOOK_ID]
    webhook_url = async_setup_webhook(hass, webhook_id, router)
    entry.async_on_unload(lambda: async_remove_webhook(hass, webhook_id))

    coordinators: list[ToonDeviceCoordinator] = []
    for agreement_data in entry.data.get(CONF_AGREEMENTS, []):
        agreement = Agreement.from_dict(agreement_data)
        coordinator = ToonDeviceCoordinator(hass, entry, agreement)
        binding = DeviceBinding(
            agreement_id=agreement.agreement_id,
            common_name=agreement.display_common_name,
            session_id=oauth2_session.session_id,
            config_id=oauth2_session.config_id,
        )
        device = ToonDeviceSync(oauth2_session, binding, coordinator, webhook_url=webhook_url)
        coordinator.device = device
        entry.async_on_unload(registry.register_device(device))
        entry.async_on_unload(router.register(device))
        coordinators.append(coordinator)

    _LOGGER.debug("Created %d Toon devices for entry %s", len(coordinators), entry.entry_id)

    hass.data[DOMAIN][entry.entry_id] = {
        "token_coordinator": token_coordinator,
        "coordinators": coordinators,
        "router": router,
    }

    await hass.config_entries.async_forward_entry_setups(entry, PLATFORMS)

    # Subscription retries can take minutes, entities show "connecting" meanwhile
    for coordinator in coordinators:
        entry.async_create_background_task(
            hass,
            coordinator.device.async_start(),
            f"{DOMAIN}_start_{coordinator.agreement.agreement_id}",
        )

    _LOGGER.info("Successfully setup Toon Thermostat integration for entry %s", entry.entry_id)
    return True


async def async_unload_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    _LOGGER.info("Unloading Toon Thermostat integration for entry %s", entry.entry_id)

    unload_ok = await hass.config_entries.async_unload_platforms(entry, PLATFORMS)
    if not unload_ok:
        _LOGGER.warning("Failed to unload some platforms for entry %s", entry.entry_id)
        return False

    entry_data = hass.data[DOMAIN].pop(entry.entry_id, None)
    if entry_data is not None:
        for coordinator in entry_data["coordinators"]:
            if coordinator.device is not None:
                await coordinator.device.async_remove()

    _LOGGER.info("Successfully unloaded Toon Thermostat integration for entry %s", entry.entry_id)
    return True


async def async_remove_entry(hass: HomeAssistant, entry: ConfigEntry) -> None:
    """Log out when the integration is deleted."""
    _LOGGER.info("Removing Toon session of entry %s", entry.entry_id)
    await async_get_registry(hass).async_logout()
