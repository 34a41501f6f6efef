"""Webhook receiver for Toon push updates.

Toon posts status updates of every display on the account to a single
callback URL. The router hands each body to the device syncs bound to the
display named in its ``commonName``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from homeassistant.components import webhook
from homeassistant.helpers.network import NoURLAvailableError

from .const import DOMAIN

if TYPE_CHECKING:
    from collections.abc import Callable

    from aiohttp import web
    from homeassistant.core import HomeAssistant

    from .device import ToonDeviceSync

_LOGGER = logging.getLogger(__name__)


class ToonWebhookRouter:
    """Routes webhook bodies to device syncs by display common name."""

    def __init__(self) -> None:
        self._devices: dict[str, list[ToonDeviceSync]] = {}

    def register(self, device: ToonDeviceSync) -> Callable[[], None]:
        """Route updates for the display of device to it.

        Returns:
            Callable that stops routing to the device.

        """
        self._devices.setdefault(device.common_name, []).append(device)

        def unregister() -> None:
            devices = self._devices.get(device.common_name, [])
            if device in devices:
                devices.remove(device)
            if not devices:
                self._devices.pop(device.common_name, None)

        return unregister

    def route(self, payload: Any) -> int:
        """Deliver a webhook body.

        Returns:
            Number of devices that accepted the update.

        """
        if not isinstance(payload, dict) or not payload.get("commonName"):
            _LOGGER.warning("Ignoring webhook body without commonName: %s", payload)
            return 0

        common_name = str(payload["commonName"])
        devices = self._devices.get(common_name)
        if not devices:
            _LOGGER.debug("No device registered for display %s", common_name)
            return 0

        return sum(1 for device in list(devices) if device.process_status_update(payload))

    async def async_handle_webhook(
        self, hass: HomeAssistant, webhook_id: str, request: web.Request
    ) -> None:
        """Handle a POST from the Toon webhook service."""
        try:
            payload = await request.json()
        except ValueError:
            _LOGGER.warning("Received invalid JSON on Toon webhook %s", webhook_id)
            return

        _LOGGER.debug("Received Toon webhook %s: %s", webhook_id, payload)
        self.route(payload)


def async_setup_webhook(
    hass: HomeAssistant, webhook_id: str, router: ToonWebhookRouter
) -> str | None:
    """Register the webhook handler.

    Returns:
        The external callback URL, or None when Home Assistant has no URL
        reachable from the internet and devices can only poll.

    """
    webhook.async_register(
        hass,
        DOMAIN,
        "Toon",
        webhook_id,
        router.async_handle_webhook,
        allowed_methods=["POST"],
    )

    try:
        url = webhook.async_generate_url(hass, webhook_id, allow_internal=False)
    except NoURLAvailableError:
        _LOGGER.warning(
            "No external URL available, Toon push updates are disabled and "
            "devices are polled every few minutes"
        )
        return None

    _LOGGER.debug("Toon webhook registered at %s", url)
    return url


def async_remove_webhook(hass: HomeAssistant, webhook_id: str) -> None:
    webhook.async_unregister(hass, webhook_id)
