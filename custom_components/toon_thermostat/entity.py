"""Base entity for Toon Thermostat integration."""

from __future__ import annotations

from homeassistant.helpers.device_registry import DeviceInfo
from homeassistant.helpers.update_coordinator import CoordinatorEntity

from .const import DOMAIN
from .coordinator import ToonDeviceCoordinator


class ToonEntity(CoordinatorEntity[ToonDeviceCoordinator]):
    """Entity backed by the capability values of one thermostat."""

    _attr_has_entity_name = True

    def __init__(self, coordinator: ToonDeviceCoordinator, key: str) -> None:
        """Initialize the entity for one capability of the thermostat."""
        super().__init__(coordinator)
        agreement = coordinator.agreement
        self._attr_unique_id = f"{agreement.agreement_id}_{key}"
        self._attr_device_info = DeviceInfo(
            identifiers={(DOMAIN, agreement.agreement_id)},
            name=agreement.name(include_address=True),
            manufacturer="Eneco",
            model="Toon",
            serial_number=agreement.display_common_name,
        )

    @property
    def available(self) -> bool:
        """Return if the thermostat is reachable through the cloud."""
        return self.coordinator.available
