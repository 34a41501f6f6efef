"""Binary sensor reporting whether the Toon holiday program runs."""

from __future__ import annotations

from typing import TYPE_CHECKING

from homeassistant.components.binary_sensor import BinarySensorEntity

from .const import CAPABILITY_HOLIDAY_ACTIVE, DOMAIN
from .entity import ToonEntity

if TYPE_CHECKING:
    from homeassistant.config_entries import ConfigEntry
    from homeassistant.core import HomeAssistant
    from homeassistant.helpers.entity_platform import AddEntitiesCallback

    from .coordinator import ToonDeviceCoordinator


async def async_setup_entry(
    hass: HomeAssistant,
    entry: ConfigEntry,
    async_add_entities: AddEntitiesCallback,
) -> None:
    """Set up the holiday binary sensor of every thermostat."""
    entry_data = hass.data[DOMAIN][entry.entry_id]
    async_add_entities(
        ToonHolidayBinarySensor(coordinator) for coordinator in entry_data["coordinators"]
    )


class ToonHolidayBinarySensor(ToonEntity, BinarySensorEntity):
    """On while the holiday program of the thermostat runs."""

    _attr_translation_key = CAPABILITY_HOLIDAY_ACTIVE

    def __init__(self, coordinator: ToonDeviceCoordinator) -> None:
        """Initialize the holiday binary sensor."""
        super().__init__(coordinator, CAPABILITY_HOLIDAY_ACTIVE)

    @property
    def is_on(self) -> bool | None:
        """Return if the holiday program is active."""
        return self.coordinator.data.get(CAPABILITY_HOLIDAY_ACTIVE)
