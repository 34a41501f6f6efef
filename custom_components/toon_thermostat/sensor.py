"""Sensor entities for Toon energy meters and temperature."""

from __future__ import annotations

from typing import TYPE_CHECKING

from homeassistant.components.sensor import (
    SensorDeviceClass,
    SensorEntity,
    SensorEntityDescription,
    SensorStateClass,
)
from homeassistant.const import (
    UnitOfEnergy,
    UnitOfPower,
    UnitOfTemperature,
    UnitOfVolume,
)

from .const import (
    CAPABILITY_MEASURE_POWER,
    CAPABILITY_MEASURE_TEMPERATURE,
    CAPABILITY_METER_GAS,
    CAPABILITY_METER_POWER,
    DOMAIN,
)
from .entity import ToonEntity

if TYPE_CHECKING:
    from homeassistant.config_entries import ConfigEntry
    from homeassistant.core import HomeAssistant
    from homeassistant.helpers.entity_platform import AddEntitiesCallback

    from .coordinator import ToonDeviceCoordinator

# Daily meters reset at midnight, TOTAL_INCREASING treats the drop as a new cycle
SENSOR_DESCRIPTIONS = (
    SensorEntityDescription(
        key=CAPABILITY_MEASURE_POWER,
        translation_key=CAPABILITY_MEASURE_POWER,
        device_class=SensorDeviceClass.POWER,
        state_class=SensorStateClass.MEASUREMENT,
        native_unit_of_measurement=UnitOfPower.WATT,
    ),
    SensorEntityDescription(
        key=CAPABILITY_METER_POWER,
        translation_key=CAPABILITY_METER_POWER,
        device_class=SensorDeviceClass.ENERGY,
        state_class=SensorStateClass.TOTAL_INCREASING,
        native_unit_of_measurement=UnitOfEnergy.KILO_WATT_HOUR,
    ),
    SensorEntityDescription(
        key=CAPABILITY_METER_GAS,
        translation_key=CAPABILITY_METER_GAS,
        device_class=SensorDeviceClass.GAS,
        state_class=SensorStateClass.TOTAL_INCREASING,
        native_unit_of_measurement=UnitOfVolume.CUBIC_METERS,
    ),
    SensorEntityDescription(
        key=CAPABILITY_MEASURE_TEMPERATURE,
        translation_key=CAPABILITY_MEASURE_TEMPERATURE,
        device_class=SensorDeviceClass.TEMPERATURE,
        state_class=SensorStateClass.MEASUREMENT,
        native_unit_of_measurement=UnitOfTemperature.CELSIUS,
    ),
)


async def async_setup_entry(
    hass: HomeAssistant,
    entry: ConfigEntry,
    async_add_entities: AddEntitiesCallback,
) -> None:
    """Set up a sensor per meter and thermostat."""
    entry_data = hass.data[DOMAIN][entry.entry_id]
    async_add_entities(
        ToonSensorEntity(coordinator, description)
        for coordinator in entry_data["coordinators"]
        for description in SENSOR_DESCRIPTIONS
    )


class ToonSensorEntity(ToonEntity, SensorEntity):
    """Sensor reporting one numeric capability of a thermostat."""

    def __init__(
        self,
        coordinator: ToonDeviceCoordinator,
        description: SensorEntityDescription,
    ) -> None:
        """Initialize the sensor from its description."""
        super().__init__(coordinator, description.key)
        self.entity_description = description

    @property
    def native_value(self) -> float | None:
        """Return the last reported value, None before the first report."""
        return self.coordinator.data.get(self.entity_description.key)
