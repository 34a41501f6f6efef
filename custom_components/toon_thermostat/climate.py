"""Climate entities for Toon thermostats.

Temperature states are exposed as presets. HVAC mode AUTO means the
thermostat follows its program, HEAT means it holds the current setpoint.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import voluptuous as vol
from homeassistant.components.climate import (
    ClimateEntity,
    ClimateEntityFeature,
    HVACMode,
)
from homeassistant.components.climate.const import PRESET_NONE
from homeassistant.const import ATTR_TEMPERATURE, UnitOfTemperature
from homeassistant.exceptions import HomeAssistantError, ServiceValidationError
from homeassistant.helpers import config_validation as cv
from homeassistant.helpers import entity_platform

from .const import (
    ATTR_RESUME_PROGRAM,
    ATTR_STATE,
    CAPABILITY_HOLIDAY_ACTIVE,
    CAPABILITY_MEASURE_TEMPERATURE,
    CAPABILITY_TARGET_TEMPERATURE,
    CAPABILITY_TEMPERATURE_STATE,
    DOMAIN,
    PROGRAM_STATE_ON,
    SERVICE_DISABLE_PROGRAM,
    SERVICE_ENABLE_PROGRAM,
    SERVICE_SET_TEMPERATURE_STATE,
    SETTABLE_TEMPERATURE_STATES,
)
from .entity import ToonEntity
from .errors import ToonError, ToonValidationError

if TYPE_CHECKING:
    from collections.abc import Awaitable

    from homeassistant.config_entries import ConfigEntry
    from homeassistant.core import HomeAssistant
    from homeassistant.helpers.entity_platform import AddEntitiesCallback

    from .coordinator import ToonDeviceCoordinator
    from .device import ToonDeviceSync

_LOGGER = logging.getLogger(__name__)


async def async_setup_entry(
    hass: HomeAssistant,
    entry: ConfigEntry,
    async_add_entities: AddEntitiesCallback,
) -> None:
    """Set up climate entities for Toon thermostats."""
    entry_data = hass.data[DOMAIN][entry.entry_id]
    async_add_entities(
        ToonClimateEntity(coordinator) for coordinator in entry_data["coordinators"]
    )

    platform = entity_platform.async_get_current_platform()
    platform.async_register_entity_service(
        SERVICE_SET_TEMPERATURE_STATE,
        {
            vol.Required(ATTR_STATE): vol.In(SETTABLE_TEMPERATURE_STATES),
            vol.Optional(ATTR_RESUME_PROGRAM, default=False): cv.boolean,
        },
        "async_set_temperature_state",
    )
    platform.async_register_entity_service(
        SERVICE_ENABLE_PROGRAM, None, "async_enable_program"
    )
    platform.async_register_entity_service(
        SERVICE_DISABLE_PROGRAM, None, "async_disable_program"
    )


class ToonClimateEntity(ToonEntity, ClimateEntity):
    """Climate entity for a Toon thermostat."""

    _attr_name = None
    _attr_temperature_unit = UnitOfTemperature.CELSIUS
    _attr_target_temperature_step = 0.5
    _attr_min_temp = 6.0
    _attr_max_temp = 30.0
    _attr_hvac_modes = [HVACMode.HEAT, HVACMode.AUTO]
    _attr_preset_modes = SETTABLE_TEMPERATURE_STATES
    _attr_supported_features = (
        ClimateEntityFeature.TARGET_TEMPERATURE | ClimateEntityFeature.PRESET_MODE
    )

    def __init__(self, coordinator: ToonDeviceCoordinator) -> None:
        super().__init__(coordinator, "climate")

    @property
    def _device(self) -> ToonDeviceSync:
        return self.coordinator.device

    @property
    def current_temperature(self) -> float | None:
        return self.coordinator.data.get(CAPABILITY_MEASURE_TEMPERATURE)

    @property
    def target_temperature(self) -> float | None:
        return self.coordinator.data.get(CAPABILITY_TARGET_TEMPERATURE)

    @property
    def preset_mode(self) -> str | None:
        return self.coordinator.data.get(CAPABILITY_TEMPERATURE_STATE, PRESET_NONE)

    @property
    def hvac_mode(self) -> HVACMode:
        program_state = self._device.thermostat_info.get("programState")
        if program_state == PROGRAM_STATE_ON:
            return HVACMode.AUTO
        return HVACMode.HEAT

    @property
    def extra_state_attributes(self) -> dict[str, Any]:
        return {
            CAPABILITY_HOLIDAY_ACTIVE: self.coordinator.data.get(CAPABILITY_HOLIDAY_ACTIVE),
            "warning": self.coordinator.warning,
        }

    async def _async_command(self, description: str, command: Awaitable[Any]) -> None:
        try:
            await command
        except ToonValidationError as err:
            raise ServiceValidationError(str(err)) from err
        except ToonError as err:
            error_msg = f"Failed to {description} on {self._device.common_name}: {err}"
            raise HomeAssistantError(error_msg) from err

    async def async_set_temperature(self, **kwargs: Any) -> None:  # noqa: ANN401
        """Set the target temperature.

        Args:
            **kwargs: Keyword arguments containing temperature data.

        """
        await self._async_command(
            "set temperature",
            self._device.async_on_capability_target_temperature(
                kwargs.get(ATTR_TEMPERATURE)
            ),
        )

    async def async_set_preset_mode(self, preset_mode: str) -> None:
        await self._async_command(
            "set preset",
            self._device.async_on_capability_temperature_state(preset_mode),
        )

    async def async_set_hvac_mode(self, hvac_mode: HVACMode) -> None:
        if hvac_mode == HVACMode.AUTO:
            await self.async_enable_program()
        else:
            await self.async_disable_program()

    async def async_set_temperature_state(
        self, state: str, resume_program: bool = False
    ) -> None:
        """Switch temperature state, optionally resuming the program afterwards."""
        await self._async_command(
            "set temperature state",
            self._device.async_on_capability_temperature_state(state, resume_program),
        )

    async def async_enable_program(self) -> None:
        await self._async_command("enable program", self._device.async_enable_program())
        self.async_write_ha_state()

    async def async_disable_program(self) -> None:
        await self._async_command("disable program", self._device.async_disable_program())
        self.async_write_ha_state()
