"""Parsing of Toon status payloads into capability values.

Status arrives both from webhook pushes and from polling ``/status``. Both
share the same shape once unwrapped: an optional ``commonName`` and
``timeToLiveSeconds`` next to an ``updateDataSet`` holding any subset of
``thermostatInfo``, ``thermostatStates``, ``powerUsage`` and ``gasUsage``.

Every extraction function only derives values for fields present in its
section, so a partial payload never clears capabilities it does not carry.
"""

from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from .const import (
    CAPABILITY_HOLIDAY_ACTIVE,
    CAPABILITY_MEASURE_POWER,
    CAPABILITY_MEASURE_TEMPERATURE,
    CAPABILITY_METER_GAS,
    CAPABILITY_METER_POWER,
    CAPABILITY_TARGET_TEMPERATURE,
    CAPABILITY_TEMPERATURE_STATE,
    PROGRAM_STATE_HOLIDAY,
    STATE_HOLIDAY,
    STATE_NONE,
    TEMPERATURE_STATES_REVERSE,
)
from .models import ParsedStatusUpdate

_LOGGER = logging.getLogger(__name__)

ONE_DECIMAL = Decimal("0.1")


def hundredths_to_degrees(value: Any) -> float:
    """Convert a temperature in hundredths of a degree to one decimal.

    Halves round away from zero, so 2155 becomes 21.6.

    Raises:
        ValueError: If value is not numeric.

    """
    try:
        degrees = Decimal(str(value)) / 100
    except InvalidOperation as err:
        error_msg = f"Invalid temperature value: {value!r}"
        raise ValueError(error_msg) from err
    return float(degrees.quantize(ONE_DECIMAL, rounding=ROUND_HALF_UP))


def watt_hours_to_kilowatt_hours(value: Any) -> float:
    """Convert a cumulative usage in Wh to kWh."""
    return float(value) / 1000


def state_name(state_id: Any) -> str | None:
    """Map an active state id to its symbolic name, None if unknown."""
    try:
        return TEMPERATURE_STATES_REVERSE.get(int(state_id))
    except (TypeError, ValueError):
        return None


def _section(data: dict[str, Any], key: str) -> dict[str, Any] | None:
    value = data.get(key)
    return value if isinstance(value, dict) else None


def parse_status_payload(payload: Any) -> ParsedStatusUpdate | None:
    """Split a status payload into its sections.

    Args:
        payload: Webhook body or wrapped poll response.

    Returns:
        ParsedStatusUpdate, or None if the payload carries no updateDataSet.

    """
    if not isinstance(payload, dict):
        return None

    data_set = payload.get("updateDataSet")
    if not isinstance(data_set, dict):
        return None

    common_name = payload.get("commonName")
    time_to_live = payload.get("timeToLiveSeconds")
    try:
        time_to_live = float(time_to_live) if time_to_live is not None else None
    except (TypeError, ValueError):
        _LOGGER.warning("Ignoring invalid timeToLiveSeconds: %s", time_to_live)
        time_to_live = None

    return ParsedStatusUpdate(
        common_name=str(common_name) if common_name is not None else None,
        time_to_live=time_to_live,
        thermostat_info=_section(data_set, "thermostatInfo"),
        power_usage=_section(data_set, "powerUsage"),
        gas_usage=_section(data_set, "gasUsage"),
        state_temperatures=extract_state_temperatures(data_set),
    )


def extract_state_temperatures(data_set: dict[str, Any]) -> dict[int, float]:
    """Extract the target temperature configured per temperature state.

    Reads ``thermostatStates.state``, a list of ``{id, tempValue}`` entries
    with the temperature in hundredths of a degree.
    """
    states = data_set.get("thermostatStates")
    if not isinstance(states, dict) or not isinstance(states.get("state"), list):
        return {}

    temperatures: dict[int, float] = {}
    for entry in states["state"]:
        if not isinstance(entry, dict) or "id" not in entry or "tempValue" not in entry:
            continue
        try:
            temperatures[int(entry["id"])] = hundredths_to_degrees(entry["tempValue"])
        except (TypeError, ValueError):
            _LOGGER.warning("Ignoring invalid thermostat state entry: %s", entry)
    return temperatures


def extract_power_usage_values(data: dict[str, Any]) -> dict[str, float]:
    """Derive power capabilities from a powerUsage section.

    ``value`` is the instantaneous usage in W. ``dayUsage`` and
    ``dayLowUsage`` are today's normal and low tariff usage in Wh.
    """
    values: dict[str, float] = {}

    if data.get("value") is not None:
        values[CAPABILITY_MEASURE_POWER] = float(data["value"])

    day_usage = [data[key] for key in ("dayUsage", "dayLowUsage") if data.get(key) is not None]
    if day_usage:
        values[CAPABILITY_METER_POWER] = watt_hours_to_kilowatt_hours(sum(day_usage))

    return values


def extract_gas_usage_values(data: dict[str, Any]) -> dict[str, float]:
    """Derive gas capabilities from a gasUsage section."""
    values: dict[str, float] = {}

    if data.get("dayUsage") is not None:
        values[CAPABILITY_METER_GAS] = watt_hours_to_kilowatt_hours(data["dayUsage"])

    return values


def extract_thermostat_info_values(data: dict[str, Any]) -> dict[str, Any]:
    """Derive thermostat capabilities from a thermostatInfo section.

    A holiday active state is reported as ``none``: holiday is not a state a
    user can select. Whether the holiday program runs is reported separately
    through ``holiday_active``, derived from ``programState``.
    """
    values: dict[str, Any] = {}

    if data.get("currentDisplayTemp") is not None:
        values[CAPABILITY_MEASURE_TEMPERATURE] = hundredths_to_degrees(
            data["currentDisplayTemp"]
        )

    if data.get("currentSetpoint") is not None:
        values[CAPABILITY_TARGET_TEMPERATURE] = hundredths_to_degrees(
            data["currentSetpoint"]
        )

    if "activeState" in data:
        name = state_name(data["activeState"])
        if name is None:
            _LOGGER.warning("Unknown active state: %s", data["activeState"])
        else:
            values[CAPABILITY_TEMPERATURE_STATE] = (
                STATE_NONE if name == STATE_HOLIDAY else name
            )

    if data.get("programState") is not None:
        try:
            values[CAPABILITY_HOLIDAY_ACTIVE] = (
                int(data["programState"]) == PROGRAM_STATE_HOLIDAY
            )
        except (TypeError, ValueError):
            _LOGGER.warning("Unknown program state: %s", data["programState"])

    return values
