"""Synchronization engine for a single Toon thermostat.

ToonDeviceSync binds one agreement to one OAuth2 session and keeps the
capability values of the thermostat current. It owns the availability state
machine, the webhook subscription renewal timers, the merge of incoming
status updates and the outbound thermostat commands.
"""

from __future__ import annotations

import asyncio
import logging
import math
from decimal import ROUND_HALF_UP, Decimal
from functools import partial
from typing import TYPE_CHECKING, Any, Protocol

from .const import (
    CAPABILITY_TARGET_TEMPERATURE,
    CAPABILITY_TEMPERATURE_STATE,
    DEBOUNCE_DELAY,
    PROGRAM_STATE_OFF,
    PROGRAM_STATE_ON,
    PROGRAM_STATE_OVERRIDE,
    REASON_CONNECTING,
    REASON_OFFLINE,
    RETRY_ATTEMPTS,
    SETTABLE_TEMPERATURE_STATES,
    STATE_NONE,
    TEMPERATURE_STATES,
    UNAVAILABLE_THRESHOLD,
    WARNING_WEBHOOK_SUBSCRIPTION,
    WEBHOOK_RENEWAL_INTERVAL,
)
from .debounce import CoalescingDebouncer
from .errors import (
    ToonCommunicationError,
    ToonError,
    ToonInvalidStateError,
    ToonInvalidTemperatureError,
)
from .retry import async_retry, exponential_delay
from .session import RETRYABLE_READ_ERRORS
from .update_processor import (
    extract_gas_usage_values,
    extract_power_usage_values,
    extract_thermostat_info_values,
    parse_status_payload,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Coroutine

    from .models import DeviceBinding
    from .session import ToonOAuth2Session

_LOGGER = logging.getLogger(__name__)


class CapabilitySink(Protocol):
    """Receives capability values and availability of a device."""

    def set_capability_value(self, capability: str, value: Any) -> None: ...

    def set_available(self) -> None: ...

    def set_unavailable(self, reason: str) -> None: ...

    def set_warning(self, message: str) -> None: ...

    def unset_warning(self) -> None: ...


def validate_temperature(temperature: Any) -> float:
    """Return temperature as float or raise for missing, zero or malformed values."""
    if isinstance(temperature, bool) or not isinstance(temperature, int | float):
        error_msg = f"Invalid temperature: {temperature!r}"
        raise ToonInvalidTemperatureError(error_msg)
    if not math.isfinite(temperature) or temperature == 0:
        error_msg = f"Invalid temperature: {temperature!r}"
        raise ToonInvalidTemperatureError(error_msg)
    return float(temperature)


def round_to_half(temperature: float) -> float:
    """Round a temperature to the 0.5 degree step of the thermostat."""
    doubled = (Decimal(str(temperature)) * 2).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return float(doubled / 2)


class ToonDeviceSync:
    """Keeps one Toon thermostat in sync with the cloud."""

    def __init__(
        self,
        oauth2_session: ToonOAuth2Session,
        binding: DeviceBinding,
        sink: CapabilitySink,
        *,
        webhook_url: str | None = None,
        renewal_interval: float = WEBHOOK_RENEWAL_INTERVAL,
        debounce_delay: float = DEBOUNCE_DELAY,
        retry_attempts: int = RETRY_ATTEMPTS,
        retry_delay: Callable[[int], float] = exponential_delay,
    ) -> None:
        """Initialize the device sync.

        Args:
            oauth2_session: Session used for every API call.
            binding: Agreement and session this device is bound to.
            sink: Receiver of capability values and availability.
            webhook_url: Callback URL for push updates, None to only poll.
            renewal_interval: Seconds between webhook subscription renewals.
            debounce_delay: Window in seconds for coalescing commands.
            retry_attempts: Attempts for the webhook subscription request.
            retry_delay: Back-off between subscription attempts.

        """
        self._oauth2_session = oauth2_session
        self._binding = binding
        self._sink = sink
        self._webhook_url = webhook_url
        self._renewal_interval = renewal_interval
        self._retry_attempts = retry_attempts
        self._retry_delay = retry_delay

        # Raw snapshots, each replaced wholesale by the latest reading
        self._thermostat_info: dict[str, Any] = {}
        self._power_usage: dict[str, Any] = {}
        self._gas_usage: dict[str, Any] = {}
        self._state_temperatures: dict[int, float] = {}

        self._available = False
        self._unavailable_requests = 0

        self._renewal_timer: asyncio.TimerHandle | None = None
        self._lease_timer: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._suspended = False
        self._removed = False

        self._target_temperature_debouncer: CoalescingDebouncer[float] = (
            CoalescingDebouncer(
                self.async_set_target_temperature,
                debounce_delay,
                f"{binding.common_name} target_temperature",
            )
        )
        self._temperature_state_debouncer: CoalescingDebouncer[str] = (
            CoalescingDebouncer(
                self.async_update_state,
                debounce_delay,
                f"{binding.common_name} temperature_state",
            )
        )

    @property
    def binding(self) -> DeviceBinding:
        return self._binding

    @property
    def agreement_id(self) -> str:
        return self._binding.agreement_id

    @property
    def common_name(self) -> str:
        return self._binding.common_name

    @property
    def oauth2_session(self) -> ToonOAuth2Session:
        return self._oauth2_session

    @property
    def available(self) -> bool:
        return self._available

    @property
    def unavailable_requests(self) -> int:
        return self._unavailable_requests

    @property
    def thermostat_info(self) -> dict[str, Any]:
        return dict(self._thermostat_info)

    @property
    def power_usage(self) -> dict[str, Any]:
        return dict(self._power_usage)

    @property
    def gas_usage(self) -> dict[str, Any]:
        return dict(self._gas_usage)

    @property
    def state_temperatures(self) -> dict[int, float]:
        return dict(self._state_temperatures)

    @property
    def webhook_renewal_scheduled(self) -> bool:
        return self._renewal_timer is not None or self._lease_timer is not None

    # Availability

    def mark_available(self) -> None:
        """Reset the failure counter and become available if unavailable."""
        self._unavailable_requests = 0
        if self._available:
            return
        _LOGGER.info("Marking Toon %s as available", self.common_name)
        self._available = True
        self._call_sink(self._sink.set_available)

    def mark_unavailable(self, reason: str) -> None:
        """Count a failure, becoming unavailable once the threshold is exceeded."""
        self._unavailable_requests += 1
        if self._unavailable_requests <= UNAVAILABLE_THRESHOLD:
            _LOGGER.debug(
                "Toon %s unavailable request %d/%d ignored: %s",
                self.common_name,
                self._unavailable_requests,
                UNAVAILABLE_THRESHOLD,
                reason,
            )
            return
        self.set_unavailable(reason)

    def set_unavailable(self, reason: str) -> None:
        """Become unavailable immediately, bypassing the failure counter."""
        if self._available:
            _LOGGER.info("Marking Toon %s as unavailable: %s", self.common_name, reason)
        self._available = False
        self._call_sink(self._sink.set_unavailable, reason)

    def _call_sink(self, method: Callable[..., None], *args: Any) -> None:
        try:
            method(*args)
        except Exception:
            _LOGGER.exception("Error notifying listener of Toon %s", self.common_name)

    def _set_capability(self, capability: str, value: Any) -> None:
        _LOGGER.debug("Toon %s: %s -> %s", self.common_name, capability, value)
        self._call_sink(self._sink.set_capability_value, capability, value)

    async def _async_api_call(self, func: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        try:
            result = await func(*args)
        except ToonCommunicationError:
            _LOGGER.warning("Toon %s cannot be reached by the cloud", self.common_name)
            self.mark_unavailable(REASON_OFFLINE)
            raise
        if not self._removed and not self._suspended:
            self.mark_available()
        return result

    # Lifecycle

    async def async_start(self) -> None:
        """Connect the device: poll status and subscribe to push updates.

        Both run concurrently; once both finished the device is marked
        available, whether or not they succeeded.
        """
        _LOGGER.debug("Starting sync of Toon %s (%s)", self.common_name, self.agreement_id)
        self._suspended = False
        self.set_unavailable(REASON_CONNECTING)

        results = await asyncio.gather(
            self.async_get_status_update(),
            self.async_register_webhook_subscription(),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                _LOGGER.error(
                    "Error while connecting Toon %s: %s", self.common_name, result
                )

        if self._removed or self._suspended:
            return
        self.mark_available()

    def reset_oauth2_client(self, oauth2_session: ToonOAuth2Session) -> None:
        """Bind the device to a new session after re-authentication."""
        _LOGGER.info(
            "Rebinding Toon %s from session %s to %s",
            self.common_name,
            self._binding.session_id,
            oauth2_session.session_id,
        )
        self._oauth2_session = oauth2_session
        self._binding = self._binding.rebind(
            oauth2_session.session_id, oauth2_session.config_id
        )

    def suspend(self) -> None:
        """Stop renewals and pending commands until async_start is called again."""
        _LOGGER.debug("Suspending sync of Toon %s", self.common_name)
        self._suspended = True
        self._cancel_timers()
        self._target_temperature_debouncer.cancel()
        self._temperature_state_debouncer.cancel()

    async def async_remove(self) -> None:
        """Tear the device down and end its webhook subscription.

        Calls still in flight are left to finish; their results are dropped.
        """
        _LOGGER.debug("Removing sync of Toon %s", self.common_name)
        self._removed = True
        self._cancel_timers()
        self._target_temperature_debouncer.cancel()
        self._temperature_state_debouncer.cancel()

        try:
            await self._oauth2_session.async_unregister_webhook_subscription(
                self.agreement_id
            )
        except ToonError as err:
            _LOGGER.warning(
                "Failed to unregister webhook subscription of Toon %s: %s",
                self.common_name,
                err,
            )

    # Webhook subscription

    async def async_register_webhook_subscription(self) -> bool:
        """Subscribe to push updates and schedule the next renewal.

        A failure only raises a warning, the device keeps polling.

        Returns:
            True if the subscription is active.

        """
        if self._removed or self._suspended:
            return False

        self._cancel_timers()

        if not self._webhook_url:
            _LOGGER.debug("No webhook URL for Toon %s, polling only", self.common_name)
            self._call_sink(self._sink.set_warning, WARNING_WEBHOOK_SUBSCRIPTION)
            return False

        # Failures here never count towards unavailability
        try:
            await async_retry(
                partial(
                    self._oauth2_session.async_register_webhook_subscription,
                    self.agreement_id,
                    self._webhook_url,
                ),
                max_attempts=self._retry_attempts,
                delay=self._retry_delay,
                retry_on=RETRYABLE_READ_ERRORS,
            )
        except ToonError as err:
            _LOGGER.warning(
                "Failed to register webhook subscription of Toon %s: %s",
                self.common_name,
                err,
            )
            self._call_sink(self._sink.set_warning, WARNING_WEBHOOK_SUBSCRIPTION)
            subscribed = False
        else:
            if not self._removed and not self._suspended:
                self.mark_available()
            self._call_sink(self._sink.unset_warning)
            subscribed = True

        # A lease received meanwhile takes priority over the fixed interval
        if self._lease_timer is None:
            self._schedule_renewal(self._renewal_interval)
        return subscribed

    def _schedule_renewal(self, delay: float) -> None:
        if self._removed or self._suspended:
            return
        if self._renewal_timer is not None:
            self._renewal_timer.cancel()
        self._renewal_timer = asyncio.get_running_loop().call_later(
            delay, self._on_renewal_timer
        )

    def _schedule_lease_renewal(self, time_to_live: float) -> None:
        if self._removed or self._suspended:
            return
        if self._renewal_timer is not None:
            self._renewal_timer.cancel()
            self._renewal_timer = None
        if self._lease_timer is not None:
            self._lease_timer.cancel()
        _LOGGER.debug(
            "Webhook lease of Toon %s expires in %ss", self.common_name, time_to_live
        )
        self._lease_timer = asyncio.get_running_loop().call_later(
            time_to_live, self._on_lease_timer
        )

    def _on_renewal_timer(self) -> None:
        self._renewal_timer = None
        self._create_task(self.async_register_webhook_subscription())

    def _on_lease_timer(self) -> None:
        self._lease_timer = None
        self._create_task(self.async_register_webhook_subscription())

    def _cancel_timers(self) -> None:
        for timer in (self._renewal_timer, self._lease_timer):
            if timer is not None:
                timer.cancel()
        self._renewal_timer = None
        self._lease_timer = None

    def _create_task(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # Status updates

    async def async_get_status_update(self) -> bool:
        """Poll the status and process it like a push update.

        Returns:
            True if a status was received and processed.

        """
        if self._removed or self._suspended:
            return False

        try:
            data = await self._async_api_call(
                self._oauth2_session.async_get_status, self.agreement_id
            )
        except ToonError as err:
            _LOGGER.error(
                "Failed to retrieve status update of Toon %s: %s", self.common_name, err
            )
            return False

        return self.process_status_update({"updateDataSet": data})

    def process_status_update(self, payload: Any) -> bool:
        """Apply a status payload from a webhook push or a poll.

        Returns:
            True if the payload was accepted for this device.

        """
        if self._removed or self._suspended:
            _LOGGER.debug("Dropping status update for inactive Toon %s", self.common_name)
            return False

        update = parse_status_payload(payload)
        if update is None:
            _LOGGER.warning("Ignoring malformed status update: %s", payload)
            return False

        if update.common_name is not None and update.common_name != self.common_name:
            _LOGGER.debug(
                "Ignoring status update for display %s on Toon %s",
                update.common_name,
                self.common_name,
            )
            return False

        _LOGGER.debug("Processing status update for Toon %s: %s", self.common_name, payload)
        self.mark_available()

        if update.time_to_live is not None and update.time_to_live > 0:
            self._schedule_lease_renewal(update.time_to_live)

        if update.state_temperatures:
            self._state_temperatures.update(update.state_temperatures)

        if update.power_usage is not None:
            self._power_usage = dict(update.power_usage)
            self._apply_values("powerUsage", extract_power_usage_values, update.power_usage)

        if update.gas_usage is not None:
            self._gas_usage = dict(update.gas_usage)
            self._apply_values("gasUsage", extract_gas_usage_values, update.gas_usage)

        if update.thermostat_info is not None:
            self._thermostat_info = dict(update.thermostat_info)
            self._apply_values(
                "thermostatInfo", extract_thermostat_info_values, update.thermostat_info
            )

        return True

    def _apply_values(
        self,
        section: str,
        extract: Callable[[dict[str, Any]], dict[str, Any]],
        data: dict[str, Any],
    ) -> None:
        try:
            values = extract(data)
        except (TypeError, ValueError):
            _LOGGER.exception("Failed to process %s of Toon %s", section, self.common_name)
            return
        for capability, value in values.items():
            self._set_capability(capability, value)

    # Commands

    async def async_on_capability_target_temperature(self, temperature: Any) -> float:
        """Handle a target temperature request from the UI or an automation."""
        _LOGGER.debug("Target temperature requested for %s: %s", self.common_name, temperature)
        temperature = round_to_half(validate_temperature(temperature))
        return await self._target_temperature_debouncer.async_call(temperature)

    async def async_on_capability_temperature_state(
        self, state: str, resume_program: bool = False
    ) -> str:
        """Handle a temperature state request from the UI or an automation."""
        _LOGGER.debug(
            "Temperature state requested for %s: %s (resume program: %s)",
            self.common_name,
            state,
            resume_program,
        )
        self._validate_state(state)
        return await self._temperature_state_debouncer.async_call(state, resume_program)

    @staticmethod
    def _validate_state(state: Any) -> int:
        if state not in SETTABLE_TEMPERATURE_STATES:
            error_msg = f"Invalid temperature state: {state!r}"
            raise ToonInvalidStateError(error_msg)
        return TEMPERATURE_STATES[state]

    async def _async_write_thermostat(self, changes: dict[str, Any]) -> None:
        if not self._thermostat_info:
            _LOGGER.warning(
                "No thermostat snapshot for Toon %s yet, writing changes only",
                self.common_name,
            )
        data = {**self._thermostat_info, **changes}
        await self._async_api_call(
            self._oauth2_session.async_update_state, self.agreement_id, data
        )

    async def async_set_target_temperature(self, temperature: Any) -> float:
        """Override the program with a new target temperature.

        Raises:
            ToonInvalidTemperatureError: Before any request, for a missing,
                zero or malformed temperature.

        """
        temperature = validate_temperature(temperature)
        _LOGGER.debug("Setting target temperature of %s to %s", self.common_name, temperature)

        try:
            await self._async_write_thermostat(
                {
                    "currentSetpoint": round(temperature * 100),
                    "programState": PROGRAM_STATE_OVERRIDE,
                    "activeState": TEMPERATURE_STATES[STATE_NONE],
                }
            )
        except ToonError:
            _LOGGER.exception(
                "Failed to set target temperature of %s to %s",
                self.common_name,
                temperature,
            )
            raise

        self._set_capability(CAPABILITY_TARGET_TEMPERATURE, temperature)
        self._set_capability(CAPABILITY_TEMPERATURE_STATE, STATE_NONE)
        _LOGGER.info("Set target temperature of %s to %s", self.common_name, temperature)
        return temperature

    async def async_update_state(self, state: str, resume_program: bool = False) -> str:
        """Switch the thermostat to a temperature state.

        Args:
            state: One of comfort, home, sleep or away.
            resume_program: Resume the program at its next switch point
                instead of abandoning it.

        Raises:
            ToonInvalidStateError: Before any request, for an unknown state.

        """
        state_id = self._validate_state(state)
        program_state = PROGRAM_STATE_OVERRIDE if resume_program else PROGRAM_STATE_OFF
        _LOGGER.debug(
            "Setting state of %s to %s (%s), programState %s",
            self.common_name,
            state,
            state_id,
            program_state,
        )

        try:
            await self._async_write_thermostat(
                {"activeState": state_id, "programState": program_state}
            )
        except ToonError:
            _LOGGER.exception(
                "Failed to set temperature state of %s to %s (%s)",
                self.common_name,
                state,
                state_id,
            )
            raise

        self._set_capability(CAPABILITY_TEMPERATURE_STATE, state)
        predicted = self._state_temperatures.get(state_id)
        if predicted is not None:
            self._set_capability(CAPABILITY_TARGET_TEMPERATURE, predicted)
        _LOGGER.info("Set temperature state of %s to %s", self.common_name, state)
        return state

    async def async_enable_program(self) -> None:
        """Let the thermostat follow its program."""
        _LOGGER.debug("Enabling program of %s", self.common_name)
        await self._async_write_thermostat({"programState": PROGRAM_STATE_ON})

    async def async_disable_program(self) -> None:
        """Stop the thermostat from following its program."""
        _LOGGER.debug("Disabling program of %s", self.common_name)
        await self._async_write_thermostat({"programState": PROGRAM_STATE_OFF})
