"""Process-wide registry of the Toon OAuth2 session.

At most one session exists at any time. The registry persists it, mediates
login and logout and keeps every registered device sync bound to the
session that is currently active.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import TYPE_CHECKING, Any, Protocol

from .const import (
    DEFAULT_CONFIG_ID,
    REASON_AGREEMENT_MISSING,
    REASON_REAUTHORIZE,
    RETRY_ATTEMPTS,
)
from .errors import (
    ToonError,
    ToonMultipleSessionsError,
    ToonSessionError,
    ToonSessionExistsError,
)
from .models import ToonClientConfig, ToonSession
from .retry import exponential_delay
from .session import ToonOAuth2Session

if TYPE_CHECKING:
    from collections.abc import Callable

    import httpx

    from .device import ToonDeviceSync

_LOGGER = logging.getLogger(__name__)


class SessionStore(Protocol):
    """Persistence used by the registry, compatible with Home Assistant's Store."""

    async def async_load(self) -> dict[str, Any] | None: ...

    async def async_save(self, data: dict[str, Any]) -> None: ...


class ToonSessionRegistry:
    """Owns the single Toon session and the devices bound to it."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        store: SessionStore,
        *,
        retry_attempts: int = RETRY_ATTEMPTS,
        retry_delay: Callable[[int], float] = exponential_delay,
    ) -> None:
        self._client = client
        self._store = store
        self._retry_attempts = retry_attempts
        self._retry_delay = retry_delay
        self._client_configs: dict[str, ToonClientConfig] = {}
        self._oauth2_session: ToonOAuth2Session | None = None
        self._pending_session: ToonOAuth2Session | None = None
        self._devices: list[ToonDeviceSync] = []
        self._login_listeners: list[Callable[[ToonOAuth2Session], None]] = []
        self._save_tasks: set[asyncio.Task[None]] = set()

    @property
    def oauth2_session(self) -> ToonOAuth2Session | None:
        """Return the active session, if one was loaded or created."""
        return self._oauth2_session

    @property
    def devices(self) -> list[ToonDeviceSync]:
        return list(self._devices)

    @property
    def login_pending(self) -> bool:
        return self._pending_session is not None

    def register_client_config(self, config: ToonClientConfig) -> None:
        """Make OAuth2 application credentials available to sessions."""
        self._client_configs[config.config_id] = config

    def _get_client_config(self, config_id: str) -> ToonClientConfig:
        try:
            return self._client_configs[config_id]
        except KeyError as err:
            error_msg = f"No client configuration registered for {config_id}"
            raise ToonSessionError(error_msg) from err

    def _build_session(self, session: ToonSession) -> ToonOAuth2Session:
        return ToonOAuth2Session(
            self._client,
            self._get_client_config(session.config_id),
            session,
            on_token_update=self._on_token_update,
            retry_attempts=self._retry_attempts,
            retry_delay=self._retry_delay,
        )

    def create_session(
        self, session_id: str | None = None, config_id: str = DEFAULT_CONFIG_ID
    ) -> ToonOAuth2Session:
        """Allocate the temporary session used while authorization is pending.

        Raises:
            ToonSessionExistsError: If a session or a pending login exists.

        """
        if self._oauth2_session is not None or self._pending_session is not None:
            error_msg = "A Toon session already exists"
            raise ToonSessionExistsError(error_msg)

        session = ToonSession(session_id=session_id or uuid.uuid4().hex, config_id=config_id)
        self._pending_session = self._build_session(session)
        _LOGGER.debug("Created temporary session %s", session.session_id)
        return self._pending_session

    async def async_get_session(self) -> ToonOAuth2Session | None:
        """Return the active session, loading it from storage when needed.

        Raises:
            ToonMultipleSessionsError: If storage holds more than one session.

        """
        if self._oauth2_session is not None:
            return self._oauth2_session

        data = await self._store.async_load() or {}
        sessions = data.get("sessions") or []
        if len(sessions) > 1:
            error_msg = f"Found {len(sessions)} stored Toon sessions, expected at most one"
            raise ToonMultipleSessionsError(error_msg)
        if not sessions:
            return None

        self._oauth2_session = self._build_session(ToonSession.from_dict(sessions[0]))
        _LOGGER.debug("Loaded session %s from storage", self._oauth2_session.session_id)
        return self._oauth2_session

    async def async_is_authenticated(self) -> bool:
        session = await self.async_get_session()
        return session is not None and session.token is not None

    async def async_login(self, client_config: ToonClientConfig) -> str | None:
        """Start a login.

        Returns:
            The URL the user must visit to authorize, or None when a session
            already exists.

        """
        self.register_client_config(client_config)
        if await self.async_get_session() is not None:
            _LOGGER.debug("Already logged in to Toon, skipping login")
            return None

        if self._pending_session is not None:
            _LOGGER.debug("Discarding unfinished login %s", self._pending_session.session_id)
            self._pending_session.close()
            self._pending_session = None

        pending = self.create_session(config_id=client_config.config_id)
        return pending.authorize_url

    async def async_complete_login(self, code: str) -> ToonOAuth2Session:
        """Exchange the authorization code and rebind every registered device.

        Raises:
            ToonSessionError: If no login was started.
            ToonAuthExchangeError: If the code exchange fails; the login can
                be completed again with another code.

        """
        pending = self._pending_session
        if pending is None:
            error_msg = "No Toon login in progress"
            raise ToonSessionError(error_msg)

        await pending.async_exchange_code(code)

        self._pending_session = None
        self._oauth2_session = pending
        await self._async_save()
        _LOGGER.info("Logged in to Toon as %s", pending.title)

        for listener in list(self._login_listeners):
            try:
                listener(pending)
            except Exception:
                _LOGGER.exception("Error notifying login listener")

        await self._async_rebind_devices(pending)
        return pending

    async def _async_rebind_devices(self, session: ToonOAuth2Session) -> None:
        if not self._devices:
            return

        try:
            agreements = await session.async_get_agreements()
        except ToonError as err:
            _LOGGER.warning("Could not verify agreements of bound devices: %s", err)
            agreement_ids = None
        else:
            agreement_ids = {agreement.agreement_id for agreement in agreements}

        starts = []
        for device in list(self._devices):
            device.reset_oauth2_client(session)
            if agreement_ids is not None and device.agreement_id not in agreement_ids:
                _LOGGER.warning(
                    "Agreement %s of Toon %s is no longer on the account",
                    device.agreement_id,
                    device.common_name,
                )
                device.suspend()
                device.set_unavailable(REASON_AGREEMENT_MISSING)
                continue
            starts.append(device.async_start())

        for result in await asyncio.gather(*starts, return_exceptions=True):
            if isinstance(result, Exception):
                _LOGGER.error("Error restarting device after login: %s", result)

    async def async_logout(self) -> None:
        """Delete the session and mark every bound device unavailable.

        Device bindings are kept so a later login can restore them.
        """
        if self._pending_session is not None:
            self._pending_session.close()
            self._pending_session = None

        session, self._oauth2_session = self._oauth2_session, None
        if session is not None:
            _LOGGER.info("Logging out of Toon session %s", session.session_id)
            session.close()

        await self._store.async_save({"sessions": []})

        for device in self._devices:
            device.suspend()
            device.set_unavailable(REASON_REAUTHORIZE)

    def register_device(self, device: ToonDeviceSync) -> Callable[[], None]:
        """Track a device so login and logout reach it.

        Returns:
            Callable that stops tracking the device.

        """
        self._devices.append(device)

        def unregister() -> None:
            if device in self._devices:
                self._devices.remove(device)

        return unregister

    def add_login_listener(
        self, listener: Callable[[ToonOAuth2Session], None]
    ) -> Callable[[], None]:
        """Call listener with the new session after every completed login.

        Returns:
            Callable that removes the listener.

        """
        self._login_listeners.append(listener)

        def remove() -> None:
            if listener in self._login_listeners:
                self._login_listeners.remove(listener)

        return remove

    async def _async_save(self) -> None:
        sessions = []
        if self._oauth2_session is not None:
            sessions.append(self._oauth2_session.session.as_dict())
        await self._store.async_save({"sessions": sessions})

    def _on_token_update(self, session: ToonOAuth2Session) -> None:
        # Pending sessions are saved once the login completes
        if session is not self._oauth2_session:
            return
        task = asyncio.get_running_loop().create_task(self._async_save())
        self._save_tasks.add(task)
        task.add_done_callback(self._on_save_done)

    def _on_save_done(self, task: asyncio.Task[None]) -> None:
        self._save_tasks.discard(task)
        if task.cancelled():
            return
        if (err := task.exception()) is not None:
            _LOGGER.error("Failed to persist Toon session: %s", err)

    async def async_flush(self) -> None:
        """Wait for pending session saves."""
        if self._save_tasks:
            await asyncio.gather(*self._save_tasks, return_exceptions=True)
