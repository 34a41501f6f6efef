"""OAuth2 session for the Toon API.

A ToonOAuth2Session owns the token pair of the account and exposes the
authenticated Toon API calls. Access tokens are refreshed before they
expire and once more when the API answers 401, and every change of the
token pair is reported through ``on_token_update`` so it can be persisted.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from functools import partial
from typing import TYPE_CHECKING, Any, TypeVar

from . import api
from .const import (
    RETRY_ATTEMPTS,
    TOKEN_EXPIRY_MARGIN,
    WEBHOOK_SUBSCRIBED_ACTIONS,
)
from .errors import (
    ToonApiAuthError,
    ToonApiClientError,
    ToonApiConnectionError,
    ToonApiServerError,
    ToonAuthExchangeError,
    ToonNotAuthenticatedError,
    ToonTokenRefreshError,
)
from .models import Agreement, OAuth2Token, ToonClientConfig, ToonSession
from .retry import async_retry, exponential_delay

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    import httpx

_LOGGER = logging.getLogger(__name__)

_T = TypeVar("_T")

RETRYABLE_READ_ERRORS = (ToonApiConnectionError, ToonApiServerError)


class ToonOAuth2Session:
    """Authenticated access to the Toon API for one account."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        config: ToonClientConfig,
        session: ToonSession,
        *,
        on_token_update: Callable[[ToonOAuth2Session], Any] | None = None,
        retry_attempts: int = RETRY_ATTEMPTS,
        retry_delay: Callable[[int], float] = exponential_delay,
    ) -> None:
        """Initialize the session.

        Args:
            client: HTTP client used for all requests.
            config: OAuth2 application credentials.
            session: Session identity, without token while authorizing.
            on_token_update: Called after the token pair changed.
            retry_attempts: Attempts for idempotent reads.
            retry_delay: Back-off between read attempts.

        """
        self._client = client
        self._config = config
        self._session = session
        self._on_token_update = on_token_update
        self._retry_attempts = retry_attempts
        self._retry_delay = retry_delay
        self._refresh_task: asyncio.Task[OAuth2Token] | None = None
        self._closed = False

    @property
    def session(self) -> ToonSession:
        return self._session

    @property
    def session_id(self) -> str:
        return self._session.session_id

    @property
    def config_id(self) -> str:
        return self._session.config_id

    @property
    def title(self) -> str:
        return self._session.title

    @property
    def config(self) -> ToonClientConfig:
        return self._config

    @property
    def token(self) -> OAuth2Token | None:
        return self._session.token

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def authorize_url(self) -> str:
        """URL the user visits to authorize this session."""
        return api.build_authorize_url(self._config, state=self.session_id)

    def close(self) -> None:
        """Drop the token pair; later calls raise ToonNotAuthenticatedError."""
        _LOGGER.debug("Closing session %s", self.session_id)
        self._closed = True
        self._session.token = None
        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_task.cancel()
        self._refresh_task = None

    async def async_exchange_code(self, code: str) -> ToonSession:
        """Complete the authorization code flow.

        On success the temporary identity of this session is replaced by
        the session identifier of the vendor account.

        Raises:
            ToonAuthExchangeError: If the code is invalid or the exchange fails.

        """
        if self._closed:
            error_msg = "Session was closed before the code exchange completed"
            raise ToonAuthExchangeError(error_msg)

        token = await api.async_exchange_code(self._client, self._config, code)
        claims = api.extract_jwt_claims(token.access_token)
        session_id = str(claims.get("sub") or uuid.uuid4().hex)

        title = "Toon"
        try:
            agreements = await api.async_get_agreements(self._client, token.access_token)
        except ToonApiClientError as err:
            _LOGGER.warning("Could not fetch agreements for session title: %s", err)
        else:
            if len(agreements) == 1:
                title = agreements[0].name(include_address=True)

        _LOGGER.info(
            "Authorization completed, replacing temporary session %s with %s",
            self.session_id,
            session_id,
        )
        self._session = ToonSession(
            session_id=session_id,
            config_id=self._config.config_id,
            token=token,
            title=title,
        )
        self._notify_token_update()
        return self._session

    async def async_refresh_access_tokens(self) -> OAuth2Token:
        """Exchange the refresh token for a new access token.

        Concurrent callers share a single request to the token endpoint.

        Raises:
            ToonTokenRefreshError: If the token cannot be refreshed.

        """
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.get_running_loop().create_task(
                self._async_refresh()
            )
        return await asyncio.shield(self._refresh_task)

    async def _async_refresh(self) -> OAuth2Token:
        token = self._session.token
        if self._closed or token is None:
            error_msg = "No refresh token available"
            raise ToonTokenRefreshError(error_msg)

        new_token = await api.async_refresh_token(
            self._client, self._config, token.refresh_token
        )
        if self._closed:
            error_msg = "Session was closed during token refresh"
            raise ToonTokenRefreshError(error_msg)

        self._session.token = new_token
        _LOGGER.info(
            "Refreshed access token for session %s, valid until %s",
            self.session_id,
            new_token.expires_at.isoformat(),
        )
        self._notify_token_update()
        return new_token

    def _notify_token_update(self) -> None:
        if self._on_token_update is None:
            return
        try:
            self._on_token_update(self)
        except Exception:
            _LOGGER.exception("Error in token update callback")

    async def async_get_access_token(self) -> str:
        """Return a valid access token, refreshing it when about to expire."""
        token = self._session.token
        if self._closed or token is None:
            error_msg = "Not authenticated with Toon"
            raise ToonNotAuthenticatedError(error_msg)

        if token.is_expired(TOKEN_EXPIRY_MARGIN):
            _LOGGER.debug("Access token expired, refreshing before request")
            token = await self.async_refresh_access_tokens()
        return token.access_token

    async def _async_call(
        self, func: Callable[..., Awaitable[_T]], *args: Any
    ) -> _T:
        access_token = await self.async_get_access_token()
        try:
            return await func(self._client, access_token, *args)
        except ToonApiAuthError as err:
            if err.status != api.HTTP_UNAUTHORIZED:
                raise
            _LOGGER.debug("Got 401, refreshing token and retrying")

        await self.async_refresh_access_tokens()
        access_token = await self.async_get_access_token()
        return await func(self._client, access_token, *args)

    async def _async_read(
        self, func: Callable[..., Awaitable[_T]], *args: Any
    ) -> _T:
        return await async_retry(
            partial(self._async_call, func, *args),
            max_attempts=self._retry_attempts,
            delay=self._retry_delay,
            retry_on=RETRYABLE_READ_ERRORS,
        )

    async def async_get_agreements(self) -> list[Agreement]:
        """List the agreements (physical thermostats) of the account."""
        return await self._async_read(api.async_get_agreements)

    async def async_get_status(self, agreement_id: str) -> dict[str, Any]:
        """Fetch the status snapshot of an agreement."""
        return await self._async_read(api.async_get_status, agreement_id)

    async def async_update_state(
        self, agreement_id: str, data: dict[str, Any]
    ) -> Any:
        """Write the thermostat object; never retried here."""
        return await self._async_call(api.async_update_thermostat, agreement_id, data)

    async def async_get_webhook_subscriptions(
        self, agreement_id: str
    ) -> list[dict[str, Any]]:
        """List the webhook subscriptions of an agreement."""
        return await self._async_read(api.async_get_webhooks, agreement_id)

    async def async_register_webhook_subscription(
        self, agreement_id: str, callback_url: str
    ) -> bool:
        """Subscribe callback_url to push updates of an agreement.

        Returns:
            True if a new subscription was created, False if this
            application already had one for the callback.

        """
        try:
            webhooks = await self.async_get_webhook_subscriptions(agreement_id)
        except ToonApiClientError as err:
            _LOGGER.warning("Failed to get existing subscriptions: %s", err)
            webhooks = []

        if api.is_webhook_registered(webhooks, self._config.client_id, callback_url):
            _LOGGER.debug("Webhook subscription for %s already active", agreement_id)
            return False

        await self._async_call(
            api.async_register_webhook,
            agreement_id,
            self._config.client_id,
            callback_url,
            WEBHOOK_SUBSCRIBED_ACTIONS,
        )
        _LOGGER.debug("Registered webhook subscription for %s", agreement_id)
        return True

    async def async_unregister_webhook_subscription(self, agreement_id: str) -> None:
        """End the webhook subscription of an agreement."""
        await self._async_call(
            api.async_unregister_webhook, agreement_id, self._config.client_id
        )
        _LOGGER.debug("Unregistered webhook subscription for %s", agreement_id)
