"""Exceptions raised by the Toon Thermostat integration."""


class ToonError(Exception):
    """Base exception for the Toon Thermostat integration."""


class ToonApiClientError(ToonError):
    """Base exception for Toon API client errors."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class ToonApiAuthError(ToonApiClientError):
    """Exception raised for authentication errors."""


class ToonAuthExchangeError(ToonApiAuthError):
    """Exception raised when an authorization code cannot be exchanged."""


class ToonTokenRefreshError(ToonApiAuthError):
    """Exception raised when the access token cannot be refreshed."""


class ToonApiConnectionError(ToonApiClientError):
    """Exception raised when the Toon API cannot be reached."""


class ToonApiServerError(ToonApiClientError):
    """Exception raised for 5xx responses of the Toon API."""


class ToonCommunicationError(ToonApiServerError):
    """Exception raised when the Toon API cannot reach the thermostat."""


class ToonSessionError(ToonError):
    """Base exception for session registry errors."""


class ToonMultipleSessionsError(ToonSessionError):
    """Exception raised when more than one persisted session exists."""


class ToonSessionExistsError(ToonSessionError):
    """Exception raised when creating a session while one already exists."""


class ToonNotAuthenticatedError(ToonSessionError):
    """Exception raised when an operation requires a session and none exists."""


class ToonValidationError(ToonError, ValueError):
    """Exception raised when an outbound command is rejected before sending."""


class ToonInvalidTemperatureError(ToonValidationError):
    """Exception raised for a missing, zero or malformed temperature."""


class ToonInvalidStateError(ToonValidationError):
    """Exception raised for a temperature state that cannot be set."""
