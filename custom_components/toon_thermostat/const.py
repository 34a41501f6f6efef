"""Constants for Toon Thermostat integration.

This module contains all the constants used throughout the integration,
including API endpoints, timing values, configuration keys, and mapping
dictionaries.
"""

DOMAIN = "toon_thermostat"

AUTHORIZE_URL = "https://api.toon.eu/authorize"
TOKEN_URL = "https://api.toon.eu/token"
API_BASE_URL = "https://api.toon.eu/toon/v3"
DEFAULT_REDIRECT_URI = "https://my.home-assistant.io/redirect/oauth"
DEFAULT_TENANT_ID = "eneco"
DEFAULT_CONFIG_ID = "default"

STORAGE_KEY = f"{DOMAIN}.sessions"
STORAGE_VERSION = 1

TOKEN_REFRESH_INTERVAL = 6 * 60 * 60  # Seconds
TOKEN_EXPIRY_MARGIN = 60  # Refresh this many seconds before expiry
DEFAULT_POLL_INTERVAL = 300  # Polling fallback, webhooks push changes
WEBHOOK_RENEWAL_INTERVAL = 15 * 60  # Seconds
DEBOUNCE_DELAY = 0.5  # Seconds
UNAVAILABLE_THRESHOLD = 3

RETRY_ATTEMPTS = 5
RETRY_BASE_DELAY = 6.0  # Seconds, doubled for every attempt

WEBHOOK_SUBSCRIBED_ACTIONS = ["Thermostat", "PowerUsage", "GasUsage"]

CONF_CLIENT_ID = "client_id"
CONF_CLIENT_SECRET = "client_secret"
CONF_CODE = "code"
CONF_CONFIG_ID = "config_id"
CONF_SESSION_ID = "session_id"
CONF_AGREEMENTS = "agreements"
CONF_WEBHOOK_ID = "webhook_id"

ERROR_INVALID_AUTH = "invalid_auth"
ERROR_CANNOT_CONNECT = "cannot_connect"
ERROR_MULTIPLE_SESSIONS = "multiple_sessions"
ERROR_NO_AGREEMENTS = "no_agreements"
ERROR_UNKNOWN = "unknown_error"

REASON_CONNECTING = "Connecting to Toon"
REASON_OFFLINE = "Toon is offline"
REASON_REAUTHORIZE = "Logged out of Toon, please authorize again"
REASON_AGREEMENT_MISSING = "Toon agreement no longer present on the account"
WARNING_WEBHOOK_SUBSCRIPTION = "Push updates unavailable, falling back to polling"

# Capabilities written by the device sync
CAPABILITY_MEASURE_POWER = "measure_power"
CAPABILITY_METER_POWER = "meter_power"
CAPABILITY_METER_GAS = "meter_gas"
CAPABILITY_MEASURE_TEMPERATURE = "measure_temperature"
CAPABILITY_TARGET_TEMPERATURE = "target_temperature"
CAPABILITY_TEMPERATURE_STATE = "temperature_state"
CAPABILITY_HOLIDAY_ACTIVE = "holiday_active"

STATE_COMFORT = "comfort"
STATE_HOME = "home"
STATE_SLEEP = "sleep"
STATE_AWAY = "away"
STATE_HOLIDAY = "holiday"
STATE_NONE = "none"

TEMPERATURE_STATES = {
    STATE_COMFORT: 0,
    STATE_HOME: 1,
    STATE_SLEEP: 2,
    STATE_AWAY: 3,
    STATE_HOLIDAY: 4,
    STATE_NONE: -1,
}
TEMPERATURE_STATES_REVERSE = {value: key for key, value in TEMPERATURE_STATES.items()}
SETTABLE_TEMPERATURE_STATES = [STATE_COMFORT, STATE_HOME, STATE_SLEEP, STATE_AWAY]

PROGRAM_STATE_OFF = 0
PROGRAM_STATE_ON = 1
PROGRAM_STATE_OVERRIDE = 2
PROGRAM_STATE_HOLIDAY = 4

ATTR_RESUME_PROGRAM = "resume_program"
ATTR_STATE = "state"
SERVICE_SET_TEMPERATURE_STATE = "set_temperature_state"
SERVICE_ENABLE_PROGRAM = "enable_program"
SERVICE_DISABLE_PROGRAM = "disable_program"
