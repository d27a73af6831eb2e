"""Internal constants shared across the library."""

AUTH_URL = "https://user.telematicssdk.com/v1/Auth/Login"
REALTIME_WS_URL = "wss://portal-apis.telematicssdk.com/realtime/api/v1/ws/realtime"
CLIENT_ID = "pydamoov"

#: Lifetime assumed when the login response carries no ``ExpiresIn``.
DEFAULT_TOKEN_TTL: float = 24 * 3600
#: Credentials are refreshed this many seconds before they expire.
REFRESH_WINDOW: float = 60.0

MAX_EVENTS = 200

RECONNECT_DELAY: float = 60.0
AUTH_RETRY_DELAY: float = 5.0
RECONNECT_MAX_DELAY: float = 300.0
RECONNECT_MULTIPLIER: float = 2.0
RECONNECT_JITTER: float = 0.1

# Codes the realtime service uses in ``error`` messages for a bad or expired token.
AUTH_ERROR_CODES: frozenset[str] = frozenset(
    {
        "401",
        "403",
        "unauthorized",
        "unauthenticated",
        "forbidden",
        "auth_failed",
        "authentication_failed",
        "invalid_token",
        "token_expired",
    }
)
AUTH_REJECT_HTTP_STATUSES: frozenset[int] = frozenset({401, 403})

# ------------------------------------------------------------------
# Speed units
# ------------------------------------------------------------------

MPS_TO_MPH = 2.23694
KMH_TO_MPH = 0.621371

SPEED_UNIT_FACTORS: dict[str, float] = {
    "mps": MPS_TO_MPH,
    "kmh": KMH_TO_MPH,
    "mph": 1.0,
}
