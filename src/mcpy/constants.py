"""Shared constants for mcpy."""

DEFAULT_PORT = 3713
DEFAULT_HOST = "127.0.0.1"
DEFAULT_DATA_DIRNAME = ".mcpy"

SETTINGS_FILENAME = "settings.json"
LOG_FILENAME = "mcpy.log"

MAX_RECENT_EVENTS = 200
MAX_TIMESERIES_POINTS = 1000
LIVE_STREAM_BUFFER = 512
LIVE_STREAM_KEEPALIVE = 30.0  # seconds between SSE keep-alive comments

REDACTED = "***"

RELEASE_REPO = "ebursztein/mcpy"
CHECKSUM_MANIFEST = "SHA256SUMS"
HTTP_TIMEOUT = 30.0
