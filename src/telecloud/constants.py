"""Project-wide named constants.

Constants defined here replace inline magic numbers across the codebase.
"""

# Progress summaries are sent to the admin chat on this cadence while an
# upload run is in flight.
PROGRESS_REPORT_INTERVAL_SECONDS: float = 10 * 60

# Per-file retry budget: total attempts, including the first one.
MAX_RETRY_ATTEMPTS: int = 5

# Backoff for rate limits without a server hint and for network errors:
# min(attempt * base, cap).
RETRY_BASE_DELAY_SECONDS: float = 10.0
RETRY_CAP_DELAY_SECONDS: float = 30.0

# Seconds a graceful shutdown waits for in-flight transfers before cancelling.
SHUTDOWN_DEADLINE_SECONDS: float = 30.0

SNAPSHOT_FILENAME: str = "uploadedFiles.json.gz"
SNAPSHOT_VERSION: int = 1

PHOTO_EXTENSIONS: frozenset[str] = frozenset({".jpg", ".jpeg", ".png"})
VIDEO_EXTENSIONS: frozenset[str] = frozenset({".mp4", ".mov", ".avi"})

# Extensions picked up by the drive scan when none are configured.
DEFAULT_SCAN_EXTENSIONS: frozenset[str] = frozenset(
    {".jpg", ".jpeg", ".png", ".gif", ".bmp", ".tiff"} | VIDEO_EXTENSIONS
)

# Telegram Bot API limits
TELEGRAM_API_BASE: str = "https://api.telegram.org"
TELEGRAM_CAPTION_LIMIT: int = 1024
LONG_POLL_TIMEOUT_SECONDS: int = 30

RESTORE_CHUNK_SIZE: int = 64 * 1024
