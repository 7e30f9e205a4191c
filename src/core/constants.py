"""Application constants and configuration values."""

# Database field lengths
MAX_STRING_LENGTH = 255
MAX_STATUS_LENGTH = 50
MAX_REFERENCE_LENGTH = 100

# Database connection settings
DB_POOL_RECYCLE_SECONDS = 300  # 5 minutes

# Money columns
MONEY_PRECISION = 12
MONEY_SCALE = 2

# Upper bound for SERVICE_CHARGE_RATE
MAX_SERVICE_CHARGE_RATE = "0.50"

# Ledger queries
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 500
RECENT_CHANGES_LIMIT = 10

# Polling intervals (seconds)
# Dashboards poll faster right after a change and back off when nothing moves.
POLLING_ACTIVE_INTERVAL_SECONDS = 10
POLLING_MODERATE_INTERVAL_SECONDS = 20
POLLING_DEFAULT_INTERVAL_SECONDS = 30
POLLING_QUIET_INTERVAL_SECONDS = 60
POLLING_MIN_INTERVAL_SECONDS = 5
POLLING_MAX_INTERVAL_SECONDS = 300

# Activity thresholds (minutes since the most recent change)
POLLING_ACTIVE_WINDOW_MINUTES = 5
POLLING_MODERATE_WINDOW_MINUTES = 15
POLLING_QUIET_WINDOW_MINUTES = 60

# Polling cursors lag the read time by this much. Writers stamp rows when the
# statement runs, not when they commit, so the overlap re-covers rows that
# were stamped before a poll but committed after it.
POLLING_CURSOR_OVERLAP_SECONDS = 30

# Cleanup scheduler runs daily at this hour (UTC)
CLEANUP_HOUR = 3

# Reason recorded on sweep-driven cancellations
EXPIRED_REASON = "expired"
