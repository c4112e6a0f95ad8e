"""
Centralized constants for the poll scheduler and dispatcher.

Change job ids, priorities or defaults here instead of scattering literals across
the engine and backends. Runtime tunables come from config.Settings (env-driven).
"""

# Scheduler job ids are "<prefix><source_id>"
POLL_JOB_ID_PREFIX = "poll:"

# Jitter is a fraction of the interval, applied in both directions
DEFAULT_JITTER_RATIO = 0.1
MAX_JITTER_RATIO = 0.5

# First poll of each source is spread over this fraction of its interval
FIRST_POLL_SPREAD_RATIO = 0.1

# Gotify priorities
GOTIFY_PRIORITY_NORMAL = 1
GOTIFY_PRIORITY_URGENT = 9

# Admin channel
ADMIN_TITLE = "Vaccination Poll - Admin"
ADMIN_SOURCE_ID = "admin"
APP_NAME = "Vaccination Poll"

# Message rendering: cap list lengths so one message stays readable
MESSAGE_MAX_ENTRIES = 50

# Slot label used when an adapter only knows "this location has free slots"
ANY_SLOT = "any"
