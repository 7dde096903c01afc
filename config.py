"""
Nudge - Configuration
Constants, intervals and defaults for the reminder engine
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# =============================================================================
# PATHS
# =============================================================================
PROJECT_ROOT = Path(__file__).parent
DATA_DIR = Path(os.getenv("NUDGE_DATA_DIR", str(PROJECT_ROOT / "data")))
LOGS_DIR = Path(os.getenv("NUDGE_LOGS_DIR", str(PROJECT_ROOT / "logs")))
REMINDERS_DOCUMENT_PATH = DATA_DIR / "reminders.json"
DIAGNOSTIC_LOG_PATH = LOGS_DIR / "diagnostic.log"

# =============================================================================
# VERSION
# =============================================================================
VERSION = "0.1.0"
PROJECT_NAME = "Nudge"

# =============================================================================
# LOGGING
# =============================================================================
LOG_LEVEL = os.getenv("NUDGE_LOG_LEVEL", "INFO")
LOG_TO_FILE = os.getenv("NUDGE_LOG_TO_FILE", "true").lower() == "true"

# =============================================================================
# SCHEDULER CONFIGURATION
# =============================================================================
# Adaptive polling: the scheduler wakes at the fast interval while any
# reminder is due inside the lookahead window, otherwise at the slow one.
FAST_CHECK_INTERVAL = float(os.getenv("NUDGE_FAST_CHECK_INTERVAL", "5"))     # seconds
SLOW_CHECK_INTERVAL = float(os.getenv("NUDGE_SLOW_CHECK_INTERVAL", "30"))    # seconds
UPCOMING_THRESHOLD_MINUTES = 5      # Lookahead window for the fast interval
TRIGGER_THRESHOLD_SECONDS = 30      # Candidate window; firing still needs due_at <= now

# Consecutive failed check passes before the host is told we are degraded
SCHEDULER_FAULT_THRESHOLD = 3

# Seconds to wait for the scheduler thread on stop()
SCHEDULER_JOIN_TIMEOUT = 5.0

# Upper bound on a single scheduler wait, and the wait used when the
# configured interval is unusable
MAX_CHECK_INTERVAL = 3600.0
FALLBACK_CHECK_INTERVAL = 30.0

# =============================================================================
# STORE / PERSISTENCE
# =============================================================================
SAVE_DEBOUNCE_SECONDS = float(os.getenv("NUDGE_SAVE_DEBOUNCE_SECONDS", "1.0"))
DEFAULT_HOURS_AHEAD = 1             # Due time for reminders created without one
DEFAULT_UPCOMING_LIMIT = 10

# Retry for transient write failures (file locked, disk busy)
PERSIST_MAX_RETRIES = 3
PERSIST_RETRY_INITIAL_DELAY = 0.1
PERSIST_RETRY_BACKOFF_MULTIPLIER = 2.0
PERSIST_RETRY_MAX_DELAY = 2.0

# =============================================================================
# ERROR HANDLING
# =============================================================================
ERROR_HISTORY_LIMIT = 50

# =============================================================================
# REMINDER DEFAULTS
# =============================================================================
DEFAULT_PRIORITY = os.getenv("NUDGE_DEFAULT_PRIORITY", "normal")
SHOW_SYSTEM_NOTIFICATION = os.getenv("NUDGE_SYSTEM_NOTIFICATION", "true").lower() == "true"
SHOW_IN_APP_NOTICE = os.getenv("NUDGE_IN_APP_NOTICE", "true").lower() == "true"
SHOW_DEBUG_LOG = os.getenv("NUDGE_DEBUG", "false").lower() == "true"
RENOTIFY_INTERVAL = os.getenv("NUDGE_RENOTIFY_INTERVAL", "never")

# OS notification
NOTIFICATION_APP_NAME = PROJECT_NAME
NOTIFICATION_TIMEOUT = 10           # seconds, normal/low priority
NOTIFICATION_TIMEOUT_URGENT = 60    # seconds, high/urgent priority

# (label, minutes)
SNOOZE_PRESETS = [
    ("1 minute", 1),
    ("5 minutes", 5),
    ("10 minutes", 10),
    ("15 minutes", 15),
    ("30 minutes", 30),
    ("1 hour", 60),
    ("2 hours", 2 * 60),
    ("4 hours", 4 * 60),
    ("8 hours", 8 * 60),
    ("24 hours", 24 * 60),
]

QUICK_TIME_PRESETS = [
    ("15 mins", 15),
    ("30 mins", 30),
    ("1 hr", 60),
    ("4 hrs", 4 * 60),
]
