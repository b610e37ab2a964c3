"""
Application-wide constants for the venue match engine.
Centralizes magic numbers and configuration values.
"""

# ============================================================================
# Match Lifecycle Constants
# ============================================================================

# Message text
MAX_MESSAGE_LENGTH = 1000

# Pair key separator (sorted user ids)
PAIR_KEY_SEPARATOR = ":"

# Bounded retries for the create-match insert/lookup race
CREATE_MATCH_MAX_ATTEMPTS = 3

# ============================================================================
# Expiry Sweep Constants
# ============================================================================

EXPIRY_SWEEP_BATCH_SIZE = 200
EXPIRY_SWEEP_JOB_ID = "expiry_sweep_job"
RECONNECT_HOUSEKEEPING_JOB_ID = "reconnect_housekeeping_job"
RECONNECT_HOUSEKEEPING_INTERVAL_MINUTES = 5

# ============================================================================
# Rate Limiting
# ============================================================================

# action -> (max_requests, window_seconds)
RATE_LIMITS = {
    "like": (10, 60),
    "message": (20, 60),
    "checkin": (5, 60 * 60),
    "verification": (3, 60 * 60),
    "reconnect": (5, 24 * 60 * 60),
    "profile_update": (10, 60 * 60),
}

# ============================================================================
# Store Retry Constants
# ============================================================================

# Retry settings for transient store faults
STORE_MAX_ATTEMPTS = 3
STORE_RETRY_DELAY_BASE_SECONDS = 0.2  # Exponential backoff: 0.2, 0.4, 0.8 ...
STORE_RETRY_DELAY_MAX_SECONDS = 2.0

# ============================================================================
# Check-in Collaborator Constants
# ============================================================================

CHECKIN_TIMEOUT_SECONDS = 5

# ============================================================================
# Realtime View Constants
# ============================================================================

DEFAULT_FEED_POLL_INTERVAL_SECONDS = 5.0
MAX_MATCHES_PER_QUERY = 50
