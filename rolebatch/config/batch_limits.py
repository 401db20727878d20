"""Batch and pacing limits for rolebatch.

These are the defaults behind `BatchSettings`. They are sized for a chat
platform that allows a handful of member-role writes per second per guild.
"""

# Queue batch sizes per operation kind (items sliced off per drain step).
QUEUE_BATCH_SIZES = {
    "tagGrant": 5,
    "tagRevoke": 5,
    "principalFetch": 10,
}

# Pause between queue batches per operation kind, in milliseconds.
QUEUE_BATCH_DELAYS_MS = {
    "tagGrant": 100,
    "tagRevoke": 100,
    "principalFetch": 50,
}

# Fallback batch size for kinds without a configured size.
MIN_QUEUE_BATCH_SIZE = 5

# Mutation retries. Generic errors back off linearly from RETRY_DELAY_MS,
# rate-limit signals from RATE_LIMIT_BACKOFF_MS.
MAX_RETRIES = 3
RETRY_DELAY_MS = 1000
RATE_LIMIT_BACKOFF_MS = 5000

# Lists longer than this are processed in CHUNK_SIZE chunks.
LARGE_OPERATION_THRESHOLD = 1000
CHUNK_SIZE = 500

# Adaptive inter-chunk delay: min(MAX, BASE + chunk_len * PER_PRINCIPAL).
CHUNK_DELAY_BASE_MS = 500
CHUNK_DELAY_PER_PRINCIPAL_MS = 2
CHUNK_DELAY_MAX_MS = 2000

# Principal resolution is done in small concurrent sub-batches.
FETCH_BATCH_SIZE = 20
FETCH_DELAY_MS = 100

# Base pause between mutation dispatches; grant and revoke dispatches of one
# run are separated by twice this value.
MUTATION_BATCH_DELAY_MS = 150

# Upper bound on error entries kept in a RunSummary.
MAX_ERROR_ENTRIES = 100
