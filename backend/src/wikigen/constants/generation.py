"""Wiki generation configuration.

These settings control planning, scheduling and streaming of wiki pages,
including retry behaviour for rate-limited model calls.
"""

# =============================================================================
# Retry / Backoff
# =============================================================================
# Rate-limited calls are retried up to DEFAULT_MAX_RETRIES times. The delay is
# taken from the provider's "retry in Ns" hint when present, otherwise it is
# DEFAULT_BASE_DELAY * 2**attempt (seconds).

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 2.0

# =============================================================================
# Heartbeat
# =============================================================================
# Long model calls would otherwise leave the event stream silent. A ping is
# emitted every DEFAULT_HEARTBEAT_INTERVAL seconds while a call is outstanding
# so proxies and clients don't treat the connection as stalled.

DEFAULT_HEARTBEAT_INTERVAL = 2.0

# =============================================================================
# Progress Watermarks
# =============================================================================
# Progress is reported as an integer 0-100. Caching finishes at
# PROGRESS_CACHED, planning at PROGRESS_PLANNED, and page generation
# interpolates between PROGRESS_GENERATION_START and PROGRESS_GENERATION_END.
# PROGRESS_COMPLETE is only reported with the final event.

PROGRESS_STARTED = 0
PROGRESS_CACHING = 5
PROGRESS_CACHED = 30
PROGRESS_PLANNING = 35
PROGRESS_PLANNED = 40
PROGRESS_GENERATION_START = 45
PROGRESS_GENERATION_END = 95
PROGRESS_COMPLETE = 100

# =============================================================================
# Plan Normalisation
# =============================================================================
# Planned page priorities are clamped to PRIORITY_MIN..PRIORITY_MAX (10 is
# generated first among ready pages). Pages without a usable priority get
# DEFAULT_PAGE_PRIORITY.

PRIORITY_MIN = 1
PRIORITY_MAX = 10
DEFAULT_PAGE_PRIORITY = 5

# =============================================================================
# Summaries
# =============================================================================
# Each generated page carries a short summary: the first non-heading paragraph
# truncated to SUMMARY_MAX_LENGTH characters.

SUMMARY_MAX_LENGTH = 200

# =============================================================================
# Wiki URLs
# =============================================================================

WIKI_URL_TEMPLATE = "/wiki/{owner}/{repo}/{slug}"
