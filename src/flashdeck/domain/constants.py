"""Centralized constants for flashdeck.

All magic numbers and configuration defaults live here so every layer
imports from a single source of truth.
"""

from flashdeck.consts import VERSION

# ---------- Gateway / HTTP ----------
DEFAULT_GATEWAY_URL = "http://127.0.0.1:4321"
REQUEST_TIMEOUT = 30.0
RESPONSIVENESS_TIMEOUT = 2.0

REVIEW_QUEUE_PATH = "/api/reviews/queue"
REVIEWS_PATH = "/api/reviews"
FLASHCARDS_PATH = "/api/flashcards"
GENERATION_BATCH_PATH = "/api/generation-batches/{batch_id}"

# ---------- Retry / Backoff ----------
LOAD_MAX_ATTEMPTS = 3
SUBMIT_MAX_ATTEMPTS = 3  # first try + 2 retries
COMMIT_MAX_ATTEMPTS = 1
BACKOFF_BASE_SECONDS = 1.0
DEFAULT_RATE_LIMIT_DELAY = 5.0  # seconds, when the server omits Retry-After
RATE_LIMIT_RETRIES = 1
MAX_RATE_LIMIT_DELAY = 60.0  # cap on a server-requested Retry-After

# ---------- Review Session ----------
MIN_QUALITY = 0
MAX_QUALITY = 5
MIN_LATENCY_MS = 1
MISSING_FRONT_TEXT = "No front content"
MISSING_BACK_TEXT = "No back content"

# ---------- Card Content ----------
MAX_CARD_CONTENT_LENGTH = 1000
ERROR_PREVIEW_LEN = 50

# ---------- Generation Batch Polling ----------
BATCH_POLL_INTERVAL = 2.0  # seconds
BATCH_POLL_ATTEMPTS = 90

# ---------- Error Logging ----------
REVIEW_PAGE_CONTEXT = "/review"
GENERATE_PAGE_CONTEXT = "/generate"
USER_AGENT = f"flashdeck/{VERSION}"
