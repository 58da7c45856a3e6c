from ._version import __version__

DEFAULT_BASE_URL = "https://api.mappa.ai"
DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_RETRIES = 2
DEFAULT_WAIT_TIMEOUT = 300.0
DEFAULT_WEBHOOK_TOLERANCE = 300

ENV_API_KEY = "MAPPA_API_KEY"
ENV_BASE_URL = "MAPPA_BASE_URL"

API_KEY_HEADER = "Mappa-Api-Key"
REQUEST_ID_HEADER = "X-Request-Id"
IDEMPOTENCY_KEY_HEADER = "Idempotency-Key"
LAST_EVENT_ID_HEADER = "Last-Event-ID"
SIGNATURE_HEADER = "mappa-signature"

USER_AGENT = f"mappa-python/{__version__}"
