"""HTTP and policy constants for the geography fetch pipeline.

Centralizes all fetch-related constants to avoid duplication across modules.
"""

# HTTP Status Code Ranges
HTTP_STATUS_OK_MIN = 200
HTTP_STATUS_OK_MAX = 300
HTTP_STATUS_REDIRECT_MIN = 300
HTTP_STATUS_REDIRECT_MAX = 400
HTTP_STATUS_NOT_MODIFIED = 304

# Response Size Limits
DEFAULT_MAX_RESPONSE_SIZE_BYTES = 50 * 1024 * 1024  # 50 MB

# Chunk size for streaming reads
DEFAULT_CHUNK_SIZE = 8192

# Upper bound on bytes drained from a redirect body before closing it
REDIRECT_DRAIN_LIMIT_BYTES = 64 * 1024

DEFAULT_TIMEOUT_SECONDS = 10.0

# Maximum number of redirects followed for a single fetch
MAX_REDIRECTS = 5

DEFAULT_ALLOWED_CONTENT_TYPES: tuple[str, ...] = (
    "application/json",
    "application/geo+json",
)

DEFAULT_USER_AGENT = "geofetch/0.1.0"

# Hostnames that count as the local machine
LOCALHOST_HOSTNAMES = frozenset({"localhost", "127.0.0.1", "::1"})

COMPONENT_FETCH = "geofetch"
