"""Internal constants shared across the package."""

SOURCE_URL = (
    "https://docs.google.com/spreadsheets/d/e/"
    "2PACX-1vRpG2Z5s4KvRw5iYM8AokvwxM6HEE5q1U2WWDOyOfyz3UBrAFnV80t7HVyK9iuA8SNxMS1bo0kj-e2Z"
    "/pub?gid=2053858318&single=true&output=csv"
)
USER_AGENT = "feedrouter/1.0"

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8787
# Polling a published sheet faster than ~1s is pointless; Google caches the export.
DEFAULT_POLL_INTERVAL_MS = 1250
DEFAULT_STABLE_READS = 2

#: Maximum number of characters of source text echoed into DEBUG logs.
LOG_PREVIEW_CHARS = 200
