"""Constants for mpx notification synchronization."""

NOTIFICATION_QUEUE = "mpx_notification"
IMPORTER_QUEUE = "mpx_importer"

# Notifications per queue message.
DEFAULT_CHUNK_SIZE = 10

# Concurrent object loads while reloading one chunk.
DEFAULT_RELOAD_CONCURRENCY = 10

DEFAULT_QUEUE_LEASE_SECONDS = 300
DEFAULT_SELECT_PAGE_SIZE = 100
