"""Configuration settings for the Stash file-drop server."""
import os
from pathlib import Path


def _default_storage_root() -> str:
    root = Path("stash_cache").resolve()
    # started from "/": keep the cache out of the filesystem root
    if str(root).startswith("/stash_cache"):
        return "/var/lib/stash_cache"
    return str(root)


# Storage
STORAGE_ROOT = os.environ.get("STASH_STORAGE_ROOT", _default_storage_root())

# Quota: at least 5GiB per cleanup cycle, so the cache stays below ~10GiB
MAX_WRITE_BYTES = int(os.environ.get("STASH_MAX_WRITE_BYTES", 5 * 1024 * 1024 * 1024))

# Retention
CLEAN_INTERVAL_MINUTES = int(os.environ.get("STASH_CLEAN_INTERVAL_MINUTES", 360))
MAX_AGE_MINUTES = int(os.environ.get("STASH_MAX_AGE_MINUTES", CLEAN_INTERVAL_MINUTES))

# Multipart constraints
MAX_FIELD_SIZE = 16 * 1024 * 1024  # 16MiB of discarded text per field
PAYLOAD_FIELD = "data"

# Identifiers
RANDOM_ID_BYTES = 32
MIN_ID_LENGTH = 6

# Streaming
CHUNK_SIZE = 64 * 1024  # 64KB

# Network
DEFAULT_HOST = os.environ.get("STASH_HOST", "127.0.0.1")
DEFAULT_PORT = int(os.environ.get("STASH_PORT", 80))

# Logging
LOG_DIR = os.environ.get("STASH_LOG_DIR", "logs")

# Landing page
INDEX_PAGE = str(Path(__file__).parent / "templates" / "index.html")
