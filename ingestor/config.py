"""Audio Resource Ingestor - Configuration constants.

Module-level constants, no external config libraries. Retry tuning can be
overridden through environment variables (mainly for tests and local runs).
All paths are relative to the repository root by default.
"""

import os
from pathlib import Path

# Repository root (parent of ingestor/)
REPO_ROOT = Path(__file__).parent.parent.resolve()

# Data directories
DATA_DIR = REPO_ROOT / "data"
BLOB_DIR = DATA_DIR / "blobs"

# Metadata record store
DB_PATH = DATA_DIR / "resources.db"

# Queue directory and Huey database path (event publishing)
QUEUE_DIR = DATA_DIR / "queue"
HUEY_DB_PATH = QUEUE_DIR / "huey.db"


def _get_positive_int(env_name: str, default: int) -> int:
    """Read a positive integer from the environment, falling back to default."""
    env_val = os.environ.get(env_name)
    if env_val:
        try:
            value = int(env_val)
            if value > 0:
                return value
        except ValueError:
            pass
    return default


def _get_non_negative_float(env_name: str, default: float) -> float:
    """Read a non-negative float from the environment, falling back to default.

    Zero is accepted so tests and local runs can disable backoff sleeps.
    """
    env_val = os.environ.get(env_name)
    if env_val:
        try:
            value = float(env_val)
            if value >= 0:
                return value
        except ValueError:
            pass
    return default


# Object store retry policy.
# Delay before retry N is base_delay * N, capped at max_delay, so the worst-case
# wall clock per operation is STORE_MAX_ATTEMPTS * STORE_RETRY_MAX_DELAY_SECONDS.
STORE_MAX_ATTEMPTS = _get_positive_int("INGESTOR_STORE_MAX_ATTEMPTS", 3)
STORE_RETRY_BASE_DELAY_SECONDS = _get_non_negative_float("INGESTOR_STORE_RETRY_DELAY_SEC", 1.0)
STORE_RETRY_MAX_DELAY_SECONDS = _get_non_negative_float("INGESTOR_STORE_RETRY_MAX_DELAY_SEC", 5.0)

# Event publisher retry policy (independent of the store client)
PUBLISH_MAX_ATTEMPTS = _get_positive_int("INGESTOR_PUBLISH_MAX_ATTEMPTS", 3)
PUBLISH_RETRY_DELAY_SECONDS = _get_non_negative_float("INGESTOR_PUBLISH_RETRY_DELAY_SEC", 1.0)

# Topic announcing newly ingested resources
RESOURCE_CREATED_TOPIC = "resource-created"

# Accepted payload media type (detected by content sniffing)
EXPECTED_CONTENT_TYPE = "audio/mpeg"

# Storage key constraints
MAX_STORAGE_KEY_LENGTH = 255
STORAGE_KEY_PREFIX = "mp3"
STORAGE_KEY_EXTENSION = "mp3"

# Batch delete input bound: CSV must be strictly shorter than this
MAX_CSV_IDS_LENGTH = 200
