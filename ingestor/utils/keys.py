"""Audio Resource Ingestor - Storage key generation and validation.

Keys look like ``mp3_<epoch-millis>_<8 hex chars>.mp3``. The millisecond
timestamp plus 32 random bits keeps collisions between concurrent uploads
negligible, and the alphabet contains no separators or traversal sequences.
"""

import time
import uuid

from ingestor.config import MAX_STORAGE_KEY_LENGTH, STORAGE_KEY_EXTENSION, STORAGE_KEY_PREFIX


def generate_storage_key(
    prefix: str = STORAGE_KEY_PREFIX,
    ext: str = STORAGE_KEY_EXTENSION,
) -> str:
    """Generate a unique object store key for a new upload.

    Args:
        prefix: Key prefix (default: "mp3").
        ext: File extension without leading dot (default: "mp3").

    Returns:
        Key string, e.g. "mp3_1760000000000_1a2b3c4d.mp3".
    """
    millis = time.time_ns() // 1_000_000
    token = uuid.uuid4().hex[:8]
    return f"{prefix}_{millis}_{token}.{ext.lstrip('.')}"


def storage_key_problem(key: str | None) -> str | None:
    """Describe why key is not a usable object store key.

    Returns:
        A human-readable reason, or None if the key is acceptable.
    """
    if key is None or not key.strip():
        return "Storage key cannot be empty"
    if ".." in key or "/" in key or "\\" in key:
        return f"Invalid storage key: {key!r}"
    if len(key) > MAX_STORAGE_KEY_LENGTH:
        return f"Storage key too long: {len(key)} characters (max {MAX_STORAGE_KEY_LENGTH})"
    return None


def is_valid_storage_key(key: str | None) -> bool:
    return storage_key_problem(key) is None
