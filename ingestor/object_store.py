"""Audio Resource Ingestor - Durable object store client.

Two layers:

- ObjectStoreBackend: the raw blob interface (put / get / head / delete).
  Backends only distinguish "not found" (ObjectNotFoundError) from any other
  exception. FilesystemObjectStore is the bundled backend.
- ObjectStoreClient: wraps a backend with input validation, bounded retries
  with linear-exponential backoff (base_delay * attempt, capped), and a
  verification read after every mutation. It never raises for store
  failures; it returns Outcome values.

Verification exists because a backend acknowledgement and its observable
state may diverge (eventual consistency, partial outages). A put is only
successful once the object can be seen; a delete only once it cannot.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, TypeVar

from ingestor.config import (
    EXPECTED_CONTENT_TYPE,
    STORE_MAX_ATTEMPTS,
    STORE_RETRY_BASE_DELAY_SECONDS,
    STORE_RETRY_MAX_DELAY_SECONDS,
)
from ingestor.errors import Outcome, infrastructure, invalid_input, not_found
from ingestor.utils.atomic_io import atomic_write_bytes, atomic_write_text
from ingestor.utils.keys import storage_key_problem

logger = logging.getLogger(__name__)

T = TypeVar("T")


# --- Backend Interface ---


class ObjectNotFoundError(Exception):
    """Raised by a backend when no object exists at the key."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Object not found: {key}")


class VerificationError(Exception):
    """A mutation was acknowledged but the follow-up read disagrees."""


class ObjectStoreBackend(Protocol):
    """Raw blob store operations.

    Any exception other than ObjectNotFoundError is treated as transient.
    """

    def put(self, key: str, data: bytes, content_type: str) -> None: ...

    def get(self, key: str) -> bytes: ...

    def head(self, key: str) -> int:
        """Return the object size in bytes, or raise ObjectNotFoundError."""
        ...

    def delete(self, key: str) -> None:
        """Delete the object. Deleting a missing object is not an error."""
        ...


class FilesystemObjectStore:
    """Object store backend over a local directory.

    Layout:
        {root}/objects/{key}          blob bytes (written atomically)
        {root}/meta/{key}.type        content type sidecar
    """

    def __init__(self, root: str | Path):
        self.root = Path(root)
        self.objects_dir = self.root / "objects"
        self.meta_dir = self.root / "meta"

    def ensure_layout(self) -> None:
        self.objects_dir.mkdir(parents=True, exist_ok=True)
        self.meta_dir.mkdir(parents=True, exist_ok=True)

    def _object_path(self, key: str) -> Path:
        return self.objects_dir / key

    def _meta_path(self, key: str) -> Path:
        return self.meta_dir / f"{key}.type"

    def put(self, key: str, data: bytes, content_type: str) -> None:
        atomic_write_bytes(self._object_path(key), data)
        atomic_write_text(self._meta_path(key), content_type)

    def get(self, key: str) -> bytes:
        try:
            return self._object_path(key).read_bytes()
        except FileNotFoundError as e:
            raise ObjectNotFoundError(key) from e

    def head(self, key: str) -> int:
        try:
            return self._object_path(key).stat().st_size
        except FileNotFoundError as e:
            raise ObjectNotFoundError(key) from e

    def delete(self, key: str) -> None:
        self._object_path(key).unlink(missing_ok=True)
        self._meta_path(key).unlink(missing_ok=True)

    def content_type(self, key: str) -> str | None:
        """Return the stored content type for key, or None if unknown."""
        try:
            return self._meta_path(key).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None


# --- Retry Policy ---


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry schedule.

    Delay after failed attempt N is min(base_delay * N, max_delay); no delay
    follows the final attempt.
    """

    max_attempts: int = STORE_MAX_ATTEMPTS
    base_delay_seconds: float = STORE_RETRY_BASE_DELAY_SECONDS
    max_delay_seconds: float = STORE_RETRY_MAX_DELAY_SECONDS

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay_seconds < 0 or self.max_delay_seconds < 0:
            raise ValueError("retry delays must be non-negative")

    def delay_for(self, attempt: int) -> float:
        return min(self.base_delay_seconds * attempt, self.max_delay_seconds)

    @property
    def max_total_delay_seconds(self) -> float:
        """Upper bound on time spent sleeping during one operation."""
        return sum(self.delay_for(n) for n in range(1, self.max_attempts))


# --- Client ---


class ObjectStoreClient:
    """Retrying, verifying client for an ObjectStoreBackend.

    Args:
        backend: Raw blob store.
        policy: Retry schedule (defaults from config).
        sleep: Blocking sleep function; injectable so tests never wait.
    """

    def __init__(
        self,
        backend: ObjectStoreBackend,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.backend = backend
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    # --- Public operations ---

    def put(self, key: str, data: bytes, content_type: str = EXPECTED_CONTENT_TYPE) -> Outcome[None]:
        """Upload data under key and verify it is visible.

        After the final failed attempt, any partially written object at key
        is removed (best-effort) before reporting INFRASTRUCTURE.
        """
        if not data:
            return invalid_input("Upload data cannot be empty")
        problem = storage_key_problem(key)
        if problem is not None:
            return invalid_input(problem)

        def attempt() -> None:
            self.backend.put(key, data, content_type)
            if not self.exists(key):
                raise VerificationError("object not found after upload")

        outcome = self._run_with_retry("upload", key, attempt)
        if not outcome.ok:
            self._cleanup_failed_upload(key)
        return outcome

    def get(self, key: str) -> Outcome[bytes]:
        """Download the object at key.

        A definitive "not found" is reported as NOT_FOUND without retrying;
        an empty download counts as a failed attempt.
        """
        problem = storage_key_problem(key)
        if problem is not None:
            return invalid_input(problem)

        def attempt() -> bytes:
            content = self.backend.get(key)
            if not content:
                raise VerificationError(f"downloaded object is empty: {key}")
            return content

        return self._run_with_retry("download", key, attempt, not_found_is_final=True)

    def delete(self, key: str) -> Outcome[None]:
        """Delete the object at key and verify it is gone."""
        problem = storage_key_problem(key)
        if problem is not None:
            return invalid_input(problem)

        def attempt() -> None:
            self.backend.delete(key)
            if self.exists(key):
                raise VerificationError("object still exists after deletion")

        return self._run_with_retry("delete", key, attempt)

    def exists(self, key: str) -> bool:
        """Return whether a non-empty object exists at key.

        Only a definitive "not found" yields False. Any other backend error
        yields True, so callers refuse to overwrite or re-delete rather than
        proceed against an unreachable store.

        Raises:
            ValueError: If key is malformed (callers must pass valid keys).
        """
        problem = storage_key_problem(key)
        if problem is not None:
            raise ValueError(problem)
        try:
            return self.backend.head(key) > 0
        except ObjectNotFoundError:
            return False
        except Exception as e:
            logger.warning(
                "Existence check failed for key=%s, assuming present: %s", key, e
            )
            return True

    # --- Internal Helpers ---

    def _run_with_retry(
        self,
        operation: str,
        key: str,
        attempt: Callable[[], T],
        not_found_is_final: bool = False,
    ) -> Outcome[T]:
        max_attempts = self.policy.max_attempts
        last_error: Exception | None = None

        for attempt_number in range(1, max_attempts + 1):
            try:
                return Outcome.success(attempt())
            except ObjectNotFoundError as e:
                if not_found_is_final:
                    return not_found(f"Object not found in store: {key}")
                last_error = e
            except Exception as e:
                last_error = e

            logger.warning(
                "Object store %s attempt %d/%d failed for key=%s: %s",
                operation,
                attempt_number,
                max_attempts,
                key,
                last_error,
            )
            if attempt_number < max_attempts:
                self._sleep(self.policy.delay_for(attempt_number))

        logger.error(
            "Object store %s failed after %d attempts for key=%s", operation, max_attempts, key
        )
        return infrastructure(
            f"Failed to {operation} object after {max_attempts} attempts: {key} ({last_error})"
        )

    def _cleanup_failed_upload(self, key: str) -> None:
        """Remove whatever a failed upload may have left at key (never raises)."""
        try:
            if self.exists(key):
                self.backend.delete(key)
                logger.info("Removed partial upload for key=%s", key)
        except Exception:
            logger.error("Failed to clean up partial upload for key=%s", key, exc_info=True)


__all__ = [
    "ObjectNotFoundError",
    "VerificationError",
    "ObjectStoreBackend",
    "FilesystemObjectStore",
    "RetryPolicy",
    "ObjectStoreClient",
]
