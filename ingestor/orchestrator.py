"""Audio Resource Ingestor - Upload / delete orchestration.

Coordinates three independently failing subsystems: the object store (blob
bytes), the metadata record store, and the event publisher.

Upload:  validate -> put blob -> save record -> verify blob -> publish
Delete:  per id: find record -> delete blob (verified) -> delete record

Failure handling:
- Nothing is written before the payload is validated.
- Any failure after the blob write triggers compensation, always in the
  order blob first, then record. A record pointing at a missing blob is
  detectable on read; a blob with no record is an unreachable leak.
- Compensation never raises and never replaces the original error.
- Batch delete isolates every identifier: a failing id is left intact and
  simply omitted from the result.

All public operations return Outcome values. Collaborators are passed in
explicitly, so tests substitute fakes without patching.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass

from ingestor.config import EXPECTED_CONTENT_TYPE, MAX_CSV_IDS_LENGTH, RESOURCE_CREATED_TOPIC
from ingestor.db import ResourceRepository
from ingestor.errors import ErrorKind, Outcome, infrastructure, invalid_input, not_found
from ingestor.events import EventPublisher
from ingestor.models import Resource, utc_now
from ingestor.object_store import ObjectStoreClient
from ingestor.utils.audio_sniff import validate_audio_payload
from ingestor.utils.keys import generate_storage_key

logger = logging.getLogger(__name__)

# Largest id the SQLite INTEGER primary key can hold
MAX_RESOURCE_ID = 2**63 - 1

_ID_PATTERN = re.compile(r"[0-9]+")


# --- Input Validation ---


def validate_resource_id(resource_id: int) -> Outcome[int]:
    """Check that resource_id is a positive integer in range."""
    if isinstance(resource_id, bool) or not isinstance(resource_id, int):
        return invalid_input(f"Invalid ID = {resource_id!r}")
    if resource_id <= 0 or resource_id > MAX_RESOURCE_ID:
        return invalid_input(f"Invalid ID = {resource_id}")
    return Outcome.success(resource_id)


def parse_resource_id(raw: str | None) -> Outcome[int]:
    """Parse one textual id made of ASCII digits only.

    Signs, underscores, surrounding whitespace and non-ASCII digits, all of
    which int() would accept, are rejected.
    """
    if raw is None or not _ID_PATTERN.fullmatch(raw):
        return invalid_input(f"Invalid ID format: {raw!r}")
    return validate_resource_id(int(raw))


def parse_csv_ids(csv_ids: str | None) -> Outcome[list[int]]:
    """Parse a comma-separated id list.

    Whitespace around each id is ignored, as are trailing empty entries
    ("5,9," is the same as "5,9"). The whole list is rejected if it is
    empty, too long, or contains any malformed or out-of-range id.
    """
    if not csv_ids:
        return invalid_input("CSV IDs are required")
    if len(csv_ids) >= MAX_CSV_IDS_LENGTH:
        return invalid_input(
            f"CSV string length must be less than {MAX_CSV_IDS_LENGTH} characters. "
            f"Got {len(csv_ids)}"
        )

    tokens = csv_ids.split(",")
    while tokens and tokens[-1] == "":
        tokens.pop()
    if not tokens:
        return invalid_input("CSV IDs are required")

    ids: list[int] = []
    for raw in tokens:
        parsed = parse_resource_id(raw.strip())
        if not parsed.ok:
            return Outcome.from_error(parsed.error)
        ids.append(parsed.value)
    return Outcome.success(ids)


# --- Compensation ---


@dataclass(frozen=True)
class CompensationReport:
    """What a compensation pass managed to undo.

    None means the step was not needed (nothing to undo).
    """

    storage_key: str | None
    resource_id: int | None
    blob_removed: bool | None
    record_removed: bool | None

    @property
    def clean(self) -> bool:
        return self.blob_removed is not False and self.record_removed is not False


# --- Orchestrator ---


class ResourceOrchestrator:
    """Upload, read and batch-delete workflows for audio resources.

    Args:
        store: Retrying object store client.
        records: Metadata record store.
        publisher: Event publisher for resource-created announcements.
        topic: Topic to publish new resource ids on.
        content_type: Media type every payload must sniff as.
        key_factory: Storage key generator.
    """

    def __init__(
        self,
        store: ObjectStoreClient,
        records: ResourceRepository,
        publisher: EventPublisher,
        topic: str = RESOURCE_CREATED_TOPIC,
        content_type: str = EXPECTED_CONTENT_TYPE,
        key_factory: Callable[[], str] = generate_storage_key,
    ):
        self.store = store
        self.records = records
        self.publisher = publisher
        self.topic = topic
        self.content_type = content_type
        self.key_factory = key_factory

    # --- Upload ---

    def upload(self, data: bytes) -> Outcome[int]:
        """Ingest an audio payload and return the new resource id.

        Returns:
            Success with the id, INVALID_INPUT for a bad payload, or
            INFRASTRUCTURE after any store / record / publish failure (with
            everything already written rolled back).
        """
        # 1. Validate before any side effect
        validation = validate_audio_payload(data, self.content_type)
        if not validation.ok:
            logger.info("Rejected upload: %s", validation.error.message)
            return Outcome.from_error(validation.error)

        # 2. Write the blob (the store client retries and verifies)
        storage_key = self.key_factory()
        stored = self.store.put(storage_key, data, self.content_type)
        if not stored.ok:
            logger.error("Upload aborted, blob write failed for key=%s: %s", storage_key, stored.error)
            # The payload already passed validation, so any rejection here
            # (including a malformed generated key) is a server-side fault
            return infrastructure(f"Failed to store audio payload: {stored.error.message}")

        # 3. Create the metadata record
        try:
            resource = self.records.save(Resource(storage_key=storage_key, created_at=utc_now()))
        except Exception as e:
            logger.error("Failed to save resource record for key=%s", storage_key, exc_info=True)
            self.compensate(storage_key, None)
            return infrastructure(f"Failed to save resource record: {e}")

        resource_id = resource.id
        if resource_id is None:
            logger.error("Record store returned no id for key=%s", storage_key)
            self.compensate(storage_key, None)
            return infrastructure("Failed to save resource record: no id assigned")

        # 4. Re-verify the blob before announcing it
        if not self.store.exists(storage_key):
            logger.error(
                "Blob verification failed after record save: id=%s key=%s", resource_id, storage_key
            )
            self.compensate(storage_key, resource_id)
            return infrastructure(f"Stored object could not be verified: {storage_key}")

        # 5. Announce; an unannounced resource must not be reported as created
        try:
            self.publisher.publish(self.topic, resource_id)
        except Exception as e:
            logger.error("Failed to publish resource_id=%s, rolling back", resource_id, exc_info=True)
            self.compensate(storage_key, resource_id)
            return infrastructure(f"Failed to publish resource event: {e}")

        logger.info("Ingested resource id=%s key=%s", resource_id, storage_key)
        return Outcome.success(resource_id)

    def compensate(self, storage_key: str | None, resource_id: int | None) -> CompensationReport:
        """Undo a partially applied upload: blob first, then record.

        Both steps are always attempted. Never raises.
        """
        blob_removed: bool | None = None
        record_removed: bool | None = None

        if storage_key is not None:
            # No existence check first: deleting a missing object is a no-op
            try:
                deleted = self.store.delete(storage_key)
                blob_removed = deleted.ok
                if not deleted.ok:
                    logger.error(
                        "Compensation could not delete blob key=%s: %s",
                        storage_key,
                        deleted.error,
                    )
            except Exception:
                blob_removed = False
                logger.error("Compensation failed deleting blob key=%s", storage_key, exc_info=True)

        if resource_id is not None:
            try:
                self.records.delete_by_id(resource_id)
                record_removed = True
            except Exception:
                record_removed = False
                logger.error(
                    "Compensation failed deleting record id=%s", resource_id, exc_info=True
                )

        report = CompensationReport(
            storage_key=storage_key,
            resource_id=resource_id,
            blob_removed=blob_removed,
            record_removed=record_removed,
        )
        if report.clean:
            logger.info("Compensation complete for key=%s id=%s", storage_key, resource_id)
        return report

    # --- Reads ---

    def _find_record(self, resource_id: int) -> Outcome[Resource]:
        """Validate resource_id and load its record.

        Returns NOT_FOUND if absent and INFRASTRUCTURE if the record store
        fails.
        """
        checked = validate_resource_id(resource_id)
        if not checked.ok:
            return Outcome.from_error(checked.error)

        try:
            resource = self.records.find_by_id(resource_id)
        except Exception as e:
            logger.error("Failed to load resource record id=%s", resource_id, exc_info=True)
            return infrastructure(f"Failed to load resource record ID={resource_id}: {e}")

        if resource is None:
            return not_found(f"Resource with ID={resource_id} not found")
        return Outcome.success(resource)

    def fetch_metadata(self, resource_id: int) -> Outcome[Resource]:
        """Return the record for resource_id.

        A record whose blob has vanished is reported as NOT_FOUND.
        """
        found = self._find_record(resource_id)
        if not found.ok:
            return found
        resource = found.value

        if not self.store.exists(resource.storage_key):
            logger.warning(
                "Resource id=%s has no blob at key=%s", resource_id, resource.storage_key
            )
            return not_found(f"Stored object for resource ID={resource_id} does not exist")

        return Outcome.success(resource)

    def fetch_content(self, resource_id: int) -> Outcome[bytes]:
        """Return the audio bytes for resource_id, re-validated after download."""
        found = self._find_record(resource_id)
        if not found.ok:
            return Outcome.from_error(found.error)
        resource = found.value

        downloaded = self.store.get(resource.storage_key)
        if not downloaded.ok:
            if downloaded.error.kind == ErrorKind.NOT_FOUND:
                logger.warning(
                    "Resource id=%s has no blob at key=%s", resource_id, resource.storage_key
                )
                return not_found(f"Stored object for resource ID={resource_id} does not exist")
            return infrastructure(
                f"Failed to retrieve content for resource ID={resource_id}: "
                f"{downloaded.error.message}"
            )

        content = downloaded.value
        validation = validate_audio_payload(content, self.content_type)
        if not validation.ok:
            logger.error(
                "Stored content for resource id=%s failed validation: %s",
                resource_id,
                validation.error.message,
            )
            return infrastructure(f"Stored content for resource ID={resource_id} is corrupt")

        return Outcome.success(content)

    # --- Batch Delete ---

    def delete(self, csv_ids: str) -> Outcome[list[int]]:
        """Delete every resource listed in csv_ids.

        Malformed input rejects the whole batch before anything is deleted.
        Otherwise the result lists the ids that were fully removed; absent
        and failed ids are omitted.
        """
        parsed = parse_csv_ids(csv_ids)
        if not parsed.ok:
            return Outcome.from_error(parsed.error)

        deleted_ids: list[int] = []
        for resource_id in parsed.value:
            try:
                if self._delete_one(resource_id):
                    deleted_ids.append(resource_id)
            except Exception:
                logger.warning("Failed to delete resource id=%s", resource_id, exc_info=True)

        logger.info("Batch delete removed %d of %d ids", len(deleted_ids), len(parsed.value))
        return Outcome.success(deleted_ids)

    def _delete_one(self, resource_id: int) -> bool:
        resource = self.records.find_by_id(resource_id)
        if resource is None:
            logger.debug("Resource id=%s already absent, skipping", resource_id)
            return False

        removed = self.store.delete(resource.storage_key)
        if not removed.ok:
            logger.warning(
                "Keeping resource id=%s, blob delete failed for key=%s: %s",
                resource_id,
                resource.storage_key,
                removed.error,
            )
            return False

        self.records.delete_by_id(resource_id)
        return True


__all__ = [
    "MAX_RESOURCE_ID",
    "CompensationReport",
    "ResourceOrchestrator",
    "parse_csv_ids",
    "parse_resource_id",
    "validate_resource_id",
]
