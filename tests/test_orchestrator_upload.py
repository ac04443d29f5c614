"""Tests for ResourceOrchestrator upload, compensation and reads.

Every failure injected after validation must leave the system exactly as it
was: no blob, no record, no event.
"""

from unittest import mock

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from ingestor.errors import ErrorKind
from ingestor.events import HueyEventPublisher
from ingestor.models import Resource
from ingestor.orchestrator import MAX_RESOURCE_ID, ResourceOrchestrator, validate_resource_id

FIXED_KEY = "mp3_1700000000000_abcdef01.mp3"
ALWAYS = 10**6


def _record_count(temp_db) -> int:
    _, _, SessionFactory = temp_db
    session = SessionFactory()
    try:
        return session.execute(select(func.count()).select_from(Resource)).scalar_one()
    finally:
        session.close()


def _assert_nothing_persisted(backend, temp_db, publisher):
    assert backend.keys() == []
    assert _record_count(temp_db) == 0
    assert publisher.published == []


class TestUploadHappyPath:
    """Successful ingestion."""

    def test_upload_returns_id_and_publishes_once(
        self, orchestrator, backend, records, publisher, sample_mp3
    ):
        outcome = orchestrator.upload(sample_mp3)

        assert outcome.ok
        resource_id = outcome.value
        assert resource_id > 0
        assert publisher.published == [("resource-created", resource_id)]

        resource = records.find_by_id(resource_id)
        assert resource is not None
        assert backend.keys() == [resource.storage_key]

    def test_uses_key_factory(self, store_client, records, publisher, backend, sample_mp3):
        orchestrator = ResourceOrchestrator(
            store=store_client,
            records=records,
            publisher=publisher,
            key_factory=lambda: FIXED_KEY,
        )

        outcome = orchestrator.upload(sample_mp3)

        assert records.find_by_id(outcome.value).storage_key == FIXED_KEY
        assert backend.keys() == [FIXED_KEY]

    def test_stored_bytes_match_payload(self, orchestrator, fs_store, records, sample_mp3):
        outcome = orchestrator.upload(sample_mp3)

        key = records.find_by_id(outcome.value).storage_key
        assert fs_store.get(key) == sample_mp3
        assert fs_store.content_type(key) == "audio/mpeg"

    def test_distinct_uploads_get_distinct_ids(self, orchestrator, backend, sample_mp3):
        first = orchestrator.upload(sample_mp3)
        second = orchestrator.upload(sample_mp3)

        assert first.value != second.value
        assert len(backend.keys()) == 2


class TestUploadValidation:
    """Invalid payloads are rejected before any side effect."""

    def test_short_non_audio_payload_touches_nothing(
        self, orchestrator, backend, records, publisher, temp_db
    ):
        with mock.patch.object(records, "save", wraps=records.save) as save:
            outcome = orchestrator.upload(b"0123456789")

        assert outcome.error.kind == ErrorKind.INVALID_INPUT
        assert backend.calls == []
        save.assert_not_called()
        assert publisher.attempts == 0
        assert _record_count(temp_db) == 0

    def test_empty_payload(self, orchestrator, backend):
        outcome = orchestrator.upload(b"")

        assert outcome.error.kind == ErrorKind.INVALID_INPUT
        assert backend.calls == []

    def test_other_audio_format_rejected(self, orchestrator, backend):
        outcome = orchestrator.upload(b"fLaC" + b"\x00" * 100)

        assert outcome.error.kind == ErrorKind.INVALID_INPUT
        assert backend.calls == []

    def test_malformed_generated_key_is_server_fault(
        self, store_client, records, publisher, backend, temp_db, sample_mp3
    ):
        orchestrator = ResourceOrchestrator(
            store=store_client, records=records, publisher=publisher, key_factory=lambda: "../x"
        )

        outcome = orchestrator.upload(sample_mp3)

        assert outcome.error.kind == ErrorKind.INFRASTRUCTURE
        assert backend.calls == []
        _assert_nothing_persisted(backend, temp_db, publisher)


class TestUploadFailures:
    """Each failing step rolls back everything before it."""

    def test_blob_write_exhaustion(self, orchestrator, backend, publisher, temp_db, sleeps, sample_mp3):
        backend.fail_always("put")

        outcome = orchestrator.upload(sample_mp3)

        assert outcome.error.kind == ErrorKind.INFRASTRUCTURE
        assert backend.count("put") == 3
        assert sleeps == [1.0, 2.0]
        assert publisher.attempts == 0
        _assert_nothing_persisted(backend, temp_db, publisher)

    def test_transient_blob_failure_recovers(
        self, orchestrator, backend, publisher, temp_db, sleeps, sample_mp3
    ):
        backend.fail_next("put", times=1)

        outcome = orchestrator.upload(sample_mp3)

        assert outcome.ok
        assert len(backend.keys()) == 1
        assert _record_count(temp_db) == 1
        assert publisher.published == [("resource-created", outcome.value)]
        assert sleeps == [1.0]

    def test_record_save_failure_removes_blob(
        self, orchestrator, backend, records, publisher, temp_db, sample_mp3
    ):
        with mock.patch.object(records, "save", side_effect=RuntimeError("database is locked")):
            outcome = orchestrator.upload(sample_mp3)

        assert outcome.error.kind == ErrorKind.INFRASTRUCTURE
        assert "database is locked" in outcome.error.message
        assert backend.count("put") == 1
        assert publisher.attempts == 0
        _assert_nothing_persisted(backend, temp_db, publisher)

    def test_record_without_id_is_rolled_back(
        self, orchestrator, backend, records, publisher, temp_db, sample_mp3
    ):
        with mock.patch.object(records, "save", return_value=Resource(storage_key=FIXED_KEY)):
            outcome = orchestrator.upload(sample_mp3)

        assert outcome.error.kind == ErrorKind.INFRASTRUCTURE
        _assert_nothing_persisted(backend, temp_db, publisher)

    def test_blob_vanishing_before_publish(
        self, orchestrator, backend, publisher, temp_db, sample_mp3
    ):
        # The put's own verification sees the object, the re-check does not
        backend.hide_after_heads(1)

        outcome = orchestrator.upload(sample_mp3)

        assert outcome.error.kind == ErrorKind.INFRASTRUCTURE
        assert publisher.attempts == 0
        _assert_nothing_persisted(backend, temp_db, publisher)

    def test_publish_failure_rolls_back_blob_and_record(
        self, orchestrator, backend, publisher, temp_db, sample_mp3
    ):
        publisher.fail_times = ALWAYS

        outcome = orchestrator.upload(sample_mp3)

        assert outcome.error.kind == ErrorKind.INFRASTRUCTURE
        assert "publish" in outcome.error.message
        assert publisher.attempts == 1
        _assert_nothing_persisted(backend, temp_db, publisher)

    def test_permanent_broker_failure_with_huey_publisher(
        self, store_client, records, backend, temp_db, sample_mp3
    ):
        task = mock.Mock(side_effect=ConnectionError("broker unavailable"))
        task.huey.name = "resource_ingestor"
        publish_sleeps = []
        publisher = HueyEventPublisher(
            {"resource-created": task}, max_attempts=3, sleep=publish_sleeps.append
        )
        orchestrator = ResourceOrchestrator(store=store_client, records=records, publisher=publisher)

        outcome = orchestrator.upload(sample_mp3)

        assert outcome.error.kind == ErrorKind.INFRASTRUCTURE
        assert task.call_count == 3
        assert len(publish_sleeps) == 2
        assert backend.keys() == []
        assert _record_count(temp_db) == 0

    def test_failed_compensation_keeps_original_error(
        self, orchestrator, backend, publisher, temp_db, sample_mp3
    ):
        publisher.fail_times = ALWAYS
        backend.fail_always("delete")

        outcome = orchestrator.upload(sample_mp3)

        assert outcome.error.kind == ErrorKind.INFRASTRUCTURE
        assert "publish" in outcome.error.message
        # Record is still removed even though the blob could not be
        assert _record_count(temp_db) == 0


class TestCompensate:
    """Tests for ResourceOrchestrator.compensate."""

    def test_removes_blob_and_record(self, orchestrator, fs_store, records, backend):
        fs_store.put(FIXED_KEY, b"data", "audio/mpeg")
        resource = records.save(Resource(storage_key=FIXED_KEY))

        report = orchestrator.compensate(FIXED_KEY, resource.id)

        assert report.clean
        assert report.blob_removed is True
        assert report.record_removed is True
        assert backend.keys() == []
        assert records.find_by_id(resource.id) is None

    def test_nothing_to_undo(self, orchestrator, backend):
        report = orchestrator.compensate(None, None)

        assert report.clean
        assert report.blob_removed is None
        assert report.record_removed is None
        assert backend.calls == []

    def test_missing_blob_is_not_an_error(self, orchestrator):
        assert orchestrator.compensate(FIXED_KEY, None).clean

    def test_blob_failure_still_removes_record(self, orchestrator, fs_store, records, backend):
        fs_store.put(FIXED_KEY, b"data", "audio/mpeg")
        resource = records.save(Resource(storage_key=FIXED_KEY))
        backend.fail_always("delete")

        report = orchestrator.compensate(FIXED_KEY, resource.id)

        assert not report.clean
        assert report.blob_removed is False
        assert report.record_removed is True
        assert records.find_by_id(resource.id) is None

    def test_record_failure_never_raises(self, orchestrator, records):
        with mock.patch.object(records, "delete_by_id", side_effect=RuntimeError("db down")):
            report = orchestrator.compensate(None, 3)

        assert report.record_removed is False


class TestValidateResourceId:
    """Tests for validate_resource_id."""

    @pytest.mark.parametrize("good", [1, 42, MAX_RESOURCE_ID])
    def test_accepts(self, good):
        assert validate_resource_id(good).value == good

    @pytest.mark.parametrize("bad", [0, -1, MAX_RESOURCE_ID + 1, True, "5", 1.0, None])
    def test_rejects(self, bad):
        assert validate_resource_id(bad).error.kind == ErrorKind.INVALID_INPUT


class TestFetchMetadata:
    """Tests for ResourceOrchestrator.fetch_metadata."""

    def test_returns_record(self, orchestrator, sample_mp3):
        resource_id = orchestrator.upload(sample_mp3).value

        outcome = orchestrator.fetch_metadata(resource_id)

        assert outcome.ok
        assert outcome.value.id == resource_id
        assert outcome.value.storage_key.endswith(".mp3")

    def test_unknown_id(self, orchestrator):
        outcome = orchestrator.fetch_metadata(404)

        assert outcome.error.kind == ErrorKind.NOT_FOUND
        assert "404" in outcome.error.message

    def test_invalid_id(self, orchestrator, backend):
        outcome = orchestrator.fetch_metadata(0)

        assert outcome.error.kind == ErrorKind.INVALID_INPUT
        assert backend.calls == []

    def test_vanished_blob_is_not_found(self, orchestrator, fs_store, records, sample_mp3):
        resource_id = orchestrator.upload(sample_mp3).value
        fs_store.delete(records.find_by_id(resource_id).storage_key)

        outcome = orchestrator.fetch_metadata(resource_id)

        assert outcome.error.kind == ErrorKind.NOT_FOUND

    def test_unreachable_store_assumes_present(self, orchestrator, backend, sample_mp3):
        resource_id = orchestrator.upload(sample_mp3).value
        backend.fail_always("head")

        assert orchestrator.fetch_metadata(resource_id).ok

    def test_record_store_failure_is_infrastructure(self, orchestrator, records, backend):
        locked = OperationalError("SELECT", {}, Exception("database is locked"))
        with mock.patch.object(records, "find_by_id", side_effect=locked):
            outcome = orchestrator.fetch_metadata(1)

        assert outcome.error.kind == ErrorKind.INFRASTRUCTURE
        assert "database is locked" in outcome.error.message
        assert backend.calls == []


class TestFetchContent:
    """Tests for ResourceOrchestrator.fetch_content."""

    def test_returns_bytes(self, orchestrator, sample_mp3):
        resource_id = orchestrator.upload(sample_mp3).value

        outcome = orchestrator.fetch_content(resource_id)

        assert outcome.value == sample_mp3

    def test_unknown_id(self, orchestrator, backend):
        outcome = orchestrator.fetch_content(77)

        assert outcome.error.kind == ErrorKind.NOT_FOUND
        assert backend.count("get") == 0

    def test_vanished_blob_is_not_found(self, orchestrator, fs_store, records, sample_mp3):
        resource_id = orchestrator.upload(sample_mp3).value
        fs_store.delete(records.find_by_id(resource_id).storage_key)

        outcome = orchestrator.fetch_content(resource_id)

        assert outcome.error.kind == ErrorKind.NOT_FOUND

    def test_corrupt_content_is_infrastructure(self, orchestrator, fs_store, records, sample_mp3):
        resource_id = orchestrator.upload(sample_mp3).value
        fs_store.put(records.find_by_id(resource_id).storage_key, b"garbage!", "audio/mpeg")

        outcome = orchestrator.fetch_content(resource_id)

        assert outcome.error.kind == ErrorKind.INFRASTRUCTURE
        assert "corrupt" in outcome.error.message

    def test_download_exhaustion_is_infrastructure(self, orchestrator, backend, sample_mp3):
        resource_id = orchestrator.upload(sample_mp3).value
        backend.fail_always("get")

        outcome = orchestrator.fetch_content(resource_id)

        assert outcome.error.kind == ErrorKind.INFRASTRUCTURE
        assert backend.count("get") == 3

    def test_record_store_failure_is_infrastructure(self, orchestrator, records, backend):
        with mock.patch.object(records, "find_by_id", side_effect=RuntimeError("db down")):
            outcome = orchestrator.fetch_content(1)

        assert outcome.error.kind == ErrorKind.INFRASTRUCTURE
        assert backend.count("get") == 0
