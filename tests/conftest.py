"""Shared pytest fixtures for Audio Resource Ingestor tests.

Provides a temporary SQLite record store, a temporary filesystem object store
wrapped in a fault-injecting backend, a recording event publisher, and a
FastAPI test client wired to all of them.
"""

import tempfile
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from ingestor.db import ResourceRepository, init_db
from ingestor.events import PublishAck, PublishError
from ingestor.object_store import (
    FilesystemObjectStore,
    ObjectNotFoundError,
    ObjectStoreClient,
    RetryPolicy,
)
from ingestor.orchestrator import ResourceOrchestrator
from services.resource_api.main import app, override_orchestrator

# Minimal MPEG-1 Layer III payload: ID3v2.4 header followed by one frame header
# (0xFFFB9064 = MPEG1, Layer III, 128 kbps, 44.1 kHz) and padding.
SAMPLE_MP3 = b"ID3\x04\x00\x00\x00\x00\x00\x00" + b"\xff\xfb\x90\x64" + b"\x00" * 413

ALWAYS = 10**6


class FlakyBackend:
    """Object store backend wrapper with scripted failures.

    - fail_next(op, times): the next `times` calls of op raise ConnectionError
    - ghost_puts: puts acknowledged without persisting anything
    - sticky_deletes: deletes acknowledged while the object stays visible
    - hide_after_heads(n): after n more successful heads, head reports every
      object as missing although the bytes stay on disk
    """

    def __init__(self, inner: FilesystemObjectStore):
        self.inner = inner
        self.failures = {"put": 0, "get": 0, "head": 0, "delete": 0}
        self.ghost_puts = 0
        self.sticky_deletes = 0
        self.visible_heads: int | None = None
        self.calls: list[tuple[str, str]] = []

    def hide_after_heads(self, n: int) -> None:
        self.visible_heads = n

    def fail_next(self, op: str, times: int = 1) -> None:
        self.failures[op] = times

    def fail_always(self, op: str) -> None:
        self.failures[op] = ALWAYS

    def heal(self) -> None:
        for op in self.failures:
            self.failures[op] = 0
        self.ghost_puts = 0
        self.sticky_deletes = 0
        self.visible_heads = None

    def count(self, op: str) -> int:
        return sum(1 for name, _ in self.calls if name == op)

    def _maybe_fail(self, op: str, key: str) -> None:
        self.calls.append((op, key))
        if self.failures[op] > 0:
            self.failures[op] -= 1
            raise ConnectionError(f"injected {op} failure for {key}")

    def put(self, key, data, content_type):
        self._maybe_fail("put", key)
        if self.ghost_puts > 0:
            self.ghost_puts -= 1
            return
        self.inner.put(key, data, content_type)

    def get(self, key):
        self._maybe_fail("get", key)
        return self.inner.get(key)

    def head(self, key):
        self._maybe_fail("head", key)
        if self.visible_heads is not None:
            if self.visible_heads <= 0:
                raise ObjectNotFoundError(key)
            self.visible_heads -= 1
        return self.inner.head(key)

    def delete(self, key):
        self._maybe_fail("delete", key)
        if self.sticky_deletes > 0:
            self.sticky_deletes -= 1
            return
        self.inner.delete(key)

    def keys(self) -> list[str]:
        """Keys of fully written objects currently in the store."""
        if not self.inner.objects_dir.exists():
            return []
        return sorted(p.name for p in self.inner.objects_dir.iterdir() if p.suffix != ".tmp")


class RecordingPublisher:
    """EventPublisher fake that records publishes and can be told to fail."""

    def __init__(self):
        self.published: list[tuple[str, int]] = []
        self.attempts = 0
        self.fail_times = 0

    def publish(self, topic, resource_id):
        self.attempts += 1
        if self.fail_times > 0:
            self.fail_times -= 1
            raise PublishError(topic, resource_id, 1, "broker unavailable")
        self.published.append((topic, resource_id))
        return PublishAck(
            topic=topic,
            resource_id=resource_id,
            message_id=str(len(self.published)),
            queue="test",
        )


@pytest.fixture
def temp_db():
    """Create a temporary database for testing.

    Yields:
        tuple: (db_path, engine, SessionFactory)
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        engine, SessionFactory = init_db(db_path)
        yield db_path, engine, SessionFactory
        engine.dispose()


@pytest.fixture
def records(temp_db):
    """ResourceRepository over the temporary database."""
    _, _, SessionFactory = temp_db
    return ResourceRepository(SessionFactory)


@pytest.fixture
def fs_store():
    """FilesystemObjectStore in a temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        store = FilesystemObjectStore(Path(tmpdir) / "blobs")
        store.ensure_layout()
        yield store


@pytest.fixture
def backend(fs_store):
    """Fault-injecting backend around the temporary filesystem store."""
    return FlakyBackend(fs_store)


@pytest.fixture
def sleeps():
    """List collecting every backoff delay requested by the store client."""
    return []


@pytest.fixture
def store_client(backend, sleeps):
    """ObjectStoreClient with 3 attempts and recorded (not real) sleeps."""
    policy = RetryPolicy(max_attempts=3, base_delay_seconds=1.0, max_delay_seconds=5.0)
    return ObjectStoreClient(backend, policy=policy, sleep=sleeps.append)


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def orchestrator(store_client, records, publisher):
    return ResourceOrchestrator(store=store_client, records=records, publisher=publisher)


@pytest.fixture
def sample_mp3():
    """Bytes that sniff as audio/mpeg."""
    return SAMPLE_MP3


@pytest.fixture
def client(orchestrator):
    """FastAPI test client wired to the test orchestrator.

    Yields:
        TestClient
    """
    override_orchestrator(orchestrator)
    with TestClient(app) as test_client:
        yield test_client
    override_orchestrator(None)
