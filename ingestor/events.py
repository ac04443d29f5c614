"""Audio Resource Ingestor - Event publishing.

Publishes resource identifiers to a topic and waits for the enqueue to be
acknowledged. Delivery is at-least-once: a publish that fails after its own
retries raises PublishError so the caller can roll back.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

from ingestor.config import (
    PUBLISH_MAX_ATTEMPTS,
    PUBLISH_RETRY_DELAY_SECONDS,
    RESOURCE_CREATED_TOPIC,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PublishAck:
    """Acknowledgement of an enqueued event."""

    topic: str
    resource_id: int
    message_id: str
    queue: str


class PublishError(Exception):
    """Event could not be published after all attempts."""

    def __init__(self, topic: str, resource_id: int, attempts: int, reason: str):
        self.topic = topic
        self.resource_id = resource_id
        self.attempts = attempts
        super().__init__(
            f"Failed to publish resource_id={resource_id} to topic={topic} "
            f"after {attempts} attempts: {reason}"
        )


class EventPublisher(Protocol):
    def publish(self, topic: str, resource_id: int) -> PublishAck: ...


def _default_topic_tasks() -> dict[str, Any]:
    # Local import: importing huey_app creates the queue directory
    from ingestor.huey_app import resource_created_task

    return {RESOURCE_CREATED_TOPIC: resource_created_task}


class HueyEventPublisher:
    """EventPublisher that enqueues one Huey task per topic.

    Args:
        topic_tasks: Mapping of topic name to Huey task. Defaults to the
            resource-created task from ingestor.huey_app.
        max_attempts: Enqueue attempts before giving up.
        retry_delay_seconds: Base delay; attempt N waits delay * N.
        sleep: Blocking sleep function (injectable for tests).
    """

    def __init__(
        self,
        topic_tasks: Mapping[str, Any] | None = None,
        max_attempts: int = PUBLISH_MAX_ATTEMPTS,
        retry_delay_seconds: float = PUBLISH_RETRY_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._topic_tasks = dict(topic_tasks) if topic_tasks is not None else _default_topic_tasks()
        self._max_attempts = max_attempts
        self._retry_delay_seconds = retry_delay_seconds
        self._sleep = sleep

    def publish(self, topic: str, resource_id: int) -> PublishAck:
        """Enqueue resource_id on topic and return the acknowledgement.

        Raises:
            ValueError: If no task is registered for topic.
            PublishError: If every enqueue attempt failed.
        """
        task = self._topic_tasks.get(topic)
        if task is None:
            raise ValueError(f"No task registered for topic: {topic}")

        last_error: Exception | None = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                result = task(resource_id)
                ack = PublishAck(
                    topic=topic,
                    resource_id=resource_id,
                    message_id=str(result.id),
                    queue=task.huey.name,
                )
                logger.info(
                    "Published resource_id=%s to topic=%s (queue=%s, message_id=%s)",
                    resource_id,
                    topic,
                    ack.queue,
                    ack.message_id,
                )
                return ack
            except Exception as e:
                last_error = e
                logger.warning(
                    "Publish attempt %d/%d failed for resource_id=%s topic=%s: %s",
                    attempt,
                    self._max_attempts,
                    resource_id,
                    topic,
                    e,
                )
                if attempt < self._max_attempts:
                    self._sleep(self._retry_delay_seconds * attempt)

        raise PublishError(topic, resource_id, self._max_attempts, str(last_error))


__all__ = [
    "PublishAck",
    "PublishError",
    "EventPublisher",
    "HueyEventPublisher",
]
