"""Audio Resource Ingestor - Huey task queue configuration.

Huey with a SQLite backend carries resource-created events to downstream
consumers. Tasks are persisted in order and processed by a consumer process.

How to run:
1. Start the resource API:
   uvicorn services.resource_api.main:app --reload

2. Start the Huey consumer (delivers queued events):
   huey_consumer.py ingestor.huey_app.huey
"""

from __future__ import annotations

import logging

from huey import SqliteHuey

from ingestor.config import HUEY_DB_PATH, QUEUE_DIR, RESOURCE_CREATED_TOPIC

logger = logging.getLogger(__name__)

# SqliteHuey opens its database file on first use; the directory must exist
QUEUE_DIR.mkdir(parents=True, exist_ok=True)

huey = SqliteHuey(
    name="resource_ingestor",
    filename=str(HUEY_DB_PATH),
    immediate=False,  # Events queued for consumer processing
)


@huey.task()
def resource_created_task(resource_id: int) -> dict:
    """Consumer side of the resource-created topic.

    Metadata extraction lives in a separate downstream service; this task
    records delivery so the event is observable in consumer logs.

    Args:
        resource_id: Identifier of the newly ingested resource.

    Returns:
        Dict describing the delivered event.
    """
    logger.info("Delivered %s event for resource_id=%s", RESOURCE_CREATED_TOPIC, resource_id)
    return {"topic": RESOURCE_CREATED_TOPIC, "resource_id": resource_id}
