"""Audio Resource Ingestor - Core application modules.

Provides:
- Object store client with retry, backoff and verification reads
- SQLite metadata records for ingested resources
- Huey-backed resource-created event publishing
- Upload / batch-delete orchestration with compensation
"""

__version__ = "0.1.0"
