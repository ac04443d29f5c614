"""Audio Resource Ingestor - Resource API service.

FastAPI service exposing upload, metadata, content and batch delete
endpoints on top of ResourceOrchestrator.
"""

__all__: list[str] = []
