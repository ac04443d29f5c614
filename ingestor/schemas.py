"""Audio Resource Ingestor - Pydantic models for API serialization.

Response models used by the FastAPI resource service.
"""

from datetime import datetime  # noqa: I001

from pydantic import BaseModel, ConfigDict, Field


# --- Response Models ---


class ResourceCreatedResponse(BaseModel):
    """Response for a successful upload."""

    model_config = ConfigDict(extra="forbid")

    id: int = Field(..., ge=1, description="Identifier of the ingested resource")


class ResourceInfoResponse(BaseModel):
    """Metadata record of one resource."""

    model_config = ConfigDict(extra="forbid", from_attributes=True)

    id: int = Field(..., ge=1, description="Resource identifier")
    storage_key: str = Field(..., description="Object store key holding the audio bytes")
    created_at: datetime = Field(..., description="When the record was created")


class ResourcesDeletedResponse(BaseModel):
    """Response for a batch delete: ids that were fully removed."""

    model_config = ConfigDict(extra="forbid")

    ids: list[int] = Field(default_factory=list, description="Removed resource identifiers")


class ErrorResponse(BaseModel):
    """Response for failed operations."""

    model_config = ConfigDict(extra="forbid")

    status: str = Field(default="error", description="Operation status")
    error_code: str = Field(..., description="Error kind (INVALID_INPUT, NOT_FOUND, INFRASTRUCTURE)")
    error_message: str = Field(..., description="Human-readable error description")


__all__ = [
    "ResourceCreatedResponse",
    "ResourceInfoResponse",
    "ResourcesDeletedResponse",
    "ErrorResponse",
]
