"""Music Ingest Pipeline - Pydantic models for API validation.

Request/response models for the ingest and library endpoints. Used by
FastAPI for runtime validation and OpenAPI docs.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from app.models import CollectionType, TrackCategory, TrackStatus

# --- Request Models ---


class TrackUpdateRequest(BaseModel):
    """Partial edit of a track (title and/or category)."""

    model_config = ConfigDict(extra="forbid")

    title: str | None = Field(default=None, description="New display title")
    category: TrackCategory | None = Field(default=None, description="New category")


class BatchActionRequest(BaseModel):
    """Bulk action over several tracks.

    payload is the category for setCategory, a comma-separated tag list
    for addTags, and unused for delete.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    action: Literal["delete", "setCategory", "addTags"]
    track_ids: list[str] = Field(..., min_length=1, alias="trackIds")
    payload: str | None = None


class CollectionCreateRequest(BaseModel):
    """Request payload for creating a collection."""

    model_config = ConfigDict(extra="forbid")

    title: str = Field(..., min_length=1, description="Display title")
    type: CollectionType = Field(..., description="album, playlist or single")
    description: str | None = None
    artist: str | None = Field(default=None, description="Only kept for albums")


class CollectionTrackAddRequest(BaseModel):
    """Add a track to a collection."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    track_id: str = Field(..., min_length=1, alias="trackId")
    position: int | None = Field(default=None, ge=0, description="Defaults to the end")


class TrackPosition(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    track_id: str = Field(..., alias="trackId")
    position: int = Field(..., ge=0)


class ReorderRequest(BaseModel):
    """Explicit positions for collection members."""

    model_config = ConfigDict(extra="forbid")

    positions: list[TrackPosition]


class CollectionUpdateRequest(BaseModel):
    """Partial edit of a collection. Only fields sent are applied."""

    model_config = ConfigDict(extra="forbid")

    title: str | None = None
    description: str | None = None
    artist: str | None = None
    slug: str | None = None


class CollectionPosition(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(..., min_length=1)
    position: int = Field(..., ge=0)


class CollectionReorderRequest(BaseModel):
    """Display order for collections."""

    model_config = ConfigDict(extra="forbid")

    positions: list[CollectionPosition]


# --- Response Models ---


class IngestSuccessResponse(BaseModel):
    """Response for a successful upload or reupload."""

    model_config = ConfigDict(extra="forbid")

    track_id: str = Field(..., description="Identity of the created track")
    slug: str = Field(..., description="Allocated URL slug")
    status: TrackStatus = Field(..., description="Pipeline status (pending)")


class TrackStatusResponse(BaseModel):
    """Current pipeline status of a track."""

    model_config = ConfigDict(extra="forbid")

    status: TrackStatus
    error_message: str | None = None


class CollectionCreatedResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    collection_id: str
    slug: str


class CollectionTrackAddedResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    position: int


class CollectionArtResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    art_path: str
    dominant_color: str | None = None


class OkResponse(BaseModel):
    """Generic acknowledgement, with an optional affected-row count."""

    model_config = ConfigDict(extra="forbid")

    ok: bool = True
    affected: int | None = None


class ErrorResponse(BaseModel):
    """Response for failed operations."""

    model_config = ConfigDict(extra="forbid")

    status: str = Field(default="error", description="Operation status")
    error_code: str = Field(..., description="Error taxonomy code")
    error_message: str = Field(..., description="Human-readable error description")


__all__ = [
    "TrackUpdateRequest",
    "BatchActionRequest",
    "CollectionCreateRequest",
    "CollectionTrackAddRequest",
    "TrackPosition",
    "ReorderRequest",
    "CollectionUpdateRequest",
    "CollectionPosition",
    "CollectionReorderRequest",
    "IngestSuccessResponse",
    "TrackStatusResponse",
    "CollectionCreatedResponse",
    "CollectionTrackAddedResponse",
    "CollectionArtResponse",
    "OkResponse",
    "ErrorResponse",
]
