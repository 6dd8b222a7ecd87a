"""Music Ingest Pipeline - Ingest API FastAPI application.

Upload/reupload endpoints plus the admin library actions (track edits,
batch actions, collection membership) and the status/peaks/play endpoints
used by the player.

Uploads only persist the original and a pending Track; processing is done
by the scheduler. With MUSIC_QUEUE_BACKEND=thread (default) the scheduler
runs inside this process, started from the lifespan.

Run with:
    uvicorn services.ingest_api.main:app --reload  # dev server only
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, File, Response, UploadFile
from fastapi.responses import FileResponse, JSONResponse
from sqlalchemy.orm import Session

from app import config
from app.db import init_db
from app.errors import PipelineError, PipelineErrorCode
from app.library import (
    add_tags,
    add_track_to_collection,
    create_collection,
    delete_tracks,
    record_play,
    remove_track_from_collection,
    reorder_collection_tracks,
    reorder_collections,
    set_collection_art,
    set_tracks_category,
    update_collection,
    update_track,
)
from app.models import Collection, Track
from app.scheduler import PipelineScheduler, set_scheduler
from app.schemas import (
    BatchActionRequest,
    CollectionArtResponse,
    CollectionCreatedResponse,
    CollectionCreateRequest,
    CollectionReorderRequest,
    CollectionTrackAddedResponse,
    CollectionTrackAddRequest,
    CollectionUpdateRequest,
    ErrorResponse,
    IngestSuccessResponse,
    OkResponse,
    ReorderRequest,
    TrackStatusResponse,
    TrackUpdateRequest,
)
from app.utils.paths import ensure_within_root
from services.ingest_api.service import ingest_upload_stream, reupload_track
from services.media.waveform import load_normalized_peaks

logger = logging.getLogger(__name__)

# --- Database Setup ---

# Module-level session factory (initialized on startup)
_session_factory = None


def get_session_factory():
    """Get the session factory.

    Raises:
        RuntimeError: If session factory not initialized (app lifespan not invoked).
    """
    global _session_factory
    if _session_factory is None:
        raise RuntimeError("Session factory not initialized. App lifespan not invoked?")
    return _session_factory


def get_db_session():
    """Dependency that provides a database session."""
    SessionFactory = get_session_factory()
    session = SessionFactory()
    try:
        yield session
    finally:
        session.close()


# --- Lifespan ---


def _cleanup_orphan_temp_files_safe() -> None:
    """Clean up orphan temp files on startup (best-effort).

    Targets every directory the pipeline writes into under the storage root.
    """
    from app.utils.atomic_io import cleanup_orphan_temp_files
    from app.utils.paths import (
        art_dir,
        audio_dir,
        collection_art_dir,
        originals_dir,
        peaks_dir,
    )

    try:
        total_cleaned = 0
        for directory in (audio_dir(), originals_dir(), peaks_dir(), art_dir(), collection_art_dir()):
            total_cleaned += cleanup_orphan_temp_files(directory)
        if total_cleaned > 0:
            logger.info("Startup cleanup: removed %d orphan temp files", total_cleaned)
    except Exception:
        # Best-effort: never crash startup
        logger.warning("Startup cleanup failed (non-fatal)", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler.

    Initializes the database (unless a factory was injected), cleans up
    orphan temp files and runs the in-process scheduler when enabled.
    """
    global _session_factory
    if _session_factory is None:
        _, _session_factory = init_db()

    _cleanup_orphan_temp_files_safe()

    scheduler = None
    if config.SCHEDULER_AUTOSTART and config.QUEUE_BACKEND == "thread":
        scheduler = PipelineScheduler(_session_factory)
        set_scheduler(scheduler)
        scheduler.start()

    yield

    if scheduler is not None:
        scheduler.stop()
        set_scheduler(None)


# --- FastAPI App ---


app = FastAPI(
    title="Music Ingest Pipeline - Ingest API",
    description="Audio upload, processing status and library management.",
    version="0.1.0",
    lifespan=lifespan,
)


# --- Error Handling ---


def error_code_to_status(error_code: str) -> int:
    """Map error codes to HTTP status codes.

    - VALIDATION_FAILED -> 400
    - NOT_FOUND -> 404
    - CONFLICT -> 409
    - anything else -> 500
    """
    if error_code == PipelineErrorCode.VALIDATION_FAILED:
        return 400
    if error_code == PipelineErrorCode.NOT_FOUND:
        return 404
    if error_code == PipelineErrorCode.CONFLICT:
        return 409
    return 500


def make_error_response(error_code: str, error_message: str) -> JSONResponse:
    """Create a JSON error response."""
    return JSONResponse(
        status_code=error_code_to_status(error_code),
        content=ErrorResponse(
            error_code=error_code,
            error_message=error_message,
        ).model_dump(),
    )


def _error_response(e: Exception, session: Session, action: str) -> JSONResponse:
    """Roll back and translate an exception into an error response."""
    session.rollback()
    if isinstance(e, PipelineError):
        return make_error_response(e.error_code, e.message)
    # Log full exception server-side, return generic message to client
    logger.exception("Unexpected error during %s", action)
    return make_error_response("INTERNAL_ERROR", f"An unexpected error occurred during {action}")


ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Validation failed"},
    404: {"model": ErrorResponse, "description": "Not found"},
    409: {"model": ErrorResponse, "description": "Conflict"},
    500: {"model": ErrorResponse, "description": "Internal error"},
}


# --- Upload Endpoints ---


@app.post(
    "/v1/tracks",
    status_code=201,
    response_model=IngestSuccessResponse,
    responses=ERROR_RESPONSES,
    summary="Upload an audio file",
    description="Store the original and create a pending track.",
)
def upload_track(
    session: Annotated[Session, Depends(get_db_session)],
    file: Annotated[UploadFile, File(description="Audio file to ingest")],
):
    """Upload an audio file.

    Zero-byte and non-audio uploads are rejected before a track exists.
    """
    try:
        result = ingest_upload_stream(session=session, stream=file.file, filename=file.filename)
        return IngestSuccessResponse(
            track_id=result.track_id, slug=result.slug, status=result.status
        )
    except Exception as e:
        return _error_response(e, session, "upload")


@app.post(
    "/v1/tracks/{track_id}/reupload",
    response_model=IngestSuccessResponse,
    responses=ERROR_RESPONSES,
    summary="Replace a track's audio",
)
def reupload(
    track_id: str,
    session: Annotated[Session, Depends(get_db_session)],
    file: Annotated[UploadFile, File(description="Replacement audio file")],
):
    """Replace the source audio and reset the track to pending."""
    try:
        result = reupload_track(
            session=session, track_id=track_id, stream=file.file, filename=file.filename
        )
        return IngestSuccessResponse(
            track_id=result.track_id, slug=result.slug, status=result.status
        )
    except Exception as e:
        return _error_response(e, session, "reupload")


# --- Track Endpoints ---


@app.get(
    "/v1/tracks/{track_id}/status",
    response_model=TrackStatusResponse,
    responses=ERROR_RESPONSES,
    summary="Pipeline status of a track",
)
def track_status(track_id: str, session: Annotated[Session, Depends(get_db_session)]):
    track = session.get(Track, track_id)
    if track is None:
        return make_error_response(PipelineErrorCode.NOT_FOUND, f"Track not found: {track_id}")
    return TrackStatusResponse(status=track.status, error_message=track.error_message)


@app.get(
    "/v1/tracks/{track_id}/peaks",
    response_model=list[float],
    responses=ERROR_RESPONSES,
    summary="Normalized waveform peaks",
)
def track_peaks(track_id: str, session: Annotated[Session, Depends(get_db_session)]):
    """Peaks scaled to [-1, 1]; 404 until the track has been processed."""
    track = session.get(Track, track_id)
    if track is None or not track.peaks_path:
        return make_error_response(PipelineErrorCode.NOT_FOUND, "Peaks not found")
    try:
        peaks = load_normalized_peaks(ensure_within_root(track.peaks_path))
    except (OSError, ValueError):
        return make_error_response(PipelineErrorCode.NOT_FOUND, "Peaks not found")
    return JSONResponse(
        content=peaks,
        headers={"Cache-Control": "public, max-age=31536000, immutable"},
    )


@app.post(
    "/v1/tracks/{track_id}/play",
    status_code=204,
    responses=ERROR_RESPONSES,
    summary="Record a play",
)
def play_track(track_id: str, session: Annotated[Session, Depends(get_db_session)]):
    try:
        record_play(session, track_id)
        session.commit()
    except Exception as e:
        return _error_response(e, session, "play")
    return Response(status_code=204)


@app.patch(
    "/v1/tracks/{track_id}",
    response_model=OkResponse,
    responses=ERROR_RESPONSES,
    summary="Edit a track",
)
def edit_track(
    track_id: str,
    request: TrackUpdateRequest,
    session: Annotated[Session, Depends(get_db_session)],
):
    try:
        update_track(session, track_id, title=request.title, category=request.category)
        session.commit()
    except Exception as e:
        return _error_response(e, session, "track update")
    return OkResponse()


@app.post(
    "/v1/tracks/batch",
    response_model=OkResponse,
    responses=ERROR_RESPONSES,
    summary="Bulk action over tracks",
)
def batch_action(
    request: BatchActionRequest,
    session: Annotated[Session, Depends(get_db_session)],
):
    """Apply delete, setCategory or addTags to several tracks."""
    try:
        if request.action == "delete":
            delete_tracks(session, request.track_ids)
        elif request.action == "setCategory":
            set_tracks_category(session, request.track_ids, request.payload or "")
            session.commit()
        else:
            add_tags(session, request.track_ids, request.payload or "")
            session.commit()
    except Exception as e:
        return _error_response(e, session, f"batch {request.action}")
    return OkResponse(affected=len(request.track_ids))


# --- Collection Endpoints ---


@app.post(
    "/v1/collections",
    status_code=201,
    response_model=CollectionCreatedResponse,
    responses=ERROR_RESPONSES,
    summary="Create a collection",
)
def new_collection(
    request: CollectionCreateRequest,
    session: Annotated[Session, Depends(get_db_session)],
):
    try:
        collection = create_collection(
            session,
            title=request.title,
            collection_type=request.type,
            description=request.description,
            artist=request.artist,
        )
        session.commit()
    except Exception as e:
        return _error_response(e, session, "collection create")
    return CollectionCreatedResponse(collection_id=collection.id, slug=collection.slug)


@app.patch(
    "/v1/collections/reorder",
    response_model=OkResponse,
    responses=ERROR_RESPONSES,
    summary="Set collection display order",
)
def collections_reorder(
    request: CollectionReorderRequest,
    session: Annotated[Session, Depends(get_db_session)],
):
    try:
        updated = reorder_collections(
            session, [{"id": p.id, "position": p.position} for p in request.positions]
        )
        session.commit()
    except Exception as e:
        return _error_response(e, session, "collections reorder")
    return OkResponse(affected=updated)


@app.patch(
    "/v1/collections/{collection_id}",
    response_model=CollectionCreatedResponse,
    responses=ERROR_RESPONSES,
    summary="Edit a collection",
)
def edit_collection(
    collection_id: str,
    request: CollectionUpdateRequest,
    session: Annotated[Session, Depends(get_db_session)],
):
    """Update title, description, artist and/or slug; a taken slug is a 409."""
    try:
        collection = update_collection(
            session, collection_id, request.model_dump(exclude_unset=True)
        )
        session.commit()
    except Exception as e:
        return _error_response(e, session, "collection update")
    return CollectionCreatedResponse(collection_id=collection.id, slug=collection.slug)


@app.post(
    "/v1/collections/{collection_id}/art",
    response_model=CollectionArtResponse,
    responses=ERROR_RESPONSES,
    summary="Upload collection cover art",
)
def upload_collection_art(
    collection_id: str,
    session: Annotated[Session, Depends(get_db_session)],
    cover_art: Annotated[UploadFile, File(alias="coverArt", description="Cover image")],
):
    try:
        # One byte past the cap is enough for the size check
        image_bytes = cover_art.file.read(config.MAX_IMAGE_SIZE + 1)
        collection = set_collection_art(session, collection_id, image_bytes)
        session.commit()
    except Exception as e:
        return _error_response(e, session, "collection art")
    return CollectionArtResponse(
        art_path=collection.art_path, dominant_color=collection.dominant_color
    )


@app.get(
    "/v1/collections/{collection_id}/art",
    response_class=FileResponse,
    responses=ERROR_RESPONSES,
    summary="Collection cover art",
)
def collection_art(collection_id: str, session: Annotated[Session, Depends(get_db_session)]):
    collection = session.get(Collection, collection_id)
    if collection is None or not collection.art_path:
        return make_error_response(PipelineErrorCode.NOT_FOUND, "Art not found")
    path = ensure_within_root(collection.art_path)
    if not path.is_file():
        return make_error_response(PipelineErrorCode.NOT_FOUND, "Art not found")
    return FileResponse(
        path,
        media_type="image/jpeg",
        headers={"Cache-Control": "public, max-age=31536000, immutable"},
    )


@app.post(
    "/v1/collections/{collection_id}/tracks",
    status_code=201,
    response_model=CollectionTrackAddedResponse,
    responses=ERROR_RESPONSES,
    summary="Add a track to a collection",
)
def collection_add_track(
    collection_id: str,
    request: CollectionTrackAddRequest,
    session: Annotated[Session, Depends(get_db_session)],
):
    try:
        position = add_track_to_collection(
            session, collection_id, request.track_id, position=request.position
        )
        session.commit()
    except Exception as e:
        return _error_response(e, session, "collection add")
    return CollectionTrackAddedResponse(position=position)


@app.delete(
    "/v1/collections/{collection_id}/tracks/{track_id}",
    response_model=OkResponse,
    responses=ERROR_RESPONSES,
    summary="Remove a track from a collection",
)
def collection_remove_track(
    collection_id: str,
    track_id: str,
    session: Annotated[Session, Depends(get_db_session)],
):
    try:
        remove_track_from_collection(session, collection_id, track_id)
        session.commit()
    except Exception as e:
        return _error_response(e, session, "collection remove")
    return OkResponse()


@app.patch(
    "/v1/collections/{collection_id}/tracks/reorder",
    response_model=OkResponse,
    responses=ERROR_RESPONSES,
    summary="Reorder collection tracks",
)
def collection_reorder(
    collection_id: str,
    request: ReorderRequest,
    session: Annotated[Session, Depends(get_db_session)],
):
    try:
        updated = reorder_collection_tracks(
            session,
            collection_id,
            [{"track_id": p.track_id, "position": p.position} for p in request.positions],
        )
        session.commit()
    except Exception as e:
        return _error_response(e, session, "collection reorder")
    return OkResponse(affected=updated)


@app.get("/health", summary="Health check")
def health_check():
    """Simple health check endpoint."""
    return {"status": "ok"}


# --- For testing: allow overriding session factory ---


def override_session_factory(factory):
    """Override the session factory for testing."""
    global _session_factory
    _session_factory = factory
