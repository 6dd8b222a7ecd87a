"""Music Ingest Pipeline - Track processor.

Runs one end-to-end pipeline for one track:

    probe -> transcode -> waveform -> metadata/art -> persist -> fan-out

State transitions: pending -> processing -> {ready | failed}.

Failure policy:
- Any error in probe/transcode/waveform/metadata/persist ends the run with
  status=failed and a human-readable error_message. The processor never
  raises to its caller (the scheduler), so one bad file cannot stop the queue.
- The art sub-step (resize + color) is non-fatal: on error it is logged and
  the track becomes ready without art. If the resize succeeded but color
  extraction failed, the art is kept and dominant_color stays unset.
- Fan-out (aggregate recalculation and single-collection wrapping) runs
  after the ready state is committed.
- Ready and failed are only written while the track is still in
  processing. A run whose track was reset meanwhile (reupload) publishes
  nothing and reports "abandoned"; the reset track is picked up again.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import update

from app.aggregates import recalc_collection_aggregates
from app.config import TARGET_BITRATE
from app.errors import NotFoundError, PipelineError, ValidationError, error_message
from app.grouping import (
    ensure_single_collection,
    refresh_single_collection,
    track_membership_ids,
)
from app.models import Collection, CollectionType, Track, TrackStatus, utc_now
from app.utils.paths import (
    audio_processed_path,
    ensure_output_dirs,
    ensure_within_root,
    peaks_json_path,
    track_art_path,
)

if TYPE_CHECKING:
    from sqlalchemy.orm import Session, sessionmaker

    from services.media import MediaToolkit

logger = logging.getLogger(__name__)

# Result status of a run whose track was reset (reupload) before it finished
ABANDONED = "abandoned"


def process_track(
    session_factory: sessionmaker,
    track_id: str,
    toolkit: MediaToolkit | None = None,
) -> dict:
    """Process one track through the full pipeline.

    Args:
        session_factory: Factory for database sessions.
        track_id: The track to process.
        toolkit: Media tool adapters (defaults to the real tools).

    Returns:
        Dict describing the outcome (for logging/debugging).
    """
    if toolkit is None:
        from services.media import default_toolkit

        toolkit = default_toolkit()

    session = session_factory()
    try:
        return _process_track_impl(session, track_id, toolkit)
    except Exception as e:
        session.rollback()
        message = error_message(e)
        if isinstance(e, PipelineError):
            logger.warning("Processing failed for track %s: %s", track_id, message)
        else:
            logger.exception("Processing failed for track %s", track_id)

        # Record the failure in a new session
        session2 = session_factory()
        try:
            _mark_failed(session2, track_id, message)
            session2.commit()
        except Exception:
            session2.rollback()
            logger.exception("Could not record failure for track %s", track_id)
        finally:
            session2.close()
        return {"status": TrackStatus.FAILED.value, "track_id": track_id, "error": message}
    finally:
        session.close()


def _process_track_impl(session: Session, track_id: str, toolkit: MediaToolkit) -> dict:
    """Run the pipeline steps. Commits the processing and ready states."""
    track = session.get(Track, track_id)
    if track is None:
        raise NotFoundError("Track", track_id)

    track.status = TrackStatus.PROCESSING
    track.updated_at = utc_now()
    session.commit()
    logger.info("Processing track %s", track_id)

    source = ensure_within_root(track.audio_path)

    probe = toolkit.probe(source)
    if not probe.valid:
        raise ValidationError(f"Audio probe failed: {probe.error}")

    ensure_output_dirs()
    mp3_path = ensure_within_root(audio_processed_path(track_id))
    peaks_path = ensure_within_root(peaks_json_path(track_id))

    toolkit.transcode(source, mp3_path)
    toolkit.generate_peaks(mp3_path, peaks_path)

    metadata = toolkit.extract_metadata(source)

    art_path = None
    dominant_color = None
    if metadata.cover_art:
        art_path, dominant_color = _process_art(track_id, metadata.cover_art, toolkit)

    values = {
        "status": TrackStatus.READY,
        "audio_path": str(mp3_path),
        "peaks_path": str(peaks_path),
        "duration": probe.duration,
        "bitrate": TARGET_BITRATE,
        "title": metadata.title or track.title,
        "error_message": None,
        "updated_at": utc_now(),
    }
    if art_path is not None:
        values["art_path"] = art_path
    if dominant_color is not None:
        values["dominant_color"] = dominant_color

    # Only a run that still owns the track may publish its result
    result = session.execute(
        update(Track)
        .where(Track.id == track_id, Track.status == TrackStatus.PROCESSING)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    session.commit()
    if not result.rowcount:
        logger.warning("Track %s changed while processing; discarding this run", track_id)
        return {"status": ABANDONED, "track_id": track_id}
    session.refresh(track)

    logger.info(
        "Track %s processed successfully (duration=%s, art=%s)",
        track_id,
        track.duration,
        art_path is not None,
    )

    collection_ids = _fan_out(session, track)
    return {
        "status": TrackStatus.READY.value,
        "track_id": track_id,
        "collections": collection_ids,
    }


def _process_art(
    track_id: str, cover_art: bytes, toolkit: MediaToolkit
) -> tuple[str | None, str | None]:
    """Resize cover art and extract its color. Never raises.

    Returns:
        Tuple of (art_path, dominant_color); either may be None.
    """
    try:
        destination = ensure_within_root(track_art_path(track_id))
        toolkit.resize_art(cover_art, destination)
    except Exception:
        logger.warning("Cover art extraction failed for track %s", track_id, exc_info=True)
        return None, None

    try:
        color = toolkit.extract_color(destination)
    except Exception:
        logger.warning("Color extraction failed for track %s", track_id, exc_info=True)
        return str(destination), None
    return str(destination), color


def _fan_out(session: Session, track: Track) -> list[str]:
    """Refresh parent aggregates, or wrap an ungrouped track in a single.

    A single collection parent also takes over the track's new art and
    color. Each parent is committed on its own.

    Returns:
        Ids of the collections touched.
    """
    collection_ids = track_membership_ids(session, track.id)
    for collection_id in collection_ids:
        collection = session.get(Collection, collection_id)
        if collection is not None and collection.type == CollectionType.SINGLE:
            refresh_single_collection(session, collection, track)
        recalc_collection_aggregates(session, collection_id)
        session.commit()

    if collection_ids:
        return collection_ids

    collection = ensure_single_collection(session, track)
    session.commit()
    return [collection.id] if collection is not None else []


def _mark_failed(session: Session, track_id: str, message: str) -> bool:
    """Set status=failed with an error message.

    Only a track still in processing is marked; a track that was reset in
    the meantime (or no longer exists) is left alone.

    Returns:
        True if the failure was recorded.
    """
    result = session.execute(
        update(Track)
        .where(Track.id == track_id, Track.status == TrackStatus.PROCESSING)
        .values(status=TrackStatus.FAILED, error_message=message, updated_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        logger.info("Failure for track %s not recorded: track is no longer processing", track_id)
        return False
    return True


if __name__ == "__main__":
    import sys

    from app.db import init_db

    logging.basicConfig(level=logging.INFO)

    if len(sys.argv) != 2:
        print(f"Usage: {sys.argv[0]} <track_id>")
        sys.exit(1)

    _, SessionFactory = init_db()
    result = process_track(SessionFactory, sys.argv[1])
    print(result)
    sys.exit(0 if result["status"] == "ready" else 1)
