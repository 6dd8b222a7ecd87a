"""Music Ingest Pipeline - Ingest service logic.

Core upload logic:
- Reject empty and non-audio uploads before any row exists
- Atomic persistence of the original under audio/originals/
- Track record creation (status=pending) with slug collision retry
- Best-effort wake-up of the processing queue

No processing happens here; the scheduler picks up pending tracks.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from app.aggregates import recalc_many
from app.config import MAX_AUDIO_SIZE
from app.errors import NotFoundError, ValidationError
from app.grouping import track_membership_ids
from app.models import Track, TrackStatus, utc_now
from app.slugs import insert_with_unique_slug
from app.utils.atomic_io import SizeLimitExceeded, atomic_stream_to_file, remove_file_quietly
from app.utils.audio_meta import SNIFF_BYTES, guess_format_from_extension, sniff_audio_format
from app.utils.paths import (
    audio_original_path,
    audio_processed_path,
    ensure_within_root,
    originals_dir,
    peaks_json_path,
    track_art_path,
)

if TYPE_CHECKING:
    from typing import BinaryIO

    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


# --- Result Types ---


@dataclass
class IngestResult:
    """Result of a successful upload or reupload."""

    track_id: str
    slug: str
    status: TrackStatus


# --- Ingest Service ---


def generate_track_id() -> str:
    """Generate a unique track ID.

    Uses UUID4 for uniqueness. Format: uuid4 hex (32 chars).
    """
    return uuid.uuid4().hex


def title_from_filename(filename: str) -> str:
    """Display title for an upload: the filename without its extension."""
    name = Path(filename).name
    stem = Path(name).stem
    return stem or name


def _read_and_validate_head(stream: BinaryIO, filename: str | None) -> tuple[bytes, str]:
    """Read the leading bytes and identify the audio container.

    Returns:
        Tuple of (head bytes, file extension for the stored original).

    Raises:
        ValidationError: If the filename is missing, the stream is empty,
            or the content is not a supported audio format.
    """
    if not filename or not Path(filename).name:
        raise ValidationError("Audio file required")

    head = stream.read(SNIFF_BYTES)
    if not head:
        raise ValidationError("Audio file required")

    detected = sniff_audio_format(head)
    if detected is None:
        raise ValidationError("Unsupported or invalid audio format")

    ext = guess_format_from_extension(filename) or detected
    return head, ext


def _write_original(stream: BinaryIO, head: bytes, dest_path: Path) -> int:
    """Stream the upload to its canonical location, enforcing MAX_AUDIO_SIZE."""
    try:
        return atomic_stream_to_file(stream, dest_path, prefix=head, max_bytes=MAX_AUDIO_SIZE)
    except SizeLimitExceeded as e:
        raise ValidationError(f"File exceeds maximum size of {MAX_AUDIO_SIZE} bytes") from e


def ingest_upload_stream(
    session: Session,
    stream: BinaryIO,
    filename: str | None,
) -> IngestResult:
    """Ingest an uploaded audio file from a stream.

    Steps:
    1. Validate: filename present, non-empty, supported magic bytes
    2. Atomically write the original to audio/originals/<id><ext>
    3. Insert the pending Track (slug from the filename, retried on collision)
    4. Commit, then request processing (best-effort)

    Args:
        session: Active database session.
        stream: File-like object with read() method.
        filename: Original filename from upload.

    Returns:
        IngestResult with track_id, slug and status.

    Raises:
        ValidationError: For empty, oversized or non-audio uploads. No row
            is created and no file is left behind.
        ConflictError: If no unique slug could be allocated.

    Note:
        This function commits the session on success.
    """
    head, ext = _read_and_validate_head(stream, filename)

    track_id = generate_track_id()
    dest_path = ensure_within_root(audio_original_path(track_id, ext))
    file_size = _write_original(stream, head, dest_path)

    title = title_from_filename(filename)
    track = Track(
        id=track_id,
        title=title,
        original_filename=Path(filename).name,
        file_size=file_size,
        audio_path=str(dest_path),
        status=TrackStatus.PENDING,
    )

    try:
        insert_with_unique_slug(session, track, title, fallback=track_id)
        session.commit()
    except Exception:
        session.rollback()
        # Cleanup orphan file on DB failure
        remove_file_quietly(dest_path)
        raise

    logger.info("Ingested track %s (slug=%s, %d bytes)", track_id, track.slug, file_size)

    _enqueue_processing_safe(track_id)

    return IngestResult(track_id=track_id, slug=track.slug, status=TrackStatus.PENDING)


def reupload_track(
    session: Session,
    track_id: str,
    stream: BinaryIO,
    filename: str | None,
) -> IngestResult:
    """Replace a track's source audio and send it back through the pipeline.

    Works from any status. Derived fields are cleared and stale derived
    files removed; slug, title, category, play count, created_at and
    collection memberships are kept. Parent collection aggregates are
    recalculated right away.

    Args:
        session: Active database session.
        track_id: The track to replace.
        stream: File-like object with read() method.
        filename: Filename of the new upload.

    Returns:
        IngestResult with status pending.

    Raises:
        NotFoundError: If the track does not exist.
        ValidationError: For empty, oversized or non-audio uploads.

    Note:
        This function commits the session on success.
    """
    track = session.get(Track, track_id)
    if track is None:
        raise NotFoundError("Track", track_id)

    head, ext = _read_and_validate_head(stream, filename)

    dest_path = ensure_within_root(audio_original_path(track_id, ext))
    stale_originals = [p for p in originals_dir().glob(f"{track_id}.*") if p != dest_path]
    file_size = _write_original(stream, head, dest_path)
    parent_ids = track_membership_ids(session, track_id)

    track.status = TrackStatus.PENDING
    track.audio_path = str(dest_path)
    track.original_filename = Path(filename).name
    track.file_size = file_size
    track.duration = None
    track.bitrate = None
    track.peaks_path = None
    track.art_path = None
    track.dominant_color = None
    track.error_message = None
    track.updated_at = utc_now()
    session.commit()

    for stale in (
        *stale_originals,
        audio_processed_path(track_id),
        peaks_json_path(track_id),
        track_art_path(track_id),
    ):
        remove_file_quietly(ensure_within_root(stale))

    # Parent totals drop the cleared duration
    recalc_many(session, parent_ids)

    logger.info("Reuploaded track %s (%d bytes); reset to pending", track_id, file_size)

    _enqueue_processing_safe(track_id)

    return IngestResult(track_id=track_id, slug=track.slug, status=TrackStatus.PENDING)


# --- Internal Helpers ---


def _enqueue_processing_safe(track_id: str) -> None:
    """Request processing, silently handling errors.

    This is non-blocking and best-effort. If the queue backend is not
    available the track stays pending and is found by the next poll.

    Args:
        track_id: The track that became pending.
    """
    try:
        from app.scheduler import enqueue_processing

        enqueue_processing(track_id)
    except Exception:
        # Best-effort: log but do not fail ingest
        logger.warning(
            "Failed to enqueue processing for track %s (will be picked up by the next poll)",
            track_id,
            exc_info=True,
        )
