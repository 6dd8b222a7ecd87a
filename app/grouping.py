"""Music Ingest Pipeline - Auto-grouping of ungrouped tracks.

Every processed track gets a collection context. A track that finishes the
pipeline with no memberships is wrapped in a one-track "single" collection.
Once the track is added to an album or playlist its single collection is
retired, together with the single's copied cover art.
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING

from sqlalchemy import delete, select

from app.models import Collection, CollectionTrack, CollectionType, Track
from app.slugs import insert_with_unique_slug
from app.utils.atomic_io import atomic_copy_file, remove_file_quietly
from app.utils.paths import collection_art_path, ensure_within_root

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


def generate_collection_id() -> str:
    """Generate a unique collection ID (uuid4 hex)."""
    return uuid.uuid4().hex


def track_membership_ids(session: Session, track_id: str) -> list[str]:
    """Ids of all collections the track belongs to."""
    stmt = select(CollectionTrack.collection_id).where(CollectionTrack.track_id == track_id)
    return list(session.execute(stmt).scalars())


def ensure_single_collection(session: Session, track: Track) -> Collection | None:
    """Wrap an ungrouped track in a new single collection.

    Does nothing when the track already belongs to any collection.

    The single collection mirrors the track: slug allocated from the track's
    slug, same title, track_count=1, total_duration=track duration, and a
    collection-scoped copy of the track's cover art if it has one. The
    track is linked at position 0.

    Note:
        Flushes but does NOT commit.

    Args:
        session: Active database session.
        track: A track that has just been processed successfully.

    Returns:
        The created Collection, or None if the track was already grouped.
    """
    if track_membership_ids(session, track.id):
        return None

    collection_id = generate_collection_id()
    collection = Collection(
        id=collection_id,
        title=track.title,
        type=CollectionType.SINGLE,
        track_count=1,
        total_duration=float(track.duration or 0),
        dominant_color=track.dominant_color,
    )
    insert_with_unique_slug(session, collection, track.slug, fallback=track.id)

    if track.art_path:
        collection.art_path = _copy_track_art(track, collection_id)

    session.add(CollectionTrack(collection_id=collection_id, track_id=track.id, position=0))
    session.flush()

    logger.info(
        "Created single collection %s (slug=%s) for track %s",
        collection_id,
        collection.slug,
        track.id,
    )
    return collection


def refresh_single_collection(session: Session, collection: Collection, track: Track) -> None:
    """Re-mirror a single collection's art and color from its track.

    Used after a track is processed again (reupload). Without track art the
    single's copied art is removed.

    Note:
        Flushes but does NOT commit.
    """
    if track.art_path:
        collection.art_path = _copy_track_art(track, collection.id)
    else:
        remove_file_quietly(ensure_within_root(collection_art_path(collection.id)))
        collection.art_path = None
    collection.dominant_color = track.dominant_color
    session.flush()
    logger.debug("Refreshed single collection %s from track %s", collection.id, track.id)


def _copy_track_art(track: Track, collection_id: str) -> str | None:
    """Copy track art to the collection art path; a missing source file is skipped."""
    source = ensure_within_root(track.art_path)
    destination = ensure_within_root(collection_art_path(collection_id))
    try:
        atomic_copy_file(source, destination)
    except FileNotFoundError:
        logger.warning("Art file missing for track %s: %s", track.id, source)
        return None
    return str(destination)


def retire_single_collections(
    session: Session,
    track_id: str,
    keep_collection_id: str | None = None,
) -> list[str]:
    """Delete the single collections that wrap a track.

    Called when the track joins a non-single collection. Idempotent: if the
    track has no single collection this is a no-op.

    Note:
        Flushes but does NOT commit. Art files are removed immediately.

    Args:
        session: Active database session.
        track_id: The track that joined a real collection.
        keep_collection_id: Collection never to delete (the join target).

    Returns:
        Ids of the deleted collections.
    """
    stmt = (
        select(Collection.id)
        .join(CollectionTrack, CollectionTrack.collection_id == Collection.id)
        .where(
            CollectionTrack.track_id == track_id,
            Collection.type == CollectionType.SINGLE,
        )
    )
    if keep_collection_id is not None:
        stmt = stmt.where(Collection.id != keep_collection_id)
    single_ids = list(session.execute(stmt).scalars())

    for single_id in single_ids:
        session.execute(delete(CollectionTrack).where(CollectionTrack.collection_id == single_id))
        session.execute(delete(Collection).where(Collection.id == single_id))
        remove_file_quietly(ensure_within_root(collection_art_path(single_id)))
        logger.info("Retired single collection %s for track %s", single_id, track_id)

    session.flush()
    return single_ids
