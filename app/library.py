"""Music Ingest Pipeline - Library operations.

Admin-facing mutations on tracks and collections. Each one that changes
membership or durations recalculates the affected collection aggregates
before returning.

Functions take an open session. Operations that span more than one
recalculation (delete) commit per step; the rest flush and leave the
commit to the caller.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from app.aggregates import collection_ids_for_tracks, recalc_collection_aggregates, recalc_many
from app.errors import ConflictError, ExternalToolError, NotFoundError, ValidationError
from app.grouping import generate_collection_id, retire_single_collections
from app.models import (
    Collection,
    CollectionTrack,
    CollectionType,
    Tag,
    Track,
    TrackCategory,
    TrackTag,
    utc_now,
)
from app.slugs import insert_with_unique_slug, slugify
from app.utils.atomic_io import remove_file_quietly
from app.utils.paths import (
    audio_processed_path,
    collection_art_path,
    ensure_within_root,
    originals_dir,
    peaks_json_path,
    track_art_path,
)
from services.media.artwork import extract_dominant_color, resize_art

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

# Categories an editor may assign to a single track
EDITABLE_CATEGORIES = frozenset(
    {TrackCategory.TRACK, TrackCategory.SET, TrackCategory.EXPERIMENT, TrackCategory.EXPORT}
)


def _get_track(session: Session, track_id: str) -> Track:
    track = session.get(Track, track_id)
    if track is None:
        raise NotFoundError("Track", track_id)
    return track


def _get_collection(session: Session, collection_id: str) -> Collection:
    collection = session.get(Collection, collection_id)
    if collection is None:
        raise NotFoundError("Collection", collection_id)
    return collection


# --- Collections ---


def create_collection(
    session: Session,
    title: str,
    collection_type: CollectionType | str,
    description: str | None = None,
    artist: str | None = None,
) -> Collection:
    """Create an empty collection with a unique slug derived from its title.

    Note:
        Flushes but does NOT commit.

    Args:
        session: Active database session.
        title: Display title (required, stripped).
        collection_type: album, playlist or single.
        description: Optional description.
        artist: Optional artist; only stored for albums.

    Returns:
        The new Collection.

    Raises:
        ValidationError: If the title is blank or the type is unknown.
        ConflictError: If no unique slug could be allocated.
    """
    title = (title or "").strip()
    if not title:
        raise ValidationError("Title is required")
    try:
        collection_type = CollectionType(collection_type)
    except ValueError as e:
        raise ValidationError("Type must be album, playlist, or single") from e

    collection_id = generate_collection_id()
    collection = Collection(
        id=collection_id,
        title=title,
        description=(description or "").strip() or None,
        type=collection_type,
        artist=((artist or "").strip() or None) if collection_type == CollectionType.ALBUM else None,
    )
    insert_with_unique_slug(session, collection, title, fallback=collection_id)
    logger.info("Created %s collection %s (slug=%s)", collection_type, collection_id, collection.slug)
    return collection


def add_track_to_collection(
    session: Session,
    collection_id: str,
    track_id: str,
    position: int | None = None,
) -> int:
    """Add a track to a collection.

    Adding an existing member is a no-op for the membership row. When the
    target is an album or playlist, any single collection wrapping the
    track is retired.

    Note:
        Flushes but does NOT commit.

    Args:
        session: Active database session.
        collection_id: Target collection.
        track_id: Track to add.
        position: Explicit position; defaults to one past the current maximum.

    Returns:
        The position requested for the track.

    Raises:
        NotFoundError: If the collection or track does not exist.
    """
    collection = _get_collection(session, collection_id)
    _get_track(session, track_id)

    if position is None:
        max_position = session.execute(
            select(func.max(CollectionTrack.position)).where(
                CollectionTrack.collection_id == collection_id
            )
        ).scalar_one_or_none()
        position = -1 if max_position is None else max_position
        position += 1

    session.execute(
        sqlite_insert(CollectionTrack)
        .values(collection_id=collection_id, track_id=track_id, position=position)
        .on_conflict_do_nothing()
    )

    if collection.type != CollectionType.SINGLE:
        retire_single_collections(session, track_id, keep_collection_id=collection_id)

    recalc_collection_aggregates(session, collection_id)
    logger.info("Added track %s to collection %s at position %d", track_id, collection_id, position)
    return position


def remove_track_from_collection(session: Session, collection_id: str, track_id: str) -> None:
    """Remove a track from a collection and refresh its aggregates.

    The track is not re-wrapped in a single collection.

    Note:
        Flushes but does NOT commit.

    Raises:
        NotFoundError: If the collection does not exist.
    """
    _get_collection(session, collection_id)
    session.execute(
        delete(CollectionTrack).where(
            CollectionTrack.collection_id == collection_id,
            CollectionTrack.track_id == track_id,
        )
    )
    recalc_collection_aggregates(session, collection_id)


def reorder_collection_tracks(
    session: Session,
    collection_id: str,
    positions: Iterable[Mapping[str, object]],
) -> int:
    """Apply explicit positions to collection members.

    Args:
        session: Active database session.
        collection_id: The collection.
        positions: Items with "track_id" and "position" keys. Unknown
            track ids are ignored.

    Returns:
        Number of membership rows updated.

    Raises:
        NotFoundError: If the collection does not exist.
    """
    _get_collection(session, collection_id)
    updated = 0
    for item in positions:
        result = session.execute(
            update(CollectionTrack)
            .where(
                CollectionTrack.collection_id == collection_id,
                CollectionTrack.track_id == item["track_id"],
            )
            .values(position=int(item["position"]))
        )
        updated += result.rowcount or 0
    session.flush()
    return updated


def update_collection(
    session: Session,
    collection_id: str,
    changes: Mapping[str, object],
) -> Collection:
    """Edit a collection's title, description, artist and/or slug.

    Only keys present in changes are applied; a None description or artist
    clears it. A new slug is normalized like a generated one and must not
    belong to another collection.

    Note:
        Flushes but does NOT commit.

    Raises:
        NotFoundError: If the collection does not exist.
        ValidationError: If nothing is updated, the title is blank, or the
            slug normalizes to "".
        ConflictError: If the slug is used by another collection.
    """
    collection = _get_collection(session, collection_id)
    editable = {
        key: changes[key] for key in ("title", "description", "artist", "slug") if key in changes
    }
    if not editable:
        raise ValidationError("No fields to update")

    if "title" in editable:
        title = str(editable["title"] or "").strip()
        if not title:
            raise ValidationError("Title cannot be empty")
        collection.title = title

    for field in ("description", "artist"):
        if field in editable:
            setattr(collection, field, str(editable[field] or "").strip() or None)

    if "slug" in editable:
        slug = slugify(str(editable["slug"] or ""))
        if not slug:
            raise ValidationError("Slug must contain at least one alphanumeric character")
        taken = session.execute(
            select(Collection.id).where(Collection.slug == slug, Collection.id != collection_id)
        ).first()
        if taken is not None:
            raise ConflictError("Slug already in use")
        collection.slug = slug

    collection.updated_at = utc_now()
    session.flush()
    logger.info("Updated collection %s (%s)", collection_id, ", ".join(sorted(editable)))
    return collection


def set_collection_art(session: Session, collection_id: str, image_bytes: bytes) -> Collection:
    """Replace a collection's cover with an uploaded image.

    The image is stored as the collection's 500x500 JPEG thumbnail and its
    dominant color is recomputed. A color failure keeps the art.

    Note:
        Flushes but does NOT commit.

    Raises:
        NotFoundError: If the collection does not exist.
        ValidationError: If the upload is empty, too large or not an image.
    """
    collection = _get_collection(session, collection_id)
    if not image_bytes:
        raise ValidationError("Cover art file required")

    destination = ensure_within_root(collection_art_path(collection_id))
    try:
        resize_art(image_bytes, destination)
    except ExternalToolError as e:
        raise ValidationError("Unsupported or invalid image file") from e

    try:
        color = extract_dominant_color(destination)
    except ExternalToolError:
        logger.warning("Color extraction failed for collection %s", collection_id, exc_info=True)
        color = None

    collection.art_path = str(destination)
    collection.dominant_color = color
    collection.updated_at = utc_now()
    session.flush()
    return collection


def reorder_collections(session: Session, positions: Iterable[Mapping[str, object]]) -> int:
    """Set the display order of collections.

    Args:
        session: Active database session.
        positions: Items with "id" and "position" keys. Unknown ids are ignored.

    Returns:
        Number of collections updated.
    """
    updated = 0
    for item in positions:
        result = session.execute(
            update(Collection)
            .where(Collection.id == item["id"])
            .values(sort_order=int(item["position"]))
        )
        updated += result.rowcount or 0
    session.flush()
    return updated


# --- Tracks ---


def _remove_track_files(track_id: str) -> None:
    """Remove every file owned by a track (original, mp3, peaks, art)."""
    originals = originals_dir()
    if originals.is_dir():
        for original in originals.glob(f"{track_id}.*"):
            remove_file_quietly(ensure_within_root(original))
    for path in (audio_processed_path(track_id), peaks_json_path(track_id), track_art_path(track_id)):
        remove_file_quietly(ensure_within_root(path))


def delete_tracks(session: Session, track_ids: Iterable[str]) -> int:
    """Delete tracks, their relations and files, then refresh former parents.

    Two phases: the parent collections are captured while the membership
    rows still exist, then rows and files are removed, then each captured
    collection is recalculated. Singles left empty are kept with
    track_count=0.

    Note:
        Commits the delete and each recalculation.

    Args:
        session: Active database session.
        track_ids: Tracks to delete; unknown ids are ignored.

    Returns:
        Number of track rows deleted.
    """
    track_ids = list(dict.fromkeys(track_ids))
    if not track_ids:
        return 0

    parent_ids = collection_ids_for_tracks(session, track_ids)

    session.execute(delete(TrackTag).where(TrackTag.track_id.in_(track_ids)))
    session.execute(delete(CollectionTrack).where(CollectionTrack.track_id.in_(track_ids)))
    result = session.execute(delete(Track).where(Track.id.in_(track_ids)))
    session.commit()

    for track_id in track_ids:
        _remove_track_files(track_id)

    recalc_many(session, parent_ids)

    deleted = result.rowcount or 0
    logger.info("Deleted %d track(s); recalculated %d collection(s)", deleted, len(parent_ids))
    return deleted


def set_tracks_category(
    session: Session, track_ids: Iterable[str], category: TrackCategory | str
) -> int:
    """Set the category on several tracks.

    Raises:
        ValidationError: If the category is unknown.
    """
    try:
        category = TrackCategory(category)
    except ValueError as e:
        raise ValidationError("Invalid category") from e

    track_ids = list(track_ids)
    result = session.execute(
        update(Track)
        .where(Track.id.in_(track_ids))
        .values(category=category, updated_at=utc_now())
    )
    session.flush()
    return result.rowcount or 0


def parse_tag_names(raw: str | Iterable[str]) -> list[str]:
    """Split comma-separated tags, lower-case them and drop blanks and repeats."""
    parts = raw.split(",") if isinstance(raw, str) else list(raw)
    names = (part.strip().lower() for part in parts)
    return list(dict.fromkeys(name for name in names if name))


def add_tags(session: Session, track_ids: Iterable[str], names: str | Iterable[str]) -> list[str]:
    """Attach tags to several tracks, creating missing tags.

    Existing links are left as they are.

    Returns:
        The normalized tag names applied.

    Raises:
        ValidationError: If no tag names remain after normalization.
    """
    tag_names = parse_tag_names(names)
    if not tag_names:
        raise ValidationError("No tags provided")

    track_ids = list(track_ids)
    existing_ids = set(session.execute(select(Track.id).where(Track.id.in_(track_ids))).scalars())

    for name in tag_names:
        session.execute(sqlite_insert(Tag).values(name=name).on_conflict_do_nothing())
        tag_id = session.execute(select(Tag.id).where(Tag.name == name)).scalar_one()
        for track_id in track_ids:
            if track_id not in existing_ids:
                continue
            session.execute(
                sqlite_insert(TrackTag)
                .values(track_id=track_id, tag_id=tag_id)
                .on_conflict_do_nothing()
            )
    session.flush()
    return tag_names


def record_play(session: Session, track_id: str) -> None:
    """Increment a track's play counter.

    Raises:
        NotFoundError: If the track does not exist.
    """
    _get_track(session, track_id)
    session.execute(
        update(Track).where(Track.id == track_id).values(play_count=Track.play_count + 1)
    )
    session.flush()


def update_track(
    session: Session,
    track_id: str,
    title: str | None = None,
    category: TrackCategory | str | None = None,
) -> Track:
    """Edit a track's title and/or category.

    Duration is not editable, so collection aggregates are unaffected.

    Raises:
        NotFoundError: If the track does not exist.
        ValidationError: If nothing is updated, the title is blank, or the
            category is not editable.
    """
    track = _get_track(session, track_id)
    if title is None and category is None:
        raise ValidationError("No fields to update")

    if title is not None:
        title = title.strip()
        if not title:
            raise ValidationError("Title cannot be empty")
        track.title = title

    if category is not None:
        try:
            category = TrackCategory(category)
        except ValueError as e:
            raise ValidationError("Invalid category") from e
        if category not in EDITABLE_CATEGORIES:
            raise ValidationError("Invalid category")
        track.category = category

    track.updated_at = utc_now()
    session.flush()
    return track
