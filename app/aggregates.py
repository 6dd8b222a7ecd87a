"""Music Ingest Pipeline - Collection aggregate recalculation.

Collection.track_count and Collection.total_duration are denormalized.
They are recomputed eagerly from the current membership after every
membership or duration change:

    track_count    = count(*)                     over collection_tracks JOIN tracks
    total_duration = coalesce(sum(duration), 0)   over the same join

All joined tracks count, whatever their pipeline status.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from sqlalchemy import func, select, update

from app.models import Collection, CollectionTrack, Track, utc_now

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


def recalc_collection_aggregates(session: Session, collection_id: str) -> tuple[int, float]:
    """Recompute and store a collection's track count and total duration.

    Note:
        Flushes but does NOT commit.

    Args:
        session: Active database session.
        collection_id: The collection to recalculate.

    Returns:
        Tuple of (track_count, total_duration) written to the row.
    """
    stmt = (
        select(func.count(), func.coalesce(func.sum(Track.duration), 0))
        .select_from(CollectionTrack)
        .join(Track, CollectionTrack.track_id == Track.id)
        .where(CollectionTrack.collection_id == collection_id)
    )
    count, total = session.execute(stmt).one()
    track_count = int(count or 0)
    total_duration = float(total or 0)

    session.execute(
        update(Collection)
        .where(Collection.id == collection_id)
        .values(track_count=track_count, total_duration=total_duration, updated_at=utc_now())
    )
    session.flush()

    logger.debug(
        "Recalculated collection %s: track_count=%d total_duration=%.2f",
        collection_id,
        track_count,
        total_duration,
    )
    return track_count, total_duration


def recalc_many(session: Session, collection_ids: Iterable[str]) -> None:
    """Recalculate several collections, each as its own commit."""
    for collection_id in dict.fromkeys(collection_ids):
        recalc_collection_aggregates(session, collection_id)
        session.commit()


def collection_ids_for_tracks(session: Session, track_ids: Iterable[str]) -> list[str]:
    """Distinct collection ids that currently hold any of the given tracks."""
    track_ids = list(track_ids)
    if not track_ids:
        return []
    stmt = (
        select(CollectionTrack.collection_id)
        .where(CollectionTrack.track_id.in_(track_ids))
        .distinct()
    )
    return list(session.execute(stmt).scalars())
