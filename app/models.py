"""Music Ingest Pipeline - SQLAlchemy ORM models.

Database tables:
1. tracks
2. collections
3. collection_tracks (ordered membership)
4. tags
5. track_tags
"""

from datetime import UTC, datetime
from enum import StrEnum

from sqlalchemy import (
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


class TrackStatus(StrEnum):
    """Pipeline state of a track."""

    PENDING = "pending"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"


class TrackCategory(StrEnum):
    """Editorial category of a track."""

    TRACK = "track"
    SET = "set"
    EXPERIMENT = "experiment"
    EXPORT = "export"
    ALBUM = "album"
    PLAYLIST = "playlist"


class CollectionType(StrEnum):
    """Kind of collection. SINGLE collections are created by auto-grouping."""

    ALBUM = "album"
    PLAYLIST = "playlist"
    SINGLE = "single"


def _enum_column(enum_cls: type[StrEnum], name: str) -> Enum:
    # Stored as VARCHAR with the enum *values* ("pending"), not member names
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        validate_strings=True,
        length=16,
        values_callable=lambda members: [m.value for m in members],
    )


class Track(Base):
    """One ingested audio asset and its derived artifacts."""

    __tablename__ = "tracks"

    # Opaque identity (uuid4 hex), also used in every artifact file name
    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    slug: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Probed values (null until the pipeline has run)
    duration: Mapped[float | None] = mapped_column(Float, nullable=True)
    bitrate: Mapped[int | None] = mapped_column(Integer, nullable=True)

    file_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    original_filename: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Current playable file: the original upload until processing succeeds
    audio_path: Mapped[str] = mapped_column(Text, nullable=False)
    peaks_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    art_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    dominant_color: Mapped[str | None] = mapped_column(String(7), nullable=True)

    category: Mapped[TrackCategory] = mapped_column(
        _enum_column(TrackCategory, "track_category"),
        nullable=False,
        default=TrackCategory.TRACK,
    )
    status: Mapped[TrackStatus] = mapped_column(
        _enum_column(TrackStatus, "track_status"),
        nullable=False,
        default=TrackStatus.PENDING,
        index=True,
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    play_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Timestamps (created_at drives FIFO order of pending tracks)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (Index("ix_tracks_status_created", "status", "created_at"),)


class Collection(Base):
    """Ordered grouping of tracks (album, playlist, or auto-created single)."""

    __tablename__ = "collections"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    slug: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    type: Mapped[CollectionType] = mapped_column(
        _enum_column(CollectionType, "collection_type"), nullable=False
    )
    artist: Mapped[str | None] = mapped_column(Text, nullable=True)
    art_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    dominant_color: Mapped[str | None] = mapped_column(String(7), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Denormalized aggregates, maintained by app.aggregates
    track_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_duration: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )


class CollectionTrack(Base):
    """Membership of a track in a collection.

    position orders tracks within a collection. Uniqueness of position is
    maintained by callers, not enforced here.
    """

    __tablename__ = "collection_tracks"

    collection_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("collections.id", ondelete="CASCADE"), primary_key=True
    )
    track_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("tracks.id", ondelete="CASCADE"), primary_key=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (Index("ix_collection_tracks_track", "track_id"),)


class Tag(Base):
    """Free-form lowercase tag."""

    __tablename__ = "tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)


class TrackTag(Base):
    """Many-to-many link between tracks and tags."""

    __tablename__ = "track_tags"

    track_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("tracks.id", ondelete="CASCADE"), primary_key=True
    )
    tag_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True
    )
