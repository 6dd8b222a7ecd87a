"""Tests for auto-grouping of ungrouped tracks into single collections."""

from sqlalchemy import select

from app.grouping import (
    ensure_single_collection,
    refresh_single_collection,
    retire_single_collections,
    track_membership_ids,
)
from app.models import Collection, CollectionTrack, CollectionType, TrackStatus
from app.utils.paths import collection_art_path, track_art_path


def _ready_track(session, make_track, track_id, **fields):
    fields.setdefault("duration", 180.0)
    return make_track(session, track_id, status=TrackStatus.READY, **fields)


class TestEnsureSingleCollection:
    """Wrapping an ungrouped track."""

    def test_creates_single(self, session_factory, make_track):
        session = session_factory()
        try:
            track = _ready_track(session, make_track, "t1", slug="my-song", title="My Song")

            collection = ensure_single_collection(session, track)
            session.commit()

            assert collection.type == CollectionType.SINGLE
            assert collection.slug == "my-song"
            assert collection.title == "My Song"
            assert collection.track_count == 1
            assert collection.total_duration == 180.0
            assert collection.art_path is None

            link = session.execute(select(CollectionTrack)).scalar_one()
            assert (link.collection_id, link.track_id, link.position) == (collection.id, "t1", 0)
        finally:
            session.close()

    def test_noop_when_already_grouped(self, session_factory, make_track):
        session = session_factory()
        try:
            track = _ready_track(session, make_track, "t1")
            session.add(Collection(id="c1", slug="album", title="A", type=CollectionType.ALBUM))
            session.add(CollectionTrack(collection_id="c1", track_id="t1", position=0))
            session.flush()

            assert ensure_single_collection(session, track) is None
            assert session.execute(select(Collection)).scalars().all()[0].id == "c1"
        finally:
            session.close()

    def test_slug_collision_with_existing_collection(self, session_factory, make_track):
        session = session_factory()
        try:
            session.add(Collection(id="c1", slug="my-song", title="X", type=CollectionType.ALBUM))
            track = _ready_track(session, make_track, "t1", slug="my-song")

            collection = ensure_single_collection(session, track)

            assert collection.slug == "my-song-2"
        finally:
            session.close()

    def test_copies_art_and_color(self, session_factory, make_track, data_root):
        art = track_art_path("t1")
        art.parent.mkdir(parents=True)
        art.write_bytes(b"jpeg")

        session = session_factory()
        try:
            track = _ready_track(
                session, make_track, "t1", art_path=str(art), dominant_color="#aabbcc"
            )

            collection = ensure_single_collection(session, track)

            copied = collection_art_path(collection.id)
            assert collection.art_path == str(copied)
            assert copied.read_bytes() == b"jpeg"
            assert art.exists()
            assert collection.dominant_color == "#aabbcc"
        finally:
            session.close()

    def test_missing_art_file_is_skipped(self, session_factory, make_track, data_root):
        session = session_factory()
        try:
            track = _ready_track(session, make_track, "t1", art_path=str(track_art_path("t1")))

            collection = ensure_single_collection(session, track)

            assert collection is not None
            assert collection.art_path is None
        finally:
            session.close()


class TestRefreshSingleCollection:
    """Re-mirroring a single after its track is processed again."""

    def test_takes_new_art_and_color(self, session_factory, make_track, data_root):
        art = track_art_path("t1")
        art.parent.mkdir(parents=True)
        art.write_bytes(b"old")

        session = session_factory()
        try:
            track = _ready_track(
                session, make_track, "t1", art_path=str(art), dominant_color="#111111"
            )
            collection = ensure_single_collection(session, track)

            art.write_bytes(b"new")
            track.dominant_color = "#222222"
            refresh_single_collection(session, collection, track)

            assert collection.art_path == str(collection_art_path(collection.id))
            assert collection_art_path(collection.id).read_bytes() == b"new"
            assert collection.dominant_color == "#222222"
        finally:
            session.close()

    def test_drops_art_when_track_has_none(self, session_factory, make_track, data_root):
        art = track_art_path("t1")
        art.parent.mkdir(parents=True)
        art.write_bytes(b"old")

        session = session_factory()
        try:
            track = _ready_track(
                session, make_track, "t1", art_path=str(art), dominant_color="#111111"
            )
            collection = ensure_single_collection(session, track)
            assert collection_art_path(collection.id).exists()

            track.art_path = None
            track.dominant_color = None
            refresh_single_collection(session, collection, track)

            assert collection.art_path is None
            assert collection.dominant_color is None
            assert not collection_art_path(collection.id).exists()
        finally:
            session.close()


class TestRetireSingleCollections:
    """Removing the single wrapper when a track joins a real collection."""

    def test_deletes_single_and_art(self, session_factory, make_track, data_root):
        art = track_art_path("t1")
        art.parent.mkdir(parents=True)
        art.write_bytes(b"jpeg")

        session = session_factory()
        try:
            track = _ready_track(session, make_track, "t1", art_path=str(art))
            single_id = ensure_single_collection(session, track).id
            session.commit()
            single_art = collection_art_path(single_id)
            assert single_art.exists()

            retired = retire_single_collections(session, "t1")
            session.commit()

            assert retired == [single_id]
            assert session.get(Collection, single_id) is None
            assert track_membership_ids(session, "t1") == []
            assert not single_art.exists()
            # The track's own art is untouched
            assert art.exists()
        finally:
            session.close()

    def test_idempotent(self, session_factory, make_track):
        session = session_factory()
        try:
            _ready_track(session, make_track, "t1")
            assert retire_single_collections(session, "t1") == []
            assert retire_single_collections(session, "t1") == []
        finally:
            session.close()

    def test_keeps_target_and_non_singles(self, session_factory, make_track):
        session = session_factory()
        try:
            _ready_track(session, make_track, "t1")
            session.add(Collection(id="album", slug="a", title="A", type=CollectionType.ALBUM))
            session.add(Collection(id="keep", slug="k", title="K", type=CollectionType.SINGLE))
            session.add(CollectionTrack(collection_id="album", track_id="t1", position=0))
            session.add(CollectionTrack(collection_id="keep", track_id="t1", position=0))
            session.flush()

            assert retire_single_collections(session, "t1", keep_collection_id="keep") == []
            assert sorted(track_membership_ids(session, "t1")) == ["album", "keep"]
        finally:
            session.close()

    def test_other_tracks_singles_untouched(self, session_factory, make_track):
        session = session_factory()
        try:
            t1 = _ready_track(session, make_track, "t1", slug="one")
            t2 = _ready_track(session, make_track, "t2", slug="two")
            ensure_single_collection(session, t1)
            other = ensure_single_collection(session, t2)

            retire_single_collections(session, "t1")

            assert session.get(Collection, other.id) is not None
        finally:
            session.close()
