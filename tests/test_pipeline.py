"""Tests for the track processor (app.pipeline)."""

import io

import pytest
from sqlalchemy import select

from app.errors import ExternalToolError
from app.models import Collection, CollectionTrack, CollectionType, Track, TrackStatus
from app.pipeline import process_track
from app.utils.paths import (
    audio_original_path,
    audio_processed_path,
    collection_art_path,
    peaks_json_path,
    track_art_path,
)
from services.ingest_api.service import reupload_track
from services.media.artwork import extract_dominant_color, resize_art


@pytest.fixture
def pending_track(session_factory, make_track):
    """A pending track 't1' with an original on disk."""
    session = session_factory()
    try:
        make_track(session, "t1", slug="my-upload", title="my upload")
        session.commit()
    finally:
        session.close()
    return "t1"


def _load(session_factory, track_id):
    session = session_factory()
    try:
        return session.get(Track, track_id)
    finally:
        session.close()


def _collections(session_factory):
    session = session_factory()
    try:
        return session.execute(select(Collection)).scalars().all()
    finally:
        session.close()


class TestSuccessfulRun:
    """End-to-end runs with stand-in media tools."""

    def test_ready_with_derived_fields(self, session_factory, pending_track, fake_media):
        result = process_track(session_factory, pending_track, toolkit=fake_media.toolkit())

        assert result["status"] == "ready"
        track = _load(session_factory, pending_track)
        assert track.status == TrackStatus.READY
        assert track.audio_path == str(audio_processed_path(pending_track))
        assert track.peaks_path == str(peaks_json_path(pending_track))
        assert track.duration == 180.0
        assert track.bitrate == 320000
        assert track.error_message is None
        assert audio_processed_path(pending_track).exists()
        assert peaks_json_path(pending_track).exists()

    def test_steps_run_in_order(self, session_factory, pending_track, fake_media):
        process_track(session_factory, pending_track, toolkit=fake_media.toolkit())

        assert fake_media.step_names() == [
            "probe",
            "transcode",
            "generate_peaks",
            "extract_metadata",
        ]

    def test_peaks_generated_from_transcoded_audio(self, session_factory, pending_track, fake_media):
        process_track(session_factory, pending_track, toolkit=fake_media.toolkit())

        _, (audio, _) = fake_media.calls[2]
        assert audio == audio_processed_path(pending_track)

    def test_metadata_read_from_original(self, session_factory, pending_track, fake_media):
        original = _load(session_factory, pending_track).audio_path

        process_track(session_factory, pending_track, toolkit=fake_media.toolkit())

        _, (path,) = fake_media.calls[3]
        assert str(path) == original

    def test_marks_processing_before_probe(self, session_factory, pending_track, fake_media):
        seen = []
        original_probe = fake_media.probe

        def probe(path):
            seen.append(_load(session_factory, pending_track).status)
            return original_probe(path)

        fake_media.probe = probe
        process_track(session_factory, pending_track, toolkit=fake_media.toolkit())

        assert seen == [TrackStatus.PROCESSING]

    def test_extracted_title_preferred(self, session_factory, pending_track, fake_media):
        fake_media.title = "Proper Title"

        process_track(session_factory, pending_track, toolkit=fake_media.toolkit())

        assert _load(session_factory, pending_track).title == "Proper Title"

    def test_existing_title_kept_without_tag(self, session_factory, pending_track, fake_media):
        process_track(session_factory, pending_track, toolkit=fake_media.toolkit())

        assert _load(session_factory, pending_track).title == "my upload"

    def test_ungrouped_track_wrapped_in_single(self, session_factory, pending_track, fake_media):
        process_track(session_factory, pending_track, toolkit=fake_media.toolkit())

        (single,) = _collections(session_factory)
        assert single.type == CollectionType.SINGLE
        assert single.slug == "my-upload"
        assert single.track_count == 1
        assert single.total_duration == 180.0

    def test_grouped_track_refreshes_parents(
        self, session_factory, pending_track, fake_media, make_track
    ):
        session = session_factory()
        try:
            session.add(Collection(id="c1", slug="album", title="A", type=CollectionType.ALBUM))
            make_track(session, "t2", duration=20.0, status=TrackStatus.READY)
            session.add(CollectionTrack(collection_id="c1", track_id="t1", position=0))
            session.add(CollectionTrack(collection_id="c1", track_id="t2", position=1))
            session.commit()
        finally:
            session.close()

        result = process_track(session_factory, pending_track, toolkit=fake_media.toolkit())

        assert result["collections"] == ["c1"]
        (album,) = _collections(session_factory)
        assert album.track_count == 2
        assert album.total_duration == 200.0

    def test_three_minute_upload_with_cover(
        self, session_factory, pending_track, fake_media, cover_png_bytes
    ):
        """Real Pillow art processing on top of stand-in audio tools."""
        fake_media.cover_art = cover_png_bytes
        fake_media.resize_art = resize_art
        fake_media.extract_color = extract_dominant_color

        process_track(session_factory, pending_track, toolkit=fake_media.toolkit())

        track = _load(session_factory, pending_track)
        assert track.status == TrackStatus.READY
        assert track.duration == pytest.approx(180, abs=1)
        assert track.bitrate == 320000
        assert track.art_path == str(track_art_path(pending_track))
        assert track.dominant_color is not None
        assert track.dominant_color.startswith("#")

        (single,) = _collections(session_factory)
        assert single.type == CollectionType.SINGLE
        assert single.track_count == 1
        assert single.total_duration == pytest.approx(180, abs=1)
        assert single.art_path is not None
        assert single.dominant_color == track.dominant_color


class TestArtSubStep:
    """Cover art failures never fail the track."""

    def test_art_written_with_color(self, session_factory, pending_track, fake_media):
        fake_media.cover_art = b"\x89PNG fake"

        process_track(session_factory, pending_track, toolkit=fake_media.toolkit())

        track = _load(session_factory, pending_track)
        assert track.art_path == str(track_art_path(pending_track))
        assert track.dominant_color == "#336699"

    def test_no_cover_skips_art(self, session_factory, pending_track, fake_media):
        process_track(session_factory, pending_track, toolkit=fake_media.toolkit())

        assert "resize_art" not in fake_media.step_names()
        assert _load(session_factory, pending_track).art_path is None

    def test_resize_failure_is_non_fatal(self, session_factory, pending_track, fake_media):
        fake_media.cover_art = b"garbage"
        fake_media.fail["resize_art"] = ExternalToolError("pillow", "cannot identify image")

        process_track(session_factory, pending_track, toolkit=fake_media.toolkit())

        track = _load(session_factory, pending_track)
        assert track.status == TrackStatus.READY
        assert track.art_path is None
        assert track.dominant_color is None
        assert "extract_color" not in fake_media.step_names()

    def test_color_failure_keeps_art(self, session_factory, pending_track, fake_media):
        fake_media.cover_art = b"\x89PNG fake"
        fake_media.fail["extract_color"] = RuntimeError("numpy exploded")

        process_track(session_factory, pending_track, toolkit=fake_media.toolkit())

        track = _load(session_factory, pending_track)
        assert track.status == TrackStatus.READY
        assert track.art_path == str(track_art_path(pending_track))
        assert track.dominant_color is None


class TestReprocessing:
    """A track sent through the pipeline again after a reupload."""

    def _reupload(self, session_factory, track_id, content):
        session = session_factory()
        try:
            reupload_track(session, track_id, io.BytesIO(content), "replacement.wav")
        finally:
            session.close()

    def test_single_takes_new_art_and_color(
        self, session_factory, pending_track, fake_media, sample_wav_bytes
    ):
        fake_media.cover_art = b"\x89PNG first"
        process_track(session_factory, pending_track, toolkit=fake_media.toolkit())
        (single,) = _collections(session_factory)
        assert single.dominant_color == "#336699"

        self._reupload(session_factory, pending_track, sample_wav_bytes)
        fake_media.cover_art = b"\x89PNG second"
        fake_media.color = "#aabbcc"
        process_track(session_factory, pending_track, toolkit=fake_media.toolkit())

        (single,) = _collections(session_factory)
        assert single.dominant_color == "#aabbcc"
        assert collection_art_path(single.id).read_bytes() == b"\x89PNG second"

    def test_single_art_removed_when_cover_is_gone(
        self, session_factory, pending_track, fake_media, sample_wav_bytes
    ):
        fake_media.cover_art = b"\x89PNG first"
        process_track(session_factory, pending_track, toolkit=fake_media.toolkit())
        (single,) = _collections(session_factory)
        assert collection_art_path(single.id).exists()

        self._reupload(session_factory, pending_track, sample_wav_bytes)
        fake_media.cover_art = None
        process_track(session_factory, pending_track, toolkit=fake_media.toolkit())

        (single,) = _collections(session_factory)
        assert single.art_path is None
        assert single.dominant_color is None
        assert not collection_art_path(single.id).exists()

    def test_reupload_during_run_discards_result(
        self, session_factory, pending_track, fake_media, sample_wav_bytes
    ):
        original_transcode = fake_media.transcode

        def transcode_then_reupload(source, destination):
            self._reupload(session_factory, pending_track, sample_wav_bytes)
            original_transcode(source, destination)

        fake_media.transcode = transcode_then_reupload

        result = process_track(session_factory, pending_track, toolkit=fake_media.toolkit())

        assert result == {"status": "abandoned", "track_id": pending_track}
        track = _load(session_factory, pending_track)
        assert track.status == TrackStatus.PENDING
        assert track.audio_path == str(audio_original_path(pending_track, "wav"))
        assert track.duration is None
        assert track.peaks_path is None
        assert _collections(session_factory) == []

    def test_failure_after_reupload_is_not_recorded(
        self, session_factory, pending_track, fake_media, sample_wav_bytes
    ):
        def reupload_then_fail(source, destination):
            self._reupload(session_factory, pending_track, sample_wav_bytes)
            raise ExternalToolError("ffmpeg", "Audio transcoding failed")

        fake_media.transcode = reupload_then_fail

        result = process_track(session_factory, pending_track, toolkit=fake_media.toolkit())

        assert result["status"] == "failed"
        track = _load(session_factory, pending_track)
        assert track.status == TrackStatus.PENDING
        assert track.error_message is None

    def test_fresh_run_after_abandoned_one(
        self, session_factory, pending_track, fake_media, sample_wav_bytes
    ):
        original_transcode = fake_media.transcode

        def transcode_then_reupload(source, destination):
            fake_media.transcode = original_transcode
            self._reupload(session_factory, pending_track, sample_wav_bytes)
            original_transcode(source, destination)

        fake_media.transcode = transcode_then_reupload
        process_track(session_factory, pending_track, toolkit=fake_media.toolkit())

        result = process_track(session_factory, pending_track, toolkit=fake_media.toolkit())

        assert result["status"] == "ready"
        assert _load(session_factory, pending_track).status == TrackStatus.READY
        (single,) = _collections(session_factory)
        assert single.track_count == 1


class TestFailures:
    """Fatal step failures end in status=failed with a message."""

    def test_invalid_probe(self, session_factory, pending_track, fake_media):
        fake_media.valid = False

        result = process_track(session_factory, pending_track, toolkit=fake_media.toolkit())

        assert result["status"] == "failed"
        track = _load(session_factory, pending_track)
        assert track.status == TrackStatus.FAILED
        assert track.error_message == "Audio probe failed: Corrupt or invalid audio file"
        assert fake_media.step_names() == ["probe"]

    def test_transcode_failure(self, session_factory, pending_track, fake_media):
        fake_media.fail["transcode"] = ExternalToolError(
            "ffmpeg", "Audio transcoding failed", returncode=1
        )

        process_track(session_factory, pending_track, toolkit=fake_media.toolkit())

        track = _load(session_factory, pending_track)
        assert track.status == TrackStatus.FAILED
        assert track.error_message == "Audio transcoding failed"
        assert "generate_peaks" not in fake_media.step_names()
        assert _collections(session_factory) == []

    def test_unexpected_error_is_recorded_not_raised(
        self, session_factory, pending_track, fake_media
    ):
        fake_media.fail["generate_peaks"] = RuntimeError("boom")

        result = process_track(session_factory, pending_track, toolkit=fake_media.toolkit())

        assert result == {"status": "failed", "track_id": "t1", "error": "boom"}
        track = _load(session_factory, pending_track)
        assert track.status == TrackStatus.FAILED
        assert track.error_message == "boom"
        # Derived fields are not half-written
        assert track.peaks_path is None
        assert track.duration is None

    def test_metadata_failure_is_fatal(self, session_factory, pending_track, fake_media):
        fake_media.fail["extract_metadata"] = ExternalToolError(
            "mutagen", "Metadata extraction failed: bad header"
        )

        process_track(session_factory, pending_track, toolkit=fake_media.toolkit())

        assert _load(session_factory, pending_track).status == TrackStatus.FAILED

    def test_source_outside_root(self, session_factory, make_track, fake_media):
        session = session_factory()
        try:
            make_track(session, "evil", audio_path="/etc/passwd")
            session.commit()
        finally:
            session.close()

        process_track(session_factory, "evil", toolkit=fake_media.toolkit())

        track = _load(session_factory, "evil")
        assert track.status == TrackStatus.FAILED
        assert track.error_message == "Invalid file path"
        assert fake_media.calls == []

    def test_missing_track(self, session_factory, fake_media):
        result = process_track(session_factory, "nope", toolkit=fake_media.toolkit())

        assert result["status"] == "failed"
        assert result["error"] == "Track not found: nope"
        assert fake_media.calls == []

    def test_failed_track_can_be_reprocessed(self, session_factory, pending_track, fake_media):
        fake_media.valid = False
        process_track(session_factory, pending_track, toolkit=fake_media.toolkit())

        fake_media.valid = True
        process_track(session_factory, pending_track, toolkit=fake_media.toolkit())

        track = _load(session_factory, pending_track)
        assert track.status == TrackStatus.READY
        assert track.error_message is None
