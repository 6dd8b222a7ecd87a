"""Shared pytest fixtures for Music Ingest Pipeline tests.

This module contains common fixtures used across multiple test files,
reducing duplication and improving test maintainability.
"""

import io
import json
import os
import tempfile
import wave
from datetime import timedelta
from pathlib import Path

# Keep module-level defaults (huey queue file, default DB) out of the repo
os.environ.setdefault("MUSIC_DATA_DIR", tempfile.mkdtemp(prefix="music-ingest-tests-"))

import pytest  # noqa: E402
from fastapi.testclient import TestClient
from PIL import Image

from app import config
from app.db import init_db
from app.models import Track, TrackStatus, utc_now
from app.scheduler import set_scheduler
from app.utils.paths import audio_original_path
from services.ingest_api.main import app, get_db_session, override_session_factory
from services.media import MediaToolkit
from services.media.probe import ProbeResult
from services.media.tags import ExtractedMetadata


@pytest.fixture
def temp_db():
    """Create a temporary database for testing.

    Creates an isolated SQLite database in a temporary directory.
    The database is cleaned up after the test completes.

    Yields:
        tuple: (db_path, engine, SessionFactory)
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        engine, SessionFactory = init_db(db_path)
        override_session_factory(SessionFactory)
        yield db_path, engine, SessionFactory
        override_session_factory(None)
        engine.dispose()


@pytest.fixture
def session_factory(temp_db):
    """Just the SessionFactory of temp_db."""
    _, _, SessionFactory = temp_db
    return SessionFactory


@pytest.fixture
def data_root(tmp_path, monkeypatch):
    """Point the storage root at a temporary directory.

    Yields:
        Path: The resolved storage root.
    """
    root = (tmp_path / "data").resolve()
    root.mkdir()
    monkeypatch.setattr(config, "DATA_DIR", root)
    return root


@pytest.fixture
def client(temp_db, data_root, monkeypatch):
    """Create a FastAPI test client with temp database and storage root.

    The in-process scheduler is not started; uploads stay pending.

    Yields:
        tuple: (test_client, SessionFactory)
    """
    db_path, engine, SessionFactory = temp_db
    monkeypatch.setattr(config, "SCHEDULER_AUTOSTART", False)
    monkeypatch.setattr(config, "QUEUE_BACKEND", "thread")
    set_scheduler(None)

    # Override the dependency
    def get_test_session():
        session = SessionFactory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db_session] = get_test_session

    with TestClient(app) as client:
        yield client, SessionFactory

    # Clean up dependency overrides
    app.dependency_overrides.clear()


def _wav_bytes(seconds: float = 1.0, framerate: int = 22050) -> bytes:
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(framerate)
        wf.writeframes(b"\x00" * int(framerate * seconds) * 2)
    return buffer.getvalue()


@pytest.fixture
def sample_wav_bytes():
    """A minimal valid WAV file (1 second of silence, mono, 22050 Hz)."""
    return _wav_bytes()


@pytest.fixture
def cover_png_bytes():
    """A square PNG cover image, solid dark red."""
    buffer = io.BytesIO()
    Image.new("RGB", (600, 600), (200, 20, 20)).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def make_track(data_root):
    """Factory that inserts a Track with an original file on disk.

    Returns:
        Callable(session, track_id, **fields) -> Track (flushed, not committed).
    """
    counter = {"n": 0}

    def _make(session, track_id, **fields):
        counter["n"] += 1
        original = audio_original_path(track_id, "wav")
        original.parent.mkdir(parents=True, exist_ok=True)
        original.write_bytes(_wav_bytes(0.1))
        track = Track(
            id=track_id,
            slug=fields.pop("slug", track_id),
            title=fields.pop("title", track_id),
            audio_path=fields.pop("audio_path", str(original)),
            status=fields.pop("status", TrackStatus.PENDING),
            created_at=fields.pop("created_at", utc_now() + timedelta(seconds=counter["n"])),
            **fields,
        )
        session.add(track)
        session.flush()
        return track

    return _make


class FakeMedia:
    """Stand-in media tools that write plausible artifacts.

    Set fail[step] to an exception to make that step raise. Steps:
    probe, transcode, generate_peaks, extract_metadata, resize_art,
    extract_color.
    """

    def __init__(self):
        self.duration = 180.0
        self.valid = True
        self.probe_error = "Corrupt or invalid audio file"
        self.title = None
        self.cover_art = None
        self.color = "#336699"
        self.fail = {}
        self.calls = []

    def _step(self, name, *args):
        self.calls.append((name, args))
        if name in self.fail:
            raise self.fail[name]

    def probe(self, path):
        self._step("probe", path)
        if not self.valid:
            return ProbeResult(valid=False, error=self.probe_error)
        return ProbeResult(valid=True, duration=self.duration, bitrate=1411200)

    def transcode(self, source, destination):
        self._step("transcode", source, destination)
        Path(destination).write_bytes(b"ID3\x03\x00fake-mp3")

    def generate_peaks(self, audio, destination):
        self._step("generate_peaks", audio, destination)
        Path(destination).write_text(json.dumps({"bits": 8, "data": [0, 127, -127, 64]}))

    def extract_metadata(self, path):
        self._step("extract_metadata", path)
        return ExtractedMetadata(title=self.title, cover_art=self.cover_art)

    def resize_art(self, image_bytes, destination):
        self._step("resize_art", destination)
        Path(destination).parent.mkdir(parents=True, exist_ok=True)
        Path(destination).write_bytes(image_bytes)

    def extract_color(self, path):
        self._step("extract_color", path)
        return self.color

    def toolkit(self) -> MediaToolkit:
        return MediaToolkit(
            probe=self.probe,
            transcode=self.transcode,
            generate_peaks=self.generate_peaks,
            extract_metadata=self.extract_metadata,
            resize_art=self.resize_art,
            extract_color=self.extract_color,
        )

    def step_names(self):
        return [name for name, _ in self.calls]


@pytest.fixture
def fake_media():
    """FakeMedia instance; use fake_media.toolkit() for the processor."""
    return FakeMedia()
