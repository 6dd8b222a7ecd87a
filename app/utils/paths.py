"""Music Ingest Pipeline - Canonical path utilities.

Returns canonical Paths under the storage root. Does NOT create directories
except through ensure_output_dirs().

Layout:
    <root>/audio/<id>.mp3                 processed audio
    <root>/audio/originals/<id><ext>      upload before processing
    <root>/peaks/<id>.json                waveform peaks
    <root>/art/<id>.jpg                   track cover thumbnail
    <root>/art/collections/<id>.jpg       collection cover thumbnail
"""

from pathlib import Path

from app import config
from app.errors import ValidationError


def audio_dir() -> Path:
    return config.DATA_DIR / "audio"


def originals_dir() -> Path:
    return audio_dir() / "originals"


def peaks_dir() -> Path:
    return config.DATA_DIR / "peaks"


def art_dir() -> Path:
    return config.DATA_DIR / "art"


def collection_art_dir() -> Path:
    return art_dir() / "collections"


def audio_original_path(track_id: str, ext: str) -> Path:
    """Get canonical path for the uploaded original.

    Args:
        track_id: Track identity.
        ext: File extension, with or without the leading dot.

    Returns:
        Path: <root>/audio/originals/{track_id}{ext}
    """
    ext = ext.lstrip(".")
    suffix = f".{ext}" if ext else ""
    return originals_dir() / f"{track_id}{suffix}"


def audio_processed_path(track_id: str) -> Path:
    """Path: <root>/audio/{track_id}.mp3"""
    return audio_dir() / f"{track_id}.mp3"


def peaks_json_path(track_id: str) -> Path:
    """Path: <root>/peaks/{track_id}.json"""
    return peaks_dir() / f"{track_id}.json"


def track_art_path(track_id: str) -> Path:
    """Path: <root>/art/{track_id}.jpg"""
    return art_dir() / f"{track_id}.jpg"


def collection_art_path(collection_id: str) -> Path:
    """Path: <root>/art/collections/{collection_id}.jpg"""
    return collection_art_dir() / f"{collection_id}.jpg"


def ensure_within_root(path: str | Path) -> Path:
    """Resolve a path and verify it lies inside the storage root.

    Guards every file operation against path traversal
    (e.g. <root>/audio/../../etc/passwd).

    Args:
        path: Candidate path.

    Returns:
        The resolved absolute path.

    Raises:
        ValidationError: If the path resolves outside the storage root.
    """
    root = Path(config.DATA_DIR).resolve()
    resolved = Path(path).resolve()
    if resolved == root or not resolved.is_relative_to(root):
        raise ValidationError("Invalid file path")
    return resolved


def ensure_output_dirs() -> None:
    """Create the processed-audio, peaks and art directories (idempotent)."""
    for directory in (audio_dir(), peaks_dir(), art_dir()):
        directory.mkdir(parents=True, exist_ok=True)
