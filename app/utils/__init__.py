"""Music Ingest Pipeline - Utility modules."""

from app.utils.atomic_io import (
    atomic_copy_file,
    atomic_stream_to_file,
    atomic_write_bytes,
    remove_file_quietly,
)
from app.utils.audio_meta import guess_format_from_extension, sniff_audio_format
from app.utils.paths import (
    audio_original_path,
    audio_processed_path,
    collection_art_path,
    ensure_within_root,
    peaks_json_path,
    track_art_path,
)

__all__ = [
    # atomic_io
    "atomic_write_bytes",
    "atomic_copy_file",
    "atomic_stream_to_file",
    "remove_file_quietly",
    # audio_meta
    "sniff_audio_format",
    "guess_format_from_extension",
    # paths
    "audio_original_path",
    "audio_processed_path",
    "peaks_json_path",
    "track_art_path",
    "collection_art_path",
    "ensure_within_root",
]
