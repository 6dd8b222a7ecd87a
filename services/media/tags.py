"""Music Ingest Pipeline - Tag and cover art extraction (mutagen).

Reads title/artist/album and embedded cover art from the original upload.
Supports ID3 (MP3, WAV with id3 chunk), Vorbis comments and FLAC picture
blocks, and MP4 atoms. A file mutagen does not recognize yields empty
metadata, not an error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from mutagen import File as MutagenFile
from mutagen import MutagenError

from app.errors import ExternalToolError

logger = logging.getLogger(__name__)

# Picture type 3 = front cover (ID3v2 APIC / FLAC METADATA_BLOCK_PICTURE)
FRONT_COVER = 3

TITLE_KEYS = ("TIT2", "title", "\xa9nam")
ARTIST_KEYS = ("TPE1", "artist", "\xa9ART")
ALBUM_KEYS = ("TALB", "album", "\xa9alb")


@dataclass
class ExtractedMetadata:
    """Tags recovered from an audio file."""

    title: str | None = None
    artist: str | None = None
    album: str | None = None
    cover_art: bytes | None = None


def _first_text(tags, keys: tuple[str, ...]) -> str | None:
    for key in keys:
        try:
            value = tags.get(key)
        except (KeyError, ValueError):
            value = None
        if value is None:
            continue
        # ID3 frames carry their values on .text
        text = getattr(value, "text", value)
        if isinstance(text, (list, tuple)):
            text = text[0] if text else None
        if text is None:
            continue
        cleaned = str(text).strip()
        if cleaned:
            return cleaned
    return None


def _pick_picture(pictures) -> bytes | None:
    """Front cover if present, else the first picture."""
    if not pictures:
        return None
    for picture in pictures:
        if getattr(picture, "type", None) == FRONT_COVER:
            return bytes(picture.data)
    return bytes(pictures[0].data)


def _extract_cover(audio) -> bytes | None:
    # FLAC picture blocks
    pictures = getattr(audio, "pictures", None)
    if pictures:
        return _pick_picture(pictures)

    tags = audio.tags
    if tags is None:
        return None

    # ID3 APIC frames
    if hasattr(tags, "getall"):
        cover = _pick_picture(tags.getall("APIC"))
        if cover:
            return cover

    # MP4 covr atom
    try:
        covers = tags.get("covr")
    except (KeyError, ValueError):
        covers = None
    if covers:
        return bytes(covers[0])

    return None


def extract_metadata(path: str | Path) -> ExtractedMetadata:
    """Extract tags and embedded cover art from an audio file.

    Args:
        path: Path to the original upload.

    Returns:
        ExtractedMetadata; every field is None when absent.

    Raises:
        ExternalToolError: If mutagen fails to parse a recognized file.
    """
    try:
        audio = MutagenFile(str(path))
    except MutagenError as e:
        raise ExternalToolError("mutagen", f"Metadata extraction failed: {e}") from e

    if audio is None:
        logger.debug("No tag reader for %s", path)
        return ExtractedMetadata()

    tags = audio.tags
    metadata = ExtractedMetadata(cover_art=_extract_cover(audio))
    if tags is not None:
        metadata.title = _first_text(tags, TITLE_KEYS)
        metadata.artist = _first_text(tags, ARTIST_KEYS)
        metadata.album = _first_text(tags, ALBUM_KEYS)
    return metadata
