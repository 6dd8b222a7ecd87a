"""Music Ingest Pipeline - Audio format sniffing.

Magic-byte detection of supported upload containers, stdlib only.
Used to reject non-audio uploads before a Track row is created.
"""

from pathlib import Path

# Enough leading bytes to recognise every supported container
SNIFF_BYTES = 64

SUPPORTED_FORMATS = ("mp3", "flac", "wav", "ogg", "aac")


def sniff_audio_format(head: bytes) -> str | None:
    """Identify the audio container from the leading bytes of a file.

    Args:
        head: The first bytes of the file (SNIFF_BYTES is sufficient).

    Returns:
        One of SUPPORTED_FORMATS, or None if not a supported audio file.
    """
    if len(head) < 4:
        return None

    if head.startswith(b"ID3"):
        return "mp3"
    if head.startswith(b"fLaC"):
        return "flac"
    if head.startswith(b"OggS"):
        return "ogg"
    if len(head) >= 12 and head[:4] == b"RIFF" and head[8:12] == b"WAVE":
        return "wav"

    # Frame-sync based formats: 11 set bits
    if head[0] == 0xFF and (head[1] & 0xE0) == 0xE0:
        layer = (head[1] >> 1) & 0x03
        if layer == 0:
            return "aac"  # ADTS, MPEG-4 or MPEG-2
        return "mp3"

    return None


def guess_format_from_extension(filename: str) -> str | None:
    """Guess format from filename extension.

    Args:
        filename: Filename or path string.

    Returns:
        Lowercase alphanumeric extension without dot, or None.
    """
    ext = Path(filename).suffix.lower().lstrip(".")
    if ext and ext.isalnum():
        return ext
    return None


__all__ = [
    "SNIFF_BYTES",
    "SUPPORTED_FORMATS",
    "sniff_audio_format",
    "guess_format_from_extension",
]
