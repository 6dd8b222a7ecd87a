"""Music Ingest Pipeline - Media tool adapters.

Each adapter is a one-shot, blocking call with explicit success/failure.
MediaToolkit bundles them so the track processor can be driven by fakes.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from functools import partial

from app import config
from services.media.artwork import extract_dominant_color, resize_art
from services.media.probe import ProbeResult, probe_audio
from services.media.tags import ExtractedMetadata, extract_metadata
from services.media.transcode import transcode_to_mp3
from services.media.waveform import generate_peaks, load_normalized_peaks


@dataclass(frozen=True)
class MediaToolkit:
    """The six media operations used by the pipeline."""

    probe: Callable[..., ProbeResult]
    transcode: Callable[..., None]
    generate_peaks: Callable[..., None]
    extract_metadata: Callable[..., ExtractedMetadata]
    resize_art: Callable[..., None]
    extract_color: Callable[..., str]


def default_toolkit() -> MediaToolkit:
    """Toolkit backed by ffprobe/ffmpeg/audiowaveform, mutagen and Pillow."""
    timeout = config.TOOL_TIMEOUT_SECONDS
    return MediaToolkit(
        probe=partial(probe_audio, timeout=timeout),
        transcode=partial(transcode_to_mp3, timeout=timeout),
        generate_peaks=partial(generate_peaks, timeout=timeout),
        extract_metadata=extract_metadata,
        resize_art=resize_art,
        extract_color=extract_dominant_color,
    )


__all__ = [
    "MediaToolkit",
    "default_toolkit",
    "ProbeResult",
    "ExtractedMetadata",
    "probe_audio",
    "transcode_to_mp3",
    "generate_peaks",
    "load_normalized_peaks",
    "extract_metadata",
    "resize_art",
    "extract_dominant_color",
]
