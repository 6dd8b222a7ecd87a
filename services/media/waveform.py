"""Music Ingest Pipeline - Waveform peaks (audiowaveform).

Generator: audiowaveform writes a JSON document whose "data" array holds
8-bit peak samples at 20 pixels per second.
Consumer: load_normalized_peaks() scales samples by 1/127 for rendering.
"""

from __future__ import annotations

import json
from pathlib import Path

import numpy as np

from app.config import PEAK_MAX_MAGNITUDE, WAVEFORM_BITS, WAVEFORM_PIXELS_PER_SECOND
from services.media.runner import check_tool_result, run_tool


def generate_peaks(
    audio_path: str | Path,
    output_path: str | Path,
    timeout: float | None = None,
) -> None:
    """Generate peaks JSON for an audio file.

    Args:
        audio_path: Audio file to analyse (the transcoded MP3).
        output_path: Destination .json.
        timeout: Optional tool timeout in seconds.

    Raises:
        ExternalToolError: On non-zero exit, missing tool, or timeout.
    """
    cmd = [
        "audiowaveform",
        "-i",
        str(audio_path),
        "-o",
        str(output_path),
        "--pixels-per-second",
        str(WAVEFORM_PIXELS_PER_SECOND),
        "--bits",
        str(WAVEFORM_BITS),
    ]
    result = run_tool(cmd, timeout=timeout)
    check_tool_result(result, "audiowaveform", "Waveform generation failed")


def load_normalized_peaks(peaks_path: str | Path) -> list[float]:
    """Load a peaks document and normalize samples by the 8-bit maximum.

    Args:
        peaks_path: Path to the audiowaveform JSON.

    Returns:
        Samples divided by 127.

    Raises:
        OSError: If the file cannot be read.
        ValueError: If the document is not JSON or has no "data" array.
    """
    with open(peaks_path, encoding="utf-8") as f:
        raw = json.load(f)

    data = raw.get("data") if isinstance(raw, dict) else None
    if not isinstance(data, list):
        raise ValueError(f"Peaks document has no data array: {peaks_path}")

    samples = np.asarray(data, dtype=np.float64)
    return (samples / PEAK_MAX_MAGNITUDE).tolist()
