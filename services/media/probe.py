"""Music Ingest Pipeline - Audio prober (ffprobe).

Inspects container-level duration and bitrate without decoding the stream.
A corrupt or unreadable file is a normal outcome (valid=False), not an
exception.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path

from services.media.runner import run_tool

logger = logging.getLogger(__name__)


@dataclass
class ProbeResult:
    """Result of probing a media file."""

    valid: bool
    duration: float | None = None
    bitrate: int | None = None
    error: str | None = None


def _parse_float(value) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _parse_int(value) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def probe_audio(path: str | Path, timeout: float | None = None) -> ProbeResult:
    """Probe an audio file with ffprobe.

    Args:
        path: Path to the media file.
        timeout: Optional tool timeout in seconds.

    Returns:
        ProbeResult. duration/bitrate are None when ffprobe does not report them.

    Raises:
        ExternalToolError: If ffprobe is missing or times out.
    """
    cmd = [
        "ffprobe",
        "-v",
        "error",
        "-show_entries",
        "format=duration,bit_rate",
        "-of",
        "json",
        str(path),
    ]
    result = run_tool(cmd, timeout=timeout)

    if result.returncode != 0:
        logger.info("ffprobe rejected %s (exit %d)", path, result.returncode)
        return ProbeResult(valid=False, error="Corrupt or invalid audio file")

    try:
        parsed = json.loads(result.stdout.decode("utf-8", errors="replace") or "{}")
    except json.JSONDecodeError:
        return ProbeResult(valid=False, error="Failed to parse ffprobe output")

    fmt = parsed.get("format") if isinstance(parsed, dict) else None
    if not isinstance(fmt, dict):
        fmt = {}

    return ProbeResult(
        valid=True,
        duration=_parse_float(fmt.get("duration")),
        bitrate=_parse_int(fmt.get("bit_rate")),
    )
