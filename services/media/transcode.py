"""Music Ingest Pipeline - Transcoder (ffmpeg).

Produces a constant-bitrate 320 kbps MP3, carrying over embedded tags
(ID3v2.3) from the source.
"""

from __future__ import annotations

from pathlib import Path

from app.config import TRANSCODE_BITRATE
from services.media.runner import check_tool_result, run_tool


def transcode_to_mp3(
    input_path: str | Path,
    output_path: str | Path,
    timeout: float | None = None,
) -> None:
    """Transcode an audio file to CBR MP3.

    Args:
        input_path: Source audio file.
        output_path: Destination .mp3 (overwritten if present).
        timeout: Optional tool timeout in seconds.

    Raises:
        ExternalToolError: On non-zero exit, missing ffmpeg, or timeout.
    """
    cmd = [
        "ffmpeg",
        "-i",
        str(input_path),
        "-codec:a",
        "libmp3lame",
        "-b:a",
        TRANSCODE_BITRATE,
        "-write_id3v2",
        "1",
        "-id3v2_version",
        "3",
        "-map_metadata",
        "0",
        "-y",
        str(output_path),
    ]
    result = run_tool(cmd, timeout=timeout)
    check_tool_result(result, "ffmpeg", "Audio transcoding failed")
