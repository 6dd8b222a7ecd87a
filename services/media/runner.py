"""Music Ingest Pipeline - External tool invocation.

One blocking helper for ffprobe, ffmpeg and audiowaveform. The call runs
to completion or failure; a timeout only applies when one is configured.
"""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Sequence

from app.errors import ExternalToolError

logger = logging.getLogger(__name__)

# Max stderr characters kept on errors and in logs
STDERR_TAIL_CHARS = 2000


def _decode_tail(data: bytes | None) -> str:
    if not data:
        return ""
    return data.decode("utf-8", errors="replace")[-STDERR_TAIL_CHARS:]


def run_tool(
    cmd: Sequence[str],
    timeout: float | None = None,
) -> subprocess.CompletedProcess:
    """Run an external tool and capture its output.

    A non-zero exit is NOT raised here; callers decide whether it is a
    normal outcome (ffprobe on corrupt input) or a failure.

    Args:
        cmd: Command line, tool name first.
        timeout: Optional timeout in seconds (None = wait indefinitely).

    Returns:
        CompletedProcess with bytes stdout/stderr.

    Raises:
        ExternalToolError: If the tool is not installed, cannot be
            started, or exceeds the timeout.
    """
    tool = cmd[0]
    logger.debug("Running %s", " ".join(str(part) for part in cmd))
    try:
        return subprocess.run(
            [str(part) for part in cmd],
            capture_output=True,
            check=False,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        logger.error("%s timed out after %s seconds", tool, timeout)
        raise ExternalToolError(
            tool, f"{tool} timed out after {timeout} seconds", stderr=_decode_tail(e.stderr)
        ) from e
    except FileNotFoundError as e:
        logger.error("%s not found in PATH", tool)
        raise ExternalToolError(tool, f"{tool} not found in PATH") from e
    except OSError as e:
        logger.error("%s execution failed: %s", tool, e)
        raise ExternalToolError(tool, f"{tool} execution failed: {e}") from e


def check_tool_result(
    result: subprocess.CompletedProcess,
    tool: str,
    message: str,
) -> None:
    """Raise ExternalToolError for a non-zero exit.

    Args:
        result: Completed tool process.
        tool: Tool name for the error.
        message: Human-readable failure message recorded on the track.
    """
    if result.returncode == 0:
        return
    stderr = _decode_tail(result.stderr)
    logger.error("%s failed (exit %d): %s", tool, result.returncode, stderr)
    raise ExternalToolError(tool, message, returncode=result.returncode, stderr=stderr)
