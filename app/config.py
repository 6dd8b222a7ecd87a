"""Music Ingest Pipeline - Configuration constants.

Minimal configuration, no external config libraries.
Storage paths default to data/ under the repository root and can be
overridden through environment variables.
"""

import os
from pathlib import Path

# Repository root (parent of app/)
REPO_ROOT = Path(__file__).parent.parent.resolve()


def _get_path(env_name: str, default: Path) -> Path:
    """Get a path from the environment or use the default."""
    env_val = os.environ.get(env_name)
    if env_val:
        return Path(env_val).expanduser().resolve()
    return default


def _get_flag(env_name: str, default: bool) -> bool:
    """Parse a boolean flag ("1"/"true"/"yes" vs "0"/"false"/"no")."""
    env_val = os.environ.get(env_name)
    if env_val is None:
        return default
    normalized = env_val.strip().lower()
    if normalized in ("1", "true", "yes", "on"):
        return True
    if normalized in ("0", "false", "no", "off"):
        return False
    return default


def _get_tool_timeout() -> float | None:
    """Get the external tool timeout from environment.

    Environment variable MUSIC_TOOL_TIMEOUT_SEC sets a per-invocation
    timeout for ffprobe/ffmpeg/audiowaveform. Unset (the default) means
    tools run to completion with no timeout.

    Returns:
        Timeout in seconds, or None for unbounded.
    """
    env_val = os.environ.get("MUSIC_TOOL_TIMEOUT_SEC")
    if env_val:
        try:
            timeout = float(env_val)
            if timeout > 0:
                return timeout
        except ValueError:
            pass
    return None


# Storage root: every file the pipeline touches must resolve inside it
DATA_DIR = _get_path("MUSIC_DATA_DIR", REPO_ROOT / "data")

# Database path
DB_PATH = _get_path("MUSIC_DB_PATH", DATA_DIR / "db" / "music.db")

# Huey queue database (only used with QUEUE_BACKEND = "huey")
QUEUE_DIR = DATA_DIR / "queue"
HUEY_DB_PATH = QUEUE_DIR / "huey.db"

# Queue backend: "thread" runs the scheduler inside the API process,
# "huey" hands wake-ups to a huey consumer process.
QUEUE_BACKEND = os.environ.get("MUSIC_QUEUE_BACKEND", "thread").strip().lower()

# Start the in-process scheduler from the API lifespan
SCHEDULER_AUTOSTART = _get_flag("MUSIC_SCHEDULER_AUTOSTART", True)

# Scheduler timing
POLL_INTERVAL_SECONDS = 5.0  # fallback tick for missed wake-ups
SETTLE_DELAY_SECONDS = 0.1  # pause between back-to-back runs

# External tool timeout (None = unbounded)
TOOL_TIMEOUT_SECONDS = _get_tool_timeout()

# Transcode output
TARGET_BITRATE = 320000
TRANSCODE_BITRATE = "320k"

# Waveform peaks
WAVEFORM_PIXELS_PER_SECOND = 20
WAVEFORM_BITS = 8
PEAK_MAX_MAGNITUDE = 127  # max representable magnitude at 8 bits

# Cover art thumbnails
ART_SIZE = 500
ART_JPEG_QUALITY = 85

# Slugs
SLUG_MAX_LENGTH = 100
SLUG_MAX_ATTEMPTS = 10

# Upload limits
MAX_AUDIO_SIZE = 200 * 1024 * 1024  # 200MB
MAX_IMAGE_SIZE = 10 * 1024 * 1024  # 10MB
