"""Music Ingest Pipeline - Huey task queue configuration.

Out-of-process queue backend (MUSIC_QUEUE_BACKEND=huey) on a SQLite
store. Same contract as the in-process scheduler: the work item is
re-derived from storage and at most one track is processing at a time,
here enforced across consumer workers by a huey task lock.

How to run:
1. Start the ingest API:
   MUSIC_QUEUE_BACKEND=huey uvicorn services.ingest_api.main:app

2. Start the Huey consumer (processes queued tasks):
   huey_consumer.py app.huey_app.huey
"""

from __future__ import annotations

import logging
from pathlib import Path

from huey import SqliteHuey, crontab
from huey.exceptions import TaskLockedException

from app.config import HUEY_DB_PATH, QUEUE_DIR, SETTLE_DELAY_SECONDS

logger = logging.getLogger(__name__)

PIPELINE_LOCK_NAME = "track-pipeline"


def _ensure_queue_dir() -> None:
    """Ensure the queue directory exists."""
    Path(QUEUE_DIR).mkdir(parents=True, exist_ok=True)


# Ensure queue directory exists before creating Huey instance
_ensure_queue_dir()

huey = SqliteHuey(
    name="music_ingest",
    filename=str(HUEY_DB_PATH),
    immediate=False,  # Tasks queued for consumer processing
)


# Built on first use and reused by every task in this consumer process
_SESSION_FACTORY = None


def _session_factory():
    global _SESSION_FACTORY
    if _SESSION_FACTORY is None:
        from app.db import init_db

        _, _SESSION_FACTORY = init_db()
    return _SESSION_FACTORY


@huey.on_startup()
def recover_stuck_tracks() -> None:
    """Consumer startup hook: reset tracks left in processing."""
    from app.scheduler import startup_recovery

    session = _session_factory()()
    try:
        count = startup_recovery(session)
        session.commit()
        if count:
            logger.info("Startup recovery reset %d track(s) to pending", count)
    except Exception:
        session.rollback()
        logger.exception("Startup recovery failed")
    finally:
        session.close()


def _run_next_pending() -> dict:
    """Process the oldest pending track while holding the pipeline lock."""
    from app.pipeline import process_track
    from app.scheduler import next_pending_track_id

    SessionFactory = _session_factory()
    with huey.lock_task(PIPELINE_LOCK_NAME):
        session = SessionFactory()
        try:
            track_id = next_pending_track_id(session)
        finally:
            session.close()

        if track_id is None:
            return {"status": "idle"}

        return process_track(SessionFactory, track_id)


@huey.task()
def process_pending_task(track_id: str | None = None) -> dict:
    """Huey task: run the pipeline for the oldest pending track.

    The track_id argument is informational; the work item is always the
    oldest pending track.

    Returns:
        Dict with the run result (for logging/debugging).
    """
    logger.info("Pipeline task started (wake for track_id=%s)", track_id)
    try:
        result = _run_next_pending()
    except TaskLockedException:
        # Another worker holds the permit; it re-schedules itself when done
        logger.debug("Pipeline busy, dropping wake-up for track_id=%s", track_id)
        return {"status": "busy"}

    logger.info("Pipeline task completed: %s", result)
    if result.get("status") != "idle":
        process_pending_task.schedule(delay=SETTLE_DELAY_SECONDS)
    return result


@huey.periodic_task(crontab(minute="*"))
def poll_pending_task() -> dict:
    """Fallback tick that recovers from missed wake-ups."""
    try:
        return _run_next_pending()
    except TaskLockedException:
        return {"status": "busy"}


def enqueue_pipeline_wake(track_id: str) -> None:
    """Enqueue a pipeline wake-up for the given track.

    Non-blocking: returns immediately even if Huey consumer is not running.
    The task will be persisted in SQLite and processed when consumer starts.

    Args:
        track_id: The track that became pending.
    """
    logger.info("Enqueueing pipeline wake-up for track_id=%s", track_id)
    process_pending_task(track_id)
