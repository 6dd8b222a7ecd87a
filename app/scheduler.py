"""Music Ingest Pipeline - Queue/Scheduler.

Single-concurrency driver for the track processor.

The unit of work is never queued as a message. Each poll re-derives it
from storage: the oldest pending track by created_at. enqueue() is only a
wake-up signal.

Concurrency:
- A BoundedSemaphore(1) is the single permit; a poll that cannot take it
  without blocking is a no-op. At most one track is processing at a time.
- A threading.Event is the wake channel set by enqueue(). The loop also
  wakes every POLL_INTERVAL_SECONDS to recover from missed wake-ups, and
  pauses SETTLE_DELAY_SECONDS after each run before polling again.

Recovery:
- startup_recovery() resets tracks left in processing by an unclean
  shutdown back to pending. No partial state is replayed.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING

from sqlalchemy import select, update

from app import config
from app.models import Track, TrackStatus, utc_now

if TYPE_CHECKING:
    from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger(__name__)


def startup_recovery(session: Session) -> int:
    """Reset tracks stuck in processing back to pending.

    Note:
        Flushes but does NOT commit.

    Args:
        session: Active database session.

    Returns:
        Number of tracks reset.
    """
    stmt = select(Track.id).where(Track.status == TrackStatus.PROCESSING)
    stuck_ids = list(session.execute(stmt).scalars())

    for track_id in stuck_ids:
        logger.info("Resetting stuck track %s from processing to pending", track_id)

    if stuck_ids:
        session.execute(
            update(Track)
            .where(Track.id.in_(stuck_ids))
            .values(status=TrackStatus.PENDING, updated_at=utc_now())
        )
        session.flush()
    return len(stuck_ids)


def next_pending_track_id(session: Session) -> str | None:
    """Id of the oldest pending track by creation time, or None."""
    stmt = (
        select(Track.id)
        .where(Track.status == TrackStatus.PENDING)
        .order_by(Track.created_at.asc(), Track.id.asc())
        .limit(1)
    )
    return session.execute(stmt).scalar_one_or_none()


class PipelineScheduler:
    """In-process scheduler running the track processor on a daemon thread."""

    def __init__(
        self,
        session_factory: sessionmaker,
        processor: Callable[[sessionmaker, str], dict] | None = None,
        poll_interval: float = config.POLL_INTERVAL_SECONDS,
        settle_delay: float = config.SETTLE_DELAY_SECONDS,
    ):
        if processor is None:
            from app.pipeline import process_track

            processor = process_track

        self._session_factory = session_factory
        self._processor = processor
        self._poll_interval = poll_interval
        self._settle_delay = settle_delay

        self._permit = threading.BoundedSemaphore(1)
        self._wake = threading.Event()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_busy(self) -> bool:
        """True while a pipeline run holds the permit."""
        if self._permit.acquire(blocking=False):
            self._permit.release()
            return False
        return True

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def enqueue(self, track_id: str | None = None) -> None:
        """Signal the loop to poll. Never blocks and never inserts work."""
        logger.debug("Wake-up requested (track_id=%s)", track_id)
        self._wake.set()

    def recover(self) -> int:
        """Run startup recovery in its own transaction."""
        session = self._session_factory()
        try:
            count = startup_recovery(session)
            session.commit()
            return count
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def poll_once(self) -> str | None:
        """Process the oldest pending track if the permit is free.

        Returns:
            The processed track id, or None if busy or nothing is pending.
        """
        if not self._permit.acquire(blocking=False):
            logger.debug("Scheduler busy, skipping poll")
            return None

        try:
            session = self._session_factory()
            try:
                track_id = next_pending_track_id(session)
            finally:
                session.close()

            if track_id is None:
                logger.debug("No pending tracks")
                return None

            try:
                self._processor(self._session_factory, track_id)
            except Exception:
                logger.exception("Track processor raised for track %s", track_id)
            return track_id
        finally:
            self._permit.release()

    def run_forever(self) -> None:
        """Poll until stop() is called."""
        while not self._stop.is_set():
            self._wake.clear()
            try:
                ran = self.poll_once()
            except Exception:
                # Storage errors while selecting work: retry on the next tick
                logger.exception("Scheduler poll failed")
                ran = None

            if ran is not None:
                self._stop.wait(self._settle_delay)
            else:
                self._wake.wait(self._poll_interval)

    def start(self) -> None:
        """Run startup recovery, then start the polling thread."""
        if self.is_running:
            return
        count = self.recover()
        if count:
            logger.info("Startup recovery reset %d track(s) to pending", count)

        self._stop.clear()
        self._wake.set()
        self._thread = threading.Thread(
            target=self.run_forever, name="pipeline-scheduler", daemon=True
        )
        self._thread.start()
        logger.info("Pipeline scheduler started")

    def stop(self, timeout: float | None = None) -> None:
        """Stop the polling thread, waiting for an in-flight run to finish."""
        self._stop.set()
        self._wake.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Pipeline scheduler stopped")


# --- Process-wide scheduler ---

_scheduler: PipelineScheduler | None = None


def get_scheduler() -> PipelineScheduler | None:
    return _scheduler


def set_scheduler(scheduler: PipelineScheduler | None) -> None:
    """Install (or clear) the process-wide scheduler used by enqueue_processing."""
    global _scheduler
    _scheduler = scheduler


def enqueue_processing(track_id: str) -> None:
    """Request processing for a track on the configured queue backend.

    Best-effort wake-up: the track is already persisted as pending and
    will be picked up by the next poll even if this signal is lost.

    Args:
        track_id: The track that became pending.
    """
    if config.QUEUE_BACKEND == "huey":
        from app.huey_app import enqueue_pipeline_wake

        enqueue_pipeline_wake(track_id)
        return

    scheduler = get_scheduler()
    if scheduler is None:
        logger.debug("No scheduler running; track %s stays pending", track_id)
        return
    logger.info("Enqueueing processing for track %s", track_id)
    scheduler.enqueue(track_id)
