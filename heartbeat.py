import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from config import settings
from models import Session

logger = logging.getLogger(__name__)

JOB_ID = "license_heartbeat"

SendHeartbeat = Callable[[Session], Awaitable[bool]]


class HeartbeatScheduler:
    """
    Periodic liveness loop for one connected session.

    Each tick is one ``beat()``. The loop is an APScheduler interval job
    with a single running instance, so a slow beat delays the next one
    instead of overlapping it. ``stop()`` is level triggered: once set, no
    further beat does any work until ``start()`` arms a new period.
    """

    def __init__(
        self,
        session_provider: Callable[[], Optional[Session]],
        send_heartbeat: SendHeartbeat,
        on_threshold: Callable[[], Awaitable[None]],
        interval: Optional[float] = None,
        max_failures: Optional[int] = None,
    ):
        self._session_provider = session_provider
        self._send_heartbeat = send_heartbeat
        self._on_threshold = on_threshold
        self.interval = interval if interval is not None else settings.HEARTBEAT_INTERVAL_SECONDS
        self.max_failures = max_failures if max_failures is not None else settings.HEARTBEAT_MAX_FAILURES

        self.consecutive_failures = 0
        self._stop_event = asyncio.Event()
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._current_beat: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return (
            not self._stop_event.is_set()
            and self._scheduler is not None
            and self._scheduler.get_job(JOB_ID) is not None
        )

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def reset_failures(self):
        self.consecutive_failures = 0

    def start(self):
        """
        Arm a new connected period. Does nothing but reset the failure
        count if the loop is already running.
        """
        self.reset_failures()
        if self.running:
            return

        self._stop_event = asyncio.Event()

        if self._scheduler is None:
            self._scheduler = AsyncIOScheduler(event_loop=asyncio.get_running_loop())
        if not self._scheduler.running:
            self._scheduler.start()

        self._scheduler.add_job(
            self.beat,
            'interval',
            seconds=self.interval,
            id=JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
            next_run_time=datetime.now(timezone.utc),
        )
        logger.debug("Heartbeat started with a %ss interval", self.interval)

    def stop(self):
        """Signal the loop to stop. An in-flight beat is left to finish."""
        self._stop_event.set()
        if self._scheduler is not None and self._scheduler.get_job(JOB_ID) is not None:
            self._scheduler.remove_job(JOB_ID)
            logger.debug("Heartbeat stop requested")

    async def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for an in-flight beat to finish.

        Returns False if it is still running after ``timeout`` seconds; the
        beat is not cancelled and completes on its own.
        """
        if timeout is None:
            timeout = settings.HEARTBEAT_JOIN_TIMEOUT_SECONDS

        task = self._current_beat
        if task is None or task.done() or task is asyncio.current_task():
            return True

        done, _ = await asyncio.wait({task}, timeout=timeout)
        if not done:
            logger.warning("Heartbeat did not stop within %ss", timeout)
            return False
        return True

    async def shutdown(self):
        self.stop()
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None

    async def beat(self) -> bool:
        """
        Run one iteration of the loop. Returns False once the loop is over.

        No exception escapes a beat: any failure counts towards the
        threshold, and reaching it stops the loop and hands teardown to the
        owner.
        """
        stop_event = self._stop_event
        self._current_beat = asyncio.current_task()
        try:
            if stop_event.is_set():
                return False

            session = self._session_provider()
            if session is None:
                logger.debug("Heartbeat stopping due to missing session")
                self.stop()
                return False

            try:
                success = await self._send_heartbeat(session)
            except Exception as e:
                logger.debug("Error in heartbeat: %s", e)
                success = False

            if stop_event.is_set():
                return False

            if success:
                self.consecutive_failures = 0
                logger.debug("Heartbeat sent successfully")
                return True

            self.consecutive_failures += 1
            logger.debug(
                "Failed to send heartbeat. Attempt %d of %d",
                self.consecutive_failures, self.max_failures
            )

            if self.consecutive_failures < self.max_failures:
                return True

            logger.warning("Max failed heartbeat attempts reached. Disconnecting.")
            self.stop()
            try:
                await self._on_threshold()
            except Exception:
                logger.exception("Heartbeat-triggered disconnect failed")
            return False
        finally:
            if self._current_beat is asyncio.current_task():
                self._current_beat = None
