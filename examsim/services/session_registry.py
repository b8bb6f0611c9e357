"""Mounted exam sessions, one per attempt, with idle expiry.

A session is mounted when the exam view is opened and unmounted when the view
is closed, the exam is submitted or the session sits idle past its TTL.
Unmounting always tears the controller down so pending time reaches the
local slot.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from .exam_session import ExamSession

logger = logging.getLogger(__name__)

TICK_SECONDS = 1.0


class SessionTimer:
    """Calls ``callback`` every ``interval`` seconds on a daemon thread."""

    def __init__(self, callback: Callable[[], object], interval: float = TICK_SECONDS) -> None:
        self.callback = callback
        self.interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="exam-session-timer", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.callback()
            except Exception:
                logger.exception("Exam session timer callback failed; stopping timer")
                return

    def stop(self) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.interval * 2)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop.is_set()


class SessionRegistry:
    def __init__(
        self,
        *,
        ttl_seconds: float = 3600,
        timer_enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.timer_enabled = timer_enabled
        self._clock = clock
        self._lock = threading.Lock()
        self._sessions: dict[str, ExamSession] = {}
        self._timers: dict[str, SessionTimer] = {}
        self._touched: dict[str, float] = {}

    def __contains__(self, attempt_id: str) -> bool:
        with self._lock:
            return attempt_id in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def get(self, attempt_id: str) -> ExamSession | None:
        expired: ExamSession | None = None
        with self._lock:
            session = self._sessions.get(attempt_id)
            if session is None:
                return None
            if self._clock() - self._touched[attempt_id] > self.ttl_seconds:
                expired = self._pop(attempt_id)
            else:
                self._touched[attempt_id] = self._clock()
                return session
        self._teardown(attempt_id, expired)
        return None

    def mount(self, attempt_id: str, factory: Callable[[], ExamSession]) -> tuple[ExamSession, bool]:
        """Return the mounted session, creating and initialising it when needed.

        The second item is ``True`` when a new controller was mounted. Idle
        sessions of other attempts are unmounted first.
        """

        self.cleanup_expired()
        existing = self.get(attempt_id)
        if existing is not None:
            return existing, False

        session = factory()
        session.initialize()
        timer: SessionTimer | None = None
        if self.timer_enabled:
            timer = SessionTimer(session.tick)
        with self._lock:
            current = self._sessions.get(attempt_id)
            if current is not None:
                self._touched[attempt_id] = self._clock()
                return current, False
            self._sessions[attempt_id] = session
            self._touched[attempt_id] = self._clock()
            if timer is not None:
                self._timers[attempt_id] = timer
        if timer is not None:
            timer.start()
        logger.debug("Mounted exam session for attempt %s", attempt_id)
        return session, True

    def unmount(self, attempt_id: str) -> bool:
        with self._lock:
            session = self._pop(attempt_id)
        if session is None:
            return False
        self._teardown(attempt_id, session)
        return True

    def cleanup_expired(self) -> int:
        now = self._clock()
        with self._lock:
            stale = [
                attempt_id
                for attempt_id, touched in self._touched.items()
                if now - touched > self.ttl_seconds
            ]
            expired = [(attempt_id, self._pop(attempt_id)) for attempt_id in stale]
        for attempt_id, session in expired:
            self._teardown(attempt_id, session)
        if expired:
            logger.info("Unmounted %s idle exam sessions", len(expired))
        return len(expired)

    def shutdown(self) -> None:
        with self._lock:
            attempt_ids = list(self._sessions)
        for attempt_id in attempt_ids:
            self.unmount(attempt_id)

    def _pop(self, attempt_id: str) -> ExamSession | None:
        self._touched.pop(attempt_id, None)
        timer = self._timers.pop(attempt_id, None)
        if timer is not None:
            timer.stop()
        return self._sessions.pop(attempt_id, None)

    def _teardown(self, attempt_id: str, session: ExamSession | None) -> None:
        if session is None:
            return
        session.teardown()
        logger.debug("Unmounted exam session for attempt %s", attempt_id)


__all__ = ["SessionRegistry", "SessionTimer", "TICK_SECONDS"]
