import logging
import threading
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

import visit_store

logger = logging.getLogger("app.reaper")


class SessionReaper:
    """Background sweep that marks idle visits inactive.

    Owned by the application lifespan: ``start()`` on startup, ``stop()`` on
    shutdown. Each tick is one bulk UPDATE, so running it concurrently with
    ingestion or twice in a row is harmless.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        interval_seconds: float = 600,
        idle_minutes: int = 30,
    ) -> None:
        self._session_factory = session_factory
        self._interval = interval_seconds
        self._idle_minutes = idle_minutes
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self, now: Optional[datetime] = None) -> int:
        db = self._session_factory()
        try:
            deactivated = visit_store.deactivate_idle(db, self._idle_minutes, now=now)
        finally:
            db.close()
        if deactivated:
            logger.info("Deactivated %d idle visits", deactivated)
        return deactivated

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="session-reaper", daemon=True)
        self._thread.start()
        logger.info(
            "Session reaper started (every %ss, idle after %d min)",
            self._interval, self._idle_minutes,
        )

    def stop(self) -> None:
        if not self.is_running:
            return
        self._stop_event.set()
        self._thread.join(timeout=5.0)
        self._thread = None
        logger.info("Session reaper stopped")

    def _loop(self) -> None:
        while not self._stop_event.wait(timeout=self._interval):
            try:
                self.run_once()
            except Exception:
                # Retried on the next tick
                logger.exception("Session cleanup failed")
