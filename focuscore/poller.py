"""Background poller for due reminders.

Runs outside every session lifecycle: stopping or restarting it never
affects session or ledger state. Each poll covers the time since the
previous one, so a late tick still catches reminders it skipped over. A due
reminder is emitted once per day as an ``on_reminder_due`` event.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from focuscore.config import load_settings
from focuscore.dispatcher import emit
from focuscore.items import due_reminders, mark_notified
from focuscore.models import TrackedItem
from focuscore.workspace import now_local

logger = logging.getLogger(__name__)


class ReminderPoller:
    def __init__(
        self,
        root: Path | None = None,
        interval: float | None = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.root = root
        self.interval = interval if interval is not None else load_settings(root).reminder_poll_seconds
        self._clock = clock or (lambda: now_local(root))
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._last_poll: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="focuscore-reminders", daemon=True)
        self._thread.start()
        logger.info("Reminder poller started (every %gs)", self.interval)

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=2.0)
        self._thread = None
        logger.info("Reminder poller stopped")

    def poll_once(self, now: datetime | None = None) -> list[TrackedItem]:
        """Emit every reminder that came due since the previous poll."""
        if now is None:
            now = self._clock()
        due = due_reminders(now, self.root, since=self._last_poll)
        self._last_poll = now
        for item in due:
            emit("on_reminder_due", {"item": item.to_dict(), "at": now.isoformat()}, self.root)
        if due:
            mark_notified([item.id for item in due], now, self.root)
            logger.info("Notified %d due reminder(s)", len(due))
        return due

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.poll_once()
            except Exception:
                logger.exception("Reminder poll failed")
            self._stop_event.wait(timeout=self.interval)
