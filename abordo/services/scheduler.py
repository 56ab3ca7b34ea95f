"""
Daily reminder sweep.

Runs ``sweep_all`` once a day at REMINDER_HOUR:REMINDER_MINUTE local time in a
daemon thread, with its own DB session per run.
"""
import threading
from datetime import datetime, timedelta
from typing import Callable, Optional

import pytz
import structlog

from ..config import settings
from ..db import SessionLocal
from .mailer import MailTransport
from .reminders import sweep_all


def seconds_until_next_run(now: datetime, hour: int, minute: int) -> float:
    """Seconds from an aware ``now`` to the next hour:minute in its timezone."""
    target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target <= now:
        target = target + timedelta(days=1)
    if target.tzinfo is not None and hasattr(target.tzinfo, "normalize"):
        # pytz: re-localize so DST transitions land on the right wall-clock time
        target = target.tzinfo.localize(target.replace(tzinfo=None))
    return (target - now).total_seconds()


class ReminderScheduler:
    def __init__(
        self,
        transport: MailTransport,
        session_factory: Callable = SessionLocal,
        hour: Optional[int] = None,
        minute: Optional[int] = None,
        timezone_str: Optional[str] = None,
    ):
        self.transport = transport
        self.session_factory = session_factory
        self.hour = settings.reminder_hour if hour is None else hour
        self.minute = settings.reminder_minute if minute is None else minute
        self.tz = pytz.timezone(timezone_str or settings.tz_default)
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def run_once(self):
        db = self.session_factory()
        try:
            return sweep_all(db, self.transport)
        except Exception as e:
            db.rollback()
            structlog.get_logger().error("reminder_sweep_failed", error=str(e))
            return None
        finally:
            db.close()

    def _loop(self):
        log = structlog.get_logger()
        while not self._stop.is_set():
            wait = seconds_until_next_run(datetime.now(self.tz), self.hour, self.minute)
            log.info("reminder_sweep_scheduled", in_seconds=int(wait))
            if self._stop.wait(wait):
                break
            self.run_once()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="reminder-scheduler", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())
