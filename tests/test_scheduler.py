"""
Tests for the daily reminder sweep scheduling.
"""

from datetime import datetime, timedelta

import pytz

from abordo.models.models import Notification
from abordo.services.scheduler import ReminderScheduler, seconds_until_next_run
from abordo.services.status import local_today


ROME = pytz.timezone("Europe/Rome")


def test_next_run_later_today():
    now = ROME.localize(datetime(2026, 3, 2, 6, 30))
    assert seconds_until_next_run(now, 8, 0) == 90 * 60


def test_next_run_tomorrow_when_time_has_passed():
    now = ROME.localize(datetime(2026, 3, 2, 8, 0))
    assert seconds_until_next_run(now, 8, 0) == 24 * 3600


def test_next_run_across_dst_change():
    # Clocks go forward on 2026-03-29: that night is only 23 hours long
    now = ROME.localize(datetime(2026, 3, 28, 8, 0))
    assert seconds_until_next_run(now, 8, 0) == 23 * 3600


def test_run_once_uses_its_own_session(session_factory, db, vehicle, transport):
    today = local_today()
    db.add(Notification(
        vehicle_id=vehicle.id,
        type="inspection",
        status="critical",
        days_until_expiry=2,
        message="Revisione in scadenza tra 2 giorni",
        expiry_date=today + timedelta(days=2),
    ))
    db.commit()

    scheduler = ReminderScheduler(transport, session_factory=session_factory, hour=8, minute=0, timezone_str="Europe/Rome")
    result = scheduler.run_once()

    assert result.sent == 1
    assert len(transport.sent) == 1
    assert scheduler.running is False


def test_start_and_stop(session_factory, transport):
    scheduler = ReminderScheduler(transport, session_factory=session_factory, hour=8, minute=0)
    scheduler.start()
    assert scheduler.running is True
    scheduler.stop()
    assert scheduler.running is False
