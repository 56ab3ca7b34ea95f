"""
Tests for reminder staging and dispatch.
"""

from datetime import timedelta

import pytest
from sqlalchemy import event
from sqlalchemy.exc import OperationalError

from abordo.models.models import EmailLog, Notification
from abordo.services.reminders import (
    dispatch,
    dispatch_for_user,
    eligible_rows,
    render_expiry_email,
    sweep_all,
)


@pytest.fixture
def add_notification(db, today):
    def _add(vehicle, days, type_="tax", message=None, **extra):
        n = Notification(
            vehicle_id=vehicle.id,
            type=type_,
            status="critical",
            days_until_expiry=days,
            message=message or f"Bollo auto in scadenza tra {days} giorni",
            expiry_date=today + timedelta(days=days),
            **extra,
        )
        db.add(n)
        db.commit()
        return n

    return _add


def _logs(db):
    db.expire_all()
    return db.query(EmailLog).order_by(EmailLog.sent_at).all()


def test_stage_progression_sends_each_stage_once(db, user, vehicle, today, transport, add_notification):
    n = add_notification(vehicle, 5)

    first = dispatch(db, transport, today=today)
    assert first.sent == 1
    db.expire_all()
    assert db.get(Notification, n.id).email_stage == "critical"
    assert db.get(Notification, n.id).email_sent is True

    again = dispatch(db, transport, today=today)
    assert again.sent == 0
    assert again.skipped == 1

    later = dispatch(db, transport, today=today + timedelta(days=6))
    assert later.sent == 1
    db.expire_all()
    assert db.get(Notification, n.id).email_stage == "final"
    assert len(transport.sent) == 2


def test_stage_never_goes_backwards(db, user, vehicle, today, transport, add_notification):
    # Final already sent; still inside the critical band by date
    add_notification(vehicle, 3, email_stage="final", email_sent=True)

    result = dispatch(db, transport, today=today)
    assert result.sent == 0
    assert transport.sent == []


def test_sent_attempt_is_logged(db, user, vehicle, today, transport, add_notification):
    n = add_notification(vehicle, 5)
    dispatch(db, transport, today=today)

    (log,) = _logs(db)
    assert log.status == "sent"
    assert log.email_stage == "critical"
    assert log.email_type == "expiry_notification"
    assert log.notification_id == n.id
    assert log.recipient_email == user.email
    assert log.provider_message_id == "fake-1"


def test_failure_is_logged_and_reported(db, user, vehicle, today, transport, add_notification):
    n = add_notification(vehicle, 5)
    transport.fail = True

    result = dispatch(db, transport, today=today)

    assert result.sent == 0
    assert result.errors == [{"notification_id": str(n.id), "message": "SMTP send failed: connection refused"}]
    (log,) = _logs(db)
    assert log.status == "failed"
    assert "connection refused" in log.error_message
    db.expire_all()
    assert db.get(Notification, n.id).email_stage is None

    # Next run retries the same stage
    transport.fail = False
    assert dispatch(db, transport, today=today).sent == 1


def test_one_failure_does_not_stop_the_run(db, user, vehicle, today, add_notification):
    class FlakyTransport:
        name = "flaky"

        def __init__(self):
            self.calls = 0

        def send(self, to, subject, html):
            self.calls += 1
            if self.calls == 1:
                raise RuntimeError("timeout")
            return "ok"

    add_notification(vehicle, 1)
    add_notification(vehicle, 20, type_="insurance", message="Assicurazione in scadenza tra 20 giorni")

    result = dispatch(db, FlakyTransport(), today=today)
    assert result.processed == 2
    assert result.sent == 1
    assert len(result.errors) == 1


@pytest.fixture
def flaky_store(db):
    """Once armed, the next flush of the session fails, as a dropped DB connection would."""
    state = {"armed": False}

    def _fail_once(session, flush_context, instances):
        if state["armed"]:
            state["armed"] = False
            raise OperationalError("INSERT INTO email_logs", {}, Exception("disk I/O error"))

    event.listen(db, "before_flush", _fail_once)
    yield state
    event.remove(db, "before_flush", _fail_once)


def test_store_failure_rolls_back_only_that_row(db, user, vehicle, today, transport, add_notification, flaky_store):
    first = add_notification(vehicle, 1)
    second = add_notification(vehicle, 3, type_="insurance", message="Assicurazione in scadenza tra 3 giorni")
    flaky_store["armed"] = True

    result = dispatch(db, transport, today=today)

    assert len(transport.sent) == 2
    assert result.sent == 1
    assert [e["notification_id"] for e in result.errors] == [str(first.id)]
    assert "disk I/O error" in result.errors[0]["message"]

    logs = _logs(db)
    assert [(log.notification_id, log.status) for log in logs] == [(second.id, "sent")]
    assert db.get(Notification, first.id).email_stage is None
    assert db.get(Notification, first.id).email_sent is False
    assert db.get(Notification, second.id).email_stage == "critical"


def test_sweep_continues_after_store_failure(db, user, vehicle, today, transport, add_notification, flaky_store):
    add_notification(vehicle, 1)
    add_notification(vehicle, 3, type_="insurance", message="Assicurazione in scadenza tra 3 giorni")
    flaky_store["armed"] = True

    result = sweep_all(db, transport, today=today)
    assert (result.processed, result.sent, len(result.errors)) == (2, 1, 1)

    # The rolled-back row is still due and goes out on the next run
    again = sweep_all(db, transport, today=today)
    assert (again.sent, again.skipped, again.errors) == (1, 1, [])


def test_eligibility_rules(db, user, make_user, make_vehicle, vehicle, today, add_notification):
    add_notification(vehicle, 31, message="far")
    add_notification(vehicle, 30, type_="insurance", message="edge")
    add_notification(vehicle, -10, type_="inspection", message="late")
    add_notification(vehicle, 2, type_="maintenance", message="done", status_override=True)
    opted_out = make_user(email_notifications=False)
    add_notification(make_vehicle(opted_out), 2, message="muted")

    rows = eligible_rows(db, today=today)
    assert [n.message for n, _ in rows] == ["late", "edge"]
    assert [d for _, d in rows] == [-10, 30]


def test_dispatch_for_user_is_scoped(db, user, vehicle, make_user, make_vehicle, today, transport, add_notification):
    other = make_user()
    add_notification(vehicle, 5)
    add_notification(make_vehicle(other), 5)

    result = dispatch_for_user(db, transport, user.id, today=today)
    assert result.processed == 1
    assert [m["to"] for m in transport.sent] == [user.email]


def test_sweep_all_covers_every_user(db, user, vehicle, make_user, make_vehicle, today, transport, add_notification):
    other = make_user()
    add_notification(vehicle, 5)
    add_notification(make_vehicle(other), 25)

    result = sweep_all(db, transport, today=today)
    assert result.sent == 2


class TestRender:
    def test_upcoming(self, db, user, vehicle, today, add_notification):
        n = add_notification(vehicle, 5)
        subject, html = render_expiry_email(user, vehicle, n, 5)

        assert subject == "⚠️ Scadenza imminente: Bollo auto in scadenza tra 5 giorni"
        assert vehicle.plate_number in html
        assert "Bollo Auto" in html
        assert (today + timedelta(days=5)).strftime("%d/%m/%Y") in html
        assert "<strong>Giorni rimanenti:</strong> 5" in html
        assert "https://app.abordo.test/settings" in html

    def test_overdue(self, db, user, vehicle, add_notification):
        n = add_notification(vehicle, -4, message="Bollo auto scaduto")
        subject, html = render_expiry_email(user, vehicle, n, -4)

        assert subject == "⏰ Scadenza scaduta: Bollo auto scaduto"
        assert "<strong>Scaduto da:</strong> 4 giorni" in html

    def test_values_are_escaped(self, db, make_user, vehicle, add_notification):
        n = add_notification(vehicle, 5, message="<b>x</b>")
        _, html = render_expiry_email(make_user(first_name="<script>"), vehicle, n, 5)
        assert "<script>" not in html
        assert "&lt;b&gt;x&lt;/b&gt;" in html
