"""
Tests for the notification read side: live status, override, filtering and stats.
"""

from datetime import datetime, timedelta, timezone

import pytest

from abordo.errors import NotFoundError, ValidationError
from abordo.models.models import EmailLog, Notification
from abordo.services.notification_query import (
    delete_notification,
    list_for_user,
    list_for_vehicle,
    mileage_status,
    stats_for_user,
    update_notification,
    urgent_for_user,
)
from abordo.services.status import Status


@pytest.fixture
def add_notification(db, today):
    def _add(vehicle, days, type_="insurance", stored_status="safe", **extra):
        n = Notification(
            vehicle_id=vehicle.id,
            type=type_,
            status=stored_status,
            days_until_expiry=days,
            message=f"{type_} {days}",
            expiry_date=today + timedelta(days=days),
            **extra,
        )
        db.add(n)
        db.commit()
        return n

    return _add


def test_live_status_ignores_stale_snapshot(db, user, vehicle, today, add_notification):
    # Written as "warning" 30 days ago, now only 4 days away
    add_notification(vehicle, 4, stored_status="warning")

    (item,) = list_for_user(db, user.id, today=today)
    assert item.days == 4
    assert item.status == Status.critical


def test_safe_by_recompute_is_not_sticky(db, user, vehicle, today, add_notification):
    # Stored "safe" without the override flag: reclassified from the date
    add_notification(vehicle, 2, stored_status="safe")

    (item,) = list_for_user(db, user.id, today=today)
    assert item.status == Status.critical


def test_override_keeps_row_safe(db, user, vehicle, today, add_notification):
    add_notification(vehicle, -3, stored_status="safe", status_override=True)

    (item,) = list_for_user(db, user.id, today=today)
    assert item.status == Status.safe
    assert item.days == -3


def test_sorted_by_days_then_newest_first(db, user, vehicle, today, add_notification):
    old = add_notification(vehicle, 10, created_at=datetime(2026, 1, 1, tzinfo=timezone.utc))
    new = add_notification(vehicle, 10, type_="tax", created_at=datetime(2026, 2, 1, tzinfo=timezone.utc))
    first = add_notification(vehicle, -1, type_="inspection")

    ids = [i.id for i in list_for_user(db, user.id, today=today)]
    assert ids == [first.id, new.id, old.id]


def test_status_filter_uses_live_status(db, user, vehicle, today, add_notification):
    add_notification(vehicle, 5, stored_status="safe")
    add_notification(vehicle, 100, type_="tax", stored_status="critical")

    critical = list_for_user(db, user.id, status_filter="critical", today=today)
    assert [i.days for i in critical] == [5]
    safe = list_for_user(db, user.id, status_filter="safe", today=today)
    assert [i.days for i in safe] == [100]


def test_unknown_filter_is_ignored(db, user, vehicle, today, add_notification):
    add_notification(vehicle, 5)
    add_notification(vehicle, 100, type_="tax")

    assert len(list_for_user(db, user.id, status_filter="bogus", today=today)) == 2


def test_other_users_rows_are_hidden(db, user, make_user, make_vehicle, today, add_notification):
    other = make_user()
    add_notification(make_vehicle(other), 5)

    assert list_for_user(db, user.id, today=today) == []


def test_urgent_is_capped(db, user, vehicle, today, add_notification):
    for d in range(105):
        add_notification(vehicle, d, type_=f"t{d}")

    items = urgent_for_user(db, user.id, today=today)
    assert len(items) == 100
    assert items[0].days == 0


def test_vehicle_listing_keeps_warning_and_critical(db, user, vehicle, today, add_notification):
    add_notification(vehicle, -2)
    add_notification(vehicle, 3, type_="tax")
    add_notification(vehicle, 20, type_="inspection")
    add_notification(vehicle, 90, type_="maintenance")

    items = list_for_vehicle(db, user.id, vehicle.id, today=today)
    assert [i.status for i in items] == [Status.critical, Status.warning]


def test_vehicle_listing_rejects_foreign_vehicle(db, user, make_user, make_vehicle, today):
    foreign = make_vehicle(make_user())
    with pytest.raises(NotFoundError):
        list_for_vehicle(db, user.id, foreign.id, today=today)


def test_stats_from_live_classification(db, user, vehicle, today, add_notification):
    add_notification(vehicle, -1)
    add_notification(vehicle, 0, type_="tax")
    add_notification(vehicle, 6, type_="inspection", email_sent=True)
    add_notification(vehicle, 15, type_="maintenance")
    add_notification(vehicle, 45, type_="service")
    add_notification(vehicle, 2, type_="x", status_override=True)

    stats = stats_for_user(db, user.id, today=today)
    assert stats.total == 6
    assert stats.expired == 1
    assert stats.critical == 2
    assert stats.warning == 1
    assert stats.safe == 2
    assert stats.pending_email == 1


class TestUpdate:
    def test_mark_safe_sets_override(self, db, user, vehicle, today, add_notification):
        n = add_notification(vehicle, 3, stored_status="critical")

        row = update_notification(db, user.id, n.id, status="safe")

        assert row.status == "safe"
        assert row.status_override is True
        (item,) = list_for_user(db, user.id, today=today)
        assert item.status == Status.safe

    def test_other_status_clears_override(self, db, user, vehicle, add_notification):
        n = add_notification(vehicle, 3, status_override=True)
        row = update_notification(db, user.id, n.id, status="warning")
        assert row.status_override is False

    def test_email_sent_only(self, db, user, vehicle, add_notification):
        n = add_notification(vehicle, 3)
        row = update_notification(db, user.id, n.id, email_sent=True)
        assert row.email_sent is True

    def test_no_valid_field(self, db, user, vehicle, add_notification):
        n = add_notification(vehicle, 3)
        with pytest.raises(ValidationError):
            update_notification(db, user.id, n.id, status="done")

    def test_foreign_notification(self, db, user, make_user, make_vehicle, add_notification):
        n = add_notification(make_vehicle(make_user()), 3)
        with pytest.raises(NotFoundError):
            update_notification(db, user.id, n.id, status="safe")


def test_delete_notification_cascades_logs(db, user, vehicle, add_notification):
    n = add_notification(vehicle, 3)
    db.add(EmailLog(
        user_id=user.id,
        notification_id=n.id,
        email_type="expiry_notification",
        recipient_email=user.email,
        status="sent",
        email_stage="critical",
    ))
    db.commit()

    delete_notification(db, user.id, n.id)

    assert db.query(Notification).count() == 0
    assert db.query(EmailLog).count() == 0


def test_mileage_status():
    assert mileage_status(42000, 42200) == {"remaining_km": 200, "status": "critical"}
    assert mileage_status(42000, 42500) == {"remaining_km": 500, "status": "warning"}
    assert mileage_status(42000, 41900) == {"remaining_km": -100, "status": "expired"}
    assert mileage_status(42000, None) is None
