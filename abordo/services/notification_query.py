"""
Read side of the notification projection.

Stored ``status``/``days_until_expiry`` are only a write-time snapshot; every
read here re-derives them from ``expiry_date`` and the current day, except for
rows the user explicitly marked ``safe``.
"""
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import List, Optional

from sqlalchemy.orm import Session, joinedload

from ..errors import NotFoundError, ValidationError
from ..models.models import Notification, Vehicle, utcnow
from .status import STATUS_VALUES, Status, classify_days, classify_mileage, days_until, local_today


URGENT_LIMIT = 100


@dataclass
class LiveNotification:
    notification: Notification
    vehicle: Vehicle
    days: int
    status: Status

    @property
    def id(self) -> uuid.UUID:
        return self.notification.id

    @property
    def overridden(self) -> bool:
        return bool(self.notification.status_override)


@dataclass
class NotificationStats:
    total: int = 0
    safe: int = 0
    warning: int = 0
    critical: int = 0
    expired: int = 0
    pending_email: int = 0


def live_view(notification: Notification, today: Optional[date] = None) -> LiveNotification:
    days = days_until(notification.expiry_date, today)
    status = Status.safe if notification.status_override else classify_days(days)
    return LiveNotification(notification=notification, vehicle=notification.vehicle, days=days, status=status)


def _owned_query(db: Session, user_id):
    return (
        db.query(Notification)
        .join(Vehicle, Notification.vehicle_id == Vehicle.id)
        .filter(Vehicle.user_id == user_id)
        .options(joinedload(Notification.vehicle))
    )


def _created_key(item: LiveNotification) -> datetime:
    created = item.notification.created_at or datetime.min
    if created.tzinfo is not None:
        created = created.astimezone(timezone.utc).replace(tzinfo=None)
    return created


def _sorted(items: List[LiveNotification]) -> List[LiveNotification]:
    # Stable sorts: newest first inside each day bucket
    items.sort(key=_created_key, reverse=True)
    items.sort(key=lambda n: n.days)
    return items


def list_for_user(
    db: Session,
    user_id,
    status_filter: Optional[str] = None,
    today: Optional[date] = None,
) -> List[LiveNotification]:
    """All of a user's notifications, soonest first. Unknown filters are ignored."""
    today = today or local_today()
    items = _sorted([live_view(n, today) for n in _owned_query(db, user_id).all()])
    if status_filter in STATUS_VALUES:
        items = [n for n in items if n.status.value == status_filter]
    return items


def urgent_for_user(db: Session, user_id, today: Optional[date] = None) -> List[LiveNotification]:
    return list_for_user(db, user_id, today=today)[:URGENT_LIMIT]


def list_for_vehicle(db: Session, user_id, vehicle_id, today: Optional[date] = None) -> List[LiveNotification]:
    """Warning/critical notifications of one owned vehicle."""
    vehicle = db.query(Vehicle).filter(Vehicle.id == vehicle_id, Vehicle.user_id == user_id).first()
    if not vehicle:
        raise NotFoundError("Vehicle not found")
    today = today or local_today()
    rows = _owned_query(db, user_id).filter(Notification.vehicle_id == vehicle_id).all()
    items = _sorted([live_view(n, today) for n in rows])
    return [n for n in items if n.status in (Status.warning, Status.critical)]


def stats_for_user(db: Session, user_id, today: Optional[date] = None) -> NotificationStats:
    stats = NotificationStats()
    for item in list_for_user(db, user_id, today=today):
        stats.total += 1
        setattr(stats, item.status.value, getattr(stats, item.status.value) + 1)
        if item.status == Status.critical and not item.notification.email_sent:
            stats.pending_email += 1
    return stats


def get_owned_notification(db: Session, user_id, notification_id) -> Notification:
    row = _owned_query(db, user_id).filter(Notification.id == notification_id).first()
    if not row:
        raise NotFoundError("Notification not found")
    return row


def update_notification(
    db: Session,
    user_id,
    notification_id,
    status: Optional[str] = None,
    email_sent: Optional[bool] = None,
) -> Notification:
    """
    Apply a user edit to a notification.

    Marking it ``safe`` is the explicit override: the row stays safe in every
    listing until the synchronizer writes a new deadline over it. Any other
    status value is stored but has no effect on the live classification.
    """
    row = get_owned_notification(db, user_id, notification_id)
    valid_status = status if status in STATUS_VALUES else None
    valid_email_sent = email_sent if isinstance(email_sent, bool) else None
    if valid_status is None and valid_email_sent is None:
        raise ValidationError("No valid field to update")

    if valid_status is not None:
        row.status = valid_status
        row.status_override = valid_status == Status.safe.value
    if valid_email_sent is not None:
        row.email_sent = valid_email_sent
    row.updated_at = utcnow()
    db.commit()
    db.refresh(row)
    return row


def delete_notification(db: Session, user_id, notification_id) -> None:
    row = get_owned_notification(db, user_id, notification_id)
    db.delete(row)
    db.commit()


def mileage_status(current_km: Optional[int], due_km: Optional[int]) -> Optional[dict]:
    """Presentation-time urgency of a mileage-based deadline; None when nothing is due."""
    if due_km is None or current_km is None:
        return None
    remaining = due_km - current_km
    return {"remaining_km": remaining, "status": classify_mileage(remaining).value}
