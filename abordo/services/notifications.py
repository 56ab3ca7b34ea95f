"""
Notification synchronizer.

Keeps the ``notifications`` table a projection of the deadline-bearing source
records (insurances, car taxes, inspections, maintenance items). Routes call
``sync_source`` / ``forget_source`` through ``safe_sync`` after committing the
source write, so a failure here never undoes the user's change.
"""
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Callable, Optional, Tuple, Union

import structlog
from sqlalchemy import case, func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import SyncError
from ..models.models import (
    CarTax,
    Inspection,
    Insurance,
    Maintenance,
    Notification,
    Vehicle,
    utcnow,
)
from .status import DateLike, classify_expiry, classify_days, local_today, to_local_date


NOTIFICATION_TYPES = ("insurance", "tax", "inspection", "service", "maintenance")

# Types whose aggregated row can be rebuilt from the remaining source records
RECOMPUTABLE_TYPES = ("insurance", "tax", "inspection", "maintenance")

MAINTENANCE_LABELS = {
    "oil_change": "Cambio olio",
    "filters": "Filtri",
    "brakes": "Freni",
    "tires": "Cambio pneumatici",
    "adblue": "AdBlue",
    "belts": "Cinghie",
}


@dataclass(frozen=True)
class ItemScope:
    """Row tied to one source record."""

    source_type: str
    source_id: uuid.UUID


@dataclass(frozen=True)
class AggregateScope:
    """Legacy row: one per (vehicle, type), no source record behind it."""


AGGREGATE = AggregateScope()

NotificationScope = Union[ItemScope, AggregateScope]


def maintenance_label(kind: Optional[str], title: Optional[str] = None) -> str:
    if title and title.strip():
        return title.strip()
    return MAINTENANCE_LABELS.get(kind or "", "Manutenzione")


def build_message(type: str, days: int, sub_label: Optional[str] = None) -> str:
    if type == "insurance":
        return "Assicurazione scaduta" if days < 0 else f"Assicurazione in scadenza tra {days} giorni"
    if type == "tax":
        return "Bollo auto scaduto" if days < 0 else f"Bollo auto in scadenza tra {days} giorni"
    if type == "inspection":
        return "Revisione scaduta" if days < 0 else f"Revisione in scadenza tra {days} giorni"
    if type == "maintenance":
        if sub_label:
            return f"{sub_label} scaduto" if days < 0 else f"{sub_label} in scadenza tra {days} giorni"
        return "Manutenzione scaduta" if days < 0 else f"Manutenzione in scadenza tra {days} giorni"
    return "Scadenza superata" if days < 0 else f"Scadenza tra {days} giorni"


def _scope_filter(query, vehicle_id, type: str, scope: NotificationScope):
    query = query.filter(Notification.vehicle_id == vehicle_id, Notification.type == type)
    if isinstance(scope, ItemScope):
        return query.filter(
            Notification.source_type == scope.source_type,
            Notification.source_id == scope.source_id,
        )
    return query.filter(Notification.source_type.is_(None), Notification.source_id.is_(None))


def delete_for_source(db: Session, vehicle_id, type: str, scope: NotificationScope) -> int:
    """Remove the row(s) for a scope key. Returns how many were deleted."""
    rows = _scope_filter(db.query(Notification), vehicle_id, type, scope).all()
    for row in rows:
        db.delete(row)
    db.flush()
    return len(rows)


def _apply_values(row: Notification, values: dict, now: datetime) -> None:
    if row.expiry_date != values["expiry_date"]:
        # New deadline, new reminder cycle
        row.email_stage = None
        row.email_sent = False
    row.status = values["status"]
    row.status_override = False
    row.days_until_expiry = values["days_until_expiry"]
    row.message = values["message"]
    row.expiry_date = values["expiry_date"]
    row.updated_at = now


def _atomic_item_upsert(db: Session, vehicle_id, type: str, scope: ItemScope, values: dict, now: datetime) -> Notification:
    dialect = db.get_bind().dialect.name
    insert = pg_insert if dialect == "postgresql" else sqlite_insert
    stmt = insert(Notification).values(
        id=uuid.uuid4(),
        vehicle_id=vehicle_id,
        type=type,
        source_type=scope.source_type,
        source_id=scope.source_id,
        status_override=False,
        email_sent=False,
        created_at=now,
        updated_at=now,
        **values,
    )
    same_deadline = Notification.expiry_date == stmt.excluded.expiry_date
    stmt = stmt.on_conflict_do_update(
        index_elements=["vehicle_id", "type", "source_type", "source_id"],
        set_={
            "status": stmt.excluded.status,
            "status_override": False,
            "days_until_expiry": stmt.excluded.days_until_expiry,
            "message": stmt.excluded.message,
            "expiry_date": stmt.excluded.expiry_date,
            "updated_at": stmt.excluded.updated_at,
            "email_stage": case((same_deadline, Notification.email_stage), else_=None),
            "email_sent": case((same_deadline, Notification.email_sent), else_=False),
        },
    )
    db.execute(stmt)
    return (
        _scope_filter(db.query(Notification), vehicle_id, type, scope)
        .populate_existing()
        .one()
    )


def upsert_for_source(
    db: Session,
    vehicle_id,
    type: str,
    expiry: Optional[DateLike],
    scope: NotificationScope = AGGREGATE,
    sub_label: Optional[str] = None,
    today: Optional[date] = None,
    now: Optional[datetime] = None,
) -> Optional[Notification]:
    """
    Create or refresh the notification for a scope key.

    A missing expiry removes the row instead. Any update overwrites a manual
    ``safe`` mark; a changed expiry date also restarts the email stages.
    """
    if expiry is None:
        delete_for_source(db, vehicle_id, type, scope)
        return None

    expiry_day = to_local_date(expiry)
    days, status = classify_expiry(expiry_day, today)
    values = {
        "status": status.value,
        "days_until_expiry": days,
        "message": build_message(type, days, sub_label),
        "expiry_date": expiry_day,
    }
    now = now or utcnow()

    try:
        db.flush()
        if isinstance(scope, ItemScope) and db.get_bind().dialect.name in ("postgresql", "sqlite"):
            return _atomic_item_upsert(db, vehicle_id, type, scope, values, now)

        query = _scope_filter(db.query(Notification), vehicle_id, type, scope)
        row = query.order_by(Notification.expiry_date.desc()).first()
        if row is None:
            source_type = scope.source_type if isinstance(scope, ItemScope) else None
            source_id = scope.source_id if isinstance(scope, ItemScope) else None
            row = Notification(
                vehicle_id=vehicle_id,
                type=type,
                source_type=source_type,
                source_id=source_id,
                status_override=False,
                email_sent=False,
                created_at=now,
                updated_at=now,
                **values,
            )
            db.add(row)
        else:
            _apply_values(row, values, now)
        db.flush()
        return row
    except SQLAlchemyError as e:
        raise SyncError(
            "Notification upsert failed",
            {"vehicle_id": str(vehicle_id), "type": type, "error": str(e)},
        ) from e


def _next_deadline(db: Session, vehicle_id, type: str) -> Tuple[Optional[date], Optional[str]]:
    """Soonest remaining deadline of a type for a vehicle, with its sub-label."""
    if type == "insurance":
        return db.query(func.min(Insurance.expiry_date)).filter(Insurance.vehicle_id == vehicle_id).scalar(), None
    if type == "tax":
        return db.query(func.min(CarTax.expiry_date)).filter(CarTax.vehicle_id == vehicle_id).scalar(), None
    if type == "inspection":
        return (
            db.query(func.min(Inspection.next_inspection_date))
            .filter(Inspection.vehicle_id == vehicle_id)
            .scalar(),
            None,
        )
    if type == "maintenance":
        m = (
            db.query(Maintenance)
            .filter(Maintenance.vehicle_id == vehicle_id, Maintenance.next_maintenance.isnot(None))
            .order_by(Maintenance.next_maintenance.asc())
            .first()
        )
        if m is None:
            return None, None
        return m.next_maintenance, maintenance_label(m.kind, m.title)
    return None, None


def recompute_after_delete(db: Session, vehicle_id, type: str, today: Optional[date] = None) -> Optional[Notification]:
    """
    Rebuild the aggregated row of a type after one of its source records is gone.

    Points an existing aggregated row at the next-soonest remaining deadline,
    or deletes it when none is left. Item rows of the surviving records are
    left alone, so no aggregated row is created next to them.
    """
    if type not in RECOMPUTABLE_TYPES:
        return None
    expiry, sub_label = _next_deadline(db, vehicle_id, type)
    if expiry is None:
        delete_for_source(db, vehicle_id, type, AGGREGATE)
        return None
    existing = _scope_filter(db.query(Notification), vehicle_id, type, AGGREGATE).first()
    if existing is None:
        return None
    return upsert_for_source(db, vehicle_id, type, expiry, AGGREGATE, sub_label, today)


def source_deadline(record: Any) -> Tuple[str, ItemScope, Optional[date], Optional[str]]:
    """Map a source record to (type, scope, expiry, sub_label)."""
    if isinstance(record, Insurance):
        return "insurance", ItemScope("insurance", record.id), record.expiry_date, None
    if isinstance(record, CarTax):
        return "tax", ItemScope("tax", record.id), record.expiry_date, None
    if isinstance(record, Inspection):
        return "inspection", ItemScope("inspection", record.id), record.next_inspection_date, None
    if isinstance(record, Maintenance):
        return (
            "maintenance",
            ItemScope("maintenance", record.id),
            record.next_maintenance,
            maintenance_label(record.kind, record.title),
        )
    raise TypeError(f"{type(record).__name__} does not carry a deadline")


def sync_source(db: Session, record: Any, today: Optional[date] = None) -> Optional[Notification]:
    """Project a created/updated source record onto its notification row."""
    type_, scope, expiry, sub_label = source_deadline(record)
    return upsert_for_source(db, record.vehicle_id, type_, expiry, scope, sub_label, today)


def forget_source(db: Session, vehicle_id, type: str, scope: ItemScope, today: Optional[date] = None) -> None:
    """
    Drop the row of a deleted source record and refresh the aggregated row.

    Takes the already-captured key rather than the record, which is gone by now.
    """
    delete_for_source(db, vehicle_id, type, scope)
    recompute_after_delete(db, vehicle_id, type, today)


def safe_sync(db: Session, fn: Callable, *args, **kwargs) -> bool:
    """
    Run a synchronizer call and commit it on its own.

    Any failure is logged and rolled back; the source write it follows has
    already been committed and stays. Returns whether the sync went through.
    """
    try:
        fn(db, *args, **kwargs)
        db.commit()
        return True
    except Exception as e:
        db.rollback()
        structlog.get_logger().warning(
            "notification_sync_failed",
            operation=getattr(fn, "__name__", str(fn)),
            error=str(e),
        )
        return False


SEED_NOTIFICATIONS = (
    ("insurance", 30, "Assicurazione in scadenza tra 30 giorni"),
    ("tax", 90, "Bollo auto in scadenza tra 90 giorni"),
    ("service", 60, "Tagliando consigliato tra 60 giorni"),
)


def seed_initial_notifications(db: Session, vehicle: Vehicle, today: Optional[date] = None) -> list:
    """Placeholder aggregated rows for a freshly created vehicle."""
    today = today or local_today()
    now = utcnow()
    rows = []
    for type_, days, message in SEED_NOTIFICATIONS:
        row = Notification(
            vehicle_id=vehicle.id,
            type=type_,
            status=classify_days(days).value,
            status_override=False,
            days_until_expiry=days,
            message=message,
            expiry_date=today + timedelta(days=days),
            email_sent=False,
            created_at=now,
            updated_at=now,
        )
        db.add(row)
        rows.append(row)
    db.flush()
    return rows
