from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import Optional
from datetime import date
import uuid

from ..config import settings
from ..db import get_db
from ..errors import ServiceUnavailableError
from ..models.models import User
from ..auth.security import get_current_user
from ..schemas.notifications import (
    NotificationResponse,
    NotificationListResponse,
    NotificationUpdate,
    NotificationStatsResponse,
    DispatchResponse,
    VehicleSummary,
)
from ..services.mailer import MailTransport, get_transport, is_configured
from ..services.notification_query import (
    LiveNotification,
    list_for_user,
    urgent_for_user,
    list_for_vehicle,
    stats_for_user,
    update_notification,
    delete_notification,
    live_view,
)
from ..services.reminders import dispatch_for_user
from ..services.status import current_day

router = APIRouter(prefix="/notifications", tags=["notifications"])


def get_mail_transport() -> MailTransport:
    if not settings.enable_email or not is_configured(settings):
        raise ServiceUnavailableError("Email delivery is not configured")
    return get_transport(settings)


def _serialize(item: LiveNotification) -> NotificationResponse:
    n = item.notification
    return NotificationResponse(
        id=n.id,
        vehicle_id=n.vehicle_id,
        type=n.type,
        status=item.status.value,
        days_until_expiry=item.days,
        message=n.message,
        expiry_date=n.expiry_date,
        email_sent=bool(n.email_sent),
        email_stage=n.email_stage,
        source_type=n.source_type,
        source_id=n.source_id,
        created_at=n.created_at,
        updated_at=n.updated_at,
        vehicle=VehicleSummary(
            plate_number=item.vehicle.plate_number,
            brand=item.vehicle.brand,
            model=item.vehicle.model,
        ),
    )


@router.get("", response_model=NotificationListResponse)
def list_notifications(
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    today: date = Depends(current_day),
):
    """All notifications of the current user, soonest deadline first"""
    items = list_for_user(db, user.id, status_filter=status, today=today)
    return NotificationListResponse(notifications=[_serialize(i) for i in items])


@router.get("/urgent", response_model=NotificationListResponse)
def list_urgent(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    today: date = Depends(current_day),
):
    items = urgent_for_user(db, user.id, today=today)
    return NotificationListResponse(notifications=[_serialize(i) for i in items])


@router.get("/vehicle/{vehicle_id}", response_model=NotificationListResponse)
def list_vehicle_notifications(
    vehicle_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    today: date = Depends(current_day),
):
    """Warning and critical notifications of one vehicle"""
    items = list_for_vehicle(db, user.id, vehicle_id, today=today)
    return NotificationListResponse(notifications=[_serialize(i) for i in items])


@router.get("/stats/summary", response_model=NotificationStatsResponse)
def notification_stats(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    today: date = Depends(current_day),
):
    stats = stats_for_user(db, user.id, today=today)
    return NotificationStatsResponse(
        total_notifications=stats.total,
        safe_count=stats.safe,
        warning_count=stats.warning,
        critical_count=stats.critical,
        expired_count=stats.expired,
        pending_email_count=stats.pending_email,
    )


@router.post("/send-emails", response_model=DispatchResponse)
def send_emails(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    transport: MailTransport = Depends(get_mail_transport),
    today: date = Depends(current_day),
):
    """Send the due reminder stages for the current user's deadlines now"""
    result = dispatch_for_user(db, transport, user.id, today=today)
    return DispatchResponse(
        message="Reminder dispatch completed",
        processed=result.processed,
        sent=result.sent,
        skipped=result.skipped,
        errors=result.errors,
    )


@router.put("/{notification_id}", response_model=NotificationResponse)
def edit_notification(
    notification_id: uuid.UUID,
    body: NotificationUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    today: date = Depends(current_day),
):
    """Mark a deadline as handled (status=safe) or flip its email flag"""
    row = update_notification(db, user.id, notification_id, status=body.status, email_sent=body.email_sent)
    return _serialize(live_view(row, today))


@router.delete("/{notification_id}")
def remove_notification(
    notification_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    delete_notification(db, user.id, notification_id)
    return {"message": "Notification deleted"}
