"""
Reminder email staging and dispatch.

A deadline gets at most one email per stage (warning at 30 days, critical at
7, final on the day or after). Stages only move forward within one deadline;
the synchronizer resets them when the deadline itself changes.
"""
from dataclasses import dataclass, field
from datetime import date
from html import escape
from typing import List, Optional, Tuple

import structlog
from sqlalchemy.orm import Session, joinedload

from ..config import settings
from ..models.models import EmailLog, Notification, User, Vehicle, utcnow
from .mailer import MailTransport
from .status import WARNING_DAYS, days_until, local_today, stage_for_days, stage_rank


EMAIL_TYPE = "expiry_notification"

TYPE_LABELS = {
    "insurance": "Assicurazione",
    "tax": "Bollo Auto",
    "inspection": "Revisione",
    "service": "Tagliando",
    "maintenance": "Manutenzione",
}


@dataclass
class DispatchResult:
    processed: int = 0
    sent: int = 0
    skipped: int = 0
    errors: List[dict] = field(default_factory=list)


def render_expiry_email(user: User, vehicle: Vehicle, notification: Notification, days: int) -> Tuple[str, str]:
    """Subject and HTML body of a deadline reminder."""
    if days < 0:
        subject = f"⏰ Scadenza scaduta: {notification.message}"
        remaining = f'<p style="margin: 5px 0; color: #b91c1c;"><strong>Scaduto da:</strong> {abs(days)} giorni</p>'
    else:
        subject = f"⚠️ Scadenza imminente: {notification.message}"
        remaining = f'<p style="margin: 5px 0;"><strong>Giorni rimanenti:</strong> {days}</p>'
    base_url = settings.frontend_url.rstrip("/")
    type_label = TYPE_LABELS.get(notification.type, notification.type)
    html = f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{escape(subject)}</title>
</head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
  <div style="background: #667eea; padding: 30px; border-radius: 10px 10px 0 0; text-align: center;">
    <h1 style="color: white; margin: 0; font-size: 24px;">A Bordo - Notifica Scadenza</h1>
  </div>
  <div style="background: white; padding: 30px; border: 1px solid #e5e7eb; border-radius: 0 0 10px 10px;">
    <p style="font-size: 16px;">Ciao <strong>{escape(user.first_name)}</strong>,</p>
    <p>ti ricordiamo una scadenza importante per il tuo veicolo:</p>
    <div style="background: #f3f4f6; padding: 20px; border-radius: 8px; margin-bottom: 20px;">
      <h3 style="margin: 0 0 15px 0;">Dettagli Veicolo</h3>
      <p style="margin: 5px 0;"><strong>Targa:</strong> {escape(vehicle.plate_number)}</p>
      <p style="margin: 5px 0;"><strong>Marca/Modello:</strong> {escape(vehicle.brand)} {escape(vehicle.model)}</p>
      <p style="margin: 5px 0;"><strong>Anno:</strong> {vehicle.year}</p>
    </div>
    <div style="background: #fef2f2; border-left: 4px solid #dc2626; padding: 20px; margin-bottom: 20px;">
      <h3 style="margin: 0 0 15px 0; color: #dc2626;">Dettagli Scadenza</h3>
      <p style="margin: 5px 0;"><strong>Tipo:</strong> {escape(type_label)}</p>
      <p style="margin: 5px 0;"><strong>Descrizione:</strong> {escape(notification.message)}</p>
      <p style="margin: 5px 0;"><strong>Data di scadenza:</strong> {notification.expiry_date.strftime("%d/%m/%Y")}</p>
      {remaining}
    </div>
    <div style="text-align: center; margin: 30px 0;">
      <a href="{escape(base_url)}" style="background: #3b82f6; color: white; padding: 12px 24px; text-decoration: none; border-radius: 6px;">Vai alla Dashboard</a>
    </div>
    <p style="color: #6b7280; font-size: 14px;">
      Ricevi questa email perché hai attivato le notifiche per le scadenze dei tuoi veicoli su A Bordo.<br>
      <a href="{escape(base_url)}/settings" style="color: #3b82f6;">Gestisci le tue preferenze</a>
    </p>
  </div>
</body>
</html>
"""
    return subject, html


def eligible_rows(db: Session, user_id=None, today: Optional[date] = None) -> List[Tuple[Notification, int]]:
    """Opted-in, non-overridden notifications due within the warning window, soonest first."""
    today = today or local_today()
    q = (
        db.query(Notification)
        .join(Vehicle, Notification.vehicle_id == Vehicle.id)
        .join(User, Vehicle.user_id == User.id)
        .filter(User.email_notifications.is_(True), Notification.status_override.is_(False))
        .options(joinedload(Notification.vehicle).joinedload(Vehicle.owner))
    )
    if user_id is not None:
        q = q.filter(Vehicle.user_id == user_id)
    rows = [(n, days_until(n.expiry_date, today)) for n in q.all()]
    rows = [(n, d) for n, d in rows if d <= WARNING_DAYS]
    rows.sort(key=lambda pair: pair[1])
    return rows


def _send_one(db: Session, transport: MailTransport, notification: Notification, days: int, stage: str) -> None:
    vehicle = notification.vehicle
    user = vehicle.owner
    subject, html = render_expiry_email(user, vehicle, notification, days)
    try:
        message_id = transport.send(user.email, subject, html)
    except Exception as e:
        db.add(EmailLog(
            user_id=user.id,
            notification_id=notification.id,
            email_type=EMAIL_TYPE,
            recipient_email=user.email,
            status="failed",
            error_message=str(e),
            email_stage=stage,
            sent_at=utcnow(),
        ))
        db.commit()
        raise
    notification.email_stage = stage
    notification.email_sent = True
    db.add(EmailLog(
        user_id=user.id,
        notification_id=notification.id,
        email_type=EMAIL_TYPE,
        recipient_email=user.email,
        status="sent",
        email_stage=stage,
        provider_message_id=message_id,
        sent_at=utcnow(),
    ))
    db.commit()


def dispatch(db: Session, transport: MailTransport, user_id=None, today: Optional[date] = None) -> DispatchResult:
    """
    Send every due reminder stage not sent yet.

    One failing row is rolled back, logged and reported in ``errors``; the rest
    still go out.
    Safe to run repeatedly: a stage already recorded on the row is skipped.
    """
    log = structlog.get_logger()
    rows = eligible_rows(db, user_id, today)
    result = DispatchResult(processed=len(rows))
    for notification, days in rows:
        stage = stage_for_days(days)
        if stage is None or stage_rank(stage) <= stage_rank(notification.email_stage):
            result.skipped += 1
            continue
        notification_id = notification.id
        try:
            _send_one(db, transport, notification, days, stage.value)
            result.sent += 1
            log.info("reminder_email_sent", notification_id=str(notification_id), stage=stage.value, provider=transport.name)
        except Exception as e:
            # Drop whatever this row left pending so the next commit cannot save it
            db.rollback()
            result.errors.append({"notification_id": str(notification_id), "message": str(e)})
            log.warning("reminder_email_failed", notification_id=str(notification_id), stage=stage.value, error=str(e))
    return result


def dispatch_for_user(db: Session, transport: MailTransport, user_id, today: Optional[date] = None) -> DispatchResult:
    return dispatch(db, transport, user_id=user_id, today=today)


def sweep_all(db: Session, transport: MailTransport, today: Optional[date] = None) -> DispatchResult:
    result = dispatch(db, transport, today=today)
    structlog.get_logger().info(
        "reminder_sweep_completed",
        processed=result.processed,
        sent=result.sent,
        skipped=result.skipped,
        failed=len(result.errors),
    )
    return result
