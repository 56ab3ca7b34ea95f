import uuid
from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel


class VehicleSummary(BaseModel):
    plate_number: str
    brand: str
    model: str


class NotificationResponse(BaseModel):
    id: uuid.UUID
    vehicle_id: uuid.UUID
    type: str
    status: str  # live status, not the stored snapshot
    days_until_expiry: int
    message: str
    expiry_date: date
    email_sent: bool
    email_stage: Optional[str] = None
    source_type: Optional[str] = None
    source_id: Optional[uuid.UUID] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    vehicle: VehicleSummary


class NotificationListResponse(BaseModel):
    notifications: List[NotificationResponse]


class NotificationUpdate(BaseModel):
    # Loosely typed on purpose: unknown values are dropped, not rejected
    status: Optional[str] = None
    email_sent: Optional[bool] = None


class NotificationStatsResponse(BaseModel):
    total_notifications: int
    safe_count: int
    warning_count: int
    critical_count: int
    expired_count: int
    pending_email_count: int


class DispatchError(BaseModel):
    notification_id: str
    message: str


class DispatchResponse(BaseModel):
    message: str
    processed: int
    sent: int
    skipped: int
    errors: List[DispatchError]
