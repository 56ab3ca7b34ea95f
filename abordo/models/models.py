import uuid
from datetime import datetime, date, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Date,
    Boolean,
    ForeignKey,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
    Index,
    Uuid,
)
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def vehicle_fk() -> Mapped[uuid.UUID]:
    return mapped_column(Uuid(as_uuid=True), ForeignKey("vehicles.id", ondelete="CASCADE"), nullable=False, index=True)


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = uuid_pk()
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email_notifications: Mapped[bool] = mapped_column(Boolean, default=True)  # Opt-in for deadline reminder emails
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    vehicles = relationship("Vehicle", back_populates="owner", cascade="all, delete-orphan", passive_deletes=True)


class Vehicle(Base):
    __tablename__ = "vehicles"

    id: Mapped[uuid.UUID] = uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    plate_number: Mapped[str] = mapped_column(String(20), nullable=False)  # Stored upper-case
    brand: Mapped[str] = mapped_column(String(100), nullable=False)
    model: Mapped[str] = mapped_column(String(100), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    current_mileage: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # km
    fuel_type: Mapped[str] = mapped_column(String(20), nullable=False)  # gasoline|diesel|hybrid|electric|lpg|methane
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    owner = relationship("User", back_populates="vehicles")
    insurances = relationship("Insurance", back_populates="vehicle", cascade="all, delete-orphan", passive_deletes=True, order_by="Insurance.created_at.desc()")
    taxes = relationship("CarTax", back_populates="vehicle", cascade="all, delete-orphan", passive_deletes=True, order_by="CarTax.created_at.desc()")
    inspections = relationship("Inspection", back_populates="vehicle", cascade="all, delete-orphan", passive_deletes=True, order_by="Inspection.created_at.desc()")
    services = relationship("Service", back_populates="vehicle", cascade="all, delete-orphan", passive_deletes=True, order_by="Service.created_at.desc()")
    maintenances = relationship("Maintenance", back_populates="vehicle", cascade="all, delete-orphan", passive_deletes=True, order_by="Maintenance.created_at.desc()")
    notifications = relationship("Notification", back_populates="vehicle", cascade="all, delete-orphan", passive_deletes=True)

    __table_args__ = (
        UniqueConstraint("user_id", "plate_number", name="uq_vehicle_user_plate"),
    )


class Insurance(Base):
    __tablename__ = "insurances"

    id: Mapped[uuid.UUID] = uuid_pk()
    vehicle_id: Mapped[uuid.UUID] = vehicle_fk()
    company: Mapped[str] = mapped_column(String(100), nullable=False)
    policy_number: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    expiry_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    annual_premium: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    vehicle = relationship("Vehicle", back_populates="insurances")


class CarTax(Base):
    """Road tax (bollo auto)"""
    __tablename__ = "car_taxes"

    id: Mapped[uuid.UUID] = uuid_pk()
    vehicle_id: Mapped[uuid.UUID] = vehicle_fk()
    expiry_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    region: Mapped[str] = mapped_column(String(100), nullable=False)
    is_paid: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    vehicle = relationship("Vehicle", back_populates="taxes")


class Inspection(Base):
    """Periodic roadworthiness inspection (revisione)"""
    __tablename__ = "inspections"

    id: Mapped[uuid.UUID] = uuid_pk()
    vehicle_id: Mapped[uuid.UUID] = vehicle_fk()
    last_inspection_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    next_inspection_date: Mapped[date] = mapped_column(Date, nullable=False)
    inspection_center: Mapped[Optional[str]] = mapped_column(String(200))
    cost: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    vehicle = relationship("Vehicle", back_populates="inspections")


class Service(Base):
    """Mileage-based scheduled service (tagliando). Never projected into notifications."""
    __tablename__ = "services"

    id: Mapped[uuid.UUID] = uuid_pk()
    vehicle_id: Mapped[uuid.UUID] = vehicle_fk()
    last_service_mileage: Mapped[int] = mapped_column(Integer, nullable=False)
    last_service_date: Mapped[date] = mapped_column(Date, nullable=False)
    service_interval: Mapped[int] = mapped_column(Integer, nullable=False)  # km
    next_service_mileage: Mapped[Optional[int]] = mapped_column(Integer)
    service_type: Mapped[str] = mapped_column(String(20), nullable=False)  # regular|major
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    vehicle = relationship("Vehicle", back_populates="services")


class Maintenance(Base):
    """Maintenance item; due by date, by mileage, both, or neither once marked done"""
    __tablename__ = "maintenances"

    id: Mapped[uuid.UUID] = uuid_pk()
    vehicle_id: Mapped[uuid.UUID] = vehicle_fk()
    kind: Mapped[str] = mapped_column("type", String(50), nullable=False)  # oil_change|filters|belts|brakes|tires|adblue
    title: Mapped[Optional[str]] = mapped_column(String(255))
    last_maintenance: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    last_mileage: Mapped[Optional[int]] = mapped_column(Integer)
    next_maintenance: Mapped[Optional[date]] = mapped_column(Date)
    next_mileage: Mapped[Optional[int]] = mapped_column(Integer)
    cost: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    description: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    vehicle = relationship("Vehicle", back_populates="maintenances")


class Notification(Base):
    """Denormalized deadline projection of one source record (or one legacy aggregate per type)"""
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = uuid_pk()
    vehicle_id: Mapped[uuid.UUID] = vehicle_fk()
    type: Mapped[str] = mapped_column(String(50), nullable=False)  # insurance|tax|inspection|service|maintenance
    source_type: Mapped[Optional[str]] = mapped_column(String(50))  # NULL for aggregated/legacy rows
    source_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True))
    status: Mapped[str] = mapped_column(String(20), nullable=False)  # safe|warning|critical|expired at write time
    status_override: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)  # user marked it safe
    days_until_expiry: Mapped[int] = mapped_column(Integer, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    expiry_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    email_sent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    email_stage: Mapped[Optional[str]] = mapped_column(String(20))  # warning|critical|final
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    vehicle = relationship("Vehicle", back_populates="notifications")
    email_logs = relationship("EmailLog", back_populates="notification", cascade="all, delete-orphan", passive_deletes=True)

    __table_args__ = (
        UniqueConstraint("vehicle_id", "type", "source_type", "source_id", name="uq_notification_source"),
        Index("idx_notifications_vehicle_type", "vehicle_id", "type"),
        Index("idx_notifications_status", "status"),
    )


class EmailLog(Base):
    """Append-only record of every reminder send attempt"""
    __tablename__ = "email_logs"

    id: Mapped[uuid.UUID] = uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    notification_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("notifications.id", ondelete="CASCADE"), nullable=False, index=True)
    email_type: Mapped[str] = mapped_column(String(50), nullable=False)
    recipient_email: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)  # sent|failed
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    email_stage: Mapped[Optional[str]] = mapped_column(String(20))
    provider_message_id: Mapped[Optional[str]] = mapped_column(String(255))
    sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    notification = relationship("Notification", back_populates="email_logs")
