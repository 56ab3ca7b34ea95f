from fastapi import APIRouter, Depends
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from typing import List
from datetime import date, datetime, timezone
import uuid

from ..config import settings
from ..db import get_db
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models.models import User, Vehicle, Insurance, CarTax, Inspection, Service, Maintenance
from ..auth.security import get_current_user
from ..schemas.vehicles import (
    VehicleCreate,
    VehicleUpdate,
    VehicleResponse,
    VehicleDetailResponse,
    MileageStatus,
    InsuranceCreate,
    InsuranceUpdate,
    InsuranceResponse,
    CarTaxCreate,
    CarTaxUpdate,
    CarTaxResponse,
    InspectionCreate,
    InspectionUpdate,
    InspectionResponse,
    ServiceCreate,
    ServiceUpdate,
    ServiceResponse,
    MaintenanceCreate,
    MaintenanceUpdate,
    MaintenanceResponse,
)
from ..services.notification_query import mileage_status
from ..services.notifications import (
    forget_source,
    safe_sync,
    seed_initial_notifications,
    source_deadline,
    sync_source,
)
from ..services.status import current_day

router = APIRouter(prefix="/vehicles", tags=["vehicles"])


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _get_vehicle(db: Session, user: User, vehicle_id: uuid.UUID) -> Vehicle:
    vehicle = db.query(Vehicle).filter(Vehicle.id == vehicle_id, Vehicle.user_id == user.id).first()
    if not vehicle:
        raise NotFoundError("Vehicle not found")
    return vehicle


def _get_item(db: Session, model, vehicle: Vehicle, item_id: uuid.UUID):
    item = db.query(model).filter(model.id == item_id, model.vehicle_id == vehicle.id).first()
    if not item:
        raise NotFoundError(f"{model.__name__} not found")
    return item


def _commit_unique_plate(db: Session) -> None:
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("A vehicle with this plate number already exists")


def _plate_taken(db: Session, user: User, plate: str, exclude_id=None) -> bool:
    q = db.query(Vehicle.id).filter(Vehicle.user_id == user.id, Vehicle.plate_number == plate)
    if exclude_id is not None:
        q = q.filter(Vehicle.id != exclude_id)
    return q.first() is not None


def _delete_source(db: Session, item, today: date) -> None:
    """Delete a deadline-bearing record, then drop its notification."""
    type_, scope, _, _ = source_deadline(item)
    vehicle_id = item.vehicle_id
    db.delete(item)
    db.commit()
    safe_sync(db, forget_source, vehicle_id, type_, scope, today)


# Vehicles
@router.get("", response_model=List[VehicleResponse])
def list_vehicles(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return db.query(Vehicle).filter(Vehicle.user_id == user.id).order_by(Vehicle.created_at.desc()).all()


@router.post("", response_model=VehicleResponse, status_code=201)
def create_vehicle(
    body: VehicleCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    today: date = Depends(current_day),
):
    if _plate_taken(db, user, body.plate_number):
        raise ConflictError("A vehicle with this plate number already exists")
    vehicle = Vehicle(user_id=user.id, **body.model_dump())
    db.add(vehicle)
    _commit_unique_plate(db)
    db.refresh(vehicle)
    if settings.seed_initial_notifications:
        safe_sync(db, seed_initial_notifications, vehicle, today)
    return vehicle


@router.get("/{vehicle_id}", response_model=VehicleDetailResponse)
def get_vehicle(vehicle_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    """Vehicle with every source record; services and maintenance carry their live mileage status"""
    vehicle = _get_vehicle(db, user, vehicle_id)
    km = vehicle.current_mileage
    detail = VehicleDetailResponse.model_validate(vehicle)
    services = []
    for s in vehicle.services:
        item = ServiceResponse.model_validate(s)
        status = mileage_status(km, s.next_service_mileage)
        services.append(item.model_copy(update={"mileage_status": MileageStatus(**status) if status else None}))
    maintenances = []
    for m in vehicle.maintenances:
        item = MaintenanceResponse.model_validate(m)
        status = mileage_status(km, m.next_mileage)
        maintenances.append(item.model_copy(update={"mileage_status": MileageStatus(**status) if status else None}))
    return detail.model_copy(update={"services": services, "maintenances": maintenances})


@router.put("/{vehicle_id}", response_model=VehicleResponse)
def update_vehicle(
    vehicle_id: uuid.UUID,
    body: VehicleUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    vehicle = _get_vehicle(db, user, vehicle_id)
    data = body.model_dump(exclude_unset=True)
    if "current_mileage" in data and data["current_mileage"] is not None:
        if data["current_mileage"] < vehicle.current_mileage:
            raise ValidationError("Mileage cannot decrease", {"current_mileage": vehicle.current_mileage})
    if data.get("plate_number") and _plate_taken(db, user, data["plate_number"], exclude_id=vehicle.id):
        raise ConflictError("A vehicle with this plate number already exists")
    for k, v in data.items():
        if v is not None:
            setattr(vehicle, k, v)
    vehicle.updated_at = _now()
    _commit_unique_plate(db)
    db.refresh(vehicle)
    return vehicle


@router.delete("/{vehicle_id}")
def delete_vehicle(vehicle_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    """Delete a vehicle; its records and notifications go with it"""
    vehicle = _get_vehicle(db, user, vehicle_id)
    db.delete(vehicle)
    db.commit()
    return {"message": "Vehicle deleted"}


# Insurances
@router.get("/{vehicle_id}/insurances", response_model=List[InsuranceResponse])
def list_insurances(vehicle_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return _get_vehicle(db, user, vehicle_id).insurances


@router.post("/{vehicle_id}/insurances", response_model=InsuranceResponse, status_code=201)
def create_insurance(
    vehicle_id: uuid.UUID,
    body: InsuranceCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    today: date = Depends(current_day),
):
    vehicle = _get_vehicle(db, user, vehicle_id)
    item = Insurance(vehicle_id=vehicle.id, **body.model_dump())
    db.add(item)
    db.commit()
    safe_sync(db, sync_source, item, today)
    db.refresh(item)
    return item


@router.put("/{vehicle_id}/insurances/{insurance_id}", response_model=InsuranceResponse)
def update_insurance(
    vehicle_id: uuid.UUID,
    insurance_id: uuid.UUID,
    body: InsuranceUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    today: date = Depends(current_day),
):
    item = _get_item(db, Insurance, _get_vehicle(db, user, vehicle_id), insurance_id)
    for k, v in body.model_dump(exclude_unset=True).items():
        if v is not None:
            setattr(item, k, v)
    item.updated_at = _now()
    db.commit()
    safe_sync(db, sync_source, item, today)
    db.refresh(item)
    return item


@router.delete("/{vehicle_id}/insurances/{insurance_id}")
def delete_insurance(
    vehicle_id: uuid.UUID,
    insurance_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    today: date = Depends(current_day),
):
    item = _get_item(db, Insurance, _get_vehicle(db, user, vehicle_id), insurance_id)
    _delete_source(db, item, today)
    return {"message": "Insurance deleted"}


# Car taxes
@router.get("/{vehicle_id}/taxes", response_model=List[CarTaxResponse])
def list_taxes(vehicle_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return _get_vehicle(db, user, vehicle_id).taxes


@router.post("/{vehicle_id}/taxes", response_model=CarTaxResponse, status_code=201)
def create_tax(
    vehicle_id: uuid.UUID,
    body: CarTaxCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    today: date = Depends(current_day),
):
    vehicle = _get_vehicle(db, user, vehicle_id)
    item = CarTax(vehicle_id=vehicle.id, **body.model_dump())
    db.add(item)
    db.commit()
    safe_sync(db, sync_source, item, today)
    db.refresh(item)
    return item


@router.put("/{vehicle_id}/taxes/{tax_id}", response_model=CarTaxResponse)
def update_tax(
    vehicle_id: uuid.UUID,
    tax_id: uuid.UUID,
    body: CarTaxUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    today: date = Depends(current_day),
):
    item = _get_item(db, CarTax, _get_vehicle(db, user, vehicle_id), tax_id)
    for k, v in body.model_dump(exclude_unset=True).items():
        if v is not None:
            setattr(item, k, v)
    item.updated_at = _now()
    db.commit()
    safe_sync(db, sync_source, item, today)
    db.refresh(item)
    return item


@router.delete("/{vehicle_id}/taxes/{tax_id}")
def delete_tax(
    vehicle_id: uuid.UUID,
    tax_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    today: date = Depends(current_day),
):
    item = _get_item(db, CarTax, _get_vehicle(db, user, vehicle_id), tax_id)
    _delete_source(db, item, today)
    return {"message": "Car tax deleted"}


# Inspections
@router.get("/{vehicle_id}/inspections", response_model=List[InspectionResponse])
def list_inspections(vehicle_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return _get_vehicle(db, user, vehicle_id).inspections


@router.post("/{vehicle_id}/inspections", response_model=InspectionResponse, status_code=201)
def create_inspection(
    vehicle_id: uuid.UUID,
    body: InspectionCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    today: date = Depends(current_day),
):
    vehicle = _get_vehicle(db, user, vehicle_id)
    item = Inspection(vehicle_id=vehicle.id, **body.model_dump())
    db.add(item)
    db.commit()
    safe_sync(db, sync_source, item, today)
    db.refresh(item)
    return item


@router.put("/{vehicle_id}/inspections/{inspection_id}", response_model=InspectionResponse)
def update_inspection(
    vehicle_id: uuid.UUID,
    inspection_id: uuid.UUID,
    body: InspectionUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    today: date = Depends(current_day),
):
    item = _get_item(db, Inspection, _get_vehicle(db, user, vehicle_id), inspection_id)
    for k, v in body.model_dump(exclude_unset=True).items():
        if v is not None:
            setattr(item, k, v)
    item.updated_at = _now()
    db.commit()
    safe_sync(db, sync_source, item, today)
    db.refresh(item)
    return item


@router.delete("/{vehicle_id}/inspections/{inspection_id}")
def delete_inspection(
    vehicle_id: uuid.UUID,
    inspection_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    today: date = Depends(current_day),
):
    item = _get_item(db, Inspection, _get_vehicle(db, user, vehicle_id), inspection_id)
    _delete_source(db, item, today)
    return {"message": "Inspection deleted"}


# Services (mileage only, no notifications)
def _check_service_mileage(vehicle: Vehicle, last_km: int, next_km: int) -> None:
    if next_km < (vehicle.current_mileage or 0):
        raise ValidationError("Next service mileage must be at least the vehicle's current mileage")
    if last_km < 0:
        raise ValidationError("Last service mileage cannot be negative")
    if last_km > next_km:
        raise ValidationError("Last service mileage cannot exceed the next one")


@router.get("/{vehicle_id}/services", response_model=List[ServiceResponse])
def list_services(vehicle_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return _get_vehicle(db, user, vehicle_id).services


@router.post("/{vehicle_id}/services", response_model=ServiceResponse, status_code=201)
def create_service(
    vehicle_id: uuid.UUID,
    body: ServiceCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    vehicle = _get_vehicle(db, user, vehicle_id)
    data = body.model_dump()
    if data["next_service_mileage"] is None:
        data["next_service_mileage"] = data["last_service_mileage"] + data["service_interval"]
    _check_service_mileage(vehicle, data["last_service_mileage"], data["next_service_mileage"])
    item = Service(vehicle_id=vehicle.id, **data)
    db.add(item)
    db.commit()
    db.refresh(item)
    return item


@router.put("/{vehicle_id}/services/{service_id}", response_model=ServiceResponse)
def update_service(
    vehicle_id: uuid.UUID,
    service_id: uuid.UUID,
    body: ServiceUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    vehicle = _get_vehicle(db, user, vehicle_id)
    item = _get_item(db, Service, vehicle, service_id)
    data = {k: v for k, v in body.model_dump(exclude_unset=True).items() if v is not None}
    last_km = data.get("last_service_mileage", item.last_service_mileage)
    next_km = data.get("next_service_mileage", item.next_service_mileage)
    if next_km is not None:
        _check_service_mileage(vehicle, last_km, next_km)
    for k, v in data.items():
        setattr(item, k, v)
    item.updated_at = _now()
    db.commit()
    db.refresh(item)
    return item


@router.delete("/{vehicle_id}/services/{service_id}")
def delete_service(
    vehicle_id: uuid.UUID,
    service_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    item = _get_item(db, Service, _get_vehicle(db, user, vehicle_id), service_id)
    db.delete(item)
    db.commit()
    return {"message": "Service deleted"}


# Maintenance items
@router.get("/{vehicle_id}/maintenances", response_model=List[MaintenanceResponse])
def list_maintenances(vehicle_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return _get_vehicle(db, user, vehicle_id).maintenances


@router.post("/{vehicle_id}/maintenances", response_model=MaintenanceResponse, status_code=201)
def create_maintenance(
    vehicle_id: uuid.UUID,
    body: MaintenanceCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    today: date = Depends(current_day),
):
    vehicle = _get_vehicle(db, user, vehicle_id)
    item = Maintenance(vehicle_id=vehicle.id, **body.model_dump())
    db.add(item)
    db.commit()
    safe_sync(db, sync_source, item, today)
    db.refresh(item)
    return item


@router.put("/{vehicle_id}/maintenances/{maintenance_id}", response_model=MaintenanceResponse)
def update_maintenance(
    vehicle_id: uuid.UUID,
    maintenance_id: uuid.UUID,
    body: MaintenanceUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    today: date = Depends(current_day),
):
    """Update a maintenance item; clear_next_* flags mark it done and drop its notification"""
    item = _get_item(db, Maintenance, _get_vehicle(db, user, vehicle_id), maintenance_id)
    data = body.model_dump(exclude_unset=True)
    clear_date = data.pop("clear_next_maintenance", False)
    clear_km = data.pop("clear_next_mileage", False)
    for k, v in data.items():
        if v is not None:
            setattr(item, k, v)
    if clear_date:
        item.next_maintenance = None
    if clear_km:
        item.next_mileage = None
    item.updated_at = _now()
    db.commit()
    safe_sync(db, sync_source, item, today)
    db.refresh(item)
    return item


@router.delete("/{vehicle_id}/maintenances/{maintenance_id}")
def delete_maintenance(
    vehicle_id: uuid.UUID,
    maintenance_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    today: date = Depends(current_day),
):
    item = _get_item(db, Maintenance, _get_vehicle(db, user, vehicle_id), maintenance_id)
    _delete_source(db, item, today)
    return {"message": "Maintenance deleted"}
