import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from enum import Enum

from pydantic import BaseModel, Field, field_validator


# Enums
class FuelType(str, Enum):
    gasoline = "gasoline"
    diesel = "diesel"
    hybrid = "hybrid"
    electric = "electric"
    lpg = "lpg"
    methane = "methane"


class MaintenanceKind(str, Enum):
    oil_change = "oil_change"
    filters = "filters"
    belts = "belts"
    brakes = "brakes"
    tires = "tires"
    adblue = "adblue"


class ServiceType(str, Enum):
    regular = "regular"
    major = "major"


# Short names sent by older clients
MAINTENANCE_KIND_ALIASES = {"oil": "oil_change"}


def _check_year(v: Optional[int]) -> Optional[int]:
    if v is not None and not (1900 <= v <= datetime.now().year + 1):
        raise ValueError(f"year must be between 1900 and {datetime.now().year + 1}")
    return v


def _normalize_plate(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    v = v.strip().upper()
    if not v:
        raise ValueError("plate_number must not be empty")
    return v


# Vehicle Schemas
class VehicleBase(BaseModel):
    class Config:
        use_enum_values = True

    plate_number: str = Field(max_length=20)
    brand: str = Field(min_length=1, max_length=100)
    model: str = Field(min_length=1, max_length=100)
    year: int
    current_mileage: int = Field(default=0, ge=0)
    fuel_type: FuelType

    @field_validator("plate_number")
    @classmethod
    def normalize_plate(cls, v):
        return _normalize_plate(v)

    @field_validator("year")
    @classmethod
    def check_year(cls, v):
        return _check_year(v)


class VehicleCreate(VehicleBase):
    pass


class VehicleUpdate(BaseModel):
    class Config:
        use_enum_values = True

    plate_number: Optional[str] = Field(default=None, max_length=20)
    brand: Optional[str] = Field(default=None, min_length=1, max_length=100)
    model: Optional[str] = Field(default=None, min_length=1, max_length=100)
    year: Optional[int] = None
    current_mileage: Optional[int] = Field(default=None, ge=0)
    fuel_type: Optional[FuelType] = None

    @field_validator("plate_number")
    @classmethod
    def normalize_plate(cls, v):
        return _normalize_plate(v)

    @field_validator("year")
    @classmethod
    def check_year(cls, v):
        return _check_year(v)


class VehicleResponse(VehicleBase):
    id: uuid.UUID
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class MileageStatus(BaseModel):
    remaining_km: int
    status: str


# Insurance Schemas
class InsuranceBase(BaseModel):
    company: str = Field(min_length=1, max_length=100)
    policy_number: str = Field(default="", max_length=100)
    expiry_date: date
    annual_premium: Decimal = Field(ge=0)


class InsuranceCreate(InsuranceBase):
    pass


class InsuranceUpdate(BaseModel):
    company: Optional[str] = Field(default=None, min_length=1, max_length=100)
    policy_number: Optional[str] = Field(default=None, max_length=100)
    expiry_date: Optional[date] = None
    annual_premium: Optional[Decimal] = Field(default=None, ge=0)


class InsuranceResponse(InsuranceBase):
    id: uuid.UUID
    vehicle_id: uuid.UUID
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Car Tax Schemas
class CarTaxBase(BaseModel):
    expiry_date: date
    amount: Decimal = Field(ge=0)
    region: str = Field(min_length=1, max_length=100)
    is_paid: bool = False


class CarTaxCreate(CarTaxBase):
    pass


class CarTaxUpdate(BaseModel):
    expiry_date: Optional[date] = None
    amount: Optional[Decimal] = Field(default=None, ge=0)
    region: Optional[str] = Field(default=None, min_length=1, max_length=100)
    is_paid: Optional[bool] = None


class CarTaxResponse(CarTaxBase):
    id: uuid.UUID
    vehicle_id: uuid.UUID
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Inspection Schemas
class InspectionBase(BaseModel):
    last_inspection_date: date
    next_inspection_date: date
    inspection_center: Optional[str] = Field(default=None, max_length=200)
    cost: Optional[Decimal] = Field(default=None, ge=0)


class InspectionCreate(InspectionBase):
    pass


class InspectionUpdate(BaseModel):
    last_inspection_date: Optional[date] = None
    next_inspection_date: Optional[date] = None
    inspection_center: Optional[str] = Field(default=None, max_length=200)
    cost: Optional[Decimal] = Field(default=None, ge=0)


class InspectionResponse(InspectionBase):
    id: uuid.UUID
    vehicle_id: uuid.UUID
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Service Schemas
class ServiceBase(BaseModel):
    class Config:
        use_enum_values = True

    last_service_mileage: int = Field(ge=0)
    last_service_date: date
    service_interval: int = Field(gt=0)
    next_service_mileage: Optional[int] = Field(default=None, ge=0)
    service_type: ServiceType = ServiceType.regular


class ServiceCreate(ServiceBase):
    pass


class ServiceUpdate(BaseModel):
    class Config:
        use_enum_values = True

    last_service_mileage: Optional[int] = Field(default=None, ge=0)
    last_service_date: Optional[date] = None
    service_interval: Optional[int] = Field(default=None, gt=0)
    next_service_mileage: Optional[int] = Field(default=None, ge=0)
    service_type: Optional[ServiceType] = None


class ServiceResponse(ServiceBase):
    id: uuid.UUID
    vehicle_id: uuid.UUID
    created_at: datetime
    updated_at: Optional[datetime] = None
    mileage_status: Optional[MileageStatus] = None

    class Config:
        from_attributes = True


# Maintenance Schemas
class MaintenanceBase(BaseModel):
    class Config:
        use_enum_values = True

    kind: MaintenanceKind
    title: Optional[str] = Field(default=None, max_length=255)
    last_maintenance: date
    last_mileage: Optional[int] = Field(default=None, ge=0)
    next_maintenance: Optional[date] = None
    next_mileage: Optional[int] = Field(default=None, ge=0)
    cost: Optional[Decimal] = Field(default=None, ge=0)
    description: Optional[str] = None

    @field_validator("kind", mode="before")
    @classmethod
    def map_kind(cls, v):
        if isinstance(v, str):
            return MAINTENANCE_KIND_ALIASES.get(v, v)
        return v

    @field_validator("title", "description")
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v.strip() if isinstance(v, str) else v


class MaintenanceCreate(MaintenanceBase):
    pass


class MaintenanceUpdate(BaseModel):
    class Config:
        use_enum_values = True

    kind: Optional[MaintenanceKind] = None
    title: Optional[str] = Field(default=None, max_length=255)
    last_maintenance: Optional[date] = None
    last_mileage: Optional[int] = Field(default=None, ge=0)
    next_maintenance: Optional[date] = None
    next_mileage: Optional[int] = Field(default=None, ge=0)
    cost: Optional[Decimal] = Field(default=None, ge=0)
    description: Optional[str] = None
    # Explicit "mark done": wipe the next-due fields
    clear_next_maintenance: bool = False
    clear_next_mileage: bool = False

    @field_validator("kind", mode="before")
    @classmethod
    def map_kind(cls, v):
        if isinstance(v, str):
            return MAINTENANCE_KIND_ALIASES.get(v, v)
        return v


class MaintenanceResponse(MaintenanceBase):
    id: uuid.UUID
    vehicle_id: uuid.UUID
    created_at: datetime
    updated_at: Optional[datetime] = None
    mileage_status: Optional[MileageStatus] = None

    class Config:
        from_attributes = True


class VehicleDetailResponse(VehicleResponse):
    insurances: List[InsuranceResponse] = []
    taxes: List[CarTaxResponse] = []
    inspections: List[InspectionResponse] = []
    services: List[ServiceResponse] = []
    maintenances: List[MaintenanceResponse] = []
