"""
Cost aggregation over a user's vehicles for an inclusive date range.

Each category is dated by its own column: maintenance by the day it was done,
inspections by the last inspection, taxes and insurances by their expiry.
"""
import csv
import io
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..errors import ValidationError
from ..models.models import CarTax, Inspection, Insurance, Maintenance, Vehicle


CSV_HEADER = ["Category", "PlateNumber", "Brand", "Model", "Date", "Description", "Amount"]

# (summary key, export category, model, date column, amount column, description column)
CATEGORIES = (
    ("maintenance", "Maintenance", Maintenance, Maintenance.last_maintenance, Maintenance.cost, Maintenance.description),
    ("inspections", "Inspection", Inspection, Inspection.last_inspection_date, Inspection.cost, Inspection.inspection_center),
    ("taxes", "CarTax", CarTax, CarTax.expiry_date, CarTax.amount, CarTax.region),
    ("insurances", "Insurance", Insurance, Insurance.expiry_date, Insurance.annual_premium, Insurance.company),
)

ZERO = Decimal("0.00")


@dataclass
class CostSummary:
    start: date
    end: date
    totals: Dict[str, Decimal] = field(default_factory=dict)

    @property
    def total(self) -> Decimal:
        return sum(self.totals.values(), ZERO)


@dataclass
class CostRow:
    category: str
    plate_number: str
    brand: str
    model: str
    date: date
    description: Optional[str]
    amount: Decimal


def _check_range(start: date, end: date) -> None:
    if start > end:
        raise ValidationError("start must not be after end")


def summary(db: Session, user_id, start: date, end: date) -> CostSummary:
    _check_range(start, end)
    result = CostSummary(start=start, end=end)
    for key, _, model, date_col, amount_col, _ in CATEGORIES:
        total = (
            db.query(func.coalesce(func.sum(amount_col), 0))
            .select_from(model)
            .join(Vehicle, model.vehicle_id == Vehicle.id)
            .filter(Vehicle.user_id == user_id, date_col.between(start, end))
            .scalar()
        )
        result.totals[key] = Decimal(str(total or 0)).quantize(ZERO)
    return result


def export_rows(db: Session, user_id, start: date, end: date) -> List[CostRow]:
    _check_range(start, end)
    rows: List[CostRow] = []
    for _, category, model, date_col, amount_col, desc_col in CATEGORIES:
        q = (
            db.query(Vehicle.plate_number, Vehicle.brand, Vehicle.model, date_col, desc_col, amount_col)
            .select_from(model)
            .join(Vehicle, model.vehicle_id == Vehicle.id)
            .filter(Vehicle.user_id == user_id, date_col.between(start, end))
            .order_by(date_col.asc())
        )
        for plate, brand, model_name, day, description, amount in q.all():
            rows.append(CostRow(
                category=category,
                plate_number=plate,
                brand=brand,
                model=model_name,
                date=day,
                description=description,
                amount=Decimal(str(amount or 0)).quantize(ZERO),
            ))
    return rows


def _flatten(text: Optional[str]) -> str:
    return (text or "").replace("\r\n", " ").replace("\r", " ").replace("\n", " ")


def to_csv(rows: Iterable[CostRow]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for r in rows:
        writer.writerow([
            r.category,
            r.plate_number,
            r.brand,
            r.model,
            r.date.isoformat() if r.date else "",
            _flatten(r.description),
            f"{r.amount:.2f}",
        ])
    return buf.getvalue()


def export_filename(start: date, end: date) -> str:
    return f"costs_{start.isoformat()}_to_{end.isoformat()}.csv"
