"""
Tests for cost aggregation and CSV export.
"""

import csv
import io
from datetime import date
from decimal import Decimal

import pytest

from abordo.errors import ValidationError
from abordo.models.models import CarTax, Inspection, Insurance, Maintenance
from abordo.services.costs import CSV_HEADER, export_filename, export_rows, summary, to_csv


START = date(2026, 1, 1)
END = date(2026, 3, 31)


@pytest.fixture
def costs(db, vehicle):
    db.add_all([
        Maintenance(vehicle_id=vehicle.id, kind="brakes", last_maintenance=date(2026, 2, 1), cost=Decimal("120.00"), description="Pastiglie, dischi\nanteriori"),
        Maintenance(vehicle_id=vehicle.id, kind="tires", last_maintenance=date(2025, 12, 31), cost=Decimal("999.00")),
        Maintenance(vehicle_id=vehicle.id, kind="filters", last_maintenance=date(2026, 3, 31)),
        Inspection(vehicle_id=vehicle.id, last_inspection_date=date(2026, 1, 1), next_inspection_date=date(2028, 1, 1), cost=Decimal("79.02"), inspection_center="Centro Revisioni"),
        CarTax(vehicle_id=vehicle.id, expiry_date=date(2026, 3, 15), amount=Decimal("210.50"), region="Lazio"),
        Insurance(vehicle_id=vehicle.id, company="Allianz", policy_number="P-1", expiry_date=date(2026, 4, 1), annual_premium=Decimal("540.00")),
    ])
    db.commit()


def test_summary_respects_inclusive_range(db, user, costs):
    s = summary(db, user.id, START, END)

    assert s.totals == {
        "maintenance": Decimal("120.00"),
        "inspections": Decimal("79.02"),
        "taxes": Decimal("210.50"),
        "insurances": Decimal("0.00"),
    }
    assert s.total == Decimal("409.52")


def test_summary_ignores_other_users(db, user, make_user, make_vehicle):
    other = make_vehicle(make_user())
    db.add(CarTax(vehicle_id=other.id, expiry_date=date(2026, 2, 1), amount=Decimal("300.00"), region="Lombardia"))
    db.commit()

    assert summary(db, user.id, START, END).total == Decimal("0.00")


def test_empty_range_is_all_zero(db, user):
    s = summary(db, user.id, START, START)
    assert set(s.totals.values()) == {Decimal("0.00")}


def test_reversed_range_is_rejected(db, user):
    with pytest.raises(ValidationError):
        summary(db, user.id, END, START)
    with pytest.raises(ValidationError):
        export_rows(db, user.id, END, START)


def test_export_rows_by_category_then_date(db, user, costs):
    rows = export_rows(db, user.id, START, END)

    assert [(r.category, r.date) for r in rows] == [
        ("Maintenance", date(2026, 2, 1)),
        ("Maintenance", date(2026, 3, 31)),
        ("Inspection", date(2026, 1, 1)),
        ("CarTax", date(2026, 3, 15)),
    ]
    assert rows[1].amount == Decimal("0.00")


def test_csv_flattens_line_breaks_and_quotes_commas(db, user, costs):
    text = to_csv(export_rows(db, user.id, START, END))
    lines = text.splitlines()

    assert lines[0] == ",".join(CSV_HEADER)
    assert lines[1] == 'Maintenance,AB001CD,Fiat,Panda,2026-02-01,"Pastiglie, dischi anteriori",120.00'
    assert lines[-1] == "CarTax,AB001CD,Fiat,Panda,2026-03-15,Lazio,210.50"
    assert len(lines) == 5
    assert list(csv.reader(io.StringIO(text)))[1][5] == "Pastiglie, dischi anteriori"


def test_export_filename():
    assert export_filename(START, END) == "costs_2026-01-01_to_2026-03-31.csv"
