from datetime import date
from decimal import Decimal

from pydantic import BaseModel


class CostPeriod(BaseModel):
    start: date
    end: date


class CostTotals(BaseModel):
    maintenance: Decimal
    inspections: Decimal
    taxes: Decimal
    insurances: Decimal


class CostSummaryResponse(BaseModel):
    period: CostPeriod
    totals: CostTotals
    total: Decimal
