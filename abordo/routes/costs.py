from fastapi import APIRouter, Depends
from fastapi.responses import Response
from sqlalchemy.orm import Session
from datetime import date

from ..db import get_db
from ..models.models import User
from ..auth.security import get_current_user
from ..schemas.costs import CostSummaryResponse, CostPeriod, CostTotals
from ..services import costs as cost_service

router = APIRouter(prefix="/costs", tags=["costs"])


@router.get("/summary", response_model=CostSummaryResponse)
def cost_summary(
    start: date,
    end: date,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Per-category spend over [start, end], both inclusive"""
    s = cost_service.summary(db, user.id, start, end)
    return CostSummaryResponse(
        period=CostPeriod(start=s.start, end=s.end),
        totals=CostTotals(**s.totals),
        total=s.total,
    )


@router.get("/export")
def cost_export(
    start: date,
    end: date,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    rows = cost_service.export_rows(db, user.id, start, end)
    filename = cost_service.export_filename(start, end)
    return Response(
        content=cost_service.to_csv(rows),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
