# backend/routes/stats.py
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from database import get_db
from models.users import User
from services.analytics import compute_statistics
from utils.tokenJWT import get_current_user
from schemas.stats import StatisticsResponse, RoiResponse

router = APIRouter(
    prefix="/stats",
    tags=["Stats"]
)


# === Endpoint 1: Full inventory statistics ===

@router.get("/inventory", response_model=StatisticsResponse)
def get_inventory_statistics(
    as_of: Optional[datetime] = Query(None, description="Report date (defaults to now)"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    report = compute_statistics(db, current_user.id, as_of=as_of)
    return StatisticsResponse.model_validate(report)


# === Endpoint 2: ROI only ===

@router.get("/inventory/roi", response_model=RoiResponse)
def get_roi_statistics(
    as_of: Optional[datetime] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    report = compute_statistics(db, current_user.id, as_of=as_of)
    return RoiResponse.model_validate({"roi": report.roi}, from_attributes=True)
