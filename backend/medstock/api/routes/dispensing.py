"""Daily dispensing: record, import, list and undo today's dispensing."""
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from sqlalchemy.orm import Session

from medstock.api.deps import get_db
from medstock.core.exceptions import ValidationError
from medstock.core.permissions import ROLE_PHARMACY, require_roles
from medstock.models.user import User
from medstock.schemas.dispensing import DispensingCreate
from medstock.services import dispensing_service
from medstock.services.csv_utils import decode_upload, parse_date

router = APIRouter()

pharmacy_only = require_roles(ROLE_PHARMACY)


def _query_date(value: Optional[str], field: str) -> Optional[date]:
    if not value or value.lower() == "today":
        return None
    try:
        return parse_date(value)
    except ValueError:
        raise ValidationError(f"Invalid {field} '{value}'")


@router.post("")
def record_dispensing(
    body: DispensingCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(pharmacy_only),
):
    return dispensing_service.record_dispensing(
        db,
        current_user,
        drug_id=body.drug_id,
        quantity_dispensed=body.quantity_dispensed,
        category=body.category,
        notes=body.notes,
        dispensing_date=body.dispensing_date,
    )


@router.post("/importcsv")
def import_dispensing(
    file: Optional[UploadFile] = File(None),
    dispensing_date: Optional[str] = Form(None),
    category: str = Form("OPD"),
    db: Session = Depends(get_db),
    current_user: User = Depends(pharmacy_only),
):
    """CSV rows: drug_name, quantity_dispensed, notes."""
    raw = file.file.read() if file else b""
    text = decode_upload(raw)
    return dispensing_service.import_dispensing(
        db,
        current_user,
        text,
        category=category,
        dispensing_date=_query_date(dispensing_date, "dispensing_date"),
    )


@router.get("")
def list_dispensing(
    day: Optional[str] = Query("today", alias="date"),
    category: Optional[str] = Query("all"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user: User = Depends(pharmacy_only),
):
    return dispensing_service.list_dispensing(
        db, current_user, day=_query_date(day, "date"), category=category, page=page, limit=limit
    )


@router.get("/today")
def today_dispensing(
    db: Session = Depends(get_db),
    current_user: User = Depends(pharmacy_only),
):
    return dispensing_service.today_dispensing(db, current_user)


@router.get("/summary")
def dispensing_summary(
    start_date: Optional[str] = Query(None),
    end_date: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(pharmacy_only),
):
    start = _query_date(start_date, "start_date") or date.today()
    end = _query_date(end_date, "end_date")
    return dispensing_service.dispensing_summary(db, current_user, start, end)


@router.delete("/{record_id}")
def delete_dispensing(
    record_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(pharmacy_only),
):
    return dispensing_service.delete_dispensing(db, current_user, record_id)
