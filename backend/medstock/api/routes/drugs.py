"""Drug catalog CRUD, expiring-soon list and CSV import/export.

Static paths (/expiring, /export, /importcsv) are declared before /{drug_id}.
"""
from typing import Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile
from sqlalchemy.orm import Session

from medstock.api.deps import get_db, get_current_user
from medstock.models.user import User
from medstock.schemas.drug import DrugCreate, DrugUpdate
from medstock.services import drug_service
from medstock.services.csv_utils import csv_response, decode_upload

router = APIRouter()


@router.get("")
def list_drugs(
    created_by: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    drugs = drug_service.list_drugs(db, current_user, created_by=created_by)
    return {"status": True, "drugs": [drug_service.drug_to_dict(d) for d in drugs]}


@router.post("", status_code=201)
def create_drug(
    body: DrugCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    drug = drug_service.create_drug(db, current_user, body)
    return {"status": True, "message": "Drug added successfully", "drug": drug_service.drug_to_dict(drug)}


@router.get("/expiring")
def expiring_drugs(
    days: int = Query(30),
    limit: int = Query(10, ge=1, le=100),
    page: int = Query(1, ge=1),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return drug_service.expiring_drugs(db, current_user, days=days, limit=limit, page=page)


@router.get("/export")
def export_drugs(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    rows = drug_service.export_rows(db, current_user)
    return csv_response(drug_service.EXPORT_HEADER, rows, "drugs_export.csv")


@router.post("/importcsv")
def import_drugs(
    file: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    raw = file.file.read() if file else b""
    return drug_service.import_drugs(db, current_user, decode_upload(raw))


@router.get("/{drug_id}")
def get_drug(
    drug_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    drug = drug_service.get_drug(db, current_user, drug_id)
    return {"status": True, "drug": drug_service.drug_to_dict(drug)}


@router.put("/{drug_id}")
def update_drug(
    drug_id: int,
    body: DrugUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    drug = drug_service.update_drug(db, current_user, drug_id, body)
    return {"status": True, "message": "Drug updated successfully", "drug": drug_service.drug_to_dict(drug)}


@router.delete("/{drug_id}")
def delete_drug(
    drug_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return drug_service.delete_drug(db, current_user, drug_id)
