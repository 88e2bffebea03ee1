"""Drug type / drug name taxonomy. Reads for everyone, writes for admins."""
from typing import Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile
from sqlalchemy.orm import Session

from medstock.api.deps import get_db, get_current_user
from medstock.core.permissions import ROLE_ADMIN, require_roles
from medstock.models.user import User
from medstock.schemas.catalog import DrugNameCreate, DrugTypeCreate
from medstock.services import catalog_service
from medstock.services.csv_utils import csv_response, decode_upload

types_router = APIRouter()
names_router = APIRouter()

admin_only = require_roles(ROLE_ADMIN)


# ==============================================================================
# /drug-types
# ==============================================================================

@types_router.get("")
def list_types(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    types = catalog_service.list_types(db)
    return {"status": True, "drugTypes": [catalog_service.type_to_dict(t) for t in types]}


@types_router.post("", status_code=201)
def create_type(
    body: DrugTypeCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_only),
):
    drug_type = catalog_service.create_type(db, current_user, body.type_name)
    return {"status": True, "message": "Drug type created", "drugType": catalog_service.type_to_dict(drug_type)}


@types_router.get("/export")
def export_types(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return csv_response(["Drug Type"], catalog_service.export_type_rows(db), "drug_types.csv")


@types_router.post("/importcsv")
def import_types(
    file: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_only),
):
    raw = file.file.read() if file else b""
    return catalog_service.import_types(db, current_user, decode_upload(raw))


@types_router.delete("/{type_id}")
def delete_type(
    type_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_only),
):
    catalog_service.delete_type(db, current_user, type_id)
    return {"status": True, "message": "Drug type deleted"}


@types_router.get("/{type_id}/names")
def list_names(
    type_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    names = catalog_service.list_names(db, type_id)
    return {"status": True, "drugNames": [catalog_service.name_to_dict(n) for n in names]}


@types_router.post("/{type_id}/names", status_code=201)
def create_name(
    type_id: int,
    body: DrugNameCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_only),
):
    drug_name = catalog_service.create_name(db, current_user, type_id, body.name)
    return {"status": True, "message": "Drug name added", "drugName": catalog_service.name_to_dict(drug_name)}


# ==============================================================================
# /drug-names
# ==============================================================================

@names_router.post("/importcsv")
def import_names(
    file: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_only),
):
    """CSV rows: type_name, name. Missing types are created."""
    raw = file.file.read() if file else b""
    return catalog_service.import_names(db, current_user, decode_upload(raw))


@names_router.get("/export")
def export_names(
    type_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    rows = catalog_service.export_name_rows(db, type_id=type_id)
    return csv_response(["Drug Type", "Drug Name"], rows, "drug_names.csv")
