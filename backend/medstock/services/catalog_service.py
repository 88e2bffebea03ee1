"""Drug type / drug name taxonomy: CRUD, CSV import and export."""
import logging
import re
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from medstock.core.audit import AuditLog
from medstock.core.exceptions import DuplicateRecordError, NotFoundError, ValidationError
from medstock.models.catalog import DrugName, DrugType
from medstock.models.user import User
from medstock.services.csv_utils import read_first_column, read_rows

logger = logging.getLogger(__name__)

_TYPE_HEADER = re.compile(r"^drug.?types?", re.IGNORECASE)
_NAME_HEADER = re.compile(r"^(drug.?)?types?(.?name)?$", re.IGNORECASE)


def type_to_dict(t: DrugType) -> dict:
    return {
        "id": t.id,
        "type_name": t.type_name,
        "created_at": t.created_at.isoformat() if t.created_at else None,
    }


def name_to_dict(n: DrugName) -> dict:
    return {
        "id": n.id,
        "type_id": n.type_id,
        "name": n.name,
        "created_at": n.created_at.isoformat() if n.created_at else None,
    }


def get_or_create_type(db: Session, type_name: str) -> Tuple[DrugType, bool]:
    """Case-insensitive lookup by type_name; creates the type when missing. Never commits."""
    type_name = type_name.strip()
    existing = db.query(DrugType).filter(func.lower(DrugType.type_name) == type_name.lower()).first()
    if existing:
        return existing, False
    drug_type = DrugType(type_name=type_name)
    db.add(drug_type)
    db.flush()
    return drug_type, True


def get_or_create_name(db: Session, drug_type: DrugType, name: str) -> Tuple[DrugName, bool]:
    name = name.strip()
    existing = db.query(DrugName).filter(DrugName.type_id == drug_type.id, DrugName.name == name).first()
    if existing:
        return existing, False
    drug_name = DrugName(type_id=drug_type.id, name=name)
    db.add(drug_name)
    db.flush()
    return drug_name, True


def list_types(db: Session) -> List[DrugType]:
    return db.query(DrugType).order_by(DrugType.type_name).all()


def create_type(db: Session, user: User, type_name: str) -> DrugType:
    try:
        if db.query(DrugType).filter(func.lower(DrugType.type_name) == type_name.lower()).first():
            raise DuplicateRecordError(f"Drug type '{type_name}' already exists")
        drug_type = DrugType(type_name=type_name)
        db.add(drug_type)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise DuplicateRecordError(f"Drug type '{type_name}' already exists")
    except Exception:
        db.rollback()
        raise

    db.refresh(drug_type)
    AuditLog.log_action("create", "drug_type", drug_type.id, user.id, changes={"type_name": type_name})
    return drug_type


def delete_type(db: Session, user: User, type_id: int) -> None:
    """Deleting a type removes its names as well."""
    drug_type = db.query(DrugType).filter(DrugType.id == type_id).first()
    if not drug_type:
        raise NotFoundError("Drug type not found")
    type_name = drug_type.type_name
    try:
        db.delete(drug_type)
        db.commit()
    except Exception:
        db.rollback()
        raise
    AuditLog.log_action("delete", "drug_type", type_id, user.id, changes={"type_name": type_name})


def list_names(db: Session, type_id: int) -> List[DrugName]:
    if not db.query(DrugType.id).filter(DrugType.id == type_id).first():
        raise NotFoundError("Drug type not found")
    return db.query(DrugName).filter(DrugName.type_id == type_id).order_by(DrugName.name).all()


def create_name(db: Session, user: User, type_id: int, name: str) -> DrugName:
    drug_type = db.query(DrugType).filter(DrugType.id == type_id).first()
    if not drug_type:
        raise NotFoundError("Drug type not found")
    try:
        if db.query(DrugName.id).filter(DrugName.type_id == type_id, DrugName.name == name).first():
            raise DuplicateRecordError(f"'{name}' already exists under {drug_type.type_name}")
        drug_name = DrugName(type_id=type_id, name=name)
        db.add(drug_name)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise DuplicateRecordError(f"'{name}' already exists under {drug_type.type_name}")
    except Exception:
        db.rollback()
        raise

    db.refresh(drug_name)
    AuditLog.log_action("create", "drug_name", drug_name.id, user.id, changes={"type_id": type_id, "name": name})
    return drug_name


def import_types(db: Session, user: User, text: str) -> dict:
    """
    First column of each row is a type name. A leading "Drug Type(s)" header
    is skipped, duplicates are collapsed, existing types are left untouched.
    """
    values = read_first_column(text)
    if values and _TYPE_HEADER.match(values[0]):
        values = values[1:]

    seen = {}
    for value in values:
        seen.setdefault(value.lower(), value)
    if not seen:
        raise ValidationError("No valid drug types found in CSV")

    created = 0
    errors = []
    imported = []
    try:
        for type_name in seen.values():
            try:
                with db.begin_nested():
                    drug_type, was_created = get_or_create_type(db, type_name)
            except SQLAlchemyError as e:
                logger.error(f"Drug type import failed for '{type_name}': {e}")
                errors.append({"drugType": type_name, "error": "Database error"})
                continue
            imported.append(drug_type)
            created += int(was_created)
        db.commit()
    except Exception:
        db.rollback()
        raise

    AuditLog.log_action("import", "drug_type", None, user.id, changes={"total": len(seen), "created": created})
    return {
        "status": True,
        "message": "Import completed successfully",
        "successCount": len(imported),
        "createdCount": created,
        "totalCount": len(seen),
        "insertedDrugTypes": [type_to_dict(t) for t in imported],
        "errors": errors,
    }


def import_names(db: Session, user: User, text: str) -> dict:
    """Rows of `type_name, name`; missing types are created on the way."""
    rows = read_rows(text)
    if rows and len(rows[0]) >= 2 and _NAME_HEADER.match(rows[0][0]) and rows[0][1].lower() in ("name", "drug_name", "drug name"):
        rows = rows[1:]

    names_added = 0
    types_added = 0
    errors = []
    try:
        for index, row in enumerate(rows, start=1):
            if len(row) < 2 or not row[0] or not row[1]:
                errors.append({"row": index, "error": "Both type_name and name are required", "data": row})
                continue
            try:
                with db.begin_nested():
                    drug_type, type_created = get_or_create_type(db, row[0])
                    _, name_created = get_or_create_name(db, drug_type, row[1])
            except SQLAlchemyError as e:
                logger.error(f"Drug name import row {index} failed: {e}")
                errors.append({"row": index, "error": "Database error", "data": row})
                continue
            types_added += int(type_created)
            names_added += int(name_created)
        db.commit()
    except Exception:
        db.rollback()
        raise

    AuditLog.log_action("import", "drug_name", None, user.id,
                        changes={"rows": len(rows), "names_added": names_added, "types_added": types_added})
    return {
        "status": True,
        "message": f"Import completed: {names_added} drug names and {types_added} drug types added",
        "drugNamesAdded": names_added,
        "drugTypesAdded": types_added,
        "total": len(rows),
        "errors": errors,
    }


def export_type_rows(db: Session) -> List[list]:
    return [[t.type_name] for t in list_types(db)]


def export_name_rows(db: Session, type_id: Optional[int] = None) -> List[list]:
    q = db.query(DrugType.type_name, DrugName.name).join(DrugName, DrugName.type_id == DrugType.id)
    if type_id is not None:
        q = q.filter(DrugType.id == type_id)
    return [[type_name, name] for type_name, name in q.order_by(DrugType.type_name, DrugName.name).all()]
