"""
Drug catalog: CRUD, expiring-soon listing, CSV import (upsert) and export.

Institute and pharmacy users only ever see or touch drugs they created;
admins see everything. Stock edits go through inventory_service.set_stock so
they are recorded like any other stock movement.
"""
import logging
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from math import ceil
from typing import List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medstock.core.audit import AuditLog
from medstock.core.exceptions import DomainError, NotFoundError, ValidationError
from medstock.core.permissions import is_admin
from medstock.models.drug import Drug
from medstock.models.user import User
from medstock.schemas.drug import DrugCreate, DrugResponse, DrugUpdate
from medstock.services import catalog_service, inventory_service
from medstock.services.csv_utils import DRUG_HEADER_ALIASES, parse_date, parse_int, read_dict_rows

logger = logging.getLogger(__name__)

EXPORT_HEADER = ["Name", "Drug_Type", "Batch_No", "Description", "Stock", "Price",
                 "Category", "Mfg_Date", "Exp_Date", "Created_By"]

# Overwritten by non-empty CSV values when a drug already exists
CSV_UPDATABLE = ("drug_type", "description", "category", "mfg_date", "exp_date", "price")


def drug_to_dict(drug: Drug) -> dict:
    return DrugResponse.model_validate(drug).model_dump(mode="json")


def _owner_filter(user: User) -> Optional[int]:
    return None if is_admin(user) else user.id


def _check_dates(mfg_date: Optional[date], exp_date: Optional[date]):
    if mfg_date and exp_date and mfg_date >= exp_date:
        raise ValidationError("Manufacturing date must be before expiration date")


def _check_amounts(stock: Optional[int], price: Optional[Decimal]):
    if stock is not None and stock < 0:
        raise ValidationError("Stock cannot be negative")
    if price is not None and price < 0:
        raise ValidationError("Price cannot be negative")


def create_drug(db: Session, user: User, data: DrugCreate) -> Drug:
    _check_dates(data.mfg_date, data.exp_date)
    _check_amounts(data.stock, data.price)

    try:
        drug = Drug(
            drug_type=data.drug_type or None,
            name=data.name,
            batch_no=data.batch_no or None,
            description=data.description or None,
            stock=0,
            price=data.price,
            mfg_date=data.mfg_date,
            exp_date=data.exp_date,
            category=data.category or None,
            created_by=user.id,
        )
        db.add(drug)
        db.flush()
        inventory_service.set_stock(db, drug, data.stock, "drug_created", f"drug:{drug.id}", user.id)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(drug)
    AuditLog.log_action("create", "drug", drug.id, user.id, changes={"name": drug.name, "stock": drug.stock})
    return drug


def list_drugs(db: Session, user: User, created_by: Optional[int] = None) -> List[Drug]:
    q = db.query(Drug)
    if not is_admin(user):
        q = q.filter(Drug.created_by == user.id)
    elif created_by is not None:
        q = q.filter(Drug.created_by == created_by)
    return q.order_by(Drug.updated_at.desc(), Drug.mfg_date.asc(), Drug.name).all()


def get_drug(db: Session, user: User, drug_id: int) -> Drug:
    try:
        return inventory_service.get_owned_drug(db, drug_id, _owner_filter(user))
    except NotFoundError:
        raise NotFoundError("Drug not found")


def update_drug(db: Session, user: User, drug_id: int, data: DrugUpdate) -> Drug:
    """Write only the fields present in the request."""
    fields = data.model_dump(exclude_unset=True)
    try:
        try:
            drug = inventory_service.get_owned_drug(db, drug_id, _owner_filter(user), lock=True)
        except NotFoundError:
            raise NotFoundError("Drug not found")

        _check_dates(fields.get("mfg_date", drug.mfg_date), fields.get("exp_date", drug.exp_date))
        _check_amounts(fields.get("stock"), fields.get("price"))

        new_stock = fields.pop("stock", None)
        for key, value in fields.items():
            if key == "name" and not value:
                continue
            if key == "price" and value is None:
                continue
            setattr(drug, key, value)
        if new_stock is not None:
            inventory_service.set_stock(db, drug, new_stock, "manual_adjustment", f"drug:{drug.id}", user.id)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(drug)
    AuditLog.log_action("update", "drug", drug.id, user.id, changes=data.model_dump(mode="json", exclude_unset=True))
    return drug


def delete_drug(db: Session, user: User, drug_id: int) -> dict:
    drug = get_drug(db, user, drug_id)
    snapshot = drug_to_dict(drug)
    try:
        db.delete(drug)
        db.commit()
    except Exception:
        db.rollback()
        raise
    AuditLog.log_action("delete", "drug", drug_id, user.id, changes={"name": snapshot["name"]})
    return {"status": True, "message": "Drug deleted successfully", "deletedDrug": snapshot}


def expiring_drugs(db: Session, user: User, days: int = 30, limit: int = 10, page: int = 1) -> dict:
    """In-stock drugs expiring between today and today + days, soonest first."""
    if days < 0:
        raise ValidationError("Invalid days parameter")
    today = date.today()
    q = db.query(Drug).filter(
        Drug.exp_date.isnot(None),
        Drug.exp_date >= today,
        Drug.exp_date <= today + timedelta(days=days),
        Drug.stock > 0,
    )
    if not is_admin(user):
        q = q.filter(Drug.created_by == user.id)

    total = q.count()
    drugs = q.order_by(Drug.exp_date.asc(), Drug.id).offset((page - 1) * limit).limit(limit).all()
    return {
        "status": True,
        "drugs": [
            {**drug_to_dict(d), "days_until_expiry": (d.exp_date - today).days}
            for d in drugs
        ],
        "total": total,
        "page": page,
        "limit": limit,
        "totalPages": ceil(total / limit) if limit else 0,
        "daysThreshold": days,
    }


def _parse_price(value: str) -> Optional[Decimal]:
    if not value:
        return None
    try:
        return Decimal(value.replace(",", ""))
    except InvalidOperation:
        raise ValueError(f"Invalid price '{value}'")


def _upsert_row(db: Session, user: User, row: dict) -> Tuple[bool, bool]:
    """
    Insert or update one CSV row keyed by (name, batch_no, created_by).
    Returns (created, drug_name_added).
    """
    name = row["name"]
    if not name:
        raise ValueError("Drug name is required")

    values = {
        "drug_type": row["drug_type"] or None,
        "description": row["description"] or None,
        "category": row["category"] or None,
        "mfg_date": parse_date(row["mfg_date"]),
        "exp_date": parse_date(row["exp_date"]),
        "price": _parse_price(row["price"]),
    }
    stock = parse_int(row["stock"], "stock")
    _check_amounts(stock, values["price"])

    name_added = False
    if values["drug_type"]:
        drug_type, _ = catalog_service.get_or_create_type(db, values["drug_type"])
        _, name_added = catalog_service.get_or_create_name(db, drug_type, name)

    batch_no = row["batch_no"] or None
    q = db.query(Drug).filter(Drug.name == name, Drug.created_by == user.id)
    q = q.filter(Drug.batch_no.is_(None)) if batch_no is None else q.filter(Drug.batch_no == batch_no)
    drug = q.order_by(Drug.id).with_for_update().first()

    if drug:
        for key in CSV_UPDATABLE:
            if values[key] is not None:
                setattr(drug, key, values[key])
        _check_dates(drug.mfg_date, drug.exp_date)
        if stock is not None:
            inventory_service.set_stock(db, drug, stock, "csv_import", f"drug:{drug.id}", user.id)
        db.flush()
        return False, name_added

    _check_dates(values["mfg_date"], values["exp_date"])
    drug = Drug(
        name=name,
        batch_no=batch_no,
        stock=0,
        created_by=user.id,
        **{k: v for k, v in values.items() if k != "price"},
        price=values["price"] if values["price"] is not None else Decimal("0"),
    )
    db.add(drug)
    db.flush()
    inventory_service.set_stock(db, drug, stock or 0, "csv_import", f"drug:{drug.id}", user.id)
    return True, name_added


def import_drugs(db: Session, user: User, text: str) -> dict:
    """Header-driven drug CSV import. Each row has its own savepoint; bad rows are reported, not fatal."""
    rows = read_dict_rows(text, DRUG_HEADER_ALIASES)
    if not rows:
        raise ValidationError("No data found in CSV file")

    created = updated = names_added = 0
    errors = []
    try:
        # row numbers count the header line, matching what a spreadsheet shows
        for index, row in enumerate(rows, start=2):
            try:
                with db.begin_nested():
                    was_created, name_added = _upsert_row(db, user, row)
            except (ValueError, DomainError) as e:
                errors.append({"row": index, "error": str(e), "data": row})
                continue
            except SQLAlchemyError as e:
                logger.error(f"Drug import row {index} failed: {e}")
                errors.append({"row": index, "error": "Database error", "data": row})
                continue
            created += int(was_created)
            updated += int(not was_created)
            names_added += int(name_added)
        db.commit()
    except Exception:
        db.rollback()
        raise

    success = created + updated
    AuditLog.log_action("import", "drug", None, user.id,
                        changes={"created": created, "updated": updated, "errors": len(errors)})
    return {
        "status": True,
        "message": f"CSV import completed with {success} drugs imported and {names_added} drug names added to catalog",
        "successCount": success,
        "createdCount": created,
        "updatedCount": updated,
        "drugNamesAdded": names_added,
        "errors": errors,
    }


def export_rows(db: Session, user: User) -> List[list]:
    q = db.query(Drug)
    if not is_admin(user):
        q = q.filter(Drug.created_by == user.id)
    return [
        [
            d.name,
            d.drug_type or "",
            d.batch_no or "",
            d.description or "",
            d.stock,
            float(d.price or 0),
            d.category or "",
            d.mfg_date.isoformat() if d.mfg_date else "",
            d.exp_date.isoformat() if d.exp_date else "",
            d.creator_name or "",
        ]
        for d in q.order_by(Drug.name, Drug.batch_no).all()
    ]
