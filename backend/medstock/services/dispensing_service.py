"""
Daily dispensing recorder.

One summary row per (drug, day, category). Recording again on the same day
and category updates the row and moves stock by the difference only.
Entries can only be made for the server's current date.
"""
import logging
from datetime import date
from math import ceil
from typing import Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from medstock.core.audit import AuditLog
from medstock.core.exceptions import (
    DateMismatchError,
    DomainError,
    DuplicateRecordError,
    ErrorCode,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from medstock.models.dispensing import DailyDispensingSummary
from medstock.models.drug import Drug
from medstock.models.user import User
from medstock.schemas.dispensing import normalize_category
from medstock.services import inventory_service
from medstock.services.csv_utils import DISPENSING_HEADER_ALIASES, parse_int, read_dict_rows

logger = logging.getLogger(__name__)


def _check_today(requested: Optional[date]) -> date:
    today = date.today()
    if requested is not None and requested != today:
        raise DateMismatchError(f"Entries can only be made for the current date ({today.isoformat()})")
    return today


def record_to_dict(record: DailyDispensingSummary) -> dict:
    drug = record.drug
    return {
        "id": record.id,
        "drug_id": record.drug_id,
        "drug_name": drug.name if drug else None,
        "batch_no": drug.batch_no if drug else None,
        "current_stock": drug.stock if drug else None,
        "quantity_dispensed": record.quantity_dispensed,
        "dispensing_date": record.dispensing_date.isoformat() if record.dispensing_date else None,
        "category": record.category,
        "notes": record.notes,
        "recorded_by": record.recorded_by,
        "recorded_by_name": record.recorder.name if record.recorder else None,
        "created_at": record.created_at.isoformat() if record.created_at else None,
        "updated_at": record.updated_at.isoformat() if record.updated_at else None,
    }


def _apply(
    db: Session,
    user: User,
    drug: Drug,
    quantity: int,
    category: str,
    notes: Optional[str],
    today: date,
) -> Tuple[DailyDispensingSummary, bool]:
    """Upsert the (drug, today, category) row and move stock. Returns (record, was_update)."""
    if (drug.stock or 0) < quantity:
        raise InsufficientStockError(
            available=drug.stock or 0,
            requested=quantity,
            message=f"Insufficient stock. Available: {drug.stock or 0}, Trying to dispense: {quantity}",
        )

    existing = (
        db.query(DailyDispensingSummary)
        .filter(
            DailyDispensingSummary.drug_id == drug.id,
            DailyDispensingSummary.dispensing_date == today,
            DailyDispensingSummary.category == category,
        )
        .first()
    )

    if existing:
        delta = quantity - existing.quantity_dispensed
        if (drug.stock or 0) < delta:
            raise InsufficientStockError(
                available=drug.stock or 0,
                requested=delta,
                message=f"Insufficient stock for update. Available: {drug.stock or 0}, Additional needed: {delta}",
            )
        existing.quantity_dispensed = quantity
        existing.notes = notes
        inventory_service.adjust_stock(db, drug, -delta, "dispensed", f"dispensing:{existing.id}", user.id)
        return existing, True

    record = DailyDispensingSummary(
        drug_id=drug.id,
        quantity_dispensed=quantity,
        dispensing_date=today,
        category=category,
        notes=notes,
        recorded_by=user.id,
    )
    db.add(record)
    db.flush()
    inventory_service.deduct_stock(db, drug, quantity, "dispensed", f"dispensing:{record.id}", user.id)
    return record, False


def record_dispensing(
    db: Session,
    user: User,
    drug_id: int,
    quantity_dispensed: int,
    category: str = "OPD",
    notes: Optional[str] = None,
    dispensing_date: Optional[date] = None,
) -> dict:
    today = _check_today(dispensing_date)
    if quantity_dispensed is None or quantity_dispensed <= 0:
        raise ValidationError("quantity_dispensed must be greater than 0")

    try:
        drug = inventory_service.get_owned_drug(db, drug_id, user.id, lock=True)
        record, was_update = _apply(db, user, drug, quantity_dispensed, category, notes, today)
        db.commit()
    except IntegrityError as e:
        db.rollback()
        logger.warning(f"Duplicate dispensing insert for drug {drug_id} on {today} ({category}): {e.orig}")
        raise DuplicateRecordError(
            "A dispensing record already exists for this drug and category today",
            code=ErrorCode.DUPLICATE_TODAY_RECORD,
        )
    except Exception:
        db.rollback()
        raise

    AuditLog.log_action("update" if was_update else "create", "dispensing", record.id, user.id,
                        changes={"drug_id": drug_id, "quantity_dispensed": quantity_dispensed, "category": category})

    db.refresh(record)
    return {
        "status": True,
        "message": "Dispensing record updated successfully" if was_update else "Dispensing recorded successfully",
        "dispensing": record_to_dict(record),
        "updated_stock": record.drug.stock,
    }


def delete_dispensing(db: Session, user: User, record_id: int) -> dict:
    """Give the dispensed quantity back to stock, then drop the row."""
    try:
        record = (
            db.query(DailyDispensingSummary)
            .join(Drug, DailyDispensingSummary.drug_id == Drug.id)
            .filter(DailyDispensingSummary.id == record_id, Drug.created_by == user.id)
            .first()
        )
        if not record:
            raise NotFoundError("Record not found")

        drug = inventory_service.get_owned_drug(db, record.drug_id, user.id, lock=True)
        inventory_service.restore_stock(
            db, drug, record.quantity_dispensed, "dispensing_deleted", f"dispensing:{record.id}", user.id
        )
        db.delete(record)
        db.commit()
    except Exception:
        db.rollback()
        raise

    AuditLog.log_action("delete", "dispensing", record_id, user.id)
    return {
        "status": True,
        "message": "Dispensing record deleted and stock restored successfully",
        "updated_stock": drug.stock,
    }


def import_dispensing(
    db: Session,
    user: User,
    text: str,
    category: str = "OPD",
    dispensing_date: Optional[date] = None,
) -> dict:
    """
    Bulk record from CSV rows `drug_name, quantity_dispensed, notes`.

    Each row runs in its own savepoint; failing rows are reported as
    "Row N: ..." and skipped, the rest are committed.
    """
    today = _check_today(dispensing_date)
    try:
        category = normalize_category(category)
    except ValueError as e:
        raise ValidationError(str(e))

    rows = read_dict_rows(text, DISPENSING_HEADER_ALIASES)
    errors = []
    imported = 0

    try:
        for index, row in enumerate(rows, start=1):
            name = row["drug_name"]
            raw_qty = row["quantity_dispensed"]
            if not name or not raw_qty:
                errors.append(f"Row {index}: Missing required fields (drug_name, quantity_dispensed)")
                continue

            try:
                quantity = parse_int(raw_qty, "quantity")
            except ValueError:
                quantity = None
            if quantity is None or quantity <= 0:
                errors.append(f"Row {index}: Invalid quantity '{raw_qty}'")
                continue

            drug = (
                db.query(Drug)
                .filter(func.lower(Drug.name) == name.lower(), Drug.created_by == user.id)
                .order_by(Drug.id)
                .with_for_update()
                .first()
            )
            if not drug:
                errors.append(f"Row {index}: Drug '{name}' not found in your inventory")
                continue

            try:
                with db.begin_nested():
                    _apply(db, user, drug, quantity, category, row["notes"] or None, today)
            except DomainError as e:
                errors.append(f"Row {index}: {e.message} ('{name}')")
                continue
            except SQLAlchemyError as e:
                logger.error(f"Dispensing import row {index} failed: {e}")
                errors.append(f"Row {index}: Database error while recording '{name}'")
                continue

            imported += 1

        db.commit()
    except Exception:
        db.rollback()
        raise

    AuditLog.log_action("import", "dispensing", None, user.id,
                        changes={"imported": imported, "total": len(rows), "errors": len(errors)})
    return {
        "status": True,
        "message": f"Import completed. {imported} records imported successfully.",
        "imported": imported,
        "total": len(rows),
        "errors": errors,
    }


def list_dispensing(
    db: Session,
    user: User,
    day: Optional[date] = None,
    category: Optional[str] = None,
    page: int = 1,
    limit: int = 50,
) -> dict:
    day = day or date.today()
    q = (
        db.query(DailyDispensingSummary)
        .join(Drug, DailyDispensingSummary.drug_id == Drug.id)
        .filter(Drug.created_by == user.id, DailyDispensingSummary.dispensing_date == day)
    )
    if category and category.lower() != "all":
        q = q.filter(DailyDispensingSummary.category == category.upper())

    total = q.count()
    records = q.order_by(Drug.name, DailyDispensingSummary.id).offset((page - 1) * limit).limit(limit).all()
    return {
        "status": True,
        "records": [record_to_dict(r) for r in records],
        "date": day.isoformat(),
        "pagination": {
            "total": total,
            "page": page,
            "limit": limit,
            "totalPages": ceil(total / limit) if limit else 0,
        },
    }


def today_dispensing(db: Session, user: User) -> dict:
    today = date.today()
    records = (
        db.query(DailyDispensingSummary)
        .join(Drug, DailyDispensingSummary.drug_id == Drug.id)
        .filter(Drug.created_by == user.id, DailyDispensingSummary.dispensing_date == today)
        .order_by(Drug.name, DailyDispensingSummary.id)
        .all()
    )
    return {
        "status": True,
        "records": [record_to_dict(r) for r in records],
        "summary": {
            "total_dispensed": sum(r.quantity_dispensed for r in records),
            "total_drugs": len(records),
            "date": today.isoformat(),
        },
    }


def dispensing_summary(db: Session, user: User, start_date: date, end_date: Optional[date] = None) -> dict:
    """Per (date, category) record counts and quantities in [start_date, end_date]."""
    end_date = end_date or start_date
    if end_date < start_date:
        raise ValidationError("end_date must not be before start_date")

    rows = (
        db.query(
            DailyDispensingSummary.dispensing_date,
            DailyDispensingSummary.category,
            func.count(DailyDispensingSummary.id),
            func.sum(DailyDispensingSummary.quantity_dispensed),
        )
        .join(Drug, DailyDispensingSummary.drug_id == Drug.id)
        .filter(
            Drug.created_by == user.id,
            DailyDispensingSummary.dispensing_date >= start_date,
            DailyDispensingSummary.dispensing_date <= end_date,
        )
        .group_by(DailyDispensingSummary.dispensing_date, DailyDispensingSummary.category)
        .order_by(DailyDispensingSummary.dispensing_date.desc(), DailyDispensingSummary.category)
        .all()
    )
    return {
        "status": True,
        "summary": [
            {
                "dispensing_date": d.isoformat() if d else None,
                "category": category,
                "drugs_dispensed": count,
                "total_quantity": int(total or 0),
            }
            for d, category, count, total in rows
        ],
    }
