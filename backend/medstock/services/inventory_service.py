"""Stock ledger. Every change to drugs.stock goes through here and lands in stock_movements.

These helpers never commit; the calling service owns the transaction.
"""
from typing import Optional

from sqlalchemy.orm import Session

from medstock.core.audit import AuditLog
from medstock.core.exceptions import InsufficientStockError, NotFoundError, ValidationError
from medstock.models.drug import Drug
from medstock.models.stock_movement import StockMovement


def get_owned_drug(db: Session, drug_id: int, owner_id: Optional[int], lock: bool = False) -> Drug:
    """Load a drug by id. owner_id=None skips the ownership filter (admin)."""
    q = db.query(Drug).filter(Drug.id == drug_id)
    if owner_id is not None:
        q = q.filter(Drug.created_by == owner_id)
    if lock:
        q = q.with_for_update()
    drug = q.first()
    if not drug:
        raise NotFoundError("Drug not found in your inventory")
    return drug


def _record(db: Session, drug: Drug, delta: int, reason: str, reference: Optional[str], user_id: Optional[int]):
    db.add(StockMovement(
        drug_id=drug.id,
        delta=delta,
        stock_after=drug.stock,
        reason=reason,
        reference=reference,
        user_id=user_id,
    ))
    AuditLog.log_stock_change(drug.id, delta, drug.stock, reason, user_id=user_id, reference=reference)


def deduct_stock(
    db: Session,
    drug: Drug,
    qty: int,
    reason: str,
    reference: Optional[str] = None,
    user_id: Optional[int] = None,
) -> Drug:
    """Take qty units off the shelf. Raises InsufficientStockError without mutating anything."""
    available = drug.stock or 0
    if available < qty:
        raise InsufficientStockError(available=available, requested=qty, drug_name=drug.name)
    drug.stock = available - qty
    _record(db, drug, -qty, reason, reference, user_id)
    db.flush()
    return drug


def restore_stock(
    db: Session,
    drug: Drug,
    qty: int,
    reason: str,
    reference: Optional[str] = None,
    user_id: Optional[int] = None,
) -> Drug:
    drug.stock = (drug.stock or 0) + qty
    _record(db, drug, qty, reason, reference, user_id)
    db.flush()
    return drug


def adjust_stock(
    db: Session,
    drug: Drug,
    delta: int,
    reason: str,
    reference: Optional[str] = None,
    user_id: Optional[int] = None,
) -> Drug:
    """Signed change. Negative deltas are checked like deduct_stock; zero is a no-op."""
    if delta < 0:
        return deduct_stock(db, drug, -delta, reason, reference, user_id)
    if delta > 0:
        return restore_stock(db, drug, delta, reason, reference, user_id)
    return drug


def set_stock(
    db: Session,
    drug: Drug,
    new_stock: int,
    reason: str,
    reference: Optional[str] = None,
    user_id: Optional[int] = None,
) -> Drug:
    """Overwrite stock with an absolute value (drug edit, CSV upsert), logging the difference."""
    if new_stock < 0:
        raise ValidationError("Stock cannot be negative")
    delta = new_stock - (drug.stock or 0)
    if delta == 0:
        return drug
    drug.stock = new_stock
    if drug.id is not None:
        _record(db, drug, delta, reason, reference, user_id)
    db.flush()
    return drug
