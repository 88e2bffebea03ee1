"""
Seller-side order approval.

- update_order_item: one item, one transaction; the drug row is locked before
  the stock check so concurrent approvals against the same drug serialize.
- approve_all_items: every pending item of an order is locked FOR UPDATE and
  approved independently. Shortfalls and per-item database errors are
  reported back; they never abort the items that did go through.

Visibility: an item is visible to the seller it is assigned to and to the
recipient of its order. Anything else is NOT_FOUND.
"""
import logging
from math import ceil
from typing import Optional

from sqlalchemy import or_, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medstock.core.audit import AuditLog
from medstock.core.exceptions import (
    InvalidQuantityError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from medstock.models.drug import Drug
from medstock.models.order import (
    ALLOWED_TRANSITIONS,
    ITEM_APPROVED,
    ITEM_PENDING,
    ITEM_REJECTED,
    ITEM_STATUSES,
    Order,
    OrderItem,
)
from medstock.models.user import User
from medstock.services import inventory_service

logger = logging.getLogger(__name__)

REASON_INSUFFICIENT = "Insufficient stock"
REASON_DB_ERROR = "Database error during approval"


def _visible_to(user_id: int):
    return or_(OrderItem.seller_id == user_id, Order.recipient_id == user_id)


def _item_dict(item: OrderItem) -> dict:
    drug = item.drug
    unit_price = float(item.unit_price or 0)
    return {
        "id": item.id,
        "order_id": item.order_id,
        "drug_id": item.drug_id,
        "drug_type": drug.drug_type if drug else None,
        "drug_name": drug.name if drug else (item.custom_name or item.manufacturer_name),
        "batch_no": drug.batch_no if drug else item.batch_no,
        "quantity": item.quantity,
        "unit_price": unit_price,
        "total_price": round(item.quantity * unit_price, 2),
        "status": item.status,
        "category": item.category,
        "seller_name": item.seller.name if item.seller else None,
        "available_stock": drug.stock if drug else 0,
        "reserved_quantity": item.reserved_quantity,
    }


def list_seller_orders(db: Session, user: User, status: Optional[str] = None, page: int = 1, limit: int = 10) -> dict:
    """Institute orders where the caller sells an item or receives the order, newest first."""
    if status and status not in ITEM_STATUSES:
        raise ValidationError(f"Invalid status '{status}'")

    visible = (
        db.query(Order.id)
        .join(OrderItem, OrderItem.order_id == Order.id)
        .filter(_visible_to(user.id), Order.transaction_type == "institute")
    )
    if status:
        visible = visible.filter(OrderItem.status == status)
    order_ids = visible.distinct().subquery()

    total = db.query(func.count()).select_from(order_ids).scalar() or 0
    orders = (
        db.query(Order)
        .filter(Order.id.in_(select(order_ids.c.id)))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    result = []
    for order in orders:
        mine = [i for i in order.items if i.seller_id == user.id or order.recipient_id == user.id]
        counts = {s: sum(1 for i in mine if i.status == s) for s in ITEM_STATUSES}
        result.append({
            "order_id": order.id,
            "order_no": order.order_no,
            "order_date": order.created_at.isoformat() if order.created_at else None,
            "total_amount": float(order.total_amount or 0),
            "buyer_name": order.buyer.name if order.buyer else None,
            "transaction_type": order.transaction_type,
            "item_count": len(mine),
            "pending_items": counts["pending"],
            "approved_items": counts["approved"],
            "rejected_items": counts["rejected"],
            "shipped_items": counts["shipped"],
            "items": [_item_dict(i) for i in order.items],
        })

    return {
        "status": True,
        "orders": result,
        "pagination": {
            "total": total,
            "page": page,
            "limit": limit,
            "totalPages": ceil(total / limit) if limit else 0,
        },
    }


def update_order_item(
    db: Session,
    item_id: int,
    user: User,
    status: Optional[str] = None,
    quantity: Optional[int] = None,
) -> dict:
    """
    Change quantity and/or status of one order item.

    approved: deducts the effective quantity (new if given, else current) and
    remembers it in reserved_quantity.
    approved -> rejected: gives back exactly what was deducted at approval.
    Items without a drug change status with no stock effect.
    """
    try:
        item = (
            db.query(OrderItem)
            .join(Order, OrderItem.order_id == Order.id)
            .filter(OrderItem.id == item_id, _visible_to(user.id))
            .with_for_update(of=OrderItem)
            .first()
        )
        if not item:
            if db.query(OrderItem.id).filter(OrderItem.id == item_id).first():
                AuditLog.log_access_denied("update", "order_item", item_id, user.id, "Not seller or recipient")
            raise NotFoundError("Order item not found")

        if quantity is not None and quantity < 1:
            raise InvalidQuantityError("Quantity must be at least 1")
        if status is not None and status not in ITEM_STATUSES:
            raise ValidationError(f"Invalid status '{status}'")

        old_status = item.status
        original_quantity = item.quantity
        effective_quantity = quantity if quantity is not None else item.quantity
        changing = status is not None and status != old_status

        if changing and status not in ALLOWED_TRANSITIONS.get(old_status, set()):
            raise InvalidTransitionError(f"Cannot change status from '{old_status}' to '{status}'")

        if changing and item.drug_id is not None:
            reference = f"order_item:{item.id}"
            if status == ITEM_APPROVED:
                drug = inventory_service.get_owned_drug(db, item.drug_id, None, lock=True)
                inventory_service.deduct_stock(db, drug, effective_quantity, "order_approved", reference, user.id)
                item.reserved_quantity = effective_quantity
            elif status == ITEM_REJECTED and old_status == ITEM_APPROVED:
                give_back = item.reserved_quantity if item.reserved_quantity is not None else original_quantity
                drug = inventory_service.get_owned_drug(db, item.drug_id, None, lock=True)
                inventory_service.restore_stock(db, drug, give_back, "order_rejected", reference, user.id)
                item.reserved_quantity = None

        if quantity is not None:
            item.quantity = quantity
            item.total_price = (item.unit_price or 0) * quantity
        if changing:
            item.status = status

        db.commit()
    except Exception:
        db.rollback()
        raise

    if changing:
        AuditLog.log_status_change(item.id, old_status, status, user.id, quantity=effective_quantity)
    logger.info(f"Order item {item.id} updated by user {user.id}: status={item.status} quantity={item.quantity}")

    db.refresh(item)
    return {
        "status": True,
        "message": "Order item updated successfully",
        "item": _item_dict(item),
    }


def approve_all_items(db: Session, order_id: int, user: User) -> dict:
    """
    Approve every pending, drug-backed item of an order visible to the caller.

    Items are processed in id order. Stock is read live from the locked drug
    rows, so two items on the same drug see each other's deductions.
    approvedCount + len(insufficientStockItems) == totalItems.
    """
    try:
        pending = (
            db.query(OrderItem, Drug)
            .join(Drug, OrderItem.drug_id == Drug.id)
            .join(Order, OrderItem.order_id == Order.id)
            .filter(
                OrderItem.order_id == order_id,
                OrderItem.status == ITEM_PENDING,
                _visible_to(user.id),
            )
            .order_by(OrderItem.id)
            .with_for_update(of=(OrderItem, Drug))
            .all()
        )

        if not pending:
            db.commit()
            return {
                "status": True,
                "message": "No pending items found for this order",
                "approvedCount": 0,
                "insufficientStockItems": [],
                "totalItems": 0,
            }

        approved_count = 0
        insufficient = []

        for item, drug in pending:
            requested = item.quantity
            available = drug.stock or 0
            if available < requested:
                insufficient.append({
                    "item_id": item.id,
                    "drug_name": drug.name,
                    "requested": requested,
                    "available": available,
                    "reason": REASON_INSUFFICIENT,
                })
                continue

            try:
                with db.begin_nested():
                    inventory_service.deduct_stock(
                        db, drug, requested, "order_approved", f"order_item:{item.id}", user.id
                    )
                    item.status = ITEM_APPROVED
                    item.reserved_quantity = requested
                    db.flush()
            except SQLAlchemyError as e:
                logger.error(f"Error approving order item {item.id}: {e}")
                insufficient.append({
                    "item_id": item.id,
                    "drug_name": drug.name,
                    "requested": requested,
                    "available": available,
                    "reason": REASON_DB_ERROR,
                })
                continue

            approved_count += 1
            AuditLog.log_status_change(item.id, ITEM_PENDING, ITEM_APPROVED, user.id, quantity=requested)

        db.commit()
    except Exception:
        db.rollback()
        raise

    message = f"Approved {approved_count} items"
    if insufficient:
        message += f", {len(insufficient)} items had insufficient stock"
    logger.info(f"Approve-all on order {order_id} by user {user.id}: {message}")

    return {
        "status": True,
        "message": message,
        "approvedCount": approved_count,
        "insufficientStockItems": insufficient,
        "totalItems": len(pending),
    }
