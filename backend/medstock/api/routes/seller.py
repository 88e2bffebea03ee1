"""Seller side of institute orders: list, edit one item, approve a whole order."""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from medstock.api.deps import get_db
from medstock.core.permissions import ROLE_ADMIN, ROLE_INSTITUTE, require_roles
from medstock.models.user import User
from medstock.schemas.order import OrderItemStatusUpdate
from medstock.services import order_approval

router = APIRouter()

seller_only = require_roles(ROLE_INSTITUTE, ROLE_ADMIN)


@router.get("/orders")
def list_orders(
    status: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(seller_only),
):
    """Institute orders the caller sells into or receives, newest first."""
    status = status.strip().lower() if status else None
    return order_approval.list_seller_orders(db, current_user, status=status or None, page=page, limit=limit)


@router.patch("/order-items/{item_id}/status")
def update_order_item_status(
    item_id: int,
    body: OrderItemStatusUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(seller_only),
):
    return order_approval.update_order_item(
        db, item_id, current_user, status=body.status, quantity=body.quantity
    )


@router.patch("/orders/{order_id}/approve-all")
def approve_all(
    order_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(seller_only),
):
    """Approve every pending item the caller can see; shortfalls are reported, not fatal."""
    return order_approval.approve_all_items(db, order_id, current_user)
