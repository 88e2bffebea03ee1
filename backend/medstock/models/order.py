"""
Orders and order items.

OrderItem status flow: pending -> approved -> shipped, pending -> rejected,
approved -> rejected (restores stock). rejected and shipped are terminal.
"""
from sqlalchemy import Column, Integer, String, ForeignKey, Numeric, DateTime, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from medstock.db.base import Base

ITEM_PENDING = "pending"
ITEM_APPROVED = "approved"
ITEM_REJECTED = "rejected"
ITEM_SHIPPED = "shipped"

ITEM_STATUSES = (ITEM_PENDING, ITEM_APPROVED, ITEM_REJECTED, ITEM_SHIPPED)

ALLOWED_TRANSITIONS = {
    ITEM_PENDING: {ITEM_APPROVED, ITEM_REJECTED},
    ITEM_APPROVED: {ITEM_SHIPPED, ITEM_REJECTED},
    ITEM_REJECTED: set(),
    ITEM_SHIPPED: set(),
}


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_no = Column(String(64), unique=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)  # buyer
    recipient_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    transaction_type = Column(String(32), nullable=False, default="institute")
    notes = Column(Text, nullable=True)
    total_amount = Column(Numeric(12, 2), default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    buyer = relationship("User", foreign_keys=[user_id])
    recipient = relationship("User", foreign_keys=[recipient_id])
    items = relationship("OrderItem", back_populates="order", order_by="OrderItem.created_at")


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    drug_id = Column(Integer, ForeignKey("drugs.id", ondelete="SET NULL"), nullable=True)
    custom_name = Column(String(255), nullable=True)
    manufacturer_name = Column(String(255), nullable=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), default=0)
    total_price = Column(Numeric(12, 2), default=0)
    source_type = Column(String(32), nullable=True)
    category = Column(String(64), nullable=True)
    batch_no = Column(String(128), nullable=True)
    seller_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String(32), nullable=False, default=ITEM_PENDING)
    # Units taken from drugs.stock at approval time; restored on rejection.
    reserved_quantity = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    order = relationship("Order", back_populates="items")
    drug = relationship("Drug")
    seller = relationship("User", foreign_keys=[seller_id])
