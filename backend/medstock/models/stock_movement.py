from sqlalchemy import Column, Integer, ForeignKey, DateTime, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from medstock.db.base import Base


class StockMovement(Base):
    """Append-only history of drugs.stock changes. Never updated or deleted by the API."""
    __tablename__ = "stock_movements"

    id = Column(Integer, primary_key=True, index=True)
    drug_id = Column(Integer, ForeignKey("drugs.id", ondelete="CASCADE"), nullable=False, index=True)
    delta = Column(Integer, nullable=False)  # negative = units left the shelf
    stock_after = Column(Integer, nullable=False)
    reason = Column(String(64), nullable=False)  # order_approved, order_rejected, dispensed, ...
    reference = Column(String(128), nullable=True)  # e.g. "order_item:12"
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    drug = relationship("Drug")
