from sqlalchemy import Column, Integer, String, ForeignKey, Numeric, Date, DateTime, Text, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from medstock.db.base import Base


class Drug(Base):
    """
    Catalog entry owned by the institute/pharmacy that created it.

    `stock` is the single source of truth for availability. It is only
    changed through services.inventory_service so that every change lands in
    stock_movements within the same transaction.
    """
    __tablename__ = "drugs"
    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_drugs_stock_non_negative"),
        CheckConstraint("price >= 0", name="ck_drugs_price_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    drug_type = Column(String(128), nullable=True)
    name = Column(String(255), nullable=False, index=True)
    batch_no = Column(String(128), nullable=True)
    description = Column(Text, nullable=True)
    stock = Column(Integer, nullable=False, default=0)
    mfg_date = Column(Date, nullable=True)
    exp_date = Column(Date, nullable=True)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    category = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    creator = relationship("User")

    @property
    def creator_name(self):
        return self.creator.name if self.creator else None
