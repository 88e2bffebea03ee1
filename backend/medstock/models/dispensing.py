from sqlalchemy import Column, Integer, String, ForeignKey, Date, DateTime, Text, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from medstock.db.base import Base

DISPENSING_CATEGORIES = ("OPD", "IPD", "OUTREACH")


class DailyDispensingSummary(Base):
    """One row per drug, day and category. Re-recording updates the row in place."""
    __tablename__ = "daily_dispensing_summary"
    __table_args__ = (
        UniqueConstraint("drug_id", "dispensing_date", "category", name="uq_dispensing_drug_date_category"),
        CheckConstraint("quantity_dispensed > 0", name="ck_dispensing_quantity_positive"),
    )

    id = Column(Integer, primary_key=True, index=True)
    drug_id = Column(Integer, ForeignKey("drugs.id", ondelete="CASCADE"), nullable=False)
    quantity_dispensed = Column(Integer, nullable=False)
    dispensing_date = Column(Date, nullable=False, index=True)
    category = Column(String(16), nullable=False, default="OPD")
    notes = Column(Text, nullable=True)
    recorded_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    drug = relationship("Drug")
    recorder = relationship("User")
