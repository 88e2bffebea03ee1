from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from medstock.db.base import Base


class DrugType(Base):
    __tablename__ = "drug_types"

    id = Column(Integer, primary_key=True, index=True)
    type_name = Column(String(128), unique=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    names = relationship("DrugName", back_populates="drug_type", cascade="all, delete-orphan")


class DrugName(Base):
    """Known drug name under a type; used for autocomplete on drug entry."""
    __tablename__ = "drug_names"
    __table_args__ = (UniqueConstraint("type_id", "name", name="uq_drug_names_type_name"),)

    id = Column(Integer, primary_key=True, index=True)
    type_id = Column(Integer, ForeignKey("drug_types.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    drug_type = relationship("DrugType", back_populates="names")
