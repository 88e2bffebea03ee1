from sqlalchemy import Column, Integer, String, ForeignKey, DateTime
from sqlalchemy.sql import func
from medstock.db.base import Base


class User(Base):
    """Institute, pharmacy or admin account. Roles gate every API route."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column("password", String(255), nullable=False)
    phone = Column(String(32), nullable=True)
    street = Column(String(255), nullable=True)
    city = Column(String(128), nullable=True)
    state = Column(String(128), nullable=True)
    postal_code = Column(String(32), nullable=True)
    country = Column(String(128), nullable=True)
    status = Column(String(32), default="Active")
    registration_date = Column(DateTime(timezone=True), server_default=func.now())
    license_number = Column(String(128), nullable=True)
    role = Column(String(32), nullable=False)  # admin, institute, pharmacy
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
