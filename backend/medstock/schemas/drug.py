from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, field_validator


class DrugBase(BaseModel):
    drug_type: Optional[str] = None
    batch_no: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    mfg_date: Optional[date] = None
    exp_date: Optional[date] = None


class DrugCreate(DrugBase):
    name: str
    stock: int = 0
    price: Decimal = Decimal("0")

    @field_validator("name")
    @classmethod
    def name_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Drug name is required")
        return v


class DrugUpdate(DrugBase):
    """Partial update; only fields present in the request body are written."""
    name: Optional[str] = None
    stock: Optional[int] = None
    price: Optional[Decimal] = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            raise ValueError("Drug name cannot be empty")
        return v.strip() if v else v


class DrugResponse(DrugBase):
    id: int
    name: str
    stock: int
    price: float
    created_by: int
    creator_name: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
