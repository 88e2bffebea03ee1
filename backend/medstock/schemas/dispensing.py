from datetime import date
from typing import Optional
from pydantic import BaseModel, field_validator

from medstock.models.dispensing import DISPENSING_CATEGORIES


def normalize_category(v: Optional[str]) -> str:
    v = (v or "OPD").strip().upper()
    if v not in DISPENSING_CATEGORIES:
        raise ValueError(f"category must be one of {', '.join(DISPENSING_CATEGORIES)}")
    return v


class DispensingCreate(BaseModel):
    drug_id: int
    quantity_dispensed: int
    dispensing_date: Optional[date] = None
    category: str = "OPD"
    notes: Optional[str] = None

    @field_validator("category", mode="before")
    @classmethod
    def check_category(cls, v: Optional[str]) -> str:
        return normalize_category(v)
