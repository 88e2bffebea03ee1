from typing import Optional
from pydantic import BaseModel, field_validator


class OrderItemStatusUpdate(BaseModel):
    """Seller edit of one order item. Both fields optional; quantity applies independently of status."""
    status: Optional[str] = None
    quantity: Optional[int] = None

    @field_validator("status")
    @classmethod
    def normalize_status(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip().lower()
        return v or None
