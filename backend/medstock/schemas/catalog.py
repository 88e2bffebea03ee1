from pydantic import BaseModel, field_validator


class DrugTypeCreate(BaseModel):
    type_name: str

    @field_validator("type_name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Drug type name is required")
        return v


class DrugNameCreate(BaseModel):
    name: str

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Drug name is required")
        return v
