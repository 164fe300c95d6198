from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator


class FeeSchedule(BaseModel):
    """Fee components that seed a new billing ledger"""
    level_id: int
    registration_fee: Decimal
    tuition_fee: Decimal
    book_fee: Decimal
    required_book_count: int
    duration_months: int
    total_due: Decimal


class LevelBase(BaseModel):
    code: str = Field(..., min_length=1, max_length=20)
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    registration_fee: Decimal = Field(Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    tuition_fee: Decimal = Field(Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    book_fee: Decimal = Field(Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    required_book_count: int = Field(1, ge=0, le=10)
    duration_months: int = Field(2, ge=1, le=24)
    active: bool = True

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        return v.strip().upper()


class LevelCreate(LevelBase):
    pass


class LevelUpdate(BaseModel):
    """Only the fields explicitly sent are applied"""
    code: Optional[str] = Field(None, min_length=1, max_length=20)
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    registration_fee: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    tuition_fee: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    book_fee: Optional[Decimal] = Field(None, ge=0, max_digits=12, decimal_places=2)
    required_book_count: Optional[int] = Field(None, ge=0, le=10)
    duration_months: Optional[int] = Field(None, ge=1, le=24)
    active: Optional[bool] = None

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().upper() if v is not None else v


class LevelRead(LevelBase):
    id: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class LevelListResponse(BaseModel):
    levels: List[LevelRead]
    total: int
