import datetime as dt
from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class SubcategoryIn(BaseModel):
    category_id: int
    name: str = Field(..., min_length=1, max_length=100)
    display_order: Optional[int] = Field(default=None, ge=0)


class SubcategoryUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    display_order: Optional[int] = Field(default=None, ge=0)


class SubcategoryReorderIn(BaseModel):
    subcategory_ids: list[int] = Field(..., min_length=1)


class BudgetIn(BaseModel):
    amount_cents: int = Field(..., ge=0)


class VisibilityIn(BaseModel):
    is_visible: bool


class TransactionIn(BaseModel):
    occurred_at: date
    amount_cents: int
    subcategory_id: int
    notes: Optional[str] = Field(default=None, max_length=500)
    local_id: Optional[str] = Field(default=None, min_length=1, max_length=64)


class IngestTransactionIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount_cents: int
    subcategory: str = Field(..., min_length=1, max_length=100)
    notes: Optional[str] = Field(default=None, max_length=500)
    date: Optional[dt.date] = None
    local_id: Optional[str] = Field(default=None, min_length=1, max_length=64)


class MonthOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    year: int
    month: int
    label: Optional[str]
    key: str


class MonthBudgetOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    month_id: int
    subcategory_id: int
    amount_cents: int


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    local_id: Optional[str]
    occurred_at: date
    amount_cents: int
    subcategory_id: Optional[int]
    notes: Optional[str]


class EntryCSVRow(BaseModel):
    year: int = Field(..., ge=1970, le=3000)
    month: int = Field(..., ge=1, le=12)
    category: str = Field(..., min_length=1, max_length=100)
    subcategory: str = Field(..., min_length=1, max_length=100)
    amount_cents: int
