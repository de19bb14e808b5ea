from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    icon: Optional[str] = Field(default=None, max_length=16)
    color: Optional[str] = Field(default=None, max_length=9)


class SubcategoryIn(BaseModel):
    category_id: int
    name: str = Field(..., min_length=1, max_length=100)


class ExpenseIn(BaseModel):
    amount_cents: int = Field(..., ge=0)
    date: date
    category_id: int
    subcategory_id: Optional[int] = None
    description: Optional[str] = Field(default=None, max_length=500)


class SettingIn(BaseModel):
    value: str


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    icon: Optional[str]
    color: Optional[str]
    is_default: bool


class SubcategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    category_id: int
    name: str


class ExpenseRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    amount_cents: int
    date: date
    category_id: int
    subcategory_id: Optional[int]
    description: Optional[str]


class ExpenseView(ExpenseRecord):
    category_name: str
    category_icon: Optional[str]
    category_color: Optional[str]
    subcategory_name: Optional[str]


class CategorySummary(BaseModel):
    category_id: int
    category_name: str
    category_icon: Optional[str]
    category_color: Optional[str]
    total_cents: int
    count: int
    percentage: float = Field(..., ge=0, le=100)


class PeriodSummary(BaseModel):
    start: date
    end: date
    total_cents: int
    count: int
    by_category: list[CategorySummary] = Field(default_factory=list)
