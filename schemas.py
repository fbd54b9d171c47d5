import datetime as dt
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import TransactionType


class SubCategoryIn(BaseModel):
    category_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=100)


class SubCategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    category_id: str
    user_id: str


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    type: TransactionType
    sub_categories: list[SubCategoryOut] = Field(default_factory=list)


class TransactionIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    amount: int = Field(..., ge=0)
    date: dt.date
    category_id: str = Field(..., min_length=1)
    sub_category_id: Optional[str] = None
    memo: Optional[str] = Field(default=None, max_length=1000)


class IncomeIn(TransactionIn):
    pass


class ExpenseIn(TransactionIn):
    paid: bool = False


class TransactionRecord(BaseModel):
    """A fetched income or expense row with its category names joined in."""

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    title: str
    amount: int
    date: dt.date
    category_id: str
    sub_category_id: Optional[str] = None
    memo: Optional[str] = None
    paid: Optional[bool] = None
    category_name: Optional[str] = None
    sub_category_name: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class BulkCopyItem(BaseModel):
    original_id: str = Field(..., min_length=1)
    # Defaults to the original day of month, capped at the target month's end.
    date: Optional[dt.date] = None


class BulkCopyRequest(BaseModel):
    target_year: int = Field(..., ge=1970, le=3000)
    target_month: int = Field(..., ge=1, le=12)
    items: list[BulkCopyItem] = Field(..., min_length=1, max_length=200)


class BulkCopyResult(BaseModel):
    count: int
    month: str
    items: list[TransactionRecord]


class SubCategoryTotal(BaseModel):
    sub_category: str
    amount: int
    percentage: float


class CategoryBreakdown(BaseModel):
    category: str
    total_amount: int
    percentage: float
    sub_categories: list[SubCategoryTotal]


class TrendPoint(BaseModel):
    key: str
    month: str
    amount: int


class MonthlyTrend(BaseModel):
    income: list[TrendPoint]
    expense: list[TrendPoint]


class Summary(BaseModel):
    total_income: int
    total_expense: int
    balance: int
    income_count: int
    expense_count: int
    previous_available: bool = True
    last_month_total_income: Optional[int] = None
    last_month_total_expense: Optional[int] = None
    last_month_balance: Optional[int] = None
    income_diff: Optional[int] = None
    expense_diff: Optional[int] = None
    balance_diff: Optional[int] = None


class CategoryBreakdownSet(BaseModel):
    income: list[CategoryBreakdown]
    expense: list[CategoryBreakdown]


class MonthlyData(BaseModel):
    year: int
    month: int
    summary: Summary
    incomes: list[TransactionRecord]
    expenses: list[TransactionRecord]
    category_breakdown: CategoryBreakdownSet
    monthly_trend: MonthlyTrend


class AnalysisRequest(BaseModel):
    months: int = Field(default=3, ge=1, le=24)


class MonthlyFigures(BaseModel):
    month: str
    income: int
    expense: int
    balance: int


class ComparisonValue(BaseModel):
    current: float
    previous: float
    diff: float


class Comparisons(BaseModel):
    income: ComparisonValue
    expense: ComparisonValue


class Suggestion(BaseModel):
    title: str
    content: str


class AnalysisInsights(BaseModel):
    trends: list[str] = Field(default_factory=list)
    comparisons: Comparisons
    suggestions: list[Suggestion] = Field(default_factory=list)


class AnalysisResultOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    type: str
    insights: AnalysisInsights
    analysis_date: datetime


class DataCheck(BaseModel):
    has_enough: bool
    months: int
