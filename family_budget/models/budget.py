"""
Core Budget Models for Family Budget

These models define the strict schemas for all budget data:
scenarios (monthly overviews), income and expense line items,
categories and the read-side aggregates computed from them.

DESIGN DECISION: Money is always Decimal, quantized to cents.
Floats only appear at the very edge (chart data for the UI).
"""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


CENT = Decimal("0.01")


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class IncomeType(str, Enum):
    """Kinds of income a household can record."""
    SALARY = "salary"
    FREELANCE = "freelance"
    PROPERTY = "property"
    INVESTMENT = "investment"
    BUSINESS = "business"
    OTHER = "other"


class IncomeFrequency(str, Enum):
    """
    How often an income is received.

    ONE_TIME is treated as already monthly for the scenario it lives in.
    It is NOT spread across months.
    """
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    SEMIMONTHLY = "semimonthly"
    MONTHLY = "monthly"
    YEARLY = "yearly"
    ONE_TIME = "one-time"


class ResourceType(str, Enum):
    """Family-scoped resources that can be ownership-checked."""
    OVERVIEW = "overview"
    INCOME = "income"
    EXPENSE = "expense"
    CATEGORY = "category"
    USER = "user"


FREQUENCY_MULTIPLIERS: dict[IncomeFrequency, Decimal] = {
    IncomeFrequency.WEEKLY: Decimal(52) / Decimal(12),
    IncomeFrequency.BIWEEKLY: Decimal(26) / Decimal(12),
    IncomeFrequency.SEMIMONTHLY: Decimal(2),
    IncomeFrequency.MONTHLY: Decimal(1),
    IncomeFrequency.YEARLY: Decimal(1) / Decimal(12),
    IncomeFrequency.ONE_TIME: Decimal(1),
}


def to_money(value) -> Decimal:
    """Convert a number to a cent-quantized Decimal."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_monthly_amount(amount, frequency: IncomeFrequency) -> Decimal:
    """
    Normalize a raw income amount to its monthly equivalent.

    >>> calculate_monthly_amount(Decimal("100"), IncomeFrequency.WEEKLY)
    Decimal('433.33')
    """
    frequency = IncomeFrequency(frequency)
    raw = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    return to_money(raw * FREQUENCY_MULTIPLIERS[frequency])


def calculate_savings_rate(income: Decimal, expenses: Decimal) -> float:
    """Savings rate in percent. Zero when there is no income."""
    if income <= 0:
        return 0.0
    return float((income - expenses) / income * 100)


# =============================================================================
# SCENARIO MODEL
# =============================================================================

class MonthlyOverview(BaseModel):
    """
    A budget scenario for one household.

    Exactly one overview per family is active at any time
    (whenever the family has at least one). Archived overviews
    are never active candidates.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique overview ID"
    )
    family_id: UUID
    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Scenario name, e.g. '2025 Plan'"
    )
    is_active: bool = False
    is_archived: bool = False
    archived_at: Optional[datetime] = None
    created_at: datetime = Field(
        default_factory=datetime.utcnow
    )


# =============================================================================
# LEDGER MODELS
# =============================================================================

class Income(BaseModel):
    """
    One income line in a scenario.

    CRITICAL: monthly_amount is persisted, not recomputed on read.
    It is derived from amount + frequency whenever those are written.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    overview_id: UUID
    user_id: Optional[UUID] = Field(
        default=None,
        description="Family member; None means not assigned to anyone"
    )
    name: str = Field(..., min_length=1, max_length=200)
    income_type: IncomeType = IncomeType.SALARY
    amount: Decimal = Field(
        ...,
        ge=0,
        description="Raw amount as entered"
    )
    frequency: IncomeFrequency = IncomeFrequency.MONTHLY
    monthly_amount: Optional[Decimal] = Field(
        default=None,
        description="Monthly equivalent (derived, persisted)"
    )
    notes: Optional[str] = Field(default=None, max_length=1000)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    # Read-side only
    user_name: Optional[str] = None

    @field_validator("amount")
    @classmethod
    def quantize_amount(cls, v: Decimal) -> Decimal:
        return to_money(v)

    @model_validator(mode='after')
    def derive_monthly_amount(self) -> 'Income':
        """Fill monthly_amount from amount and frequency when not given."""
        if self.monthly_amount is None:
            self.monthly_amount = calculate_monthly_amount(self.amount, self.frequency)
        return self


class Expense(BaseModel):
    """
    One expense line in a scenario.

    amount is already a monthly figure. share_percentage only
    means something when is_shared is True.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    overview_id: UUID
    user_id: UUID
    category_id: UUID
    name: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., ge=0, description="Monthly amount")
    is_shared: bool = False
    share_percentage: Decimal = Field(
        default=Decimal("100"),
        ge=0,
        le=100,
        description="Part paid by user_id when shared"
    )
    notes: Optional[str] = Field(default=None, max_length=1000)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    # Read-side only
    category_name: Optional[str] = None
    user_name: Optional[str] = None

    @field_validator("amount")
    @classmethod
    def quantize_amount(cls, v: Decimal) -> Decimal:
        return to_money(v)


# =============================================================================
# CATEGORY MODELS
# =============================================================================

class CategoryTemplate(BaseModel):
    """Name, icon and colour of a category, without identity."""
    model_config = ConfigDict(frozen=True)

    name: str
    icon: Optional[str] = None
    color: Optional[str] = None


class Category(BaseModel):
    """A family-scoped tag used to classify expenses."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    family_id: UUID
    name: str = Field(..., min_length=1, max_length=100)
    icon: Optional[str] = Field(default=None, max_length=16)
    color: Optional[str] = Field(
        default=None,
        pattern=r"^#[0-9a-fA-F]{6}$",
        description="Hex colour, e.g. #10b981"
    )
    created_at: datetime = Field(default_factory=datetime.utcnow)

    # Read-side only
    expense_count: int = Field(default=0, ge=0)


class CategoryMapping(BaseModel):
    """Preview of where one existing category will land on reset."""

    current_name: str
    current_icon: Optional[str] = None
    expense_count: int = Field(ge=0)
    target_name: Optional[str] = None
    target_icon: Optional[str] = None

    @property
    def is_identity(self) -> bool:
        """True when the category already is the target default."""
        return self.target_name == self.current_name


class MigrationPreview(BaseModel):
    """Result of previewing a reset to the default categories."""

    mappings: list[CategoryMapping] = Field(default_factory=list)
    categories_to_add: list[CategoryTemplate] = Field(default_factory=list)


class CategoryResetResult(BaseModel):
    """What a committed reset actually changed."""

    created: list[str] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)
    reassigned_expenses: int = Field(default=0, ge=0)
    mapping: dict[str, str] = Field(
        default_factory=dict,
        description="Old category name -> default category name"
    )


# =============================================================================
# REPORTING MODELS
# =============================================================================

class CategoryTotal(BaseModel):
    """Sum of expenses in one category."""

    category: str
    amount: Decimal


class BudgetSummary(BaseModel):
    """
    Aggregates for one overview.

    Computed on read, never persisted.
    """

    overview_id: UUID
    overview_name: str
    is_active: bool = False
    is_archived: bool = False
    total_income: Decimal = Decimal("0")
    total_expenses: Decimal = Decimal("0")
    income_count: int = 0
    expense_count: int = 0
    expenses_by_category: list[CategoryTotal] = Field(default_factory=list)

    @property
    def net_savings(self) -> Decimal:
        return self.total_income - self.total_expenses

    @property
    def savings_rate(self) -> float:
        return calculate_savings_rate(self.total_income, self.total_expenses)

    def top_categories(self, limit: int = 3) -> list[CategoryTotal]:
        """Largest expense categories first."""
        ordered = sorted(
            self.expenses_by_category,
            key=lambda item: item.amount,
            reverse=True,
        )
        return ordered[:limit]


class ScenarioComparison(BaseModel):
    """Side-by-side view of several scenarios."""

    scenarios: list[BudgetSummary] = Field(default_factory=list)

    @property
    def best(self) -> Optional[BudgetSummary]:
        if not self.scenarios:
            return None
        return max(self.scenarios, key=lambda s: s.net_savings)

    @property
    def worst(self) -> Optional[BudgetSummary]:
        if not self.scenarios:
            return None
        return min(self.scenarios, key=lambda s: s.net_savings)

    @property
    def savings_difference(self) -> Decimal:
        if not self.scenarios:
            return Decimal("0")
        return self.best.net_savings - self.worst.net_savings


class ChartType(str, Enum):
    """Charts the assistant can ask for."""
    INCOME_EXPENSE = "income-expense"
    CATEGORY_BREAKDOWN = "category-breakdown"
    SCENARIO_COMPARISON = "scenario-comparison"
    TREND = "trend"


class ChartData(BaseModel):
    """
    Data points plus rendering hints for one chart.

    Values are floats; this is the hand-off to a charting UI.
    """

    chart_type: ChartType
    data: list[dict] = Field(default_factory=list)
    config: dict = Field(default_factory=dict)
    summary: str = ""
