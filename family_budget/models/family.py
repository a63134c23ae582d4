"""
Family and Membership Models

A family owns its members, categories and scenarios.
Members can be placeholders (invited, unverified, no password)
and still have income and expenses assigned to them.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)


class Family(BaseModel):
    """A household."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    name: str = Field(..., min_length=1, max_length=200)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class FamilyMember(BaseModel):
    """
    A user. Belongs to exactly one family.

    password_hash is None until the member has accepted an invitation.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    family_id: UUID
    email: str = Field(..., min_length=3, max_length=255)
    name: str = Field(..., min_length=1, max_length=200)
    is_verified: bool = False
    verified_at: Optional[datetime] = None
    invited_by: Optional[UUID] = None
    invited_at: Optional[datetime] = None
    password_hash: Optional[str] = Field(default=None, repr=False)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator('email')
    @classmethod
    def normalize_email(cls, v: str) -> str:
        """Emails are unique case-insensitively."""
        if "@" not in v:
            raise ValueError(f"Invalid email address: {v}")
        return v.lower()


class RequestIdentity(BaseModel):
    """
    Resolved identity for one request.

    Supplied by the session provider. The core never authenticates,
    it only trusts this.
    """

    user_id: UUID
    family_id: Optional[UUID] = None
    user_name: Optional[str] = None


class InvitationResult(BaseModel):
    """Outcome of inviting a family member."""

    member: FamilyMember
    email_sent: bool


class TokenPurpose(str, Enum):
    """What a one-time email token proves."""
    VERIFICATION = "verification"
    PASSWORD_RESET = "password_reset"


class EmailToken(BaseModel):
    """
    A one-time token sent by email.

    Only the SHA-256 of the token is stored; the raw value exists in
    the email and nowhere else.
    """

    id: UUID = Field(default_factory=uuid4)
    email: str
    token_hash: str = Field(..., min_length=64, max_length=64)
    purpose: TokenPurpose
    expires_at: datetime
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator('email')
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.lower()

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or datetime.utcnow()) >= self.expires_at


# =============================================================================
# ONBOARDING
# =============================================================================

class OnboardingStage(str, Enum):
    """Conversation stages the onboarding assistant extracts data from."""
    FAMILY = "family"
    INCOME = "income"
    HOUSING = "housing"
    EXPENSES = "expenses"
    GOALS = "goals"


class HousingType(str, Enum):
    RENT = "rent"
    MORTGAGE = "mortgage"
    OWNED = "owned"


class FamilyOnboarding(BaseModel):
    """
    Provisional answers gathered by the onboarding assistant.

    Nothing here is budget data yet. create_initial_budget turns it
    into real income and expense rows.
    """

    id: UUID = Field(default_factory=uuid4)
    family_id: UUID

    adults_count: Optional[int] = Field(default=None, ge=0)
    children_count: Optional[int] = Field(default=None, ge=0)
    children_ages: list[int] = Field(default_factory=list)

    primary_income: Optional[Decimal] = Field(default=None, ge=0)
    secondary_income: Optional[Decimal] = Field(default=None, ge=0)
    other_income: Optional[Decimal] = Field(default=None, ge=0)

    has_investments: Optional[bool] = None
    investment_types: list[str] = Field(default_factory=list)
    monthly_investment_amount: Optional[Decimal] = Field(default=None, ge=0)

    housing_type: Optional[HousingType] = None
    housing_cost: Optional[Decimal] = Field(default=None, ge=0)

    expenses: dict[str, Decimal] = Field(
        default_factory=dict,
        description="Free-text expense guesses, keyword -> amount"
    )

    savings_goal: Optional[Decimal] = Field(default=None, ge=0)
    financial_goals: list[str] = Field(default_factory=list)
    budget_priorities: list[str] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    @property
    def is_complete(self) -> bool:
        return self.completed_at is not None


class OnboardingUpdate(BaseModel):
    """Partial update to onboarding answers. Unset fields are left alone."""
    model_config = ConfigDict(extra="forbid")

    adults_count: Optional[int] = Field(default=None, ge=0)
    children_count: Optional[int] = Field(default=None, ge=0)
    children_ages: Optional[list[int]] = None
    primary_income: Optional[Decimal] = Field(default=None, ge=0)
    secondary_income: Optional[Decimal] = Field(default=None, ge=0)
    other_income: Optional[Decimal] = Field(default=None, ge=0)
    has_investments: Optional[bool] = None
    investment_types: Optional[list[str]] = None
    monthly_investment_amount: Optional[Decimal] = Field(default=None, ge=0)
    housing_type: Optional[HousingType] = None
    housing_cost: Optional[Decimal] = Field(default=None, ge=0)
    savings_goal: Optional[Decimal] = Field(default=None, ge=0)
    financial_goals: Optional[list[str]] = None
    budget_priorities: Optional[list[str]] = None


class CategorySuggestion(BaseModel):
    """Suggested expense group with typical items."""

    category: str
    items: list[str] = Field(default_factory=list)
