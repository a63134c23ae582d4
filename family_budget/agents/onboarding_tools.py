"""
Onboarding Tools

The onboarding assistant's tools. They act on the caller's family
onboarding record, so none of them takes an onboarding id.

Same contract as the budget tools: camelCase names, JSON-serialisable
dicts, failures as {"error": "..."}.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import Field
from pydantic.alias_generators import to_camel
from pydantic_core import to_jsonable_python

from family_budget.agents.tools import ToolDefinition, Toolkit, ToolParams
from family_budget.audit import AuditLogger
from family_budget.family.onboarding import OnboardingService, suggest_expense_categories
from family_budget.models.family import (
    FamilyOnboarding,
    HousingType,
    OnboardingStage,
    OnboardingUpdate,
    RequestIdentity,
)


class ExtractFamilyInfoParams(ToolParams):
    text: str = Field(..., description="User input to parse")
    stage: OnboardingStage = Field(..., description="Which onboarding answers the text is about")


class UpdateOnboardingDataParams(ToolParams):
    adults_count: Optional[int] = Field(default=None, ge=0, description="Adults in the household")
    children_count: Optional[int] = Field(default=None, ge=0, description="Children in the household")
    children_ages: Optional[list[int]] = Field(default=None, description="Age of each child")
    primary_income: Optional[Decimal] = Field(default=None, ge=0, description="Primary monthly income")
    secondary_income: Optional[Decimal] = Field(default=None, ge=0, description="Secondary monthly income")
    other_income: Optional[Decimal] = Field(default=None, ge=0, description="Any other monthly income")
    has_investments: Optional[bool] = Field(default=None, description="Does the family invest?")
    investment_types: Optional[list[str]] = Field(default=None, description="Kinds of investments")
    monthly_investment_amount: Optional[Decimal] = Field(
        default=None,
        ge=0,
        description="Amount invested each month"
    )
    housing_type: Optional[HousingType] = Field(default=None, description="Rent, mortgage or owned outright")
    housing_cost: Optional[Decimal] = Field(default=None, ge=0, description="Monthly housing cost")
    savings_goal: Optional[Decimal] = Field(default=None, ge=0, description="Monthly savings goal")
    financial_goals: Optional[list[str]] = Field(default=None, description="Financial goals")
    budget_priorities: Optional[list[str]] = Field(default=None, description="Budget priorities")


class SuggestExpenseCategoriesParams(ToolParams):
    adults_count: Optional[int] = Field(
        default=None,
        ge=0,
        description="Adults in the household, defaults to the saved answer"
    )
    children_count: Optional[int] = Field(
        default=None,
        ge=0,
        description="Children in the household, defaults to the saved answer"
    )
    children_ages: Optional[list[int]] = Field(
        default=None,
        description="Age of each child, defaults to the saved answer"
    )
    housing_type: Optional[HousingType] = Field(
        default=None,
        description="Housing situation, defaults to the saved answer"
    )


class CreateInitialBudgetParams(ToolParams):
    pass


def _answers(onboarding: FamilyOnboarding) -> dict:
    data = onboarding.model_dump(
        mode="json",
        exclude={"id", "family_id", "created_at", "completed_at"},
        exclude_none=True,
    )
    return {to_camel(key): value for key, value in data.items() if value not in ([], {})}


class OnboardingToolkit(Toolkit):
    """
    The onboarding tools.

    Usage:
        toolkit = OnboardingToolkit(identity, onboarding_service)
        result = await toolkit.execute("extractFamilyInfo", {"text": "...", "stage": "family"})
    """

    def __init__(
        self,
        identity: RequestIdentity,
        onboarding: OnboardingService,
        audit_logger: Optional[AuditLogger] = None,
        correlation_id: Optional[UUID] = None,
    ):
        self._onboarding = onboarding
        super().__init__(identity, audit_logger, correlation_id)

    def _definitions(self) -> list[ToolDefinition]:
        return [
            ToolDefinition(
                name="extractFamilyInfo",
                description="Extract and structure family information from conversation",
                params=ExtractFamilyInfoParams,
                handler=self.extract_family_info,
            ),
            ToolDefinition(
                name="createInitialBudget",
                description="Create initial budget from onboarding data",
                params=CreateInitialBudgetParams,
                handler=self.create_initial_budget,
            ),
            ToolDefinition(
                name="suggestExpenseCategories",
                description="Suggest expense categories based on family profile",
                params=SuggestExpenseCategoriesParams,
                handler=self.suggest_expense_categories,
            ),
            ToolDefinition(
                name="updateOnboardingData",
                description="Update onboarding data with new information",
                params=UpdateOnboardingDataParams,
                handler=self.update_onboarding_data,
            ),
        ]

    async def extract_family_info(self, params: ExtractFamilyInfoParams) -> dict:
        extracted = await self._onboarding.extract_family_info(
            self._identity, params.text, params.stage
        )
        return {
            "success": True,
            "extractedData": {
                to_camel(key): value for key, value in to_jsonable_python(extracted).items()
            },
        }

    async def update_onboarding_data(self, params: UpdateOnboardingDataParams) -> dict:
        changes = params.model_dump(exclude_unset=True)
        updated = await self._onboarding.update_onboarding(
            self._identity, OnboardingUpdate(**changes)
        )
        return {"success": True, "updated": _answers(updated)}

    async def suggest_expense_categories(self, params: SuggestExpenseCategoriesParams) -> dict:
        onboarding = await self._onboarding.get_or_create(self._identity)
        suggestions = suggest_expense_categories(
            adults_count=(
                params.adults_count if params.adults_count is not None
                else onboarding.adults_count or 0
            ),
            children_count=(
                params.children_count if params.children_count is not None
                else onboarding.children_count or 0
            ),
            children_ages=(
                params.children_ages if params.children_ages is not None
                else onboarding.children_ages
            ),
            housing_type=params.housing_type or onboarding.housing_type,
        )
        return {
            "suggestions": [suggestion.model_dump() for suggestion in suggestions],
        }

    async def create_initial_budget(self, params: CreateInitialBudgetParams) -> dict:
        overview = await self._onboarding.create_initial_budget(self._identity)
        return {
            "success": True,
            "overviewId": str(overview.id),
            "overviewName": overview.name,
            "message": "Initial budget created successfully!",
        }
