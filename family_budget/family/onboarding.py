"""
Conversational Onboarding

The onboarding assistant asks a new family about its household,
income, housing, expenses and goals, one stage at a time. Answers are
kept as provisional data on the family's FamilyOnboarding record and
only become real budget rows in create_initial_budget().

DESIGN DECISION: Extraction is plain regex over the user's text.
It is deliberately forgiving; the assistant confirms what was
understood before anything is turned into budget data.
"""

import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union

import structlog
from pydantic import ValidationError

from family_budget.audit import AuditLogger
from family_budget.authorization import FamilyAuthorizer
from family_budget.categories.migration import DEFAULT_CATEGORIES
from family_budget.errors import BudgetValidationError, NotFoundError
from family_budget.models.audit import AuditEventType
from family_budget.models.budget import (
    Expense,
    Income,
    IncomeFrequency,
    IncomeType,
    MonthlyOverview,
)
from family_budget.models.family import (
    CategorySuggestion,
    FamilyOnboarding,
    HousingType,
    OnboardingStage,
    OnboardingUpdate,
    RequestIdentity,
)
from family_budget.services.storage import BudgetStorageInterface


logger = structlog.get_logger(__name__)

INITIAL_BUDGET_NAME = "Initial Budget"

_AMOUNT = r"\$?(\d[\d,]*(?:\.\d+)?)"
ADULTS_PATTERN = re.compile(r"(\d+)\s*adults?", re.IGNORECASE)
CHILDREN_PATTERN = re.compile(r"(\d+)\s*(?:child|kid)", re.IGNORECASE)
AGES_PATTERN = re.compile(r"ages?\s*([\d,\s]+)", re.IGNORECASE)
AMOUNT_PATTERN = re.compile(_AMOUNT)
EXPENSE_PATTERN = re.compile(r"([a-z]+)[\s:]*" + _AMOUNT, re.IGNORECASE)
SAVINGS_PATTERN = re.compile(r"save\s*" + _AMOUNT, re.IGNORECASE)

GOAL_KEYWORDS = [
    "emergency",
    "retirement",
    "education",
    "home",
    "debt",
    "vacation",
    "savings",
]


def _to_decimal(raw: str) -> Optional[Decimal]:
    try:
        return Decimal(raw.replace(",", ""))
    except InvalidOperation:
        return None


def extract_stage_data(text: str, stage: Union[OnboardingStage, str]) -> dict[str, Any]:
    """
    Pull structured answers for one stage out of free text.

    Keys match FamilyOnboarding fields. Nothing found means an empty dict.

    >>> extract_stage_data("We are 2 adults and 3 kids", "family")
    {'adults_count': 2, 'children_count': 3}
    """
    stage = OnboardingStage(stage)
    extracted: dict[str, Any] = {}

    if stage == OnboardingStage.FAMILY:
        if match := ADULTS_PATTERN.search(text):
            extracted["adults_count"] = int(match.group(1))
        if match := CHILDREN_PATTERN.search(text):
            extracted["children_count"] = int(match.group(1))
        if match := AGES_PATTERN.search(text):
            ages = [int(part) for part in re.split(r"[,\s]+", match.group(1)) if part.isdigit()]
            if ages:
                extracted["children_ages"] = ages

    elif stage == OnboardingStage.INCOME:
        amounts = [a for a in (_to_decimal(m) for m in AMOUNT_PATTERN.findall(text)) if a is not None]
        if amounts:
            extracted["primary_income"] = amounts[0]
        if len(amounts) > 1:
            extracted["secondary_income"] = amounts[1]

    elif stage == OnboardingStage.HOUSING:
        lowered = text.lower()
        if "rent" in lowered:
            extracted["housing_type"] = HousingType.RENT
        elif "mortgage" in lowered:
            extracted["housing_type"] = HousingType.MORTGAGE
        elif "own" in lowered:
            extracted["housing_type"] = HousingType.OWNED
        if match := AMOUNT_PATTERN.search(text):
            cost = _to_decimal(match.group(1))
            if cost is not None:
                extracted["housing_cost"] = cost

    elif stage == OnboardingStage.EXPENSES:
        expenses = {}
        for word, raw in EXPENSE_PATTERN.findall(text):
            amount = _to_decimal(raw)
            if amount is not None:
                expenses[word.lower()] = amount
        if expenses:
            extracted["expenses"] = expenses

    else:
        lowered = text.lower()
        goals = [keyword for keyword in GOAL_KEYWORDS if keyword in lowered]
        if goals:
            extracted["financial_goals"] = goals
        if match := SAVINGS_PATTERN.search(text):
            goal = _to_decimal(match.group(1))
            if goal is not None:
                extracted["savings_goal"] = goal

    return extracted


def suggest_expense_categories(
    adults_count: int,
    children_count: int,
    children_ages: Optional[list[int]] = None,
    housing_type: Optional[Union[HousingType, str]] = None,
) -> list[CategorySuggestion]:
    """Typical expense groups for a household of this shape."""
    suggestions = [
        CategorySuggestion(category="Housing", items=["Rent/Mortgage", "Insurance", "Maintenance", "Property Tax"]),
        CategorySuggestion(category="Utilities", items=["Electricity", "Water", "Gas", "Internet", "Phone"]),
        CategorySuggestion(category="Food", items=["Groceries", "Dining Out", "Coffee/Snacks"]),
        CategorySuggestion(category="Transportation", items=["Car Payment", "Insurance", "Fuel", "Maintenance", "Public Transit"]),
        CategorySuggestion(category="Healthcare", items=["Insurance", "Medications", "Doctor Visits"]),
        CategorySuggestion(category="Personal", items=["Clothing", "Personal Care", "Subscriptions"]),
    ]

    if children_count > 0:
        suggestions.append(CategorySuggestion(
            category="Childcare", items=["Daycare", "Babysitting", "After-school Programs"]
        ))
        suggestions.append(CategorySuggestion(
            category="Education", items=["School Supplies", "Tuition", "Books", "Activities"]
        ))

        ages = children_ages or []
        if any(age <= 3 for age in ages):
            suggestions.append(CategorySuggestion(
                category="Baby/Toddler", items=["Diapers", "Formula", "Baby Food", "Toys"]
            ))
        if any(5 <= age <= 12 for age in ages):
            suggestions.append(CategorySuggestion(
                category="School Activities", items=["Sports", "Music Lessons", "Field Trips", "Clubs"]
            ))
        if any(age >= 13 for age in ages):
            suggestions.append(CategorySuggestion(
                category="Teen Expenses", items=["Allowance", "Phone Plan", "Activities", "College Prep"]
            ))

    if housing_type is not None and HousingType(housing_type) in (HousingType.MORTGAGE, HousingType.OWNED):
        suggestions.append(CategorySuggestion(
            category="Home Maintenance", items=["Repairs", "Lawn Care", "HOA Fees", "Improvements"]
        ))

    return suggestions


class OnboardingService:
    """
    Stores onboarding answers and builds the first budget from them.

    Usage:
        service = OnboardingService(storage, audit_logger)
        await service.extract_family_info(identity, "2 adults, 1 kid", "family")
        overview = await service.create_initial_budget(identity)
    """

    def __init__(
        self,
        storage: BudgetStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._audit = audit_logger or AuditLogger()
        self._auth = FamilyAuthorizer(storage)

    async def get_or_create(self, identity: RequestIdentity) -> FamilyOnboarding:
        """The family's onboarding record, created empty on first use."""
        family = await self._auth.require_family(identity)
        onboarding = await self._storage.get_onboarding(family.id)
        if onboarding is None:
            onboarding = await self._storage.save_onboarding(FamilyOnboarding(family_id=family.id))
        return onboarding

    async def _apply(self, identity: RequestIdentity, changes: dict[str, Any]) -> FamilyOnboarding:
        onboarding = await self.get_or_create(identity)
        if not changes:
            return onboarding

        if "expenses" in changes:
            changes = dict(changes, expenses={**onboarding.expenses, **changes["expenses"]})
        try:
            updated = FamilyOnboarding(**{**onboarding.model_dump(), **changes})
        except ValidationError as e:
            raise BudgetValidationError(str(e.errors()[0].get("msg")))

        await self._storage.save_onboarding(updated)
        await self._audit.log_onboarding(
            family_id=updated.family_id,
            actor_id=identity.user_id,
            details={"fields": sorted(changes)},
        )
        return updated

    async def extract_family_info(
        self,
        identity: RequestIdentity,
        text: str,
        stage: Union[OnboardingStage, str],
    ) -> dict[str, Any]:
        """
        Extract answers for a stage and save whatever was found.

        Returns:
            The extracted fields (possibly empty)
        """
        try:
            extracted = extract_stage_data(text or "", stage)
        except ValueError:
            raise BudgetValidationError(f"Unknown onboarding stage: {stage}")
        await self._apply(identity, extracted)
        return extracted

    async def update_onboarding(
        self,
        identity: RequestIdentity,
        data: Union[OnboardingUpdate, dict],
    ) -> FamilyOnboarding:
        """Overwrite the given fields; unset fields are left alone."""
        if isinstance(data, dict):
            try:
                data = OnboardingUpdate(**data)
            except ValidationError as e:
                raise BudgetValidationError(str(e.errors()[0].get("msg")))
        return await self._apply(identity, data.model_dump(exclude_unset=True))

    async def suggest_categories(self, identity: RequestIdentity) -> list[CategorySuggestion]:
        """Suggestions from what the family has told us so far."""
        onboarding = await self.get_or_create(identity)
        return suggest_expense_categories(
            adults_count=onboarding.adults_count or 0,
            children_count=onboarding.children_count or 0,
            children_ages=onboarding.children_ages,
            housing_type=onboarding.housing_type,
        )

    async def create_initial_budget(self, identity: RequestIdentity) -> MonthlyOverview:
        """
        Turn onboarding answers into the family's active "Initial Budget".

        Incomes are not assigned to a member. Housing and investment
        expenses go to the family's first verified member.

        Raises:
            NotFoundError: If onboarding was never started
            BudgetValidationError: If already completed or nobody is verified
        """
        family = await self._auth.require_family(identity)
        onboarding = await self._storage.get_onboarding(family.id)
        if onboarding is None:
            raise NotFoundError("Onboarding record not found")
        if onboarding.is_complete:
            raise BudgetValidationError("Onboarding is already complete")

        members = await self._storage.list_members(family.id)
        first_verified = next((member for member in members if member.is_verified), None)
        if first_verified is None:
            raise BudgetValidationError("No verified user found in family")

        categories = await self._storage.ensure_categories(family.id, DEFAULT_CATEGORIES)
        overview = MonthlyOverview(family_id=family.id, name=INITIAL_BUDGET_NAME, is_active=True)

        incomes = []
        for name, amount, income_type in (
            ("Primary Income", onboarding.primary_income, IncomeType.SALARY),
            ("Secondary Income", onboarding.secondary_income, IncomeType.SALARY),
            ("Other Income", onboarding.other_income, IncomeType.OTHER),
        ):
            if amount:
                incomes.append(Income(
                    overview_id=overview.id,
                    name=name,
                    income_type=income_type,
                    amount=amount,
                    frequency=IncomeFrequency.MONTHLY,
                ))

        expenses = []
        if onboarding.housing_cost:
            housing_name = {
                HousingType.RENT: "Rent",
                HousingType.OWNED: "Housing Costs",
            }.get(onboarding.housing_type, "Mortgage")
            expenses.append(Expense(
                overview_id=overview.id,
                user_id=first_verified.id,
                category_id=categories["Housing"].id,
                name=housing_name,
                amount=onboarding.housing_cost,
            ))
        if onboarding.monthly_investment_amount:
            expenses.append(Expense(
                overview_id=overview.id,
                user_id=first_verified.id,
                category_id=categories["Savings"].id,
                name="Monthly Investments",
                amount=onboarding.monthly_investment_amount,
            ))

        created = await self._storage.create_overview(overview, incomes=incomes, expenses=expenses)
        await self._storage.save_onboarding(
            onboarding.model_copy(update={"completed_at": datetime.utcnow()})
        )

        logger.info(
            "initial_budget_created",
            family_id=str(family.id),
            overview_id=str(created.id),
            incomes=len(incomes),
            expenses=len(expenses),
        )
        await self._audit.log_overview_event(
            AuditEventType.OVERVIEW_CREATED,
            family_id=family.id,
            actor_id=identity.user_id,
            overview_id=created.id,
            description=f"Overview created: {created.name}",
            details={"source": "onboarding"},
        )
        await self._audit.log_onboarding(
            family_id=family.id,
            actor_id=identity.user_id,
            completed=True,
        )
        return created
