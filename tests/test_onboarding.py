"""Tests for conversational onboarding."""

import asyncio
from decimal import Decimal

import pytest

from family_budget.errors import BudgetValidationError, NotFoundError
from family_budget.family import (
    OnboardingService,
    extract_stage_data,
    suggest_expense_categories,
)
from family_budget.models import Family, FamilyMember, HousingType, RequestIdentity


@pytest.fixture
def service(storage, audit_logger):
    return OnboardingService(storage, audit_logger)


class TestExtraction:
    """Tests for regex extraction per stage."""

    def test_family_stage(self):
        data = extract_stage_data("We are 2 adults and 3 kids, ages 4, 9, 14", "family")
        assert data == {"adults_count": 2, "children_count": 3, "children_ages": [4, 9, 14]}

    def test_family_stage_children_wording(self):
        data = extract_stage_data("1 adult, 1 child", "family")
        assert data["adults_count"] == 1
        assert data["children_count"] == 1

    def test_income_stage(self):
        data = extract_stage_data("I make $5,200 a month and my partner makes $3,100.50", "income")
        assert data == {
            "primary_income": Decimal("5200"),
            "secondary_income": Decimal("3100.50"),
        }

    @pytest.mark.parametrize("text,housing_type", [
        ("We rent for $1,800", HousingType.RENT),
        ("Our mortgage is 2400", HousingType.MORTGAGE),
        ("We own our home, taxes are about $300", HousingType.OWNED),
    ])
    def test_housing_stage(self, text, housing_type):
        data = extract_stage_data(text, "housing")
        assert data["housing_type"] == housing_type
        assert "housing_cost" in data

    def test_expenses_stage(self):
        data = extract_stage_data("groceries: $600, gas 150, netflix $15.99", "expenses")
        assert data["expenses"] == {
            "groceries": Decimal("600"),
            "gas": Decimal("150"),
            "netflix": Decimal("15.99"),
        }

    def test_goals_stage(self):
        data = extract_stage_data("Build an emergency fund, pay off debt and save $500", "goals")
        assert data["financial_goals"] == ["emergency", "debt"]
        assert data["savings_goal"] == Decimal("500")

    def test_nothing_found(self):
        assert extract_stage_data("not sure yet", "income") == {}

    def test_unknown_stage(self):
        with pytest.raises(ValueError):
            extract_stage_data("2 adults", "pets")


class TestSuggestions:
    """Tests for expense group suggestions."""

    def test_no_children(self):
        groups = [s.category for s in suggest_expense_categories(2, 0)]
        assert groups == [
            "Housing", "Utilities", "Food", "Transportation", "Healthcare", "Personal",
        ]

    def test_children_by_age(self):
        groups = [s.category for s in suggest_expense_categories(2, 3, [2, 8, 15])]
        assert "Childcare" in groups
        assert "Education" in groups
        assert "Baby/Toddler" in groups
        assert "School Activities" in groups
        assert "Teen Expenses" in groups

    def test_homeowners(self):
        groups = [s.category for s in suggest_expense_categories(1, 0, housing_type="mortgage")]
        assert groups[-1] == "Home Maintenance"


class TestOnboardingService:
    """Tests for storing answers and building the first budget."""

    def test_extract_saves_answers(self, service, identity):
        asyncio.run(service.extract_family_info(identity, "2 adults, 1 kid", "family"))
        asyncio.run(service.extract_family_info(identity, "We rent for $1,500", "housing"))

        onboarding = asyncio.run(service.get_or_create(identity))
        assert onboarding.adults_count == 2
        assert onboarding.children_count == 1
        assert onboarding.housing_type == HousingType.RENT
        assert onboarding.housing_cost == Decimal("1500")

    def test_expense_guesses_accumulate(self, service, identity):
        asyncio.run(service.extract_family_info(identity, "groceries 600", "expenses"))
        asyncio.run(service.extract_family_info(identity, "phone 80", "expenses"))

        onboarding = asyncio.run(service.get_or_create(identity))
        assert set(onboarding.expenses) == {"groceries", "phone"}

    def test_extract_unknown_stage(self, service, identity):
        with pytest.raises(BudgetValidationError):
            asyncio.run(service.extract_family_info(identity, "hello", "pets"))

    def test_update_onboarding(self, service, identity):
        asyncio.run(service.update_onboarding(identity, {"adults_count": 2}))
        updated = asyncio.run(service.update_onboarding(identity, {"primary_income": "4000"}))
        assert updated.adults_count == 2
        assert updated.primary_income == Decimal("4000")

    def test_update_rejects_unknown_field(self, service, identity):
        with pytest.raises(BudgetValidationError):
            asyncio.run(service.update_onboarding(identity, {"pets": 3}))

    def test_suggest_categories_from_profile(self, service, identity):
        asyncio.run(service.update_onboarding(identity, {
            "adults_count": 2, "children_count": 1, "children_ages": [1],
        }))
        groups = [s.category for s in asyncio.run(service.suggest_categories(identity))]
        assert "Baby/Toddler" in groups

    def test_create_initial_budget(self, service, storage, identity, make_overview):
        existing = make_overview(identity, "Old plan")
        asyncio.run(service.update_onboarding(identity, {
            "primary_income": "5000",
            "secondary_income": "2500",
            "other_income": "200",
            "housing_type": "rent",
            "housing_cost": "1800",
            "monthly_investment_amount": "400",
        }))

        overview = asyncio.run(service.create_initial_budget(identity))

        assert overview.name == "Initial Budget"
        active = asyncio.run(storage.get_active_overview(identity.family_id))
        assert active.id == overview.id
        old = asyncio.run(storage.get_overview(identity.family_id, existing.id))
        assert not old.is_active

        incomes = {i.name: i for i in asyncio.run(storage.list_incomes(overview.id))}
        assert set(incomes) == {"Primary Income", "Secondary Income", "Other Income"}
        assert all(i.user_id is None for i in incomes.values())
        assert incomes["Other Income"].income_type.value == "other"

        expenses = {e.name: e for e in asyncio.run(storage.list_expenses(overview.id))}
        assert expenses["Rent"].category_name == "Housing"
        assert expenses["Rent"].user_id == identity.user_id
        assert expenses["Monthly Investments"].category_name == "Savings"
        assert expenses["Monthly Investments"].amount == Decimal("400")

        assert asyncio.run(service.get_or_create(identity)).is_complete

    def test_create_initial_budget_twice(self, service, identity):
        asyncio.run(service.update_onboarding(identity, {"primary_income": "5000"}))
        asyncio.run(service.create_initial_budget(identity))
        with pytest.raises(BudgetValidationError):
            asyncio.run(service.create_initial_budget(identity))

    def test_create_initial_budget_without_onboarding(self, service, identity):
        with pytest.raises(NotFoundError):
            asyncio.run(service.create_initial_budget(identity))

    def test_create_initial_budget_needs_verified_member(self, service, storage):
        family = Family(name="Pending Family")
        placeholder = FamilyMember(family_id=family.id, email="p@example.com", name="P")
        asyncio.run(storage.create_family_with_owner(family, placeholder, []))
        identity = RequestIdentity(user_id=placeholder.id, family_id=family.id)
        asyncio.run(service.update_onboarding(identity, {"primary_income": "1000"}))

        with pytest.raises(BudgetValidationError, match="No verified user"):
            asyncio.run(service.create_initial_budget(identity))
        assert asyncio.run(storage.get_active_overview(family.id)) is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
