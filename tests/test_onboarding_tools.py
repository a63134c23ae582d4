"""Tests for the onboarding assistant's tools."""

import asyncio
from decimal import Decimal

import pytest

from family_budget.agents import OnboardingToolkit
from family_budget.family import OnboardingService
from family_budget.models.audit import AuditEventType


@pytest.fixture
def onboarding(storage, audit_logger):
    return OnboardingService(storage, audit_logger)


@pytest.fixture
def toolkit(identity, onboarding, audit_logger):
    return OnboardingToolkit(identity, onboarding, audit_logger=audit_logger)


def execute(toolkit, name, arguments=None):
    return asyncio.run(toolkit.execute(name, arguments))


def saved(storage, identity):
    return asyncio.run(storage.get_onboarding(identity.family_id))


class TestDeclarations:
    """Tests for what the model gets to see."""

    def test_tool_names(self, toolkit):
        assert toolkit.names == [
            "extractFamilyInfo",
            "createInitialBudget",
            "suggestExpenseCategories",
            "updateOnboardingData",
        ]

    def test_stage_is_an_enum(self, toolkit):
        declaration = toolkit.declarations()[0]
        stage = declaration["parameters"]["properties"]["stage"]
        assert stage["enum"] == ["family", "income", "housing", "expenses", "goals"]
        assert declaration["parameters"]["required"] == ["text", "stage"]

    def test_no_parameters_for_create(self, toolkit):
        declaration = toolkit.declarations()[1]
        assert declaration["name"] == "createInitialBudget"
        assert "parameters" not in declaration

    def test_array_parameters_have_items(self, toolkit):
        properties = toolkit.declarations()[3]["parameters"]["properties"]
        assert properties["childrenAges"] == {
            "type": "array",
            "items": {"type": "integer"},
            "description": "Age of each child",
        }
        assert properties["financialGoals"]["items"] == {"type": "string"}
        assert properties["housingCost"]["type"] == "number"


class TestExtractFamilyInfo:
    """Tests for the extractFamilyInfo tool."""

    def test_saves_what_was_found(self, toolkit, storage, identity):
        result = execute(toolkit, "extractFamilyInfo", {
            "text": "We are 2 adults and 3 kids",
            "stage": "family",
        })

        assert result == {
            "success": True,
            "extractedData": {"adultsCount": 2, "childrenCount": 3},
        }
        onboarding = saved(storage, identity)
        assert onboarding.adults_count == 2
        assert onboarding.children_count == 3

    def test_amounts_are_strings(self, toolkit, storage, identity):
        result = execute(toolkit, "extractFamilyInfo", {
            "text": "I make $5,200 a month",
            "stage": "income",
        })

        assert result["extractedData"] == {"primaryIncome": "5200"}
        assert saved(storage, identity).primary_income == Decimal("5200")

    def test_nothing_found(self, toolkit):
        result = execute(toolkit, "extractFamilyInfo", {"text": "not sure yet", "stage": "income"})
        assert result == {"success": True, "extractedData": {}}

    def test_unknown_stage(self, toolkit, storage, identity):
        result = execute(toolkit, "extractFamilyInfo", {"text": "2 adults", "stage": "pets"})

        assert result["error"].startswith("Invalid stage")
        assert saved(storage, identity) is None


class TestUpdateOnboardingData:
    """Tests for the updateOnboardingData tool."""

    def test_camel_case_arguments(self, toolkit, storage, identity):
        result = execute(toolkit, "updateOnboardingData", {
            "housingType": "rent",
            "housingCost": 1800,
            "financialGoals": ["emergency fund"],
        })

        assert result == {
            "success": True,
            "updated": {
                "housingType": "rent",
                "housingCost": "1800",
                "financialGoals": ["emergency fund"],
            },
        }
        onboarding = saved(storage, identity)
        assert onboarding.housing_cost == Decimal("1800")

    def test_earlier_answers_are_kept(self, toolkit, storage, identity):
        execute(toolkit, "extractFamilyInfo", {"text": "2 adults", "stage": "family"})
        execute(toolkit, "updateOnboardingData", {"savingsGoal": 500})

        onboarding = saved(storage, identity)
        assert onboarding.adults_count == 2
        assert onboarding.savings_goal == Decimal("500")

    def test_negative_amount(self, toolkit):
        result = execute(toolkit, "updateOnboardingData", {"housingCost": -5})
        assert "error" in result


class TestSuggestExpenseCategories:
    """Tests for the suggestExpenseCategories tool."""

    def test_uses_saved_answers(self, toolkit):
        execute(toolkit, "updateOnboardingData", {
            "adultsCount": 2,
            "childrenCount": 1,
            "childrenAges": [2],
            "housingType": "mortgage",
        })

        result = execute(toolkit, "suggestExpenseCategories", {})

        groups = [s["category"] for s in result["suggestions"]]
        assert "Childcare" in groups
        assert "Baby/Toddler" in groups
        assert "Home Maintenance" in groups
        assert result["suggestions"][0] == {
            "category": "Housing",
            "items": ["Rent/Mortgage", "Insurance", "Maintenance", "Property Tax"],
        }

    def test_arguments_override_saved_answers(self, toolkit):
        execute(toolkit, "updateOnboardingData", {"childrenCount": 2})

        result = execute(toolkit, "suggestExpenseCategories", {"childrenCount": 0})

        groups = [s["category"] for s in result["suggestions"]]
        assert "Childcare" not in groups


class TestCreateInitialBudget:
    """Tests for the createInitialBudget tool."""

    def test_creates_active_overview(self, toolkit, storage, audit_storage, identity):
        execute(toolkit, "updateOnboardingData", {
            "primaryIncome": 5200,
            "housingType": "rent",
            "housingCost": 1800,
        })

        result = execute(toolkit, "createInitialBudget")

        assert result["success"] is True
        assert result["overviewName"] == "Initial Budget"
        assert result["message"] == "Initial budget created successfully!"
        active = asyncio.run(storage.get_active_overview(identity.family_id))
        assert str(active.id) == result["overviewId"]
        expenses = asyncio.run(storage.list_expenses(active.id))
        assert [(e.name, e.amount) for e in expenses] == [("Rent", Decimal("1800.00"))]

        events = asyncio.run(audit_storage.get_recent_events(identity.family_id))
        assert AuditEventType.TOOL_EXECUTED in [e.event_type for e in events]

    def test_second_call_is_an_error(self, toolkit):
        execute(toolkit, "updateOnboardingData", {"primaryIncome": 5200})
        execute(toolkit, "createInitialBudget")

        assert execute(toolkit, "createInitialBudget") == {"error": "Onboarding is already complete"}

    def test_answers_stay_with_their_family(self, toolkit, onboarding, storage, identity, other_identity):
        """Test another family's toolkit cannot build a budget from these answers."""
        execute(toolkit, "updateOnboardingData", {"primaryIncome": 5200})
        theirs = OnboardingToolkit(other_identity, onboarding)

        assert execute(theirs, "createInitialBudget") == {"error": "Onboarding record not found"}
        assert asyncio.run(storage.get_active_overview(identity.family_id)) is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
