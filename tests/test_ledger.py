"""Tests for the income and expense ledger."""

import asyncio
from decimal import Decimal
from uuid import uuid4

import pytest

from family_budget.errors import (
    BudgetValidationError,
    InvalidReferenceError,
    NoActiveOverviewError,
    NotFoundError,
)
from family_budget.ledger import BudgetLedger, parse_amount
from family_budget.models import IncomeFrequency, IncomeType, calculate_monthly_amount
from family_budget.models.audit import AuditEventType


@pytest.fixture
def ledger(storage, audit_logger):
    return BudgetLedger(storage, audit_logger)


@pytest.fixture
def housing(storage, identity):
    return asyncio.run(storage.find_category_by_name(identity.family_id, "Housing"))


class TestParseAmount:
    """Tests for amount parsing."""

    def test_accepts_strings_with_commas(self):
        assert parse_amount("1,250.50") == Decimal("1250.50")

    @pytest.mark.parametrize("value", ["abc", None, "-5", "0", "NaN"])
    def test_rejects_bad_values(self, value):
        with pytest.raises(BudgetValidationError):
            parse_amount(value)

    def test_rounds_to_cents(self):
        assert parse_amount("100.005") == Decimal("100.01")
        with pytest.raises(BudgetValidationError):
            parse_amount("0.004")

    def test_zero_allowed_when_asked(self):
        assert parse_amount(0, allow_zero=True) == Decimal("0")


class TestIncome:
    """Tests for income rows."""

    def test_add_income_requires_active_overview(self, ledger, identity):
        with pytest.raises(NoActiveOverviewError):
            asyncio.run(ledger.add_income(identity, "Salary", Decimal("5000")))

    def test_add_income_computes_monthly_amount(self, ledger, storage, identity, make_overview):
        overview = make_overview(identity, "Current")

        income = asyncio.run(ledger.add_income(
            identity,
            "Paycheck",
            Decimal("2000"),
            income_type=IncomeType.SALARY,
            frequency=IncomeFrequency.BIWEEKLY,
            user_id=identity.user_id,
        ))

        stored = asyncio.run(storage.get_income(income.id))
        assert stored.overview_id == overview.id
        assert stored.monthly_amount == Decimal("4333.33")
        assert stored.user_name == "Alex"

    def test_one_time_income_is_not_spread(self, ledger, identity, make_overview):
        make_overview(identity, "Current")
        income = asyncio.run(ledger.add_income(
            identity, "Tax refund", Decimal("1200"), frequency=IncomeFrequency.ONE_TIME
        ))
        assert income.monthly_amount == Decimal("1200.00")

    def test_unassigned_income(self, ledger, identity, make_overview):
        make_overview(identity, "Current")
        income = asyncio.run(ledger.add_income(identity, "Rental", Decimal("800")))
        assert income.user_id is None

    def test_add_income_for_foreign_user(self, ledger, identity, other_identity, make_overview):
        make_overview(identity, "Current")
        with pytest.raises(InvalidReferenceError):
            asyncio.run(ledger.add_income(
                identity, "Salary", Decimal("100"), user_id=other_identity.user_id
            ))

    def test_add_income_rejects_zero(self, ledger, identity, make_overview):
        make_overview(identity, "Current")
        with pytest.raises(BudgetValidationError):
            asyncio.run(ledger.add_income(identity, "Nothing", 0))

    def test_update_recomputes_monthly_amount(self, ledger, identity, make_overview):
        make_overview(identity, "Current")
        income = asyncio.run(ledger.add_income(identity, "Salary", Decimal("1000")))

        updated = asyncio.run(ledger.update_income(
            identity, income.id, frequency=IncomeFrequency.WEEKLY
        ))
        assert updated.monthly_amount == Decimal("4333.33")

        updated = asyncio.run(ledger.update_income(identity, income.id, amount=0))
        assert updated.monthly_amount == Decimal("0.00")

    def test_sub_cent_amount_matches_stored_monthly(self, ledger, storage, identity, make_overview):
        """Test monthly_amount is derived from the cent-rounded amount that gets stored."""
        make_overview(identity, "Current")

        income = asyncio.run(ledger.add_income(
            identity, "Side gig", "100.005", frequency=IncomeFrequency.WEEKLY
        ))

        stored = asyncio.run(storage.get_income(income.id))
        assert stored.amount == Decimal("100.01")
        assert stored.monthly_amount == Decimal("433.38")
        assert stored.monthly_amount == calculate_monthly_amount(stored.amount, IncomeFrequency.WEEKLY)
        assert income.monthly_amount == stored.monthly_amount

    def test_update_rejects_unknown_fields(self, ledger, identity, make_overview):
        make_overview(identity, "Current")
        income = asyncio.run(ledger.add_income(identity, "Salary", Decimal("1000")))
        with pytest.raises(BudgetValidationError):
            asyncio.run(ledger.update_income(identity, income.id, overview_id=uuid4()))

    def test_foreign_income_is_not_found(self, ledger, identity, other_identity, make_overview):
        """Test another family's row is indistinguishable from a missing one."""
        make_overview(other_identity, "Theirs")
        theirs = asyncio.run(ledger.add_income(other_identity, "Salary", Decimal("1000")))

        with pytest.raises(NotFoundError) as foreign:
            asyncio.run(ledger.update_income(identity, theirs.id, amount=1))
        with pytest.raises(NotFoundError) as missing:
            asyncio.run(ledger.update_income(identity, uuid4(), amount=1))
        assert str(foreign.value) == str(missing.value)

    def test_delete_income(self, ledger, storage, identity, make_overview):
        make_overview(identity, "Current")
        income = asyncio.run(ledger.add_income(identity, "Salary", Decimal("1000")))
        asyncio.run(ledger.delete_income(identity, income.id))
        assert asyncio.run(storage.get_income(income.id)) is None

    def test_list_incomes_of_specific_overview(self, ledger, identity, make_overview):
        old = make_overview(identity, "Old")
        asyncio.run(ledger.add_income(identity, "Old salary", Decimal("1000")))
        make_overview(identity, "New")

        incomes = asyncio.run(ledger.list_incomes(identity, old.id))
        assert [income.name for income in incomes] == ["Old salary"]
        assert asyncio.run(ledger.list_incomes(identity)) == []


class TestExpense:
    """Tests for expense rows."""

    def test_add_expense(self, ledger, identity, housing, make_overview):
        make_overview(identity, "Current")
        expense = asyncio.run(ledger.add_expense(
            identity, identity.user_id, housing.id, "Rent", "1,500"
        ))
        assert expense.amount == Decimal("1500")
        assert expense.share_percentage == Decimal("100")

    def test_add_shared_expense(self, ledger, identity, housing, make_overview):
        make_overview(identity, "Current")
        expense = asyncio.run(ledger.add_expense(
            identity, identity.user_id, housing.id, "Rent", 1500,
            is_shared=True, share_percentage=50,
        ))
        assert expense.is_shared
        assert expense.share_percentage == Decimal("50")

    def test_add_expense_share_out_of_range(self, ledger, identity, housing, make_overview):
        make_overview(identity, "Current")
        with pytest.raises(BudgetValidationError):
            asyncio.run(ledger.add_expense(
                identity, identity.user_id, housing.id, "Rent", 1500,
                is_shared=True, share_percentage=150,
            ))

    def test_add_expense_with_foreign_category(
        self, ledger, storage, identity, other_identity, make_overview
    ):
        make_overview(identity, "Current")
        theirs = asyncio.run(storage.find_category_by_name(other_identity.family_id, "Housing"))
        with pytest.raises(InvalidReferenceError):
            asyncio.run(ledger.add_expense(
                identity, identity.user_id, theirs.id, "Rent", 1500
            ))

    def test_add_expense_for_placeholder_member(
        self, ledger, identity, housing, make_overview, make_member
    ):
        """Test unverified invitees can carry expenses."""
        make_overview(identity, "Current")
        sam = make_member(identity, "Sam", verified=False)
        expense = asyncio.run(ledger.add_expense(identity, sam.id, housing.id, "Rent", 700))
        assert expense.user_id == sam.id

    def test_add_expense_without_active_overview(self, ledger, identity, housing):
        with pytest.raises(NoActiveOverviewError):
            asyncio.run(ledger.add_expense(identity, identity.user_id, housing.id, "Rent", 1))

    def test_update_expense_allows_zero(self, ledger, identity, housing, make_overview):
        make_overview(identity, "Current")
        expense = asyncio.run(ledger.add_expense(
            identity, identity.user_id, housing.id, "Rent", 1500
        ))
        updated = asyncio.run(ledger.update_expense(identity, expense.id, amount=0, name="Rent paid"))
        assert updated.amount == Decimal("0")
        assert updated.name == "Rent paid"

    def test_update_expense_to_foreign_user(
        self, ledger, identity, other_identity, housing, make_overview
    ):
        make_overview(identity, "Current")
        expense = asyncio.run(ledger.add_expense(
            identity, identity.user_id, housing.id, "Rent", 1500
        ))
        with pytest.raises(InvalidReferenceError):
            asyncio.run(ledger.update_expense(identity, expense.id, user_id=other_identity.user_id))

    def test_delete_expense(self, ledger, storage, audit_storage, identity, housing, make_overview):
        make_overview(identity, "Current")
        expense = asyncio.run(ledger.add_expense(
            identity, identity.user_id, housing.id, "Rent", 1500
        ))

        asyncio.run(ledger.delete_expense(identity, expense.id))

        assert asyncio.run(storage.get_expense(expense.id)) is None
        events = asyncio.run(audit_storage.get_events_by_entity("expense", expense.id))
        assert [e.event_type for e in events] == [
            AuditEventType.EXPENSE_ADDED,
            AuditEventType.EXPENSE_DELETED,
        ]

    def test_delete_foreign_expense(
        self, ledger, storage, identity, other_identity, make_overview
    ):
        make_overview(other_identity, "Theirs")
        category = asyncio.run(storage.find_category_by_name(other_identity.family_id, "Housing"))
        theirs = asyncio.run(ledger.add_expense(
            other_identity, other_identity.user_id, category.id, "Rent", 900
        ))
        with pytest.raises(NotFoundError):
            asyncio.run(ledger.delete_expense(identity, theirs.id))
        assert asyncio.run(storage.get_expense(theirs.id)) is not None

    def test_list_expenses_by_category(self, ledger, storage, identity, housing, make_overview):
        make_overview(identity, "Current")
        food = asyncio.run(storage.find_category_by_name(identity.family_id, "Food & Groceries"))
        asyncio.run(ledger.add_expense(identity, identity.user_id, housing.id, "Rent", 1500))
        asyncio.run(ledger.add_expense(identity, identity.user_id, food.id, "Groceries", 600))

        expenses = asyncio.run(ledger.list_expenses(identity, category_name="food & groceries"))

        assert [e.name for e in expenses] == ["Groceries"]
        assert expenses[0].category_name == "Food & Groceries"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
