"""
Income & Expense Ledger

Line items of a scenario. New rows always go into the family's active
overview; updates and deletes address rows by id and are checked
against the caller's family through the row's overview.

CRITICAL: Income.monthly_amount is rewritten together with amount and
frequency on every write. Readers never recompute it.

Ledger writes are never retried automatically.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Optional
from uuid import UUID

import structlog
from pydantic import ValidationError

from family_budget.audit import AuditLogger
from family_budget.authorization import FamilyAuthorizer, require_identity
from family_budget.errors import BudgetValidationError, NoActiveOverviewError
from family_budget.models.audit import AuditEventType
from family_budget.models.budget import (
    Expense,
    Income,
    IncomeFrequency,
    IncomeType,
    MonthlyOverview,
    ResourceType,
    to_money,
)
from family_budget.models.family import RequestIdentity
from family_budget.queries.executor import format_currency
from family_budget.services.storage import BudgetStorageInterface


logger = structlog.get_logger(__name__)

INCOME_FIELDS = {"name", "amount", "income_type", "frequency", "user_id", "notes"}
EXPENSE_FIELDS = {
    "name",
    "amount",
    "category_id",
    "user_id",
    "is_shared",
    "share_percentage",
    "notes",
}


def parse_amount(value: Any, allow_zero: bool = False) -> Decimal:
    """
    Parse a money amount, quantized to cents.

    Raises:
        BudgetValidationError: If it is not a number, negative,
            or zero when zero is not allowed
    """
    if isinstance(value, bool):
        raise BudgetValidationError(f"Invalid amount: {value}")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip().replace(",", ""))
    except (InvalidOperation, ValueError):
        raise BudgetValidationError(f"Invalid amount: {value}")
    if not amount.is_finite():
        raise BudgetValidationError(f"Invalid amount: {value}")
    amount = to_money(amount)
    if amount < 0 or (amount == 0 and not allow_zero):
        raise BudgetValidationError(
            "Amount must be zero or greater" if allow_zero else "Amount must be greater than zero"
        )
    return amount


def _parse_share(value: Any) -> Decimal:
    try:
        share = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise BudgetValidationError(f"Invalid share percentage: {value}")
    if not share.is_finite() or share < 0 or share > 100:
        raise BudgetValidationError("Share percentage must be between 0 and 100")
    return share


def _validation_message(error: ValidationError) -> str:
    first = error.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ()))
    return f"{field}: {first.get('msg')}" if field else first.get("msg", str(error))


class BudgetLedger:
    """
    Adds, updates and removes income and expense rows.

    Every foreign id in the input (user, category) is re-verified
    against the caller's family on every call.
    """

    def __init__(
        self,
        storage: BudgetStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._audit = audit_logger or AuditLogger()
        self._auth = FamilyAuthorizer(storage)

    async def _active_overview(self, identity: RequestIdentity) -> MonthlyOverview:
        overview = await self._storage.get_active_overview(identity.family_id)
        if overview is None:
            raise NoActiveOverviewError(
                "No active budget overview found. Please create or activate a budget scenario first."
            )
        return overview

    async def _overview_for_read(
        self,
        identity: RequestIdentity,
        overview_id: Optional[UUID],
    ) -> UUID:
        if overview_id is None:
            return (await self._active_overview(identity)).id
        await self._auth.require_owned(identity, ResourceType.OVERVIEW, overview_id)
        return overview_id

    # -------------------------------------------------------------------------
    # Income
    # -------------------------------------------------------------------------

    async def add_income(
        self,
        identity: RequestIdentity,
        name: str,
        amount: Any,
        income_type: IncomeType = IncomeType.SALARY,
        frequency: IncomeFrequency = IncomeFrequency.MONTHLY,
        user_id: Optional[UUID] = None,
        notes: Optional[str] = None,
    ) -> Income:
        """
        Add an income to the active overview.

        Raises:
            NoActiveOverviewError: If the family has no active overview
            InvalidReferenceError: If user_id is not a member of the family
            BudgetValidationError: If the amount is not positive
        """
        identity = require_identity(identity)
        overview = await self._active_overview(identity)
        if user_id is not None:
            await self._auth.require_reference(identity, ResourceType.USER, user_id)

        try:
            income = Income(
                overview_id=overview.id,
                user_id=user_id,
                name=name,
                income_type=income_type,
                amount=parse_amount(amount),
                frequency=frequency,
                notes=notes,
            )
        except ValidationError as e:
            raise BudgetValidationError(_validation_message(e))

        await self._storage.add_income(income)
        logger.info(
            "income_added",
            overview_id=str(overview.id),
            income_id=str(income.id),
            monthly_amount=str(income.monthly_amount),
        )
        await self._audit.log_ledger_event(
            AuditEventType.INCOME_ADDED,
            family_id=identity.family_id,
            actor_id=identity.user_id,
            entity_type="income",
            entity_id=income.id,
            name=income.name,
            amount=format_currency(income.monthly_amount),
        )
        return income

    async def update_income(
        self,
        identity: RequestIdentity,
        income_id: UUID,
        **changes: Any,
    ) -> Income:
        """
        Update fields of an income.

        monthly_amount is always recomputed from the resulting
        amount and frequency.

        Raises:
            NotFoundError: If the income is not in the caller's family
            InvalidReferenceError: If a new user_id is not in the family
            BudgetValidationError: For unknown fields or bad values
        """
        identity = require_identity(identity)
        unknown = set(changes) - INCOME_FIELDS
        if unknown:
            raise BudgetValidationError(f"Unknown income fields: {', '.join(sorted(unknown))}")

        await self._auth.require_owned(identity, ResourceType.INCOME, income_id)
        current = await self._storage.get_income(income_id)

        if "amount" in changes:
            changes["amount"] = parse_amount(changes["amount"], allow_zero=True)
        if changes.get("user_id") is not None and changes["user_id"] != current.user_id:
            await self._auth.require_reference(identity, ResourceType.USER, changes["user_id"])

        data = current.model_dump(exclude={"monthly_amount", "user_name"})
        data.update(changes)
        try:
            updated = Income(**data)
        except ValidationError as e:
            raise BudgetValidationError(_validation_message(e))

        await self._storage.update_income(updated)
        await self._audit.log_ledger_event(
            AuditEventType.INCOME_UPDATED,
            family_id=identity.family_id,
            actor_id=identity.user_id,
            entity_type="income",
            entity_id=updated.id,
            name=updated.name,
            amount=format_currency(updated.monthly_amount),
        )
        return updated

    async def delete_income(self, identity: RequestIdentity, income_id: UUID) -> None:
        identity = require_identity(identity)
        await self._auth.require_owned(identity, ResourceType.INCOME, income_id)
        current = await self._storage.get_income(income_id)

        await self._storage.delete_income(income_id)
        await self._audit.log_ledger_event(
            AuditEventType.INCOME_DELETED,
            family_id=identity.family_id,
            actor_id=identity.user_id,
            entity_type="income",
            entity_id=income_id,
            name=current.name,
        )

    async def list_incomes(
        self,
        identity: RequestIdentity,
        overview_id: Optional[UUID] = None,
    ) -> list[Income]:
        """Incomes of an overview (the active one by default)."""
        identity = require_identity(identity)
        return await self._storage.list_incomes(await self._overview_for_read(identity, overview_id))

    # -------------------------------------------------------------------------
    # Expenses
    # -------------------------------------------------------------------------

    async def add_expense(
        self,
        identity: RequestIdentity,
        user_id: UUID,
        category_id: UUID,
        name: str,
        amount: Any,
        is_shared: bool = False,
        share_percentage: Optional[Any] = None,
        notes: Optional[str] = None,
    ) -> Expense:
        """
        Add a monthly expense to the active overview.

        Raises:
            NoActiveOverviewError: If the family has no active overview
            InvalidReferenceError: If user or category is not in the family
            BudgetValidationError: If the amount or share is invalid
        """
        identity = require_identity(identity)
        overview = await self._active_overview(identity)
        await self._auth.require_reference(identity, ResourceType.USER, user_id)
        await self._auth.require_reference(identity, ResourceType.CATEGORY, category_id)

        share = _parse_share(share_percentage) if share_percentage is not None else Decimal("100")
        try:
            expense = Expense(
                overview_id=overview.id,
                user_id=user_id,
                category_id=category_id,
                name=name,
                amount=parse_amount(amount),
                is_shared=bool(is_shared),
                share_percentage=share,
                notes=notes,
            )
        except ValidationError as e:
            raise BudgetValidationError(_validation_message(e))

        await self._storage.add_expense(expense)
        logger.info(
            "expense_added",
            overview_id=str(overview.id),
            expense_id=str(expense.id),
            amount=str(expense.amount),
        )
        await self._audit.log_ledger_event(
            AuditEventType.EXPENSE_ADDED,
            family_id=identity.family_id,
            actor_id=identity.user_id,
            entity_type="expense",
            entity_id=expense.id,
            name=expense.name,
            amount=format_currency(expense.amount),
        )
        return expense

    async def update_expense(
        self,
        identity: RequestIdentity,
        expense_id: UUID,
        **changes: Any,
    ) -> Expense:
        """
        Update fields of an expense.

        Raises:
            NotFoundError: If the expense is not in the caller's family
            InvalidReferenceError: If a new user or category is not in the family
            BudgetValidationError: For unknown fields or bad values
        """
        identity = require_identity(identity)
        unknown = set(changes) - EXPENSE_FIELDS
        if unknown:
            raise BudgetValidationError(f"Unknown expense fields: {', '.join(sorted(unknown))}")

        await self._auth.require_owned(identity, ResourceType.EXPENSE, expense_id)
        current = await self._storage.get_expense(expense_id)

        if "amount" in changes:
            changes["amount"] = parse_amount(changes["amount"], allow_zero=True)
        if changes.get("share_percentage") is not None:
            changes["share_percentage"] = _parse_share(changes["share_percentage"])
        if "user_id" in changes and changes["user_id"] != current.user_id:
            await self._auth.require_reference(identity, ResourceType.USER, changes["user_id"])
        if "category_id" in changes and changes["category_id"] != current.category_id:
            await self._auth.require_reference(identity, ResourceType.CATEGORY, changes["category_id"])

        data = current.model_dump(exclude={"category_name", "user_name"})
        data.update(changes)
        try:
            updated = Expense(**data)
        except ValidationError as e:
            raise BudgetValidationError(_validation_message(e))

        await self._storage.update_expense(updated)
        await self._audit.log_ledger_event(
            AuditEventType.EXPENSE_UPDATED,
            family_id=identity.family_id,
            actor_id=identity.user_id,
            entity_type="expense",
            entity_id=updated.id,
            name=updated.name,
            amount=format_currency(updated.amount),
        )
        return updated

    async def delete_expense(self, identity: RequestIdentity, expense_id: UUID) -> None:
        """Hard delete."""
        identity = require_identity(identity)
        await self._auth.require_owned(identity, ResourceType.EXPENSE, expense_id)
        current = await self._storage.get_expense(expense_id)

        await self._storage.delete_expense(expense_id)
        await self._audit.log_ledger_event(
            AuditEventType.EXPENSE_DELETED,
            family_id=identity.family_id,
            actor_id=identity.user_id,
            entity_type="expense",
            entity_id=expense_id,
            name=current.name,
        )

    async def list_expenses(
        self,
        identity: RequestIdentity,
        overview_id: Optional[UUID] = None,
        category_name: Optional[str] = None,
    ) -> list[Expense]:
        """Expenses of an overview, optionally one category only."""
        identity = require_identity(identity)
        target = await self._overview_for_read(identity, overview_id)
        return await self._storage.list_expenses(target, category_name=category_name)
