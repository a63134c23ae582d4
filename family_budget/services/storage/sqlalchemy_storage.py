"""
SQLAlchemy Storage Implementation

DESIGN DECISION: A relational store replaces the spreadsheet backend
because the budget invariants need real transactions:
1. Switching scenarios must deactivate and activate in one commit
2. Deleting the active scenario must hand the flag to a survivor atomically
3. The category reset must move expenses before deleting categories

Every public method opens exactly one transaction with
sessionmaker.begin(). A raised exception rolls it back, so no method
ever leaves a half-applied change behind.

Sessions are synchronous. The async methods exist so the service layer
can later move to an async driver without changing its call sites.
"""

from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Callable, Iterator, Optional
from uuid import UUID

import structlog
from sqlalchemy import create_engine, delete, func, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from family_budget.config import DatabaseSettings
from family_budget.errors import (
    BudgetError,
    BudgetValidationError,
    CategoryInUseError,
    LastScenarioError,
    NotFoundError,
    StorageError,
)
from family_budget.models.audit import AuditEvent, AuditEventType, AuditSeverity
from family_budget.models.budget import (
    Category,
    CategoryResetResult,
    CategoryTemplate,
    Expense,
    Income,
    IncomeFrequency,
    IncomeType,
    MonthlyOverview,
    ResourceType,
    to_money,
)
from family_budget.models.conversation import Conversation
from family_budget.models.family import (
    EmailToken,
    Family,
    FamilyMember,
    FamilyOnboarding,
    TokenPurpose,
)
from family_budget.services.storage.interface import (
    AuditStorageInterface,
    BudgetStorageInterface,
)
from family_budget.services.storage.tables import (
    AuditEventRow,
    Base,
    CategoryRow,
    ConversationRow,
    EmailTokenRow,
    ExpenseRow,
    FamilyRow,
    IncomeRow,
    OnboardingRow,
    OverviewRow,
    UserRow,
)


logger = structlog.get_logger(__name__)

_ONBOARDING_COLUMNS = {"id", "family_id", "created_at", "completed_at"}


def create_engine_from_settings(settings: DatabaseSettings) -> Engine:
    """
    Build the engine for the configured URL.

    In-memory SQLite gets a StaticPool so every session sees
    the same database.
    """
    kwargs = {"echo": settings.echo}
    if settings.url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in settings.url or settings.url == "sqlite://":
            kwargs["poolclass"] = StaticPool
    return create_engine(settings.url, **kwargs)


def create_session_factory(engine: Engine, create_schema: bool = True) -> sessionmaker:
    """Session factory bound to engine, creating tables if asked."""
    if create_schema:
        Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)


# =============================================================================
# ROW <-> MODEL CONVERSION
# =============================================================================

def _family_from_row(row: FamilyRow) -> Family:
    return Family(id=row.id, name=row.name, created_at=row.created_at)


def _member_from_row(row: UserRow) -> FamilyMember:
    return FamilyMember(
        id=row.id,
        family_id=row.family_id,
        email=row.email,
        name=row.name,
        is_verified=row.is_verified,
        verified_at=row.verified_at,
        invited_by=row.invited_by,
        invited_at=row.invited_at,
        password_hash=row.password_hash,
        created_at=row.created_at,
    )


def _token_from_row(row: EmailTokenRow) -> EmailToken:
    return EmailToken(
        id=row.id,
        email=row.email,
        token_hash=row.token_hash,
        purpose=TokenPurpose(row.purpose),
        expires_at=row.expires_at,
        created_at=row.created_at,
    )


def _conversation_from_row(row: ConversationRow) -> Conversation:
    return Conversation(
        id=row.id,
        family_id=row.family_id,
        user_id=row.user_id,
        title=row.title,
        messages=row.messages or [],
        metadata=row.meta or {},
        is_active=row.is_active,
        last_message_at=row.last_message_at,
        created_at=row.created_at,
    )


def _overview_from_row(row: OverviewRow) -> MonthlyOverview:
    return MonthlyOverview(
        id=row.id,
        family_id=row.family_id,
        name=row.name,
        is_active=row.is_active,
        is_archived=row.is_archived,
        archived_at=row.archived_at,
        created_at=row.created_at,
    )


def _income_from_row(row: IncomeRow, user_name: Optional[str] = None) -> Income:
    return Income(
        id=row.id,
        overview_id=row.overview_id,
        user_id=row.user_id,
        name=row.name,
        income_type=IncomeType(row.income_type),
        amount=to_money(row.amount),
        frequency=IncomeFrequency(row.frequency),
        monthly_amount=to_money(row.monthly_amount),
        notes=row.notes,
        created_at=row.created_at,
        user_name=user_name,
    )


def _income_to_row(income: Income) -> IncomeRow:
    return IncomeRow(
        id=income.id,
        overview_id=income.overview_id,
        user_id=income.user_id,
        name=income.name,
        income_type=income.income_type.value,
        amount=to_money(income.amount),
        frequency=income.frequency.value,
        monthly_amount=to_money(income.monthly_amount),
        notes=income.notes,
        created_at=income.created_at,
    )


def _expense_from_row(
    row: ExpenseRow,
    category_name: Optional[str] = None,
    user_name: Optional[str] = None,
) -> Expense:
    return Expense(
        id=row.id,
        overview_id=row.overview_id,
        user_id=row.user_id,
        category_id=row.category_id,
        name=row.name,
        amount=to_money(row.amount),
        is_shared=row.is_shared,
        share_percentage=Decimal(row.share_percentage),
        notes=row.notes,
        created_at=row.created_at,
        category_name=category_name,
        user_name=user_name,
    )


def _expense_to_row(expense: Expense) -> ExpenseRow:
    return ExpenseRow(
        id=expense.id,
        overview_id=expense.overview_id,
        user_id=expense.user_id,
        category_id=expense.category_id,
        name=expense.name,
        amount=to_money(expense.amount),
        is_shared=expense.is_shared,
        share_percentage=expense.share_percentage,
        notes=expense.notes,
        created_at=expense.created_at,
    )


def _category_from_row(row: CategoryRow, expense_count: int = 0) -> Category:
    return Category(
        id=row.id,
        family_id=row.family_id,
        name=row.name,
        icon=row.icon,
        color=row.color,
        created_at=row.created_at,
        expense_count=expense_count,
    )


class SQLAlchemyBudgetStorage(BudgetStorageInterface):
    """
    SQLAlchemy implementation of family budget storage.

    Works with any SQLAlchemy 2.0 dialect; tests use in-memory SQLite.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @contextmanager
    def _transaction(self, action: str) -> Iterator[Session]:
        """One commit per call. Domain errors pass through untouched."""
        try:
            with self._session_factory.begin() as session:
                yield session
        except BudgetError:
            raise
        except SQLAlchemyError as e:
            logger.error("storage_failed", action=action, error=str(e))
            raise StorageError(f"Failed to {action}: {e}") from e

    # -------------------------------------------------------------------------
    # Ownership
    # -------------------------------------------------------------------------

    async def belongs_to_family(
        self,
        resource_type: ResourceType,
        resource_id: UUID,
        family_id: UUID,
    ) -> bool:
        resource_type = ResourceType(resource_type)
        if resource_type == ResourceType.OVERVIEW:
            stmt = select(OverviewRow.id).where(
                OverviewRow.id == resource_id,
                OverviewRow.family_id == family_id,
            )
        elif resource_type == ResourceType.INCOME:
            stmt = (
                select(IncomeRow.id)
                .join(OverviewRow, IncomeRow.overview_id == OverviewRow.id)
                .where(IncomeRow.id == resource_id, OverviewRow.family_id == family_id)
            )
        elif resource_type == ResourceType.EXPENSE:
            stmt = (
                select(ExpenseRow.id)
                .join(OverviewRow, ExpenseRow.overview_id == OverviewRow.id)
                .where(ExpenseRow.id == resource_id, OverviewRow.family_id == family_id)
            )
        elif resource_type == ResourceType.CATEGORY:
            stmt = select(CategoryRow.id).where(
                CategoryRow.id == resource_id,
                CategoryRow.family_id == family_id,
            )
        else:
            stmt = select(UserRow.id).where(
                UserRow.id == resource_id,
                UserRow.family_id == family_id,
            )

        with self._transaction("check ownership") as session:
            return session.scalar(stmt) is not None

    # -------------------------------------------------------------------------
    # Families and members
    # -------------------------------------------------------------------------

    @staticmethod
    def _ensure_email_free(session: Session, email: str, exclude_id: Optional[UUID] = None) -> None:
        stmt = select(UserRow.id).where(func.lower(UserRow.email) == email.lower())
        if exclude_id is not None:
            stmt = stmt.where(UserRow.id != exclude_id)
        if session.scalar(stmt) is not None:
            raise BudgetValidationError(f"A user with email {email} already exists")

    async def create_family_with_owner(
        self,
        family: Family,
        owner: FamilyMember,
        categories: list[CategoryTemplate],
    ) -> FamilyMember:
        try:
            with self._transaction("create family") as session:
                self._ensure_email_free(session, owner.email)
                session.add(FamilyRow(id=family.id, name=family.name, created_at=family.created_at))
                session.flush()
                session.add(UserRow(
                    id=owner.id,
                    family_id=family.id,
                    email=owner.email,
                    name=owner.name,
                    is_verified=owner.is_verified,
                    verified_at=owner.verified_at,
                    password_hash=owner.password_hash,
                    created_at=owner.created_at,
                ))
                for template in categories:
                    session.add(_new_category_row(family.id, template))
        except StorageError as e:
            if isinstance(e.__cause__, IntegrityError):
                raise BudgetValidationError(f"A user with email {owner.email} already exists") from e
            raise
        return owner

    async def get_family(self, family_id: UUID) -> Optional[Family]:
        with self._transaction("get family") as session:
            row = session.get(FamilyRow, family_id)
            return _family_from_row(row) if row else None

    async def get_member(self, family_id: UUID, user_id: UUID) -> Optional[FamilyMember]:
        with self._transaction("get member") as session:
            row = session.scalar(
                select(UserRow).where(UserRow.id == user_id, UserRow.family_id == family_id)
            )
            return _member_from_row(row) if row else None

    async def get_member_by_email(self, email: str) -> Optional[FamilyMember]:
        with self._transaction("get member") as session:
            row = session.scalar(
                select(UserRow).where(func.lower(UserRow.email) == email.strip().lower())
            )
            return _member_from_row(row) if row else None

    async def list_members(self, family_id: UUID) -> list[FamilyMember]:
        with self._transaction("list members") as session:
            rows = session.scalars(
                select(UserRow)
                .where(UserRow.family_id == family_id)
                .order_by(UserRow.created_at)
            ).all()
            return [_member_from_row(row) for row in rows]

    async def add_member(
        self,
        member: FamilyMember,
        seed_income: Optional[Income] = None,
    ) -> FamilyMember:
        with self._transaction("add member") as session:
            self._ensure_email_free(session, member.email)
            session.add(UserRow(
                id=member.id,
                family_id=member.family_id,
                email=member.email,
                name=member.name,
                is_verified=member.is_verified,
                verified_at=member.verified_at,
                invited_by=member.invited_by,
                invited_at=member.invited_at,
                password_hash=member.password_hash,
                created_at=member.created_at,
            ))
            if seed_income is not None:
                session.flush()
                session.add(_income_to_row(seed_income))
        return member

    async def update_member(self, member: FamilyMember) -> FamilyMember:
        with self._transaction("update member") as session:
            row = session.scalar(
                select(UserRow).where(UserRow.id == member.id, UserRow.family_id == member.family_id)
            )
            if row is None:
                raise NotFoundError(f"Member not found: {member.id}")
            if row.email != member.email:
                self._ensure_email_free(session, member.email, exclude_id=member.id)
            row.email = member.email
            row.name = member.name
            row.is_verified = member.is_verified
            row.verified_at = member.verified_at
            row.password_hash = member.password_hash
            return _member_from_row(row)

    async def remove_member(self, family_id: UUID, user_id: UUID) -> None:
        with self._transaction("remove member") as session:
            row = session.scalar(
                select(UserRow).where(UserRow.id == user_id, UserRow.family_id == family_id)
            )
            if row is None:
                raise NotFoundError(f"Member not found: {user_id}")

            if row.is_verified:
                others = session.scalar(
                    select(func.count(UserRow.id)).where(
                        UserRow.family_id == family_id,
                        UserRow.is_verified.is_(True),
                        UserRow.id != user_id,
                    )
                )
                if not others:
                    raise BudgetValidationError(
                        "Cannot remove the last verified member of a family"
                    )

            session.execute(delete(IncomeRow).where(IncomeRow.user_id == user_id))
            session.execute(delete(ExpenseRow).where(ExpenseRow.user_id == user_id))
            session.execute(delete(ConversationRow).where(ConversationRow.user_id == user_id))
            session.execute(delete(EmailTokenRow).where(EmailTokenRow.email == row.email))
            session.delete(row)

    # -------------------------------------------------------------------------
    # Overviews
    # -------------------------------------------------------------------------

    @staticmethod
    def _overview_row(session: Session, family_id: UUID, overview_id: UUID) -> OverviewRow:
        row = session.scalar(
            select(OverviewRow).where(
                OverviewRow.id == overview_id,
                OverviewRow.family_id == family_id,
            )
        )
        if row is None:
            raise NotFoundError(f"Overview not found: {overview_id}")
        return row

    async def get_overview(self, family_id: UUID, overview_id: UUID) -> Optional[MonthlyOverview]:
        with self._transaction("get overview") as session:
            row = session.scalar(
                select(OverviewRow).where(
                    OverviewRow.id == overview_id,
                    OverviewRow.family_id == family_id,
                )
            )
            return _overview_from_row(row) if row else None

    async def get_active_overview(self, family_id: UUID) -> Optional[MonthlyOverview]:
        with self._transaction("get active overview") as session:
            row = session.scalar(
                select(OverviewRow)
                .where(OverviewRow.family_id == family_id, OverviewRow.is_active.is_(True))
                .order_by(OverviewRow.created_at.desc())
                .limit(1)
            )
            return _overview_from_row(row) if row else None

    async def list_overviews(
        self,
        family_id: UUID,
        include_archived: bool = False,
    ) -> list[MonthlyOverview]:
        stmt = select(OverviewRow).where(OverviewRow.family_id == family_id)
        if not include_archived:
            stmt = stmt.where(OverviewRow.is_archived.is_(False))
        stmt = stmt.order_by(OverviewRow.is_active.desc(), OverviewRow.created_at.desc())

        with self._transaction("list overviews") as session:
            return [_overview_from_row(row) for row in session.scalars(stmt).all()]

    async def create_overview(
        self,
        overview: MonthlyOverview,
        incomes: Optional[list[Income]] = None,
        expenses: Optional[list[Expense]] = None,
    ) -> MonthlyOverview:
        with self._transaction("create overview") as session:
            session.execute(
                update(OverviewRow)
                .where(OverviewRow.family_id == overview.family_id)
                .values(is_active=False)
            )
            session.add(OverviewRow(
                id=overview.id,
                family_id=overview.family_id,
                name=overview.name,
                is_active=True,
                is_archived=False,
                created_at=overview.created_at,
            ))
            session.flush()
            for income in incomes or []:
                session.add(_income_to_row(income))
            for expense in expenses or []:
                session.add(_expense_to_row(expense))

        return overview.model_copy(update={"is_active": True, "is_archived": False})

    async def activate_overview(self, family_id: UUID, overview_id: UUID) -> MonthlyOverview:
        with self._transaction("switch overview") as session:
            target = self._overview_row(session, family_id, overview_id)
            if target.is_archived:
                raise BudgetValidationError(
                    "Cannot switch to an archived overview. Unarchive it first."
                )
            rows = session.scalars(
                select(OverviewRow).where(OverviewRow.family_id == family_id)
            ).all()
            for row in rows:
                row.is_active = row.id == overview_id
            return _overview_from_row(target)

    async def set_overview_archived(
        self,
        family_id: UUID,
        overview_id: UUID,
        archived_at: Optional[datetime],
    ) -> MonthlyOverview:
        with self._transaction("archive overview") as session:
            row = self._overview_row(session, family_id, overview_id)
            if archived_at is not None and row.is_active:
                raise BudgetValidationError(
                    "Cannot archive the active overview. Switch to another overview first."
                )
            row.is_archived = archived_at is not None
            row.archived_at = archived_at
            return _overview_from_row(row)

    async def delete_overview(self, family_id: UUID, overview_id: UUID) -> Optional[UUID]:
        with self._transaction("delete overview") as session:
            row = self._overview_row(session, family_id, overview_id)
            survivors = session.scalars(
                select(OverviewRow)
                .where(OverviewRow.family_id == family_id, OverviewRow.id != overview_id)
                .order_by(OverviewRow.created_at.desc())
            ).all()

            if not survivors:
                raise LastScenarioError("Cannot delete the last remaining overview")
            candidates = [s for s in survivors if not s.is_archived]
            if not row.is_archived and not candidates:
                raise LastScenarioError(
                    "Cannot delete the last non-archived overview. Unarchive another one first."
                )

            session.execute(delete(IncomeRow).where(IncomeRow.overview_id == overview_id))
            session.execute(delete(ExpenseRow).where(ExpenseRow.overview_id == overview_id))
            was_active = row.is_active
            session.delete(row)

            if not was_active:
                return None
            replacement = candidates[0]
            replacement.is_active = True
            return replacement.id

    # -------------------------------------------------------------------------
    # Ledger rows
    # -------------------------------------------------------------------------

    @staticmethod
    def _income_query():
        return (
            select(IncomeRow, UserRow.name)
            .outerjoin(UserRow, IncomeRow.user_id == UserRow.id)
        )

    @staticmethod
    def _expense_query():
        return (
            select(ExpenseRow, CategoryRow.name, UserRow.name)
            .join(CategoryRow, ExpenseRow.category_id == CategoryRow.id)
            .outerjoin(UserRow, ExpenseRow.user_id == UserRow.id)
        )

    async def get_income(self, income_id: UUID) -> Optional[Income]:
        with self._transaction("get income") as session:
            result = session.execute(
                self._income_query().where(IncomeRow.id == income_id)
            ).first()
            return _income_from_row(*result) if result else None

    async def list_incomes(self, overview_id: UUID) -> list[Income]:
        with self._transaction("list incomes") as session:
            results = session.execute(
                self._income_query()
                .where(IncomeRow.overview_id == overview_id)
                .order_by(IncomeRow.created_at)
            ).all()
            return [_income_from_row(*result) for result in results]

    async def add_income(self, income: Income) -> Income:
        with self._transaction("add income") as session:
            session.add(_income_to_row(income))
        return income

    async def update_income(self, income: Income) -> Income:
        with self._transaction("update income") as session:
            row = session.get(IncomeRow, income.id)
            if row is None:
                raise NotFoundError(f"Income not found: {income.id}")
            row.user_id = income.user_id
            row.name = income.name
            row.income_type = income.income_type.value
            row.amount = to_money(income.amount)
            row.frequency = income.frequency.value
            row.monthly_amount = to_money(income.monthly_amount)
            row.notes = income.notes
        return income

    async def delete_income(self, income_id: UUID) -> bool:
        with self._transaction("delete income") as session:
            result = session.execute(delete(IncomeRow).where(IncomeRow.id == income_id))
            return result.rowcount > 0

    async def get_expense(self, expense_id: UUID) -> Optional[Expense]:
        with self._transaction("get expense") as session:
            result = session.execute(
                self._expense_query().where(ExpenseRow.id == expense_id)
            ).first()
            return _expense_from_row(*result) if result else None

    async def list_expenses(
        self,
        overview_id: UUID,
        category_name: Optional[str] = None,
    ) -> list[Expense]:
        stmt = self._expense_query().where(ExpenseRow.overview_id == overview_id)
        if category_name:
            stmt = stmt.where(func.lower(CategoryRow.name) == category_name.strip().lower())
        stmt = stmt.order_by(ExpenseRow.created_at)

        with self._transaction("list expenses") as session:
            return [_expense_from_row(*result) for result in session.execute(stmt).all()]

    async def add_expense(self, expense: Expense) -> Expense:
        with self._transaction("add expense") as session:
            session.add(_expense_to_row(expense))
        return expense

    async def update_expense(self, expense: Expense) -> Expense:
        with self._transaction("update expense") as session:
            row = session.get(ExpenseRow, expense.id)
            if row is None:
                raise NotFoundError(f"Expense not found: {expense.id}")
            row.user_id = expense.user_id
            row.category_id = expense.category_id
            row.name = expense.name
            row.amount = to_money(expense.amount)
            row.is_shared = expense.is_shared
            row.share_percentage = expense.share_percentage
            row.notes = expense.notes
        return expense

    async def delete_expense(self, expense_id: UUID) -> bool:
        with self._transaction("delete expense") as session:
            result = session.execute(delete(ExpenseRow).where(ExpenseRow.id == expense_id))
            return result.rowcount > 0

    # -------------------------------------------------------------------------
    # Categories
    # -------------------------------------------------------------------------

    async def list_categories(self, family_id: UUID) -> list[Category]:
        stmt = (
            select(CategoryRow, func.count(ExpenseRow.id))
            .outerjoin(ExpenseRow, ExpenseRow.category_id == CategoryRow.id)
            .where(CategoryRow.family_id == family_id)
            .group_by(CategoryRow.id)
            .order_by(CategoryRow.name)
        )
        with self._transaction("list categories") as session:
            return [_category_from_row(row, count) for row, count in session.execute(stmt).all()]

    async def get_category(self, family_id: UUID, category_id: UUID) -> Optional[Category]:
        with self._transaction("get category") as session:
            row = session.scalar(
                select(CategoryRow).where(
                    CategoryRow.id == category_id,
                    CategoryRow.family_id == family_id,
                )
            )
            if row is None:
                return None
            count = session.scalar(
                select(func.count(ExpenseRow.id)).where(ExpenseRow.category_id == category_id)
            )
            return _category_from_row(row, count or 0)

    @staticmethod
    def _category_by_name(session: Session, family_id: UUID, name: str) -> Optional[CategoryRow]:
        return session.scalars(
            select(CategoryRow)
            .where(
                CategoryRow.family_id == family_id,
                func.lower(CategoryRow.name) == name.strip().lower(),
            )
            .order_by(CategoryRow.created_at)
            .limit(1)
        ).first()

    async def find_category_by_name(self, family_id: UUID, name: str) -> Optional[Category]:
        with self._transaction("find category") as session:
            row = self._category_by_name(session, family_id, name)
            return _category_from_row(row) if row else None

    async def add_category(self, category: Category) -> Category:
        with self._transaction("add category") as session:
            session.add(CategoryRow(
                id=category.id,
                family_id=category.family_id,
                name=category.name,
                icon=category.icon,
                color=category.color,
                created_at=category.created_at,
            ))
        return category

    async def update_category(self, category: Category) -> Category:
        with self._transaction("update category") as session:
            row = session.scalar(
                select(CategoryRow).where(
                    CategoryRow.id == category.id,
                    CategoryRow.family_id == category.family_id,
                )
            )
            if row is None:
                raise NotFoundError(f"Category not found: {category.id}")
            row.name = category.name
            row.icon = category.icon
            row.color = category.color
        return category

    async def delete_category(self, family_id: UUID, category_id: UUID) -> None:
        with self._transaction("delete category") as session:
            row = session.scalar(
                select(CategoryRow).where(
                    CategoryRow.id == category_id,
                    CategoryRow.family_id == family_id,
                )
            )
            if row is None:
                raise NotFoundError(f"Category not found: {category_id}")
            in_use = session.scalar(
                select(func.count(ExpenseRow.id)).where(ExpenseRow.category_id == category_id)
            )
            if in_use:
                raise CategoryInUseError(
                    f"Cannot delete category '{row.name}': {in_use} expense(s) still use it"
                )
            session.delete(row)

    async def ensure_categories(
        self,
        family_id: UUID,
        templates: list[CategoryTemplate],
    ) -> dict[str, Category]:
        ensured = {}
        with self._transaction("ensure categories") as session:
            for template in templates:
                row = self._category_by_name(session, family_id, template.name)
                if row is None:
                    row = _new_category_row(family_id, template)
                    session.add(row)
                    session.flush()
                ensured[template.name] = _category_from_row(row)
        return ensured

    async def reset_categories(
        self,
        family_id: UUID,
        defaults: list[CategoryTemplate],
        resolve: Callable[[str], str],
    ) -> CategoryResetResult:
        result = CategoryResetResult()
        with self._transaction("reset categories") as session:
            rows = session.scalars(
                select(CategoryRow)
                .where(CategoryRow.family_id == family_id)
                .order_by(CategoryRow.created_at)
            ).all()

            # Earliest exact-name match is kept; later duplicates are merged into it
            keepers: dict[str, CategoryRow] = {}
            default_names = {template.name for template in defaults}
            for row in rows:
                if row.name in default_names and row.name not in keepers:
                    keepers[row.name] = row

            for template in defaults:
                if template.name not in keepers:
                    row = _new_category_row(family_id, template)
                    session.add(row)
                    keepers[template.name] = row
                    result.created.append(template.name)
            session.flush()

            for row in rows:
                if keepers.get(row.name) is row:
                    continue
                target_name = resolve(row.name)
                target = keepers.get(target_name)
                if target is None:
                    raise BudgetValidationError(
                        f"Category '{row.name}' resolves to unknown default '{target_name}'"
                    )
                moved = session.execute(
                    update(ExpenseRow)
                    .where(ExpenseRow.category_id == row.id)
                    .values(category_id=target.id)
                )
                result.reassigned_expenses += moved.rowcount
                result.mapping[row.name] = target_name
                result.removed.append(row.name)
                session.delete(row)

        return result

    # -------------------------------------------------------------------------
    # Onboarding
    # -------------------------------------------------------------------------

    async def get_onboarding(self, family_id: UUID) -> Optional[FamilyOnboarding]:
        with self._transaction("get onboarding") as session:
            row = session.scalar(
                select(OnboardingRow).where(OnboardingRow.family_id == family_id)
            )
            if row is None:
                return None
            return FamilyOnboarding(
                id=row.id,
                family_id=row.family_id,
                created_at=row.created_at,
                completed_at=row.completed_at,
                **(row.data or {}),
            )

    async def save_onboarding(self, onboarding: FamilyOnboarding) -> FamilyOnboarding:
        data = onboarding.model_dump(mode="json", exclude=_ONBOARDING_COLUMNS)
        with self._transaction("save onboarding") as session:
            row = session.scalar(
                select(OnboardingRow).where(OnboardingRow.family_id == onboarding.family_id)
            )
            if row is None:
                session.add(OnboardingRow(
                    id=onboarding.id,
                    family_id=onboarding.family_id,
                    data=data,
                    created_at=onboarding.created_at,
                    completed_at=onboarding.completed_at,
                ))
            else:
                row.data = data
                row.completed_at = onboarding.completed_at
        return onboarding

    # -------------------------------------------------------------------------
    # Email tokens
    # -------------------------------------------------------------------------

    async def add_email_token(self, token: EmailToken) -> EmailToken:
        with self._transaction("add email token") as session:
            session.add(EmailTokenRow(
                id=token.id,
                email=token.email,
                token_hash=token.token_hash,
                purpose=token.purpose.value,
                expires_at=token.expires_at,
                created_at=token.created_at,
            ))
        return token

    async def get_email_token(self, token_hash: str) -> Optional[EmailToken]:
        with self._transaction("get email token") as session:
            row = session.scalar(
                select(EmailTokenRow).where(EmailTokenRow.token_hash == token_hash)
            )
            return _token_from_row(row) if row else None

    async def find_live_email_token(
        self,
        email: str,
        purpose: TokenPurpose,
        now: datetime,
    ) -> Optional[EmailToken]:
        with self._transaction("find email token") as session:
            row = session.scalar(
                select(EmailTokenRow)
                .where(
                    EmailTokenRow.email == email.lower(),
                    EmailTokenRow.purpose == TokenPurpose(purpose).value,
                    EmailTokenRow.expires_at > now,
                )
                .order_by(EmailTokenRow.created_at.desc())
                .limit(1)
            )
            return _token_from_row(row) if row else None

    async def delete_email_token(self, token_id: UUID) -> None:
        with self._transaction("delete email token") as session:
            session.execute(delete(EmailTokenRow).where(EmailTokenRow.id == token_id))

    async def redeem_email_token(self, token_id: UUID, member: FamilyMember) -> FamilyMember:
        with self._transaction("redeem email token") as session:
            used = session.execute(delete(EmailTokenRow).where(EmailTokenRow.id == token_id))
            if used.rowcount == 0:
                raise NotFoundError("Invalid token")
            row = session.scalar(
                select(UserRow).where(UserRow.id == member.id, UserRow.family_id == member.family_id)
            )
            if row is None:
                raise NotFoundError(f"Member not found: {member.id}")
            row.is_verified = member.is_verified
            row.verified_at = member.verified_at
            row.password_hash = member.password_hash
            return _member_from_row(row)

    # -------------------------------------------------------------------------
    # Assistant conversations
    # -------------------------------------------------------------------------

    async def save_conversation(self, conversation: Conversation) -> Conversation:
        data = conversation.model_dump(mode="json", include={"messages", "metadata"})
        with self._transaction("save conversation") as session:
            if conversation.is_active:
                session.execute(
                    update(ConversationRow)
                    .where(
                        ConversationRow.user_id == conversation.user_id,
                        ConversationRow.id != conversation.id,
                    )
                    .values(is_active=False)
                )
            row = session.scalar(
                select(ConversationRow).where(
                    ConversationRow.id == conversation.id,
                    ConversationRow.user_id == conversation.user_id,
                )
            )
            if row is None:
                row = ConversationRow(
                    id=conversation.id,
                    family_id=conversation.family_id,
                    user_id=conversation.user_id,
                    created_at=conversation.created_at,
                )
                session.add(row)
            row.title = conversation.title
            row.messages = data["messages"]
            row.meta = data["metadata"]
            row.is_active = conversation.is_active
            row.last_message_at = conversation.last_message_at
        return conversation

    async def get_conversation(self, user_id: UUID, conversation_id: UUID) -> Optional[Conversation]:
        with self._transaction("get conversation") as session:
            row = session.scalar(
                select(ConversationRow).where(
                    ConversationRow.id == conversation_id,
                    ConversationRow.user_id == user_id,
                )
            )
            return _conversation_from_row(row) if row else None

    async def list_conversations(self, user_id: UUID, limit: int = 10) -> list[Conversation]:
        with self._transaction("list conversations") as session:
            rows = session.scalars(
                select(ConversationRow)
                .where(ConversationRow.user_id == user_id)
                .order_by(ConversationRow.last_message_at.desc())
                .limit(limit)
            ).all()
            return [_conversation_from_row(row) for row in rows]

    async def get_active_conversation(self, user_id: UUID) -> Optional[Conversation]:
        with self._transaction("get active conversation") as session:
            row = session.scalar(
                select(ConversationRow).where(
                    ConversationRow.user_id == user_id,
                    ConversationRow.is_active.is_(True),
                )
            )
            if row is None:
                row = session.scalar(
                    select(ConversationRow)
                    .where(ConversationRow.user_id == user_id)
                    .order_by(ConversationRow.last_message_at.desc())
                    .limit(1)
                )
                if row is None:
                    return None
                row.is_active = True
            return _conversation_from_row(row)

    async def delete_conversation(self, user_id: UUID, conversation_id: UUID) -> bool:
        with self._transaction("delete conversation") as session:
            result = session.execute(
                delete(ConversationRow).where(
                    ConversationRow.id == conversation_id,
                    ConversationRow.user_id == user_id,
                )
            )
            return result.rowcount > 0


def _new_category_row(family_id: UUID, template: CategoryTemplate) -> CategoryRow:
    category = Category(
        family_id=family_id,
        name=template.name,
        icon=template.icon,
        color=template.color,
    )
    return CategoryRow(
        id=category.id,
        family_id=family_id,
        name=category.name,
        icon=category.icon,
        color=category.color,
        created_at=category.created_at,
    )


class SQLAlchemyAuditStorage(AuditStorageInterface):
    """
    SQL implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @staticmethod
    def _row_to_event(row: AuditEventRow) -> AuditEvent:
        return AuditEvent(
            event_id=row.event_id,
            timestamp=row.timestamp,
            event_type=AuditEventType(row.event_type),
            severity=AuditSeverity(row.severity),
            family_id=row.family_id,
            actor_id=row.actor_id,
            entity_type=row.entity_type,
            entity_id=row.entity_id,
            correlation_id=row.correlation_id,
            description=row.description,
            details=row.details or {},
            error_message=row.error_message,
            is_user_action=row.is_user_action,
        )

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            with self._session_factory.begin() as session:
                session.add(AuditEventRow(
                    event_id=event.event_id,
                    timestamp=event.timestamp,
                    event_type=event.event_type.value,
                    severity=event.severity.value,
                    family_id=event.family_id,
                    actor_id=event.actor_id,
                    entity_type=event.entity_type,
                    entity_id=event.entity_id,
                    correlation_id=event.correlation_id,
                    description=event.description,
                    details=event.model_dump(mode="json")["details"],
                    error_message=event.error_message,
                    is_user_action=event.is_user_action,
                ))
            return True
        except SQLAlchemyError as e:
            # Audit logging must not break the main flow
            logger.warning("audit_write_failed", error=str(e), event_id=str(event.event_id))
            return False

    def _query(self, stmt) -> list[AuditEvent]:
        try:
            with self._session_factory() as session:
                return [self._row_to_event(row) for row in session.scalars(stmt).all()]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to get audit events: {e}") from e

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        return self._query(
            select(AuditEventRow)
            .where(AuditEventRow.correlation_id == correlation_id)
            .order_by(AuditEventRow.timestamp)
        )

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        return self._query(
            select(AuditEventRow)
            .where(
                AuditEventRow.entity_type == entity_type,
                AuditEventRow.entity_id == entity_id,
            )
            .order_by(AuditEventRow.timestamp)
        )

    async def get_recent_events(
        self,
        family_id: Optional[UUID] = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        stmt = select(AuditEventRow)
        if family_id is not None:
            stmt = stmt.where(AuditEventRow.family_id == family_id)
        return self._query(stmt.order_by(AuditEventRow.timestamp.desc()).limit(limit))
