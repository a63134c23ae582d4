"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap SQLite for PostgreSQL without touching business logic
2. Keep every multi-row invariant inside one storage call (one transaction)
3. Keep business logic decoupled from storage implementation

CRITICAL: Methods that change more than one row (switching the active
overview, deleting a scenario, resetting categories, removing a member)
are atomic. Either everything is written or nothing is.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Optional
from uuid import UUID

from family_budget.models.audit import AuditEvent
from family_budget.models.budget import (
    Category,
    CategoryResetResult,
    CategoryTemplate,
    Expense,
    Income,
    MonthlyOverview,
    ResourceType,
)
from family_budget.models.conversation import Conversation
from family_budget.models.family import (
    EmailToken,
    Family,
    FamilyMember,
    FamilyOnboarding,
    TokenPurpose,
)


class BudgetStorageInterface(ABC):
    """
    Abstract interface for family budget storage.

    Any storage implementation must implement these methods.
    Methods that take a family_id only ever see that family's rows.
    """

    # -------------------------------------------------------------------------
    # Ownership
    # -------------------------------------------------------------------------

    @abstractmethod
    async def belongs_to_family(
        self,
        resource_type: ResourceType,
        resource_id: UUID,
        family_id: UUID,
    ) -> bool:
        """
        Check that a resource resolves within a family.

        Incomes and expenses are resolved through their overview.

        Returns:
            False for missing ids and for ids of another family alike
        """
        pass

    # -------------------------------------------------------------------------
    # Families and members
    # -------------------------------------------------------------------------

    @abstractmethod
    async def create_family_with_owner(
        self,
        family: Family,
        owner: FamilyMember,
        categories: list[CategoryTemplate],
    ) -> FamilyMember:
        """
        Create a family, its first member and its categories together.

        Raises:
            BudgetValidationError: If the email is already registered
            StorageError: If save fails
        """
        pass

    @abstractmethod
    async def get_family(self, family_id: UUID) -> Optional[Family]:
        pass

    @abstractmethod
    async def get_member(self, family_id: UUID, user_id: UUID) -> Optional[FamilyMember]:
        pass

    @abstractmethod
    async def get_member_by_email(self, email: str) -> Optional[FamilyMember]:
        """Look up a member in any family, case-insensitively."""
        pass

    @abstractmethod
    async def list_members(self, family_id: UUID) -> list[FamilyMember]:
        """Members in join order."""
        pass

    @abstractmethod
    async def add_member(
        self,
        member: FamilyMember,
        seed_income: Optional[Income] = None,
    ) -> FamilyMember:
        """
        Insert a member, optionally with a starting income row.

        Raises:
            BudgetValidationError: If the email is already registered
        """
        pass

    @abstractmethod
    async def update_member(self, member: FamilyMember) -> FamilyMember:
        """
        Raises:
            NotFoundError: If the member doesn't exist
            BudgetValidationError: If the new email is taken
        """
        pass

    @abstractmethod
    async def remove_member(self, family_id: UUID, user_id: UUID) -> None:
        """
        Delete a member with all of their income and expense rows,
        conversations and email tokens.

        Raises:
            NotFoundError: If the member doesn't exist in the family
            BudgetValidationError: If they are the last verified member
        """
        pass

    # -------------------------------------------------------------------------
    # Overviews
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_overview(self, family_id: UUID, overview_id: UUID) -> Optional[MonthlyOverview]:
        pass

    @abstractmethod
    async def get_active_overview(self, family_id: UUID) -> Optional[MonthlyOverview]:
        pass

    @abstractmethod
    async def list_overviews(
        self,
        family_id: UUID,
        include_archived: bool = False,
    ) -> list[MonthlyOverview]:
        """
        List a family's overviews.

        Returns:
            Active overview first, then newest first
        """
        pass

    @abstractmethod
    async def create_overview(
        self,
        overview: MonthlyOverview,
        incomes: Optional[list[Income]] = None,
        expenses: Optional[list[Expense]] = None,
    ) -> MonthlyOverview:
        """
        Insert a new active overview with its rows.

        Every other overview of the family is deactivated in the same
        transaction.
        """
        pass

    @abstractmethod
    async def activate_overview(self, family_id: UUID, overview_id: UUID) -> MonthlyOverview:
        """
        Make one overview the active one.

        Raises:
            NotFoundError: If the overview doesn't exist in the family
            BudgetValidationError: If the overview is archived
        """
        pass

    @abstractmethod
    async def set_overview_archived(
        self,
        family_id: UUID,
        overview_id: UUID,
        archived_at: Optional[datetime],
    ) -> MonthlyOverview:
        """
        Archive (archived_at set) or unarchive (archived_at None).

        Raises:
            NotFoundError: If the overview doesn't exist in the family
            BudgetValidationError: If archiving the active overview
        """
        pass

    @abstractmethod
    async def delete_overview(self, family_id: UUID, overview_id: UUID) -> Optional[UUID]:
        """
        Delete an overview and its rows.

        Returns:
            Id of the overview activated in its place, if it was active

        Raises:
            NotFoundError: If the overview doesn't exist in the family
            LastScenarioError: If it is the last (non-archived) overview
        """
        pass

    # -------------------------------------------------------------------------
    # Ledger rows
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_income(self, income_id: UUID) -> Optional[Income]:
        pass

    @abstractmethod
    async def list_incomes(self, overview_id: UUID) -> list[Income]:
        pass

    @abstractmethod
    async def add_income(self, income: Income) -> Income:
        pass

    @abstractmethod
    async def update_income(self, income: Income) -> Income:
        """
        Raises:
            NotFoundError: If the income doesn't exist
        """
        pass

    @abstractmethod
    async def delete_income(self, income_id: UUID) -> bool:
        pass

    @abstractmethod
    async def get_expense(self, expense_id: UUID) -> Optional[Expense]:
        pass

    @abstractmethod
    async def list_expenses(
        self,
        overview_id: UUID,
        category_name: Optional[str] = None,
    ) -> list[Expense]:
        """
        List expenses of an overview.

        Args:
            overview_id: The overview to read
            category_name: Case-insensitive category filter
        """
        pass

    @abstractmethod
    async def add_expense(self, expense: Expense) -> Expense:
        pass

    @abstractmethod
    async def update_expense(self, expense: Expense) -> Expense:
        """
        Raises:
            NotFoundError: If the expense doesn't exist
        """
        pass

    @abstractmethod
    async def delete_expense(self, expense_id: UUID) -> bool:
        pass

    # -------------------------------------------------------------------------
    # Categories
    # -------------------------------------------------------------------------

    @abstractmethod
    async def list_categories(self, family_id: UUID) -> list[Category]:
        """Categories by name, with expense_count filled in."""
        pass

    @abstractmethod
    async def get_category(self, family_id: UUID, category_id: UUID) -> Optional[Category]:
        pass

    @abstractmethod
    async def find_category_by_name(self, family_id: UUID, name: str) -> Optional[Category]:
        """Case-insensitive lookup. Oldest wins when names collide."""
        pass

    @abstractmethod
    async def add_category(self, category: Category) -> Category:
        pass

    @abstractmethod
    async def update_category(self, category: Category) -> Category:
        pass

    @abstractmethod
    async def delete_category(self, family_id: UUID, category_id: UUID) -> None:
        """
        Raises:
            NotFoundError: If the category doesn't exist in the family
            CategoryInUseError: If expenses still reference it
        """
        pass

    @abstractmethod
    async def ensure_categories(
        self,
        family_id: UUID,
        templates: list[CategoryTemplate],
    ) -> dict[str, Category]:
        """
        Create whichever templates are missing (by name, case-insensitive).

        Returns:
            Template name -> category, for every template
        """
        pass

    @abstractmethod
    async def reset_categories(
        self,
        family_id: UUID,
        defaults: list[CategoryTemplate],
        resolve: Callable[[str], str],
    ) -> CategoryResetResult:
        """
        Replace a family's categories with the defaults.

        In one transaction: create missing defaults, move every expense
        to resolve(category name), delete every non-default category.
        """
        pass

    # -------------------------------------------------------------------------
    # Onboarding
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_onboarding(self, family_id: UUID) -> Optional[FamilyOnboarding]:
        pass

    @abstractmethod
    async def save_onboarding(self, onboarding: FamilyOnboarding) -> FamilyOnboarding:
        """Insert or replace the family's single onboarding row."""
        pass

    # -------------------------------------------------------------------------
    # Email tokens
    # -------------------------------------------------------------------------

    @abstractmethod
    async def add_email_token(self, token: EmailToken) -> EmailToken:
        pass

    @abstractmethod
    async def get_email_token(self, token_hash: str) -> Optional[EmailToken]:
        pass

    @abstractmethod
    async def find_live_email_token(
        self,
        email: str,
        purpose: TokenPurpose,
        now: datetime,
    ) -> Optional[EmailToken]:
        """The newest unexpired token of this purpose for an email, if any."""
        pass

    @abstractmethod
    async def delete_email_token(self, token_id: UUID) -> None:
        pass

    @abstractmethod
    async def redeem_email_token(self, token_id: UUID, member: FamilyMember) -> FamilyMember:
        """
        Save the member and delete the token in one transaction.

        Raises:
            NotFoundError: If the token was already used
        """
        pass

    # -------------------------------------------------------------------------
    # Assistant conversations
    # -------------------------------------------------------------------------

    @abstractmethod
    async def save_conversation(self, conversation: Conversation) -> Conversation:
        """
        Insert or replace a conversation.

        Saving an active conversation deactivates the member's others.
        """
        pass

    @abstractmethod
    async def get_conversation(self, user_id: UUID, conversation_id: UUID) -> Optional[Conversation]:
        pass

    @abstractmethod
    async def list_conversations(self, user_id: UUID, limit: int = 10) -> list[Conversation]:
        """Newest message first."""
        pass

    @abstractmethod
    async def get_active_conversation(self, user_id: UUID) -> Optional[Conversation]:
        """
        The member's active conversation.

        Without one, the most recent conversation is marked active
        and returned.
        """
        pass

    @abstractmethod
    async def delete_conversation(self, user_id: UUID, conversation_id: UUID) -> bool:
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Args:
            event: The audit event to log

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one assistant turn).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity.

        Args:
            entity_type: Type of entity (e.g., 'overview', 'expense')
            entity_id: The entity's ID

        Returns:
            List of events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        family_id: Optional[UUID] = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass
