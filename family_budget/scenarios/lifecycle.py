"""
Scenario Lifecycle Manager

A family keeps several budget scenarios ("monthly overviews") side by
side, e.g. "Current", "If we move" and "2026 Plan". Exactly one of them
is active; the ledger and the assistant write into the active one.

CRITICAL: There is no cached "current overview" anywhere. The active
scenario is always read from storage, and every change of the active
flag happens inside a single storage transaction.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

import structlog

from family_budget.audit import AuditLogger
from family_budget.authorization import FamilyAuthorizer, require_identity
from family_budget.errors import BudgetValidationError, NoActiveOverviewError
from family_budget.models.audit import AuditEventType
from family_budget.models.budget import (
    Income,
    IncomeFrequency,
    IncomeType,
    MonthlyOverview,
    ResourceType,
)
from family_budget.models.family import RequestIdentity
from family_budget.services.storage import BudgetStorageInterface


logger = structlog.get_logger(__name__)


class ScenarioLifecycleManager:
    """
    Creates, clones, switches, archives and deletes scenarios.

    Usage:
        manager = ScenarioLifecycleManager(storage, audit_logger)
        overview = await manager.create(identity, "2026 Plan")
        await manager.switch(identity, other_id)
    """

    def __init__(
        self,
        storage: BudgetStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._audit = audit_logger or AuditLogger()
        self._auth = FamilyAuthorizer(storage)

    @staticmethod
    def _clean_name(name: str) -> str:
        name = (name or "").strip()
        if not name:
            raise BudgetValidationError("Overview name is required")
        if len(name) > 200:
            raise BudgetValidationError("Overview name must be 200 characters or fewer")
        return name

    async def create(self, identity: RequestIdentity, name: str) -> MonthlyOverview:
        """
        Create a new active scenario.

        Every current member starts with a zero monthly "Salary" income
        so the scenario lists the whole household from the start.
        """
        family = await self._auth.require_family(identity)
        name = self._clean_name(name)

        overview = MonthlyOverview(family_id=family.id, name=name, is_active=True)
        members = await self._storage.list_members(family.id)
        incomes = [
            Income(
                overview_id=overview.id,
                user_id=member.id,
                name="Salary",
                income_type=IncomeType.SALARY,
                amount=0,
                frequency=IncomeFrequency.MONTHLY,
            )
            for member in members
        ]

        created = await self._storage.create_overview(overview, incomes=incomes)
        logger.info("overview_created", family_id=str(family.id), overview_id=str(created.id))
        await self._audit.log_overview_event(
            AuditEventType.OVERVIEW_CREATED,
            family_id=family.id,
            actor_id=identity.user_id,
            overview_id=created.id,
            description=f"Overview created: {created.name}",
            details={"seeded_incomes": len(incomes)},
        )
        return created

    async def clone(
        self,
        identity: RequestIdentity,
        name: str,
        source_overview_id: Optional[UUID] = None,
    ) -> MonthlyOverview:
        """
        Create a new active scenario as a deep copy of another one.

        Without a source this is exactly create().
        """
        if source_overview_id is None:
            return await self.create(identity, name)

        family = await self._auth.require_family(identity)
        name = self._clean_name(name)
        await self._auth.require_owned(identity, ResourceType.OVERVIEW, source_overview_id)

        overview = MonthlyOverview(family_id=family.id, name=name, is_active=True)
        incomes = [
            income.model_copy(update={"id": uuid4(), "overview_id": overview.id})
            for income in await self._storage.list_incomes(source_overview_id)
        ]
        expenses = [
            expense.model_copy(update={"id": uuid4(), "overview_id": overview.id})
            for expense in await self._storage.list_expenses(source_overview_id)
        ]

        created = await self._storage.create_overview(overview, incomes=incomes, expenses=expenses)
        await self._audit.log_overview_event(
            AuditEventType.OVERVIEW_CLONED,
            family_id=family.id,
            actor_id=identity.user_id,
            overview_id=created.id,
            description=f"Overview cloned: {created.name}",
            details={
                "source_overview_id": str(source_overview_id),
                "incomes": len(incomes),
                "expenses": len(expenses),
            },
        )
        return created

    async def switch(self, identity: RequestIdentity, overview_id: UUID) -> MonthlyOverview:
        """
        Make overview_id the active scenario.

        Switching to the already active scenario is a no-op.
        """
        identity = require_identity(identity)
        await self._auth.require_owned(identity, ResourceType.OVERVIEW, overview_id)

        overview = await self._storage.activate_overview(identity.family_id, overview_id)
        await self._audit.log_overview_event(
            AuditEventType.OVERVIEW_SWITCHED,
            family_id=identity.family_id,
            actor_id=identity.user_id,
            overview_id=overview.id,
            description=f"Switched to overview: {overview.name}",
        )
        return overview.model_copy(update={"is_active": True})

    async def archive(self, identity: RequestIdentity, overview_id: UUID) -> MonthlyOverview:
        """Hide a scenario from the default list. The active one can't be archived."""
        identity = require_identity(identity)
        await self._auth.require_owned(identity, ResourceType.OVERVIEW, overview_id)

        overview = await self._storage.set_overview_archived(
            identity.family_id, overview_id, archived_at=datetime.utcnow()
        )
        await self._audit.log_overview_event(
            AuditEventType.OVERVIEW_ARCHIVED,
            family_id=identity.family_id,
            actor_id=identity.user_id,
            overview_id=overview.id,
            description=f"Overview archived: {overview.name}",
        )
        return overview

    async def unarchive(self, identity: RequestIdentity, overview_id: UUID) -> MonthlyOverview:
        identity = require_identity(identity)
        await self._auth.require_owned(identity, ResourceType.OVERVIEW, overview_id)

        overview = await self._storage.set_overview_archived(
            identity.family_id, overview_id, archived_at=None
        )
        await self._audit.log_overview_event(
            AuditEventType.OVERVIEW_UNARCHIVED,
            family_id=identity.family_id,
            actor_id=identity.user_id,
            overview_id=overview.id,
            description=f"Overview unarchived: {overview.name}",
        )
        return overview

    async def delete(self, identity: RequestIdentity, overview_id: UUID) -> Optional[UUID]:
        """
        Delete a scenario with its income and expense rows.

        Returns:
            Id of the scenario that became active, if the deleted one was active

        Raises:
            NotFoundError: If the scenario is not in the caller's family
            LastScenarioError: If it is the last (non-archived) scenario
        """
        identity = require_identity(identity)
        await self._auth.require_owned(identity, ResourceType.OVERVIEW, overview_id)

        activated = await self._storage.delete_overview(identity.family_id, overview_id)
        details = {"activated_overview_id": str(activated)} if activated else {}
        await self._audit.log_overview_event(
            AuditEventType.OVERVIEW_DELETED,
            family_id=identity.family_id,
            actor_id=identity.user_id,
            overview_id=overview_id,
            description="Overview deleted",
            details=details,
        )
        return activated

    async def get(self, identity: RequestIdentity, overview_id: UUID) -> MonthlyOverview:
        identity = require_identity(identity)
        await self._auth.require_owned(identity, ResourceType.OVERVIEW, overview_id)
        return await self._storage.get_overview(identity.family_id, overview_id)

    async def list_overviews(
        self,
        identity: RequestIdentity,
        include_archived: bool = False,
    ) -> list[MonthlyOverview]:
        """Active scenario first, then newest first."""
        identity = require_identity(identity)
        return await self._storage.list_overviews(identity.family_id, include_archived)

    async def get_active(self, identity: RequestIdentity) -> Optional[MonthlyOverview]:
        identity = require_identity(identity)
        return await self._storage.get_active_overview(identity.family_id)

    async def require_active(self, identity: RequestIdentity) -> MonthlyOverview:
        """
        Raises:
            NoActiveOverviewError: If the family has no scenario yet
        """
        active = await self.get_active(identity)
        if active is None:
            raise NoActiveOverviewError(
                "No active budget overview found. Create an overview first."
            )
        return active
