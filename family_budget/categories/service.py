"""
Category Store

Family-scoped tags for expenses. A category can't be deleted while
any expense still points at it.
"""

from typing import Optional
from uuid import UUID

from pydantic import ValidationError

from family_budget.audit import AuditLogger
from family_budget.authorization import FamilyAuthorizer
from family_budget.categories.migration import DEFAULT_CATEGORIES, get_default_template
from family_budget.errors import BudgetValidationError, NotFoundError
from family_budget.models.audit import AuditEventType
from family_budget.models.budget import Category, CategoryTemplate, ResourceType
from family_budget.models.family import RequestIdentity
from family_budget.services.storage import BudgetStorageInterface


CATEGORY_COLORS: dict[str, str] = {
    "housing": "#ef4444",
    "transportation": "#f59e0b",
    "food": "#10b981",
    "utilities": "#3b82f6",
    "entertainment": "#8b5cf6",
    "healthcare": "#ec4899",
    "insurance": "#14b8a6",
    "savings": "#22c55e",
    "debt": "#f87171",
    "other": "#6b7280",
}

FALLBACK_COLOR = "#6b7280"


def category_color(name: str) -> str:
    """Colour for a new category from keywords in its name."""
    lowered = name.lower()
    for keyword, color in CATEGORY_COLORS.items():
        if keyword in lowered:
            return color
    return FALLBACK_COLOR


class CategoryService:
    """CRUD over a family's categories."""

    def __init__(
        self,
        storage: BudgetStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._audit = audit_logger or AuditLogger()
        self._auth = FamilyAuthorizer(storage)

    async def list_categories(self, identity: RequestIdentity) -> list[Category]:
        """Categories by name, each with its expense count."""
        family = await self._auth.require_family(identity)
        return await self._storage.list_categories(family.id)

    async def create(
        self,
        identity: RequestIdentity,
        name: str,
        icon: Optional[str] = None,
        color: Optional[str] = None,
    ) -> Category:
        """
        Raises:
            BudgetValidationError: If the name is taken or a field is malformed
        """
        family = await self._auth.require_family(identity)
        if await self._storage.find_category_by_name(family.id, name or ""):
            raise BudgetValidationError(f"Category '{name}' already exists")

        try:
            category = Category(
                family_id=family.id,
                name=name,
                icon=icon,
                color=color or category_color(name or ""),
            )
        except ValidationError as e:
            raise BudgetValidationError(str(e.errors()[0].get("msg")))

        await self._storage.add_category(category)
        await self._audit.log_ledger_event(
            AuditEventType.CATEGORY_CREATED,
            family_id=family.id,
            actor_id=identity.user_id,
            entity_type="category",
            entity_id=category.id,
            name=category.name,
        )
        return category

    async def update(
        self,
        identity: RequestIdentity,
        category_id: UUID,
        name: Optional[str] = None,
        icon: Optional[str] = None,
        color: Optional[str] = None,
    ) -> Category:
        family = await self._auth.require_family(identity)
        await self._auth.require_owned(identity, ResourceType.CATEGORY, category_id)
        current = await self._storage.get_category(family.id, category_id)
        if current is None:
            raise NotFoundError("Category not found")

        if name is not None and name.strip().lower() != current.name.lower():
            clash = await self._storage.find_category_by_name(family.id, name)
            if clash is not None and clash.id != category_id:
                raise BudgetValidationError(f"Category '{name}' already exists")

        data = current.model_dump()
        if name is not None:
            data["name"] = name
        if icon is not None:
            data["icon"] = icon
        if color is not None:
            data["color"] = color
        try:
            updated = Category(**data)
        except ValidationError as e:
            raise BudgetValidationError(str(e.errors()[0].get("msg")))

        await self._storage.update_category(updated)
        await self._audit.log_ledger_event(
            AuditEventType.CATEGORY_UPDATED,
            family_id=family.id,
            actor_id=identity.user_id,
            entity_type="category",
            entity_id=updated.id,
            name=updated.name,
        )
        return updated

    async def delete(self, identity: RequestIdentity, category_id: UUID) -> None:
        """
        Raises:
            NotFoundError: If the category is not in the caller's family
            CategoryInUseError: If expenses still reference it
        """
        family = await self._auth.require_family(identity)
        await self._auth.require_owned(identity, ResourceType.CATEGORY, category_id)
        current = await self._storage.get_category(family.id, category_id)

        await self._storage.delete_category(family.id, category_id)
        await self._audit.log_ledger_event(
            AuditEventType.CATEGORY_DELETED,
            family_id=family.id,
            actor_id=identity.user_id,
            entity_type="category",
            entity_id=category_id,
            name=current.name,
        )

    async def find_or_create(self, identity: RequestIdentity, name: str) -> Category:
        """
        Case-insensitive lookup, creating the category when missing.

        New categories that match a default take its icon and colour.
        """
        family = await self._auth.require_family(identity)
        name = (name or "").strip()
        if not name:
            raise BudgetValidationError("Category name is required")

        existing = await self._storage.find_category_by_name(family.id, name)
        if existing is not None:
            return existing

        template = get_default_template(name)
        if template is not None:
            return await self.create(identity, template.name, template.icon, template.color)
        return await self.create(identity, name)

    async def seed_defaults(
        self,
        identity: RequestIdentity,
        templates: Optional[list[CategoryTemplate]] = None,
    ) -> dict[str, Category]:
        """Make sure every default category exists. Existing ones are left alone."""
        family = await self._auth.require_family(identity)
        return await self._storage.ensure_categories(family.id, templates or DEFAULT_CATEGORIES)
