"""
Family Scoping

Every operation re-verifies that each id it touches belongs to the
caller's family. There is one predicate for that,
BudgetStorageInterface.belongs_to_family; this module turns its answer
into the right error.

CRITICAL: For the resource being acted on, "missing" and "belongs to
another family" raise the same NotFoundError with the same message.
"""

from typing import Optional
from uuid import UUID

from family_budget.errors import (
    InvalidReferenceError,
    NotFoundError,
    UnauthorizedError,
)
from family_budget.models.budget import ResourceType
from family_budget.models.family import Family, RequestIdentity
from family_budget.services.storage import BudgetStorageInterface


def require_identity(identity: Optional[RequestIdentity]) -> RequestIdentity:
    """
    Reject requests without a resolved identity and family.

    Raises:
        UnauthorizedError: If there is no identity or it has no family
    """
    if identity is None:
        raise UnauthorizedError("Unauthorized")
    if identity.family_id is None:
        raise UnauthorizedError("No family associated with this user")
    return identity


class FamilyAuthorizer:
    """Ownership checks shared by every service."""

    def __init__(self, storage: BudgetStorageInterface):
        self._storage = storage

    async def require_family(self, identity: Optional[RequestIdentity]) -> Family:
        """
        Resolve the caller's family.

        Raises:
            UnauthorizedError: If there is no identity or it has no family
            NotFoundError: If the family no longer exists
        """
        identity = require_identity(identity)
        family = await self._storage.get_family(identity.family_id)
        if family is None:
            raise NotFoundError("Family not found")
        return family

    async def require_owned(
        self,
        identity: RequestIdentity,
        resource_type: ResourceType,
        resource_id: UUID,
    ) -> None:
        """
        The resource being acted on must be in the caller's family.

        Raises:
            NotFoundError: Same message whether missing or foreign
        """
        identity = require_identity(identity)
        if not await self._storage.belongs_to_family(resource_type, resource_id, identity.family_id):
            raise NotFoundError(f"{resource_type.value.capitalize()} not found")

    async def require_reference(
        self,
        identity: RequestIdentity,
        resource_type: ResourceType,
        resource_id: UUID,
    ) -> None:
        """
        A foreign id supplied as input (user, category) must be in the caller's family.

        Raises:
            InvalidReferenceError: If it is not
        """
        identity = require_identity(identity)
        if not await self._storage.belongs_to_family(resource_type, resource_id, identity.family_id):
            raise InvalidReferenceError(f"Invalid {resource_type.value} for this family")
