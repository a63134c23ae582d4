"""
Audit Models for Family Budget

Every mutation of budget data becomes one AuditEvent: who changed
which scenario, row or member, and which assistant tool did it.

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Scenario lifecycle
    OVERVIEW_CREATED = "overview_created"
    OVERVIEW_CLONED = "overview_cloned"
    OVERVIEW_SWITCHED = "overview_switched"
    OVERVIEW_ARCHIVED = "overview_archived"
    OVERVIEW_UNARCHIVED = "overview_unarchived"
    OVERVIEW_DELETED = "overview_deleted"

    # Ledger
    INCOME_ADDED = "income_added"
    INCOME_UPDATED = "income_updated"
    INCOME_DELETED = "income_deleted"
    EXPENSE_ADDED = "expense_added"
    EXPENSE_UPDATED = "expense_updated"
    EXPENSE_DELETED = "expense_deleted"

    # Categories
    CATEGORY_CREATED = "category_created"
    CATEGORY_UPDATED = "category_updated"
    CATEGORY_DELETED = "category_deleted"
    CATEGORIES_RESET = "categories_reset"

    # Membership
    FAMILY_REGISTERED = "family_registered"
    MEMBER_INVITED = "member_invited"
    MEMBER_JOINED = "member_joined"
    MEMBER_REMOVED = "member_removed"
    PROFILE_UPDATED = "profile_updated"
    PASSWORD_RESET_REQUESTED = "password_reset_requested"
    PASSWORD_RESET = "password_reset"
    VERIFICATION_SENT = "verification_sent"
    EMAIL_VERIFIED = "email_verified"

    # Onboarding
    ONBOARDING_UPDATED = "onboarding_updated"
    ONBOARDING_COMPLETED = "onboarding_completed"

    # Assistant
    TOOL_EXECUTED = "tool_executed"
    TOOL_FAILED = "tool_failed"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - whose data, which entity?
    family_id: Optional[UUID] = None
    actor_id: Optional[UUID] = Field(
        default=None,
        description="User who triggered the event"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'overview', 'expense')"
    )
    entity_id: Optional[UUID] = None

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = None

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)

    # Error information (if applicable)
    error_message: Optional[str] = None

    is_user_action: bool = False

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "family_id": str(self.family_id) if self.family_id else None,
            "actor_id": str(self.actor_id) if self.actor_id else None,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.overview_event(
            AuditEventType.OVERVIEW_CREATED, family_id, actor_id, overview_id, "Overview created: Current"
        )
        event = AuditEventBuilder.tool_failed(family_id, actor_id, "addIncome", "No active overview")
    """

    @staticmethod
    def overview_event(
        event_type: AuditEventType,
        family_id: UUID,
        actor_id: Optional[UUID],
        overview_id: UUID,
        description: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            family_id=family_id,
            actor_id=actor_id,
            entity_type="overview",
            entity_id=overview_id,
            correlation_id=correlation_id,
            description=description,
            details=details or {},
            is_user_action=True,
        )

    @staticmethod
    def ledger_event(
        event_type: AuditEventType,
        family_id: UUID,
        actor_id: Optional[UUID],
        entity_type: str,
        entity_id: UUID,
        name: str,
        amount: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        verb = event_type.value.split("_")[-1]
        description = f"{entity_type.capitalize()} {verb}: {name}"
        if amount is not None:
            description = f"{description} ({amount})"
        return AuditEvent(
            event_type=event_type,
            family_id=family_id,
            actor_id=actor_id,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=description,
            details={"name": name, "amount": amount},
            is_user_action=True,
        )

    @staticmethod
    def categories_reset(
        family_id: UUID,
        actor_id: Optional[UUID],
        created: list[str],
        removed: list[str],
        reassigned: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CATEGORIES_RESET,
            family_id=family_id,
            actor_id=actor_id,
            entity_type="category",
            correlation_id=correlation_id,
            description=f"Categories reset to defaults, {reassigned} expenses reassigned",
            details={
                "created": created,
                "removed": removed,
                "reassigned_expenses": reassigned,
            },
            is_user_action=True,
        )

    @staticmethod
    def member_event(
        event_type: AuditEventType,
        family_id: UUID,
        actor_id: Optional[UUID],
        member_id: UUID,
        email: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            family_id=family_id,
            actor_id=actor_id,
            entity_type="user",
            entity_id=member_id,
            correlation_id=correlation_id,
            description=f"{event_type.value.replace('_', ' ').capitalize()}: {email}",
            details={"email": email},
            is_user_action=True,
        )

    @staticmethod
    def tool_executed(
        family_id: UUID,
        actor_id: UUID,
        tool_name: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TOOL_EXECUTED,
            family_id=family_id,
            actor_id=actor_id,
            entity_type="tool",
            correlation_id=correlation_id,
            description=f"Assistant tool executed: {tool_name}",
            details={"tool": tool_name},
        )

    @staticmethod
    def tool_failed(
        family_id: Optional[UUID],
        actor_id: Optional[UUID],
        tool_name: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TOOL_FAILED,
            severity=AuditSeverity.WARNING,
            family_id=family_id,
            actor_id=actor_id,
            entity_type="tool",
            correlation_id=correlation_id,
            description=f"Assistant tool failed: {tool_name}",
            error_message=error_message,
            details={"tool": tool_name},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        family_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            family_id=family_id,
            description=f"External service error: {service}",
            error_message=error_message,
            details={"service": service},
            correlation_id=correlation_id,
        )
