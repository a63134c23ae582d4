"""
Audit Logger

DESIGN DECISION: Every mutation of budget data is logged.
Scenario and ledger changes stay traceable, and the family can see
what the assistant changed on its behalf.

The audit logger:
- Is async so it never blocks the caller's flow
- Never raises when persistence fails; the failure itself is logged
- Supports correlation IDs to trace related events
"""

import logging
from typing import Optional
from uuid import UUID, uuid4

import structlog

from family_budget.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from family_budget.services.storage import AuditStorageInterface


def configure_logging(log_level: str = "INFO", json_output: bool = True) -> None:
    """
    Set up structlog on top of the stdlib root logger.

    JSON lines by default; json_output=False gives the console renderer
    for local debugging.
    """
    logging.basicConfig(format="%(message)s", level=log_level.upper())
    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


_LEVELS = {
    AuditSeverity.DEBUG: "debug",
    AuditSeverity.INFO: "info",
    AuditSeverity.WARNING: "warning",
    AuditSeverity.ERROR: "error",
    AuditSeverity.CRITICAL: "critical",
}


class AuditLogger:
    """
    Writes every AuditEvent to the structured log and, when a storage
    backend is given, to the audit table.

    Without storage it only logs locally (handy for scripts and tests).
    """

    def __init__(self, storage: Optional[AuditStorageInterface] = None):
        self._storage = storage
        self._logger = structlog.get_logger("family_budget.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Record one event.

        Returns False only when the storage write failed.
        """
        emit = getattr(self._logger, _LEVELS.get(event.severity, "info"))
        emit("audit_event", **event.to_log_dict())

        if self._storage is None:
            return True
        try:
            return await self._storage.append_event(event)
        except Exception as e:
            self._logger.error(
                "audit_storage_failed",
                error=str(e),
                event_id=str(event.event_id),
                event_type=event.event_type.value,
            )
            return False

    async def log_overview_event(
        self,
        event_type: AuditEventType,
        family_id: UUID,
        actor_id: Optional[UUID],
        overview_id: UUID,
        description: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a scenario lifecycle change."""
        event = AuditEventBuilder.overview_event(
            event_type=event_type,
            family_id=family_id,
            actor_id=actor_id,
            overview_id=overview_id,
            description=description,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_ledger_event(
        self,
        event_type: AuditEventType,
        family_id: UUID,
        actor_id: Optional[UUID],
        entity_type: str,
        entity_id: UUID,
        name: str,
        amount: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an income, expense or category change."""
        event = AuditEventBuilder.ledger_event(
            event_type=event_type,
            family_id=family_id,
            actor_id=actor_id,
            entity_type=entity_type,
            entity_id=entity_id,
            name=name,
            amount=amount,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_categories_reset(
        self,
        family_id: UUID,
        actor_id: Optional[UUID],
        created: list[str],
        removed: list[str],
        reassigned: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a committed reset to the default categories."""
        event = AuditEventBuilder.categories_reset(
            family_id=family_id,
            actor_id=actor_id,
            created=created,
            removed=removed,
            reassigned=reassigned,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_member_event(
        self,
        event_type: AuditEventType,
        family_id: UUID,
        actor_id: Optional[UUID],
        member_id: UUID,
        email: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a membership change."""
        event = AuditEventBuilder.member_event(
            event_type=event_type,
            family_id=family_id,
            actor_id=actor_id,
            member_id=member_id,
            email=email,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_onboarding(
        self,
        family_id: UUID,
        actor_id: Optional[UUID],
        completed: bool = False,
        details: Optional[dict] = None,
    ) -> None:
        """Log onboarding progress."""
        event = AuditEvent(
            event_type=(
                AuditEventType.ONBOARDING_COMPLETED if completed
                else AuditEventType.ONBOARDING_UPDATED
            ),
            family_id=family_id,
            actor_id=actor_id,
            entity_type="onboarding",
            description="Onboarding completed" if completed else "Onboarding answers updated",
            details=details or {},
            is_user_action=True,
        )
        await self.log(event)

    async def log_tool_executed(
        self,
        family_id: UUID,
        actor_id: UUID,
        tool_name: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a successful assistant tool call."""
        event = AuditEventBuilder.tool_executed(
            family_id=family_id,
            actor_id=actor_id,
            tool_name=tool_name,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_tool_failed(
        self,
        family_id: Optional[UUID],
        actor_id: Optional[UUID],
        tool_name: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an assistant tool call that returned an error."""
        event = AuditEventBuilder.tool_failed(
            family_id=family_id,
            actor_id=actor_id,
            tool_name=tool_name,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        family_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log external service error."""
        event = AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            family_id=family_id,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., one assistant turn).
    Pass it through all subsequent operations.
    """
    return uuid4()
