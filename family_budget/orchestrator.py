"""
Main Orchestrator for Family Budget

Wires storage, audit logging, email and the domain services into one
set of components that a web layer (or a test) can call.

DESIGN DECISION: Every service receives its collaborators here.
Nothing reaches for a global database handle, so tests can swap the
engine for in-memory SQLite and the model for a fake.
"""

from typing import Any, Optional

import structlog
from pydantic import BaseModel, ConfigDict, ValidationError
from sqlalchemy.orm import sessionmaker

from family_budget.agents import BudgetAssistantAgent, OnboardingAssistantAgent
from family_budget.audit import AuditLogger, configure_logging
from family_budget.categories import CategoryMigrationEngine, CategoryService
from family_budget.config import (
    AppSettings,
    DatabaseSettings,
    EmailSettings,
    GeminiSettings,
)
from family_budget.conversations import ConversationService
from family_budget.family import FamilyMembershipService, OnboardingService
from family_budget.ledger import BudgetLedger
from family_budget.queries import BudgetReporter
from family_budget.scenarios import ScenarioLifecycleManager
from family_budget.services.email import EmailSenderInterface, LoggingEmailSender
from family_budget.services.storage import (
    SQLAlchemyAuditStorage,
    SQLAlchemyBudgetStorage,
    create_engine_from_settings,
    create_session_factory,
)


logger = structlog.get_logger(__name__)


class AppComponents(BaseModel):
    """Everything a request handler needs."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    session_factory: sessionmaker
    storage: SQLAlchemyBudgetStorage
    audit_logger: AuditLogger
    email_sender: EmailSenderInterface
    scenarios: ScenarioLifecycleManager
    ledger: BudgetLedger
    categories: CategoryService
    migration: CategoryMigrationEngine
    membership: FamilyMembershipService
    onboarding: OnboardingService
    conversations: ConversationService
    reporter: BudgetReporter
    assistant: Optional[BudgetAssistantAgent] = None
    onboarding_assistant: Optional[OnboardingAssistantAgent] = None


def create_app_components(
    database_settings: Optional[DatabaseSettings] = None,
    app_settings: Optional[AppSettings] = None,
    email_settings: Optional[EmailSettings] = None,
    gemini_settings: Optional[GeminiSettings] = None,
    email_sender: Optional[EmailSenderInterface] = None,
    model: Any = None,
    onboarding_model: Any = None,
    persist_audit: bool = True,
    password_rounds: int = 12,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        database_settings: Defaults to DATABASE_* environment settings
        persist_audit: Write audit events to the audit table as well as the log.
                      Set to False for local-only audit logging.
        model: Optional Gemini model object (tests pass a fake)
        onboarding_model: The same, for the onboarding assistant

    The assistants are only built when AI features are enabled and
    Gemini is configured; otherwise they are None.
    """
    app_settings = app_settings or AppSettings()
    email_settings = email_settings or EmailSettings()
    configure_logging(app_settings.log_level, json_output=not app_settings.debug_mode)

    engine = create_engine_from_settings(database_settings or DatabaseSettings())
    session_factory = create_session_factory(engine)

    storage = SQLAlchemyBudgetStorage(session_factory)
    audit_logger = AuditLogger(SQLAlchemyAuditStorage(session_factory) if persist_audit else None)
    email_sender = email_sender or LoggingEmailSender()

    ledger = BudgetLedger(storage, audit_logger)
    reporter = BudgetReporter(storage)
    categories = CategoryService(storage, audit_logger)
    onboarding = OnboardingService(storage, audit_logger)
    conversations = ConversationService(storage)

    assistant = None
    onboarding_assistant = None
    if app_settings.enable_ai_features:
        try:
            gemini_settings = gemini_settings or GeminiSettings()
            assistant = BudgetAssistantAgent(
                ledger,
                reporter,
                categories,
                audit_logger=audit_logger,
                settings=gemini_settings,
                app_settings=app_settings,
                model=model,
                conversations=conversations,
            )
            onboarding_assistant = OnboardingAssistantAgent(
                onboarding,
                audit_logger=audit_logger,
                settings=gemini_settings,
                app_settings=app_settings,
                model=onboarding_model,
            )
        except ValidationError as e:
            # Gemini not configured - continue without the assistant
            logger.warning("assistant_not_configured", error=str(e))

    return AppComponents(
        session_factory=session_factory,
        storage=storage,
        audit_logger=audit_logger,
        email_sender=email_sender,
        scenarios=ScenarioLifecycleManager(storage, audit_logger),
        ledger=ledger,
        categories=categories,
        migration=CategoryMigrationEngine(storage, audit_logger),
        membership=FamilyMembershipService(
            storage,
            email_sender=email_sender,
            audit_logger=audit_logger,
            app_settings=app_settings,
            email_settings=email_settings,
            password_rounds=password_rounds,
        ),
        onboarding=onboarding,
        conversations=conversations,
        reporter=reporter,
        assistant=assistant,
        onboarding_assistant=onboarding_assistant,
    )
