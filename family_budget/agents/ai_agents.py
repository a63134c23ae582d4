"""
Budget and Onboarding Assistant Agents

DESIGN DECISION: Gemini function calling over a Toolkit.
The model decides which tool to call; the toolkit does the work.
BudgetAssistantAgent uses BudgetToolkit; OnboardingAssistantAgent
uses OnboardingToolkit.

CRITICAL BOUNDARIES:
- CAN: Read budget data through the read tools
- CAN: Add income and expenses to the active scenario
- CANNOT: Touch data of another family (the toolkit is bound to one identity)
- CANNOT: Compute totals itself; every figure comes from a tool result
- MUST: Explain tool errors in plain language instead of echoing JSON

The LLM is a TRANSLATOR, not an ORACLE.

Provider calls are retried with tenacity. Tool calls are not: a tool
that already wrote to the ledger stays written even if a later model
call fails (at-least-once, never rolled back).
"""

from typing import Any, Optional
from uuid import UUID

import google.generativeai as genai
import structlog
from pydantic import BaseModel, Field
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from family_budget.agents.onboarding_tools import OnboardingToolkit
from family_budget.agents.tools import BudgetToolkit, Toolkit
from family_budget.audit import AuditLogger, create_correlation_id
from family_budget.authorization import require_identity
from family_budget.categories import CategoryService
from family_budget.config import AppSettings, GeminiSettings, get_settings
from family_budget.conversations import ConversationService
from family_budget.errors import BudgetValidationError, ExternalServiceError
from family_budget.family.onboarding import OnboardingService
from family_budget.ledger import BudgetLedger
from family_budget.models.conversation import ChatMessage, ChatRole
from family_budget.models.family import RequestIdentity
from family_budget.queries import BudgetReporter


logger = structlog.get_logger(__name__)


SYSTEM_PROMPT = """You are a helpful financial assistant for a family budget management app. You help users manage their income, expenses, and budget scenarios.

Your capabilities include:
- Adding and managing income sources (salaries, investments, etc.)
- Adding and tracking expenses by category
- Comparing different budget scenarios
- Analyzing spending patterns and trends
- Creating visualizations and charts

IMPORTANT INSTRUCTIONS:
- ALWAYS provide a conversational text response along with any tool results
- After retrieving data with tools, interpret and explain the results
- Only use figures that come from tool results; never estimate totals yourself
- If a tool returns an error, explain it in plain language and suggest what to do next
- Format amounts as currency (e.g., $1,234.56)
- Use simple, clear language that anyone can understand"""

ONBOARDING_PROMPT = """You are a friendly financial advisor helping a family set up their first budget.

Guidelines:
- Be conversational, friendly, and encouraging
- Ask one question at a time to avoid overwhelming the user
- Validate and confirm information before proceeding
- Suggest reasonable defaults based on family size and common patterns
- Extract and store all relevant information using the tools provided
- Keep responses concise and focused

Stages:
- welcome: Welcome them warmly and ask how they'd like to be addressed
- family_composition: Ask how many adults and children are in the household
- income_sources: Ask about the primary monthly income and any other income
- housing_expenses: Ask whether they rent, have a mortgage or own outright, and the monthly cost
- regular_expenses: Ask for rough monthly estimates of utilities, transport, food and insurance
- investments_savings: Ask whether they save or invest each month, and how
- financial_goals: Ask about goals such as an emergency fund, retirement or paying off debt
- budget_creation: Summarize what you learned and ask for confirmation before creating the budget
- complete: Thank them and let them know the budget is ready

Use the tools to:
- Extract and save answers from what the user wrote (extractFamilyInfo)
- Save answers you have confirmed (updateOnboardingData)
- Suggest expense categories for this household (suggestExpenseCategories)
- Create the initial budget, only after the user confirms (createInitialBudget)"""

STEP_LIMIT_REPLY = (
    "I wasn't able to finish that in one go. "
    "Could you break the request into smaller steps?"
)
PROVIDER_ERROR_REPLY = (
    "Sorry, I couldn't reach the assistant service just now. Please try again in a moment."
)


class ToolCallRecord(BaseModel):
    """One tool call made during a turn, with its result."""

    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    result: dict[str, Any] = Field(default_factory=dict)

    @property
    def failed(self) -> bool:
        return "error" in self.result


class AssistantReply(BaseModel):
    """
    Outcome of one user message.

    tool_calls lists everything that ran, including calls that
    committed before a later provider failure.
    """

    text: str
    tool_calls: list[ToolCallRecord] = Field(default_factory=list)
    steps: int = 0
    error: Optional[str] = None
    correlation_id: Optional[UUID] = None
    conversation_id: Optional[UUID] = None


def _parts(response: Any) -> list:
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return []
    content = getattr(candidates[0], "content", None)
    return list(getattr(content, "parts", None) or [])


def _function_calls(response: Any) -> list:
    calls = []
    for part in _parts(response):
        call = getattr(part, "function_call", None)
        if call is not None and getattr(call, "name", ""):
            calls.append(call)
    return calls


def _text(response: Any) -> str:
    return "".join(getattr(part, "text", "") or "" for part in _parts(response)).strip()


class AssistantAgent:
    """
    Gemini function-calling loop over one toolkit.

    Subclasses choose the system prompt and build the toolkit for each
    turn. The model can be injected (tests pass a fake with
    generate_content_async).
    """

    system_prompt = SYSTEM_PROMPT

    def __init__(
        self,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[GeminiSettings] = None,
        app_settings: Optional[AppSettings] = None,
        model: Any = None,
    ):
        self._audit = audit_logger or AuditLogger()
        self._settings = settings or get_settings().gemini
        self._app_settings = app_settings or get_settings().app
        self._model = model

    def _get_model(self):
        """Configure Google Generative AI on first use."""
        if self._model is None:
            genai.configure(api_key=self._settings.api_key)
            self._model = genai.GenerativeModel(
                model_name=self._settings.model_name,
                generation_config={
                    "temperature": self._settings.temperature,
                    "max_output_tokens": self._settings.max_tokens,
                },
                system_instruction=self.system_prompt,
            )
        return self._model

    def _check_enabled(self, identity: Optional[RequestIdentity]) -> RequestIdentity:
        identity = require_identity(identity)
        if not self._app_settings.enable_ai_features:
            raise ExternalServiceError("assistant", "AI features are disabled")
        return identity

    async def _generate(
        self,
        contents: list,
        toolkit: Toolkit,
        correlation_id: UUID,
        family_id: Optional[UUID],
    ):
        """
        One model call, retried on provider failure.

        Raises:
            ExternalServiceError: After the last attempt fails
        """
        model = self._get_model()
        tools = [{"function_declarations": toolkit.declarations()}]
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._settings.max_retries),
                wait=wait_exponential(multiplier=self._settings.retry_backoff_seconds, max=10),
                reraise=True,
            ):
                with attempt:
                    return await model.generate_content_async(contents, tools=tools)
        except Exception as e:
            logger.warning("gemini_call_failed", error=str(e))
            await self._audit.log_external_service_error(
                service="gemini",
                error_message=str(e),
                family_id=family_id,
                correlation_id=correlation_id,
            )
            raise ExternalServiceError("gemini", str(e)) from e

    async def _run(
        self,
        identity: RequestIdentity,
        prompt: str,
        history: Optional[list],
        toolkit: Toolkit,
        correlation_id: UUID,
    ) -> AssistantReply:
        """Call the model until it answers in text or the step limit is hit."""
        contents: list = list(history or [])
        contents.append({"role": "user", "parts": [prompt]})

        records: list[ToolCallRecord] = []
        for step in range(1, self._settings.max_steps + 1):
            try:
                response = await self._generate(
                    contents, toolkit, correlation_id, identity.family_id
                )
            except ExternalServiceError as e:
                return AssistantReply(
                    text=PROVIDER_ERROR_REPLY,
                    tool_calls=records,
                    steps=step,
                    error=str(e),
                    correlation_id=correlation_id,
                )

            calls = _function_calls(response)
            if not calls:
                return AssistantReply(
                    text=_text(response),
                    tool_calls=records,
                    steps=step,
                    correlation_id=correlation_id,
                )

            contents.append(response.candidates[0].content)
            responses = []
            for call in calls:
                arguments = dict(call.args) if call.args else {}
                result = await toolkit.execute(call.name, arguments)
                records.append(ToolCallRecord(name=call.name, arguments=arguments, result=result))
                responses.append({
                    "function_response": {"name": call.name, "response": result}
                })
            contents.append({"role": "function", "parts": responses})
            logger.info(
                "assistant_step",
                step=step,
                tools=[call.name for call in calls],
                correlation_id=str(correlation_id),
            )

        return AssistantReply(
            text=STEP_LIMIT_REPLY,
            tool_calls=records,
            steps=self._settings.max_steps,
            correlation_id=correlation_id,
        )


class BudgetAssistantAgent(AssistantAgent):
    """
    Conversational assistant for one family's budget.

    Usage:
        agent = BudgetAssistantAgent(ledger, reporter, categories, audit_logger)
        reply = await agent.chat(identity, "How are we doing this month?")

    With a ConversationService, chat() can continue a saved conversation
    and appends each turn to it.
    """

    def __init__(
        self,
        ledger: BudgetLedger,
        reporter: BudgetReporter,
        categories: CategoryService,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[GeminiSettings] = None,
        app_settings: Optional[AppSettings] = None,
        model: Any = None,
        conversations: Optional[ConversationService] = None,
    ):
        super().__init__(audit_logger, settings, app_settings, model)
        self._ledger = ledger
        self._reporter = reporter
        self._categories = categories
        self._conversations = conversations

    async def chat(
        self,
        identity: RequestIdentity,
        message: str,
        history: Optional[list[dict]] = None,
        conversation_id: Optional[UUID] = None,
    ) -> AssistantReply:
        """
        Answer one user message, calling tools as the model asks.

        history is prior turns as {"role": "user"|"model", "parts": [...]}.
        With conversation_id the saved conversation is the history
        instead, and the user message and the reply are appended to it.

        Raises:
            UnauthorizedError: Without a family identity
            ExternalServiceError: If AI features are disabled
            NotFoundError: If the conversation is not the caller's
        """
        identity = self._check_enabled(identity)

        conversation = None
        if conversation_id is not None:
            if self._conversations is None:
                raise BudgetValidationError("Saved conversations are not available")
            conversation = await self._conversations.get(identity, conversation_id)
            history = conversation.history()

        correlation_id = create_correlation_id()
        toolkit = BudgetToolkit(
            identity,
            ledger=self._ledger,
            reporter=self._reporter,
            categories=self._categories,
            audit_logger=self._audit,
            correlation_id=correlation_id,
        )
        context = (
            f"Current context:\n- User: {identity.user_name or 'Unknown'}\n"
            f"- User ID: {identity.user_id}\n- Family ID: {identity.family_id}"
        )
        reply = await self._run(
            identity, f"{context}\n\n{message}", history, toolkit, correlation_id
        )

        if conversation is not None:
            await self._conversations.append(identity, conversation.id, [
                ChatMessage(role=ChatRole.USER, content=message),
                ChatMessage(role=ChatRole.ASSISTANT, content=reply.text),
            ])
            reply.conversation_id = conversation.id
        return reply


class OnboardingAssistantAgent(AssistantAgent):
    """
    Walks a new family through setting up their first budget.

    Usage:
        agent = OnboardingAssistantAgent(onboarding, audit_logger)
        reply = await agent.chat(identity, "We are 2 adults and 1 kid", stage="family_composition")
    """

    system_prompt = ONBOARDING_PROMPT

    def __init__(
        self,
        onboarding: OnboardingService,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[GeminiSettings] = None,
        app_settings: Optional[AppSettings] = None,
        model: Any = None,
    ):
        super().__init__(audit_logger, settings, app_settings, model)
        self._onboarding = onboarding

    async def chat(
        self,
        identity: RequestIdentity,
        message: str,
        stage: str = "welcome",
        history: Optional[list[dict]] = None,
    ) -> AssistantReply:
        """
        Answer one onboarding message for the given conversation stage.

        Raises:
            UnauthorizedError: Without a family identity
            ExternalServiceError: If AI features are disabled
        """
        identity = self._check_enabled(identity)
        await self._onboarding.get_or_create(identity)

        correlation_id = create_correlation_id()
        toolkit = OnboardingToolkit(
            identity,
            onboarding=self._onboarding,
            audit_logger=self._audit,
            correlation_id=correlation_id,
        )
        context = (
            f"Current stage: {stage}\n"
            f"User Name: {identity.user_name or 'Unknown'}\n"
            f"Family ID: {identity.family_id}"
        )
        return await self._run(
            identity, f"{context}\n\n{message}", history, toolkit, correlation_id
        )
