"""
Tests for the assistant loops.

The Gemini model is replaced by a scripted fake that returns
response-shaped objects, so no network calls are made.
"""

import asyncio
from decimal import Decimal
from types import SimpleNamespace

import pytest

from family_budget.agents import BudgetAssistantAgent, OnboardingAssistantAgent
from family_budget.agents.ai_agents import PROVIDER_ERROR_REPLY, STEP_LIMIT_REPLY
from family_budget.categories import CategoryService
from family_budget.config import AppSettings, GeminiSettings
from family_budget.conversations import ConversationService
from family_budget.errors import (
    BudgetValidationError,
    ExternalServiceError,
    NotFoundError,
    UnauthorizedError,
)
from family_budget.family import OnboardingService
from family_budget.ledger import BudgetLedger
from family_budget.models import ChatMessage, ChatRole, RequestIdentity
from family_budget.models.audit import AuditEventType
from family_budget.queries import BudgetReporter


def text_response(text):
    part = SimpleNamespace(text=text, function_call=None)
    return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(role="model", parts=[part]))])


def call_response(*calls):
    parts = [
        SimpleNamespace(text="", function_call=SimpleNamespace(name=name, args=args))
        for name, args in calls
    ]
    return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(role="model", parts=parts))])


class FakeModel:
    """Returns scripted responses; exceptions in the script are raised."""

    def __init__(self, script):
        self.script = list(script)
        self.requests = []

    async def generate_content_async(self, contents, tools=None):
        self.requests.append({"contents": list(contents), "tools": tools})
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def gemini_settings(max_steps=5, max_retries=2):
    return GeminiSettings(
        api_key="test",
        retry_backoff_seconds=0,
        max_steps=max_steps,
        max_retries=max_retries,
    )


@pytest.fixture
def conversations(storage):
    return ConversationService(storage)


@pytest.fixture
def make_agent(storage, audit_logger):
    def factory(model, enabled=True, max_steps=5, max_retries=2, conversations=None):
        return BudgetAssistantAgent(
            BudgetLedger(storage, audit_logger),
            BudgetReporter(storage),
            CategoryService(storage, audit_logger),
            audit_logger=audit_logger,
            settings=gemini_settings(max_steps, max_retries),
            app_settings=AppSettings(enable_ai_features=enabled),
            model=model,
            conversations=conversations,
        )

    return factory


class TestChat:
    """Tests for one user turn."""

    def test_plain_answer(self, make_agent, identity):
        model = FakeModel([text_response("Hello! How can I help?")])

        reply = asyncio.run(make_agent(model).chat(identity, "hi"))

        assert reply.text == "Hello! How can I help?"
        assert reply.tool_calls == []
        assert reply.steps == 1
        assert reply.error is None
        first = model.requests[0]
        assert "hi" in first["contents"][-1]["parts"][0]
        names = [d["name"] for d in first["tools"][0]["function_declarations"]]
        assert "addIncome" in names

    def test_tool_call_then_answer(self, make_agent, storage, identity, make_overview):
        overview = make_overview(identity, "Current")
        model = FakeModel([
            call_response(("addIncome", {"name": "Salary", "amount": 5000, "type": "salary"})),
            text_response("Added your salary of $5,000.00."),
        ])

        reply = asyncio.run(make_agent(model).chat(identity, "I earn 5000 a month"))

        assert reply.text == "Added your salary of $5,000.00."
        assert reply.steps == 2
        assert [call.name for call in reply.tool_calls] == ["addIncome"]
        assert not reply.tool_calls[0].failed
        incomes = asyncio.run(storage.list_incomes(overview.id))
        assert incomes[0].amount == Decimal("5000")

        function_turn = model.requests[1]["contents"][-1]
        assert function_turn["role"] == "function"
        response = function_turn["parts"][0]["function_response"]
        assert response["name"] == "addIncome"
        assert response["response"]["success"] is True

    def test_tool_error_is_fed_back(self, make_agent, identity):
        model = FakeModel([
            call_response(("getBudgetOverview", {})),
            text_response("You don't have a budget yet. Want me to help create one?"),
        ])

        reply = asyncio.run(make_agent(model).chat(identity, "how are we doing?"))

        assert reply.tool_calls[0].failed
        fed_back = model.requests[1]["contents"][-1]["parts"][0]["function_response"]["response"]
        assert "error" in fed_back

    def test_history_is_prepended(self, make_agent, identity):
        model = FakeModel([text_response("Sure.")])
        history = [
            {"role": "user", "parts": ["earlier question"]},
            {"role": "model", "parts": ["earlier answer"]},
        ]

        asyncio.run(make_agent(model).chat(identity, "follow up", history=history))

        assert model.requests[0]["contents"][:2] == history

    def test_transient_failure_is_retried(self, make_agent, identity):
        model = FakeModel([ConnectionError("blip"), text_response("Done")])

        reply = asyncio.run(make_agent(model).chat(identity, "hi"))

        assert reply.text == "Done"
        assert len(model.requests) == 2

    def test_provider_failure_keeps_committed_tool_calls(
        self, make_agent, storage, audit_storage, identity, make_overview
    ):
        """Test a write made before the provider failed is reported and kept."""
        overview = make_overview(identity, "Current")
        model = FakeModel([
            call_response(("addExpense", {"name": "Rent", "amount": 1500, "categoryName": "Housing"})),
            ConnectionError("down"),
            ConnectionError("still down"),
        ])

        reply = asyncio.run(make_agent(model, max_retries=2).chat(identity, "rent is 1500"))

        assert reply.text == PROVIDER_ERROR_REPLY
        assert reply.error.startswith("gemini:")
        assert [call.name for call in reply.tool_calls] == ["addExpense"]
        assert len(asyncio.run(storage.list_expenses(overview.id))) == 1

        events = asyncio.run(audit_storage.get_events_by_correlation_id(reply.correlation_id))
        types = [e.event_type for e in events]
        assert AuditEventType.TOOL_EXECUTED in types
        assert AuditEventType.EXTERNAL_SERVICE_ERROR in types

    def test_step_limit(self, make_agent, identity, make_overview):
        make_overview(identity, "Current")
        model = FakeModel([call_response(("listIncomes", {})) for _ in range(2)])

        reply = asyncio.run(make_agent(model, max_steps=2).chat(identity, "loop forever"))

        assert reply.text == STEP_LIMIT_REPLY
        assert reply.steps == 2
        assert len(reply.tool_calls) == 2

    def test_disabled_ai_features(self, make_agent, identity):
        model = FakeModel([text_response("never")])
        with pytest.raises(ExternalServiceError):
            asyncio.run(make_agent(model, enabled=False).chat(identity, "hi"))
        assert model.requests == []

    def test_requires_identity(self, make_agent):
        with pytest.raises(UnauthorizedError):
            asyncio.run(make_agent(FakeModel([])).chat(None, "hi"))


class TestSavedConversations:
    """Tests for continuing a saved conversation."""

    def test_history_comes_from_conversation(self, make_agent, conversations, identity):
        saved = asyncio.run(conversations.create(identity, messages=[
            ChatMessage(role=ChatRole.USER, content="What do we spend on food?"),
            ChatMessage(role=ChatRole.ASSISTANT, content="About $600.00 a month."),
        ]))
        model = FakeModel([text_response("Groceries are most of it.")])
        agent = make_agent(model, conversations=conversations)

        reply = asyncio.run(agent.chat(identity, "What part is groceries?", conversation_id=saved.id))

        assert reply.conversation_id == saved.id
        assert model.requests[0]["contents"][:2] == [
            {"role": "user", "parts": ["What do we spend on food?"]},
            {"role": "model", "parts": ["About $600.00 a month."]},
        ]

    def test_turn_is_appended(self, make_agent, conversations, identity):
        saved = asyncio.run(conversations.create(identity))
        model = FakeModel([text_response("Hello!")])
        agent = make_agent(model, conversations=conversations)

        asyncio.run(agent.chat(identity, "hi", conversation_id=saved.id))

        messages = asyncio.run(conversations.get(identity, saved.id)).messages
        assert [(m.role, m.content) for m in messages] == [
            (ChatRole.USER, "hi"),
            (ChatRole.ASSISTANT, "Hello!"),
        ]

    def test_provider_failure_is_saved_as_reply(self, make_agent, conversations, identity):
        saved = asyncio.run(conversations.create(identity))
        model = FakeModel([ConnectionError("down"), ConnectionError("still down")])
        agent = make_agent(model, conversations=conversations)

        reply = asyncio.run(agent.chat(identity, "hi", conversation_id=saved.id))

        assert reply.error is not None
        messages = asyncio.run(conversations.get(identity, saved.id)).messages
        assert messages[-1].content == PROVIDER_ERROR_REPLY

    def test_without_conversation_nothing_is_saved(self, make_agent, conversations, identity):
        agent = make_agent(FakeModel([text_response("Hello!")]), conversations=conversations)

        reply = asyncio.run(agent.chat(identity, "hi"))

        assert reply.conversation_id is None
        assert asyncio.run(conversations.list_conversations(identity)) == []

    def test_someone_elses_conversation(self, make_agent, make_member, conversations, identity):
        sam = make_member(identity, "Sam")
        sam_identity = RequestIdentity(user_id=sam.id, family_id=identity.family_id, user_name="Sam")
        theirs = asyncio.run(conversations.create(sam_identity))
        model = FakeModel([text_response("never")])

        with pytest.raises(NotFoundError):
            asyncio.run(make_agent(model, conversations=conversations).chat(
                identity, "hi", conversation_id=theirs.id
            ))
        assert model.requests == []

    def test_conversations_not_configured(self, make_agent, conversations, identity):
        saved = asyncio.run(conversations.create(identity))
        with pytest.raises(BudgetValidationError):
            asyncio.run(make_agent(FakeModel([])).chat(identity, "hi", conversation_id=saved.id))


@pytest.fixture
def onboarding(storage, audit_logger):
    return OnboardingService(storage, audit_logger)


@pytest.fixture
def make_onboarding_agent(onboarding, audit_logger):
    def factory(model, enabled=True):
        return OnboardingAssistantAgent(
            onboarding,
            audit_logger=audit_logger,
            settings=gemini_settings(),
            app_settings=AppSettings(enable_ai_features=enabled),
            model=model,
        )

    return factory


class TestOnboardingAssistant:
    """Tests for the onboarding assistant."""

    def test_offers_onboarding_tools(self, make_onboarding_agent, identity):
        model = FakeModel([text_response("Welcome! What should I call you?")])

        reply = asyncio.run(make_onboarding_agent(model).chat(identity, "hello"))

        assert reply.text == "Welcome! What should I call you?"
        names = [d["name"] for d in model.requests[0]["tools"][0]["function_declarations"]]
        assert names == [
            "extractFamilyInfo",
            "createInitialBudget",
            "suggestExpenseCategories",
            "updateOnboardingData",
        ]
        prompt = model.requests[0]["contents"][-1]["parts"][0]
        assert "Current stage: welcome" in prompt
        assert prompt.endswith("hello")

    def test_extracts_answers(self, make_onboarding_agent, storage, identity):
        model = FakeModel([
            call_response(("extractFamilyInfo", {"text": "2 adults and 1 kid", "stage": "family"})),
            text_response("Got it, a family of three."),
        ])

        reply = asyncio.run(make_onboarding_agent(model).chat(
            identity, "We are 2 adults and 1 kid", stage="family_composition"
        ))

        assert [call.name for call in reply.tool_calls] == ["extractFamilyInfo"]
        assert reply.tool_calls[0].result["extractedData"] == {"adultsCount": 2, "childrenCount": 1}
        onboarding = asyncio.run(storage.get_onboarding(identity.family_id))
        assert onboarding.adults_count == 2
        assert onboarding.children_count == 1

    def test_budget_creation_error_is_fed_back(self, make_onboarding_agent, onboarding, identity):
        asyncio.run(onboarding.update_onboarding(identity, {"primary_income": 5000}))
        asyncio.run(onboarding.create_initial_budget(identity))
        model = FakeModel([
            call_response(("createInitialBudget", {})),
            text_response("Your budget is already set up."),
        ])

        reply = asyncio.run(make_onboarding_agent(model).chat(identity, "create it"))

        assert reply.tool_calls[0].result == {"error": "Onboarding is already complete"}

    def test_disabled_ai_features(self, make_onboarding_agent, identity):
        model = FakeModel([])
        with pytest.raises(ExternalServiceError):
            asyncio.run(make_onboarding_agent(model, enabled=False).chat(identity, "hi"))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
