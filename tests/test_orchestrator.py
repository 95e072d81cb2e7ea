import pytest
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

from app.agents.lexi_agent import LexiAgent
from app.config.fallback_responses import FallbackResponses
from app.core.orchestrator import ConversationOrchestrator
from app.models.message import WhatsAppMessage
from app.models.session import TrialStatus
from app.models.trial import TrialRecordStatus
from app.services.conversation_flows import ConversationFlowManager
from app.services.conversation_logger import ConversationLogger
from app.services.trial_manager import TrialManager

@pytest.fixture
def offline_llm():
    service = MagicMock()
    service.generate_response = AsyncMock(return_value=None)
    return service

@pytest.fixture
def trial_manager(clock):
    return TrialManager(trial_days=7, clock=clock)

@pytest.fixture
def conversation_logger(clock):
    return ConversationLogger(clock=clock)

@pytest.fixture
def orchestrator(session_manager, trial_manager, conversation_logger, offline_llm, metrics, clock):
    return ConversationOrchestrator(
        session_manager=session_manager,
        flow_manager=ConversationFlowManager(trial_days=7, clock=clock),
        agent=LexiAgent(offline_llm),
        trial_manager=trial_manager,
        conversation_logger=conversation_logger,
        metrics=metrics,
        clock=clock
    )

class Conversation:
    """Envia mensagens em sequência, avançando o relógio entre elas"""

    def __init__(self, orchestrator, clock, phone_number):
        self.orchestrator = orchestrator
        self.clock = clock
        self.phone_number = phone_number
        self.count = 0

    async def send(self, body: str):
        self.count += 1
        self.clock.advance(seconds=30)
        return await self.orchestrator.process_message(WhatsAppMessage(
            message_id=f"SM{self.count:04d}",
            from_number=self.phone_number,
            body=body
        ))

@pytest.fixture
def conversation(orchestrator, clock, phone_number):
    return Conversation(orchestrator, clock, phone_number)

class TestConversationOrchestrator:
    """Turnos completos com o LLM offline (respostas roteirizadas)"""

    @pytest.mark.asyncio
    async def test_first_message_creates_session(self, conversation, session_manager, phone_number, conversation_logger):
        response = await conversation.send("hello")

        assert response.response_text == FallbackResponses.GREETING
        assert response.used_fallback is True
        assert response.flow_step == "greeting"

        session = session_manager.get_session(phone_number)
        assert response.session_id == session.session_id
        assert [m.role for m in session.conversation_history] == ["user", "assistant"]
        assert session.conversation_history[0].message_id == "SM0001"

        logged = await conversation_logger.get_conversation_history(phone_number)
        assert len(logged) == 1
        assert logged[0].ai_response == FallbackResponses.GREETING
        assert logged[0].success is True

    @pytest.mark.asyncio
    async def test_full_signup_conversation(self, conversation, session_manager, trial_manager, phone_number, metrics):
        assert (await conversation.send("hi")).response_text == FallbackResponses.GREETING
        assert (await conversation.send("I run a restaurant")).response_text == FallbackResponses.QUALIFICATION
        assert (await conversation.send("manually")).response_text == FallbackResponses.SOLUTION
        assert (await conversation.send("yes")).response_text == FallbackResponses.ASK_BUSINESS_NAME

        response = await conversation.send("Mama Cass Kitchen")
        assert "Welcome Mama Cass Kitchen" in response.response_text

        session = session_manager.get_session(phone_number)
        assert session.business_context.name == "Mama Cass Kitchen"
        assert session.business_context.industry == "restaurant"
        assert session.business_context.trial_status == TrialStatus.TRIAL

        trial = await trial_manager.get_trial(phone_number)
        assert trial.business_name == "Mama Cass Kitchen"
        assert trial.industry == "restaurant"

        assert (await conversation.send("how do I start?")).response_text == FallbackResponses.ONBOARDING
        assert (await conversation.send("thanks")).response_text == FallbackResponses.TRIAL_SUPPORT
        assert (await trial_manager.get_trial(phone_number)).messages_exchanged == 2

        assert metrics.turn_metrics.total_turns == 7
        assert metrics.turn_metrics.steps["greeting"] == 1
        assert metrics.system_metrics["trials_started"] == 1

    @pytest.mark.asyncio
    async def test_declined_offer_goes_to_objections(self, conversation):
        for body in ["hi", "shop", "manually"]:
            await conversation.send(body)

        assert (await conversation.send("no")).response_text == FallbackResponses.ASK_OBJECTION
        assert (await conversation.send("too expensive")).response_text == FallbackResponses.OBJECTION_COST

    @pytest.mark.asyncio
    async def test_llm_reply_used_when_available(self, conversation, offline_llm):
        offline_llm.generate_response.return_value = "Welcome! What business do you run?"

        response = await conversation.send("hello")

        assert response.response_text == "Welcome! What business do you run?"
        assert response.used_fallback is False

    @pytest.mark.asyncio
    async def test_returning_trial_user_keeps_context(self, conversation, session_manager, trial_manager, phone_number, clock):
        for body in ["hi", "salon", "manually", "yes", "Glow Salon"]:
            await conversation.send(body)

        clock.advance(hours=2)
        response = await conversation.send("hello again")

        assert response.response_text == FallbackResponses.TRIAL_SUPPORT
        context = session_manager.get_session(phone_number).business_context
        assert context.name == "Glow Salon"
        assert context.trial_status == TrialStatus.TRIAL
        assert context.signup_date == (await trial_manager.get_trial(phone_number)).trial_start

    @pytest.mark.asyncio
    async def test_returning_customer_stays_paid(self, conversation, session_manager, trial_manager, phone_number, clock):
        for body in ["hi", "salon", "manually", "yes", "Glow Salon"]:
            await conversation.send(body)
        converted = await trial_manager.mark_converted(phone_number)

        clock.advance(hours=2)
        for body in ["hi", "restaurant", "manually", "yes", "Other Biz"]:
            response = await conversation.send(body)
            assert response.response_text == FallbackResponses.CUSTOMER_SUPPORT

        trial = await trial_manager.get_trial(phone_number)
        assert trial.trial_status == TrialRecordStatus.CONVERTED
        assert trial.business_name == "Glow Salon"

        context = session_manager.get_session(phone_number).business_context
        assert context.trial_status == TrialStatus.PAID
        assert context.name == "Glow Salon"
        assert context.last_payment == converted.conversion_date

    @pytest.mark.asyncio
    async def test_returning_after_trial_end_is_expired(self, conversation, session_manager, trial_manager, phone_number, clock, metrics):
        for body in ["hi", "salon", "manually", "yes", "Glow Salon"]:
            await conversation.send(body)

        clock.advance(days=8)
        assert (await conversation.send("hello again")).response_text == FallbackResponses.TRIAL_RENEWAL
        assert (await conversation.send("yes")).response_text == FallbackResponses.TRIAL_RENEWAL
        assert session_manager.get_session(phone_number).business_context.trial_status == TrialStatus.EXPIRED

        await trial_manager.expire_old_trials()
        assert (await trial_manager.get_trial(phone_number)).trial_status == TrialRecordStatus.EXPIRED
        assert metrics.system_metrics["trials_started"] == 1

    @pytest.mark.asyncio
    async def test_trial_session_sees_expiry(self, conversation, session_manager, trial_manager, phone_number, clock):
        for body in ["hi", "salon", "manually", "yes", "Glow Salon"]:
            await conversation.send(body)

        trial = await trial_manager.get_trial(phone_number)
        trial.trial_end = clock.now - timedelta(seconds=1)

        response = await conversation.send("hello?")

        assert response.response_text == FallbackResponses.TRIAL_RENEWAL
        assert session_manager.get_session(phone_number).business_context.trial_status == TrialStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_error_returns_technical_reply(self, orchestrator, conversation, conversation_logger, phone_number, metrics):
        orchestrator.flow_manager.process_message = AsyncMock(side_effect=RuntimeError("flow broke"))

        response = await conversation.send("hello")

        assert response.agent_id == "system"
        assert response.response_text == FallbackResponses.TECHNICAL_ERROR
        assert response.used_fallback is True
        assert response.metadata["error"] == "flow broke"
        assert metrics.turn_metrics.errors == 1

        logged = await conversation_logger.get_conversation_history(phone_number)
        assert logged[0].success is False
        assert logged[0].error_message == "flow broke"
