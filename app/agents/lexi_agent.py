import logging
import time
from app.agents.base_agent import BaseAgent
from app.config.llm_settings import llm_settings
from app.models.message import AgentResponse
from app.models.session import ConversationSession
from app.services.conversation_flows import FlowResult, detect_intent
from app.services.llm_service import LLMService
from app.utils.helpers import truncate_text

logger = logging.getLogger(__name__)

LEXI_PROMPT = """You are Lexi, ODIA's WhatsApp business automation expert for Nigerian businesses.

CONTEXT: You're speaking with Nigerian business owners interested in WhatsApp automation.
TRIAL: Free 7-day trial available.

PERSONALITY:
- Professional Nigerian business consultant
- Concise and action-oriented, Nigerian English tone

RESPONSE RULES:
- Keep responses under 160 characters
- Ask one question at a time
- Always suggest the next step

CURRENT SESSION CONTEXT:
- Business Name: {business_name}
- Industry: {industry}
- Trial Status: {trial_status}
- Conversation Stage: {stage}
- Suggested Reply: {suggested_reply}
- Conversation History:
{history}

Respond to the user's message following these guidelines."""

class LexiAgent(BaseAgent):
    def __init__(self, llm_service: LLMService):
        super().__init__(
            agent_id="lexi",
            name="Lexi",
            description="Consultora de automação de WhatsApp da ODIA"
        )
        self.llm_service = llm_service
        self.max_response_length = llm_settings.max_response_length
        self.history_window = llm_settings.history_window

    async def process_message(
        self,
        session: ConversationSession,
        user_message: str,
        flow_result: FlowResult
    ) -> AgentResponse:
        start_time = time.monotonic()
        intent = detect_intent(user_message)

        if flow_result.exact_reply:
            response_text = flow_result.response
            used_fallback = False
        else:
            generated = await self.llm_service.generate_response(
                prompt=user_message,
                system_message=self.build_system_prompt(session, flow_result)
            )
            used_fallback = generated is None
            response_text = truncate_text(generated, self.max_response_length) if generated else flow_result.response

        elapsed_ms = int((time.monotonic() - start_time) * 1000)

        response = AgentResponse(
            agent_id=self.agent_id,
            response_text=response_text,
            session_id=session.session_id,
            flow_step=flow_result.step,
            used_fallback=used_fallback,
            metadata={"intent": intent, "generation_ms": elapsed_ms}
        )

        self.log_interaction(session, response)
        return response

    def build_system_prompt(self, session: ConversationSession, flow_result: FlowResult) -> str:
        context = session.business_context
        return LEXI_PROMPT.format(
            business_name=context.name or "Not provided",
            industry=context.industry or "Not provided",
            trial_status=context.trial_status.value,
            stage=flow_result.step,
            suggested_reply=flow_result.response,
            history=self.format_history(session)
        )

    def format_history(self, session: ConversationSession) -> str:
        recent = session.conversation_history[-self.history_window:]
        return "\n".join(f"{msg.role}: {msg.content}" for msg in recent)

