from abc import ABC, abstractmethod
from app.models.message import AgentResponse
from app.models.session import ConversationSession
from app.services.conversation_flows import FlowResult
import logging

logger = logging.getLogger(__name__)

class BaseAgent(ABC):
    def __init__(self, agent_id: str, name: str, description: str):
        self.agent_id = agent_id
        self.name = name
        self.description = description

    @abstractmethod
    async def process_message(
        self,
        session: ConversationSession,
        user_message: str,
        flow_result: FlowResult
    ) -> AgentResponse:
        """Gera a resposta final do turno a partir da sessão e da etapa do fluxo"""
        pass

    def log_interaction(self, session: ConversationSession, response: AgentResponse):
        logger.info(
            f"Agent {self.agent_id} replied to {session.phone_number} "
            f"[{response.flow_step}]: {response.response_text[:100]}"
        )
