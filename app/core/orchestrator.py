import logging
import time
from datetime import datetime
from typing import Callable, Optional

from app.agents.base_agent import BaseAgent
from app.config.fallback_responses import FallbackResponses
from app.core.session_manager import SessionManager
from app.models.message import AgentResponse, ConversationLog, WhatsAppMessage
from app.models.session import (
    BusinessContextUpdate, ConversationSession, Message, SessionUpdate, TrialStatus
)
from app.models.trial import BusinessTrial, TrialRecordStatus
from app.services.conversation_flows import ConversationFlowManager
from app.services.conversation_logger import ConversationLogger
from app.services.metrics_service import MetricsService
from app.services.trial_manager import TrialManager

logger = logging.getLogger(__name__)

class ConversationOrchestrator:
    """Conduz um turno: sessão -> fluxo -> Lexi -> sessão -> log"""

    def __init__(
        self,
        session_manager: SessionManager,
        flow_manager: ConversationFlowManager,
        agent: BaseAgent,
        trial_manager: TrialManager,
        conversation_logger: ConversationLogger,
        metrics: Optional[MetricsService] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.session_manager = session_manager
        self.flow_manager = flow_manager
        self.agent = agent
        self.trial_manager = trial_manager
        self.conversation_logger = conversation_logger
        self.metrics = metrics
        self.clock = clock

    async def process_message(self, message: WhatsAppMessage) -> AgentResponse:
        start_time = time.monotonic()
        session: Optional[ConversationSession] = None

        try:
            session = self.session_manager.get_session(message.from_number)
            if not session:
                session = self.session_manager.create_session(message.from_number)
                await self._restore_business_context(session.session_id, message.from_number)

            self.session_manager.add_message(session.session_id, Message(
                role="user",
                content=message.body,
                timestamp=self.clock(),
                message_id=message.message_id
            ))

            await self._sync_trial_status(session.session_id, message.from_number)

            # Snapshot com a mensagem atual já no histórico
            session = self._require_session(session.session_id)
            flow_result = await self.flow_manager.process_message(session, message.body)

            response = await self.agent.process_message(session, message.body, flow_result)

            if flow_result.context_update and not flow_result.context_update.is_empty():
                self.session_manager.update_session(
                    session.session_id,
                    SessionUpdate(business_context=flow_result.context_update)
                )

            if flow_result.should_create_trial:
                update = flow_result.context_update
                trial = await self.trial_manager.start_trial(
                    message.from_number,
                    update.name,
                    update.industry or session.business_context.industry
                )
                if trial.trial_status == TrialRecordStatus.ACTIVE:
                    if self.metrics:
                        self.metrics.record_conversation_event("trial_start", message.from_number)
                else:
                    # Registro antigo prevalece sobre o novo cadastro
                    await self._sync_trial_status(session.session_id, message.from_number)

            self.session_manager.add_message(session.session_id, Message(
                role="assistant",
                content=response.response_text,
                timestamp=self.clock()
            ))

            if session.business_context.trial_status == TrialStatus.TRIAL:
                await self.trial_manager.record_message(message.from_number)

            response_time_ms = int((time.monotonic() - start_time) * 1000)
            session = self._require_session(session.session_id)
            await self.conversation_logger.log_conversation(ConversationLog(
                session_id=session.session_id,
                phone_number=session.phone_number,
                message_sid=message.message_id,
                user_message=message.body,
                ai_response=response.response_text,
                agent=self.agent.agent_id,
                response_time_ms=response_time_ms,
                business_name=session.business_context.name,
                industry=session.business_context.industry,
                trial_status=session.business_context.trial_status.value,
                timestamp=self.clock()
            ))

            if self.metrics:
                self.metrics.record_turn(
                    time.monotonic() - start_time,
                    step=response.flow_step,
                    used_fallback=response.used_fallback
                )

            logger.info(f"Message processed for {message.from_number} in {response_time_ms}ms")
            return response

        except Exception as e:
            logger.exception(f"Error processing message from {message.from_number}: {e}")

            if self.metrics:
                self.metrics.record_turn(time.monotonic() - start_time, success=False)

            await self.conversation_logger.log_error(
                session.session_id if session else "unknown",
                message.from_number,
                message.message_id,
                message.body,
                str(e)
            )
            return self._create_error_response(session, str(e))

    async def _restore_business_context(self, session_id: str, phone_number: str):
        """Sessão nova de um contato conhecido herda nome, ramo e status do registro de trial"""
        trial = await self.trial_manager.get_trial(phone_number)
        if not trial:
            return

        update = BusinessContextUpdate(
            name=trial.business_name,
            industry=trial.industry,
            trial_status=self._status_from_trial(trial),
            signup_date=trial.trial_start
        )
        if trial.converted:
            update.last_payment = trial.conversion_date

        self.session_manager.update_session(session_id, SessionUpdate(business_context=update))
        logger.info(f"Restored {update.trial_status.value} context for {phone_number} ({trial.business_name})")

    async def _sync_trial_status(self, session_id: str, phone_number: str):
        """Trial vencido ou convertido no registro durável passa a valer na sessão"""
        session = self._require_session(session_id)
        if session.business_context.trial_status != TrialStatus.TRIAL:
            return

        trial = await self.trial_manager.get_trial(phone_number)
        if not trial:
            return

        status = self._status_from_trial(trial)
        if status != TrialStatus.TRIAL:
            update = BusinessContextUpdate(trial_status=status)
            if trial.converted:
                update.last_payment = trial.conversion_date
            self.session_manager.update_session(session_id, SessionUpdate(business_context=update))
            logger.info(f"Trial for {phone_number} is now {status.value}, session {session_id} updated")

    def _status_from_trial(self, trial: BusinessTrial) -> TrialStatus:
        if trial.converted or trial.trial_status == TrialRecordStatus.CONVERTED:
            return TrialStatus.PAID
        if trial.trial_status == TrialRecordStatus.EXPIRED or trial.trial_end < self.clock():
            return TrialStatus.EXPIRED
        return TrialStatus.TRIAL

    def _require_session(self, session_id: str) -> ConversationSession:
        session = self.session_manager.get_session_by_id(session_id)
        if not session:
            raise LookupError(f"Session {session_id} is no longer active")
        return session

    def _create_error_response(self, session: Optional[ConversationSession], error: str) -> AgentResponse:
        return AgentResponse(
            agent_id="system",
            response_text=FallbackResponses.TECHNICAL_ERROR,
            session_id=session.session_id if session else None,
            used_fallback=True,
            metadata={"error": error}
        )
