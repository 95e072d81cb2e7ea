import asyncio
import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from app.models.session import (
    ConversationSession, Message, SessionStats, SessionUpdate
)
from app.services.metrics_service import MetricsService

logger = logging.getLogger(__name__)

SESSION_TIMEOUT = timedelta(minutes=30)
CLEANUP_INTERVAL = timedelta(minutes=5)

class SessionManager:
    """Cache em memória das conversas ativas, com TTL deslizante.

    Cada sessão tem um timer próprio (``loop.call_later``) rearmado a cada
    acesso; uma varredura periódica encerra as sessões cujo timer se perdeu.
    As leituras também conferem a ociosidade contra ``clock``, de modo que a
    expiração vale mesmo sem event loop rodando.

    Todas as operações são síncronas e nunca suspendem. Sessões devolvidas
    são cópias: alterações só entram pelos métodos do gerenciador.
    """

    def __init__(
        self,
        session_timeout: timedelta = SESSION_TIMEOUT,
        cleanup_interval: timedelta = CLEANUP_INTERVAL,
        clock: Callable[[], datetime] = datetime.now,
        metrics: Optional[MetricsService] = None
    ):
        self.session_timeout = session_timeout
        self.cleanup_interval = cleanup_interval
        self.clock = clock
        self.metrics = metrics
        self._sessions: Dict[str, ConversationSession] = {}
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._cleanup_task: Optional[asyncio.Task] = None

    # Ciclo de vida

    def start(self):
        if self._cleanup_task and not self._cleanup_task.done():
            return
        self._cleanup_task = asyncio.create_task(self._periodic_cleanup())
        logger.info(
            f"Session manager started (timeout={self.session_timeout}, "
            f"cleanup every {self.cleanup_interval})"
        )

    async def stop(self):
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

        for session_id in list(self._timers):
            self._clear_session_timeout(session_id)

        logger.info("Session manager stopped")

    @property
    def is_running(self) -> bool:
        return self._cleanup_task is not None and not self._cleanup_task.done()

    async def _periodic_cleanup(self):
        while True:
            await asyncio.sleep(self.cleanup_interval.total_seconds())
            try:
                self.cleanup_expired_sessions()
            except Exception as e:
                logger.error(f"Error during session cleanup: {e}")

    # Operações

    def create_session(self, phone_number: str) -> ConversationSession:
        # A sessão mais recente vence: a anterior do mesmo número é encerrada
        existing = self._find_active(phone_number)
        if existing:
            logger.info(f"Replacing active session {existing.session_id} for {phone_number}")
            self.end_session(existing.session_id)

        now = self.clock()
        session = ConversationSession(
            session_id=self._new_session_id(phone_number, now),
            phone_number=phone_number,
            last_activity=now,
            start_time=now
        )

        self._sessions[session.session_id] = session
        self._set_session_timeout(session.session_id)

        if self.metrics:
            self.metrics.record_conversation_event("session_start", phone_number)

        logger.info(f"Created new session: {session.session_id} for phone: {phone_number}")
        return session.model_copy(deep=True)

    def get_session(self, phone_number: str) -> Optional[ConversationSession]:
        session = self._find_active(phone_number)
        if not session:
            return None

        self._touch(session)
        return session.model_copy(deep=True)

    def get_session_by_id(self, session_id: str) -> Optional[ConversationSession]:
        session = self._get_live(session_id)
        if not session:
            return None

        self._touch(session)
        return session.model_copy(deep=True)

    def get_or_create_session(self, phone_number: str) -> ConversationSession:
        return self.get_session(phone_number) or self.create_session(phone_number)

    def update_session(self, session_id: str, update: SessionUpdate) -> bool:
        session = self._get_live(session_id)
        if not session:
            return False

        if update.business_context and not update.business_context.is_empty():
            session.business_context = update.business_context.apply_to(session.business_context)

        if update.is_active is False:
            return self.end_session(session_id)

        self._touch(session)
        return True

    def add_message(self, session_id: str, message: Message) -> bool:
        session = self._get_live(session_id)
        if not session:
            return False

        session.conversation_history.append(message.model_copy())
        self._touch(session)
        return True

    def end_session(self, session_id: str, reason: str = "ended") -> bool:
        session = self._sessions.get(session_id)
        if not session or not session.is_active:
            return False

        session.is_active = False
        self._clear_session_timeout(session_id)

        if self.metrics:
            self.metrics.record_conversation_event("session_end", session.phone_number)
            if reason == "timeout":
                self.metrics.record_conversation_event("session_timeout", session.phone_number)

        logger.info(f"Ended session: {session_id} ({reason})")
        return True

    def get_active_sessions(self) -> List[ConversationSession]:
        now = self.clock()
        return [
            session.model_copy(deep=True)
            for session in self._sessions.values()
            if session.is_active and not self._is_expired(session, now)
        ]

    def get_active_session_count(self) -> int:
        return len(self.get_active_sessions())

    def cleanup_expired_sessions(self) -> int:
        """Varredura de segurança: encerra sessões ociosas e descarta as já encerradas"""
        now = self.clock()
        cleaned_count = 0

        for session_id, session in list(self._sessions.items()):
            if not session.is_active:
                del self._sessions[session_id]
                self._clear_session_timeout(session_id)
            elif self._is_expired(session, now):
                self.end_session(session_id, reason="timeout")
                cleaned_count += 1

        if cleaned_count > 0:
            logger.info(f"Cleaned up {cleaned_count} expired sessions")

        return cleaned_count

    def get_session_stats(self) -> SessionStats:
        sessions = list(self._sessions.values())
        active = self.get_active_sessions()

        by_status = Counter(s.business_context.trial_status.value for s in sessions)
        average = (
            sum(len(s.conversation_history) for s in active) / len(active)
            if active else 0.0
        )

        return SessionStats(
            total_sessions=len(sessions),
            active_sessions=len(active),
            average_history_length=average,
            counts_by_trial_status=dict(by_status)
        )

    # Internos

    def _new_session_id(self, phone_number: str, now: datetime) -> str:
        base_id = f"whatsapp_{phone_number}_{int(now.timestamp() * 1000)}"
        session_id = base_id
        suffix = 1
        while session_id in self._sessions:
            session_id = f"{base_id}_{suffix}"
            suffix += 1
        return session_id

    def _is_expired(self, session: ConversationSession, now: datetime) -> bool:
        return now - session.last_activity > self.session_timeout

    def _find_active(self, phone_number: str) -> Optional[ConversationSession]:
        for session in list(self._sessions.values()):
            if session.phone_number == phone_number and self._check_live(session):
                return session
        return None

    def _get_live(self, session_id: str) -> Optional[ConversationSession]:
        session = self._sessions.get(session_id)
        if session and self._check_live(session):
            return session
        return None

    def _check_live(self, session: ConversationSession) -> bool:
        if not session.is_active:
            return False
        if self._is_expired(session, self.clock()):
            # Expirou sem o timer ter disparado
            self.end_session(session.session_id, reason="timeout")
            return False
        return True

    def _touch(self, session: ConversationSession):
        now = self.clock()
        if now > session.last_activity:
            session.last_activity = now
        self._set_session_timeout(session.session_id)

    def _set_session_timeout(self, session_id: str):
        self._clear_session_timeout(session_id)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Sem loop: a expiração fica com a checagem nas leituras e a varredura
            return

        self._timers[session_id] = loop.call_later(
            self.session_timeout.total_seconds(),
            self._on_session_timeout,
            session_id
        )

    def _clear_session_timeout(self, session_id: str):
        timer = self._timers.pop(session_id, None)
        if timer:
            timer.cancel()

    def _on_session_timeout(self, session_id: str):
        self._timers.pop(session_id, None)
        logger.info(f"Session timeout: {session_id}")
        self.end_session(session_id, reason="timeout")
