import asyncio
import logging
from datetime import datetime
from typing import Any, Dict

from app.core.session_manager import SessionManager
from app.services.conversation_logger import ConversationLogger
from app.services.payment_manager import PaymentManager
from app.services.trial_manager import TrialManager

logger = logging.getLogger(__name__)

RECENT_ACTIVITY_LIMIT = 10

class AnalyticsService:
    """Agrega sessões, trials, pagamentos e logs de conversa para o dashboard administrativo"""

    def __init__(
        self,
        session_manager: SessionManager,
        trial_manager: TrialManager,
        conversation_logger: ConversationLogger,
        payment_manager: PaymentManager
    ):
        self.session_manager = session_manager
        self.trial_manager = trial_manager
        self.conversation_logger = conversation_logger
        self.payment_manager = payment_manager

    async def get_dashboard_data(self) -> Dict[str, Any]:
        session_stats = self.session_manager.get_session_stats()
        active_sessions = self.session_manager.get_active_sessions()

        trial_stats, payment_stats, system_metrics, active_trials = await asyncio.gather(
            self.trial_manager.get_trial_stats(),
            self.payment_manager.get_payment_stats(),
            self.conversation_logger.get_system_metrics(),
            self.trial_manager.get_active_trials()
        )

        now = self.trial_manager.clock()

        return {
            "timestamp": datetime.now().isoformat(),
            "sessions": {
                "active": session_stats.active_sessions,
                "total": session_stats.total_sessions,
                "average_conversation_length": session_stats.average_history_length,
                "sessions_by_status": session_stats.counts_by_trial_status
            },
            "trials": trial_stats,
            "payments": payment_stats,
            "system": {
                "daily_conversations": system_metrics["daily_conversations"],
                "average_response_time": system_metrics["average_response_time"],
                "success_rate": system_metrics["success_rate"],
                "active_trials": trial_stats["active"]
            },
            "realtime": {
                "active_sessions": len(active_sessions),
                "active_trials": len(active_trials)
            },
            "recent_activity": {
                "active_sessions": [
                    {
                        "session_id": s.session_id,
                        "phone_number": s.phone_number,
                        "business_name": s.business_context.name,
                        "industry": s.business_context.industry,
                        "trial_status": s.business_context.trial_status.value,
                        "last_activity": s.last_activity.isoformat(),
                        "message_count": len(s.conversation_history)
                    }
                    for s in active_sessions[:RECENT_ACTIVITY_LIMIT]
                ],
                "active_trials": [
                    {
                        "business_name": t.business_name,
                        "phone_number": t.phone_number,
                        "industry": t.industry,
                        "trial_start": t.trial_start.isoformat(),
                        "trial_end": t.trial_end.isoformat(),
                        "days_left": t.days_left(now),
                        "messages_exchanged": t.messages_exchanged
                    }
                    for t in active_trials[:RECENT_ACTIVITY_LIMIT]
                ]
            }
        }
