import logging
from typing import Dict, Any, Optional
from datetime import datetime
from dataclasses import dataclass, field
from collections import defaultdict, deque

logger = logging.getLogger(__name__)

@dataclass
class LLMMetrics:
    """Métricas das chamadas ao LLM"""
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    avg_response_time: float = 0.0
    response_times: deque = field(default_factory=lambda: deque(maxlen=100))

    def add_request(self, response_time: float, success: bool = True):
        self.total_requests += 1
        if success:
            self.successful_requests += 1
        else:
            self.failed_requests += 1

        self.response_times.append(response_time)
        self.avg_response_time = sum(self.response_times) / len(self.response_times)

@dataclass
class TurnMetrics:
    """Métricas por turno de conversa (webhook -> resposta)"""
    total_turns: int = 0
    fallback_replies: int = 0
    errors: int = 0
    avg_processing_time: float = 0.0
    processing_times: deque = field(default_factory=lambda: deque(maxlen=100))
    steps: Dict[str, int] = field(default_factory=lambda: defaultdict(int))

    def add_turn(self, processing_time: float, step: Optional[str], used_fallback: bool, success: bool):
        self.total_turns += 1
        if used_fallback:
            self.fallback_replies += 1
        if not success:
            self.errors += 1
        if step:
            self.steps[step] += 1

        self.processing_times.append(processing_time)
        self.avg_processing_time = sum(self.processing_times) / len(self.processing_times)

def _initial_system_metrics() -> Dict[str, Any]:
    return {
        "uptime_start": datetime.now(),
        "total_sessions": 0,
        "active_sessions": 0,
        "peak_concurrent_sessions": 0,
        "timed_out_sessions": 0,
        "trials_started": 0
    }

class MetricsService:
    """Contadores em memória do processo; zerados a cada restart"""

    def __init__(self):
        self.llm_metrics = LLMMetrics()
        self.turn_metrics = TurnMetrics()
        self.conversation_metrics = defaultdict(int)
        self.system_metrics = _initial_system_metrics()

    def record_llm_request(self, response_time: float, success: bool = True):
        self.llm_metrics.add_request(response_time, success)
        logger.debug(f"LLM request recorded: {response_time:.2f}s (success={success})")

    def record_turn(
        self,
        processing_time: float,
        step: Optional[str] = None,
        used_fallback: bool = False,
        success: bool = True
    ):
        self.turn_metrics.add_turn(processing_time, step, used_fallback, success)

    def record_conversation_event(self, event_type: str, phone_number: str = None):
        """Eventos de sessão, trial e HTTP; os de sessão também movem os contadores do sistema"""
        self.conversation_metrics[event_type] += 1
        system = self.system_metrics

        if event_type == "session_start":
            system["total_sessions"] += 1
            system["active_sessions"] += 1
            system["peak_concurrent_sessions"] = max(system["peak_concurrent_sessions"], system["active_sessions"])
        elif event_type == "session_end":
            system["active_sessions"] = max(0, system["active_sessions"] - 1)
        elif event_type == "session_timeout":
            system["timed_out_sessions"] += 1
        elif event_type == "trial_start":
            system["trials_started"] += 1

    def get_metrics_summary(self) -> Dict[str, Any]:
        uptime = datetime.now() - self.system_metrics["uptime_start"]

        return {
            "timestamp": datetime.now().isoformat(),
            "uptime_seconds": int(uptime.total_seconds()),
            "uptime_human": str(uptime).split('.')[0],

            "llm": {
                "total_requests": self.llm_metrics.total_requests,
                "success_rate": (self.llm_metrics.successful_requests / max(1, self.llm_metrics.total_requests)) * 100,
                "avg_response_time": round(self.llm_metrics.avg_response_time, 3)
            },

            "turns": {
                "total": self.turn_metrics.total_turns,
                "fallback_replies": self.turn_metrics.fallback_replies,
                "errors": self.turn_metrics.errors,
                "avg_processing_time": round(self.turn_metrics.avg_processing_time, 3),
                "by_step": dict(self.turn_metrics.steps)
            },

            "system": dict(self.system_metrics, uptime_start=self.system_metrics["uptime_start"].isoformat()),
            "conversations": dict(self.conversation_metrics)
        }

    def get_prometheus_metrics(self) -> str:
        """Retorna métricas no formato Prometheus"""
        metrics = [
            f"odia_llm_requests_total {self.llm_metrics.total_requests}",
            f"odia_llm_requests_successful {self.llm_metrics.successful_requests}",
            f"odia_llm_requests_failed {self.llm_metrics.failed_requests}",
            f"odia_llm_avg_response_time {self.llm_metrics.avg_response_time}",
            f"odia_turns_total {self.turn_metrics.total_turns}",
            f"odia_turns_fallback {self.turn_metrics.fallback_replies}",
            f"odia_turns_errors {self.turn_metrics.errors}",
            f"odia_turn_avg_processing_time {self.turn_metrics.avg_processing_time}",
        ]

        for step, count in self.turn_metrics.steps.items():
            metrics.append(f'odia_flow_steps{{step="{step}"}} {count}')

        uptime = (datetime.now() - self.system_metrics["uptime_start"]).total_seconds()
        metrics.extend([
            f"odia_uptime_seconds {int(uptime)}",
            f"odia_total_sessions {self.system_metrics['total_sessions']}",
            f"odia_active_sessions {self.system_metrics['active_sessions']}",
            f"odia_peak_concurrent_sessions {self.system_metrics['peak_concurrent_sessions']}",
            f"odia_timed_out_sessions {self.system_metrics['timed_out_sessions']}",
            f"odia_trials_started {self.system_metrics['trials_started']}",
        ])

        for event_type, count in self.conversation_metrics.items():
            metrics.append(f'odia_conversation_events{{type="{event_type}"}} {count}')

        return '\n'.join(metrics)

    def reset_metrics(self):
        """Reseta todas as métricas (útil para testes)"""
        self.llm_metrics = LLMMetrics()
        self.turn_metrics = TurnMetrics()
        self.conversation_metrics.clear()
        self.system_metrics = _initial_system_metrics()
        logger.info("Metrics reset successfully")

# Instância global
metrics_service = MetricsService()
