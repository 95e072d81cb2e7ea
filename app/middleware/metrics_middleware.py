import time
import logging
from typing import Callable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from app.services.metrics_service import MetricsService, metrics_service as default_metrics

logger = logging.getLogger(__name__)

class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware para coletar métricas HTTP automaticamente"""

    def __init__(self, app, metrics: MetricsService = default_metrics):
        super().__init__(app)
        self.metrics = metrics

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Ignora endpoints de métricas para evitar recursão
        if request.url.path in ["/metrics", "/health"]:
            return await call_next(request)

        start_time = time.time()
        method = request.method
        path = request.url.path

        try:
            response = await call_next(request)
        except Exception as e:
            processing_time = time.time() - start_time
            self.metrics.record_conversation_event("http_exception")
            logger.error(f"Request error on {method} {path}: {e} ({processing_time:.3f}s)")
            raise

        processing_time = time.time() - start_time
        self._record_request_metrics(method, path, response.status_code)
        response.headers["X-Processing-Time"] = f"{processing_time:.3f}"
        return response

    def _record_request_metrics(self, method: str, path: str, status_code: int):
        self.metrics.record_conversation_event(f"http_{method.lower()}")

        if path.startswith("/webhook/whatsapp") and method == "POST":
            self.metrics.record_conversation_event("webhook_received")
        elif path.startswith("/admin"):
            self.metrics.record_conversation_event("admin_request")

        if 200 <= status_code < 300:
            self.metrics.record_conversation_event("http_success")
        elif 400 <= status_code < 500:
            self.metrics.record_conversation_event("http_client_error")
        elif 500 <= status_code < 600:
            self.metrics.record_conversation_event("http_server_error")
