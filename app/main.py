from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse
from contextlib import asynccontextmanager
from dataclasses import dataclass
from dotenv import load_dotenv
from datetime import datetime
import asyncio
import logging

load_dotenv()

from app.agents.lexi_agent import LexiAgent
from app.config.settings import settings
from app.core.orchestrator import ConversationOrchestrator
from app.core.session_manager import SessionManager
from app.middleware.metrics_middleware import MetricsMiddleware
from app.models.message import MessageType, WhatsAppMessage
from app.services.admin_endpoints import router as admin_router
from app.services.analytics_service import AnalyticsService
from app.services.conversation_flows import ConversationFlowManager
from app.services.conversation_logger import ConversationLogger
from app.services.llm_service import LLMService
from app.services.metrics_service import MetricsService, metrics_service
from app.services.payment_manager import PaymentManager
from app.services.trial_manager import TrialManager
from app.services.twilio_service import TwilioService, FALLBACK_TWIML
from app.utils.logger import setup_logger

logger = logging.getLogger(__name__)

@dataclass
class Services:
    session_manager: SessionManager
    trial_manager: TrialManager
    payment_manager: PaymentManager
    conversation_logger: ConversationLogger
    llm_service: LLMService
    twilio_service: TwilioService
    orchestrator: ConversationOrchestrator
    analytics: AnalyticsService

def build_services(metrics: MetricsService = metrics_service, **overrides) -> Services:
    """Monta os componentes; ``overrides`` substitui qualquer um deles (usado nos testes)"""
    session_manager = overrides.get("session_manager") or SessionManager(metrics=metrics)
    trial_manager = overrides.get("trial_manager") or TrialManager()
    payment_manager = overrides.get("payment_manager") or PaymentManager(trial_manager=trial_manager)
    conversation_logger = overrides.get("conversation_logger") or ConversationLogger()
    llm_service = overrides.get("llm_service") or LLMService(metrics=metrics)
    twilio_service = overrides.get("twilio_service") or TwilioService()

    orchestrator = overrides.get("orchestrator") or ConversationOrchestrator(
        session_manager=session_manager,
        flow_manager=ConversationFlowManager(trial_days=trial_manager.trial_days),
        agent=LexiAgent(llm_service),
        trial_manager=trial_manager,
        conversation_logger=conversation_logger,
        metrics=metrics
    )

    return Services(
        session_manager=session_manager,
        trial_manager=trial_manager,
        payment_manager=payment_manager,
        conversation_logger=conversation_logger,
        llm_service=llm_service,
        twilio_service=twilio_service,
        orchestrator=orchestrator,
        analytics=AnalyticsService(session_manager, trial_manager, conversation_logger, payment_manager)
    )

async def run_trial_check(services: Services):
    """Uma rodada: expira trials e pagamentos vencidos e avisa os contatos"""
    trial_manager = services.trial_manager

    for trial in await trial_manager.expire_old_trials():
        await services.twilio_service.send_message(trial.phone_number, trial_manager.trial_reminder(trial))

    await services.payment_manager.expire_old_payments()

    for trial in await trial_manager.get_trials_due_reminder():
        await services.twilio_service.send_message(trial.phone_number, trial_manager.trial_reminder(trial))
        await trial_manager.mark_reminded(trial.phone_number)
        logger.info(f"⏰ Sent trial reminder to {trial.business_name} ({trial.phone_number})")

async def periodic_trial_check(services: Services):
    while True:
        await asyncio.sleep(settings.trial_check_interval)
        try:
            await run_trial_check(services)
        except Exception as e:
            logger.error(f"Error during trial check: {e}")

@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logger()
    logger.info("🚀 Starting ODIA WhatsApp Automation...")

    services = build_services()
    app.state.services = services

    await services.conversation_logger.initialize()
    await services.trial_manager.initialize()
    await services.payment_manager.initialize()
    await services.llm_service.initialize()
    services.session_manager.start()
    trial_task = asyncio.create_task(periodic_trial_check(services))

    yield

    logger.info("🛑 Stopping ODIA WhatsApp Automation...")
    trial_task.cancel()
    try:
        await trial_task
    except asyncio.CancelledError:
        pass
    await services.session_manager.stop()
    await services.llm_service.cleanup()
    await services.conversation_logger.close()
    await services.trial_manager.close()
    await services.payment_manager.close()

app = FastAPI(
    title=settings.app_name,
    description="WhatsApp business automation with Lexi",
    version="1.0.0",
    lifespan=lifespan
)
app.add_middleware(MetricsMiddleware)
app.include_router(admin_router)

def twiml_response(services: Services, text: str, status_code: int = 200) -> Response:
    return Response(
        content=services.twilio_service.create_webhook_response(text),
        media_type="text/xml",
        status_code=status_code
    )

@app.post("/webhook/whatsapp")
async def whatsapp_webhook(request: Request):
    services: Services = request.app.state.services

    try:
        form = await request.form()
        params = dict(form)

        if settings.validate_twilio_signature:
            url = settings.webhook_public_url or str(request.url)
            signature = request.headers.get("X-Twilio-Signature", "")
            if not services.twilio_service.validate_request(url, params, signature):
                logger.warning("Rejected webhook with invalid Twilio signature")
                return Response(content="Unauthorized", status_code=401)

        phone_number = services.twilio_service.extract_phone_number(params.get("From", ""))
        if not phone_number or not params.get("MessageSid"):
            logger.warning(f"Invalid webhook payload: {list(params)}")
            return Response(content="Bad Request", status_code=400)

        num_media = int(params.get("NumMedia") or 0)
        message = WhatsAppMessage(
            message_id=params["MessageSid"],
            from_number=phone_number,
            to_number=params.get("To"),
            body=params.get("Body") or "",
            message_type=MessageType.MEDIA if num_media > 0 else MessageType.TEXT,
            media_url=params.get("MediaUrl0")
        )
        logger.info(f"📱 Received message from {phone_number}: {message.body[:50]}")

        response = await services.orchestrator.process_message(message)
        return twiml_response(services, response.response_text)

    except Exception as e:
        logger.exception(f"Error processing WhatsApp webhook: {e}")
        return Response(content=FALLBACK_TWIML, media_type="text/xml", status_code=500)

@app.get("/webhook/whatsapp")
async def webhook_status(request: Request):
    return {
        "message": "ODIA WhatsApp Webhook is running",
        "timestamp": datetime.now().isoformat(),
        "active_sessions": request.app.state.services.session_manager.get_active_session_count()
    }

@app.get("/analytics")
async def analytics():
    return metrics_service.get_metrics_summary()

@app.get("/metrics")
async def prometheus_metrics():
    try:
        return PlainTextResponse(
            content=metrics_service.get_prometheus_metrics(),
            media_type="text/plain; version=0.0.4; charset=utf-8"
        )
    except Exception as e:
        logger.error(f"Error generating Prometheus metrics: {e}")
        return PlainTextResponse(content="# Error generating metrics\n", status_code=500)

@app.get("/health")
async def health(request: Request):
    services: Services = request.app.state.services
    return JSONResponse({
        "status": "healthy",
        "environment": settings.environment,
        "timestamp": datetime.now().isoformat(),
        "sessions": {
            "sweeper_running": services.session_manager.is_running,
            "active": services.session_manager.get_active_session_count()
        },
        "llm": services.llm_service.get_service_status(),
        "twilio": services.twilio_service.get_service_status()
    })
