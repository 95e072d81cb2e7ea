from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from datetime import datetime
from typing import Dict, Any, List, Optional
import logging

from app.models.session import BusinessContextUpdate, SessionUpdate, TrialStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])

MAX_HISTORY_LIMIT = 200

@router.get("/dashboard")
async def get_dashboard(request: Request):
    """Dados agregados do dashboard"""
    try:
        return await request.app.state.services.analytics.get_dashboard_data()
    except Exception as e:
        logger.error(f"Error fetching dashboard data: {e}")
        return JSONResponse(status_code=500, content={"error": "Failed to fetch dashboard data"})

@router.get("/sessions")
async def list_active_sessions(request: Request) -> List[Dict[str, Any]]:
    """Sessões ativas (cópias, sem efeito colateral)"""
    sessions = request.app.state.services.session_manager.get_active_sessions()
    return [s.model_dump(mode="json") for s in sessions]

@router.get("/conversations/{phone_number}")
async def get_conversation_history(
    request: Request,
    phone_number: str,
    limit: int = Query(50, ge=1, le=MAX_HISTORY_LIMIT)
) -> List[Dict[str, Any]]:
    history = await request.app.state.services.conversation_logger.get_conversation_history(phone_number, limit)
    return [entry.model_dump(mode="json") for entry in history]

@router.get("/payments/{phone_number}")
async def get_payments(request: Request, phone_number: str) -> List[Dict[str, Any]]:
    """Pagamentos do número, mais recentes primeiro"""
    payments = await request.app.state.services.payment_manager.get_payments_by_phone(phone_number)
    return [p.model_dump(mode="json") for p in payments]

@router.post("/trials/{phone_number}/convert")
async def convert_trial(request: Request, phone_number: str, transaction_id: Optional[str] = None) -> Dict[str, Any]:
    """Registra o pagamento da assinatura e converte o trial

    Um ``transaction_id`` já processado devolve o mesmo pagamento sem cobrar de novo.
    """
    services = request.app.state.services
    payment_manager = services.payment_manager

    trial = await services.trial_manager.get_trial(phone_number)
    if not trial:
        raise HTTPException(status_code=404, detail=f"No trial found for {phone_number}")

    payment = await payment_manager.get_payment_by_transaction_id(transaction_id) if transaction_id else None
    if payment and payment.phone_number != phone_number:
        raise HTTPException(status_code=409, detail=f"Transaction {transaction_id} belongs to another number")
    if not payment:
        payment = await payment_manager.create_subscription_payment(phone_number, trial.business_name)
        payment = await payment_manager.process_payment(
            payment.payment_id,
            transaction_id or f"manual_{payment.payment_id}"
        )
        await services.twilio_service.send_message(phone_number, payment_manager.payment_confirmation(payment))

    session_updated = False
    session = services.session_manager.get_session(phone_number)
    if session:
        session_updated = services.session_manager.update_session(session.session_id, SessionUpdate(
            business_context=BusinessContextUpdate(
                trial_status=TrialStatus.PAID,
                last_payment=payment.paid_at
            )
        ))

    return {
        "trial": (await services.trial_manager.get_trial(phone_number)).model_dump(mode="json"),
        "payment": payment.model_dump(mode="json"),
        "session_updated": session_updated,
        "timestamp": datetime.now().isoformat()
    }
