import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import redis.asyncio as redis

from app.config.settings import settings
from app.models.payment import Payment, PaymentStatus
from app.services.trial_manager import TrialManager
from app.utils.helpers import round_rate

logger = logging.getLogger(__name__)

PAYMENTS_KEY = "payments"
DEFAULT_PAYMENT_METHOD = "flutterwave"

class PaymentManager:
    """Pagamentos de assinatura, guardados num hash do Redis (memória como fallback)

    Um pagamento nasce ``pending``; ``process_payment`` o conclui e converte o
    trial do mesmo número. Pendentes além de ``expires_at`` viram ``failed``.
    """

    def __init__(
        self,
        redis_client: Optional[redis.Redis] = None,
        trial_manager: Optional[TrialManager] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.redis_client = redis_client
        self.trial_manager = trial_manager
        self.clock = clock
        self._payments_memory: Dict[str, Payment] = {}

    async def initialize(self, redis_url: str = settings.redis_url):
        if self.redis_client:
            return
        try:
            client = redis.from_url(redis_url)
            await client.ping()
            self.redis_client = client
            logger.info("Payment manager connected to Redis")
        except Exception as e:
            logger.warning(f"Redis connection failed: {e}. Payments kept in memory.")
            self.redis_client = None

    async def close(self):
        if self.redis_client:
            await self.redis_client.aclose()
            self.redis_client = None

    async def create_payment(
        self,
        phone_number: str,
        business_name: str,
        amount: float,
        currency: str = settings.subscription_currency,
        payment_method: Optional[str] = None
    ) -> Payment:
        now = self.clock()
        payment = Payment(
            payment_id=uuid.uuid4().hex,
            phone_number=phone_number,
            business_name=business_name,
            amount=amount,
            currency=currency,
            payment_method=payment_method,
            created_at=now,
            expires_at=now + timedelta(days=settings.payment_expiry_days)
        )
        await self._save(payment)

        logger.info(f"Created payment for {business_name}: {currency} {amount:,.0f}")
        return payment

    async def create_subscription_payment(self, phone_number: str, business_name: str) -> Payment:
        return await self.create_payment(
            phone_number,
            business_name,
            settings.subscription_amount,
            settings.subscription_currency,
            DEFAULT_PAYMENT_METHOD
        )

    async def get_payment(self, payment_id: str) -> Optional[Payment]:
        if self.redis_client:
            raw = await self.redis_client.hget(PAYMENTS_KEY, payment_id)
            return Payment.model_validate_json(raw) if raw else None
        return self._payments_memory.get(payment_id)

    async def get_payment_by_transaction_id(self, transaction_id: str) -> Optional[Payment]:
        for payment in await self._all_payments():
            if payment.transaction_id == transaction_id:
                return payment
        return None

    async def get_payments_by_phone(self, phone_number: str) -> List[Payment]:
        payments = [p for p in await self._all_payments() if p.phone_number == phone_number]
        return sorted(payments, key=lambda p: p.created_at, reverse=True)

    async def get_payments(self, status: PaymentStatus) -> List[Payment]:
        payments = [p for p in await self._all_payments() if p.status == status]
        # Pendentes: mais antigos primeiro
        return sorted(payments, key=lambda p: p.created_at, reverse=status != PaymentStatus.PENDING)

    async def process_payment(self, payment_id: str, transaction_id: str) -> Optional[Payment]:
        """Conclui o pagamento e converte o trial do número"""
        payment = await self.get_payment(payment_id)
        if not payment:
            return None

        if payment.status == PaymentStatus.COMPLETED:
            logger.info(f"Payment {payment_id} already completed")
            return payment
        if payment.status == PaymentStatus.FAILED:
            logger.warning(f"Cannot process failed payment {payment_id}")
            return None

        payment.status = PaymentStatus.COMPLETED
        payment.transaction_id = transaction_id
        payment.paid_at = self.clock()
        await self._save(payment)

        if self.trial_manager:
            await self.trial_manager.mark_converted(payment.phone_number)

        logger.info(f"💳 Processed payment {payment_id} for {payment.business_name}")
        return payment

    async def fail_payment(self, payment_id: str) -> Optional[Payment]:
        payment = await self.get_payment(payment_id)
        if not payment or payment.status != PaymentStatus.PENDING:
            return None

        payment.status = PaymentStatus.FAILED
        await self._save(payment)

        logger.info(f"Payment {payment_id} marked as failed")
        return payment

    async def expire_old_payments(self) -> int:
        now = self.clock()
        count = 0

        for payment in await self.get_payments(PaymentStatus.PENDING):
            if payment.expires_at < now and await self.fail_payment(payment.payment_id):
                count += 1

        if count:
            logger.info(f"Expired {count} payments")
        return count

    async def get_payment_stats(self) -> Dict[str, Any]:
        payments = await self._all_payments()
        completed = [p for p in payments if p.status == PaymentStatus.COMPLETED]
        revenue = sum(p.amount for p in completed)

        return {
            "total": len(payments),
            "completed": len(completed),
            "pending": sum(1 for p in payments if p.status == PaymentStatus.PENDING),
            "failed": sum(1 for p in payments if p.status == PaymentStatus.FAILED),
            "total_revenue": revenue,
            "average_payment_amount": round_rate(revenue / len(completed)) if completed else 0.0
        }

    def payment_confirmation(self, payment: Payment) -> str:
        return (
            f"✅ Payment confirmed! {payment.business_name} is now subscribed to ODIA WhatsApp Automation.\n\n"
            f"📅 Monthly subscription: {payment.currency} {payment.amount:,.0f}\n"
            "🤖 Your automation is active\n"
            "📞 24/7 customer support included\n\n"
            "Need help? Just reply to this message!"
        )

    async def _save(self, payment: Payment):
        if self.redis_client:
            await self.redis_client.hset(PAYMENTS_KEY, payment.payment_id, payment.model_dump_json())
        else:
            self._payments_memory[payment.payment_id] = payment

    async def _all_payments(self) -> List[Payment]:
        if self.redis_client:
            raw = await self.redis_client.hgetall(PAYMENTS_KEY)
            return [Payment.model_validate_json(value) for value in raw.values()]
        return list(self._payments_memory.values())
