import pytest
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

from app.config.settings import settings
from app.models.payment import Payment, PaymentStatus
from app.models.trial import TrialRecordStatus
from app.services.payment_manager import PaymentManager, PAYMENTS_KEY
from app.services.trial_manager import TrialManager

@pytest.fixture
def trial_manager(clock):
    return TrialManager(trial_days=7, clock=clock)

@pytest.fixture
def payment_manager(trial_manager, clock):
    return PaymentManager(trial_manager=trial_manager, clock=clock)

class TestPaymentManager:
    """Pagamentos em memória (Redis indisponível)"""

    @pytest.mark.asyncio
    async def test_create_subscription_payment(self, payment_manager, phone_number, clock):
        payment = await payment_manager.create_subscription_payment(phone_number, "Mama Cass Kitchen")

        assert payment.status == PaymentStatus.PENDING
        assert payment.amount == settings.subscription_amount
        assert payment.currency == settings.subscription_currency
        assert payment.payment_method == "flutterwave"
        assert payment.expires_at == clock.now + timedelta(days=settings.payment_expiry_days)
        assert await payment_manager.get_payment(payment.payment_id) == payment

    @pytest.mark.asyncio
    async def test_process_payment_converts_trial(self, payment_manager, trial_manager, phone_number, clock):
        await trial_manager.start_trial(phone_number, "Mama Cass Kitchen")
        payment = await payment_manager.create_subscription_payment(phone_number, "Mama Cass Kitchen")
        clock.advance(hours=1)

        processed = await payment_manager.process_payment(payment.payment_id, "TXN_1")

        assert processed.status == PaymentStatus.COMPLETED
        assert processed.transaction_id == "TXN_1"
        assert processed.paid_at == clock.now

        trial = await trial_manager.get_trial(phone_number)
        assert trial.trial_status == TrialRecordStatus.CONVERTED
        assert trial.conversion_date == clock.now
        assert await payment_manager.get_payment_by_transaction_id("TXN_1") == processed

    @pytest.mark.asyncio
    async def test_process_is_idempotent_and_refuses_failed(self, payment_manager, phone_number):
        done = await payment_manager.create_subscription_payment(phone_number, "Mama Cass Kitchen")
        await payment_manager.process_payment(done.payment_id, "TXN_1")
        failed = await payment_manager.create_subscription_payment(phone_number, "Mama Cass Kitchen")
        await payment_manager.fail_payment(failed.payment_id)

        assert (await payment_manager.process_payment(done.payment_id, "TXN_2")).transaction_id == "TXN_1"
        assert await payment_manager.process_payment(failed.payment_id, "TXN_3") is None
        assert await payment_manager.process_payment("missing", "TXN_4") is None

    @pytest.mark.asyncio
    async def test_expire_old_payments(self, payment_manager, clock):
        old = await payment_manager.create_subscription_payment("+2348011111111", "Old Shop")
        clock.advance(days=20)
        await payment_manager.create_subscription_payment("+2348022222222", "New Shop")
        clock.advance(days=11)

        assert await payment_manager.expire_old_payments() == 1
        assert (await payment_manager.get_payment(old.payment_id)).status == PaymentStatus.FAILED
        assert [p.business_name for p in await payment_manager.get_payments(PaymentStatus.PENDING)] == ["New Shop"]
        assert await payment_manager.expire_old_payments() == 0

    @pytest.mark.asyncio
    async def test_payments_by_phone_newest_first(self, payment_manager, phone_number, clock):
        first = await payment_manager.create_subscription_payment(phone_number, "Mama Cass Kitchen")
        clock.advance(days=1)
        second = await payment_manager.create_subscription_payment(phone_number, "Mama Cass Kitchen")
        await payment_manager.create_subscription_payment("+2348022222222", "Other Shop")

        payments = await payment_manager.get_payments_by_phone(phone_number)

        assert [p.payment_id for p in payments] == [second.payment_id, first.payment_id]

    @pytest.mark.asyncio
    async def test_payment_stats(self, payment_manager):
        a = await payment_manager.create_payment("+2348011111111", "Shop One", 15000)
        b = await payment_manager.create_payment("+2348022222222", "Shop Two", 10000)
        c = await payment_manager.create_payment("+2348033333333", "Shop Three", 15000)
        await payment_manager.create_payment("+2348044444444", "Shop Four", 15000)
        await payment_manager.process_payment(a.payment_id, "TXN_A")
        await payment_manager.process_payment(b.payment_id, "TXN_B")
        await payment_manager.fail_payment(c.payment_id)

        stats = await payment_manager.get_payment_stats()

        assert stats == {
            "total": 4,
            "completed": 2,
            "pending": 1,
            "failed": 1,
            "total_revenue": 25000,
            "average_payment_amount": 12500.0
        }

    @pytest.mark.asyncio
    async def test_empty_stats(self, payment_manager):
        stats = await payment_manager.get_payment_stats()

        assert stats["total"] == 0
        assert stats["average_payment_amount"] == 0.0

    @pytest.mark.asyncio
    async def test_payment_confirmation(self, payment_manager, phone_number):
        payment = await payment_manager.create_payment(phone_number, "Mama Cass Kitchen", 15000, "NGN")

        text = payment_manager.payment_confirmation(payment)

        assert "Mama Cass Kitchen is now subscribed" in text
        assert "NGN 15,000" in text

class TestPaymentManagerRedis:
    """Mesmas operações sobre o hash do Redis"""

    @pytest.fixture
    def mock_redis(self):
        client = MagicMock()
        client.hget = AsyncMock(return_value=None)
        client.hset = AsyncMock()
        client.hgetall = AsyncMock(return_value={})
        return client

    @pytest.mark.asyncio
    async def test_create_writes_hash(self, mock_redis, clock, phone_number):
        manager = PaymentManager(redis_client=mock_redis, clock=clock)

        payment = await manager.create_subscription_payment(phone_number, "Mama Cass Kitchen")

        key, field, value = mock_redis.hset.call_args.args
        assert key == PAYMENTS_KEY
        assert field == payment.payment_id
        assert Payment.model_validate_json(value) == payment

    @pytest.mark.asyncio
    async def test_reads_from_hash(self, mock_redis, clock, phone_number):
        stored = Payment(
            payment_id="abc123",
            phone_number=phone_number,
            business_name="Mama Cass Kitchen",
            amount=15000,
            created_at=clock.now,
            expires_at=clock.now + timedelta(days=30)
        )
        mock_redis.hget.return_value = stored.model_dump_json()
        mock_redis.hgetall.return_value = {b"abc123": stored.model_dump_json().encode()}
        manager = PaymentManager(redis_client=mock_redis, clock=clock)

        assert await manager.get_payment("abc123") == stored
        assert await manager.get_payments_by_phone(phone_number) == [stored]
        assert (await manager.get_payment_stats())["pending"] == 1
