import pytest
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

from app.models.trial import BusinessTrial, TrialRecordStatus
from app.services.trial_manager import TrialManager, TRIALS_KEY

@pytest.fixture
def trial_manager(clock):
    return TrialManager(trial_days=7, clock=clock)

class TestTrialManager:
    """Trials em memória (Redis indisponível)"""

    @pytest.mark.asyncio
    async def test_start_trial(self, trial_manager, phone_number, clock):
        trial = await trial_manager.start_trial(phone_number, "Mama Cass Kitchen", "restaurant")

        assert trial.trial_status == TrialRecordStatus.ACTIVE
        assert trial.trial_start == clock.now
        assert trial.trial_end == clock.now + timedelta(days=7)
        assert trial.converted is False
        assert await trial_manager.get_trial(phone_number) == trial

    @pytest.mark.asyncio
    async def test_active_trial_is_kept(self, trial_manager, phone_number, clock):
        first = await trial_manager.start_trial(phone_number, "Mama Cass Kitchen")
        clock.advance(days=1)

        second = await trial_manager.start_trial(phone_number, "Another Name")

        assert second.business_name == "Mama Cass Kitchen"
        assert second.trial_start == first.trial_start

    @pytest.mark.asyncio
    async def test_record_message(self, trial_manager, phone_number, clock):
        await trial_manager.start_trial(phone_number, "Mama Cass Kitchen")
        clock.advance(hours=2)

        assert await trial_manager.record_message(phone_number) is True
        assert await trial_manager.record_message("+2340000000000") is False

        trial = await trial_manager.get_trial(phone_number)
        assert trial.messages_exchanged == 1
        assert trial.last_activity == clock.now

    @pytest.mark.asyncio
    async def test_expire_old_trials(self, trial_manager, clock):
        await trial_manager.start_trial("+2348011111111", "Old Shop")
        clock.advance(days=5)
        await trial_manager.start_trial("+2348022222222", "New Shop")
        clock.advance(days=3)

        expired = await trial_manager.expire_old_trials()

        assert [t.business_name for t in expired] == ["Old Shop"]
        assert (await trial_manager.get_trial("+2348011111111")).trial_status == TrialRecordStatus.EXPIRED
        assert [t.business_name for t in await trial_manager.get_active_trials()] == ["New Shop"]

    @pytest.mark.asyncio
    async def test_expired_trial_is_not_restarted(self, trial_manager, phone_number, clock):
        first = await trial_manager.start_trial(phone_number, "Mama Cass Kitchen")
        clock.advance(days=8)
        await trial_manager.expire_old_trials()

        trial = await trial_manager.start_trial(phone_number, "Mama Cass Kitchen")

        assert trial.trial_status == TrialRecordStatus.EXPIRED
        assert trial.trial_start == first.trial_start

    @pytest.mark.asyncio
    async def test_converted_trial_is_kept(self, trial_manager, phone_number, clock):
        await trial_manager.start_trial(phone_number, "Mama Cass Kitchen")
        await trial_manager.mark_converted(phone_number)
        clock.advance(hours=2)

        trial = await trial_manager.start_trial(phone_number, "Other Biz")

        assert trial.trial_status == TrialRecordStatus.CONVERTED
        assert trial.business_name == "Mama Cass Kitchen"
        assert (await trial_manager.get_trial(phone_number)).converted is True

    @pytest.mark.asyncio
    async def test_expiring_trials(self, trial_manager, clock):
        await trial_manager.start_trial("+2348011111111", "Old Shop")
        clock.advance(days=4)
        await trial_manager.start_trial("+2348022222222", "New Shop")
        clock.advance(days=2)

        expiring = await trial_manager.get_expiring_trials(days_ahead=2)

        assert [t.business_name for t in expiring] == ["Old Shop"]

    @pytest.mark.asyncio
    async def test_reminder_due_once_a_day(self, trial_manager, phone_number, clock):
        await trial_manager.start_trial(phone_number, "Mama Cass Kitchen")
        assert await trial_manager.get_trials_due_reminder(days_ahead=2) == []

        clock.advance(days=5, hours=12)
        assert [t.phone_number for t in await trial_manager.get_trials_due_reminder(days_ahead=2)] == [phone_number]

        assert await trial_manager.mark_reminded(phone_number) is True
        assert (await trial_manager.get_trial(phone_number)).last_reminder == clock.now
        assert await trial_manager.get_trials_due_reminder(days_ahead=2) == []

        clock.advance(days=1)
        assert len(await trial_manager.get_trials_due_reminder(days_ahead=2)) == 1

    @pytest.mark.asyncio
    async def test_no_reminder_for_ended_or_converted_trials(self, trial_manager, clock):
        await trial_manager.start_trial("+2348011111111", "Old Shop")
        await trial_manager.start_trial("+2348022222222", "Paid Shop")
        await trial_manager.mark_converted("+2348022222222")
        clock.advance(days=7, hours=1)

        assert await trial_manager.get_trials_due_reminder(days_ahead=2) == []
        assert await trial_manager.mark_reminded("+2340000000000") is False

    @pytest.mark.asyncio
    async def test_mark_converted(self, trial_manager, phone_number, clock):
        await trial_manager.start_trial(phone_number, "Mama Cass Kitchen")
        clock.advance(days=3)

        trial = await trial_manager.mark_converted(phone_number)

        assert trial.converted is True
        assert trial.conversion_date == clock.now
        assert trial.trial_status == TrialRecordStatus.CONVERTED
        assert await trial_manager.mark_converted("+2340000000000") is None

    @pytest.mark.asyncio
    async def test_trial_stats(self, trial_manager):
        await trial_manager.start_trial("+2348011111111", "Shop One")
        await trial_manager.start_trial("+2348022222222", "Shop Two")
        await trial_manager.start_trial("+2348033333333", "Shop Three")
        await trial_manager.record_message("+2348011111111")
        await trial_manager.record_message("+2348011111111")
        await trial_manager.mark_converted("+2348022222222")

        stats = await trial_manager.get_trial_stats()

        assert stats["total"] == 3
        assert stats["active"] == 2
        assert stats["converted"] == 1
        assert stats["expired"] == 0
        assert stats["conversion_rate"] == 33.33
        assert stats["average_messages_per_trial"] == 0.67

    @pytest.mark.asyncio
    async def test_empty_stats(self, trial_manager):
        stats = await trial_manager.get_trial_stats()

        assert stats["total"] == 0
        assert stats["conversion_rate"] == 0.0

    @pytest.mark.asyncio
    async def test_trial_reminder(self, trial_manager, phone_number, clock):
        trial = await trial_manager.start_trial(phone_number, "Mama Cass Kitchen")

        assert "ends in 7 days" in trial_manager.trial_reminder(trial)

        clock.advance(days=6, hours=12)
        assert "ends tomorrow" in trial_manager.trial_reminder(trial)

        clock.advance(days=1)
        assert "has ended" in trial_manager.trial_reminder(trial)

    def test_trial_instructions(self, trial_manager):
        text = trial_manager.trial_instructions("Mama Cass Kitchen")

        assert "Welcome Mama Cass Kitchen" in text
        assert "Your trial ends in 7 days" in text

class TestTrialManagerRedis:
    """Mesmas operações sobre o hash do Redis"""

    @pytest.fixture
    def mock_redis(self):
        client = MagicMock()
        client.hget = AsyncMock(return_value=None)
        client.hset = AsyncMock()
        client.hgetall = AsyncMock(return_value={})
        return client

    @pytest.mark.asyncio
    async def test_start_trial_writes_hash(self, mock_redis, clock, phone_number):
        manager = TrialManager(redis_client=mock_redis, clock=clock)

        trial = await manager.start_trial(phone_number, "Mama Cass Kitchen")

        mock_redis.hget.assert_awaited_once_with(TRIALS_KEY, phone_number)
        key, field, value = mock_redis.hset.call_args.args
        assert key == TRIALS_KEY
        assert field == phone_number
        assert BusinessTrial.model_validate_json(value) == trial

    @pytest.mark.asyncio
    async def test_reads_from_hash(self, mock_redis, clock, phone_number):
        stored = BusinessTrial(
            phone_number=phone_number,
            business_name="Mama Cass Kitchen",
            trial_start=clock.now,
            trial_end=clock.now + timedelta(days=7)
        )
        mock_redis.hget.return_value = stored.model_dump_json()
        mock_redis.hgetall.return_value = {phone_number.encode(): stored.model_dump_json().encode()}
        manager = TrialManager(redis_client=mock_redis, clock=clock)

        assert await manager.get_trial(phone_number) == stored
        assert [t.phone_number for t in await manager.get_active_trials()] == [phone_number]
