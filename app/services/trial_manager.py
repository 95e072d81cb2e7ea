import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import redis.asyncio as redis

from app.config.fallback_responses import FallbackResponses
from app.config.settings import settings
from app.models.trial import BusinessTrial, TrialRecordStatus
from app.utils.helpers import round_rate

logger = logging.getLogger(__name__)

TRIALS_KEY = "trials"
REMINDER_INTERVAL = timedelta(days=1)

class TrialManager:
    """Registros de trial por número de telefone, guardados num hash do Redis"""

    def __init__(
        self,
        redis_client: Optional[redis.Redis] = None,
        trial_days: int = settings.trial_duration_days,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.redis_client = redis_client
        self.trial_days = trial_days
        self.clock = clock
        self._trials_memory: Dict[str, BusinessTrial] = {}

    async def initialize(self, redis_url: str = settings.redis_url):
        if self.redis_client:
            return
        try:
            client = redis.from_url(redis_url)
            await client.ping()
            self.redis_client = client
            logger.info("Trial manager connected to Redis")
        except Exception as e:
            logger.warning(f"Redis connection failed: {e}. Trials kept in memory.")
            self.redis_client = None

    async def close(self):
        if self.redis_client:
            await self.redis_client.aclose()
            self.redis_client = None

    async def start_trial(self, phone_number: str, business_name: str, industry: Optional[str] = None) -> BusinessTrial:
        existing = await self.get_trial(phone_number)
        if existing:
            # Convertido ou expirado não volta a ser trial
            logger.info(f"Trial already {existing.trial_status.value} for {phone_number}, keeping it")
            return existing

        now = self.clock()
        trial = BusinessTrial(
            phone_number=phone_number,
            business_name=business_name,
            industry=industry,
            trial_start=now,
            trial_end=now + timedelta(days=self.trial_days),
            last_activity=now
        )
        await self._save(trial)

        logger.info(f"Created trial for {business_name} ({phone_number})")
        return trial

    async def get_trial(self, phone_number: str) -> Optional[BusinessTrial]:
        if self.redis_client:
            raw = await self.redis_client.hget(TRIALS_KEY, phone_number)
            return BusinessTrial.model_validate_json(raw) if raw else None
        return self._trials_memory.get(phone_number)

    async def record_message(self, phone_number: str) -> bool:
        trial = await self.get_trial(phone_number)
        if not trial:
            return False

        trial.messages_exchanged += 1
        trial.last_activity = self.clock()
        await self._save(trial)
        return True

    async def mark_converted(self, phone_number: str) -> Optional[BusinessTrial]:
        trial = await self.get_trial(phone_number)
        if not trial:
            return None

        trial.converted = True
        trial.conversion_date = self.clock()
        trial.trial_status = TrialRecordStatus.CONVERTED
        await self._save(trial)

        logger.info(f"Trial converted for {trial.business_name} ({phone_number})")
        return trial

    async def get_active_trials(self) -> List[BusinessTrial]:
        trials = [t for t in await self._all_trials() if t.trial_status == TrialRecordStatus.ACTIVE]
        return sorted(trials, key=lambda t: t.trial_start, reverse=True)

    async def get_expiring_trials(self, days_ahead: int = 2) -> List[BusinessTrial]:
        cutoff = self.clock() + timedelta(days=days_ahead)
        trials = [t for t in await self.get_active_trials() if t.trial_end <= cutoff]
        return sorted(trials, key=lambda t: t.trial_end)

    async def get_trials_due_reminder(self, days_ahead: int = settings.trial_reminder_days) -> List[BusinessTrial]:
        """Trials ainda ativos perto do fim, no máximo um lembrete por dia"""
        now = self.clock()
        return [
            t for t in await self.get_expiring_trials(days_ahead)
            if t.trial_end >= now and (t.last_reminder is None or now - t.last_reminder >= REMINDER_INTERVAL)
        ]

    async def mark_reminded(self, phone_number: str) -> bool:
        trial = await self.get_trial(phone_number)
        if not trial:
            return False

        trial.last_reminder = self.clock()
        await self._save(trial)
        return True

    async def expire_old_trials(self) -> List[BusinessTrial]:
        now = self.clock()
        expired = []

        for trial in await self.get_active_trials():
            if trial.trial_end < now:
                trial.trial_status = TrialRecordStatus.EXPIRED
                await self._save(trial)
                expired.append(trial)
                logger.info(f"Expired trial for {trial.business_name} ({trial.phone_number})")

        if expired:
            logger.info(f"Expired {len(expired)} trials")
        return expired

    async def get_trial_stats(self) -> Dict[str, Any]:
        trials = await self._all_trials()
        total = len(trials)
        converted = sum(1 for t in trials if t.converted)

        return {
            "total": total,
            "active": sum(1 for t in trials if t.trial_status == TrialRecordStatus.ACTIVE),
            "expired": sum(1 for t in trials if t.trial_status == TrialRecordStatus.EXPIRED),
            "converted": converted,
            "conversion_rate": round_rate((converted / total) * 100) if total else 0.0,
            "average_messages_per_trial": round_rate(
                sum(t.messages_exchanged for t in trials) / total
            ) if total else 0.0
        }

    def trial_instructions(self, business_name: str) -> str:
        return FallbackResponses.trial_instructions(business_name, self.trial_days)

    def trial_reminder(self, trial: BusinessTrial) -> str:
        days_left = trial.days_left(self.clock())

        if days_left <= 0:
            return f"Hi {trial.business_name}! Your trial has ended. Reply YES to keep your automation running!"
        if days_left == 1:
            return f"Hi {trial.business_name}! Your trial ends tomorrow. Reply YES to keep your automation!"
        return f"Hi {trial.business_name}! Your trial ends in {days_left} days. How's the automation working for you?"

    async def _save(self, trial: BusinessTrial):
        if self.redis_client:
            await self.redis_client.hset(TRIALS_KEY, trial.phone_number, trial.model_dump_json())
        else:
            self._trials_memory[trial.phone_number] = trial

    async def _all_trials(self) -> List[BusinessTrial]:
        if self.redis_client:
            raw = await self.redis_client.hgetall(TRIALS_KEY)
            return [BusinessTrial.model_validate_json(value) for value in raw.values()]
        return list(self._trials_memory.values())
