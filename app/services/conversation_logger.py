import logging
from collections import defaultdict, deque
from datetime import datetime, timedelta
from typing import Any, Callable, Deque, Dict, List, Optional

import redis.asyncio as redis

from app.config.settings import settings
from app.models.message import ConversationLog

logger = logging.getLogger(__name__)

GLOBAL_LOG_KEY = "conversations:log"
PHONE_LOG_PREFIX = "conversations:phone:"
PHONE_LOG_LIMIT = 200

class ConversationLogger:
    """Registro durável de cada turno (Redis; memória quando o Redis não está disponível)"""

    def __init__(
        self,
        redis_client: Optional[redis.Redis] = None,
        max_entries: int = settings.conversation_log_limit,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.redis_client = redis_client
        self.max_entries = max_entries
        self.clock = clock
        self._memory_log: Deque[ConversationLog] = deque(maxlen=max_entries)
        self._memory_by_phone: Dict[str, Deque[ConversationLog]] = defaultdict(
            lambda: deque(maxlen=PHONE_LOG_LIMIT)
        )

    async def initialize(self, redis_url: str = settings.redis_url):
        if self.redis_client:
            return
        try:
            client = redis.from_url(redis_url)
            await client.ping()
            self.redis_client = client
            logger.info("Conversation logger connected to Redis")
        except Exception as e:
            logger.warning(f"Redis connection failed: {e}. Conversation log kept in memory.")
            self.redis_client = None

    async def close(self):
        if self.redis_client:
            await self.redis_client.aclose()
            self.redis_client = None

    async def log_conversation(self, entry: ConversationLog) -> bool:
        try:
            await self._store(entry)
            logger.info(f"Conversation logged for session: {entry.session_id}")
            return True
        except redis.RedisError as e:
            logger.error(f"Error logging conversation for {entry.session_id}: {e}")
            return False

    async def log_error(
        self,
        session_id: str,
        phone_number: str,
        message_sid: str,
        user_message: str,
        error_message: str
    ) -> bool:
        entry = ConversationLog(
            session_id=session_id,
            phone_number=phone_number,
            message_sid=message_sid,
            user_message=user_message,
            success=False,
            error_message=error_message,
            timestamp=self.clock()
        )
        try:
            await self._store(entry)
            logger.info(f"Error logged for session: {session_id}")
            return True
        except redis.RedisError as e:
            logger.error(f"Error logging failure for {session_id}: {e}")
            return False

    async def get_conversation_history(self, phone_number: str, limit: int = 50) -> List[ConversationLog]:
        """Entradas mais recentes primeiro"""
        if limit <= 0:
            return []
        if self.redis_client:
            raw = await self.redis_client.lrange(f"{PHONE_LOG_PREFIX}{phone_number}", 0, limit - 1)
            return [ConversationLog.model_validate_json(item) for item in raw]

        entries = list(self._memory_by_phone.get(phone_number, []))
        return list(reversed(entries))[:limit]

    async def get_system_metrics(self, window: timedelta = timedelta(hours=24)) -> Dict[str, Any]:
        now = self.clock()
        since = now - window
        entries = [e for e in await self._recent_entries() if e.timestamp >= since]

        timed = [e.response_time_ms for e in entries if e.response_time_ms is not None]
        successes = sum(1 for e in entries if e.success)
        success_rate = (successes / len(entries)) * 100 if entries else 0.0

        return {
            "daily_conversations": len(entries),
            "average_response_time": sum(timed) / len(timed) if timed else 0,
            "success_rate": round(success_rate, 2),
            "timestamp": now.isoformat()
        }

    async def _store(self, entry: ConversationLog):
        if self.redis_client:
            data = entry.model_dump_json()
            phone_key = f"{PHONE_LOG_PREFIX}{entry.phone_number}"
            async with self.redis_client.pipeline(transaction=False) as pipe:
                pipe.lpush(GLOBAL_LOG_KEY, data)
                pipe.ltrim(GLOBAL_LOG_KEY, 0, self.max_entries - 1)
                pipe.lpush(phone_key, data)
                pipe.ltrim(phone_key, 0, PHONE_LOG_LIMIT - 1)
                await pipe.execute()
        else:
            self._memory_log.append(entry)
            self._memory_by_phone[entry.phone_number].append(entry)

    async def _recent_entries(self) -> List[ConversationLog]:
        if self.redis_client:
            raw = await self.redis_client.lrange(GLOBAL_LOG_KEY, 0, self.max_entries - 1)
            return [ConversationLog.model_validate_json(item) for item in raw]
        return list(self._memory_log)
