# tonescrow/core/redis.py
import redis.asyncio as redis
from tonescrow.core.config import settings

# Используется для блокировки при старте воркеров и как хранилище лимитера.
# decode_responses=True автоматически декодирует ответы из байтов в строки
redis_client = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)
