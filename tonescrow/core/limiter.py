# tonescrow/core/limiter.py

import logging

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from tonescrow.core.config import settings

logger = logging.getLogger(__name__)


def key_func(request: Request) -> str:
    """
    Определяет, как идентифицировать запрос для применения лимита.
    Приоритет: ID профиля (если авторизован) -> IP-адрес.
    """
    user = getattr(request.state, "user", None)
    if user is not None and user.id:
        return str(user.id)
    return get_remote_address(request)


# Счетчики хранятся в Redis (синхронное хранилище limits); стратегия "moving-window".
# В тестах и локально лимитер отключается через RATE_LIMIT_ENABLED=false.
limiter = Limiter(
    key_func=key_func,
    storage_uri=settings.REDIS_URL,
    strategy="moving-window",
    enabled=settings.RATE_LIMIT_ENABLED,
)
