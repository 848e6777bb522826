# tonescrow/main.py

import asyncio
import logging
import traceback
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

# Конфигурация и ядро
from tonescrow.core.config import settings as config
from tonescrow.core.exceptions import EscrowError
from tonescrow.core.limiter import limiter
from tonescrow.core.logging_config import setup_logging
from tonescrow.core.redis import redis_client

# Все модели должны быть импортированы до первого запроса (relationship по строковым именам)
from tonescrow.models import deposit, product, profile, referral, setting, transaction, withdrawal  # noqa: F401

from tonescrow.bot.core import bot
from tonescrow.bot.services import notification as bot_notification_service
from tonescrow.routers.v1.api import api_router as api_v1_router
from tonescrow import tasks_registry

# --- Инициализация ---
logger = logging.getLogger(__name__)
scheduler = AsyncIOScheduler()

STARTUP_LOCK_KEY = "tonescrow_startup_lock"


# --- Обработчики ошибок ---
async def escrow_error_handler(request: Request, exc: EscrowError):
    """Доменные ошибки -> структурированный ответ {detail, code, ...}."""
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def unhandled_exception_handler(request: Request, exc: Exception):
    """
    Глобальный обработчик для всех необработанных исключений.
    Логирует ошибку и отправляет уведомление администраторам.
    """
    logger.critical(f"Unhandled exception for request: {request.method} {request.url}", exc_info=True)

    error_details = "".join(traceback.format_exception(exc))[-3000:]
    bot_notification_service.notify_admins(
        "Critical API error",
        f"{request.method} {request.url}\n\n{error_details}",
    )

    return JSONResponse(
        status_code=500,
        content={"detail": "Internal Server Error. The administrator has been notified."},
    )


def _schedule_jobs() -> None:
    intervals = {
        "ton_monitor": config.TON_MONITOR_INTERVAL_SECONDS,
        "auto_withdraw": config.AUTO_WITHDRAW_INTERVAL_SECONDS,
        "expire_transactions": config.EXPIRY_SWEEP_INTERVAL_SECONDS,
        "expire_deposits": config.EXPIRY_SWEEP_INTERVAL_SECONDS,
        "auto_confirm_transactions": config.EXPIRY_SWEEP_INTERVAL_SECONDS,
        "check_maintenance_schedule": config.MAINTENANCE_CHECK_INTERVAL_SECONDS,
    }
    for name, seconds in intervals.items():
        # max_instances=1: следующий запуск не стартует, пока не закончился предыдущий
        scheduler.add_job(
            tasks_registry.TASKS[name]["function"], "interval", seconds=seconds,
            id=name, max_instances=1, coalesce=True,
        )


# --- Lifespan Manager (запуск и остановка приложения) ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("Application lifespan startup...")
    bot_notification_service.bind_event_loop(asyncio.get_running_loop())

    is_main_worker = False
    if config.SCHEDULER_ENABLED:
        # Блокировка через Redis: планировщик запускается только в одном воркере
        is_main_worker = await redis_client.set(STARTUP_LOCK_KEY, "1", ex=60, nx=True)

    if is_main_worker:
        logger.info("This is the main worker. Starting scheduler...")
        if not scheduler.running:
            _schedule_jobs()
            scheduler.start()
            logger.info("Scheduler started with background jobs.")
    else:
        logger.info("Scheduler is disabled or owned by another worker.")

    yield

    if is_main_worker:
        logger.info("Main worker shutting down...")
        if scheduler.running:
            scheduler.shutdown()
            logger.info("Scheduler shut down.")
        await redis_client.delete(STARTUP_LOCK_KEY)

    bot_notification_service.bind_event_loop(None)
    await bot.session.close()


# --- Создание FastAPI приложения ---
app = FastAPI(
    title="TON Escrow Marketplace",
    description="Backend for a Telegram mini-app escrow marketplace settled in TON and MMK",
    version="0.1.0",
    lifespan=lifespan
)

app.state.limiter = limiter

origins = [
    "http://localhost",
    "http://localhost:3000",
    "http://localhost:5173",
    "https://web.telegram.org",
]
if config.MINI_APP_URL:
    origins.append(config.MINI_APP_URL)

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Регистрация обработчиков исключений ---
app.add_exception_handler(EscrowError, escrow_error_handler)
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

# --- Подключение роутеров FastAPI ---
api_router = APIRouter(prefix="/api")
api_router.include_router(api_v1_router)
app.include_router(api_router)
