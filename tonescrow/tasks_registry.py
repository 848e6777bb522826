# tonescrow/tasks_registry.py

from tonescrow.dependencies import get_db_context
from tonescrow.services import deposit as deposit_service
from tonescrow.services import escrow as escrow_service
from tonescrow.services import settings as settings_service
from tonescrow.services import ton_monitor
from tonescrow.services import withdrawal as withdrawal_service

# --- "Обертки": каждая задача открывает собственную сессию БД ---
# Все задачи идемпотентны и безопасны при параллельном запуске (условные UPDATE).

def run_expire_transactions() -> int:
    with get_db_context() as db:
        return escrow_service.expire_transactions(db)

def run_expire_deposits() -> int:
    with get_db_context() as db:
        return deposit_service.expire_deposits(db)

def run_auto_confirm_transactions() -> dict:
    with get_db_context() as db:
        escrow_settings = settings_service.get_escrow_settings(db)
        return escrow_service.auto_confirm_transactions(db, escrow_settings)

async def run_auto_withdraw() -> dict:
    with get_db_context() as db:
        report = await withdrawal_service.auto_withdraw_task(db)
        return report.model_dump()

async def run_ton_monitor() -> dict:
    with get_db_context() as db:
        return await ton_monitor.run_ton_monitor(db)

def run_check_maintenance_schedule() -> str:
    with get_db_context() as db:
        return settings_service.check_maintenance_schedule(db)


# --- Словарь-реестр всех задач, доступных для ручного запуска ---
# Ключ - уникальное имя задачи, которое будет использоваться в API.
# 'function' - сама функция для вызова.
# 'description' - описание для отображения в админке.
# 'is_async' - флаг, чтобы вызывающий код знал, как запускать задачу.

TASKS = {
    "expire_transactions": {
        "function": run_expire_transactions,
        "description": "Отменяет неоплаченные сделки, у которых истекло окно оплаты.",
        "is_async": False,
    },
    "expire_deposits": {
        "function": run_expire_deposits,
        "description": "Помечает просроченные заявки на пополнение как expired.",
        "is_async": False,
    },
    "auto_confirm_transactions": {
        "function": run_auto_confirm_transactions,
        "description": "Автоматически подтверждает отправленные товары, если покупатель молчит дольше auto_confirm_hours.",
        "is_async": False,
    },
    "auto_withdraw": {
        "function": run_auto_withdraw,
        "description": "Обрабатывает пачку pending TON-выводов через кастодиальный кошелек (только в режиме auto).",
        "is_async": True,
    },
    "ton_monitor": {
        "function": run_ton_monitor,
        "description": "Проверяет входящие TON-переводы и подтверждает оплаты сделок и депозиты.",
        "is_async": True,
    },
    "check_maintenance_schedule": {
        "function": run_check_maintenance_schedule,
        "description": "Включает или выключает режим обслуживания по расписанию.",
        "is_async": False,
    },
}

# Отдельная функция для получения списка задач для API
def get_tasks_list():
    return [
        {"task_name": name, "description": data["description"]}
        for name, data in TASKS.items()
    ]
