# tonescrow/services/settings.py

import logging
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from tonescrow.crud import setting as crud_setting
from tonescrow.core.config import settings as app_settings
from tonescrow.core.exceptions import MaintenanceMode, ConfigurationMissing
from tonescrow.schemas.settings import EscrowSettings, EscrowSettingsUpdate
from tonescrow.utils.ton import as_utc

logger = logging.getLogger(__name__)

# Служебные ключи, которые не входят в снимок EscrowSettings
MNEMONIC_KEY = "ton_mnemonic_encrypted"
CUSTODY_ADDRESS_KEY = "ton_custody_address"


def get(db: Session, key: str) -> str | None:
    """Чтение напрямую из таблицы, без кеша."""
    return crud_setting.get_value(db, key)


def set(db: Session, key: str, value: Any) -> None:
    """Запись одного ключа с немедленным коммитом."""
    crud_setting.set_value(db, key, _serialize(value))
    db.commit()
    logger.info(f"Setting '{key}' updated.")


def _serialize(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def get_escrow_settings(db: Session) -> EscrowSettings:
    """
    Собирает типизированный снимок настроек из таблицы `settings`.
    Отсутствующие и пустые ключи получают значения по умолчанию.
    Битое значение в одном ключе не ломает весь снимок: логируем и берем дефолт.
    """
    raw = crud_setting.get_all(db)
    known = EscrowSettings.model_fields.keys()
    values = {k: v for k, v in raw.items() if k in known and v not in (None, "")}

    try:
        return EscrowSettings.model_validate(values)
    except PydanticValidationError as e:
        bad_keys = {str(err["loc"][0]) for err in e.errors() if err.get("loc")}
        logger.error(f"Invalid values in settings table for keys {sorted(bad_keys)}, falling back to defaults for them.")
        return EscrowSettings.model_validate({k: v for k, v in values.items() if k not in bad_keys})


def update_settings(db: Session, changes: EscrowSettingsUpdate) -> EscrowSettings:
    """Частичное обновление из админки: пишем только реально переданные поля."""
    update_data = changes.model_dump(exclude_unset=True)
    for key, value in update_data.items():
        crud_setting.set_value(db, key, _serialize(value))
    db.commit()
    logger.info(f"Escrow settings updated: {sorted(update_data.keys())}")
    return get_escrow_settings(db)


def ensure_not_maintenance(escrow_settings: EscrowSettings) -> None:
    """Блокирует пользовательские операции на время техработ. Админские действия не проверяют."""
    if escrow_settings.bot_maintenance:
        raise MaintenanceMode("Service is under maintenance, please try again later.")


def get_admin_chat_ids(escrow_settings: EscrowSettings) -> list[int]:
    """Кому слать алерты: контакт из таблицы settings, затем ADMIN_CHAT_ID, затем ADMIN_TELEGRAM_IDS."""
    if escrow_settings.admin_telegram_id:
        return [escrow_settings.admin_telegram_id]
    if app_settings.ADMIN_CHAT_ID:
        return [app_settings.ADMIN_CHAT_ID]
    if app_settings.ADMIN_TELEGRAM_IDS:
        return list(app_settings.ADMIN_TELEGRAM_IDS)
    raise ConfigurationMissing("Admin contact is not configured.")


def check_maintenance_schedule(db: Session, now: datetime | None = None) -> str:
    """
    Включает режим техработ при входе в запланированное окно
    и выключает его (вместе с расписанием) после окончания окна.
    Возвращает совершенное действие: 'enabled', 'disabled' или 'none'.
    """
    now = now or datetime.now(timezone.utc)
    current = get_escrow_settings(db)

    if not current.scheduled_maintenance_enabled:
        return "none"

    start = as_utc(current.scheduled_maintenance_start)
    end = as_utc(current.scheduled_maintenance_end)
    if start is None or end is None:
        logger.warning("Scheduled maintenance is enabled but start/end is not set.")
        return "none"

    if start <= now < end and not current.bot_maintenance:
        crud_setting.set_value(db, "bot_maintenance", "true")
        db.commit()
        logger.info(f"Scheduled maintenance window started ({start.isoformat()} - {end.isoformat()}).")
        return "enabled"

    if now >= end:
        crud_setting.set_value(db, "bot_maintenance", "false")
        crud_setting.set_value(db, "scheduled_maintenance_enabled", "false")
        db.commit()
        logger.info("Scheduled maintenance window ended, maintenance mode disabled.")
        return "disabled"

    return "none"
