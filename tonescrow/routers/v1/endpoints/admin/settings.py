# tonescrow/routers/v1/endpoints/admin/settings.py

import logging
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from tonescrow.dependencies import get_db
from tonescrow.schemas.settings import EscrowSettings, EscrowSettingsUpdate
from tonescrow.services import settings as settings_service

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=EscrowSettings)
def get_escrow_settings_endpoint(db: Session = Depends(get_db)):
    """[АДМИН] Текущие бизнес-настройки."""
    return settings_service.get_escrow_settings(db)


@router.patch("", response_model=EscrowSettings)
def update_escrow_settings_endpoint(data: EscrowSettingsUpdate, db: Session = Depends(get_db)):
    """
    [АДМИН] Обновляет бизнес-настройки.
    Можно передавать только те поля, которые нужно изменить.
    """
    return settings_service.update_settings(db, data)
