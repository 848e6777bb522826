# tonescrow/services/auth.py

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

from fastapi import HTTPException, status
from jose import jwt
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tonescrow.core.config import settings
from tonescrow.crud import profile as crud_profile
from tonescrow.models.profile import Profile
from tonescrow.schemas.profile import Token
from tonescrow.services import referral as referral_service
from tonescrow.utils.telegram import validate_init_data
from tonescrow.utils.ton import generate_code

logger = logging.getLogger(__name__)

REFERRAL_START_PREFIX = "ref_"


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Создает JWT токен."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def _new_referral_code(db: Session) -> str:
    code = generate_code(8)
    while crud_profile.get_profile_by_referral_code(db, code):
        code = generate_code(8)
    return code


def register_or_get_profile(db: Session, user_info: Dict[str, Any], referral_code: str | None = None) -> Profile:
    """
    Находит профиль по telegram_id или создает новый.
    Реферальный код учитывается только при первой регистрации.
    """
    telegram_id = user_info.get("id")
    if not telegram_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Telegram ID is missing in initData")

    profile = crud_profile.get_profile_by_telegram_id(db, telegram_id)
    if profile is not None:
        username = user_info.get("username")
        if username and username != profile.telegram_username:
            profile.telegram_username = username
            db.commit()
        return profile

    logger.info(f"Profile with telegram_id {telegram_id} not found. Creating new profile.")
    try:
        profile = crud_profile.create_profile(
            db, telegram_id=telegram_id, username=user_info.get("username"),
            referral_code=_new_referral_code(db),
        )
        db.commit()
    except IntegrityError:
        # Параллельный вход того же пользователя: профиль уже создан другим запросом
        db.rollback()
        return crud_profile.get_profile_by_telegram_id(db, telegram_id)

    if referral_code:
        referral_service.register_referral(db, profile, referral_code)
    return profile


def authenticate_telegram_user(db: Session, init_data: str, referral_code: str | None = None) -> Token:
    """
    Функция для эндпоинта /auth/telegram.
    Валидирует initData, регистрирует/находит профиль и возвращает JWT.
    """
    is_valid, data = validate_init_data(init_data)
    if not is_valid:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid Telegram initData")

    user_info = data.get("user") or {}
    if not referral_code:
        start_param = data.get("start_param") or ""
        if start_param.startswith(REFERRAL_START_PREFIX):
            referral_code = start_param[len(REFERRAL_START_PREFIX):]

    profile = register_or_get_profile(db, user_info, referral_code)

    access_token = create_access_token(
        data={"sub": str(profile.id), "tg_id": str(profile.telegram_id)},
        expires_delta=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
    )
    return Token(access_token=access_token)
