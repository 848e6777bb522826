# tonescrow/dependencies.py

import logging
from typing import Iterator
from contextlib import contextmanager

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from jose import JWTError, jwt

from tonescrow.core.config import settings
from tonescrow.db.session import SessionLocal
from tonescrow.models.profile import Profile
from tonescrow.schemas.settings import EscrowSettings
from tonescrow.services import settings as settings_service

# --- Инициализация логгера ---
logger = logging.getLogger(__name__)

# --- Схемы аутентификации ---
strict_bearer_scheme = HTTPBearer(auto_error=True)

# --- Управление сессией БД ---
def get_db_session_instance() -> Session:
    """Создает и возвращает экземпляр сессии БД."""
    return SessionLocal()

def get_db() -> Iterator[Session]:
    """
    Основная зависимость FastAPI для получения сессии БД.
    Это генератор, который корректно работает с `Depends`.
    """
    db = get_db_session_instance()
    try:
        yield db
    finally:
        db.close()

@contextmanager
def get_db_context() -> Iterator[Session]:
    """
    Контекстный менеджер для получения сессии БД вне FastAPI (для фоновых задач и скриптов).
    """
    db = get_db_session_instance()
    try:
        yield db
    finally:
        db.close()


def get_current_escrow_settings(db: Session = Depends(get_db)) -> EscrowSettings:
    """Снимок бизнес-настроек на время одного запроса."""
    return settings_service.get_escrow_settings(db)


# --- Зависимости аутентификации и авторизации ---

def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(strict_bearer_scheme),
    db: Session = Depends(get_db)
) -> Profile:
    """
    ОБЯЗАТЕЛЬНАЯ зависимость.
    Требует валидный токен. Если его нет или он невалиден - вызывает ошибку 401.
    Блокировку здесь не проверяем: заблокированный пользователь видит свой профиль,
    а денежные операции отклоняет сервисный слой.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(credentials.credentials, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        profile_id: str = payload.get("sub")
        if profile_id is None:
            logger.warning("Token payload is missing 'sub' (profile_id).")
            raise credentials_exception
    except JWTError as e:
        logger.warning(f"JWT Error during token decoding: {e}")
        raise credentials_exception

    profile = db.query(Profile).filter(Profile.id == int(profile_id)).first()
    if profile is None:
        logger.warning(f"Profile with ID {profile_id} from token not found in DB.")
        raise credentials_exception
    request.state.user = profile
    logger.debug(f"Authenticated profile ID: {profile.id} (TG ID: {profile.telegram_id})")
    return profile


def get_admin_user(current_user: Profile = Depends(get_current_user)) -> Profile:
    """
    Зависимость для защиты админских эндпоинтов.
    Проверяет, входит ли telegram_id текущего пользователя в ADMIN_TELEGRAM_IDS.
    """
    if current_user.telegram_id not in settings.ADMIN_TELEGRAM_IDS:
        logger.warning(f"Permission denied for user TG ID {current_user.telegram_id}: not an admin.")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You do not have permission to access this resource."
        )

    logger.info(f"Admin access GRANTED for user with TG ID: {current_user.telegram_id}.")
    return current_user
