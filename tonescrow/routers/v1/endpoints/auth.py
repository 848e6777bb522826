# tonescrow/routers/v1/endpoints/auth.py
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from tonescrow.core.limiter import limiter
from tonescrow.dependencies import get_db
from tonescrow.schemas.profile import TelegramLoginData, Token
from tonescrow.services.auth import authenticate_telegram_user

router = APIRouter()


@router.get("/")
def read_root():
    return {"status": "ok"}


@router.post("/auth/telegram", response_model=Token)
@limiter.limit("5/minute")
def login_via_telegram(
    request: Request,
    login_data: TelegramLoginData,
    db: Session = Depends(get_db)
):
    """
    Аутентифицирует пользователя с помощью Telegram InitData.
    Защищено лимитом в 5 запросов в минуту с одного IP.
    """
    return authenticate_telegram_user(db, login_data.init_data, login_data.referral_code)
