# tonescrow/schemas/profile.py
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field
from typing import Optional


# Схема для данных, которые мы получаем от фронтенда
class TelegramLoginData(BaseModel):
    init_data: str # Та самая строка initData от Telegram
    referral_code: Optional[str] = None

# Схема для ответа с токеном
class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class Profile(BaseModel):
    id: int
    telegram_id: int
    telegram_username: str | None = None
    ton_wallet_address: str | None = None
    balance: Decimal
    balance_mmk: Decimal
    is_blocked: bool
    referral_code: str | None = None
    total_referral_earnings: Decimal
    avg_rating: Decimal = Decimal("0")
    total_ratings: int = 0

    class Config:
        from_attributes = True


class WalletAddressUpdate(BaseModel):
    ton_wallet_address: str = Field(..., min_length=48, max_length=70)


class ReferralInfo(BaseModel):
    referral_code: str | None
    referral_link: str
    level_1_count: int
    level_2_count: int
    total_earned: Decimal


class ReferralEarning(BaseModel):
    id: int
    from_profile_id: int
    withdrawal_id: int
    level: int
    amount: Decimal
    currency: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
