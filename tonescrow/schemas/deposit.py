# tonescrow/schemas/deposit.py
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field, HttpUrl
from typing import Literal, Optional


class DepositCreate(BaseModel):
    amount: Decimal = Field(..., gt=0)
    currency: Literal["TON", "MMK"] = "TON"
    payment_method: Literal["TON", "KBZPAY", "WAVEPAY"] = "TON"
    # Обязателен для MMK: скриншот перевода
    screenshot_url: Optional[HttpUrl] = None


class Deposit(BaseModel):
    id: int
    profile_id: int
    amount: Decimal
    currency: str
    unique_code: str
    status: str
    payment_method: str
    screenshot_url: Optional[str] = None
    ton_tx_hash: Optional[str] = None
    admin_notes: Optional[str] = None
    expires_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DepositInstructions(BaseModel):
    deposit: Deposit
    pay_to_address: Optional[str] = None
    memo: Optional[str] = None
