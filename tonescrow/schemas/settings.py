# tonescrow/schemas/settings.py
from decimal import Decimal
from datetime import datetime
from pydantic import BaseModel, Field, model_validator
from typing import Literal, Optional


class EscrowSettings(BaseModel):
    """
    Снимок бизнес-настроек на момент начала операции.
    Передается в settle()/process_automated_withdrawal() явно: ставки внутри
    операции не перечитываются, даже если админ поменяет их параллельно.
    """
    commission_rate: Decimal = Decimal("3")
    referral_l1_rate: Decimal = Decimal("5")
    referral_l2_rate: Decimal = Decimal("3")
    # Если не задана, берется commission_rate
    withdrawal_fee_rate: Optional[Decimal] = None

    min_withdrawal_ton: Decimal = Decimal("1")
    min_withdrawal_mmk: Decimal = Decimal("5000")
    withdrawal_mode: Literal["manual", "auto"] = "manual"

    transaction_expiry_minutes: int = 60
    deposit_expiry_minutes: int = 60
    auto_confirm_hours: int = 72

    ton_enabled: bool = True
    kbzpay_enabled: bool = True
    wavepay_enabled: bool = True

    bot_maintenance: bool = False
    scheduled_maintenance_enabled: bool = False
    scheduled_maintenance_start: Optional[datetime] = None
    scheduled_maintenance_end: Optional[datetime] = None

    admin_telegram_id: Optional[int] = None
    admin_ton_wallet: Optional[str] = None

    @model_validator(mode="after")
    def fill_withdrawal_fee_rate(self):
        if self.withdrawal_fee_rate is None:
            self.withdrawal_fee_rate = self.commission_rate
        return self

    def min_withdrawal(self, currency: str) -> Decimal:
        return self.min_withdrawal_mmk if currency == "MMK" else self.min_withdrawal_ton

    def is_method_enabled(self, method: str) -> bool:
        return {
            "TON": self.ton_enabled,
            "KBZPAY": self.kbzpay_enabled,
            "WAVEPAY": self.wavepay_enabled,
        }.get(method, False)


class EscrowSettingsUpdate(BaseModel):
    """
    Схема для частичного обновления настроек.
    Все поля опциональны.
    """
    commission_rate: Optional[Decimal] = Field(None, ge=0, le=50)
    referral_l1_rate: Optional[Decimal] = Field(None, ge=0, le=50)
    referral_l2_rate: Optional[Decimal] = Field(None, ge=0, le=50)
    withdrawal_fee_rate: Optional[Decimal] = Field(None, ge=0, le=50)
    min_withdrawal_ton: Optional[Decimal] = Field(None, gt=0)
    min_withdrawal_mmk: Optional[Decimal] = Field(None, gt=0)
    withdrawal_mode: Optional[Literal["manual", "auto"]] = None
    transaction_expiry_minutes: Optional[int] = Field(None, ge=1)
    deposit_expiry_minutes: Optional[int] = Field(None, ge=1)
    auto_confirm_hours: Optional[int] = Field(None, ge=1)
    ton_enabled: Optional[bool] = None
    kbzpay_enabled: Optional[bool] = None
    wavepay_enabled: Optional[bool] = None
    bot_maintenance: Optional[bool] = None
    scheduled_maintenance_enabled: Optional[bool] = None
    scheduled_maintenance_start: Optional[datetime] = None
    scheduled_maintenance_end: Optional[datetime] = None
    admin_telegram_id: Optional[int] = None
    admin_ton_wallet: Optional[str] = None
