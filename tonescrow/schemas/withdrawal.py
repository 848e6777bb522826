# tonescrow/schemas/withdrawal.py
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field
from typing import List, Literal, Optional


class WithdrawalCreate(BaseModel):
    amount: Decimal = Field(..., gt=0)
    currency: Literal["TON", "MMK"] = "TON"
    payment_method: Literal["TON", "KBZPAY", "WAVEPAY"] = "TON"
    destination: str = Field(..., min_length=1, max_length=128)


class Withdrawal(BaseModel):
    id: int
    profile_id: int
    amount: Decimal
    fee: Decimal
    payout_amount: Decimal
    currency: str
    destination: str
    payment_method: str
    status: str
    admin_notes: Optional[str] = None
    tx_reference: Optional[str] = None
    needs_review: bool
    processed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AutoWithdrawReport(BaseModel):
    """Итог одного прохода автовывода."""
    skipped: bool = False
    reason: Optional[str] = None
    processed: int = 0
    failed: int = 0
    needs_review: int = 0
    errors: List[str] = []
