# tonescrow/schemas/admin.py
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field
from typing import Generic, List, Literal, Optional, TypeVar

DataType = TypeVar('DataType')


class PaginatedResponse(BaseModel, Generic[DataType]):
    """
    Универсальная Pydantic-схема для пагинированных ответов.
    """
    total_items: int
    total_pages: int
    current_page: int
    size: int
    items: List[DataType]


# --- Действия над выводами ---
class ApproveWithdrawalRequest(BaseModel):
    notes: Optional[str] = None
    reference: Optional[str] = Field(None, max_length=256)

class RejectRequest(BaseModel):
    notes: Optional[str] = None


# --- Споры и платежи ---
class ResolveDisputeRequest(BaseModel):
    resolution: Literal["favor_buyer", "favor_seller"]
    notes: Optional[str] = None

class ConfirmPaymentRequest(BaseModel):
    tx_hash: str = Field(..., min_length=1)

class ConfirmDepositRequest(BaseModel):
    # Если не указано, зачисляется заявленная сумма
    amount: Optional[Decimal] = Field(None, gt=0)
    notes: Optional[str] = None


# --- Пользователи ---
class BlockUserRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)

class AdjustBalanceRequest(BaseModel):
    delta: Decimal
    currency: Literal["TON", "MMK"] = "TON"
    reason: str = Field(..., min_length=1, max_length=500)

class AdminProfileListItem(BaseModel):
    id: int
    telegram_id: int
    telegram_username: str | None
    balance: Decimal
    balance_mmk: Decimal
    is_blocked: bool
    blocked_reason: str | None = None
    avg_rating: Decimal = Decimal("0")
    total_ratings: int = 0
    created_at: datetime

    class Config:
        from_attributes = True

class PaginatedAdminProfiles(PaginatedResponse[AdminProfileListItem]):
    pass


# --- Кастодиальный кошелек ---
class MnemonicSetRequest(BaseModel):
    mnemonic: str = Field(..., min_length=1)

class CustodyStatus(BaseModel):
    configured: bool
    address: Optional[str] = None
    balance: Optional[Decimal] = None


# --- Дашборд ---
class DashboardStats(BaseModel):
    total_users: int
    blocked_users: int
    transactions_pending_payment: int
    transactions_in_progress: int
    transactions_disputed: int
    transactions_completed: int
    withdrawals_pending: int
    withdrawals_needs_review: int
    deposits_pending: int


# --- Задачи ---
class TaskInfo(BaseModel):
    task_name: str
    description: str

class TaskRunRequest(BaseModel):
    task_name: str


# --- Сверка и ручные переводы ---
class ReconcileWithdrawalRequest(BaseModel):
    was_sent: bool
    reference: Optional[str] = Field(None, max_length=256)
    notes: Optional[str] = None

class CustodyTransferRequest(BaseModel):
    destination: str = Field(..., min_length=1, max_length=128)
    amount: Decimal = Field(..., gt=0)
    memo: Optional[str] = Field(None, max_length=120)

class CustodyTransferResult(BaseModel):
    reference: str
    destination: str
    amount: Decimal


# --- Рассылки ---
class BroadcastCreate(BaseModel):
    message_text: str = Field(..., min_length=1, max_length=3500)
    target: Literal["all", "active", "with_balance"] = "all"

class BroadcastListItem(BaseModel):
    id: int
    message_text: str
    target: str
    status: str
    sent_count: int
    failed_count: int
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class PaginatedAdminBroadcasts(PaginatedResponse[BroadcastListItem]):
    pass

class BroadcastDetails(BroadcastListItem):
    created_by_id: Optional[int] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
