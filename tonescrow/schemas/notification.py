# tonescrow/schemas/notification.py
"""
Типизированные уведомления. Каждый вид - отдельная модель со своим набором полей,
общий тип Notification - размеченное объединение по полю `kind`.
"""
from decimal import Decimal
from typing import Annotated, List, Literal, Optional, Union
from pydantic import BaseModel, Field, TypeAdapter


class _UserNotification(BaseModel):
    # Telegram chat id получателя. None - получатель недоступен, отправка пропускается.
    chat_id: Optional[int]


class TransactionExpired(_UserNotification):
    kind: Literal["transaction_expired"] = "transaction_expired"
    transaction_id: int
    role: Literal["buyer", "seller"]


class PaymentReceived(_UserNotification):
    kind: Literal["payment_received"] = "payment_received"
    transaction_id: int
    amount: Decimal
    currency: str


class ItemSent(_UserNotification):
    kind: Literal["item_sent"] = "item_sent"
    transaction_id: int


class TransactionCompleted(_UserNotification):
    kind: Literal["transaction_completed"] = "transaction_completed"
    transaction_id: int
    role: Literal["buyer", "seller"]
    seller_net: Decimal
    currency: str


class DisputeOpened(_UserNotification):
    kind: Literal["dispute_opened"] = "dispute_opened"
    transaction_id: int
    reason: str


class DisputeResolved(_UserNotification):
    kind: Literal["dispute_resolved"] = "dispute_resolved"
    transaction_id: int
    resolution: Literal["favor_buyer", "favor_seller"]
    role: Literal["buyer", "seller"]


class WithdrawalApproved(_UserNotification):
    kind: Literal["withdrawal_approved"] = "withdrawal_approved"
    withdrawal_id: int
    payout_amount: Decimal
    currency: str
    reference: Optional[str] = None


class WithdrawalRejected(_UserNotification):
    kind: Literal["withdrawal_rejected"] = "withdrawal_rejected"
    withdrawal_id: int
    amount: Decimal
    currency: str
    notes: Optional[str] = None


class WithdrawalCompleted(_UserNotification):
    kind: Literal["withdrawal_completed"] = "withdrawal_completed"
    withdrawal_id: int
    payout_amount: Decimal
    reference: str


class WithdrawalNeedsReview(_UserNotification):
    kind: Literal["withdrawal_needs_review"] = "withdrawal_needs_review"
    withdrawal_id: int


class DepositConfirmed(_UserNotification):
    kind: Literal["deposit_confirmed"] = "deposit_confirmed"
    deposit_id: int
    amount: Decimal
    currency: str


class DepositRejected(_UserNotification):
    kind: Literal["deposit_rejected"] = "deposit_rejected"
    deposit_id: int
    notes: Optional[str] = None


class ReferralEarned(_UserNotification):
    kind: Literal["referral_earned"] = "referral_earned"
    amount: Decimal
    currency: str
    level: int


class RatingReceived(_UserNotification):
    kind: Literal["rating_received"] = "rating_received"
    transaction_id: int
    rating: int
    comment: Optional[str] = None


class AdminAlert(BaseModel):
    """Сообщение операторам. Пустой chat_ids: получатели берутся из конфигурации."""
    kind: Literal["admin_alert"] = "admin_alert"
    title: str
    message: str
    chat_ids: List[int] = Field(default_factory=list)


Notification = Annotated[
    Union[
        TransactionExpired,
        PaymentReceived,
        ItemSent,
        TransactionCompleted,
        DisputeOpened,
        DisputeResolved,
        WithdrawalApproved,
        WithdrawalRejected,
        WithdrawalCompleted,
        WithdrawalNeedsReview,
        DepositConfirmed,
        DepositRejected,
        ReferralEarned,
        RatingReceived,
        AdminAlert,
    ],
    Field(discriminator="kind"),
]

notification_adapter = TypeAdapter(Notification)
