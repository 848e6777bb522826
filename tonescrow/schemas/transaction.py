# tonescrow/schemas/transaction.py
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field
from typing import Literal, Optional


class ProductCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    price: Decimal = Field(..., gt=0)
    currency: Literal["TON", "MMK"] = "TON"


class Product(BaseModel):
    id: int
    seller_id: int
    title: str
    price: Decimal
    currency: str
    unique_link: str
    is_active: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ClaimRequest(BaseModel):
    link: str = Field(..., min_length=1)


class DisputeCreate(BaseModel):
    reason: str = Field(..., min_length=3, max_length=1000)


class Transaction(BaseModel):
    id: int
    product_id: Optional[int]
    seller_id: int
    buyer_id: Optional[int]
    amount: Decimal
    currency: str
    commission: Decimal
    seller_net: Decimal
    status: str
    payment_method: Optional[str] = None
    ton_tx_hash: Optional[str] = None
    unique_link: str
    expires_at: Optional[datetime] = None
    item_sent_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    disputed_at: Optional[datetime] = None
    dispute_reason: Optional[str] = None
    resolution: Optional[str] = None
    settled_at: Optional[datetime] = None
    admin_notes: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PaymentInstructions(BaseModel):
    """Что показать покупателю после claim: куда и с каким memo платить."""
    transaction: Transaction
    pay_to_address: Optional[str] = None
    memo: str


class SettlementResult(BaseModel):
    transaction_id: int
    already_settled: bool = False
    seller_id: Optional[int] = None
    amount: Decimal = Decimal("0")
    commission: Decimal = Decimal("0")
    seller_net: Decimal = Decimal("0")
    currency: str = "TON"


class RatingCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=500)


class Rating(BaseModel):
    id: int
    transaction_id: int
    rater_id: int
    rated_id: int
    rating: int
    comment: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RatingSummary(BaseModel):
    profile_id: int
    avg_rating: Decimal
    total_ratings: int
    recent: list[Rating]

    class Config:
        from_attributes = True
