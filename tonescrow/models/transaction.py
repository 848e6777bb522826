# tonescrow/models/transaction.py

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Numeric, Text, CheckConstraint, func
from sqlalchemy.orm import relationship

from tonescrow.db.session import Base


class TransactionStatus:
    PENDING_PAYMENT = "pending_payment"
    PAYMENT_RECEIVED = "payment_received"
    ITEM_SENT = "item_sent"
    COMPLETED = "completed"
    DISPUTED = "disputed"
    CANCELLED = "cancelled"

    ALL = (PENDING_PAYMENT, PAYMENT_RECEIVED, ITEM_SENT, COMPLETED, DISPUTED, CANCELLED)
    TERMINAL = (COMPLETED, CANCELLED)


class PaymentMethod:
    ONCHAIN = "onchain"
    BALANCE = "balance"
    MANUAL = "manual"


class Transaction(Base):
    """Одна эскроу-сделка по одному товару."""
    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
    )

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="SET NULL"), nullable=True, index=True)
    seller_id = Column(Integer, ForeignKey("profiles.id"), nullable=False, index=True)
    # Заполняется в момент, когда покупатель забирает ссылку
    buyer_id = Column(Integer, ForeignKey("profiles.id"), nullable=True, index=True)

    amount = Column(Numeric(20, 9), nullable=False)
    currency = Column(String, nullable=False, default="TON")
    commission = Column(Numeric(20, 9), nullable=False, default=0)
    seller_net = Column(Numeric(20, 9), nullable=False, default=0)

    status = Column(String, nullable=False, default=TransactionStatus.PENDING_PAYMENT, index=True)
    payment_method = Column(String, nullable=True)
    ton_tx_hash = Column(String, nullable=True, index=True)
    unique_link = Column(String, unique=True, index=True, nullable=False)

    expires_at = Column(DateTime(timezone=True), nullable=True, index=True)
    item_sent_at = Column(DateTime(timezone=True), nullable=True)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    disputed_at = Column(DateTime(timezone=True), nullable=True)
    dispute_reason = Column(Text, nullable=True)
    dispute_opened_by_id = Column(Integer, ForeignKey("profiles.id"), nullable=True)
    resolution = Column(String, nullable=True)  # favor_buyer | favor_seller
    settled_at = Column(DateTime(timezone=True), nullable=True)
    admin_notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    product = relationship("Product")
    seller = relationship("Profile", foreign_keys=[seller_id])
    buyer = relationship("Profile", foreign_keys=[buyer_id])
