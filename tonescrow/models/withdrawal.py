# tonescrow/models/withdrawal.py

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Numeric, Text, Boolean, func
from sqlalchemy.orm import relationship

from tonescrow.db.session import Base


class WithdrawalStatus:
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"


class Withdrawal(Base):
    __tablename__ = "withdrawals"

    id = Column(Integer, primary_key=True, index=True)
    profile_id = Column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)

    # Списывается с баланса amount целиком, пользователь получает payout_amount
    amount = Column(Numeric(20, 9), nullable=False)
    fee = Column(Numeric(20, 9), nullable=False, default=0)
    payout_amount = Column(Numeric(20, 9), nullable=False)
    currency = Column(String, nullable=False, default="TON")

    destination = Column(String, nullable=False)
    payment_method = Column(String, nullable=False, default="TON")  # TON | KBZPAY | WAVEPAY
    status = Column(String, nullable=False, default=WithdrawalStatus.PENDING, index=True)

    admin_notes = Column(Text, nullable=True)
    tx_reference = Column(String, nullable=True)
    # Исход перевода неизвестен: только ручная сверка, автоповтор запрещен
    needs_review = Column(Boolean, nullable=False, default=False, server_default='false')
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    profile = relationship("Profile")
