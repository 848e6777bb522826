# tonescrow/models/deposit.py

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Numeric, Text, func
from sqlalchemy.orm import relationship

from tonescrow.db.session import Base


class DepositStatus:
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    EXPIRED = "expired"


class Deposit(Base):
    __tablename__ = "deposits"

    id = Column(Integer, primary_key=True, index=True)
    profile_id = Column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Numeric(20, 9), nullable=False)
    currency = Column(String, nullable=False, default="TON")
    # Для TON переводов: memo вида dep_<unique_code>
    unique_code = Column(String, unique=True, index=True, nullable=False)
    status = Column(String, nullable=False, default=DepositStatus.PENDING, index=True)
    payment_method = Column(String, nullable=False, default="TON")
    screenshot_url = Column(String, nullable=True)
    ton_tx_hash = Column(String, nullable=True, index=True)
    admin_notes = Column(Text, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    profile = relationship("Profile")
