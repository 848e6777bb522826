# tonescrow/models/profile.py

from sqlalchemy import Column, Integer, String, Boolean, BIGINT, DateTime, Numeric, ForeignKey, Text, CheckConstraint, func
from sqlalchemy.orm import relationship
from .referral import Referral
from tonescrow.db.session import Base

class Profile(Base):
    __tablename__ = "profiles"
    __table_args__ = (
        # Последняя линия обороны: баланс не может уйти в минус даже при ошибке в коде
        CheckConstraint("balance >= 0", name="ck_profiles_balance_non_negative"),
        CheckConstraint("balance_mmk >= 0", name="ck_profiles_balance_mmk_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    telegram_id = Column(BIGINT, unique=True, index=True, nullable=False)
    telegram_username = Column(String, nullable=True)
    ton_wallet_address = Column(String, nullable=True)

    # Балансы меняются ТОЛЬКО через services/settlement.py
    balance = Column(Numeric(20, 9), default=0, nullable=False, server_default='0')
    balance_mmk = Column(Numeric(20, 9), default=0, nullable=False, server_default='0')

    is_blocked = Column(Boolean, default=False, nullable=False, server_default='false')
    blocked_at = Column(DateTime(timezone=True), nullable=True)
    blocked_reason = Column(Text, nullable=True)

    referral_code = Column(String, unique=True, index=True, nullable=True)
    # Слабая ссылка: кто пригласил (не владение)
    referred_by_id = Column(Integer, ForeignKey("profiles.id", ondelete="SET NULL"), nullable=True)
    total_referral_earnings = Column(Numeric(20, 9), default=0, nullable=False, server_default='0')

    # Кеш агрегатов из таблицы ratings, пересчитывается при каждой новой оценке
    avg_rating = Column(Numeric(2, 1), default=0, nullable=False, server_default='0')
    total_ratings = Column(Integer, default=0, nullable=False, server_default='0')

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Связи для реферальной системы
    # Кто пригласил этого пользователя (уровни 1 и 2)
    referrer_links = relationship("Referral", foreign_keys="Referral.referred_id", back_populates="referred")
    # Кого пригласил этот пользователь
    referrals = relationship("Referral", foreign_keys="Referral.referrer_id", back_populates="referrer")

    def balance_for(self, currency: str):
        return self.balance_mmk if currency == "MMK" else self.balance
