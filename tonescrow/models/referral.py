# tonescrow/models/referral.py
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Numeric, UniqueConstraint, CheckConstraint, func
from sqlalchemy.orm import relationship
from tonescrow.db.session import Base

class Referral(Base):
    __tablename__ = "referrals"
    __table_args__ = (
        UniqueConstraint("referrer_id", "referred_id", name="uq_referrals_pair"),
        CheckConstraint("level IN (1, 2)", name="ck_referrals_level"),
    )
    id = Column(Integer, primary_key=True, index=True)

    # ID того, кто пригласил
    referrer_id = Column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    # ID того, кого пригласили
    referred_id = Column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)

    # 1 - прямой реферер, 2 - реферер реферера. Глубже не идем.
    level = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # --- СВЯЗИ ДЛЯ УДОБСТВА ---
    referrer = relationship("Profile", foreign_keys=[referrer_id], back_populates="referrals")
    referred = relationship("Profile", foreign_keys=[referred_id], back_populates="referrer_links")


class ReferralEarning(Base):
    """Одна выплата рефереру. Только добавляется, никогда не изменяется."""
    __tablename__ = "referral_earnings"
    id = Column(Integer, primary_key=True, index=True)
    referrer_id = Column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    from_profile_id = Column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    # Вознаграждение начисляется в момент вывода средств рефералом
    withdrawal_id = Column(Integer, ForeignKey("withdrawals.id", ondelete="CASCADE"), nullable=False, index=True)
    level = Column(Integer, nullable=False)
    amount = Column(Numeric(20, 9), nullable=False)
    currency = Column(String, nullable=False, default="TON")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
