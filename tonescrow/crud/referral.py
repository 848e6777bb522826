# tonescrow/crud/referral.py
from decimal import Decimal
from sqlalchemy.orm import Session
from sqlalchemy import func

from tonescrow.models.referral import Referral, ReferralEarning

def create_referral(db: Session, referrer_id: int, referred_id: int, level: int) -> Referral:
    """Создает реферальную связь. Требует внешнего вызова db.commit()."""
    db_referral = Referral(referrer_id=referrer_id, referred_id=referred_id, level=level)
    db.add(db_referral)
    return db_referral

def get_referral_by_referred_id(db: Session, referred_id: int, level: int = 1) -> Referral | None:
    """Находит реферальную связь заданного уровня по ID приглашенного пользователя."""
    return db.query(Referral).filter(
        Referral.referred_id == referred_id,
        Referral.level == level,
    ).first()

def get_referrer_chain(db: Session, referred_id: int) -> list[Referral]:
    """Связи уровней 1 и 2 для пользователя, отсортированные по уровню."""
    return db.query(Referral).filter(
        Referral.referred_id == referred_id
    ).order_by(Referral.level.asc()).all()

def count_referrals_by_level(db: Session, referrer_id: int, level: int) -> int:
    return db.query(Referral).filter(
        Referral.referrer_id == referrer_id,
        Referral.level == level,
    ).count()

def create_earning(
    db: Session,
    referrer_id: int,
    from_profile_id: int,
    withdrawal_id: int,
    level: int,
    amount: Decimal,
    currency: str,
) -> ReferralEarning:
    earning = ReferralEarning(
        referrer_id=referrer_id,
        from_profile_id=from_profile_id,
        withdrawal_id=withdrawal_id,
        level=level,
        amount=amount,
        currency=currency,
    )
    db.add(earning)
    return earning

def get_earnings(db: Session, referrer_id: int, skip: int = 0, limit: int = 20) -> list[ReferralEarning]:
    return db.query(ReferralEarning).filter(
        ReferralEarning.referrer_id == referrer_id
    ).order_by(ReferralEarning.id.desc()).offset(skip).limit(limit).all()

def sum_earnings(db: Session, referrer_id: int, currency: str) -> Decimal:
    total = db.query(func.sum(ReferralEarning.amount)).filter(
        ReferralEarning.referrer_id == referrer_id,
        ReferralEarning.currency == currency,
    ).scalar()
    return Decimal(total) if total is not None else Decimal("0")

def get_earnings_for_withdrawal(db: Session, withdrawal_id: int) -> list[ReferralEarning]:
    return db.query(ReferralEarning).filter(ReferralEarning.withdrawal_id == withdrawal_id).all()
