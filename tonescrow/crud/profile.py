# tonescrow/crud/profile.py
from decimal import Decimal
from datetime import datetime, timezone
from sqlalchemy.orm import Session
from sqlalchemy import or_

from tonescrow.models.profile import Profile


def _balance_column(currency: str):
    return Profile.balance_mmk if currency == "MMK" else Profile.balance


def get_profile(db: Session, profile_id: int) -> Profile | None:
    """Получает профиль по первичному ключу."""
    return db.query(Profile).filter(Profile.id == profile_id).first()

def get_profile_by_telegram_id(db: Session, telegram_id: int) -> Profile | None:
    return db.query(Profile).filter(Profile.telegram_id == telegram_id).first()

def get_profile_by_referral_code(db: Session, code: str) -> Profile | None:
    return db.query(Profile).filter(Profile.referral_code == code).first()

def create_profile(
    db: Session,
    telegram_id: int,
    username: str | None,
    referral_code: str,
) -> Profile:
    """Создает новый профиль. Требует внешнего вызова db.commit()."""
    db_profile = Profile(
        telegram_id=telegram_id,
        telegram_username=username,
        referral_code=referral_code,
    )
    db.add(db_profile)
    db.flush()
    return db_profile


def get_balance(db: Session, profile_id: int, currency: str) -> Decimal | None:
    """Свежий баланс прямо из БД, мимо identity map сессии."""
    value = db.query(_balance_column(currency)).filter(Profile.id == profile_id).scalar()
    return Decimal(value) if value is not None else None

# --- Условные обновления баланса ---
# Обе функции НЕ коммитят: вызывающий сервис объединяет их со сменой статуса в одну транзакцию БД.

def increment_balance(db: Session, profile_id: int, amount: Decimal, currency: str) -> bool:
    column = _balance_column(currency)
    updated = db.query(Profile).filter(Profile.id == profile_id).update(
        {column: column + amount}, synchronize_session=False
    )
    return updated == 1

def decrement_balance_if_sufficient(db: Session, profile_id: int, amount: Decimal, currency: str) -> bool:
    """Списывает amount, только если баланс >= amount. Возвращает True, если строка обновлена."""
    column = _balance_column(currency)
    updated = db.query(Profile).filter(
        Profile.id == profile_id,
        column >= amount,
    ).update({column: column - amount}, synchronize_session=False)
    return updated == 1

def increment_referral_earnings(db: Session, profile_id: int, amount: Decimal) -> None:
    db.query(Profile).filter(Profile.id == profile_id).update(
        {Profile.total_referral_earnings: Profile.total_referral_earnings + amount},
        synchronize_session=False,
    )


def set_blocked(db: Session, profile_id: int, blocked: bool, reason: str | None = None) -> bool:
    updated = db.query(Profile).filter(Profile.id == profile_id).update({
        Profile.is_blocked: blocked,
        Profile.blocked_reason: reason if blocked else None,
        Profile.blocked_at: datetime.now(timezone.utc) if blocked else None,
    }, synchronize_session=False)
    return updated == 1


def count_all_profiles(db: Session) -> int:
    return db.query(Profile).count()

def count_blocked_profiles(db: Session) -> int:
    return db.query(Profile).filter(Profile.is_blocked == True).count()

def _search_filter(query: str):
    search_query = f"%{query.lstrip('@')}%"
    filter_conditions = [Profile.telegram_username.ilike(search_query)]
    if query.isdigit():
        filter_conditions.append(Profile.telegram_id == int(query))
        filter_conditions.append(Profile.id == int(query))
    return or_(*filter_conditions)

def find_profiles(db: Session, query: str, skip: int = 0, limit: int = 20) -> list[Profile]:
    """Ищет пользователей по telegram_id или username."""
    return db.query(Profile).filter(_search_filter(query)).order_by(Profile.id.desc()).offset(skip).limit(limit).all()

def count_found_profiles(db: Session, query: str) -> int:
    return db.query(Profile).filter(_search_filter(query)).count()

def list_profiles(db: Session, skip: int = 0, limit: int = 20) -> list[Profile]:
    return db.query(Profile).order_by(Profile.id.desc()).offset(skip).limit(limit).all()
