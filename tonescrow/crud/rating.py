# tonescrow/crud/rating.py
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import func
from sqlalchemy.orm import Session

from tonescrow.models.profile import Profile
from tonescrow.models.rating import Rating


def create_rating(db: Session, transaction_id: int, rater_id: int, rated_id: int, rating: int, comment: str | None) -> Rating:
    """Требует внешнего вызова db.commit(). Повтор от того же участника упрется в уникальный индекс."""
    db_rating = Rating(
        transaction_id=transaction_id,
        rater_id=rater_id,
        rated_id=rated_id,
        rating=rating,
        comment=comment,
    )
    db.add(db_rating)
    db.flush()
    return db_rating

def get_rating(db: Session, transaction_id: int, rater_id: int) -> Rating | None:
    return db.query(Rating).filter(Rating.transaction_id == transaction_id, Rating.rater_id == rater_id).first()

def get_transaction_ratings(db: Session, transaction_id: int) -> list[Rating]:
    return db.query(Rating).filter(Rating.transaction_id == transaction_id).order_by(Rating.id).all()

def get_profile_ratings(db: Session, profile_id: int, skip: int = 0, limit: int = 20) -> list[Rating]:
    return db.query(Rating).filter(
        Rating.rated_id == profile_id
    ).order_by(Rating.id.desc()).offset(skip).limit(limit).all()

def refresh_profile_rating(db: Session, profile_id: int) -> tuple[Decimal, int]:
    """Пересчитывает avg_rating (до одного знака) и total_ratings профиля. Не коммитит."""
    average, total = db.query(func.avg(Rating.rating), func.count(Rating.id)).filter(
        Rating.rated_id == profile_id
    ).one()
    avg_rating = Decimal(str(average or 0)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
    db.query(Profile).filter(Profile.id == profile_id).update(
        {Profile.avg_rating: avg_rating, Profile.total_ratings: total},
        synchronize_session=False,
    )
    return avg_rating, total
