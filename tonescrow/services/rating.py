# tonescrow/services/rating.py

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tonescrow.bot.services.notification import notify
from tonescrow.core.exceptions import AlreadyProcessed, InvalidTransition, NotFound, ValidationError
from tonescrow.crud import profile as crud_profile
from tonescrow.crud import rating as crud_rating
from tonescrow.models.profile import Profile
from tonescrow.models.rating import Rating
from tonescrow.models.transaction import TransactionStatus as S
from tonescrow.schemas import notification as n
from tonescrow.services.escrow import get_transaction_for_participant

logger = logging.getLogger(__name__)

MIN_RATING = 1
MAX_RATING = 5
MAX_COMMENT_LENGTH = 500


def rate_counterparty(db: Session, rater: Profile, transaction_id: int, rating: int, comment: str | None = None) -> Rating:
    """
    Участник завершенной сделки оценивает вторую сторону. Одна оценка от участника на сделку,
    агрегаты профиля пересчитываются в той же транзакции БД.
    """
    if not MIN_RATING <= rating <= MAX_RATING:
        raise ValidationError(f"Rating must be between {MIN_RATING} and {MAX_RATING}", rating=rating)

    transaction = get_transaction_for_participant(db, rater, transaction_id)
    if transaction.status != S.COMPLETED:
        raise InvalidTransition(
            f"Only completed deals can be rated, transaction {transaction_id} is '{transaction.status}'",
            status=transaction.status,
        )

    rated_id = transaction.seller_id if rater.id == transaction.buyer_id else transaction.buyer_id
    if rated_id is None:
        raise NotFound(f"Counterparty of transaction {transaction_id} not found")

    if crud_rating.get_rating(db, transaction_id, rater.id) is not None:
        raise AlreadyProcessed(f"You have already rated transaction {transaction_id}", transaction_id=transaction_id)

    comment = (comment or "").strip()[:MAX_COMMENT_LENGTH] or None

    try:
        db_rating = crud_rating.create_rating(db, transaction_id, rater.id, rated_id, rating, comment)
        avg_rating, total = crud_rating.refresh_profile_rating(db, rated_id)
        db.commit()
    except IntegrityError:
        # Параллельный запрос успел записать оценку первым
        db.rollback()
        raise AlreadyProcessed(f"You have already rated transaction {transaction_id}", transaction_id=transaction_id)
    except Exception:
        db.rollback()
        raise

    db.refresh(db_rating)
    logger.info(
        f"Profile {rater.id} rated profile {rated_id} with {rating} for transaction {transaction_id}. "
        f"New average {avg_rating} over {total} ratings."
    )

    rated = crud_profile.get_profile(db, rated_id)
    notify(n.RatingReceived(
        chat_id=rated.telegram_id if rated else None,
        transaction_id=transaction_id,
        rating=rating,
        comment=comment,
    ))
    return db_rating


def get_ratings_for_participant(db: Session, profile: Profile, transaction_id: int) -> list[Rating]:
    get_transaction_for_participant(db, profile, transaction_id)
    return crud_rating.get_transaction_ratings(db, transaction_id)


def get_profile_rating_summary(db: Session, profile_id: int, limit: int = 20) -> dict:
    profile = crud_profile.get_profile(db, profile_id)
    if profile is None:
        raise NotFound(f"Profile {profile_id} not found")
    return {
        "profile_id": profile.id,
        "avg_rating": profile.avg_rating,
        "total_ratings": profile.total_ratings,
        "recent": crud_rating.get_profile_ratings(db, profile_id, limit=limit),
    }
