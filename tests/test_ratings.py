# tests/test_ratings.py

import asyncio
from decimal import Decimal

import pytest

from tonescrow.core.exceptions import AlreadyProcessed, InvalidTransition, NotFound, ValidationError
from tonescrow.crud import profile as crud_profile
from tonescrow.crud import rating as crud_rating
from tonescrow.models.transaction import TransactionStatus as S
from tonescrow.services import rating as rating_service


@pytest.fixture
def seller(make_profile):
    return make_profile()


@pytest.fixture
def buyer(make_profile):
    return make_profile()


@pytest.fixture
def completed_deal(make_transaction, seller, buyer):
    return make_transaction(seller, buyer, status=S.COMPLETED)


def test_buyer_rates_seller(db_session, completed_deal, seller, buyer):
    rating = rating_service.rate_counterparty(db_session, buyer, completed_deal.id, 5, "  Fast delivery  ")

    assert rating.rater_id == buyer.id
    assert rating.rated_id == seller.id
    assert rating.comment == "Fast delivery"

    refreshed = crud_profile.get_profile(db_session, seller.id)
    assert refreshed.avg_rating == Decimal("5.0")
    assert refreshed.total_ratings == 1


def test_both_parties_rate_each_other(db_session, completed_deal, seller, buyer):
    rating_service.rate_counterparty(db_session, buyer, completed_deal.id, 4)
    rating_service.rate_counterparty(db_session, seller, completed_deal.id, 2, "")

    ratings = rating_service.get_ratings_for_participant(db_session, seller, completed_deal.id)
    assert [(r.rater_id, r.rated_id, r.rating) for r in ratings] == [(buyer.id, seller.id, 4), (seller.id, buyer.id, 2)]
    # Пустой комментарий не сохраняется
    assert ratings[1].comment is None
    assert crud_profile.get_profile(db_session, buyer.id).avg_rating == Decimal("2.0")


def test_second_rating_for_same_deal_is_rejected(db_session, completed_deal, seller, buyer):
    rating_service.rate_counterparty(db_session, buyer, completed_deal.id, 5)

    with pytest.raises(AlreadyProcessed):
        rating_service.rate_counterparty(db_session, buyer, completed_deal.id, 1)

    # Агрегаты не изменились
    refreshed = crud_profile.get_profile(db_session, seller.id)
    assert refreshed.avg_rating == Decimal("5.0")
    assert refreshed.total_ratings == 1


@pytest.mark.parametrize("status", [S.PENDING_PAYMENT, S.PAYMENT_RECEIVED, S.ITEM_SENT, S.DISPUTED, S.CANCELLED])
def test_only_completed_deals_can_be_rated(db_session, make_transaction, seller, buyer, status):
    transaction = make_transaction(seller, buyer, status=status)

    with pytest.raises(InvalidTransition):
        rating_service.rate_counterparty(db_session, buyer, transaction.id, 5)
    assert crud_rating.get_transaction_ratings(db_session, transaction.id) == []


def test_outsider_cannot_rate(db_session, completed_deal, make_profile):
    outsider = make_profile()

    with pytest.raises(NotFound):
        rating_service.rate_counterparty(db_session, outsider, completed_deal.id, 5)
    with pytest.raises(NotFound):
        rating_service.get_ratings_for_participant(db_session, outsider, completed_deal.id)


@pytest.mark.parametrize("value", [0, 6, -1])
def test_rating_out_of_range(db_session, completed_deal, buyer, value):
    with pytest.raises(ValidationError):
        rating_service.rate_counterparty(db_session, buyer, completed_deal.id, value)


def test_long_comment_is_truncated(db_session, completed_deal, buyer):
    rating = rating_service.rate_counterparty(db_session, buyer, completed_deal.id, 3, "x" * 800)
    assert len(rating.comment) == rating_service.MAX_COMMENT_LENGTH


def test_average_is_rounded_to_one_decimal(db_session, make_profile, make_transaction, seller):
    # 1. Три покупателя оценивают одного продавца: 5, 5, 4 -> 4.67 -> 4.7
    for value in (5, 5, 4):
        buyer = make_profile()
        deal = make_transaction(seller, buyer, status=S.COMPLETED)
        rating_service.rate_counterparty(db_session, buyer, deal.id, value)

    # 2. Сводка профиля: агрегаты и последние отзывы (новые первыми)
    summary = rating_service.get_profile_rating_summary(db_session, seller.id)
    assert summary["avg_rating"] == Decimal("4.7")
    assert summary["total_ratings"] == 3
    assert [r.rating for r in summary["recent"]] == [4, 5, 5]


def test_summary_for_unknown_profile(db_session):
    with pytest.raises(NotFound):
        rating_service.get_profile_rating_summary(db_session, 424242)


async def test_rated_user_is_notified(db_session, completed_deal, seller, buyer, sent_notifications):
    rating_service.rate_counterparty(db_session, buyer, completed_deal.id, 4, "Good")
    await asyncio.sleep(0)

    sent_notifications.assert_called_once()
    notification = sent_notifications.call_args.args[0]
    assert notification.kind == "rating_received"
    assert notification.chat_id == seller.telegram_id
    assert notification.rating == 4
