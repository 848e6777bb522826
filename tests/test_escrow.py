# tests/test_escrow.py

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from tonescrow.core.exceptions import (
    AlreadyProcessed,
    InsufficientFunds,
    InvalidTransition,
    MaintenanceMode,
    PermissionDenied,
    UserBlocked,
    ValidationError,
)
from tonescrow.crud import profile as crud_profile
from tonescrow.models.transaction import PaymentMethod, TransactionStatus as S
from tonescrow.schemas.settings import EscrowSettings
from tonescrow.services import escrow as escrow_service
from tonescrow.utils.ton import as_utc


def balance(db, profile) -> Decimal:
    return crud_profile.get_balance(db, profile.id, "TON")


@pytest.fixture
def seller(make_profile):
    return make_profile()


@pytest.fixture
def buyer(make_profile):
    return make_profile(balance="50")


@pytest.fixture
def product(db_session, seller, escrow_settings):
    return escrow_service.create_product(db_session, seller, "Steam gift card", Decimal("10"), "TON", escrow_settings)


# --- Граф переходов ---

@pytest.mark.parametrize("from_status, to_status", [
    (S.PENDING_PAYMENT, S.PAYMENT_RECEIVED),
    (S.PENDING_PAYMENT, S.CANCELLED),
    (S.PAYMENT_RECEIVED, S.ITEM_SENT),
    (S.PAYMENT_RECEIVED, S.DISPUTED),
    (S.ITEM_SENT, S.COMPLETED),
    (S.DISPUTED, S.CANCELLED),
])
def test_allowed_transitions(from_status, to_status):
    escrow_service.validate_transition(from_status, to_status)


@pytest.mark.parametrize("from_status, to_status", [
    (S.PENDING_PAYMENT, S.COMPLETED),
    (S.PAYMENT_RECEIVED, S.COMPLETED),
    (S.COMPLETED, S.DISPUTED),
    (S.CANCELLED, S.PAYMENT_RECEIVED),
    (S.ITEM_SENT, S.CANCELLED),
])
def test_forbidden_transitions(from_status, to_status):
    with pytest.raises(InvalidTransition):
        escrow_service.validate_transition(from_status, to_status)


# --- Листинги ---

def test_create_product_validates_input(db_session, seller, escrow_settings):
    with pytest.raises(ValidationError):
        escrow_service.create_product(db_session, seller, "x" * 101, Decimal("10"), "TON", escrow_settings)
    with pytest.raises(ValidationError):
        escrow_service.create_product(db_session, seller, "Item", Decimal("0"), "TON", escrow_settings)
    with pytest.raises(ValidationError):
        escrow_service.create_product(db_session, seller, "Item", Decimal("10"), "USD", escrow_settings)


def test_create_product_rejected_in_maintenance(db_session, seller):
    with pytest.raises(MaintenanceMode):
        escrow_service.create_product(
            db_session, seller, "Item", Decimal("10"), "TON", EscrowSettings(bot_maintenance=True)
        )


def test_blocked_seller_cannot_list(db_session, make_profile, escrow_settings):
    blocked = make_profile(is_blocked=True)
    with pytest.raises(UserBlocked):
        escrow_service.create_product(db_session, blocked, "Item", Decimal("10"), "TON", escrow_settings)


def test_deactivate_product_only_by_owner(db_session, product, buyer, seller):
    with pytest.raises(PermissionDenied):
        escrow_service.deactivate_product(db_session, buyer, product.id)

    deactivated = escrow_service.deactivate_product(db_session, seller, product.id)
    assert deactivated.is_active is False


# --- Claim ---

def test_claim_creates_pending_transaction(db_session, product, buyer, seller, escrow_settings):
    transaction = escrow_service.claim_product(db_session, buyer, product.unique_link, escrow_settings)

    assert transaction.status == S.PENDING_PAYMENT
    assert transaction.buyer_id == buyer.id
    assert transaction.seller_id == seller.id
    assert transaction.amount == Decimal("10")
    assert transaction.commission == Decimal("0.3")
    assert transaction.seller_net == Decimal("9.7")
    expected_expiry = datetime.now(timezone.utc) + timedelta(minutes=escrow_settings.transaction_expiry_minutes)
    assert abs(as_utc(transaction.expires_at) - expected_expiry) < timedelta(minutes=1)


def test_repeated_claim_returns_same_transaction(db_session, product, buyer, escrow_settings):
    first = escrow_service.claim_product(db_session, buyer, product.unique_link, escrow_settings)
    second = escrow_service.claim_product(db_session, buyer, product.unique_link, escrow_settings)
    assert first.id == second.id


def test_claim_rules(db_session, product, seller, buyer, make_profile, escrow_settings):
    # Свой товар купить нельзя
    with pytest.raises(ValidationError):
        escrow_service.claim_product(db_session, seller, product.unique_link, escrow_settings)

    # Пока действует заявка одного покупателя, второй получает отказ
    escrow_service.claim_product(db_session, buyer, product.unique_link, escrow_settings)
    with pytest.raises(ValidationError):
        escrow_service.claim_product(db_session, make_profile(), product.unique_link, escrow_settings)


def test_claim_inactive_product(db_session, product, seller, buyer, escrow_settings):
    escrow_service.deactivate_product(db_session, seller, product.id)
    with pytest.raises(ValidationError):
        escrow_service.claim_product(db_session, buyer, product.unique_link, escrow_settings)


# --- Полный цикл ---

def test_happy_path_settles_seller(db_session, product, seller, buyer, escrow_settings):
    transaction = escrow_service.claim_product(db_session, buyer, product.unique_link, escrow_settings)

    escrow_service.confirm_payment(db_session, transaction.id, "hash-1")
    escrow_service.mark_item_sent(db_session, seller, transaction.id)
    result = escrow_service.confirm_received(db_session, buyer, transaction.id, escrow_settings)

    assert result.already_settled is False
    assert result.seller_net == Decimal("9.7")
    assert balance(db_session, seller) == Decimal("9.7")
    # Ончейн-оплата не трогает внутренний баланс покупателя
    assert balance(db_session, buyer) == Decimal("50")

    again = escrow_service.confirm_received(db_session, buyer, transaction.id, escrow_settings)
    assert again.already_settled is True
    assert balance(db_session, seller) == Decimal("9.7")


def test_confirm_payment_is_idempotent_per_hash(db_session, make_transaction, seller, buyer):
    transaction = make_transaction(seller, buyer)

    confirmed = escrow_service.confirm_payment(db_session, transaction.id, "hash-1")
    assert confirmed.status == S.PAYMENT_RECEIVED
    assert confirmed.payment_method == PaymentMethod.ONCHAIN

    with pytest.raises(AlreadyProcessed):
        escrow_service.confirm_payment(db_session, transaction.id, "hash-1")
    # Другой хеш для уже оплаченной сделки - недопустимый переход
    with pytest.raises(InvalidTransition):
        escrow_service.confirm_payment(db_session, transaction.id, "hash-2")


def test_pay_with_balance(db_session, make_transaction, seller, buyer, escrow_settings):
    transaction = make_transaction(seller, buyer, amount="20")

    paid = escrow_service.pay_with_balance(db_session, buyer, transaction.id, escrow_settings)

    assert paid.status == S.PAYMENT_RECEIVED
    assert paid.payment_method == PaymentMethod.BALANCE
    assert balance(db_session, buyer) == Decimal("30")


def test_pay_with_balance_insufficient_keeps_state(db_session, make_transaction, seller, buyer, escrow_settings):
    transaction = make_transaction(seller, buyer, amount="80")

    with pytest.raises(InsufficientFunds):
        escrow_service.pay_with_balance(db_session, buyer, transaction.id, escrow_settings)

    db_session.refresh(transaction)
    assert transaction.status == S.PENDING_PAYMENT
    assert balance(db_session, buyer) == Decimal("50")


def test_pay_with_balance_after_expiry(db_session, make_transaction, seller, buyer, escrow_settings):
    transaction = make_transaction(seller, buyer, expires_at=datetime.now(timezone.utc) - timedelta(minutes=1))

    with pytest.raises(ValidationError):
        escrow_service.pay_with_balance(db_session, buyer, transaction.id, escrow_settings)
    assert balance(db_session, buyer) == Decimal("50")


def test_only_seller_marks_item_sent(db_session, make_transaction, seller, buyer):
    transaction = make_transaction(seller, buyer, status=S.PAYMENT_RECEIVED)

    with pytest.raises(PermissionDenied):
        escrow_service.mark_item_sent(db_session, buyer, transaction.id)

    sent = escrow_service.mark_item_sent(db_session, seller, transaction.id)
    assert sent.status == S.ITEM_SENT
    assert sent.item_sent_at is not None


def test_cannot_confirm_before_item_sent(db_session, make_transaction, seller, buyer, escrow_settings):
    transaction = make_transaction(seller, buyer, status=S.PAYMENT_RECEIVED)
    with pytest.raises(InvalidTransition):
        escrow_service.confirm_received(db_session, buyer, transaction.id, escrow_settings)
    assert balance(db_session, seller) == Decimal("0")


async def test_notifications_are_scheduled(db_session, make_transaction, seller, buyer, sent_notifications):
    transaction = make_transaction(seller, buyer, status=S.PAYMENT_RECEIVED)

    escrow_service.mark_item_sent(db_session, seller, transaction.id)
    await asyncio.sleep(0)

    sent_notifications.assert_called_once()
    notification = sent_notifications.call_args.args[0]
    assert notification.kind == "item_sent"
    assert notification.chat_id == buyer.telegram_id


# --- Споры ---

def test_open_dispute_rules(db_session, make_transaction, make_profile, seller, buyer):
    pending = make_transaction(seller, buyer)
    with pytest.raises(InvalidTransition):
        escrow_service.open_dispute(db_session, buyer, pending.id, "Never received")

    transaction = make_transaction(seller, buyer, status=S.ITEM_SENT)
    with pytest.raises(PermissionDenied):
        escrow_service.open_dispute(db_session, make_profile(), transaction.id, "Not my deal")

    disputed = escrow_service.open_dispute(db_session, buyer, transaction.id, "Item is broken")
    assert disputed.status == S.DISPUTED
    assert disputed.dispute_opened_by_id == buyer.id

    with pytest.raises(AlreadyProcessed):
        escrow_service.open_dispute(db_session, seller, transaction.id, "Buyer lies")


def test_dispute_favor_seller_settles_once(db_session, make_transaction, seller, buyer, escrow_settings):
    transaction = make_transaction(seller, buyer, amount="50", status=S.DISPUTED)

    resolved = escrow_service.resolve_dispute(db_session, transaction.id, "favor_seller", escrow_settings, notes="Proof ok")

    assert resolved.status == S.COMPLETED
    assert resolved.resolution == "favor_seller"
    assert balance(db_session, seller) == Decimal("48.5")

    # Запоздалое подтверждение покупателя ничего не начисляет повторно
    late = escrow_service.confirm_received(db_session, buyer, transaction.id, escrow_settings)
    assert late.already_settled is True
    with pytest.raises(AlreadyProcessed):
        escrow_service.resolve_dispute(db_session, transaction.id, "favor_seller", escrow_settings)
    assert balance(db_session, seller) == Decimal("48.5")


def test_dispute_favor_buyer_cancels_without_payout(db_session, make_transaction, seller, buyer, escrow_settings):
    transaction = make_transaction(seller, buyer, amount="50", status=S.DISPUTED)

    resolved = escrow_service.resolve_dispute(db_session, transaction.id, "favor_buyer", escrow_settings)

    assert resolved.status == S.CANCELLED
    assert balance(db_session, seller) == Decimal("0")
    assert balance(db_session, buyer) == Decimal("50")


def test_resolve_requires_dispute(db_session, make_transaction, seller, buyer, escrow_settings):
    transaction = make_transaction(seller, buyer, status=S.ITEM_SENT)
    with pytest.raises(InvalidTransition):
        escrow_service.resolve_dispute(db_session, transaction.id, "favor_seller", escrow_settings)
    with pytest.raises(ValidationError):
        escrow_service.resolve_dispute(db_session, transaction.id, "split", escrow_settings)


# --- Отмена и фоновые задачи ---

def test_cancel_by_seller_only_before_payment(db_session, make_transaction, seller, buyer):
    paid = make_transaction(seller, buyer, status=S.PAYMENT_RECEIVED)
    with pytest.raises(InvalidTransition):
        escrow_service.cancel_by_seller(db_session, seller, paid.id)

    pending = make_transaction(seller, buyer)
    cancelled = escrow_service.cancel_by_seller(db_session, seller, pending.id)
    assert cancelled.status == S.CANCELLED


def test_expire_transactions(db_session, make_transaction, seller, buyer):
    now = datetime.now(timezone.utc)
    overdue = make_transaction(seller, buyer, expires_at=now - timedelta(minutes=5))
    fresh = make_transaction(seller, buyer, expires_at=now + timedelta(minutes=30))
    paid = make_transaction(seller, buyer, status=S.PAYMENT_RECEIVED, expires_at=now - timedelta(minutes=5))

    assert escrow_service.expire_transactions(db_session, now=now) == 1
    # Повторный проход ничего не находит
    assert escrow_service.expire_transactions(db_session, now=now) == 0

    for transaction in (overdue, fresh, paid):
        db_session.refresh(transaction)
    assert overdue.status == S.CANCELLED
    assert fresh.status == S.PENDING_PAYMENT
    assert paid.status == S.PAYMENT_RECEIVED
    assert balance(db_session, buyer) == Decimal("50")
    assert balance(db_session, seller) == Decimal("0")


def test_auto_confirm_transactions(db_session, make_transaction, seller, buyer, escrow_settings):
    now = datetime.now(timezone.utc)
    stale = make_transaction(seller, buyer, amount="100", status=S.ITEM_SENT, item_sent_at=now - timedelta(hours=73))
    recent = make_transaction(seller, buyer, amount="100", status=S.ITEM_SENT, item_sent_at=now - timedelta(hours=10))

    report = escrow_service.auto_confirm_transactions(db_session, escrow_settings, now=now)

    assert report == {"completed": 1, "skipped": 0, "errors": 0}
    db_session.refresh(stale)
    db_session.refresh(recent)
    assert stale.status == S.COMPLETED
    assert recent.status == S.ITEM_SENT
    assert balance(db_session, seller) == Decimal("97")
