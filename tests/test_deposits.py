# tests/test_deposits.py

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from tonescrow.core.exceptions import AlreadyProcessed, ConfigurationMissing, InvalidTransition, UserBlocked, ValidationError
from tonescrow.crud import profile as crud_profile
from tonescrow.models.deposit import DepositStatus as D
from tonescrow.services import deposit as deposit_service
from tonescrow.services import settings as settings_service

PLATFORM_WALLET = "EQ" + "B" * 46


def balance(db, profile, currency="TON") -> Decimal:
    return crud_profile.get_balance(db, profile.id, currency)


@pytest.fixture
def platform_wallet(db_session):
    settings_service.set(db_session, "admin_ton_wallet", PLATFORM_WALLET)
    return PLATFORM_WALLET


def test_ton_deposit_requires_receiving_wallet(db_session, make_profile, escrow_settings):
    profile = make_profile()
    with pytest.raises(ConfigurationMissing):
        deposit_service.create_deposit(db_session, profile, Decimal("5"), "TON", "TON", escrow_settings)


def test_create_ton_deposit(db_session, make_profile, platform_wallet, escrow_settings):
    profile = make_profile()

    deposit, pay_to = deposit_service.create_deposit(db_session, profile, Decimal("5"), "TON", "TON", escrow_settings)

    assert pay_to == PLATFORM_WALLET
    assert deposit.status == D.PENDING
    assert len(deposit.unique_code) == 6
    assert deposit.expires_at is not None
    assert deposit_service.deposit_memo(deposit) == f"dep_{deposit.unique_code}"
    # Баланс меняется только при подтверждении
    assert balance(db_session, profile) == Decimal("0")


def test_mmk_deposit_requires_screenshot(db_session, make_profile, escrow_settings):
    profile = make_profile()
    with pytest.raises(ValidationError):
        deposit_service.create_deposit(db_session, profile, Decimal("10000"), "MMK", "KBZPAY", escrow_settings)

    deposit, pay_to = deposit_service.create_deposit(
        db_session, profile, Decimal("10000"), "MMK", "KBZPAY", escrow_settings,
        screenshot_url="https://example.com/proof.jpg",
    )
    assert pay_to is None
    assert deposit.expires_at is None
    assert deposit.screenshot_url == "https://example.com/proof.jpg"


def test_blocked_user_cannot_deposit(db_session, make_profile, platform_wallet, escrow_settings):
    profile = make_profile(is_blocked=True)
    with pytest.raises(UserBlocked):
        deposit_service.create_deposit(db_session, profile, Decimal("5"), "TON", "TON", escrow_settings)


def test_confirm_deposit_credits_once(db_session, make_profile, platform_wallet, escrow_settings):
    profile = make_profile(balance="1")
    deposit, _ = deposit_service.create_deposit(db_session, profile, Decimal("5"), "TON", "TON", escrow_settings)

    confirmed = deposit_service.confirm_deposit(db_session, deposit.id, amount=Decimal("4.95"), tx_hash="hash-dep")

    assert confirmed.status == D.CONFIRMED
    assert confirmed.amount == Decimal("4.95")
    assert confirmed.ton_tx_hash == "hash-dep"
    assert balance(db_session, profile) == Decimal("5.95")

    with pytest.raises(AlreadyProcessed):
        deposit_service.confirm_deposit(db_session, deposit.id, amount=Decimal("4.95"), tx_hash="hash-dep")
    assert balance(db_session, profile) == Decimal("5.95")


def test_admin_confirms_mmk_deposit_with_declared_amount(db_session, make_profile, escrow_settings):
    profile = make_profile()
    deposit, _ = deposit_service.create_deposit(
        db_session, profile, Decimal("10000"), "MMK", "WAVEPAY", escrow_settings,
        screenshot_url="https://example.com/proof.jpg",
    )

    deposit_service.confirm_deposit(db_session, deposit.id, notes="Checked in WavePay")

    assert balance(db_session, profile, "MMK") == Decimal("10000")
    assert balance(db_session, profile) == Decimal("0")


def test_reject_deposit(db_session, make_profile, platform_wallet, escrow_settings):
    profile = make_profile()
    deposit, _ = deposit_service.create_deposit(db_session, profile, Decimal("5"), "TON", "TON", escrow_settings)

    rejected = deposit_service.reject_deposit(db_session, deposit.id, notes="Fake screenshot")

    assert rejected.status == D.REJECTED
    assert balance(db_session, profile) == Decimal("0")
    with pytest.raises(InvalidTransition):
        deposit_service.confirm_deposit(db_session, deposit.id)
    with pytest.raises(AlreadyProcessed):
        deposit_service.reject_deposit(db_session, deposit.id)


def test_expire_deposits(db_session, make_profile, platform_wallet, escrow_settings):
    profile = make_profile()
    overdue, _ = deposit_service.create_deposit(db_session, profile, Decimal("5"), "TON", "TON", escrow_settings)
    fresh, _ = deposit_service.create_deposit(db_session, profile, Decimal("5"), "TON", "TON", escrow_settings)
    overdue.expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
    db_session.commit()

    assert deposit_service.expire_deposits(db_session) == 1

    db_session.refresh(overdue)
    db_session.refresh(fresh)
    assert overdue.status == D.EXPIRED
    assert fresh.status == D.PENDING
    assert balance(db_session, profile) == Decimal("0")
